import asyncio
import math
import threading
import unittest
from unittest.mock import MagicMock, Mock

import requests

from bubble_tracker.integrations.finnhub_rest import (
    MISSING_KEY_MESSAGE,
    RATE_LIMIT_MESSAGE,
    FinnhubRestClient,
)
from bubble_tracker.services.quote_source import FinnhubQuoteSource, MockQuoteSource


def _session_returning(payload) -> MagicMock:
    session = MagicMock()
    response = MagicMock()
    response.json.return_value = payload
    response.raise_for_status.return_value = None
    session.get.return_value = response
    return session


class BlockingRestClient:
    has_api_key = True

    def __init__(self) -> None:
        self.release = threading.Event()
        self.calls = 0

    def get_quote(self, symbol: str) -> dict:
        self.calls += 1
        self.release.wait(timeout=5)
        return {"symbol": symbol, "price": 1.0, "prev_close": 1.0, "observed_at": 1}


class FinnhubQuoteSourceTest(unittest.IsolatedAsyncioTestCase):
    def test_missing_api_key_resolves_in_one_step_without_network(self):
        session = MagicMock()
        source = FinnhubQuoteSource(FinnhubRestClient(api_key="", session=session))

        coro = source.fetch(["MSFT", "NVDA"])
        with self.assertRaises(StopIteration) as ctx:
            coro.send(None)
        snapshot = ctx.exception.value

        self.assertEqual(snapshot.quotes, {})
        self.assertEqual(snapshot.error, MISSING_KEY_MESSAGE)
        self.assertEqual(snapshot.provider, "finnhub")
        session.get.assert_not_called()

    async def test_symbols_are_fetched_in_batches_with_cooldown(self):
        session = _session_returning({"c": 110.0, "pc": 100.0, "t": 1700000000})
        sleeps: list[float] = []

        async def fake_sleep(sec: float) -> None:
            sleeps.append(sec)

        source = FinnhubQuoteSource(
            FinnhubRestClient(api_key="key", session=session),
            batch_size=10,
            batch_cooldown_sec=0.25,
            sleep_fn=fake_sleep,
        )
        symbols = [f"S{i}" for i in range(12)]

        snapshot = await source.fetch(symbols)

        self.assertIsNone(snapshot.error)
        self.assertEqual(set(snapshot.quotes), set(symbols))
        self.assertEqual(sleeps, [0.25])
        self.assertAlmostEqual(snapshot.quotes["S3"].change_pct, 10.0)
        self.assertEqual(snapshot.quotes["S3"].observed_at, 1700000000000)

    async def test_single_batch_has_no_cooldown(self):
        sleeps: list[float] = []

        async def fake_sleep(sec: float) -> None:
            sleeps.append(sec)

        source = FinnhubQuoteSource(
            FinnhubRestClient(api_key="key", session=_session_returning({"c": 1.0, "pc": 1.0})),
            sleep_fn=fake_sleep,
        )

        await source.fetch(["A", "B"])

        self.assertEqual(sleeps, [])

    async def test_zero_previous_close_gives_zero_change(self):
        source = FinnhubQuoteSource(
            FinnhubRestClient(api_key="key", session=_session_returning({"c": 12.0, "pc": 0})),
        )

        snapshot = await source.fetch(["ZERO"])

        self.assertEqual(snapshot.quotes["ZERO"].change_pct, 0.0)
        self.assertEqual(snapshot.quotes["ZERO"].prev_close, 0.0)

    async def test_rate_limit_returns_error_snapshot_instead_of_raising(self):
        session = MagicMock()
        response = MagicMock()
        response.raise_for_status.side_effect = requests.HTTPError(response=Mock(status_code=429))
        session.get.return_value = response
        source = FinnhubQuoteSource(FinnhubRestClient(api_key="key", session=session))

        snapshot = await source.fetch(["MSFT", "NVDA"])

        self.assertEqual(snapshot.quotes, {})
        self.assertEqual(snapshot.error, RATE_LIMIT_MESSAGE)

    async def test_cancellation_abandons_outstanding_requests(self):
        client = BlockingRestClient()
        source = FinnhubQuoteSource(client)
        task = asyncio.create_task(source.fetch(["MSFT"]))
        try:
            while client.calls == 0:
                await asyncio.sleep(0.01)
            task.cancel()
            with self.assertRaises(asyncio.CancelledError):
                await task
        finally:
            client.release.set()

        self.assertTrue(task.cancelled())


class MockQuoteSourceTest(unittest.IsolatedAsyncioTestCase):
    async def test_values_are_deterministic_per_phase(self):
        first = await MockQuoteSource().fetch(["A", "B"])
        second = await MockQuoteSource().fetch(["A", "B"])

        self.assertEqual(first.quotes["A"].price, second.quotes["A"].price)
        self.assertEqual(first.quotes["B"].price, second.quotes["B"].price)

    async def test_values_follow_phase_and_symbol_index(self):
        source = MockQuoteSource()

        snapshot = await source.fetch(["A", "B"])

        expected_b = 100.5 * (1 + (math.sin(0.25 + 0.4) * 1.5) / 100)
        self.assertEqual(snapshot.provider, "mock")
        self.assertIsNone(snapshot.error)
        self.assertEqual(snapshot.quotes["A"].prev_close, 100.0)
        self.assertAlmostEqual(snapshot.quotes["B"].price, expected_b)
        self.assertAlmostEqual(
            snapshot.quotes["B"].change_pct,
            (expected_b - 100.5) / 100.5 * 100,
        )

    async def test_values_vary_between_calls(self):
        source = MockQuoteSource()

        first = await source.fetch(["A"])
        second = await source.fetch(["A"])

        self.assertNotEqual(first.quotes["A"].price, second.quotes["A"].price)
        self.assertEqual(source.phase, 0.5)


if __name__ == "__main__":
    unittest.main()
