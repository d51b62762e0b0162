from __future__ import annotations

import asyncio
import math
import time
from abc import ABC, abstractmethod
from typing import Awaitable, Callable, Sequence

from bubble_tracker.errors import QuoteSourceError
from bubble_tracker.integrations.finnhub_rest import MISSING_KEY_MESSAGE, FinnhubRestClient
from bubble_tracker.schemas.market import MarketSnapshot, Quote


def _now_ms() -> int:
    return int(time.time() * 1000)


def _error_snapshot(provider: str, message: str) -> MarketSnapshot:
    return MarketSnapshot(quotes={}, as_of=_now_ms(), provider=provider, error=message)


class QuoteSource(ABC):
    """Adapter turning one upstream provider into canonical snapshots.

    ``fetch`` must not raise for ordinary upstream failures; it returns an
    empty snapshot with ``error`` set instead. Cancelling the task awaiting
    ``fetch`` abandons any outstanding upstream calls.
    """

    provider = "unknown"

    @abstractmethod
    async def fetch(self, symbols: Sequence[str]) -> MarketSnapshot:
        ...


class FinnhubQuoteSource(QuoteSource):
    provider = "finnhub"

    def __init__(
        self,
        client: FinnhubRestClient,
        *,
        batch_size: int = 10,
        batch_cooldown_sec: float = 0.25,
        sleep_fn: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        self.client = client
        self.batch_size = batch_size
        self.batch_cooldown_sec = batch_cooldown_sec
        self._sleep = sleep_fn

    def _to_quote(self, row: dict) -> Quote:
        return Quote.build(
            symbol=str(row["symbol"]),
            price=float(row.get("price", 0.0)),
            prev_close=float(row.get("prev_close", 0.0)),
            observed_at=int(row.get("observed_at") or _now_ms()),
        )

    async def fetch(self, symbols: Sequence[str]) -> MarketSnapshot:
        # no await before this check: a missing key resolves in a single step
        if not self.client.has_api_key:
            return _error_snapshot(self.provider, MISSING_KEY_MESSAGE)

        tickers = list(dict.fromkeys(symbols))
        quotes: dict[str, Quote] = {}
        for start in range(0, len(tickers), self.batch_size):
            batch = tickers[start:start + self.batch_size]
            try:
                rows = await asyncio.gather(
                    *(asyncio.to_thread(self.client.get_quote, symbol) for symbol in batch)
                )
            except QuoteSourceError as exc:
                print(
                    f"[QUOTE][batch_error] provider={self.provider} kind={exc.kind} "
                    f"batch={','.join(batch)} error={exc.message}",
                    flush=True,
                )
                return _error_snapshot(self.provider, exc.message)

            for row in rows:
                quote = self._to_quote(row)
                quotes[quote.symbol] = quote

            if start + self.batch_size < len(tickers):
                await self._sleep(self.batch_cooldown_sec)

        return MarketSnapshot(quotes=quotes, as_of=_now_ms(), provider=self.provider)


class MockQuoteSource(QuoteSource):
    """Offline source: deterministic prices that drift with every call."""

    provider = "mock"

    def __init__(self, phase_step: float = 0.25) -> None:
        self.phase = 0.0
        self.phase_step = phase_step

    async def fetch(self, symbols: Sequence[str]) -> MarketSnapshot:
        self.phase += self.phase_step
        now = _now_ms()
        quotes: dict[str, Quote] = {}
        for i, symbol in enumerate(symbols):
            prev_close = 100 + i * 0.5
            price = prev_close * (1 + (math.sin(self.phase + i * 0.4) * 1.5) / 100)
            quotes[symbol] = Quote.build(
                symbol=symbol,
                price=price,
                prev_close=prev_close,
                observed_at=now,
            )
        return MarketSnapshot(quotes=quotes, as_of=now, provider=self.provider)
