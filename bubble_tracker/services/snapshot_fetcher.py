from __future__ import annotations

import time
from typing import Sequence

from bubble_tracker.config.settings import Settings
from bubble_tracker.integrations.finnhub_rest import FinnhubRestClient
from bubble_tracker.schemas.market import MarketSnapshot
from bubble_tracker.services.quote_source import FinnhubQuoteSource, MockQuoteSource, QuoteSource


def build_quote_source(settings: Settings, *, rest_client: FinnhubRestClient | None = None) -> QuoteSource:
    if settings.MARKET_PROVIDER == "mock":
        return MockQuoteSource()
    return FinnhubQuoteSource(
        rest_client or FinnhubRestClient(api_key=settings.FINNHUB_API_KEY),
        batch_size=settings.QUOTE_BATCH_SIZE,
        batch_cooldown_sec=settings.QUOTE_BATCH_COOLDOWN_MS / 1000,
    )


class SnapshotFetcher:
    """Single-provider fetch boundary: every outcome comes back as a snapshot."""

    def __init__(self, source: QuoteSource) -> None:
        self.source = source
        self.fetches = 0
        self.errors = 0
        self.last_error: str | None = None

    @property
    def provider(self) -> str:
        return self.source.provider

    async def fetch(self, symbols: Sequence[str]) -> MarketSnapshot:
        self.fetches += 1
        try:
            snapshot = await self.source.fetch(symbols)
        except Exception as exc:
            snapshot = MarketSnapshot(
                quotes={},
                as_of=int(time.time() * 1000),
                provider=self.provider,
                error=str(exc) or exc.__class__.__name__,
            )
            print(
                f"[QUOTE][fetch_exception] provider={self.provider} "
                f"symbols={','.join(symbols)} error={snapshot.error}",
                flush=True,
            )

        if snapshot.error is not None:
            self.errors += 1
        self.last_error = snapshot.error
        return snapshot

    def metrics(self) -> dict[str, int | str | None]:
        return {
            "provider": self.provider,
            "fetches": self.fetches,
            "fetch_errors": self.errors,
            "last_fetch_error": self.last_error,
        }
