from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI

from bubble_tracker.api.routes import router
from bubble_tracker.config.settings import Settings, get_settings
from bubble_tracker.integrations.finnhub_rest import FinnhubRestClient
from bubble_tracker.services.market_poller import MarketPoller
from bubble_tracker.services.snapshot_fetcher import SnapshotFetcher, build_quote_source
from bubble_tracker.services.snapshot_store import FileSnapshotStorage, SnapshotStore


def _bind_runtime(app: FastAPI, settings: Settings) -> None:
    rest_client = FinnhubRestClient(api_key=settings.FINNHUB_API_KEY)
    fetcher = SnapshotFetcher(build_quote_source(settings, rest_client=rest_client))
    store = SnapshotStore(
        storage=app.state.storage_factory(settings),
        fetcher=fetcher,
        ttl_ms=settings.CACHE_TTL_MS,
    )
    poller = MarketPoller(
        fetcher=fetcher,
        symbols=settings.MARKET_TICKERS,
        interval_sec=settings.POLL_INTERVAL_MS / 1000,
        window_size=settings.POLL_WINDOW_SIZE,
        on_change=store.track,
    )

    app.state.news_client = rest_client
    app.state.snapshot_fetcher = fetcher
    app.state.snapshot_store = store
    app.state.market_poller = poller


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = app.state.get_settings()
    _bind_runtime(app, settings)
    print(
        f"[APP][startup] provider={settings.MARKET_PROVIDER} "
        f"tickers={len(settings.MARKET_TICKERS)} has_api_key={bool(settings.FINNHUB_API_KEY)}",
        flush=True,
    )
    app.state.market_poller.start()

    try:
        yield
    finally:
        await app.state.market_poller.aclose()
        await app.state.snapshot_store.flush()
        print("[APP][shutdown]", flush=True)


app = FastAPI(title="Bubble Tracker", version="0.1.0", lifespan=lifespan)
app.include_router(router, prefix="/v1")

# NOTE: lazy-loaded so app import does not require env during tests.
app.state.get_settings = get_settings
app.state.storage_factory = lambda settings: FileSnapshotStorage(settings.CACHE_DIR)
