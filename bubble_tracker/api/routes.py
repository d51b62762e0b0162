from fastapi import APIRouter, HTTPException, Request

from bubble_tracker.services.market_stats import compute_market_stats
from bubble_tracker.services.news import fetch_company_news

router = APIRouter()


def _normalize_symbol(symbol: str) -> str:
    value = symbol.strip().upper()
    if not value:
        raise HTTPException(status_code=400, detail='SYMBOL_REQUIRED')
    return value


@router.get('/market/snapshot')
def get_market_snapshot(request: Request):
    store = request.app.state.snapshot_store
    poller = request.app.state.market_poller
    snapshot = store.read()
    return {
        'snapshot': snapshot.model_dump() if snapshot is not None else None,
        'loading': poller.loading and snapshot is None,
        'error': poller.error or (snapshot.error if snapshot is not None else None),
    }


@router.get('/market/stats')
def get_market_stats(request: Request):
    return compute_market_stats(request.app.state.snapshot_store.read()).model_dump()


@router.post('/market/refresh')
async def refresh_market(request: Request):
    state = await request.app.state.market_poller.refresh()
    return {'loading': state.loading, 'error': state.error}


@router.get('/quotes/{symbol}')
async def get_quote(symbol: str, request: Request):
    store = request.app.state.snapshot_store
    value = _normalize_symbol(symbol)
    result = await store.ensure([value])
    quote = store.get_quote(value)
    if quote is None:
        detail = result.error if result is not None and result.error else 'QUOTE_NOT_FOUND'
        raise HTTPException(status_code=404, detail=detail)
    return quote.model_dump()


@router.get('/news/{symbol}')
def get_news(symbol: str, request: Request):
    news = fetch_company_news(request.app.state.news_client, _normalize_symbol(symbol))
    return news.model_dump()


@router.get('/metrics/market')
def market_metrics(request: Request):
    metrics = request.app.state.market_poller.metrics()
    metrics.update(request.app.state.snapshot_fetcher.metrics())
    metrics.update(request.app.state.snapshot_store.metrics())
    return metrics
