from __future__ import annotations

from datetime import date, timedelta

from bubble_tracker.errors import InvalidCredentialError, QuoteSourceError, RateLimitError
from bubble_tracker.integrations.finnhub_rest import MISSING_KEY_MESSAGE, FinnhubRestClient
from bubble_tracker.schemas.news import CompanyNews, NewsItem

NEWS_DAYS_BACK = 7
NEWS_LIMIT = 20


def _to_item(row: dict) -> NewsItem | None:
    headline = str(row.get("headline") or "").strip()
    if not headline:
        return None
    try:
        published = int(row.get("datetime") or 0)
    except (TypeError, ValueError):
        published = 0
    return NewsItem(
        datetime=published,
        headline=headline,
        source=str(row.get("source") or ""),
        url=str(row.get("url") or ""),
        summary=row.get("summary") or None,
        image=row.get("image") or None,
        category=row.get("category") or None,
    )


def fetch_company_news(
    client: FinnhubRestClient,
    symbol: str,
    *,
    days_back: int = NEWS_DAYS_BACK,
    limit: int = NEWS_LIMIT,
    today: date | None = None,
) -> CompanyNews:
    """Recent headlines for ``symbol``, newest first; failures come back as ``error``."""
    if not client.has_api_key:
        return CompanyNews(symbol=symbol, items=[], error=MISSING_KEY_MESSAGE)

    end = today or date.today()
    start = end - timedelta(days=days_back)
    try:
        rows = client.get_company_news(symbol, start, end)
    except QuoteSourceError as exc:
        print(f"[NEWS][fetch_error] symbol={symbol} kind={exc.kind} error={exc.message}", flush=True)
        if isinstance(exc, (InvalidCredentialError, RateLimitError)):
            return CompanyNews(symbol=symbol, items=[], error=exc.message)
        return CompanyNews(symbol=symbol, items=[], error=f"Failed to fetch news: {exc.message}")

    items = [item for item in (_to_item(row) for row in rows) if item is not None]
    items.sort(key=lambda item: item.datetime, reverse=True)
    return CompanyNews(symbol=symbol, items=items[:limit])
