from __future__ import annotations

from pydantic import BaseModel, ConfigDict


class Quote(BaseModel):
    model_config = ConfigDict(frozen=True)

    symbol: str
    price: float
    prev_close: float
    change_pct: float
    observed_at: int

    @classmethod
    def build(cls, *, symbol: str, price: float, prev_close: float, observed_at: int) -> "Quote":
        change_pct = ((price - prev_close) / prev_close) * 100 if prev_close else 0.0
        return cls(
            symbol=symbol,
            price=price,
            prev_close=prev_close,
            change_pct=change_pct,
            observed_at=observed_at,
        )


class MarketSnapshot(BaseModel):
    model_config = ConfigDict(frozen=True)

    quotes: dict[str, Quote]
    as_of: int
    provider: str
    error: str | None = None


class PollerState(BaseModel):
    snapshot: MarketSnapshot | None = None
    loading: bool = True
    error: str | None = None


class MarketStats(BaseModel):
    count: int
    average_change_pct: float
    heat: float
    advancers: int
    decliners: int
    unchanged: int
    best: Quote | None = None
    worst: Quote | None = None


def merge_snapshots(prev: MarketSnapshot | None, nxt: MarketSnapshot) -> MarketSnapshot:
    """Union of both quote maps, ``nxt`` winning per symbol and for metadata."""
    if prev is None:
        return nxt
    return MarketSnapshot(
        quotes={**prev.quotes, **nxt.quotes},
        as_of=nxt.as_of,
        provider=nxt.provider,
        error=nxt.error,
    )
