from __future__ import annotations

from bubble_tracker.schemas.market import MarketSnapshot, MarketStats

HEAT_LIMIT_PCT = 5.0


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def compute_market_stats(snapshot: MarketSnapshot | None) -> MarketStats:
    quotes = list(snapshot.quotes.values()) if snapshot is not None else []
    if not quotes:
        return MarketStats(
            count=0,
            average_change_pct=0.0,
            heat=0.0,
            advancers=0,
            decliners=0,
            unchanged=0,
        )

    average = sum(q.change_pct for q in quotes) / len(quotes)
    ranked = sorted(quotes, key=lambda q: q.change_pct, reverse=True)
    advancers = sum(1 for q in quotes if q.change_pct > 0)
    decliners = sum(1 for q in quotes if q.change_pct < 0)

    return MarketStats(
        count=len(quotes),
        average_change_pct=average,
        heat=_clamp(average, -HEAT_LIMIT_PCT, HEAT_LIMIT_PCT),
        advancers=advancers,
        decliners=decliners,
        unchanged=len(quotes) - advancers - decliners,
        best=ranked[0],
        worst=ranked[-1],
    )
