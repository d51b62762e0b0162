import unittest

from bubble_tracker.schemas.market import MarketSnapshot, Quote
from bubble_tracker.services.market_stats import compute_market_stats


def _snapshot(changes: dict[str, float]) -> MarketSnapshot:
    quotes = {
        s: Quote.build(symbol=s, price=100.0 + pct, prev_close=100.0, observed_at=1)
        for s, pct in changes.items()
    }
    return MarketSnapshot(quotes=quotes, as_of=1, provider="mock")


class MarketStatsTest(unittest.TestCase):
    def test_empty_or_missing_snapshot_gives_zeros(self):
        for snapshot in (None, _snapshot({})):
            stats = compute_market_stats(snapshot)

            self.assertEqual(stats.count, 0)
            self.assertEqual(stats.heat, 0.0)
            self.assertIsNone(stats.best)
            self.assertIsNone(stats.worst)

    def test_breadth_average_and_extremes(self):
        stats = compute_market_stats(_snapshot({"A": 2.0, "B": -1.0, "C": 0.0, "D": 3.0}))

        self.assertEqual(stats.count, 4)
        self.assertAlmostEqual(stats.average_change_pct, 1.0)
        self.assertAlmostEqual(stats.heat, 1.0)
        self.assertEqual(stats.advancers, 2)
        self.assertEqual(stats.decliners, 1)
        self.assertEqual(stats.unchanged, 1)
        self.assertEqual(stats.best.symbol, "D")
        self.assertEqual(stats.worst.symbol, "B")

    def test_heat_is_clamped(self):
        hot = compute_market_stats(_snapshot({"A": 9.0, "B": 7.0}))
        cold = compute_market_stats(_snapshot({"A": -12.0}))

        self.assertAlmostEqual(hot.average_change_pct, 8.0)
        self.assertEqual(hot.heat, 5.0)
        self.assertEqual(cold.heat, -5.0)


if __name__ == "__main__":
    unittest.main()
