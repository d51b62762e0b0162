from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Sequence

from bubble_tracker.schemas.market import MarketSnapshot, PollerState, merge_snapshots
from bubble_tracker.services.snapshot_fetcher import SnapshotFetcher


class MarketPoller:
    """Recurring quote poll merged into one held snapshot.

    Each cycle fetches either the whole symbol list or, in windowed mode, the
    slice starting at ``cursor``. Starting a cycle cancels the one still in
    flight and results from a superseded cycle are dropped, so only the most
    recent cycle ever writes state. Listeners get a ``PollerState`` whenever
    snapshot, loading or error actually change.
    """

    def __init__(
        self,
        *,
        fetcher: SnapshotFetcher,
        symbols: Sequence[str],
        interval_sec: float = 30.0,
        window_size: int = 0,
        on_change: Callable[[PollerState], None] | None = None,
        sleep_fn: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if interval_sec <= 0:
            raise ValueError("interval_sec must be > 0")
        self.fetcher = fetcher
        self.symbols = self._normalize(symbols)
        self.interval_sec = interval_sec
        self.window_size = max(int(window_size), 0)
        self._on_change = on_change
        self._sleep = sleep_fn

        self.snapshot: MarketSnapshot | None = None
        self.loading = True
        self.error: str | None = None
        self.cursor = 0

        self._generation = 0
        self._stopped = False
        self._timer: asyncio.Task | None = None
        self._inflight: asyncio.Task | None = None
        self._last_state: PollerState | None = None

        self.cycles_started = 0
        self.cycles_merged = 0
        self.cycles_failed = 0
        self.cycles_cancelled = 0
        self.cycles_discarded = 0
        self.cycles_errored = 0
        self.notifications = 0

    @staticmethod
    def _normalize(symbols: Sequence[str]) -> list[str]:
        out: list[str] = []
        for symbol in symbols:
            value = str(symbol).strip()
            if value and value not in out:
                out.append(value)
        return out

    @property
    def running(self) -> bool:
        return self._timer is not None and not self._timer.done()

    @property
    def windowed(self) -> bool:
        return 0 < self.window_size < len(self.symbols)

    def state(self) -> PollerState:
        return PollerState(snapshot=self.snapshot, loading=self.loading, error=self.error)

    def current_window(self) -> list[str]:
        if not self.windowed:
            return list(self.symbols)
        return self.symbols[self.cursor:self.cursor + self.window_size]

    def _advance_cursor(self) -> None:
        if not self.windowed:
            self.cursor = 0
            return
        self.cursor += self.window_size
        if self.cursor >= len(self.symbols):
            self.cursor = 0

    def _set_state(self, *, snapshot: MarketSnapshot | None, loading: bool, error: str | None) -> None:
        self.snapshot = snapshot
        self.loading = loading
        self.error = error
        state = self.state()
        if state == self._last_state:
            return
        self._last_state = state
        self.notifications += 1
        if self._on_change is not None:
            self._on_change(state)

    def _apply(self, result: MarketSnapshot) -> None:
        if result.error is not None and not result.quotes:
            # keep the last good data on a failed cycle
            self.cycles_failed += 1
            snapshot = self.snapshot
        else:
            self.cycles_merged += 1
            merged = merge_snapshots(self.snapshot, result)
            if (
                self.snapshot is not None
                and merged.quotes == self.snapshot.quotes
                and merged.error == self.snapshot.error
                and merged.provider == self.snapshot.provider
            ):
                snapshot = self.snapshot
            else:
                snapshot = merged

        if result.error is None:
            self._advance_cursor()
        self._set_state(snapshot=snapshot, loading=False, error=result.error)

    async def _run_cycle(self, generation: int, symbols: list[str]) -> None:
        result = await self.fetcher.fetch(symbols)
        if self._stopped or generation != self._generation:
            self.cycles_discarded += 1
            print(f"[POLL][cycle_discard] generation={generation} current={self._generation}", flush=True)
            return
        self._apply(result)
        print(
            f"[POLL][cycle_done] generation={generation} symbols={len(symbols)} "
            f"received={len(result.quotes)} cursor={self.cursor} error={result.error}",
            flush=True,
        )

    def _cancel_inflight(self) -> None:
        task = self._inflight
        self._inflight = None
        if task is not None and not task.done():
            task.cancel()
            self.cycles_cancelled += 1

    def _on_cycle_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self.cycles_errored += 1
            print(f"[POLL][cycle_error] error={exc!r}", flush=True)

    def _launch_cycle(self) -> asyncio.Task:
        self._cancel_inflight()
        self._generation += 1
        self.cycles_started += 1
        task = asyncio.create_task(self._run_cycle(self._generation, self.current_window()))
        task.add_done_callback(self._on_cycle_done)
        self._inflight = task
        return task

    async def _run(self) -> None:
        while True:
            self._launch_cycle()
            await self._sleep(self.interval_sec)

    def start(self) -> None:
        if self.running:
            return
        self._stopped = False
        self._set_state(snapshot=self.snapshot, loading=True, error=self.error)
        self._timer = asyncio.create_task(self._run(), name="market-poller")
        print(
            f"[POLL][poller_start] symbols={len(self.symbols)} interval_sec={self.interval_sec} "
            f"window_size={self.window_size}",
            flush=True,
        )

    def stop(self) -> None:
        self._stopped = True
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self._cancel_inflight()
        print("[POLL][poller_stop]", flush=True)

    async def aclose(self, timeout_sec: float = 1.0) -> None:
        """Stop and wait (bounded) for the timer and in-flight cycle to finish."""
        pending = [t for t in (self._timer, self._inflight) if t is not None and not t.done()]
        self.stop()
        if pending:
            await asyncio.wait(pending, timeout=timeout_sec)

    def reconfigure(
        self,
        *,
        symbols: Sequence[str] | None = None,
        interval_sec: float | None = None,
        window_size: int | None = None,
    ) -> bool:
        """Apply new polling settings; restarts the cycle when anything changed."""
        changed = False
        if symbols is not None:
            normalized = self._normalize(symbols)
            if normalized != self.symbols:
                self.symbols = normalized
                changed = True
        if interval_sec is not None and interval_sec != self.interval_sec:
            if interval_sec <= 0:
                raise ValueError("interval_sec must be > 0")
            self.interval_sec = interval_sec
            changed = True
        if window_size is not None and max(int(window_size), 0) != self.window_size:
            self.window_size = max(int(window_size), 0)
            changed = True
        if not changed:
            return False

        self.cursor = 0
        if self.running:
            self._timer.cancel()
            self._timer = None
            self._cancel_inflight()
            self.start()
        return True

    async def refresh(self) -> PollerState:
        """Run one cycle immediately, superseding any in-flight one."""
        task = self._launch_cycle()
        await asyncio.wait({task})
        if not task.cancelled() and task.exception() is not None:
            raise task.exception()
        return self.state()

    def metrics(self) -> dict[str, int | bool | str | None]:
        return {
            "symbols": len(self.symbols),
            "window_size": self.window_size,
            "cursor": self.cursor,
            "running": self.running,
            "loading": self.loading,
            "error": self.error,
            "cycles_started": self.cycles_started,
            "cycles_merged": self.cycles_merged,
            "cycles_failed": self.cycles_failed,
            "cycles_cancelled": self.cycles_cancelled,
            "cycles_discarded": self.cycles_discarded,
            "cycles_errored": self.cycles_errored,
            "notifications": self.notifications,
        }
