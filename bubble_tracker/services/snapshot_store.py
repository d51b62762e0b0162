from __future__ import annotations

import asyncio
import time
from pathlib import Path
from typing import Protocol, Sequence

from pydantic import ValidationError

from bubble_tracker.schemas.market import MarketSnapshot, PollerState, Quote, merge_snapshots
from bubble_tracker.services.snapshot_fetcher import SnapshotFetcher

CACHE_KEY = "stock_cache_v1"
CACHE_TTL_MS = 1000 * 60 * 60 * 24


class SnapshotStorage(Protocol):
    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...

    def remove(self, key: str) -> None: ...


class MemorySnapshotStorage:
    def __init__(self) -> None:
        self._rows: dict[str, str] = {}

    def get(self, key: str) -> str | None:
        return self._rows.get(key)

    def set(self, key: str, value: str) -> None:
        self._rows[key] = value

    def remove(self, key: str) -> None:
        self._rows.pop(key, None)


class FileSnapshotStorage:
    """One JSON file per key inside ``root``."""

    def __init__(self, root: Path | str) -> None:
        self.root = Path(root)

    def _path(self, key: str) -> Path:
        return self.root / f"{key}.json"

    def get(self, key: str) -> str | None:
        path = self._path(key)
        if not path.exists():
            return None
        return path.read_text(encoding="utf-8")

    def set(self, key: str, value: str) -> None:
        self.root.mkdir(parents=True, exist_ok=True)
        tmp = self._path(key).with_suffix(".tmp")
        tmp.write_text(value, encoding="utf-8")
        tmp.replace(self._path(key))

    def remove(self, key: str) -> None:
        self._path(key).unlink(missing_ok=True)


class SnapshotStore:
    """Shared, persisted holder of the merged market snapshot.

    Written by the primary poller (through ``track``) and by ``ensure`` for
    symbols outside the polled list. Persistence is best effort: storage
    failures are logged and never reach callers.
    """

    def __init__(
        self,
        *,
        storage: SnapshotStorage,
        fetcher: SnapshotFetcher | None = None,
        ttl_ms: int = CACHE_TTL_MS,
        cache_key: str = CACHE_KEY,
    ) -> None:
        self.storage = storage
        self.fetcher = fetcher
        self.ttl_ms = ttl_ms
        self.cache_key = cache_key
        self.merges = 0
        self.persist_errors = 0
        self.ensure_calls = 0
        self._last_tracked: MarketSnapshot | None = None
        self._pending_write: str | None = None
        self._writer: asyncio.Task | None = None
        self._snapshot = self._load_persisted()

    def _load_persisted(self) -> MarketSnapshot | None:
        try:
            raw = self.storage.get(self.cache_key)
            if not raw:
                return None
            snapshot = MarketSnapshot.model_validate_json(raw)
        except (OSError, ValidationError, ValueError) as exc:
            print(f"[STORE][load_error] key={self.cache_key} error={exc}", flush=True)
            return None

        age_ms = int(time.time() * 1000) - snapshot.as_of
        if age_ms > self.ttl_ms:
            print(f"[STORE][load_expired] key={self.cache_key} age_ms={age_ms}", flush=True)
            self._remove_persisted()
            return None

        print(f"[STORE][load_ok] key={self.cache_key} symbols={len(snapshot.quotes)}", flush=True)
        return snapshot

    def _remove_persisted(self) -> None:
        try:
            self.storage.remove(self.cache_key)
        except OSError as exc:
            self.persist_errors += 1
            print(f"[STORE][persist_error] key={self.cache_key} error={exc}", flush=True)

    def _write(self, value: str) -> None:
        try:
            self.storage.set(self.cache_key, value)
        except (OSError, TypeError, ValueError) as exc:
            self.persist_errors += 1
            print(f"[STORE][persist_error] key={self.cache_key} error={exc}", flush=True)

    def _persist(self, snapshot: MarketSnapshot) -> None:
        try:
            value = snapshot.model_dump_json()
        except (TypeError, ValueError) as exc:
            self.persist_errors += 1
            print(f"[STORE][persist_error] key={self.cache_key} error={exc}", flush=True)
            return

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._write(value)
            return

        # single writer off the loop; only the newest pending value is written
        self._pending_write = value
        if self._writer is None or self._writer.done():
            self._writer = loop.create_task(self._drain_writes())

    async def _drain_writes(self) -> None:
        while self._pending_write is not None:
            value, self._pending_write = self._pending_write, None
            await asyncio.to_thread(self._write, value)

    async def flush(self) -> None:
        """Wait until every scheduled write has reached storage."""
        while self._writer is not None and not self._writer.done():
            await self._writer

    def read(self) -> MarketSnapshot | None:
        return self._snapshot

    def get_quote(self, symbol: str) -> Quote | None:
        if self._snapshot is None:
            return None
        return self._snapshot.quotes.get(symbol)

    def merge(self, partial: MarketSnapshot) -> MarketSnapshot:
        merged = merge_snapshots(self._snapshot, partial)
        self._snapshot = merged
        self.merges += 1
        self._persist(merged)
        return merged

    def track(self, state: PollerState) -> None:
        """Poller listener: fold each new poller snapshot into the store."""
        if state.snapshot is None or state.snapshot is self._last_tracked:
            return
        self._last_tracked = state.snapshot
        self.merge(state.snapshot)

    async def ensure(self, symbols: Sequence[str]) -> MarketSnapshot | None:
        """Fetch and merge the requested symbols that are not cached yet.

        Concurrent calls for the same symbol are not de-duplicated.
        """
        if self.fetcher is None:
            raise RuntimeError("snapshot store has no fetcher configured")

        current = self._snapshot.quotes if self._snapshot is not None else {}
        missing = [s for s in dict.fromkeys(symbols) if s and s not in current]
        if not missing:
            return None

        self.ensure_calls += 1
        result = await self.fetcher.fetch(missing)
        if result.error is not None and not result.quotes:
            print(f"[STORE][ensure_error] symbols={','.join(missing)} error={result.error}", flush=True)
            return result
        self.merge(result)
        return result

    def clear(self) -> None:
        self._snapshot = None
        self._pending_write = None
        self._last_tracked = None
        self._remove_persisted()

    def metrics(self) -> dict[str, int | None]:
        return {
            "store_symbols": len(self._snapshot.quotes) if self._snapshot is not None else 0,
            "store_as_of": self._snapshot.as_of if self._snapshot is not None else None,
            "store_merges": self.merges,
            "store_persist_errors": self.persist_errors,
            "store_ensure_calls": self.ensure_calls,
        }
