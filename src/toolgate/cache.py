# Concurrent in-process key/value cache.
# Created: 2026-10-19
#
# Entries are spread over N shards, each with its own lock, so requests for
# unrelated keys never contend on a single mutex. Each shard is bounded and
# evicts its oldest entry first. Optional per-cache TTL.

from __future__ import annotations

import threading
import time
import zlib
from collections import OrderedDict
from collections.abc import Callable
from typing import Generic, TypeVar

__all__ = ["ShardedCache"]

V = TypeVar("V")

_MISSING = object()


class _Shard(Generic[V]):
    __slots__ = ("lock", "entries")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        # key -> (stored_at, value)
        self.entries: OrderedDict[str, tuple[float, V]] = OrderedDict()


class ShardedCache(Generic[V]):
    """Thread-safe string-keyed cache with ``get`` / ``put`` / ``invalidate``.

    Parameters
    ----------
    shards : int
        Number of independently locked partitions.
    max_entries : int
        Upper bound on total entries (split evenly over shards).
    ttl : float | None
        Seconds after which an entry is treated as absent. ``None`` disables expiry.
    clock : callable
        Monotonic time source (injectable for tests).
    """

    def __init__(
        self,
        shards: int = 16,
        max_entries: int = 10_000,
        ttl: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        if shards < 1:
            raise ValueError("shards must be >= 1")
        self._shards: list[_Shard[V]] = [_Shard() for _ in range(shards)]
        self._per_shard = max(1, max_entries // shards)
        self._ttl = ttl
        self._clock = clock

    def _shard(self, key: str) -> _Shard[V]:
        return self._shards[zlib.crc32(key.encode()) % len(self._shards)]

    def get(self, key: str, default: V | None = None) -> V | None:
        shard = self._shard(key)
        with shard.lock:
            item = shard.entries.get(key, _MISSING)
            if item is _MISSING:
                return default
            stored_at, value = item
            if self._ttl is not None and self._clock() - stored_at > self._ttl:
                del shard.entries[key]
                return default
            return value

    def put(self, key: str, value: V) -> None:
        shard = self._shard(key)
        with shard.lock:
            shard.entries[key] = (self._clock(), value)
            shard.entries.move_to_end(key)
            while len(shard.entries) > self._per_shard:
                shard.entries.popitem(last=False)

    def put_if_absent(self, key: str, value: V) -> V:
        """Store *value* unless a live entry exists; return whichever value wins."""
        shard = self._shard(key)
        with shard.lock:
            item = shard.entries.get(key, _MISSING)
            if item is not _MISSING:
                stored_at, existing = item
                if self._ttl is None or self._clock() - stored_at <= self._ttl:
                    return existing
            shard.entries[key] = (self._clock(), value)
            shard.entries.move_to_end(key)
            while len(shard.entries) > self._per_shard:
                shard.entries.popitem(last=False)
            return value

    def invalidate(self, key: str) -> bool:
        """Remove *key*. Returns True if an entry was present."""
        shard = self._shard(key)
        with shard.lock:
            return shard.entries.pop(key, _MISSING) is not _MISSING

    def clear(self) -> None:
        for shard in self._shards:
            with shard.lock:
                shard.entries.clear()

    def __contains__(self, key: str) -> bool:
        return self.get(key, _MISSING) is not _MISSING  # type: ignore[arg-type]

    def __len__(self) -> int:
        total = 0
        for shard in self._shards:
            with shard.lock:
                total += len(shard.entries)
        return total
