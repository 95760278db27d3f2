"""
Recommendation cache and rotation set.

Both live in a session's ``SessionCache``. Entries are always written as
one whole JSON value; a stored value that fails to decode is a miss.
"""
from __future__ import annotations

import asyncio
import hashlib
import json
import logging
import time
from collections import Counter
from typing import Any, Awaitable, Callable, Sequence

from pydantic import ValidationError

from ..sources.base import SessionCache
from .config import DEFAULT_DISCOVERY_CONFIG
from .merge import identity_key
from .models import CacheEntry, Candidate, Place, ResolvedLocation

logger = logging.getLogger(__name__)

ROTATION_KEY = "suggested_seen_ids"


def make_key(request_dict: dict) -> str:
    normalized = json.dumps(request_dict, sort_keys=True, default=str)
    return hashlib.sha256(normalized.encode()).hexdigest()[:16]


def discover_key(
    origin_mode: str | None,
    location: ResolvedLocation | None,
    radius_km: float,
    open_now: bool,
    limit: int,
    tag_affinities: Sequence[str] = (),
) -> str:
    """One key per (origin mode, ~110 m location bucket, radius, open-now, limit, affinities)."""
    if location is None:
        lat_bucket = lng_bucket = "none"
    else:
        lat_bucket = f"{location.lat:.3f}"
        lng_bucket = f"{location.lng:.3f}"
    return (
        f"discover:{origin_mode or 'none'}:{lat_bucket}:{lng_bucket}"
        f":{radius_km:g}:{int(bool(open_now))}:{limit}"
        f":{make_key({'affinities': list(tag_affinities)})}"
    )


class RecommendationCache:
    def __init__(
        self,
        store: SessionCache,
        freshness_window_s: float = DEFAULT_DISCOVERY_CONFIG.freshness_window_s,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._freshness_window_s = freshness_window_s
        self._clock = clock
        # Locks live only while some call holds or waits on them
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: Counter[str] = Counter()
        self._keys: set[str] = set()
        self._hits = 0
        self._misses = 0

    def _lock_for(self, key: str) -> asyncio.Lock:
        self._lock_users[key] += 1
        return self._locks.setdefault(key, asyncio.Lock())

    def _release_lock(self, key: str) -> None:
        self._lock_users[key] -= 1
        if self._lock_users[key] <= 0:
            del self._lock_users[key]
            self._locks.pop(key, None)

    def _read(self, key: str) -> CacheEntry | None:
        try:
            raw = self._store.get(key)
            if raw is None:
                return None
            return CacheEntry.model_validate(raw)
        except (ValidationError, ValueError, TypeError, KeyError):
            logger.warning("Discarding malformed cache entry %s", key, exc_info=True)
            return None

    def _write(self, key: str, items: Sequence[Candidate]) -> None:
        entry = CacheEntry(key=key, items=list(items), stored_at=self._clock())
        self._store.set(key, entry.model_dump(mode="json"))
        self._keys.add(key)

    async def get_or_compute(
        self,
        key: str,
        compute_fn: Callable[[], Awaitable[Sequence[Candidate]]],
        freshness_window: float | None = None,
        force_refresh: bool = False,
        should_store: Callable[[], bool] | None = None,
    ) -> tuple[list[Candidate], bool]:
        """Return ``(items, cache_hit)``.

        A fresh entry is returned without calling ``compute_fn``. Otherwise
        ``compute_fn`` runs and its result replaces the entry, unless
        ``should_store`` says the caller no longer owns the result.
        Concurrent calls for one key are serialised.
        """
        window = self._freshness_window_s if freshness_window is None else freshness_window

        lock = self._lock_for(key)
        try:
            async with lock:
                if not force_refresh:
                    entry = self._read(key)
                    if entry is not None and self._clock() - entry.stored_at < window:
                        self._hits += 1
                        logger.debug("Cache HIT %s", key)
                        return list(entry.items), True

                self._misses += 1
                logger.debug("Cache MISS %s (force_refresh=%s)", key, force_refresh)
                items = list(await compute_fn())
                if should_store is None or should_store():
                    self._write(key, items)
                return items, False
        finally:
            self._release_lock(key)

    def invalidate(self, key: str) -> None:
        self._store.delete(key)
        self._keys.discard(key)

    def stats(self) -> dict[str, Any]:
        total = self._hits + self._misses
        return {
            "size": len(self._keys),
            "hits": self._hits,
            "misses": self._misses,
            "hit_rate": round(self._hits / total * 100, 1) if total > 0 else 0.0,
        }


class RotationSet:
    """Bounded, oldest-first history of surfaced candidate ids."""

    def __init__(
        self,
        store: SessionCache,
        cap: int = DEFAULT_DISCOVERY_CONFIG.rotation_cap,
    ) -> None:
        self._store = store
        self._cap = cap
        self._lock = asyncio.Lock()

    def ids(self) -> list[str]:
        try:
            raw = self._store.get(ROTATION_KEY)
        except ValueError:
            logger.warning("Discarding malformed rotation set", exc_info=True)
            return []
        if not isinstance(raw, list):
            return []
        return [str(i) for i in raw]

    def __contains__(self, candidate_id: str) -> bool:
        return candidate_id in set(self.ids())

    def __len__(self) -> int:
        return len(self.ids())

    async def add(self, candidate_ids: Sequence[str]) -> None:
        async with self._lock:
            current = self.ids()
            for cid in candidate_ids:
                if not cid:
                    continue
                if cid in current:
                    current.remove(cid)
                current.append(cid)
            if len(current) > self._cap:
                current = current[-self._cap:]
            self._store.set(ROTATION_KEY, current)


def select_fresh(
    candidates: Sequence[Place],
    seen_ids: Sequence[str],
    count: int,
    min_unseen: int = DEFAULT_DISCOVERY_CONFIG.min_unseen,
) -> list[Place]:
    """Prefer candidates not surfaced before, without ever starving the result.

    With fewer than ``min_unseen`` unseen candidates the full set is used.
    """
    seen = set(seen_ids)
    unseen = [c for c in candidates if identity_key(c) not in seen]
    pool = unseen if len(unseen) >= min_unseen else list(candidates)
    return pool[:count]
