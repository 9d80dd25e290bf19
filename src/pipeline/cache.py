"""
Result cache for the planning pipeline.

An in-memory LRU cache with per-entry TTL and hit/miss statistics.
There is no global instance: callers create a ``ResultCache`` and pass
it to every pipeline that should share it.  A lock guards all state, so
one instance may serve several threads.

Keys come from ``fingerprint``, a hash of the rounded planning inputs,
so requests that differ only by float noise share an entry.  Stored
plans are deep copies, so callers never mutate a cached entry.
"""

from __future__ import annotations

import hashlib
import json
import threading
import time
from collections import OrderedDict
from typing import Any

from loguru import logger
from pydantic import BaseModel

from core.contracts import CHANNELS, Assumptions, ChannelPriors


class ResultCache:
    """
    Thread-safe in-memory LRU cache with TTL.

    Example:
        >>> cache = ResultCache(max_size=128, ttl_seconds=300)
        >>> cache.set("k", {"p50": 12.0})
        >>> cache.get("k")
        {'p50': 12.0}
    """

    def __init__(self, max_size: int = 256, ttl_seconds: float = 300):
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        self._max_size = max_size
        self._ttl = ttl_seconds
        self._cache: OrderedDict[str, tuple[Any, float]] = OrderedDict()
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    def get(self, key: str) -> Any | None:
        with self._lock:
            if key in self._cache:
                value, expiry = self._cache[key]
                if expiry > time.monotonic():
                    self._hits += 1
                    self._cache.move_to_end(key)
                    return value
                del self._cache[key]
            self._misses += 1
            return None

    def set(self, key: str, value: Any, ttl: float | None = None) -> None:
        ttl = self._ttl if ttl is None else ttl
        if ttl <= 0:
            raise ValueError("ttl must be positive")
        with self._lock:
            if key in self._cache:
                self._cache.move_to_end(key)
            self._cache[key] = (value, time.monotonic() + ttl)
            if len(self._cache) > self._max_size:
                evicted, _ = self._cache.popitem(last=False)
                self._evictions += 1
                logger.debug(f"Cache full; evicted {evicted[:12]}")

    def delete(self, key: str) -> None:
        with self._lock:
            self._cache.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._cache.clear()
            self._hits = 0
            self._misses = 0
            self._evictions = 0

    def purge_expired(self) -> int:
        """Drop expired entries; returns how many were removed."""
        now = time.monotonic()
        with self._lock:
            stale = [k for k, (_, expiry) in self._cache.items() if expiry <= now]
            for k in stale:
                del self._cache[k]
        return len(stale)

    def __len__(self) -> int:
        with self._lock:
            return len(self._cache)

    def stats(self) -> dict[str, Any]:
        with self._lock:
            total = self._hits + self._misses
            return {
                "backend": "in_memory",
                "entries": len(self._cache),
                "max_size": self._max_size,
                "ttl_seconds": self._ttl,
                "hits": self._hits,
                "misses": self._misses,
                "evictions": self._evictions,
                "hit_rate": round(self._hits / total, 4) if total > 0 else 0,
            }


def config_digest(config: BaseModel) -> str:
    """Hash of every setting that shapes a plan; the ``cache`` section is left out."""
    raw = json.dumps(config.model_dump(mode="json", exclude={"cache"}), sort_keys=True)
    return hashlib.sha256(raw.encode()).hexdigest()


def fingerprint(
    budget: float,
    priors: ChannelPriors,
    assumptions: Assumptions,
    runs: int,
    **extra: Any,
) -> str:
    """
    Deterministic cache key for a planning request.

    Budget is rounded to whole units, CPM to 2 decimals, rates and
    bound percentages to 4 decimals.
    """
    payload = {
        "budget": round(float(budget)),
        "priors": {
            ch.value: {
                "cpm": [round(v, 2) for v in priors[ch].cpm],
                "ctr": [round(v, 4) for v in priors[ch].ctr],
                "cvr": [round(v, 4) for v in priors[ch].cvr],
            }
            for ch in CHANNELS
        },
        "assumptions": {
            "goal": assumptions.goal.value,
            "avg_deal_size": assumptions.avg_deal_size,
            "target_cac": assumptions.target_cac,
            "min_pct": {ch.value: round(assumptions.min_pct[ch], 4) for ch in CHANNELS if ch in assumptions.min_pct},
            "max_pct": {ch.value: round(assumptions.max_pct[ch], 4) for ch in CHANNELS if ch in assumptions.max_pct},
        },
        "runs": int(runs),
        "extra": extra,
    }
    raw = json.dumps(payload, sort_keys=True, default=str)
    return hashlib.sha256(raw.encode()).hexdigest()
