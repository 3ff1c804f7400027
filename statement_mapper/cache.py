"""
In-memory TTL cache of successful mapping results.

Keys are fingerprints: the symbol plus a SHA-256 of the canonical JSON of
the payload and the request options, so a changed payload never hits a
stale entry for the same symbol.
"""

from __future__ import annotations

import hashlib
import json
import math
import threading
import time
from collections import OrderedDict
from typing import Any, Callable, Dict, Mapping, Optional

from statement_mapper.config import CacheConfig
from statement_mapper.logging_setup import get_logger
from statement_mapper.schema import CacheEntry, CompanyFinancialData

logger = get_logger("cache")


def fingerprint(
    symbol: Optional[str],
    payload: Any,
    sector: Optional[str] = None,
    industry: Optional[str] = None,
    force_company_type: Optional[str] = None,
) -> str:
    """Cache key for one request.

    Raises ``TypeError`` or ``ValueError`` if the payload cannot be
    rendered as canonical JSON.
    """
    if isinstance(payload, Mapping):
        payload = {str(k): v for k, v in payload.items()}
    body = json.dumps(
        {
            "payload": payload,
            "sector": sector,
            "industry": industry,
            "force": force_company_type,
        },
        sort_keys=True,
        default=str,
    )
    digest = hashlib.sha256(body.encode("utf-8")).hexdigest()
    return f"{symbol or 'UNKNOWN'}:{digest}"


class ResultCache:
    """Thread-safe insertion-ordered cache with TTL and batch eviction.

    When full, expired entries are purged first; if that frees nothing,
    the oldest ``evict_fraction`` of entries (at least one) are dropped.
    """

    def __init__(
        self,
        config: Optional[CacheConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._config = config or CacheConfig()
        self._clock = clock
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    @property
    def enabled(self) -> bool:
        return self._config.enabled

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _expired(self, entry: CacheEntry, now: float) -> bool:
        return now - entry.timestamp >= self._config.ttl_seconds

    def get(self, key: str) -> Optional[CompanyFinancialData]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None
            if self._expired(entry, self._clock()):
                del self._entries[key]
                self._misses += 1
                logger.debug("Cache entry expired: %s", key)
                return None
            self._hits += 1
            return entry.data

    def put(self, key: str, data: CompanyFinancialData) -> None:
        with self._lock:
            now = self._clock()
            if key not in self._entries and len(self._entries) >= self._config.max_entries:
                self._make_room(now)
            self._entries.pop(key, None)
            self._entries[key] = CacheEntry(data=data, timestamp=now)

    def _make_room(self, now: float) -> None:
        expired = [k for k, e in self._entries.items() if self._expired(e, now)]
        for key in expired:
            del self._entries[key]
        if len(self._entries) < self._config.max_entries:
            self._evictions += len(expired)
            return

        count = min(
            len(self._entries),
            max(1, math.ceil(len(self._entries) * self._config.evict_fraction)),
        )
        for _ in range(count):
            self._entries.popitem(last=False)
        self._evictions += len(expired) + count
        logger.info("Cache full: evicted %d oldest entries", count)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._hits = self._misses = self._evictions = 0

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            now = self._clock()
            lookups = self._hits + self._misses
            return {
                "enabled": self._config.enabled,
                "size": len(self._entries),
                "max_entries": self._config.max_entries,
                "ttl_seconds": self._config.ttl_seconds,
                "expired": sum(1 for e in self._entries.values() if self._expired(e, now)),
                "hits": self._hits,
                "misses": self._misses,
                "evictions": self._evictions,
                "hit_rate": round(self._hits / lookups, 4) if lookups else 0.0,
                "keys": [k.split(":", 1)[0] for k in self._entries],
            }
