"""Resolution cache shared across resolve() calls.

Entries are keyed by ``(variable name, context fingerprint)`` and hold the
fully expanded value of a pure expansion. The cache is the only state shared
between concurrent resolutions, so every operation runs under one re-entrant
lock.
"""

import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Set, Tuple

from requestkit.logging import get_logger

from .types import ResolutionContext, VariableScope

logger = get_logger(__name__)

CacheKey = Tuple[str, str]


@dataclass
class CacheEntry:
    """A cached expansion.

    ``height`` is the number of nesting levels beneath the variable, so a hit
    can be checked against the same depth bound as a fresh expansion.
    """

    name: str
    fingerprint: str
    value: str
    scope: Optional[VariableScope] = None
    owner_id: Optional[str] = None
    height: int = 0
    created_at: float = 0.0
    hit_count: int = 0


class ResolutionCache:
    """Thread-safe LRU cache of pure variable expansions with optional TTL."""

    def __init__(
        self,
        max_size: int = 1000,
        ttl_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_size < 1:
            raise ValueError(f"max_size must be at least 1, got {max_size}")
        if ttl_seconds is not None and ttl_seconds <= 0:
            raise ValueError(f"ttl_seconds must be positive, got {ttl_seconds}")

        self.max_size = max_size
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: "OrderedDict[CacheKey, CacheEntry]" = OrderedDict()
        self._keys_by_name: Dict[str, Set[CacheKey]] = {}
        self._lock = threading.RLock()
        self._hits = 0
        self._misses = 0
        self._evictions = 0
        self._invalidations = 0

    def get(self, name: str, context: ResolutionContext) -> Optional[str]:
        """Cached value for ``name`` in ``context``, or None on a miss."""
        entry = self.get_entry(name, context)
        return entry.value if entry is not None else None

    def get_entry(self, name: str, context: ResolutionContext) -> Optional[CacheEntry]:
        key = (name, context.fingerprint)
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None and self._expired(entry):
                self._remove(key)
                entry = None

            if entry is None:
                self._misses += 1
                return None

            self._entries.move_to_end(key)
            entry.hit_count += 1
            self._hits += 1
            return entry

    def put(
        self,
        name: str,
        context: ResolutionContext,
        value: str,
        scope: Optional[VariableScope] = None,
        owner_id: Optional[str] = None,
        height: int = 0,
    ) -> None:
        key = (name, context.fingerprint)
        with self._lock:
            if key in self._entries:
                self._remove(key)
            self._entries[key] = CacheEntry(
                name=name,
                fingerprint=context.fingerprint,
                value=value,
                scope=scope,
                owner_id=owner_id,
                height=height,
                created_at=self._clock(),
            )
            self._keys_by_name.setdefault(name, set()).add(key)

            while len(self._entries) > self.max_size:
                oldest = next(iter(self._entries))
                self._remove(oldest)
                self._evictions += 1
                logger.debug(f"Evicted cache entry for '{oldest[0]}'")

    def invalidate(
        self,
        name: str,
        scope: Optional[VariableScope] = None,
        owner_id: Optional[str] = None,
    ) -> int:
        """Drop every entry for ``name`` whatever its context fingerprint.

        ``scope`` and ``owner_id`` identify the write that triggered the
        invalidation; any context holding the name may now be stale, so they
        do not narrow what is removed.

        Returns:
            Number of entries removed
        """
        with self._lock:
            keys = list(self._keys_by_name.get(name, ()))
            for key in keys:
                self._remove(key)
            self._invalidations += 1

        owner = f" ({scope.value if scope else 'any'}:{owner_id})" if owner_id else ""
        logger.debug(f"Invalidated {len(keys)} cache entries for '{name}'{owner}")
        return len(keys)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._keys_by_name.clear()
        logger.debug("Resolution cache cleared")

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "hits": self._hits,
                "misses": self._misses,
                "evictions": self._evictions,
                "invalidations": self._invalidations,
                "size": len(self._entries),
                "max_size": self.max_size,
                "ttl_seconds": self.ttl_seconds,
            }

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _expired(self, entry: CacheEntry) -> bool:
        if self.ttl_seconds is None:
            return False
        return self._clock() - entry.created_at >= self.ttl_seconds

    def _remove(self, key: CacheKey) -> None:
        self._entries.pop(key, None)
        keys = self._keys_by_name.get(key[0])
        if keys is not None:
            keys.discard(key)
            if not keys:
                del self._keys_by_name[key[0]]
