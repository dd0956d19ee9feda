"""TTL-bound, similarity-aware cache for idempotent text-query results."""

from __future__ import annotations

import hashlib
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 1_800.0
DEFAULT_MAX_ENTRIES = 1_000
DEFAULT_SIMILARITY_THRESHOLD = 0.8
_EVICTION_FRACTION = 0.2


@dataclass(slots=True)
class CacheEntry:
    """One cached backend answer."""

    key: str
    query: str
    backend: str
    content: Any
    sources: tuple[str, ...]
    grounded: bool
    timestamp: float
    ttl: float

    def is_expired(self, now: float) -> bool:
        return now - self.timestamp > self.ttl


@dataclass(slots=True)
class CacheLookup:
    """Lookup outcome; `exact=False` marks a soft hit."""

    entry: CacheEntry
    similarity: float
    exact: bool

    @property
    def soft_hit(self) -> bool:
        return not self.exact


@dataclass(slots=True)
class _Counters:
    hits: int = 0
    soft_hits: int = 0
    misses: int = 0


class ResultCache:
    """Query-result cache keyed by normalized text plus backend.

    Lookups try the exact key first, then the most similar non-expired
    entry of the same backend whose token Jaccard similarity reaches the
    threshold. Lookups never modify entries.
    """

    def __init__(
        self,
        *,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        similarity_threshold: float = DEFAULT_SIMILARITY_THRESHOLD,
        enable_metrics: bool = False,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1.")
        self._ttl_seconds = ttl_seconds
        self._max_entries = max_entries
        self._threshold = similarity_threshold
        self._metrics_enabled = enable_metrics
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._counters = _Counters()

    def __len__(self) -> int:
        return len(self._entries)

    @staticmethod
    def normalize_query(query: str) -> str:
        return " ".join(query.lower().split())

    @classmethod
    def make_key(cls, query: str, backend: str) -> str:
        raw = f"{cls.normalize_query(query)}:{backend}"
        return hashlib.sha256(raw.encode("utf-8")).hexdigest()[:16]

    def get(self, query: str, backend: str) -> CacheLookup | None:
        now = self._clock()
        entry = self._entries.get(self.make_key(query, backend))
        if entry is not None and not entry.is_expired(now):
            self._record("hits")
            logger.debug("Result cache hit for %s", backend)
            return CacheLookup(entry=entry, similarity=1.0, exact=True)

        tokens = set(self.normalize_query(query).split())
        best: CacheLookup | None = None
        for candidate in self._entries.values():
            if candidate.backend != backend or candidate.is_expired(now):
                continue
            similarity = jaccard_similarity(tokens, set(candidate.query.split()))
            if similarity < self._threshold:
                continue
            if best is None or similarity > best.similarity:
                best = CacheLookup(entry=candidate, similarity=similarity, exact=False)

        if best is None:
            self._record("misses")
            return None
        self._record("soft_hits")
        logger.debug("Result cache soft hit for %s (similarity %.2f)", backend, best.similarity)
        return best

    def set(
        self,
        query: str,
        backend: str,
        content: Any,
        *,
        sources: tuple[str, ...] = (),
        grounded: bool = False,
        ttl_seconds: float | None = None,
    ) -> CacheEntry:
        key = self.make_key(query, backend)
        if key not in self._entries and len(self._entries) >= self._max_entries:
            self._evict()
        entry = CacheEntry(
            key=key,
            query=self.normalize_query(query),
            backend=backend,
            content=content,
            sources=tuple(sources),
            grounded=grounded,
            timestamp=self._clock(),
            ttl=self._ttl_seconds if ttl_seconds is None else ttl_seconds,
        )
        self._entries[key] = entry
        return entry

    def clear(self) -> None:
        self._entries.clear()
        self._counters = _Counters()

    def cleanup(self) -> int:
        """Drop expired entries and return how many were removed."""

        now = self._clock()
        expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def stats(self) -> dict[str, float | int]:
        now = self._clock()
        counters = self._counters
        lookups = counters.hits + counters.soft_hits + counters.misses
        return {
            "entries": len(self._entries),
            "expired_entries": sum(1 for entry in self._entries.values() if entry.is_expired(now)),
            "hits": counters.hits,
            "soft_hits": counters.soft_hits,
            "misses": counters.misses,
            "hit_rate": (counters.hits + counters.soft_hits) / lookups if lookups else 0.0,
        }

    def _evict(self) -> None:
        count = max(1, int(len(self._entries) * _EVICTION_FRACTION))
        oldest = sorted(self._entries.values(), key=lambda entry: entry.timestamp)[:count]
        for entry in oldest:
            del self._entries[entry.key]
        logger.debug("Result cache evicted %d oldest entries", len(oldest))

    def _record(self, counter: str) -> None:
        if self._metrics_enabled:
            setattr(self._counters, counter, getattr(self._counters, counter) + 1)


def jaccard_similarity(left: set[str], right: set[str]) -> float:
    union = left | right
    if not union:
        return 0.0
    return len(left & right) / len(union)
