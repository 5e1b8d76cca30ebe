"""
Summary Result Cache.

Maps a fingerprint of (url, segment id, language, provider id) to a
previously generated summary so the same segment is never paid for twice.
Language and provider are part of the key: one segment can hold a
summary per language and per provider at the same time.

Fingerprint Format:
    A compact JSON object string, stable across restarts:

        {"url":"https://example.com","segmentId":"s1","language":"en","providerId":"gemini_free"}

    Legacy "url::segmentId" keys are still understood by parse_fingerprint().

Features:
    - LRU eviction at max_items
    - Optional TTL (0 = entries live until invalidated)
    - Thread-safe operations
    - Hit/miss/expiration statistics
    - JSON snapshot for persistence (legacy bare-string entries accepted)

Invalidation:
    - invalidate_segments(url, live_ids): drop entries for segments that
      no longer exist on the page
    - clear(): used when the active provider changes
    - invalidate(predicate): anything else

Example:
    >>> cache = ResultCache(max_items=100)
    >>> key = make_fingerprint("https://example.com", "s1", "en", "gemini_free")
    >>> cache.put(key, CacheEntry(summary="Short summary", provider="gemini_free"))
    >>> cache.get(key).summary
    'Short summary'
"""
from __future__ import annotations

import json
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from provider_router.core.config import Defaults
from provider_router.core.logging import debug, get_logger, info, verbose
from provider_router.core.metrics import metrics
from provider_router.utils.timeit import timeit

_LOG = get_logger("provider-router.cache")

DEFAULT_LANGUAGE = "en"
DEFAULT_CACHE_PROVIDER = "auto"


@dataclass
class CacheEntry:
    """
    One cached summary.

    Attributes:
        summary: Generated summary text.
        provider: Canonical id of the provider that produced it (None for
            legacy bare-string entries).
        model: Model reported by the provider.
        tokens: Total tokens the generation was charged.
        created_at: Unix timestamp when the entry was cached.
    """
    summary: str
    provider: Optional[str] = None
    model: Optional[str] = None
    tokens: Optional[int] = None
    created_at: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "summary": self.summary,
            "provider": self.provider,
            "model": self.model,
            "tokens": self.tokens,
        }

    @classmethod
    def from_value(cls, value: Any) -> Optional["CacheEntry"]:
        """Build from a persisted value: a dict entry or a legacy bare string."""
        if isinstance(value, str):
            return cls(summary=value)
        if isinstance(value, Mapping) and isinstance(value.get("summary"), str):
            tokens = value.get("tokens")
            return cls(
                summary=value["summary"],
                provider=value.get("provider") if isinstance(value.get("provider"), str) else None,
                model=value.get("model") if isinstance(value.get("model"), str) else None,
                tokens=tokens if isinstance(tokens, int) and not isinstance(tokens, bool) else None,
            )
        return None


@dataclass(frozen=True)
class Fingerprint:
    url: Optional[str]
    segment_id: Any
    language: str = DEFAULT_LANGUAGE
    provider_id: Optional[str] = None

    def same_segment(self, url: Optional[str], segment_id: Any, language: Optional[str]) -> bool:
        return (
            self.url == url
            and _segment_key(self.segment_id) == _segment_key(segment_id)
            and self.language == (language or DEFAULT_LANGUAGE)
        )


def _segment_key(segment_id: Any) -> Optional[str]:
    # Legacy keys carry segment ids as strings; compare on the string form
    return None if segment_id is None else str(segment_id)


def make_fingerprint(
    url: Optional[str],
    segment_id: Any,
    language: Optional[str] = DEFAULT_LANGUAGE,
    provider_id: Optional[str] = DEFAULT_CACHE_PROVIDER,
) -> str:
    """Serialise a fingerprint; empty language/provider fall back to defaults."""
    return json.dumps(
        {
            "url": url,
            "segmentId": segment_id,
            "language": language or DEFAULT_LANGUAGE,
            "providerId": provider_id or DEFAULT_CACHE_PROVIDER,
        },
        separators=(",", ":"),
        ensure_ascii=False,
    )


def parse_fingerprint(key: Any) -> Optional[Fingerprint]:
    """Parse a JSON fingerprint or a legacy "url::segment" key; None otherwise."""
    if not isinstance(key, str):
        return None
    try:
        parsed = json.loads(key)
    except ValueError:
        parsed = None
    if isinstance(parsed, dict):
        return Fingerprint(
            url=parsed.get("url"),
            segment_id=parsed.get("segmentId"),
            language=parsed.get("language") or DEFAULT_LANGUAGE,
            provider_id=parsed.get("providerId"),
        )

    parts = key.split("::")
    if len(parts) >= 2:
        return Fingerprint(url=parts[0], segment_id=parts[1])
    return None


CachePredicate = Callable[[str, CacheEntry], bool]


class ResultCache:
    """
    Thread-safe LRU summary cache with TTL support.

    Attributes:
        max_items: Maximum number of entries kept.
        ttl_seconds: Entry lifetime in seconds (0 = no TTL).
    """

    def __init__(
        self,
        max_items: int = Defaults.CACHE_MAX_ITEMS,
        ttl_seconds: int = Defaults.CACHE_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self.max_items = int(max_items)
        self.ttl_seconds = int(ttl_seconds)
        self._clock = clock

        # OrderedDict keeps LRU order: oldest first
        self._d: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._lock = threading.Lock()

        self._hits = 0
        self._misses = 0
        self._expirations = 0
        self._evictions = 0

    def _expired(self, entry: CacheEntry) -> bool:
        return self.ttl_seconds > 0 and self._clock() - entry.created_at > self.ttl_seconds

    def get(self, fingerprint: str, count_miss: bool = True) -> Optional[CacheEntry]:
        """
        Return the entry and refresh its LRU position; expired entries are dropped.

        Callers probing several fingerprints for one lookup pass
        count_miss=False and call record_miss() once if nothing matched.
        """
        with timeit("cache_get") as t:
            with self._lock:
                entry = self._d.get(fingerprint)
                if entry is not None and self._expired(entry):
                    del self._d[fingerprint]
                    self._expirations += 1
                    entry = None
                    verbose(_LOG, "cache_expired", key=fingerprint[:48])
                if entry is None:
                    if count_miss:
                        self._misses += 1
                else:
                    self._d.move_to_end(fingerprint)
                    self._hits += 1

        if entry is not None:
            debug(_LOG, "cache_hit", key=fingerprint[:48], seconds=round(t.elapsed, 5))
        return entry

    def record_miss(self) -> None:
        with self._lock:
            self._misses += 1

    def put(self, fingerprint: str, entry: Union[CacheEntry, str]) -> None:
        """Store an entry, evicting the least recently used ones past max_items."""
        if isinstance(entry, str):
            entry = CacheEntry(summary=entry)
        with self._lock:
            if not entry.created_at:
                entry.created_at = self._clock()
            self._d[fingerprint] = entry
            self._d.move_to_end(fingerprint)
            evicted = 0
            while len(self._d) > self.max_items:
                self._d.popitem(last=False)
                evicted += 1
            self._evictions += evicted
        if evicted:
            metrics.record_cache_eviction("capacity", evicted)
        debug(_LOG, "cache_set", key=fingerprint[:48], provider=entry.provider)

    def delete(self, fingerprint: str) -> bool:
        with self._lock:
            return self._d.pop(fingerprint, None) is not None

    def items(self) -> List[Tuple[str, CacheEntry]]:
        """Snapshot of live entries, oldest first. Does not touch LRU order or stats."""
        with self._lock:
            return [(k, e) for k, e in self._d.items() if not self._expired(e)]

    def invalidate(self, predicate: CachePredicate) -> int:
        """Delete every entry for which predicate(key, entry) is true."""
        with self._lock:
            doomed = [k for k, e in self._d.items() if predicate(k, e)]
            for key in doomed:
                del self._d[key]
        return len(doomed)

    def invalidate_segments(self, url: Optional[str], live_segment_ids: Iterable[Any]) -> int:
        """Drop entries for `url` whose segment id is not in `live_segment_ids`."""
        live = {_segment_key(s) for s in live_segment_ids}

        def gone(key: str, entry: CacheEntry) -> bool:
            parsed = parse_fingerprint(key)
            return parsed is not None and parsed.url == url and _segment_key(parsed.segment_id) not in live

        removed = self.invalidate(gone)
        metrics.record_cache_eviction("segment", removed)
        info(_LOG, "segments_invalidated", url=url, live=len(live), removed=removed)
        return removed

    def clear(self) -> int:
        with self._lock:
            count = len(self._d)
            self._d.clear()
        return count

    def stats(self) -> Dict[str, int]:
        with self._lock:
            return {
                "size": len(self._d),
                "max_items": self.max_items,
                "hits": self._hits,
                "misses": self._misses,
                "expirations": self._expirations,
                "evictions": self._evictions,
            }

    def __len__(self) -> int:
        with self._lock:
            return len(self._d)

    def __contains__(self, fingerprint: object) -> bool:
        with self._lock:
            return fingerprint in self._d

    # ─────────────────────────────────────────────────────────────────────────
    # Persistence
    # ─────────────────────────────────────────────────────────────────────────

    def to_json(self) -> Dict[str, Dict[str, Any]]:
        with self._lock:
            return {k: e.to_dict() for k, e in self._d.items()}

    @classmethod
    def from_json(
        cls,
        data: Any,
        max_items: int = Defaults.CACHE_MAX_ITEMS,
        ttl_seconds: int = Defaults.CACHE_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> "ResultCache":
        """Restore a snapshot; unreadable entries are skipped."""
        cache = cls(max_items=max_items, ttl_seconds=ttl_seconds, clock=clock)
        if not isinstance(data, Mapping):
            return cache
        skipped = 0
        for key, value in data.items():
            entry = CacheEntry.from_value(value)
            if entry is None or not isinstance(key, str):
                skipped += 1
                continue
            entry.created_at = clock()
            cache.put(key, entry)
        verbose(_LOG, "cache_restored", entries=len(cache), skipped=skipped)
        return cache
