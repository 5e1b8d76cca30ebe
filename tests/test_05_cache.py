"""
Tests for the summary result cache.

Tests cover:
- Fingerprint format and legacy key parsing
- Basic get/put and LRU eviction
- TTL expiration with an injected clock
- invalidate_segments() and clear()
- Snapshot persistence (legacy bare-string entries)
"""
import json

from provider_router.routing.cache import (
    CacheEntry,
    ResultCache,
    make_fingerprint,
    parse_fingerprint,
)


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class TestFingerprint:
    def test_compact_json(self):
        key = make_fingerprint("https://a.example", "s1", "de", "gemini_free")
        assert key == '{"url":"https://a.example","segmentId":"s1","language":"de","providerId":"gemini_free"}'

    def test_defaults_for_empty_language_and_provider(self):
        data = json.loads(make_fingerprint("u", 3, "", None))
        assert data["language"] == "en"
        assert data["providerId"] == "auto"

    def test_language_and_provider_distinguish_keys(self):
        base = make_fingerprint("u", "s1", "en", "ollama")
        assert base != make_fingerprint("u", "s1", "fr", "ollama")
        assert base != make_fingerprint("u", "s1", "en", "gemini_free")

    def test_parse_json(self):
        fp = parse_fingerprint(make_fingerprint("u", "s1", "fr", "ollama"))
        assert (fp.url, fp.segment_id, fp.language, fp.provider_id) == ("u", "s1", "fr", "ollama")

    def test_parse_legacy(self):
        fp = parse_fingerprint("https://a.example::s7")
        assert fp.url == "https://a.example"
        assert fp.segment_id == "s7"
        assert fp.language == "en"
        assert fp.provider_id is None

    def test_parse_garbage(self):
        assert parse_fingerprint("plain") is None
        assert parse_fingerprint(None) is None

    def test_same_segment_compares_string_ids(self):
        fp = parse_fingerprint("u::3")
        assert fp.same_segment("u", 3, None)
        assert not fp.same_segment("u", 3, "de")


class TestGetPut:
    def test_put_and_get(self):
        cache = ResultCache(max_items=4)
        cache.put("k", CacheEntry(summary="hello", provider="ollama"))
        entry = cache.get("k")
        assert entry.summary == "hello"
        assert entry.provider == "ollama"
        assert "k" in cache
        assert len(cache) == 1

    def test_put_accepts_plain_string(self):
        cache = ResultCache()
        cache.put("k", "text")
        assert cache.get("k").summary == "text"
        assert cache.get("k").provider is None

    def test_miss_counts(self):
        cache = ResultCache()
        assert cache.get("missing") is None
        assert cache.stats()["misses"] == 1

    def test_uncounted_miss(self):
        cache = ResultCache()
        assert cache.get("missing", count_miss=False) is None
        assert cache.stats()["misses"] == 0

        cache.record_miss()
        assert cache.stats()["misses"] == 1

    def test_lru_eviction(self):
        cache = ResultCache(max_items=2)
        cache.put("a", "A")
        cache.put("b", "B")
        cache.get("a")  # a is now most recent
        cache.put("c", "C")

        assert "a" in cache
        assert "b" not in cache
        assert "c" in cache
        assert cache.stats()["evictions"] == 1

    def test_delete(self):
        cache = ResultCache()
        cache.put("a", "A")
        assert cache.delete("a") is True
        assert cache.delete("a") is False


class TestTTL:
    def test_entry_expires(self):
        clock = FakeClock()
        cache = ResultCache(ttl_seconds=10, clock=clock)
        cache.put("k", CacheEntry(summary="s", created_at=clock()))

        clock.now += 5
        assert cache.get("k") is not None

        clock.now += 6
        assert cache.get("k") is None
        assert cache.stats()["expirations"] == 1
        assert "k" not in cache

    def test_zero_ttl_never_expires(self):
        clock = FakeClock()
        cache = ResultCache(ttl_seconds=0, clock=clock)
        cache.put("k", CacheEntry(summary="s", created_at=clock()))
        clock.now += 10 ** 9
        assert cache.get("k") is not None

    def test_items_skips_expired(self):
        clock = FakeClock()
        cache = ResultCache(ttl_seconds=1, clock=clock)
        cache.put("old", CacheEntry(summary="s", created_at=clock()))
        clock.now += 5
        cache.put("new", CacheEntry(summary="t", created_at=clock()))
        assert [k for k, _ in cache.items()] == ["new"]


class TestInvalidation:
    def test_invalidate_segments(self):
        cache = ResultCache()
        cache.put(make_fingerprint("u", "s1", "en", "ollama"), "one")
        cache.put(make_fingerprint("u", "s2", "en", "ollama"), "two")
        cache.put(make_fingerprint("u", "s2", "fr", "ollama"), "deux")
        cache.put(make_fingerprint("other", "s2", "en", "ollama"), "elsewhere")
        cache.put("u::s2", "legacy")

        removed = cache.invalidate_segments("u", ["s1"])

        assert removed == 3
        assert len(cache) == 2
        assert cache.get(make_fingerprint("u", "s1", "en", "ollama")).summary == "one"
        assert cache.get(make_fingerprint("other", "s2", "en", "ollama")).summary == "elsewhere"

    def test_invalidate_segments_numeric_ids(self):
        cache = ResultCache()
        cache.put(make_fingerprint("u", 1), "one")
        assert cache.invalidate_segments("u", ["1"]) == 0

    def test_clear_returns_count(self):
        cache = ResultCache()
        cache.put("a", "A")
        cache.put("b", "B")
        assert cache.clear() == 2
        assert len(cache) == 0

    def test_invalidate_predicate(self):
        cache = ResultCache()
        cache.put("a", CacheEntry(summary="A", provider="ollama"))
        cache.put("b", CacheEntry(summary="B", provider="gemini_free"))
        assert cache.invalidate(lambda key, entry: entry.provider == "ollama") == 1
        assert "b" in cache


class TestPersistence:
    def test_snapshot_shape(self):
        cache = ResultCache()
        cache.put("k", CacheEntry(summary="s", provider="ollama", model="llama3", tokens=42))
        assert cache.to_json() == {
            "k": {"summary": "s", "provider": "ollama", "model": "llama3", "tokens": 42},
        }

    def test_from_json_accepts_legacy_strings(self):
        data = {
            "u::s1": "legacy summary",
            make_fingerprint("u", "s2", "en", "ollama"): {"summary": "new", "provider": "ollama"},
            "bad": {"no_summary": True},
        }
        cache = ResultCache.from_json(data, max_items=10)
        assert len(cache) == 2
        assert cache.get("u::s1").summary == "legacy summary"
        assert cache.get(make_fingerprint("u", "s2", "en", "ollama")).provider == "ollama"

    def test_from_json_respects_max_items(self):
        data = {f"u::s{i}": f"summary {i}" for i in range(5)}
        cache = ResultCache.from_json(data, max_items=3)
        assert len(cache) == 3
        assert "u::s4" in cache

    def test_from_json_non_mapping(self):
        assert len(ResultCache.from_json(["nope"])) == 0
