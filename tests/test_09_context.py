"""
Tests for RouterContext: cached summaries, speech, transcription,
persistence and API keys.

Tests cover:
- Cache hits skip the router; language and provider are part of the key
- Explicit provider switch clears the cache
- Stale entries (provider mismatch) are evicted; legacy keys still hit
- Dry-run results are neither cached nor persisted
- segments_updated() drops removed segments
- Chunked synthesis: order, charge, truncation, budget and key errors
- Transcription flat charge
- State shared across contexts through the blob store
- Masked API key details
"""
import asyncio
import base64

import pytest

from provider_router.core.errors import BudgetExceededError, ErrorCode, MissingApiKeyError, MissingInputError
from provider_router.core.storage import MemoryStore
from provider_router.routing.cache import CacheEntry, make_fingerprint
from provider_router.routing.router import DRY_RUN_TEXT
from provider_router.speech.planner import SpeechCapability

URL = "https://example.com/article"
SEGMENT = {"id": "s1", "text": "one two three four five six seven eight nine ten"}


class TestSummaries:
    def test_miss_then_hit(self, book, make_context):
        book.succeed("ollama", "cached summary")
        context = make_context()

        async def scenario():
            first = await context.summarise(URL, [SEGMENT])
            second = await context.summarise(URL, [SEGMENT])
            return first, second

        first, second = asyncio.run(scenario())

        assert first["summaries"] == [{"id": "s1", "summary": "cached summary"}]
        assert second["summaries"] == first["summaries"]
        assert book.calls == ["ollama"]
        assert context.cache.get(make_fingerprint(URL, "s1", "en", "ollama")).provider == "ollama"
        assert first["usage"]["cumulativeTotalTokens"] == 15

    def test_language_is_part_of_the_key(self, book, make_context):
        book.succeed("ollama", "summary")
        context = make_context()

        async def scenario():
            await context.get_summary(URL, SEGMENT, "en")
            await context.get_summary(URL, SEGMENT, "de")
            await context.get_summary(URL, SEGMENT, "en")

        asyncio.run(scenario())
        assert book.calls == ["ollama", "ollama"]

    def test_explicit_provider_switch_clears_cache(self, book, make_context):
        book.succeed("ollama", "local")
        book.succeed("gemini_free", "gemini")
        context = make_context()

        async def scenario():
            await context.summarise(URL, [SEGMENT])
            return await context.summarise(URL, [SEGMENT], provider="gemini_free")

        result = asyncio.run(scenario())

        assert result["summaries"][0]["summary"] == "gemini"
        assert context.active_provider == "gemini_free"
        assert book.calls == ["ollama", "gemini_free"]
        assert len(context.cache) == 1

    def test_set_active_provider(self, book, make_context):
        book.succeed("ollama")
        context = make_context()

        async def scenario():
            await context.summarise(URL, [SEGMENT])
            return await context.set_active_provider("ollama")

        result = asyncio.run(scenario())

        assert result == {"provider": "ollama", "requiresApiKey": False}
        assert len(context.cache) == 0
        assert asyncio.run(context.store.get("activeProvider")) == "ollama"

    def test_same_provider_keeps_cache(self, book, make_context):
        book.succeed("ollama")
        context = make_context()

        async def scenario():
            await context.set_active_provider("ollama")
            await context.summarise(URL, [SEGMENT])
            await context.set_active_provider("ollama")

        asyncio.run(scenario())
        assert len(context.cache) == 1

    def test_stale_entry_evicted(self, book, make_context):
        book.succeed("ollama", "fresh")
        context = make_context()

        async def scenario():
            await context.initialise()
            key = make_fingerprint(URL, "s1", "en", "ollama")
            context.cache.put(key, CacheEntry(summary="wrong owner", provider="gemini_free"))
            return await context.get_summary(URL, SEGMENT)

        assert asyncio.run(scenario()) == "fresh"
        assert book.calls == ["ollama"]

    def test_legacy_entry_hits(self, book, make_context):
        context = make_context()

        async def scenario():
            await context.initialise()
            context.cache.put(f"{URL}::s1", "legacy summary")
            return await context.get_summary(URL, SEGMENT)

        assert asyncio.run(scenario()) == "legacy summary"
        assert book.calls == []
        assert context.cache.stats()["hits"] == 1
        assert context.cache.stats()["misses"] == 0

    def test_one_stat_per_lookup(self, book, make_context):
        book.succeed("ollama", "summary")
        context = make_context()

        async def scenario():
            await context.summarise(URL, [SEGMENT])
            after_miss = context.cache.stats()
            # Hit on the second candidate after probing the active provider
            await context.summarise(URL, [SEGMENT])
            return after_miss, context.cache.stats()

        after_miss, after_hit = asyncio.run(scenario())

        assert (after_miss["hits"], after_miss["misses"]) == (0, 1)
        assert (after_hit["hits"], after_hit["misses"]) == (1, 1)

    def test_dry_run_not_cached(self, book, make_context):
        context = make_context({"routing": {"dry_run": True}})

        result = asyncio.run(context.summarise(URL, [SEGMENT]))

        assert result["summaries"][0]["summary"] == DRY_RUN_TEXT
        assert len(context.cache) == 0
        assert asyncio.run(context.store.get("usage")) is None

    def test_empty_segment_text(self, book, make_context):
        context = make_context()
        with pytest.raises(MissingInputError):
            asyncio.run(context.summarise(URL, [{"id": "s1", "text": ""}]))

    def test_segments_updated(self, book, make_context):
        book.succeed("ollama")
        context = make_context()
        segments = [{"id": "s1", "text": "first text"}, {"id": "s2", "text": "second text"}]

        async def scenario():
            await context.summarise(URL, segments)
            return await context.segments_updated(URL, [{"id": "s1"}])

        assert asyncio.run(scenario()) == 1
        assert len(context.cache) == 1


class TestPersistence:
    def test_state_survives_new_context(self, book, make_context):
        store = MemoryStore()
        book.succeed("ollama", "persisted")

        first = make_context(store=store)
        asyncio.run(first.summarise(URL, [SEGMENT]))

        second = make_context(store=store)
        result = asyncio.run(second.summarise(URL, [SEGMENT]))

        assert result["summaries"][0]["summary"] == "persisted"
        assert book.calls == ["ollama"]
        assert result["usage"]["cumulativeTotalTokens"] == 15

    def test_active_provider_restored(self, book, make_context):
        store = MemoryStore()
        asyncio.run(make_context(store=store).set_active_provider("gemini_free"))

        context = make_context(store=store)
        asyncio.run(context.initialise())
        assert context.active_provider == "gemini_free"

    def test_reset_usage(self, book, make_context):
        book.succeed("ollama")
        context = make_context()

        async def scenario():
            await context.summarise(URL, [SEGMENT])
            return await context.reset_usage()

        usage = asyncio.run(scenario())
        assert usage["cumulativeTotalTokens"] == 0
        assert usage["limitTokens"] == 1_200_000
        assert asyncio.run(context.store.get("usage"))["cumulativeTotalTokens"] == 0


class TestSynthesise:
    TEXT = "One two. Three four. Five six."

    def test_chunks_in_order(self, book, make_context):
        book.capability = SpeechCapability(max_input_tokens=5)
        context = make_context()

        outcome = asyncio.run(context.synthesise(self.TEXT))

        assert base64.b64decode(outcome.audio_base64) == b"<0><1><2>"
        assert outcome.provider == "openai_paid"
        assert [(c[1], c[2], c[3]) for c in book.speech_calls] == [
            ("One two.", 0, 3),
            ("Three four.", 1, 3),
            ("Five six.", 2, 3),
        ]
        # No flat price: charged the delivered tokens
        assert outcome.tokens_charged == 9
        entry = context.tracker.requests[-1]
        assert entry["metadata"]["type"] == "tts"
        assert entry["metadata"]["chunks"] == 3

    def test_flat_charge_per_chunk(self, book, make_context):
        book.capability = SpeechCapability(max_input_tokens=5)
        book.synth_flat_tokens = 2400
        context = make_context()

        outcome = asyncio.run(context.synthesise(self.TEXT))

        assert outcome.tokens_charged == 7200
        assert outcome.usage["cumulativeTotalTokens"] == 7200

    def test_ceiling_truncates(self, book, make_context):
        context = make_context({"speech": {"max_total_tokens": 5}})

        outcome = asyncio.run(context.synthesise("First sentence. Second sentence here."))

        assert outcome.plan.truncated is True
        assert outcome.plan.texts == ["First sentence."]
        assert outcome.plan.omitted_token_count == 4
        assert outcome.to_dict()["plan"]["truncated"] is True

    def test_budget_exceeded(self, book, make_context):
        context = make_context({"routing": {"max_monthly_tokens": 5}})

        with pytest.raises(BudgetExceededError) as info:
            asyncio.run(context.synthesise(self.TEXT))

        assert info.value.message == "Token limit reached for speech synthesis."
        assert book.speech_calls == []

    def test_missing_key(self, book, make_context):
        context = make_context(env={})

        with pytest.raises(MissingApiKeyError) as info:
            asyncio.run(context.synthesise(self.TEXT))

        assert info.value.code == ErrorCode.MISSING_API_KEY
        assert info.value.provider == "openai_paid"

    def test_empty_text(self, book, make_context):
        with pytest.raises(MissingInputError, match="synthesise requires text"):
            asyncio.run(make_context().synthesise("   "))


class TestTranscribe:
    def test_default_flat_charge(self, book, make_context):
        context = make_context()

        result = asyncio.run(context.transcribe("aGVsbG8="))

        assert result["text"] == "transcribed text"
        assert result["provider"] == "openai_paid"
        assert result["usage"]["cumulativeTotalTokens"] == 1200
        assert book.transcriptions == ["aGVsbG8="]

    def test_adapter_flat_tokens(self, book, make_context):
        book.transcribe_flat_tokens = 0
        result = asyncio.run(make_context().transcribe("aGVsbG8="))
        assert result["usage"]["cumulativeTotalTokens"] == 0

    def test_budget_exceeded(self, book, make_context):
        context = make_context({"routing": {"max_monthly_tokens": 100}})
        with pytest.raises(BudgetExceededError, match="transcription"):
            asyncio.run(context.transcribe("aGVsbG8="))

    def test_missing_audio(self, book, make_context):
        with pytest.raises(MissingInputError, match="transcribe requires audio"):
            asyncio.run(make_context().transcribe(""))


class TestApiKeys:
    def test_set_and_get_masked(self, book, make_context):
        context = make_context()

        async def scenario():
            stored = await context.set_api_key("sk-abcdef123456", "gemini_free")
            fetched = await context.get_api_key("gemini_free")
            cleared = await context.set_api_key("", "gemini_free")
            return stored, fetched, cleared

        stored, fetched, cleared = asyncio.run(scenario())

        assert stored["maskedKey"] == "sk-a…3456"
        assert fetched["hasKey"] is True
        assert "sk-abcdef123456" not in str(fetched)
        assert cleared["hasKey"] is False

    def test_default_provider(self, book, make_context):
        details = asyncio.run(make_context().get_api_key())
        assert details["provider"] == "openai_paid"
        assert details["hasKey"] is False

    def test_stored_key_used_for_routing(self, book, make_context):
        book.succeed("gemini_free", "with stored key")
        context = make_context({"routing": {"provider_order": ["gemini_free"]}}, env={})

        async def scenario():
            await context.set_api_key("g-stored-key", "gemini_free")
            return await context.generate("some text")

        assert asyncio.run(scenario()).provider == "gemini_free"
