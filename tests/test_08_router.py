"""
Tests for provider routing and fallback.

Adapters are scripted (see conftest.AdapterBook), so every test drives
the real Router against deterministic provider outcomes.

Tests cover:
- Candidate order (preference first, aliases, deduplication)
- Sequential fallback and attempt bookkeeping
- Same-candidate retries with exponential backoff
- Auth errors never retried
- Timeouts
- Circuit breaker open/close
- Budget skips (per-call cap, monthly limit) and missing keys
- Dry run
- disable_paid and NoFreeProvidersError
- Usage recording and token estimation fallbacks
"""
import asyncio

import pytest

from provider_router.core.config import RouterServiceConfig, Settings
from provider_router.core.errors import (
    AllProvidersExhaustedError,
    ErrorCode,
    MissingInputError,
    NoFreeProvidersError,
    ProviderInvocationError,
)
from provider_router.providers.adapters.base import AdapterError, AdapterHTTPError, SummaryResult
from provider_router.routing.router import DRY_RUN_TEXT, Router, normalise_model_name
from provider_router.routing.usage import UsageTracker

from conftest import KEYS_ENV, no_sleep


class FakeClock:
    def __init__(self):
        self.now = 100.0

    def __call__(self):
        return self.now


def build_router(book, routing=None, env=None, **options):
    config = RouterServiceConfig.from_settings(Settings(raw={"routing": routing or {}}), env={})
    return Router(
        config,
        tracker=UsageTracker(config.routing.max_monthly_tokens),
        registry=book.registry(),
        env=KEYS_ENV if env is None else env,
        sleep=options.pop("sleep", no_sleep),
        **options,
    )


TEXT = "one two three four five six seven eight nine ten"


class TestCandidateOrder:
    def test_default_order(self, book):
        router = build_router(book)
        assert router.routing_order() == [
            "ollama",
            "huggingface_free",
            "gemini_free",
            "openai_trial",
            "mistral_trial",
            "gemini_paid",
            "openai_paid",
            "anthropic_paid",
            "mistral_paid",
        ]

    def test_auto_preference_is_ignored(self, book):
        router = build_router(book)
        assert router.routing_order("auto") == router.routing_order()

    def test_preference_first_and_deduplicated(self, book):
        router = build_router(book, {"provider_order": ["ollama", "gemini_free"]})
        assert router.routing_order("gemini_free") == ["gemini_free", "ollama"]

    def test_alias_resolved(self, book):
        router = build_router(book, {"provider_order": ["openai", "ollama", "openai_paid"]})
        assert router.routing_order("Gemini") == ["gemini_paid", "openai_paid", "ollama"]

    def test_disable_paid_filter(self, book):
        router = build_router(book, {"disable_paid": True})
        assert router.candidates() == ["ollama", "huggingface_free", "gemini_free"]


class TestFallback:
    def test_first_success_wins(self, book):
        book.succeed("ollama", "local summary")
        router = build_router(book)

        result = asyncio.run(router.generate(TEXT))

        assert result.provider == "ollama"
        assert result.text == "local summary"
        assert result.attempts == []
        assert book.calls == ["ollama"]

    def test_falls_back_in_order(self, book):
        book.script("ollama", AdapterError("connection refused"))
        book.succeed("huggingface_free", "hf summary")
        router = build_router(book, {"retry_limit": 0})

        result = asyncio.run(router.generate(TEXT))

        assert result.provider == "huggingface_free"
        assert book.calls == ["ollama", "huggingface_free"]
        assert [(a.provider, a.reason) for a in result.attempts] == [("ollama", "connection refused")]
        failure = result.attempts[0].error
        assert isinstance(failure, ProviderInvocationError)
        assert isinstance(failure.__cause__, AdapterError)

    def test_preference_tried_first(self, book):
        book.succeed("anthropic_paid", "claude summary")
        book.succeed("ollama")
        router = build_router(book)

        result = asyncio.run(router.generate(TEXT, provider_preference="anthropic"))

        assert result.provider == "anthropic_paid"
        assert book.calls == ["anthropic_paid"]

    def test_all_fail(self, book):
        router = build_router(book, {"provider_order": ["ollama", "gemini_free"], "retry_limit": 0})

        with pytest.raises(AllProvidersExhaustedError) as info:
            asyncio.run(router.generate(TEXT))

        error = info.value
        assert error.code == ErrorCode.ALL_PROVIDERS_FAILED
        assert [a.provider for a in error.attempts] == ["ollama", "gemini_free"]
        assert "ollama: no script for ollama" in error.message

    def test_missing_input(self, book):
        router = build_router(book)
        with pytest.raises(MissingInputError):
            asyncio.run(router.generate("   "))
        assert book.calls == []


class TestRetries:
    def test_retry_with_backoff(self, book):
        waits = []

        async def record_sleep(seconds):
            waits.append(seconds)

        book.script(
            "ollama",
            AdapterError("flaky"),
            AdapterError("flaky"),
            SummaryResult("third time", "llama3.1", 10, 5),
        )
        router = build_router(book, {"retry_limit": 2}, sleep=record_sleep, random_fn=lambda: 0.5)

        result = asyncio.run(router.generate(TEXT))

        assert result.text == "third time"
        assert book.calls == ["ollama"] * 3
        # backoff + backoff * (0.5 + 0.5), doubling from 250 ms
        assert waits == [0.5, 1.0]

    def test_backoff_capped(self, book):
        waits = []

        async def record_sleep(seconds):
            waits.append(seconds)

        router = build_router(
            book,
            {"provider_order": ["ollama"], "retry_limit": 6},
            sleep=record_sleep,
            random_fn=lambda: 0.99,
        )
        with pytest.raises(AllProvidersExhaustedError):
            asyncio.run(router.generate(TEXT))

        assert len(waits) == 6
        assert max(waits) == 4.0
        assert book.calls == ["ollama"] * 7

    def test_auth_error_not_retried(self, book):
        book.script("ollama", AdapterHTTPError("Ollama", 401, "bad key"))
        book.succeed("huggingface_free")
        router = build_router(book, {"retry_limit": 3})

        result = asyncio.run(router.generate(TEXT))

        assert book.calls == ["ollama", "huggingface_free"]
        failure = result.attempts[0].error
        assert failure.status == 401
        assert failure.attempts == 1
        assert router.state("ollama").invalid_auth is True

    def test_timeout(self, book):
        async def slow():
            await asyncio.sleep(1)
            return SummaryResult("too late", "m")

        book.script("ollama", slow)
        book.succeed("huggingface_free")
        router = build_router(book, {"timeout_ms": 10, "retry_limit": 0})

        result = asyncio.run(router.generate(TEXT))

        assert result.provider == "huggingface_free"
        assert result.attempts[0].reason == "Provider ollama timed out after 10ms"


class TestCircuitBreaker:
    def test_opens_after_three_failures_and_recovers(self, book):
        clock = FakeClock()
        book.script("ollama", AdapterError("down"))
        book.succeed("huggingface_free")
        router = build_router(book, {"retry_limit": 0}, clock=clock)

        for _ in range(3):
            asyncio.run(router.generate(TEXT))
        assert router.is_blocked("ollama")

        book.calls.clear()
        result = asyncio.run(router.generate(TEXT))
        assert result.attempts[0].reason == "circuit_open"
        assert book.calls == ["huggingface_free"]

        clock.now += 61
        book.succeed("ollama", "back again")
        book.calls.clear()
        result = asyncio.run(router.generate(TEXT))
        assert result.provider == "ollama"
        assert router.state("ollama").failures == 0
        assert not router.is_blocked("ollama")

    def test_provider_states(self, book):
        book.script("ollama", AdapterHTTPError("Ollama", 401, "bad key"))
        book.succeed("huggingface_free", prompt=10, completion=5)
        router = build_router(book, {"retry_limit": 0}, clock=FakeClock())

        asyncio.run(router.generate(TEXT))

        states = router.provider_states()
        assert states["ollama"] == {
            "failures": 1,
            "circuitOpen": False,
            "invalidAuth": True,
            "calls": 0,
            "totalTokens": 0,
        }
        assert states["huggingface_free"]["calls"] == 1
        assert states["huggingface_free"]["totalTokens"] == 15
        assert states["huggingface_free"]["invalidAuth"] is False


class TestBudget:
    def test_per_call_cap_skips_candidate(self, book):
        book.completion_tokens["ollama"] = 48000
        book.succeed("ollama")
        book.succeed("huggingface_free")
        router = build_router(book)

        result = asyncio.run(router.generate(TEXT))

        assert result.provider == "huggingface_free"
        assert result.attempts[0].reason == "token_cap"
        assert "ollama" not in book.calls

    def test_monthly_limit(self, book):
        book.succeed("ollama")
        router = build_router(book, {"max_monthly_tokens": 10})

        with pytest.raises(AllProvidersExhaustedError) as info:
            asyncio.run(router.generate(TEXT))

        assert {a.reason for a in info.value.attempts} == {"token_cap"}
        assert book.calls == []
        assert router.tracker.cumulative_total_tokens == 0

    def test_missing_key_skipped(self, book):
        book.succeed("gemini_free")
        book.succeed("ollama")
        router = build_router(book, {"provider_order": ["gemini_free", "ollama"]}, env={})

        result = asyncio.run(router.generate(TEXT))

        assert result.provider == "ollama"
        assert result.attempts[0].reason == "missing_api_key"
        assert result.attempts[0].error.code == ErrorCode.MISSING_API_KEY


class TestDryRun:
    def test_nothing_sent_or_charged(self, book):
        book.succeed("ollama")
        router = build_router(book, {"dry_run": True})

        result = asyncio.run(router.generate(TEXT))

        assert result.dry_run is True
        assert result.text == DRY_RUN_TEXT
        assert result.provider == "ollama"
        assert book.calls == []
        assert router.tracker.cumulative_total_tokens == 0


class TestDisablePaid:
    def test_no_free_candidates(self, book):
        router = build_router(book, {"provider_order": ["openai_paid", "anthropic_paid"], "disable_paid": True})

        with pytest.raises(NoFreeProvidersError) as info:
            asyncio.run(router.generate(TEXT))

        assert info.value.code == ErrorCode.NO_FREE_PROVIDERS
        assert info.value.attempts == []
        assert book.calls == []

    def test_free_candidates_failed(self, book):
        book.succeed("openai_paid")
        router = build_router(
            book,
            {"provider_order": ["openai_paid", "ollama"], "disable_paid": True, "retry_limit": 0},
        )

        with pytest.raises(NoFreeProvidersError) as info:
            asyncio.run(router.generate(TEXT))

        assert [a.provider for a in info.value.attempts] == ["ollama"]
        assert "openai_paid" not in book.calls


class TestUsageRecording:
    def test_reported_usage_recorded(self, book):
        book.succeed("ollama", prompt=120, completion=30)
        router = build_router(book)

        result = asyncio.run(router.generate(TEXT, metadata={"url": "https://a.example", "segmentId": "s1"}))

        assert (result.prompt_tokens, result.completion_tokens, result.total_tokens) == (120, 30, 150)
        assert result.usage_totals["totalTokens"] == 150
        entry = router.tracker.requests[0]
        assert entry["model"] == "ollama-model"
        assert entry["metadata"] == {
            "provider": "ollama",
            "type": "summary",
            "url": "https://a.example",
            "segmentId": "s1",
        }

    def test_missing_usage_estimated(self, book):
        book.script("ollama", SummaryResult("one two three", "models/llama3.1"))
        router = build_router(book)

        result = asyncio.run(router.generate(TEXT))

        # prompt: 10 words * 1.3; completion: 3 words * 1.3
        assert (result.prompt_tokens, result.completion_tokens) == (13, 4)
        assert result.model == "llama3.1"

    def test_normalise_model_name(self):
        assert normalise_model_name("models/gemini-1.5-flash", None) == "gemini-1.5-flash"
        assert normalise_model_name("  ", "fallback") == "fallback"
        assert normalise_model_name(None, "fallback") == "fallback"
