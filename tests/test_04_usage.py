"""
Tests for token usage tracking.

Tests cover:
- Token estimation from text
- can_spend() ceiling semantics
- record() invariants (total == prompt + completion, monotonic)
- record_flat() descriptors
- hydrate(): limit ratchet, legacy counters, legacy USD limit
- reset() keeps the limit
- JSON snapshot shape
"""
import pytest

from provider_router.routing.usage import (
    TokenUsage,
    UsageTracker,
    estimate_token_usage,
    estimate_tokens_from_text,
)


class TestEstimation:
    def test_empty_text(self):
        assert estimate_tokens_from_text("") == 0
        assert estimate_tokens_from_text("   ") == 0
        assert estimate_tokens_from_text(None) == 0

    def test_words_times_factor(self):
        # 10 words * 1.3 = 13
        assert estimate_tokens_from_text("one two three four five six seven eight nine ten") == 13

    def test_minimum_one(self):
        assert estimate_tokens_from_text("hi") == 1

    def test_usage_adds_completion_allowance(self):
        usage = estimate_token_usage("gpt-4o-mini", "one two three four five six seven eight nine ten")
        assert usage == TokenUsage(13, 400)
        assert usage.total_tokens == 413

    def test_custom_completion_allowance(self):
        assert estimate_token_usage(None, "hi", completion_tokens=50).total_tokens == 51


class TestCanSpend:
    def test_within_limit(self):
        tracker = UsageTracker(1000)
        assert tracker.can_spend(1000) is True
        assert tracker.can_spend(1001) is False

    def test_zero_or_invalid_estimate_is_allowed(self):
        tracker = UsageTracker(0)
        assert tracker.can_spend(0) is True
        assert tracker.can_spend("not a number") is True
        assert tracker.can_spend(1) is False

    def test_accounts_for_recorded_spend(self):
        tracker = UsageTracker(1000)
        tracker.record("m", 600, 100)
        assert tracker.can_spend(300) is True
        assert tracker.can_spend(301) is False


class TestRecord:
    def test_totals_and_log(self):
        tracker = UsageTracker(10_000, clock=lambda: 42.0)
        delta = tracker.record("gpt-4o-mini", 120, 80, {"provider": "openai_paid"})

        assert delta.total_tokens == 200
        assert delta.cumulative_total_tokens == 200
        assert delta.remaining_tokens == 9_800
        assert tracker.totals() == {
            "promptTokens": 120,
            "completionTokens": 80,
            "totalTokens": 200,
            "limitTokens": 10_000,
        }
        assert tracker.requests == [{
            "model": "gpt-4o-mini",
            "promptTokens": 120,
            "completionTokens": 80,
            "totalTokens": 200,
            "metadata": {"provider": "openai_paid"},
            "timestamp": 42.0,
        }]

    def test_total_is_sum_and_monotonic(self):
        tracker = UsageTracker(10_000)
        seen = []
        for prompt, completion in [(5, 5), (0, 0), (-3, 7), ("12", None)]:
            tracker.record("m", prompt, completion)
            assert tracker.cumulative_total_tokens == (
                tracker.cumulative_prompt_tokens + tracker.cumulative_completion_tokens
            )
            seen.append(tracker.cumulative_total_tokens)
        assert seen == sorted(seen)
        assert seen[-1] == 29

    def test_remaining_never_negative(self):
        tracker = UsageTracker(10)
        tracker.record("m", 50, 0)
        assert tracker.remaining_tokens == 0


class TestRecordFlat:
    def test_bare_count_charged_as_prompt(self):
        tracker = UsageTracker(10_000)
        tracker.record_flat("stt", 1200)
        assert tracker.cumulative_prompt_tokens == 1200
        entry = tracker.requests[0]
        assert entry["model"] == "stt"
        assert entry["metadata"] == {"type": "stt"}

    def test_total_only_mapping(self):
        tracker = UsageTracker(10_000)
        tracker.record_flat("tts", {"totalTokens": 2400})
        assert tracker.totals()["promptTokens"] == 2400
        assert tracker.totals()["totalTokens"] == 2400

    def test_mapping_with_counts_and_metadata(self):
        tracker = UsageTracker(10_000)
        tracker.record_flat("tts", {"promptTokens": 30, "completion_tokens": 10, "metadata": {"chunks": 2}})
        assert tracker.cumulative_total_tokens == 40
        assert tracker.requests[0]["metadata"] == {"chunks": 2, "type": "tts"}


class TestHydrate:
    def test_no_snapshot(self):
        tracker = UsageTracker.hydrate(5000, None)
        assert tracker.limit_tokens == 5000
        assert tracker.cumulative_total_tokens == 0

    def test_restores_counters(self):
        stored = {
            "cumulativePromptTokens": 100,
            "cumulativeCompletionTokens": 50,
            "cumulativeTotalTokens": 150,
            "limitTokens": 5000,
            "requests": [{"model": "m", "totalTokens": 150}],
            "metadata": {"lastReset": 7},
        }
        tracker = UsageTracker.hydrate(5000, stored)
        assert tracker.cumulative_total_tokens == 150
        assert len(tracker.requests) == 1
        assert tracker.to_json()["metadata"] == {"lastReset": 7}

    def test_lower_saved_limit_wins(self):
        assert UsageTracker.hydrate(5000, {"limitTokens": 1000}).limit_tokens == 1000

    def test_raised_config_waits(self):
        assert UsageTracker.hydrate(5000, {"limitTokens": 9000}).limit_tokens == 5000

    def test_lowered_config_applies(self):
        assert UsageTracker.hydrate(500, {"limitTokens": 9000}).limit_tokens == 500

    def test_legacy_usd_limit(self):
        # 0.5 USD at 240000 tokens per USD
        assert UsageTracker.hydrate(1_200_000, {"limitUsd": 0.5}).limit_tokens == 120_000

    def test_legacy_counter_names(self):
        tracker = UsageTracker.hydrate(5000, {"promptTokens": 30, "completionTokens": 20})
        assert tracker.cumulative_total_tokens == 50

    def test_total_only_snapshot(self):
        tracker = UsageTracker.hydrate(5000, {"totalTokens": 70})
        assert tracker.cumulative_prompt_tokens == 70
        assert tracker.cumulative_total_tokens == 70


class TestReset:
    def test_reset_zeroes_and_keeps_limit(self):
        tracker = UsageTracker(3000, clock=lambda: 99.0)
        tracker.record("m", 10, 10)
        tracker.reset()
        snapshot = tracker.to_json()
        assert snapshot["cumulativeTotalTokens"] == 0
        assert snapshot["requests"] == []
        assert snapshot["limitTokens"] == 3000
        assert snapshot["metadata"] == {"lastReset": 99.0}

    @pytest.mark.parametrize("key", [
        "cumulativePromptTokens",
        "cumulativeCompletionTokens",
        "cumulativeTotalTokens",
        "limitTokens",
        "requests",
        "metadata",
    ])
    def test_snapshot_keys(self, key):
        assert key in UsageTracker(10).to_json()
