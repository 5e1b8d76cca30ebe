"""
Token Usage Tracking.

Keeps the cumulative token spend shared by every provider and gates new
calls against a monthly ceiling. The tracker is persisted as a JSON
snapshot (camelCase keys) in the blob store:

    {
        "cumulativePromptTokens": 1200,
        "cumulativeCompletionTokens": 800,
        "cumulativeTotalTokens": 2000,
        "limitTokens": 1200000,
        "requests": [
            {"model": "gpt-4o-mini", "promptTokens": 120, "completionTokens": 80,
             "totalTokens": 200, "metadata": {...}, "timestamp": 1700000000000}
        ],
        "metadata": {"lastReset": 1700000000000}
    }

Invariants:
    - cumulativeTotalTokens == cumulativePromptTokens + cumulativeCompletionTokens
    - cumulativeTotalTokens never decreases except on reset()
    - reset() never changes limitTokens

Limit Ratchet:
    hydrate() takes min(configured limit, saved limit), so a lowered budget
    applies at once across restarts while a raised one waits for reset.

Estimation:
    estimate_tokens_from_text() counts whitespace-separated words x 1.3;
    estimate_token_usage() adds a fixed 400-token completion allowance.
"""
from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

from provider_router.core.config import Defaults, parse_number, tokens_from_usd
from provider_router.core.logging import debug, get_logger, info, trace, warn
from provider_router.core.metrics import metrics

_LOG = get_logger("provider-router.usage")


@dataclass(frozen=True)
class TokenUsage:
    prompt_tokens: int = 0
    completion_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens


@dataclass(frozen=True)
class UsageDelta:
    """
    What one record() call added, plus the totals afterwards.

    Attributes:
        prompt_tokens / completion_tokens / total_tokens: Tokens charged.
        cumulative_total_tokens: Tracker total after the charge.
        remaining_tokens: limit - cumulative total (never negative).
    """
    prompt_tokens: int
    completion_tokens: int
    total_tokens: int
    cumulative_total_tokens: int
    remaining_tokens: int


def estimate_tokens_from_text(text: Optional[str]) -> int:
    """0 for empty text, otherwise max(1, round(words * 1.3))."""
    if not text or not text.strip():
        return 0
    words = len(text.split())
    return max(1, int(round(words * Defaults.TOKENS_PER_WORD)))


def estimate_token_usage(
    model: Optional[str],
    text: Optional[str],
    completion_tokens: int = Defaults.COMPLETION_ESTIMATE_TOKENS,
) -> TokenUsage:
    """Per-call estimate: prompt from the text, completion from a fixed allowance."""
    usage = TokenUsage(estimate_tokens_from_text(text), max(0, int(completion_tokens)))
    trace(_LOG, "usage_estimated", model=model, prompt=usage.prompt_tokens, completion=usage.completion_tokens)
    return usage


def _count(value: Any) -> int:
    number = parse_number(value)
    if number is None or number < 0:
        return 0
    return int(number)


def _now_ms() -> float:
    return time.time() * 1000.0


class UsageTracker:
    """
    Cumulative token counter against a monthly ceiling.

    All read-modify-write sequences hold a threading.Lock, so a tracker
    shared by a threaded host stays consistent. Persisting the snapshot
    is the caller's job (see RouterContext), under storage_lock().

    Attributes:
        limit_tokens: Monthly ceiling; 0 blocks every non-zero spend.
    """

    def __init__(
        self,
        limit_tokens: int = Defaults.ROUTING_MAX_MONTHLY_TOKENS,
        clock: Callable[[], float] = _now_ms,
    ):
        self.limit_tokens = max(0, int(limit_tokens))
        self._clock = clock
        self._lock = threading.Lock()
        self._prompt = 0
        self._completion = 0
        self._requests: List[Dict[str, Any]] = []
        self._metadata: Dict[str, Any] = {"lastReset": clock()}

    # ─────────────────────────────────────────────────────────────────────────
    # Hydration
    # ─────────────────────────────────────────────────────────────────────────

    @classmethod
    def hydrate(
        cls,
        configured_limit: int,
        stored: Optional[Mapping[str, Any]] = None,
        clock: Callable[[], float] = _now_ms,
    ) -> "UsageTracker":
        """
        Rebuild a tracker from a persisted snapshot.

        Accepts current snapshots, legacy counter names
        (promptTokens / completionTokens / totalTokens) and legacy
        monetary limits (limitUsd, converted at Defaults.TOKENS_PER_USD).
        The limit is min(configured_limit, saved limit).
        """
        tracker = cls(configured_limit, clock=clock)
        if not isinstance(stored, Mapping):
            debug(_LOG, "usage_hydrated", limit=tracker.limit_tokens, restored=False)
            return tracker

        saved_limit = parse_number(stored.get("limitTokens"))
        if saved_limit is None:
            legacy_usd = parse_number(stored.get("limitUsd"))
            if legacy_usd is not None:
                saved_limit = tokens_from_usd(legacy_usd)
        if saved_limit is not None and saved_limit >= 0:
            tracker.limit_tokens = min(tracker.limit_tokens, int(saved_limit))

        prompt = stored.get("cumulativePromptTokens", stored.get("promptTokens"))
        completion = stored.get("cumulativeCompletionTokens", stored.get("completionTokens"))
        tracker._prompt = _count(prompt)
        tracker._completion = _count(completion)
        if prompt is None and completion is None:
            # Only a total survived; keep it as prompt so the sum holds
            tracker._prompt = _count(stored.get("cumulativeTotalTokens", stored.get("totalTokens")))

        requests = stored.get("requests")
        if isinstance(requests, list):
            tracker._requests = [dict(r) for r in requests if isinstance(r, Mapping)]

        metadata = stored.get("metadata")
        if isinstance(metadata, Mapping):
            tracker._metadata = dict(metadata)
        elif parse_number(stored.get("lastReset")) is not None:
            tracker._metadata = {"lastReset": parse_number(stored.get("lastReset"))}

        info(
            _LOG,
            "usage_hydrated",
            limit=tracker.limit_tokens,
            total=tracker.cumulative_total_tokens,
            requests=len(tracker._requests),
        )
        return tracker

    # ─────────────────────────────────────────────────────────────────────────
    # Totals
    # ─────────────────────────────────────────────────────────────────────────

    @property
    def cumulative_prompt_tokens(self) -> int:
        return self._prompt

    @property
    def cumulative_completion_tokens(self) -> int:
        return self._completion

    @property
    def cumulative_total_tokens(self) -> int:
        return self._prompt + self._completion

    @property
    def remaining_tokens(self) -> int:
        return max(0, self.limit_tokens - self.cumulative_total_tokens)

    @property
    def requests(self) -> List[Dict[str, Any]]:
        with self._lock:
            return [dict(r) for r in self._requests]

    def totals(self) -> Dict[str, int]:
        with self._lock:
            return {
                "promptTokens": self._prompt,
                "completionTokens": self._completion,
                "totalTokens": self._prompt + self._completion,
                "limitTokens": self.limit_tokens,
            }

    # ─────────────────────────────────────────────────────────────────────────
    # Spending
    # ─────────────────────────────────────────────────────────────────────────

    def can_spend(self, estimated_tokens: Any) -> bool:
        """True iff cumulative total + estimate <= limit. Never raises."""
        estimate = parse_number(estimated_tokens)
        if estimate is None or estimate <= 0:
            return True
        with self._lock:
            allowed = self._prompt + self._completion + estimate <= self.limit_tokens
        debug(_LOG, "spend_check", estimate=int(estimate), total=self.cumulative_total_tokens,
              limit=self.limit_tokens, allowed=allowed)
        return allowed

    def record(
        self,
        model: Optional[str],
        prompt_tokens: Any,
        completion_tokens: Any,
        metadata: Optional[Mapping[str, Any]] = None,
    ) -> UsageDelta:
        """Append a request-log entry and add its tokens to the totals."""
        delta = self._append(model, _count(prompt_tokens), _count(completion_tokens), metadata)
        metrics.record_tokens(prompt=delta.prompt_tokens, completion=delta.completion_tokens)
        return delta

    def _append(
        self,
        model: Optional[str],
        prompt: int,
        completion: int,
        metadata: Optional[Mapping[str, Any]],
    ) -> UsageDelta:
        with self._lock:
            self._prompt += prompt
            self._completion += completion
            self._requests.append({
                "model": model,
                "promptTokens": prompt,
                "completionTokens": completion,
                "totalTokens": prompt + completion,
                "metadata": dict(metadata or {}),
                "timestamp": self._clock(),
            })
            delta = UsageDelta(
                prompt_tokens=prompt,
                completion_tokens=completion,
                total_tokens=prompt + completion,
                cumulative_total_tokens=self._prompt + self._completion,
                remaining_tokens=max(0, self.limit_tokens - self._prompt - self._completion),
            )

        info(
            _LOG,
            "usage_recorded",
            model=model,
            prompt=prompt,
            completion=completion,
            total=delta.cumulative_total_tokens,
            budget_percent=self._budget_percent(delta.cumulative_total_tokens),
        )
        metrics.set_budget_remaining(delta.remaining_tokens)
        return delta

    def record_flat(self, label: str, descriptor: Union[int, float, Mapping[str, Any], None]) -> UsageDelta:
        """
        Record a fixed-price charge (transcription, speech) tagged with `label`.

        Args:
            label: Entry model name and metadata `type` ("stt", "tts").
            descriptor: A bare token count, or a mapping with
                promptTokens / completionTokens / totalTokens / metadata
                (snake_case names accepted too). A bare count or a
                total-only mapping is charged as prompt tokens.
        """
        metadata: Dict[str, Any] = {}
        if isinstance(descriptor, Mapping):
            prompt = _count(descriptor.get("promptTokens", descriptor.get("prompt_tokens")))
            completion = _count(descriptor.get("completionTokens", descriptor.get("completion_tokens")))
            total = _count(descriptor.get("totalTokens", descriptor.get("total_tokens")))
            if prompt == 0 and completion == 0:
                prompt = total
            extra = descriptor.get("metadata")
            if isinstance(extra, Mapping):
                metadata.update(extra)
        else:
            prompt, completion = _count(descriptor), 0

        metadata["type"] = label
        delta = self._append(label, prompt, completion, metadata)
        metrics.record_tokens(flat=delta.total_tokens)
        return delta

    def reset(self) -> None:
        """Zero every counter and clear the log; limitTokens is kept."""
        with self._lock:
            self._prompt = 0
            self._completion = 0
            self._requests = []
            self._metadata = {"lastReset": self._clock()}
        warn(_LOG, "usage_reset", limit=self.limit_tokens)
        metrics.set_budget_remaining(self.limit_tokens)

    # ─────────────────────────────────────────────────────────────────────────
    # Serialisation
    # ─────────────────────────────────────────────────────────────────────────

    def to_json(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "cumulativePromptTokens": self._prompt,
                "cumulativeCompletionTokens": self._completion,
                "cumulativeTotalTokens": self._prompt + self._completion,
                "limitTokens": self.limit_tokens,
                "requests": [dict(r) for r in self._requests],
                "metadata": dict(self._metadata),
            }

    def _budget_percent(self, total: int) -> Optional[float]:
        if self.limit_tokens <= 0:
            return None
        return round(100.0 * total / self.limit_tokens, 1)
