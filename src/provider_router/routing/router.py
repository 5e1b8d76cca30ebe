"""
Provider Router.

Picks a provider for one generation request and falls back through the
configured order until a candidate succeeds. Candidates are tried strictly
one after another; there is no fan-out.

Candidate Order:
    1. Explicit preference (unless "auto")
    2. RoutingConfig.provider_order
    Aliases are resolved, "auto" is removed and duplicates after alias
    resolution are dropped (first occurrence wins).

    disable_paid keeps only free-tier candidates (id ending in "_free",
    local/free tier, or keyless). An empty result raises NoFreeProvidersError.

Per Candidate:
    circuit open?          -> skip  (circuit_open)
    adapter registered?    -> skip  (adapter_not_registered)
    estimate over budget?  -> skip  (token_cap)
    key needed but absent? -> skip  (missing_api_key)
    dry_run?               -> synthetic success, nothing sent, nothing charged
    invoke                 -> wait_for(timeout_ms); retry up to retry_limit
                              with exponential backoff; 401/403 never retried
    success                -> UsageTracker.record(), return immediately
    failure                -> ProviderInvocationError (cause chained), next

Circuit Breaker:
    3 consecutive failed candidates open a provider for 60 s; any success
    closes it again.

Errors:
    Only the aggregate surfaces: AllProvidersExhaustedError (or
    NoFreeProvidersError with disable_paid), listing every candidate's
    reason. Per-candidate failures are logged and kept on the attempt list.

Example:
    >>> router = Router(RouterServiceConfig(), tracker=UsageTracker())
    >>> result = asyncio.run(router.generate("Long article text...", language="en"))
    >>> result.provider, result.total_tokens
"""
from __future__ import annotations

import asyncio
import random
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional

from provider_router.core.config import Defaults, ProviderConfig, RouterServiceConfig, RoutingConfig
from provider_router.core.errors import (
    AdapterNotRegisteredError,
    AllProvidersExhaustedError,
    Attempt,
    MissingApiKeyError,
    MissingInputError,
    NoFreeProvidersError,
    ProviderInvocationError,
)
from provider_router.core.logging import debug, get_logger, info, success, verbose, warn
from provider_router.core.metrics import metrics
from provider_router.core.storage import MemoryStore
from provider_router.providers.adapters.base import ProviderAdapter
from provider_router.providers.catalog import DEFAULT_PROVIDER_ID, ProviderCatalog
from provider_router.providers.keys import ApiKeyStore
from provider_router.providers.registry import AdapterRegistry, default_registry
from provider_router.routing.usage import (
    TokenUsage,
    UsageTracker,
    estimate_token_usage,
    estimate_tokens_from_text,
)
from provider_router.utils.timeit import timeit

_LOG = get_logger("provider-router.router")

DRY_RUN_TEXT = "[dry-run] no request sent"
AUTH_ERROR_CODES = frozenset({401, 403})


@dataclass
class GenerationResult:
    """
    Successful generation.

    Attributes:
        text: Generated summary.
        provider: Canonical id of the provider that answered.
        model: Model the provider reported (or the configured one).
        prompt_tokens / completion_tokens / total_tokens: Tokens charged.
        usage_totals: Tracker totals after the charge.
        dry_run: True when no request was sent.
        attempts: Candidates skipped or failed before this one.
    """
    text: str
    provider: str
    model: Optional[str]
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    usage_totals: Dict[str, int] = field(default_factory=dict)
    dry_run: bool = False
    attempts: List[Attempt] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "text": self.text,
            "provider": self.provider,
            "model": self.model,
            "promptTokens": self.prompt_tokens,
            "completionTokens": self.completion_tokens,
            "totalTokens": self.total_tokens,
            "usageTotals": dict(self.usage_totals),
            "dryRun": self.dry_run,
            "attempts": [a.to_dict() for a in self.attempts],
        }


@dataclass
class ProviderState:
    """Circuit breaker and call counters for one provider."""
    failures: int = 0
    blocked_until: float = 0.0
    invalid_auth: bool = False
    calls: int = 0
    total_tokens: int = 0

    def to_dict(self, now: float) -> Dict[str, Any]:
        return {
            "failures": self.failures,
            "circuitOpen": self.blocked_until > now,
            "invalidAuth": self.invalid_auth,
            "calls": self.calls,
            "totalTokens": self.total_tokens,
        }


def is_auth_error(exc: BaseException) -> bool:
    status = getattr(exc, "status", None)
    if isinstance(status, int):
        return status in AUTH_ERROR_CODES
    message = str(exc).lower()
    return any(word in message for word in ("unauthorised", "unauthorized", "forbidden"))


def normalise_model_name(value: Any, fallback: Optional[str]) -> Optional[str]:
    """'models/gemini-1.5-flash' -> 'gemini-1.5-flash'; blank values use `fallback`."""
    if isinstance(value, str) and value.strip():
        segments = [s for s in value.strip().split("/") if s]
        return segments[-1] if segments else value.strip()
    return fallback


class Router:
    """
    Ordered sequential fallback across providers.

    Args:
        config: Service configuration (routing section and provider layers).
        tracker: Shared usage tracker; one is created from the routing
            limit when omitted.
        key_store: Source of stored API keys.
        registry: Adapter factories (default: every built-in vendor).
        catalog: Provider catalog.
        env: Environment mapping for API key variables (default os.environ).
        clock: Monotonic seconds, for the circuit breaker.
        sleep: Awaitable sleep used for backoff.
        random_fn: Jitter source in [0, 1).
    """

    def __init__(
        self,
        config: Optional[RouterServiceConfig] = None,
        tracker: Optional[UsageTracker] = None,
        key_store: Optional[ApiKeyStore] = None,
        registry: Optional[AdapterRegistry] = None,
        catalog: Optional[ProviderCatalog] = None,
        env: Optional[Mapping[str, str]] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        random_fn: Callable[[], float] = random.random,
    ):
        self.config = config or RouterServiceConfig()
        self.catalog = catalog or ProviderCatalog()
        self.tracker = tracker or UsageTracker(self.config.routing.max_monthly_tokens)
        self.key_store = key_store or ApiKeyStore(MemoryStore(), self.catalog)
        self.registry = registry or default_registry()
        self.env = env
        self._clock = clock
        self._sleep = sleep
        self._random = random_fn
        self._states: Dict[str, ProviderState] = {}

        # Single adapter slot: building another provider's adapter replaces it
        self._adapter: Optional[ProviderAdapter] = None
        self._adapter_provider: Optional[str] = None
        self._adapter_lock = threading.Lock()

    @property
    def routing(self) -> RoutingConfig:
        return self.config.routing

    # ─────────────────────────────────────────────────────────────────────────
    # Candidates
    # ─────────────────────────────────────────────────────────────────────────

    def routing_order(self, preference: Optional[str] = None) -> List[str]:
        """Preference first, then the configured order; aliases resolved, deduplicated."""
        raw: List[Any] = []
        if preference is not None and self.catalog.normalise(preference) != DEFAULT_PROVIDER_ID:
            raw.append(preference)
        raw.extend(self.routing.provider_order)

        order: List[str] = []
        seen = set()
        for item in raw:
            pid = self.catalog.resolve_alias(item)
            if not pid or pid == DEFAULT_PROVIDER_ID or pid in seen:
                continue
            seen.add(pid)
            order.append(pid)
        return order

    def candidates(self, preference: Optional[str] = None) -> List[str]:
        """routing_order() with the disable_paid filter applied."""
        order = self.routing_order(preference)
        if not self.routing.disable_paid:
            return order
        kept = [pid for pid in order if self.catalog.is_free_tier(pid)]
        for pid in order:
            if pid not in kept:
                debug(_LOG, "provider_filtered", provider=pid, reason="paid_disabled")
        return kept

    def provider_config(self, provider_id: str) -> ProviderConfig:
        pid = self.catalog.resolve_alias(provider_id)
        return self.config.provider_config(
            pid,
            adapter_key=self.catalog.adapter_key(pid),
            base_id=self.catalog.resolve_alias(self.config.base_provider),
        )

    def get_adapter(self, provider_id: str) -> ProviderAdapter:
        """
        Adapter for a provider, reusing the cached one when it matches.

        Raises:
            AdapterNotRegisteredError: No factory for the provider's adapter key.
        """
        pid = self.catalog.resolve_alias(provider_id)
        if self._adapter is None or self._adapter_provider != pid:
            with self._adapter_lock:
                if self._adapter is None or self._adapter_provider != pid:
                    adapter_key = self.catalog.adapter_key(pid)
                    adapter = self.registry.create(adapter_key, self.provider_config(pid))
                    if adapter is None:
                        raise AdapterNotRegisteredError(pid, adapter_key)
                    verbose(_LOG, "adapter_created", provider=pid, adapter=adapter_key,
                            replaced=self._adapter_provider)
                    self._adapter = adapter
                    self._adapter_provider = pid
        return self._adapter

    def clear_adapter(self) -> None:
        with self._adapter_lock:
            self._adapter = None
            self._adapter_provider = None

    async def resolve_api_key(self, provider_id: str) -> Optional[str]:
        pid = self.catalog.resolve_alias(provider_id)
        return await self.key_store.resolve(pid, self.provider_config(pid).api_key_env, env=self.env)

    # ─────────────────────────────────────────────────────────────────────────
    # Budget
    # ─────────────────────────────────────────────────────────────────────────

    def estimate(self, adapter: ProviderAdapter, model: Optional[str], text: str) -> TokenUsage:
        """Per-call estimate; an adapter may declare its own completion allowance."""
        completion = adapter.get_cost_metadata().summarise.completion_tokens
        if completion is None:
            return estimate_token_usage(model, text)
        return estimate_token_usage(model, text, completion)

    def within_budget(self, usage: TokenUsage) -> bool:
        limit = self.routing.max_tokens_per_call
        if limit > 0 and usage.total_tokens > limit:
            return False
        return self.tracker.can_spend(usage.total_tokens)

    # ─────────────────────────────────────────────────────────────────────────
    # Circuit breaker
    # ─────────────────────────────────────────────────────────────────────────

    def state(self, provider_id: str) -> ProviderState:
        pid = self.catalog.resolve_alias(provider_id)
        if pid not in self._states:
            self._states[pid] = ProviderState()
        return self._states[pid]

    def is_blocked(self, provider_id: str) -> bool:
        return self.state(provider_id).blocked_until > self._clock()

    def provider_states(self) -> Dict[str, Dict[str, Any]]:
        """Counters for every provider tried so far, keyed by canonical id."""
        now = self._clock()
        return {pid: state.to_dict(now) for pid, state in self._states.items()}

    def _mark_failure(self, pid: str, exc: BaseException) -> None:
        state = self.state(pid)
        state.failures += 1
        if is_auth_error(exc):
            state.invalid_auth = True
        if state.failures >= Defaults.CIRCUIT_FAILURE_THRESHOLD:
            state.blocked_until = self._clock() + Defaults.CIRCUIT_OPEN_SECONDS
            warn(_LOG, "circuit_opened", provider=pid, failures=state.failures)
            metrics.set_circuit_open(pid, True)

    def _mark_success(self, pid: str, total_tokens: int) -> None:
        state = self.state(pid)
        was_open = state.blocked_until > 0
        state.failures = 0
        state.blocked_until = 0.0
        state.invalid_auth = False
        state.calls += 1
        state.total_tokens += total_tokens
        if was_open:
            metrics.set_circuit_open(pid, False)

    # ─────────────────────────────────────────────────────────────────────────
    # Generation
    # ─────────────────────────────────────────────────────────────────────────

    async def generate(
        self,
        text: Optional[str],
        language: str = "en",
        provider_preference: Optional[str] = None,
        metadata: Optional[Mapping[str, Any]] = None,
    ) -> GenerationResult:
        """
        Generate a summary with the first candidate that succeeds.

        Raises:
            MissingInputError: Empty text; no provider is contacted.
            NoFreeProvidersError: disable_paid and no free candidate succeeded.
            AllProvidersExhaustedError: Every candidate was skipped or failed.
        """
        if not isinstance(text, str) or not text.strip():
            raise MissingInputError()

        metadata = dict(metadata or {})
        order = self.candidates(provider_preference)
        if self.routing.disable_paid and not order:
            warn(_LOG, "no_free_providers")
            raise NoFreeProvidersError()

        attempts: List[Attempt] = []

        def skip(pid: str, reason: str, exc: Optional[BaseException] = None) -> None:
            attempts.append(Attempt(pid, reason, exc))
            metrics.record_attempt(pid, reason)
            warn(_LOG, "provider_skipped", provider=pid, reason=reason)

        for pid in order:
            if self.is_blocked(pid):
                skip(pid, "circuit_open")
                continue

            try:
                adapter = self.get_adapter(pid)
            except AdapterNotRegisteredError as e:
                skip(pid, "adapter_not_registered", e)
                continue

            model = adapter.model
            estimate = self.estimate(adapter, model, text)
            if not self.within_budget(estimate):
                skip(pid, "token_cap")
                continue

            requires_key = self.catalog.metadata(pid).requires_key
            api_key = await self.resolve_api_key(pid)
            if requires_key and not api_key:
                skip(pid, "missing_api_key", MissingApiKeyError(pid))
                continue

            if self.routing.dry_run:
                info(_LOG, "dry_run_selected", provider=pid, model=model)
                metrics.record_attempt(pid, "dry_run")
                return GenerationResult(
                    text=DRY_RUN_TEXT,
                    provider=pid,
                    model=model,
                    usage_totals=self.tracker.totals(),
                    dry_run=True,
                    attempts=attempts,
                )

            try:
                result = await self._invoke(pid, adapter, api_key, text, language, model, metadata)
            except ProviderInvocationError as e:
                cause = e.__cause__
                attempts.append(Attempt(pid, str(cause) if cause is not None else e.message, e))
                warn(_LOG, "provider_failed", provider=pid, error=str(cause or e), status=e.status)
                continue

            success(_LOG, "provider_selected", provider=pid, tier=self.catalog.tier(pid).value,
                    model=result.model, tokens=result.total_tokens)
            result.attempts = attempts
            return result

        if self.routing.disable_paid:
            raise NoFreeProvidersError(attempts)
        raise AllProvidersExhaustedError(attempts)

    async def _invoke(
        self,
        pid: str,
        adapter: ProviderAdapter,
        api_key: Optional[str],
        text: str,
        language: str,
        model: Optional[str],
        metadata: Dict[str, Any],
    ) -> GenerationResult:
        """
        Call one adapter with timeout and same-candidate retries.

        Raises:
            ProviderInvocationError: After the last failed attempt, with the
                adapter's exception (or the timeout) as __cause__.
        """
        timeout = self.routing.timeout_ms / 1000.0
        retry_limit = max(0, self.routing.retry_limit)
        backoff = float(Defaults.BACKOFF_INITIAL_MS)
        attempt = 0

        while True:
            attempt += 1
            outcome = "failure"
            try:
                with timeit("provider_call") as t:
                    response = await asyncio.wait_for(
                        adapter.summarise(api_key, text, language=language, model=model),
                        timeout=timeout,
                    )
            except asyncio.TimeoutError:
                outcome = "timeout"
                last: BaseException = TimeoutError(f"Provider {pid} timed out after {self.routing.timeout_ms}ms")
            except Exception as e:
                last = e
            else:
                return self._record_success(pid, response, text, model, metadata, t.elapsed)

            metrics.record_attempt(pid, outcome)
            verbose(_LOG, "attempt_failed", provider=pid, attempt=attempt, error=str(last))

            if is_auth_error(last) or attempt > retry_limit:
                self._mark_failure(pid, last)
                raise ProviderInvocationError(
                    pid,
                    attempts=attempt,
                    status=getattr(last, "status", None),
                ) from last

            jitter = backoff * (0.5 + self._random())
            await self._sleep(min(backoff + jitter, Defaults.BACKOFF_MAX_MS) / 1000.0)
            backoff = min(backoff * 2, float(Defaults.BACKOFF_MAX_MS))

    def _record_success(
        self,
        pid: str,
        response: Any,
        text: str,
        model: Optional[str],
        metadata: Dict[str, Any],
        seconds: float,
    ) -> GenerationResult:
        summary = response.summary if isinstance(getattr(response, "summary", None), str) else ""
        prompt = response.prompt_tokens
        if prompt is None:
            prompt = estimate_tokens_from_text(text)
        completion = response.completion_tokens
        if completion is None:
            completion = estimate_tokens_from_text(summary)
        model_used = normalise_model_name(getattr(response, "model", None), model)

        delta = self.tracker.record(model_used, prompt, completion, {
            "provider": pid,
            "type": metadata.get("type") or "summary",
            "url": metadata.get("url"),
            "segmentId": metadata.get("segmentId"),
        })
        self._mark_success(pid, delta.total_tokens)
        metrics.record_attempt(pid, "success", seconds)

        return GenerationResult(
            text=summary,
            provider=pid,
            model=model_used,
            prompt_tokens=delta.prompt_tokens,
            completion_tokens=delta.completion_tokens,
            total_tokens=delta.total_tokens,
            usage_totals=self.tracker.totals(),
        )
