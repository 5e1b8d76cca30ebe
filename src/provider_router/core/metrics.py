"""
Prometheus metrics for provider-router.

prometheus_client is optional. Without it every recording method is a
no-op and /metrics answers with a plain-text notice.

Metrics Exposed:
    router_attempts_total{provider,outcome}    - Candidate outcomes
        (success, failure, timeout, token_cap, missing_api_key, circuit_open, dry_run)
    router_generate_duration_seconds{provider} - Successful generate latency
    router_requests_total{operation,status}    - Top-level requests
    router_tokens_recorded_total{kind}         - Tokens charged (prompt, completion, flat)
    router_budget_remaining_tokens             - limit - cumulative total
    router_cache_hits_total{source}            - Summary cache hits (active, candidate, scan)
    router_cache_misses_total                  - Summary cache misses
    router_cache_evictions_total{reason}       - stale, segment, provider_switch
    router_speech_chunks_total{provider}       - Chunks sent for synthesis
    router_speech_truncations_total            - Speech inputs cut at the ceiling
    router_circuit_open{provider}              - 1 while a provider's circuit is open

Usage:
    from provider_router.core.metrics import metrics

    metrics.record_attempt("gemini_free", "success")
    metrics.record_tokens(prompt=120, completion=400)
    content, content_type = metrics.get_metrics_response()

Installation:
    pip install provider-router[metrics]
"""
from __future__ import annotations

from typing import Optional

try:
    from prometheus_client import (
        CONTENT_TYPE_LATEST,
        CollectorRegistry,
        Counter,
        Gauge,
        Histogram,
        generate_latest,
    )
    PROMETHEUS_AVAILABLE = True
except ImportError:
    PROMETHEUS_AVAILABLE = False
    Counter = None
    Histogram = None
    Gauge = None
    CollectorRegistry = None


class RouterMetrics:
    """
    Prometheus collectors behind a small recording API.

    Uses a private CollectorRegistry so several instances (tests, several
    apps in one process) never clash on metric names.

    Attributes:
        enabled: Whether prometheus_client is installed.
    """

    def __init__(self):
        self._enabled = PROMETHEUS_AVAILABLE
        self._registry: Optional["CollectorRegistry"] = None
        if self._enabled:
            self._setup_metrics()

    def _setup_metrics(self) -> None:
        self._registry = CollectorRegistry()

        self._attempts = Counter(
            "router_attempts_total",
            "Routing candidate outcomes",
            ["provider", "outcome"],
            registry=self._registry,
        )
        self._generate_duration = Histogram(
            "router_generate_duration_seconds",
            "Latency of successful provider calls",
            ["provider"],
            buckets=(0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 20.0, 30.0),
            registry=self._registry,
        )
        self._requests = Counter(
            "router_requests_total",
            "Top-level requests by operation and status",
            ["operation", "status"],
            registry=self._registry,
        )
        self._tokens = Counter(
            "router_tokens_recorded_total",
            "Tokens charged to the usage budget",
            ["kind"],
            registry=self._registry,
        )
        self._budget_remaining = Gauge(
            "router_budget_remaining_tokens",
            "Tokens left before the monthly ceiling",
            registry=self._registry,
        )
        self._cache_hits = Counter(
            "router_cache_hits_total",
            "Summary cache hits",
            ["source"],
            registry=self._registry,
        )
        self._cache_misses = Counter(
            "router_cache_misses_total",
            "Summary cache misses",
            registry=self._registry,
        )
        self._cache_evictions = Counter(
            "router_cache_evictions_total",
            "Summary cache entries removed",
            ["reason"],
            registry=self._registry,
        )
        self._speech_chunks = Counter(
            "router_speech_chunks_total",
            "Speech chunks sent for synthesis",
            ["provider"],
            registry=self._registry,
        )
        self._speech_truncations = Counter(
            "router_speech_truncations_total",
            "Speech inputs truncated at the hard ceiling",
            registry=self._registry,
        )
        self._circuit_open = Gauge(
            "router_circuit_open",
            "Whether a provider circuit is open (1) or closed (0)",
            ["provider"],
            registry=self._registry,
        )

    @property
    def enabled(self) -> bool:
        return self._enabled

    def record_attempt(self, provider: str, outcome: str, duration: Optional[float] = None) -> None:
        """Count one candidate outcome; successful calls also feed the latency histogram."""
        if not self._enabled:
            return
        self._attempts.labels(provider=provider, outcome=outcome).inc()
        if outcome == "success" and duration is not None:
            self._generate_duration.labels(provider=provider).observe(duration)

    def record_request(self, operation: str, status: str) -> None:
        if not self._enabled:
            return
        self._requests.labels(operation=operation, status=status).inc()

    def record_tokens(self, prompt: int = 0, completion: int = 0, flat: int = 0) -> None:
        if not self._enabled:
            return
        if prompt > 0:
            self._tokens.labels(kind="prompt").inc(prompt)
        if completion > 0:
            self._tokens.labels(kind="completion").inc(completion)
        if flat > 0:
            self._tokens.labels(kind="flat").inc(flat)

    def set_budget_remaining(self, tokens: int) -> None:
        if not self._enabled:
            return
        self._budget_remaining.set(max(0, tokens))

    def record_cache(self, result: str, source: str = "active") -> None:
        """
        Record a summary cache lookup.

        Args:
            result: "hit" or "miss"
            source: Which lookup stage hit ("active", "candidate", "scan")
        """
        if not self._enabled:
            return
        if result == "hit":
            self._cache_hits.labels(source=source).inc()
        else:
            self._cache_misses.inc()

    def record_cache_eviction(self, reason: str, count: int = 1) -> None:
        if not self._enabled or count <= 0:
            return
        self._cache_evictions.labels(reason=reason).inc(count)

    def record_speech(self, provider: str, chunks: int, truncated: bool) -> None:
        if not self._enabled:
            return
        if chunks > 0:
            self._speech_chunks.labels(provider=provider).inc(chunks)
        if truncated:
            self._speech_truncations.inc()

    def set_circuit_open(self, provider: str, is_open: bool) -> None:
        if not self._enabled:
            return
        self._circuit_open.labels(provider=provider).set(1 if is_open else 0)

    def get_metrics_response(self) -> tuple[bytes, str]:
        """Return (body, content_type) for the /metrics endpoint."""
        if not self._enabled:
            return (
                b"# Metrics not available (prometheus_client not installed)\n",
                "text/plain; charset=utf-8",
            )
        return (generate_latest(self._registry), CONTENT_TYPE_LATEST)


# Process-wide collector: from provider_router.core.metrics import metrics
metrics = RouterMetrics()
