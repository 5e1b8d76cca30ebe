"""
Routing, Budget and Cache Components.

    - router.py: Ordered free-first fallback with retry, timeout and circuit breaker
    - usage.py: Cumulative token tracker against a monthly ceiling
    - cache.py: Fingerprint-keyed LRU summary cache
"""
from .cache import CacheEntry, Fingerprint, ResultCache, make_fingerprint, parse_fingerprint
from .router import GenerationResult, Router
from .usage import TokenUsage, UsageTracker, estimate_token_usage, estimate_tokens_from_text

__all__ = [
    "Router",
    "GenerationResult",
    "UsageTracker",
    "TokenUsage",
    "estimate_token_usage",
    "estimate_tokens_from_text",
    "ResultCache",
    "CacheEntry",
    "Fingerprint",
    "make_fingerprint",
    "parse_fingerprint",
]
