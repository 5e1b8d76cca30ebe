"""
Error codes and exceptions for provider-router.

Every error raised across a layer boundary is a RouterError carrying a
stable code, a human-readable message and optional details. The HTTP
layer turns them into responses with to_dict():

    {"ok": false, "error": "ALL_PROVIDERS_FAILED", "message": "...", "details": {...}}

Failure chains are kept with `raise ... from exc`, so the original
adapter exception stays reachable through __cause__.

Routing-level propagation:
    - MissingInputError is raised before any provider is contacted.
    - MissingApiKeyError and ProviderInvocationError are recorded per
      candidate and never escape Router.generate on their own.
    - AllProvidersExhaustedError (or NoFreeProvidersError when paid
      providers are disabled) is the only routing failure callers see.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence


class ErrorCode:
    """Stable error codes returned in API error payloads."""
    MISSING_INPUT = "MISSING_INPUT"                 # Empty text / audio
    MISSING_API_KEY = "MISSING_API_KEY"             # No key for a keyed provider
    BUDGET_EXCEEDED = "BUDGET_EXCEEDED"             # Per-call or monthly ceiling
    PROVIDER_FAILED = "PROVIDER_FAILED"             # One adapter call failed
    ALL_PROVIDERS_FAILED = "ALL_PROVIDERS_FAILED"   # Every candidate exhausted
    NO_FREE_PROVIDERS = "NO_FREE_PROVIDERS"         # disable_paid left nothing usable
    ADAPTER_NOT_REGISTERED = "ADAPTER_NOT_REGISTERED"
    STORAGE_LOCK = "STORAGE_LOCK"                   # Could not take a storage lock
    INTERNAL_ERROR = "INTERNAL_ERROR"


@dataclass(frozen=True)
class Attempt:
    """
    One candidate's outcome inside a routing call.

    Attributes:
        provider: Canonical provider id.
        reason: Short reason ("token_cap", "missing_api_key", "circuit_open",
            or the failure message).
        error: The exception behind the reason, when there was one.
    """
    provider: str
    reason: str
    error: Optional[BaseException] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"provider": self.provider, "reason": self.reason}


def format_attempts(attempts: Sequence[Attempt]) -> str:
    return "; ".join(f"{a.provider}: {a.reason}" for a in attempts)


class RouterError(Exception):
    """
    Base exception for provider-router errors.

    Attributes:
        message: Human-readable error message.
        code: Error code from ErrorCode.
        details: Extra context for API responses.
    """
    def __init__(self, message: str, code: str = ErrorCode.INTERNAL_ERROR, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the standard API error payload."""
        result: Dict[str, Any] = {
            "ok": False,
            "error": self.code,
            "message": self.message,
        }
        if self.details:
            result["details"] = self.details
        return result


class MissingInputError(RouterError):
    """Raised when a request has no text (or audio) to work on."""
    def __init__(self, message: str = "generate requires source text", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, ErrorCode.MISSING_INPUT, details)


class MissingApiKeyError(RouterError):
    """Raised when a provider that needs a key has none configured."""
    def __init__(self, provider: str, message: Optional[str] = None):
        self.provider = provider
        super().__init__(
            message or f"API key required for provider {provider}",
            ErrorCode.MISSING_API_KEY,
            {"provider": provider},
        )


class BudgetExceededError(RouterError):
    """Raised when a call would push spend past the per-call or monthly ceiling."""
    def __init__(self, message: str = "Token limit reached.", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, ErrorCode.BUDGET_EXCEEDED, details)


class ProviderInvocationError(RouterError):
    """
    Wraps one failed adapter call, including timeouts.

    The adapter's own exception is chained as __cause__ by the raiser.
    `status` carries the HTTP status when the adapter reported one.
    """
    def __init__(self, provider: str, attempts: int = 1, status: Optional[int] = None, message: Optional[str] = None):
        self.provider = provider
        self.attempts = attempts
        self.status = status
        details: Dict[str, Any] = {"provider": provider, "attempts": attempts}
        if status is not None:
            details["status"] = status
        super().__init__(message or "Provider invocation failed", ErrorCode.PROVIDER_FAILED, details)


class AllProvidersExhaustedError(RouterError):
    """Raised when every routing candidate was skipped or failed."""
    def __init__(
        self,
        attempts: Sequence[Attempt],
        message: Optional[str] = None,
        code: str = ErrorCode.ALL_PROVIDERS_FAILED,
    ):
        self.attempts: List[Attempt] = list(attempts)
        if message is None:
            message = f"All providers failed. Attempts: {format_attempts(self.attempts)}"
        super().__init__(message, code, {"attempts": [a.to_dict() for a in self.attempts]})


class NoFreeProvidersError(AllProvidersExhaustedError):
    """Raised when paid providers are disabled and no free candidate succeeded."""
    def __init__(self, attempts: Sequence[Attempt] = ()):
        message = "No free providers available and paid disabled."
        if attempts:
            message = f"{message} Attempts: {format_attempts(attempts)}"
        super().__init__(attempts, message, ErrorCode.NO_FREE_PROVIDERS)


class AdapterNotRegisteredError(RouterError):
    """Raised when no adapter factory exists for a provider's adapter key."""
    def __init__(self, provider: str, adapter_key: str):
        self.provider = provider
        self.adapter_key = adapter_key
        super().__init__(
            f"No adapter registered for provider {provider} ({adapter_key})",
            ErrorCode.ADAPTER_NOT_REGISTERED,
            {"provider": provider, "adapter": adapter_key},
        )


class StorageLockError(RouterError):
    """Raised when a storage key lock cannot be taken."""
    def __init__(self, key: str):
        self.key = key
        super().__init__("Failed to acquire storage lock.", ErrorCode.STORAGE_LOCK, {"key": key})
