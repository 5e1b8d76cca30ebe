"""
Tests for error handling classes.

Tests cover:
- ErrorCode constants
- RouterError creation and serialization (to_dict)
- Subclass codes and details
- Attempt formatting in exhaustion errors
- Exception chaining on ProviderInvocationError
"""
import pytest

from provider_router.core.errors import (
    AdapterNotRegisteredError,
    AllProvidersExhaustedError,
    Attempt,
    BudgetExceededError,
    ErrorCode,
    MissingApiKeyError,
    MissingInputError,
    NoFreeProvidersError,
    ProviderInvocationError,
    RouterError,
    format_attempts,
)


class TestRouterError:
    """Tests for RouterError base exception."""

    def test_creation_with_message(self):
        error = RouterError("Test error message")
        assert error.message == "Test error message"
        assert str(error) == "Test error message"

    def test_default_code_is_internal_error(self):
        assert RouterError("x").code == ErrorCode.INTERNAL_ERROR

    def test_default_details_is_empty_dict(self):
        assert RouterError("x").details == {}

    def test_to_dict_without_details(self):
        assert RouterError("boom", code=ErrorCode.MISSING_INPUT).to_dict() == {
            "ok": False,
            "error": "MISSING_INPUT",
            "message": "boom",
        }

    def test_to_dict_with_details(self):
        data = RouterError("boom", details={"provider": "ollama"}).to_dict()
        assert data["details"] == {"provider": "ollama"}

    def test_is_exception(self):
        with pytest.raises(RouterError):
            raise BudgetExceededError()


class TestSubclasses:
    def test_missing_input(self):
        error = MissingInputError()
        assert error.code == ErrorCode.MISSING_INPUT
        assert error.message == "generate requires source text"

    def test_missing_api_key(self):
        error = MissingApiKeyError("gemini_free")
        assert error.code == ErrorCode.MISSING_API_KEY
        assert error.provider == "gemini_free"
        assert error.details == {"provider": "gemini_free"}

    def test_budget_exceeded(self):
        error = BudgetExceededError("Token limit reached for speech synthesis.", {"estimatedTokens": 10})
        assert error.code == ErrorCode.BUDGET_EXCEEDED
        assert error.details["estimatedTokens"] == 10

    def test_adapter_not_registered(self):
        error = AdapterNotRegisteredError("custom_free", "custom")
        assert error.code == ErrorCode.ADAPTER_NOT_REGISTERED
        assert "custom_free" in error.message

    def test_provider_invocation_chains_cause(self):
        cause = ValueError("bad payload")
        try:
            try:
                raise cause
            except ValueError as e:
                raise ProviderInvocationError("openai_paid", attempts=3, status=500) from e
        except ProviderInvocationError as error:
            assert error.__cause__ is cause
            assert error.details == {"provider": "openai_paid", "attempts": 3, "status": 500}
            assert error.code == ErrorCode.PROVIDER_FAILED


class TestExhaustion:
    def test_format_attempts(self):
        attempts = [Attempt("ollama", "connection refused"), Attempt("gemini_free", "token_cap")]
        assert format_attempts(attempts) == "ollama: connection refused; gemini_free: token_cap"

    def test_all_providers_exhausted(self):
        error = AllProvidersExhaustedError([Attempt("ollama", "timeout")])
        assert error.code == ErrorCode.ALL_PROVIDERS_FAILED
        assert error.message == "All providers failed. Attempts: ollama: timeout"
        assert error.details == {"attempts": [{"provider": "ollama", "reason": "timeout"}]}

    def test_no_free_providers(self):
        error = NoFreeProvidersError()
        assert error.code == ErrorCode.NO_FREE_PROVIDERS
        assert error.message == "No free providers available and paid disabled."
        assert isinstance(error, AllProvidersExhaustedError)

    def test_no_free_providers_lists_attempts(self):
        error = NoFreeProvidersError([Attempt("ollama", "circuit_open")])
        assert error.message.endswith("Attempts: ollama: circuit_open")
