"""
Provider Adapter Base Class and Result Types.

This module provides:
    - ProviderAdapter: Base class every vendor adapter inherits from
    - SummaryResult / TranscriptionResult / SpeechResult: Call results
    - OperationCost / CostMetadata: What each call is charged against the budget
    - AdapterError / AdapterHTTPError / UnsupportedOperationError

An adapter translates one generic request into a single vendor REST call
and back. It never retries, never routes and never touches the budget;
the Router and RouterContext do that.

Implementing a New Adapter:
    1. Create providers/adapters/<vendor>.py
    2. Inherit from ProviderAdapter, set `kind`, `display_name`
    3. Implement summarise() (and transcribe()/synthesise() if supported)
    4. Register the factory in providers/registry.py default_registry()

HTTP:
    Requests go through httpx.AsyncClient. Pass `client=` to share a
    connection pool or to inject httpx.MockTransport in tests; without one
    each call opens a short-lived client.
"""
from __future__ import annotations

import base64
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

import httpx

from provider_router.core.config import Defaults, ProviderConfig, tokens_from_usd
from provider_router.core.logging import get_logger, trace
from provider_router.speech.planner import SpeechCapability

SUMMARY_SYSTEM_PROMPT = "You are a helpful assistant that creates short spoken summaries."


def build_summary_prompt(text: str, language: str) -> str:
    return (
        "Provide a concise, listener-friendly summary of the following webpage content. "
        f"Use {language} language.\n\n{text}"
    )


class AdapterError(Exception):
    """Raised by adapters for vendor-side failures."""
    status: Optional[int] = None


class AdapterHTTPError(AdapterError):
    """
    Non-2xx response from a vendor.

    Attributes:
        status: HTTP status code (401/403 mark auth failures, never retried).
        body: Response text, trimmed.
    """
    def __init__(self, vendor: str, status: int, body: str = ""):
        self.vendor = vendor
        self.status = status
        self.body = body
        super().__init__(f"{vendor} error ({status}): {body}".rstrip(": "))


class UnsupportedOperationError(AdapterError):
    """The vendor has no API for the requested operation."""


@dataclass
class SummaryResult:
    """
    Result of a summarisation call.

    Token counts are None when the vendor did not report usage; the
    router estimates them in that case.
    """
    summary: str
    model: str
    prompt_tokens: Optional[int] = None
    completion_tokens: Optional[int] = None


@dataclass
class TranscriptionResult:
    text: str
    model: Optional[str] = None


@dataclass
class SpeechResult:
    """Synthesised audio for one chunk."""
    audio: bytes
    mime_type: str


@dataclass(frozen=True)
class OperationCost:
    """
    Budget facts for one adapter operation.

    Attributes:
        label: Tag recorded with flat charges ("stt", "tts").
        model: Default model for the operation (None if unsupported).
        flat_tokens: Fixed token charge per call; None means "use the default".
        flat_cost_usd: Legacy monetary charge, converted when flat_tokens is None.
        completion_tokens: Expected completion length for summaries, when it
            differs from the default allowance.
        voices: Voices the adapter offers for synthesis.
    """
    label: str
    model: Optional[str] = None
    flat_tokens: Optional[int] = None
    flat_cost_usd: Optional[float] = None
    completion_tokens: Optional[int] = None
    voices: Tuple[str, ...] = ()

    def charge_tokens(self, default: int) -> int:
        """Token charge for one call: flat_tokens, then converted USD, then `default`."""
        if self.flat_tokens is not None:
            return max(0, int(self.flat_tokens))
        if self.flat_cost_usd is not None:
            return tokens_from_usd(self.flat_cost_usd)
        return default

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"label": self.label, "model": self.model}
        if self.flat_tokens is not None:
            data["flatTokens"] = self.flat_tokens
        if self.flat_cost_usd is not None:
            data["flatCost"] = self.flat_cost_usd
        if self.completion_tokens is not None:
            data["completionTokens"] = self.completion_tokens
        if self.voices:
            data["voices"] = list(self.voices)
        return data


@dataclass(frozen=True)
class CostMetadata:
    summarise: OperationCost
    transcribe: OperationCost = field(default_factory=lambda: OperationCost("stt", flat_tokens=0))
    synthesise: OperationCost = field(default_factory=lambda: OperationCost("tts", flat_tokens=0))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "summarise": self.summarise.to_dict(),
            "transcribe": self.transcribe.to_dict(),
            "synthesise": self.synthesise.to_dict(),
        }


class ProviderAdapter:
    """
    Base class for vendor adapters.

    Subclasses implement summarise() and optionally transcribe() and
    synthesise(). Unsupported operations raise UnsupportedOperationError.

    Attributes:
        kind: AdapterKind tag value ("openai", "gemini", ...).
        display_name: Vendor name used in error messages.
        requires_key: Whether calls need an API key.
        default_model: Summary model when the config names none.
        config: Resolved ProviderConfig for this provider.
    """
    kind: str = "base"
    display_name: str = "Provider"
    requires_key: bool = True
    default_model: str = Defaults.PROVIDER_MODEL
    default_api_url: Optional[str] = None

    def __init__(
        self,
        config: Optional[ProviderConfig] = None,
        client: Optional[httpx.AsyncClient] = None,
        timeout_seconds: float = Defaults.ROUTING_TIMEOUT_MS / 1000.0,
    ):
        self.config = config or ProviderConfig(provider=self.kind, model=self.default_model, api_key_env=None)
        self.logger = get_logger(f"provider-router.adapter.{self.kind}")
        self._client = client
        self._timeout = timeout_seconds

    @property
    def model(self) -> str:
        return self.config.model or self.default_model

    @property
    def api_url(self) -> Optional[str]:
        return self.config.api_url or self.default_api_url

    def ensure_key(self, api_key: Optional[str]) -> None:
        if self.requires_key and not api_key:
            raise AdapterError(f"Missing {self.display_name} API key.")

    def get_cost_metadata(self) -> CostMetadata:
        return CostMetadata(summarise=OperationCost("summary", model=self.model))

    def speech_capability(self) -> Optional[SpeechCapability]:
        """Input limits for synthesise(); None means no meaningful limit."""
        return None

    async def summarise(
        self,
        api_key: Optional[str],
        text: str,
        language: str = "en",
        model: Optional[str] = None,
    ) -> SummaryResult:
        raise NotImplementedError

    async def transcribe(
        self,
        api_key: Optional[str],
        base64_audio: str,
        mime_type: str = "audio/webm",
        model: Optional[str] = None,
        filename: str = "speech.webm",
    ) -> TranscriptionResult:
        raise UnsupportedOperationError(f"{self.display_name} transcription is not supported.")

    async def synthesise(
        self,
        api_key: Optional[str],
        text: str,
        voice: Optional[str] = None,
        language_code: Optional[str] = None,
        model: Optional[str] = None,
        format: str = Defaults.SPEECH_DEFAULT_FORMAT,
        chunk_index: int = 0,
        chunk_count: int = 1,
    ) -> SpeechResult:
        raise UnsupportedOperationError(f"{self.display_name} speech synthesis is not supported.")

    # ─────────────────────────────────────────────────────────────────────────
    # HTTP helpers
    # ─────────────────────────────────────────────────────────────────────────

    def _headers(self, extra: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        headers.update(self.config.headers or {})
        if extra:
            headers.update(extra)
        return headers

    async def _post(self, url: str, **kwargs: Any) -> httpx.Response:
        """POST and raise AdapterHTTPError for non-2xx responses."""
        trace(self.logger, "http_post", url=url.split("?", 1)[0])
        if self._client is not None:
            response = await self._client.post(url, **kwargs)
        else:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.post(url, **kwargs)
        if response.is_error:
            raise AdapterHTTPError(self.display_name, response.status_code, response.text.strip()[:500])
        return response

    @staticmethod
    def _decode_audio(base64_audio: str) -> bytes:
        return base64.b64decode(base64_audio)

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()


def as_int(value: Any) -> Optional[int]:
    """Vendor usage numbers as int, None when absent or non-numeric."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return int(value)
