"""
Shared fixtures: scripted adapters and context builders.

ScriptedAdapter answers from a per-provider script held by an AdapterBook,
so router and context tests run without any network access.
"""
from __future__ import annotations

import os
from typing import Any, Dict, List, Optional

import pytest

from provider_router.core.config import Settings
from provider_router.core.storage import MemoryStore
from provider_router.providers.adapters.base import (
    AdapterError,
    CostMetadata,
    OperationCost,
    ProviderAdapter,
    SpeechResult,
    SummaryResult,
    TranscriptionResult,
)
from provider_router.providers.registry import AdapterKind, AdapterRegistry
from provider_router.services.context import RouterContext
from provider_router.speech.planner import SpeechCapability

# Keys for every keyed family, so routing is decided by the script alone
KEYS_ENV = {
    "OPENAI_API_KEY": "sk-test-openai",
    "GOOGLE_API_KEY": "g-test-gemini",
    "ANTHROPIC_API_KEY": "sk-ant-test",
    "MISTRAL_API_KEY": "m-test",
    "HUGGINGFACE_API_KEY": "hf-test",
}


class AdapterBook:
    """
    Scripts and call log shared by every ScriptedAdapter of one registry.

    Attributes:
        outcomes: provider id -> list of results/exceptions, consumed in
            order; the last one repeats.
        calls: provider ids in the order summarise() was called.
        speech_calls: (provider, text, chunk_index, chunk_count) tuples.
    """

    def __init__(self) -> None:
        self.outcomes: Dict[str, List[Any]] = {}
        self.calls: List[str] = []
        self.speech_calls: List[tuple] = []
        self.transcriptions: List[str] = []
        self.capability: Optional[SpeechCapability] = None
        self.completion_tokens: Dict[str, int] = {}
        self.synth_flat_tokens: Optional[int] = 0
        self.transcribe_flat_tokens: Optional[int] = None

    def script(self, provider: str, *outcomes: Any) -> None:
        self.outcomes[provider] = list(outcomes)

    def succeed(self, provider: str, summary: str = "summary", prompt: int = 10, completion: int = 5) -> None:
        self.script(provider, SummaryResult(summary, f"{provider}-model", prompt, completion))

    def next_outcome(self, provider: str) -> Any:
        queue = self.outcomes.get(provider)
        if not queue:
            return AdapterError(f"no script for {provider}")
        return queue.pop(0) if len(queue) > 1 else queue[0]

    def registry(self) -> AdapterRegistry:
        registry = AdapterRegistry()
        for kind in AdapterKind:
            registry.register(kind, lambda config, kind=kind: ScriptedAdapter(config, self, kind.value))
        return registry


class ScriptedAdapter(ProviderAdapter):
    kind = "scripted"
    display_name = "Scripted"

    def __init__(self, config, book: AdapterBook, family: str):
        super().__init__(config)
        self.book = book
        self.family = family
        self.requires_key = family != "ollama"

    def get_cost_metadata(self) -> CostMetadata:
        return CostMetadata(
            summarise=OperationCost(
                "summary",
                model=self.model,
                completion_tokens=self.book.completion_tokens.get(self.config.provider),
            ),
            transcribe=OperationCost("stt", model="stt-model", flat_tokens=self.book.transcribe_flat_tokens),
            synthesise=OperationCost("tts", model="tts-model", flat_tokens=self.book.synth_flat_tokens),
        )

    def speech_capability(self) -> Optional[SpeechCapability]:
        return self.book.capability

    async def summarise(self, api_key, text, language="en", model=None):
        pid = self.config.provider
        self.book.calls.append(pid)
        outcome = self.book.next_outcome(pid)
        if callable(outcome):
            outcome = await outcome()
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    async def transcribe(self, api_key, base64_audio, mime_type="audio/webm", model=None, filename="speech.webm"):
        self.book.transcriptions.append(base64_audio)
        return TranscriptionResult(text="transcribed text", model=model)

    async def synthesise(self, api_key, text, voice=None, language_code=None, model=None,
                         format="mp3", chunk_index=0, chunk_count=1):
        self.book.speech_calls.append((self.config.provider, text, chunk_index, chunk_count))
        return SpeechResult(audio=f"<{chunk_index}>".encode(), mime_type="audio/mpeg")


async def no_sleep(seconds: float) -> None:
    return None


@pytest.fixture(autouse=True)
def skip_warmup():
    """Skip context warmup for all tests."""
    os.environ["PROVIDER_ROUTER_SKIP_WARMUP"] = "1"
    yield


@pytest.fixture
def book() -> AdapterBook:
    return AdapterBook()


@pytest.fixture
def make_context(book):
    """Build a RouterContext over the scripted registry and a MemoryStore."""

    def build(raw: Optional[Dict[str, Any]] = None, store=None, env=None, **options) -> RouterContext:
        return RouterContext(
            Settings(raw=raw or {}),
            store=store if store is not None else MemoryStore(),
            registry=book.registry(),
            env=KEYS_ENV if env is None else env,
            sleep=options.pop("sleep", no_sleep),
            **options,
        )

    return build
