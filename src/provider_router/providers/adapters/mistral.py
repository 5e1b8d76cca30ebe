"""Mistral adapter over its OpenAI-compatible chat completions endpoint."""
from __future__ import annotations

from typing import Optional

from provider_router.providers.adapters.base import CostMetadata, OperationCost, UnsupportedOperationError
from provider_router.providers.adapters.openai import OpenAIAdapter
from provider_router.speech.planner import SpeechCapability


class MistralAdapter(OpenAIAdapter):
    kind = "mistral"
    display_name = "Mistral"
    default_model = "mistral-small-latest"
    default_api_url = "https://api.mistral.ai/v1/chat/completions"

    def get_cost_metadata(self) -> CostMetadata:
        return CostMetadata(summarise=OperationCost("summary", model=self.model))

    def speech_capability(self) -> Optional[SpeechCapability]:
        return None

    async def transcribe(self, *args, **kwargs):
        raise UnsupportedOperationError("Mistral transcription is not supported.")

    async def synthesise(self, *args, **kwargs):
        raise UnsupportedOperationError("Mistral speech synthesis is not supported.")
