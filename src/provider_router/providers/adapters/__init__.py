"""
Vendor Adapters.

Each adapter turns one generic request into one REST call and back:
    - openai.py: Chat completions, transcription and speech
    - gemini.py: generateContent (free and paid models)
    - anthropic.py: Messages API
    - mistral.py: OpenAI-style chat completions
    - huggingface.py: Inference API summarisation
    - ollama.py: Local generate endpoint (no key)
"""
from .base import (
    AdapterError,
    AdapterHTTPError,
    CostMetadata,
    OperationCost,
    ProviderAdapter,
    SpeechResult,
    SummaryResult,
    TranscriptionResult,
    UnsupportedOperationError,
)

__all__ = [
    "ProviderAdapter",
    "AdapterError",
    "AdapterHTTPError",
    "UnsupportedOperationError",
    "SummaryResult",
    "TranscriptionResult",
    "SpeechResult",
    "OperationCost",
    "CostMetadata",
]
