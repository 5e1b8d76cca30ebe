"""
API Request/Response Schemas.

Pydantic models for the provider-router HTTP endpoints. They provide:
    - Request validation with type checking
    - Automatic JSON serialization/deserialization
    - OpenAPI documentation generation

Models:
    SummariseRequest: Input for /v1/summaries
    SynthesiseRequest: Input for /v1/speech
    TranscribeRequest: Input for /v1/transcriptions
    SegmentsUpdatedRequest: Input for /v1/segments
    ProviderRequest: Input for /v1/provider
    ApiKeyRequest: Input for /v1/keys

Example Request:
    {
        "url": "https://example.com/article",
        "language": "en",
        "provider": "auto",
        "segments": [{"id": "s1", "text": "First paragraph..."}]
    }
"""
from __future__ import annotations

from typing import List

from pydantic import BaseModel, Field

# 25MB of base64 is roughly 18MB of audio, the vendor upload ceiling
MAX_AUDIO_B64_SIZE = 25 * 1024 * 1024


class Segment(BaseModel):
    """
    One page segment to summarise.

    Attributes:
        id: Segment identifier, stable across page updates.
        text: Segment text.
    """
    id: str | int = Field(..., description="Segment identifier")
    text: str = Field(default="", description="Segment text")


class SummariseRequest(BaseModel):
    """
    Summary request for the segments of one page.

    Attributes:
        url: Page URL; part of every cache fingerprint.
        segments: Segments to summarise, in page order.
        language: Summary language (default "en").
        provider: Provider preference; None or "auto" uses the routing order.
    """
    url: str | None = Field(default=None, description="Page URL")
    segments: List[Segment] = Field(..., min_length=1, description="Segments to summarise")
    language: str = Field(default="en", description="Summary language code")
    provider: str | None = Field(default=None, description="Provider preference")


class SynthesiseRequest(BaseModel):
    text: str = Field(..., min_length=1, description="Text to speak")
    voice: str | None = Field(default=None, description="Voice id (provider-specific)")
    language: str | None = Field(default=None, description="Language code")
    provider: str | None = Field(default=None, description="Provider override")
    format: str | None = Field(default=None, description="Audio format (mp3, wav, ...)")


class TranscribeRequest(BaseModel):
    audio_b64: str = Field(
        ...,
        min_length=1,
        max_length=MAX_AUDIO_B64_SIZE,
        description="Base64-encoded audio",
    )
    mime_type: str = Field(default="audio/webm", description="Audio MIME type")
    filename: str = Field(default="speech.webm", description="Upload filename")
    provider: str | None = Field(default=None, description="Provider override")


class SegmentsUpdatedRequest(BaseModel):
    """Live segments of a page; cached summaries for any other segment are dropped."""
    url: str | None = Field(default=None, description="Page URL")
    segments: List[Segment] = Field(default_factory=list, description="Segments still on the page")


class ProviderRequest(BaseModel):
    provider: str | None = Field(default=None, description="Provider id, alias or 'auto'")


class ApiKeyRequest(BaseModel):
    api_key: str | None = Field(default=None, description="Key to store; empty clears it")
    provider: str | None = Field(default=None, description="Provider id (default: active)")


class SummariseResponse(BaseModel):
    ok: bool = True
    summaries: List[dict]
    usage: dict


class SpeechResponse(BaseModel):
    """
    Speech synthesis result.

    Attributes:
        audio: {"base64": ..., "mimeType": ...} of the stitched chunks.
        provider: Provider that produced the audio.
        plan: Chunk plan metrics (chunks, truncated, token counts).
        tokensCharged: Tokens recorded against the budget.
        usage: Usage snapshot after the charge.
    """
    ok: bool = True
    audio: dict
    provider: str
    plan: dict
    tokensCharged: int
    usage: dict
