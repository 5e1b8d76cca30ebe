"""
OpenAI adapter: chat completions, audio transcription and text-to-speech.

Endpoints (overridable through ProviderConfig.api_url for chat):
    POST https://api.openai.com/v1/chat/completions
    POST https://api.openai.com/v1/audio/transcriptions   (multipart)
    POST https://api.openai.com/v1/audio/speech

Costs:
    Transcription and speech carry legacy flat USD prices that the budget
    converts to tokens (0.005 USD and 0.01 USD per call).
"""
from __future__ import annotations

from typing import Any, Dict, Optional

from provider_router.core.config import Defaults
from provider_router.providers.adapters.base import (
    SUMMARY_SYSTEM_PROMPT,
    CostMetadata,
    OperationCost,
    ProviderAdapter,
    SpeechResult,
    SummaryResult,
    TranscriptionResult,
    as_int,
    build_summary_prompt,
)
from provider_router.speech.planner import SpeechCapability

TRANSCRIPTION_MODEL = "gpt-4o-mini-transcribe"
TTS_MODEL = "gpt-4o-mini-tts"
TRANSCRIPTION_URL = "https://api.openai.com/v1/audio/transcriptions"
TTS_URL = "https://api.openai.com/v1/audio/speech"
TTS_VOICES = ("alloy", "echo", "fable", "onyx", "nova", "shimmer")

# Speech endpoint input limit, with headroom for estimation error
_SPEECH_CAPABILITY = SpeechCapability(max_input_tokens=2000, token_buffer=50, sentence_overlap=0)

_AUDIO_MIME = {
    "mp3": "audio/mpeg",
    "opus": "audio/opus",
    "aac": "audio/aac",
    "flac": "audio/flac",
    "wav": "audio/wav",
    "pcm": "audio/pcm",
}


class OpenAIAdapter(ProviderAdapter):
    """OpenAI REST adapter. Also serves OpenAI-compatible chat endpoints."""
    kind = "openai"
    display_name = "OpenAI"
    default_model = Defaults.PROVIDER_MODEL
    default_api_url = Defaults.PROVIDER_API_URL
    transcription_url = TRANSCRIPTION_URL
    tts_url = TTS_URL

    def _auth(self, api_key: Optional[str]) -> Dict[str, str]:
        return {"Authorization": f"Bearer {api_key}"}

    def get_cost_metadata(self) -> CostMetadata:
        return CostMetadata(
            summarise=OperationCost("summary", model=self.model),
            transcribe=OperationCost("stt", model=TRANSCRIPTION_MODEL, flat_cost_usd=0.005),
            synthesise=OperationCost("tts", model=TTS_MODEL, flat_cost_usd=0.01, voices=TTS_VOICES),
        )

    def speech_capability(self) -> Optional[SpeechCapability]:
        return _SPEECH_CAPABILITY

    async def summarise(
        self,
        api_key: Optional[str],
        text: str,
        language: str = "en",
        model: Optional[str] = None,
    ) -> SummaryResult:
        self.ensure_key(api_key)
        model_to_use = model or self.model
        payload = {
            "model": model_to_use,
            "temperature": self.config.temperature,
            "messages": [
                {"role": "system", "content": SUMMARY_SYSTEM_PROMPT},
                {"role": "user", "content": build_summary_prompt(text, language)},
            ],
        }
        response = await self._post(self.api_url, headers=self._headers(self._auth(api_key)), json=payload)
        data = response.json()
        return SummaryResult(
            summary=_first_choice_text(data),
            model=data.get("model") or model_to_use,
            prompt_tokens=as_int((data.get("usage") or {}).get("prompt_tokens")),
            completion_tokens=as_int((data.get("usage") or {}).get("completion_tokens")),
        )

    async def transcribe(
        self,
        api_key: Optional[str],
        base64_audio: str,
        mime_type: str = "audio/webm",
        model: Optional[str] = None,
        filename: str = "speech.webm",
    ) -> TranscriptionResult:
        self.ensure_key(api_key)
        model_to_use = model or TRANSCRIPTION_MODEL
        headers = dict(self.config.headers or {})
        headers.update(self._auth(api_key))
        response = await self._post(
            self.transcription_url,
            headers=headers,
            files={"file": (filename, self._decode_audio(base64_audio), mime_type)},
            data={"model": model_to_use},
        )
        data = response.json()
        return TranscriptionResult(text=str(data.get("text") or ""), model=model_to_use)

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
        self.ensure_key(api_key)
        payload = {
            "model": model or TTS_MODEL,
            "input": text,
            "voice": voice or Defaults.SPEECH_DEFAULT_VOICE,
            "response_format": format,
        }
        response = await self._post(self.tts_url, headers=self._headers(self._auth(api_key)), json=payload)
        mime_type = response.headers.get("content-type") or _AUDIO_MIME.get(format, "audio/mpeg")
        return SpeechResult(audio=response.content, mime_type=mime_type)


def _first_choice_text(data: Dict[str, Any]) -> str:
    choices = data.get("choices") or []
    if not choices:
        return ""
    content = (choices[0].get("message") or {}).get("content")
    return content.strip() if isinstance(content, str) else ""
