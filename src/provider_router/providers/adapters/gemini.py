"""
Google Gemini adapter (AI Studio generateContent).

The model comes from the tier defaults in GeminiConfig (flash for
gemini_free, pro for gemini_paid) unless a provider block overrides it.
Transcription and speech synthesis are not offered.
"""
from __future__ import annotations

from typing import Any, Dict, Optional
from urllib.parse import quote

from provider_router.core.config import Defaults
from provider_router.providers.adapters.base import (
    ProviderAdapter,
    SummaryResult,
    as_int,
    build_summary_prompt,
)

GEMINI_API_BASE = "https://generativelanguage.googleapis.com/v1beta/models"


def build_endpoint(base_url: Optional[str], model: str, api_key: Optional[str]) -> str:
    """`{base}/models/{model}:generateContent?key=...`; `/models` is added when missing."""
    base = (base_url or GEMINI_API_BASE).rstrip("/")
    if not base.endswith("/models"):
        base = f"{base}/models"
    url = f"{base}/{quote(model, safe='')}:generateContent"
    if api_key:
        url = f"{url}?key={quote(api_key, safe='')}"
    return url


def extract_summary(data: Dict[str, Any]) -> str:
    """Join the text parts of the first candidate that has any parts."""
    for candidate in data.get("candidates") or []:
        parts = (candidate.get("content") or {}).get("parts")
        if isinstance(parts, list):
            texts = [p["text"].strip() for p in parts if isinstance(p, dict) and isinstance(p.get("text"), str)]
            return "\n".join(t for t in texts if t).strip()
    return ""


class GeminiAdapter(ProviderAdapter):
    kind = "gemini"
    display_name = "Gemini"
    default_model = Defaults.GEMINI_MODEL_FREE
    default_api_url = GEMINI_API_BASE

    async def summarise(
        self,
        api_key: Optional[str],
        text: str,
        language: str = "en",
        model: Optional[str] = None,
    ) -> SummaryResult:
        self.ensure_key(api_key)
        model_to_use = model or self.model
        body: Dict[str, Any] = {
            "contents": [{"role": "user", "parts": [{"text": build_summary_prompt(text, language)}]}],
            "generationConfig": {"temperature": self.config.temperature},
        }
        response = await self._post(build_endpoint(self.api_url, model_to_use, api_key), headers=self._headers(), json=body)
        data = response.json()

        usage = data.get("usageMetadata") or {}
        completion = as_int(usage.get("candidatesTokenCount"))
        if completion is None:
            completion = as_int(usage.get("totalTokenCount"))
        return SummaryResult(
            summary=extract_summary(data),
            model=data.get("model") or model_to_use,
            prompt_tokens=as_int(usage.get("promptTokenCount")),
            completion_tokens=completion,
        )
