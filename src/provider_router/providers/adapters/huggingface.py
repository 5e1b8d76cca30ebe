"""Hugging Face Inference API adapter for summarisation models."""
from __future__ import annotations

from typing import Any, Optional

from provider_router.providers.adapters.base import ProviderAdapter, SummaryResult

HF_API_BASE = "https://api-inference.huggingface.co/models"


def _summary_text(data: Any) -> str:
    """Inference API returns [{"summary_text": ...}] (or generated_text for text2text models)."""
    if isinstance(data, dict):
        data = [data]
    if isinstance(data, list):
        for item in data:
            if isinstance(item, dict):
                text = item.get("summary_text") or item.get("generated_text")
                if isinstance(text, str):
                    return text.strip()
    return ""


class HuggingFaceAdapter(ProviderAdapter):
    kind = "huggingface"
    display_name = "Hugging Face"
    default_model = "facebook/bart-large-cnn"

    async def summarise(
        self,
        api_key: Optional[str],
        text: str,
        language: str = "en",
        model: Optional[str] = None,
    ) -> SummaryResult:
        self.ensure_key(api_key)
        model_to_use = model or self.model
        url = self.config.api_url or f"{HF_API_BASE}/{model_to_use}"
        response = await self._post(
            url,
            headers=self._headers({"Authorization": f"Bearer {api_key}"}),
            json={"inputs": text},
        )
        # Token usage is not reported; the router estimates it
        return SummaryResult(summary=_summary_text(response.json()), model=model_to_use)
