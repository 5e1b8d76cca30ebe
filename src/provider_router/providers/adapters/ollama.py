"""Local Ollama adapter. No API key is needed."""
from __future__ import annotations

from typing import Optional

from provider_router.providers.adapters.base import (
    ProviderAdapter,
    SummaryResult,
    as_int,
    build_summary_prompt,
)


class OllamaAdapter(ProviderAdapter):
    kind = "ollama"
    display_name = "Ollama"
    requires_key = False
    default_model = "llama3.1"
    default_api_url = "http://localhost:11434/api/generate"

    async def summarise(
        self,
        api_key: Optional[str],
        text: str,
        language: str = "en",
        model: Optional[str] = None,
    ) -> SummaryResult:
        model_to_use = model or self.model
        payload = {
            "model": model_to_use,
            "prompt": build_summary_prompt(text, language),
            "stream": False,
            "options": {"temperature": self.config.temperature},
        }
        response = await self._post(self.api_url, headers=self._headers(), json=payload)
        data = response.json()
        return SummaryResult(
            summary=str(data.get("response") or "").strip(),
            model=data.get("model") or model_to_use,
            prompt_tokens=as_int(data.get("prompt_eval_count")),
            completion_tokens=as_int(data.get("eval_count")),
        )
