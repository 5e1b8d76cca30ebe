"""Anthropic Messages API adapter (summaries only)."""
from __future__ import annotations

from typing import Optional

from provider_router.core.config import Defaults
from provider_router.providers.adapters.base import (
    SUMMARY_SYSTEM_PROMPT,
    ProviderAdapter,
    SummaryResult,
    as_int,
    build_summary_prompt,
)

ANTHROPIC_VERSION = "2023-06-01"


class AnthropicAdapter(ProviderAdapter):
    kind = "anthropic"
    display_name = "Anthropic"
    default_model = "claude-3-5-haiku-latest"
    default_api_url = "https://api.anthropic.com/v1/messages"

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
            "max_tokens": Defaults.COMPLETION_ESTIMATE_TOKENS,
            "temperature": self.config.temperature,
            "system": SUMMARY_SYSTEM_PROMPT,
            "messages": [{"role": "user", "content": build_summary_prompt(text, language)}],
        }
        headers = self._headers({"x-api-key": api_key or "", "anthropic-version": ANTHROPIC_VERSION})
        response = await self._post(self.api_url, headers=headers, json=payload)
        data = response.json()

        blocks = data.get("content") or []
        summary = "".join(b.get("text", "") for b in blocks if isinstance(b, dict) and b.get("type", "text") == "text")
        usage = data.get("usage") or {}
        return SummaryResult(
            summary=summary.strip(),
            model=data.get("model") or model_to_use,
            prompt_tokens=as_int(usage.get("input_tokens")),
            completion_tokens=as_int(usage.get("output_tokens")),
        )
