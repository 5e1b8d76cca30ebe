"""
provider-router: Free-first LLM/TTS provider routing with a shared token budget.

Routes short summarisation and speech requests to one of several
interchangeable language-model and text-to-speech backends, enforces a single
token budget across all of them, caches summaries per page segment, and
splits long text into provider-sized chunks for speech synthesis.

Supported Providers:
    - Ollama: Local models, no API key required
    - Hugging Face: Free-tier inference API
    - Google Gemini: AI Studio (free) and paid tiers
    - OpenAI: Trial and paid tiers, including speech and transcription
    - Mistral: Trial and paid tiers
    - Anthropic: Paid tier

Key Features:
    - Ordered free-first fallback with per-candidate retry and timeout
    - Token budget per call and per month, persisted across restarts
    - Fingerprint cache keyed by (url, segment, language, provider)
    - Script-aware speech chunking (CJK-exact token accounting)
    - Prometheus metrics support

Example Usage:
    >>> import asyncio
    >>> from provider_router.core.config import Settings
    >>> from provider_router.services import RouterContext
    >>>
    >>> context = RouterContext(Settings(raw={"routing": {"dry_run": True}}))
    >>> result = asyncio.run(context.generate("Some page text"))
    >>> result.text
    '[dry-run] no request sent'
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
