"""
Adapter Registry.

Maps an adapter kind (one tag per vendor family) to a factory that builds
a ProviderAdapter from a ProviderConfig. Catalog ids never name classes
directly: a provider id resolves to an adapter key through
ProviderCatalog.metadata(), the key maps to an AdapterKind, and the kind
maps to a factory.

    gemini_free -> adapter key "gemini" -> AdapterKind.GEMINI -> GeminiAdapter(config)

Adding a Vendor:
    1. Add a member to AdapterKind
    2. Write providers/adapters/<vendor>.py
    3. Register its factory in default_registry()

Custom factories (tests, private deployments) are registered on an
AdapterRegistry instance and passed to the Router.
"""
from __future__ import annotations

from enum import Enum
from typing import Callable, Dict, List, Optional

import httpx

from provider_router.core.config import ProviderConfig
from provider_router.core.logging import debug, get_logger
from provider_router.providers.adapters.base import ProviderAdapter

_LOG = get_logger("provider-router.registry")


class AdapterKind(str, Enum):
    """Vendor families with a built-in adapter."""
    OPENAI = "openai"
    GEMINI = "gemini"
    ANTHROPIC = "anthropic"
    MISTRAL = "mistral"
    HUGGINGFACE = "huggingface"
    OLLAMA = "ollama"


AdapterFactory = Callable[[ProviderConfig], ProviderAdapter]

# Adapter key aliases (normalized to canonical kind)
_KIND_ALIASES = {
    "google": AdapterKind.GEMINI,
    "hf": AdapterKind.HUGGINGFACE,
    "hugging_face": AdapterKind.HUGGINGFACE,
    "claude": AdapterKind.ANTHROPIC,
}


def to_kind(adapter_key: str) -> Optional[AdapterKind]:
    """Resolve an adapter key to its AdapterKind, or None when unknown."""
    key = (adapter_key or "").strip().lower()
    if key in _KIND_ALIASES:
        return _KIND_ALIASES[key]
    try:
        return AdapterKind(key)
    except ValueError:
        return None


class AdapterRegistry:
    """
    Factory table keyed by AdapterKind.

    Factories may also be registered under a bare string key for adapter
    families without a built-in kind.
    """

    def __init__(self) -> None:
        self._factories: Dict[str, AdapterFactory] = {}

    def register(self, kind: AdapterKind | str, factory: AdapterFactory) -> None:
        if not callable(factory):
            raise TypeError(f"Adapter factory for {kind} must be callable")
        key = self._key(kind)
        if not key:
            raise ValueError("Adapter kind must be a non-empty string")
        self._factories[key] = factory
        debug(_LOG, "adapter_registered", kind=key)

    def get(self, adapter_key: str) -> Optional[AdapterFactory]:
        return self._factories.get(self._key(adapter_key))

    def create(self, adapter_key: str, config: ProviderConfig) -> Optional[ProviderAdapter]:
        """Build an adapter, or return None when nothing is registered for the key."""
        factory = self.get(adapter_key)
        if factory is None:
            return None
        return factory(config)

    def kinds(self) -> List[str]:
        return sorted(self._factories)

    @staticmethod
    def _key(kind: AdapterKind | str) -> str:
        if isinstance(kind, AdapterKind):
            return kind.value
        resolved = to_kind(kind)
        return resolved.value if resolved is not None else (kind or "").strip().lower()


def default_registry(client: Optional[httpx.AsyncClient] = None) -> AdapterRegistry:
    """
    Registry with every built-in vendor adapter.

    Adapter modules are imported here rather than at module import so a
    registry with only custom factories pulls in none of them.

    Args:
        client: Shared httpx client handed to every adapter (optional).
    """
    from provider_router.providers.adapters.anthropic import AnthropicAdapter
    from provider_router.providers.adapters.gemini import GeminiAdapter
    from provider_router.providers.adapters.huggingface import HuggingFaceAdapter
    from provider_router.providers.adapters.mistral import MistralAdapter
    from provider_router.providers.adapters.ollama import OllamaAdapter
    from provider_router.providers.adapters.openai import OpenAIAdapter

    registry = AdapterRegistry()
    for kind, cls in (
        (AdapterKind.OPENAI, OpenAIAdapter),
        (AdapterKind.GEMINI, GeminiAdapter),
        (AdapterKind.ANTHROPIC, AnthropicAdapter),
        (AdapterKind.MISTRAL, MistralAdapter),
        (AdapterKind.HUGGINGFACE, HuggingFaceAdapter),
        (AdapterKind.OLLAMA, OllamaAdapter),
    ):
        registry.register(kind, lambda config, cls=cls: cls(config, client=client))
    return registry
