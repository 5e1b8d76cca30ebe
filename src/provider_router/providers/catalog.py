"""
Provider Catalog.

Static registry of provider ids, display labels, legacy aliases, API key
requirements and billing tiers. Every lookup here is pure: no I/O, no
mutation, nothing cached between calls.

Provider Ids:
    auto             - Pseudo-provider meaning "use the configured order"
    ollama           - Local models (no key)
    huggingface_free - Hugging Face inference API, free tier
    gemini_free      - Google AI Studio free tier
    openai_trial     - OpenAI trial credit
    mistral_trial    - Mistral trial credit
    gemini_paid      - Google Gemini paid tier
    openai_paid      - OpenAI paid tier
    anthropic_paid   - Anthropic paid tier
    mistral_paid     - Mistral paid tier

Legacy Aliases:
    openai -> openai_paid, mistral -> mistral_paid, anthropic -> anthropic_paid,
    gemini -> gemini_paid, huggingface -> huggingface_free

Unknown Providers:
    Unknown ids require an API key, bill as paid and use their own id as
    adapter key. A typo can therefore never turn into an unauthenticated
    paid call.

Example:
    >>> from provider_router.providers.catalog import catalog
    >>> catalog.resolve_alias("OpenAI ")
    'openai_paid'
    >>> catalog.requires_api_key("my_custom_llm")
    True
    >>> catalog.display_name("my_custom-llm")
    'My Custom Llm'
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from provider_router.core.logging import debug, get_logger, trace

_LOG = get_logger("provider-router.catalog")

DEFAULT_PROVIDER_ID = "auto"


class ProviderTier(str, Enum):
    """Billing tier of a provider."""
    LOCAL = "local"
    FREE = "free"
    TRIAL = "trial"
    PAID = "paid"


@dataclass(frozen=True)
class ProviderDescriptor:
    """
    One catalog entry as shown to users.

    Attributes:
        id: Canonical (or legacy) provider id.
        display_label: Human label for menus and logs.
        requires_api_key: Whether calls need a user-supplied key.
    """
    id: str
    display_label: str
    requires_api_key: bool

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "label": self.display_label, "requiresApiKey": self.requires_api_key}


@dataclass(frozen=True)
class ProviderMetadata:
    """
    Routing facts about a provider.

    Attributes:
        tier: Billing tier.
        requires_key: Whether an API key is needed.
        adapter_key: Adapter family used to talk to it (openai, gemini, ...).
    """
    tier: ProviderTier
    requires_key: bool
    adapter_key: str


PROVIDER_ALIASES: Dict[str, str] = {
    "openai": "openai_paid",
    "mistral": "mistral_paid",
    "anthropic": "anthropic_paid",
    "gemini": "gemini_paid",
    "huggingface": "huggingface_free",
}

PROVIDERS: Tuple[ProviderDescriptor, ...] = (
    ProviderDescriptor("auto", "Auto (Free-first)", False),
    ProviderDescriptor("ollama", "Ollama (Local)", False),
    ProviderDescriptor("huggingface_free", "Hugging Face (Free/Tier)", True),
    ProviderDescriptor("gemini_free", "Google Gemini (AI Studio Free/Trial)", True),
    ProviderDescriptor("openai_trial", "OpenAI (Trial)", True),
    ProviderDescriptor("mistral_trial", "Mistral (Trial)", True),
    ProviderDescriptor("gemini_paid", "Google Gemini (Paid/Vertex)", True),
    ProviderDescriptor("openai_paid", "OpenAI (Paid)", True),
    ProviderDescriptor("anthropic_paid", "Anthropic (Paid)", True),
    ProviderDescriptor("mistral_paid", "Mistral (Paid)", True),
    ProviderDescriptor("openai", "OpenAI (Legacy)", True),
    ProviderDescriptor("anthropic", "Anthropic (Legacy)", True),
    ProviderDescriptor("mistral", "Mistral (Legacy)", True),
    ProviderDescriptor("huggingface", "Hugging Face (Legacy)", True),
    ProviderDescriptor("gemini", "Google Gemini (Legacy)", True),
)

PROVIDER_METADATA: Dict[str, ProviderMetadata] = {
    "ollama": ProviderMetadata(ProviderTier.LOCAL, False, "ollama"),
    "huggingface_free": ProviderMetadata(ProviderTier.FREE, True, "huggingface"),
    "gemini_free": ProviderMetadata(ProviderTier.FREE, True, "gemini"),
    "openai_trial": ProviderMetadata(ProviderTier.TRIAL, True, "openai"),
    "mistral_trial": ProviderMetadata(ProviderTier.TRIAL, True, "mistral"),
    "gemini_paid": ProviderMetadata(ProviderTier.PAID, True, "gemini"),
    "openai_paid": ProviderMetadata(ProviderTier.PAID, True, "openai"),
    "anthropic_paid": ProviderMetadata(ProviderTier.PAID, True, "anthropic"),
    "mistral_paid": ProviderMetadata(ProviderTier.PAID, True, "mistral"),
}

_WORD_START = re.compile(r"\b([a-z])")


class ProviderCatalog:
    """
    Lookup facade over the static provider tables.

    The tables are injectable so tests and deployments can extend the
    catalog without touching module state.
    """

    def __init__(
        self,
        providers: Tuple[ProviderDescriptor, ...] = PROVIDERS,
        aliases: Optional[Dict[str, str]] = None,
        metadata: Optional[Dict[str, ProviderMetadata]] = None,
    ):
        self._providers = {p.id: p for p in providers}
        self._order = tuple(p.id for p in providers)
        self._aliases = dict(PROVIDER_ALIASES if aliases is None else aliases)
        self._metadata = dict(PROVIDER_METADATA if metadata is None else metadata)

    @staticmethod
    def normalise(raw: Any, fallback: str = DEFAULT_PROVIDER_ID) -> str:
        """Trim and lowercase; non-string or empty input returns `fallback`."""
        if not isinstance(raw, str):
            return fallback
        cleaned = raw.strip().lower()
        return cleaned or fallback

    def find(self, provider_id: Any) -> Optional[ProviderDescriptor]:
        normalised = self.normalise(provider_id, "")
        found = self._providers.get(normalised)
        if found is None:
            debug(_LOG, "provider_not_found", provider=normalised or None)
        return found

    def resolve_alias(self, provider_id: Any) -> str:
        """Map a legacy id onto its canonical id; other ids pass through normalised."""
        normalised = self.normalise(provider_id, "")
        if not normalised:
            return normalised
        resolved = self._aliases.get(normalised, normalised)
        if resolved != normalised:
            trace(_LOG, "alias_resolved", alias=normalised, provider=resolved)
        return resolved

    def is_supported(self, provider_id: Any) -> bool:
        return self.find(provider_id) is not None

    def requires_api_key(self, provider_id: Any) -> bool:
        """Whether the provider needs a key. Unknown ids fail closed (True)."""
        provider = self.find(provider_id)
        if provider is None:
            return True
        return provider.requires_api_key

    def display_name(self, provider_id: Any) -> str:
        """Catalog label, or the id with underscores/dashes spaced and words capitalised."""
        if not isinstance(provider_id, str) or not provider_id.strip():
            return "Provider"
        provider = self.find(provider_id)
        if provider is not None:
            return provider.display_label
        spaced = re.sub(r"[_\-]+", " ", self.normalise(provider_id)).strip()
        return _WORD_START.sub(lambda m: m.group(1).upper(), spaced)

    def metadata(self, provider_id: Any) -> ProviderMetadata:
        """Tier/key/adapter facts for a provider (aliases resolved first)."""
        canonical = self.resolve_alias(provider_id)
        known = self._metadata.get(canonical)
        if known is not None:
            return known
        return ProviderMetadata(ProviderTier.PAID, self.requires_api_key(canonical), canonical)

    def tier(self, provider_id: Any) -> ProviderTier:
        return self.metadata(provider_id).tier

    def adapter_key(self, provider_id: Any) -> str:
        return self.metadata(provider_id).adapter_key

    def is_free_tier(self, provider_id: Any) -> bool:
        """
        True for ids ending in `_free`, local/free tiers and keyless providers.

        These are the candidates that survive `disable_paid`.
        """
        canonical = self.resolve_alias(provider_id)
        if canonical.endswith("_free"):
            return True
        meta = self.metadata(canonical)
        if meta.tier in (ProviderTier.LOCAL, ProviderTier.FREE):
            return True
        return not self.requires_api_key(canonical)

    def descriptors(self) -> List[ProviderDescriptor]:
        """All entries in display order."""
        return [self._providers[pid] for pid in self._order]


# Default catalog used when no custom tables are injected
catalog = ProviderCatalog()
