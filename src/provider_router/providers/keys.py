"""
API Key Store.

Per-provider API keys persisted in the blob store:

    apiKey:{provider}       -> "sk-..."
    apiKeyMeta:{provider}   -> {"lastUpdated": <epoch ms>}

Resolution for a routing candidate (first hit wins):
    1. The key stored under the candidate's own id
    2. Legacy ids: `openai_paid` / `openai_trial` -> `openai`,
       `gemini_free` / `gemini_paid` -> `gemini`,
       `huggingface_free` -> `huggingface`
    3. The provider's configured environment variable

Keys never reach the logs; details() and the API expose a masked preview.
"""
from __future__ import annotations

import os
import re
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional

from provider_router.core.logging import debug, get_logger, info, trace
from provider_router.core.storage import BlobStore
from provider_router.providers.catalog import ProviderCatalog

_LOG = get_logger("provider-router.keys")

API_KEY_PREFIX = "apiKey:"
API_KEY_META_PREFIX = "apiKeyMeta:"
DEFAULT_KEY_PROVIDER = "openai"

_TIER_SUFFIX = re.compile(r"_(paid|trial)$")


def mask_key(api_key: Optional[str]) -> Optional[str]:
    """'sk-abcdef123456' -> 'sk-a…3456'; short keys are fully masked."""
    if not api_key:
        return None
    if len(api_key) <= 8:
        return "*" * len(api_key)
    return f"{api_key[:4]}…{api_key[-4:]}"


def legacy_key_ids(provider_id: str) -> List[str]:
    """Older ids whose stored key is also valid for `provider_id`."""
    candidates: List[str] = []
    stripped = _TIER_SUFFIX.sub("", provider_id)
    if stripped != provider_id:
        candidates.append(stripped)
    if provider_id in ("gemini_free", "gemini_paid") and "gemini" not in candidates:
        candidates.append("gemini")
    if provider_id == "huggingface_free":
        candidates.append("huggingface")
    return candidates


@dataclass(frozen=True)
class ApiKeyDetails:
    provider: str
    api_key: Optional[str]
    last_updated: Optional[float]

    def to_dict(self) -> Dict[str, Any]:
        """Public view: masked key only."""
        return {
            "provider": self.provider,
            "hasKey": bool(self.api_key),
            "maskedKey": mask_key(self.api_key),
            "lastUpdated": self.last_updated,
        }


class ApiKeyStore:
    """
    Save, read and delete provider keys in a BlobStore.

    Args:
        store: Backing blob store.
        catalog: Used to normalise provider ids.
        clock: Epoch-ms clock for lastUpdated stamps.
    """

    def __init__(
        self,
        store: BlobStore,
        catalog: Optional[ProviderCatalog] = None,
        clock: Callable[[], float] = lambda: time.time() * 1000.0,
    ):
        self.store = store
        self.catalog = catalog or ProviderCatalog()
        self._clock = clock

    def _provider(self, provider: Any) -> str:
        return self.catalog.normalise(provider, DEFAULT_KEY_PROVIDER)

    async def save(self, provider: Any, api_key: Optional[str]) -> Optional[str]:
        """Store a key; an empty key deletes the stored one. Returns the stored key."""
        pid = self._provider(provider)
        cleaned = api_key.strip() if isinstance(api_key, str) else None
        if not cleaned:
            info(_LOG, "api_key_cleared", provider=pid)
            await self.delete(pid)
            return None

        await self.store.set(f"{API_KEY_PREFIX}{pid}", cleaned)
        await self.store.set(f"{API_KEY_META_PREFIX}{pid}", {"lastUpdated": self._clock()})
        info(_LOG, "api_key_stored", provider=pid, length=len(cleaned))
        return cleaned

    async def details(self, provider: Any) -> ApiKeyDetails:
        pid = self._provider(provider)
        stored = await self.store.get(f"{API_KEY_PREFIX}{pid}")
        meta = await self.store.get(f"{API_KEY_META_PREFIX}{pid}")
        last_updated = meta.get("lastUpdated") if isinstance(meta, dict) else None
        if isinstance(last_updated, bool) or not isinstance(last_updated, (int, float)):
            last_updated = None
        api_key = stored if isinstance(stored, str) and stored else None
        trace(_LOG, "api_key_details", provider=pid, has_key=bool(api_key))
        return ApiKeyDetails(pid, api_key, last_updated)

    async def read(self, provider: Any) -> Optional[str]:
        return (await self.details(provider)).api_key

    async def delete(self, provider: Any) -> None:
        pid = self._provider(provider)
        await self.store.delete(f"{API_KEY_PREFIX}{pid}")
        await self.store.delete(f"{API_KEY_META_PREFIX}{pid}")
        debug(_LOG, "api_key_deleted", provider=pid)

    async def resolve(
        self,
        provider_id: str,
        env_var: Optional[str] = None,
        env: Optional[Mapping[str, str]] = None,
    ) -> Optional[str]:
        """
        Find a usable key for a routing candidate.

        Args:
            provider_id: Canonical provider id.
            env_var: Environment variable named in the provider's config.
            env: Environment mapping (default os.environ).
        """
        pid = self._provider(provider_id)
        direct = await self.read(pid)
        if direct:
            return direct

        for legacy in legacy_key_ids(pid):
            key = await self.read(legacy)
            if key:
                debug(_LOG, "api_key_legacy_fallback", provider=pid, legacy=legacy)
                return key

        if env_var:
            env = os.environ if env is None else env
            value = (env.get(env_var) or "").strip()
            if value:
                trace(_LOG, "api_key_from_env", provider=pid, env_var=env_var)
                return value

        debug(_LOG, "api_key_missing", provider=pid)
        return None
