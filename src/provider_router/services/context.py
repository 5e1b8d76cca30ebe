"""
Router Context: the request surface over routing, budget, cache and speech.

One long-lived RouterContext owns every piece of mutable state (usage
tracker, summary cache, router, active provider) and is passed explicitly
to the HTTP layer and the CLI. Nothing lives in module globals, so two
contexts in one process never share state.

Operations:
    summarise(url, segments, language, provider)  - per-segment summaries, cached
    get_summary(url, segment, language, provider) - one segment
    generate(text, language, provider, metadata)  - uncached routing call
    synthesise(text, voice, language, provider)   - chunked speech, base64 audio
    transcribe(base64_audio, ...)                 - speech to text, flat charge
    usage() / reset_usage()                       - usage snapshot
    set_active_provider(provider)                 - clears the summary cache
    segments_updated(url, segments)               - drops removed segments
    set_api_key() / get_api_key()                 - masked details only

Persistence (blob store keys):
    usage           - UsageTracker snapshot, written under storage_lock("usage")
    cache           - ResultCache snapshot
    activeProvider  - last active provider id

Cache Policy:
    Lookups try the active provider, then every routing candidate, then any
    entry for the same (url, segment, language). Entries whose stored
    provider disagrees with their fingerprint are evicted, never returned.
    Changing the active provider clears the whole cache.

Example:
    >>> context = RouterContext(Settings(raw={"routing": {"dry_run": True}}))
    >>> asyncio.run(context.generate("Some page text")).text
    '[dry-run] no request sent'
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional

from provider_router.core.config import Defaults, RouterServiceConfig, Settings
from provider_router.core.errors import (
    BudgetExceededError,
    MissingApiKeyError,
    MissingInputError,
    ProviderInvocationError,
)
from provider_router.core.logging import debug, get_logger, info, success, verbose, warn
from provider_router.core.metrics import metrics
from provider_router.core.storage import BlobStore, MemoryStore, create_store, storage_lock
from provider_router.providers.adapters.base import AdapterError, ProviderAdapter
from provider_router.providers.catalog import DEFAULT_PROVIDER_ID, ProviderCatalog
from provider_router.providers.keys import ApiKeyStore
from provider_router.providers.registry import AdapterRegistry
from provider_router.routing.cache import CacheEntry, ResultCache, make_fingerprint, parse_fingerprint
from provider_router.routing.router import GenerationResult, Router
from provider_router.routing.usage import UsageTracker
from provider_router.speech.planner import ChunkPlan, SpeechChunkPlanner, encode_audio
from provider_router.utils.timeit import timeit

_LOG = get_logger("provider-router.context")

USAGE_KEY = "usage"
CACHE_KEY = "cache"
ACTIVE_PROVIDER_KEY = "activeProvider"


@dataclass
class SpeechOutcome:
    """
    Result of one synthesise() call.

    Attributes:
        audio_base64: Stitched audio of every chunk, base64-encoded.
        mime_type: MIME type reported for the first chunk.
        provider: Provider that synthesised the audio.
        plan: Chunk plan with delivery metrics.
        tokens_charged: Tokens recorded against the budget.
    """
    audio_base64: str
    mime_type: str
    provider: str
    plan: ChunkPlan
    tokens_charged: int
    usage: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "audio": {"base64": self.audio_base64, "mimeType": self.mime_type},
            "provider": self.provider,
            "plan": self.plan.to_dict(),
            "tokensCharged": self.tokens_charged,
            "usage": self.usage,
        }


def _segment_field(segment: Any, name: str) -> Any:
    if isinstance(segment, Mapping):
        return segment.get(name)
    return getattr(segment, name, None)


class RouterContext:
    """
    Long-lived owner of the routing state.

    Args:
        settings: Raw settings; validated into RouterServiceConfig.
        config: Already validated config (takes precedence over settings).
        store: Blob store (default: built from config.storage).
        registry: Adapter registry (default: built-in vendors).
        catalog: Provider catalog.
        env: Environment mapping for routing overrides and key variables.
        planner: Speech chunk planner.
        **router_options: Passed to Router (clock, sleep, random_fn).
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        config: Optional[RouterServiceConfig] = None,
        store: Optional[BlobStore] = None,
        registry: Optional[AdapterRegistry] = None,
        catalog: Optional[ProviderCatalog] = None,
        env: Optional[Mapping[str, str]] = None,
        planner: Optional[SpeechChunkPlanner] = None,
        **router_options: Any,
    ):
        if config is None:
            config = (settings or Settings(raw={})).get_service_config(env=env)
        self.config = config
        self.catalog = catalog or ProviderCatalog()
        self.store = store if store is not None else create_store(config.storage)
        self.keys = ApiKeyStore(self.store, self.catalog)
        self.planner = planner or SpeechChunkPlanner(lookback_chars=config.speech.truncation_lookback)
        self.tracker = UsageTracker(config.routing.max_monthly_tokens)
        self.cache = ResultCache(config.cache.max_items, config.cache.ttl_seconds)
        self.router = Router(
            config,
            tracker=self.tracker,
            key_store=self.keys,
            registry=registry,
            catalog=self.catalog,
            env=env,
            **router_options,
        )
        self.active_provider = self._normalise(config.base_provider) or DEFAULT_PROVIDER_ID
        self._initialised = False
        self._init_lock = asyncio.Lock()

    # ─────────────────────────────────────────────────────────────────────────
    # Lifecycle
    # ─────────────────────────────────────────────────────────────────────────

    async def initialise(self) -> None:
        """Hydrate usage, cache and active provider from the store (once)."""
        if self._initialised:
            return
        async with self._init_lock:
            if self._initialised:
                return
            with timeit("context_init") as t:
                stored_usage = await self.store.get(USAGE_KEY)
                self.tracker = UsageTracker.hydrate(self.config.routing.max_monthly_tokens, stored_usage)
                self.router.tracker = self.tracker

                self.cache = ResultCache.from_json(
                    await self.store.get(CACHE_KEY),
                    max_items=self.config.cache.max_items,
                    ttl_seconds=self.config.cache.ttl_seconds,
                )

                stored_provider = self._normalise(await self.store.get(ACTIVE_PROVIDER_KEY))
                if stored_provider:
                    self.active_provider = stored_provider
            self._initialised = True
            metrics.set_budget_remaining(self.tracker.remaining_tokens)
            info(
                _LOG,
                "context_ready",
                provider=self.active_provider,
                cache=len(self.cache),
                total=self.tracker.cumulative_total_tokens,
                seconds=round(t.elapsed, 4),
            )

    async def aclose(self) -> None:
        adapter = self.router._adapter
        self.router.clear_adapter()
        if adapter is not None:
            await adapter.aclose()

    def _normalise(self, provider: Any) -> Optional[str]:
        """Alias-resolved id, or None for empty input."""
        if not isinstance(provider, str) or not provider.strip():
            return None
        return self.catalog.resolve_alias(provider)

    async def _persist_usage(self) -> None:
        async with storage_lock(
            self.store,
            USAGE_KEY,
            stale_ms=self.config.storage.lock_stale_ms,
            max_attempts=self.config.storage.lock_max_attempts,
        ):
            await self.store.set(USAGE_KEY, self.tracker.to_json())

    async def _persist_cache(self) -> None:
        await self.store.set(CACHE_KEY, self.cache.to_json())

    # ─────────────────────────────────────────────────────────────────────────
    # Provider selection
    # ─────────────────────────────────────────────────────────────────────────

    async def set_active_provider(self, provider: Any) -> Dict[str, Any]:
        """
        Switch the active provider; "auto" (or empty) means the routing order.

        Any change clears the whole summary cache.
        """
        await self.initialise()
        desired = self._normalise(provider) or DEFAULT_PROVIDER_ID
        previous = self.active_provider
        if desired != previous:
            cleared = self.cache.clear()
            await self._persist_cache()
            metrics.record_cache_eviction("provider_switch", cleared)
            self.active_provider = desired
            await self.store.set(ACTIVE_PROVIDER_KEY, desired)
            info(_LOG, "provider_switched", previous=previous, provider=desired, cleared=cleared)
        return {
            "provider": self.active_provider,
            "requiresApiKey": self.catalog.requires_api_key(self.active_provider),
        }

    async def _select(self, provider: Any) -> None:
        # An explicit request provider becomes the active one
        requested = self._normalise(provider)
        if requested and requested != DEFAULT_PROVIDER_ID and requested != self.active_provider:
            await self.set_active_provider(requested)

    def direct_provider(self, provider: Any = None) -> str:
        """Provider for single-adapter operations (speech, transcription)."""
        requested = self._normalise(provider)
        if requested and requested != DEFAULT_PROVIDER_ID:
            return requested
        if self.active_provider != DEFAULT_PROVIDER_ID:
            return self.active_provider
        base = self._normalise(self.config.base_provider)
        if base and base != DEFAULT_PROVIDER_ID:
            return base
        return self.catalog.resolve_alias(Defaults.PROVIDER_ID)

    async def _adapter_with_key(self, pid: str) -> tuple[ProviderAdapter, Optional[str]]:
        adapter = self.router.get_adapter(pid)
        api_key = await self.router.resolve_api_key(pid)
        if self.catalog.requires_api_key(pid) and not api_key:
            raise MissingApiKeyError(pid, f"Missing {self.catalog.display_name(pid)} API key.")
        return adapter, api_key

    # ─────────────────────────────────────────────────────────────────────────
    # Summaries
    # ─────────────────────────────────────────────────────────────────────────

    async def generate(
        self,
        text: Optional[str],
        language: str = "en",
        provider: Optional[str] = None,
        metadata: Optional[Mapping[str, Any]] = None,
    ) -> GenerationResult:
        """Route one generation request and persist the usage it recorded."""
        await self.initialise()
        try:
            result = await self.router.generate(text, language, provider, metadata)
        except Exception:
            metrics.record_request("generate", "error")
            raise
        if not result.dry_run:
            await self._persist_usage()
        metrics.record_request("generate", "ok")
        return result

    async def get_summary(
        self,
        url: Optional[str],
        segment: Any,
        language: str = "en",
        provider: Optional[str] = None,
    ) -> str:
        """Cached summary for one page segment, generating it on a miss."""
        await self.initialise()
        segment_id = _segment_field(segment, "id")
        language = language or "en"

        candidates: List[str] = []
        for pid in [self.active_provider, *self.router.routing_order(provider)]:
            resolved = self._normalise(pid)
            if resolved and resolved != DEFAULT_PROVIDER_ID and resolved not in candidates:
                candidates.append(resolved)

        checked = set()
        for pid in candidates:
            key = make_fingerprint(url, segment_id, language, pid)
            checked.add(key)
            entry = self.cache.get(key, count_miss=False)
            if entry is None:
                continue
            if not self._entry_matches(entry, pid):
                self.cache.delete(key)
                metrics.record_cache_eviction("stale")
                debug(_LOG, "cache_stale_evicted", provider=pid, stored=entry.provider)
                continue
            metrics.record_cache("hit", "active" if pid == self.active_provider else "candidate")
            return entry.summary

        for key, entry in self.cache.items():
            if key in checked:
                continue
            parsed = parse_fingerprint(key)
            if parsed is None or not parsed.same_segment(url, segment_id, language):
                continue
            if parsed.provider_id and not self._entry_matches(entry, self._normalise(parsed.provider_id)):
                self.cache.delete(key)
                metrics.record_cache_eviction("stale")
                continue
            # Counts the hit and refreshes LRU order
            self.cache.get(key)
            metrics.record_cache("hit", "scan")
            return entry.summary

        self.cache.record_miss()
        metrics.record_cache("miss")
        result = await self.generate(
            _segment_field(segment, "text"),
            language,
            provider,
            {"url": url, "segmentId": segment_id, "type": "summary"},
        )
        if result.dry_run:
            return result.text

        active = self.active_provider if self.active_provider != DEFAULT_PROVIDER_ID else None
        target = result.provider or active or (candidates[0] if candidates else DEFAULT_PROVIDER_ID)
        key = make_fingerprint(url, segment_id, language, target)
        if active and target != active:
            stale = make_fingerprint(url, segment_id, language, active)
            if stale != key:
                self.cache.delete(stale)

        self.cache.put(key, CacheEntry(
            summary=result.text,
            provider=target,
            model=result.model,
            tokens=result.total_tokens,
        ))
        await self._persist_cache()
        return result.text

    def _entry_matches(self, entry: CacheEntry, provider_id: Optional[str]) -> bool:
        stored = self._normalise(entry.provider) or provider_id
        return stored == provider_id

    async def summarise(
        self,
        url: Optional[str],
        segments: Iterable[Any],
        language: str = "en",
        provider: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Summaries for each segment, in order, plus the usage snapshot."""
        await self.initialise()
        await self._select(provider)
        summaries = []
        for segment in segments:
            summary = await self.get_summary(url, segment, language, provider)
            summaries.append({"id": _segment_field(segment, "id"), "summary": summary})
        return {"summaries": summaries, "usage": self.tracker.to_json()}

    async def segments_updated(self, url: Optional[str], segments: Iterable[Any]) -> int:
        """Drop cached summaries for segments no longer on the page."""
        await self.initialise()
        live = [_segment_field(s, "id") for s in segments]
        removed = self.cache.invalidate_segments(url, live)
        await self._persist_cache()
        return removed

    # ─────────────────────────────────────────────────────────────────────────
    # Speech
    # ─────────────────────────────────────────────────────────────────────────

    async def synthesise(
        self,
        text: Optional[str],
        voice: Optional[str] = None,
        language: Optional[str] = None,
        provider: Optional[str] = None,
        format: Optional[str] = None,
    ) -> SpeechOutcome:
        """
        Speak `text` through the active (or requested) provider.

        The text is cut at speech.max_total_tokens, planned into chunks the
        provider accepts and synthesised chunk by chunk in order. The charge
        is the adapter's flat per-call tokens times the chunk count, or the
        delivered token count when the adapter has no flat price.

        Raises:
            MissingInputError: Empty text.
            BudgetExceededError: The charge does not fit the budget.
            MissingApiKeyError: The provider needs a key and has none.
            ProviderInvocationError: The adapter failed or cannot synthesise.
        """
        await self.initialise()
        if not isinstance(text, str) or not text.strip():
            raise MissingInputError("synthesise requires text")
        await self._select(provider)

        pid = self.direct_provider(provider)
        adapter = self.router.get_adapter(pid)
        cost = adapter.get_cost_metadata().synthesise

        plan = self.planner.plan_with_ceiling(
            text,
            adapter.speech_capability(),
            self.config.speech.max_total_tokens,
        )
        flat = cost.charge_tokens(Defaults.SYNTHESISE_FLAT_TOKENS)
        charge = flat * len(plan.chunks) if flat > 0 else plan.delivered_token_count
        if not self.tracker.can_spend(charge):
            metrics.record_request("synthesise", "budget")
            raise BudgetExceededError(
                "Token limit reached for speech synthesis.",
                {"provider": pid, "estimatedTokens": charge},
            )

        adapter, api_key = await self._adapter_with_key(pid)
        verbose(_LOG, "speech_planned", provider=pid, chunks=len(plan.chunks),
                truncated=plan.truncated, tokens=plan.delivered_token_count)

        buffers: List[bytes] = []
        mime_type = None
        count = len(plan.chunks)
        with timeit("synthesise") as t:
            for index, chunk in enumerate(plan.chunks):
                try:
                    result = await adapter.synthesise(
                        api_key,
                        chunk.text,
                        voice=voice or self.config.speech.default_voice,
                        language_code=language,
                        model=cost.model,
                        format=format or self.config.speech.default_format,
                        chunk_index=index,
                        chunk_count=count,
                    )
                except AdapterError as e:
                    metrics.record_request("synthesise", "error")
                    raise ProviderInvocationError(pid, status=e.status, message=str(e)) from e
                buffers.append(result.audio)
                mime_type = mime_type or result.mime_type

        self.tracker.record_flat(cost.label or "tts", {
            "promptTokens": charge,
            "metadata": {
                "provider": pid,
                "chunks": count,
                "deliveredTokens": plan.delivered_token_count,
                "omittedTokens": plan.omitted_token_count,
                "truncated": plan.truncated,
            },
        })
        await self._persist_usage()
        metrics.record_speech(pid, count, plan.truncated)
        metrics.record_request("synthesise", "ok")
        success(_LOG, "speech_done", provider=pid, chunks=count, tokens=charge, seconds=round(t.elapsed, 3))

        return SpeechOutcome(
            audio_base64=encode_audio(buffers),
            mime_type=mime_type or f"audio/{format or self.config.speech.default_format}",
            provider=pid,
            plan=plan,
            tokens_charged=charge,
            usage=self.tracker.to_json(),
        )

    async def transcribe(
        self,
        base64_audio: Optional[str],
        mime_type: str = "audio/webm",
        filename: str = "speech.webm",
        provider: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Transcribe audio with the active (or requested) provider.

        Charged a flat token amount per call (the adapter's, else
        Defaults.TRANSCRIBE_FLAT_TOKENS).
        """
        await self.initialise()
        if not base64_audio:
            raise MissingInputError("transcribe requires audio")
        await self._select(provider)

        pid = self.direct_provider(provider)
        adapter = self.router.get_adapter(pid)
        cost = adapter.get_cost_metadata().transcribe
        charge = cost.charge_tokens(Defaults.TRANSCRIBE_FLAT_TOKENS)
        if not self.tracker.can_spend(charge):
            metrics.record_request("transcribe", "budget")
            raise BudgetExceededError(
                "Token limit reached for transcription.",
                {"provider": pid, "estimatedTokens": charge},
            )

        adapter, api_key = await self._adapter_with_key(pid)
        try:
            result = await adapter.transcribe(
                api_key,
                base64_audio,
                mime_type=mime_type,
                model=cost.model,
                filename=filename,
            )
        except AdapterError as e:
            metrics.record_request("transcribe", "error")
            raise ProviderInvocationError(pid, status=e.status, message=str(e)) from e

        self.tracker.record_flat(cost.label or "stt", {"promptTokens": charge, "metadata": {"provider": pid}})
        await self._persist_usage()
        metrics.record_request("transcribe", "ok")
        return {"text": result.text, "provider": pid, "usage": self.tracker.to_json()}

    # ─────────────────────────────────────────────────────────────────────────
    # Usage
    # ─────────────────────────────────────────────────────────────────────────

    async def usage(self) -> Dict[str, Any]:
        await self.initialise()
        return self.tracker.to_json()

    async def reset_usage(self) -> Dict[str, Any]:
        await self.initialise()
        self.tracker.reset()
        await self._persist_usage()
        return self.tracker.to_json()

    # ─────────────────────────────────────────────────────────────────────────
    # API keys
    # ─────────────────────────────────────────────────────────────────────────

    async def set_api_key(self, api_key: Optional[str], provider: Optional[str] = None) -> Dict[str, Any]:
        """Store (or, with an empty key, clear) the key for a provider."""
        await self.initialise()
        pid = self.direct_provider(provider)
        await self.keys.save(pid, api_key)
        if self.router._adapter_provider == pid:
            warn(_LOG, "api_key_changed", provider=pid)
        return (await self.keys.details(pid)).to_dict()

    async def get_api_key(self, provider: Optional[str] = None) -> Dict[str, Any]:
        """Masked key details for a provider."""
        await self.initialise()
        return (await self.keys.details(self.direct_provider(provider))).to_dict()
