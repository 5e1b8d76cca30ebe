"""
Configuration Management for provider-router.

This module provides centralized configuration handling with:
    - Default values (Defaults class)
    - Dataclass-based configuration objects
    - YAML file loading with environment variable overrides
    - Validation with meaningful error messages

Configuration Hierarchy (highest priority first):
    1. Environment variables (PROVIDER_ORDER, DISABLE_PAID, TIMEOUT_MS, etc.)
    2. YAML config file (config/settings.yaml)
    3. Defaults class values

Example settings.yaml:
    provider: openai_paid
    model: gpt-4o-mini
    api_key_var: OPENAI_API_KEY

    providers:
      gemini_free:
        model: gemini-1.5-flash
        api_key_var: GOOGLE_API_KEY

    routing:
      provider_order: [ollama, gemini_free, openai_paid]
      disable_paid: false
      timeout_ms: 20000
      retry_limit: 2
      max_tokens_per_call: 2400
      max_monthly_tokens: 1200000
      dry_run: false

    cache:
      max_items: 512

    logging:
      level: 2  # NORMAL

Legacy monetary limits (max_cost_per_call_usd, max_monthly_cost_usd and the
matching MAX_COST_PER_CALL_USD / MAX_MONTHLY_COST_USD variables) are still
accepted and converted to token ceilings at Defaults.TOKENS_PER_USD.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple
import os
import yaml


class ConfigValidationError(Exception):
    """
    Raised when configuration validation fails.

    This exception is thrown when a configuration value is outside
    acceptable bounds or of the wrong type.
    """
    pass


class Defaults:
    """
    Centralized default configuration values.

    All default values are defined here to ensure consistency across
    the codebase. These values are used when no override is provided
    via YAML config or environment variables.

    Sections:
        - Routing: Candidate order, timeouts, retries, budgets
        - Resilience: Backoff and circuit breaker timing
        - Usage: Token estimation and legacy USD conversion
        - Provider: Base provider used when no override exists
        - Gemini: Model defaults for the free and paid tiers
        - Cache: Summary cache bounds
        - Speech: Chunking, truncation and audio defaults
        - Storage: Blob store backend and lock timing
        - Logging: Log level and formatting
    """

    # ─────────────────────────────────────────────────────────────────────────
    # Routing
    # ─────────────────────────────────────────────────────────────────────────
    ROUTING_PROVIDER_ORDER: Tuple[str, ...] = (
        "ollama",
        "huggingface_free",
        "gemini_free",
        "openai_trial",
        "mistral_trial",
        "gemini_paid",
        "openai_paid",
        "anthropic_paid",
        "mistral_paid",
    )
    ROUTING_DISABLE_PAID = False        # Keep paid providers in the order
    ROUTING_TIMEOUT_MS = 20000          # Per-attempt adapter timeout
    ROUTING_RETRY_LIMIT = 2             # Same-candidate re-attempts
    ROUTING_MAX_TOKENS_PER_CALL = 2400  # Prompt allowance + 400-token completion
    ROUTING_MAX_MONTHLY_TOKENS = 1_200_000
    ROUTING_DRY_RUN = False             # Skip network calls entirely

    # ─────────────────────────────────────────────────────────────────────────
    # Resilience
    # ─────────────────────────────────────────────────────────────────────────
    BACKOFF_INITIAL_MS = 250            # First retry delay
    BACKOFF_MAX_MS = 4000               # Retry delay ceiling
    CIRCUIT_FAILURE_THRESHOLD = 3       # Consecutive failures before opening
    CIRCUIT_OPEN_SECONDS = 60.0         # How long an open circuit blocks

    # ─────────────────────────────────────────────────────────────────────────
    # Usage / token estimation
    # ─────────────────────────────────────────────────────────────────────────
    TOKENS_PER_WORD = 1.3               # Prompt estimate from word count
    COMPLETION_ESTIMATE_TOKENS = 400    # Assumed response length per call
    TOKENS_PER_USD = 240_000            # Legacy limitUsd conversion rate
    TRANSCRIBE_FLAT_TOKENS = 1200       # Fallback charge for one transcription
    SYNTHESISE_FLAT_TOKENS = 0          # 0 = charge delivered speech tokens

    # ─────────────────────────────────────────────────────────────────────────
    # Base provider
    # ─────────────────────────────────────────────────────────────────────────
    PROVIDER_ID = "openai"
    PROVIDER_MODEL = "gpt-4o-mini"
    PROVIDER_API_URL = "https://api.openai.com/v1/chat/completions"
    PROVIDER_API_KEY_ENV = "OPENAI_API_KEY"
    PROVIDER_TEMPERATURE = 0.3

    # ─────────────────────────────────────────────────────────────────────────
    # Gemini
    # ─────────────────────────────────────────────────────────────────────────
    GEMINI_MODEL_FREE = "gemini-1.5-flash"
    GEMINI_MODEL_PAID = "gemini-1.5-pro"
    GEMINI_API_KEY_ENV = "GOOGLE_API_KEY"

    # ─────────────────────────────────────────────────────────────────────────
    # Summary cache
    # ─────────────────────────────────────────────────────────────────────────
    CACHE_MAX_ITEMS = 512               # Cached segment summaries
    CACHE_TTL_SECONDS = 0               # 0 = entries live until invalidated

    # ─────────────────────────────────────────────────────────────────────────
    # Speech
    # ─────────────────────────────────────────────────────────────────────────
    SPEECH_MAX_TOTAL_TOKENS = 20000     # Hard ceiling before chunking (0 = off)
    SPEECH_TRUNCATION_LOOKBACK = 200    # Chars searched for a clean cut
    SPEECH_DEFAULT_VOICE = "alloy"
    SPEECH_DEFAULT_FORMAT = "mp3"

    # ─────────────────────────────────────────────────────────────────────────
    # Storage
    # ─────────────────────────────────────────────────────────────────────────
    STORAGE_BACKEND = "memory"          # memory | file
    STORAGE_BASE_DIR = "./storage"      # Directory for the file backend
    STORAGE_LOCK_STALE_MS = 10000       # Lock age presumed abandoned
    STORAGE_LOCK_MAX_ATTEMPTS = 5

    # ─────────────────────────────────────────────────────────────────────────
    # Logging
    # ─────────────────────────────────────────────────────────────────────────
    LOGGING_TEXT_PREVIEW_CHARS = 80     # Characters to show in text preview
    LOGGING_LEVEL = 2                   # 1=MINIMAL, 2=NORMAL, 3=VERBOSE, 4=DEBUG


_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


def parse_bool(value: Any, default: bool) -> bool:
    """Coerce YAML/env booleans, accepting 1/true/yes/on and 0/false/no/off."""
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in _TRUE_VALUES:
            return True
        if lowered in _FALSE_VALUES:
            return False
    return default


def parse_number(value: Any) -> Optional[float]:
    """Return a finite float for numeric input, or None."""
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if number != number or number in (float("inf"), float("-inf")):
        return None
    return number


def parse_provider_order(value: Any) -> Tuple[str, ...]:
    """Accept a list or a comma-separated string of provider ids."""
    if isinstance(value, str):
        items = value.split(",")
    elif isinstance(value, (list, tuple)):
        items = list(value)
    else:
        return ()
    cleaned = [str(item).strip().lower() for item in items if str(item).strip()]
    return tuple(cleaned)


def tokens_from_usd(amount_usd: float) -> int:
    """Convert a legacy monetary ceiling into a token ceiling."""
    if amount_usd <= 0:
        return 0
    return int(round(amount_usd * Defaults.TOKENS_PER_USD))


def _first_present(*candidates: Any) -> Any:
    for candidate in candidates:
        if candidate is not None and candidate != "":
            return candidate
    return None


def _clean_str(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return None
    stripped = value.strip()
    return stripped or None


def _clean_headers(value: Any) -> Dict[str, str]:
    if not isinstance(value, Mapping):
        return {}
    return {
        str(k).strip(): str(v).strip()
        for k, v in value.items()
        if str(k).strip() and v is not None
    }


@dataclass(frozen=True)
class RoutingConfig:
    """
    Immutable routing snapshot consumed by the Router.

    Attributes:
        provider_order: Candidate ids in priority order.
        disable_paid: Drop candidates that are neither free-tier nor keyless.
        timeout_ms: Per-attempt adapter timeout.
        retry_limit: Same-candidate re-attempts before moving on.
        max_tokens_per_call: Per-call estimate ceiling (0 disables the check).
        max_monthly_tokens: Cumulative ceiling handed to the UsageTracker.
        dry_run: Run selection and budget logic without network calls.
    """
    provider_order: Tuple[str, ...] = Defaults.ROUTING_PROVIDER_ORDER
    disable_paid: bool = Defaults.ROUTING_DISABLE_PAID
    timeout_ms: int = Defaults.ROUTING_TIMEOUT_MS
    retry_limit: int = Defaults.ROUTING_RETRY_LIMIT
    max_tokens_per_call: int = Defaults.ROUTING_MAX_TOKENS_PER_CALL
    max_monthly_tokens: int = Defaults.ROUTING_MAX_MONTHLY_TOKENS
    dry_run: bool = Defaults.ROUTING_DRY_RUN

    @classmethod
    def from_raw(
        cls,
        raw: Mapping[str, Any],
        env: Optional[Mapping[str, str]] = None,
    ) -> "RoutingConfig":
        """
        Build routing config from the `routing` YAML section plus env vars.

        Invalid or negative numbers fall back to defaults rather than
        failing, so a typo in one field never blocks routing entirely.
        """
        env = os.environ if env is None else env
        raw = raw or {}

        order = parse_provider_order(_first_present(env.get("PROVIDER_ORDER"), raw.get("provider_order")))

        disable_paid = parse_bool(
            _first_present(env.get("DISABLE_PAID"), raw.get("disable_paid")),
            Defaults.ROUTING_DISABLE_PAID,
        )

        timeout_ms = parse_number(_first_present(env.get("TIMEOUT_MS"), raw.get("timeout_ms")))
        if timeout_ms is None or timeout_ms <= 0:
            timeout_ms = Defaults.ROUTING_TIMEOUT_MS

        retry_limit = parse_number(_first_present(env.get("RETRY_LIMIT"), raw.get("retry_limit")))
        if retry_limit is None or retry_limit < 0:
            retry_limit = Defaults.ROUTING_RETRY_LIMIT

        max_per_call = parse_number(_first_present(env.get("MAX_TOKENS_PER_CALL"), raw.get("max_tokens_per_call")))
        if max_per_call is None:
            legacy = parse_number(_first_present(env.get("MAX_COST_PER_CALL_USD"), raw.get("max_cost_per_call_usd")))
            max_per_call = tokens_from_usd(legacy) if legacy is not None else Defaults.ROUTING_MAX_TOKENS_PER_CALL
        if max_per_call < 0:
            max_per_call = Defaults.ROUTING_MAX_TOKENS_PER_CALL

        max_monthly = parse_number(_first_present(env.get("MAX_MONTHLY_TOKENS"), raw.get("max_monthly_tokens")))
        if max_monthly is None:
            legacy = parse_number(_first_present(env.get("MAX_MONTHLY_COST_USD"), raw.get("max_monthly_cost_usd")))
            max_monthly = tokens_from_usd(legacy) if legacy is not None else Defaults.ROUTING_MAX_MONTHLY_TOKENS
        if max_monthly < 0:
            max_monthly = Defaults.ROUTING_MAX_MONTHLY_TOKENS

        dry_run = parse_bool(_first_present(env.get("DRY_RUN"), raw.get("dry_run")), Defaults.ROUTING_DRY_RUN)

        return cls(
            provider_order=order or Defaults.ROUTING_PROVIDER_ORDER,
            disable_paid=disable_paid,
            timeout_ms=int(timeout_ms),
            retry_limit=int(retry_limit),
            max_tokens_per_call=int(max_per_call),
            max_monthly_tokens=int(max_monthly),
            dry_run=dry_run,
        )


@dataclass(frozen=True)
class ProviderConfig:
    """
    Resolved adapter configuration for one provider.

    Attributes:
        provider: Canonical provider id this block applies to.
        model: Default model for summarisation.
        api_url: Endpoint override (None lets the adapter pick its default).
        api_key_env: Environment variable consulted when no stored key exists.
        temperature: Sampling temperature for chat-style providers.
        headers: Extra HTTP headers merged into every request.
    """
    provider: str = Defaults.PROVIDER_ID
    model: str = Defaults.PROVIDER_MODEL
    api_url: Optional[str] = None
    api_key_env: Optional[str] = Defaults.PROVIDER_API_KEY_ENV
    temperature: float = Defaults.PROVIDER_TEMPERATURE
    headers: Dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class ProviderOverride:
    """
    One layer of provider settings as written in YAML.

    Unset fields stay None so layers can be stacked with apply().
    """
    model: Optional[str] = None
    api_url: Optional[str] = None
    api_key_env: Optional[str] = None
    temperature: Optional[float] = None
    headers: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_raw(cls, raw: Mapping[str, Any]) -> "ProviderOverride":
        temperature = parse_number(raw.get("temperature"))
        return cls(
            model=_clean_str(raw.get("model")),
            api_url=_clean_str(raw.get("api_url")),
            api_key_env=_clean_str(raw.get("api_key_var")) or _clean_str(raw.get("api_key_env")),
            temperature=temperature,
            headers=_clean_headers(raw.get("headers")),
        )

    def apply(self, config: ProviderConfig) -> ProviderConfig:
        headers = dict(config.headers)
        headers.update(self.headers)
        return replace(
            config,
            model=self.model or config.model,
            api_url=self.api_url or config.api_url,
            api_key_env=self.api_key_env or config.api_key_env,
            temperature=config.temperature if self.temperature is None else self.temperature,
            headers=headers,
        )


@dataclass(frozen=True)
class GeminiConfig:
    """Model and credential defaults shared by both Gemini tiers."""
    default_model_free: str = Defaults.GEMINI_MODEL_FREE
    default_model_paid: str = Defaults.GEMINI_MODEL_PAID
    api_key_env: str = Defaults.GEMINI_API_KEY_ENV


@dataclass
class CacheConfig:
    """
    Summary cache configuration.

    The cache holds one summary per (url, segment, language, provider)
    fingerprint so repeat requests do not spend tokens again.
    """
    max_items: int = Defaults.CACHE_MAX_ITEMS
    ttl_seconds: int = Defaults.CACHE_TTL_SECONDS


@dataclass
class SpeechConfig:
    """
    Speech synthesis configuration.

    max_total_tokens is a hard ceiling applied before chunking; text past
    it is truncated at a sentence or word boundary and reported as omitted.
    """
    max_total_tokens: int = Defaults.SPEECH_MAX_TOTAL_TOKENS
    truncation_lookback: int = Defaults.SPEECH_TRUNCATION_LOOKBACK
    default_voice: str = Defaults.SPEECH_DEFAULT_VOICE
    default_format: str = Defaults.SPEECH_DEFAULT_FORMAT


@dataclass
class StorageConfig:
    """
    Blob store configuration for persisted usage, cache and API keys.

    The memory backend keeps state per process; the file backend writes
    one JSON document per key under base_dir.
    """
    backend: str = Defaults.STORAGE_BACKEND
    base_dir: str = Defaults.STORAGE_BASE_DIR
    lock_stale_ms: int = Defaults.STORAGE_LOCK_STALE_MS
    lock_max_attempts: int = Defaults.STORAGE_LOCK_MAX_ATTEMPTS


@dataclass
class LoggingConfig:
    """
    Logging configuration.

    Log levels:
        1 = MINIMAL: Startup, shutdown, critical errors only
        2 = NORMAL: Request lifecycle, routing decisions (default)
        3 = VERBOSE: Per-attempt timing, chunk plans
        4 = DEBUG: Internal state, full tracing
    """
    text_preview_chars: int = Defaults.LOGGING_TEXT_PREVIEW_CHARS
    level: int = Defaults.LOGGING_LEVEL


@dataclass
class RouterServiceConfig:
    """
    Validated configuration for RouterContext.

    This is the main configuration object created from Settings.
    It validates all values and provides typed access to configuration.

    Usage:
        settings = load_settings("config/settings.yaml")
        config = RouterServiceConfig.from_settings(settings)
        print(config.routing.provider_order)  # Typed access
    """
    routing: RoutingConfig = field(default_factory=RoutingConfig)
    base_provider: str = Defaults.PROVIDER_ID
    base: ProviderOverride = field(default_factory=ProviderOverride)
    providers: Dict[str, ProviderOverride] = field(default_factory=dict)
    gemini: GeminiConfig = field(default_factory=GeminiConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    speech: SpeechConfig = field(default_factory=SpeechConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def from_settings(
        cls,
        settings: "Settings",
        env: Optional[Mapping[str, str]] = None,
    ) -> "RouterServiceConfig":
        """
        Create RouterServiceConfig from Settings with validation.

        Reads raw configuration dictionary, applies defaults for missing
        values, validates constraints, and returns typed configuration.

        Args:
            settings: Raw Settings object loaded from YAML.
            env: Environment mapping for routing overrides (default os.environ).

        Returns:
            Validated RouterServiceConfig instance.

        Raises:
            ConfigValidationError: If any value fails validation.
        """
        raw = settings.raw

        # ─────────────────────────────────────────────────────────────────────
        # Routing configuration (env overrides handled inside)
        # ─────────────────────────────────────────────────────────────────────
        routing = RoutingConfig.from_raw(raw.get("routing", {}) or {}, env=env)

        # ─────────────────────────────────────────────────────────────────────
        # Base provider and per-provider overrides
        # ─────────────────────────────────────────────────────────────────────
        base_provider = (_clean_str(raw.get("provider")) or Defaults.PROVIDER_ID).lower()
        base = ProviderOverride.from_raw(raw)
        if base.temperature is not None:
            cls._validate_range("temperature", base.temperature, 0.0, 2.0)

        providers: Dict[str, ProviderOverride] = {}
        providers_raw = raw.get("providers", {}) or {}
        if not isinstance(providers_raw, Mapping):
            raise ConfigValidationError("providers must be a mapping of provider id to settings")
        for provider_id, block in providers_raw.items():
            pid = _clean_str(provider_id)
            if not pid or not isinstance(block, Mapping):
                continue
            override = ProviderOverride.from_raw(block)
            if override.temperature is not None:
                cls._validate_range(f"providers.{pid}.temperature", override.temperature, 0.0, 2.0)
            providers[pid.lower()] = override

        gemini_raw = raw.get("gemini", {}) or {}
        gemini = GeminiConfig(
            default_model_free=_clean_str(gemini_raw.get("default_model_free")) or Defaults.GEMINI_MODEL_FREE,
            default_model_paid=_clean_str(gemini_raw.get("default_model_paid")) or Defaults.GEMINI_MODEL_PAID,
            api_key_env=_clean_str(gemini_raw.get("api_key_env")) or Defaults.GEMINI_API_KEY_ENV,
        )

        # ─────────────────────────────────────────────────────────────────────
        # Cache configuration
        # ─────────────────────────────────────────────────────────────────────
        cache_raw = raw.get("cache", {}) or {}
        cache = CacheConfig(
            max_items=int(cache_raw.get("max_items", Defaults.CACHE_MAX_ITEMS)),
            ttl_seconds=int(cache_raw.get("ttl_seconds", Defaults.CACHE_TTL_SECONDS)),
        )
        cls._validate_positive("cache.max_items", cache.max_items)
        cls._validate_non_negative("cache.ttl_seconds", cache.ttl_seconds)

        # ─────────────────────────────────────────────────────────────────────
        # Speech configuration
        # ─────────────────────────────────────────────────────────────────────
        speech_raw = raw.get("speech", {}) or {}
        speech = SpeechConfig(
            max_total_tokens=int(speech_raw.get("max_total_tokens", Defaults.SPEECH_MAX_TOTAL_TOKENS)),
            truncation_lookback=int(speech_raw.get("truncation_lookback", Defaults.SPEECH_TRUNCATION_LOOKBACK)),
            default_voice=str(speech_raw.get("default_voice", Defaults.SPEECH_DEFAULT_VOICE)),
            default_format=str(speech_raw.get("default_format", Defaults.SPEECH_DEFAULT_FORMAT)),
        )
        cls._validate_non_negative("speech.max_total_tokens", speech.max_total_tokens)
        cls._validate_non_negative("speech.truncation_lookback", speech.truncation_lookback)

        # ─────────────────────────────────────────────────────────────────────
        # Storage configuration
        # ─────────────────────────────────────────────────────────────────────
        storage_raw = raw.get("storage", {}) or {}
        storage = StorageConfig(
            backend=str(storage_raw.get("backend", Defaults.STORAGE_BACKEND)).lower(),
            base_dir=str(storage_raw.get("base_dir", Defaults.STORAGE_BASE_DIR)),
            lock_stale_ms=int(storage_raw.get("lock_stale_ms", Defaults.STORAGE_LOCK_STALE_MS)),
            lock_max_attempts=int(storage_raw.get("lock_max_attempts", Defaults.STORAGE_LOCK_MAX_ATTEMPTS)),
        )
        if storage.backend not in ("memory", "file"):
            raise ConfigValidationError(f"storage.backend must be 'memory' or 'file', got {storage.backend}")
        cls._validate_positive("storage.lock_stale_ms", storage.lock_stale_ms)
        cls._validate_positive("storage.lock_max_attempts", storage.lock_max_attempts)

        # ─────────────────────────────────────────────────────────────────────
        # Logging configuration
        # ─────────────────────────────────────────────────────────────────────
        logging_raw = raw.get("logging", {}) or {}
        log_level_raw = logging_raw.get("level", Defaults.LOGGING_LEVEL)

        # Handle string log levels (e.g., "INFO", "DEBUG")
        if isinstance(log_level_raw, str):
            level_map = {
                "MINIMAL": 1, "1": 1,
                "NORMAL": 2, "INFO": 2, "2": 2,
                "VERBOSE": 3, "3": 3,
                "DEBUG": 4, "TRACE": 4, "4": 4,
            }
            log_level = level_map.get(log_level_raw.upper(), Defaults.LOGGING_LEVEL)
        else:
            log_level = int(log_level_raw)

        logging_cfg = LoggingConfig(
            text_preview_chars=int(logging_raw.get("text_preview_chars", Defaults.LOGGING_TEXT_PREVIEW_CHARS)),
            level=log_level,
        )
        cls._validate_non_negative("logging.text_preview_chars", logging_cfg.text_preview_chars)
        cls._validate_range("logging.level", logging_cfg.level, 1, 4)

        return cls(
            routing=routing,
            base_provider=base_provider,
            base=base,
            providers=providers,
            gemini=gemini,
            cache=cache,
            speech=speech,
            storage=storage,
            logging=logging_cfg,
        )

    def provider_config(
        self,
        provider_id: str,
        adapter_key: Optional[str] = None,
        base_id: Optional[str] = None,
    ) -> ProviderConfig:
        """
        Resolve the adapter configuration for one provider.

        Layers, lowest first:
            1. Family defaults for the adapter key (Gemini picks its tier's model)
            2. Top-level headers, for every provider
            3. Top-level model/api_url/api_key_var/temperature, for the base
               provider only (matched by raw id or by `base_id`, its
               alias-resolved form)
            4. The provider's own `providers:` block

        Args:
            provider_id: Canonical provider id.
            adapter_key: Adapter family ("openai", "gemini", ...).
            base_id: Alias-resolved id of the base provider.
        """
        pid = (provider_id or "").strip().lower() or self.base_provider
        family = adapter_key or pid

        if family == "gemini":
            model = self.gemini.default_model_free if pid.endswith("_free") else self.gemini.default_model_paid
            key_env: Optional[str] = self.gemini.api_key_env
        else:
            model = _FAMILY_MODEL.get(family, Defaults.PROVIDER_MODEL)
            key_env = _FAMILY_KEY_ENV.get(family, Defaults.PROVIDER_API_KEY_ENV)

        config = ProviderConfig(
            provider=pid,
            model=model,
            api_key_env=key_env,
            temperature=Defaults.PROVIDER_TEMPERATURE,
            headers=dict(self.base.headers),
        )

        if pid in (self.base_provider, base_id):
            config = self.base.apply(config)

        override = self.providers.get(pid)
        if override is not None:
            config = override.apply(config)
        return config

    @staticmethod
    def _validate_positive(name: str, value: int | float) -> None:
        """Validate that a value is positive (> 0)."""
        if value <= 0:
            raise ConfigValidationError(f"{name} must be positive, got {value}")

    @staticmethod
    def _validate_non_negative(name: str, value: int | float) -> None:
        """Validate that a value is non-negative (>= 0)."""
        if value < 0:
            raise ConfigValidationError(f"{name} must be non-negative, got {value}")

    @staticmethod
    def _validate_range(name: str, value: int | float, min_val: int | float, max_val: int | float) -> None:
        """Validate that a value is within a range [min_val, max_val]."""
        if not (min_val <= value <= max_val):
            raise ConfigValidationError(f"{name} must be between {min_val} and {max_val}, got {value}")


# Family defaults used when a provider has no explicit override
_FAMILY_MODEL = {
    "openai": "gpt-4o-mini",
    "anthropic": "claude-3-5-haiku-latest",
    "mistral": "mistral-small-latest",
    "huggingface": "facebook/bart-large-cnn",
    "ollama": "llama3.1",
}
_FAMILY_KEY_ENV = {
    "openai": "OPENAI_API_KEY",
    "gemini": Defaults.GEMINI_API_KEY_ENV,
    "anthropic": "ANTHROPIC_API_KEY",
    "mistral": "MISTRAL_API_KEY",
    "huggingface": "HUGGINGFACE_API_KEY",
    "ollama": None,
}


@dataclass(frozen=True)
class Settings:
    """
    Immutable settings container loaded from YAML.

    This is the raw settings object before validation. Use
    get_service_config() to get validated RouterServiceConfig.

    Attributes:
        raw: Dictionary of raw configuration values.
    """
    raw: Dict[str, Any]

    @property
    def base_provider(self) -> str:
        """Get the base provider id."""
        return str(self.raw.get("provider") or Defaults.PROVIDER_ID).strip().lower()

    @property
    def default_language(self) -> str:
        """Get the default summary/speech language."""
        return str(self.raw.get("default_language") or "en")

    def get_service_config(self, env: Optional[Mapping[str, str]] = None) -> RouterServiceConfig:
        """
        Get validated RouterServiceConfig from these settings.

        Raises:
            ConfigValidationError: If validation fails.
        """
        return RouterServiceConfig.from_settings(self, env=env)


def load_settings(path: str = "config/settings.yaml", missing_ok: bool = False) -> Settings:
    """
    Load settings from a YAML configuration file.

    Environment variable overrides:
        - PROVIDER_ROUTER_PROVIDER: Override the base provider id
        - Routing variables are applied later by RoutingConfig.from_raw

    Args:
        path: Path to the YAML configuration file.
        missing_ok: Return empty settings instead of raising when absent.

    Returns:
        Settings object with loaded configuration.

    Raises:
        FileNotFoundError: If the settings file doesn't exist.
        ConfigValidationError: If the document is not a mapping.
    """
    p = Path(path)
    if not p.exists():
        if missing_ok:
            raw: Dict[str, Any] = {}
        else:
            raise FileNotFoundError(f"settings file not found: {p.resolve()}")
    else:
        with p.open("r", encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
        if not isinstance(raw, dict):
            raise ConfigValidationError(f"settings file must contain a mapping: {p}")

    provider = os.getenv("PROVIDER_ROUTER_PROVIDER")
    if provider:
        raw["provider"] = provider

    return Settings(raw=raw)
