"""
Configuration Manager - provider settings and function routing.

Owns the ``MultiMediaConfig``: which provider serves each function and the
per-provider settings. The authoritative copy lives in a ``KeyValueStore``;
an in-memory copy is cached with a TTL and invalidated by every mutation.

Storage layout:
    multimedia:provider:<id>   -> ProviderConfig (one record per provider)
    multimedia:assignments     -> {function: provider_id}
"""

import logging
import time
from typing import Any, Callable, Generic, Optional, TypeVar, Union

from core.errors import (
    APIKeyError,
    ConfigurationError,
    ProviderNotConfiguredError,
    UnsupportedFunctionError,
)

from .capabilities import MediaFunction, parse_function, provider_supports
from .models import MultiMediaConfig, ProviderConfig, ProviderStatus, ValidationResult
from .storage import KeyValueStore

logger = logging.getLogger(__name__)

PROVIDER_KEY_PREFIX = "multimedia:provider:"
ASSIGNMENTS_KEY = "multimedia:assignments"

MIN_API_KEY_LENGTH = 10
PROVIDER_STATUS_TTL = 60.0

V = TypeVar("V")


class TTLCache(Generic[V]):
    """Tiny TTL cache with an injectable clock."""

    def __init__(self, ttl: float, clock: Callable[[], float] = time.monotonic):
        self.ttl = ttl
        self._clock = clock
        self._entries: dict[str, tuple[float, V]] = {}

    def get(self, key: str) -> Optional[V]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        expires_at, value = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            return None
        return value

    def set(self, key: str, value: V, ttl: Optional[float] = None):
        self._entries[key] = (self._clock() + (self.ttl if ttl is None else ttl), value)

    def invalidate(self, key: Optional[str] = None):
        if key is None:
            self._entries.clear()
        else:
            self._entries.pop(key, None)


class ConfigManager:
    """
    Stores, validates and caches provider configuration.

    Usage:
        manager = ConfigManager(JsonFileStore(".storyflow/config.json"))
        await manager.add_provider_config("shenma", ProviderConfig(api_key="sk-...", features={...}))
        await manager.sync_config("shenma")
        provider_id = await manager.get_provider_for_function(MediaFunction.TEXT_TO_IMAGE)
    """

    def __init__(
        self,
        store: KeyValueStore,
        cache_ttl: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.store = store
        self._cache: TTLCache[MultiMediaConfig] = TTLCache(cache_ttl, clock)
        self._status_cache: TTLCache[ProviderStatus] = TTLCache(PROVIDER_STATUS_TTL, clock)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_config(self) -> MultiMediaConfig:
        """Cached config; reloads from storage once the TTL has expired."""
        cached = self._cache.get("config")
        if cached is not None:
            return cached

        config = await self._load_from_storage()
        self._cache.set("config", config)
        return config

    async def get_provider_for_function(self, function: MediaFunction) -> str:
        config = await self.get_config()
        provider_id = config.providers.get(function)
        if not provider_id:
            raise ProviderNotConfiguredError("none", function.value)
        if provider_id not in config.configs:
            raise ProviderNotConfiguredError(provider_id, function.value)
        return provider_id

    async def get_provider_config(self, provider_id: str) -> ProviderConfig:
        config = await self.get_config()
        if provider_id not in config.configs:
            raise ProviderNotConfiguredError(provider_id)
        return config.configs[provider_id]

    async def get_configured_providers(self) -> list[str]:
        config = await self.get_config()
        return [pid for pid, cfg in config.configs.items() if cfg.api_key]

    async def get_provider_status(self, provider_id: str) -> ProviderStatus:
        cached = self._status_cache.get(provider_id)
        if cached is not None:
            return cached

        config = await self.get_config()
        provider_config = config.configs.get(provider_id)
        if provider_config is None:
            return ProviderStatus(
                provider=provider_id,
                available=False,
                error=f'Provider "{provider_id}" is not configured',
            )

        available = False
        error = None
        try:
            available = self.validate_api_key(provider_id, provider_config.api_key)
        except APIKeyError as e:
            error = e.message

        status = ProviderStatus(
            provider=provider_id,
            available=available,
            features={fn: provider_config.supports(fn) for fn in MediaFunction},
            error=error,
        )
        self._status_cache.set(provider_id, status)
        return status

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    @staticmethod
    def validate_api_key(provider_id: str, api_key: str) -> bool:
        if not api_key or not api_key.strip():
            raise APIKeyError(provider_id, "API key is empty")
        if len(api_key.strip()) < MIN_API_KEY_LENGTH:
            raise APIKeyError(provider_id, "API key is too short")
        return True

    @staticmethod
    def validate_provider_config(provider_id: str, config: ProviderConfig) -> ValidationResult:
        errors = []
        warnings = []

        if not config.api_key or not config.api_key.strip():
            errors.append(f'API key is required for provider "{provider_id}"')
        elif len(config.api_key.strip()) < MIN_API_KEY_LENGTH:
            errors.append(f'API key for provider "{provider_id}" is too short')

        if not config.enabled_functions():
            warnings.append(f'No features enabled for provider "{provider_id}"')

        if config.timeout is not None and config.timeout < 1:
            warnings.append(f"Timeout {config.timeout}s is too short, minimum is 1s")

        if config.retry_count is not None and config.retry_count < 0:
            errors.append("Retry count cannot be negative")

        return ValidationResult(valid=not errors, errors=errors, warnings=warnings)

    async def validate_config(self, candidate: Union[MultiMediaConfig, dict[str, Any]]) -> ValidationResult:
        """
        Check a candidate config without raising.

        Every function assignment must name a configured provider whose
        feature flags (and built-in capabilities, for known providers)
        include that function.
        """
        errors: list[str] = []
        warnings: list[str] = []

        if isinstance(candidate, dict):
            # Raw dicts may carry unknown function names that would make
            # model validation raise; report those as validation errors.
            providers = candidate.get("providers") or {}
            known = {}
            for key, provider_id in providers.items():
                function = parse_function(key)
                if function is None:
                    errors.append(f'Unknown function "{key}"')
                else:
                    known[function] = provider_id
            try:
                candidate = MultiMediaConfig(providers=known, configs=candidate.get("configs") or {})
            except ValueError as e:
                errors.append(f"Invalid configuration: {e}")
                return ValidationResult(valid=False, errors=errors, warnings=warnings)

        for provider_id, provider_config in candidate.configs.items():
            result = self.validate_provider_config(provider_id, provider_config)
            errors.extend(result.errors)
            warnings.extend(result.warnings)

        for function, provider_id in candidate.providers.items():
            provider_config = candidate.configs.get(provider_id)
            if provider_config is None:
                errors.append(
                    f'Provider "{provider_id}" assigned to "{function.value}" is not configured'
                )
                continue
            if not provider_config.supports(function) or not provider_supports(provider_id, function):
                errors.append(
                    f'Provider "{provider_id}" does not support function "{function.value}"'
                )

        return ValidationResult(valid=not errors, errors=errors, warnings=warnings)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def update_config(self, config: MultiMediaConfig):
        """Validate, persist and invalidate the cache."""
        validation = await self.validate_config(config)
        if not validation.valid:
            raise ConfigurationError(
                f"Configuration validation failed: {'; '.join(validation.errors)}",
                {"errors": validation.errors},
            )
        for warning in validation.warnings:
            logger.warning(f"Config warning: {warning}")

        await self._save_to_storage(config)
        self.clear_cache()

    async def add_provider_config(self, provider_id: str, provider_config: ProviderConfig):
        validation = self.validate_provider_config(provider_id, provider_config)
        if not validation.valid:
            raise ConfigurationError(
                f"Provider configuration validation failed: {', '.join(validation.errors)}",
                {"errors": validation.errors},
            )

        config = (await self.get_config()).model_copy(deep=True)
        config.configs[provider_id] = provider_config
        await self.update_config(config)
        logger.info(f"Added provider config: {provider_id}")

    async def sync_config(self, provider_id: str):
        """Route every function the provider supports to it."""
        config = (await self.get_config()).model_copy(deep=True)
        provider_config = config.configs.get(provider_id)
        if provider_config is None:
            raise ProviderNotConfiguredError(provider_id)

        synced = []
        for function in MediaFunction:
            if provider_config.supports(function) and provider_supports(provider_id, function):
                config.providers[function] = provider_id
                synced.append(function.value)

        await self.update_config(config)
        logger.info(f"Synced {provider_id} to functions: {', '.join(synced) or 'none'}")

    async def set_provider_for_function(self, function: MediaFunction, provider_id: str):
        config = (await self.get_config()).model_copy(deep=True)
        provider_config = config.configs.get(provider_id)
        if provider_config is None:
            raise ProviderNotConfiguredError(provider_id, function.value)
        if not provider_config.supports(function) or not provider_supports(provider_id, function):
            raise UnsupportedFunctionError(provider_id, function.value)

        config.providers[function] = provider_id
        await self.update_config(config)

    async def unassign_function(self, function: MediaFunction):
        config = (await self.get_config()).model_copy(deep=True)
        if config.providers.pop(function, None) is not None:
            await self.update_config(config)

    async def remove_provider_config(self, provider_id: str):
        config = (await self.get_config()).model_copy(deep=True)
        used = config.assigned_functions(provider_id)
        if used:
            raise ConfigurationError(
                f'Cannot remove provider "{provider_id}" because it is used by functions: '
                f"{', '.join(fn.value for fn in used)}",
                {"used_functions": [fn.value for fn in used]},
            )

        config.configs.pop(provider_id, None)
        await self.update_config(config)
        logger.info(f"Removed provider config: {provider_id}")

    def clear_cache(self):
        self._cache.invalidate()
        self._status_cache.invalidate()

    # ------------------------------------------------------------------
    # Storage
    # ------------------------------------------------------------------

    async def _load_from_storage(self) -> MultiMediaConfig:
        try:
            configs = {}
            for key in await self.store.keys(PROVIDER_KEY_PREFIX):
                record = await self.store.get(key)
                if record:
                    configs[key[len(PROVIDER_KEY_PREFIX):]] = ProviderConfig.model_validate(record)

            assignments = await self.store.get(ASSIGNMENTS_KEY) or {}
            providers = {}
            for key, provider_id in assignments.items():
                function = parse_function(key)
                if function is None:
                    logger.warning(f"Ignoring stored assignment for unknown function {key!r}")
                    continue
                providers[function] = provider_id

            return MultiMediaConfig(providers=providers, configs=configs)
        except Exception as e:
            # Unreadable storage degrades to "nothing configured"
            logger.error(f"Failed to load multimedia config, using empty config: {e}")
            return MultiMediaConfig()

    async def _save_to_storage(self, config: MultiMediaConfig):
        stored = set(await self.store.keys(PROVIDER_KEY_PREFIX))
        for provider_id, provider_config in config.configs.items():
            key = f"{PROVIDER_KEY_PREFIX}{provider_id}"
            await self.store.set(key, provider_config.model_dump(mode="json", exclude_none=True))
            stored.discard(key)
        for stale_key in stored:
            await self.store.delete(stale_key)

        await self.store.set(
            ASSIGNMENTS_KEY,
            {fn.value: pid for fn, pid in config.providers.items()},
        )
