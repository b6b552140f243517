"""
Configuration Manager tests.

Covers:
1. validate_config rejections (unconfigured / incapable providers)
2. Provider add / assign / sync / remove lifecycle
3. TTL cache with an injected clock
4. Degradation to "nothing configured" when storage fails

Run with:
    python -m pytest tests/test_config_manager.py -v
"""

import os
import sys
from unittest.mock import AsyncMock

import pytest

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from core.errors import (
    APIKeyError,
    ConfigurationError,
    ProviderNotConfiguredError,
    UnsupportedFunctionError,
)
from services.multimedia import (
    ConfigManager,
    InMemoryStore,
    JsonFileStore,
    MediaFunction,
    MultiMediaConfig,
    ProviderConfig,
)
from services.multimedia.config_manager import ASSIGNMENTS_KEY, PROVIDER_KEY_PREFIX
from services.multimedia.storage import KeyValueStore

API_KEY = "sk-test-0123456789"


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


def provider(*functions: MediaFunction, **kwargs) -> ProviderConfig:
    return ProviderConfig(api_key=API_KEY, features={fn: True for fn in functions}, **kwargs)


class TestValidateConfig:
    """validate_config never raises; it reports errors and warnings."""

    @pytest.fixture
    def manager(self):
        return ConfigManager(InMemoryStore())

    @pytest.mark.asyncio
    async def test_rejects_unconfigured_provider(self, manager):
        result = await manager.validate_config(MultiMediaConfig(
            providers={MediaFunction.TEXT_TO_IMAGE: "ghost"},
        ))
        assert not result.valid
        assert any('"ghost"' in e and "not configured" in e for e in result.errors)

    @pytest.mark.asyncio
    async def test_rejects_provider_without_capability_flag(self, manager):
        result = await manager.validate_config(MultiMediaConfig(
            providers={MediaFunction.VIDEO_GENERATION: "demo"},
            configs={"demo": provider(MediaFunction.TEXT_TO_IMAGE)},
        ))
        assert not result.valid
        assert any("does not support" in e for e in result.errors)

    @pytest.mark.asyncio
    async def test_rejects_flag_beyond_builtin_capabilities(self, manager):
        # dayuyu only does video, whatever its flags claim
        result = await manager.validate_config(MultiMediaConfig(
            providers={MediaFunction.TEXT_TO_IMAGE: "dayuyu"},
            configs={"dayuyu": provider(MediaFunction.TEXT_TO_IMAGE, MediaFunction.VIDEO_GENERATION)},
        ))
        assert not result.valid

    @pytest.mark.asyncio
    async def test_rejects_unknown_function_in_raw_dict(self, manager):
        result = await manager.validate_config({
            "providers": {"makeCoffee": "demo"},
            "configs": {"demo": {"api_key": API_KEY, "features": {"textToImage": True}}},
        })
        assert not result.valid
        assert 'Unknown function "makeCoffee"' in result.errors

    @pytest.mark.asyncio
    async def test_accepts_valid_config_with_warnings(self, manager):
        result = await manager.validate_config(MultiMediaConfig(
            providers={MediaFunction.TEXT_TO_IMAGE: "demo"},
            configs={
                "demo": provider(MediaFunction.TEXT_TO_IMAGE, timeout=0.5),
                "idle": provider(),
            },
        ))
        assert result.valid
        assert result.errors == []
        assert len(result.warnings) == 2

    def test_provider_config_errors(self):
        result = ConfigManager.validate_provider_config("demo", ProviderConfig(api_key="short", retry_count=-1))
        assert not result.valid
        assert len(result.errors) == 2

    def test_validate_api_key(self):
        assert ConfigManager.validate_api_key("demo", API_KEY)
        with pytest.raises(APIKeyError):
            ConfigManager.validate_api_key("demo", "   ")
        with pytest.raises(APIKeyError):
            ConfigManager.validate_api_key("demo", "abc")


class TestProviderLifecycle:
    """Add, assign, sync and remove providers."""

    @pytest.fixture
    def store(self):
        return InMemoryStore()

    @pytest.fixture
    def manager(self, store):
        return ConfigManager(store)

    @pytest.mark.asyncio
    async def test_add_provider_rejects_bad_key(self, manager):
        with pytest.raises(ConfigurationError):
            await manager.add_provider_config("demo", ProviderConfig(api_key="x"))

    @pytest.mark.asyncio
    async def test_assign_and_resolve(self, manager):
        await manager.add_provider_config("demo", provider(MediaFunction.TEXT_TO_IMAGE))
        await manager.set_provider_for_function(MediaFunction.TEXT_TO_IMAGE, "demo")

        assert await manager.get_provider_for_function(MediaFunction.TEXT_TO_IMAGE) == "demo"
        assert await manager.get_configured_providers() == ["demo"]

    @pytest.mark.asyncio
    async def test_unassigned_function_is_not_configured(self, manager):
        with pytest.raises(ProviderNotConfiguredError):
            await manager.get_provider_for_function(MediaFunction.VIDEO_GENERATION)

    @pytest.mark.asyncio
    async def test_assign_unknown_provider(self, manager):
        with pytest.raises(ProviderNotConfiguredError):
            await manager.set_provider_for_function(MediaFunction.TEXT_TO_IMAGE, "ghost")

    @pytest.mark.asyncio
    async def test_assign_unsupported_function(self, manager):
        await manager.add_provider_config("demo", provider(MediaFunction.TEXT_TO_IMAGE))
        with pytest.raises(UnsupportedFunctionError):
            await manager.set_provider_for_function(MediaFunction.VIDEO_GENERATION, "demo")

    @pytest.mark.asyncio
    async def test_sync_routes_supported_functions(self, manager):
        await manager.add_provider_config(
            "shenma", provider(MediaFunction.TEXT_TO_IMAGE, MediaFunction.VIDEO_GENERATION)
        )
        await manager.sync_config("shenma")

        config = await manager.get_config()
        assert config.providers == {
            MediaFunction.TEXT_TO_IMAGE: "shenma",
            MediaFunction.VIDEO_GENERATION: "shenma",
        }

    @pytest.mark.asyncio
    async def test_remove_fails_while_assigned(self, manager, store):
        await manager.add_provider_config("demo", provider(MediaFunction.TEXT_TO_IMAGE))
        await manager.set_provider_for_function(MediaFunction.TEXT_TO_IMAGE, "demo")

        with pytest.raises(ConfigurationError) as exc_info:
            await manager.remove_provider_config("demo")
        assert exc_info.value.details["used_functions"] == ["textToImage"]

        await manager.unassign_function(MediaFunction.TEXT_TO_IMAGE)
        await manager.remove_provider_config("demo")

        assert await manager.get_configured_providers() == []
        assert await store.get(f"{PROVIDER_KEY_PREFIX}demo") is None

    @pytest.mark.asyncio
    async def test_update_config_rejects_invalid(self, manager):
        with pytest.raises(ConfigurationError):
            await manager.update_config(MultiMediaConfig(providers={MediaFunction.TEXT_TO_IMAGE: "ghost"}))

    @pytest.mark.asyncio
    async def test_storage_layout(self, manager, store):
        await manager.add_provider_config("demo", provider(MediaFunction.TEXT_TO_IMAGE))
        await manager.set_provider_for_function(MediaFunction.TEXT_TO_IMAGE, "demo")

        record = await store.get(f"{PROVIDER_KEY_PREFIX}demo")
        assert record["api_key"] == API_KEY
        assert record["features"] == {"textToImage": True}
        assert await store.get(ASSIGNMENTS_KEY) == {"textToImage": "demo"}

    @pytest.mark.asyncio
    async def test_json_file_store_survives_restart(self, tmp_path):
        path = str(tmp_path / "config.json")
        first = ConfigManager(JsonFileStore(path))
        await first.add_provider_config("zhipu", provider(MediaFunction.TEXT_TO_IMAGE))
        await first.sync_config("zhipu")

        second = ConfigManager(JsonFileStore(path))
        assert await second.get_provider_for_function(MediaFunction.TEXT_TO_IMAGE) == "zhipu"


class TestCaching:
    """TTL cache and provider status."""

    @pytest.mark.asyncio
    async def test_config_cached_until_ttl(self):
        clock = FakeClock()
        store = InMemoryStore({
            f"{PROVIDER_KEY_PREFIX}demo": {"api_key": API_KEY, "features": {"textToImage": True}},
        })
        manager = ConfigManager(store, cache_ttl=300, clock=clock)

        assert (await manager.get_config()).providers == {}

        # Written behind the manager's back
        await store.set(ASSIGNMENTS_KEY, {"textToImage": "demo"})
        clock.advance(299)
        assert (await manager.get_config()).providers == {}

        clock.advance(2)
        assert (await manager.get_config()).providers == {MediaFunction.TEXT_TO_IMAGE: "demo"}

    @pytest.mark.asyncio
    async def test_mutation_invalidates_cache(self):
        clock = FakeClock()
        manager = ConfigManager(InMemoryStore(), cache_ttl=300, clock=clock)
        await manager.get_config()

        await manager.add_provider_config("demo", provider(MediaFunction.TEXT_TO_IMAGE))
        assert "demo" in (await manager.get_config()).configs

    @pytest.mark.asyncio
    async def test_provider_status_cached_for_a_minute(self):
        clock = FakeClock()
        manager = ConfigManager(InMemoryStore(), clock=clock)
        await manager.add_provider_config("demo", provider(MediaFunction.TEXT_TO_IMAGE))

        status = await manager.get_provider_status("demo")
        assert status.available
        assert status.features[MediaFunction.TEXT_TO_IMAGE]
        assert not status.features[MediaFunction.VIDEO_GENERATION]

        clock.advance(30)
        assert await manager.get_provider_status("demo") is status
        clock.advance(31)
        assert await manager.get_provider_status("demo") is not status

    @pytest.mark.asyncio
    async def test_unknown_provider_status(self):
        manager = ConfigManager(InMemoryStore())
        status = await manager.get_provider_status("ghost")
        assert not status.available
        assert "not configured" in status.error


class TestStorageFailure:
    """Unreadable storage degrades to an empty configuration."""

    @pytest.mark.asyncio
    async def test_storage_error_yields_empty_config(self):
        store = AsyncMock(spec=KeyValueStore)
        store.keys = AsyncMock(side_effect=OSError("disk gone"))
        manager = ConfigManager(store)

        config = await manager.get_config()
        assert config.providers == {}
        assert config.configs == {}

        with pytest.raises(ProviderNotConfiguredError):
            await manager.get_provider_for_function(MediaFunction.TEXT_TO_IMAGE)

    @pytest.mark.asyncio
    async def test_corrupt_file_yields_empty_config(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text("{not json", encoding="utf-8")

        manager = ConfigManager(JsonFileStore(str(path)))
        assert (await manager.get_config()).configs == {}
