"""Tests for the network config apply path."""

from unittest.mock import AsyncMock

import pytest

from apfleet.assets.effective_config import TS_FIELD, EffectiveConfigStore, PushScheduler
from apfleet.identity.registry import IdentityRegistry
from apfleet.netconfig import (
    ASSETS,
    TEMPLATES,
    NetworkConfigManager,
    merge_asset_config,
    validate_config,
)
from apfleet.store.hashes import NETWORK_CONFIG

DOC = {
    TEMPLATES: {"ap_default": {"channel5g": "auto", "wifiNetworks": [{"ssid": "Home"}]}},
    ASSETS: {
        "ap-1": {"templateId": "ap_default", "publicKey": "key-ap-1", "channel5g": 36},
        "ap-2": {"publicKey": "key-ap-2"},
    },
}


@pytest.fixture
def manager(hashes) -> NetworkConfigManager:
    effective = EffectiveConfigStore(hashes, IdentityRegistry(), PushScheduler(3600, AsyncMock()))
    return NetworkConfigManager(hashes, effective)


class TestValidate:
    def test_valid(self):
        assert validate_config(DOC) == []

    def test_missing_template(self):
        errors = validate_config({ASSETS: {"ap-1": {"templateId": "nope"}}})
        assert errors == ["Cannot find assets template nope for asset ap-1"]

    def test_wrong_shapes(self):
        assert validate_config([]) == ["config is not an object"]
        assert len(validate_config({ASSETS: [], TEMPLATES: "x"})) == 2
        assert validate_config({ASSETS: {"ap-1": "x"}}) == ["config of asset ap-1 is not an object"]


class TestMerge:
    def test_asset_keys_win(self):
        merged = merge_asset_config(DOC[ASSETS]["ap-1"], DOC[TEMPLATES])
        assert merged == {
            "channel5g": 36,
            "wifiNetworks": [{"ssid": "Home"}],
            "publicKey": "key-ap-1",
        }

    def test_does_not_alias_template(self):
        merged = merge_asset_config(DOC[ASSETS]["ap-1"], DOC[TEMPLATES])
        merged["wifiNetworks"].append({"ssid": "Guest"})
        assert DOC[TEMPLATES]["ap_default"]["wifiNetworks"] == [{"ssid": "Home"}]

    def test_without_template(self):
        assert merge_asset_config({"publicKey": "k"}, {}) == {"publicKey": "k"}


class TestApply:
    @pytest.mark.asyncio
    async def test_commits_effective_configs(self, manager):
        assert await manager.try_apply_config(DOC) == []
        doc = manager.effective.get("ap-1")
        assert doc["channel5g"] == 36
        assert doc[TS_FIELD] > 0
        assert manager.effective.registry.public_key_of("ap-2") == "key-ap-2"
        assert await manager.get_active_config() == DOC
        await manager.effective.scheduler.cancel_all()

    @pytest.mark.asyncio
    async def test_invalid_doc_changes_nothing(self, manager):
        errors = await manager.try_apply_config({ASSETS: {"ap-1": {"templateId": "nope"}}})
        assert errors
        assert manager.effective.get("ap-1") is None
        assert await manager.get_active_config() == {}

    @pytest.mark.asyncio
    async def test_removed_asset_is_flushed(self, manager):
        await manager.try_apply_config(DOC)
        smaller = {TEMPLATES: DOC[TEMPLATES], ASSETS: {"ap-2": DOC[ASSETS]["ap-2"]}}
        assert await manager.try_apply_config(smaller) == []
        assert manager.effective.get("ap-1") is None
        assert not manager.effective.registry.contains("ap-1")
        await manager.effective.scheduler.cancel_all()

    @pytest.mark.asyncio
    async def test_save_and_reload(self, manager, hashes):
        await manager.save_config(DOC)
        assert hashes.hget(NETWORK_CONFIG, "active") == DOC
        fresh = NetworkConfigManager(hashes, manager.effective)
        assert await fresh.get_active_config() == DOC

    @pytest.mark.asyncio
    async def test_lock_returns_result(self, manager):
        async def work():
            return 5

        assert await manager.acquire_config_lock(work) == 5
