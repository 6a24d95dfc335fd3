"""Network configuration document and the apply path into asset configs.

The active document has two sections relevant to assets::

    {
      "assets_template": {"ap_default": {...}},
      "assets": {"20:6D:31:00:00:01": {"publicKey": "...", "templateId": "ap_default"}}
    }

Applying it resolves every asset against its template and commits the
result through the effective config store.
"""

import asyncio
import copy
import logging
from collections.abc import Awaitable, Callable
from typing import Any, Protocol, TypeVar

from apfleet.assets.effective_config import EffectiveConfigStore
from apfleet.errors import ConfigValidationError
from apfleet.store.hashes import NETWORK_CONFIG, HashStore

logger = logging.getLogger(__name__)

T = TypeVar("T")

ASSETS = "assets"
TEMPLATES = "assets_template"
_ACTIVE_KEY = "active"

# Template created on first registration of a device type
DEFAULT_TEMPLATES: dict[str, dict[str, Any]] = {
    "ap": {
        "meta": {"name": "Default AP template"},
        "wifiNetworks": [],
        "channel24g": "auto",
        "channel5g": "auto",
    },
}
DEFAULT_DEVICE_TYPE = "ap"


def default_template_id(device_type: str | None) -> str | None:
    device_type = device_type or DEFAULT_DEVICE_TYPE
    if device_type not in DEFAULT_TEMPLATES:
        return None
    return f"{device_type}_default"


class ConfigManager(Protocol):
    async def acquire_config_lock(self, fn: Callable[[], Awaitable[T]]) -> T: ...

    async def get_active_config(self) -> dict[str, Any]: ...

    async def try_apply_config(self, doc: dict[str, Any]) -> list[str]: ...

    async def save_config(self, doc: dict[str, Any]) -> None: ...


def validate_config(doc: Any) -> list[str]:
    if not isinstance(doc, dict):
        return ["config is not an object"]
    errors: list[str] = []
    templates = doc.get(TEMPLATES, {})
    assets = doc.get(ASSETS, {})
    if not isinstance(templates, dict):
        errors.append(f'"{TEMPLATES}" should be an object')
        templates = {}
    if not isinstance(assets, dict):
        errors.append(f'"{ASSETS}" should be an object')
        assets = {}
    for template_id, template in templates.items():
        if not isinstance(template, dict):
            errors.append(f"assets template {template_id} is not an object")
    for uid, entry in assets.items():
        if not isinstance(entry, dict):
            errors.append(f"config of asset {uid} is not an object")
            continue
        template_id = entry.get("templateId")
        if template_id is not None and template_id not in templates:
            errors.append(f"Cannot find assets template {template_id} for asset {uid}")
    return errors


def merge_asset_config(entry: dict[str, Any], templates: dict[str, Any]) -> dict[str, Any]:
    """Template keys overlaid with the asset's own keys."""
    template_id = entry.get("templateId")
    if template_id is None:
        return copy.deepcopy(entry)
    merged = copy.deepcopy(templates[template_id])
    merged.update(copy.deepcopy(entry))
    merged.pop("templateId", None)
    return merged


class NetworkConfigManager:
    """In-process configuration manager backed by the hash store."""

    def __init__(self, hashes: HashStore, effective: EffectiveConfigStore) -> None:
        self.hashes = hashes
        self.effective = effective
        self._lock = asyncio.Lock()
        self._active: dict[str, Any] | None = None

    async def acquire_config_lock(self, fn: Callable[[], Awaitable[T]]) -> T:
        async with self._lock:
            return await fn()

    async def get_active_config(self) -> dict[str, Any]:
        if self._active is None:
            saved = self.hashes.hget(NETWORK_CONFIG, _ACTIVE_KEY)
            self._active = saved if isinstance(saved, dict) else {}
        return copy.deepcopy(self._active)

    async def try_apply_config(self, doc: dict[str, Any]) -> list[str]:
        errors = validate_config(doc)
        if errors:
            return errors

        previous = await self.get_active_config()
        templates = doc.get(TEMPLATES, {})
        assets = doc.get(ASSETS, {})
        for uid, entry in assets.items():
            try:
                await self.effective.set(uid, merge_asset_config(entry, templates))
            except ConfigValidationError as e:
                errors.append(str(e))
        if errors:
            return errors

        for uid in previous.get(ASSETS, {}):
            if uid not in assets:
                logger.info("Asset %s removed from config, flushing", uid)
                await self.effective.delete(uid)

        self._active = copy.deepcopy(doc)
        return []

    async def save_config(self, doc: dict[str, Any]) -> None:
        self.hashes.hset(NETWORK_CONFIG, _ACTIVE_KEY, doc)
