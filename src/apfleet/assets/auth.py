"""Asset registration, before and after the tunnel exists.

An unprovisioned asset repeatedly sends ``raw_auth_register`` on the raw
channel with its uid and tunnel public key. The first request creates a
placeholder entry in the network config; the peer provisioner reacts to it
by adopting the key as a tunnel peer. Once the key has a tunnel IP, the
next raw request is answered with a grant carrying everything the asset
needs to bring the tunnel up. After that the asset talks on the control
channel, where ``auth_register`` re-confirms its key.
"""

import copy
import logging
from collections.abc import Callable
from typing import Any

from apfleet.identity.registry import IdentityRegistry
from apfleet.netconfig import (
    ASSETS,
    DEFAULT_DEVICE_TYPE,
    DEFAULT_TEMPLATES,
    TEMPLATES,
    ConfigManager,
    default_template_id,
)
from apfleet.protocol.messages import Message, MessageType, encode
from apfleet.protocol.transport import Address

logger = logging.getLogger(__name__)


class AuthHandshake:
    def __init__(
        self,
        registry: IdentityRegistry,
        config_manager: ConfigManager,
        send_raw: Callable[[bytes, Address], bool],
        grant_params: Callable[[], dict[str, Any] | None],
    ) -> None:
        self.registry = registry
        self.config_manager = config_manager
        self._send_raw = send_raw
        self._grant_params = grant_params

    async def process_auth_register(
        self,
        uid: str,
        public_key: str,
        device_type: str | None = None,
    ) -> bool:
        """Create or update the asset's config entry with its public key.

        Runs as one read-modify-write under the global config lock. Returns
        False if applying the updated config failed.
        """

        async def _register() -> bool:
            config = await self.config_manager.get_active_config()
            assets = config.setdefault(ASSETS, {})
            templates = config.setdefault(TEMPLATES, {})

            template_id = default_template_id(device_type)
            if template_id is not None and template_id not in templates:
                templates[template_id] = copy.deepcopy(
                    DEFAULT_TEMPLATES[device_type or DEFAULT_DEVICE_TYPE]
                )
                logger.info("Created default assets template %s", template_id)

            # A key belongs to one asset; drop it from any previous owner
            previous_owners = [
                other
                for other, other_entry in assets.items()
                if other != uid
                and isinstance(other_entry, dict)
                and other_entry.get("publicKey") == public_key
            ]
            for other in previous_owners:
                del assets[other]["publicKey"]
                logger.info("Public key of asset %s moved to asset %s", other, uid)

            entry = assets.get(uid)
            if (
                not previous_owners
                and entry is not None
                and entry.get("publicKey") == public_key
                and self.registry.public_key_of(uid) == public_key
            ):
                logger.debug("Asset %s already registered with the same key", uid)
                return True

            if entry is None:
                entry = {"templateId": template_id} if template_id else {}
                assets[uid] = entry
                logger.info("Adding asset %s to config", uid)
            entry["publicKey"] = public_key

            errors = await self.config_manager.try_apply_config(config)
            if errors:
                logger.error("Failed to apply config while registering asset %s: %s", uid, errors)
                return False
            await self.config_manager.save_config(config)
            logger.info("Asset %s registered", uid)
            return True

        return await self.config_manager.acquire_config_lock(_register)

    async def process_raw_auth_message(self, msg: Message, addr: Address) -> bool:
        """Handle raw_auth_register. Return True if a grant was sent."""
        uid = msg.get("uid")
        public_key = msg.get("publicKey")
        if not isinstance(uid, str) or not uid or not isinstance(public_key, str) or not public_key:
            logger.warning("Raw auth request from %s lacks uid or publicKey", addr[0])
            return False

        device_type = msg.get("deviceType")
        if not isinstance(device_type, str):
            device_type = None
        if not await self.process_auth_register(uid, public_key, device_type):
            return False

        asset_ip = self.registry.ip_of_key(public_key)
        if asset_ip is None:
            logger.info("Asset %s not adopted as a tunnel peer yet", uid)
            return False

        params = self._grant_params()
        if params is None:
            logger.error("Cannot grant asset %s, controller tunnel key unknown", uid)
            return False
        payload = encode(MessageType.raw_auth_grant, assetIP=asset_ip, **params)
        sent = self._send_raw(payload, addr)
        if sent:
            logger.info("Sent raw auth grant to asset %s at %s", uid, addr[0])
        return sent
