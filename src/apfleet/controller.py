"""Assets controller: owns the registry, stores and both datagram channels."""

import asyncio
import logging
from typing import Any

from apfleet.assets.auth import AuthHandshake
from apfleet.assets.effective_config import TS_FIELD, EffectiveConfigStore, PushScheduler
from apfleet.assets.status import StatusAggregator
from apfleet.assets.steering import BssSteering
from apfleet.config import Settings, settings
from apfleet.identity.registry import IdentityRegistry
from apfleet.netconfig import ConfigManager, NetworkConfigManager
from apfleet.protocol.messages import Message, MessageType, encode
from apfleet.protocol.transport import Address, ChannelKind, DatagramChannel
from apfleet.store.hashes import HashStore
from apfleet.tunnel import TunnelConfig, derive_public_key

logger = logging.getLogger(__name__)


class AssetsController:
    def __init__(
        self,
        hashes: HashStore,
        cfg: Settings | None = None,
        config_manager: ConfigManager | None = None,
    ) -> None:
        self.settings = cfg or settings
        self.hashes = hashes
        self.registry = IdentityRegistry()
        self.channel = DatagramChannel(
            self.dispatch,
            control_port=self.settings.control_port,
            raw_port=self.settings.raw_auth_port,
            raw_bind=self.settings.raw_auth_bind,
            backoff_initial=self.settings.restart_backoff_initial,
            backoff_max=self.settings.restart_backoff_max,
        )
        self.scheduler = PushScheduler(self.settings.push_debounce, self.push_config)
        self.configs = EffectiveConfigStore(hashes, self.registry, self.scheduler)
        self.status = StatusAggregator(hashes, self.registry, self.settings.station_ttl)
        self.config_manager: ConfigManager = config_manager or NetworkConfigManager(
            hashes, self.configs
        )
        self.auth = AuthHandshake(
            self.registry, self.config_manager, self.channel.send_raw, self._grant_params
        )
        self.steering = BssSteering(self.status, self.send_steer)
        self.tunnel: TunnelConfig | None = None
        self.self_public_key: str | None = None
        self._heartbeat_task: asyncio.Task[None] | None = None

    def load(self) -> None:
        """Rebuild in-memory state from storage."""
        self.configs.load()

    @property
    def running(self) -> bool:
        return self._heartbeat_task is not None

    async def start_server(self, tunnel: TunnelConfig) -> None:
        if self.running:
            await self.stop_server()
        self.tunnel = tunnel
        self.registry.load_peers(tunnel)
        self.self_public_key = await derive_public_key(tunnel.private_key, self.settings.wg_binary)
        await self.channel.start(tunnel.controller_ip)
        self._heartbeat_task = asyncio.create_task(self._heartbeat_loop())
        logger.info("Assets controller started on %s", tunnel.controller_ip)

    async def stop_server(self) -> None:
        if self._heartbeat_task is not None:
            self._heartbeat_task.cancel()
            try:
                await self._heartbeat_task
            except asyncio.CancelledError:
                pass
            self._heartbeat_task = None
        await self.scheduler.cancel_all()
        await self.channel.stop()
        logger.info("Assets controller stopped")

    async def update_tunnel(self, tunnel: TunnelConfig) -> None:
        """Apply a new peer table. Listeners move only if the tunnel IP changed."""
        if not self.running or self.tunnel is None:
            self.tunnel = tunnel
            self.registry.load_peers(tunnel)
            return
        if tunnel.controller_ip != self.tunnel.controller_ip or (
            tunnel.private_key != self.tunnel.private_key
        ):
            await self.start_server(tunnel)
            return
        self.tunnel = tunnel
        self.registry.load_peers(tunnel)

    # --- inbound ---

    async def dispatch(self, kind: ChannelKind, msg: Message, addr: Address) -> None:
        ip = addr[0]
        match msg.type:
            case MessageType.pull_config:
                uid = self._resolve_sender(ip, msg.type)
                if uid is not None:
                    self.scheduler.schedule(uid)
            case MessageType.status:
                uid = self._resolve_sender(ip, msg.type)
                if uid is not None:
                    self._record_status(uid, msg)
            case MessageType.auth_register:
                await self._handle_auth_register(ip, msg)
            case MessageType.raw_auth_register:
                await self.auth.process_raw_auth_message(msg, addr)
            case (
                MessageType.push_config
                | MessageType.heartbeat
                | MessageType.steer
                | MessageType.raw_auth_grant
            ):
                logger.warning("Ignoring outbound-only message %s from %s", msg.type, ip)
            case _:
                logger.warning("Unsupported message type %s from %s", msg.type, ip)

    def _resolve_sender(self, ip: str, msg_type: MessageType) -> str | None:
        uid = self.registry.resolve_uid_by_address(ip)
        if uid is None:
            logger.error("Cannot find uid of IP address %s, dropping %s", ip, msg_type)
        return uid

    def _record_status(self, uid: str, msg: Message) -> None:
        report = msg.get("status")
        if not isinstance(report, dict):
            logger.warning("Status message from asset %s has no status object", uid)
            return
        self.status.record_asset_status(report, uid)
        count = self.status.record_station_status(report, uid)
        logger.debug("Asset %s reported %d station(s)", uid, count)

    async def _handle_auth_register(self, ip: str, msg: Message) -> None:
        public_key = self.registry.public_key_by_ip(ip)
        if public_key is None:
            logger.error("No tunnel peer owns IP address %s, dropping auth_register", ip)
            return
        uid = msg.get("uid")
        if not isinstance(uid, str) or not uid:
            uid = self.registry.resolve_uid_by_address(ip)
        if uid is None:
            logger.error("auth_register from %s carries no uid", ip)
            return
        device_type = msg.get("deviceType")
        await self.auth.process_auth_register(
            uid, public_key, device_type if isinstance(device_type, str) else None
        )

    # --- outbound ---

    def _grant_params(self) -> dict[str, Any] | None:
        if self.tunnel is None or self.self_public_key is None:
            return None
        return {
            "publicKey": self.self_public_key,
            "controllerIP": self.tunnel.controller_ip,
            "listenPort": self.tunnel.listen_port,
            "endpoint": self.settings.tunnel_endpoint,
        }

    async def push_config(self, uid: str) -> bool:
        if self.tunnel is None:
            return False
        asset_ip = self.registry.resolve_ip_by_uid(uid)
        if asset_ip is None:
            logger.error("Cannot find IP of asset %s", uid)
            return False
        config = self.configs.get(uid)
        if config is None:
            logger.error("Cannot find config of asset %s", uid)
            return False
        wg: dict[str, Any] = {
            "peerPubKey": self.self_public_key,
            "peerIP": self.tunnel.controller_ip,
            "peerPort": self.tunnel.listen_port,
            "assetIP": asset_ip,
            "endpoint": self.settings.tunnel_endpoint,
        }
        public_key = self.registry.public_key_of(uid)
        private_key = self.registry.private_key_override(public_key) if public_key else None
        if private_key:
            wg["privateKey"] = private_key
        sent = self.channel.send(encode(MessageType.push_config, config=config, wg=wg), asset_ip)
        if sent:
            logger.info("Pushed config to asset %s", uid)
        return sent

    async def send_heartbeat(self, uid: str) -> bool:
        asset_ip = self.registry.resolve_ip_by_uid(uid)
        if asset_ip is None:
            logger.debug("Cannot find IP of asset %s", uid)
            return False
        config = self.configs.get(uid)
        if config is None or not config.get(TS_FIELD):
            logger.debug("Cannot find config ts of asset %s", uid)
            return False
        # The asset sends pull_config if its copy is older than ts
        return self.channel.send(encode(MessageType.heartbeat, ts=config[TS_FIELD]), asset_ip)

    async def send_steer(self, uid: str, body: dict[str, Any]) -> bool:
        asset_ip = self.registry.resolve_ip_by_uid(uid)
        if asset_ip is None:
            logger.error("Cannot find IP of asset %s, steer not sent", uid)
            return False
        return self.channel.send(encode(MessageType.steer, **body), asset_ip)

    async def _heartbeat_loop(self) -> None:
        while True:
            await asyncio.sleep(self.settings.heartbeat_interval)
            for uid in self.registry.uids():
                try:
                    await self.send_heartbeat(uid)
                except Exception:
                    logger.exception("Heartbeat to asset %s failed", uid)

    # --- read APIs ---

    def get_all_asset_status(self) -> dict[str, dict[str, Any]]:
        return {
            uid: status.model_dump(mode="json", by_alias=True)
            for uid, status in self.status.get_all_asset_status().items()
        }

    def get_all_station_status(self) -> dict[str, dict[str, Any]]:
        return {
            mac: station.model_dump(mode="json", by_alias=True)
            for mac, station in self.status.get_all_stations().items()
        }

    async def bss_steer(
        self,
        sta_mac: str,
        target_uid: str,
        target_ssid: str | None = None,
        target_band: str | None = None,
    ) -> bool:
        return await self.steering.steer(sta_mac, target_uid, target_ssid, target_band)
