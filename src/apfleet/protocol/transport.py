"""UDP listeners for the control channel and the raw auth channel.

The control listener is bound to the controller's tunnel address and only
hears assets that already completed the tunnel handshake. The raw listener
is bound on the LAN side and is used for trust bootstrapping only.
"""

import asyncio
import enum
import logging
from collections.abc import Awaitable, Callable

from apfleet.errors import MessageDecodeError
from apfleet.protocol.messages import CONTROL_INBOUND, RAW_INBOUND, Message, decode

logger = logging.getLogger(__name__)

Address = tuple[str, int]


class ChannelKind(enum.StrEnum):
    control = "control"
    raw = "raw"


_ACCEPTED = {
    ChannelKind.control: CONTROL_INBOUND,
    ChannelKind.raw: RAW_INBOUND,
}

MessageHandler = Callable[[ChannelKind, Message, Address], Awaitable[None]]


class _Listener(asyncio.DatagramProtocol):
    def __init__(self, kind: ChannelKind, channel: "DatagramChannel") -> None:
        self.kind = kind
        self.channel = channel

    def datagram_received(self, data: bytes, addr: Address) -> None:
        self.channel._on_datagram(self.kind, data, addr)

    def error_received(self, exc: Exception) -> None:
        self.channel._on_error(self.kind, exc)

    def connection_lost(self, exc: Exception | None) -> None:
        if exc is not None:
            self.channel._on_error(self.kind, exc)


class DatagramChannel:
    """Owns both listeners and restarts them together on socket errors."""

    def __init__(
        self,
        on_message: MessageHandler,
        control_port: int = 8838,
        raw_port: int = 8839,
        raw_bind: str = "0.0.0.0",
        asset_port: int | None = None,
        backoff_initial: float = 1.0,
        backoff_max: float = 60.0,
    ) -> None:
        self._on_message = on_message
        self.control_port = control_port
        self.raw_port = raw_port
        self.raw_bind = raw_bind
        self.asset_port = asset_port if asset_port is not None else control_port
        self.backoff_initial = backoff_initial
        self.backoff_max = backoff_max
        self._control_ip: str | None = None
        self._transports: dict[ChannelKind, asyncio.DatagramTransport] = {}
        self._running = False
        self._failures = 0
        self._restart_task: asyncio.Task[None] | None = None
        self._handlers: set[asyncio.Task[None]] = set()

    @property
    def running(self) -> bool:
        return self._running

    def local_address(self, kind: ChannelKind) -> Address | None:
        transport = self._transports.get(kind)
        if transport is None:
            return None
        return transport.get_extra_info("sockname")

    async def start(self, control_ip: str) -> None:
        if self._running:
            await self.stop()
        self._control_ip = control_ip
        self._running = True
        self._failures = 0
        try:
            await self._bind()
        except OSError:
            logger.exception("Failed to bind asset listeners on %s", control_ip)
            self._close_transports()
            self._schedule_restart()

    async def stop(self) -> None:
        self._running = False
        if self._restart_task is not None:
            self._restart_task.cancel()
            try:
                await self._restart_task
            except asyncio.CancelledError:
                pass
            self._restart_task = None
        self._close_transports()
        handlers = list(self._handlers)
        for task in handlers:
            task.cancel()
        if handlers:
            await asyncio.gather(*handlers, return_exceptions=True)
        logger.info("Asset listeners stopped")

    def send(self, payload: bytes, ip: str) -> bool:
        """Send on the control channel to an asset's tunnel IP."""
        transport = self._transports.get(ChannelKind.control)
        if transport is None:
            logger.warning("Control channel is down, dropping message to %s", ip)
            return False
        transport.sendto(payload, (ip, self.asset_port))
        return True

    def send_raw(self, payload: bytes, addr: Address) -> bool:
        """Reply on the raw channel to the requester's source address."""
        transport = self._transports.get(ChannelKind.raw)
        if transport is None:
            logger.warning("Raw auth channel is down, dropping message to %s", addr)
            return False
        transport.sendto(payload, addr)
        return True

    async def _bind(self) -> None:
        loop = asyncio.get_running_loop()
        if self._control_ip is None:
            raise RuntimeError("control address unknown, start() has not been called")
        control, _ = await loop.create_datagram_endpoint(
            lambda: _Listener(ChannelKind.control, self),
            local_addr=(self._control_ip, self.control_port),
        )
        self._transports[ChannelKind.control] = control
        raw, _ = await loop.create_datagram_endpoint(
            lambda: _Listener(ChannelKind.raw, self),
            local_addr=(self.raw_bind, self.raw_port),
        )
        self._transports[ChannelKind.raw] = raw
        logger.info(
            "Asset listeners up: control %s:%d, raw %s:%d",
            self._control_ip,
            self.control_port,
            self.raw_bind,
            self.raw_port,
        )

    def _close_transports(self) -> None:
        transports = list(self._transports.values())
        self._transports.clear()
        for transport in transports:
            transport.close()

    def _on_datagram(self, kind: ChannelKind, data: bytes, addr: Address) -> None:
        self._failures = 0
        task = asyncio.create_task(self._handle(kind, data, addr))
        self._handlers.add(task)
        task.add_done_callback(self._handlers.discard)

    async def _handle(self, kind: ChannelKind, data: bytes, addr: Address) -> None:
        try:
            msg = decode(data)
        except MessageDecodeError as e:
            logger.warning("Dropping %s datagram from %s: %s", kind, addr[0], e)
            return
        if msg.type not in _ACCEPTED[kind]:
            logger.warning("Unexpected %s message on %s channel from %s", msg.type, kind, addr[0])
            return
        try:
            await self._on_message(kind, msg, addr)
        except Exception:
            logger.exception("Failed to handle %s from %s", msg.type, addr[0])

    def _on_error(self, kind: ChannelKind, exc: Exception) -> None:
        if isinstance(exc, ConnectionRefusedError):
            # ICMP port unreachable from an offline asset
            logger.debug("Asset unreachable on %s channel: %s", kind, exc)
            return
        logger.error("Error occurred on %s UDP socket, restarting: %s", kind, exc)
        self._schedule_restart()

    def _schedule_restart(self) -> None:
        if not self._running:
            return
        if self._restart_task is not None and not self._restart_task.done():
            return
        self._restart_task = asyncio.create_task(self._restart())

    async def _restart(self) -> None:
        while self._running:
            delay = min(self.backoff_max, self.backoff_initial * 2**self._failures)
            self._failures += 1
            self._close_transports()
            logger.info("Restarting asset listeners in %.1fs", delay)
            await asyncio.sleep(delay)
            if not self._running:
                return
            try:
                await self._bind()
                return
            except OSError:
                logger.exception("Listener restart failed")
                self._close_transports()
