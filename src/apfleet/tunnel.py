"""Tunnel interface description and controller key derivation.

The peer table itself is maintained by the external peer provisioner;
this module only reads it and derives the controller's own public key.
"""

import asyncio
import json
import logging
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)

_WG_TIMEOUT_SECONDS = 10


class TunnelPeer(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    public_key: str = Field(alias="publicKey")
    allowed_ips: list[str] = Field(default_factory=list, alias="allowedIPs")

    @property
    def tunnel_ip(self) -> str | None:
        """First allowed address with the prefix length stripped."""
        if not self.allowed_ips:
            return None
        return self.allowed_ips[0].split("/")[0] or None


class PeerOverride(BaseModel):
    """Private key the controller generated on behalf of an asset."""

    model_config = ConfigDict(populate_by_name=True)

    public_key: str = Field(alias="publicKey")
    private_key: str = Field(alias="privateKey")


class TunnelConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    ipv4: str  # controller address on the tunnel, CIDR notation
    listen_port: int = Field(default=51820, alias="listenPort")
    private_key: str | None = Field(default=None, alias="privateKey")
    peers: list[TunnelPeer] = Field(default_factory=list)
    peer_overrides: list[PeerOverride] = Field(default_factory=list, alias="peerOverrides")

    @property
    def controller_ip(self) -> str:
        return self.ipv4.split("/")[0]


def load_tunnel_config(path: Path) -> TunnelConfig | None:
    """Read the tunnel description written by the peer provisioner."""
    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
        return TunnelConfig.model_validate(data)
    except FileNotFoundError:
        logger.warning("Tunnel config %s does not exist", path)
    except Exception:
        logger.exception("Failed to load tunnel config from %s", path)
    return None


async def derive_public_key(private_key: str | None, wg_binary: str = "wg") -> str | None:
    """Run `wg pubkey` on the private key. None on any failure."""
    if not private_key:
        logger.error("No tunnel private key configured, cannot derive public key")
        return None
    try:
        proc = await asyncio.create_subprocess_exec(
            wg_binary,
            "pubkey",
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError:
        logger.exception("Failed to run %s pubkey", wg_binary)
        return None
    try:
        stdout, stderr = await asyncio.wait_for(
            proc.communicate(private_key.strip().encode() + b"\n"),
            timeout=_WG_TIMEOUT_SECONDS,
        )
    except TimeoutError:
        logger.error("%s pubkey timed out after %ds", wg_binary, _WG_TIMEOUT_SECONDS)
        proc.kill()
        await proc.wait()
        return None

    if proc.returncode != 0:
        logger.error(
            "%s pubkey exited with %s: %s",
            wg_binary,
            proc.returncode,
            stderr.decode(errors="replace").strip(),
        )
        return None
    public_key = stdout.decode().strip()
    return public_key or None
