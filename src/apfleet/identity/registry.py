"""Who is this asset: uid, public key and tunnel IP bindings."""

import logging

from apfleet.tunnel import TunnelConfig

logger = logging.getLogger(__name__)


class IdentityRegistry:
    """Bidirectional uid <-> public key <-> tunnel IP maps.

    uid <-> public key bindings come from authentication (and from the
    persisted effective configs on startup). public key <-> IP bindings and
    private key overrides are read from the tunnel peer table.
    """

    def __init__(self) -> None:
        self._uid_key: dict[str, str] = {}
        self._key_uid: dict[str, str] = {}
        self._key_ip: dict[str, str] = {}
        self._ip_key: dict[str, str] = {}
        self._key_private: dict[str, str] = {}

    def load_peers(self, tunnel: TunnelConfig) -> None:
        """Rebuild the tunnel side of the registry from the peer table."""
        key_ip: dict[str, str] = {}
        ip_key: dict[str, str] = {}
        for peer in tunnel.peers:
            ip = peer.tunnel_ip
            if not ip:
                logger.warning("Tunnel peer %s has no allowed IP", peer.public_key)
                continue
            key_ip[peer.public_key] = ip
            ip_key[ip] = peer.public_key
        self._key_ip = key_ip
        self._ip_key = ip_key
        self._key_private = {o.public_key: o.private_key for o in tunnel.peer_overrides}
        logger.info("Loaded %d tunnel peer(s)", len(key_ip))

    def register_asset(self, uid: str, public_key: str) -> None:
        """Bind uid to public_key. Idempotent."""
        old_key = self._uid_key.get(uid)
        if old_key == public_key and self._key_uid.get(public_key) == uid:
            return
        if old_key is not None and self._key_uid.get(old_key) == uid:
            del self._key_uid[old_key]
        # The key is being reassigned away from another asset
        prev_uid = self._key_uid.get(public_key)
        if prev_uid is not None and prev_uid != uid:
            logger.info("Public key moved from asset %s to %s", prev_uid, uid)
            self._uid_key.pop(prev_uid, None)
        self._uid_key[uid] = public_key
        self._key_uid[public_key] = uid
        logger.debug("Registered asset %s", uid)

    def deregister(self, uid: str) -> None:
        public_key = self._uid_key.pop(uid, None)
        if public_key is not None and self._key_uid.get(public_key) == uid:
            del self._key_uid[public_key]

    def resolve_uid_by_address(self, ip: str) -> str | None:
        public_key = self._ip_key.get(ip)
        if public_key is None:
            return None
        return self._key_uid.get(public_key)

    def resolve_ip_by_uid(self, uid: str) -> str | None:
        public_key = self._uid_key.get(uid)
        if public_key is None:
            return None
        return self._key_ip.get(public_key)

    def public_key_of(self, uid: str) -> str | None:
        return self._uid_key.get(uid)

    def public_key_by_ip(self, ip: str) -> str | None:
        return self._ip_key.get(ip)

    def ip_of_key(self, public_key: str) -> str | None:
        return self._key_ip.get(public_key)

    def private_key_override(self, public_key: str) -> str | None:
        return self._key_private.get(public_key)

    def contains(self, uid: str) -> bool:
        return uid in self._uid_key

    def uids(self) -> list[str]:
        return list(self._uid_key)
