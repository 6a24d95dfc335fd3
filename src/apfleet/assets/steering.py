"""BSS steering: ask the AP serving a client to move it elsewhere."""

import logging
from collections.abc import Awaitable, Callable
from typing import Any

from apfleet.assets.status import StatusAggregator, normalize_mac

logger = logging.getLogger(__name__)

SteerSender = Callable[[str, dict[str, Any]], Awaitable[bool]]


class BssSteering:
    """Resolves a steering intent into a concrete BSSID/channel.

    The target asset is only consulted for topology. The command itself goes
    to the asset currently serving the station, which issues the 802.11
    transition request to the client.
    """

    def __init__(self, status: StatusAggregator, send_steer: SteerSender) -> None:
        self.status = status
        self._send_steer = send_steer

    async def steer(
        self,
        sta_mac: str,
        target_uid: str,
        target_ssid: str | None = None,
        target_band: str | None = None,
    ) -> bool:
        """Return True if a steer command was sent."""
        sta_mac = normalize_mac(sta_mac)
        station = self.status.get_station(sta_mac)
        if station is None:
            logger.error("Station %s is not found or its status is stale", sta_mac)
            return False
        current_uid = station.asset_uid
        target_ssid = target_ssid or station.ssid
        target_band = target_band or station.band

        target = self.status.get_asset_status(target_uid)
        if target is None:
            logger.error("Status of target asset %s is not found", target_uid)
            return False
        candidates = target.bss_for(target_ssid)
        if not candidates:
            logger.error("SSID %s is not found on target asset %s", target_ssid, target_uid)
            return False
        bss = next((b for b in candidates if b.band == target_band), None)
        if bss is None:
            logger.error(
                "SSID %s on band %s is not found on target asset %s",
                target_ssid,
                target_band,
                target_uid,
            )
            return False

        logger.info(
            "Steering %s from asset %s to %s (bssid %s, channel %d)",
            sta_mac,
            current_uid,
            target_uid,
            bss.bssid,
            bss.channel,
        )
        return await self._send_steer(
            current_uid,
            {"staMac": sta_mac, "dstBSSID": bss.bssid, "dstChannel": bss.channel},
        )
