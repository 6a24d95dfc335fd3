"""Station and asset status ingestion with time-bounded reads."""

import logging
from datetime import UTC, datetime, timedelta
from typing import Any

from pydantic import BaseModel, ValidationError

from apfleet.assets.models import AssetStatus, BssInfo, Station
from apfleet.identity.registry import IdentityRegistry
from apfleet.store.hashes import ASSET_STATUS, STATION_STATUS, HashStore

logger = logging.getLogger(__name__)

# Stations are reported under "devices"; "stations" is accepted as well
STATION_FIELDS = ("devices", "stations")


def normalize_mac(mac: str) -> str:
    """Normalize a MAC address to uppercase colon-separated format."""
    cleaned = mac.strip().upper().replace("-", ":").replace(".", "")
    if ":" not in cleaned and len(cleaned) == 12:
        cleaned = ":".join(cleaned[i : i + 2] for i in range(0, 12, 2))
    return cleaned


def _stations_of(report: dict[str, Any]) -> list[Any] | None:
    for field in STATION_FIELDS:
        stations = report.get(field)
        if isinstance(stations, list):
            return stations
    return None


def _parse_aps(raw: Any) -> dict[str, list[BssInfo]]:
    """Group BSS entries by SSID.

    Assets send a flat list of BSS entries, each carrying its own ssid.
    The grouped forms {ssid: [bss, ...]} and {ssid: bss} are accepted too.
    """
    if isinstance(raw, list):
        grouped: dict[str, list[Any]] = {}
        for entry in raw:
            if isinstance(entry, dict) and isinstance(entry.get("ssid"), str) and entry["ssid"]:
                grouped.setdefault(entry["ssid"], []).append(entry)
        raw = grouped
    if not isinstance(raw, dict):
        return {}
    aps: dict[str, list[BssInfo]] = {}
    for ssid, entries in raw.items():
        if isinstance(entries, dict):
            entries = [entries]
        if not isinstance(entries, list):
            continue
        parsed = []
        for entry in entries:
            if not isinstance(entry, dict):
                continue
            try:
                parsed.append(BssInfo.model_validate({"ssid": ssid, **entry}))
            except ValidationError:
                logger.debug("Skipping malformed BSS entry for %s", ssid, exc_info=True)
        aps[ssid] = parsed
    return aps


class StatusAggregator:
    """Keeps the latest station and asset reports.

    Station records are trusted for ``station_ttl`` seconds. Asset records
    stay valid for as long as the asset is in the identity registry.
    """

    def __init__(
        self,
        hashes: HashStore,
        registry: IdentityRegistry,
        station_ttl: float = 30,
    ) -> None:
        self.hashes = hashes
        self.registry = registry
        self.station_ttl = station_ttl

    def record_station_status(self, report: dict[str, Any], owner_uid: str) -> int:
        """Store every station in report; return how many were stored."""
        stations = _stations_of(report)
        if not isinstance(stations, list):
            return 0
        aps = _parse_aps(report.get("aps"))
        now = datetime.now(UTC)
        stored = 0
        for raw in stations:
            if not isinstance(raw, dict):
                continue
            try:
                station = Station.model_validate(raw)
            except ValidationError:
                logger.warning("Dropping malformed station entry from %s", owner_uid)
                continue
            if not station.mac_addr:
                continue
            station.mac_addr = normalize_mac(station.mac_addr)
            station.asset_uid = owner_uid
            station.observed_at = now
            for bss in aps.get(station.ssid, []):
                if bss.intf and bss.intf == station.intf:
                    station.bssid = bss.bssid
                    station.band = bss.band
                    break
            self.hashes.hset(
                STATION_STATUS,
                station.mac_addr,
                station.model_dump(mode="json", by_alias=True),
            )
            stored += 1
        return stored

    def record_asset_status(self, report: dict[str, Any], uid: str) -> AssetStatus | None:
        data = dict(report)
        for field in STATION_FIELDS:
            data.pop(field, None)
        data["aps"] = _parse_aps(data.get("aps"))
        try:
            status = AssetStatus.model_validate(data)
        except ValidationError:
            logger.warning("Dropping malformed status report from %s", uid, exc_info=True)
            return None
        status.observed_at = datetime.now(UTC)
        if not status.mac:
            status.mac = uid
        self.hashes.hset(ASSET_STATUS, uid, status.model_dump(mode="json", by_alias=True))
        return status

    def _is_fresh(self, station: Station, now: datetime) -> bool:
        return now - station.observed_at <= timedelta(seconds=self.station_ttl)

    def get_station(self, mac: str) -> Station | None:
        mac = normalize_mac(mac)
        raw = self.hashes.hget(STATION_STATUS, mac)
        if raw is None:
            return None
        station = _load(Station, raw)
        if station is None or not self._is_fresh(station, datetime.now(UTC)):
            self.hashes.hdel(STATION_STATUS, mac)
            return None
        return station

    def get_all_stations(self) -> dict[str, Station]:
        now = datetime.now(UTC)
        fresh: dict[str, Station] = {}
        stale: list[str] = []
        for mac, raw in self.hashes.hgetall(STATION_STATUS).items():
            station = _load(Station, raw)
            if station is None or not self._is_fresh(station, now):
                stale.append(mac)
            else:
                fresh[mac] = station
        if stale:
            self.hashes.hdel(STATION_STATUS, *stale)
            logger.debug("Purged %d stale station record(s)", len(stale))
        return fresh

    def get_asset_status(self, uid: str) -> AssetStatus | None:
        raw = self.hashes.hget(ASSET_STATUS, uid)
        if raw is None:
            return None
        status = _load(AssetStatus, raw)
        if status is None or not self.registry.contains(uid):
            self.hashes.hdel(ASSET_STATUS, uid)
            return None
        return status

    def get_all_asset_status(self) -> dict[str, AssetStatus]:
        result: dict[str, AssetStatus] = {}
        orphans: list[str] = []
        for uid, raw in self.hashes.hgetall(ASSET_STATUS).items():
            status = _load(AssetStatus, raw)
            if status is None or not self.registry.contains(uid):
                orphans.append(uid)
            else:
                result[uid] = status
        if orphans:
            self.hashes.hdel(ASSET_STATUS, *orphans)
            logger.debug("Purged status of %d unknown asset(s)", len(orphans))
        return result


def _load(model: type[BaseModel], raw: Any) -> Any:
    try:
        return model.model_validate(raw)
    except ValidationError:
        return None
