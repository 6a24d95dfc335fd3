"""Status records reported by assets."""

from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator


# JSON number: ints stay ints, fractional values (e.g. 866.7 Mbps) are kept
Number = int | float


def _now() -> datetime:
    return datetime.now(UTC)


class BssInfo(BaseModel):
    """One BSS an asset advertises (an SSID on a radio)."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    ssid: str = ""
    bssid: str = ""
    channel: Number = 0
    band: str = ""
    width: Number = 0
    intf: str = ""
    mode: str = ""
    mesh: bool = False


class Station(BaseModel):
    """A WiFi client associated with an asset."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    mac_addr: str = Field(default="", alias="macAddr")
    asset_uid: str = Field(default="", alias="assetUID")
    ssid: str = ""
    intf: str = ""
    bssid: str = ""
    band: str = ""
    channel: Number = 0
    rssi: Number = 0
    snr: Number = 0
    tx_rate: Number = Field(default=0, alias="txRate")
    rx_rate: Number = Field(default=0, alias="rxRate")
    assoc_time: Number = Field(default=0, alias="assocTime")
    observed_at: datetime = Field(default_factory=_now, alias="observedAt")

    @model_validator(mode="before")
    @classmethod
    def _legacy_names(cls, data: Any) -> Any:
        # Older agents report hostapd names
        if not isinstance(data, dict):
            return data
        data = dict(data)
        if data.get("mac") and not data.get("macAddr"):
            data["macAddr"] = data.pop("mac")
        if data.get("signal") and not data.get("rssi"):
            data["rssi"] = data.pop("signal")
        if data.get("connectedTime") and not data.get("assocTime"):
            data["assocTime"] = data.pop("connectedTime")
        return data


class AssetStatus(BaseModel):
    """Health and topology snapshot of an asset."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    mac: str = ""
    observed_at: datetime = Field(default_factory=_now, alias="observedAt")
    system_uptime: Number = Field(default=0, alias="u")
    process_uptime: Number = Field(default=0, alias="pu")
    version: str = ""
    channel_utilization: dict[str, Any] = Field(default_factory=dict, alias="util")
    wan_mode: str = Field(default="", alias="wanMode")
    upstream_aps: list[Any] = Field(default_factory=list, alias="upstreamAPs")
    aps: dict[str, list[BssInfo]] = Field(default_factory=dict)

    def bss_for(self, ssid: str) -> list[BssInfo]:
        return self.aps.get(ssid, [])
