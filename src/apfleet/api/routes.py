"""Management API for asset status and steering."""

from typing import Any

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from apfleet.config import load_config
from apfleet.controller import AssetsController
from apfleet.tunnel import load_tunnel_config

router = APIRouter(prefix="/api")


def get_controller(request: Request) -> AssetsController:
    return request.app.state.controller


# Request models
class BssSteerRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    sta_mac: str = Field(alias="staMAC")
    target_ap: str = Field(alias="targetAP")
    target_ssid: str | None = Field(default=None, alias="targetSSID")
    target_band: str | None = Field(default=None, alias="targetBand")


def _failure(message: str) -> JSONResponse:
    return JSONResponse(status_code=500, content={"errors": [message]})


@router.get("/ap/status", response_model=None)
def ap_status(
    controller: AssetsController = Depends(get_controller),
) -> dict[str, Any] | JSONResponse:
    try:
        info = controller.get_all_asset_status()
    except Exception as e:
        return _failure(str(e))
    return {"errors": [], "info": info}


@router.get("/ap/sta_status", response_model=None)
def sta_status(
    controller: AssetsController = Depends(get_controller),
) -> dict[str, Any] | JSONResponse:
    try:
        info = controller.get_all_station_status()
    except Exception as e:
        return _failure(str(e))
    return {"errors": [], "info": info}


@router.get("/ap/config")
def ap_config(
    controller: AssetsController = Depends(get_controller),
) -> dict[str, Any]:
    return {"errors": [], "info": controller.configs.get_all()}


@router.post("/ap/bss_steer", response_model=None)
async def bss_steer(
    request: BssSteerRequest,
    controller: AssetsController = Depends(get_controller),
) -> dict[str, Any] | JSONResponse:
    try:
        sent = await controller.bss_steer(
            request.sta_mac, request.target_ap, request.target_ssid, request.target_band
        )
    except Exception as e:
        return _failure(str(e))
    return {"errors": [], "sent": sent}


@router.post("/ap/reload_tunnel", response_model=None)
async def reload_tunnel(
    controller: AssetsController = Depends(get_controller),
) -> dict[str, Any] | JSONResponse:
    """Re-read the peer table after the provisioner changed it."""
    path = load_config().tunnel_config_path
    if path is None:
        return _failure("No tunnel config configured")
    tunnel = load_tunnel_config(path)
    if tunnel is None:
        return _failure(f"Failed to load tunnel config from {path}")
    await controller.update_tunnel(tunnel)
    return {"errors": []}
