"""apfleet application entrypoint."""

import base64
import binascii
import logging
import secrets
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from starlette.responses import Response

import apfleet.database as db_module
from apfleet.config import load_config, settings
from apfleet.controller import AssetsController
from apfleet.store.hashes import HashStore
from apfleet.tunnel import load_tunnel_config

logging.basicConfig(level=settings.log_level.upper())
logger = logging.getLogger(__name__)


async def _start_controller(app: FastAPI) -> None:
    """Build the controller, restore state and bring the listeners up."""
    cfg = load_config()
    controller = AssetsController(HashStore(db_module.engine), cfg)
    controller.load()
    app.state.controller = controller

    if cfg.tunnel_config_path is None:
        logger.warning("No tunnel config configured, asset listeners not started")
        return
    tunnel = load_tunnel_config(cfg.tunnel_config_path)
    if tunnel is None:
        logger.warning("Tunnel config unavailable, asset listeners not started")
        return
    await controller.start_server(tunnel)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application startup/shutdown lifecycle."""
    db_module.init_db()
    logger.info("Database initialized")

    await _start_controller(app)

    yield

    await app.state.controller.stop_server()


app = FastAPI(
    title="apfleet",
    description="Control plane for a fleet of WiFi access points",
    version="0.1.0",
    lifespan=lifespan,
)

# Paths reachable without credentials
_PUBLIC_PATHS = frozenset({"/health"})


def _credentials(header: str) -> tuple[str, str] | None:
    """Decode an "Authorization: Basic ..." header."""
    scheme, _, encoded = header.partition(" ")
    if scheme.lower() != "basic" or not encoded:
        return None
    try:
        decoded = base64.b64decode(encoded, validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        return None
    username, sep, password = decoded.partition(":")
    if not sep:
        return None
    return username, password


def install_basic_auth(target: FastAPI, username: str, password: str) -> None:
    """Require HTTP Basic credentials on every route except /health."""

    @target.middleware("http")
    async def basic_auth(request: Request, call_next):  # type: ignore[no-untyped-def]
        if request.url.path in _PUBLIC_PATHS:
            return await call_next(request)
        creds = _credentials(request.headers.get("Authorization", ""))
        # Timing-safe comparison
        if creds is None or not (
            secrets.compare_digest(creds[0], username)
            & secrets.compare_digest(creds[1], password)
        ):
            return Response(
                content="Unauthorized",
                status_code=401,
                headers={"WWW-Authenticate": 'Basic realm="apfleet"'},
            )
        return await call_next(request)


if settings.auth_password:
    install_basic_auth(app, settings.auth_username, settings.auth_password)
    logger.info("HTTP Basic Auth enabled")


# Register routers
from apfleet.api.routes import router as api_router  # noqa: E402

app.include_router(api_router)


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


def main() -> None:
    import uvicorn

    logger.info("Starting apfleet on %s:%d", settings.host, settings.port)
    uvicorn.run(app, host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
