"""Shared test fixtures."""

from collections.abc import Generator
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

import apfleet.database as db_module
import apfleet.store.models  # noqa: F401
from apfleet.config import Settings
from apfleet.controller import AssetsController
from apfleet.main import app
from apfleet.store.hashes import HashStore
from apfleet.tunnel import TunnelConfig


@pytest.fixture
def engine():
    """In-memory SQLite engine with all tables created.

    StaticPool ensures every session uses the same connection,
    so the in-memory database is shared across the test.
    """
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(eng)
    return eng


@pytest.fixture
def session(engine) -> Generator[Session, None, None]:
    with Session(engine) as s:
        yield s


@pytest.fixture
def hashes(engine) -> HashStore:
    return HashStore(engine)


@pytest.fixture
def fast_settings() -> Settings:
    return Settings(
        push_debounce=0.05,
        heartbeat_interval=3600,
        station_ttl=30,
        tunnel_config_path=None,
        tunnel_endpoint="vpn.example.net:51820",
    )


@pytest.fixture
def tunnel() -> TunnelConfig:
    return TunnelConfig.model_validate(
        {
            "ipv4": "10.89.0.1/24",
            "listenPort": 51820,
            "privateKey": "controller-private",
            "peers": [
                {"publicKey": "key-ap-1", "allowedIPs": ["10.89.0.11/32"]},
                {"publicKey": "key-ap-2", "allowedIPs": ["10.89.0.12/32"]},
            ],
            "peerOverrides": [{"publicKey": "key-ap-2", "privateKey": "ap-2-private"}],
        }
    )


@pytest.fixture
def controller(hashes, fast_settings, tunnel) -> AssetsController:
    """Controller with peers loaded and a fake datagram channel."""
    ctl = AssetsController(hashes, fast_settings)
    ctl.tunnel = tunnel
    ctl.self_public_key = "controller-public"
    ctl.registry.load_peers(tunnel)
    channel = MagicMock()
    channel.send = MagicMock(return_value=True)
    channel.send_raw = MagicMock(return_value=True)
    channel.start = AsyncMock()
    channel.stop = AsyncMock()
    ctl.channel = channel
    ctl.auth._send_raw = channel.send_raw
    return ctl


@pytest.fixture
def client(engine) -> Generator[TestClient, None, None]:
    """FastAPI TestClient backed by the in-memory engine."""
    # Patch the module-level engine so lifespan's init_db() and the
    # controller's hash store both use the test engine.
    original_engine = db_module.engine
    db_module.engine = engine
    with TestClient(app) as c:
        yield c
    db_module.engine = original_engine
