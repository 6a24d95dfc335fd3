"""Tests for the management API."""

from unittest.mock import AsyncMock, patch

from fastapi import FastAPI
from fastapi.testclient import TestClient

from apfleet.main import install_basic_auth


def _controller(client: TestClient):
    return client.app.state.controller


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_listeners_not_started_without_tunnel(client):
    assert not _controller(client).running


class TestStatusEndpoints:
    def test_empty(self, client):
        assert client.get("/api/ap/status").json() == {"errors": [], "info": {}}
        assert client.get("/api/ap/sta_status").json() == {"errors": [], "info": {}}

    def test_asset_status(self, client):
        controller = _controller(client)
        controller.registry.register_asset("ap-1", "key-ap-1")
        controller.status.record_asset_status({"u": 42, "version": "1.0"}, "ap-1")
        controller.status.record_asset_status({"u": 7}, "ap-gone")

        info = client.get("/api/ap/status").json()["info"]
        assert list(info) == ["ap-1"]
        assert info["ap-1"]["u"] == 42

    def test_station_status(self, client):
        controller = _controller(client)
        controller.status.record_station_status(
            {"stations": [{"macAddr": "aa:bb:cc:dd:ee:ff", "ssid": "Home", "rssi": -40}]},
            "ap-1",
        )
        info = client.get("/api/ap/sta_status").json()["info"]
        assert info["AA:BB:CC:DD:EE:FF"]["assetUID"] == "ap-1"
        assert info["AA:BB:CC:DD:EE:FF"]["rssi"] == -40

    def test_failure_reported(self, client):
        with patch.object(
            _controller(client), "get_all_asset_status", side_effect=RuntimeError("db down")
        ):
            response = client.get("/api/ap/status")
        assert response.status_code == 500
        assert response.json() == {"errors": ["db down"]}


class TestConfigEndpoint:
    def test_lists_registered_configs(self, client):
        controller = _controller(client)
        controller.registry.register_asset("ap-1", "key-ap-1")
        controller.hashes.hset("assets:effective_config", "ap-1", {"publicKey": "key-ap-1"})
        info = client.get("/api/ap/config").json()["info"]
        assert info == {"ap-1": {"publicKey": "key-ap-1"}}


class TestBssSteer:
    def test_passes_intent(self, client):
        steer = AsyncMock(return_value=True)
        with patch.object(_controller(client), "bss_steer", steer):
            response = client.post(
                "/api/ap/bss_steer",
                json={"staMAC": "AA:BB:CC:DD:EE:FF", "targetAP": "ap-2", "targetSSID": "Guest"},
            )
        assert response.status_code == 200
        assert response.json() == {"errors": [], "sent": True}
        steer.assert_awaited_once_with("AA:BB:CC:DD:EE:FF", "ap-2", "Guest", None)

    def test_unknown_station(self, client):
        response = client.post(
            "/api/ap/bss_steer", json={"staMAC": "AA:BB:CC:DD:EE:FF", "targetAP": "ap-2"}
        )
        assert response.json() == {"errors": [], "sent": False}

    def test_missing_fields(self, client):
        response = client.post("/api/ap/bss_steer", json={"staMAC": "AA:BB:CC:DD:EE:FF"})
        assert response.status_code == 422


class TestReloadTunnel:
    def test_without_tunnel_path(self, client):
        response = client.post("/api/ap/reload_tunnel")
        assert response.status_code == 500
        assert response.json() == {"errors": ["No tunnel config configured"]}

    def test_reloads_peer_table(self, client, tmp_path, monkeypatch):
        path = tmp_path / "tunnel.json"
        path.write_text(
            '{"ipv4": "10.89.0.1/24",'
            ' "peers": [{"publicKey": "key-ap-1", "allowedIPs": ["10.89.0.11/32"]}]}'
        )
        monkeypatch.setenv("APFLEET_TUNNEL_CONFIG_PATH", str(path))
        response = client.post("/api/ap/reload_tunnel")
        assert response.json() == {"errors": []}
        assert _controller(client).registry.public_key_by_ip("10.89.0.11") == "key-ap-1"


class TestBasicAuth:
    def _app(self) -> FastAPI:
        app = FastAPI()
        install_basic_auth(app, "admin", "s3cret")

        @app.get("/health")
        def health():
            return {"status": "ok"}

        @app.get("/api/ping")
        def ping():
            return {"pong": True}

        return app

    def test_health_is_public(self):
        assert TestClient(self._app()).get("/health").status_code == 200

    def test_missing_credentials(self):
        response = TestClient(self._app()).get("/api/ping")
        assert response.status_code == 401
        assert response.headers["WWW-Authenticate"] == 'Basic realm="apfleet"'

    def test_wrong_password(self):
        response = TestClient(self._app()).get("/api/ping", auth=("admin", "nope"))
        assert response.status_code == 401

    def test_valid_credentials(self):
        response = TestClient(self._app()).get("/api/ping", auth=("admin", "s3cret"))
        assert response.status_code == 200
        assert response.json() == {"pong": True}

    def test_malformed_header(self):
        response = TestClient(self._app()).get(
            "/api/ping", headers={"Authorization": "Basic !!!notbase64"}
        )
        assert response.status_code == 401
