import os

import jsonschema
import pytest
from fastapi.testclient import TestClient

from panoramic_spectrum.protocol import protocol_json_schema
from panoramic_spectrum.server.app import create_app

from tests.conftest import make_frame


@pytest.fixture
def client(controller):
    with TestClient(create_app(controller)) as test_client:
        yield test_client


def test_status_reports_range_and_units(client) -> None:
    response = client.get("/api/status")
    assert response.status_code == 200
    status = response.json()["status"]
    assert status["range_min_hz"] == 88_000_000
    assert status["range_max_hz"] == 108_000_000
    assert status["running"] is False
    assert status["mode"] == "sweep"
    assert status["units"] == "MHz"


def test_devices_and_selection(client) -> None:
    devices = client.get("/api/devices").json()
    assert [d["desc"] for d in devices["devices"]] == ["RTL2838 #1", "HackRF One"]
    assert devices["selected"] is None

    response = client.post("/api/device", json={"desc": "HackRF One"})
    assert response.status_code == 200
    assert response.json()["status"]["device"] == "HackRF One"
    assert client.get("/api/devices").json()["gains"] == {"LNA": 16.0, "VGA": 20.0}

    assert client.post("/api/device", json={"desc": "Nope"}).status_code == 404


def test_range_and_zoom(client) -> None:
    client.post("/api/device", json={"desc": "RTL2838 #1"})
    status = client.post("/api/range", json={"min_hz": 100_000_000, "max_hz": 90_000_000}).json()["status"]
    assert (status["range_min_hz"], status["range_max_hz"]) == (90_000_000, 100_000_000)

    status = client.post("/api/zoom", json={"center_hz": 95_000_000, "span_hz": 4_000_000}).json()["status"]
    assert (status["window_min_hz"], status["window_max_hz"]) == (93_000_000, 97_000_000)

    status = client.post("/api/center", json={"freq_hz": 99_000_000}).json()["status"]
    assert (status["window_min_hz"], status["window_max_hz"]) == (96_000_000, 100_000_000)


def test_bad_payloads_are_rejected(client) -> None:
    assert client.post("/api/range", json={"min_hz": "low", "max_hz": 1}).status_code == 400
    assert client.post("/api/zoom", json=[1, 2]).status_code == 400
    assert client.post("/api/config", json={"strategy": "random"}).status_code == 400
    assert client.post("/api/export", json={}).status_code == 400


def test_banned_device_cannot_start(client) -> None:
    client.post("/api/device", json={"desc": "RTL2838 #1"})
    client.post("/api/config", json={"banned_device": "RTL2838 #1"})

    body = client.post("/api/scan/start").json()
    assert body["ok"] is False
    assert body["error"]["error_code"] == "device_busy"
    assert body["status"]["running"] is False


def test_sample_rate_locked_while_running(client, acquisition) -> None:
    client.post("/api/device", json={"desc": "RTL2838 #1"})
    assert client.post("/api/scan/start").json()["ok"] is True
    assert acquisition.started == 1

    response = client.post("/api/config", json={"sample_rate_hz": 2_400_000})
    assert response.status_code == 409

    assert client.post("/api/scan/stop").json()["status"]["running"] is False
    response = client.post("/api/config", json={"sample_rate_hz": 2_400_000})
    assert response.status_code == 200
    assert response.json()["applied"] == {"sample_rate_hz": 2_400_000}


def test_export_without_data_reports_error(client, controller, tmp_path) -> None:
    controller.cfg.export_dir = str(tmp_path)
    body = client.post("/api/export", json={"name": "psd.m"}).json()
    assert body["ok"] is False
    assert body["error"]["error_code"] == "export_failed"


def test_stream_starts_with_status_and_window(client) -> None:
    schema = protocol_json_schema()
    with client.websocket_connect("/ws/stream") as websocket:
        status = websocket.receive_json()
        window = websocket.receive_json()

    jsonschema.validate(status, schema)
    jsonschema.validate(window, schema)
    assert status["type"] == "status"
    assert window["type"] == "window"
    assert (window["min_hz"], window["max_hz"]) == (88_000_000, 108_000_000)


def test_rejected_config_changes_nothing(client, controller, acquisition) -> None:
    response = client.post(
        "/api/config",
        json={"sample_rate_hz": 1_000_000, "rtt_ms": 5, "strategy": "bogus"},
    )
    assert response.status_code == 400
    assert (controller.cfg.sample_rate_hz, controller.cfg.rtt_ms) == (20_000_000, 60)
    assert controller.cfg.strategy == "stochastic"
    assert "rtt_ms" not in acquisition.params
    assert "sample_rate_hz" not in acquisition.params


def test_config_refused_while_running_changes_nothing(client, controller) -> None:
    client.post("/api/device", json={"desc": "RTL2838 #1"})
    assert client.post("/api/scan/start").json()["ok"] is True

    response = client.post("/api/config", json={"rtt_ms": 5, "sample_rate_hz": 1_000_000})
    assert response.status_code == 409
    assert controller.cfg.rtt_ms == 60
    assert controller.persisted.samp_rate == 20_000_000


def test_export_stays_inside_export_directory(client, controller, tmp_path) -> None:
    exports = tmp_path / "exports"
    exports.mkdir()
    controller.cfg.export_dir = str(exports)
    important = tmp_path / "important.cfg"
    important.write_text("secret=1", encoding="utf-8")
    os.symlink(important, exports / "link.m")

    controller.on_device_changed("RTL2838 #1")
    assert controller.start()
    assert controller.on_frame(make_frame())

    for name in ("../important.cfg", str(important), "..", "link.m", ""):
        assert client.post("/api/export", json={"name": name}).status_code == 400
    assert important.read_text(encoding="utf-8") == "secret=1"

    body = client.post("/api/export", json={"name": "psd.m"}).json()
    assert body["ok"] is True
    assert (exports / "psd.m").read_text(encoding="utf-8").startswith("%\n")
