"""REST endpoints for the panoramic sweep server.

Handlers that touch the controller are coroutines so they run on the event
loop thread, the controller's only thread.
"""

from __future__ import annotations

from dataclasses import asdict
import os
from typing import Any

from fastapi import APIRouter, Body, HTTPException, Request

from panoramic_spectrum.config import PARTITIONINGS, STRATEGIES
from panoramic_spectrum.controller import SweepController
from panoramic_spectrum.protocol import ControllerErrorFrame
from panoramic_spectrum.ranges import unit_label
from panoramic_spectrum.sdr.pluto import probe_pluto


router = APIRouter()


def _controller(request: Request) -> SweepController:
    return request.app.state.controller


def _serialize_error(error: ControllerErrorFrame | None) -> dict[str, Any] | None:
    if error is None:
        return None
    return asdict(error)


def _serialize_status(controller: SweepController) -> dict[str, Any]:
    status = asdict(controller.status())
    status["mode"] = controller.mode.value
    status["units"] = unit_label(controller.model.range.max_hz)
    status["measures"] = controller.measures()
    return status


def _serialize_config(controller: SweepController) -> dict[str, Any]:
    return {
        "config": asdict(controller.cfg),
        "persisted": controller.snapshot_config().serialize(),
    }


def _require_object(payload: Any) -> dict[str, Any]:
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="Payload must be a JSON object")
    return payload


_INT_CONFIG_KEYS = (
    "sample_rate_hz",
    "relative_bandwidth_percent",
    "min_bw_for_zoom_hz",
    "lnb_offset_hz",
    "rtt_ms",
)


def _number(payload: dict[str, Any], key: str) -> float:
    value = payload.get(key)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise HTTPException(status_code=400, detail=f"'{key}' must be a number")
    return value


@router.get("/api/status")
async def get_status(request: Request) -> dict[str, Any]:
    controller = _controller(request)
    return {
        "status": _serialize_status(controller),
        "error": _serialize_error(controller.last_error),
    }


@router.get("/api/config")
async def get_config(request: Request) -> dict[str, Any]:
    return _serialize_config(_controller(request))


@router.post("/api/config")
async def update_config(request: Request, payload: Any = Body(...)) -> dict[str, Any]:
    payload = _require_object(payload)
    controller = _controller(request)

    # Validate everything first so a rejected request changes nothing.
    updates: dict[str, Any] = {}
    for key in _INT_CONFIG_KEYS:
        if key in payload:
            updates[key] = int(_number(payload, key))
    if "max_allowed_lag_ms" in payload and payload["max_allowed_lag_ms"] is not None:
        updates["max_allowed_lag_ms"] = int(_number(payload, "max_allowed_lag_ms"))
    if "enable_lag_filter" in payload:
        if not isinstance(payload["enable_lag_filter"], bool):
            raise HTTPException(status_code=400, detail="'enable_lag_filter' must be a boolean")
        updates["enable_lag_filter"] = payload["enable_lag_filter"]
    if "strategy" in payload:
        if payload["strategy"] not in STRATEGIES:
            raise HTTPException(status_code=400, detail="Unknown strategy")
        updates["strategy"] = payload["strategy"]
    if "partitioning" in payload:
        if payload["partitioning"] not in PARTITIONINGS:
            raise HTTPException(status_code=400, detail="Unknown partitioning")
        updates["partitioning"] = payload["partitioning"]
    if "banned_device" in payload:
        banned = payload["banned_device"]
        if banned is not None and not isinstance(banned, str):
            raise HTTPException(status_code=400, detail="'banned_device' must be a string or null")
        updates["banned_device"] = banned
    if "sample_rate_hz" in updates and controller.running:
        raise HTTPException(status_code=409, detail="Sample rate can only change while stopped")
    if "lnb_offset_hz" in updates and controller.running:
        raise HTTPException(status_code=409, detail="LNB offset can only change while stopped")

    applied: dict[str, Any] = {}
    if "sample_rate_hz" in updates:
        controller.set_sample_rate(updates["sample_rate_hz"])
        applied["sample_rate_hz"] = updates["sample_rate_hz"]
    if "relative_bandwidth_percent" in updates:
        controller.set_relative_bandwidth_percent(updates["relative_bandwidth_percent"])
        applied["relative_bandwidth_percent"] = controller.cfg.relative_bandwidth_percent
    if "min_bw_for_zoom_hz" in updates:
        controller.set_min_bw_for_zoom(updates["min_bw_for_zoom_hz"])
        applied["min_bw_for_zoom_hz"] = controller.cfg.min_bw_for_zoom_hz
    if "lnb_offset_hz" in updates:
        controller.set_lnb_offset(updates["lnb_offset_hz"])
        applied["lnb_offset_hz"] = controller.model.lnb_offset
    if "rtt_ms" in updates:
        controller.set_rtt_ms(updates["rtt_ms"])
        applied["rtt_ms"] = controller.cfg.rtt_ms
    if "strategy" in updates:
        controller.set_strategy(updates["strategy"])
        applied["strategy"] = controller.cfg.strategy
    if "partitioning" in updates:
        controller.set_partitioning(updates["partitioning"])
        applied["partitioning"] = controller.cfg.partitioning
    if "enable_lag_filter" in updates or "max_allowed_lag_ms" in updates:
        controller.set_lag_filter(
            enabled=updates.get("enable_lag_filter"),
            max_allowed_lag_ms=updates.get("max_allowed_lag_ms"),
        )
        applied["enable_lag_filter"] = controller.cfg.enable_lag_filter
        applied["max_allowed_lag_ms"] = controller.cfg.max_allowed_lag_ms
    if "banned_device" in updates:
        controller.set_banned_device(updates["banned_device"])
        applied["banned_device"] = controller.banned_device

    return {"applied": applied, **_serialize_config(controller)}


@router.get("/api/devices")
async def list_devices(request: Request) -> dict[str, Any]:
    controller = _controller(request)
    devices = []
    for name in controller.catalog.names():
        device = controller.catalog.get(name)
        devices.append(
            {
                "desc": device.desc,
                "driver": device.driver,
                "min_freq_hz": device.min_freq_hz,
                "max_freq_hz": device.max_freq_hz,
                "antennas": list(device.antennas),
                "gains": [asdict(gain) for gain in device.gains],
            }
        )
    selected = controller.device.desc if controller.device else None
    return {"devices": devices, "selected": selected, "gains": dict(controller.gains)}


@router.post("/api/device")
async def select_device(request: Request, payload: Any = Body(...)) -> dict[str, Any]:
    payload = _require_object(payload)
    controller = _controller(request)
    desc = payload.get("desc")
    if not desc or desc not in controller.catalog:
        raise HTTPException(status_code=404, detail="Unknown device")
    if controller.running:
        raise HTTPException(status_code=409, detail="Stop the scan before changing device")
    controller.on_device_changed(str(desc), payload.get("antenna"))
    return {"ok": True, "status": _serialize_status(controller)}


@router.post("/api/gain")
async def set_gain(request: Request, payload: Any = Body(...)) -> dict[str, Any]:
    payload = _require_object(payload)
    controller = _controller(request)
    ok = controller.on_gain_changed(str(payload.get("name", "")), _number(payload, "value"))
    if not ok:
        raise HTTPException(status_code=404, detail="Unknown gain")
    return {"ok": True, "gains": dict(controller.gains)}


@router.post("/api/range")
async def set_range(request: Request, payload: Any = Body(...)) -> dict[str, Any]:
    payload = _require_object(payload)
    controller = _controller(request)
    controller.on_window_request(_number(payload, "min_hz"), _number(payload, "max_hz"))
    return {"ok": True, "status": _serialize_status(controller)}


@router.post("/api/full-range")
async def set_full_range(request: Request, payload: Any = Body(...)) -> dict[str, Any]:
    payload = _require_object(payload)
    controller = _controller(request)
    controller.set_full_range(bool(payload.get("enabled", True)))
    return {"ok": True, "status": _serialize_status(controller)}


@router.post("/api/zoom")
async def zoom(request: Request, payload: Any = Body(...)) -> dict[str, Any]:
    payload = _require_object(payload)
    controller = _controller(request)
    controller.on_zoom(_number(payload, "center_hz"), _number(payload, "span_hz"))
    return {"ok": True, "status": _serialize_status(controller)}


@router.post("/api/center")
async def center(request: Request, payload: Any = Body(...)) -> dict[str, Any]:
    payload = _require_object(payload)
    controller = _controller(request)
    controller.on_center_changed(_number(payload, "freq_hz"))
    return {"ok": True, "status": _serialize_status(controller)}


@router.post("/api/filter")
async def set_filter(request: Request, payload: Any = Body(...)) -> dict[str, Any]:
    payload = _require_object(payload)
    controller = _controller(request)
    controller.on_filter_changed(int(_number(payload, "offset_hz")), int(_number(payload, "bw_hz")))
    return {"ok": True, "measures": controller.measures()}


@router.post("/api/scan/start")
async def start_scan(request: Request) -> dict[str, Any]:
    controller = _controller(request)
    ok = controller.start()
    return {
        "ok": ok,
        "status": _serialize_status(controller),
        "error": None if ok else _serialize_error(controller.last_error),
    }


@router.post("/api/scan/stop")
async def stop_scan(request: Request) -> dict[str, Any]:
    controller = _controller(request)
    controller.stop()
    return {"ok": True, "status": _serialize_status(controller)}


def _export_path(directory: str, name: Any) -> str:
    """Resolve a client-supplied file name inside the export directory."""

    if not isinstance(name, str) or not name:
        raise HTTPException(status_code=400, detail="Export file name is required")
    if name != os.path.basename(name) or name in (".", ".."):
        raise HTTPException(status_code=400, detail="Export name must be a plain file name")
    root = os.path.realpath(directory)
    path = os.path.realpath(os.path.join(root, name))
    # realpath also catches symlinks pointing out of the directory.
    if os.path.dirname(path) != root:
        raise HTTPException(status_code=400, detail="Export name resolves outside the export directory")
    return path


@router.post("/api/export")
async def export_spectrum(request: Request, payload: Any = Body(...)) -> dict[str, Any]:
    payload = _require_object(payload)
    controller = _controller(request)
    path = _export_path(controller.cfg.export_dir, payload.get("name"))
    os.makedirs(os.path.dirname(path), exist_ok=True)
    ok = controller.export(path)
    return {
        "ok": ok,
        "name": os.path.basename(path),
        "error": None if ok else _serialize_error(controller.last_error),
    }


@router.get("/api/bands")
async def list_bands(request: Request) -> dict[str, Any]:
    controller = _controller(request)
    window = controller.window
    current = controller.band_plan
    return {
        "plans": [table.name for table in controller.band_plans],
        "selected": current.name if current else None,
        "bands": [
            asdict(band) for band in current.bands_in(window.min_hz, window.max_hz)
        ]
        if current
        else [],
    }


@router.post("/api/bands/select")
async def select_band_plan(request: Request, payload: Any = Body(...)) -> dict[str, Any]:
    payload = _require_object(payload)
    controller = _controller(request)
    if not controller.set_band_plan(payload.get("name")):
        raise HTTPException(status_code=404, detail="Unknown band plan")
    return {"ok": True}


@router.post("/api/sdr/test")
def test_sdr(request: Request, payload: dict[str, Any] | None = Body(default=None)) -> dict[str, Any]:
    # Blocking probe; runs in the threadpool and leaves the controller alone.
    uri = None
    if payload:
        uri = payload.get("uri")
    uri = str(uri or _controller(request).cfg.uri)
    ok, err = probe_pluto(uri)
    return {"ok": ok, "uri": uri, "error": err}
