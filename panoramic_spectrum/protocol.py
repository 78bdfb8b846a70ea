"""Frame types and transport helpers for the panoramic sweep stream.

Controller frames are internal and not wire format.
Wire format frames are dict objects built via helpers and validated against the
metadata JSON schema returned by protocol_json_schema(). Spectrum payloads are
sent as little-endian float32 arrays prefixed by a fixed 32-byte header.
"""

from __future__ import annotations

from dataclasses import dataclass
import enum
import struct
import uuid
from typing import Any, Mapping, Optional, Union

import numpy as np

PROTO_VERSION = "1.0"
FRAME_TYPES = {
    "status",
    "window",
    "spectrum_meta",
    "error",
}

BINARY_MAGIC = b"PSWP"
BINARY_HEADER_VERSION = 1
BINARY_KIND_SPECTRUM = 1
BINARY_HEADER_STRUCT = struct.Struct("<4sHH16sII")


class AcquisitionMode(str, enum.Enum):
    SWEEP = "sweep"
    FIXED_FREQUENCY = "fixed"


@dataclass(frozen=True)
class SpectrumFrame:
    """One acquired PSD window.

    samples holds power values in dB covering [freq_start_hz, freq_end_hz].
    capture_ts is stamped by the receiver clock, arrival_ts by the local clock.
    """

    freq_start_hz: int
    freq_end_hz: int
    samples: np.ndarray
    capture_ts: float
    arrival_ts: Optional[float] = None
    sample_rate_hz: float = 0.0
    measured_sample_rate_hz: float = 0.0

    @property
    def n_bins(self) -> int:
        return int(self.samples.size)


@dataclass(frozen=True)
class RateReport:
    """Periodic throughput report from the acquisition side."""

    sample_rate_hz: float
    measured_sample_rate_hz: float


@dataclass(frozen=True)
class WindowChange:
    """Acquisition window change.

    width_changed is set when the window width differs from the previously
    emitted one; the receiver then needs a bandwidth reconfiguration rather
    than a recentre. zoom_reset tells the display to drop its horizontal zoom.
    """

    min_hz: int
    max_hz: int
    mode: AcquisitionMode
    width_changed: bool = True
    zoom_reset: bool = False
    filter_bw_hz: int = 0
    origin: str = "controller"

    @property
    def width_hz(self) -> int:
        return self.max_hz - self.min_hz

    @property
    def center_hz(self) -> int:
        return (self.min_hz + self.max_hz) // 2


@dataclass(frozen=True)
class ControllerStatusFrame:
    """Controller runtime status."""

    ts_monotonic_ns: int
    running: bool
    device: Optional[str]
    antenna: Optional[str]
    range_min_hz: int
    range_max_hz: int
    window_min_hz: int
    window_max_hz: int
    mode: AcquisitionMode
    full_range: bool
    lnb_offset_hz: int
    sample_rate_hz: float
    measured_sample_rate_hz: float
    frames: int
    frames_dropped: int
    message: Optional[str] = None


@dataclass(frozen=True)
class ControllerErrorFrame:
    """User-facing error notifications."""

    ts_monotonic_ns: int
    error_code: str
    message: str
    details: Optional[Mapping[str, Any]] = None
    recoverable: bool = False


ControllerFrame = Union[
    SpectrumFrame,
    WindowChange,
    ControllerStatusFrame,
    ControllerErrorFrame,
]


def protocol_json_schema() -> dict[str, Any]:
    """Return the JSON schema for metadata frames sent over the stream."""

    base_fields = {
        "proto_version": {"const": PROTO_VERSION},
        "type": {"enum": sorted(FRAME_TYPES)},
        "ts_monotonic_ns": {"type": "integer", "minimum": 0},
        "seq": {"type": "integer", "minimum": 0},
        "session_id": {"type": "string", "format": "uuid"},
    }
    base_required = ["proto_version", "type", "ts_monotonic_ns", "seq", "session_id"]
    mode_enum = {"enum": [mode.value for mode in AcquisitionMode]}

    return {
        "$schema": "https://json-schema.org/draft/2020-12/schema",
        "title": "Panoramic Sweep Metadata Frames",
        "type": "object",
        "oneOf": [
            {
                "title": "Status Frame",
                "type": "object",
                "properties": {
                    **base_fields,
                    "type": {"const": "status"},
                    "running": {"type": "boolean"},
                    "device": {"type": ["string", "null"]},
                    "antenna": {"type": ["string", "null"]},
                    "range_min_hz": {"type": "integer"},
                    "range_max_hz": {"type": "integer"},
                    "window_min_hz": {"type": "integer"},
                    "window_max_hz": {"type": "integer"},
                    "mode": mode_enum,
                    "full_range": {"type": "boolean"},
                    "lnb_offset_hz": {"type": "integer"},
                    "sample_rate_hz": {"type": "number"},
                    "measured_sample_rate_hz": {"type": "number"},
                    "frames": {"type": "integer", "minimum": 0},
                    "frames_dropped": {"type": "integer", "minimum": 0},
                    "message": {"type": ["string", "null"]},
                },
                "required": base_required
                + [
                    "running",
                    "device",
                    "range_min_hz",
                    "range_max_hz",
                    "window_min_hz",
                    "window_max_hz",
                    "mode",
                    "full_range",
                    "frames",
                    "frames_dropped",
                ],
                "additionalProperties": False,
            },
            {
                "title": "Window Frame",
                "type": "object",
                "properties": {
                    **base_fields,
                    "type": {"const": "window"},
                    "min_hz": {"type": "integer"},
                    "max_hz": {"type": "integer"},
                    "mode": mode_enum,
                    "width_changed": {"type": "boolean"},
                    "zoom_reset": {"type": "boolean"},
                    "filter_bw_hz": {"type": "integer", "minimum": 0},
                    "origin": {"enum": ["controller", "acquisition"]},
                },
                "required": base_required + ["min_hz", "max_hz", "mode", "origin"],
                "additionalProperties": False,
            },
            {
                "title": "Spectrum Meta Frame",
                "type": "object",
                "properties": {
                    **base_fields,
                    "type": {"const": "spectrum_meta"},
                    "payload_id": {"type": "string", "format": "uuid"},
                    "freq_start_hz": {"type": "integer"},
                    "freq_end_hz": {"type": "integer"},
                    "n_bins": {"type": "integer", "minimum": 1},
                    "y_units": {"const": "dB"},
                    "dtype": {"const": "f32"},
                    "endianness": {"const": "LE"},
                },
                "required": base_required
                + [
                    "payload_id",
                    "freq_start_hz",
                    "freq_end_hz",
                    "n_bins",
                    "y_units",
                    "dtype",
                    "endianness",
                ],
                "additionalProperties": False,
            },
            {
                "title": "Error Frame",
                "type": "object",
                "properties": {
                    **base_fields,
                    "type": {"const": "error"},
                    "error_code": {"type": "string"},
                    "message": {"type": "string"},
                    "details": {"type": ["object", "null"]},
                    "recoverable": {"type": "boolean"},
                },
                "required": base_required + ["error_code", "message", "recoverable"],
                "additionalProperties": False,
            },
        ],
    }


def make_payload_header(kind: int, payload_id: uuid.UUID, element_count: int) -> bytes:
    """Create the 32-byte header for binary payloads."""

    return BINARY_HEADER_STRUCT.pack(
        BINARY_MAGIC,
        BINARY_HEADER_VERSION,
        int(kind),
        payload_id.bytes,
        int(element_count),
        0,
    )


def parse_payload_header(raw: bytes) -> dict[str, Any]:
    """Parse a 32-byte binary payload header into a dict."""

    if len(raw) != BINARY_HEADER_STRUCT.size:
        raise ValueError("Invalid payload header length")
    magic, version, kind, payload_bytes, count, reserved = BINARY_HEADER_STRUCT.unpack(raw)
    if magic != BINARY_MAGIC:
        raise ValueError("Invalid payload magic")
    if version != BINARY_HEADER_VERSION:
        raise ValueError("Invalid payload version")
    if kind != BINARY_KIND_SPECTRUM:
        raise ValueError("Invalid payload kind")
    if reserved != 0:
        raise ValueError("Invalid payload reserved field")
    return {
        "magic": magic,
        "version": int(version),
        "kind": int(kind),
        "payload_id": str(uuid.UUID(bytes=payload_bytes)),
        "element_count": int(count),
    }


def make_frame_base(
    *,
    frame_type: str,
    ts_monotonic_ns: int,
    seq: int,
    session_id: uuid.UUID,
) -> dict[str, Any]:
    """Build shared metadata fields for protocol frames."""

    if frame_type not in FRAME_TYPES:
        raise ValueError(f"Unsupported frame type: {frame_type}")
    return {
        "proto_version": PROTO_VERSION,
        "type": frame_type,
        "ts_monotonic_ns": int(ts_monotonic_ns),
        "seq": int(seq),
        "session_id": str(session_id),
    }


def status_to_wire(
    frame: ControllerStatusFrame,
    *,
    seq: int,
    session_id: uuid.UUID,
) -> dict[str, Any]:
    base = make_frame_base(
        frame_type="status",
        ts_monotonic_ns=frame.ts_monotonic_ns,
        seq=seq,
        session_id=session_id,
    )
    base.update(
        {
            "running": frame.running,
            "device": frame.device,
            "antenna": frame.antenna,
            "range_min_hz": int(frame.range_min_hz),
            "range_max_hz": int(frame.range_max_hz),
            "window_min_hz": int(frame.window_min_hz),
            "window_max_hz": int(frame.window_max_hz),
            "mode": frame.mode.value,
            "full_range": frame.full_range,
            "lnb_offset_hz": int(frame.lnb_offset_hz),
            "sample_rate_hz": float(frame.sample_rate_hz),
            "measured_sample_rate_hz": float(frame.measured_sample_rate_hz),
            "frames": int(frame.frames),
            "frames_dropped": int(frame.frames_dropped),
            "message": frame.message,
        }
    )
    return base


def window_to_wire(
    frame: WindowChange,
    *,
    ts_monotonic_ns: int,
    seq: int,
    session_id: uuid.UUID,
) -> dict[str, Any]:
    base = make_frame_base(
        frame_type="window",
        ts_monotonic_ns=ts_monotonic_ns,
        seq=seq,
        session_id=session_id,
    )
    base.update(
        {
            "min_hz": int(frame.min_hz),
            "max_hz": int(frame.max_hz),
            "mode": frame.mode.value,
            "width_changed": frame.width_changed,
            "zoom_reset": frame.zoom_reset,
            "filter_bw_hz": int(frame.filter_bw_hz),
            "origin": frame.origin,
        }
    )
    return base


def spectrum_meta_to_wire(
    frame: SpectrumFrame,
    *,
    ts_monotonic_ns: int,
    seq: int,
    session_id: uuid.UUID,
    payload_id: uuid.UUID,
) -> dict[str, Any]:
    base = make_frame_base(
        frame_type="spectrum_meta",
        ts_monotonic_ns=ts_monotonic_ns,
        seq=seq,
        session_id=session_id,
    )
    base.update(
        {
            "payload_id": str(payload_id),
            "freq_start_hz": int(frame.freq_start_hz),
            "freq_end_hz": int(frame.freq_end_hz),
            "n_bins": frame.n_bins,
            "y_units": "dB",
            "dtype": "f32",
            "endianness": "LE",
        }
    )
    return base


def error_to_wire(
    frame: ControllerErrorFrame,
    *,
    seq: int,
    session_id: uuid.UUID,
) -> dict[str, Any]:
    base = make_frame_base(
        frame_type="error",
        ts_monotonic_ns=frame.ts_monotonic_ns,
        seq=seq,
        session_id=session_id,
    )
    base.update(
        {
            "error_code": frame.error_code,
            "message": frame.message,
            "details": dict(frame.details) if frame.details is not None else None,
            "recoverable": frame.recoverable,
        }
    )
    return base
