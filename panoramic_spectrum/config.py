"""Application configuration defaults and persisted panoramic settings.

Defines the SweepConfig runtime dataclass and the PanoramicConfig key/value
object that is saved between sessions. This module should not import the
controller, server or SDR classes; it only holds configuration data.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping


logger = logging.getLogger(__name__)

STRATEGIES = ("stochastic", "progressive")
PARTITIONINGS = ("continuous", "discrete")


@dataclass
class SweepConfig:
    """
    Runtime configuration for the sweep controller.

    Notes
    min_bw_for_zoom_hz is the narrowest window the receiver can show without
    sweeping. Below min_bw_for_zoom_hz * relative bandwidth the controller
    switches to fixed-frequency acquisition.
    """

    # Default Pluto URI for gadget mode.
    uri: str = "ip:192.168.2.1"

    # Preferred sample rate; may only change while the sweep is stopped.
    sample_rate_hz: int = 20_000_000

    # Zoom threshold and relative bandwidth slider (percent).
    min_bw_for_zoom_hz: int = 20_000_000
    relative_bandwidth_percent: int = 90

    # Stale frame filter.
    enable_lag_filter: bool = True
    max_allowed_lag_ms: int = 500

    # Filter preset cap. Not a hardware limit.
    filter_bw_cap_hz: int = 4_000_000_000

    # Acquisition pacing and FFT size per sweep step.
    rtt_ms: int = 60
    fft_size: int = 4096

    strategy: str = "stochastic"
    partitioning: str = "discrete"

    # Optional persisted state and band plan files.
    state_path: str = ""
    band_plan_path: str = ""

    # Spectrum exports requested over HTTP are written here only.
    export_dir: str = "exports"

    @property
    def relative_bandwidth(self) -> float:
        return max(1, min(100, int(self.relative_bandwidth_percent))) / 100.0


# Persisted key -> PanoramicConfig attribute and expected type.
_FIELDS = {
    "fullRange": ("full_range", bool),
    "rangeMin": ("range_min", float),
    "rangeMax": ("range_max", float),
    "panRangeMin": ("pan_range_min", float),
    "panRangeMax": ("pan_range_max", float),
    "lnbFreq": ("lnb_freq", float),
    "device": ("device", str),
    "antenna": ("antenna", str),
    "sampRate": ("samp_rate", int),
    "strategy": ("strategy", str),
    "partitioning": ("partitioning", str),
    "palette": ("palette", str),
}

GAIN_PREFIX = "gain."


def gain_key(driver: str, name: str) -> str:
    return f"{GAIN_PREFIX}{driver}.{name}"


def _coerce(value: Any, kind: type) -> Any:
    # bool is an int subclass; keep the checks explicit so "true" stays invalid.
    if kind is bool:
        if isinstance(value, bool):
            return value
        raise TypeError(f"expected bool, got {type(value).__name__}")
    if kind in (int, float):
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise TypeError(f"expected number, got {type(value).__name__}")
        return kind(value)
    if not isinstance(value, str):
        raise TypeError(f"expected string, got {type(value).__name__}")
    return value


@dataclass
class PanoramicConfig:
    """Settings saved between sessions, stored as a flat key/value object."""

    full_range: bool = False
    range_min: float = 88_000_000.0
    range_max: float = 108_000_000.0
    pan_range_min: float = -90.0
    pan_range_max: float = 0.0
    lnb_freq: float = 0.0
    device: str = ""
    antenna: str = ""
    samp_rate: int = 20_000_000
    strategy: str = "stochastic"
    partitioning: str = "discrete"
    palette: str = "Suscan"
    gains: Dict[str, float] = field(default_factory=dict)

    def deserialize(self, data: Mapping[str, Any]) -> "PanoramicConfig":
        # Missing keys keep the in-memory value; unknown keys are ignored.
        for key, (attr, kind) in _FIELDS.items():
            if key not in data:
                continue
            try:
                setattr(self, attr, _coerce(data[key], kind))
            except (TypeError, ValueError) as exc:
                logger.warning("Ignoring persisted %s: %s", key, exc)

        for key, value in data.items():
            if not key.startswith(GAIN_PREFIX):
                continue
            try:
                self.gains[key] = _coerce(value, float)
            except (TypeError, ValueError) as exc:
                logger.warning("Ignoring persisted %s: %s", key, exc)
        return self

    def serialize(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            key: getattr(self, attr) for key, (attr, _kind) in _FIELDS.items()
        }
        data.update(self.gains)
        return data

    def has_gain(self, driver: str, name: str) -> bool:
        return gain_key(driver, name) in self.gains

    def get_gain(self, driver: str, name: str) -> float:
        return self.gains.get(gain_key(driver, name), 0.0)

    def set_gain(self, driver: str, name: str, value: float) -> None:
        self.gains[gain_key(driver, name)] = float(value)
