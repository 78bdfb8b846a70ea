from __future__ import annotations

from typing import Optional

import numpy as np
import pytest

from panoramic_spectrum.config import PanoramicConfig, SweepConfig
from panoramic_spectrum.controller import SweepController
from panoramic_spectrum.devices import Device, DeviceCatalog, GainDescriptor
from panoramic_spectrum.protocol import SpectrumFrame


RTL_DEVICE = Device(
    desc="RTL2838 #1",
    driver="rtlsdr",
    min_freq_hz=24_000_000,
    max_freq_hz=1_766_000_000,
    antennas=("RX",),
    gains=(GainDescriptor("LNA", 0.0, 49.6, 0.1, 30.0),),
)

HACKRF_DEVICE = Device(
    desc="HackRF One",
    driver="hackrf",
    min_freq_hz=1_000_000,
    max_freq_hz=6_000_000_000,
    antennas=("TX/RX", "RX"),
    gains=(
        GainDescriptor("LNA", 0.0, 40.0, 8.0, 16.0),
        GainDescriptor("VGA", 0.0, 62.0, 2.0, 20.0),
    ),
)


class FakeAcquisition:
    """Records what the controller asks of the acquisition side."""

    def __init__(self, fail_start: bool = False) -> None:
        self.fail_start = fail_start
        self.started = 0
        self.stopped = 0
        self.windows: list[tuple[int, int, object]] = []
        self.gains: dict[str, float] = {}
        self.params: dict[str, object] = {}
        self.device: Optional[Device] = None
        self.antenna: Optional[str] = None
        self.frame_cb = None
        self.rate_cb = None
        self.error_cb = None

    def bind(self, frame_cb, rate_cb=None, error_cb=None) -> None:
        self.frame_cb = frame_cb
        self.rate_cb = rate_cb
        self.error_cb = error_cb

    def select_device(self, device, antenna=None) -> None:
        self.device = device
        self.antenna = antenna

    def configure_window(self, min_hz, max_hz, mode) -> None:
        self.windows.append((min_hz, max_hz, mode))

    def set_gain(self, name, value) -> None:
        self.gains[name] = value

    def set_sweep_params(self, **params) -> None:
        self.params.update(params)

    def start(self) -> None:
        if self.fail_start:
            raise RuntimeError("device vanished")
        self.started += 1

    def stop(self) -> None:
        self.stopped += 1


def make_frame(
    start: int = 88_000_000,
    end: int = 108_000_000,
    n: int = 16,
    capture_ts: float = 0.0,
    arrival_ts: Optional[float] = 0.05,
    sample_rate: float = 2_000_000.0,
) -> SpectrumFrame:
    return SpectrumFrame(
        freq_start_hz=start,
        freq_end_hz=end,
        samples=np.linspace(-100.0, -60.0, n, dtype=np.float32),
        capture_ts=capture_ts,
        arrival_ts=arrival_ts,
        sample_rate_hz=sample_rate,
        measured_sample_rate_hz=sample_rate * 0.9,
    )


@pytest.fixture
def acquisition() -> FakeAcquisition:
    return FakeAcquisition()


@pytest.fixture
def controller(acquisition: FakeAcquisition) -> SweepController:
    cfg = SweepConfig(min_bw_for_zoom_hz=2_000_000, relative_bandwidth_percent=100)
    persisted = PanoramicConfig(range_min=88_000_000, range_max=108_000_000)
    return SweepController(
        cfg,
        acquisition,
        catalog=DeviceCatalog([RTL_DEVICE, HACKRF_DEVICE]),
        persisted=persisted,
    )
