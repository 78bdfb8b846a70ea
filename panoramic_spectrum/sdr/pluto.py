"""Pluto SDR wrapper and radio factory.

Encapsulates pyadi-iio Pluto interactions and tuning limits. This module must
not import controller or server classes to keep SDR operations headless.
"""

from __future__ import annotations

from typing import Optional

import numpy as np

from panoramic_spectrum.devices import Device


PLUTO_MIN_LO_HZ = 325_000_000
PLUTO_MAX_LO_HZ = 3_800_000_000
PLUTO_MAX_SAMPLE_RATE_HZ = 61_440_000
PLUTO_MIN_SAMPLE_RATE_HZ = 521_000


class PlutoRadio:
    """
    Small wrapper around pyadi iio Pluto.

    Frequencies here are hardware frequencies, without any LNB offset.
    """

    def __init__(self, uri: str, fft_size: int):
        import adi  # loads libiio; only needed once a Pluto is opened

        self.dev = adi.Pluto(uri=uri)
        self.fft_size = int(fft_size)

        self.dev.rx_enabled_channels = [0]
        self.dev.rx_buffer_size = self.fft_size
        self.dev.gain_control_mode_chan0 = "manual"
        self.dev.rx_destroy_buffer()

    def close(self) -> None:
        # Explicitly release the device handle when reinitializing.
        self.dev = None

    def set_center_hz(self, hz: int) -> int:
        hz = min(PLUTO_MAX_LO_HZ, max(PLUTO_MIN_LO_HZ, int(hz)))
        self.dev.rx_lo = hz
        return hz

    def set_sample_rate(self, hz: int) -> int:
        hz = min(PLUTO_MAX_SAMPLE_RATE_HZ, max(PLUTO_MIN_SAMPLE_RATE_HZ, int(hz)))
        # Keep RF BW equal to the sampled span.
        self.dev.sample_rate = hz
        self.dev.rx_rf_bandwidth = hz
        self.dev.rx_destroy_buffer()
        return hz

    def set_fft_size(self, n: int) -> None:
        self.fft_size = int(n)
        self.dev.rx_buffer_size = self.fft_size
        self.dev.rx_destroy_buffer()

    def set_gain(self, name: str, gain_db: float) -> None:
        # Pluto exposes a single RX gain stage (0..70 dB).
        if name != "hardwaregain":
            return
        self.dev.rx_hardwaregain_chan0 = int(min(70, max(0, round(gain_db))))

    def set_antenna(self, antenna: Optional[str]) -> None:
        return None

    def read_rx(self) -> np.ndarray:
        x = self.dev.rx()
        if isinstance(x, (list, tuple)):
            x = x[0]
        return x.astype("complex64")

    @property
    def sample_rate(self) -> float:
        return float(self.dev.sample_rate)

    @property
    def lo(self) -> float:
        return float(self.dev.rx_lo)


class NullRadio:
    """Radio that returns receiver noise only; used without hardware."""

    def __init__(self, fft_size: int, noise_level: float = 1e-4, seed: Optional[int] = None):
        self.fft_size = int(fft_size)
        self.noise_level = float(noise_level)
        self._rng = np.random.default_rng(seed)
        self._sample_rate = 1_000_000
        self._lo = 0

    def close(self) -> None:
        return None

    def set_center_hz(self, hz: int) -> int:
        self._lo = max(0, int(hz))
        return self._lo

    def set_sample_rate(self, hz: int) -> int:
        self._sample_rate = max(1, int(hz))
        return self._sample_rate

    def set_fft_size(self, n: int) -> None:
        self.fft_size = int(n)

    def set_gain(self, name: str, gain_db: float) -> None:
        return None

    def set_antenna(self, antenna: Optional[str]) -> None:
        return None

    def read_rx(self) -> np.ndarray:
        n = max(1, self.fft_size)
        noise = self._rng.standard_normal(n) + 1j * self._rng.standard_normal(n)
        return (noise * self.noise_level).astype(np.complex64)

    @property
    def sample_rate(self) -> float:
        return float(self._sample_rate)

    @property
    def lo(self) -> float:
        return float(self._lo)


def open_radio(device: Device, uri: str, fft_size: int):
    """Open the radio backing a device descriptor."""

    if device.driver == "pluto":
        return PlutoRadio(uri, fft_size)
    return NullRadio(fft_size)


def probe_pluto(uri: str) -> tuple[bool, Optional[str]]:
    """Attempt to create a Pluto connection for a URI."""

    try:
        import adi

        dev = adi.Pluto(uri=uri)
        _ = dev.sample_rate
    except Exception as exc:  # pragma: no cover - hardware errors vary
        return False, str(exc)
    return True, None
