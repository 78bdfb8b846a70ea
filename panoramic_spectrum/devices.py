"""Device descriptors as seen by the controller.

Only the frequency span, antennas and gain descriptors are read; opening and
streaming from the hardware is the acquisition side's job.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple

from panoramic_spectrum.ranges import DeviceBounds


@dataclass(frozen=True)
class GainDescriptor:
    name: str
    min_db: float
    max_db: float
    step_db: float = 1.0
    default_db: float = 0.0

    def clamp(self, value: float) -> float:
        return min(self.max_db, max(self.min_db, float(value)))


@dataclass(frozen=True)
class Device:
    desc: str
    driver: str
    min_freq_hz: int
    max_freq_hz: int
    antennas: Tuple[str, ...] = ()
    gains: Tuple[GainDescriptor, ...] = ()
    available: bool = True

    def bounds(self, lnb_offset_hz: int = 0) -> DeviceBounds:
        return DeviceBounds(int(self.min_freq_hz), int(self.max_freq_hz), int(lnb_offset_hz))

    def gain(self, name: str) -> Optional[GainDescriptor]:
        for gain in self.gains:
            if gain.name == name:
                return gain
        return None


PLUTO_DEVICE = Device(
    desc="ADALM-Pluto",
    driver="pluto",
    min_freq_hz=325_000_000,
    max_freq_hz=3_800_000_000,
    antennas=("A_BALANCED",),
    gains=(GainDescriptor("hardwaregain", 0.0, 70.0, 1.0, 55.0),),
)

NULL_DEVICE = Device(
    desc="Null source",
    driver="null",
    min_freq_hz=0,
    max_freq_hz=6_000_000_000,
)

# Experimental per-driver round trip times, in milliseconds.
_PREFERRED_RTT_MS = {
    "rtlsdr": 60,
    "airspy": 16,
    "hackrf": 10,
    "uhd": 8,
}


def preferred_rtt_ms(device: Device) -> int:
    """Suggested acquisition round trip for a driver; 0 when unknown."""

    return _PREFERRED_RTT_MS.get(device.driver, 0)


class DeviceCatalog:
    """Devices the operator can pick from, keyed by description."""

    def __init__(self, devices: Iterable[Device] = ()):
        self._devices: Dict[str, Device] = {}
        for device in devices:
            if device.max_freq_hz > 0 and device.available:
                self._devices[device.desc] = device

    def __len__(self) -> int:
        return len(self._devices)

    def __contains__(self, desc: object) -> bool:
        return desc in self._devices

    def get(self, desc: str) -> Optional[Device]:
        return self._devices.get(desc)

    def names(self) -> List[str]:
        return list(self._devices)

    def first(self) -> Optional[Device]:
        return next(iter(self._devices.values()), None)
