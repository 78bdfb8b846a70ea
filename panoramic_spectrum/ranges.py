"""Configured frequency range and device bounds.

All frequencies are integer Hz. Python integers do not overflow, so extreme
LNB offsets only shift the bounds.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional


logger = logging.getLogger(__name__)

_UNIT_LABELS = {1: "Hz", 1_000: "kHz", 1_000_000: "MHz", 1_000_000_000: "GHz"}


def frequency_units(freq: float) -> int:
    """Display scale for a frequency: 1, 1e3, 1e6 or 1e9."""

    freq = abs(freq)
    if freq < 1_000:
        return 1
    if freq < 1_000_000:
        return 1_000
    if freq < 1_000_000_000:
        return 1_000_000
    return 1_000_000_000


def unit_label(freq: float) -> str:
    return _UNIT_LABELS[frequency_units(freq)]


@dataclass(frozen=True)
class FrequencyRange:
    min_hz: int
    max_hz: int

    @classmethod
    def ordered(cls, a: float, b: float) -> "FrequencyRange":
        a, b = int(a), int(b)
        if a > b:
            a, b = b, a
        return cls(a, b)

    @property
    def width(self) -> int:
        return self.max_hz - self.min_hz

    @property
    def center(self) -> int:
        return (self.min_hz + self.max_hz) // 2

    def clamp(self, low: int, high: int) -> "FrequencyRange":
        return FrequencyRange(
            min(max(self.min_hz, low), high),
            min(max(self.max_hz, low), high),
        )

    def contains(self, other: "FrequencyRange") -> bool:
        return self.min_hz <= other.min_hz and other.max_hz <= self.max_hz


@dataclass(frozen=True)
class DeviceBounds:
    min_freq_hz: int
    max_freq_hz: int
    lnb_offset_hz: int = 0

    def __post_init__(self) -> None:
        if self.min_freq_hz > self.max_freq_hz:
            low, high = self.max_freq_hz, self.min_freq_hz
            object.__setattr__(self, "min_freq_hz", low)
            object.__setattr__(self, "max_freq_hz", high)

    @property
    def effective_min(self) -> int:
        return int(self.min_freq_hz) + int(self.lnb_offset_hz)

    @property
    def effective_max(self) -> int:
        return int(self.max_freq_hz) + int(self.lnb_offset_hz)

    @property
    def effective(self) -> FrequencyRange:
        return FrequencyRange(self.effective_min, self.effective_max)


class FrequencyRangeModel:
    """Authoritative display range, clamped to the device span."""

    def __init__(self, initial: Optional[FrequencyRange] = None, full_range: bool = False):
        self._range = initial or FrequencyRange(88_000_000, 108_000_000)
        self._bounds: Optional[DeviceBounds] = None
        self._full_range = bool(full_range)

    @property
    def range(self) -> FrequencyRange:
        return self._range

    @property
    def bounds(self) -> Optional[DeviceBounds]:
        return self._bounds

    @property
    def full_range(self) -> bool:
        return self._full_range

    @property
    def lnb_offset(self) -> int:
        return self._bounds.lnb_offset_hz if self._bounds is not None else 0

    @property
    def units(self) -> int:
        return frequency_units(self._range.max_hz)

    def set_device_bounds(self, bounds: DeviceBounds) -> FrequencyRange:
        self._bounds = bounds
        span = bounds.effective
        clamped = self._range.clamp(span.min_hz, span.max_hz)
        if clamped.width < 1 or self._full_range:
            clamped = span
        self._range = clamped
        logger.debug(
            "Device bounds [%d, %d] (LNB %d), range now [%d, %d]",
            span.min_hz,
            span.max_hz,
            bounds.lnb_offset_hz,
            clamped.min_hz,
            clamped.max_hz,
        )
        return self._range

    def set_lnb_offset(self, offset_hz: int) -> FrequencyRange:
        if self._bounds is None:
            return self._range
        return self.set_device_bounds(
            DeviceBounds(self._bounds.min_freq_hz, self._bounds.max_freq_hz, int(offset_hz))
        )

    def set_range(self, min_hz: float, max_hz: float) -> FrequencyRange:
        requested = FrequencyRange.ordered(min_hz, max_hz)
        if self._bounds is not None:
            span = self._bounds.effective
            requested = requested.clamp(span.min_hz, span.max_hz)
        self._range = requested
        return self._range

    def set_full_range(self, enabled: bool) -> FrequencyRange:
        self._full_range = bool(enabled)
        if self._full_range and self._bounds is not None:
            self._range = self._bounds.effective
        return self._range
