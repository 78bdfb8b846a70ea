"""Zoom and pan reconciliation against the configured range.

Maps display gestures onto the window the receiver should acquire and picks
between sweeping the whole window and holding a fixed center frequency.

Rules
- The window always lies inside the configured range.
- A zoom that overflows one edge is shifted inward first, then clamped.
  Overflowing both edges resets the view to the full range.
- Windows no wider than min_bw_for_zoom * relative_bandwidth are acquired in
  fixed-frequency mode around the current tuned center.
- Pans keep the width and slide the window back inside the range.
- An event is produced only when the window or the mode actually changes.
"""

from __future__ import annotations

import logging
from typing import Optional

from panoramic_spectrum.protocol import AcquisitionMode, WindowChange
from panoramic_spectrum.ranges import FrequencyRange


logger = logging.getLogger(__name__)


class ZoomReconciler:
    def __init__(
        self,
        freq_range: FrequencyRange,
        min_bw_for_zoom: int = 20_000_000,
        relative_bandwidth: float = 1.0,
        filter_bw_cap_hz: int = 4_000_000_000,
    ):
        self._range = freq_range
        self._window = freq_range
        self._tuned_center = freq_range.center
        self.mode = AcquisitionMode.SWEEP
        self.min_bw_for_zoom = max(1, int(min_bw_for_zoom))
        self.relative_bandwidth = 1.0
        self.set_relative_bandwidth(relative_bandwidth)
        self.filter_bw_cap_hz = int(filter_bw_cap_hz)
        self._last_emitted: Optional[WindowChange] = None
        self._last_width: Optional[int] = None

    @property
    def range(self) -> FrequencyRange:
        return self._range

    @property
    def window(self) -> FrequencyRange:
        return self._window

    @property
    def tuned_center(self) -> int:
        return self._tuned_center

    @property
    def last_emitted(self) -> Optional[WindowChange]:
        return self._last_emitted

    @property
    def threshold(self) -> float:
        return self.min_bw_for_zoom * self.relative_bandwidth

    @property
    def fixed_frequency(self) -> bool:
        return self.mode is AcquisitionMode.FIXED_FREQUENCY

    def set_min_bw_for_zoom(self, bw_hz: int) -> None:
        self.min_bw_for_zoom = max(1, int(bw_hz))

    def set_relative_bandwidth(self, factor: float) -> None:
        factor = float(factor)
        if not 0.0 < factor <= 1.0:
            logger.warning("Relative bandwidth %.3f out of (0, 1], clamping", factor)
            factor = min(1.0, max(0.01, factor))
        self.relative_bandwidth = factor

    def set_relative_bandwidth_percent(self, percent: int) -> None:
        self.set_relative_bandwidth(max(1, min(100, int(percent))) / 100.0)

    def current_event(self) -> WindowChange:
        """Event describing the current window, regardless of what was emitted."""

        return self._make_event(self._window, width_changed=True, zoom_reset=False)

    # Inputs

    def reset_to_range(self, freq_range: FrequencyRange) -> Optional[WindowChange]:
        """New configured range; the view shows all of it."""

        self._range = freq_range
        return self._settle(freq_range.min_hz, freq_range.max_hz, zoom_reset=True)

    def on_zoom(self, center_hz: float, span_hz: float) -> Optional[WindowChange]:
        lo, hi = self._range.min_hz, self._range.max_hz
        span = max(1, int(span_hz))
        low = int(center_hz) - span // 2
        high = low + span

        if low < lo and high <= hi:
            # Too far left: push the excess back to the right.
            extra = lo - low
            low += extra
            high += extra
        elif low >= lo and high > hi:
            extra = high - hi
            low -= extra
            high -= extra

        clamped_left = low < lo
        clamped_right = high > hi
        if clamped_left:
            low = lo
        if clamped_right:
            high = hi

        return self._settle(low, high, zoom_reset=clamped_left and clamped_right)

    def on_center_changed(self, freq_hz: float) -> Optional[WindowChange]:
        width = self._window.width
        window = self._fit(int(freq_hz) - width // 2, width)
        self._tuned_center = window.center
        return self._emit(window, zoom_reset=False)

    def pan_by(self, delta_hz: float) -> Optional[WindowChange]:
        return self.on_center_changed(self._window.center + int(delta_hz))

    def refresh(self) -> Optional[WindowChange]:
        """Re-run the mode rule on the current window after a threshold change."""

        return self._settle(self._window.min_hz, self._window.max_hz, zoom_reset=False)

    def apply_window(self, min_hz: float, max_hz: float) -> Optional[WindowChange]:
        """Record a window chosen by the acquisition side.

        The mode is left alone and the result is marked as emitted, so the
        controller never echoes a device-driven window back to the device.
        """

        requested = FrequencyRange.ordered(min_hz, max_hz)
        window = self._fit(requested.min_hz, requested.width)
        if not self.fixed_frequency:
            self._tuned_center = window.center
        return self._emit(window, zoom_reset=False, origin="acquisition")

    # Internals

    def _fit(self, start: int, width: int) -> FrequencyRange:
        lo, hi = self._range.min_hz, self._range.max_hz
        if width >= hi - lo:
            return self._range
        if start < lo:
            start = lo
        elif start + width > hi:
            start = hi - width
        return FrequencyRange(start, start + width)

    def _settle(self, low: int, high: int, zoom_reset: bool) -> Optional[WindowChange]:
        if high - low <= self.threshold:
            if not self.fixed_frequency:
                logger.info("Entering fixed-frequency mode at %d Hz", self._tuned_center)
            self.mode = AcquisitionMode.FIXED_FREQUENCY
            bw = self.min_bw_for_zoom
            window = self._fit(self._tuned_center - bw // 2, bw)
        else:
            if self.fixed_frequency:
                logger.info("Leaving fixed-frequency mode, sweeping [%d, %d]", low, high)
            self.mode = AcquisitionMode.SWEEP
            window = FrequencyRange(low, high)
        self._tuned_center = window.center
        return self._emit(window, zoom_reset=zoom_reset)

    def _make_event(
        self,
        window: FrequencyRange,
        width_changed: bool,
        zoom_reset: bool,
        origin: str = "controller",
    ) -> WindowChange:
        return WindowChange(
            min_hz=window.min_hz,
            max_hz=window.max_hz,
            mode=self.mode,
            width_changed=width_changed,
            zoom_reset=zoom_reset,
            filter_bw_hz=min(window.width // 10, self.filter_bw_cap_hz),
            origin=origin,
        )

    def _emit(
        self,
        window: FrequencyRange,
        zoom_reset: bool,
        origin: str = "controller",
    ) -> Optional[WindowChange]:
        # Any change of bounds or mode is emitted so pans still retune a sweep;
        # width_changed tells the receiver whether it needs a bandwidth change.
        self._window = window
        last = self._last_emitted
        if (
            last is not None
            and last.min_hz == window.min_hz
            and last.max_hz == window.max_hz
            and last.mode is self.mode
        ):
            return None

        event = self._make_event(
            window,
            width_changed=window.width != self._last_width,
            zoom_reset=zoom_reset,
            origin=origin,
        )
        self._last_emitted = event
        self._last_width = window.width
        return event
