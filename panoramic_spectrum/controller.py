"""Sweep controller: owns the range model, the zoom reconciler and the stream filter.

All handlers run on one control thread and are not reentrant. Anything that
publishes a range change to subscribers runs under the adjusting_range flag;
range requests that arrive while it is held are ignored, which breaks the
feedback loop between programmatic and display-reported range changes.
"""

from __future__ import annotations

import contextlib
from dataclasses import replace
import logging
import math
import time
from typing import Callable, Dict, Iterator, List, Optional

import numpy as np

from panoramic_spectrum.acquisition import AcquisitionSource
from panoramic_spectrum.config import PanoramicConfig, PARTITIONINGS, STRATEGIES, SweepConfig
from panoramic_spectrum.devices import Device, DeviceCatalog, preferred_rtt_ms
from panoramic_spectrum.persistence import FrequencyAllocationTable
from panoramic_spectrum.protocol import (
    ControllerErrorFrame,
    ControllerFrame,
    ControllerStatusFrame,
    RateReport,
    SpectrumFrame,
    WindowChange,
)
from panoramic_spectrum.ranges import FrequencyRange, FrequencyRangeModel
from panoramic_spectrum.spectrum import SavedSpectrum
from panoramic_spectrum.staleness import StalenessFilter
from panoramic_spectrum.zoom import ZoomReconciler


logger = logging.getLogger(__name__)

FrameCallback = Callable[[ControllerFrame], None]


class MalformedFrame(ValueError):
    pass


def validate_frame(frame: SpectrumFrame) -> None:
    samples = frame.samples
    if not isinstance(samples, np.ndarray) or samples.ndim != 1:
        raise MalformedFrame("samples must be a 1-D array")
    if samples.size == 0:
        raise MalformedFrame("frame has no samples")
    if not (math.isfinite(frame.freq_start_hz) and math.isfinite(frame.freq_end_hz)):
        raise MalformedFrame("frame bounds are not finite")
    if frame.freq_end_hz <= frame.freq_start_hz:
        raise MalformedFrame(
            f"inconsistent bounds [{frame.freq_start_hz}, {frame.freq_end_hz}]"
        )


class SweepController:
    """Reconciles range edits and filters the incoming spectrum stream."""

    def __init__(
        self,
        cfg: SweepConfig,
        acquisition: AcquisitionSource,
        catalog: Optional[DeviceCatalog] = None,
        persisted: Optional[PanoramicConfig] = None,
        band_plans: Optional[List[FrequencyAllocationTable]] = None,
    ):
        self.cfg = cfg
        self.acquisition = acquisition
        self.catalog = catalog or DeviceCatalog()
        self.persisted = persisted or PanoramicConfig(samp_rate=cfg.sample_rate_hz)
        self.band_plans = list(band_plans or [])
        self.band_plan: Optional[FrequencyAllocationTable] = None

        self.model = FrequencyRangeModel(
            FrequencyRange.ordered(self.persisted.range_min, self.persisted.range_max),
            full_range=self.persisted.full_range,
        )
        self.zoom = ZoomReconciler(
            self.model.range,
            min_bw_for_zoom=cfg.min_bw_for_zoom_hz,
            relative_bandwidth=cfg.relative_bandwidth,
            filter_bw_cap_hz=cfg.filter_bw_cap_hz,
        )
        self.staleness = StalenessFilter(cfg.enable_lag_filter, cfg.max_allowed_lag_ms)
        self.saved = SavedSpectrum()

        self.device: Optional[Device] = None
        self.antenna: Optional[str] = None
        self.gains: Dict[str, float] = {}
        self.banned_device: Optional[str] = None
        self.running = False
        self.adjusting_range = False
        self.frames = 0
        self.sample_rate = 0.0
        self.measured_sample_rate = 0.0
        self.filter_offset_hz = 0
        self.filter_bw_hz = 0
        self._last_frame_bounds: Optional[tuple[int, int]] = None
        self._subscribers: list[FrameCallback] = []
        self._last_error: Optional[ControllerErrorFrame] = None

        self.acquisition.bind(self.on_frame, self.on_rate_report, self.on_acquisition_error)

    # Subscribers

    def subscribe(self, callback: FrameCallback) -> None:
        self._subscribers.append(callback)

    def unsubscribe(self, callback: FrameCallback) -> None:
        if callback in self._subscribers:
            self._subscribers.remove(callback)

    @property
    def last_error(self) -> Optional[ControllerErrorFrame]:
        return self._last_error

    @property
    def window(self) -> FrequencyRange:
        return self.zoom.window

    @property
    def mode(self):
        return self.zoom.mode

    @contextlib.contextmanager
    def _adjusting(self) -> Iterator[None]:
        previous = self.adjusting_range
        self.adjusting_range = True
        try:
            yield
        finally:
            self.adjusting_range = previous

    # Range and gesture handlers

    def on_window_request(self, min_hz: float, max_hz: float) -> Optional[FrequencyRange]:
        """Explicit range edit from the operator or a loaded configuration."""

        if self.adjusting_range:
            logger.debug("Ignoring nested range request [%s, %s]", min_hz, max_hz)
            return None
        if self.model.full_range:
            logger.debug("Full range is on; ignoring range request")
            return self.model.range
        with self._adjusting():
            new_range = self.model.set_range(min_hz, max_hz)
            self._dispatch(self.zoom.reset_to_range(new_range))
        return new_range

    def on_zoom(self, center_hz: float, span_hz: float) -> Optional[WindowChange]:
        if self.adjusting_range:
            logger.debug("Ignoring nested zoom to %s +/- %s", center_hz, span_hz)
            return None
        with self._adjusting():
            event = self.zoom.on_zoom(center_hz, span_hz)
            self._dispatch(event)
        return event

    def on_center_changed(self, freq_hz: float) -> Optional[WindowChange]:
        if self.adjusting_range:
            logger.debug("Ignoring nested center change to %s", freq_hz)
            return None
        with self._adjusting():
            event = self.zoom.on_center_changed(freq_hz)
            self._dispatch(event)
        return event

    def on_filter_changed(self, offset_hz: int, bw_hz: int) -> None:
        self.filter_offset_hz = int(offset_hz)
        self.filter_bw_hz = int(bw_hz)

    def set_full_range(self, enabled: bool) -> FrequencyRange:
        with self._adjusting():
            new_range = self.model.set_full_range(enabled)
            self.persisted.full_range = self.model.full_range
            self._dispatch(self.zoom.reset_to_range(new_range))
        return new_range

    def set_lnb_offset(self, offset_hz: int) -> FrequencyRange:
        if self.running:
            logger.warning("LNB offset can only change while stopped")
            return self.model.range
        self.persisted.lnb_freq = float(offset_hz)
        self.acquisition.set_sweep_params(lnb_offset_hz=int(offset_hz))
        if self.model.bounds is None:
            return self.model.range
        with self._adjusting():
            new_range = self.model.set_lnb_offset(int(offset_hz))
            self._dispatch(self.zoom.reset_to_range(new_range))
        return new_range

    def set_relative_bandwidth_percent(self, percent: int) -> None:
        self.cfg.relative_bandwidth_percent = max(1, min(100, int(percent)))
        self.zoom.set_relative_bandwidth_percent(self.cfg.relative_bandwidth_percent)
        self.acquisition.set_sweep_params(relative_bandwidth=self.cfg.relative_bandwidth)
        self._refresh_mode()

    def set_min_bw_for_zoom(self, bw_hz: int) -> None:
        self.cfg.min_bw_for_zoom_hz = int(bw_hz)
        self.zoom.set_min_bw_for_zoom(bw_hz)
        self._refresh_mode()

    def _refresh_mode(self) -> None:
        with self._adjusting():
            self._dispatch(self.zoom.refresh())

    # Device handling

    def on_device_changed(self, desc: str, antenna: Optional[str] = None) -> bool:
        if self.running:
            logger.warning("Device can only change while stopped")
            return False
        device = self.catalog.get(desc)
        if device is None:
            logger.warning("Unknown device %r", desc)
            return False

        previous_antenna = self.antenna
        self.device = device
        self.persisted.device = device.desc

        rtt = preferred_rtt_ms(device)
        if rtt != 0:
            self.set_rtt_ms(rtt)

        # Keep the current antenna when the new device still has it.
        if antenna is not None and antenna in device.antennas:
            self.antenna = antenna
        elif previous_antenna in device.antennas:
            self.antenna = previous_antenna
        else:
            self.antenna = device.antennas[0] if device.antennas else None
        self.persisted.antenna = self.antenna or ""

        self.gains = {}
        for gain in device.gains:
            if self.persisted.has_gain(device.driver, gain.name):
                value = gain.clamp(self.persisted.get_gain(device.driver, gain.name))
            else:
                value = gain.default_db
            self.gains[gain.name] = value

        self.acquisition.select_device(device, self.antenna)
        for name, value in self.gains.items():
            self.acquisition.set_gain(name, value)

        with self._adjusting():
            new_range = self.model.set_device_bounds(
                device.bounds(int(self.persisted.lnb_freq))
            )
            self._dispatch(self.zoom.reset_to_range(new_range))
        logger.info(
            "Device %s selected, range [%d, %d]", device.desc, new_range.min_hz, new_range.max_hz
        )
        self._publish_status("device changed")
        return True

    def on_gain_changed(self, name: str, value: float) -> bool:
        if self.device is None:
            return False
        descriptor = self.device.gain(name)
        if descriptor is None:
            logger.warning("Device %s has no gain %r", self.device.desc, name)
            return False
        value = descriptor.clamp(value)
        self.gains[name] = value
        self.persisted.set_gain(self.device.driver, name, value)
        self.acquisition.set_gain(name, value)
        return True

    def set_banned_device(self, desc: Optional[str]) -> None:
        self.banned_device = desc or None

    # Acquisition parameters

    def set_sample_rate(self, rate_hz: int) -> bool:
        if self.running:
            return False
        self.persisted.samp_rate = int(rate_hz)
        self.cfg.sample_rate_hz = int(rate_hz)
        self.acquisition.set_sweep_params(sample_rate_hz=int(rate_hz))
        return True

    def set_strategy(self, strategy: str) -> bool:
        if strategy not in STRATEGIES:
            logger.warning("Unknown sweep strategy %r", strategy)
            return False
        self.cfg.strategy = self.persisted.strategy = strategy
        self.acquisition.set_sweep_params(strategy=strategy)
        return True

    def set_partitioning(self, partitioning: str) -> bool:
        if partitioning not in PARTITIONINGS:
            logger.warning("Unknown partitioning %r", partitioning)
            return False
        self.cfg.partitioning = self.persisted.partitioning = partitioning
        self.acquisition.set_sweep_params(partitioning=partitioning)
        return True

    def set_rtt_ms(self, rtt_ms: int) -> None:
        self.cfg.rtt_ms = max(0, int(rtt_ms))
        self.acquisition.set_sweep_params(rtt_ms=self.cfg.rtt_ms)

    def set_lag_filter(
        self,
        enabled: Optional[bool] = None,
        max_allowed_lag_ms: Optional[int] = None,
    ) -> None:
        self.staleness.configure(enabled, max_allowed_lag_ms)
        self.cfg.enable_lag_filter = self.staleness.enabled
        self.cfg.max_allowed_lag_ms = self.staleness.max_allowed_lag_ms

    def set_band_plan(self, name: Optional[str]) -> bool:
        if not name:
            self.band_plan = None
            return True
        for table in self.band_plans:
            if table.name == name:
                self.band_plan = table
                return True
        return False

    # Lifecycle

    def start(self) -> bool:
        if self.running:
            return True
        if self.device is None:
            self._report_error("device_missing", "Select a device before starting the scan.")
            return False
        if not self.device.available:
            self._report_error("device_unavailable", f"Device {self.device.desc} is not available.")
            return False
        if self.banned_device and self.device.desc == self.banned_device:
            self._report_error(
                "device_busy",
                "Scan cannot start because the selected device is in use by the main window.",
            )
            return False

        window = self.zoom.current_event()
        self.acquisition.set_sweep_params(
            sample_rate_hz=int(self.persisted.samp_rate),
            relative_bandwidth=self.cfg.relative_bandwidth,
            strategy=self.cfg.strategy,
            partitioning=self.cfg.partitioning,
            rtt_ms=self.cfg.rtt_ms,
            lnb_offset_hz=self.model.lnb_offset,
        )
        self.acquisition.configure_window(window.min_hz, window.max_hz, window.mode)
        try:
            self.acquisition.start()
        except Exception as exc:
            logger.exception("Acquisition failed to start")
            self._report_error("acquisition_failed", str(exc) or "Acquisition failed to start")
            return False

        self.staleness.reset()
        self.frames = 0
        self._last_frame_bounds = None
        self.running = True
        logger.info("Scan started on %s over [%d, %d]", self.device.desc, window.min_hz, window.max_hz)
        self._publish_status("running")
        return True

    def stop(self) -> None:
        was_running = self.running
        self.running = False
        self.acquisition.stop()
        if was_running:
            # Edits made to the spin box while running do not stick.
            self.cfg.sample_rate_hz = int(self.persisted.samp_rate)
            logger.info("Scan stopped after %d frames", self.frames)
        self._publish_status("stopped")

    # Stream handling

    def on_frame(self, frame: SpectrumFrame) -> bool:
        """Handle one frame from the acquisition side. Never raises."""

        try:
            return self._handle_frame(frame)
        except MalformedFrame as exc:
            logger.warning("Dropping malformed frame: %s", exc)
        except Exception:
            logger.exception("Error handling spectrum frame")
        return False

    def _handle_frame(self, frame: SpectrumFrame) -> bool:
        if not self.running:
            return False
        validate_frame(frame)

        bounds = (int(frame.freq_start_hz), int(frame.freq_end_hz))
        if bounds != self._last_frame_bounds:
            # The device moved the window on its own; follow it without
            # sending it back as a new request.
            self._last_frame_bounds = bounds
            with self._adjusting():
                self._publish(self.zoom.apply_window(*bounds))

        self.sample_rate = float(frame.sample_rate_hz)
        self.measured_sample_rate = float(frame.measured_sample_rate_hz)

        now = frame.arrival_ts if frame.arrival_ts is not None else time.time()
        if not self.staleness.accept(frame.capture_ts, now):
            return False

        self.saved.set(bounds[0], bounds[1], frame.samples, frame.capture_ts)
        self.frames += 1
        self._publish(frame)
        return True

    def on_rate_report(self, report: RateReport) -> None:
        self.sample_rate = float(report.sample_rate_hz)
        self.measured_sample_rate = float(report.measured_sample_rate_hz)

    def on_acquisition_error(self, message: str) -> None:
        self._report_error("worker_error", message or "Acquisition error")
        self.stop()

    # Outputs

    def export(self, path: str) -> bool:
        if self.saved.export_to_file(path):
            return True
        self._report_error(
            "export_failed",
            "Cannot save file in the specified location. Please choose a different location and try again.",
            recoverable=True,
        )
        return False

    def measures(self) -> Dict[str, float]:
        window = self._last_frame_bounds or (self.window.min_hz, self.window.max_hz)
        return {
            "center_hz": self.filter_offset_hz + 0.5 * (window[0] + window[1]),
            "bandwidth_hz": float(self.filter_bw_hz),
            "frames": float(self.frames),
        }

    def status(self) -> ControllerStatusFrame:
        return ControllerStatusFrame(
            ts_monotonic_ns=self._now_ns(),
            running=self.running,
            device=self.device.desc if self.device else None,
            antenna=self.antenna,
            range_min_hz=self.model.range.min_hz,
            range_max_hz=self.model.range.max_hz,
            window_min_hz=self.window.min_hz,
            window_max_hz=self.window.max_hz,
            mode=self.zoom.mode,
            full_range=self.model.full_range,
            lnb_offset_hz=self.model.lnb_offset,
            sample_rate_hz=self.sample_rate,
            measured_sample_rate_hz=self.measured_sample_rate,
            frames=self.frames,
            frames_dropped=self.staleness.dropped,
        )

    # Configuration

    def load_config(self, persisted: PanoramicConfig) -> None:
        """Apply a persisted configuration. Call while stopped."""

        self.persisted = persisted
        self.cfg.sample_rate_hz = int(persisted.samp_rate)
        if persisted.strategy in STRATEGIES:
            self.cfg.strategy = persisted.strategy
        if persisted.partitioning in PARTITIONINGS:
            self.cfg.partitioning = persisted.partitioning
        self.model.set_full_range(False)
        self.model.set_range(persisted.range_min, persisted.range_max)
        if persisted.device in self.catalog:
            self.on_device_changed(persisted.device, persisted.antenna or None)
        self.set_full_range(persisted.full_range)

    def snapshot_config(self) -> PanoramicConfig:
        self.persisted.range_min = float(self.model.range.min_hz)
        self.persisted.range_max = float(self.model.range.max_hz)
        self.persisted.full_range = self.model.full_range
        self.persisted.lnb_freq = float(self.model.lnb_offset)
        self.persisted.strategy = self.cfg.strategy
        self.persisted.partitioning = self.cfg.partitioning
        if self.device is not None:
            self.persisted.device = self.device.desc
            self.persisted.antenna = self.antenna or ""
        return self.persisted

    # Internals

    def _dispatch(self, event: Optional[WindowChange]) -> None:
        if event is None:
            return
        if self.running:
            self.acquisition.configure_window(event.min_hz, event.max_hz, event.mode)
        self._publish(event)

    def _publish(self, frame: Optional[ControllerFrame]) -> None:
        if frame is None:
            return
        for callback in list(self._subscribers):
            try:
                callback(frame)
            except Exception:
                logger.exception("Subscriber failed on %s", type(frame).__name__)

    def _publish_status(self, message: Optional[str] = None) -> None:
        status = self.status()
        if message is not None:
            status = replace(status, message=message)
        self._publish(status)

    def _report_error(self, code: str, message: str, recoverable: bool = True) -> None:
        logger.warning("%s: %s", code, message)
        self._last_error = ControllerErrorFrame(
            ts_monotonic_ns=self._now_ns(),
            error_code=code,
            message=message,
            recoverable=recoverable,
        )
        self._publish(self._last_error)

    @staticmethod
    def _now_ns() -> int:
        return int(time.monotonic() * 1e9)
