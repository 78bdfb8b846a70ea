"""Worker thread that sweeps a radio across the acquisition window.

Each step tunes the LO, computes a power spectrum, keeps the central part of
it and stitches it into a panorama covering the whole window. The panorama is
emitted after every step. This module must not import controller or server
classes.
"""

from __future__ import annotations

import logging
import math
import threading
import time
from typing import Callable, Dict, List, Optional

import numpy as np

from panoramic_spectrum.protocol import AcquisitionMode, RateReport, SpectrumFrame


logger = logging.getLogger(__name__)

RATE_REPORT_INTERVAL_S = 1.0


def plan_steps(min_hz: int, max_hz: int, step_hz: int, partitioning: str) -> List[int]:
    """LO centers needed to cover [min_hz, max_hz] with bands of step_hz."""

    step_hz = max(1, int(step_hz))
    if partitioning == "discrete":
        # Align bands to a global grid so revisits land on the same bins.
        first = (int(min_hz) // step_hz) * step_hz
    else:
        first = int(min_hz)
    count = max(1, math.ceil((int(max_hz) - first) / step_hz))
    return [first + i * step_hz + step_hz // 2 for i in range(count)]


def power_db(x: np.ndarray, window: np.ndarray) -> np.ndarray:
    n = window.size
    seg = np.asarray(x[:n], dtype=np.complex64)
    if seg.size < n:
        seg = np.pad(seg, (0, n - seg.size))
    spec = np.fft.fftshift(np.fft.fft(seg * window))
    power = (np.abs(spec) ** 2) / float(np.sum(window**2))
    return (10.0 * np.log10(power + 1e-20)).astype(np.float32)


def central_bins(db: np.ndarray, fraction: float) -> np.ndarray:
    keep = max(1, int(round(db.size * fraction)))
    start = (db.size - keep) // 2
    return db[start : start + keep]


class SweepWorker(threading.Thread):
    def __init__(
        self,
        radio,
        frame_cb: Callable[[SpectrumFrame], None],
        error_cb: Callable[[str], None],
        rate_cb: Optional[Callable[[RateReport], None]] = None,
        params: Optional[Dict[str, object]] = None,
        seed: Optional[int] = None,
    ):
        super().__init__(daemon=True)
        self.radio = radio
        self._lock = threading.Lock()
        self._running = threading.Event()
        self._running.set()
        self._frame_cb = frame_cb
        self._error_cb = error_cb
        self._rate_cb = rate_cb
        self._rng = np.random.default_rng(seed)
        self.params: Dict[str, object] = {
            "min_hz": 88_000_000,
            "max_hz": 108_000_000,
            "mode": AcquisitionMode.SWEEP,
            "sample_rate_hz": 20_000_000,
            "relative_bandwidth": 0.9,
            "strategy": "stochastic",
            "partitioning": "discrete",
            "rtt_ms": 60,
            "lnb_offset_hz": 0,
        }
        if params:
            self.params.update(params)
        # Pending configuration updates applied on the worker thread.
        self.pending_apply: Dict[str, object] = {}
        self._steps: List[int] = []
        self._step_index = 0
        self._panorama = np.zeros(1, dtype=np.float32)
        self._bin_hz = 1.0
        self._fraction = 1.0
        self._used_span = 1.0
        self._fft_window = np.hanning(max(2, int(getattr(radio, "fft_size", 4096)))).astype(np.float32)
        self._samples_read = 0
        self._rate_t0 = time.monotonic()

    def stop(self) -> None:
        self._running.clear()

    def queue_config(self, updates: Dict[str, object]) -> None:
        # Merge updates so several UI actions coalesce into one worker-side apply.
        with self._lock:
            self.pending_apply.update(updates)

    def _apply_pending(self) -> None:
        with self._lock:
            pending = dict(self.pending_apply)
            self.pending_apply.clear()
        gains = pending.pop("gains", None)
        if gains:
            for name, value in dict(gains).items():
                self.radio.set_gain(name, float(value))
        if "antenna" in pending:
            self.radio.set_antenna(pending.pop("antenna"))
        if pending or not self._steps:
            self.params.update(pending)
            self._replan()

    def _replan(self) -> None:
        p = self.params
        min_hz = int(p["min_hz"]) - int(p["lnb_offset_hz"])
        max_hz = int(p["max_hz"]) - int(p["lnb_offset_hz"])
        width = max(1, max_hz - min_hz)
        fft_size = int(self.radio.fft_size)

        if p["mode"] == AcquisitionMode.FIXED_FREQUENCY:
            # One step; the sampled span is the whole window.
            rate = self.radio.set_sample_rate(width)
            self._steps = [(min_hz + max_hz) // 2]
            fraction = 1.0
        else:
            rate = self.radio.set_sample_rate(int(p["sample_rate_hz"]))
            fraction = float(p["relative_bandwidth"])
            step_hz = max(1, int(rate * fraction))
            self._steps = plan_steps(min_hz, max_hz, step_hz, str(p["partitioning"]))

        if self._fft_window.size != fft_size:
            self._fft_window = np.hanning(max(2, fft_size)).astype(np.float32)
        self._bin_hz = float(rate) / float(fft_size)
        used = max(1, int(round(fft_size * fraction)))
        n_out = max(1, int(round(width / self._bin_hz)))
        self._fraction = fraction
        self._used_span = used * self._bin_hz
        self._panorama = np.full(n_out, -200.0, dtype=np.float32)
        self._step_index = 0
        logger.debug("Sweep plan: %d steps over [%d, %d] Hz", len(self._steps), min_hz, max_hz)

    def _next_step(self) -> int:
        if str(self.params["strategy"]) == "stochastic":
            return self._steps[int(self._rng.integers(len(self._steps)))]
        center = self._steps[self._step_index % len(self._steps)]
        self._step_index += 1
        return center

    def _stitch(self, center: int, band_db: np.ndarray) -> None:
        window_min = int(self.params["min_hz"]) - int(self.params["lnb_offset_hz"])
        band_start = center - self._used_span / 2.0
        first = int(round((band_start - window_min) / self._bin_hz))
        lo = max(0, first)
        hi = min(self._panorama.size, first + band_db.size)
        if hi > lo:
            self._panorama[lo:hi] = band_db[lo - first : hi - first]

    def _report_rate(self, now: float) -> None:
        elapsed = now - self._rate_t0
        if elapsed < RATE_REPORT_INTERVAL_S or self._rate_cb is None:
            return
        measured = self._samples_read / elapsed
        self._rate_cb(RateReport(float(self.radio.sample_rate), float(measured)))
        self._samples_read = 0
        self._rate_t0 = now

    def run(self) -> None:
        while self._running.is_set():
            try:
                self._apply_pending()
                center = self._next_step()
                tuned = self.radio.set_center_hz(center)
                x = self.radio.read_rx()
                self._samples_read += int(len(x))
                band = central_bins(power_db(x, self._fft_window), self._fraction)
                self._stitch(tuned, band)

                if not self._running.is_set():
                    # Stopped mid-step; the in-flight frame is discarded.
                    return
                elapsed = max(1e-9, time.monotonic() - self._rate_t0)
                self._frame_cb(
                    SpectrumFrame(
                        freq_start_hz=int(self.params["min_hz"]),
                        freq_end_hz=int(self.params["max_hz"]),
                        samples=self._panorama.copy(),
                        capture_ts=time.time(),
                        sample_rate_hz=float(self.radio.sample_rate),
                        measured_sample_rate_hz=self._samples_read / elapsed,
                    )
                )
                self._report_rate(time.monotonic())

                # Pace steps on the configured round trip time.
                time.sleep(max(0.0, int(self.params["rtt_ms"]) / 1000.0))
            except Exception as exc:
                logger.exception("Sweep worker failed")
                self._running.clear()
                self._error_cb(str(exc) or type(exc).__name__)
                return
