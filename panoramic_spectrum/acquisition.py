"""Acquisition collaborator interface and the radio-backed sweep source."""

from __future__ import annotations

import logging
from typing import Callable, Dict, Optional, Protocol

from panoramic_spectrum.devices import Device
from panoramic_spectrum.protocol import AcquisitionMode, RateReport, SpectrumFrame
from panoramic_spectrum.sdr.pluto import open_radio
from panoramic_spectrum.worker import SweepWorker


logger = logging.getLogger(__name__)

FrameCallback = Callable[[SpectrumFrame], None]
RateCallback = Callable[[RateReport], None]
ErrorCallback = Callable[[str], None]


class AcquisitionSource(Protocol):
    """What the controller needs from the acquisition side.

    Frames and rate reports are pushed through the bound callbacks, possibly
    from another thread; the owner decides how they reach the control thread.
    """

    def bind(
        self,
        frame_cb: FrameCallback,
        rate_cb: Optional[RateCallback] = None,
        error_cb: Optional[ErrorCallback] = None,
    ) -> None: ...

    def select_device(self, device: Device, antenna: Optional[str] = None) -> None: ...

    def configure_window(self, min_hz: int, max_hz: int, mode: AcquisitionMode) -> None: ...

    def set_gain(self, name: str, value: float) -> None: ...

    def set_sweep_params(self, **params: object) -> None: ...

    def start(self) -> None: ...

    def stop(self) -> None: ...


class SweepSource:
    """Drives a radio through a SweepWorker thread."""

    def __init__(self, uri: str, fft_size: int = 4096, radio_factory=open_radio):
        self.uri = uri
        self.fft_size = int(fft_size)
        self._radio_factory = radio_factory
        self._radio = None
        self._worker: Optional[SweepWorker] = None
        self._device: Optional[Device] = None
        self._frame_cb: Optional[FrameCallback] = None
        self._rate_cb: Optional[RateCallback] = None
        self._error_cb: Optional[ErrorCallback] = None
        # Last known settings, replayed into every new worker.
        self._params: Dict[str, object] = {}
        self._gains: Dict[str, float] = {}
        self._antenna: Optional[str] = None

    @property
    def running(self) -> bool:
        return self._worker is not None and self._worker.is_alive()

    def bind(
        self,
        frame_cb: FrameCallback,
        rate_cb: Optional[RateCallback] = None,
        error_cb: Optional[ErrorCallback] = None,
    ) -> None:
        self._frame_cb = frame_cb
        self._rate_cb = rate_cb
        self._error_cb = error_cb

    def select_device(self, device: Device, antenna: Optional[str] = None) -> None:
        if self.running:
            raise RuntimeError("Cannot change device while sweeping")
        self._device = device
        self._antenna = antenna
        self._gains = {}

    def configure_window(self, min_hz: int, max_hz: int, mode: AcquisitionMode) -> None:
        self._update({"min_hz": int(min_hz), "max_hz": int(max_hz), "mode": mode})

    def set_gain(self, name: str, value: float) -> None:
        self._gains[name] = float(value)
        if self._worker is not None:
            self._worker.queue_config({"gains": {name: float(value)}})

    def set_sweep_params(self, **params: object) -> None:
        self._update(params)

    def _update(self, updates: Dict[str, object]) -> None:
        self._params.update(updates)
        if self._worker is not None:
            self._worker.queue_config(updates)

    def start(self) -> None:
        if self.running:
            return
        if self._device is None:
            raise RuntimeError("No device selected")
        if self._frame_cb is None:
            raise RuntimeError("Source has no frame callback bound")

        self._radio = self._radio_factory(self._device, self.uri, self.fft_size)
        self._worker = SweepWorker(
            self._radio,
            frame_cb=self._frame_cb,
            error_cb=self._handle_worker_error,
            rate_cb=self._rate_cb,
            params=self._params,
        )
        self._worker.queue_config({"gains": dict(self._gains), "antenna": self._antenna})
        self._worker.start()
        logger.info("Sweep source started on %s", self._device.desc)

    def stop(self) -> None:
        if self._worker is not None:
            self._worker.stop()
            self._worker.join(timeout=1.0)
            self._worker = None
        if self._radio is not None:
            try:
                self._radio.close()
            except Exception:
                logger.exception("Error closing radio")
            self._radio = None

    def _handle_worker_error(self, message: str) -> None:
        if self._error_cb is not None:
            self._error_cb(message)
