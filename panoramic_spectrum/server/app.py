"""FastAPI application factory for the panoramic sweep server."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
import logging
from typing import Optional

from fastapi import FastAPI

from panoramic_spectrum.acquisition import SweepSource
from panoramic_spectrum.config import SweepConfig
from panoramic_spectrum.controller import SweepController
from panoramic_spectrum.devices import NULL_DEVICE, PLUTO_DEVICE, DeviceCatalog
from panoramic_spectrum.persistence import load_band_plans, load_config, save_config
from panoramic_spectrum.server.routes import router
from panoramic_spectrum.server.ws import router as ws_router


logger = logging.getLogger(__name__)


def build_controller(cfg: SweepConfig) -> SweepController:
    """Controller over the Pluto/null sweep source with persisted settings applied."""

    persisted = load_config(cfg.state_path or None)
    controller = SweepController(
        cfg,
        SweepSource(cfg.uri, cfg.fft_size),
        catalog=DeviceCatalog([PLUTO_DEVICE, NULL_DEVICE]),
        persisted=persisted,
        band_plans=load_band_plans(cfg.band_plan_path),
    )
    controller.load_config(persisted)
    if controller.device is None and controller.catalog.first() is not None:
        controller.on_device_changed(controller.catalog.first().desc)
    return controller


def create_app(
    controller: Optional[SweepController] = None,
    state_path: Optional[str] = None,
) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        ctrl: SweepController = app.state.controller
        loop = asyncio.get_running_loop()
        # Acquisition callbacks run on worker threads; hop onto the event loop,
        # which is the single control thread.
        ctrl.acquisition.bind(
            lambda frame: loop.call_soon_threadsafe(ctrl.on_frame, frame),
            lambda report: loop.call_soon_threadsafe(ctrl.on_rate_report, report),
            lambda message: loop.call_soon_threadsafe(ctrl.on_acquisition_error, message),
        )
        try:
            yield
        finally:
            ctrl.stop()
            if state_path:
                save_config(ctrl.snapshot_config(), state_path)
                logger.info("Saved panoramic state to %s", state_path)

    app = FastAPI(title="Panoramic Spectrum", lifespan=lifespan)
    app.state.controller = controller or build_controller(SweepConfig())
    app.include_router(router)
    app.include_router(ws_router)
    return app
