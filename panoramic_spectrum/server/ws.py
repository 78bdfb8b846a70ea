"""WebSocket handler streaming controller frames."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
import logging
import time
import uuid

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from panoramic_spectrum.controller import SweepController
from panoramic_spectrum.protocol import (
    BINARY_KIND_SPECTRUM,
    ControllerErrorFrame,
    ControllerFrame,
    ControllerStatusFrame,
    SpectrumFrame,
    WindowChange,
    error_to_wire,
    make_payload_header,
    spectrum_meta_to_wire,
    status_to_wire,
    window_to_wire,
)


logger = logging.getLogger(__name__)

router = APIRouter()


@dataclass
class _ClientSession:
    websocket: WebSocket
    queue: asyncio.Queue[ControllerFrame]
    session_id: uuid.UUID
    seq: int = 0

    def next_seq(self) -> int:
        self.seq += 1
        return self.seq


class _StreamHub:
    """Fan out controller frames to multiple WebSocket clients."""

    def __init__(self, controller: SweepController) -> None:
        self._controller = controller
        self._clients: list[_ClientSession] = []
        self.dropped = 0
        # The controller publishes on the event loop thread, so enqueue directly.
        self._controller.subscribe(self.publish)

    def register(self, session: _ClientSession) -> None:
        self._clients.append(session)

    def unregister(self, session: _ClientSession) -> None:
        if session in self._clients:
            self._clients.remove(session)

    def publish(self, frame: ControllerFrame) -> None:
        for session in list(self._clients):
            try:
                session.queue.put_nowait(frame)
            except asyncio.QueueFull:
                # Drop frames for slow clients instead of blocking the others.
                self.dropped += 1
                continue


def _get_hub(websocket: WebSocket) -> _StreamHub:
    app = websocket.app
    hub = getattr(app.state, "ws_hub", None)
    if hub is None:
        hub = _StreamHub(app.state.controller)
        app.state.ws_hub = hub
    return hub


def _now_ns() -> int:
    return int(time.monotonic() * 1e9)


async def _send_spectrum(session: _ClientSession, frame: SpectrumFrame) -> None:
    payload_id = uuid.uuid4()
    meta = spectrum_meta_to_wire(
        frame,
        ts_monotonic_ns=_now_ns(),
        seq=session.next_seq(),
        session_id=session.session_id,
        payload_id=payload_id,
    )
    await session.websocket.send_json(meta)
    payload = frame.samples.astype("<f4", copy=False).tobytes()
    header = make_payload_header(BINARY_KIND_SPECTRUM, payload_id, frame.samples.size)
    await session.websocket.send_bytes(header + payload)


async def _send_frame(session: _ClientSession, frame: ControllerFrame) -> None:
    if isinstance(frame, SpectrumFrame):
        await _send_spectrum(session, frame)
        return

    if isinstance(frame, WindowChange):
        payload = window_to_wire(
            frame,
            ts_monotonic_ns=_now_ns(),
            seq=session.next_seq(),
            session_id=session.session_id,
        )
        await session.websocket.send_json(payload)
        return

    if isinstance(frame, ControllerStatusFrame):
        payload = status_to_wire(frame, seq=session.next_seq(), session_id=session.session_id)
        await session.websocket.send_json(payload)
        return

    if isinstance(frame, ControllerErrorFrame):
        payload = error_to_wire(frame, seq=session.next_seq(), session_id=session.session_id)
        await session.websocket.send_json(payload)


async def _wait_closed(websocket: WebSocket) -> None:
    # Clients never send; receive only returns once they go away.
    while True:
        message = await websocket.receive()
        if message["type"] == "websocket.disconnect":
            return


@router.websocket("/ws/stream")
async def stream(websocket: WebSocket) -> None:
    await websocket.accept()
    session = _ClientSession(
        websocket=websocket,
        queue=asyncio.Queue(maxsize=64),
        session_id=uuid.uuid4(),
    )
    controller: SweepController = websocket.app.state.controller

    # Send status and the current window before joining the broadcast stream.
    await _send_frame(session, controller.status())
    await _send_frame(session, controller.zoom.current_event())
    hub = _get_hub(websocket)
    hub.register(session)
    closed = asyncio.ensure_future(_wait_closed(websocket))

    try:
        while True:
            getter = asyncio.ensure_future(session.queue.get())
            done, _ = await asyncio.wait({getter, closed}, return_when=asyncio.FIRST_COMPLETED)
            if getter not in done:
                getter.cancel()
                break
            await _send_frame(session, getter.result())
    except WebSocketDisconnect:
        pass
    finally:
        closed.cancel()
        hub.unregister(session)
        logger.debug("Stream client %s disconnected", session.session_id)
