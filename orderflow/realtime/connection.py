"""WebSocket-backed connection handle."""

from __future__ import annotations

import asyncio
import logging
from typing import Any
from uuid import uuid4

from fastapi import WebSocket
from starlette.websockets import WebSocketState

logger = logging.getLogger(__name__)

_CLOSE = object()


class QueuedWebSocketConnection:
    """Buffers outbound events in an asyncio queue drained by a writer task.

    ``send`` may be called from worker threads (sync endpoints run in a
    threadpool); it hands the message to the event loop without blocking.
    Once the writer has stopped, ``send`` raises ``ConnectionError`` so the
    registry drops the connection instead of queueing for a dead socket.
    """

    def __init__(self, websocket: WebSocket, loop: asyncio.AbstractEventLoop | None = None) -> None:
        self.connection_id: str = uuid4().hex
        self.websocket = websocket
        self._loop = loop or asyncio.get_running_loop()
        self._queue: asyncio.Queue[Any] = asyncio.Queue()
        self.closed = False

    def send(self, message: dict[str, Any]) -> None:
        if self.closed:
            raise ConnectionError(f"Connection {self.connection_id} is closed")
        try:
            self._loop.call_soon_threadsafe(self._queue.put_nowait, message)
        except RuntimeError:
            logger.debug("[REALTIME] Event loop closed, dropping message for %s", self.connection_id)

    def close(self) -> None:
        if self.closed:
            return
        try:
            self._loop.call_soon_threadsafe(self._queue.put_nowait, _CLOSE)
        except RuntimeError:
            logger.debug("[REALTIME] Event loop closed before %s could be closed", self.connection_id)

    async def run_writer(self) -> None:
        try:
            while True:
                message = await self._queue.get()
                if message is _CLOSE:
                    break
                if self.websocket.application_state != WebSocketState.CONNECTED:
                    break
                try:
                    await self.websocket.send_json(message)
                except Exception:
                    logger.warning("[REALTIME] Writer for %s stopped after send failure", self.connection_id, exc_info=True)
                    break
        finally:
            self.closed = True
