"""Live connections the gateway can deliver events to."""

from __future__ import annotations

import asyncio
import logging
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Optional

from fastapi import WebSocket

logger = logging.getLogger(__name__)


def build_frame(event: str, data: dict[str, Any]) -> dict[str, Any]:
    """Outbound envelope shared by every event-stream frame."""
    return {
        "type": event,
        "data": data,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


class Connection(ABC):
    """A participant's persistent connection.

    ``deliver`` must never block: the gateway calls it while fanning out to
    every member of a session.
    """

    def __init__(self, connection_id: Optional[str] = None) -> None:
        self.connection_id = connection_id or uuid.uuid4().hex

    @abstractmethod
    def deliver(self, event: str, data: dict[str, Any]) -> None:
        ...

    async def close(self) -> None:
        """Stop delivering to this connection."""


class QueuedConnection(Connection):
    """Buffers frames in a bounded queue drained by a writer task.

    A slow peer fills its own queue and starts losing frames; it never
    holds up delivery to anyone else.
    """

    def __init__(self, queue_size: int = 100, connection_id: Optional[str] = None) -> None:
        super().__init__(connection_id)
        self._queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue(maxsize=queue_size)
        self._writer: Optional[asyncio.Task[None]] = None
        self._closed = False

    def start(self) -> None:
        if self._writer is None:
            self._writer = asyncio.create_task(self._drain())

    def deliver(self, event: str, data: dict[str, Any]) -> None:
        if self._closed:
            return
        try:
            self._queue.put_nowait(build_frame(event, data))
        except asyncio.QueueFull:
            logger.warning(
                "Outbound queue full for connection %s, dropping %s",
                self.connection_id,
                event,
            )

    async def _drain(self) -> None:
        while True:
            frame = await self._queue.get()
            try:
                await self._write(frame)
            except Exception as exc:
                logger.warning(
                    "Delivery to connection %s failed, closing writer: %s",
                    self.connection_id,
                    exc,
                )
                self._closed = True
                return

    @abstractmethod
    async def _write(self, frame: dict[str, Any]) -> None:
        ...

    async def flush(self) -> None:
        """Wait until every queued frame has been written (or dropped)."""
        while not self._queue.empty() and not self._closed and self._writer is not None:
            await asyncio.sleep(0)

    async def close(self) -> None:
        self._closed = True
        if self._writer is not None:
            self._writer.cancel()
            try:
                await self._writer
            except asyncio.CancelledError:
                pass
            self._writer = None


class WebSocketConnection(QueuedConnection):
    def __init__(self, websocket: WebSocket, queue_size: int = 100) -> None:
        super().__init__(queue_size)
        self._websocket = websocket

    async def _write(self, frame: dict[str, Any]) -> None:
        await self._websocket.send_json(frame)
