"""Client channel abstraction and its WebSocket implementation.

The coordinator only ever talks to a Channel: a non-blocking ``send`` and a
``close``. Delivery on the WebSocket side is done by a per-connection sender
task draining a bounded queue, so a slow client never blocks a broadcast and
frames reach each client in the order they were sent. A client that falls
more than ``max_queue`` frames behind is cut off.
"""
import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Optional

from fastapi import WebSocket

from .errors import DeliveryFailure

logger = logging.getLogger(__name__)

# Queue marker telling the sender task to stop
_CLOSE = object()

DEFAULT_SEND_QUEUE_MAX = 256

NORMAL_CLOSURE = 1000
# "Try again later": used when a client cannot keep up with the room
TRY_AGAIN_LATER = 1013


class Channel(ABC):
    """Duplex, message-oriented transport to one client."""

    @property
    @abstractmethod
    def closed(self) -> bool:
        """True once the channel has been closed from either side."""

    @abstractmethod
    def send(self, text: str) -> None:
        """Queue a text frame for delivery without waiting for it.

        Raises:
            DeliveryFailure: If the channel is already closed or cannot
                accept more frames.
        """

    @abstractmethod
    def close(self) -> None:
        """Close the channel. Closing twice is a no-op."""


class WebSocketChannel(Channel):
    """Channel backed by an accepted FastAPI WebSocket.

    Usage:
        channel = WebSocketChannel(websocket, max_queue=256)
        channel.start()
        ...
        channel.close()
        await channel.wait_closed()
    """

    def __init__(self, websocket: WebSocket, max_queue: int = DEFAULT_SEND_QUEUE_MAX) -> None:
        self._websocket = websocket
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=max(1, int(max_queue)))
        self._closed = False
        self._close_code = NORMAL_CLOSURE
        self._sender: Optional[asyncio.Task] = None

    @property
    def closed(self) -> bool:
        return self._closed

    def start(self) -> None:
        """Start the sender task. Must be called from the event loop."""
        if self._sender is None:
            self._sender = asyncio.create_task(self._sender_loop())

    def send(self, text: str) -> None:
        if self._closed:
            raise DeliveryFailure("WebSocket channel is closed")
        try:
            self._queue.put_nowait(text)
        except asyncio.QueueFull:
            logger.warning(
                f"[WS] Send queue full ({self._queue.maxsize} frames), dropping slow client"
            )
            self._closed = True
            self._abort(TRY_AGAIN_LATER)
            raise DeliveryFailure("WebSocket send queue is full") from None

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            self._queue.put_nowait(_CLOSE)
        except asyncio.QueueFull:
            self._abort(NORMAL_CLOSURE)

    async def wait_closed(self) -> None:
        """Wait for queued frames to drain and the socket to close."""
        if self._sender is not None:
            await self._sender

    def _abort(self, code: int) -> None:
        """Discard pending frames and have the sender close the socket with ``code``."""
        self._close_code = code
        dropped = 0
        while not self._queue.empty():
            self._queue.get_nowait()
            dropped += 1
        if dropped:
            logger.debug(f"[WS] Discarded {dropped} pending frame(s)")
        self._queue.put_nowait(_CLOSE)

    async def _sender_loop(self) -> None:
        while True:
            item = await self._queue.get()
            if item is _CLOSE:
                break
            try:
                await self._websocket.send_text(item)
            except Exception as e:
                logger.debug(f"[WS] Send failed, marking channel closed: {e}")
                self._closed = True
                break

        try:
            await self._websocket.close(code=self._close_code)
        except Exception as e:
            # Already closed by the peer
            logger.debug(f"[WS] Close after disconnect ignored: {e}")
