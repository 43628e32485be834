"""
transport.py - Duplex Message Transport

The SessionManager talks to the race server through a Transport created by a
factory:

    factory(url, handlers) -> Transport

The factory must not block. It raises TransportError when the transport
cannot even be created; connection failures that happen later are reported
through handlers.on_error followed by handlers.on_close.

WebSocketTransport is the production implementation on the websockets
asyncio client. Outbound frames are queued and drained by a writer task so
send() never blocks the caller.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional, Protocol, Union

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

logger = logging.getLogger(__name__)

DEFAULT_OPEN_TIMEOUT = 10.0


class TransportError(Exception):
    """Transport could not be created or used."""
    pass


@dataclass(frozen=True)
class TransportHandlers:
    """Callbacks a transport invokes, in order: open, message*, error?, close."""
    on_open: Callable[[], None]
    on_message: Callable[[Union[str, bytes]], None]
    on_error: Callable[[BaseException], None]
    on_close: Callable[[], None]


class Transport(Protocol):
    def send(self, text: str) -> None: ...

    def close(self) -> None: ...


TransportFactory = Callable[[str, TransportHandlers], Transport]


# =============================================================================
# WEBSOCKET TRANSPORT
# =============================================================================

class WebSocketTransport:
    """
    One WebSocket connection driven by a background task.

    Must be created from inside a running event loop.
    """

    def __init__(
        self,
        url: str,
        handlers: TransportHandlers,
        open_timeout: float = DEFAULT_OPEN_TIMEOUT,
    ):
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError as exc:
            raise TransportError("WebSocketTransport needs a running event loop") from exc
        self.url = url
        self.open_timeout = open_timeout
        self._handlers = handlers
        self._outbox: asyncio.Queue = asyncio.Queue()
        self._closing = False
        self._task = loop.create_task(self._run())

    @property
    def closed(self) -> bool:
        return self._closing or self._task.done()

    def send(self, text: str) -> None:
        if self.closed:
            raise TransportError("transport is closed")
        self._outbox.put_nowait(text)

    def close(self) -> None:
        if self._closing:
            return
        self._closing = True
        self._task.cancel()

    async def wait_closed(self) -> None:
        try:
            await self._task
        except asyncio.CancelledError:
            pass

    async def _drain(self, ws: Any) -> None:
        while True:
            text = await self._outbox.get()
            await ws.send(text)

    async def _run(self) -> None:
        writer: Optional[asyncio.Task] = None
        try:
            async with websockets.connect(self.url, open_timeout=self.open_timeout) as ws:
                self._handlers.on_open()
                writer = asyncio.create_task(self._drain(ws))
                async for message in ws:
                    self._handlers.on_message(message)
                    if writer.done():
                        # surfaces a failed send as a transport error
                        writer.result()
        except ConnectionClosed as exc:
            if not self._closing:
                logger.warning("connection to %s closed abnormally: %s", self.url, exc)
                self._handlers.on_error(exc)
        except (OSError, WebSocketException, asyncio.TimeoutError) as exc:
            if not self._closing:
                logger.warning("transport %s failed: %s", self.url, exc)
                self._handlers.on_error(exc)
        finally:
            if writer is not None:
                writer.cancel()
            self._closing = True
            self._handlers.on_close()
