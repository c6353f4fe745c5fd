# bidirectional chat channel
from __future__ import annotations

from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol

import socketio

from utils.logger import get_logger

_logger = get_logger(__name__)

EventHandler = Callable[..., Awaitable[None]]

DISCONNECT = "disconnect"


class ChatConnectionError(Exception):
    pass


class ChatTransport(Protocol):
    """What the messaging client needs from a connection. Reconnection is not its job."""

    @property
    def connected(self) -> bool: ...

    async def connect(self, timeout: float) -> None: ...

    async def disconnect(self) -> None: ...

    async def emit(self, event: str, data: Any) -> None: ...

    def on(self, event: str, handler: EventHandler) -> None: ...


class SocketIOTransport:
    """
    ChatTransport over a socket.io server.

    The library's own reconnection is switched off: retry budget and delays
    belong to the messaging client. Every connect builds a fresh AsyncClient
    so a manual retry never reuses a half-open connection.
    """

    def __init__(self, url: str, token_provider: Callable[[], Optional[str]]):
        self.url = url
        self._token_provider = token_provider
        self._handlers: Dict[str, List[EventHandler]] = {}
        self._sio: Optional[socketio.AsyncClient] = None

    @property
    def connected(self) -> bool:
        return self._sio is not None and self._sio.connected

    def on(self, event: str, handler: EventHandler) -> None:
        self._handlers.setdefault(event, []).append(handler)
        if self._sio is not None:
            self._sio.on(event, self._dispatcher(event))

    def _dispatcher(self, event: str) -> EventHandler:
        async def dispatch(*args):
            for handler in list(self._handlers.get(event, [])):
                await handler(*args)

        return dispatch

    async def connect(self, timeout: float) -> None:
        await self.disconnect()
        sio = socketio.AsyncClient(reconnection=False, logger=False, engineio_logger=False)
        for event in self._handlers:
            sio.on(event, self._dispatcher(event))

        token = self._token_provider()
        try:
            await sio.connect(
                self.url,
                auth={"token": token} if token else None,
                transports=["websocket", "polling"],
                wait_timeout=timeout,
            )
        except socketio.exceptions.ConnectionError as e:
            raise ChatConnectionError(str(e)) from e
        self._sio = sio

    async def disconnect(self) -> None:
        sio, self._sio = self._sio, None
        if sio is not None and sio.connected:
            await sio.disconnect()

    async def emit(self, event: str, data: Any) -> None:
        if not self.connected:
            raise ChatConnectionError(f"cannot emit {event}: not connected")
        try:
            await self._sio.emit(event, data)
        except socketio.exceptions.SocketIOError as e:
            raise ChatConnectionError(str(e)) from e
