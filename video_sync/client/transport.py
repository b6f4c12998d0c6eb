"""Client transports. A transport is one open connection to the relay."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Protocol

from websockets.asyncio.client import connect
from websockets.exceptions import WebSocketException

from ..common.constants import CONNECT_TIMEOUT
from ..common.errors import TransportError


class Transport(Protocol):
    """Text-frame duplex channel; iteration ends when the peer closes."""

    async def send(self, message: str) -> None: ...

    async def close(self) -> None: ...

    def __aiter__(self) -> AsyncIterator[str | bytes]: ...


Connector = Callable[[str], Awaitable[Transport]]


async def connect_websocket(url: str, open_timeout: float = CONNECT_TIMEOUT) -> Transport:
    """Open a WebSocket to the relay.

    Library keepalive pings are disabled; liveness is tracked by the
    session's own ping/pong heartbeat.
    """
    try:
        return await connect(url, open_timeout=open_timeout, ping_interval=None)
    except (OSError, WebSocketException, asyncio.TimeoutError) as e:
        raise TransportError(f"Failed to connect to {url}: {e}") from e
