"""Shared fakes: a manual clock, in-memory transports and a scripted relay."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

import pytest

from video_sync.client.storage import MemoryStore
from video_sync.common.errors import TransportError
from video_sync.common.protocol import (
    MemberInfo,
    MessageType,
    decode_message,
    encode_message,
    serialize_authenticated,
    serialize_pong,
    serialize_room_joined,
)

START_MS = 1_700_000_000_000.0


@dataclass
class ManualTimer:
    when: float
    seq: int
    callback: Callable[[], None]
    cancelled: bool = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualClock:
    """Clock whose time only moves when a test advances it."""

    def __init__(self, start_ms: float = START_MS) -> None:
        self.now = start_ms / 1000
        self._timers: list[ManualTimer] = []
        self._seq = 0

    def now_ms(self) -> float:
        return self.now * 1000

    def monotonic(self) -> float:
        return self.now

    def call_later(self, delay: float, callback: Callable[[], None]) -> ManualTimer:
        self._seq += 1
        timer = ManualTimer(self.now + delay, self._seq, callback)
        self._timers.append(timer)
        return timer

    @property
    def pending(self) -> list[ManualTimer]:
        return [t for t in self._timers if not t.cancelled]

    def advance(self, seconds: float) -> None:
        """Move time forward, firing due timers in order."""
        target = self.now + seconds
        while True:
            due = sorted(
                (t for t in self._timers if not t.cancelled and t.when <= target),
                key=lambda t: (t.when, t.seq),
            )
            if not due:
                break
            timer = due[0]
            self._timers.remove(timer)
            self.now = timer.when
            timer.callback()
        self.now = target


class FakeTransport:
    """Client transport whose peer is the test."""

    def __init__(
        self, responder: Callable[[FakeTransport, MessageType, dict[str, Any]], None] | None = None
    ) -> None:
        self.sent: list[tuple[MessageType, dict[str, Any]]] = []
        self.closed = False
        self._responder = responder
        self._incoming: asyncio.Queue[str | None] = asyncio.Queue()

    async def send(self, message: str) -> None:
        if self.closed:
            raise ConnectionResetError("transport is closed")
        msg_type, payload = decode_message(message)
        self.sent.append((msg_type, payload))
        if self._responder is not None:
            self._responder(self, msg_type, payload)

    async def close(self) -> None:
        self.closed = True
        self._incoming.put_nowait(None)

    def feed(self, msg_type: MessageType, payload: dict[str, Any] | None = None) -> None:
        self._incoming.put_nowait(encode_message(msg_type, payload))

    def feed_raw(self, raw: str) -> None:
        self._incoming.put_nowait(raw)

    def server_close(self) -> None:
        self._incoming.put_nowait(None)

    def __aiter__(self) -> AsyncIterator[str]:
        return self._frames()

    async def _frames(self) -> AsyncIterator[str]:
        while True:
            item = await self._incoming.get()
            if item is None:
                return
            yield item

    def sent_of(self, msg_type: MessageType) -> list[dict[str, Any]]:
        return [payload for t, payload in self.sent if t == msg_type]


@dataclass
class FakeConnector:
    """Stands in for the relay: answers authenticate, join-room and ping."""

    auth_ok: bool = True
    auto_join: bool = True
    auto_pong: bool = True
    fail: bool = False
    gate: asyncio.Event | None = None
    calls: int = 0
    transports: list[FakeTransport] = field(default_factory=list)

    async def __call__(self, url: str) -> FakeTransport:
        self.calls += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.fail:
            raise TransportError(f"Failed to connect to {url}: connection refused")
        transport = FakeTransport(self._respond)
        self.transports.append(transport)
        return transport

    @property
    def latest(self) -> FakeTransport:
        return self.transports[-1]

    def _respond(self, transport: FakeTransport, msg_type: MessageType, payload: dict[str, Any]) -> None:
        if msg_type == MessageType.AUTHENTICATE:
            transport.feed(MessageType.AUTHENTICATED, serialize_authenticated(self.auth_ok))
            if not self.auth_ok:
                transport.server_close()
        elif msg_type == MessageType.JOIN_ROOM and self.auto_join:
            me = MemberInfo(payload["userId"], payload["userId"], True)
            transport.feed(
                MessageType.ROOM_JOINED,
                serialize_room_joined(payload["roomId"], [me], None),
            )
        elif msg_type == MessageType.PING and self.auto_pong:
            transport.feed(MessageType.PONG, serialize_pong(payload.get("timestamp")))


class FakeSocket:
    """Server-side WebSocket; the test plays the client."""

    def __init__(self, fail: bool = False, delay: float = 0.0) -> None:
        self.sent: list[tuple[MessageType, dict[str, Any]]] = []
        self.fail = fail
        self.delay = delay
        self.close_code: int | None = None
        self.close_reason = ""
        self._incoming: asyncio.Queue[str | None] = asyncio.Queue()

    async def send(self, message: str) -> None:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail or self.close_code is not None:
            raise ConnectionResetError("peer gone")
        self.sent.append(decode_message(message))

    async def close(self, code: int = 1000, reason: str = "") -> None:
        if self.close_code is None:
            self.close_code = code
            self.close_reason = reason
        self._incoming.put_nowait(None)

    def feed(self, msg_type: MessageType, payload: dict[str, Any] | None = None) -> None:
        self._incoming.put_nowait(encode_message(msg_type, payload))

    def feed_raw(self, raw: str) -> None:
        self._incoming.put_nowait(raw)

    def hang_up(self) -> None:
        self._incoming.put_nowait(None)

    def __aiter__(self) -> AsyncIterator[str]:
        return self._frames()

    async def _frames(self) -> AsyncIterator[str]:
        while True:
            item = await self._incoming.get()
            if item is None:
                return
            yield item

    def received(self, msg_type: MessageType) -> list[dict[str, Any]]:
        return [payload for t, payload in self.sent if t == msg_type]

    @property
    def types(self) -> list[MessageType]:
        return [t for t, _ in self.sent]


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def connector() -> FakeConnector:
    return FakeConnector()


@pytest.fixture
def make_socket() -> type[FakeSocket]:
    return FakeSocket


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def settle() -> Callable[..., Awaitable[None]]:
    """Let the session worker and its helper tasks run until quiet."""

    async def _settle(session: Any, rounds: int = 25) -> None:
        for _ in range(rounds):
            await asyncio.sleep(0)
            await session.wait_idle()

    return _settle
