"""WebSocket relay server: authentication, room protocol and fan-out."""

from __future__ import annotations

import asyncio
import logging
import signal
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from http import HTTPStatus
from typing import Any

from websockets.asyncio.server import ServerConnection, serve
from websockets.exceptions import ConnectionClosed
from websockets.http11 import Request, Response

from ..common.constants import (
    DEFAULT_HOST,
    DEFAULT_PORT,
    HEALTH_PATH,
    INACTIVITY_TIMEOUT,
    MAX_ROOM_AGE,
    SEND_TIMEOUT,
    SERVER_PING_INTERVAL,
    SWEEP_INTERVAL,
)
from ..common.errors import AuthenticationError, ProtocolError, ProtocolSequenceError
from ..common.protocol import (
    MessageType,
    decode_message,
    deserialize_join_room,
    deserialize_leave_room,
    deserialize_ping,
    deserialize_request_sync,
    deserialize_sync_event,
    deserialize_sync_response,
    serialize_authenticated,
    serialize_error,
    serialize_pong,
    serialize_remote_event,
    serialize_sync_request,
    serialize_sync_state,
    write_message,
)
from .connection import Connection, ConnectionGate, ServerTransport
from .liveness import RoomSweeper
from .registry import RoomRegistry
from .router import BroadcastRouter

logger = logging.getLogger(__name__)

# WebSocket close code for policy violations (auth failure, bad sequencing)
CLOSE_POLICY_VIOLATION = 1008
CLOSE_REPLACED = 4000
CLOSE_GOING_AWAY = 1001


@dataclass
class ServerConfig:
    api_key: str
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    sweep_interval: float = SWEEP_INTERVAL
    inactivity_timeout: float = INACTIVITY_TIMEOUT
    max_room_age: float | None = MAX_ROOM_AGE
    ping_interval: float | None = SERVER_PING_INTERVAL
    send_timeout: float = SEND_TIMEOUT


Handler = Callable[[Connection, dict[str, Any]], Awaitable[None]]


class RelayServer:
    def __init__(
        self, config: ServerConfig, clock: Callable[[], float] = time.monotonic
    ) -> None:
        self.config = config
        self.gate = ConnectionGate(config.api_key)
        self.router = BroadcastRouter(config.send_timeout)
        self.registry = RoomRegistry(self.router, clock=clock)
        self.sweeper = RoomSweeper(
            self.registry,
            interval=config.sweep_interval,
            inactivity_timeout=config.inactivity_timeout,
            max_age=config.max_room_age,
        )
        self.connections: dict[str, Connection] = {}
        self._stop_event: asyncio.Event | None = None
        self._handlers: dict[MessageType, Handler] = {
            MessageType.JOIN_ROOM: self._handle_join_room,
            MessageType.LEAVE_ROOM: self._handle_leave_room,
            MessageType.SYNC_EVENT: self._handle_sync_event,
            MessageType.REQUEST_SYNC: self._handle_request_sync,
            MessageType.SYNC_RESPONSE: self._handle_sync_response,
            MessageType.PING: self._handle_ping,
        }

    async def start(self) -> None:
        self._stop_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self.stop)
            except (NotImplementedError, RuntimeError):
                pass  # not on the main thread, or unsupported platform

        async with serve(
            self.handle_connection,
            self.config.host,
            self.config.port,
            process_request=self._process_request,
            ping_interval=self.config.ping_interval,
        ) as server:
            addr = server.sockets[0].getsockname()
            print(f"Relay listening on {addr[0]}:{addr[1]}")
            logger.info(
                f"Sweeping every {self.config.sweep_interval:.0f}s, "
                f"inactivity timeout {self.config.inactivity_timeout:.0f}s"
            )
            self.sweeper.start()
            try:
                await self._stop_event.wait()
            finally:
                await self.sweeper.stop()
                await self.close_all()
        print("Relay stopped")

    def stop(self) -> None:
        logger.info("Shutdown requested")
        if self._stop_event is not None:
            self._stop_event.set()

    async def close_all(self) -> int:
        """Close every open connection with "going away". Returns how many."""
        connections = list(self.connections.values())
        if connections:
            logger.info(f"Closing {len(connections)} open connection(s)")
        for connection in connections:
            try:
                await connection.transport.close(CLOSE_GOING_AWAY, "Server shutting down")
            except (ConnectionClosed, OSError):
                pass
        return len(connections)

    def _process_request(
        self, connection: ServerConnection, request: Request
    ) -> Response | None:
        """Answer health checks over plain HTTP; everything else upgrades."""
        if request.path == HEALTH_PATH:
            return connection.respond(HTTPStatus.OK, "OK\n")
        return None

    async def handle_connection(self, websocket: ServerTransport) -> None:
        connection = Connection(websocket)
        self.connections[connection.id] = connection
        logger.debug(f"Connection opened: {connection.id}")
        try:
            async for raw in websocket:  # type: ignore[attr-defined]
                if connection.superseded:
                    break
                if not await self._handle_frame(connection, raw):
                    break
        except (ConnectionClosed, OSError):
            pass  # Client disconnected
        except Exception as e:
            logger.error(
                f"Unexpected error for {connection.describe()}: {type(e).__name__}: {e}",
                exc_info=True,
            )
        finally:
            self.connections.pop(connection.id, None)
            await self.registry.drop_connection(connection)
            logger.debug(f"Connection closed: {connection.describe()}")

    async def _handle_frame(self, connection: Connection, raw: str | bytes) -> bool:
        """Process one frame. Returns False once the connection must close."""
        try:
            msg_type, payload = decode_message(raw)
        except ProtocolError as e:
            if not connection.is_authenticated:
                return await self._reject(connection, ProtocolSequenceError("Not authenticated"))
            await self._send_error(connection, str(e))
            return True

        try:
            if self.gate.admit(connection, msg_type, payload):
                logger.debug(f"Connection {connection.id} authenticated")
                await write_message(
                    connection.transport,
                    MessageType.AUTHENTICATED,
                    serialize_authenticated(True),
                )
                return True
            handler = self._handlers.get(msg_type)
            if handler is None:
                raise ProtocolError(f"Unexpected message type: {msg_type.value}")
            await handler(connection, payload)
        except AuthenticationError as e:
            logger.warning(f"Authentication failed for {connection.id}: {e}")
            await write_message(
                connection.transport,
                MessageType.AUTHENTICATED,
                serialize_authenticated(False),
            )
            await connection.transport.close(CLOSE_POLICY_VIOLATION, "Authentication failed")
            return False
        except ProtocolSequenceError as e:
            return await self._reject(connection, e)
        except ProtocolError as e:
            await self._send_error(connection, str(e))
        return True

    async def _reject(self, connection: Connection, error: ProtocolSequenceError) -> bool:
        logger.warning(f"Closing {connection.describe()}: {error}")
        await self._send_error(connection, str(error))
        await connection.transport.close(CLOSE_POLICY_VIOLATION, str(error))
        return False

    async def _send_error(self, connection: Connection, message: str) -> None:
        await write_message(connection.transport, MessageType.ERROR, serialize_error(message))

    def _require_room(self, connection: Connection, room_id: str) -> str:
        if connection.room_id != room_id or connection.member_id is None:
            raise ProtocolSequenceError(f"Not joined to room {room_id}")
        return connection.member_id

    async def _handle_join_room(self, connection: Connection, payload: dict[str, Any]) -> None:
        room_id, member_id, metadata = deserialize_join_room(payload)
        if connection.room_id is not None and connection.room_id != room_id:
            await self.registry.drop_connection(connection)
        result = await self.registry.join(
            room_id,
            connection,
            member_id,
            username=metadata.username if metadata else None,
            metadata=metadata,
        )
        if result.replaced is not None:
            logger.info(f"{member_id} reconnected, closing stale connection {result.replaced.id}")
            try:
                await result.replaced.transport.close(CLOSE_REPLACED, "Replaced by a newer connection")
            except (ConnectionClosed, OSError):
                pass

    async def _handle_leave_room(self, connection: Connection, payload: dict[str, Any]) -> None:
        room_id, user_id = deserialize_leave_room(payload)
        member_id = self._require_room(connection, room_id)
        if user_id != member_id:
            logger.debug(f"leave-room for {user_id} on connection bound to {member_id}")
        await self.registry.leave(room_id, member_id)
        connection.unbind()

    async def _handle_sync_event(self, connection: Connection, payload: dict[str, Any]) -> None:
        room_id, data = deserialize_sync_event(payload)
        member_id = self._require_room(connection, room_id)
        report = await self.registry.relay(
            room_id,
            member_id,
            MessageType.REMOTE_EVENT,
            serialize_remote_event(data, member_id),
        )
        logger.debug(
            f"{data.get('action')} from {member_id} in {room_id} -> "
            f"{len(report.delivered)} delivered, {len(report.failures)} failed"
        )

    async def _handle_request_sync(self, connection: Connection, payload: dict[str, Any]) -> None:
        room_id, data = deserialize_request_sync(payload)
        member_id = self._require_room(connection, room_id)
        await self.registry.relay(
            room_id,
            member_id,
            MessageType.SYNC_REQUEST,
            serialize_sync_request(data, member_id),
        )

    async def _handle_sync_response(self, connection: Connection, payload: dict[str, Any]) -> None:
        room_id, target_id, data = deserialize_sync_response(payload)
        self._require_room(connection, room_id)
        await self.registry.send_to_member(
            room_id, target_id, MessageType.SYNC_STATE, serialize_sync_state(data)
        )

    async def _handle_ping(self, connection: Connection, payload: dict[str, Any]) -> None:
        timestamp = deserialize_ping(payload)
        if connection.room_id is not None:
            await self.registry.touch(connection.room_id)
        await write_message(connection.transport, MessageType.PONG, serialize_pong(timestamp))
