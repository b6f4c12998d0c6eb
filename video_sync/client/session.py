"""ReconnectingSession: one logical room membership that survives network loss.

All state changes happen on a single worker task that drains an event
queue. Transport callbacks, timers and user calls only post events, so a
close racing a heartbeat or a leave racing a connect attempt is resolved
by queue order rather than by locks. Events tied to one transport carry
the generation that opened it; anything from an older generation is
ignored.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Coroutine
from dataclasses import dataclass
from enum import Enum, auto
from typing import Any

from websockets.exceptions import ConnectionClosed

from ..common.errors import (
    AuthenticationError,
    ProtocolError,
    StaleEventError,
    TransportError,
    VideoSyncError,
)
from ..common.protocol import (
    MemberInfo,
    MessageType,
    PlaybackAction,
    PlaybackEvent,
    PlayerState,
    RoomMetadata,
    decode_message,
    deserialize_authenticated,
    deserialize_error,
    deserialize_remote_event,
    deserialize_room_joined,
    deserialize_sync_request,
    deserialize_sync_state,
    deserialize_user_list,
    serialize_authenticate,
    serialize_join_room,
    serialize_leave_room,
    serialize_ping,
    serialize_request_sync,
    serialize_sync_event,
    serialize_sync_response,
    write_message,
)
from ..common.rooms import generate_room_id, normalize_room_id
from .clock import Clock, SystemClock, TimerHandle
from .player import VideoHandle
from .storage import (
    KeyValueStore,
    SavedSession,
    clear_session,
    load_or_create_member_id,
    save_session,
    touch_session,
)
from .transport import Connector, Transport, connect_websocket
from .types import Notice, SessionConfig, SessionState

logger = logging.getLogger(__name__)

StateCallback = Callable[[SessionState], Coroutine[Any, Any, None]]
NoticeCallback = Callable[[Notice], Coroutine[Any, Any, None]]
RosterCallback = Callable[[list[MemberInfo]], Coroutine[Any, Any, None]]
RemoteEventCallback = Callable[[PlaybackEvent], Coroutine[Any, Any, None]]


def reconnect_delay(attempt: int, base: float, maximum: float) -> float:
    """Backoff before reconnect ``attempt`` (1-based): base * 2^(attempt-1), capped."""
    if attempt < 1:
        raise ValueError("attempt must be >= 1")
    # Cap the exponent; the result is clamped anyway
    return min(base * 2 ** min(attempt - 1, 32), maximum)


class _EventKind(Enum):
    USER_JOIN = auto()
    USER_LEAVE = auto()
    TRANSPORT_OPENED = auto()
    CONNECT_FAILED = auto()
    FRAME = auto()
    TRANSPORT_CLOSED = auto()
    HANDSHAKE_TIMEOUT = auto()
    BACKOFF_ELAPSED = auto()
    HEARTBEAT_TICK = auto()
    DRIFT_TICK = auto()
    SETTLE_ELAPSED = auto()
    LOCAL_CHANGE = auto()
    SHUTDOWN = auto()


@dataclass
class _Event:
    kind: _EventKind
    generation: int = 0
    data: Any = None


class ReconnectingSession:
    """Client side of a watch party.

    Example usage:
        async def main():
            player = SimulatedPlayer()
            session = ReconnectingSession(
                "ws://localhost:3000", api_key, MemoryStore(), player=player
            )

            @session.on_notice
            async def show(notice):
                print(notice.message)

            await session.start()
            room_id = await session.create_room(RoomMetadata(title="Movie night"))
            ...
            await session.close()
    """

    def __init__(
        self,
        server_url: str,
        api_key: str,
        store: KeyValueStore,
        player: VideoHandle | None = None,
        config: SessionConfig | None = None,
        clock: Clock | None = None,
        connector: Connector | None = None,
        username: str | None = None,
    ) -> None:
        self.server_url = server_url
        self.api_key = api_key
        self.username = username
        self.config = config or SessionConfig()
        self._store = store
        self._clock: Clock = clock or SystemClock()
        self._connector: Connector = connector or connect_websocket
        self.member_id = load_or_create_member_id(store, self._clock.now_ms())

        # Membership
        self._state = SessionState.IDLE
        self._desired = False
        self.room_id: str | None = None
        self._join_metadata: RoomMetadata | None = None
        self.metadata: RoomMetadata | None = None
        self.roster: list[MemberInfo] = []
        self.last_error: VideoSyncError | None = None

        # Transport
        self._generation = 0
        self._transport: Transport | None = None
        self._connect_task: asyncio.Task[None] | None = None
        self._reader_task: asyncio.Task[None] | None = None
        self._background: set[asyncio.Task[None]] = set()

        # Timers
        self.attempt = 0
        self.next_retry_delay: float | None = None
        self.missed_heartbeats = 0
        self._backoff_timer: TimerHandle | None = None
        self._handshake_timer: TimerHandle | None = None
        self._heartbeat_timer: TimerHandle | None = None
        self._drift_timer: TimerHandle | None = None
        self._settle_timer: TimerHandle | None = None
        self._settle_token = 0

        # Echo suppression
        self.applying_remote = False
        self.suppressed_count = 0

        self._queue: asyncio.Queue[_Event] = asyncio.Queue()
        self._worker: asyncio.Task[None] | None = None

        self._player = player
        if player is not None:
            player.add_listener(self.notify_local_change)

        self._on_state_change_callbacks: list[StateCallback] = []
        self._on_notice_callbacks: list[NoticeCallback] = []
        self._on_roster_callbacks: list[RosterCallback] = []
        self._on_remote_event_callbacks: list[RemoteEventCallback] = []

    # Decorators

    def on_state_change(self, callback: StateCallback) -> StateCallback:
        """Register a callback for every state transition."""
        self._on_state_change_callbacks.append(callback)
        return callback

    def on_notice(self, callback: NoticeCallback) -> NoticeCallback:
        """Register a callback for user-visible status notices."""
        self._on_notice_callbacks.append(callback)
        return callback

    def on_roster(self, callback: RosterCallback) -> RosterCallback:
        """Register a callback for room membership changes."""
        self._on_roster_callbacks.append(callback)
        return callback

    def on_remote_event(self, callback: RemoteEventCallback) -> RemoteEventCallback:
        """Register a callback for fresh remote playback events, before they are applied."""
        self._on_remote_event_callbacks.append(callback)
        return callback

    # Public API

    @property
    def state(self) -> SessionState:
        return self._state

    async def start(self) -> None:
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self._run())

    async def join_room(self, room_id: str, metadata: RoomMetadata | None = None) -> None:
        """Join (or rejoin) a room. Any current membership is left first."""
        room_id = normalize_room_id(room_id)
        await self.start()
        self._post(_Event(_EventKind.USER_JOIN, data=(room_id, metadata)))

    async def create_room(self, metadata: RoomMetadata | None = None) -> str:
        """Join a freshly generated room id, offering ``metadata`` to the server."""
        room_id = generate_room_id()
        await self.join_room(room_id, metadata or RoomMetadata())
        return room_id

    async def leave_room(self) -> None:
        await self.start()
        self._post(_Event(_EventKind.USER_LEAVE))

    def notify_local_change(self, action: PlaybackAction) -> None:
        """Record a local player change; sent unless it is the echo of a remote event."""
        player = self._player
        event = PlaybackEvent(
            action,
            self._clock.now_ms(),
            position=player.current_time if player is not None else 0.0,
            playback_rate=player.playback_rate if player is not None else 1.0,
            member_id=self.member_id,
        )
        self._post(_Event(_EventKind.LOCAL_CHANGE, data=event))

    async def wait_idle(self) -> None:
        """Wait until every queued event has been handled."""
        await self._queue.join()

    async def close(self) -> None:
        """Leave the room if any and stop the worker."""
        if self._worker is None:
            return
        if self._state != SessionState.IDLE:
            self._post(_Event(_EventKind.USER_LEAVE))
        self._post(_Event(_EventKind.SHUTDOWN))
        await self._worker
        self._worker = None
        if self._player is not None:
            self._player.remove_listener(self.notify_local_change)
        for task in list(self._background):
            await task

    # Worker

    def _post(self, event: _Event) -> None:
        self._queue.put_nowait(event)

    async def _run(self) -> None:
        while True:
            event = await self._queue.get()
            try:
                if event.kind == _EventKind.SHUTDOWN:
                    return
                await self._dispatch(event)
            except Exception as e:
                logger.error(f"Error handling {event.kind.name}: {e}", exc_info=True)
            finally:
                self._queue.task_done()

    async def _dispatch(self, event: _Event) -> None:
        kind = event.kind
        if kind == _EventKind.USER_JOIN:
            room_id, metadata = event.data
            await self._handle_user_join(room_id, metadata)
        elif kind == _EventKind.USER_LEAVE:
            await self._handle_user_leave()
        elif kind == _EventKind.BACKOFF_ELAPSED:
            self._backoff_timer = None
            if self._state == SessionState.BACKOFF and self._desired:
                await self._begin_connect()
        elif kind == _EventKind.SETTLE_ELAPSED:
            if event.data == self._settle_token:
                self.applying_remote = False
                self._settle_timer = None
        elif kind == _EventKind.LOCAL_CHANGE:
            await self._handle_local_change(event.data)
        elif event.generation != self._generation:
            # Belongs to a transport that has already been replaced
            if kind == _EventKind.TRANSPORT_OPENED:
                self._close_in_background(event.data)
        elif kind == _EventKind.TRANSPORT_OPENED:
            await self._handle_transport_opened(event.data)
        elif kind == _EventKind.CONNECT_FAILED:
            if self._state == SessionState.CONNECTING:
                logger.warning(f"Connection failed: {event.data}")
                self.last_error = event.data
                await self._on_transport_lost()
        elif kind == _EventKind.FRAME:
            await self._handle_frame(event.data)
        elif kind == _EventKind.TRANSPORT_CLOSED:
            if self._state.is_connected:
                logger.info("Connection closed by server")
                await self._on_transport_lost()
        elif kind == _EventKind.HANDSHAKE_TIMEOUT:
            if self._state in (SessionState.AUTHENTICATING, SessionState.JOINING):
                logger.warning(f"No reply to {self._state.value} within {self.config.connect_timeout:.0f}s")
                await self._on_transport_lost()
        elif kind == _EventKind.HEARTBEAT_TICK:
            if self._state == SessionState.ACTIVE:
                await self._heartbeat_tick()
        elif kind == _EventKind.DRIFT_TICK:
            if self._state == SessionState.ACTIVE:
                await self._drift_tick()

    # Lifecycle

    async def _handle_user_join(self, room_id: str, metadata: RoomMetadata | None) -> None:
        if self._state not in (SessionState.IDLE, SessionState.ABANDONED):
            if room_id == self.room_id:
                logger.debug(f"Already in room {room_id}")
                return
            await self._handle_user_leave()

        if self.username and (metadata is None or metadata.username is None):
            base = metadata or RoomMetadata()
            metadata = RoomMetadata(
                username=self.username,
                url=base.url,
                title=base.title,
                platform=base.platform,
            )
        self.room_id = room_id
        self._join_metadata = metadata
        self._desired = True
        self.attempt = 0
        self.last_error = None
        now = self._clock.now_ms()
        save_session(
            self._store,
            SavedSession(
                server_url=self.server_url,
                room_id=room_id,
                api_key=self.api_key,
                timestamp=now,
                last_active=now,
                username=self.username,
                platform=metadata.platform if metadata else None,
                video_url=metadata.url if metadata else None,
            ),
        )
        await self._begin_connect()

    async def _handle_user_leave(self) -> None:
        if self._state == SessionState.IDLE:
            return
        self._desired = False
        self._cancel_backoff()
        self._cancel_session_timers()
        if self._connect_task is not None:
            self._connect_task.cancel()
            self._connect_task = None

        if (
            self._transport is not None
            and self._state in (SessionState.JOINING, SessionState.ACTIVE)
            and self.room_id is not None
        ):
            await self._send(
                MessageType.LEAVE_ROOM,
                serialize_leave_room(self.room_id, self.member_id),
            )
        self._drop_transport()
        clear_session(self._store)

        room_id = self.room_id
        self.room_id = None
        self.metadata = None
        self.roster = []
        self.attempt = 0
        self.next_retry_delay = None
        self._end_remote_apply()
        await self._set_state(SessionState.IDLE)
        logger.info(f"Left room {room_id}")
        await self._notify("Disconnected")

    async def _begin_connect(self) -> None:
        self._generation += 1
        generation = self._generation
        await self._set_state(SessionState.CONNECTING)
        await self._notify("Connecting...")
        self._connect_task = asyncio.create_task(self._open_transport(generation))

    async def _open_transport(self, generation: int) -> None:
        try:
            transport = await self._connector(self.server_url)
        except TransportError as e:
            self._post(_Event(_EventKind.CONNECT_FAILED, generation, e))
        else:
            self._post(_Event(_EventKind.TRANSPORT_OPENED, generation, transport))

    async def _handle_transport_opened(self, transport: Transport) -> None:
        if self._state != SessionState.CONNECTING:
            self._close_in_background(transport)
            return
        self._connect_task = None
        self._transport = transport
        self._reader_task = asyncio.create_task(self._read_loop(self._generation, transport))
        await self._set_state(SessionState.AUTHENTICATING)
        self._handshake_timer = self._schedule(
            self.config.connect_timeout, _EventKind.HANDSHAKE_TIMEOUT
        )
        await self._send(MessageType.AUTHENTICATE, serialize_authenticate(self.api_key))

    async def _read_loop(self, generation: int, transport: Transport) -> None:
        try:
            async for raw in transport:
                self._post(_Event(_EventKind.FRAME, generation, raw))
        except (ConnectionClosed, OSError) as e:
            logger.debug(f"Connection dropped: {e}")
        finally:
            self._post(_Event(_EventKind.TRANSPORT_CLOSED, generation))

    async def _on_transport_lost(self) -> None:
        """The current transport is gone; schedule a reconnect unless the user left."""
        self._cancel_session_timers()
        self._drop_transport()
        self._end_remote_apply()
        if not self._desired or self._state in (
            SessionState.IDLE,
            SessionState.ABANDONED,
            SessionState.BACKOFF,
        ):
            return
        await self._notify("Disconnected", "warning")
        await self._schedule_reconnect()

    async def _schedule_reconnect(self) -> None:
        limit = self.config.max_reconnect_attempts
        if self.attempt >= limit:
            await self._abandon(
                f"Connection lost after {limit} attempts, rejoin to retry"
            )
            return
        self.attempt += 1
        delay = reconnect_delay(
            self.attempt,
            self.config.reconnect_base_delay,
            self.config.reconnect_max_delay,
        )
        self.next_retry_delay = delay
        self._cancel_backoff()
        await self._set_state(SessionState.BACKOFF)
        logger.info(f"Reconnecting in {delay:.0f}s (attempt {self.attempt}/{limit})")
        await self._notify(
            f"Reconnecting in {round(delay)}s... ({self.attempt}/{limit})", "warning"
        )
        self._backoff_timer = self._clock.call_later(
            delay, lambda: self._post(_Event(_EventKind.BACKOFF_ELAPSED))
        )

    async def _abandon(self, reason: str) -> None:
        self._desired = False
        self._cancel_backoff()
        self._cancel_session_timers()
        self._drop_transport()
        self.next_retry_delay = None
        await self._set_state(SessionState.ABANDONED)
        logger.warning(f"Session abandoned: {reason}")
        await self._notify(reason, "error", terminal=True)

    def _drop_transport(self) -> None:
        """Detach from the current transport and close it without waiting."""
        self._generation += 1
        transport, self._transport = self._transport, None
        if self._reader_task is not None:
            self._reader_task.cancel()
            self._reader_task = None
        if transport is not None:
            self._close_in_background(transport)

    def _close_in_background(self, transport: Transport) -> None:
        task = asyncio.create_task(self._close_quietly(transport))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _close_quietly(self, transport: Transport) -> None:
        try:
            await transport.close()
        except (ConnectionClosed, OSError) as e:
            logger.debug(f"Error closing transport: {e}")

    # Inbound frames

    async def _handle_frame(self, raw: str | bytes) -> None:
        try:
            msg_type, payload = decode_message(raw)
        except ProtocolError as e:
            logger.warning(f"Ignoring malformed frame: {e}")
            return

        try:
            if msg_type == MessageType.AUTHENTICATED:
                await self._handle_authenticated(deserialize_authenticated(payload))
            elif msg_type == MessageType.ROOM_JOINED:
                await self._handle_room_joined(payload)
            elif msg_type == MessageType.USER_LIST:
                await self._set_roster(deserialize_user_list(payload))
            elif msg_type == MessageType.REMOTE_EVENT:
                if self._state == SessionState.ACTIVE:
                    await self._apply_remote_event(deserialize_remote_event(payload))
            elif msg_type == MessageType.SYNC_REQUEST:
                if self._state == SessionState.ACTIVE:
                    await self._answer_sync_request(deserialize_sync_request(payload))
            elif msg_type == MessageType.SYNC_STATE:
                if self._state == SessionState.ACTIVE:
                    self._correct_drift(deserialize_sync_state(payload))
            elif msg_type == MessageType.PONG:
                self.missed_heartbeats = 0
            elif msg_type == MessageType.ERROR:
                message = deserialize_error(payload)
                logger.warning(f"Server error: {message}")
                await self._notify(f"Server error: {message}", "error")
            else:
                logger.debug(f"Ignoring unexpected {msg_type.value}")
        except ProtocolError as e:
            logger.warning(f"Ignoring invalid {msg_type.value}: {e}")

    async def _handle_authenticated(self, success: bool) -> None:
        if self._state != SessionState.AUTHENTICATING:
            return
        if not success:
            self.last_error = AuthenticationError("Invalid API key")
            await self._abandon("Authentication failed: invalid API key")
            return
        assert self.room_id is not None
        await self._set_state(SessionState.JOINING)
        await self._send(
            MessageType.JOIN_ROOM,
            serialize_join_room(self.room_id, self.member_id, self._join_metadata),
        )

    async def _handle_room_joined(self, payload: dict[str, Any]) -> None:
        if self._state != SessionState.JOINING:
            return
        room_id, roster, metadata = deserialize_room_joined(payload)
        if self._handshake_timer is not None:
            self._handshake_timer.cancel()
            self._handshake_timer = None
        self.attempt = 0
        self.next_retry_delay = None
        self.missed_heartbeats = 0
        self.metadata = metadata
        await self._set_state(SessionState.ACTIVE)
        touch_session(self._store, self._clock.now_ms())
        self._heartbeat_timer = self._schedule(
            self.config.heartbeat_interval, _EventKind.HEARTBEAT_TICK
        )
        if self.config.drift_correction and self._player is not None:
            self._drift_timer = self._schedule(
                self.config.drift_interval, _EventKind.DRIFT_TICK
            )
        logger.info(f"Joined room {room_id} with {len(roster)} member(s)")
        await self._notify(f"Connected to room {room_id}", "success")
        await self._set_roster(roster)

    async def _set_roster(self, roster: list[MemberInfo]) -> None:
        self.roster = roster
        for callback in self._on_roster_callbacks:
            try:
                await callback(roster)
            except Exception as e:
                logger.error(f"Error in on_roster callback: {e}")

    # Heartbeat

    async def _heartbeat_tick(self) -> None:
        self._heartbeat_timer = self._schedule(
            self.config.heartbeat_interval, _EventKind.HEARTBEAT_TICK
        )
        touch_session(self._store, self._clock.now_ms())
        await self._send(MessageType.PING, serialize_ping(self._clock.now_ms()))
        self.missed_heartbeats += 1
        if self.missed_heartbeats >= self.config.max_missed_heartbeats:
            logger.warning(
                f"{self.missed_heartbeats} heartbeats without a pong, closing connection"
            )
            await self._notify("Connection timed out", "error")
            await self._on_transport_lost()

    # Playback events

    async def _handle_local_change(self, event: PlaybackEvent) -> None:
        if self.applying_remote:
            self.suppressed_count += 1
            logger.debug(f"Not sending {event.action.value}: echo of a remote event")
            return
        if self._state != SessionState.ACTIVE or self.room_id is None:
            logger.debug(f"Dropping {event.action.value}: not connected to a room")
            return
        await self._send(
            MessageType.SYNC_EVENT,
            serialize_sync_event(self.room_id, self.member_id, event),
        )

    async def _apply_remote_event(self, event: PlaybackEvent) -> None:
        try:
            delay_ms = event.check_fresh(self._clock.now_ms(), self.config.stale_threshold_ms)
        except StaleEventError as e:
            logger.info(f"Ignoring stale {event.action.value} from {event.member_id}: {e}")
            return

        for callback in self._on_remote_event_callbacks:
            try:
                await callback(event)
            except Exception as e:
                logger.error(f"Error in on_remote_event callback: {e}")

        player = self._player
        if player is None:
            return
        self._begin_remote_apply()
        if event.action == PlaybackAction.PLAY:
            player.current_time = event.position + delay_ms / 1000
            player.play()
        elif event.action == PlaybackAction.PAUSE:
            player.current_time = event.position
            player.pause()
        elif event.action == PlaybackAction.SEEK:
            player.current_time = event.position
        elif event.action == PlaybackAction.RATE_CHANGE:
            player.playback_rate = event.playback_rate
        logger.debug(f"Applied {event.action.value} from {event.member_id} ({delay_ms:.0f}ms)")

    def _begin_remote_apply(self) -> None:
        self.applying_remote = True
        if self._settle_timer is not None:
            self._settle_timer.cancel()
        self._settle_token += 1
        token = self._settle_token
        self._settle_timer = self._clock.call_later(
            self.config.settle_window,
            lambda: self._post(_Event(_EventKind.SETTLE_ELAPSED, data=token)),
        )

    def _end_remote_apply(self) -> None:
        if self._settle_timer is not None:
            self._settle_timer.cancel()
            self._settle_timer = None
        self._settle_token += 1
        self.applying_remote = False

    # Drift correction

    def _local_state(self) -> PlayerState:
        assert self._player is not None
        return PlayerState(
            current_time=self._player.current_time,
            paused=self._player.paused,
            playback_rate=self._player.playback_rate,
            timestamp=self._clock.now_ms(),
        )

    async def _drift_tick(self) -> None:
        self._drift_timer = self._schedule(self.config.drift_interval, _EventKind.DRIFT_TICK)
        if self._player is None or self.room_id is None:
            return
        await self._send(
            MessageType.REQUEST_SYNC,
            serialize_request_sync(self.room_id, self.member_id, self._local_state()),
        )

    async def _answer_sync_request(self, requester_id: str) -> None:
        if self._player is None or self.room_id is None:
            return
        await self._send(
            MessageType.SYNC_RESPONSE,
            serialize_sync_response(self.room_id, requester_id, self._local_state()),
        )

    def _correct_drift(self, remote: PlayerState) -> None:
        player = self._player
        if player is None:
            return
        now = self._clock.now_ms()
        delay_ms = now - remote.timestamp if remote.timestamp else 0.0
        if delay_ms > self.config.stale_threshold_ms:
            logger.debug(f"Ignoring stale sync state ({delay_ms:.0f}ms old)")
            return
        expected = remote.current_time
        if not remote.paused:
            expected += delay_ms / 1000 * remote.playback_rate
        drift = expected - player.current_time
        if abs(drift) <= self.config.drift_threshold:
            return
        logger.info(f"Correcting drift of {drift:+.2f}s")
        self._begin_remote_apply()
        player.current_time = expected

    # Helpers

    async def _send(self, msg_type: MessageType, payload: dict[str, Any]) -> bool:
        transport = self._transport
        if transport is None:
            return False
        try:
            await write_message(transport, msg_type, payload)
            return True
        except (ConnectionClosed, OSError) as e:
            # The reader sees the close and drives the reconnect
            logger.warning(f"Failed to send {msg_type.value}: {e}")
            return False

    def _schedule(self, delay: float, kind: _EventKind) -> TimerHandle:
        generation = self._generation
        return self._clock.call_later(delay, lambda: self._post(_Event(kind, generation)))

    def _cancel_backoff(self) -> None:
        if self._backoff_timer is not None:
            self._backoff_timer.cancel()
            self._backoff_timer = None

    def _cancel_session_timers(self) -> None:
        for name in ("_handshake_timer", "_heartbeat_timer", "_drift_timer"):
            timer = getattr(self, name)
            if timer is not None:
                timer.cancel()
                setattr(self, name, None)

    async def _set_state(self, state: SessionState) -> None:
        if state == self._state:
            return
        previous, self._state = self._state, state
        logger.debug(f"Session {previous.value} -> {state.value}")
        for callback in self._on_state_change_callbacks:
            try:
                await callback(state)
            except Exception as e:
                logger.error(f"Error in on_state_change callback: {e}")

    async def _notify(self, message: str, level: str = "info", terminal: bool = False) -> None:
        notice = Notice(message, level, terminal)
        for callback in self._on_notice_callbacks:
            try:
                await callback(notice)
            except Exception as e:
                logger.error(f"Error in on_notice callback: {e}")
