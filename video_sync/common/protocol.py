"""Wire protocol: one JSON object per WebSocket text frame.

Every frame carries a ``type`` field naming a :class:`MessageType`; the
remaining fields are the message payload. ``serialize_*`` helpers build
payload dicts, ``deserialize_*`` helpers validate and unpack them.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol

from .errors import ProtocolError, StaleEventError


class MessageType(str, Enum):
    # Client -> server
    AUTHENTICATE = "authenticate"
    JOIN_ROOM = "join-room"
    LEAVE_ROOM = "leave-room"
    SYNC_EVENT = "sync-event"
    REQUEST_SYNC = "request-sync"
    SYNC_RESPONSE = "sync-response"
    PING = "ping"
    # Server -> client
    AUTHENTICATED = "authenticated"
    ROOM_JOINED = "room-joined"
    USER_LIST = "user-list"
    REMOTE_EVENT = "remote-event"
    SYNC_REQUEST = "sync-request"
    SYNC_STATE = "sync-state"
    PONG = "pong"
    ERROR = "error"


class PlaybackAction(str, Enum):
    PLAY = "PLAY"
    PAUSE = "PAUSE"
    SEEK = "SEEK"
    RATE_CHANGE = "RATE_CHANGE"


class MessageSink(Protocol):
    async def send(self, message: str) -> None: ...


class MessageSource(Protocol):
    async def recv(self) -> str | bytes: ...


# Field helpers


def _require_str(payload: dict[str, Any], key: str) -> str:
    value = payload.get(key)
    if not isinstance(value, str) or not value:
        raise ProtocolError(f"Missing or invalid field '{key}'")
    return value


def _require_dict(payload: dict[str, Any], key: str) -> dict[str, Any]:
    value = payload.get(key)
    if not isinstance(value, dict):
        raise ProtocolError(f"Missing or invalid field '{key}'")
    return value


def _require_number(payload: dict[str, Any], key: str) -> float:
    value = payload.get(key)
    # bool is an int subclass but never a valid number on the wire
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ProtocolError(f"Missing or invalid field '{key}'")
    return float(value)


def _optional_str(payload: dict[str, Any], key: str) -> str | None:
    value = payload.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ProtocolError(f"Invalid field '{key}'")
    return value


# Framing


def encode_message(msg_type: MessageType, payload: dict[str, Any] | None = None) -> str:
    """Encode a message as a JSON text frame."""
    frame: dict[str, Any] = {"type": msg_type.value}
    if payload:
        frame.update(payload)
    return json.dumps(frame)


def decode_message(raw: str | bytes) -> tuple[MessageType, dict[str, Any]]:
    """Decode a JSON text frame into (type, payload)."""
    try:
        frame = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ProtocolError(f"Invalid JSON: {e}") from e
    if not isinstance(frame, dict):
        raise ProtocolError("Frame must be a JSON object")
    type_name = frame.pop("type", None)
    if not isinstance(type_name, str):
        raise ProtocolError("Missing message type")
    try:
        msg_type = MessageType(type_name)
    except ValueError:
        raise ProtocolError(f"Unknown message type: {type_name}") from None
    return msg_type, frame


async def read_message(source: MessageSource) -> tuple[MessageType, dict[str, Any]]:
    """Receive and decode one frame."""
    return decode_message(await source.recv())


async def write_message(
    sink: MessageSink, msg_type: MessageType, payload: dict[str, Any] | None = None
) -> None:
    """Encode and send one frame."""
    await sink.send(encode_message(msg_type, payload))


# Shared records


@dataclass(frozen=True)
class MemberInfo:
    """Roster entry for one member of a room."""

    user_id: str
    username: str
    is_creator: bool = False

    def to_wire(self) -> dict[str, Any]:
        return {
            "userId": self.user_id,
            "username": self.username,
            "isCreator": self.is_creator,
        }

    @classmethod
    def from_wire(cls, data: dict[str, Any]) -> MemberInfo:
        return cls(
            user_id=_require_str(data, "userId"),
            username=_optional_str(data, "username") or "",
            is_creator=bool(data.get("isCreator", False)),
        )


@dataclass(frozen=True)
class RoomMetadata:
    """Descriptive room data, captured once from the first joiner."""

    created_by: str = ""
    created_at: float = 0.0  # epoch milliseconds
    username: str | None = None
    url: str | None = None
    title: str | None = None
    platform: str | None = None

    def to_wire(self) -> dict[str, Any]:
        data: dict[str, Any] = {}
        if self.created_by:
            data["createdBy"] = self.created_by
        if self.created_at:
            data["createdAt"] = self.created_at
        for key in ("username", "url", "title", "platform"):
            value = getattr(self, key)
            if value is not None:
                data[key] = value
        return data

    @classmethod
    def from_wire(cls, data: dict[str, Any]) -> RoomMetadata:
        created_at = data.get("createdAt", 0.0)
        if isinstance(created_at, bool) or not isinstance(created_at, (int, float)):
            created_at = 0.0
        return cls(
            created_by=_optional_str(data, "createdBy") or "",
            created_at=float(created_at),
            username=_optional_str(data, "username"),
            url=_optional_str(data, "url"),
            title=_optional_str(data, "title"),
            platform=_optional_str(data, "platform"),
        )


@dataclass(frozen=True)
class PlaybackEvent:
    """A play/pause/seek/rate change, relayed but never stored."""

    action: PlaybackAction
    timestamp: float  # sender's clock, epoch milliseconds
    position: float = 0.0
    playback_rate: float = 1.0
    member_id: str = ""

    def to_wire(self) -> dict[str, Any]:
        data: dict[str, Any] = {"action": self.action.value, "timestamp": self.timestamp}
        if self.action == PlaybackAction.RATE_CHANGE:
            data["playbackRate"] = self.playback_rate
        else:
            data["currentTime"] = self.position
        return data

    @classmethod
    def from_wire(cls, data: dict[str, Any], member_id: str = "") -> PlaybackEvent:
        try:
            action = PlaybackAction(data.get("action"))
        except ValueError:
            raise ProtocolError(f"Unknown playback action: {data.get('action')}") from None
        timestamp = _require_number(data, "timestamp")
        if action == PlaybackAction.RATE_CHANGE:
            return cls(
                action,
                timestamp,
                playback_rate=_require_number(data, "playbackRate"),
                member_id=member_id,
            )
        return cls(
            action,
            timestamp,
            position=_require_number(data, "currentTime"),
            member_id=member_id,
        )

    def transit_delay_ms(self, now_ms: float) -> float:
        return now_ms - self.timestamp

    def check_fresh(self, now_ms: float, threshold_ms: float) -> float:
        """Return the transit delay, raising StaleEventError past the threshold."""
        delay = self.transit_delay_ms(now_ms)
        if delay > threshold_ms:
            raise StaleEventError(delay, threshold_ms)
        return delay


@dataclass(frozen=True)
class PlayerState:
    """A member's reported playback state, exchanged for drift correction."""

    current_time: float
    paused: bool
    playback_rate: float = 1.0
    timestamp: float = 0.0

    def to_wire(self) -> dict[str, Any]:
        return {
            "currentTime": self.current_time,
            "paused": self.paused,
            "playbackRate": self.playback_rate,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_wire(cls, data: dict[str, Any]) -> PlayerState:
        rate = data.get("playbackRate", 1.0)
        timestamp = data.get("timestamp", 0.0)
        return cls(
            current_time=_require_number(data, "currentTime"),
            paused=bool(data.get("paused", False)),
            playback_rate=float(rate) if isinstance(rate, (int, float)) else 1.0,
            timestamp=float(timestamp) if isinstance(timestamp, (int, float)) else 0.0,
        )


# authenticate / authenticated


def serialize_authenticate(api_key: str) -> dict[str, Any]:
    return {"apiKey": api_key}


def deserialize_authenticate(payload: dict[str, Any]) -> str:
    value = payload.get("apiKey")
    if not isinstance(value, str):
        raise ProtocolError("Missing or invalid field 'apiKey'")
    return value


def serialize_authenticated(success: bool) -> dict[str, Any]:
    return {"success": success}


def deserialize_authenticated(payload: dict[str, Any]) -> bool:
    return payload.get("success") is True


# join-room / room-joined / user-list / leave-room


def serialize_join_room(
    room_id: str, user_id: str, metadata: RoomMetadata | None = None
) -> dict[str, Any]:
    payload: dict[str, Any] = {"roomId": room_id, "userId": user_id}
    if metadata is not None:
        payload["metadata"] = metadata.to_wire()
    return payload


def deserialize_join_room(
    payload: dict[str, Any],
) -> tuple[str, str, RoomMetadata | None]:
    room_id = _require_str(payload, "roomId")
    user_id = _require_str(payload, "userId")
    raw_metadata = payload.get("metadata")
    if raw_metadata is None:
        return room_id, user_id, None
    if not isinstance(raw_metadata, dict):
        raise ProtocolError("Invalid field 'metadata'")
    return room_id, user_id, RoomMetadata.from_wire(raw_metadata)


def serialize_room_joined(
    room_id: str, roster: list[MemberInfo], metadata: RoomMetadata | None
) -> dict[str, Any]:
    return {
        "roomId": room_id,
        "userCount": len(roster),
        "users": [m.to_wire() for m in roster],
        "metadata": metadata.to_wire() if metadata is not None else None,
    }


def deserialize_room_joined(
    payload: dict[str, Any],
) -> tuple[str, list[MemberInfo], RoomMetadata | None]:
    room_id = _require_str(payload, "roomId")
    roster = _deserialize_roster(payload.get("users", []))
    raw_metadata = payload.get("metadata")
    metadata = RoomMetadata.from_wire(raw_metadata) if isinstance(raw_metadata, dict) else None
    return room_id, roster, metadata


def serialize_user_list(roster: list[MemberInfo]) -> dict[str, Any]:
    return {"count": len(roster), "users": [m.to_wire() for m in roster]}


def deserialize_user_list(payload: dict[str, Any]) -> list[MemberInfo]:
    return _deserialize_roster(payload.get("users", []))


def _deserialize_roster(users: Any) -> list[MemberInfo]:
    if not isinstance(users, list):
        raise ProtocolError("Invalid field 'users'")
    return [MemberInfo.from_wire(u) for u in users if isinstance(u, dict)]


def serialize_leave_room(room_id: str, user_id: str) -> dict[str, Any]:
    return {"roomId": room_id, "userId": user_id}


def deserialize_leave_room(payload: dict[str, Any]) -> tuple[str, str]:
    return _require_str(payload, "roomId"), _require_str(payload, "userId")


# sync-event / remote-event


def serialize_sync_event(
    room_id: str, user_id: str, event: PlaybackEvent
) -> dict[str, Any]:
    return {"roomId": room_id, "userId": user_id, "data": event.to_wire()}


def deserialize_sync_event(payload: dict[str, Any]) -> tuple[str, dict[str, Any]]:
    """Return (room_id, data). The relay forwards ``data`` untouched."""
    return _require_str(payload, "roomId"), _require_dict(payload, "data")


def serialize_remote_event(data: dict[str, Any], user_id: str) -> dict[str, Any]:
    return {"data": data, "userId": user_id}


def deserialize_remote_event(payload: dict[str, Any]) -> PlaybackEvent:
    data = _require_dict(payload, "data")
    sender = payload.get("userId")
    return PlaybackEvent.from_wire(data, member_id=sender if isinstance(sender, str) else "")


# request-sync / sync-request / sync-response / sync-state


def serialize_request_sync(
    room_id: str, user_id: str, state: PlayerState
) -> dict[str, Any]:
    return {"roomId": room_id, "userId": user_id, "data": state.to_wire()}


def deserialize_request_sync(payload: dict[str, Any]) -> tuple[str, dict[str, Any]]:
    room_id = _require_str(payload, "roomId")
    data = payload.get("data", {})
    if not isinstance(data, dict):
        raise ProtocolError("Invalid field 'data'")
    return room_id, data


def serialize_sync_request(data: dict[str, Any], requester_id: str) -> dict[str, Any]:
    return {"data": data, "requesterId": requester_id}


def deserialize_sync_request(payload: dict[str, Any]) -> str:
    """Return the requester id; the requester's own state is informational."""
    return _require_str(payload, "requesterId")


def serialize_sync_response(
    room_id: str, target_user_id: str, state: PlayerState
) -> dict[str, Any]:
    data = state.to_wire()
    data["targetUserId"] = target_user_id
    return {"roomId": room_id, "data": data}


def deserialize_sync_response(
    payload: dict[str, Any],
) -> tuple[str, str, dict[str, Any]]:
    room_id = _require_str(payload, "roomId")
    data = _require_dict(payload, "data")
    return room_id, _require_str(data, "targetUserId"), data


def serialize_sync_state(data: dict[str, Any]) -> dict[str, Any]:
    return {"data": data}


def deserialize_sync_state(payload: dict[str, Any]) -> PlayerState:
    return PlayerState.from_wire(_require_dict(payload, "data"))


# ping / pong / error


def serialize_ping(timestamp: float) -> dict[str, Any]:
    return {"timestamp": timestamp}


def deserialize_ping(payload: dict[str, Any]) -> float | None:
    value = payload.get("timestamp")
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


def serialize_pong(timestamp: float | None) -> dict[str, Any]:
    return {"timestamp": timestamp}


def serialize_error(message: str) -> dict[str, Any]:
    return {"message": message}


def deserialize_error(payload: dict[str, Any]) -> str:
    value = payload.get("message")
    return value if isinstance(value, str) else "Unknown error"
