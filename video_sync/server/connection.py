"""Per-connection state and the authenticate-first gate."""

from __future__ import annotations

import hmac
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol

from ..common.errors import AuthenticationError, ProtocolError, ProtocolSequenceError
from ..common.protocol import MessageType, deserialize_authenticate


class AuthState(Enum):
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATED = "authenticated"


class ServerTransport(Protocol):
    """The parts of a server-side WebSocket the relay uses."""

    async def send(self, message: str) -> None: ...

    async def close(self, code: int = 1000, reason: str = "") -> None: ...


def _new_connection_id() -> str:
    return uuid.uuid4().hex[:12]


@dataclass(eq=False)
class Connection:
    """One transport-level session, created on accept and dropped on close."""

    transport: ServerTransport
    id: str = field(default_factory=_new_connection_id)
    auth_state: AuthState = AuthState.UNAUTHENTICATED
    # Set at join time
    member_id: str | None = None
    room_id: str | None = None
    # A newer connection for the same member took over; never read again
    superseded: bool = False

    @property
    def is_authenticated(self) -> bool:
        return self.auth_state == AuthState.AUTHENTICATED

    def bind(self, member_id: str, room_id: str) -> None:
        self.member_id = member_id
        self.room_id = room_id

    def unbind(self) -> None:
        self.room_id = None

    def describe(self) -> str:
        who = self.member_id or "anonymous"
        return f"{who} (conn={self.id})"


class ConnectionGate:
    """Enforces "authenticate before anything else" with one shared secret."""

    def __init__(self, api_key: str) -> None:
        if not api_key:
            raise ValueError("api_key must not be empty")
        self._api_key = api_key.encode("utf-8")

    def check_credential(self, candidate: str) -> bool:
        return hmac.compare_digest(candidate.encode("utf-8"), self._api_key)

    def admit(
        self, connection: Connection, msg_type: MessageType, payload: dict[str, Any]
    ) -> bool:
        """Gate one inbound message.

        Returns True if the message was an authenticate message consumed by the
        gate (the caller replies ``authenticated{success:true}``), False if it
        should be dispatched normally.

        Raises:
            ProtocolSequenceError: non-auth message on an unauthenticated
                connection.
            AuthenticationError: wrong or malformed credential.
        """
        if msg_type != MessageType.AUTHENTICATE:
            if not connection.is_authenticated:
                raise ProtocolSequenceError("Not authenticated")
            return False

        try:
            candidate = deserialize_authenticate(payload)
        except ProtocolError:
            raise AuthenticationError("Missing API key") from None
        if not self.check_credential(candidate):
            connection.auth_state = AuthState.UNAUTHENTICATED
            raise AuthenticationError("Invalid API key")
        connection.auth_state = AuthState.AUTHENTICATED
        return True
