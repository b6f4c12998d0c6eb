"""Fan-out of relay messages to the live connections of a room."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from ..common.constants import SEND_TIMEOUT
from ..common.errors import DeliveryFailure, DeliveryReport
from ..common.protocol import MessageType, encode_message
from .connection import Connection
from .room import Room

logger = logging.getLogger(__name__)


class BroadcastRouter:
    """Best-effort delivery. A failed write is recorded, never raised."""

    def __init__(self, send_timeout: float = SEND_TIMEOUT) -> None:
        self.send_timeout = send_timeout
        self.failure_count = 0

    async def _send_frame(
        self, member_id: str, connection: Connection, frame: str
    ) -> DeliveryFailure | None:
        if connection.superseded:
            return DeliveryFailure(member_id, connection.id, "superseded")
        try:
            await asyncio.wait_for(connection.transport.send(frame), self.send_timeout)
        except asyncio.TimeoutError:
            return self._record(member_id, connection, "send timed out")
        except Exception as e:
            # ConnectionClosed, OSError and friends: the peer is gone
            return self._record(member_id, connection, f"{type(e).__name__}: {e}")
        return None

    def _record(
        self, member_id: str, connection: Connection, reason: str
    ) -> DeliveryFailure:
        self.failure_count += 1
        logger.warning(f"Delivery to {member_id} (conn={connection.id}) failed: {reason}")
        return DeliveryFailure(member_id, connection.id, reason)

    async def deliver(
        self,
        member_id: str,
        connection: Connection,
        msg_type: MessageType,
        payload: dict[str, Any],
    ) -> DeliveryReport:
        """Send one message to one connection."""
        report = DeliveryReport()
        failure = await self._send_frame(member_id, connection, encode_message(msg_type, payload))
        if failure is None:
            report.delivered.append(member_id)
        else:
            report.failures.append(failure)
        return report

    async def broadcast(
        self,
        room: Room,
        exclude_member_id: str | None,
        msg_type: MessageType,
        payload: dict[str, Any],
    ) -> DeliveryReport:
        """Deliver to every live connection in the room except the originator.

        Members without a live connection are skipped silently.
        """
        frame = encode_message(msg_type, payload)
        targets = [
            (member_id, conn)
            for member_id, conn in room.connections.items()
            if member_id != exclude_member_id
        ]
        results = await asyncio.gather(
            *(self._send_frame(member_id, conn, frame) for member_id, conn in targets)
        )
        report = DeliveryReport()
        for (member_id, _), failure in zip(targets, results):
            if failure is None:
                report.delivered.append(member_id)
            else:
                report.failures.append(failure)
        return report

    async def unicast(
        self,
        room: Room,
        member_id: str,
        msg_type: MessageType,
        payload: dict[str, Any],
    ) -> DeliveryReport:
        """Deliver to one member; a no-op if it has no live connection."""
        connection = room.live_connection(member_id)
        if connection is None:
            logger.debug(f"Unicast to {member_id} in {room.room_id} skipped (offline)")
            return DeliveryReport()
        return await self.deliver(member_id, connection, msg_type, payload)
