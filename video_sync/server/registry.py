"""Authoritative room table.

Each room carries its own lock; every read or mutation of a room's state
(join, leave, drop, relay, sweep) happens while holding it, so operations on
different rooms never wait on one another. The table itself is only changed
between awaits.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass, replace
from typing import Any

from ..common.errors import DeliveryReport
from ..common.protocol import (
    MemberInfo,
    MessageType,
    RoomMetadata,
    serialize_room_joined,
    serialize_user_list,
)
from .connection import Connection
from .room import Member, Room
from .router import BroadcastRouter

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class JoinResult:
    room_id: str
    roster: list[MemberInfo]
    metadata: RoomMetadata | None
    created: bool
    # Previous live connection of the joining member, now superseded
    replaced: Connection | None = None


class RoomRegistry:
    def __init__(
        self,
        router: BroadcastRouter | None = None,
        clock: Callable[[], float] = time.monotonic,
        wall_clock: Callable[[], float] = time.time,
    ) -> None:
        self.router = router or BroadcastRouter()
        self._clock = clock
        self._wall_clock = wall_clock
        self._rooms: dict[str, Room] = {}

    def __contains__(self, room_id: object) -> bool:
        return room_id in self._rooms

    def __len__(self) -> int:
        return len(self._rooms)

    def get(self, room_id: str) -> Room | None:
        return self._rooms.get(room_id)

    def room_ids(self) -> list[str]:
        return list(self._rooms)

    @asynccontextmanager
    async def _locked(self, room_id: str, create: bool = False) -> AsyncIterator[Room | None]:
        """Hold the lock of a registered room, optionally creating it.

        Yields None if the room does not exist and ``create`` is False. If the
        room is deleted while waiting for its lock, the lookup is retried.
        """
        while True:
            room = self._rooms.get(room_id)
            if room is None:
                if not create:
                    yield None
                    return
                now = self._clock()
                room = Room(room_id, created_at=now, last_activity=now)
                self._rooms[room_id] = room
            async with room.lock:
                if self._rooms.get(room_id) is not room:
                    continue
                yield room
                return

    async def join(
        self,
        room_id: str,
        connection: Connection,
        member_id: str,
        username: str | None = None,
        metadata: RoomMetadata | None = None,
    ) -> JoinResult:
        """Add a member (idempotently) and make ``connection`` its live connection.

        Sends ``room-joined`` to the joiner and ``user-list`` to everyone else.
        Metadata is set once, by the first join that supplies any.
        """
        async with self._locked(room_id, create=True) as room:
            assert room is not None
            created = not room.members
            if metadata is not None and room.metadata is None:
                room.metadata = replace(
                    metadata,
                    created_by=member_id,
                    created_at=self._wall_clock() * 1000,
                )

            member = room.members.get(member_id)
            if member is None:
                member = Member(member_id)
                room.members[member_id] = member
            if username:
                member.display_name = username
            member.is_creator = (
                room.metadata is not None and room.metadata.created_by == member_id
            )

            previous_id = connection.member_id
            if (
                previous_id is not None
                and previous_id != member_id
                and room.connections.get(previous_id) is connection
            ):
                del room.connections[previous_id]
            replaced = room.connections.get(member_id)
            if replaced is connection:
                replaced = None
            elif replaced is not None:
                replaced.superseded = True
                replaced.unbind()
            room.connections[member_id] = connection
            connection.bind(member_id, room_id)
            room.last_activity = self._clock()

            roster = room.roster()
            await self.router.deliver(
                member_id,
                connection,
                MessageType.ROOM_JOINED,
                serialize_room_joined(room_id, roster, room.metadata),
            )
            await self.router.broadcast(
                room, member_id, MessageType.USER_LIST, serialize_user_list(roster)
            )

            if created:
                logger.info(f"Room created: {room_id} by {member_id}")
            logger.info(f"{member_id} joined room {room_id} ({len(roster)} members)")
            return JoinResult(room_id, roster, room.metadata, created, replaced)

    async def leave(self, room_id: str, member_id: str) -> bool:
        """Remove a member. Returns True if the room still exists afterwards."""
        async with self._locked(room_id) as room:
            if room is None:
                return False
            room.members.pop(member_id, None)
            connection = room.connections.pop(member_id, None)
            if connection is not None and connection.room_id == room_id:
                connection.unbind()

            if not room.members:
                del self._rooms[room_id]
                logger.info(f"Room deleted: {room_id} (last member left)")
                return False

            room.last_activity = self._clock()
            roster = room.roster()
            await self.router.broadcast(
                room, None, MessageType.USER_LIST, serialize_user_list(roster)
            )
            logger.info(f"{member_id} left room {room_id} ({len(roster)} members remain)")
            return True

    async def drop_connection(self, connection: Connection) -> None:
        """Forget a closed transport; its member stays in the member set."""
        room_id = connection.room_id
        if room_id is None:
            return
        async with self._locked(room_id) as room:
            if room is not None and connection.member_id is not None:
                if room.connections.get(connection.member_id) is connection:
                    del room.connections[connection.member_id]
                    logger.debug(
                        f"{connection.member_id} disconnected from {room_id} "
                        f"({len(room.connections)}/{len(room.members)} live)"
                    )
            connection.unbind()

    async def touch(self, room_id: str) -> bool:
        async with self._locked(room_id) as room:
            if room is None:
                return False
            room.last_activity = self._clock()
            return True

    async def relay(
        self,
        room_id: str,
        sender_id: str | None,
        msg_type: MessageType,
        payload: dict[str, Any],
    ) -> DeliveryReport:
        """Touch the room and broadcast to everyone but the sender."""
        async with self._locked(room_id) as room:
            if room is None:
                return DeliveryReport()
            room.last_activity = self._clock()
            return await self.router.broadcast(room, sender_id, msg_type, payload)

    async def send_to_member(
        self,
        room_id: str,
        member_id: str,
        msg_type: MessageType,
        payload: dict[str, Any],
    ) -> DeliveryReport:
        """Touch the room and unicast to one member, if it is connected."""
        async with self._locked(room_id) as room:
            if room is None:
                return DeliveryReport()
            room.last_activity = self._clock()
            return await self.router.unicast(room, member_id, msg_type, payload)

    async def sweep(
        self,
        inactivity_timeout: float,
        max_age: float | None = None,
        now: float | None = None,
    ) -> list[str]:
        """Delete rooms idle past the timeout (or older than max_age).

        Expiry is re-checked under each room's lock, so a room touched while
        the sweep waited survives.
        """
        if now is None:
            now = self._clock()
        candidates = [
            room
            for room in list(self._rooms.values())
            if room.is_expired(now, inactivity_timeout, max_age)
        ]
        removed: list[str] = []
        for room in candidates:
            async with room.lock:
                if self._rooms.get(room.room_id) is not room:
                    continue
                if not room.is_expired(now, inactivity_timeout, max_age):
                    continue
                del self._rooms[room.room_id]
                for connection in room.connections.values():
                    if connection.room_id == room.room_id:
                        connection.unbind()
                removed.append(room.room_id)
                logger.info(
                    f"Room swept: {room.room_id} "
                    f"(idle {now - room.last_activity:.0f}s, {len(room.members)} members)"
                )
        return removed

    def stats(self) -> dict[str, int]:
        return {
            "rooms": len(self._rooms),
            "members": sum(len(r.members) for r in self._rooms.values()),
            "connections": sum(len(r.connections) for r in self._rooms.values()),
        }
