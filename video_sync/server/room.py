"""Room and member state held by the registry."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field

from ..common.protocol import MemberInfo, RoomMetadata
from .connection import Connection


@dataclass
class Member:
    member_id: str
    display_name: str = ""
    is_creator: bool = False

    def info(self) -> MemberInfo:
        return MemberInfo(self.member_id, self.display_name or self.member_id, self.is_creator)


@dataclass(eq=False)
class Room:
    room_id: str
    created_at: float  # registry clock (monotonic seconds)
    last_activity: float
    # Member ids that joined and have not explicitly left, in join order
    members: dict[str, Member] = field(default_factory=dict)
    # member id -> current live connection; keys are a subset of members
    connections: dict[str, Connection] = field(default_factory=dict)
    metadata: RoomMetadata | None = None
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)

    def roster(self) -> list[MemberInfo]:
        return [m.info() for m in self.members.values()]

    def live_connection(self, member_id: str) -> Connection | None:
        return self.connections.get(member_id)

    def is_expired(
        self, now: float, inactivity_timeout: float, max_age: float | None = None
    ) -> bool:
        if now - self.last_activity > inactivity_timeout:
            return True
        return max_age is not None and now - self.created_at > max_age
