"""Tests for the room table: membership, reconnects and sweeping."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import pytest

from video_sync.common.protocol import MessageType, RoomMetadata
from video_sync.server.connection import Connection
from video_sync.server.registry import RoomRegistry

if TYPE_CHECKING:
    from conftest import FakeSocket


class Tick:
    """Settable monotonic clock."""

    def __init__(self, now: float = 100.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def tick() -> Tick:
    return Tick()


@pytest.fixture
def registry(tick: Tick) -> RoomRegistry:
    return RoomRegistry(clock=tick, wall_clock=lambda: 1_700_000_000.0)


def _check_invariant(registry: RoomRegistry) -> None:
    for room_id in registry.room_ids():
        room = registry.get(room_id)
        assert room is not None
        assert set(room.connections) <= set(room.members)
        assert room.members, "registered rooms are never empty"


class TestJoin:
    """Tests for RoomRegistry.join."""

    @pytest.mark.asyncio
    async def test_first_join_creates_room_and_captures_metadata(
        self, registry: RoomRegistry, make_socket: type[FakeSocket]
    ) -> None:
        socket = make_socket()
        result = await registry.join(
            "ABC123", Connection(socket), "alice", username="Alice",
            metadata=RoomMetadata(title="Film", username="Alice"),
        )
        assert result.created
        assert result.metadata is not None
        assert result.metadata.created_by == "alice"
        assert result.metadata.created_at == 1_700_000_000_000.0
        assert result.metadata.title == "Film"

        [joined] = socket.received(MessageType.ROOM_JOINED)
        assert joined["roomId"] == "ABC123"
        assert joined["userCount"] == 1
        assert joined["users"] == [{"userId": "alice", "username": "Alice", "isCreator": True}]
        assert joined["metadata"]["createdBy"] == "alice"
        _check_invariant(registry)

    @pytest.mark.asyncio
    async def test_later_join_notifies_others_and_ignores_metadata(
        self, registry: RoomRegistry, make_socket: type[FakeSocket]
    ) -> None:
        alice, bob = make_socket(), make_socket()
        await registry.join("ABC123", Connection(alice), "alice", metadata=RoomMetadata(title="Film"))
        result = await registry.join(
            "ABC123", Connection(bob), "bob", metadata=RoomMetadata(title="Other")
        )
        assert not result.created
        assert result.metadata is not None and result.metadata.title == "Film"

        [user_list] = alice.received(MessageType.USER_LIST)
        assert user_list["count"] == 2
        assert [u["userId"] for u in user_list["users"]] == ["alice", "bob"]
        assert bob.received(MessageType.USER_LIST) == []
        [joined] = bob.received(MessageType.ROOM_JOINED)
        assert joined["users"][1] == {"userId": "bob", "username": "bob", "isCreator": False}

    @pytest.mark.asyncio
    async def test_metadata_comes_from_first_join_that_supplies_it(
        self, registry: RoomRegistry, make_socket: type[FakeSocket]
    ) -> None:
        await registry.join("ABC123", Connection(make_socket()), "alice")
        result = await registry.join(
            "ABC123", Connection(make_socket()), "bob", metadata=RoomMetadata(title="Film")
        )
        assert result.metadata is not None
        assert result.metadata.created_by == "bob"
        assert [m.is_creator for m in result.roster] == [False, True]

    @pytest.mark.asyncio
    async def test_join_is_idempotent(
        self, registry: RoomRegistry, make_socket: type[FakeSocket]
    ) -> None:
        connection = Connection(make_socket())
        await registry.join("ABC123", connection, "alice")
        result = await registry.join("ABC123", connection, "alice")
        assert len(result.roster) == 1
        assert result.replaced is None

    @pytest.mark.asyncio
    async def test_rejoin_on_new_connection_supersedes_old(
        self, registry: RoomRegistry, make_socket: type[FakeSocket]
    ) -> None:
        old = Connection(make_socket())
        new = Connection(make_socket())
        await registry.join("ABC123", old, "alice")
        result = await registry.join("ABC123", new, "alice")

        assert result.replaced is old
        assert old.superseded
        room = registry.get("ABC123")
        assert room is not None
        assert room.connections["alice"] is new
        assert len(room.members) == 1

        # The stale transport closing later must not evict the new one
        await registry.drop_connection(old)
        assert room.connections["alice"] is new
        _check_invariant(registry)

    @pytest.mark.asyncio
    async def test_connection_rejoining_under_new_id_releases_old_id(
        self, registry: RoomRegistry, make_socket: type[FakeSocket]
    ) -> None:
        connection = Connection(make_socket())
        await registry.join("ABC123", connection, "alice")
        await registry.join("ABC123", connection, "bob")
        room = registry.get("ABC123")
        assert room is not None
        assert room.connections == {"bob": connection}

        await registry.drop_connection(connection)
        assert room.connections == {}
        _check_invariant(registry)

    @pytest.mark.asyncio
    async def test_concurrent_joins_create_one_room(
        self, registry: RoomRegistry, make_socket: type[FakeSocket]
    ) -> None:
        results = await asyncio.gather(
            *(registry.join("ABC123", Connection(make_socket()), f"m{i}") for i in range(10))
        )
        assert len(registry) == 1
        assert sum(r.created for r in results) == 1
        room = registry.get("ABC123")
        assert room is not None
        assert len(room.members) == 10
        _check_invariant(registry)


class TestLeaveAndDrop:
    """Tests for leave and drop_connection."""

    @pytest.mark.asyncio
    async def test_last_leave_deletes_room(
        self, registry: RoomRegistry, make_socket: type[FakeSocket]
    ) -> None:
        connection = Connection(make_socket())
        await registry.join("ABC123", connection, "alice")
        assert await registry.leave("ABC123", "alice") is False
        assert "ABC123" not in registry
        assert connection.room_id is None

    @pytest.mark.asyncio
    async def test_leave_broadcasts_remaining_roster(
        self, registry: RoomRegistry, make_socket: type[FakeSocket]
    ) -> None:
        alice, bob = make_socket(), make_socket()
        await registry.join("ABC123", Connection(alice), "alice")
        await registry.join("ABC123", Connection(bob), "bob")
        assert await registry.leave("ABC123", "bob") is True
        latest = alice.received(MessageType.USER_LIST)[-1]
        assert [u["userId"] for u in latest["users"]] == ["alice"]
        _check_invariant(registry)

    @pytest.mark.asyncio
    async def test_leave_unknown_room(self, registry: RoomRegistry) -> None:
        assert await registry.leave("NOROOM", "alice") is False

    @pytest.mark.asyncio
    async def test_drop_keeps_membership(
        self, registry: RoomRegistry, make_socket: type[FakeSocket]
    ) -> None:
        connection = Connection(make_socket())
        await registry.join("ABC123", connection, "alice")
        await registry.drop_connection(connection)
        room = registry.get("ABC123")
        assert room is not None
        assert "alice" in room.members
        assert "alice" not in room.connections
        assert connection.room_id is None

    @pytest.mark.asyncio
    async def test_drop_of_unbound_connection_is_noop(
        self, registry: RoomRegistry, make_socket: type[FakeSocket]
    ) -> None:
        await registry.drop_connection(Connection(make_socket()))
        assert len(registry) == 0


class TestRelay:
    """Tests for relay and send_to_member."""

    @pytest.mark.asyncio
    async def test_relay_excludes_sender(
        self, registry: RoomRegistry, make_socket: type[FakeSocket]
    ) -> None:
        sockets = {name: make_socket() for name in ("alice", "bob", "carol")}
        for name, socket in sockets.items():
            await registry.join("ABC123", Connection(socket), name)

        report = await registry.relay(
            "ABC123", "alice", MessageType.REMOTE_EVENT, {"data": {"action": "PLAY"}, "userId": "alice"}
        )
        assert sorted(report.delivered) == ["bob", "carol"]
        assert sockets["alice"].received(MessageType.REMOTE_EVENT) == []
        assert len(sockets["bob"].received(MessageType.REMOTE_EVENT)) == 1

    @pytest.mark.asyncio
    async def test_relay_touches_room(
        self, registry: RoomRegistry, tick: Tick, make_socket: type[FakeSocket]
    ) -> None:
        await registry.join("ABC123", Connection(make_socket()), "alice")
        tick.now += 50
        await registry.relay("ABC123", "alice", MessageType.REMOTE_EVENT, {})
        room = registry.get("ABC123")
        assert room is not None and room.last_activity == tick.now

    @pytest.mark.asyncio
    async def test_relay_to_missing_room_is_empty(self, registry: RoomRegistry) -> None:
        report = await registry.relay("NOROOM", "alice", MessageType.REMOTE_EVENT, {})
        assert report.ok and report.delivered == []

    @pytest.mark.asyncio
    async def test_send_to_offline_member_is_skipped(
        self, registry: RoomRegistry, make_socket: type[FakeSocket]
    ) -> None:
        bob = Connection(make_socket())
        await registry.join("ABC123", Connection(make_socket()), "alice")
        await registry.join("ABC123", bob, "bob")
        await registry.drop_connection(bob)
        report = await registry.send_to_member("ABC123", "bob", MessageType.SYNC_STATE, {"data": {}})
        assert report.delivered == [] and report.ok


class TestSweep:
    """Tests for RoomRegistry.sweep."""

    @pytest.mark.asyncio
    async def test_idle_room_is_swept(
        self, registry: RoomRegistry, tick: Tick, make_socket: type[FakeSocket]
    ) -> None:
        connection = Connection(make_socket())
        await registry.join("ABC123", connection, "alice")
        tick.now += 601
        assert await registry.sweep(600) == ["ABC123"]
        assert "ABC123" not in registry
        assert connection.room_id is None

    @pytest.mark.asyncio
    async def test_touched_room_survives(
        self, registry: RoomRegistry, tick: Tick, make_socket: type[FakeSocket]
    ) -> None:
        await registry.join("ABC123", Connection(make_socket()), "alice")
        tick.now += 500
        await registry.touch("ABC123")
        tick.now += 500
        assert await registry.sweep(600) == []
        assert "ABC123" in registry

    @pytest.mark.asyncio
    async def test_old_room_is_swept_despite_activity(
        self, registry: RoomRegistry, tick: Tick, make_socket: type[FakeSocket]
    ) -> None:
        await registry.join("ABC123", Connection(make_socket()), "alice")
        tick.now += 90_000
        await registry.touch("ABC123")
        assert await registry.sweep(600, max_age=86_400) == ["ABC123"]

    @pytest.mark.asyncio
    async def test_stats(self, registry: RoomRegistry, make_socket: type[FakeSocket]) -> None:
        bob = Connection(make_socket())
        await registry.join("ABC123", Connection(make_socket()), "alice")
        await registry.join("ABC123", bob, "bob")
        await registry.join("XYZ789", Connection(make_socket()), "carol")
        await registry.drop_connection(bob)
        assert registry.stats() == {"rooms": 2, "members": 3, "connections": 2}
