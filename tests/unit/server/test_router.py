"""Tests for best-effort fan-out."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from video_sync.common.protocol import MessageType
from video_sync.server.connection import Connection
from video_sync.server.room import Member, Room
from video_sync.server.router import BroadcastRouter

if TYPE_CHECKING:
    from conftest import FakeSocket


def _room(sockets: dict[str, FakeSocket], offline: tuple[str, ...] = ()) -> Room:
    room = Room("ABC123", created_at=0.0, last_activity=0.0)
    for member_id in offline:
        room.members[member_id] = Member(member_id)
    for member_id, socket in sockets.items():
        room.members[member_id] = Member(member_id)
        connection = Connection(socket)
        connection.bind(member_id, room.room_id)
        room.connections[member_id] = connection
    return room


class TestBroadcast:
    """Tests for BroadcastRouter.broadcast."""

    @pytest.mark.asyncio
    async def test_originator_is_excluded_even_when_offline(
        self, make_socket: type[FakeSocket]
    ) -> None:
        sockets = {"bob": make_socket(), "carol": make_socket()}
        room = _room(sockets, offline=("alice",))
        report = await BroadcastRouter().broadcast(room, "alice", MessageType.REMOTE_EVENT, {"userId": "alice"})
        assert sorted(report.delivered) == ["bob", "carol"]
        assert report.ok

    @pytest.mark.asyncio
    async def test_no_exclusion_reaches_everyone(self, make_socket: type[FakeSocket]) -> None:
        sockets = {"alice": make_socket(), "bob": make_socket()}
        report = await BroadcastRouter().broadcast(_room(sockets), None, MessageType.USER_LIST, {})
        assert sorted(report.delivered) == ["alice", "bob"]

    @pytest.mark.asyncio
    async def test_failed_peer_does_not_abort_fanout(self, make_socket: type[FakeSocket]) -> None:
        sockets = {"bob": make_socket(fail=True), "carol": make_socket()}
        router = BroadcastRouter()
        report = await router.broadcast(_room(sockets), "alice", MessageType.REMOTE_EVENT, {})
        assert report.delivered == ["carol"]
        [failure] = report.failures
        assert failure.member_id == "bob"
        assert "ConnectionResetError" in failure.reason
        assert router.failure_count == 1
        assert len(sockets["carol"].received(MessageType.REMOTE_EVENT)) == 1

    @pytest.mark.asyncio
    async def test_slow_peer_times_out(self, make_socket: type[FakeSocket]) -> None:
        sockets = {"bob": make_socket(delay=1.0), "carol": make_socket()}
        report = await BroadcastRouter(send_timeout=0.05).broadcast(
            _room(sockets), None, MessageType.REMOTE_EVENT, {}
        )
        assert report.delivered == ["carol"]
        assert report.failures[0].reason == "send timed out"

    @pytest.mark.asyncio
    async def test_superseded_connection_is_skipped(self, make_socket: type[FakeSocket]) -> None:
        sockets = {"bob": make_socket()}
        room = _room(sockets)
        room.connections["bob"].superseded = True
        router = BroadcastRouter()
        report = await router.broadcast(room, None, MessageType.REMOTE_EVENT, {})
        assert report.delivered == []
        assert sockets["bob"].sent == []
        assert router.failure_count == 0


class TestUnicast:
    @pytest.mark.asyncio
    async def test_reaches_only_target(self, make_socket: type[FakeSocket]) -> None:
        sockets = {"alice": make_socket(), "bob": make_socket()}
        report = await BroadcastRouter().unicast(_room(sockets), "bob", MessageType.SYNC_STATE, {"data": {}})
        assert report.delivered == ["bob"]
        assert sockets["alice"].sent == []

    @pytest.mark.asyncio
    async def test_offline_target_is_a_noop(self, make_socket: type[FakeSocket]) -> None:
        room = _room({"alice": make_socket()}, offline=("bob",))
        report = await BroadcastRouter().unicast(room, "bob", MessageType.SYNC_STATE, {})
        assert report.delivered == [] and report.ok
