"""Client SDK for joining watch parties.

Example usage:

    from video_sync.client import MemoryStore, ReconnectingSession, SimulatedPlayer

    async def main():
        player = SimulatedPlayer()
        session = ReconnectingSession(
            "ws://localhost:3000", "secret", MemoryStore(), player=player, username="alice"
        )

        @session.on_remote_event
        async def on_remote(event):
            print(f"{event.member_id} sent {event.action.value}")

        await session.join_room("ABC123")
        player.play()  # relayed to everyone else in the room
        ...
        await session.close()

    asyncio.run(main())
"""

from .clock import Clock, SystemClock
from .player import SimulatedPlayer, VideoHandle
from .session import ReconnectingSession, reconnect_delay
from .storage import (
    JsonFileStore,
    KeyValueStore,
    MemoryStore,
    ResumeDecision,
    SavedSession,
    load_session,
    resume_decision,
)
from .transport import Transport, connect_websocket
from .types import Notice, SessionConfig, SessionState

__all__ = [
    "ReconnectingSession",
    "SessionConfig",
    "SessionState",
    "Notice",
    "Clock",
    "SystemClock",
    "VideoHandle",
    "SimulatedPlayer",
    "KeyValueStore",
    "MemoryStore",
    "JsonFileStore",
    "SavedSession",
    "ResumeDecision",
    "load_session",
    "resume_decision",
    "Transport",
    "connect_websocket",
    "reconnect_delay",
]
