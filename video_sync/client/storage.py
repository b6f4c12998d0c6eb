"""Client-side persistence: stable member id and resumable connection state."""

from __future__ import annotations

import json
import logging
import os
import secrets
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Protocol

from ..common.constants import RESUME_AUTO_WINDOW, RESUME_PROMPT_WINDOW

logger = logging.getLogger(__name__)

MEMBER_ID_KEY = "userId"
CONNECTION_STATE_KEY = "connectionState"

_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


class KeyValueStore(Protocol):
    def get(self, key: str) -> Any | None: ...

    def set(self, key: str, value: Any) -> None: ...

    def remove(self, key: str) -> None: ...


class MemoryStore:
    """Process-local store, for tests and throwaway sessions."""

    def __init__(self, initial: dict[str, Any] | None = None) -> None:
        self.data: dict[str, Any] = dict(initial or {})

    def get(self, key: str) -> Any | None:
        return self.data.get(key)

    def set(self, key: str, value: Any) -> None:
        self.data[key] = value

    def remove(self, key: str) -> None:
        self.data.pop(key, None)


class JsonFileStore:
    """Store backed by a single JSON file, rewritten on every change."""

    def __init__(self, path: Path | None = None) -> None:
        if path is None:
            path = Path.home() / ".video-sync" / "state.json"
        self.path = path
        self._data: dict[str, Any] | None = None

    def _load(self) -> dict[str, Any]:
        if self._data is None:
            self._data = {}
            if self.path.exists():
                try:
                    data = json.loads(self.path.read_text())
                    if isinstance(data, dict):
                        self._data = data
                except (json.JSONDecodeError, OSError) as e:
                    logger.warning(f"Ignoring unreadable state file {self.path}: {e}")
        return self._data

    def _flush(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(".tmp")
        tmp.write_text(json.dumps(self._load(), indent=2))
        os.replace(tmp, self.path)

    def get(self, key: str) -> Any | None:
        return self._load().get(key)

    def set(self, key: str, value: Any) -> None:
        self._load()[key] = value
        self._flush()

    def remove(self, key: str) -> None:
        if self._load().pop(key, None) is not None:
            self._flush()


def _base36(value: int) -> str:
    if value <= 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def generate_member_id(now_ms: float | None = None) -> str:
    """Random id plus a base36 timestamp, e.g. ``user_k3j9x0a1b2c3dlq8z7y1``."""
    if now_ms is None:
        now_ms = time.time() * 1000
    random_part = "".join(secrets.choice(_BASE36) for _ in range(13))
    return f"user_{random_part}{_base36(int(now_ms))}"


def load_or_create_member_id(store: KeyValueStore, now_ms: float | None = None) -> str:
    """Return the persisted member id, generating and saving one on first use."""
    member_id = store.get(MEMBER_ID_KEY)
    if isinstance(member_id, str) and member_id:
        return member_id
    member_id = generate_member_id(now_ms)
    store.set(MEMBER_ID_KEY, member_id)
    logger.info(f"Generated member id {member_id}")
    return member_id


@dataclass
class SavedSession:
    """What is needed to rejoin a room after a restart."""

    server_url: str
    room_id: str
    api_key: str
    timestamp: float  # epoch ms when the session was started
    last_active: float  # epoch ms of the last heartbeat
    username: str | None = None
    platform: str | None = None
    video_url: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "serverUrl": self.server_url,
            "roomId": self.room_id,
            "apiKey": self.api_key,
            "username": self.username,
            "platform": self.platform,
            "videoUrl": self.video_url,
            "timestamp": self.timestamp,
            "lastActive": self.last_active,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SavedSession:
        timestamp = float(data["timestamp"])
        return cls(
            server_url=str(data["serverUrl"]),
            room_id=str(data["roomId"]),
            api_key=str(data["apiKey"]),
            timestamp=timestamp,
            last_active=float(data.get("lastActive") or timestamp),
            username=data.get("username"),
            platform=data.get("platform"),
            video_url=data.get("videoUrl"),
        )


def save_session(store: KeyValueStore, session: SavedSession) -> None:
    store.set(CONNECTION_STATE_KEY, session.to_dict())


def load_session(store: KeyValueStore) -> SavedSession | None:
    data = store.get(CONNECTION_STATE_KEY)
    if not isinstance(data, dict):
        return None
    try:
        return SavedSession.from_dict(data)
    except (KeyError, TypeError, ValueError):
        logger.warning("Discarding malformed saved connection state")
        store.remove(CONNECTION_STATE_KEY)
        return None


def touch_session(store: KeyValueStore, now_ms: float) -> None:
    """Refresh ``lastActive`` on the saved session, if any."""
    saved = load_session(store)
    if saved is None:
        return
    saved.last_active = now_ms
    save_session(store, saved)


def clear_session(store: KeyValueStore) -> None:
    store.remove(CONNECTION_STATE_KEY)


class ResumeDecision(Enum):
    AUTO = "auto"  # rejoin without asking
    PROMPT = "prompt"  # ask before rejoining
    DISCARD = "discard"  # too old, forget it


def resume_decision(
    saved: SavedSession | None,
    now_ms: float,
    auto_window: float = RESUME_AUTO_WINDOW,
    prompt_window: float = RESUME_PROMPT_WINDOW,
) -> ResumeDecision:
    """Decide what to do with a saved session based on how long it has been idle."""
    if saved is None:
        return ResumeDecision.DISCARD
    idle = (now_ms - saved.last_active) / 1000
    if idle < auto_window:
        return ResumeDecision.AUTO
    if idle < prompt_window:
        return ResumeDecision.PROMPT
    return ResumeDecision.DISCARD

