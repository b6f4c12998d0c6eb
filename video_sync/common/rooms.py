"""Room code helpers."""

from __future__ import annotations

import secrets

from .constants import ROOM_ID_ALPHABET, ROOM_ID_LENGTH


def generate_room_id() -> str:
    """Draw a room code uniformly from [A-Z0-9]{6}.

    Collisions with existing rooms are not checked: creating on top of an
    existing code simply joins that room.
    """
    return "".join(secrets.choice(ROOM_ID_ALPHABET) for _ in range(ROOM_ID_LENGTH))


def normalize_room_id(room_id: str) -> str:
    """Normalize user input to a room code, raising ValueError if invalid."""
    code = room_id.strip().upper()
    if len(code) != ROOM_ID_LENGTH or any(c not in ROOM_ID_ALPHABET for c in code):
        raise ValueError(f"Room code must be {ROOM_ID_LENGTH} characters [A-Z0-9]")
    return code
