"""Type definitions for the client session."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from ..common.constants import (
    CONNECT_TIMEOUT,
    DRIFT_CHECK_INTERVAL,
    DRIFT_THRESHOLD,
    ECHO_SETTLE_WINDOW,
    HEARTBEAT_INTERVAL,
    MAX_MISSED_HEARTBEATS,
    MAX_RECONNECT_ATTEMPTS,
    RECONNECT_BASE_DELAY,
    RECONNECT_MAX_DELAY,
    STALE_EVENT_THRESHOLD_MS,
)


class SessionState(Enum):
    """Lifecycle of one logical room membership."""

    IDLE = "idle"
    CONNECTING = "connecting"
    AUTHENTICATING = "authenticating"
    JOINING = "joining"
    ACTIVE = "active"
    BACKOFF = "backoff"
    ABANDONED = "abandoned"

    @property
    def is_connected(self) -> bool:
        return self in (
            SessionState.AUTHENTICATING,
            SessionState.JOINING,
            SessionState.ACTIVE,
        )


@dataclass
class SessionConfig:
    """Configuration for a ReconnectingSession."""

    heartbeat_interval: float = HEARTBEAT_INTERVAL
    max_missed_heartbeats: int = MAX_MISSED_HEARTBEATS
    reconnect_base_delay: float = RECONNECT_BASE_DELAY
    reconnect_max_delay: float = RECONNECT_MAX_DELAY
    max_reconnect_attempts: int = MAX_RECONNECT_ATTEMPTS
    connect_timeout: float = CONNECT_TIMEOUT  # also bounds auth + join
    stale_threshold_ms: float = STALE_EVENT_THRESHOLD_MS
    settle_window: float = ECHO_SETTLE_WINDOW
    drift_correction: bool = True
    drift_interval: float = DRIFT_CHECK_INTERVAL
    drift_threshold: float = DRIFT_THRESHOLD


@dataclass(frozen=True)
class Notice:
    """A user-visible status line."""

    message: str
    level: str = "info"  # info | success | warning | error
    # Set on the notice that ends a session and needs user action to retry
    terminal: bool = False
