"""Error taxonomy shared by the relay server and client sessions."""

from __future__ import annotations

from dataclasses import dataclass, field


class VideoSyncError(Exception):
    """Base class for all video-sync errors."""


class AuthenticationError(VideoSyncError):
    """Bad credential. Fatal to the connection, not retryable as-is."""


class ProtocolSequenceError(VideoSyncError):
    """Message arrived out of order: before authentication, or for a room
    the connection never joined."""


class ProtocolError(VideoSyncError, ValueError):
    """Frame could not be decoded or is missing required fields."""


class TransportError(VideoSyncError):
    """Network failure on the underlying connection."""


class StaleEventError(VideoSyncError):
    """Remote playback event took longer than the stale threshold to arrive."""

    def __init__(self, delay_ms: float, threshold_ms: float) -> None:
        super().__init__(
            f"event is {delay_ms:.0f}ms old (threshold {threshold_ms:.0f}ms)"
        )
        self.delay_ms = delay_ms
        self.threshold_ms = threshold_ms


@dataclass(frozen=True)
class DeliveryFailure:
    """A write to one peer connection failed during a fan-out."""

    member_id: str
    connection_id: str
    reason: str


@dataclass
class DeliveryReport:
    """Outcome of a broadcast or unicast."""

    delivered: list[str] = field(default_factory=list)
    failures: list[DeliveryFailure] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures
