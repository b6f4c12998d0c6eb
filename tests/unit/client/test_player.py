"""Tests for the headless player."""

from __future__ import annotations

import pytest

from video_sync.client.player import SimulatedPlayer
from video_sync.common.protocol import PlaybackAction


class FakeTime:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def time_source() -> FakeTime:
    return FakeTime()


@pytest.fixture
def player(time_source: FakeTime) -> SimulatedPlayer:
    return SimulatedPlayer(clock=time_source)


class TestSimulatedPlayer:
    def test_starts_paused_at_zero(self, player: SimulatedPlayer) -> None:
        assert player.paused
        assert player.current_time == 0.0

    def test_position_advances_only_while_playing(
        self, player: SimulatedPlayer, time_source: FakeTime
    ) -> None:
        player.play()
        time_source.now = 10.0
        assert player.current_time == pytest.approx(10.0)
        player.pause()
        time_source.now = 20.0
        assert player.current_time == pytest.approx(10.0)

    def test_rate_scales_progress(self, player: SimulatedPlayer, time_source: FakeTime) -> None:
        player.play()
        time_source.now = 4.0
        player.playback_rate = 2.0
        time_source.now = 6.0
        assert player.current_time == pytest.approx(8.0)

    def test_notifications(self, player: SimulatedPlayer) -> None:
        seen: list[PlaybackAction] = []
        player.add_listener(seen.append)
        player.play()
        player.play()  # already playing
        player.current_time = 5.0
        player.playback_rate = 1.5
        player.pause()
        assert seen == [
            PlaybackAction.PLAY,
            PlaybackAction.SEEK,
            PlaybackAction.RATE_CHANGE,
            PlaybackAction.PAUSE,
        ]

    def test_removed_listener_is_silent(self, player: SimulatedPlayer) -> None:
        seen: list[PlaybackAction] = []
        player.add_listener(seen.append)
        player.remove_listener(seen.append)
        player.play()
        assert seen == []

    def test_seek_clamps_at_zero(self, player: SimulatedPlayer) -> None:
        player.current_time = -3.0
        assert player.current_time == 0.0

    def test_rate_must_be_positive(self, player: SimulatedPlayer) -> None:
        with pytest.raises(ValueError):
            player.playback_rate = 0
