"""The video handle a session drives, and a headless implementation of it."""

from __future__ import annotations

import time
from collections.abc import Callable
from typing import Protocol

from ..common.protocol import PlaybackAction

PlayerListener = Callable[[PlaybackAction], None]


class VideoHandle(Protocol):
    """What a session needs from a player, however it was located.

    Setting ``current_time`` or ``playback_rate`` and calling ``play()`` or
    ``pause()`` make the player emit the matching change notification to its
    listeners, exactly as if the user had done it.
    """

    current_time: float
    playback_rate: float

    @property
    def paused(self) -> bool: ...

    def play(self) -> None: ...

    def pause(self) -> None: ...

    def add_listener(self, listener: PlayerListener) -> None: ...

    def remove_listener(self, listener: PlayerListener) -> None: ...


class SimulatedPlayer:
    """Headless player whose position advances with a clock while playing.

    Notifications are delivered synchronously from the mutating call.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._position = 0.0
        self._anchor = clock()
        self._paused = True
        self._rate = 1.0
        self._listeners: list[PlayerListener] = []

    def _emit(self, action: PlaybackAction) -> None:
        for listener in list(self._listeners):
            listener(action)

    def _freeze(self) -> None:
        """Fold elapsed playback into the stored position."""
        self._position = self.current_time
        self._anchor = self._clock()

    @property
    def current_time(self) -> float:
        if self._paused:
            return self._position
        return self._position + (self._clock() - self._anchor) * self._rate

    @current_time.setter
    def current_time(self, value: float) -> None:
        self._position = max(0.0, float(value))
        self._anchor = self._clock()
        self._emit(PlaybackAction.SEEK)

    @property
    def playback_rate(self) -> float:
        return self._rate

    @playback_rate.setter
    def playback_rate(self, value: float) -> None:
        if value <= 0:
            raise ValueError("playback rate must be positive")
        self._freeze()
        self._rate = float(value)
        self._emit(PlaybackAction.RATE_CHANGE)

    @property
    def paused(self) -> bool:
        return self._paused

    def play(self) -> None:
        if not self._paused:
            return
        self._anchor = self._clock()
        self._paused = False
        self._emit(PlaybackAction.PLAY)

    def pause(self) -> None:
        if self._paused:
            return
        self._freeze()
        self._paused = True
        self._emit(PlaybackAction.PAUSE)

    def add_listener(self, listener: PlayerListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: PlayerListener) -> None:
        try:
            self._listeners.remove(listener)
        except ValueError:
            pass
