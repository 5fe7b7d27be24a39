"""Playback and loop status values."""

from enum import Enum
from typing import Self


class _StatusEnum(str, Enum):
    @classmethod
    def is_valid(cls, value: str) -> bool:
        """Check membership of a raw wire value."""
        return value in {member.value for member in cls}

    def __str__(self) -> str:
        return self.value


class PlaybackStatus(_StatusEnum):
    PLAYING = "Playing"
    PAUSED = "Paused"
    STOPPED = "Stopped"

    @classmethod
    def parse(cls, value: str) -> Self | None:
        """Return the member for ``value``, or None when it is not a valid status."""
        if not cls.is_valid(value):
            return None
        return cls(value)


class LoopStatus(_StatusEnum):
    NONE = "None"
    TRACK = "Track"
    PLAYLIST = "Playlist"

    @classmethod
    def parse(cls, value: str) -> Self:
        """Return the member for ``value``, falling back to NONE."""
        if not cls.is_valid(value):
            return cls.NONE
        return cls(value)
