"""MPRIS player handle: identity, cached state and remote control."""

import logging
import posixpath
import re
from collections.abc import Mapping
from typing import Any

from .bus import MPRIS_INTERFACE, MPRIS_PATH, MPRIS_PLAYER_INTERFACE, BusConnection
from .errors import (
    BusError,
    InvalidDestinationError,
    OperationNotImplementedError,
    UnsupportedOperationError,
)
from .listener import DisconnectCallback, PlayerListener, PropertyChangeCallback
from .metadata import TrackMetadata
from .state import EndpointState
from .status import LoopStatus, PlaybackStatus

logger = logging.getLogger(__name__)

DESTINATION_PATTERN = re.compile(r"^org\.mpris\.MediaPlayer2\.([a-zA-Z_-][a-zA-Z0-9_.-]*)$")


def has_valid_destination_name(name: str) -> bool:
    """Check that a bus name follows the org.mpris.MediaPlayer2.<player> convention."""
    return DESTINATION_PATTERN.match(name) is not None


class Player:
    """One MPRIS media player on the bus.

    Control methods query the matching ``Can*`` capability first and raise
    ``UnsupportedOperationError`` without calling the player when it is
    missing. They must not be awaited from the player's own listener task.
    """

    def __init__(self, connection: BusConnection, name: str, owner_id: str):
        match = DESTINATION_PATTERN.match(name)
        if match is None:
            raise InvalidDestinationError(f"destination is not valid: {name!r}")

        self._connection = connection
        self._state = EndpointState()
        self._listener: PlayerListener | None = None

        self.name = name
        self.short = match.group(1)
        self.owner_id = owner_id

    def __repr__(self) -> str:
        return f"Player(name={self.name!r}, owner_id={self.owner_id!r})"

    # State

    @property
    def connected(self) -> bool:
        return self._listener is not None and self._listener.active

    @property
    def playback_status(self) -> PlaybackStatus | None:
        return self._state.playback_status

    @property
    def loop_status(self) -> LoopStatus:
        return self._state.loop_status

    @property
    def shuffle(self) -> bool:
        return self._state.shuffle

    @property
    def metadata(self) -> TrackMetadata:
        return self._state.metadata

    def is_playing(self) -> bool:
        return self.playback_status is PlaybackStatus.PLAYING

    def update_properties(self, props: Mapping[str, Any]) -> list[str]:
        """Apply a batch of changed properties and return the names that changed."""
        return self._state.apply_changes(props)

    # Lifecycle

    async def register(
        self,
        on_disconnect: DisconnectCallback,
        on_property_change: PropertyChangeCallback,
    ):
        """Attach the listener that keeps this player's state in sync."""
        self._listener = PlayerListener(self._connection, self, on_disconnect, on_property_change)
        await self._listener.start()

    async def close(self):
        """Stop listening. The disconnect callback still fires once."""
        if self._listener is not None:
            await self._listener.stop()

    # Capabilities

    async def _get_capability(self, interface: str, prop: str) -> bool:
        try:
            value = await self._connection.get_property(self.name, MPRIS_PATH, interface, prop)
        except BusError as e:
            logger.debug(f"Could not read {prop} on {self.name}: {e}")
            return False
        return isinstance(value, bool) and value

    async def can_raise(self) -> bool:
        return await self._get_capability(MPRIS_INTERFACE, "CanRaise")

    async def can_quit(self) -> bool:
        return await self._get_capability(MPRIS_INTERFACE, "CanQuit")

    async def can_play(self) -> bool:
        return await self._get_capability(MPRIS_PLAYER_INTERFACE, "CanPlay")

    async def can_pause(self) -> bool:
        return await self._get_capability(MPRIS_PLAYER_INTERFACE, "CanPause")

    async def can_control(self) -> bool:
        return await self._get_capability(MPRIS_PLAYER_INTERFACE, "CanControl")

    async def can_go_next(self) -> bool:
        return await self._get_capability(MPRIS_PLAYER_INTERFACE, "CanGoNext")

    async def can_go_previous(self) -> bool:
        return await self._get_capability(MPRIS_PLAYER_INTERFACE, "CanGoPrevious")

    async def can_seek(self) -> bool:
        return await self._get_capability(MPRIS_PLAYER_INTERFACE, "CanSeek")

    # Control

    async def _call(self, interface: str, method: str, signature: str = "", args: tuple = ()):
        await self._connection.call_method(
            self.name, MPRIS_PATH, interface, method, signature, args
        )

    async def raise_(self):
        """Bring the player's user interface to the front."""
        if not await self.can_raise():
            raise UnsupportedOperationError(f"Raise: unsupported by {self.name}")
        await self._call(MPRIS_INTERFACE, "Raise")

    async def quit(self):
        if not await self.can_quit():
            raise UnsupportedOperationError(f"Quit: unsupported by {self.name}")
        await self._call(MPRIS_INTERFACE, "Quit")

    async def play(self):
        if self.playback_status is PlaybackStatus.PLAYING:
            return
        if not await self.can_play():
            raise UnsupportedOperationError(f"Play: unsupported by {self.name}")
        await self._call(MPRIS_PLAYER_INTERFACE, "Play")

    async def pause(self):
        if self.playback_status is PlaybackStatus.PAUSED:
            return
        if not await self.can_pause():
            raise UnsupportedOperationError(f"Pause: unsupported by {self.name}")
        await self._call(MPRIS_PLAYER_INTERFACE, "Pause")

    async def play_pause(self):
        # Either half of the toggle may be what the player ends up doing
        if not await self.can_pause() or not await self.can_play():
            raise UnsupportedOperationError(f"PlayPause: unsupported by {self.name}")
        await self._call(MPRIS_PLAYER_INTERFACE, "PlayPause")

    async def stop(self):
        if self.playback_status is PlaybackStatus.STOPPED:
            return
        if not await self.can_control():
            raise UnsupportedOperationError(f"Stop: unsupported by {self.name}")
        await self._call(MPRIS_PLAYER_INTERFACE, "Stop")

    async def next(self):
        if not await self.can_go_next():
            raise UnsupportedOperationError(f"Next: unsupported by {self.name}")
        await self._call(MPRIS_PLAYER_INTERFACE, "Next")

    async def previous(self):
        if not await self.can_go_previous():
            raise UnsupportedOperationError(f"Previous: unsupported by {self.name}")
        await self._call(MPRIS_PLAYER_INTERFACE, "Previous")

    async def seek(self, seconds: int):
        """Seek relative to the current position.

        Args:
            seconds: Offset in whole seconds, negative to seek backwards.
        """
        if not await self.can_seek():
            raise UnsupportedOperationError(f"Seek: unsupported by {self.name}")
        await self._call(MPRIS_PLAYER_INTERFACE, "Seek", "x", (int(seconds) * 1_000_000,))

    async def set_position(self, track_id: str, position_us: int):
        raise OperationNotImplementedError("SetPosition is not implemented")

    async def open_uri(self, uri: str):
        raise OperationNotImplementedError("OpenUri is not implemented")

    # Display

    def display_title(self) -> str:
        """Best human-readable label: title, else URL basename, else short name."""
        metadata = self.metadata
        if metadata.title:
            return metadata.title
        if metadata.url:
            return posixpath.basename(metadata.url.rstrip("/")) or self.short
        return self.short

    def to_dict(self) -> dict:
        """Convert to JSON-serializable dict."""
        return {
            "name": self.name,
            "short": self.short,
            "owner_id": self.owner_id,
            "connected": self.connected,
            "title": self.display_title(),
            **self._state.to_dict(),
        }


async def new_player(
    connection: BusConnection,
    name: str,
    owner_id: str,
    on_disconnect: DisconnectCallback,
    on_property_change: PropertyChangeCallback,
) -> Player:
    """Create a player, seed its state with GetAll and start listening.

    Raises:
        InvalidDestinationError: name is not an MPRIS bus name. Nothing is sent
            on the bus in that case.
        BusError: the initial GetAll failed.
    """
    player = Player(connection, name, owner_id)

    try:
        props = await connection.get_all_properties(name, MPRIS_PATH, MPRIS_PLAYER_INTERFACE)
    except BusError as e:
        raise BusError(f"Could not get all properties on {name}: {e}") from e

    player.update_properties(props)
    await player.register(on_disconnect, on_property_change)
    return player
