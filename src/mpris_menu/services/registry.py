"""Registry of live MPRIS players on the bus."""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Awaitable, Callable

from ..config import get_settings
from ..mpris.bus import (
    DBUS_INTERFACE,
    DBUS_PATH,
    MEMBER_NAME_OWNER_CHANGED,
    BusConnection,
    MatchRule,
    Signal,
    SignalChannel,
)
from ..mpris.errors import BusError, MprisError, PlayerNotFoundError
from ..mpris.player import Player, has_valid_destination_name, new_player

logger = logging.getLogger(__name__)

COMMANDS = (
    "play",
    "play_one",
    "pause",
    "play_pause",
    "stop",
    "next",
    "previous",
    "seek",
    "raise",
    "quit",
)


class PlayerEventType(str, Enum):
    CONNECTED = "Connected"
    PROPERTY_CHANGED = "PropertyChanged"
    DISCONNECTED = "Disconnected"


@dataclass
class PlayerEvent:
    """Something happened to one player."""

    type: PlayerEventType
    name: str
    changed: list[str] = field(default_factory=list)
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict:
        """Convert to JSON-serializable dict."""
        return {
            "type": self.type.value,
            "name": self.name,
            "changed": self.changed,
            "timestamp": self.timestamp.isoformat(),
        }


Subscriber = Callable[[PlayerEvent], Awaitable[None]]


class PlayerRegistry:
    """Discovers players, owns their handles and fans out their events."""

    def __init__(self):
        self._connection: BusConnection | None = None
        self._players: dict[str, Player] = {}
        # Names being built, mapped to the latest owner seen for them
        self._pending: dict[str, str] = {}
        self._subscribers: list[Subscriber] = []
        self._channel: SignalChannel | None = None
        self._task: asyncio.Task | None = None
        self._running = False
        self._owner_rule = MatchRule(
            path=DBUS_PATH,
            interface=DBUS_INTERFACE,
            member=MEMBER_NAME_OWNER_CHANGED,
        )

    @property
    def running(self) -> bool:
        return self._running

    def players(self) -> list[Player]:
        """Snapshot of the live players, sorted by bus name."""
        return [self._players[name] for name in sorted(self._players)]

    def get(self, name: str) -> Player:
        player = self._players.get(name)
        if player is None:
            raise PlayerNotFoundError(name)
        return player

    def subscribe(self, callback: Subscriber):
        """Subscribe to player events."""
        self._subscribers.append(callback)

    def unsubscribe(self, callback: Subscriber):
        """Unsubscribe from player events."""
        if callback in self._subscribers:
            self._subscribers.remove(callback)

    async def start(self, connection: BusConnection):
        """Watch the bus for players and register the ones already present."""
        if self._running:
            return

        self._running = True
        self._connection = connection

        try:
            await connection.add_match(self._owner_rule)
        except BusError as e:
            logger.warning(f"Could not listen for new players: {e}")

        self._channel = connection.open_signal_channel()
        self._task = asyncio.create_task(self._watch_loop())
        await self._discover()
        logger.info(f"Registry started with players: {sorted(self._players)}")

    async def stop(self):
        """Stop watching and tear down every player."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        if self._channel is not None:
            self._connection.remove_signal_channel(self._channel)
            self._channel.close()
            self._channel = None
            try:
                await self._connection.remove_match(self._owner_rule)
            except BusError as e:
                logger.warning(f"Could not stop listening for new players: {e}")

        for player in list(self._players.values()):
            await player.close()
        self._players.clear()
        logger.info("Registry stopped")

    async def _discover(self):
        """Register every MPRIS player that already owns a name."""
        try:
            names = await self._connection.list_names()
        except BusError as e:
            logger.error(f"Could not list bus names: {e}")
            return

        for name in names:
            if not has_valid_destination_name(name):
                continue
            try:
                owner_id = await self._connection.get_name_owner(name)
            except BusError as e:
                logger.warning(f"Couldn't find owner for {name}: {e}")
                continue
            await self.add_player(name, owner_id)

    async def _watch_loop(self):
        """Register players as they appear on the bus."""
        async for signal in self._channel:
            try:
                await self._handle_owner_changed(signal)
            except Exception as e:
                logger.error(f"Discovery error: {e}")

    async def _handle_owner_changed(self, signal: Signal):
        if signal.interface != DBUS_INTERFACE or signal.member != MEMBER_NAME_OWNER_CHANGED:
            return
        if len(signal.args) != 3:
            logger.warning(f"Signal {signal.name} has {len(signal.args)} args, expected 3")
            return

        name, _old_owner, new_owner = signal.args
        if not isinstance(name, str) or not has_valid_destination_name(name):
            return
        if not isinstance(new_owner, str):
            return

        if name in self._pending:
            # Build in progress; it picks up the latest owner when it finishes
            self._pending[name] = new_owner
            return
        if new_owner:
            logger.info(f"Discovered new player: {name}")
            await self.add_player(name, new_owner)

    async def add_player(self, name: str, owner_id: str) -> Player | None:
        """Create and register a player, replacing a stale handle for the same name."""
        existing = self._players.get(name)
        if existing is not None and existing.owner_id == owner_id:
            return existing
        if name in self._pending:
            self._pending[name] = owner_id
            return None

        self._pending[name] = owner_id
        try:
            player = await self._build_player(name, owner_id)
        finally:
            del self._pending[name]

        if player is None:
            return None

        self._players[name] = player
        if existing is not None:
            await existing.close()

        await self._publish(PlayerEvent(PlayerEventType.CONNECTED, name))
        return player

    async def _build_player(self, name: str, owner_id: str) -> Player | None:
        """Create a handle, rebuilding it while the name changes owner underneath."""
        while True:
            try:
                player = await new_player(
                    self._connection,
                    name,
                    owner_id,
                    self._make_disconnect_handler(owner_id),
                    self._on_property_change,
                )
            except MprisError as e:
                logger.warning(f"Could not create a new player from {name}: {e}")
                player = None

            latest = self._pending[name]
            if latest == owner_id:
                return player

            # Bound to an owner that has already left the bus
            if player is not None:
                await player.close()
            if not latest:
                logger.info(f"Player disconnected while connecting: {name}")
                return None
            owner_id = latest

    def _make_disconnect_handler(self, owner_id: str):
        async def on_disconnect(name: str):
            # Only drop the handle this callback belongs to, not its replacement
            player = self._players.get(name)
            if player is None or player.owner_id != owner_id:
                return
            del self._players[name]
            await self._publish(PlayerEvent(PlayerEventType.DISCONNECTED, name))

        return on_disconnect

    async def _on_property_change(self, name: str, changed: list[str]):
        await self._publish(PlayerEvent(PlayerEventType.PROPERTY_CHANGED, name, list(changed)))

    async def _publish(self, event: PlayerEvent):
        await asyncio.gather(
            *[self._safe_notify(callback, event) for callback in self._subscribers],
            return_exceptions=True,
        )

    async def _safe_notify(self, callback: Subscriber, event: PlayerEvent):
        """Safely notify a subscriber, catching any exceptions."""
        try:
            await callback(event)
        except Exception:
            logger.exception(f"Subscriber failed on {event.type.value} for {event.name}")

    async def execute(self, name: str, command: str, *args):
        """Run a front-end command against one player.

        Raises:
            PlayerNotFoundError: no player is registered under ``name``.
            ValueError: unknown command.
            UnsupportedOperationError, OperationNotImplementedError, BusError:
                from the player.
        """
        if command not in COMMANDS:
            raise ValueError(f"unknown command: {command!r}")

        player = self.get(name)

        if command == "play":
            if get_settings().controls.exclusive_play:
                await self._pause_others(player)
            await player.play()
            return

        actions = {
            "play_one": player.play,
            "pause": player.pause,
            "play_pause": player.play_pause,
            "stop": player.stop,
            "next": player.next,
            "previous": player.previous,
            "seek": player.seek,
            "raise": player.raise_,
            "quit": player.quit,
        }
        await actions[command](*args)

    async def _pause_others(self, selected: Player):
        for player in self.players():
            if player is selected or not player.is_playing():
                continue
            try:
                await player.pause()
            except MprisError as e:
                logger.warning(f"Could not pause ({player.name}): {e}")


# Global singleton
registry = PlayerRegistry()
