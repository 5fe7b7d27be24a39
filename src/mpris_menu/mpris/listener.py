"""Background listener keeping a player's cached state in sync with the bus."""

import asyncio
import inspect
import logging
from collections.abc import Mapping
from enum import Enum
from typing import Any, Callable

from .bus import (
    DBUS_INTERFACE,
    DBUS_PATH,
    MEMBER_NAME_OWNER_CHANGED,
    MEMBER_PROPERTIES_CHANGED,
    MPRIS_PATH,
    MPRIS_PLAYER_INTERFACE,
    PROPERTIES_INTERFACE,
    BusConnection,
    MatchRule,
    Signal,
    SignalChannel,
)
from .errors import BusError

logger = logging.getLogger(__name__)

# Both callbacks run on the listener task, not on the caller's context.
# They may be plain functions or coroutine functions.
DisconnectCallback = Callable[[str], Any]
PropertyChangeCallback = Callable[[str, list[str]], Any]


class ListenerState(Enum):
    UNREGISTERED = "unregistered"
    REGISTERING = "registering"
    ACTIVE = "active"
    TORN_DOWN = "torn_down"


class PlayerListener:
    """Subscribes to one player's PropertiesChanged and NameOwnerChanged signals.

    Each batch of changed properties is applied to the player's state in
    delivery order, and ``on_property_change`` is called with the names that
    actually changed. When the player's bus name moves to another owner, or
    the signal channel closes, the listener tears down: both match rules are
    removed, the channel is closed and ``on_disconnect`` is called exactly once.
    """

    def __init__(
        self,
        connection: BusConnection,
        player,
        on_disconnect: DisconnectCallback,
        on_property_change: PropertyChangeCallback,
    ):
        self._connection = connection
        self._player = player
        self._on_disconnect = on_disconnect
        self._on_property_change = on_property_change

        self._properties_rule = MatchRule(
            path=MPRIS_PATH,
            interface=PROPERTIES_INTERFACE,
            member=MEMBER_PROPERTIES_CHANGED,
            sender=player.owner_id,
        )
        # NameOwnerChanged is sent by the bus daemon, so filter on the name instead
        self._presence_rule = MatchRule(
            path=DBUS_PATH,
            interface=DBUS_INTERFACE,
            member=MEMBER_NAME_OWNER_CHANGED,
            arg0=player.name,
        )

        self._state = ListenerState.UNREGISTERED
        self._channel: SignalChannel | None = None
        self._task: asyncio.Task | None = None

    @property
    def state(self) -> ListenerState:
        return self._state

    @property
    def active(self) -> bool:
        return self._state is ListenerState.ACTIVE

    @property
    def match_rules(self) -> tuple[MatchRule, MatchRule]:
        return self._properties_rule, self._presence_rule

    async def start(self):
        """Subscribe and start the listener task."""
        if self._state is not ListenerState.UNREGISTERED:
            return

        self._state = ListenerState.REGISTERING
        name = self._player.name

        try:
            await self._connection.add_match(self._properties_rule)
        except BusError as e:
            logger.warning(f"Could not listen on property changes for {name}: {e}")

        try:
            await self._connection.add_match(self._presence_rule)
        except BusError as e:
            logger.warning(f"Could not listen on disconnect changes for {name}: {e}")

        # stop() ran while the matches were being added
        if self._state is ListenerState.TORN_DOWN:
            await self._remove_matches()
            return

        self._channel = self._connection.open_signal_channel()
        self._state = ListenerState.ACTIVE
        self._task = asyncio.create_task(self._listen(), name=f"mpris-listener:{name}")
        logger.debug(f"Listening for changes on {name} ({self._player.owner_id})")

    async def stop(self):
        """Cancel the listener task and wait for teardown to finish."""
        if self._state is ListenerState.UNREGISTERED:
            self._state = ListenerState.TORN_DOWN
            return

        if self._task is not None and self._task is not asyncio.current_task():
            # Let a teardown already in progress finish its callbacks
            if self._state is not ListenerState.TORN_DOWN:
                self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        # A task cancelled before its first step never reaches its finally block
        await self._teardown()

    async def _listen(self):
        """Main listener loop."""
        try:
            async for signal in self._channel:
                if await self._handle_signal(signal):
                    break
        finally:
            await self._teardown()

    async def _handle_signal(self, signal: Signal) -> bool:
        """Process one signal. Returns True when the player has disconnected."""
        if signal.interface == PROPERTIES_INTERFACE and signal.member == MEMBER_PROPERTIES_CHANGED:
            await self._handle_properties_changed(signal)
            return False

        if signal.interface == DBUS_INTERFACE and signal.member == MEMBER_NAME_OWNER_CHANGED:
            return self._is_disconnect(signal)

        return False

    async def _handle_properties_changed(self, signal: Signal):
        if signal.sender != self._player.owner_id or signal.path != MPRIS_PATH:
            return

        if len(signal.args) != 3:
            logger.warning(
                f"Signal {signal.name} from {self._player.name} has {len(signal.args)} args, "
                f"expected 3"
            )
            return

        interface, changed_props, _invalidated = signal.args
        if interface != MPRIS_PLAYER_INTERFACE:
            return

        if not isinstance(changed_props, Mapping):
            logger.warning(
                f"Signal {signal.name} from {self._player.name} has an invalid body: "
                f"{changed_props!r}"
            )
            return

        changed = self._player.update_properties(changed_props)
        if changed:
            await self._notify(self._on_property_change, self._player.name, changed)

    def _is_disconnect(self, signal: Signal) -> bool:
        if len(signal.args) != 3 or not all(isinstance(arg, str) for arg in signal.args):
            logger.warning(f"Ignoring malformed {signal.name} signal: {signal.args!r}")
            return False

        name, _old_owner, new_owner = signal.args
        if name != self._player.name:
            return False

        # The name now belongs to someone else, or to nobody
        if new_owner == self._player.owner_id:
            return False

        logger.info(f"Player disconnected: {name}")
        return True

    async def _teardown(self):
        """Unsubscribe, close the channel and report the disconnect, once."""
        if self._state is ListenerState.TORN_DOWN:
            return
        self._state = ListenerState.TORN_DOWN

        await self._remove_matches()

        if self._channel is not None:
            self._connection.remove_signal_channel(self._channel)
            self._channel.close()

        await self._notify(self._on_disconnect, self._player.name)

    async def _remove_matches(self):
        for rule in (self._presence_rule, self._properties_rule):
            try:
                await self._connection.remove_match(rule)
            except BusError as e:
                logger.warning(f"Could not remove match {rule.to_string()}: {e}")

    async def _notify(self, callback: Callable, *args):
        """Invoke a callback, logging instead of propagating its errors."""
        try:
            result = callback(*args)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception(f"Callback failed for {self._player.name}")
