"""Message bus transport interface consumed by the MPRIS engine.

The engine never talks to D-Bus directly. It goes through a ``BusConnection``,
which offers method calls, property reads, match-rule subscriptions and a fan-out
of received signals into ``SignalChannel`` queues.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

from .errors import BusError

logger = logging.getLogger(__name__)

DBUS_NAME = "org.freedesktop.DBus"
DBUS_PATH = "/org/freedesktop/DBus"
DBUS_INTERFACE = "org.freedesktop.DBus"
PROPERTIES_INTERFACE = "org.freedesktop.DBus.Properties"

MPRIS_PATH = "/org/mpris/MediaPlayer2"
MPRIS_INTERFACE = "org.mpris.MediaPlayer2"
MPRIS_PLAYER_INTERFACE = "org.mpris.MediaPlayer2.Player"

MEMBER_NAME_OWNER_CHANGED = "NameOwnerChanged"
MEMBER_PROPERTIES_CHANGED = "PropertiesChanged"


@dataclass(frozen=True)
class Signal:
    """One signal received from the bus."""

    sender: str
    path: str
    interface: str
    member: str
    args: tuple = ()

    @property
    def name(self) -> str:
        """Fully qualified signal name, e.g. ``org.freedesktop.DBus.NameOwnerChanged``."""
        return f"{self.interface}.{self.member}"


@dataclass(frozen=True)
class MatchRule:
    """Filter for a signal subscription."""

    path: str | None = None
    interface: str | None = None
    member: str | None = None
    sender: str | None = None
    arg0: str | None = None

    def to_string(self) -> str:
        """Render as a D-Bus match rule string."""
        parts = ["type='signal'"]
        for key, value in (
            ("sender", self.sender),
            ("path", self.path),
            ("interface", self.interface),
            ("member", self.member),
            ("arg0", self.arg0),
        ):
            if value:
                parts.append(f"{key}='{value}'")
        return ",".join(parts)

    def matches(self, signal: Signal) -> bool:
        """Check whether a signal passes this filter."""
        if self.sender and signal.sender != self.sender:
            return False
        if self.path and signal.path != self.path:
            return False
        if self.interface and signal.interface != self.interface:
            return False
        if self.member and signal.member != self.member:
            return False
        if self.arg0 is not None:
            if not signal.args or signal.args[0] != self.arg0:
                return False
        return True


class SignalChannel:
    """Receive side of a signal subscription.

    Signals are queued in delivery order. ``close()`` ends iteration once the
    already-queued signals have been consumed.
    """

    _CLOSED = object()

    def __init__(self):
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def put(self, signal: Signal):
        """Queue a signal. Must be called from the event loop thread."""
        if self._closed:
            return
        self._queue.put_nowait(signal)

    def close(self):
        """Close the channel. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(self._CLOSED)

    async def receive(self) -> Signal | None:
        """Wait for the next signal, or None once the channel is closed."""
        item = await self._queue.get()
        if item is self._CLOSED:
            # Keep the marker so later receivers also see the close
            self._queue.put_nowait(self._CLOSED)
            return None
        return item

    def __aiter__(self):
        return self

    async def __anext__(self) -> Signal:
        signal = await self.receive()
        if signal is None:
            raise StopAsyncIteration
        return signal


class BusConnection(ABC):
    """A managed connection to the message bus."""

    @abstractmethod
    async def call_method(
        self,
        destination: str,
        path: str,
        interface: str,
        member: str,
        signature: str = "",
        args: tuple = (),
    ) -> Any:
        """Call a remote method and return its (unwrapped) reply.

        Raises:
            BusError: the call failed on the transport or the remote side.
        """

    @abstractmethod
    async def add_match(self, rule: MatchRule) -> None:
        """Subscribe to signals matching ``rule``."""

    @abstractmethod
    async def remove_match(self, rule: MatchRule) -> None:
        """Drop a subscription. Idempotent and safe during teardown."""

    @abstractmethod
    def open_signal_channel(self) -> SignalChannel:
        """Open a channel that receives every signal delivered to this connection."""

    @abstractmethod
    def remove_signal_channel(self, channel: SignalChannel) -> None:
        """Stop delivering signals into ``channel``."""

    async def get_property(self, destination: str, path: str, interface: str, name: str) -> Any:
        """Read one property through org.freedesktop.DBus.Properties.Get."""
        return await self.call_method(
            destination, path, PROPERTIES_INTERFACE, "Get", "ss", (interface, name)
        )

    async def get_all_properties(self, destination: str, path: str, interface: str) -> dict:
        """Read every property of an interface through GetAll."""
        props = await self.call_method(
            destination, path, PROPERTIES_INTERFACE, "GetAll", "s", (interface,)
        )
        if not isinstance(props, dict):
            raise BusError(f"GetAll on {destination} returned {type(props).__name__}")
        return props

    async def list_names(self) -> list[str]:
        """List every name currently owned on the bus."""
        names = await self.call_method(DBUS_NAME, DBUS_PATH, DBUS_INTERFACE, "ListNames")
        return list(names or [])

    async def get_name_owner(self, name: str) -> str:
        """Resolve the unique connection name currently owning ``name``."""
        return await self.call_method(
            DBUS_NAME, DBUS_PATH, DBUS_INTERFACE, "GetNameOwner", "s", (name,)
        )
