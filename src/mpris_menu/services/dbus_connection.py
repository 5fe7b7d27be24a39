"""D-Bus transport using dbus-python with a GLib main loop thread."""

import asyncio
import logging
import threading
from typing import Any

import dbus
import dbus.bus
import dbus.lowlevel
from dbus.mainloop.glib import DBusGMainLoop
from gi.repository import GLib

from ..mpris.bus import BusConnection, MatchRule, Signal, SignalChannel
from ..mpris.errors import BusError

logger = logging.getLogger(__name__)


def to_python(value: Any) -> Any:
    """Unwrap dbus-python types into plain Python values.

    dbus.Boolean subclasses int, so it has to be checked before the integer types.
    """
    if isinstance(value, dbus.Boolean):
        return bool(value)
    if isinstance(value, (dbus.String, dbus.ObjectPath, dbus.Signature)):
        return str(value)
    if isinstance(value, (dbus.Byte, dbus.Int16, dbus.Int32, dbus.Int64,
                          dbus.UInt16, dbus.UInt32, dbus.UInt64)):
        return int(value)
    if isinstance(value, dbus.Double):
        return float(value)
    if isinstance(value, dict):
        return {to_python(k): to_python(v) for k, v in value.items()}
    if isinstance(value, dbus.Struct):
        return tuple(to_python(v) for v in value)
    if isinstance(value, list):
        return [to_python(v) for v in value]
    return value


class DBusConnection(BusConnection):
    """BusConnection over dbus-python.

    Blocking calls run in the default thread pool. Signals arrive on the GLib
    main loop thread and are handed to the asyncio loop with call_soon_threadsafe.
    """

    def __init__(self, bus: dbus.bus.BusConnection, loop: asyncio.AbstractEventLoop):
        self._bus = bus
        self._loop = loop
        self._channels: list[SignalChannel] = []
        self._channels_lock = threading.Lock()
        self._glib_loop: GLib.MainLoop | None = None
        self._glib_thread: threading.Thread | None = None

        self._bus.add_message_filter(self._on_message)

    def start(self):
        """Run the GLib main loop that dispatches incoming signals."""
        if self._glib_thread is not None:
            return
        self._glib_loop = GLib.MainLoop()
        self._glib_thread = threading.Thread(
            target=self._glib_loop.run, name="dbus-glib", daemon=True
        )
        self._glib_thread.start()

    def close(self):
        """Stop signal dispatch and close every open channel."""
        with self._channels_lock:
            channels, self._channels = self._channels, []
        for channel in channels:
            channel.close()
        try:
            self._bus.remove_message_filter(self._on_message)
        except (dbus.exceptions.DBusException, ValueError) as e:
            logger.debug(f"Could not remove message filter: {e}")
        if self._glib_loop is not None:
            self._glib_loop.quit()
            self._glib_loop = None
            self._glib_thread = None

    async def _run_blocking(self, func, *args):
        try:
            return await self._loop.run_in_executor(None, lambda: func(*args))
        except dbus.exceptions.DBusException as e:
            raise BusError(str(e)) from e

    async def call_method(
        self,
        destination: str,
        path: str,
        interface: str,
        member: str,
        signature: str = "",
        args: tuple = (),
    ) -> Any:
        reply = await self._run_blocking(
            self._bus.call_blocking, destination, path, interface, member, signature, tuple(args)
        )
        return to_python(reply)

    async def add_match(self, rule: MatchRule) -> None:
        await self._run_blocking(self._bus.add_match_string, rule.to_string())

    async def remove_match(self, rule: MatchRule) -> None:
        try:
            await self._run_blocking(self._bus.remove_match_string, rule.to_string())
        except BusError as e:
            # Removing a rule that is already gone is not an error
            logger.debug(f"Could not remove match {rule.to_string()}: {e}")

    def open_signal_channel(self) -> SignalChannel:
        channel = SignalChannel()
        with self._channels_lock:
            self._channels.append(channel)
        return channel

    def remove_signal_channel(self, channel: SignalChannel) -> None:
        with self._channels_lock:
            if channel in self._channels:
                self._channels.remove(channel)

    def _on_message(self, bus, message):
        """Message filter, called on the GLib thread for every incoming message."""
        if isinstance(message, dbus.lowlevel.SignalMessage):
            signal = Signal(
                sender=message.get_sender() or "",
                path=message.get_path() or "",
                interface=message.get_interface() or "",
                member=message.get_member() or "",
                args=tuple(to_python(arg) for arg in message.get_args_list()),
            )
            self._loop.call_soon_threadsafe(self._dispatch, signal)
        return dbus.lowlevel.HANDLER_RESULT_NOT_YET_HANDLED

    def _dispatch(self, signal: Signal):
        with self._channels_lock:
            channels = list(self._channels)
        for channel in channels:
            channel.put(signal)


def connect_bus(bus_type: str = "session") -> DBusConnection:
    """Open a connection to the session or system bus and start dispatching signals."""
    DBusGMainLoop(set_as_default=True)
    try:
        if bus_type == "system":
            bus = dbus.SystemBus()
        else:
            bus = dbus.SessionBus()
    except dbus.exceptions.DBusException as e:
        raise BusError(f"could not connect to the {bus_type} bus: {e}") from e

    connection = DBusConnection(bus, asyncio.get_running_loop())
    connection.start()
    logger.info(f"Connected to the {bus_type} bus as {bus.get_unique_name()}")
    return connection
