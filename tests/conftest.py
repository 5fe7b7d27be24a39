"""Shared test fixtures and configuration."""

import asyncio
from typing import Any, Awaitable, Callable

import pytest

from mpris_menu.config import BusConfig, ControlsConfig, ServerConfig, Settings
from mpris_menu.mpris.bus import (
    DBUS_INTERFACE,
    DBUS_NAME,
    DBUS_PATH,
    MEMBER_NAME_OWNER_CHANGED,
    MEMBER_PROPERTIES_CHANGED,
    MPRIS_INTERFACE,
    MPRIS_PATH,
    MPRIS_PLAYER_INTERFACE,
    PROPERTIES_INTERFACE,
    BusConnection,
    MatchRule,
    Signal,
    SignalChannel,
)
from mpris_menu.mpris.errors import BusError

SPOTIFY = "org.mpris.MediaPlayer2.spotify"
SPOTIFY_OWNER = ":1.42"
VLC = "org.mpris.MediaPlayer2.vlc.instance1234"
VLC_OWNER = ":1.77"


def make_metadata(**overrides) -> dict:
    """Helper to create an a{sv} metadata bag as a player would send it."""
    metadata = {
        "mpris:trackid": "/org/mpris/MediaPlayer2/Track/1",
        "mpris:length": 215_000_000,
        "mpris:artUrl": "https://i.scdn.co/image/ab67616d",
        "xesam:title": "Test Song",
        "xesam:artist": ["Test Artist"],
        "xesam:album": "Test Album",
        "xesam:albumArtist": ["Test Artist"],
        "xesam:url": "https://open.spotify.com/track/1",
    }
    metadata.update(overrides)
    return metadata


def make_player_props(**overrides) -> dict:
    """Helper to create the org.mpris.MediaPlayer2.Player property set."""
    props = {
        "PlaybackStatus": "Paused",
        "LoopStatus": "None",
        "Shuffle": False,
        "Metadata": make_metadata(),
        "CanPlay": True,
        "CanPause": True,
        "CanControl": True,
        "CanGoNext": True,
        "CanGoPrevious": True,
        "CanSeek": True,
    }
    props.update(overrides)
    return props


class FakeBusConnection(BusConnection):
    """In-memory stand-in for the message bus.

    Serves properties per (bus name, interface), records method calls and
    match rules, and delivers emitted signals into every open channel.
    """

    def __init__(self):
        self.names: dict[str, str] = {}
        self.properties: dict[tuple[str, str], dict[str, Any]] = {}
        self.calls: list[tuple] = []
        self.property_reads: list[tuple[str, str, str]] = []
        self.call_errors: dict[str, Exception] = {}
        self.property_errors: dict[str, Exception] = {}
        self.get_all_error: Exception | None = None
        # Awaited with the destination before each GetAll reply
        self.on_get_all: Callable[[str], Awaitable[None]] | None = None
        self.add_match_error: Exception | None = None
        self.added_matches: list[MatchRule] = []
        self.removed_matches: list[MatchRule] = []
        self.channels: list[SignalChannel] = []
        self.removed_channels: list[SignalChannel] = []

    def add_player(
        self,
        name: str,
        owner_id: str,
        player_props: dict | None = None,
        root_props: dict | None = None,
    ):
        self.names[name] = owner_id
        self.properties[(name, MPRIS_PLAYER_INTERFACE)] = (
            make_player_props() if player_props is None else player_props
        )
        self.properties[(name, MPRIS_INTERFACE)] = (
            {"CanRaise": True, "CanQuit": True} if root_props is None else root_props
        )

    def player_calls(self) -> list[str]:
        """Names of the methods called on MPRIS interfaces."""
        return [
            member
            for _dest, interface, member, _sig, _args in self.calls
            if interface in (MPRIS_INTERFACE, MPRIS_PLAYER_INTERFACE)
        ]

    async def call_method(
        self,
        destination: str,
        path: str,
        interface: str,
        member: str,
        signature: str = "",
        args: tuple = (),
    ) -> Any:
        if interface == PROPERTIES_INTERFACE and member == "Get":
            prop_interface, prop = args
            self.property_reads.append((destination, prop_interface, prop))
            if prop in self.property_errors:
                raise self.property_errors[prop]
            props = self.properties.get((destination, prop_interface), {})
            if prop not in props:
                raise BusError(f"No such property '{prop}'")
            return props[prop]

        if interface == PROPERTIES_INTERFACE and member == "GetAll":
            if self.on_get_all is not None:
                await self.on_get_all(destination)
            if self.get_all_error is not None:
                raise self.get_all_error
            if (destination, args[0]) not in self.properties:
                raise BusError(f"The name {destination} was not provided by any .service files")
            return dict(self.properties[(destination, args[0])])

        if destination == DBUS_NAME and member == "ListNames":
            return [DBUS_NAME, ":1.1", "org.freedesktop.Notifications", *self.names]

        if destination == DBUS_NAME and member == "GetNameOwner":
            if args[0] not in self.names:
                raise BusError(f"Could not get owner of name '{args[0]}'")
            return self.names[args[0]]

        self.calls.append((destination, interface, member, signature, tuple(args)))
        if member in self.call_errors:
            raise self.call_errors[member]
        return None

    async def add_match(self, rule: MatchRule) -> None:
        if self.add_match_error is not None:
            raise self.add_match_error
        self.added_matches.append(rule)

    async def remove_match(self, rule: MatchRule) -> None:
        self.removed_matches.append(rule)

    def open_signal_channel(self) -> SignalChannel:
        channel = SignalChannel()
        self.channels.append(channel)
        return channel

    def remove_signal_channel(self, channel: SignalChannel) -> None:
        if channel in self.channels:
            self.channels.remove(channel)
        self.removed_channels.append(channel)

    def emit(self, signal: Signal):
        for channel in list(self.channels):
            channel.put(signal)

    def emit_properties_changed(
        self,
        sender: str,
        changed: Any,
        interface: str = MPRIS_PLAYER_INTERFACE,
        invalidated: list | None = None,
    ):
        self.emit(
            Signal(
                sender=sender,
                path=MPRIS_PATH,
                interface=PROPERTIES_INTERFACE,
                member=MEMBER_PROPERTIES_CHANGED,
                args=(interface, changed, invalidated or []),
            )
        )

    def emit_name_owner_changed(self, name: str, old_owner: str, new_owner: str):
        self.emit(
            Signal(
                sender=DBUS_NAME,
                path=DBUS_PATH,
                interface=DBUS_INTERFACE,
                member=MEMBER_NAME_OWNER_CHANGED,
                args=(name, old_owner, new_owner),
            )
        )


class CallbackRecorder:
    """Collects on_disconnect / on_property_change invocations."""

    def __init__(self):
        self.disconnects: list[str] = []
        self.changes: list[tuple[str, list[str]]] = []

    def on_disconnect(self, name: str):
        self.disconnects.append(name)

    def on_property_change(self, name: str, changed: list[str]):
        self.changes.append((name, changed))


async def settle():
    """Let pending listener work run."""
    for _ in range(20):
        await asyncio.sleep(0)


async def wait_until(predicate: Callable[[], bool], timeout: float = 1.0):
    """Poll until predicate() holds or fail after timeout."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.005)


@pytest.fixture
def fake_bus() -> FakeBusConnection:
    """A bus with Spotify already running."""
    bus = FakeBusConnection()
    bus.add_player(SPOTIFY, SPOTIFY_OWNER)
    return bus


@pytest.fixture
def recorder() -> CallbackRecorder:
    return CallbackRecorder()


@pytest.fixture
def test_settings() -> Settings:
    """Create test settings."""
    return Settings(
        server=ServerConfig(host="127.0.0.1", port=5175, debug=True),
        bus=BusConfig(type="session"),
        controls=ControlsConfig(exclusive_play=True),
    )
