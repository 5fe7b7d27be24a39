"""Cached, lock-protected playback state of one player."""

import logging
import threading
from collections.abc import Mapping
from typing import Any

from .errors import MetadataDecodeError
from .metadata import TrackMetadata, decode_metadata
from .status import LoopStatus, PlaybackStatus

logger = logging.getLogger(__name__)

PROPERTY_SHUFFLE = "Shuffle"
PROPERTY_PLAYBACK_STATUS = "PlaybackStatus"
PROPERTY_LOOP_STATUS = "LoopStatus"
PROPERTY_METADATA = "Metadata"


class EndpointState:
    """Snapshot of a player's properties.

    Written by the player's listener task and read from any thread. Every
    access goes through the accessors below, which hold the lock.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._playback_status: PlaybackStatus | None = None
        self._loop_status = LoopStatus.NONE
        self._shuffle = False
        self._metadata = TrackMetadata()

    @property
    def playback_status(self) -> PlaybackStatus | None:
        with self._lock:
            return self._playback_status

    @property
    def loop_status(self) -> LoopStatus:
        with self._lock:
            return self._loop_status

    @property
    def shuffle(self) -> bool:
        with self._lock:
            return self._shuffle

    @property
    def metadata(self) -> TrackMetadata:
        with self._lock:
            return self._metadata

    def apply_changes(self, props: Mapping[str, Any]) -> list[str]:
        """Apply one batch of changed properties.

        Args:
            props: Changed properties as delivered by GetAll or PropertiesChanged.

        Returns:
            Names of the properties whose cached value actually changed. Values
            that are mistyped or invalid are dropped and not reported.
        """
        changed = []
        with self._lock:
            if PROPERTY_SHUFFLE in props:
                value = props[PROPERTY_SHUFFLE]
                if isinstance(value, bool) and value != self._shuffle:
                    self._shuffle = value
                    changed.append(PROPERTY_SHUFFLE)

            if PROPERTY_PLAYBACK_STATUS in props:
                value = props[PROPERTY_PLAYBACK_STATUS]
                if isinstance(value, str):
                    status = PlaybackStatus.parse(value)
                    if status is not None and status != self._playback_status:
                        self._playback_status = status
                        changed.append(PROPERTY_PLAYBACK_STATUS)

            if PROPERTY_LOOP_STATUS in props:
                value = props[PROPERTY_LOOP_STATUS]
                if isinstance(value, str):
                    loop = LoopStatus.parse(value)
                    if loop != self._loop_status:
                        self._loop_status = loop
                        changed.append(PROPERTY_LOOP_STATUS)

            if PROPERTY_METADATA in props:
                try:
                    self._metadata = decode_metadata(props[PROPERTY_METADATA])
                except MetadataDecodeError as e:
                    logger.debug(f"Ignoring metadata update: {e}")
                else:
                    # A successful decode always counts as a change
                    changed.append(PROPERTY_METADATA)

        return changed

    def to_dict(self) -> dict:
        """Convert to JSON-serializable dict."""
        with self._lock:
            return {
                "playback_status": str(self._playback_status) if self._playback_status else None,
                "loop_status": str(self._loop_status),
                "shuffle": self._shuffle,
                "metadata": self._metadata.to_dict(),
            }
