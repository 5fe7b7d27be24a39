"""Decoding of MPRIS track metadata attribute bags."""

import re
from collections.abc import Mapping
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from typing import Any

from .errors import MetadataDecodeError

# Standard MPRIS metadata keys that are accepted but not kept
IGNORED_KEYS = frozenset(
    {
        "xesam:asText",
        "xesam:audioBPM",
        "xesam:autoRating",
        "xesam:comment",
        "xesam:composer",
        "xesam:discNumber",
        "xesam:firstUsed",
        "xesam:lastUsed",
        "xesam:lyricist",
        "xesam:trackNumber",
        "xesam:useCount",
        "xesam:userRating",
    }
)

_STRING_FIELDS = {
    "mpris:trackid": "id",
    "mpris:artUrl": "art_url",
    "xesam:album": "album",
    "xesam:albumArtist": "album_artist",
    "xesam:title": "title",
    "xesam:url": "url",
}

_RFC3339_FORMATS = ("%Y-%m-%dT%H:%M:%S%z", "%Y-%m-%dT%H:%M:%S.%f%z")
# strptime reads at most six fractional digits, RFC 3339 allows any number
_FRACTION_PATTERN = re.compile(r"\.(\d+)")


@dataclass(frozen=True)
class TrackMetadata:
    """Metadata of the item a player is currently playing."""

    id: str = ""
    length: timedelta = timedelta(0)
    art_url: str = ""
    artist: str = ""
    album: str = ""
    album_artist: str = ""
    title: str = ""
    genre: str = ""
    # Signed 8-bit, see _to_int8
    year: int = 0
    url: str = ""

    def to_dict(self) -> dict:
        """Convert to JSON-serializable dict."""
        data = asdict(self)
        data["length"] = self.length.total_seconds()
        return data


def decode_metadata(metadata: Any) -> TrackMetadata:
    """Decode an ``a{sv}`` metadata bag into a TrackMetadata.

    Fields with a missing or mistyped value keep their zero value; only a
    top-level value that is not a mapping is an error.

    Raises:
        MetadataDecodeError: metadata is not a key/value structure.
    """
    if not isinstance(metadata, Mapping):
        raise MetadataDecodeError(
            f"metadata is not a valid structure: {type(metadata).__name__}"
        )

    fields: dict[str, Any] = {}
    for key, value in metadata.items():
        target = _STRING_FIELDS.get(key)
        if target is not None:
            if isinstance(value, str):
                fields[target] = value
        elif key == "mpris:length":
            if isinstance(value, int) and not isinstance(value, bool):
                fields["length"] = timedelta(microseconds=value)
        elif key == "xesam:artist":
            joined = _join_strings(value)
            if joined is not None:
                fields["artist"] = joined
        elif key == "xesam:genre":
            joined = _join_strings(value)
            if joined is not None:
                fields["genre"] = joined
        elif key == "xesam:contentCreated":
            year = _parse_year(value)
            if year is not None:
                fields["year"] = year
        elif key in IGNORED_KEYS:
            continue

    return TrackMetadata(**fields)


def _join_strings(value: Any) -> str | None:
    """Accept a string or a list of strings, joining lists with ", "."""
    if isinstance(value, str):
        return value
    if isinstance(value, (list, tuple)) and all(isinstance(v, str) for v in value):
        return ", ".join(value)
    return None


def _parse_year(value: Any) -> int | None:
    """Extract the calendar year from an RFC 3339 timestamp."""
    if not isinstance(value, str):
        return None
    value = _FRACTION_PATTERN.sub(lambda m: "." + m.group(1)[:6], value, count=1)
    for fmt in _RFC3339_FORMATS:
        try:
            return _to_int8(datetime.strptime(value, fmt).year)
        except ValueError:
            continue
    return None


def _to_int8(value: int) -> int:
    """Wrap an integer into the signed 8-bit range (2023 -> -25).

    Players expose the year as a full timestamp but the cached record only
    keeps a signed byte, so real-world years wrap around.
    """
    return (value + 128) % 256 - 128
