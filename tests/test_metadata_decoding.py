"""Tests for decoding MPRIS metadata bags into TrackMetadata.

These tests verify:
- String, list and integer fields are decoded by key
- Mistyped or missing values fall back to zero values without failing
- Known-but-unused keys and unknown keys are ignored
- Only a non-mapping top-level value is a decode error
- The release year keeps its signed 8-bit narrowing
"""

from datetime import timedelta

import pytest

from mpris_menu.mpris.errors import MetadataDecodeError
from mpris_menu.mpris.metadata import IGNORED_KEYS, TrackMetadata, decode_metadata


class TestStringFields:
    """Test fields copied verbatim when they are strings."""

    def test_full_bag(self):
        """Test every string field is copied."""
        m = decode_metadata(
            {
                "mpris:trackid": "/org/mpris/MediaPlayer2/Track/7",
                "mpris:artUrl": "file:///tmp/cover.png",
                "xesam:album": "Blue Train",
                "xesam:albumArtist": "John Coltrane",
                "xesam:title": "Moment's Notice",
                "xesam:url": "file:///music/moments_notice.flac",
            }
        )
        assert m.id == "/org/mpris/MediaPlayer2/Track/7"
        assert m.art_url == "file:///tmp/cover.png"
        assert m.album == "Blue Train"
        assert m.album_artist == "John Coltrane"
        assert m.title == "Moment's Notice"
        assert m.url == "file:///music/moments_notice.flac"

    def test_mistyped_string_left_empty(self):
        """Test a non-string title leaves the field at its zero value."""
        m = decode_metadata({"xesam:title": 42, "xesam:album": "Still Here"})
        assert m.title == ""
        assert m.album == "Still Here"

    def test_album_artist_list_is_not_a_string(self):
        """Test albumArtist only accepts a plain string."""
        m = decode_metadata({"xesam:albumArtist": ["A", "B"]})
        assert m.album_artist == ""


class TestArtistAndGenre:
    """Test list-or-string fields."""

    def test_artist_list_joined(self):
        """Test an artist list is joined with comma-space."""
        assert decode_metadata({"xesam:artist": ["A", "B"]}).artist == "A, B"

    def test_artist_string_unchanged(self):
        """Test a single artist string is kept as is."""
        assert decode_metadata({"xesam:artist": "A"}).artist == "A"

    def test_artist_list_keeps_source_order(self):
        """Test joined artists keep the order the player sent."""
        m = decode_metadata({"xesam:artist": ["Zed", "Alpha", "Mid"]})
        assert m.artist == "Zed, Alpha, Mid"

    def test_artist_list_with_non_string_ignored(self):
        """Test a list containing a non-string is treated as mistyped."""
        assert decode_metadata({"xesam:artist": ["A", 3]}).artist == ""

    def test_empty_artist_list(self):
        """Test an empty list decodes to an empty string."""
        assert decode_metadata({"xesam:artist": []}).artist == ""

    def test_genre_list_joined(self):
        """Test genres are joined like artists."""
        assert decode_metadata({"xesam:genre": ["Jazz", "Hard Bop"]}).genre == "Jazz, Hard Bop"

    def test_genre_string(self):
        """Test a single genre string is accepted."""
        assert decode_metadata({"xesam:genre": "Jazz"}).genre == "Jazz"


class TestLength:
    """Test mpris:length conversion."""

    def test_microseconds_to_timedelta(self):
        """Test 5,000,000 microseconds is exactly 5 seconds."""
        assert decode_metadata({"mpris:length": 5_000_000}).length == timedelta(seconds=5)

    def test_missing_length_is_zero(self):
        """Test absent length decodes to zero."""
        assert decode_metadata({}).length == timedelta(0)

    def test_string_length_ignored(self):
        """Test a string length is mistyped."""
        assert decode_metadata({"mpris:length": "5000000"}).length == timedelta(0)

    def test_bool_length_ignored(self):
        """Test a boolean is not taken as an integer length."""
        assert decode_metadata({"mpris:length": True}).length == timedelta(0)


class TestYear:
    """Test xesam:contentCreated year extraction and its narrow range."""

    def test_small_year_fits(self):
        """Test a year inside the signed byte range is kept."""
        assert decode_metadata({"xesam:contentCreated": "0099-01-01T00:00:00Z"}).year == 99

    def test_modern_year_wraps_to_signed_byte(self):
        """Test 2023 wraps to -25: the year is stored in a signed 8-bit field."""
        m = decode_metadata({"xesam:contentCreated": "2023-05-17T10:00:00+02:00"})
        assert m.year == -25

    def test_year_with_fractional_seconds(self):
        """Test RFC 3339 timestamps with fractional seconds parse."""
        m = decode_metadata({"xesam:contentCreated": "1999-12-31T23:59:59.250Z"})
        assert m.year == (1999 + 128) % 256 - 128

    @pytest.mark.parametrize(
        "timestamp",
        ["2023-05-17T10:00:00.123456789Z", "2023-05-17T10:00:00.1234567+02:00"],
    )
    def test_year_with_nanosecond_fraction(self, timestamp):
        """Test fractions longer than microseconds still yield the year."""
        assert decode_metadata({"xesam:contentCreated": timestamp}).year == -25

    def test_date_only_is_not_rfc3339(self):
        """Test a bare date leaves the year at zero."""
        assert decode_metadata({"xesam:contentCreated": "2023-05-17"}).year == 0

    def test_garbage_timestamp(self):
        """Test an unparseable timestamp leaves the year at zero."""
        assert decode_metadata({"xesam:contentCreated": "last tuesday"}).year == 0

    def test_non_string_timestamp(self):
        """Test a numeric timestamp is mistyped."""
        assert decode_metadata({"xesam:contentCreated": 1684310400}).year == 0


class TestRobustness:
    """Test decoding never fails on field-level problems."""

    def test_ignored_keys_accepted(self):
        """Test every known-but-unused key decodes without error."""
        bag = {key: object() for key in IGNORED_KEYS}
        bag["xesam:title"] = "Kept"
        m = decode_metadata(bag)
        assert m == TrackMetadata(title="Kept")

    def test_unknown_keys_ignored(self):
        """Test vendor keys are silently skipped."""
        m = decode_metadata({"spotify:popularity": 80, "xesam:title": "Song"})
        assert m.title == "Song"

    def test_empty_bag(self):
        """Test an empty bag yields an all-zero record."""
        assert decode_metadata({}) == TrackMetadata()

    def test_deterministic(self):
        """Test decoding the same bag twice yields equal records."""
        bag = {"xesam:artist": ["A", "B"], "mpris:length": 1, "junk": None}
        assert decode_metadata(bag) == decode_metadata(dict(bag))

    @pytest.mark.parametrize("value", [None, "Metadata", 7, ["xesam:title", "x"]])
    def test_non_mapping_is_structural_error(self, value):
        """Test a top-level value that is not a mapping raises."""
        with pytest.raises(MetadataDecodeError):
            decode_metadata(value)

    def test_record_is_immutable(self):
        """Test decoded records cannot be mutated in place."""
        m = decode_metadata({"xesam:title": "Song"})
        with pytest.raises(AttributeError):
            m.title = "Other"  # type: ignore[misc]

    def test_to_dict_serializes_length_in_seconds(self):
        """Test to_dict renders length as float seconds."""
        data = decode_metadata({"mpris:length": 1_500_000, "xesam:title": "Song"}).to_dict()
        assert data["length"] == 1.5
        assert data["title"] == "Song"
