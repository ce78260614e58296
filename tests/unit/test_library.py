"""Tests for library ingestion and snapshots."""
import pytest

from tanda_planner.library import LibrarySnapshot, LibraryStore, to_seconds, track_from_record
from tanda_planner.string_utils import encode_path_token


@pytest.mark.parametrize(
    "value,expected",
    [
        (185, 185),
        (185000, 185),
        ("3:05", 185),
        ("1:00:05", 3605),
        ("185", 185),
        ("n/a", 0),
        (None, 0),
        (float("nan"), 0),
    ],
)
def test_to_seconds(value, expected):
    assert to_seconds(value) == expected


class TestTrackFromRecord:
    """Alias resolution from raw records."""

    def test_nested_tags_win(self):
        track = track_from_record({
            "id": "x1",
            "title": "Flat title",
            "tags": {"title": "Tag title", "artist": " Ricardo Tanturi ", "genre": "Tango", "Key": "Am", "year": "1941-05-01"},
            "file": {"absPath": "/m/tanturi/x1.flac"},
            "format": {"durationSec": 172},
            "BPM": "121.44",
        })
        assert track.title == "Tag title"
        assert track.artist == "Ricardo Tanturi"
        assert track.genres == ("tango",)
        assert track.camelot == "8A"
        assert track.year == 1941
        assert track.seconds == 172
        assert track.bpm == 121.4
        assert track.path == "/m/tanturi/x1.flac"

    def test_title_falls_back_to_file_name(self):
        track = track_from_record({"file": {"absPath": "C:\\music\\Poema.mp3"}})
        assert track.track_id == "C:\\music\\Poema.mp3"
        assert track.title == "Poema.mp3"
        assert track.artist == "Unknown"

    def test_record_without_identity_is_skipped(self):
        assert track_from_record({"tags": {"title": "Ghost"}}) is None

    def test_styles_mapping_wins_over_genre(self):
        track = track_from_record({"id": "y", "styles": {"Vals": True, "Tango": False}, "genre": ["Milonga"]})
        assert track.genres == ("vals",)
        assert track.has_style("Vals")
        assert not track.has_style("Tango")
        assert not track.has_style("Milonga")

    def test_genre_sources_in_order(self):
        """styles, then tags.genre, then genre; the first non-empty one is used."""
        assert track_from_record({"id": "a", "styles": [], "tags": {"genre": "Vals"}, "genre": "Tango"}).genres == ("vals",)
        assert track_from_record({"id": "b", "tags": {"genre": ""}, "genre": ["Milonga", "Tango"]}).genres == ("milonga", "tango")
        assert track_from_record({"id": "c"}).genres == ()


class TestLibrarySnapshot:
    """Alias-tolerant lookups."""

    def test_get_by_any_alias(self, snapshot):
        track = snapshot.get("ds1")
        assert track is not None
        assert snapshot.get("/MUSIC/Carlos Di Sarli/Tango Sarli 1.wav") is track
        assert snapshot.get("file:///music/Carlos%20Di%20Sarli/Tango%20Sarli%201.mp3") is track
        assert snapshot.get(encode_path_token(track.path)) is track

    def test_unknown_identity(self, snapshot):
        assert snapshot.get("nope") is None
        assert snapshot.get(None) is None

    def test_from_records_skips_unidentified(self, sample_records):
        snap = LibrarySnapshot.from_records(sample_records + [{"tags": {"title": "no id"}}])
        assert len(snap) == len(sample_records)


def test_store_reload_swaps_snapshot(sample_records):
    store = LibraryStore(sample_records)
    before = store.snapshot()
    after = store.reload(sample_records[:3])

    assert len(before) == len(sample_records)
    assert len(after) == 3
    assert after.version == before.version + 1
    assert store.snapshot() is after
