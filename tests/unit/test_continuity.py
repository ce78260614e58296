"""Tests for continuity scoring and deterministic ordering."""
import pytest

from tanda_planner.planning.continuity import (
    UNKNOWN_KEY_DISTANCE,
    camelot_compatible,
    camelot_distance,
    continuity_cost,
    key_to_camelot,
    order_group_deterministically,
    rank_by_continuity,
)
from tanda_planner.planning.models import Track


@pytest.mark.parametrize(
    "key,expected",
    [
        ("Am", "8A"),
        ("C", "8B"),
        ("F#m", "11A"),
        ("Bb major", "6B"),
        ("g minor", "6A"),
        ("8a", "8A"),
        ("12B", "12B"),
        ("H", None),
        ("", None),
        (None, None),
    ],
)
def test_key_to_camelot(key, expected):
    assert key_to_camelot(key) == expected


class TestCamelotDistance:
    """Distances on the 24-point wheel."""

    def test_identity_is_zero(self):
        assert camelot_distance("8A", "8A") == 0

    def test_symmetric(self):
        assert camelot_distance("1A", "5B") == camelot_distance("5B", "1A")

    def test_wraps_around(self):
        assert camelot_distance("1A", "12B") == 1

    def test_unknown_is_large(self):
        assert camelot_distance("8A", None) == UNKNOWN_KEY_DISTANCE
        assert camelot_distance("zz", "8A") == UNKNOWN_KEY_DISTANCE


def test_camelot_compatible_neighbours_on_clock():
    assert camelot_compatible("8A", "9B")
    assert camelot_compatible("12A", "1A")
    assert not camelot_compatible("8A", "3A")
    assert camelot_compatible(None, "3A")


class TestContinuityCost:
    """Cost of a track between neighbours."""

    def test_no_neighbours_is_zero(self):
        assert continuity_cost(Track(track_id="a", camelot="8A", bpm=120)) == 0

    def test_key_distance_is_capped(self):
        far = Track(track_id="a", camelot="2A")
        prev = Track(track_id="p", camelot="8A")
        assert continuity_cost(far, prev) == 4

    def test_bpm_and_energy_deltas(self):
        track = Track(track_id="a", camelot="8A", bpm=120, energy=6)
        prev = Track(track_id="p", camelot="8A", bpm=110, energy=4)
        assert continuity_cost(track, prev) == pytest.approx(0.05 * 10 + 0.2 * 2)

    def test_both_neighbours_add_up(self):
        track = Track(track_id="a", camelot="8A")
        prev = Track(track_id="p", camelot="9A")
        nxt = Track(track_id="n", camelot="10A")
        assert continuity_cost(track, prev, nxt) == 3

    def test_rank_is_ascending(self):
        prev = Track(track_id="p", camelot="8A", bpm=120)
        close = Track(track_id="close", camelot="8A", bpm=121)
        far = Track(track_id="far", camelot="2B", bpm=90)
        assert [t.track_id for t in rank_by_continuity([far, close], prev)] == ["close", "far"]


class TestOrderGroupDeterministically:
    """Oracle-free picking and ordering."""

    def test_prefers_largest_artist_decade_cluster(self):
        tracks = [Track(track_id=f"d{i}", artist="Di Sarli", year=1941, bpm=118 + i, camelot="8A") for i in range(4)]
        tracks += [Track(track_id="x", artist="Biagi", year=1938, bpm=119, camelot="8A")]
        picked = order_group_deterministically(tracks, 3)
        assert len(picked) == 3
        assert all(t.artist == "Di Sarli" for t in picked)

    def test_fills_from_rest_when_cluster_is_short(self):
        tracks = [
            Track(track_id="a", artist="Canaro", year=1935, bpm=150),
            Track(track_id="b", artist="Lomuto", year=1931, bpm=152),
            Track(track_id="c", artist="Fresedo", year=1933, bpm=200),
        ]
        picked = order_group_deterministically(tracks, 3)
        assert len(picked) == 3
        assert len({t.track_id for t in picked}) == 3

    def test_empty_input(self):
        assert order_group_deterministically([], 4) == []
        assert order_group_deterministically([Track(track_id="a")], 0) == []
