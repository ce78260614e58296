"""Tests for single-track replacement."""
import numpy as np
import pytest

from tanda_planner.planning.errors import PlannerError
from tanda_planner.planning.models import UsedSet
from tanda_planner.planning.replacement import (
    ReplacementRequest,
    ReplacementService,
    compatible_styles,
    neighbor_track,
)
from tanda_planner.planning.schemas import ReplacementChoice, ReplacementSuggestion

PUGLIESE = [f"op{i}" for i in range(1, 6)]


def _service(snapshot, oracle=None):
    return ReplacementService(snapshot, oracle=oracle, rng=np.random.default_rng(3))


class TestPool:
    """Pool narrowing and broadening."""

    def test_same_orchestra_preferred(self, snapshot, fake_oracle):
        result = _service(snapshot, fake_oracle).replace(ReplacementRequest(
            style="Tango", origin="Carlos Di Sarli", avoid_ids=["ds1", "ds2", "ds3"],
        ))
        assert result.replacement.artist == "Carlos Di Sarli"
        assert result.replacement.track_id not in ("ds1", "ds2", "ds3")
        assert result.metadata["orchestraRestricted"] is True
        assert result.metadata["broadeningApplied"] is False

    def test_exhausted_orchestra_gives_cross_orchestra_pick(self, snapshot, fake_oracle):
        # Every Pugliese tango is already in the tanda
        result = _service(snapshot, fake_oracle).replace(ReplacementRequest(
            style="Tango", origin="Osvaldo Pugliese", avoid_ids=PUGLIESE,
        ))
        assert result.replacement.artist != "Osvaldo Pugliese"
        assert result.replacement.track_id not in PUGLIESE
        assert result.metadata["orchestraRestricted"] is False
        assert "tango" in result.replacement.genres
        assert result.metadata["broadeningApplied"] is True
        assert result.metadata["broadeningSteps"] == ["drop_origin"]

    def test_starved_pool_widens_to_compatible_styles(self, snapshot, fake_oracle):
        avoid = ["dm1", "dm2", "dm3", "dm4", "cm1", "cm2", "cm3"]
        result = _service(snapshot, fake_oracle).replace(ReplacementRequest(
            style="Milonga", origin="Francisco Canaro", avoid_ids=avoid,
        ))
        assert result.metadata["broadeningSteps"] == ["drop_origin", "compatible_styles"]
        assert result.metadata["finalPool"] == 18
        assert result.replacement.track_id not in avoid

    def test_any_style_as_last_resort(self, snapshot, sample_records):
        dance = [r["id"] for r in sample_records if r["tags"]["genre"] in ("tango", "vals")]
        result = _service(snapshot).replace(ReplacementRequest(style="Vals", avoid_ids=dance))
        assert result.metadata["broadeningSteps"] == ["any_style"]
        assert result.replacement.track_id not in dance

    def test_rejections_lift_orchestra_restriction(self, snapshot, fake_oracle):
        service = _service(snapshot, fake_oracle)
        pool, target, restricted, steps = service.build_pool(
            ReplacementRequest(style="Tango", origin="Carlos Di Sarli"),
            avoid=UsedSet(["ds1"]),
            rejected=UsedSet(["ds2"]),
        )
        assert target == "Carlos Di Sarli"
        assert restricted is False
        assert {t.track_id for t in pool} & {"ds1", "ds2"} == set()
        assert len(pool) == 15
        assert steps == ["drop_origin"]

    def test_homogenize_targets_dominant_orchestra(self, snapshot):
        service = _service(snapshot)
        request = ReplacementRequest(style="Tango", avoid_ids=["da1", "da2", "ds1"], homogenize=True)
        assert service.target_origin(request) == "Juan D'Arienzo"

    def test_nothing_left_raises(self, snapshot, sample_records):
        every_id = [r["id"] for r in sample_records]
        with pytest.raises(PlannerError, match="No candidates"):
            _service(snapshot).replace(ReplacementRequest(style="Tango", avoid_ids=every_id))


class TestOracleChoice:
    """The oracle's answer is trusted only inside the offered list."""

    def test_oracle_pick_and_suggestions(self, snapshot, fake_oracle):
        fake_oracle.script(ReplacementChoice, ReplacementChoice(
            chosenId="da3",
            suggestions=[
                ReplacementSuggestion(id="da4", reason="same energy"),
                ReplacementSuggestion(id="da3", reason="duplicate of the choice"),
                ReplacementSuggestion(id="ghost", reason="not offered"),
            ],
        ))
        result = _service(snapshot, fake_oracle).replace(ReplacementRequest(style="Tango", top_k=3))

        assert result.source == "oracle"
        assert result.replacement.track_id == "da3"
        ids = [s["id"] for s in result.suggestions]
        assert ids[0] == "da4"
        assert result.suggestions[0]["reason"] == "same energy"
        assert "da3" not in ids
        assert "ghost" not in ids
        assert len(ids) == 3

    def test_choice_outside_candidates_falls_back(self, snapshot, fake_oracle):
        fake_oracle.script(ReplacementChoice, ReplacementChoice(
            chosenId="op1", suggestions=[ReplacementSuggestion(id="op1")],
        ))
        result = _service(snapshot, fake_oracle).replace(ReplacementRequest(
            style="Tango", avoid_ids=["op1"], neighbors={"prev": {"key": "Em", "bpm": 112}},
        ))
        assert result.source == "fallback"
        # closest five by continuity: the four unused Pugliese tangos, then ds1
        assert result.replacement.track_id in ("op2", "op3", "op4", "op5", "ds1")

    def test_payload_lists_avoid_and_rejected(self, snapshot, fake_oracle):
        _service(snapshot, fake_oracle).replace(ReplacementRequest(
            style="Tango", avoid_ids=["ds1"], rejected_ids=["ds2"],
        ))
        (payload,) = fake_oracle.calls_for(ReplacementChoice)
        assert payload["avoid_ids"] == ["ds1"]
        assert payload["previously_selected"] == ["ds2"]
        offered = {c["id"] for c in payload["candidates"]}
        assert not offered & {"ds1", "ds2"}


def test_offline_pick_follows_continuity(snapshot):
    result = _service(snapshot).replace(ReplacementRequest(
        style="Tango", neighbors={"prev": {"key": "Em", "bpm": 112}},
    ))
    assert result.source == "fallback"
    assert result.replacement.artist == "Osvaldo Pugliese"
    assert result.to_dict()["replacement"]["id"] == result.replacement.track_id


def test_neighbor_track():
    track = neighbor_track({"Key": "Am", "BPM": "120", "energy": "bad"}, "prev")
    assert track.camelot == "8A"
    assert track.bpm == 120.0
    assert track.energy is None
    assert neighbor_track(None, "next") is None


def test_compatible_styles():
    assert compatible_styles("Waltz") == ["vals", "tango"]
    assert compatible_styles("Cumbia") == ["cumbia"]
