"""Tests for swapping and regenerating tandas of a finished plan."""
import pytest

from tanda_planner.planning.errors import PlannerError
from tanda_planner.planning.plan_edits import retry_group, swap_tandas
from tanda_planner.planning.schemas import NextTanda


def _plan():
    return {
        "tandas": [
            {"type": "tanda", "style": "Tango", "tracks": [{"id": "ds1"}, {"id": "ds2"}]},
            {"type": "cortina", "style": "Cortina", "tracks": [{"id": "c1"}]},
            {"type": "tanda", "style": "Vals", "tracks": [{"id": "cv1"}]},
        ],
        "cortinas": [{"id": "c1"}],
    }


class TestSwap:
    """swap_tandas"""

    def test_swaps_two_tandas(self):
        plan = _plan()
        swapped = swap_tandas(plan, 0, 2)
        assert [b["style"] for b in swapped["tandas"]] == ["Vals", "Cortina", "Tango"]
        assert [b["style"] for b in plan["tandas"]] == ["Tango", "Cortina", "Vals"]

    def test_same_index_is_a_no_op(self):
        plan = _plan()
        assert swap_tandas(plan, 2, 2) == plan

    def test_cortina_cannot_be_swapped(self):
        with pytest.raises(ValueError, match="tanda indices"):
            swap_tandas(_plan(), 0, 1)

    def test_index_out_of_range(self):
        with pytest.raises(ValueError, match="out of range"):
            swap_tandas(_plan(), 0, 3)
        with pytest.raises(ValueError, match="out of range"):
            swap_tandas(_plan(), -1, 0)

    def test_invalid_plan(self):
        with pytest.raises(ValueError, match="Invalid plan"):
            swap_tandas({"tandas": "nope"}, 0, 1)


class TestRetry:
    """retry_group"""

    def test_picks_another_orchestra(self, snapshot, fake_oracle):
        result = retry_group(snapshot, snapshot, fake_oracle, style="tango", current_origin="Carlos Di Sarli")

        group = result.group
        assert group.origin == "Osvaldo Pugliese"
        assert [t.track_id for t in group.members] == ["op1", "op2", "op3", "op4"]
        data = result.to_dict()
        assert data["tanda"]["style"] == "Tango"
        assert data["metadata"]["originalOrchestra"] == "Carlos Di Sarli"
        assert data["metadata"]["newOrchestra"] == "Osvaldo Pugliese"
        assert data["metadata"]["alternativesAvailable"] == 2
        assert data["metadata"]["attempts"] == 1

    def test_orchestra_names_compare_normalized(self, snapshot, fake_oracle):
        result = retry_group(
            snapshot, snapshot, fake_oracle, style="Tango",
            current_origin="Carlos Di Sarli y su Orquesta Tipica",
            avoid_origins=["OSVALDO PUGLIESE"],
        )
        assert result.group.origin == "Juan D'Arienzo"

    def test_tracks_in_current_plan_are_not_reused(self, snapshot, fake_oracle):
        current = [{"type": "tanda", "tracks": [{"id": "op1"}, {"id": "op2"}]}]
        result = retry_group(
            snapshot, snapshot, fake_oracle, style="Tango", current_origin="Carlos Di Sarli",
            size=3, current_plan=current,
        )
        ids = [t.track_id for t in result.group.real_tracks]
        assert len(ids) == 3
        assert not {"op1", "op2"} & set(ids)
        (payload,) = fake_oracle.calls_for(NextTanda)
        assert payload["used_ids"] == ["op1", "op2"]

    def test_empty_attempts_move_to_next_orchestra(self, snapshot, fake_oracle):
        fake_oracle.script(NextTanda, NextTanda(style="Tango", tracks=[]))
        result = retry_group(snapshot, snapshot, fake_oracle, style="Tango", current_origin="Carlos Di Sarli")
        assert result.group.origin == "Juan D'Arienzo"
        assert result.metadata["attempts"] == 2

    def test_partial_result_is_padded(self, snapshot, fake_oracle):
        fake_oracle.script(NextTanda, NextTanda(style="Tango", tracks=["op5"]))
        result = retry_group(snapshot, snapshot, fake_oracle, style="Tango", current_origin="Carlos Di Sarli")
        assert result.group.real_count == 1
        assert len(result.group.members) == 4

    def test_no_alternative_orchestra(self, snapshot, fake_oracle):
        with pytest.raises(PlannerError, match="No alternative orchestras"):
            retry_group(
                snapshot, snapshot, fake_oracle, style="Milonga",
                current_origin="Juan D'Arienzo", avoid_origins=["Francisco Canaro"],
            )

    def test_every_attempt_empty(self, snapshot, fake_oracle):
        fake_oracle.script(NextTanda, *[NextTanda(style="Tango", tracks=[])] * 3)
        with pytest.raises(PlannerError, match="No tracks found"):
            retry_group(snapshot, snapshot, fake_oracle, style="Tango", current_origin="Carlos Di Sarli")

    def test_small_working_set_borrows_from_library(self, snapshot, fake_oracle):
        from tanda_planner.library import LibrarySnapshot

        working = LibrarySnapshot.from_tracks([t for t in snapshot.tracks if t.artist == "Carlos Di Sarli"])
        result = retry_group(working, snapshot, fake_oracle, style="Tango", current_origin="Carlos Di Sarli")
        assert result.group.origin == "Osvaldo Pugliese"
