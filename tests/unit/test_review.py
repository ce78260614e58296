"""Tests for playlist review prompts and formatting."""
import pytest

from tanda_planner.planning.errors import OracleUnavailable, PlannerError
from tanda_planner.planning.review import build_review_prompt, format_review, review_playlist
from tanda_planner.planning.schemas import PlaylistReview

PLAYLIST = {
    "duration": 3600,
    "selectedSchedule": "Classic Milonga",
    "tandas": [
        {
            "type": "tanda",
            "orchestra": "Carlos Di Sarli",
            "style": "Tango",
            "tracks": [
                {"title": "Bahia Blanca", "year": 1957, "bpm": 118, "camelotKey": "8A"},
                {"title": "Nido Gaucho"},
            ],
        },
        {"type": "cortina", "style": "Cortina", "tracks": [{"title": "Take Five"}]},
        {"type": "tanda", "style": "Vals", "tracks": [{"title": "Corazon de Oro"}]},
    ],
}


def _review(**overrides):
    fields = dict(
        orchestraAnalysis="Good variety.",
        musicalFlow="",
        styleBalance="Balanced.",
        danceability="Very danceable.",
        djCraft="Solid.",
        audienceEngagement="Full floor.",
        overallAssessment="",
        recommendations=None,
    )
    fields.update(overrides)
    return PlaylistReview(**fields)


class TestPrompt:
    """build_review_prompt"""

    def test_overview_and_breakdown(self):
        prompt = build_review_prompt(PLAYLIST)
        assert "- Total tandas: 2" in prompt
        assert "- Duration: 60 minutes" in prompt
        assert "- Selected schedule: Classic Milonga" in prompt
        assert "Tanda 1: Carlos Di Sarli - Tango (2 tracks)" in prompt
        assert '"Bahia Blanca" (1957) 118bpm Key:8A' in prompt
        assert "Tanda 2: Mixed - Vals (1 tracks)" in prompt
        assert "Take Five" not in prompt
        assert "6. **Audience Engagement**" in prompt
        assert "PROGRAMMATIC ANALYSIS" not in prompt

    def test_analysis_section(self):
        prompt = build_review_prompt(PLAYLIST, "Energy dips at tanda 4.")
        assert "PROGRAMMATIC ANALYSIS RESULTS:\nEnergy dips at tanda 4." in prompt

    def test_defaults(self):
        prompt = build_review_prompt({"tandas": []})
        assert "- Selected schedule: Standard" in prompt
        assert "- Duration: 0 minutes" in prompt


class TestFormat:
    """format_review"""

    def test_sections_and_placeholders(self):
        text = format_review(_review())
        assert text.startswith("**Orchestra Selection & Variety**\nGood variety.")
        assert "**Musical Flow & Energy**\nAnalysis not available" in text
        assert text.endswith("**Overall Assessment**\nAssessment not available")

    def test_recommendations_are_bulleted(self):
        text = format_review(_review(recommendations=["Add a Troilo tanda", "Shorter cortinas"]))
        assert text.endswith("**Recommendations**\n• Add a Troilo tanda\n• Shorter cortinas\n")


class TestReviewPlaylist:
    """review_playlist"""

    def test_round_trip(self, fake_oracle):
        result = review_playlist(fake_oracle, PLAYLIST)
        data = result.to_dict()
        assert "**Recommendations**\n• Add a Troilo tanda" in data["review"]
        assert data["rawResponse"]["djCraft"] == "Solid."
        assert data["metadata"] == {"tandaCount": 2, "duration": 3600.0, "reviewLength": len(data["review"])}
        (payload,) = fake_oracle.calls_for(PlaylistReview)
        assert payload["prompt"] == result.prompt

    def test_missing_tandas(self, fake_oracle):
        with pytest.raises(ValueError, match="tandas array"):
            review_playlist(fake_oracle, {"duration": 60})
        assert fake_oracle.calls == []

    def test_no_oracle_answer(self):
        with pytest.raises(PlannerError, match="No review result"):
            review_playlist(None, PLAYLIST)

    def test_unavailable_propagates(self, fake_oracle):
        fake_oracle.script(PlaylistReview, OracleUnavailable("quota exceeded"))
        with pytest.raises(OracleUnavailable):
            review_playlist(fake_oracle, PLAYLIST)
