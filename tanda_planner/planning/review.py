"""
Expert review of a finished playlist, written by the oracle.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

from tanda_planner.planning.errors import PlannerError
from tanda_planner.planning.oracle import Oracle, ask_oracle
from tanda_planner.planning.schemas import PlaylistReview

logger = logging.getLogger(__name__)

REVIEW_INSTRUCTIONS = " ".join([
    "You are an expert Argentine tango DJ and musicologist with decades of experience in milonga programming.",
    "Analyze playlists from the perspective of a seasoned milonguero and professional DJ.",
    "Provide detailed, insightful reviews that help DJs improve their craft.",
    "Be specific about track and orchestra choices where relevant.",
    "Write in a conversational, expert tone as if advising a fellow DJ.",
    "Focus on practical aspects: danceability, energy flow, orchestra variety, and audience engagement.",
    "Consider both traditional milonga expectations and modern DJ techniques.",
])

REVIEW_TOPICS = [
    "**Orchestra Selection & Variety**: Analyze the choice and sequencing of orchestras throughout the milonga",
    "**Musical Flow & Energy**: Evaluate how the energy builds and flows across tandas",
    "**Style Balance**: Comment on the distribution and timing of Tango/Vals/Milonga tandas",
    "**Danceability**: Assess how well this playlist would work for social dancing",
    "**DJ Craft**: Note any particularly clever programming choices or missed opportunities",
    "**Audience Engagement**: Predict how dancers might respond to this selection",
]

# (heading, field, text when the field is empty)
REVIEW_SECTIONS = [
    ("Orchestra Selection & Variety", "orchestraAnalysis", "Analysis not available"),
    ("Musical Flow & Energy", "musicalFlow", "Analysis not available"),
    ("Style Balance", "styleBalance", "Analysis not available"),
    ("Danceability", "danceability", "Analysis not available"),
    ("DJ Craft", "djCraft", "Analysis not available"),
    ("Audience Engagement", "audienceEngagement", "Analysis not available"),
    ("Overall Assessment", "overallAssessment", "Assessment not available"),
]


def _track_line(track: Mapping[str, Any]) -> str:
    parts = [f'"{track.get("title") or "Unknown"}"']
    if track.get("year"):
        parts.append(f"({track['year']})")
    if track.get("bpm"):
        parts.append(f"{track['bpm']}bpm")
    key = track.get("camelotKey") or track.get("camelot")
    if key:
        parts.append(f"Key:{key}")
    return " ".join(parts)


def build_review_prompt(playlist: Mapping[str, Any], programmatic_analysis: Optional[str] = None) -> str:
    """
    Prompt text for a playlist review.

    ``playlist`` holds ``tandas`` (each with orchestra, style and tracks),
    ``duration`` in seconds and an optional ``selectedSchedule``.
    """
    tandas = [t for t in playlist.get("tandas") or [] if t.get("type", "tanda") == "tanda"]
    minutes = round(float(playlist.get("duration") or 0) / 60)

    breakdown = []
    for number, tanda in enumerate(tandas, start=1):
        tracks = tanda.get("tracks") or []
        breakdown.append(
            f"Tanda {number}: {tanda.get('orchestra') or 'Mixed'} - {tanda.get('style')} ({len(tracks)} tracks)\n"
            f"  Tracks: {', '.join(_track_line(t) for t in tracks)}"
        )

    lines = [
        "Please provide a detailed review of this tango playlist, analyzing it from the perspective "
        "of a seasoned milonguero and DJ.",
        "",
        "PLAYLIST OVERVIEW:",
        f"- Total tandas: {len(tandas)}",
        f"- Duration: {minutes} minutes",
        f"- Selected schedule: {playlist.get('selectedSchedule') or 'Standard'}",
        "",
        "TANDA BREAKDOWN:",
        "\n\n".join(breakdown),
    ]
    if programmatic_analysis:
        lines += ["", "PROGRAMMATIC ANALYSIS RESULTS:", programmatic_analysis]
    lines += ["", "Please provide a professional DJ review covering:", ""]
    lines += [f"{i}. {topic}" for i, topic in enumerate(REVIEW_TOPICS, start=1)]
    lines += [
        "",
        "Write in a conversational, expert tone as if advising a fellow DJ. "
        "Be specific about track and orchestra choices where relevant.",
    ]
    return "\n".join(lines)


def format_review(review: PlaylistReview) -> str:
    """Render the structured review as markdown-ish text."""
    sections = [
        f"**{heading}**\n{getattr(review, name) or empty}"
        for heading, name, empty in REVIEW_SECTIONS
    ]
    text = "\n\n".join(sections)
    if review.recommendations:
        text += "\n\n**Recommendations**\n"
        text += "".join(f"• {rec}\n" for rec in review.recommendations)
    return text


@dataclass
class ReviewResult:
    review: PlaylistReview
    text: str
    prompt: str
    tanda_count: int
    duration: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "review": self.text,
            "rawResponse": self.review.model_dump(),
            "metadata": {
                "tandaCount": self.tanda_count,
                "duration": self.duration,
                "reviewLength": len(self.text),
            },
        }


def review_playlist(
    oracle: Optional[Oracle],
    playlist: Mapping[str, Any],
    programmatic_analysis: Optional[str] = None,
) -> ReviewResult:
    """
    Ask the oracle for a DJ review of ``playlist``.

    Raises:
        ValueError: playlist has no tandas list
        PlannerError: the oracle gave no usable review
    """
    if not isinstance(playlist, Mapping) or not isinstance(playlist.get("tandas"), list):
        raise ValueError("Missing required field: playlist with tandas array")

    prompt = build_review_prompt(playlist, programmatic_analysis)
    tanda_count = sum(1 for t in playlist["tandas"] if t.get("type", "tanda") == "tanda")
    duration = float(playlist.get("duration") or 0)
    logger.info(f"Reviewing playlist: {tanda_count} tandas, {round(duration / 60)} minutes")

    review = ask_oracle(oracle, REVIEW_INSTRUCTIONS, {"prompt": prompt}, PlaylistReview, purpose="playlist review")
    if review is None:
        raise PlannerError("No review result received from oracle")

    text = format_review(review)
    logger.info(f"Review generated ({len(text)} characters)")
    return ReviewResult(review=review, text=text, prompt=prompt, tanda_count=tanda_count, duration=duration)
