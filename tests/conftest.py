"""Test configuration and fixtures."""

import re
import sys
from collections import defaultdict, deque
from pathlib import Path

import pytest

# Add repo root to path for imports
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from tanda_planner.library import LibrarySnapshot
from tanda_planner.planning.schemas import (
    NextOrchestras,
    NextTanda,
    OrchestraSuggestion,
    PlaylistReview,
    ReplacementChoice,
    ReplacementSuggestion,
)

_SIZE_IN_PROMPT = re.compile(r"with (\d+) tracks")


def make_record(track_id, title, artist, genre, seconds=180, year=None, bpm=None, energy=None, key=None, album=None):
    """Raw library record in the nested shape the library loader accepts."""
    tags = {"title": title, "artist": artist, "genre": genre}
    if year is not None:
        tags["year"] = year
    if bpm is not None:
        tags["BPM"] = bpm
    if energy is not None:
        tags["Energy"] = energy
    if key is not None:
        tags["Key"] = key
    if album is not None:
        tags["album"] = album
    return {
        "id": track_id,
        "tags": tags,
        "file": {"absPath": f"/music/{artist}/{title}.mp3"},
        "audio": {"duration": seconds},
    }


def _sample_records():
    records = []
    orchestras = [
        ("ds", "Carlos Di Sarli", "tango", 6, 118, "Am"),
        ("da", "Juan D'Arienzo", "tango", 6, 126, "Dm"),
        ("op", "Osvaldo Pugliese", "tango", 5, 112, "Em"),
        ("dv", "Carlos Di Sarli", "vals", 4, 150, "C"),
        ("cv", "Francisco Canaro", "vals", 4, 156, "G"),
        ("dm", "Juan D'Arienzo", "milonga", 4, 104, "F"),
        ("cm", "Francisco Canaro", "milonga", 4, 100, "Bb"),
    ]
    for prefix, artist, genre, count, bpm, key in orchestras:
        for i in range(count):
            records.append(make_record(
                f"{prefix}{i + 1}",
                f"{genre.capitalize()} {artist.split()[-1]} {i + 1}",
                artist,
                genre,
                seconds=170 + 5 * i,
                bpm=bpm + i,
                energy=5 + (i % 3),
                key=key,
            ))
    records += [
        make_record("c1", "Take Five", "Dave Brubeck", "jazz", seconds=320),
        make_record("c2", "Sing Sing Sing", "Benny Goodman", "swing", seconds=95),
        make_record("c3", "Jolene", "Dolly Parton", "country", seconds=160),
        make_record("c4", "Teardrop", "Massive Attack", "electro/lounge", seconds=55),
    ]
    return records


class FakeOracle:
    """
    Scripted stand-in for the recommendation oracle.

    Responses queued per schema with ``script()`` are returned (or raised, for
    exceptions) in order; once a queue is empty a sensible default is built
    from the payload. Every call is recorded in ``calls``.
    """

    def __init__(self):
        self.calls = []
        self._queues = defaultdict(deque)

    def script(self, schema, *responses):
        self._queues[schema].extend(responses)
        return self

    def calls_for(self, schema):
        return [payload for name, payload in self.calls if name == schema.__name__]

    def complete(self, instructions, payload, schema):
        self.calls.append((schema.__name__, payload))
        queue = self._queues.get(schema)
        if queue:
            response = queue.popleft()
            if isinstance(response, Exception):
                raise response
            if callable(response):
                return response(payload)
            return response
        return self._default(payload, schema)

    @staticmethod
    def _default(payload, schema):
        if schema is NextOrchestras:
            names = [p["orchestra"] for p in payload.get("orchestra_profiles", [])]
            return NextOrchestras(suggestions=[OrchestraSuggestion(orchestra=n, reason="fits") for n in names[:7]]
                                  or [OrchestraSuggestion(orchestra="Nobody")])
        if schema is NextTanda:
            m = _SIZE_IN_PROMPT.search(payload.get("prompt", ""))
            size = int(m.group(1)) if m else 4
            style = re.search(r"style=(\w+)", payload.get("prompt", ""))
            ids = [c["id"] for c in payload.get("candidates", [])][:size]
            return NextTanda(style=style.group(1) if style else "Tango", tracks=ids, notes="fake tanda")
        if schema is ReplacementChoice:
            ids = [c["id"] for c in payload.get("candidates", [])]
            return ReplacementChoice(
                chosenId=ids[0],
                suggestions=[ReplacementSuggestion(id=i, reason="close match") for i in ids[1:3]]
                or [ReplacementSuggestion(id=ids[0])],
            )
        if schema is PlaylistReview:
            return PlaylistReview(
                orchestraAnalysis="Good variety.",
                musicalFlow="Builds well.",
                styleBalance="Balanced.",
                danceability="Very danceable.",
                djCraft="Solid.",
                audienceEngagement="Full floor.",
                overallAssessment="Strong set.",
                recommendations=["Add a Troilo tanda"],
            )
        raise AssertionError(f"Unexpected schema {schema}")


@pytest.fixture()
def sample_records():
    return _sample_records()


@pytest.fixture()
def snapshot(sample_records):
    return LibrarySnapshot.from_records(sample_records)


@pytest.fixture()
def fake_oracle():
    return FakeOracle()
