"""
Filler (cortina) pool.

Cortinas are short non-dance tracks played between tandas. They come from a
pool disjoint from the dance styles: any track carrying a tango, vals or
milonga token is excluded.
"""
from __future__ import annotations

import logging
import re
from dataclasses import replace
from typing import Iterable, List, Optional, Sequence, Set, Union

import numpy as np

from tanda_planner.planning.models import Filler, Track

logger = logging.getLogger(__name__)

DEFAULT_FILLER_GENRES = ("jazz", "swing", "country", "rock", "pop", "electro", "lounge", "blues")
DANCE_TOKENS = frozenset({"tango", "vals", "milonga"})
DEFAULT_FILLER_SECONDS = 60

_TOKEN_SPLIT = re.compile(r"[/,;|]+")


def _normalize_genres(genres: Union[str, Sequence[str], None]) -> Set[str]:
    if genres is None:
        genres = DEFAULT_FILLER_GENRES
    if isinstance(genres, str):
        genres = re.split(r"[,|]", genres)
    return {str(g).strip().lower() for g in genres if str(g or "").strip()}


def genre_tokens(track: Track) -> Set[str]:
    """Genre tokens of a track, compound genres ("jazz/swing") split apart."""
    tokens: Set[str] = set()
    for genre in track.genres:
        tokens.update(part.strip() for part in _TOKEN_SPLIT.split(genre.lower()) if part.strip())
    return tokens


def is_non_dance(track: Track) -> bool:
    return not (genre_tokens(track) & DANCE_TOKENS)


def to_filler(track: Track, default_seconds: int = DEFAULT_FILLER_SECONDS) -> Filler:
    tags = track.record.get("tags") or {}
    metadata = track.record.get("metadata") or {}
    singer = tags.get("singer") if isinstance(tags, dict) else None
    if singer is None and isinstance(metadata, dict):
        singer = metadata.get("singer")
    title = (track.title or "").strip()
    return Filler(
        filler_id=track.track_id,
        title=title if title and title != "Unknown" else "Cortina",
        artist=track.artist if track.artist != "Unknown" else None,
        singer=singer,
        seconds=track.seconds or default_seconds,
    )


def list_fillers(
    library: Iterable[Track],
    count: Optional[int] = None,
    genres: Union[str, Sequence[str], None] = None,
    shuffle: bool = True,
    include_final: bool = False,
    rng: Optional[np.random.Generator] = None,
) -> List[Filler]:
    """
    Pick cortinas for a program.

    Args:
        library: Tracks to draw from
        count: Number of tandas the cortinas go between; None returns the whole pool
        genres: Wanted genre tokens (default jazz, swing, country, rock, pop, electro, lounge, blues)
        shuffle: Shuffle the pool before slicing
        include_final: Also return one cortina after the last tanda
        rng: Random generator used for shuffling

    Returns:
        ``count - 1`` fillers (``count`` with include_final), cycling through the
        pool when it is shorter. Empty when the library has no non-dance track.
    """
    wanted = _normalize_genres(genres)
    tracks = list(library)

    pool = [to_filler(t) for t in tracks if (genre_tokens(t) & wanted) and is_non_dance(t)]
    if not pool:
        # Relax to any non-dance track
        pool = [to_filler(t) for t in tracks if is_non_dance(t)]
        if pool:
            logger.info(f"No cortina matches genres {sorted(wanted)}; using {len(pool)} non-dance track(s)")
    if not pool:
        logger.warning("Library has no non-dance tracks to use as cortinas")
        return []

    seen = set()
    unique: List[Filler] = []
    for filler in pool:
        key = (filler.filler_id, filler.title)
        if key in seen:
            continue
        seen.add(key)
        unique.append(filler)

    if shuffle:
        rng = rng or np.random.default_rng()
        order = rng.permutation(len(unique))
        unique = [unique[i] for i in order]

    if count is None:
        return unique

    target = max(0, count) if include_final else max(0, count - 1)
    if target <= len(unique):
        return unique[:target]
    return [unique[i % len(unique)] for i in range(target)]


def fit_filler(filler: Filler, unit: int = DEFAULT_FILLER_SECONDS) -> Filler:
    """The filler cut to one filler unit (unknown lengths count as a full unit)."""
    seconds = min(filler.seconds, unit) if filler.seconds > 0 else unit
    if seconds == filler.seconds:
        return filler
    return replace(filler, seconds=seconds)
