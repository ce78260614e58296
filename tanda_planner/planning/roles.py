"""
Era/style roles for tanda slots.

A role (classic, rich, modern, alt) constrains which recordings fit a slot.
Years printed on remasters and anthologies are unreliable, so the effective
year of a core dance track is discounted to "unknown" when its tags look like
a reissue.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from tanda_planner.planning.models import Track
from tanda_planner.string_utils import normalize_artist_key

TRUST_YEAR_CUTOFF = 1990
MIN_YEAR = 1900
MAX_YEAR = 2100
CORE_DANCE_STYLES = frozenset({"tango", "vals", "milonga"})

_REMASTER_PATTERN = re.compile(
    r"(remaster|remastered|reissue|anthology|collection|best of|archive|deluxe|box set)",
    flags=re.IGNORECASE,
)
_ALT_PATTERN = re.compile(r"alt|alternative|nuevo|neo|electro|pop|rock|jazz|swing|blues|folk")


@dataclass(frozen=True)
class RoleRule:
    min_year: int
    max_year: int
    prefer_alt: bool = False

    @property
    def midpoint(self) -> float:
        return (self.min_year + self.max_year) / 2


ROLE_RULES: Dict[str, RoleRule] = {
    "classic": RoleRule(1930, 1945),
    "rich": RoleRule(1946, 1958),
    "modern": RoleRule(1990, 2100),
    "alt": RoleRule(1995, 2100, prefer_alt=True),
}

# Reference orchestras per role with their peak recording eras
ORCHESTRAS_BY_ROLE: Dict[str, List[Tuple[str, Tuple[int, int]]]] = {
    "classic": [
        ("Juan D'Arienzo", (1935, 1945)),
        ("Rodolfo Biagi", (1938, 1944)),
        ("Alfredo De Angelis", (1940, 1952)),
    ],
    "rich": [
        ("Anibal Troilo", (1940, 1955)),
        ("Ricardo Tanturi", (1940, 1950)),
        ("Carlos Di Sarli", (1940, 1958)),
    ],
    "modern": [
        ("Osvaldo Pugliese", (1950, 1970)),
        ("Color Tango", (1990, 2010)),
        ("Sexteto Milonguero", (2005, 2020)),
    ],
    "alt": [
        ("Otros Aires", (2005, 2020)),
        ("Tanghetto", (2005, 2020)),
        ("Bajofondo", (2002, 2015)),
    ],
}


def clamp_year(value: Optional[float]) -> Optional[int]:
    if value is None:
        return None
    try:
        year = round(float(value))
    except (TypeError, ValueError):
        return None
    return max(MIN_YEAR, min(MAX_YEAR, year))


def looks_remastered(track: Track) -> bool:
    haystack = f"{track.album or ''} {track.title or ''}".lower()
    return bool(_REMASTER_PATTERN.search(haystack))


def literal_year(track: Track) -> Optional[int]:
    """First present of recording year, original year, tagged year (clamped)."""
    for candidate in (track.recording_year, track.original_year, track.year):
        if candidate is not None:
            return clamp_year(candidate)
    return None


def effective_year(track: Track) -> Optional[int]:
    """Year usable for era decisions; None when unknown or untrustworthy."""
    year = literal_year(track)
    if year is None:
        return None
    is_dance_core = any(g in CORE_DANCE_STYLES for g in track.genres)
    if year >= TRUST_YEAR_CUTOFF and is_dance_core and looks_remastered(track):
        return None
    return year


def looks_alt(track: Track) -> bool:
    return bool(_ALT_PATTERN.search(" ".join(track.genres)))


def fits_role(track: Track, role: Optional[str]) -> bool:
    """True when the track's effective year is in the role's range (or unknown)."""
    rule = ROLE_RULES.get(role or "")
    if rule is None:
        return True
    year = effective_year(track)
    in_range = year is None or rule.min_year <= year <= rule.max_year
    if not rule.prefer_alt:
        return in_range
    return in_range and looks_alt(track)


def role_boost(track: Optional[Track], role: Optional[str]) -> float:
    """
    Preference score for a track within a role (higher is better).

    Triangular peak at the role's year midpoint, a flat bonus for alt-lexicon
    matches on alt roles, and a small penalty on classic/rich when a modern
    tag year was discounted.
    """
    rule = ROLE_RULES.get(role or "")
    if track is None or rule is None:
        return 0.0

    year = effective_year(track)
    if year is None:
        score = 0.25
    else:
        span = max(1, rule.max_year - rule.min_year)
        score = max(0.0, 1.2 - 2 * abs(year - rule.midpoint) / span)

    if rule.prefer_alt and looks_alt(track):
        score += 0.7

    raw = literal_year(track)
    if role in ("classic", "rich") and raw is not None and raw >= TRUST_YEAR_CUTOFF and year is None:
        score -= 0.2

    return score


def score_track_by_role(track: Optional[Track], role: Optional[str], tanda_so_far: Sequence[Track] = ()) -> int:
    """Reference-orchestra score: name and era matches add, artist repeats subtract."""
    if track is None:
        return 0
    year = track.year or 0
    artist = normalize_artist_key(track.artist)

    score = 0
    for name, (start, end) in ORCHESTRAS_BY_ROLE.get(role or "", []):
        name_match = normalize_artist_key(name) in artist
        era_match = start <= year <= end
        if name_match and era_match:
            score += 60
        elif name_match:
            score += 30
        elif era_match:
            score += 20

    if any(normalize_artist_key(t.artist) == artist for t in tanda_so_far):
        score -= 40
    return score


def infer_role_by_position(index: int) -> str:
    """Default role when no schedule is given: classic early, alt spice at slot 5."""
    if index <= 1:
        return "classic"
    if index <= 3:
        return "rich"
    if index == 5:
        return "alt"
    return "modern"


def role_for_index(schedule: Optional[Mapping], index: int) -> Optional[str]:
    """Role from an explicit schedule ``{"tandas": [{"tandaIndex": i, "role": r}]}``."""
    if not schedule:
        return None
    for entry in schedule.get("tandas") or []:
        try:
            if int(entry.get("tandaIndex")) == int(index):
                return entry.get("role") or None
        except (TypeError, ValueError):
            continue
    return None
