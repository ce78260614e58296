"""
Continuity scoring between neighbouring tracks.

Harmonic keys are compared on the 24-point Camelot wheel; tempo and energy
contribute weighted absolute deltas. The same primitives drive replacement
ranking and the deterministic ordering used when no oracle is available.
"""
from __future__ import annotations

import logging
import re
from collections import Counter, defaultdict
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

import numpy as np

from tanda_planner.planning.models import Track

logger = logging.getLogger(__name__)

CAMELOT_ORDER = [f"{n}A" for n in range(1, 13)] + [f"{n}B" for n in range(1, 13)]
_CAMELOT_INDEX = {key: i for i, key in enumerate(CAMELOT_ORDER)}
UNKNOWN_KEY_DISTANCE = 99

KEY_TO_CAMELOT: Dict[str, str] = {
    # minor
    "Am": "8A", "Em": "9A", "Bm": "10A", "F#m": "11A", "C#m": "12A",
    "G#m": "1A", "Abm": "1A", "D#m": "2A", "Ebm": "2A", "A#m": "3A", "Bbm": "3A",
    "Fm": "4A", "Cm": "5A", "Gm": "6A", "Dm": "7A",
    # major
    "C": "8B", "G": "9B", "D": "10B", "A": "11B", "E": "12B",
    "B": "1B", "Cb": "1B", "F#": "2B", "Gb": "2B", "C#": "3B", "Db": "3B",
    "Ab": "4B", "Eb": "5B", "Bb": "6B", "F": "7B",
}

_CAMELOT_PATTERN = re.compile(r"^(1[0-2]|[1-9])([AB])$", flags=re.IGNORECASE)
_MUSICAL_KEY_PATTERN = re.compile(r"^([A-Ga-g])([#b]?)\s*(m|min|minor|maj|major)?$")


@dataclass(frozen=True)
class ContinuityWeights:
    key_cap: int = 4
    bpm: float = 0.05
    energy: float = 0.2


DEFAULT_WEIGHTS = ContinuityWeights()


def key_to_camelot(key: Optional[str]) -> Optional[str]:
    """
    Convert a musical key ("F#m", "Bb major") or Camelot code ("8a") to Camelot.

    Returns None for anything unrecognised.
    """
    if not key:
        return None
    text = str(key).strip()
    camelot = _CAMELOT_PATTERN.match(text)
    if camelot:
        return f"{camelot.group(1)}{camelot.group(2).upper()}"
    if text in KEY_TO_CAMELOT:
        return KEY_TO_CAMELOT[text]
    m = _MUSICAL_KEY_PATTERN.match(text)
    if not m:
        return None
    root = m.group(1).upper() + m.group(2)
    mode = (m.group(3) or "").lower()
    lookup = root + ("m" if mode in ("m", "min", "minor") else "")
    return KEY_TO_CAMELOT.get(lookup)


def camelot_distance(a: Optional[str], b: Optional[str]) -> int:
    """Minimal step count between two wheel positions; 99 when either is unknown."""
    i = _CAMELOT_INDEX.get(a or "")
    j = _CAMELOT_INDEX.get(b or "")
    if i is None or j is None:
        return UNKNOWN_KEY_DISTANCE
    d = abs(i - j)
    return min(d, 24 - d)


def camelot_compatible(a: Optional[str], b: Optional[str]) -> bool:
    """Same number, or numbers one step apart around the clock (either mode)."""
    if not a or not b:
        return True
    ma, mb = _CAMELOT_PATTERN.match(a), _CAMELOT_PATTERN.match(b)
    if not ma or not mb:
        return True
    na, nb = int(ma.group(1)), int(mb.group(1))
    return abs(na - nb) in (0, 1, 11)


def _delta(a: Optional[float], b: Optional[float]) -> float:
    if a is None or b is None:
        return 0.0
    return abs(float(a) - float(b))


def continuity_cost(
    track: Track,
    prev: Optional[Track] = None,
    nxt: Optional[Track] = None,
    weights: ContinuityWeights = DEFAULT_WEIGHTS,
) -> float:
    """
    Cost of placing ``track`` between two neighbours (lower is better).

    Each neighbour contributes its Camelot distance (capped) plus weighted
    tempo and energy deltas. Missing neighbours or values contribute 0.
    """
    cost = 0.0
    for neighbour in (prev, nxt):
        if neighbour is None:
            continue
        cost += min(weights.key_cap, camelot_distance(track.camelot, neighbour.camelot))
        cost += weights.bpm * _delta(track.bpm, neighbour.bpm)
        cost += weights.energy * _delta(track.energy, neighbour.energy)
    return cost


def rank_by_continuity(
    tracks: Sequence[Track],
    prev: Optional[Track] = None,
    nxt: Optional[Track] = None,
) -> List[Track]:
    """Stable ascending sort by continuity cost against the neighbours."""
    return sorted(tracks, key=lambda t: continuity_cost(t, prev, nxt))


def _cluster_key(track: Track) -> str:
    return f"{(track.artist or '').lower()}|{track.decade if track.decade is not None else '?'}"


def order_group_deterministically(candidates: Sequence[Track], size: int) -> List[Track]:
    """
    Pick and order ``size`` tracks without an oracle.

    Takes the largest artist|decade cluster, sorts it by distance from the
    cluster's median tempo and greedily extends while tempo, key and
    era-or-artist constraints hold. Remaining places are filled from the
    other candidates by tempo closeness.
    """
    if not candidates or size <= 0:
        return []

    clusters: Dict[str, List[Track]] = defaultdict(list)
    for track in candidates:
        clusters[_cluster_key(track)].append(track)
    core = max(clusters.values(), key=len)

    bpms = [t.bpm for t in core if t.bpm is not None]
    median_bpm = float(np.median(bpms)) if bpms else None

    def bpm_gap(track: Track) -> float:
        if median_bpm is None or track.bpm is None:
            return float("inf")
        return abs(track.bpm - median_bpm)

    core_sorted = sorted(core, key=bpm_gap)
    picked: List[Track] = [core_sorted[0]]
    for track in core_sorted[1:]:
        if len(picked) >= size:
            break
        last = picked[-1]
        if _delta(track.bpm, last.bpm) > 6:
            continue
        if not camelot_compatible(last.camelot, track.camelot):
            continue
        if track.decade != last.decade and track.artist != last.artist:
            continue
        picked.append(track)

    if len(picked) < size:
        chosen_ids = {t.track_id for t in picked}
        anchor = picked[0].bpm if picked[0].bpm is not None else median_bpm
        rest = [t for t in candidates if t.track_id not in chosen_ids]
        rest.sort(key=lambda t: abs(t.bpm - anchor) if (t.bpm is not None and anchor is not None) else float("inf"))
        picked.extend(rest[: size - len(picked)])

    logger.debug(
        f"Deterministic ordering: {len(picked)}/{size} from cluster of {len(core)} "
        f"(median bpm {median_bpm})"
    )
    return picked[:size]


def most_common_keys(tracks: Sequence[Track], n: int = 3) -> List[str]:
    counts = Counter(t.camelot for t in tracks if t.camelot)
    return [key for key, _ in counts.most_common(n)]
