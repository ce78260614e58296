"""
Origin (orchestra) selection for the next tanda.

The oracle proposes a ranked shortlist; the final pick is a weighted random
draw that balances catalog depth, recent repetition and a bias toward
medium-sized catalogs so one prolific orchestra cannot dominate every run.
"""
from __future__ import annotations

import logging
import threading
from collections import Counter, defaultdict
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np

from tanda_planner.logging_utils import truncate_list
from tanda_planner.planning.continuity import most_common_keys
from tanda_planner.planning.models import Track
from tanda_planner.planning.oracle import Oracle, ask_oracle
from tanda_planner.planning.schemas import NextOrchestras
from tanda_planner.string_utils import origin_key

logger = logging.getLogger(__name__)

RECENT_WINDOW = 2
SUGGESTION_COUNT = 7
MAX_PROFILES_IN_PROMPT = 200
MAX_ALTERNATIVES = 8

ORCHESTRA_INSTRUCTIONS = " ".join([
    "You propose orchestras to follow the current tanda.",
    "Constraints:",
    "- Respect the requested style.",
    "- Prefer continuity: small Camelot key changes from prevKey when possible.",
    "- Prefer one-orchestra-per-tanda convention; avoid repeating the last 1-2 orchestras unless musically justified.",
    "- Prefer era/time-period coherence when available.",
    "- Prefer energy continuity; avoid large jumps unless explicitly beneficial.",
    "Return a ranked list with short reasons. JSON only.",
])


@dataclass(frozen=True)
class OrchestraProfile:
    orchestra: str
    styles: Tuple[str, ...]
    eras: Tuple[int, ...]
    bpm_median: Optional[float]
    energy_median: Optional[float]
    common_camelot: Tuple[str, ...]
    avg_seconds: Optional[int]
    track_count: int
    sample_ids: Tuple[str, ...] = field(default=(), repr=False)

    def to_prompt_dict(self) -> Dict[str, object]:
        return {
            "orchestra": self.orchestra,
            "eras": list(self.eras),
            "bpmMedian": self.bpm_median,
            "energyMedian": self.energy_median,
            "commonCamelot": list(self.common_camelot),
            "avgSeconds": self.avg_seconds,
        }


def build_orchestra_profiles(tracks: Iterable[Track]) -> List[OrchestraProfile]:
    """Summarise each orchestra: styles, decades, medians, common keys, length."""
    by_artist: Dict[str, List[Track]] = defaultdict(list)
    for track in tracks:
        by_artist[(track.artist or "Unknown").strip()].append(track)

    profiles: List[OrchestraProfile] = []
    for artist, items in by_artist.items():
        bpms = [t.bpm for t in items if t.bpm is not None]
        energies = [t.energy for t in items if t.energy is not None]
        secs = [t.seconds for t in items if t.seconds > 0]
        styles = sorted({g.capitalize() for t in items for g in t.genres if g in ("tango", "vals", "milonga")})
        eras = sorted({t.decade for t in items if t.decade is not None})
        profiles.append(OrchestraProfile(
            orchestra=artist,
            styles=tuple(styles),
            eras=tuple(eras),
            bpm_median=round(float(np.median(bpms))) if bpms else None,
            energy_median=round(float(np.median(energies)), 1) if energies else None,
            common_camelot=tuple(most_common_keys(items, 3)),
            avg_seconds=round(sum(secs) / len(secs)) if secs else None,
            track_count=len(items),
            sample_ids=tuple(t.track_id for t in items[:30]),
        ))
    return profiles


def diversity_score(track_count: int) -> float:
    """Peaks for medium catalogs (3-15 tracks), falls off for very large ones."""
    if track_count < 3:
        return track_count * 10
    if track_count <= 15:
        return 100 + (15 - track_count) * 2
    return max(20, 100 - (track_count - 15) * 3)


def alternative_origins(
    profiles: Sequence[OrchestraProfile],
    exclude: Iterable[Optional[str]] = (),
    style: Optional[str] = None,
    limit: int = MAX_ALTERNATIVES,
) -> List[str]:
    """
    Orchestras to try when the requested one under-delivers.

    Ranked by diversity score; scores within 5 points prefer the deeper
    catalog (counted from 3 up).
    """
    excluded = {origin_key(o) for o in exclude if o}
    available = [
        p for p in profiles
        if origin_key(p.orchestra) not in excluded and (style is None or style in p.styles)
    ]

    def sort_key(profile: OrchestraProfile):
        # Bucket scores so near-equal ones fall back to catalog depth
        return (-(diversity_score(profile.track_count) // 5), -max(3, profile.track_count))

    ranked = sorted(available, key=sort_key)
    return [p.orchestra for p in ranked[:limit]]


def count_available_by_origin(pool: Iterable[Track]) -> Dict[str, int]:
    """Unused same-style tracks per orchestra (keyed by normalized origin)."""
    counts: Counter = Counter()
    for track in pool:
        counts[origin_key(track.artist)] += 1
    return dict(counts)


def display_names(pool: Iterable[Track]) -> Dict[str, str]:
    """Most frequent spelling per normalized origin."""
    spellings: Dict[str, Counter] = defaultdict(Counter)
    for track in pool:
        spellings[origin_key(track.artist)][(track.artist or "Unknown").strip()] += 1
    return {key: c.most_common(1)[0][0] for key, c in spellings.items()}


def pick_orchestra_weighted(
    suggestions: Sequence[str],
    availability: Dict[str, int],
    recent_origins: Sequence[str],
    size: int,
    rng: np.random.Generator,
    window: int = RECENT_WINDOW,
) -> Optional[str]:
    """
    Roulette-wheel pick among suggestions that can fill the tanda.

    weight = availability * jitter[0.85, 1.15] * 1/(1 + recent repeats) * diversity multiplier
    """
    recent = [origin_key(o) for o in list(recent_origins)[-window:]]
    bag: List[Tuple[str, float]] = []
    for name in suggestions:
        key = origin_key(name)
        avail = availability.get(key, 0)
        if avail < size:
            continue
        jitter = 0.85 + 0.30 * rng.random()
        if avail <= 15:
            multiplier = 1.2
        elif avail > 30:
            multiplier = 0.6
        else:
            multiplier = 1.0
        weight = avail * jitter * (1 / (1 + recent.count(key))) * multiplier
        if weight > 0:
            bag.append((key, weight))

    if not bag:
        return None

    total = sum(w for _, w in bag)
    r = rng.random() * total
    for key, weight in bag:
        r -= weight
        if r <= 0:
            return key
    return bag[-1][0]


def _fallback_pick(
    availability: Dict[str, int],
    recent_origins: Sequence[str],
    size: int,
    rng: np.random.Generator,
    window: int = RECENT_WINDOW,
) -> Optional[str]:
    eligible = sorted(key for key, n in availability.items() if n >= size)
    if not eligible:
        return None
    recent = {origin_key(o) for o in list(recent_origins)[-window:]}
    fresh = [key for key in eligible if key not in recent]
    choices = fresh or eligible
    return choices[int(rng.integers(len(choices)))]


def suggest_next_orchestras(
    oracle: Optional[Oracle],
    style: str,
    prev_key: Optional[str],
    recent_origins: Sequence[str],
    profiles: Sequence[OrchestraProfile],
    k: int = SUGGESTION_COUNT,
    role: Optional[str] = None,
    cancel_event: Optional[threading.Event] = None,
) -> List[str]:
    """Ask the oracle for up to ``k`` distinct orchestras to follow."""
    relevant = [p.to_prompt_dict() for p in profiles if style in p.styles][:MAX_PROFILES_IN_PROMPT]
    lines = [
        f"Style to follow: {style}",
        f"Previous tanda ending key (Camelot): {prev_key or 'n/a'}",
        f"Diversity requirement: avoid repeating any orchestra that appeared in the last {RECENT_WINDOW} tandas unless musically necessary.",
        "Prefer variety across eras/energy/BPM while staying coherent for dancers.",
        f"Return top {k} DISTINCT orchestras (no duplicates) with short reasons (<=160 chars).",
    ]
    if role:
        lines.append(f'Role focus: "{role}". Bias toward orchestras whose peak recordings match the target era for that role.')
    lines.append("JSON only.")

    payload = {
        "prompt": "\n".join(lines),
        "recent_orchestras": list(recent_origins)[-RECENT_WINDOW:],
        "orchestra_profiles": relevant,
    }
    result = ask_oracle(
        oracle, ORCHESTRA_INSTRUCTIONS, payload, NextOrchestras,
        purpose=f"orchestra ranking ({style})", cancel_event=cancel_event,
    )
    if result is None:
        return []

    names: List[str] = []
    seen = set()
    for suggestion in result.suggestions:
        key = origin_key(suggestion.orchestra)
        if not key or key in seen:
            continue
        seen.add(key)
        names.append(suggestion.orchestra.strip())
        logger.debug(f"  suggested {suggestion.orchestra}: {(suggestion.reason or '')[:160]}")
    logger.info(f"Oracle suggests for {style}: {truncate_list(names[:k], max_items=4)}")
    return names[:k]


def pick_origin(
    style: str,
    prev_key: Optional[str],
    recent_origins: Sequence[str],
    pool: Sequence[Track],
    size: int,
    oracle: Optional[Oracle],
    profiles: Sequence[OrchestraProfile],
    rng: np.random.Generator,
    role: Optional[str] = None,
    cancel_event: Optional[threading.Event] = None,
) -> Optional[str]:
    """
    Choose the orchestra for the next tanda.

    Args:
        style: Tango/Vals/Milonga
        prev_key: Camelot key of the previous tanda's last track
        recent_origins: Orchestras chosen so far (most recent last)
        pool: Unused tracks eligible for this slot (style and role filtered)
        size: Tanda size; an orchestra needs at least this many available tracks
        oracle: Recommendation oracle (None skips straight to the fallback)
        profiles: Orchestra profiles of the working set
        rng: Random generator

    Returns:
        Display name of the chosen orchestra, or None when none can fill the tanda
    """
    availability = count_available_by_origin(pool)
    names = display_names(pool)

    suggestions = suggest_next_orchestras(
        oracle, style, prev_key, recent_origins, profiles,
        role=role, cancel_event=cancel_event,
    )
    chosen = pick_orchestra_weighted(suggestions, availability, recent_origins, size, rng)
    source = "oracle"
    if chosen is None:
        chosen = _fallback_pick(availability, recent_origins, size, rng)
        source = "fallback"
    if chosen is None:
        logger.info(f"No orchestra has {size}+ unused {style} tracks")
        return None

    logger.info(f"Orchestra for {style}: {names.get(chosen, chosen)} ({source}, {availability.get(chosen, 0)} available)")
    return names.get(chosen, chosen)
