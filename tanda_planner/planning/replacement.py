"""
Single-track replacement for live edits of a planned tanda.

The pool starts from same-style tracks minus the current tanda (avoid set)
and earlier rejections for this position. It may be narrowed to one
orchestra and is progressively broadened when it starves. Candidates are
ranked by continuity cost against the neighbours; the oracle picks from the
slimmed list and anything it returns outside that list is discarded.
"""
from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence

import numpy as np

from tanda_planner.library import LibrarySnapshot
from tanda_planner.planning.continuity import key_to_camelot, rank_by_continuity
from tanda_planner.planning.errors import PlannerError
from tanda_planner.planning.models import Track, UsedSet
from tanda_planner.planning.oracle import Oracle, ask_oracle
from tanda_planner.planning.schemas import ReplacementChoice
from tanda_planner.string_utils import match_key, origin_key

logger = logging.getLogger(__name__)

SLIM_LIMIT = 80
FALLBACK_SPREAD = 5

COMPATIBLE_STYLES: Dict[str, List[str]] = {
    "tango": ["tango", "vals", "milonga"],
    "vals": ["vals", "tango"],
    "milonga": ["milonga", "tango"],
    "waltz": ["vals", "tango"],
    "valz": ["vals", "tango"],
}

REPLACE_INSTRUCTIONS = " ".join([
    "You replace ONE track in a tanda, keeping musical coherence.",
    "CRITICAL: Use ONLY IDs from CANDIDATES list - never use IDs from AVOID_IDS.",
    "CRITICAL: Do not select the same track repeatedly - check previous suggestions.",
    "Prefer the SAME orchestra if provided; otherwise a close stylistic match.",
    "Consider the neighbors' BPM, energy, and key to minimize discontinuities.",
    "Select different tracks for chosenId and suggestions to provide variety.",
    "Return only JSON matching the output schema.",
])


def compatible_styles(style: str) -> List[str]:
    key = str(style or "").strip().lower()
    return COMPATIBLE_STYLES.get(key, [key])


def neighbor_track(raw: Optional[Mapping[str, Any]], name: str) -> Optional[Track]:
    """Neighbour descriptor ``{key, bpm|BPM, energy|Energy}`` as a scoring-only Track."""
    if not raw:
        return None

    def number(*names: str) -> Optional[float]:
        for n in names:
            value = raw.get(n)
            if value is None:
                continue
            try:
                return float(value)
            except (TypeError, ValueError):
                continue
        return None

    return Track(
        track_id=f"neighbor:{name}",
        bpm=number("bpm", "BPM"),
        energy=number("energy", "Energy"),
        camelot=key_to_camelot(raw.get("camelotKey") or raw.get("key") or raw.get("Key")),
    )


@dataclass
class ReplacementRequest:
    """
    Attributes:
        origin: Same-orchestra preference
        neighbors: ``{"prev": {...}, "next": {...}}`` descriptors of adjacent tracks
        avoid_ids: Identities in the current tanda
        rejected_ids: Earlier replacements rejected for this position
        homogenize: Target the most frequent orchestra of the current tanda instead
    """
    style: str
    origin: Optional[str] = None
    neighbors: Optional[Mapping[str, Any]] = None
    avoid_ids: Sequence[str] = ()
    rejected_ids: Sequence[str] = ()
    top_k: int = 6
    homogenize: bool = False
    position: Optional[Mapping[str, Any]] = None


@dataclass
class ReplacementResult:
    replacement: Track
    suggestions: List[Dict[str, Any]]
    metadata: Dict[str, Any] = field(default_factory=dict)
    source: str = "oracle"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "replacement": self.replacement.to_client_dict(),
            "suggestions": self.suggestions,
            "metadata": self.metadata,
        }


class ReplacementService:
    """Replace one track of a tanda from a resolved working set."""

    def __init__(
        self,
        snapshot: LibrarySnapshot,
        oracle: Optional[Oracle] = None,
        rng: Optional[np.random.Generator] = None,
        slim_limit: int = SLIM_LIMIT,
    ):
        self.snapshot = snapshot
        self.oracle = oracle
        self.rng = rng or np.random.default_rng()
        self.slim_limit = slim_limit

    def target_origin(self, request: ReplacementRequest) -> Optional[str]:
        if not request.homogenize:
            return (request.origin or "").strip() or None
        counts: Counter = Counter()
        for identity in request.avoid_ids:
            track = self.snapshot.get(identity)
            if track is not None and track.artist:
                counts[track.artist.strip()] += 1
        return counts.most_common(1)[0][0] if counts else None

    def build_pool(self, request: ReplacementRequest, avoid: UsedSet, rejected: UsedSet):
        """
        Candidate pool plus the broadening steps that fired.

        Returns (pool, target_origin, origin_restricted, steps).
        """
        def allowed(track: Track) -> bool:
            return not avoid.contains_track(track) and not rejected.contains_track(track)

        tracks = self.snapshot.tracks
        base = [t for t in tracks if t.has_style(request.style) and allowed(t)]
        target = self.target_origin(request)
        restricted = False
        steps: List[str] = []

        if target and not len(rejected):
            key = origin_key(target)
            strict = [t for t in base if origin_key(t.artist) == key]
            if len(strict) >= min(3, request.top_k):
                base = strict
                restricted = True

        if target and not restricted:
            steps.append("drop_origin")
            logger.info(f"Orchestra {target} not applied to the {request.style} replacement pool")

        starving = not base or (len(base) < request.top_k and not restricted)
        if starving:
            if len(base) < max(1, request.top_k):
                wanted = set(compatible_styles(request.style))
                expanded = [t for t in tracks if (set(t.genres) & wanted) and allowed(t)]
                if len(expanded) > len(base):
                    base = expanded
                    steps.append("compatible_styles")
            if not base:
                base = [t for t in tracks if allowed(t)]
                steps.append("any_style")
                logger.warning(f"No {request.style} or compatible tracks left; using {len(base)} of any style")

        return base, target, restricted, steps

    def replace(self, request: ReplacementRequest) -> ReplacementResult:
        """
        Pick one replacement track and up to ``top_k`` alternatives.

        Raises:
            PlannerError: when nothing at all is left to choose from
        """
        avoid = UsedSet(request.avoid_ids)
        rejected = UsedSet(request.rejected_ids)
        pool, target, restricted, steps = self.build_pool(request, avoid, rejected)
        if not pool:
            raise PlannerError("No candidates available for replacement")

        neighbors = request.neighbors or {}
        prev = neighbor_track(neighbors.get("prev"), "prev")
        nxt = neighbor_track(neighbors.get("next"), "next")
        ranked = rank_by_continuity(pool, prev, nxt)
        slim = ranked[: max(self.slim_limit, request.top_k)]

        choice = self._ask(request, target, avoid, rejected, slim)
        by_key = self._index(slim)

        chosen = None
        source = "oracle"
        if choice is not None:
            chosen = self._lookup(by_key, choice.chosenId)
            if chosen is None:
                logger.warning(f"Replacement oracle chose {choice.chosenId!r} outside the candidates; using fallback")
        if chosen is None:
            source = "fallback"
            spread = slim[: min(FALLBACK_SPREAD, len(slim))]
            chosen = spread[int(self.rng.integers(len(spread)))]

        suggestions = self._suggestions(choice, chosen, by_key, slim, request.top_k)
        metadata = {
            "broadeningApplied": bool(steps),
            "broadeningSteps": steps,
            "originalPool": len(self.snapshot),
            "finalPool": len(pool),
            "previouslySelectedCount": len(rejected),
            "orchestraRestricted": restricted,
        }
        logger.info(
            f"Replacement for {request.style}: {chosen.title} by {chosen.artist} ({source}, "
            f"pool {len(pool)}, steps={steps or 'none'})"
        )
        return ReplacementResult(replacement=chosen, suggestions=suggestions, metadata=metadata, source=source)

    def _ask(self, request, target, avoid: UsedSet, rejected: UsedSet, slim: Sequence[Track]):
        if request.homogenize:
            mode = "Mode: HOMOGENIZE (use dominant orchestra across current tanda if possible)."
        else:
            mode = f"Mode: SAME-ORCHESTRA preference = {target or 'n/a'}."
        payload = {
            "prompt": "\n".join([
                f"Replace one {request.style} track. {mode} Keep continuity with neighbors.",
                "IMPORTANT: Never select tracks from AVOID_IDS or PREVIOUSLY_SELECTED lists. "
                "Choose different tracks for variety.",
            ]),
            "position": dict(request.position or {}),
            "neighbors": dict(request.neighbors or {}),
            "avoid_ids": avoid.as_list(),
            "previously_selected": rejected.as_list(),
            "candidates": [t.to_candidate_dict() for t in slim],
        }
        return ask_oracle(self.oracle, REPLACE_INSTRUCTIONS, payload, ReplacementChoice, purpose="track replacement")

    @staticmethod
    def _index(slim: Sequence[Track]) -> Dict[str, Track]:
        by_key: Dict[str, Track] = {}
        for track in slim:
            by_key.setdefault(track.track_id, track)
            for key in track.match_keys:
                by_key.setdefault(key, track)
        return by_key

    @staticmethod
    def _lookup(by_key: Dict[str, Track], identity: Optional[str]) -> Optional[Track]:
        if not identity:
            return None
        return by_key.get(identity) or by_key.get(match_key(identity))

    def _suggestions(self, choice, chosen: Track, by_key, slim, top_k: int) -> List[Dict[str, Any]]:
        seen = UsedSet()
        seen.add_track(chosen)
        out: List[Dict[str, Any]] = []
        for suggestion in (choice.suggestions if choice is not None else []):
            track = self._lookup(by_key, suggestion.id)
            if track is None or not seen.add_track(track):
                continue
            out.append({**track.to_client_dict(), "reason": suggestion.reason})
            if len(out) >= top_k:
                return out
        for track in slim:
            if len(out) >= top_k:
                break
            if seen.add_track(track):
                out.append({**track.to_client_dict(), "reason": "Alternative suggestion"})
        return out
