"""
Edits applied to an already generated plan: swapping two tandas and
regenerating one tanda with a different orchestra.
"""
from __future__ import annotations

import copy
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from tanda_planner.library import LibrarySnapshot
from tanda_planner.planning.errors import PlannerError
from tanda_planner.planning.group_planner import GroupPlanner, GroupRequest
from tanda_planner.planning.models import Group, Member, Placeholder, UsedSet
from tanda_planner.planning.oracle import Oracle
from tanda_planner.planning.origin_selector import alternative_origins, build_orchestra_profiles
from tanda_planner.string_utils import canonical_style, origin_key

logger = logging.getLogger(__name__)

RETRY_ORIGINS = 3
RETRY_MINUTES = 20
MIN_ORIGINS_IN_WORKING_SET = 5
MIN_TRACKS_IN_WORKING_SET = 50


def swap_tandas(plan: Mapping[str, Any], i: int, j: int) -> Dict[str, Any]:
    """
    Swap two tanda blocks of a plan, returning a new plan.

    Raises:
        ValueError: plan has no block list, an index is out of range, or a
            block is not a tanda
    """
    blocks = plan.get("tandas") if isinstance(plan, Mapping) else None
    if not isinstance(blocks, list):
        raise ValueError("Invalid plan")
    if i == j:
        return dict(plan)
    if not (0 <= i < len(blocks) and 0 <= j < len(blocks)):
        raise ValueError("Index out of range")
    if blocks[i].get("type") != "tanda" or blocks[j].get("type") != "tanda":
        raise ValueError("Swap requires tanda indices")

    swapped = copy.deepcopy(dict(plan))
    swapped["tandas"][i], swapped["tandas"][j] = swapped["tandas"][j], swapped["tandas"][i]
    return swapped


@dataclass
class RetryResult:
    group: Group
    original_origin: Optional[str]
    alternatives_available: int
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tanda": {
                "orchestra": self.group.origin,
                "style": self.group.style,
                "tracks": [m.to_client_dict() for m in self.group.members],
            },
            "metadata": {
                "originalOrchestra": self.original_origin,
                "newOrchestra": self.group.origin,
                "alternativesAvailable": self.alternatives_available,
                "trackCount": len(self.group.members),
                **self.metadata,
            },
        }


def _plan_track_ids(plan: Iterable[Mapping[str, Any]]) -> List[str]:
    ids: List[str] = []
    for block in plan:
        for track in block.get("tracks") or []:
            for name in ("id", "path", "uri"):
                if track.get(name):
                    ids.append(str(track[name]))
    return ids


def retry_group(
    working: LibrarySnapshot,
    library: LibrarySnapshot,
    oracle: Optional[Oracle],
    style: str,
    current_origin: Optional[str],
    size: int = 4,
    avoid_origins: Sequence[str] = (),
    current_plan: Sequence[Mapping[str, Any]] = (),
    cancel_event: Optional[threading.Event] = None,
) -> RetryResult:
    """
    Regenerate one tanda with an orchestra other than the current one.

    Orchestra names are compared after normalisation, so "Di Sarli y su
    Orquesta Tipica" counts as "Di Sarli". Small working sets (a loaded
    playlist rather than a whole catalog) borrow orchestras and candidates
    from the full library. Tracks already in ``current_plan`` are never reused.

    Raises:
        PlannerError: no alternative orchestra exists, or none yields a real track
    """
    style = canonical_style(style) or style
    avoid = {origin_key(o) for o in [current_origin, *avoid_origins] if o}

    origin_source = working
    if len({origin_key(t.artist) for t in working}) < MIN_ORIGINS_IN_WORKING_SET:
        logger.info("Working set has few orchestras; looking for alternatives in the full library")
        origin_source = library
    available = {origin_key(t.artist) for t in origin_source if t.artist and t.artist != "Unknown"}

    candidate_source = library if len(working) < MIN_TRACKS_IN_WORKING_SET else working
    candidates = [t for t in candidate_source if t.has_style(style)]
    profiles = build_orchestra_profiles(candidate_source)

    ranked = alternative_origins(profiles, exclude=[current_origin, *avoid_origins], style=style, limit=len(profiles))
    alternatives = [name for name in ranked if origin_key(name) in available and origin_key(name) not in avoid]
    if not alternatives:
        raise PlannerError("No alternative orchestras available for retry")

    used = UsedSet(_plan_track_ids(current_plan))
    planner = GroupPlanner(oracle, profiles=profiles, max_alternatives=0, cancel_event=cancel_event)
    lookup = LibrarySnapshot.from_tracks(candidates)

    for attempt, origin in enumerate(alternatives[:RETRY_ORIGINS], start=1):
        logger.info(f"Retry attempt {attempt}: {style} tanda with {origin}")
        plan = planner.plan_once(GroupRequest(
            style=style,
            size=size,
            remaining_seconds=RETRY_MINUTES * 60,
            used=used,
            candidates=candidates,
            broader_candidates=candidates,
            origin=origin,
        ), strategy="retry")
        if plan.real_count == 0:
            continue

        members: List[Member] = [t for t in (lookup.get(i) for i in plan.real_ids) if t is not None]
        members += [Placeholder(style=style)] * (size - len(members))
        group = Group(
            style=style,
            role=None,
            members=members,
            seconds=sum(m.seconds for m in members),
            notes=plan.notes,
            warnings=list(plan.warnings),
            origin=origin,
        )
        logger.info(f"Retry succeeded with {origin}: {group.real_count}/{size} real tracks")
        return RetryResult(group, current_origin, len(alternatives), {"attempts": attempt})

    raise PlannerError(f"No tracks found for replacement {style} tanda")
