"""
Deterministic planner used when no oracle is available.

Partitions the working set by style and fills the pattern greedily, ordering
each tanda with the continuity heuristics instead of asking the oracle.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, Iterator, List, Optional, Sequence

from tanda_planner.planning import events
from tanda_planner.planning.assembler import FILLER_SECONDS, apply_trailing_filler_rule, clamp_size
from tanda_planner.planning.continuity import order_group_deterministically
from tanda_planner.planning.fillers import fit_filler
from tanda_planner.planning.models import (
    DEFAULT_SIZES,
    Filler,
    Group,
    Placeholder,
    PlanResult,
    Slot,
    Track,
    UsedSet,
)
from tanda_planner.string_utils import canonical_style

logger = logging.getLogger(__name__)


def make_fallback_plan(
    tracks: Sequence[Track],
    pattern: Sequence[str],
    minutes: int,
    sizes: Optional[Dict[str, int]] = None,
    fillers: Sequence[Filler] = (),
    filler_seconds: int = FILLER_SECONDS,
) -> PlanResult:
    """
    Fill ``pattern`` without an oracle.

    Each tanda takes ``max(2, size)`` unused tracks of its style, ordered by
    ``order_group_deterministically``. Tandas without a known duration are
    skipped; planning stops at the first tanda that no longer fits.
    """
    sizes = sizes if sizes is not None else dict(DEFAULT_SIZES)
    budget = max(60, int(minutes) * 60)
    time_left = budget

    by_style: Dict[str, List[Track]] = {}
    for style in dict.fromkeys(canonical_style(s) or s for s in pattern):
        by_style[style] = [t for t in tracks if t.has_style(style)]

    used = UsedSet()
    groups: List[Group] = []
    placed_fillers: List[Filler] = []
    for raw_style in pattern:
        style = canonical_style(raw_style) or raw_style
        size = clamp_size(max(2, int(sizes.get(style) or 3)), style)
        pool = [t for t in by_style.get(style, []) if not used.contains_track(t)]
        chosen = order_group_deterministically(pool, size)
        if not chosen:
            continue

        seconds = sum(t.seconds for t in chosen)
        if seconds <= 0:
            logger.debug(f"Skipping {style} tanda without known durations")
            continue
        if seconds > time_left:
            logger.info(f"{style} tanda of {seconds}s does not fit in {time_left}s; stopping")
            break

        for track in chosen:
            used.add_track(track)
        members = list(chosen) + [Placeholder(style=style)] * (size - len(chosen))
        groups.append(Group(
            style=style,
            role=None,
            members=members,
            seconds=seconds,
            notes=f"Fallback planner: {style} x{len(chosen)}",
        ))
        time_left -= seconds

        if fillers:
            filler = fit_filler(fillers[(len(groups) - 1) % len(fillers)], filler_seconds)
            placed_fillers.append(filler)
            time_left -= filler.seconds
        if time_left <= 0:
            break

    logger.info(f"Fallback plan: {len(groups)} tanda(s), {time_left}s of {budget}s left")
    return apply_trailing_filler_rule(PlanResult(groups=groups, fillers=placed_fillers), budget)


def fallback_events(
    tracks: Sequence[Track],
    pattern: Sequence[str],
    minutes: int,
    sizes: Optional[Dict[str, int]] = None,
    fillers: Sequence[Filler] = (),
) -> Iterator[Dict[str, Any]]:
    """Same event stream as an oracle-backed run, for an offline plan."""
    sizes = sizes if sizes is not None else dict(DEFAULT_SIZES)
    slots = [
        Slot(style=canonical_style(s) or s, size=max(2, int(sizes.get(canonical_style(s) or s) or 3)), position=i)
        for i, s in enumerate(pattern)
    ]
    yield events.start_event(minutes, slots, sizes)

    result = make_fallback_plan(tracks, pattern, minutes, sizes, fillers)
    elapsed = 0
    budget = max(60, int(minutes) * 60)
    for i, group in enumerate(result.groups):
        elapsed += group.seconds + (result.fillers[i].seconds if i < len(result.fillers) else 0)
        yield events.tanda_event(i + 1, budget - elapsed, group)

    summary = events.summarize(result.groups, minutes)
    yield events.quality_event(result.groups)
    yield events.summary_event(summary)
    yield events.done_event(result, summary)
