"""
Sequence assembler: drives slot-by-slot planning and streams events.

``SequenceAssembler.generate`` is a generator of NDJSON-ready dicts. Each
slot goes through the origin-aware path (role pool, origin selector, group
planner) and, when that yields nothing usable, a style-only path ranked by
role fit. Accepted groups are emitted immediately; the plan, display
timeline and summary follow in the final ``done`` event.
"""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from itertools import cycle
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence

import numpy as np

from tanda_planner.library import LibrarySnapshot
from tanda_planner.logging_utils import RunSummary, format_count, new_run_id, stage_timer
from tanda_planner.planning import events
from tanda_planner.planning.catalog_resolver import CatalogResolution, catalog_tracks, resolve_catalog
from tanda_planner.planning.errors import CatalogMismatch, OracleUnavailable
from tanda_planner.planning.fillers import fit_filler, list_fillers
from tanda_planner.planning.group_planner import CANDIDATE_LIMIT, GroupPlanner, GroupRequest
from tanda_planner.planning.models import (
    DEFAULT_PATTERN,
    DEFAULT_SIZES,
    Filler,
    Group,
    GroupPlan,
    Member,
    Placeholder,
    PlanResult,
    Slot,
    Track,
    UsedSet,
    default_size_for,
)
from tanda_planner.planning.oracle import Oracle, PlanningCancelled
from tanda_planner.planning.origin_selector import build_orchestra_profiles, pick_origin
from tanda_planner.planning.roles import (
    fits_role,
    infer_role_by_position,
    role_boost,
    role_for_index,
    score_track_by_role,
)
from tanda_planner.planning.schemas import MAX_GROUP_SIZE, MIN_GROUP_SIZE
from tanda_planner.string_utils import canonical_style, origin_key

logger = logging.getLogger(__name__)

FILLER_SECONDS = 60
OVERSHOOT_SECONDS = 30
SECONDS_PER_UNKNOWN_TRACK = 180
STYLE_ONLY_SHORTLIST = 100
STYLE_ONLY_CANDIDATES = 60
SHORTLIST_MIN_SECONDS = 60
SHORTLIST_MAX_SECONDS = 480


@dataclass
class GenerateRequest:
    """
    Inputs of one generation run.

    Attributes:
        catalog: Reference catalog entries (raw dicts); None plans over the whole library
        slots: Explicit ``[{style, role?, size?}]``; overrides pattern/schedule
        schedule: Role schedule ``{"tandas": [{"tandaIndex", "role"}]}``
        filler_genres: Genre tokens for cortinas (None for the defaults)
    """
    minutes: int = 180
    pattern: Sequence[str] = DEFAULT_PATTERN
    sizes: Dict[str, int] = field(default_factory=lambda: dict(DEFAULT_SIZES))
    catalog: Optional[Any] = None
    slots: Optional[Sequence[Mapping[str, Any]]] = None
    schedule: Optional[Mapping[str, Any]] = None
    filler_genres: Optional[Sequence[str]] = None


def clamp_size(size: int, style: str) -> int:
    clamped = max(MIN_GROUP_SIZE, min(MAX_GROUP_SIZE, int(size)))
    if clamped != size:
        logger.warning(f"{style} tanda size {size} clamped to {clamped}")
    return clamped


def build_slots(request: GenerateRequest) -> List[Slot]:
    """Resolve the program into slots: explicit slots win over pattern + schedule."""
    sizes = request.sizes or {}
    slots: List[Slot] = []
    if request.slots:
        for i, raw in enumerate(request.slots):
            style = canonical_style(raw.get("style")) or (
                request.pattern[i] if i < len(request.pattern) else "Tango"
            )
            role = raw.get("role") or infer_role_by_position(i)
            size = raw.get("size")
            size = int(size) if isinstance(size, (int, float)) else default_size_for(style, sizes)
            slots.append(Slot(style=style, size=clamp_size(size, style), role=role, position=i))
        return slots

    for i, raw_style in enumerate(request.pattern):
        style = canonical_style(raw_style) or str(raw_style)
        role = role_for_index(request.schedule, i) or infer_role_by_position(i)
        size = default_size_for(style, sizes)
        slots.append(Slot(style=style, size=clamp_size(size, style), role=role, position=i))
    return slots


def apply_trailing_filler_rule(result: PlanResult, budget_seconds: int) -> PlanResult:
    """Drop a filler after the last group when keeping it would overshoot the budget."""
    if result.groups and len(result.fillers) >= len(result.groups) and result.total_seconds > budget_seconds:
        dropped = result.fillers.pop()
        logger.debug(f"Trailing cortina '{dropped.title}' dropped ({result.total_seconds}s planned)")
    return result


class SequenceAssembler:
    """Top-level planning loop for one library snapshot."""

    def __init__(
        self,
        snapshot: LibrarySnapshot,
        oracle: Optional[Oracle] = None,
        filler_seconds: int = FILLER_SECONDS,
        overshoot_seconds: int = OVERSHOOT_SECONDS,
        candidate_limit: int = CANDIDATE_LIMIT,
        retry_alternatives: int = 3,
        random_seed: Optional[int] = None,
    ):
        self.snapshot = snapshot
        self.oracle = oracle
        self.filler_seconds = filler_seconds
        self.overshoot_seconds = min(overshoot_seconds, filler_seconds)
        self.candidate_limit = candidate_limit
        self.retry_alternatives = retry_alternatives
        self.random_seed = random_seed

    def generate(
        self,
        request: GenerateRequest,
        cancel_event: Optional[threading.Event] = None,
    ) -> Iterator[Dict[str, Any]]:
        """
        Run one generation and yield its events.

        Stops issuing oracle calls as soon as ``cancel_event`` is set or the
        consumer closes the generator. Nothing follows ``done`` or ``error``.
        """
        new_run_id()
        run = RunSummary("Generation", logger)

        try:
            resolution = self._resolve(request)
        except CatalogMismatch as e:
            yield events.error_event(str(e), e.details())
            return

        working = resolution.working_set
        slots = build_slots(request)
        yield events.start_event(request.minutes, slots, request.sizes)

        state = _RunState(
            budget=max(0, int(request.minutes * 60)),
            lookup=LibrarySnapshot.from_tracks(working),
            rng=np.random.default_rng(self.random_seed),
        )
        state.remaining = state.budget
        filler_pool = self._filler_pool(request, state.rng)
        planner = GroupPlanner(
            self.oracle,
            profiles=build_orchestra_profiles(working),
            candidate_limit=self.candidate_limit,
            max_alternatives=self.retry_alternatives,
            cancel_event=cancel_event,
        )

        try:
            for slot in slots:
                if state.remaining <= self.filler_seconds:
                    logger.info(f"Budget exhausted with {state.remaining}s left; stopping")
                    break
                with stage_timer(f"Tanda slot {slot.position + 1} ({slot.style}, {slot.role})", logger):
                    group = self._plan_slot(slot, working, planner, state, cancel_event)
                if group is None:
                    state.skipped.append(slot)
                    run.increment("skipped_slots")
                    logger.warning(f"Slot {slot.position + 1} ({slot.style}) skipped: no real tracks")
                    continue

                state.remaining -= group.seconds
                filler = next(filler_pool, None)
                if filler is not None:
                    state.fillers.append(filler)
                    state.remaining -= filler.seconds
                yield events.tanda_event(len(state.groups), state.remaining, group)
        except PlanningCancelled:
            logger.info(f"Generation cancelled after {format_count(len(state.groups), 'tanda')}")
            return
        except OracleUnavailable as e:
            logger.error(f"Oracle unavailable, aborting run: {e}")
            yield events.error_event(str(e), {"tandasPlanned": len(state.groups)})
            return

        result = apply_trailing_filler_rule(
            PlanResult(groups=state.groups, fillers=state.fillers, warnings=state.warnings),
            state.budget,
        )

        if state.skipped:
            message = f"{format_count(len(state.skipped), 'slot')} skipped with no real tracks"
            result.warnings.append(message)
            yield events.warning_event(
                message,
                emptyTandas=[{"index": s.position + 1, "style": s.style, "role": s.role} for s in state.skipped],
            )

        summary = events.summarize(result.groups, request.minutes)
        yield events.quality_event(result.groups)
        yield events.summary_event(summary)

        run.add("tandas", len(result.groups))
        run.add("cortinas", len(result.fillers))
        run.add("minutes_planned", round(result.total_seconds / 60))
        run.log()

        yield events.done_event(result, summary)

    # ------------------------------------------------------------------

    def _resolve(self, request: GenerateRequest) -> CatalogResolution:
        if request.catalog is None:
            logger.info(f"No catalog supplied; planning over all {len(self.snapshot)} library tracks")
            return CatalogResolution(working_set=list(self.snapshot.tracks))
        return resolve_catalog(catalog_tracks(request.catalog), self.snapshot)

    def _filler_pool(self, request: GenerateRequest, rng: np.random.Generator) -> Iterator[Filler]:
        """Cycle through a shuffled cortina pool, each cut to one filler unit."""
        pool = list_fillers(self.snapshot.tracks, genres=request.filler_genres, rng=rng)
        if not pool:
            return iter(())
        return cycle([fit_filler(f, self.filler_seconds) for f in pool])

    def _plan_slot(
        self,
        slot: Slot,
        working: Sequence[Track],
        planner: GroupPlanner,
        state: "_RunState",
        cancel_event: Optional[threading.Event],
    ) -> Optional[Group]:
        group = self._plan_with_origin(slot, working, planner, state, cancel_event)
        if group is None:
            group = self._plan_style_only(slot, working, planner, state)
        if group is None:
            return None

        for track in group.real_tracks:
            state.used.add_track(track)
        state.groups.append(group)
        if group.origin:
            state.recent_origins.append(group.origin)
        state.prev_key = group.last_camelot or state.prev_key
        return group

    def _plan_with_origin(
        self,
        slot: Slot,
        working: Sequence[Track],
        planner: GroupPlanner,
        state: "_RunState",
        cancel_event: Optional[threading.Event],
    ) -> Optional[Group]:
        pool = [
            t for t in working
            if t.has_style(slot.style) and fits_role(t, slot.role) and not state.used.contains_track(t)
        ]
        origin = pick_origin(
            slot.style, state.prev_key, state.recent_origins, pool, slot.size,
            self.oracle, planner.profiles, state.rng, role=slot.role, cancel_event=cancel_event,
        )
        if origin is None:
            return None

        target = origin_key(origin)
        candidates = [t for t in pool if origin_key(t.artist) == target][: self.candidate_limit]
        plan = planner.plan_group(GroupRequest(
            style=slot.style,
            size=slot.size,
            remaining_seconds=state.remaining,
            used=state.used,
            candidates=candidates,
            broader_candidates=pool,
            origin=origin,
            prev_key=state.prev_key,
            role=slot.role,
        ))
        group = self._materialize(slot, plan, state, default_notes=f"Orchestra: {origin}")
        if group.real_count < 1:
            logger.info(f"Origin-aware {slot.style} tanda came back empty; trying style-only")
            return None
        return self._accept(group, state)

    def _plan_style_only(
        self,
        slot: Slot,
        working: Sequence[Track],
        planner: GroupPlanner,
        state: "_RunState",
    ) -> Optional[Group]:
        shortlist = self.style_shortlist(slot.style, working, state.used)
        shortlist.sort(key=lambda t: score_track_by_role(t, slot.role) + role_boost(t, slot.role), reverse=True)
        plan = planner.plan_group(GroupRequest(
            style=slot.style,
            size=slot.size,
            remaining_seconds=state.remaining,
            used=state.used,
            candidates=shortlist[:STYLE_ONLY_CANDIDATES],
            broader_candidates=shortlist,
            origin=None,
            prev_key=state.prev_key,
            role=slot.role,
        ))
        real = len(plan.real_ids)
        group = self._materialize(slot, plan, state, default_notes=f"(Style-only fallback: {real} real tracks)")
        if group.real_count < 1:
            return None
        return self._accept(group, state)

    @staticmethod
    def style_shortlist(style: str, working: Sequence[Track], used: UsedSet, limit: int = STYLE_ONLY_SHORTLIST) -> List[Track]:
        """Unused tracks of a style with playable lengths, mid energy first."""
        pool = [
            t for t in working
            if t.has_style(style)
            and not used.contains_track(t)
            and SHORTLIST_MIN_SECONDS <= t.seconds <= SHORTLIST_MAX_SECONDS
        ]
        pool.sort(key=lambda t: abs((t.energy if t.energy is not None else 7) - 7))
        return pool[:limit]

    def _materialize(self, slot: Slot, plan: GroupPlan, state: "_RunState", default_notes: str) -> Group:
        """Resolve planned ids to tracks, dropping anything already used, and pad."""
        members: List[Member] = []
        local = UsedSet()
        for track_id in plan.real_ids:
            track = state.lookup.get(track_id)
            if track is None or state.used.contains_track(track) or not local.add_track(track):
                continue
            members.append(track)
        while len(members) < slot.size:
            members.append(Placeholder(style=slot.style))

        seconds = sum(m.seconds for m in members) or SECONDS_PER_UNKNOWN_TRACK * len(members)
        return Group(
            style=slot.style,
            role=slot.role,
            members=members,
            seconds=seconds,
            notes=plan.notes or default_notes,
            warnings=list(plan.warnings),
            origin=plan.origin,
        )

    def _accept(self, group: Group, state: "_RunState") -> Optional[Group]:
        if group.seconds > state.remaining + self.overshoot_seconds:
            logger.info(
                f"{group.style} tanda of {group.seconds}s does not fit in {state.remaining}s "
                f"(+{self.overshoot_seconds}s tolerance)"
            )
            return None
        return group


@dataclass
class _RunState:
    budget: int
    lookup: LibrarySnapshot
    rng: np.random.Generator
    remaining: int = 0
    used: UsedSet = field(default_factory=UsedSet)
    groups: List[Group] = field(default_factory=list)
    fillers: List[Filler] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    skipped: List[Slot] = field(default_factory=list)
    recent_origins: List[str] = field(default_factory=list)
    prev_key: Optional[str] = None
