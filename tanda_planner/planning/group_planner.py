"""
Plan one tanda through the oracle, with a retry/broadening ladder.

A single attempt sends a restricted candidate list to the oracle and keeps
only identities that were actually offered and are still unused; the result
is always padded to the requested size. When an attempt under-delivers the
ladder tries alternative orchestras and finally drops the orchestra
restriction, keeping the attempt with the most real tracks.
"""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field, replace
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from tanda_planner.planning.models import PLACEHOLDER_ID, GroupPlan, Track, UsedSet
from tanda_planner.planning.oracle import Oracle, ask_oracle
from tanda_planner.planning.origin_selector import OrchestraProfile, alternative_origins
from tanda_planner.planning.schemas import NextTanda
from tanda_planner.string_utils import match_key, origin_key

logger = logging.getLogger(__name__)

CANDIDATE_LIMIT = 80
MAX_ALTERNATIVE_RETRIES = 3
ANY_ORCHESTRA = "any orchestra"

TANDA_INSTRUCTIONS = " ".join([
    "You plan exactly ONE tanda at a time for a milonga.",
    "Hard rules:",
    "- Use ONLY track IDs from the provided CANDIDATES list.",
    "- Do NOT repeat any ID from the provided USED_IDS list.",
    "- Match the requested style and size.",
    "- Prefer stylistic coherence (era/energy/artist); avoid back-to-back same artist unless needed.",
    "- Keep within the remaining time when possible; prefer typical lengths.",
    "Return ONLY JSON that matches the output schema.",
])


@dataclass(frozen=True)
class GroupRequest:
    """
    Everything one planning attempt needs.

    Attributes:
        candidates: Preferred pool (usually one orchestra's tracks)
        broader_candidates: Whole style pool used when the preferred one is too thin
        origin: Orchestra restriction, None for any
    """
    style: str
    size: int
    remaining_seconds: int
    used: UsedSet
    candidates: Sequence[Track]
    broader_candidates: Sequence[Track] = ()
    origin: Optional[str] = None
    prev_key: Optional[str] = None
    role: Optional[str] = None

    @property
    def min_real(self) -> int:
        """Real tracks needed before the ladder stops trying."""
        return max(1, self.size - 1)


# A ladder step turns the original request and the best plan so far into
# zero or more further attempts.
LadderStep = Callable[[GroupRequest, GroupPlan], Iterable[GroupRequest]]


class GroupPlanner:
    """Oracle-backed tanda planner with a retry ladder"""

    def __init__(
        self,
        oracle: Optional[Oracle],
        profiles: Sequence[OrchestraProfile] = (),
        candidate_limit: int = CANDIDATE_LIMIT,
        max_alternatives: int = MAX_ALTERNATIVE_RETRIES,
        cancel_event: Optional[threading.Event] = None,
    ):
        self.oracle = oracle
        self.profiles = list(profiles)
        self.candidate_limit = candidate_limit
        self.max_alternatives = max_alternatives
        self.cancel_event = cancel_event

    # ------------------------------------------------------------------
    # Ladder
    # ------------------------------------------------------------------

    def ladder(self) -> List[Tuple[str, LadderStep]]:
        """Ordered fallback strategies after the primary attempt."""
        return [
            ("alternative_orchestra", self._alternative_orchestra_attempts),
            ("any_orchestra", self._any_orchestra_attempts),
        ]

    def plan_group(self, request: GroupRequest) -> GroupPlan:
        """
        Plan one tanda, escalating through the ladder while it under-delivers.

        Returns the attempt with the most real tracks; the result always has
        exactly ``request.size`` ids.
        """
        best = self.plan_once(request, strategy="primary")
        attempts = 1

        for name, step in self.ladder():
            if best.real_count >= request.min_real:
                break
            for attempt in step(request, best):
                result = self.plan_once(attempt, strategy=name)
                attempts += 1
                if result.real_count > best.real_count:
                    best = result
                if best.real_count >= request.min_real:
                    break

        if best.real_count == 0:
            best = replace(best, warnings=best.warnings + ("Empty tanda",))
        logger.info(
            f"{request.style} tanda: {best.real_count}/{request.size} real tracks "
            f"after {attempts} attempt(s) (best from {best.strategy}, orchestra={best.origin or 'any'})"
        )
        return best

    def _alternative_orchestra_attempts(self, request: GroupRequest, best: GroupPlan) -> Iterable[GroupRequest]:
        pool = [t for t in (request.broader_candidates or request.candidates) if not request.used.contains_track(t)]
        alternatives = alternative_origins(self.profiles, exclude=[request.origin], style=request.style)
        tried = 0
        for name in alternatives:
            if tried >= self.max_alternatives:
                break
            key = origin_key(name)
            candidates = [t for t in pool if origin_key(t.artist) == key]
            if not candidates:
                continue
            tried += 1
            logger.debug(f"Retrying {request.style} tanda with alternative orchestra {name}")
            yield replace(request, origin=name, candidates=candidates)

    def _any_orchestra_attempts(self, request: GroupRequest, best: GroupPlan) -> Iterable[GroupRequest]:
        broadest = request.broader_candidates or request.candidates
        yield replace(request, origin=None, candidates=broadest)

    # ------------------------------------------------------------------
    # Single attempt
    # ------------------------------------------------------------------

    def select_candidates(self, request: GroupRequest) -> Tuple[List[Track], Optional[str]]:
        """
        Candidates actually offered to the oracle, plus a note when widened.

        An orchestra restriction leaving fewer unused tracks than the tanda
        size is widened to the whole style pool before any oracle call.
        """
        unused = [t for t in request.candidates if not request.used.contains_track(t)]
        if not request.origin:
            return unused, None

        target = origin_key(request.origin)
        filtered = [t for t in unused if origin_key(t.artist) == target]
        if len(filtered) >= request.size:
            return filtered, None

        broader = [t for t in (request.broader_candidates or request.candidates) if not request.used.contains_track(t)]
        note = (
            f"Only {len(filtered)} unused track(s) for {request.origin}; "
            f"widened to {len(broader)} {request.style} candidates"
        )
        logger.info(note)
        return (broader or unused), note

    def plan_once(self, request: GroupRequest, strategy: str = "primary") -> GroupPlan:
        """One oracle round-trip with validation and placeholder padding."""
        candidates, widen_note = self.select_candidates(request)
        offered = candidates[: self.candidate_limit]
        warnings: List[str] = []
        if widen_note:
            warnings.append(widen_note)

        response = None
        if offered:
            payload = {
                "prompt": self._prompt(request),
                "used_ids": request.used.as_list(),
                "orchestra": request.origin or ANY_ORCHESTRA,
                "candidates": [t.to_candidate_dict() for t in offered],
            }
            response = ask_oracle(
                self.oracle, TANDA_INSTRUCTIONS, payload, NextTanda,
                purpose=f"{request.style} tanda ({strategy})", cancel_event=self.cancel_event,
            )
        else:
            warnings.append(f"No unused {request.style} candidates")

        returned = list(response.tracks) if response is not None else []
        accepted, dropped = self._validate_ids(returned, offered, request.used, request.size)
        if dropped:
            warnings.append(f"Dropped {dropped} id(s) not offered or already used")
        if response is not None and response.warnings:
            warnings.extend(response.warnings)

        need = request.size - len(accepted)
        if need > 0:
            warnings.append(f"Padded {need} placeholder track(s)")

        return GroupPlan(
            style=request.style,
            track_ids=tuple(accepted + [PLACEHOLDER_ID] * need),
            real_count=len(accepted),
            notes=response.notes if response is not None else None,
            warnings=tuple(warnings),
            origin=request.origin,
            strategy=strategy,
        )

    @staticmethod
    def _validate_ids(
        returned: Sequence[str],
        offered: Sequence[Track],
        used: UsedSet,
        size: int,
    ) -> Tuple[List[str], int]:
        """Keep ids that were offered, unused and unique; returns (accepted, dropped count)."""
        by_key: Dict[str, Track] = {}
        for track in offered:
            by_key.setdefault(track.track_id, track)
            for key in track.match_keys:
                by_key.setdefault(key, track)

        accepted: List[str] = []
        seen = UsedSet()
        dropped = 0
        for raw in returned:
            if raw == PLACEHOLDER_ID:
                continue
            track = by_key.get(raw) or by_key.get(match_key(raw))
            if track is None or used.contains_track(track) or seen.contains_track(track):
                dropped += 1
                continue
            if len(accepted) >= size:
                break
            seen.add_track(track)
            accepted.append(track.track_id)
        return accepted, dropped

    @staticmethod
    def _prompt(request: GroupRequest) -> str:
        remaining_min = max(0, request.remaining_seconds // 60)
        return "\n".join([
            f"Plan ONE tanda of style={request.style} with {request.size} tracks.",
            "Use ONLY IDs from CANDIDATES.",
            f'Restrict to ORCHESTRA="{request.origin or ANY_ORCHESTRA}" if specified.',
            "Do NOT use any ID from USED_IDS.",
            f"Prefer keys close to previous Camelot key {request.prev_key or 'n/a'}; avoid large changes.",
            "Prefer typical key continuity within the tanda.",
            f"Try to keep total duration within the remaining time (~{remaining_min} minutes).",
            "If candidates are insufficient, return fewer tracks and add a warning.",
            "JSON only.",
        ])
