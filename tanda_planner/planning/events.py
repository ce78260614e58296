"""
NDJSON event payloads for a generation run.

Every builder returns a plain JSON-serialisable dict; the transport decides
how to write it. Events of one run: ``start``, one ``tanda`` per accepted
group, optional ``warning``, ``quality``, ``summary`` and finally ``done``
(or a terminal ``error``).
"""
from __future__ import annotations

from collections import Counter
from typing import Any, Dict, List, Optional, Sequence

from tanda_planner.planning.models import Filler, Group, PlanResult, Slot


def fmt_clock(total_seconds: float) -> str:
    """h:mm:ss from one hour up, m:ss below."""
    s = max(0, round(total_seconds))
    hours, rest = divmod(s, 3600)
    minutes, seconds = divmod(rest, 60)
    if hours > 0:
        return f"{hours}:{minutes:02d}:{seconds:02d}"
    return f"{minutes}:{seconds:02d}"


def start_event(minutes: int, slots: Sequence[Slot], sizes: Dict[str, int]) -> Dict[str, Any]:
    return {
        "type": "start",
        "minutes": minutes,
        "slots": [slot.to_dict() for slot in slots],
        "sizes": dict(sizes),
    }


def tanda_event(index: int, remaining_seconds: int, group: Group) -> Dict[str, Any]:
    return {
        "type": "tanda",
        "index": index,
        "remainingSeconds": remaining_seconds,
        "tanda": group.to_event_dict(),
    }


def warning_event(message: str, **extra: Any) -> Dict[str, Any]:
    return {"type": "warning", "message": message, **extra}


def error_event(error: str, details: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    event: Dict[str, Any] = {"type": "error", "error": error}
    if details:
        event["details"] = details
    return event


def is_sufficient(group: Group) -> bool:
    """At least half of the group (and at least one track) is real."""
    return group.real_count >= max(1, len(group.members) * 0.5)


def quality_event(groups: Sequence[Group]) -> Dict[str, Any]:
    total = len(groups)
    good = sum(1 for g in groups if is_sufficient(g))
    return {
        "type": "quality",
        "message": f"Generation quality: {good}/{total} tandas have sufficient tracks",
        "qualityScore": round(100 * good / total) if total else 0,
    }


def summarize(groups: Sequence[Group], minutes_requested: int) -> Dict[str, Any]:
    track_count = sum(len(g.members) for g in groups)
    track_seconds = sum(m.seconds for g in groups for m in g.members)
    return {
        "minutesRequested": minutes_requested,
        "minutesPlanned": round(sum(g.seconds for g in groups) / 60),
        "tandaCount": len(groups),
        "byStyle": dict(Counter(g.style for g in groups)),
        "byRole": dict(Counter(g.role or "n/a" for g in groups)),
        "trackCount": track_count,
        "avgTrackLenSec": round(track_seconds / track_count) if track_count else 0,
    }


def summary_event(summary: Dict[str, Any]) -> Dict[str, Any]:
    return {"type": "summary", "summary": summary}


def cortina_block(filler: Filler) -> Dict[str, Any]:
    return {
        "type": "cortina",
        "style": "Cortina",
        "size": 1,
        "approxMinutes": filler.approx_minutes,
        "tracks": [{
            "id": filler.filler_id,
            "title": filler.title or "Cortina",
            "artist": filler.artist or filler.singer,
            "BPM": None,
            "Energy": None,
            "Key": None,
            "camelotKey": None,
            "seconds": filler.seconds,
        }],
        "streamId": filler.filler_id,
        "artist": filler.artist,
        "singer": filler.singer,
    }


def plan_blocks(result: PlanResult) -> List[Dict[str, Any]]:
    """Tanda and cortina blocks in play order."""
    blocks: List[Dict[str, Any]] = []
    for item in result.sequence():
        if isinstance(item, Filler):
            blocks.append(cortina_block(item))
            continue
        blocks.append({
            "type": "tanda",
            "style": item.style,
            "role": item.role,
            "size": len(item.members),
            "approxMinutes": max(1, round(item.seconds / 60)),
            "notes": item.notes,
            "tracks": [m.to_client_dict() for m in item.members],
        })
    return blocks


def build_timeline(result: PlanResult) -> List[Dict[str, Any]]:
    """
    Start/end offsets for every tanda and track.

    Cortinas advance the clock but are not listed. Members without a known
    length get an even share of the group's seconds.
    """
    timeline: List[Dict[str, Any]] = []
    cursor = 0
    for i, group in enumerate(result.groups):
        tanda_start = cursor
        share = round(group.seconds / max(1, len(group.members)))
        tracks = []
        for j, member in enumerate(group.members):
            seconds = member.seconds or share
            tracks.append({
                "index": j + 1,
                "id": member.track_id,
                "title": member.title,
                "artist": member.artist,
                "seconds": seconds,
                "startSec": cursor,
                "endSec": cursor + seconds,
                "startClock": fmt_clock(cursor),
                "endClock": fmt_clock(cursor + seconds),
            })
            cursor += seconds
        timeline.append({
            "index": i + 1,
            "style": group.style,
            "role": group.role,
            "durationSec": group.seconds,
            "startSec": tanda_start,
            "endSec": cursor,
            "startClock": fmt_clock(tanda_start),
            "endClock": fmt_clock(cursor),
            "tracks": tracks,
        })
        if i < len(result.fillers):
            cursor += result.fillers[i].seconds
    return timeline


def done_event(result: PlanResult, summary: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "type": "done",
        "plan": {
            "tandas": plan_blocks(result),
            "cortinas": [f.to_dict() for f in result.fillers],
            "warnings": list(result.warnings),
        },
        "display": {"timeline": build_timeline(result), "summary": summary},
    }
