"""
Core data types for tanda planning.

Tracks are immutable views over library records; catalog overrides produce
merged copies. Groups, fillers and plan results are request scoped.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, Union

from tanda_planner.string_utils import identity_keys, strip_extension

PLACEHOLDER_ID = "replace"
PLACEHOLDER_TITLE = "replace this"

STYLES = ("Tango", "Vals", "Milonga")
DEFAULT_SIZES = {"Tango": 4, "Vals": 3, "Milonga": 3}
DEFAULT_PATTERN = ("Tango", "Tango", "Vals", "Tango", "Tango", "Milonga")


def default_size_for(style: str, sizes: Optional[Dict[str, int]] = None) -> int:
    """Group size for a style: explicit sizes first, then 4 for Tango and 3 otherwise."""
    if sizes and sizes.get(style) is not None:
        return int(sizes[style])
    return DEFAULT_SIZES.get(style, 4 if style == "Tango" else 3)


@dataclass(frozen=True)
class Track:
    """A library track with every field alias already resolved."""
    track_id: str
    title: str = "Unknown"
    artist: str = "Unknown"
    album: Optional[str] = None
    path: Optional[str] = None
    alias_ids: Tuple[str, ...] = ()
    year: Optional[int] = None
    recording_year: Optional[int] = None
    original_year: Optional[int] = None
    genres: Tuple[str, ...] = ()
    bpm: Optional[float] = None
    energy: Optional[float] = None
    key: Optional[str] = None
    camelot: Optional[str] = None
    seconds: int = 0
    slot: Optional[Any] = None
    role: Optional[str] = None
    art_url: Optional[str] = None
    record: Dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    is_placeholder = False

    @property
    def decade(self) -> Optional[int]:
        return (self.year // 10) * 10 if self.year else None

    @property
    def match_keys(self) -> Tuple[str, ...]:
        """Extension-less keys of every alias (including decoded tokens)."""
        keys = identity_keys((self.track_id, self.path) + tuple(self.alias_ids))
        return tuple(dict.fromkeys(strip_extension(k) for k in keys))

    def has_style(self, style: str) -> bool:
        return str(style or "").strip().lower() in self.genres

    def to_candidate_dict(self) -> Dict[str, Any]:
        """Slim view sent to the oracle."""
        return {
            "id": self.track_id,
            "title": self.title,
            "artist": self.artist,
            "seconds": self.seconds or None,
            "BPM": self.bpm,
            "energy": self.energy,
            "camelotKey": self.camelot,
        }

    def to_client_dict(self) -> Dict[str, Any]:
        return {
            "id": self.track_id,
            "title": self.title,
            "artist": self.artist,
            "album": self.album,
            "seconds": self.seconds,
            "BPM": self.bpm,
            "Energy": self.energy,
            "Key": self.key,
            "camelotKey": self.camelot,
            "year": self.year,
            "artUrl": self.art_url,
        }


@dataclass(frozen=True)
class Placeholder:
    """Marks an unresolved group member. Never playable, never counted as real."""
    style: str
    title: str = PLACEHOLDER_TITLE

    is_placeholder = True
    track_id = None
    artist = None
    camelot = None
    bpm = None
    energy = None
    seconds = 0

    def to_client_dict(self) -> Dict[str, Any]:
        return {
            "id": None,
            "title": self.title,
            "artist": None,
            "seconds": 0,
            "BPM": None,
            "Energy": None,
            "Key": None,
            "camelotKey": None,
            "placeholder": True,
            "style": self.style,
        }


Member = Union[Track, Placeholder]


@dataclass(frozen=True)
class ReferenceEntry:
    """One entry of a caller-supplied catalog: raw identities plus optional overrides."""
    raw_ids: Tuple[str, ...]
    overrides: Optional[Dict[str, Any]] = field(default=None, compare=False)

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "ReferenceEntry":
        file_info = record.get("file") or {}
        raw = [
            file_info.get("absPath"),
            file_info.get("absolutePath"),
            file_info.get("fullPath"),
            file_info.get("path"),
            file_info.get("wavPath"),
            file_info.get("id"),
            record.get("absolutePath"),
            record.get("absPath"),
            record.get("id"),
            record.get("path"),
            record.get("uri"),
        ]
        raw_ids = tuple(str(v) for v in raw if v)
        override_fields = ("tags", "styles", "genre", "slot", "role", "artUrl")
        overrides = {k: record[k] for k in override_fields if record.get(k) is not None}
        return cls(raw_ids=raw_ids, overrides=overrides or None)


@dataclass(frozen=True)
class Slot:
    style: str
    size: int
    role: Optional[str] = None
    position: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {"style": self.style, "role": self.role, "size": self.size}


@dataclass(frozen=True)
class Filler:
    """A cortina: short non-dance track played between tandas."""
    filler_id: Optional[str]
    title: str = "Cortina"
    artist: Optional[str] = None
    singer: Optional[str] = None
    seconds: int = 60

    @property
    def approx_minutes(self) -> int:
        return max(1, round(self.seconds / 60))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.filler_id,
            "title": self.title,
            "artist": self.artist,
            "singer": self.singer,
            "seconds": self.seconds,
            "approxMinutes": self.approx_minutes,
        }


@dataclass(frozen=True)
class GroupPlan:
    """
    Outcome of one group-planning attempt.

    Attributes:
        track_ids: Exactly ``size`` entries; padding uses PLACEHOLDER_ID
        real_count: Number of validated (non-placeholder) ids
        notes: Free text returned by the oracle
        warnings: Validation and padding warnings
        origin: Orchestra the attempt targeted (None = any)
        strategy: Name of the ladder step that produced it
    """
    style: str
    track_ids: Tuple[str, ...]
    real_count: int
    notes: Optional[str] = None
    warnings: Tuple[str, ...] = ()
    origin: Optional[str] = None
    strategy: str = "primary"

    @property
    def real_ids(self) -> List[str]:
        return [tid for tid in self.track_ids if tid != PLACEHOLDER_ID]


@dataclass
class Group:
    style: str
    role: Optional[str]
    members: List[Member]
    seconds: int
    notes: Optional[str] = None
    warnings: List[str] = field(default_factory=list)
    origin: Optional[str] = None

    @property
    def real_tracks(self) -> List[Track]:
        return [m for m in self.members if not m.is_placeholder]

    @property
    def real_count(self) -> int:
        return len(self.real_tracks)

    @property
    def last_camelot(self) -> Optional[str]:
        for member in reversed(self.members):
            if member.camelot:
                return member.camelot
        return None

    def to_event_dict(self) -> Dict[str, Any]:
        return {
            "style": self.style,
            "role": self.role,
            "seconds": self.seconds,
            "notes": self.notes,
            "tracks": [m.to_client_dict() for m in self.members],
        }


@dataclass
class PlanResult:
    """Ordered groups with the fillers that sit between them."""
    groups: List[Group]
    fillers: List[Filler]
    warnings: List[str] = field(default_factory=list)

    @property
    def total_seconds(self) -> int:
        return sum(g.seconds for g in self.groups) + sum(f.seconds for f in self.fillers)

    def sequence(self) -> List[Union[Group, Filler]]:
        items: List[Union[Group, Filler]] = []
        for i, group in enumerate(self.groups):
            items.append(group)
            if i < len(self.fillers):
                items.append(self.fillers[i])
        return items


class UsedSet:
    """
    Identities already placed in the current run.

    Membership is tolerant to case, URL-encoding, path separators, file
    extensions and base64url tokens. Only ever grows within a run.
    """

    def __init__(self, identities: Iterable[str] = ()):
        self._keys: set = set()
        self._raw: List[str] = []
        for identity in identities:
            self.add(identity)

    @staticmethod
    def _keys_for(values: Sequence[Optional[str]]) -> set:
        return {strip_extension(k) for k in identity_keys(values)}

    def add(self, identity: Optional[str]) -> bool:
        """Add one identity; returns False when it (or an alias of it) was already used."""
        keys = self._keys_for([identity])
        if not keys or keys & self._keys:
            return False
        self._keys |= keys
        self._raw.append(str(identity))
        return True

    def add_track(self, track: Track) -> bool:
        keys = set(track.match_keys)
        if not keys or keys & self._keys:
            return False
        self._keys |= keys
        self._raw.append(track.track_id)
        return True

    def __contains__(self, identity: object) -> bool:
        if isinstance(identity, Track):
            return self.contains_track(identity)
        return bool(self._keys_for([identity]) & self._keys) if identity else False

    def contains_track(self, track: Track) -> bool:
        return any(k in self._keys for k in track.match_keys)

    def __len__(self) -> int:
        return len(self._raw)

    def as_list(self) -> List[str]:
        return list(self._raw)

    def copy(self) -> "UsedSet":
        clone = UsedSet()
        clone._keys = set(self._keys)
        clone._raw = list(self._raw)
        return clone
