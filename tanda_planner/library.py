"""
Library snapshot and track ingestion.

Raw library records are duck-typed dicts with many optional alias fields
(tags.*, metadata.*, file.*, audio.*). Every alias is resolved exactly once
here into a canonical Track. The snapshot is immutable; a reload replaces it
wholesale so concurrent runs never observe a half-updated library.
"""
from __future__ import annotations

import logging
import os
import re
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from tanda_planner.planning.continuity import key_to_camelot
from tanda_planner.planning.models import Track
from tanda_planner.string_utils import identity_keys, match_key, strip_extension

logger = logging.getLogger(__name__)

_NUMERIC = re.compile(r"^\d+(\.\d+)?$")
_MS_THRESHOLD = 6000


def to_seconds(value: Any) -> int:
    """
    Best-effort duration in seconds.

    Numbers above 6000 are treated as milliseconds; "m:ss" and "h:mm:ss"
    strings are parsed. Anything unparseable yields 0.
    """
    if value is None or isinstance(value, bool):
        return 0
    if isinstance(value, (int, float)):
        if value != value or value in (float("inf"), float("-inf")):
            return 0
        return round(value / 1000) if value > _MS_THRESHOLD else round(value)
    if isinstance(value, str):
        text = value.strip()
        if _NUMERIC.match(text):
            return to_seconds(float(text))
        parts = text.split(":")
        try:
            numbers = [float(p) for p in parts]
        except ValueError:
            return 0
        if len(numbers) == 2:
            return round(numbers[0] * 60 + numbers[1])
        if len(numbers) == 3:
            return round(numbers[0] * 3600 + numbers[1] * 60 + numbers[2])
    return 0


def _dig(record: Mapping[str, Any], *path: str) -> Any:
    value: Any = record
    for key in path:
        if not isinstance(value, Mapping):
            return None
        value = value.get(key)
    return value


def _first(record: Mapping[str, Any], *paths: Tuple[str, ...]) -> Any:
    for path in paths:
        value = _dig(record, *path)
        if value is not None and value != "":
            return value
    return None


def _to_float(value: Any) -> Optional[float]:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if number != number:
        return None
    return number


def _to_year(value: Any) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, str):
        m = re.match(r"^\s*(\d{4})", value)
        return int(m.group(1)) if m else None
    number = _to_float(value)
    return int(round(number)) if number is not None else None


def absolute_path_of(record: Mapping[str, Any]) -> Optional[str]:
    file_info = record.get("file") or {}
    if not isinstance(file_info, Mapping):
        return None
    for key in ("absPath", "absolutePath", "fullPath", "path", "wavPath"):
        if file_info.get(key):
            return str(file_info[key])
    return None


def duration_of(record: Mapping[str, Any]) -> int:
    for path in (("audio", "duration"), ("format", "durationSec"), ("duration",), ("durationMs",), ("length",)):
        seconds = to_seconds(_dig(record, *path))
        if seconds:
            return seconds
    return 0


def bpm_of(record: Mapping[str, Any]) -> Optional[float]:
    for path in (("BPM",), ("bpm",), ("audio", "bpm"), ("tags", "BPM"), ("tags", "tempoBPM"), ("tempoBPM",)):
        number = _to_float(_dig(record, *path))
        if number is not None:
            return round(number, 1)
    return None


def _tokens(raw: Any) -> List[str]:
    if isinstance(raw, Mapping):
        return [str(k) for k, v in raw.items() if v]
    if isinstance(raw, (list, tuple)):
        return [str(g) for g in raw if g]
    if raw:
        return [str(raw)]
    return []


def genres_of(record: Mapping[str, Any]) -> Tuple[str, ...]:
    """
    Lower-cased genre/style tokens.

    The first non-empty source wins: ``styles``, then ``tags.genre``, then
    ``genre``. A catalog ``styles`` override therefore replaces the library
    genre rather than adding to it.
    """
    tokens: List[str] = []
    for raw in (record.get("styles"), _dig(record, "tags", "genre"), record.get("genre")):
        tokens = [t for t in _tokens(raw) if t.strip()]
        if tokens:
            break
    return tuple(dict.fromkeys(t.strip().lower() for t in tokens))


def track_from_record(record: Mapping[str, Any]) -> Optional[Track]:
    """Build a Track from a raw library record; None when it has no identity."""
    abs_path = absolute_path_of(record)
    file_id = _dig(record, "file", "id")
    wav_path = _dig(record, "file", "wavPath")
    track_id = record.get("id") or file_id or abs_path or record.get("path") or record.get("uri")
    if not track_id:
        return None

    aliases = [v for v in (record.get("id"), file_id, abs_path, wav_path, record.get("path"), record.get("uri")) if v]

    title = _first(record, ("tags", "title"), ("title",), ("metadata", "title"))
    if not title and abs_path:
        title = os.path.basename(abs_path.replace("\\", "/"))
    artist = _first(record, ("tags", "artist"), ("artist",), ("metadata", "artist"))

    raw_key = _first(record, ("camelotKey",), ("tags", "camelotKey"), ("tags", "Key"), ("Key",), ("key",))
    energy = _to_float(_first(record, ("tags", "Energy"), ("Energy",), ("energy",), ("audio", "energy")))

    return Track(
        track_id=str(track_id),
        title=str(title) if title else "Unknown",
        artist=str(artist).strip() if artist else "Unknown",
        album=_first(record, ("tags", "album"), ("album",)),
        path=abs_path,
        alias_ids=tuple(dict.fromkeys(str(a) for a in aliases)),
        year=_to_year(_first(record, ("tags", "year"), ("year",), ("metadata", "year"))),
        recording_year=_to_year(_first(record, ("tags", "recordingYear"), ("metadata", "recordingYear"))),
        original_year=_to_year(_first(record, ("tags", "originalYear"), ("metadata", "originalYear"))),
        genres=genres_of(record),
        bpm=bpm_of(record),
        energy=energy,
        key=_first(record, ("tags", "Key"), ("Key",), ("key",)),
        camelot=key_to_camelot(raw_key),
        seconds=duration_of(record),
        slot=record.get("slot"),
        role=record.get("role"),
        art_url=_first(record, ("artUrl",), ("tags", "coverUrl")),
        record=dict(record),
    )


@dataclass(frozen=True)
class LibrarySnapshot:
    """Immutable view of the whole library at one point in time."""
    tracks: Tuple[Track, ...] = ()
    version: int = 0
    _by_key: Dict[str, Track] = field(default_factory=dict, compare=False, repr=False)

    @classmethod
    def from_records(cls, records: Iterable[Mapping[str, Any]], version: int = 0) -> "LibrarySnapshot":
        tracks: List[Track] = []
        skipped = 0
        for record in records:
            track = track_from_record(record)
            if track is None:
                skipped += 1
                continue
            tracks.append(track)
        if skipped:
            logger.warning(f"Skipped {skipped} library record(s) without any identity")
        return cls.from_tracks(tracks, version=version)

    @classmethod
    def from_tracks(cls, tracks: Iterable[Track], version: int = 0) -> "LibrarySnapshot":
        tracks = tuple(tracks)
        by_key: Dict[str, Track] = {}
        for track in tracks:
            for key in track.match_keys:
                by_key.setdefault(key, track)
        return cls(tracks=tracks, version=version, _by_key=by_key)

    def __len__(self) -> int:
        return len(self.tracks)

    def __iter__(self):
        return iter(self.tracks)

    def get(self, identity: Optional[str]) -> Optional[Track]:
        """Look a track up by any alias, tolerant to case/encoding/extension."""
        if not identity:
            return None
        for key in identity_keys([identity]):
            hit = self._by_key.get(strip_extension(key))
            if hit is not None:
                return hit
        return self._by_key.get(match_key(identity))


class LibraryStore:
    """
    Holder of the current library snapshot.

    ``reload`` builds a new snapshot and swaps it in one assignment; readers
    that already called ``snapshot()`` keep their consistent value.
    """

    def __init__(self, records: Iterable[Mapping[str, Any]] = ()):
        self._lock = threading.Lock()
        self._snapshot = LibrarySnapshot.from_records(records, version=1)

    def snapshot(self) -> LibrarySnapshot:
        return self._snapshot

    def reload(self, records: Iterable[Mapping[str, Any]]) -> LibrarySnapshot:
        with self._lock:
            snapshot = LibrarySnapshot.from_records(records, version=self._snapshot.version + 1)
            self._snapshot = snapshot
        logger.info(f"Library reloaded: {len(snapshot)} tracks (version {snapshot.version})")
        return snapshot
