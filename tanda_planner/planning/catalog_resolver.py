"""
Reconcile a caller-supplied reference catalog with the library.

Catalog entries and library records name the same audio through different
spellings: URL-encoded paths, Windows separators, transcoded extensions and
base64url tokens. Every raw identity is expanded into exact and
extension-less normalized keys, and an entry matches a library track when any
key on one side equals any key on the other.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Union

from tanda_planner.library import LibrarySnapshot, track_from_record
from tanda_planner.planning.errors import CatalogMismatch
from tanda_planner.planning.models import ReferenceEntry, Track
from tanda_planner.string_utils import identity_keys, normalize_identity

logger = logging.getLogger(__name__)

_SAMPLE_SIZE = 5


@dataclass(frozen=True)
class CatalogResolution:
    """
    Result of resolving a catalog.

    Attributes:
        working_set: Library tracks present in the catalog, overrides merged
        overrides_by_identity: Override dict per resolved track id
    """
    working_set: List[Track]
    overrides_by_identity: Dict[str, Dict[str, Any]] = field(default_factory=dict)

    def __len__(self) -> int:
        return len(self.working_set)


def merge_overrides(record: Mapping[str, Any], override: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    """
    Shallow-merge catalog overrides onto a raw library record.

    Dict-valued fields merge key by key, list-valued fields replace wholesale,
    and fields the override does not mention are preserved. Never mutates
    ``record``.
    """
    merged: Dict[str, Any] = dict(record)
    if not override:
        return merged

    for name, value in override.items():
        if name in ("genre", "year"):
            continue
        current = merged.get(name)
        if isinstance(current, Mapping) and isinstance(value, Mapping):
            merged[name] = {**current, **value}
        else:
            merged[name] = value

    tags: Dict[str, Any] = dict(merged.get("tags") or {})
    genre = override.get("genre") or tags.get("genre") or record.get("genre")
    if genre:
        tags["genre"] = genre
        merged["genre"] = genre
    merged["tags"] = tags

    year = tags.get("year") if tags.get("year") is not None else record.get("year")
    if year is not None:
        merged["year"] = year
    for name in ("slot", "role"):
        if override.get(name) is not None:
            merged[name] = override[name]
    if (override.get("tags") or {}).get("artUrl"):
        merged["artUrl"] = override["tags"]["artUrl"]
    return merged


def _as_entries(entries: Iterable[Union[ReferenceEntry, Mapping[str, Any]]]) -> List[ReferenceEntry]:
    out = []
    for entry in entries:
        out.append(entry if isinstance(entry, ReferenceEntry) else ReferenceEntry.from_record(entry))
    return out


def resolve_catalog(
    reference_entries: Iterable[Union[ReferenceEntry, Mapping[str, Any]]],
    snapshot: LibrarySnapshot,
) -> CatalogResolution:
    """
    Intersect the catalog with the library and apply catalog overrides.

    Args:
        reference_entries: ReferenceEntry objects or raw catalog dicts
        snapshot: Library snapshot to resolve against

    Returns:
        CatalogResolution in library order

    Raises:
        CatalogMismatch: when no catalog entry matches any library track
    """
    entries = _as_entries(reference_entries)

    overrides_by_key: Dict[str, Dict[str, Any]] = {}
    catalog_keys: set = set()
    for entry in entries:
        for key in identity_keys(entry.raw_ids):
            catalog_keys.add(key)
            if entry.overrides:
                overrides_by_key.setdefault(key, entry.overrides)

    working_set: List[Track] = []
    overrides_by_identity: Dict[str, Dict[str, Any]] = {}
    for track in snapshot.tracks:
        keys = identity_keys((track.track_id, track.path) + tuple(track.alias_ids))
        if not any(k in catalog_keys for k in keys):
            continue
        override = next((overrides_by_key[k] for k in keys if k in overrides_by_key), None)
        if override:
            merged = track_from_record(merge_overrides(track.record, override))
            if merged is not None:
                track = merged
            overrides_by_identity[track.track_id] = dict(override)
        working_set.append(track)

    if not working_set:
        catalog_samples = _path_like_samples([k for e in entries for k in e.raw_ids])
        library_samples = [normalize_identity(t.path or t.track_id) for t in snapshot.tracks[:_SAMPLE_SIZE]]
        logger.warning(
            f"Catalog of {len(entries)} entries matched 0 of {len(snapshot)} library tracks; "
            f"catalog samples={catalog_samples}, library samples={library_samples}"
        )
        raise CatalogMismatch(catalog_samples, library_samples)

    logger.info(
        f"Catalog resolved: {len(working_set)}/{len(snapshot)} library tracks "
        f"({len(overrides_by_identity)} with overrides)"
    )
    return CatalogResolution(working_set=working_set, overrides_by_identity=overrides_by_identity)


def _path_like_samples(raw_ids: Sequence[str]) -> List[str]:
    samples: List[str] = []
    for raw in raw_ids:
        for key in identity_keys([raw]):
            if "/" in key and key not in samples:
                samples.append(key)
                break
        if len(samples) >= _SAMPLE_SIZE:
            break
    if not samples:
        samples = [normalize_identity(r) for r in raw_ids[:_SAMPLE_SIZE]]
    return samples


def working_snapshot(resolution: CatalogResolution) -> LibrarySnapshot:
    """Snapshot over the resolved working set, for alias-tolerant lookups."""
    return LibrarySnapshot.from_tracks(resolution.working_set)


def catalog_tracks(records: Sequence[Mapping[str, Any]]) -> List[Mapping[str, Any]]:
    """Accept either ``{"tracks": [...]}`` or a bare list as a catalog document."""
    if isinstance(records, Mapping):
        return list(records.get("tracks") or [])
    return list(records)
