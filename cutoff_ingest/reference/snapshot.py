"""Immutable reference snapshot shared by the matcher and the orchestrator.

A snapshot is built once per pipeline run (or per explicit reload) and
passed by reference. Reloading produces a new snapshot with a higher
version; existing holders keep reading the old one.
"""

from __future__ import annotations

import hashlib
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from types import MappingProxyType

from cutoff_ingest.models.enums import EntityType
from cutoff_ingest.parsing.fields import normalize_text
from cutoff_ingest.reference.variations import match_key


def entity_id(entity_type: EntityType, name: str, city: str = "", state: str = "") -> str:
    """Stable id derived from the normalized identity of an entity."""
    key = f"{entity_type.value}:{normalize_text(name)}|{city.upper()}|{state.upper()}"
    return hashlib.sha1(key.encode("utf-8")).hexdigest()[:16]


@dataclass(frozen=True)
class ReferenceEntity:
    """A canonical college or program as seen by the matcher."""

    id: str
    name: str
    entity_type: EntityType
    subtype: str | None = None  # college type, or program level
    city: str = ""
    state: str = ""
    variations: frozenset[str] = frozenset()
    key: str = field(init=False)
    match_keys: frozenset[str] = field(init=False)
    tokens: frozenset[str] = field(init=False)

    def __post_init__(self) -> None:
        key = match_key(self.name)
        object.__setattr__(self, "key", key)
        object.__setattr__(
            self, "match_keys", frozenset({key} | {match_key(v) for v in self.variations}) - {""}
        )
        object.__setattr__(self, "tokens", frozenset(key.split()))


@dataclass(frozen=True)
class ReferenceSnapshot:
    """Read-only view of the canonical reference data."""

    version: int
    colleges: tuple[ReferenceEntity, ...] = ()
    programs: tuple[ReferenceEntity, ...] = ()
    quotas: Mapping[str, str] = field(default_factory=dict)
    categories: Mapping[str, str] = field(default_factory=dict)
    states: Mapping[str, str] = field(default_factory=dict)
    loaded_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    source: str | None = None
    _index: Mapping[str, ReferenceEntity] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        for name in ("quotas", "categories", "states"):
            object.__setattr__(self, name, MappingProxyType(dict(getattr(self, name))))
        index = {e.id: e for e in self.programs}
        index.update({e.id: e for e in self.colleges})
        object.__setattr__(self, "_index", MappingProxyType(index))

    def entities(self, entity_type: EntityType) -> tuple[ReferenceEntity, ...]:
        return self.colleges if entity_type == EntityType.COLLEGE else self.programs

    def get(self, entity_id_: str | None) -> ReferenceEntity | None:
        if not entity_id_:
            return None
        return self._index.get(entity_id_)

    def canonical_quota(self, value: str | None) -> str | None:
        if not value:
            return None
        return self.quotas.get(value.upper(), value.upper())

    def canonical_category(self, value: str) -> str:
        return self.categories.get(value.upper(), value.upper())

    def summary(self) -> dict[str, int]:
        return {
            "version": self.version,
            "colleges": len(self.colleges),
            "programs": len(self.programs),
            "quotas": len(self.quotas),
            "categories": len(self.categories),
            "states": len(self.states),
        }


def dedupe(entities: Iterable[ReferenceEntity]) -> tuple[ReferenceEntity, ...]:
    """Drop later entities that share an id, keeping seed order."""
    seen: dict[str, ReferenceEntity] = {}
    for entity in entities:
        seen.setdefault(entity.id, entity)
    return tuple(seen.values())
