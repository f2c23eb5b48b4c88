"""Tiered entity matcher.

Resolves a normalized college or program name to at most one canonical
entity from a ReferenceSnapshot. Tiers are tried in order and the first
tier with any candidate wins; there is no scoring across tiers.

    1. Exact match on the canonical name (full text or the part before the first comma)
    2. Exact match on the cleaned name or any of its variations
    3. Whole-word containment in either direction (colleges: allowed subtypes only)
    4. Two shared keywords, trying keyword pairs in query order
    5. One shared long keyword

Hits from tiers above `max_accepted_tier` are reported but not accepted.
"""

from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass

from cutoff_ingest.config import MatchingSettings, settings
from cutoff_ingest.models.enums import EntityType, MatchTier
from cutoff_ingest.reference.snapshot import ReferenceEntity, ReferenceSnapshot
from cutoff_ingest.reference.variations import match_key

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MatchResult:
    """Outcome of one lookup."""

    query: str
    entity_type: EntityType
    entity: ReferenceEntity | None = None
    tier: MatchTier | None = None
    candidate: ReferenceEntity | None = None  # set even when the tier was not accepted

    @property
    def matched(self) -> bool:
        return self.entity is not None


class EntityMatcher:
    """Stateless apart from its snapshot and tuning; safe to share."""

    def __init__(self, snapshot: ReferenceSnapshot, config: MatchingSettings | None = None) -> None:
        self.snapshot = snapshot
        self.config = config or settings.matching
        self._subtypes = self.config.college_subtype_set

    def match(self, cleaned_name: str, entity_type: EntityType) -> ReferenceEntity | None:
        return self.resolve(cleaned_name, entity_type).entity

    def resolve(self, cleaned_name: str, entity_type: EntityType) -> MatchResult:
        query = " ".join((cleaned_name or "").upper().split())
        if not query:
            return MatchResult(query=query, entity_type=entity_type)

        for tier, finder in (
            (MatchTier.EXACT, self._exact),
            (MatchTier.EXACT_CLEANED, self._exact_cleaned),
            (MatchTier.CONTAINMENT, self._containment),
            (MatchTier.MULTI_KEYWORD, self._multi_keyword),
            (MatchTier.SINGLE_KEYWORD, self._single_keyword),
        ):
            hit = finder(query, entity_type)
            if hit is None:
                continue
            if tier > self.config.max_accepted_tier:
                logger.debug("Tier %d hit %r for %r not accepted", tier, hit.name, query)
                return MatchResult(query=query, entity_type=entity_type, tier=tier, candidate=hit)
            return MatchResult(query=query, entity_type=entity_type, entity=hit, tier=tier, candidate=hit)

        return MatchResult(query=query, entity_type=entity_type)

    # ── Candidate pools ──────────────────────────────────────────────

    def _pool(self, entity_type: EntityType, restricted: bool) -> tuple[ReferenceEntity, ...]:
        entities = self.snapshot.entities(entity_type)
        if restricted and entity_type == EntityType.COLLEGE and self._subtypes:
            return tuple(e for e in entities if (e.subtype or "") in self._subtypes)
        return entities

    @staticmethod
    def _main_part(query: str) -> str:
        return query.split(",")[0].strip()

    def _keyword_min(self, entity_type: EntityType) -> int:
        if entity_type == EntityType.COLLEGE:
            return self.config.college_keyword_min_length
        return self.config.program_keyword_min_length

    def _single_min(self, entity_type: EntityType) -> int:
        if entity_type == EntityType.COLLEGE:
            return self.config.college_single_keyword_min_length
        return self.config.program_single_keyword_min_length

    # ── Tiers ────────────────────────────────────────────────────────

    def _exact(self, query: str, entity_type: EntityType) -> ReferenceEntity | None:
        targets = {query, self._main_part(query)}
        for entity in self._pool(entity_type, restricted=False):
            if entity.name in targets:
                return entity
        return None

    def _exact_cleaned(self, query: str, entity_type: EntityType) -> ReferenceEntity | None:
        keys = {match_key(query), match_key(self._main_part(query))} - {""}
        for entity in self._pool(entity_type, restricted=False):
            if entity.match_keys & keys:
                return entity
        return None

    def _containment(self, query: str, entity_type: EntityType) -> ReferenceEntity | None:
        key = match_key(self._main_part(query))
        if not key:
            return None
        padded_query = f" {key} "
        for entity in self._pool(entity_type, restricted=True):
            padded_entity = f" {entity.key} "
            if padded_entity in padded_query or padded_query in padded_entity:
                return entity
        return None

    def _keywords(self, query: str, min_length: int) -> list[str]:
        seen: list[str] = []
        for word in match_key(self._main_part(query)).split():
            if len(word) >= min_length and word not in seen:
                seen.append(word)
        return seen

    def _multi_keyword(self, query: str, entity_type: EntityType) -> ReferenceEntity | None:
        words = self._keywords(query, self._keyword_min(entity_type))
        if len(words) < 2:
            return None
        pool = self._pool(entity_type, restricted=True)
        for first, second in itertools.combinations(words, 2):
            for entity in pool:
                if first in entity.tokens and second in entity.tokens:
                    return entity
        return None

    def _single_keyword(self, query: str, entity_type: EntityType) -> ReferenceEntity | None:
        pool = self._pool(entity_type, restricted=True)
        for word in self._keywords(query, self._single_min(entity_type)):
            for entity in pool:
                if word in entity.tokens:
                    return entity
        return None
