"""Composite rank-string parser.

"GMPH:44483, 2AG:24096, GM:15958" → [("GMPH", 44483), ("2AG", 24096), ("GM", 15958)]
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from cutoff_ingest.errors import RankParseError
from cutoff_ingest.parsing.vocab import lookup_category

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RankPair:
    """One category and the rank recorded for it."""

    category: str
    rank: int


def parse_rank_string(value: str | None) -> list[RankPair]:
    """Split on commas, then on the first colon of each segment.

    Segments without a colon, with an empty category, or whose rank is not
    an integer are dropped. Output keeps input order.
    """
    if not value or not isinstance(value, str):
        return []

    pairs: list[RankPair] = []
    for segment in value.split(","):
        segment = segment.strip()
        if ":" not in segment:
            if segment:
                logger.debug("Dropping rank segment without category: %r", segment)
            continue
        category, _, rank_text = segment.partition(":")
        category = category.strip()
        if not category:
            continue
        try:
            rank = int(rank_text.strip())
        except ValueError:
            logger.debug("Dropping non-integer rank segment: %r", segment)
            continue
        pairs.append(RankPair(category=lookup_category(category), rank=rank))
    return pairs


def parse_ranks_or_raise(value: str | None, row_number: int) -> list[RankPair]:
    """Like parse_rank_string, but zero pairs is a RankParseError."""
    pairs = parse_rank_string(value)
    if not pairs:
        msg = f"No valid CATEGORY:RANK pairs in {value!r}"
        raise RankParseError(msg, row_number=row_number, raw_value=value)
    return pairs
