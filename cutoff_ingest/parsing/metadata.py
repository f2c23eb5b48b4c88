"""Filename → authority / year / round.

    KEA_2024_DENTAL_R1_aggregated.csv → KEA DENTAL, 2024, r1
    AIQ_PG_2024_R1_aggregated.csv     → AIQ PG, 2024, r1
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import PurePath

_WITH_TYPE = re.compile(r"^([A-Z_]+)_(\d{4})_([A-Z]+)_R(\d+)")
_WITHOUT_TYPE = re.compile(r"^([A-Z_]+)_(\d{4})_R(\d+)")


@dataclass(frozen=True)
class FileMetadata:
    """Import context recovered from a filename."""

    authority: str
    year: int
    round: str
    round_number: int


def extract_file_metadata(filename: str) -> FileMetadata | None:
    """Apply the two filename patterns in order. None when neither matches."""
    name = PurePath(filename).name

    match = _WITH_TYPE.match(name)
    if match:
        authority = f"{match.group(1).replace('_', ' ')} {match.group(3)}"
        return FileMetadata(
            authority=authority,
            year=int(match.group(2)),
            round=f"r{int(match.group(4))}",
            round_number=int(match.group(4)),
        )

    match = _WITHOUT_TYPE.match(name)
    if match:
        return FileMetadata(
            authority=match.group(1).replace("_", " "),
            year=int(match.group(2)),
            round=f"r{int(match.group(3))}",
            round_number=int(match.group(3)),
        )

    return None
