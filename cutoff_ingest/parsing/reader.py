"""CSV/XLSX reader for counselling cutoff exports.

Reads the whole file into memory with pandas (strings only), normalizes
headers, maps known aliases, and validates every row against
CutoffInputRow. Rows that fail validation are returned with their error
so the caller can quarantine them.
"""

from __future__ import annotations

import logging
import re
import zipfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import pandas as pd
from openpyxl.utils.exceptions import InvalidFileException

from cutoff_ingest.errors import FileParseError, RowValidationError
from cutoff_ingest.schemas.rows import CutoffInputRow, validate_row

logger = logging.getLogger(__name__)

SUPPORTED_SUFFIXES = {".csv": "csv", ".xlsx": "xlsx", ".xlsm": "xlsx"}

_HEADER_JUNK = re.compile(r"[^a-z0-9]+")

HEADER_ALIASES: dict[str, str] = {
    "college": "college_name",
    "college_institute": "college_name",
    "institute": "college_name",
    "institute_name": "college_name",
    "allotted_institute": "college_name",
    "course": "course_name",
    "program": "course_name",
    "program_name": "course_name",
    "allotted_course": "course_name",
    "quota_name": "quota",
    "allotted_quota": "quota",
    "location": "college_location",
    "college_address": "college_location",
    "ranks": "all_ranks",
    "all_india_rank": "rank",
    "air": "rank",
    "counselling_round": "round",
    "allotted_category": "category",
    "candidate_category": "category",
}

INPUT_FIELDS = (
    "round",
    "quota",
    "college_name",
    "college_location",
    "course_name",
    "all_ranks",
    "category",
    "rank",
    "year",
)


@dataclass
class ParsedRow:
    """One input row: the raw payload plus either a valid row or its error."""

    row_number: int
    raw_data: dict[str, Any]
    row: CutoffInputRow | None = None
    error: RowValidationError | None = None

    @property
    def fields(self) -> dict[str, Any]:
        """raw_data keyed by input field name, whatever the source headers were."""
        return _row_fields(self.raw_data, {key: normalize_header(key) for key in self.raw_data})


def file_type_for(path: str | Path) -> str:
    """"csv" or "xlsx". Raises FileParseError for anything else."""
    suffix = Path(path).suffix.lower()
    if suffix not in SUPPORTED_SUFFIXES:
        msg = f"Unsupported file type: {suffix or '(none)'}"
        raise FileParseError(msg, file_name=Path(path).name)
    return SUPPORTED_SUFFIXES[suffix]


def normalize_header(header: Any) -> str:
    key = _HEADER_JUNK.sub("_", str(header).strip().lower()).strip("_")
    return HEADER_ALIASES.get(key, key)


def _load_frame(path: Path) -> pd.DataFrame:
    if file_type_for(path) == "csv":
        return pd.read_csv(path, dtype=str, keep_default_na=False, skipinitialspace=True)
    return pd.read_excel(path, dtype=str, engine="openpyxl").fillna("")


def read_cutoff_file(path: str | Path) -> list[ParsedRow]:
    """Read and validate every row of a cutoff export.

    Raises:
        FileParseError: File missing, unreadable, of an unsupported type,
            or lacking the required columns.
    """
    path = Path(path)
    try:
        frame = _load_frame(path)
    except FileParseError:
        raise
    except (OSError, ValueError, zipfile.BadZipFile, InvalidFileException) as exc:
        msg = f"Cannot read {path.name}: {exc}"
        raise FileParseError(msg, file_name=path.name) from exc

    columns = {col: normalize_header(col) for col in frame.columns}
    present = set(columns.values())
    missing = {"college_name", "course_name"} - present
    has_ranks = "all_ranks" in present or {"rank", "category"} <= present
    if missing or not has_ranks:
        need = sorted(missing | (set() if has_ranks else {"all_ranks"}))
        msg = f"{path.name} is missing required columns: {', '.join(need)}"
        raise FileParseError(msg, file_name=path.name)

    parsed: list[ParsedRow] = []
    for index, record in enumerate(frame.to_dict(orient="records")):
        row_number = index + 1
        raw = {str(k): ("" if v is None else str(v)) for k, v in record.items()}
        data = _row_fields(raw, columns)
        try:
            parsed.append(ParsedRow(row_number, raw, row=validate_row(data, row_number)))
        except RowValidationError as exc:
            parsed.append(ParsedRow(row_number, raw, error=exc))

    invalid = sum(1 for p in parsed if p.error is not None)
    logger.info("Read %s: %d rows (%d failed validation)", path.name, len(parsed), invalid)
    return parsed


def _row_fields(raw: dict[str, str], columns: dict[Any, str]) -> dict[str, Any]:
    """Project a raw record onto the input fields, synthesising all_ranks if needed."""
    data: dict[str, Any] = {}
    for original, key in columns.items():
        if key in INPUT_FIELDS and key not in data:
            data[key] = raw.get(str(original), "")

    if not data.get("all_ranks"):
        category = (data.get("category") or "").strip()
        rank = (data.get("rank") or "").strip()
        if category and rank:
            if rank.endswith(".0"):
                rank = rank[:-2]
            data["all_ranks"] = f"{category}:{rank}"
    return data
