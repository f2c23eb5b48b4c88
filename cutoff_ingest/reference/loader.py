"""Reference data loader: seed spreadsheets → ReferenceSnapshot.

Reads the canonical college and program lists plus quota, category, and
state vocabularies with pandas, builds variation sets per entity, and
returns an immutable, versioned snapshot. Canonical records are never
modified here.
"""

from __future__ import annotations

import logging
import re
import zipfile
from collections.abc import Iterable, Mapping
from pathlib import Path
from typing import Any

import pandas as pd
from openpyxl.utils.exceptions import InvalidFileException

from cutoff_ingest.config import ReferenceSettings, settings
from cutoff_ingest.errors import FileParseError
from cutoff_ingest.models.enums import CollegeType, EntityType
from cutoff_ingest.parsing.fields import course_level
from cutoff_ingest.parsing.vocab import CATEGORY_CODES, CITY_STATE, QUOTA_CODES, STATE_ABBREVIATIONS
from cutoff_ingest.reference.snapshot import ReferenceEntity, ReferenceSnapshot, dedupe, entity_id
from cutoff_ingest.reference.variations import college_variations, program_variations

logger = logging.getLogger(__name__)

_HEADER_JUNK = re.compile(r"[^a-z0-9]+")

_NAME_HEADERS = ("college_name", "name", "college", "institute", "institute_name", "course_name", "course", "program")
_TYPE_HEADERS = ("college_type", "type", "institution_type")
_CITY_HEADERS = ("city", "district", "location")
_STATE_HEADERS = ("state", "state_name")
_LEVEL_HEADERS = ("level", "course_level", "course_type", "type")


def infer_college_type(name: str) -> str:
    upper = name.upper()
    if "DENTAL" in upper:
        return CollegeType.DENTAL.value
    if "DNB" in upper:
        return CollegeType.DNB.value
    return CollegeType.MEDICAL.value


def _clean(value: Any) -> str:
    if value is None or (isinstance(value, float) and pd.isna(value)):
        return ""
    return " ".join(str(value).upper().split())


def make_college(
    name: str,
    college_type: str | None = None,
    city: str | None = None,
    state: str | None = None,
) -> ReferenceEntity:
    """Build a college entity, inferring type and state where missing."""
    name = _clean(name)
    city = _clean(city)
    state = _clean(state)
    state = STATE_ABBREVIATIONS.get(state, state) or CITY_STATE.get(city, "")
    return ReferenceEntity(
        id=entity_id(EntityType.COLLEGE, name, city, state),
        name=name,
        entity_type=EntityType.COLLEGE,
        subtype=_clean(college_type) or infer_college_type(name),
        city=city,
        state=state,
        variations=college_variations(name),
    )


def make_program(name: str, level: str | None = None) -> ReferenceEntity:
    name = _clean(name)
    return ReferenceEntity(
        id=entity_id(EntityType.PROGRAM, name),
        name=name,
        entity_type=EntityType.PROGRAM,
        subtype=_clean(level) or course_level(name),
        variations=program_variations(name),
    )


def build_snapshot(
    colleges: Iterable[Mapping[str, Any]],
    programs: Iterable[Mapping[str, Any]],
    quotas: Mapping[str, str] | None = None,
    categories: Mapping[str, str] | None = None,
    states: Mapping[str, str] | None = None,
    version: int = 1,
    source: str | None = None,
) -> ReferenceSnapshot:
    """Assemble a snapshot from plain row mappings.

    College rows use keys name/type/city/state; program rows name/level.
    Vocabularies extend the built-in tables.
    """
    college_entities = [
        make_college(row["name"], row.get("type"), row.get("city"), row.get("state"))
        for row in colleges
        if _clean(row.get("name"))
    ]
    program_entities = [
        make_program(row["name"], row.get("level"))
        for row in programs
        if _clean(row.get("name"))
    ]
    return ReferenceSnapshot(
        version=version,
        colleges=dedupe(college_entities),
        programs=dedupe(program_entities),
        quotas={**QUOTA_CODES, **(quotas or {})},
        categories={**CATEGORY_CODES, **(categories or {})},
        states={**STATE_ABBREVIATIONS, **(states or {})},
        source=source,
    )


class ReferenceDataLoader:
    """Loads seed sheets from a directory into snapshots."""

    def __init__(self, data_dir: str | Path | None = None, config: ReferenceSettings | None = None) -> None:
        self.config = config or settings.reference
        self.data_dir = Path(data_dir or self.config.reference_data_dir)

    def load(self, version: int = 1) -> ReferenceSnapshot:
        """Read every seed sheet. Missing sheets are logged and treated as empty.

        Raises:
            FileParseError: A sheet exists but cannot be read.
        """
        colleges = self._college_rows(self._read_sheet(self.config.colleges_file))
        programs = self._program_rows(self._read_sheet(self.config.programs_file))
        quotas = self._vocab(self._read_sheet(self.config.quotas_file))
        categories = self._vocab(self._read_sheet(self.config.categories_file))
        states = self._vocab(self._read_sheet(self.config.states_file))

        snapshot = build_snapshot(
            colleges, programs, quotas, categories, states, version=version, source=str(self.data_dir)
        )
        logger.info("Reference snapshot v%d loaded: %s", snapshot.version, snapshot.summary())
        return snapshot

    def reload(self, previous: ReferenceSnapshot) -> ReferenceSnapshot:
        """Build a fresh snapshot with the next version number."""
        return self.load(version=previous.version + 1)

    # ── Sheet reading ─────────────────────────────────────────────────

    def _read_sheet(self, file_name: str) -> pd.DataFrame | None:
        path = self.data_dir / file_name
        if not path.exists():
            logger.warning("Reference sheet not found, skipping: %s", path)
            return None
        try:
            if path.suffix.lower() == ".csv":
                frame = pd.read_csv(path, dtype=str, keep_default_na=False)
            else:
                frame = pd.read_excel(path, dtype=str, engine="openpyxl").fillna("")
        except (OSError, ValueError, zipfile.BadZipFile, InvalidFileException) as exc:
            msg = f"Cannot read reference sheet {file_name}: {exc}"
            raise FileParseError(msg, file_name=file_name) from exc
        frame.columns = [_HEADER_JUNK.sub("_", str(c).strip().lower()).strip("_") for c in frame.columns]
        return frame

    @staticmethod
    def _pick(frame: pd.DataFrame, candidates: tuple[str, ...]) -> str | None:
        for name in candidates:
            if name in frame.columns:
                return name
        return None

    def _college_rows(self, frame: pd.DataFrame | None) -> list[dict[str, Any]]:
        if frame is None or frame.empty:
            return []
        name_col = self._pick(frame, _NAME_HEADERS) or frame.columns[0]
        type_col = self._pick(frame, _TYPE_HEADERS)
        city_col = self._pick(frame, _CITY_HEADERS)
        state_col = self._pick(frame, _STATE_HEADERS)
        return [
            {
                "name": row[name_col],
                "type": row[type_col] if type_col else None,
                "city": row[city_col] if city_col else None,
                "state": row[state_col] if state_col else None,
            }
            for row in frame.to_dict(orient="records")
        ]

    def _program_rows(self, frame: pd.DataFrame | None) -> list[dict[str, Any]]:
        if frame is None or frame.empty:
            return []
        name_col = self._pick(frame, _NAME_HEADERS) or frame.columns[0]
        level_col = self._pick(frame, _LEVEL_HEADERS)
        return [
            {"name": row[name_col], "level": row[level_col] if level_col else None}
            for row in frame.to_dict(orient="records")
        ]

    @staticmethod
    def _vocab(frame: pd.DataFrame | None) -> dict[str, str]:
        """First column → second column (or itself), uppercased."""
        if frame is None or frame.empty:
            return {}
        vocab: dict[str, str] = {}
        columns = list(frame.columns)
        for row in frame.to_dict(orient="records"):
            key = _clean(row[columns[0]])
            if not key:
                continue
            value = _clean(row[columns[1]]) if len(columns) > 1 else ""
            vocab[key] = value or key
        return vocab
