"""Strict schema for one input spreadsheet row.

Rows are validated as soon as they are read; anything that fails is
quarantined instead of flowing downstream as a loose dict.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

from cutoff_ingest.errors import RowValidationError


class CutoffInputRow(BaseModel):
    """A validated input row. Text is stripped; blanks become None."""

    model_config = ConfigDict(str_strip_whitespace=True, extra="ignore", frozen=True)

    row_number: int
    college_name: str
    course_name: str
    all_ranks: str = ""
    round: str | None = None
    quota: str | None = None
    college_location: str | None = None
    category: str | None = None
    rank: int | None = None
    year: int | None = None

    @field_validator("college_name", "course_name")
    @classmethod
    def not_blank(cls, v: str) -> str:
        if not v:
            msg = "must not be empty"
            raise ValueError(msg)
        return v

    @field_validator("round", "quota", "college_location", "category", mode="before")
    @classmethod
    def blank_to_none(cls, v: Any) -> Any:
        if v is None:
            return None
        text = str(v).strip()
        return text or None

    @field_validator("all_ranks", mode="before")
    @classmethod
    def ranks_to_text(cls, v: Any) -> str:
        return "" if v is None else str(v)

    @field_validator("rank", "year", mode="before")
    @classmethod
    def lenient_int(cls, v: Any) -> int | None:
        """Spreadsheet numbers often arrive as "1500.0"; junk becomes None."""
        if v is None:
            return None
        text = str(v).strip().replace(",", "")
        if not text:
            return None
        try:
            return int(float(text))
        except ValueError:
            return None


def validate_row(data: dict[str, Any], row_number: int) -> CutoffInputRow:
    """Validate a header-normalized row dict.

    Raises:
        RowValidationError: Naming the first offending field.
    """
    try:
        return CutoffInputRow(row_number=row_number, **data)
    except ValidationError as exc:
        first = exc.errors()[0]
        field = ".".join(str(p) for p in first.get("loc", ())) or None
        msg = f"{field or 'row'}: {first.get('msg', 'invalid')}"
        raise RowValidationError(msg, row_number=row_number, field=field) from exc
