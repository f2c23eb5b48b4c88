"""Read-side export of canonical cutoffs as CSV or JSON.

Usage:
    from cutoff_ingest.export import fetch_cutoffs, to_csv

    rows = await fetch_cutoffs(db, year=2024, authority="KEA DENTAL")
    Path("cutoffs.csv").write_text(to_csv(rows))
"""

from __future__ import annotations

import json
import logging
from typing import Any

import pandas as pd
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from cutoff_ingest.models.canonical import College, Cutoff, Program
from cutoff_ingest.models.enums import CutoffStatus

logger = logging.getLogger(__name__)

# Output column → row key
CSV_COLUMNS: dict[str, str] = {
    "Year": "year",
    "Round": "round",
    "Authority": "authority",
    "Quota": "quota",
    "College Name": "college_name",
    "City": "college_city",
    "State": "college_state",
    "Program": "program_name",
    "Category": "category",
    "Opening Rank": "opening_rank",
    "Closing Rank": "closing_rank",
    "Seats Available": "seats_available",
}


async def fetch_cutoffs(
    db: AsyncSession,
    year: int | None = None,
    authority: str | None = None,
    quota: str | None = None,
) -> list[dict[str, Any]]:
    """Active cutoffs joined with their college and program, newest year first."""
    stmt = (
        select(
            Cutoff,
            College.name.label("college_name"),
            College.city.label("college_city"),
            College.state.label("college_state"),
            Program.name.label("program_name"),
        )
        .join(College, Cutoff.college_id == College.id)
        .join(Program, Cutoff.program_id == Program.id)
        .where(Cutoff.status == CutoffStatus.ACTIVE.value)
        .order_by(Cutoff.year.desc(), Cutoff.round, College.name, Program.name)
    )
    if year is not None:
        stmt = stmt.where(Cutoff.year == year)
    if authority:
        stmt = stmt.where(Cutoff.authority == authority)
    if quota:
        stmt = stmt.where(Cutoff.quota == quota)

    result = await db.execute(stmt)
    rows = [
        {
            "id": str(cutoff.id),
            "year": cutoff.year,
            "round": cutoff.round,
            "authority": cutoff.authority,
            "quota": cutoff.quota,
            "college_name": college_name,
            "college_city": college_city,
            "college_state": college_state,
            "program_name": program_name,
            "category": cutoff.category,
            "opening_rank": cutoff.opening_rank,
            "closing_rank": cutoff.closing_rank,
            "seats_available": cutoff.seats_available,
            "seats_filled": cutoff.seats_filled,
            "source_file": cutoff.source_file,
        }
        for cutoff, college_name, college_city, college_state, program_name in result.all()
    ]
    logger.info("Fetched %d cutoffs for export", len(rows))
    return rows


def to_csv(rows: list[dict[str, Any]]) -> str:
    frame = pd.DataFrame(rows, columns=list(CSV_COLUMNS.values()))
    frame = frame.rename(columns={key: header for header, key in CSV_COLUMNS.items()})
    # Ranks may be missing; keep them integral instead of float
    for header in ("Year", "Opening Rank", "Closing Rank", "Seats Available"):
        frame[header] = frame[header].astype("Int64")
    return frame.to_csv(index=False)


def to_json(rows: list[dict[str, Any]]) -> str:
    return json.dumps({"count": len(rows), "data": rows}, indent=2, default=str)


def export_filename(fmt: str, year: int | None = None, authority: str | None = None, quota: str | None = None) -> str:
    """e.g. cutoffs-2024-KEA_DENTAL-all.csv"""
    parts = [str(year or "all"), (authority or "all").replace(" ", "_"), quota or "all"]
    return f"cutoffs-{'-'.join(parts)}.{fmt}"
