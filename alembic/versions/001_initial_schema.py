"""Initial schema: staging, rule, canonical, and audit tables.

Revision ID: 001
Revises: None
Create Date: 2026-10-19
"""
from __future__ import annotations

from typing import Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, tuple[str, ...], None] = None
depends_on: Union[str, tuple[str, ...], None] = None


def _base_columns(*, updated: bool = True) -> list[sa.Column]:
    columns = [
        sa.Column("id", postgresql.UUID(as_uuid=True), server_default=sa.text("gen_random_uuid()"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    ]
    if updated:
        columns.append(
            sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False)
        )
    return columns


def upgrade() -> None:
    # ── Standalone tables (no FKs) ─────────────────────────────────────

    op.create_table(
        "audit_log",
        sa.Column("event_type", sa.String(100), nullable=False, index=True),
        sa.Column("session_id", postgresql.UUID(as_uuid=True), index=True, comment="Import session, if any"),
        sa.Column("actor_id", sa.String(100), comment="Operator name or 'system'"),
        sa.Column("actor_role", sa.String(50), comment="operator, system"),
        sa.Column("entity_type", sa.String(50), comment="college, program, cutoff"),
        sa.Column("entity_id", postgresql.UUID(as_uuid=True), index=True),
        sa.Column("data", postgresql.JSONB(astext_type=sa.Text())),
        *_base_columns(updated=False),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "import_sessions",
        sa.Column("file_name", sa.String(255), nullable=False),
        sa.Column("file_type", sa.String(10), nullable=False, comment="csv or xlsx"),
        sa.Column("authority_hint", sa.String(100)),
        sa.Column("authority", sa.String(100)),
        sa.Column("year", sa.Integer()),
        sa.Column("round", sa.String(10)),
        sa.Column("default_quota", sa.String(50)),
        sa.Column("total_records", sa.Integer(), nullable=False),
        sa.Column("raw_imported", sa.Integer(), nullable=False),
        sa.Column("processed", sa.Integer(), nullable=False),
        sa.Column("verified", sa.Integer(), nullable=False),
        sa.Column("migrated", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, index=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True)),
        sa.Column("notes", sa.Text()),
        sa.Column("error_log", postgresql.JSONB(astext_type=sa.Text())),
        *_base_columns(),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "correction_rules",
        sa.Column("category", sa.String(30), nullable=False, index=True),
        sa.Column("error_type", sa.String(30), nullable=False),
        sa.Column("pattern", sa.String(255), nullable=False),
        sa.Column("correction", sa.String(255), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column("regex_pattern", sa.String(500), nullable=False),
        sa.Column("replacement", sa.String(500), nullable=False),
        sa.Column("flags", sa.String(10), nullable=False),
        sa.Column("priority", sa.Integer(), nullable=False, index=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("usage_count", sa.Integer(), nullable=False),
        sa.Column("success_count", sa.Integer(), nullable=False),
        sa.Column("examples", postgresql.JSONB(astext_type=sa.Text())),
        sa.Column("created_by", sa.String(100), nullable=False),
        sa.Column("notes", sa.Text()),
        *_base_columns(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("category", "regex_pattern", name="uq_correction_rule_category_regex"),
    )

    op.create_table(
        "colleges",
        sa.Column("name", sa.String(500), nullable=False),
        sa.Column("normalized_name", sa.String(500), nullable=False, index=True),
        sa.Column("address", sa.Text()),
        sa.Column("city", sa.String(100), nullable=False),
        sa.Column("state", sa.String(100), nullable=False),
        sa.Column("college_type", sa.String(20), nullable=False),
        sa.Column("management_type", sa.String(30)),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("source", sa.String(30), nullable=False),
        sa.Column("reference_id", sa.String(64), index=True),
        *_base_columns(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("normalized_name", "city", "state", name="uq_college_identity"),
    )

    # ── Staging tables ─────────────────────────────────────────────────

    op.create_table(
        "raw_cutoffs",
        sa.Column("session_id", postgresql.UUID(as_uuid=True), nullable=False, index=True),
        sa.Column("row_number", sa.Integer(), nullable=False),
        sa.Column("raw_data", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column("rank", sa.Integer()),
        sa.Column("quota", sa.String(100)),
        sa.Column("college_text", sa.Text()),
        sa.Column("college_location", sa.String(255)),
        sa.Column("course_text", sa.Text()),
        sa.Column("category", sa.String(50)),
        sa.Column("all_ranks", sa.Text()),
        sa.Column("round", sa.String(20)),
        sa.Column("year", sa.Integer()),
        sa.Column("validation_error", sa.Text()),
        *_base_columns(updated=False),
        sa.ForeignKeyConstraint(["session_id"], ["import_sessions.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "processed_cutoffs",
        sa.Column("raw_cutoff_id", postgresql.UUID(as_uuid=True), nullable=False, index=True),
        sa.Column("session_id", postgresql.UUID(as_uuid=True), nullable=False, index=True),
        sa.Column("college_id", sa.String(64), index=True),
        sa.Column("program_id", sa.String(64), index=True),
        sa.Column("college_name", sa.String(500)),
        sa.Column("college_city", sa.String(100)),
        sa.Column("college_state", sa.String(100)),
        sa.Column("college_type", sa.String(20)),
        sa.Column("program_name", sa.String(255)),
        sa.Column("program_level", sa.String(20)),
        sa.Column("college_match_tier", sa.Integer()),
        sa.Column("program_match_tier", sa.Integer()),
        sa.Column("cleaned_college_text", sa.Text()),
        sa.Column("cleaned_course_text", sa.Text()),
        sa.Column("year", sa.Integer()),
        sa.Column("round", sa.String(10)),
        sa.Column("authority", sa.String(100)),
        sa.Column("quota", sa.String(50)),
        sa.Column("category", sa.String(50), nullable=False),
        sa.Column("opening_rank", sa.Integer()),
        sa.Column("closing_rank", sa.Integer()),
        sa.Column("seats_available", sa.Integer(), nullable=False),
        sa.Column("seats_filled", sa.Integer(), nullable=False),
        sa.Column("confidence_score", sa.Integer(), nullable=False, index=True),
        sa.Column("status", sa.String(20), nullable=False, index=True),
        sa.Column("manual_verified", sa.Boolean(), nullable=False),
        sa.Column("notes", sa.Text()),
        *_base_columns(),
        sa.ForeignKeyConstraint(["raw_cutoff_id"], ["raw_cutoffs.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["session_id"], ["import_sessions.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "manual_corrections",
        sa.Column("processed_cutoff_id", postgresql.UUID(as_uuid=True), nullable=False, index=True),
        sa.Column("field_name", sa.String(50), nullable=False),
        sa.Column("original_value", sa.Text()),
        sa.Column("corrected_value", sa.Text()),
        sa.Column("correction_type", sa.String(30), nullable=False),
        sa.Column("corrected_by", sa.String(100)),
        sa.Column("notes", sa.Text()),
        *_base_columns(updated=False),
        sa.ForeignKeyConstraint(["processed_cutoff_id"], ["processed_cutoffs.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "correction_history",
        sa.Column("session_id", postgresql.UUID(as_uuid=True), index=True),
        sa.Column("rule_id", postgresql.UUID(as_uuid=True)),
        sa.Column("field_name", sa.String(30), nullable=False),
        sa.Column("original_value", sa.Text(), nullable=False),
        sa.Column("corrected_value", sa.Text(), nullable=False),
        *_base_columns(updated=False),
        sa.ForeignKeyConstraint(["session_id"], ["import_sessions.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["rule_id"], ["correction_rules.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )

    # ── Canonical tables with FKs ──────────────────────────────────────

    op.create_table(
        "programs",
        sa.Column("college_id", postgresql.UUID(as_uuid=True), nullable=False, index=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("normalized_name", sa.String(255), nullable=False),
        sa.Column("level", sa.String(20), comment="UG, PG, DIPLOMA, DNB, FELLOWSHIP"),
        sa.Column("specialization", sa.String(255)),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("reference_id", sa.String(64)),
        *_base_columns(),
        sa.ForeignKeyConstraint(["college_id"], ["colleges.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("college_id", "normalized_name", name="uq_program_identity"),
    )

    op.create_table(
        "cutoffs",
        sa.Column("college_id", postgresql.UUID(as_uuid=True), nullable=False, index=True),
        sa.Column("program_id", postgresql.UUID(as_uuid=True), nullable=False, index=True),
        sa.Column("year", sa.Integer(), nullable=False, index=True),
        sa.Column("round", sa.String(10), nullable=False),
        sa.Column("authority", sa.String(100), nullable=False, index=True),
        sa.Column("quota", sa.String(50), nullable=False),
        sa.Column("category", sa.String(50), nullable=False),
        sa.Column("opening_rank", sa.Integer()),
        sa.Column("closing_rank", sa.Integer()),
        sa.Column("seats_available", sa.Integer(), nullable=False),
        sa.Column("seats_filled", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("source_file", sa.String(255)),
        sa.Column("import_session_id", postgresql.UUID(as_uuid=True)),
        *_base_columns(),
        sa.ForeignKeyConstraint(["college_id"], ["colleges.id"]),
        sa.ForeignKeyConstraint(["program_id"], ["programs.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "college_id", "program_id", "year", "round", "authority", "quota", "category",
            name="uq_cutoff_identity",
        ),
    )


def downgrade() -> None:
    # Drop in reverse dependency order
    op.drop_table("cutoffs")
    op.drop_table("programs")
    op.drop_table("correction_history")
    op.drop_table("manual_corrections")
    op.drop_table("processed_cutoffs")
    op.drop_table("raw_cutoffs")
    op.drop_table("colleges")
    op.drop_table("correction_rules")
    op.drop_table("import_sessions")
    op.drop_table("audit_log")
