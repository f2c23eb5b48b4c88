"""Command-line entry point: wires everything together.

Usage:
    cutoff-ingest import KEA_2024_DENTAL_R1_aggregated.csv --auto-migrate
    cutoff-ingest verify <record-id> --set quota=STATE --notes "checked"
    python -m cutoff_ingest.main stats <session-id>

Every command runs inside the database lifespan with the event system and
audit subscriber active.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
import uuid
from pathlib import Path
from typing import Any

import structlog

from cutoff_ingest.audit import audit_on_event
from cutoff_ingest.config import settings
from cutoff_ingest.corrections.store import rule_store
from cutoff_ingest.db.engine import check_connections, create_tables, db_lifespan, get_session
from cutoff_ingest.events import emit, start_event_system, stop_event_system, subscribe
from cutoff_ingest.export import export_filename, fetch_cutoffs, to_csv, to_json
from cutoff_ingest.migration.engine import migration_engine
from cutoff_ingest.models.enums import CorrectionCategory, CorrectionErrorType, ImportSessionStatus, RulePriority
from cutoff_ingest.pipeline.orchestrator import ImportOrchestrator
from cutoff_ingest.reference.loader import ReferenceDataLoader
from cutoff_ingest.reference.snapshot import ReferenceSnapshot
from cutoff_ingest.schemas.events import EventType, SystemEvent
from cutoff_ingest.schemas.pipeline import ImportDefaults
from cutoff_ingest.staging.progress import progress_reporter
from cutoff_ingest.staging.store import staging_store

# ── Logging setup ────────────────────────────────────────────────────

logging.basicConfig(
    level=getattr(logging, settings.log_level),
    format="%(asctime)s %(levelname)-8s %(name)s - %(message)s",
    stream=sys.stderr,
)
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.dev.ConsoleRenderer(),
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
)

logger = logging.getLogger(__name__)


def _print(payload: Any) -> None:
    print(json.dumps(payload, indent=2, default=str))


def _parse_assignments(pairs: list[str]) -> dict[str, str | None]:
    """["quota=STATE", "college_id="] → {"quota": "STATE", "college_id": None}"""
    changes: dict[str, str | None] = {}
    for pair in pairs:
        field_name, sep, value = pair.partition("=")
        if not sep or not field_name.strip():
            msg = f"Expected field=value, got {pair!r}"
            raise ValueError(msg)
        changes[field_name.strip()] = value.strip() or None
    return changes


async def _load_reference() -> ReferenceSnapshot:
    snapshot = ReferenceDataLoader().load()
    await emit(SystemEvent(
        event_type=EventType.REFERENCE_LOADED,
        data=snapshot.summary(),
        source_module="main",
    ))
    return snapshot


def _rule_row(rule: Any) -> dict[str, Any]:
    return {
        "id": str(rule.id),
        "category": rule.category,
        "pattern": rule.pattern,
        "regex": rule.regex_pattern,
        "replacement": rule.replacement,
        "priority": rule.priority,
        "active": rule.is_active,
        "usage": rule.usage_count,
        "success": rule.success_count,
    }


# ── Commands ─────────────────────────────────────────────────────────


async def cmd_init_db(args: argparse.Namespace) -> int:
    if settings.is_production:
        logger.error("Production schema is managed by Alembic: run `alembic upgrade head`")
        return 1
    await create_tables()
    return 0


async def cmd_health(args: argparse.Namespace) -> int:
    status = await check_connections()
    _print(status)
    # Redis only carries progress, so only the database decides the exit code
    return 0 if status["database"] else 1


async def cmd_seed_rules(args: argparse.Namespace) -> int:
    async with get_session() as db:
        added = await rule_store.seed_defaults(db)
    _print({"seeded": added})
    return 0


async def cmd_import(args: argparse.Namespace) -> int:
    defaults = ImportDefaults(
        authority=args.authority,
        year=args.year,
        quota=args.quota,
        round=args.round,
        auto_migrate=args.auto_migrate,
        actor=args.actor,
    )
    orchestrator = ImportOrchestrator(await _load_reference())
    async with get_session() as db:
        summary = await orchestrator.import_file(db, Path(args.file), defaults)
    _print(summary.model_dump(mode="json", exclude={"errors", "warnings"} if not args.verbose else None))
    return 1 if summary.fatal_error else 0


async def cmd_process(args: argparse.Namespace) -> int:
    orchestrator = ImportOrchestrator(await _load_reference())
    async with get_session() as db:
        summary = await orchestrator.process_session(db, uuid.UUID(args.session_id), reprocess=args.reprocess)
    _print(summary.model_dump(mode="json", exclude={"errors", "warnings"} if not args.verbose else None))
    return 0


async def cmd_verify(args: argparse.Namespace) -> int:
    changes = _parse_assignments(args.set or [])
    snapshot = await _load_reference() if {"college_id", "program_id"} & set(changes) else None
    async with get_session() as db:
        record = await staging_store.verify_record(
            db, uuid.UUID(args.record_id), changes, notes=args.notes, actor=args.actor, snapshot=snapshot
        )
        _print({"id": str(record.id), "status": record.status, "confidence": record.confidence_score})
    return 0


async def cmd_reject(args: argparse.Namespace) -> int:
    async with get_session() as db:
        record = await staging_store.reject_record(db, uuid.UUID(args.record_id), notes=args.notes, actor=args.actor)
        _print({"id": str(record.id), "status": record.status})
    return 0


async def cmd_migrate(args: argparse.Namespace) -> int:
    session_id = uuid.UUID(args.session_id) if args.session_id else None
    async with get_session() as db:
        result = await migration_engine.migrate_session(db, session_id, actor=args.actor)
    _print(result.to_dict())
    return 1 if result.failures else 0


async def cmd_stats(args: argparse.Namespace) -> int:
    async with get_session() as db:
        session = await staging_store.get_session(db, uuid.UUID(args.session_id))
        stats = await staging_store.session_stats(db, session.id)
    stats.update({
        "file_name": session.file_name,
        "status": session.status,
        "raw_imported": session.raw_imported,
        "processed": session.processed,
        "verified": session.verified,
        "migrated": session.migrated,
        "errors": len(session.error_log or []),
    })
    live = await progress_reporter.read(session.id)
    if live:
        stats["live_progress"] = live
    _print(stats)
    return 0


async def cmd_sessions(args: argparse.Namespace) -> int:
    status = ImportSessionStatus(args.status) if args.status else None
    async with get_session() as db:
        sessions = await staging_store.list_sessions(db, status=status, limit=args.limit)
        _print([
            {
                "id": str(s.id),
                "file_name": s.file_name,
                "status": s.status,
                "authority": s.authority,
                "year": s.year,
                "round": s.round,
                "raw_imported": s.raw_imported,
                "processed": s.processed,
                "migrated": s.migrated,
                "started_at": s.started_at,
            }
            for s in sessions
        ])
    return 0


async def cmd_rules(args: argparse.Namespace) -> int:
    async with get_session() as db:
        if args.rules_command == "list":
            rules = await rule_store.list_rules(db, category=args.category, active_only=args.active_only)
            _print([_rule_row(r) for r in rules])
        elif args.rules_command == "add":
            rule = await rule_store.add_rule(
                db,
                category=args.category,
                error_type=args.error_type,
                pattern=args.pattern,
                correction=args.correction,
                regex_pattern=args.regex,
                flags=args.flags,
                priority=args.priority,
                description=args.description,
                created_by=args.actor,
            )
            _print(_rule_row(rule))
        elif args.rules_command == "disable":
            rule = await rule_store.deactivate_rule(db, uuid.UUID(args.rule_id))
            if rule is None:
                logger.error("Rule %s not found", args.rule_id)
                return 1
            _print(_rule_row(rule))
        elif args.rules_command == "delete":
            if not await rule_store.delete_rule(db, uuid.UUID(args.rule_id)):
                logger.error("Rule %s not found", args.rule_id)
                return 1
            _print({"deleted": args.rule_id})
        elif args.rules_command == "search":
            _print([_rule_row(r) for r in await rule_store.search_rules(db, args.term)])
        elif args.rules_command == "stats":
            stats = await rule_store.get_stats(db)
            _print({
                "total": stats.total,
                "active": stats.active,
                "total_usage": stats.total_usage,
                "total_success": stats.total_success,
                "success_rate": stats.success_rate,
                "by_category": stats.by_category,
            })
        else:
            result = await rule_store.test_rule(db, uuid.UUID(args.rule_id), args.sample)
            if result is None:
                logger.error("Rule %s not found", args.rule_id)
                return 1
            _print({
                "original": result.original,
                "corrected": result.corrected,
                "corrections": [c.to_dict() for c in result.corrections],
            })
    return 0


async def cmd_export(args: argparse.Namespace) -> int:
    async with get_session() as db:
        rows = await fetch_cutoffs(db, year=args.year, authority=args.authority, quota=args.quota)
    content = to_json(rows) if args.format == "json" else to_csv(rows)
    if args.output == "-":
        sys.stdout.write(content)
        return 0
    output = Path(args.output or export_filename(args.format, args.year, args.authority, args.quota))
    output.write_text(content, encoding="utf-8")
    logger.info("Exported %d cutoffs to %s", len(rows), output)
    return 0


async def cmd_reset(args: argparse.Namespace) -> int:
    if not args.yes:
        logger.error("Refusing to reset staging without --yes")
        return 2
    async with get_session() as db:
        counts = await staging_store.reset(db, actor=args.actor)
    _print(counts)
    return 0


# ── Argument parsing ─────────────────────────────────────────────────


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="cutoff-ingest", description="Cutoff ingestion and entity resolution")
    parser.add_argument("--actor", default="operator", help="Name recorded on manual actions")
    parser.add_argument("-v", "--verbose", action="store_true", help="Include error/warning lists in output")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("init-db", help="Create tables (non-production)").set_defaults(
        handler=cmd_init_db, ensure_schema=False
    )
    sub.add_parser("health", help="Check database and Redis connectivity").set_defaults(
        handler=cmd_health, ensure_schema=False
    )
    sub.add_parser("seed-rules", help="Insert the built-in correction rules").set_defaults(handler=cmd_seed_rules)

    p = sub.add_parser("import", help="Import a CSV/XLSX cutoff file")
    p.add_argument("file")
    p.add_argument("--authority")
    p.add_argument("--year", type=int)
    p.add_argument("--quota")
    p.add_argument("--round")
    p.add_argument("--auto-migrate", action="store_true")
    p.set_defaults(handler=cmd_import)

    p = sub.add_parser("process", help="Process a session's raw rows again")
    p.add_argument("session_id")
    p.add_argument("--reprocess", action="store_true", help="Replace machine-generated records")
    p.set_defaults(handler=cmd_process)

    p = sub.add_parser("verify", help="Verify a staged record, optionally correcting fields")
    p.add_argument("record_id")
    p.add_argument("--set", action="append", metavar="FIELD=VALUE")
    p.add_argument("--notes")
    p.set_defaults(handler=cmd_verify)

    p = sub.add_parser("reject", help="Reject a staged record")
    p.add_argument("record_id")
    p.add_argument("--notes")
    p.set_defaults(handler=cmd_reject)

    p = sub.add_parser("migrate", help="Promote verified records to the canonical store")
    p.add_argument("session_id", nargs="?")
    p.set_defaults(handler=cmd_migrate)

    p = sub.add_parser("stats", help="Show session counters")
    p.add_argument("session_id")
    p.set_defaults(handler=cmd_stats)

    p = sub.add_parser("sessions", help="List recent import sessions")
    p.add_argument("--status", choices=[s.value for s in ImportSessionStatus])
    p.add_argument("--limit", type=int, default=50)
    p.set_defaults(handler=cmd_sessions)

    p = sub.add_parser("rules", help="Manage correction rules")
    rules = p.add_subparsers(dest="rules_command", required=True)
    r = rules.add_parser("list")
    r.add_argument("--category")
    r.add_argument("--active-only", action="store_true")
    r = rules.add_parser("add")
    r.add_argument("category", choices=[c.value for c in CorrectionCategory])
    r.add_argument("pattern", help="Misspelling as it appears in source files")
    r.add_argument("correction")
    r.add_argument("--error-type", choices=[e.value for e in CorrectionErrorType], default="ocr_error")
    r.add_argument("--regex", help="Regex to use instead of the escaped pattern")
    r.add_argument("--flags", default="")
    r.add_argument("--priority", choices=[level.value for level in RulePriority], default="medium")
    r.add_argument("--description")
    for name in ("disable", "delete"):
        rules.add_parser(name).add_argument("rule_id")
    r = rules.add_parser("search")
    r.add_argument("term")
    rules.add_parser("stats")
    r = rules.add_parser("test")
    r.add_argument("rule_id")
    r.add_argument("sample")
    p.set_defaults(handler=cmd_rules)

    p = sub.add_parser("export", help="Export canonical cutoffs")
    p.add_argument("--format", choices=("csv", "json"), default="csv")
    p.add_argument("--year", type=int)
    p.add_argument("--authority")
    p.add_argument("--quota")
    p.add_argument("--output", help="File path, or - for stdout")
    p.set_defaults(handler=cmd_export)

    p = sub.add_parser("reset", help="Delete every staging row (irreversible)")
    p.add_argument("--yes", action="store_true")
    p.set_defaults(handler=cmd_reset)

    return parser


async def run(args: argparse.Namespace) -> int:
    """Run one command inside the application lifecycle."""
    logger.info("Starting cutoff-ingest %s (env=%s)", args.command, settings.environment)

    # 1. Database
    async with db_lifespan(ensure_schema=getattr(args, "ensure_schema", True)):
        # 2. Event system
        await start_event_system()

        # 3. Audit logging, always active
        subscribe(audit_on_event)

        await emit(SystemEvent(
            event_type=EventType.COMMAND_STARTED,
            actor_id=args.actor,
            data={"command": args.command},
            source_module="main",
        ))
        try:
            code = await args.handler(args)
        except Exception as exc:
            await emit(SystemEvent(
                event_type=EventType.COMMAND_FAILED,
                actor_id=args.actor,
                data={"command": args.command, "error": f"{type(exc).__name__}: {exc}"},
                source_module="main",
            ))
            raise
        else:
            await emit(SystemEvent(
                event_type=EventType.COMMAND_FINISHED,
                actor_id=args.actor,
                data={"command": args.command, "exit_code": code},
                source_module="main",
            ))
            return code
        finally:
            await stop_event_system()


# ── Entry point ──────────────────────────────────────────────────────


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    return asyncio.run(run(args))


if __name__ == "__main__":
    sys.exit(main())
