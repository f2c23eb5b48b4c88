"""Correction rule store: CRUD, search, statistics, and per-session snapshots.

Rules live in the `correction_rules` table. Import sessions never read the
table row by row: they take a frozen RuleSet via `snapshot()` and push usage
counts back in one batch via `flush_usage()`.
"""

from __future__ import annotations

import logging
import re
import uuid
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from cutoff_ingest.config import settings
from cutoff_ingest.corrections.defaults import DEFAULT_RULES
from cutoff_ingest.corrections.normalizer import (
    CompiledRule,
    CorrectionResult,
    RuleSet,
    UsageAccumulator,
    compile_rule,
)
from cutoff_ingest.errors import RuleApplicationError
from cutoff_ingest.events import emit
from cutoff_ingest.models.correction_rule import CorrectionHistory, CorrectionRule
from cutoff_ingest.models.enums import PRIORITY_VALUES, RulePriority
from cutoff_ingest.schemas.events import EventType, SystemEvent

logger = logging.getLogger(__name__)

_EDITABLE_FIELDS = frozenset({
    "category",
    "error_type",
    "pattern",
    "correction",
    "description",
    "regex_pattern",
    "replacement",
    "flags",
    "priority",
    "is_active",
    "examples",
    "notes",
})


def priority_value(priority: RulePriority | str | int) -> int:
    """Map a named priority ("high") or an int onto the stored integer."""
    if isinstance(priority, int):
        return priority
    return PRIORITY_VALUES[RulePriority(getattr(priority, "value", priority))]


@dataclass
class RuleStats:
    """Aggregate usage statistics across the rule table."""

    total: int = 0
    active: int = 0
    total_usage: int = 0
    total_success: int = 0
    by_category: dict[str, int] = field(default_factory=dict)

    @property
    def success_rate(self) -> float:
        if not self.total_usage:
            return 0.0
        return round(self.total_success / self.total_usage * 100, 2)


class CorrectionRuleStore:
    """Stateless service; every method takes the caller's AsyncSession."""

    async def seed_defaults(self, db: AsyncSession) -> int:
        """Insert built-in rules that are not present yet. Returns the number added."""
        result = await db.execute(select(CorrectionRule.category, CorrectionRule.regex_pattern))
        existing = {(row[0], row[1]) for row in result.all()}

        added = 0
        for rule_def in DEFAULT_RULES:
            key = (rule_def["category"].value, rule_def["regex_pattern"])
            if key in existing:
                continue
            db.add(self._build(created_by="seed", **rule_def))
            existing.add(key)
            added += 1

        if added:
            await db.flush()
            await emit(SystemEvent(
                event_type=EventType.RULES_SEEDED,
                data={"added": added},
                source_module="corrections.store",
            ))
        logger.info("Seeded %d default correction rules", added)
        return added

    async def add_rule(
        self,
        db: AsyncSession,
        *,
        category: str,
        error_type: str,
        pattern: str,
        correction: str,
        regex_pattern: str | None = None,
        replacement: str | None = None,
        flags: str = "",
        priority: RulePriority | str | int = RulePriority.MEDIUM,
        description: str | None = None,
        examples: list[str] | None = None,
        created_by: str = "operator",
        notes: str | None = None,
    ) -> CorrectionRule:
        """Create a rule. A literal pattern is escaped when no regex is given.

        Raises:
            RuleApplicationError: If the regex does not compile.
        """
        rule = self._build(
            category=category,
            error_type=error_type,
            pattern=pattern,
            correction=correction,
            regex_pattern=regex_pattern,
            replacement=replacement,
            flags=flags,
            priority=priority,
            description=description,
            examples=examples,
            created_by=created_by,
            notes=notes,
        )
        compile_rule(None, rule.category, rule.regex_pattern, rule.replacement, rule.flags)
        db.add(rule)
        await db.flush()

        await emit(SystemEvent(
            event_type=EventType.RULE_CREATED,
            actor_id=created_by,
            data={"rule_id": str(rule.id), "category": rule.category, "pattern": rule.pattern},
            source_module="corrections.store",
        ))
        return rule

    async def get_rule(self, db: AsyncSession, rule_id: uuid.UUID) -> CorrectionRule | None:
        return await db.get(CorrectionRule, rule_id)

    async def list_rules(
        self,
        db: AsyncSession,
        category: str | None = None,
        active_only: bool = False,
    ) -> list[CorrectionRule]:
        """Rules ordered by priority (highest first), then creation time."""
        stmt = select(CorrectionRule)
        if category is not None:
            stmt = stmt.where(CorrectionRule.category == getattr(category, "value", category))
        if active_only:
            stmt = stmt.where(CorrectionRule.is_active.is_(True))
        stmt = stmt.order_by(
            CorrectionRule.priority.desc(),
            CorrectionRule.created_at,
            CorrectionRule.pattern,
        )
        result = await db.execute(stmt)
        return list(result.scalars().all())

    async def update_rule(
        self, db: AsyncSession, rule_id: uuid.UUID, **changes: Any
    ) -> CorrectionRule | None:
        """Apply field changes. Unknown fields raise ValueError."""
        unknown = set(changes) - _EDITABLE_FIELDS
        if unknown:
            msg = f"Cannot update rule fields: {sorted(unknown)}"
            raise ValueError(msg)

        rule = await db.get(CorrectionRule, rule_id)
        if rule is None:
            return None

        if "priority" in changes:
            changes["priority"] = priority_value(changes["priority"])
        for key in ("category", "error_type"):
            if key in changes:
                changes[key] = getattr(changes[key], "value", changes[key])

        regex = changes.get("regex_pattern", rule.regex_pattern)
        compile_rule(rule.id, rule.category, regex, changes.get("replacement", rule.replacement),
                     changes.get("flags", rule.flags))

        for key, value in changes.items():
            setattr(rule, key, value)
        await db.flush()

        await emit(SystemEvent(
            event_type=EventType.RULE_UPDATED,
            data={"rule_id": str(rule.id), "fields": sorted(changes)},
            source_module="corrections.store",
        ))
        return rule

    async def deactivate_rule(self, db: AsyncSession, rule_id: uuid.UUID) -> CorrectionRule | None:
        return await self.update_rule(db, rule_id, is_active=False)

    async def delete_rule(self, db: AsyncSession, rule_id: uuid.UUID) -> bool:
        """Physically remove a rule. Returns False if it did not exist."""
        rule = await db.get(CorrectionRule, rule_id)
        if rule is None:
            return False
        await db.delete(rule)
        await db.flush()

        await emit(SystemEvent(
            event_type=EventType.RULE_DELETED,
            data={"rule_id": str(rule_id), "pattern": rule.pattern},
            source_module="corrections.store",
        ))
        return True

    async def search_rules(self, db: AsyncSession, term: str) -> list[CorrectionRule]:
        """Case-insensitive search over pattern, correction, and description."""
        like = f"%{term}%"
        stmt = (
            select(CorrectionRule)
            .where(or_(
                CorrectionRule.pattern.ilike(like),
                CorrectionRule.correction.ilike(like),
                CorrectionRule.description.ilike(like),
            ))
            .order_by(CorrectionRule.priority.desc(), CorrectionRule.usage_count.desc())
        )
        result = await db.execute(stmt)
        return list(result.scalars().all())

    async def get_stats(self, db: AsyncSession) -> RuleStats:
        totals = await db.execute(
            select(
                func.count(CorrectionRule.id),
                func.count(CorrectionRule.id).filter(CorrectionRule.is_active.is_(True)),
                func.coalesce(func.sum(CorrectionRule.usage_count), 0),
                func.coalesce(func.sum(CorrectionRule.success_count), 0),
            )
        )
        total, active, usage, success = totals.one()

        per_category = await db.execute(
            select(CorrectionRule.category, func.count(CorrectionRule.id))
            .group_by(CorrectionRule.category)
        )
        return RuleStats(
            total=total or 0,
            active=active or 0,
            total_usage=int(usage or 0),
            total_success=int(success or 0),
            by_category={row[0]: row[1] for row in per_category.all()},
        )

    async def test_rule(
        self, db: AsyncSession, rule_id: uuid.UUID, sample: str
    ) -> CorrectionResult | None:
        """Run one rule against a sample string. Statistics are not touched."""
        rule = await db.get(CorrectionRule, rule_id)
        if rule is None:
            return None
        compiled = compile_rule(
            rule.id, rule.category, rule.regex_pattern, rule.replacement, rule.flags, rule.priority
        )
        return RuleSet(rules=(compiled,), max_passes=1).apply_corrections(sample)

    async def snapshot(self, db: AsyncSession, category: str | None = None) -> RuleSet:
        """Freeze the active rules into a RuleSet for one import session.

        Rules whose regex fails to compile are logged and left out.
        """
        rules = await self.list_rules(db, category=category, active_only=True)
        compiled: list[CompiledRule] = []
        for rule in rules:
            try:
                compiled.append(compile_rule(
                    rule.id,
                    rule.category,
                    rule.regex_pattern,
                    rule.replacement,
                    rule.flags,
                    rule.priority,
                    rule.description,
                ))
            except RuleApplicationError as exc:
                logger.warning("Skipping correction rule %s: %s", exc.rule_id, exc)
        rule_set = RuleSet.from_rules(compiled, max_passes=settings.ingest.max_correction_passes)
        logger.info("Rule snapshot taken: %d active rules (%d skipped)", len(rule_set), len(rules) - len(compiled))
        return rule_set

    async def flush_usage(self, db: AsyncSession, usage: UsageAccumulator) -> int:
        """Apply batched usage counters as atomic increments. Returns rules touched."""
        pending = usage.drain()
        try:
            for rule_id, (used, succeeded) in pending.items():
                await db.execute(
                    update(CorrectionRule)
                    .where(CorrectionRule.id == rule_id)
                    .values(
                        usage_count=CorrectionRule.usage_count + used,
                        success_count=CorrectionRule.success_count + succeeded,
                    )
                )
        except Exception:
            usage.restore(pending)
            raise
        return len(pending)

    def record_history(
        self,
        db: AsyncSession,
        session_id: uuid.UUID | None,
        field_name: str,
        result: CorrectionResult,
    ) -> int:
        """Stage one correction_history row per applied correction."""
        for applied in result.corrections:
            db.add(CorrectionHistory(
                session_id=session_id,
                rule_id=applied.rule_id if isinstance(applied.rule_id, uuid.UUID) else None,
                field_name=field_name,
                original_value=applied.before,
                corrected_value=applied.after,
            ))
        return len(result.corrections)

    @staticmethod
    def _build(
        *,
        category: Any,
        error_type: Any,
        pattern: str,
        correction: str,
        regex_pattern: str | None = None,
        replacement: str | None = None,
        flags: str = "",
        priority: RulePriority | str | int = RulePriority.MEDIUM,
        description: str | None = None,
        examples: list[str] | None = None,
        created_by: str = "system",
        notes: str | None = None,
    ) -> CorrectionRule:
        return CorrectionRule(
            category=getattr(category, "value", category),
            error_type=getattr(error_type, "value", error_type),
            pattern=pattern,
            correction=correction,
            regex_pattern=regex_pattern or re.escape(pattern),
            replacement=correction if replacement is None else replacement,
            flags=flags or "",
            priority=priority_value(priority),
            description=description,
            examples=examples,
            is_active=True,
            usage_count=0,
            success_count=0,
            created_by=created_by,
            notes=notes,
        )


# Module-level singleton
rule_store = CorrectionRuleStore()
