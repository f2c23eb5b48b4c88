"""Text normalizer: applies a frozen, prioritized correction rule set.

Pure Python, no DB access. A RuleSet is compiled once per import session
from the rule store and reused for every row, so results are reproducible
even if rules are edited mid-run.

Each rule is substituted until it stops changing the text, and the whole
rule list is re-run until a full pass changes nothing. The output is
therefore a fixed point: normalizing it again returns it unchanged.
"""

from __future__ import annotations

import logging
import re
from collections import Counter
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from cutoff_ingest.errors import RuleApplicationError

logger = logging.getLogger(__name__)

_DISALLOWED_CHARS = re.compile(r"[^\w\s.\-&,()]")
_WHITESPACE = re.compile(r"\s+")
_JS_GROUP_REF = re.compile(r"\$(\d+)")
_FLAG_BITS = {"i": re.IGNORECASE, "m": re.MULTILINE, "s": re.DOTALL}

# A single rule is re-substituted at most this many times per pass
_MAX_RULE_ITERATIONS = 10


def clean_text(value: Any) -> str:
    """Uppercase, trim, drop stray symbols, and collapse whitespace."""
    if value is None:
        return ""
    text = str(value).upper().strip()
    text = _DISALLOWED_CHARS.sub("", text)
    return _WHITESPACE.sub(" ", text).strip()


def parse_flags(flags: str | None) -> int:
    """Translate a flags string like "gi" into `re` flag bits. `g` is implied."""
    bits = 0
    for ch in (flags or "").lower():
        bits |= _FLAG_BITS.get(ch, 0)
    return bits


def to_python_replacement(replacement: str | None) -> str:
    """Accept `$1`-style group references alongside Python's `\\1` / `\\g<1>`."""
    return _JS_GROUP_REF.sub(r"\\g<\1>", replacement or "")


@dataclass(frozen=True)
class CompiledRule:
    """One active rule, compiled and ready to apply."""

    rule_id: Any
    category: str
    regex: re.Pattern[str]
    replacement: str
    priority: int
    description: str | None = None

    def apply(self, text: str) -> tuple[str, bool]:
        """Substitute until stable. Returns (new_text, matched)."""
        if not self.regex.search(text):
            return text, False
        current = text
        for _ in range(_MAX_RULE_ITERATIONS):
            updated = self.regex.sub(self.replacement, current)
            if updated == current:
                break
            current = updated
        return current, True


def compile_rule(
    rule_id: Any,
    category: str,
    regex_pattern: str,
    replacement: str | None,
    flags: str | None = "",
    priority: int = 0,
    description: str | None = None,
) -> CompiledRule:
    """Compile rule fields into a CompiledRule.

    Raises:
        RuleApplicationError: If the regex does not compile.
    """
    try:
        regex = re.compile(regex_pattern, parse_flags(flags))
    except re.error as exc:
        msg = f"Invalid regex for rule {rule_id}: {exc}"
        raise RuleApplicationError(msg, rule_id=rule_id, pattern=regex_pattern) from exc
    return CompiledRule(
        rule_id=rule_id,
        category=category,
        regex=regex,
        replacement=to_python_replacement(replacement),
        priority=priority,
        description=description,
    )


@dataclass(frozen=True)
class AppliedCorrection:
    """A rule application that changed the text."""

    rule_id: Any
    category: str
    pattern: str
    before: str
    after: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "rule_id": str(self.rule_id),
            "category": self.category,
            "pattern": self.pattern,
            "before": self.before,
            "after": self.after,
        }


@dataclass
class CorrectionResult:
    """Outcome of normalizing one string."""

    original: str
    corrected: str
    corrections: list[AppliedCorrection] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.corrections)


class UsageAccumulator:
    """Batches per-rule usage/success counts until the store flushes them.

    `usage` counts matches, `success` counts matches that changed the text.
    """

    def __init__(self) -> None:
        self._usage: Counter[Any] = Counter()
        self._success: Counter[Any] = Counter()

    def record(self, rule_id: Any, success: bool) -> None:
        self._usage[rule_id] += 1
        if success:
            self._success[rule_id] += 1

    def drain(self) -> dict[Any, tuple[int, int]]:
        """Return pending counts as {rule_id: (usage, success)} and reset."""
        pending = {rid: (n, self._success[rid]) for rid, n in self._usage.items()}
        self._usage.clear()
        self._success.clear()
        return pending

    def restore(self, pending: dict[Any, tuple[int, int]]) -> None:
        """Put drained counts back after a failed flush."""
        for rid, (usage, success) in pending.items():
            self._usage[rid] += usage
            self._success[rid] += success

    def __len__(self) -> int:
        return len(self._usage)


@dataclass(frozen=True)
class RuleSet:
    """An immutable, priority-ordered list of compiled rules."""

    rules: tuple[CompiledRule, ...] = ()
    max_passes: int = 5
    taken_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @classmethod
    def from_rules(cls, rules: Iterable[CompiledRule], max_passes: int = 5) -> RuleSet:
        """Order rules by descending priority, keeping input order for ties."""
        ordered = sorted(rules, key=lambda r: -r.priority)
        return cls(rules=tuple(ordered), max_passes=max_passes)

    def for_category(self, category: str | None) -> tuple[CompiledRule, ...]:
        if category is None:
            return self.rules
        value = getattr(category, "value", category)
        return tuple(r for r in self.rules if r.category == value)

    def apply_corrections(
        self,
        text: Any,
        category: str | None = None,
        usage: UsageAccumulator | None = None,
    ) -> CorrectionResult:
        """Clean `text` and apply every rule of `category` cumulatively.

        Rules that fail at substitution time (e.g. a bad group reference)
        are logged and skipped.
        """
        original = "" if text is None else str(text)
        current = clean_text(original)
        applied: list[AppliedCorrection] = []
        matched: set[Any] = set()
        changed_by: set[Any] = set()
        rules = self.for_category(category)

        for _ in range(self.max_passes):
            pass_changed = False
            for rule in rules:
                try:
                    updated, hit = rule.apply(current)
                except (re.error, IndexError) as exc:
                    logger.warning("Skipping rule %s (%s): %s", rule.rule_id, rule.regex.pattern, exc)
                    continue
                if not hit:
                    continue
                matched.add(rule.rule_id)
                if updated != current:
                    applied.append(AppliedCorrection(
                        rule_id=rule.rule_id,
                        category=rule.category,
                        pattern=rule.regex.pattern,
                        before=current,
                        after=updated,
                    ))
                    changed_by.add(rule.rule_id)
                    current = updated
                    pass_changed = True
            if not pass_changed:
                break
        else:
            logger.warning("Corrections did not converge after %d passes: %r", self.max_passes, original)

        if usage is not None:
            for rule_id in matched:
                usage.record(rule_id, success=rule_id in changed_by)

        return CorrectionResult(original=original, corrected=current, corrections=applied)

    def __len__(self) -> int:
        return len(self.rules)
