"""Tests for the text normalizer and the built-in correction rules.

Covers:
- Pre-cleaning of input text
- Priority ordering and cumulative application
- Fixed-point behaviour of the default rule set
- Skipping rules that fail at substitution time
- Usage/success accounting
"""

from __future__ import annotations

import re

import pytest

from cutoff_ingest.corrections.defaults import DEFAULT_RULES
from cutoff_ingest.corrections.normalizer import (
    RuleSet,
    UsageAccumulator,
    clean_text,
    compile_rule,
    parse_flags,
    to_python_replacement,
)
from cutoff_ingest.errors import RuleApplicationError
from cutoff_ingest.models.enums import PRIORITY_VALUES, CorrectionCategory


# ── Helpers ──────────────────────────────────────────────────────────


def _default_rule_set() -> RuleSet:
    compiled = [
        compile_rule(
            index,
            rule_def["category"].value,
            rule_def["regex_pattern"],
            rule_def["replacement"],
            rule_def["flags"],
            PRIORITY_VALUES[rule_def["priority"]],
        )
        for index, rule_def in enumerate(DEFAULT_RULES)
    ]
    return RuleSet.from_rules(compiled)


@pytest.fixture()
def rules() -> RuleSet:
    return _default_rule_set()


# ── Building blocks ──────────────────────────────────────────────────


class TestCleanText:
    def test_uppercases_and_collapses(self):
        assert clean_text("  b.j.   mdal college ") == "B.J. MDAL COLLEGE"

    def test_drops_stray_symbols(self):
        assert clean_text("GOVT* DENTAL #COLLEGE (GDC), A&B-1") == "GOVT DENTAL COLLEGE (GDC), A&B-1"

    def test_none(self):
        assert clean_text(None) == ""


class TestRuleCompilation:
    def test_dollar_group_syntax(self):
        assert to_python_replacement("$1 X $2") == r"\g<1> X \g<2>"

    def test_flags(self):
        assert parse_flags("gi") == re.IGNORECASE
        assert parse_flags("ims") == re.IGNORECASE | re.MULTILINE | re.DOTALL
        assert parse_flags(None) == 0

    def test_invalid_regex_raises(self):
        with pytest.raises(RuleApplicationError) as exc_info:
            compile_rule("r1", "college_name", "([A-Z", "X")
        assert exc_info.value.rule_id == "r1"
        assert exc_info.value.pattern == "([A-Z"

    def test_dollar_replacement_applies(self):
        rule = compile_rule(1, "location", r"\b([A-Z]+)-\d+\b", "$1")
        assert rule.apply("CHENNAI-600003") == ("CHENNAI", True)


# ── Rule set application ─────────────────────────────────────────────


class TestApplyCorrections:
    def test_higher_priority_runs_first(self):
        low = compile_rule("low", "quota", "^A$", "B", priority=10)
        high = compile_rule("high", "quota", "^A$", "C", priority=30)
        result = RuleSet.from_rules([low, high]).apply_corrections("a", "quota")
        assert result.corrected == "C"
        assert [c.rule_id for c in result.corrections] == ["high"]

    def test_corrections_are_cumulative(self):
        first = compile_rule("first", "quota", "FOO", "BAR", priority=30)
        second = compile_rule("second", "quota", "BAR", "BAZ", priority=10)
        result = RuleSet.from_rules([first, second]).apply_corrections("foo")
        assert result.original == "foo"
        assert result.corrected == "BAZ"
        assert [(c.before, c.after) for c in result.corrections] == [("FOO", "BAR"), ("BAR", "BAZ")]

    def test_category_filter(self):
        college = compile_rule("c", "college_name", "MDAL", "MEDICAL")
        program = compile_rule("p", "program_name", "MDINE", "MEDICINE")
        rule_set = RuleSet.from_rules([college, program])
        assert rule_set.apply_corrections("MDAL MDINE", CorrectionCategory.COLLEGE_NAME).corrected == "MEDICAL MDINE"
        assert rule_set.apply_corrections("MDAL MDINE").corrected == "MEDICAL MEDICINE"

    def test_bad_substitution_is_skipped(self):
        broken = compile_rule("broken", "quota", "(A)", r"\g<2>", priority=30)
        working = compile_rule("working", "quota", "B", "C", priority=10)
        result = RuleSet.from_rules([broken, working]).apply_corrections("AB", "quota")
        assert result.corrected == "AC"
        assert [c.rule_id for c in result.corrections] == ["working"]

    def test_no_rules(self):
        result = RuleSet().apply_corrections(" plain  text ")
        assert result.corrected == "PLAIN TEXT"
        assert not result.changed


class TestDefaultRules:
    def test_college_ocr_errors(self, rules):
        result = rules.apply_corrections("B.J. MDAL COLLEGE, AHMDAD", CorrectionCategory.COLLEGE_NAME)
        assert result.corrected == "B.J. MEDICAL COLLEGE, AHMEDABAD"
        assert result.changed

    def test_program_unwrapped(self, rules):
        result = rules.apply_corrections("MD(GENERAL MEDICINE)", CorrectionCategory.PROGRAM_NAME)
        assert result.corrected == "GENERAL MEDICINE"

    def test_duplicated_tokens_collapse(self, rules):
        result = rules.apply_corrections("RADIORADIODIAGNOSISRADIODIAGNOSIS", CorrectionCategory.PROGRAM_NAME)
        assert result.corrected == "RADIODIAGNOSIS"

    def test_truncated_names_completed_once(self, rules):
        result = rules.apply_corrections("SAWAI MAN MEDICAL COLLEGE", CorrectionCategory.COLLEGE_NAME)
        assert result.corrected == "SAWAI MAN SINGH MEDICAL COLLEGE"

    def test_trailing_commas(self, rules):
        assert rules.apply_corrections("PGIMER,,,", CorrectionCategory.COLLEGE_NAME).corrected == "PGIMER"
        assert rules.apply_corrections("ABVIMS ,", CorrectionCategory.COLLEGE_NAME).corrected == "ABVIMS"

    def test_location_postcode(self, rules):
        assert rules.apply_corrections("CHENNAI-600003", CorrectionCategory.LOCATION).corrected == "CHENNAI"

    @pytest.mark.parametrize(
        ("text", "expected"),
        [
            ("AHMEDABAD, GUJARAT,INDIA", "AHMEDABAD, GUJARAT"),
            ("AHMEDABAD, GUJARAT, INDIA,", "AHMEDABAD, GUJARAT"),
            ("GUJARAT, AHMEDABAD", "GUJARAT, AHMEDABAD"),
        ],
    )
    def test_country_suffix_keeps_city_comma(self, rules, text, expected):
        assert rules.apply_corrections(text, CorrectionCategory.LOCATION).corrected == expected

    @pytest.mark.parametrize(
        ("text", "category"),
        [
            ("B.J. MDAL COLLEGE, AHMDAD", CorrectionCategory.COLLEGE_NAME),
            ("DR RML HOSPITAL,, DELHI", CorrectionCategory.COLLEGE_NAME),
            ("BABA KHARAK MEDICAL COLLEGE ,", CorrectionCategory.COLLEGE_NAME),
            ("MD(GENERAL MDINE)", CorrectionCategory.PROGRAM_NAME),
            ("RADIORADIODIAGNOSISRADIODIAGNOSIS", CorrectionCategory.PROGRAM_NAME),
            ("M.D. OBST AND GYNAE", CorrectionCategory.PROGRAM_NAME),
            ("DELHI (NCT), GUJARAT,INDIA", CorrectionCategory.LOCATION),
            ("aiq ", CorrectionCategory.QUOTA),
            (" obc", CorrectionCategory.CATEGORY),
        ],
    )
    def test_output_is_a_fixed_point(self, rules, text, category):
        once = rules.apply_corrections(text, category).corrected
        twice = rules.apply_corrections(once, category)
        assert twice.corrected == once
        assert not twice.changed


# ── Usage accounting ─────────────────────────────────────────────────


class TestUsageAccumulator:
    def test_match_without_change_counts_usage_only(self):
        rule = compile_rule("same", "quota", "AIQ", "AIQ")
        usage = UsageAccumulator()
        RuleSet.from_rules([rule]).apply_corrections("AIQ", usage=usage)
        assert usage.drain() == {"same": (1, 0)}

    def test_change_counts_success(self):
        rule = compile_rule("fix", "quota", "X", "Y")
        usage = UsageAccumulator()
        rule_set = RuleSet.from_rules([rule])
        rule_set.apply_corrections("X", usage=usage)
        rule_set.apply_corrections("XX", usage=usage)
        rule_set.apply_corrections("Z", usage=usage)
        assert usage.drain() == {"fix": (2, 2)}

    def test_drain_resets_and_restore_puts_back(self):
        usage = UsageAccumulator()
        usage.record("a", success=True)
        usage.record("a", success=False)
        pending = usage.drain()
        assert len(usage) == 0
        usage.restore(pending)
        assert usage.drain() == {"a": (2, 1)}
