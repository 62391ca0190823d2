"""Tests for compound_quality.patterns -- detection and promotion."""

# pylint: disable=missing-class-docstring,missing-function-docstring

from __future__ import annotations

import re

import pytest

from compound_quality.models import PatternRecord, PatternRule, PatternState
from compound_quality.patterns import (
    DEFAULT_PATTERN_RULES,
    Thresholds,
    compile_flags,
    count_matches,
    detect_patterns,
    next_pattern_state,
    recommendation_for_count,
)

RULE = PatternRule("missing_module", r"cannot find module", "gi")


def _run(state: PatternState | None, seen: int, now: str = "t"):
    return next_pattern_state(state, {"missing_module": seen} if seen else {},
                              Thresholds(), now)


class TestCompileFlags:
    def test_known_letters(self) -> None:
        assert compile_flags("gi") == re.IGNORECASE
        assert compile_flags("ms") == re.MULTILINE | re.DOTALL
        assert compile_flags("") == 0

    def test_unknown_letter(self) -> None:
        with pytest.raises(ValueError, match="unsupported regex flag"):
            compile_flags("x")


class TestDetection:
    def test_counts_all_matches(self) -> None:
        out = "Cannot find module 'a'\ncannot find module 'b'"
        assert count_matches(out, RULE) == 2

    def test_case_sensitive_without_i(self) -> None:
        rule = PatternRule("k", "Cannot", "g")
        assert count_matches("cannot Cannot", rule) == 1

    def test_malformed_pattern_skipped(self) -> None:
        assert count_matches("anything", PatternRule("bad", "(unclosed", "g")) == 0
        assert count_matches("anything", PatternRule("bad", "any", "q")) == 0

    def test_detect_omits_zero(self) -> None:
        rules = [RULE, PatternRule("other", "zzz", "g")]
        assert detect_patterns("Cannot find module x", rules) == {"missing_module": 1}

    def test_default_rules_match_common_output(self) -> None:
        out = (
            "Error: Cannot find module 'lodash'\n"
            "src/a.ts: Type 'string' is not assignable to type 'number'.\n"
            "would reformat src/b.py\n"
        )
        counts = detect_patterns(out, DEFAULT_PATTERN_RULES)
        assert counts["cannot_find_module"] == 1
        assert counts["type_mismatch"] == 1
        assert counts["formatting_violation"] == 1


class TestRecommendation:
    @pytest.mark.parametrize("count,expected", [
        (0, "none"), (2, "none"), (3, "claude_rule"), (4, "claude_rule"),
        (5, "lint_rule"), (50, "lint_rule"),
    ])
    def test_tiers(self, count: int, expected: str) -> None:
        assert recommendation_for_count(count, Thresholds()) == expected

    def test_custom_thresholds(self) -> None:
        assert recommendation_for_count(2, Thresholds(claude_rule=2, lint_rule=10)) == "claude_rule"


class TestNextPatternState:
    def test_accumulates_and_promotes_once(self) -> None:
        state, promos = _run(None, 2)
        assert state.patterns["missing_module"].count == 2
        assert state.patterns["missing_module"].recommendation == "none"
        assert promos == []

        state, promos = _run(state, 1)
        assert state.patterns["missing_module"].recommendation == "claude_rule"
        assert [p.recommendation for p in promos] == ["claude_rule"]

        state, promos = _run(state, 1)
        assert state.patterns["missing_module"].count == 4
        assert state.patterns["missing_module"].recommendation == "claude_rule"
        assert promos == []

        state, promos = _run(state, 1)
        assert state.patterns["missing_module"].recommendation == "lint_rule"
        assert [p.to_dict() for p in promos] == [
            {"pattern": "missing_module", "recommendation": "lint_rule"}]

    def test_unseen_patterns_untouched(self) -> None:
        previous = PatternState(updated_at="old", patterns={
            "stale": PatternRecord(count=4, last_seen_at="old", recommendation="claude_rule"),
        })
        state, promos = _run(previous, 1, now="new")
        assert state.patterns["stale"] == previous.patterns["stale"]
        assert state.patterns["missing_module"].last_seen_at == "new"
        assert state.updated_at == "new"
        assert promos == []

    def test_does_not_mutate_previous(self) -> None:
        previous = PatternState(patterns={"missing_module": PatternRecord(count=1)})
        _run(previous, 5)
        assert previous.patterns["missing_module"].count == 1

    def test_jump_straight_to_lint_rule(self) -> None:
        _, promos = _run(None, 7)
        assert [p.recommendation for p in promos] == ["lint_rule"]

    def test_count_four_stays_claude_rule(self) -> None:
        previous = PatternState(patterns={
            "missing_module": PatternRecord(count=3, recommendation="claude_rule")})
        state, _ = next_pattern_state(previous, {"missing_module": 1},
                                      Thresholds(claude_rule=3, lint_rule=5), "t")
        assert state.patterns["missing_module"].recommendation == "claude_rule"
