"""Failure pattern tracker.

Counts configured regular expressions in the combined check output, adds
each run's sightings to a cumulative per-pattern total (no decay, no
window), and maps totals onto recommendation tiers:

    count >= lint threshold (5)   -> lint_rule
    count >= claude threshold (3) -> claude_rule
    otherwise                     -> none

A promotion is reported only on the run whose update changes the tier.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass

from .models import (
    RECOMMENDATION_CLAUDE_RULE,
    RECOMMENDATION_LINT_RULE,
    RECOMMENDATION_NONE,
    PatternRecord,
    PatternRule,
    PatternState,
    Promotion,
)

log = logging.getLogger(__name__)

DEFAULT_CLAUDE_RULE_THRESHOLD = 3
DEFAULT_LINT_RULE_THRESHOLD = 5

DEFAULT_PATTERN_RULES: list[PatternRule] = [
    PatternRule("cannot_find_module", r"Cannot find module|No module named", "gi"),
    PatternRule("type_mismatch", r"is not assignable to type|Incompatible types", "gi"),
    PatternRule(
        "unused_symbol",
        r"unused (import|variable|parameter|private class member)|imported but unused",
        "gi",
    ),
    PatternRule("formatting_violation", r"Formatter would have printed|would reformat", "gi"),
    PatternRule("missing_test_coverage", r"coverage.*below|No test files found", "gi"),
]

# JavaScript-style flag letters seen in pattern configs. ``g`` and ``u``
# are implicit in Python's finditer/str patterns.
_FLAG_MAP: dict[str, int] = {
    "i": re.IGNORECASE,
    "m": re.MULTILINE,
    "s": re.DOTALL,
    "g": 0,
    "u": 0,
}


@dataclass
class Thresholds:
    """Sighting counts at which a pattern is promoted."""

    claude_rule: int = DEFAULT_CLAUDE_RULE_THRESHOLD
    lint_rule: int = DEFAULT_LINT_RULE_THRESHOLD


def compile_flags(flags: str) -> int:
    """Translate flag letters to ``re`` flags; raises ValueError on unknown letters."""
    result = 0
    for letter in flags:
        if letter not in _FLAG_MAP:
            raise ValueError(f"unsupported regex flag {letter!r}")
        result |= _FLAG_MAP[letter]
    return result


def count_matches(output: str, rule: PatternRule) -> int:
    """Number of matches of one rule; 0 for malformed rules."""
    try:
        regex = re.compile(rule.pattern, compile_flags(rule.flags))
    except (re.error, ValueError) as exc:
        log.debug("Skipping malformed pattern %s: %s", rule.key, exc)
        return 0
    return sum(1 for _ in regex.finditer(output))


def detect_patterns(output: str, rules: list[PatternRule]) -> dict[str, int]:
    """Per-rule match counts for this run, omitting rules with no match."""
    counts: dict[str, int] = {}
    for rule in rules:
        n = count_matches(output, rule)
        if n > 0:
            counts[rule.key] = counts.get(rule.key, 0) + n
    return counts


def recommendation_for_count(count: int, thresholds: Thresholds) -> str:
    """Map a cumulative count onto a recommendation tier."""
    if count >= thresholds.lint_rule:
        return RECOMMENDATION_LINT_RULE
    if count >= thresholds.claude_rule:
        return RECOMMENDATION_CLAUDE_RULE
    return RECOMMENDATION_NONE


def next_pattern_state(
    previous: PatternState | None,
    detected: dict[str, int],
    thresholds: Thresholds,
    now: str,
) -> tuple[PatternState, list[Promotion]]:
    """Fold this run's detections into the cumulative state.

    Patterns not seen this run keep their stored record untouched.
    Returns the new state and the promotions that happened on this run.
    """
    patterns = dict(previous.patterns) if previous else {}
    promotions: list[Promotion] = []

    for key, seen in detected.items():
        existing = patterns.get(key) or PatternRecord(last_seen_at=now)
        count = existing.count + seen
        recommendation = recommendation_for_count(count, thresholds)
        patterns[key] = PatternRecord(
            count=count,
            last_seen_at=now,
            recommendation=recommendation,
        )
        if recommendation != RECOMMENDATION_NONE and recommendation != existing.recommendation:
            log.info("Pattern %s promoted to %s (count=%d)", key, recommendation, count)
            promotions.append(Promotion(pattern=key, recommendation=recommendation))

    return PatternState(updated_at=now, patterns=patterns), promotions
