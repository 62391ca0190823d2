"""Scorecard engine -- weighted 0-100 score plus a ratcheting coverage floor.

Five component scores, each clamped to [0, 100] and rounded to 2 decimals:
  - typeSafety:     100, minus 8 per type error
  - lintCompliance: 100, minus 4 per lint violation
  - testHealth:     pass ratio; 70 for an empty run, 20 if it reported failures
  - coverageLevel:  average line coverage
  - buildStability: 100 if the build exited 0, else 0

Overall = weighted sum of the components (weights need not sum to 1).

Coverage ratchet: a run is qualified only if the test command exited 0 AND
every expected package produced a coverage summary. Qualified runs move the
floor to ``coverage - 2`` (never lower while qualification holds);
unqualified runs leave it untouched.

Everything here is a pure function of (previous scorecard, this run).
"""

from __future__ import annotations

import logging
from typing import Any

from .classify import Classifier, classify_output
from .models import (
    HISTORY_LIMIT,
    CommandResult,
    ComponentScores,
    CoverageSummary,
    HistoryEntry,
    Metrics,
    Scorecard,
)

log = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Scoring constants
# ---------------------------------------------------------------------------

DEFAULT_WEIGHTS: dict[str, float] = {
    "typeSafety": 0.25,
    "testHealth": 0.3,
    "lintCompliance": 0.15,
    "coverageLevel": 0.2,
    "buildStability": 0.1,
}

TYPE_ERROR_PENALTY = 8
LINT_VIOLATION_PENALTY = 4
EMPTY_TESTS_SCORE = 70
EMPTY_TESTS_FAILED_SCORE = 20
COVERAGE_FLOOR_MARGIN = 2


def to_score(raw: float) -> float:
    """Clamp to [0, 100] and round to 2 decimals."""
    return round(max(0.0, min(100.0, float(raw))), 2)


# ---------------------------------------------------------------------------
# Metrics
# ---------------------------------------------------------------------------


def _exit_code(results: list[CommandResult], name: str) -> int:
    found = next((r for r in results if r.name == name), None)
    return found.exit_code if found else 1


def build_metrics(results: list[CommandResult], coverage: CoverageSummary,
                  classifier: Classifier = classify_output) -> Metrics:
    """Assemble the run's metrics snapshot from command results and coverage."""
    counts = classifier(results)
    build = next((r for r in results if r.name == "build"), None)
    return Metrics(
        type_errors=counts.type_errors,
        lint_violations=counts.lint_violations,
        tests_passed=counts.tests_passed,
        tests_failed=counts.tests_failed,
        coverage_pct=coverage.pct,
        build_exit_code=_exit_code(results, "build"),
        test_exit_code=_exit_code(results, "test"),
        build_time_ms=build.duration_ms if build else 0,
    )


# ---------------------------------------------------------------------------
# Component + overall scores
# ---------------------------------------------------------------------------


def compute_component_scores(metrics: Metrics) -> ComponentScores:
    """Score each of the five components."""
    type_safety = to_score(
        100 if metrics.type_errors == 0
        else 100 - metrics.type_errors * TYPE_ERROR_PENALTY
    )
    lint_compliance = to_score(
        100 if metrics.lint_violations == 0
        else 100 - metrics.lint_violations * LINT_VIOLATION_PENALTY
    )
    test_total = metrics.tests_passed + metrics.tests_failed
    if test_total == 0:
        test_health = to_score(
            EMPTY_TESTS_SCORE if metrics.tests_failed == 0 else EMPTY_TESTS_FAILED_SCORE
        )
    else:
        test_health = to_score(metrics.tests_passed / test_total * 100)
    return ComponentScores(
        type_safety=type_safety,
        test_health=test_health,
        lint_compliance=lint_compliance,
        coverage_level=to_score(metrics.coverage_pct),
        build_stability=100.0 if metrics.build_exit_code == 0 else 0.0,
    )


def compute_overall(components: ComponentScores,
                    weights: dict[str, float] | None = None) -> float:
    """Weighted sum of component scores, clamped and rounded."""
    w = {**DEFAULT_WEIGHTS, **(weights or {})}
    values = components.to_dict()
    return to_score(sum(values[name] * float(w[name]) for name in DEFAULT_WEIGHTS))


# ---------------------------------------------------------------------------
# Coverage ratchet
# ---------------------------------------------------------------------------


def is_coverage_qualified(test_exit_code: int, package_count: int,
                          expected_packages: int) -> bool:
    """A run qualifies only when tests passed and no package went missing."""
    return test_exit_code == 0 and package_count == expected_packages


def next_coverage_floor(previous_floor: float, previous_qualified: bool,
                        coverage_pct: float, qualified: bool) -> float:
    """Ratchet the coverage floor.

    Unqualified: unchanged. Qualified after a qualified run: never lower.
    Qualified after an unqualified run: fresh baseline.
    """
    if not qualified:
        return previous_floor
    candidate = max(0.0, round(coverage_pct - COVERAGE_FLOOR_MARGIN, 2))
    if previous_qualified:
        return max(previous_floor, candidate)
    return candidate


# ---------------------------------------------------------------------------
# Action items
# ---------------------------------------------------------------------------


def build_action_items(metrics: Metrics, coverage_floor: float,
                       coverage_qualified: bool) -> list[str]:
    """Prioritised remediation list; empty when everything is healthy."""
    actions: list[str] = []
    if metrics.type_errors > 0:
        actions.append(f"Fix {metrics.type_errors} type errors before merge.")
    if metrics.lint_violations > 0:
        actions.append(f"Resolve {metrics.lint_violations} lint violations.")
    if metrics.tests_failed > 0:
        actions.append(f"Address {metrics.tests_failed} failing tests.")
    if not coverage_qualified:
        actions.append(
            "Coverage was not fully collected across all packages; "
            "rerun full test coverage."
        )
    elif metrics.coverage_pct < coverage_floor:
        actions.append(
            f"Coverage {metrics.coverage_pct:.2f}% is below floor "
            f"{coverage_floor:.2f}%; add tests before shipping."
        )
    if metrics.build_exit_code != 0:
        actions.append("Build is unstable; fix build failures before enabling automation.")
    return actions


# ---------------------------------------------------------------------------
# Scorecard reducer
# ---------------------------------------------------------------------------


def append_history(history: list[HistoryEntry], entry: HistoryEntry,
                   limit: int = HISTORY_LIMIT) -> list[HistoryEntry]:
    """Append and keep only the most recent ``limit`` entries."""
    return [*history, entry][-limit:]


def next_scorecard(
    previous: Scorecard | None,
    metrics: Metrics,
    coverage: CoverageSummary,
    results: list[CommandResult],
    expected_packages: int,
    now: str,
    weights: dict[str, Any] | None = None,
) -> Scorecard:
    """Compute this run's scorecard from the previous one and run inputs."""
    components = compute_component_scores(metrics)
    overall = compute_overall(components, weights)

    qualified = is_coverage_qualified(
        metrics.test_exit_code, coverage.package_count, expected_packages)
    previous_floor = previous.coverage_floor if previous else 0.0
    previous_qualified = previous.coverage_qualified if previous else False
    floor = next_coverage_floor(
        previous_floor, previous_qualified, metrics.coverage_pct, qualified)
    if qualified and floor != previous_floor:
        log.info("Coverage floor %.2f -> %.2f", previous_floor, floor)

    history = append_history(
        previous.history if previous else [],
        HistoryEntry(
            at=now,
            score=overall,
            coverage_pct=metrics.coverage_pct,
            type_errors=metrics.type_errors,
            lint_violations=metrics.lint_violations,
        ),
    )

    return Scorecard(
        updated_at=now,
        overall=overall,
        components=components,
        metrics=metrics.to_dict(),
        coverage_floor=floor,
        coverage_qualified=qualified,
        coverage_package_count=coverage.package_count,
        action_items=build_action_items(metrics, floor, qualified),
        command_results=[r.to_summary() for r in results],
        history=history,
    )
