"""Tests for compound_quality.scorecard -- scoring, ratchet, action items."""

# pylint: disable=missing-class-docstring,missing-function-docstring

from __future__ import annotations

import random

from compound_quality.classify import OutputCounts
from compound_quality.models import (
    CommandResult,
    ComponentScores,
    CoverageSummary,
    HistoryEntry,
    Metrics,
)
from compound_quality.scorecard import (
    DEFAULT_WEIGHTS,
    append_history,
    build_action_items,
    build_metrics,
    compute_component_scores,
    compute_overall,
    is_coverage_qualified,
    next_coverage_floor,
    next_scorecard,
    to_score,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _results(build: int = 0, test: int = 0,
             test_output: str = "Tests: 10 passed, 10 total") -> list[CommandResult]:
    return [
        CommandResult(name="typecheck", command="tsc", exit_code=0),
        CommandResult(name="lint", command="eslint", exit_code=0),
        CommandResult(name="test", command="jest", exit_code=test, stdout=test_output),
        CommandResult(name="build", command="make", exit_code=build, duration_ms=1500),
    ]


def _healthy(coverage: float = 92.0) -> Metrics:
    return Metrics(tests_passed=10, coverage_pct=coverage,
                   build_exit_code=0, test_exit_code=0)


# ---------------------------------------------------------------------------
# Components + overall
# ---------------------------------------------------------------------------


class TestToScore:
    def test_clamps(self) -> None:
        assert to_score(-12) == 0.0
        assert to_score(140) == 100.0

    def test_rounds_two_decimals(self) -> None:
        assert to_score(33.33333) == 33.33


class TestComponentScores:
    def test_perfect(self) -> None:
        c = compute_component_scores(_healthy(100))
        assert c == ComponentScores(100, 100, 100, 100, 100)

    def test_penalties(self) -> None:
        c = compute_component_scores(Metrics(type_errors=3, lint_violations=5,
                                             tests_passed=3, tests_failed=1,
                                             build_exit_code=0))
        assert c.type_safety == 76
        assert c.lint_compliance == 80
        assert c.test_health == 75

    def test_floors_at_zero(self) -> None:
        c = compute_component_scores(Metrics(type_errors=50, lint_violations=100))
        assert c.type_safety == 0
        assert c.lint_compliance == 0

    def test_empty_test_run(self) -> None:
        assert compute_component_scores(Metrics()).test_health == 70

    def test_build_failure(self) -> None:
        assert compute_component_scores(Metrics(build_exit_code=1)).build_stability == 0

    def test_random_snapshots_stay_in_range(self) -> None:
        rng = random.Random(7)
        for _ in range(200):
            m = Metrics(
                type_errors=rng.randint(0, 30),
                lint_violations=rng.randint(0, 40),
                tests_passed=rng.randint(0, 50),
                tests_failed=rng.randint(0, 50),
                coverage_pct=rng.uniform(-10, 120),
                build_exit_code=rng.choice([0, 1, 2]),
            )
            c = compute_component_scores(m)
            for value in c.to_dict().values():
                assert 0 <= value <= 100
            overall = compute_overall(c)
            assert 0 <= overall <= 100
            assert overall == round(overall, 2)


class TestOverall:
    def test_default_weights(self) -> None:
        c = ComponentScores(100, 100, 100, 92, 100)
        assert compute_overall(c) == 98.4

    def test_custom_weights_override(self) -> None:
        c = ComponentScores(100, 0, 0, 0, 0)
        assert compute_overall(c, {"typeSafety": 1.0}) == 100.0

    def test_default_weights_sum_to_one(self) -> None:
        assert round(sum(DEFAULT_WEIGHTS.values()), 6) == 1.0


# ---------------------------------------------------------------------------
# Metrics assembly
# ---------------------------------------------------------------------------


class TestBuildMetrics:
    def test_from_results(self) -> None:
        m = build_metrics(_results(build=1), CoverageSummary(pct=88.0, package_count=1))
        assert m.tests_passed == 10
        assert m.build_exit_code == 1
        assert m.test_exit_code == 0
        assert m.build_time_ms == 1500
        assert m.coverage_pct == 88.0

    def test_missing_command_counts_as_failure(self) -> None:
        m = build_metrics([], CoverageSummary())
        assert m.build_exit_code == 1
        assert m.test_exit_code == 1

    def test_pluggable_classifier(self) -> None:
        m = build_metrics(_results(), CoverageSummary(),
                          classifier=lambda _results: OutputCounts(type_errors=9))
        assert m.type_errors == 9
        assert m.tests_passed == 0


# ---------------------------------------------------------------------------
# Ratchet
# ---------------------------------------------------------------------------


class TestQualification:
    def test_requires_tests_and_all_packages(self) -> None:
        assert is_coverage_qualified(0, 2, 2)
        assert not is_coverage_qualified(1, 2, 2)
        assert not is_coverage_qualified(0, 1, 2)


class TestCoverageFloor:
    def test_first_qualified_run_sets_baseline(self) -> None:
        assert next_coverage_floor(0.0, False, 92.0, True) == 90.0

    def test_never_lowered_while_qualified(self) -> None:
        assert next_coverage_floor(90.0, True, 80.0, True) == 90.0

    def test_raised_by_better_run(self) -> None:
        assert next_coverage_floor(90.0, True, 95.5, True) == 93.5

    def test_unqualified_unchanged(self) -> None:
        assert next_coverage_floor(90.0, True, 10.0, False) == 90.0
        assert next_coverage_floor(90.0, True, 99.0, False) == 90.0

    def test_requalified_run_resets_baseline(self) -> None:
        assert next_coverage_floor(90.0, False, 70.0, True) == 68.0

    def test_not_negative(self) -> None:
        assert next_coverage_floor(0.0, False, 1.0, True) == 0.0

    def test_monotonic_over_qualified_sequence(self) -> None:
        rng = random.Random(3)
        floor, qualified = next_coverage_floor(0.0, False, 50.0, True), True
        for _ in range(100):
            new = next_coverage_floor(floor, qualified, rng.uniform(0, 100), True)
            assert new >= floor
            floor = new

    def test_unqualified_sequence_constant(self) -> None:
        rng = random.Random(5)
        floor = 42.0
        for _ in range(50):
            assert next_coverage_floor(floor, rng.choice([True, False]),
                                       rng.uniform(0, 100), False) == floor


# ---------------------------------------------------------------------------
# Action items + history
# ---------------------------------------------------------------------------


class TestActionItems:
    def test_healthy_has_none(self) -> None:
        assert build_action_items(_healthy(), 90.0, True) == []

    def test_build_instability(self) -> None:
        m = _healthy()
        m.build_exit_code = 1
        items = build_action_items(m, 90.0, True)
        assert any("Build is unstable" in item for item in items)

    def test_counts_in_messages(self) -> None:
        m = Metrics(type_errors=2, lint_violations=3, tests_failed=1,
                    build_exit_code=0, coverage_pct=50)
        items = build_action_items(m, 0.0, True)
        assert items[0].startswith("Fix 2 type errors")
        assert items[1].startswith("Resolve 3 lint violations")
        assert items[2].startswith("Address 1 failing tests")

    def test_unqualified_coverage(self) -> None:
        items = build_action_items(_healthy(), 90.0, False)
        assert any("not fully collected" in item for item in items)

    def test_below_floor(self) -> None:
        items = build_action_items(_healthy(85.0), 90.0, True)
        assert items == ["Coverage 85.00% is below floor 90.00%; add tests before shipping."]


class TestHistory:
    def test_bounded(self) -> None:
        history: list[HistoryEntry] = []
        for i in range(60):
            history = append_history(history, HistoryEntry(at=str(i)))
        assert len(history) == 50
        assert history[0].at == "10"
        assert history[-1].at == "59"


# ---------------------------------------------------------------------------
# Reducer
# ---------------------------------------------------------------------------


class TestNextScorecard:
    def test_all_pass_scenario(self) -> None:
        coverage = CoverageSummary(pct=92.0, package_count=2)
        results = _results()
        metrics = build_metrics(results, coverage)
        sc = next_scorecard(None, metrics, coverage, results, 2, "t1")
        assert sc.overall == 98.4
        assert sc.coverage_floor == 90.0
        assert sc.coverage_qualified is True
        assert sc.action_items == []
        assert sc.command_results[3] == {"name": "build", "exitCode": 0, "durationMs": 1500}
        assert len(sc.history) == 1

    def test_build_failure_scenario(self) -> None:
        coverage = CoverageSummary(pct=92.0, package_count=2)
        results = _results(build=1)
        sc = next_scorecard(None, build_metrics(results, coverage), coverage, results, 2, "t1")
        assert sc.components.build_stability == 0
        assert any("Build is unstable" in item for item in sc.action_items)

    def test_floor_carried_across_unqualified_run(self) -> None:
        coverage = CoverageSummary(pct=92.0, package_count=2)
        first = next_scorecard(None, build_metrics(_results(), coverage), coverage,
                               _results(), 2, "t1")
        partial = CoverageSummary(pct=40.0, package_count=1)
        second = next_scorecard(first, build_metrics(_results(), partial), partial,
                                _results(), 2, "t2")
        assert second.coverage_floor == 90.0
        assert second.coverage_qualified is False
        assert [h.at for h in second.history] == ["t1", "t2"]

    def test_weights_applied(self) -> None:
        coverage = CoverageSummary(pct=0.0, package_count=1)
        results = _results()
        sc = next_scorecard(None, build_metrics(results, coverage), coverage, results, 1,
                            "t", weights={"coverageLevel": 0.0})
        assert sc.overall == 80.0
