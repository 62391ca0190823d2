"""Check output classification -- regex heuristics only.

Turns raw typecheck/lint/test output into counts. The heuristics track the
phrasing of common tools (tsc, mypy, ruff/biome/eslint, pytest, jest,
vitest), so they sit behind a single callable that the scorecard engine
accepts as a parameter:

    classify(results: list[CommandResult]) -> OutputCounts

Swapping the classifier never touches scoring, the ratchet, or patterns.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable
from dataclasses import dataclass

from .models import CommandResult

log = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Regex patterns
# ---------------------------------------------------------------------------

_ANSI_PATTERN = re.compile(r"\x1b\[[0-?]*[ -/]*[@-~]")

# tsc: "src/a.ts(3,5): error TS2322: ..."
_TS_ERROR = re.compile(r"error TS\d+:")
# mypy: "pkg/a.py:12: error: ..." (optional column)
_MYPY_ERROR = re.compile(r"^[^\s:][^:\n]*:\d+(?::\d+)?: error:", re.MULTILINE)

# ruff / biome / eslint summary line
_LINT_FOUND = re.compile(r"Found\s+(\d+)\s+errors?", re.IGNORECASE)
_LINT_ERROR_WORD = re.compile(r"\berror\b", re.IGNORECASE)
_LINT_NO_ERRORS = re.compile(r"\bno errors?\b", re.IGNORECASE)

# jest "Tests:  1 failed, 5 passed, 6 total" / vitest "Tests  5 passed (5)"
_JS_TESTS_LINE = re.compile(r"^\s*Tests:?\s+\d", re.IGNORECASE)
# pytest "==== 2 failed, 10 passed in 0.52s ====" or "-q" form without rules
_PYTEST_SUMMARY = re.compile(r"^\s*=*\s*\d+ \w+.*\bin [\d.]+s\b")
_PASSED = re.compile(r"(\d+)\s+passed", re.IGNORECASE)
_FAILED = re.compile(r"(\d+)\s+failed", re.IGNORECASE)
_PYTEST_ERRORS = re.compile(r"(\d+)\s+errors?\b", re.IGNORECASE)


@dataclass
class OutputCounts:
    """Counts a classifier extracts from check output."""

    type_errors: int = 0
    lint_violations: int = 0
    tests_passed: int = 0
    tests_failed: int = 0


Classifier = Callable[[list[CommandResult]], OutputCounts]


# ---------------------------------------------------------------------------
# Parsers
# ---------------------------------------------------------------------------


def strip_ansi(text: str) -> str:
    """Remove terminal colour/cursor escape sequences."""
    return _ANSI_PATTERN.sub("", text)


def parse_type_errors(output: str) -> int:
    """Count type-checker diagnostics (tsc and mypy styles)."""
    normalized = strip_ansi(output)
    return len(_TS_ERROR.findall(normalized)) + len(_MYPY_ERROR.findall(normalized))


def parse_lint_violations(output: str, exit_code: int) -> int:
    """Count lint violations.

    Prefers an explicit "Found N errors" summary; a clean exit means zero;
    otherwise falls back to counting lines that mention an error.
    """
    normalized = strip_ansi(output)
    exact = _LINT_FOUND.search(normalized)
    if exact:
        return int(exact.group(1))
    if exit_code == 0:
        return 0
    return sum(
        1 for line in normalized.split("\n")
        if _LINT_ERROR_WORD.search(line) and not _LINT_NO_ERRORS.search(line)
    )


def _first_int(pattern: re.Pattern[str], line: str) -> int:
    m = pattern.search(line)
    return int(m.group(1)) if m else 0


def parse_tests(output: str) -> tuple[int, int]:
    """Sum passed/failed counts from test-runner summary lines.

    Returns (passed, failed). pytest collection errors count as failures.
    """
    passed = 0
    failed = 0
    for line in strip_ansi(output).split("\n"):
        if _JS_TESTS_LINE.search(line):
            passed += _first_int(_PASSED, line)
            failed += _first_int(_FAILED, line)
            continue
        if _PYTEST_SUMMARY.search(line) and (
            _PASSED.search(line) or _FAILED.search(line) or _PYTEST_ERRORS.search(line)
        ):
            passed += _first_int(_PASSED, line)
            failed += _first_int(_FAILED, line) + _first_int(_PYTEST_ERRORS, line)
    return passed, failed


# ---------------------------------------------------------------------------
# Default classifier
# ---------------------------------------------------------------------------


def _find(results: list[CommandResult], name: str) -> CommandResult | None:
    return next((r for r in results if r.name == name), None)


def classify_output(results: list[CommandResult]) -> OutputCounts:
    """Default classifier over the four check commands.

    Type errors and test counts are read from the combined output of every
    command; lint violations only from the ``lint`` command.
    """
    combined = "\n".join(r.output for r in results)
    lint = _find(results, "lint")
    lint_output = lint.output if lint else ""
    lint_exit = lint.exit_code if lint else 1
    passed, failed = parse_tests(combined)
    counts = OutputCounts(
        type_errors=parse_type_errors(combined),
        lint_violations=parse_lint_violations(lint_output, lint_exit),
        tests_passed=passed,
        tests_failed=failed,
    )
    log.debug("Classified output: %s", counts)
    return counts
