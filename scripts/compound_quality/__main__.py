"""CLI entry point for compound quality.

Usage:
  python -m compound_quality reflect [--config PATH] [--task-id ID] [--json]
  python -m compound_quality verify  [--config PATH] [--task-id ID] [--json]
  python -m compound_quality status  [--config PATH]
  python -m compound_quality reset   [--config PATH]

``reflect`` runs the four configured checks (typecheck, lint, test, build),
updates the scorecard and pattern state, and evaluates verification gates
when ``verify.enabled`` is set. ``verify`` evaluates gates only.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

from compound_quality.config import (
    DEFAULT_CONFIG_FILE,
    REQUIRED_COMMAND_NAMES,
    ConfigError,
    QualityConfig,
    load_config,
)
from compound_quality.coverage import read_coverage
from compound_quality.gates import (
    InterpolationError,
    Verification,
    build_context,
    interpolate,
    run_verification,
)
from compound_quality.models import STATUS_PASS, CommandResult, Waiver
from compound_quality.patterns import detect_patterns, next_pattern_state
from compound_quality.policy import VerifyConfig, resolve_verify_config
from compound_quality.runner import run_command
from compound_quality.scorecard import build_metrics, next_scorecard
from compound_quality.store import (
    is_paused,
    load_patterns,
    load_scorecard,
    load_verification,
    reset_state,
    save_patterns,
    save_scorecard,
    save_verification,
)
from compound_quality.task_ids import discover_task_ids
from compound_quality.waivers import load_waivers

log = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Shared setup
# ---------------------------------------------------------------------------


def _prepare_verification(
    config: QualityConfig, verify: VerifyConfig, cli_task_id: str | None,
) -> tuple[dict[str, Any], list[Waiver]]:
    """Resolve task ids, build the gate context and load waivers.

    Everything here can fail with a ConfigError, so it runs before any
    check or gate executes.
    """
    task_ids = discover_task_ids(
        verify.task_id_sources,
        verify.task_id_pattern,
        cli_value=cli_task_id,
        env_var=verify.task_id_env_var,
        repo=config.root,
    )
    context = build_context(config.root, config.quality_dir, config.commands, task_ids)
    if not verify.waivers_file:
        return context, []
    try:
        waivers_path = config.root / interpolate(verify.waivers_file, context)
    except InterpolationError as exc:
        raise ConfigError(f"verify.waiversFile: {exc}") from exc
    return context, load_waivers(waivers_path)


def _print_verification(verification: Verification) -> None:
    counts = verification.gate_counts
    state = "PASSED" if verification.passed else "FAILED"
    print(
        f"Verification {state}: {counts['passed']} passed, {counts['failed']} failed, "
        f"{counts['waived']} waived",
        file=sys.stderr,
    )
    if verification.missing_task_ids:
        print("  No task id resolved (task id required)", file=sys.stderr)
    for result in verification.results:
        if result.status != STATUS_PASS:
            marker = "" if result.required else " (optional)"
            print(f"  [{result.status}] {result.id}{marker}: {result.message}",
                  file=sys.stderr)


def _now() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


def cmd_reflect(args: argparse.Namespace) -> int:
    """Run checks, update scorecard + patterns, and verify when enabled."""
    config = load_config(args.config)
    quality_path = config.quality_path
    if is_paused(quality_path):
        print(f"Compound quality is paused ({quality_path}); skipping run.", file=sys.stderr)
        return 0

    verify = resolve_verify_config(config)
    context: dict[str, Any] = {}
    waivers: list[Waiver] = []
    if verify.enabled:
        context, waivers = _prepare_verification(config, verify, args.task_id)

    results: list[CommandResult] = []
    for name in REQUIRED_COMMAND_NAMES:
        results.append(run_command(config.root, name, config.commands[name]))

    coverage = read_coverage(config.root, config.package_dirs, config.summary_file)
    metrics = build_metrics(results, coverage)
    run_at = _now()
    now = run_at.isoformat()

    scorecard = next_scorecard(
        load_scorecard(quality_path), metrics, coverage, results,
        config.expected_packages, now, config.weights,
    )
    combined = "\n".join(r.output for r in results)
    patterns, promotions = next_pattern_state(
        load_patterns(quality_path),
        detect_patterns(combined, config.pattern_rules),
        config.thresholds,
        now,
    )

    verification = None
    if verify.enabled:
        verification = run_verification(verify, context, config.root, waivers, now=run_at)

    save_scorecard(quality_path, scorecard)
    save_patterns(quality_path, patterns)
    if verification is not None:
        save_verification(quality_path, verification.to_dict())

    failed_commands = [r.name for r in results if r.exit_code != 0]

    if args.json:
        output = {
            "overall": scorecard.overall,
            "components": scorecard.components.to_dict(),
            "coverageFloor": scorecard.coverage_floor,
            "coverageQualified": scorecard.coverage_qualified,
            "actionItems": scorecard.action_items,
            "failedCommands": failed_commands,
            "promotions": [p.to_dict() for p in promotions],
            "verification": verification.to_dict() if verification else None,
        }
        print(json.dumps(output, indent=2))
    else:
        print(f"Quality score: {scorecard.overall}/100", file=sys.stderr)
        print(
            f"  Coverage: {metrics.coverage_pct}% (floor {scorecard.coverage_floor}%"
            f"{', qualified' if scorecard.coverage_qualified else ''})",
            file=sys.stderr,
        )
        if failed_commands:
            print(f"  Failed checks: {', '.join(failed_commands)}", file=sys.stderr)
        for item in scorecard.action_items:
            print(f"  - {item}", file=sys.stderr)
        for promotion in promotions:
            print(f"  Pattern {promotion.pattern} -> {promotion.recommendation}",
                  file=sys.stderr)
        if verification is not None:
            _print_verification(verification)

    if failed_commands:
        return 1
    if verification is not None and not verification.passed:
        return 1
    return 0


def cmd_verify(args: argparse.Namespace) -> int:
    """Evaluate verification gates only (no checks, no scorecard update)."""
    config = load_config(args.config)
    quality_path = config.quality_path
    if is_paused(quality_path):
        print(f"Compound quality is paused ({quality_path}); skipping run.", file=sys.stderr)
        return 0

    verify = resolve_verify_config(config)
    context, waivers = _prepare_verification(config, verify, args.task_id)
    verification = run_verification(verify, context, config.root, waivers, now=_now())
    save_verification(quality_path, verification.to_dict())

    if args.json:
        print(json.dumps(verification.to_dict(), indent=2))
    else:
        _print_verification(verification)
    return 0 if verification.passed else 1


def cmd_status(args: argparse.Namespace) -> int:
    """Print the persisted scorecard summary as JSON."""
    config = load_config(args.config)
    quality_path = config.quality_path
    scorecard = load_scorecard(quality_path)
    if scorecard is None:
        print("No scorecard found. Run 'compound-quality reflect' first.", file=sys.stderr)
        return 1

    verification = load_verification(quality_path)
    output = {
        "updatedAt": scorecard.updated_at,
        "overall": scorecard.overall,
        "components": scorecard.components.to_dict(),
        "coverageFloor": scorecard.coverage_floor,
        "coverageQualified": scorecard.coverage_qualified,
        "actionItems": scorecard.action_items,
        "runs": len(scorecard.history),
        "paused": is_paused(quality_path),
        "verification": {
            "passed": verification.get("passed"),
            "generatedAt": verification.get("generatedAt"),
            "gateCounts": verification.get("gateCounts"),
        } if verification else None,
    }
    print(json.dumps(output, indent=2))
    return 0


def cmd_reset(args: argparse.Namespace) -> int:
    """Delete persisted scorecard, pattern and verification state."""
    config = load_config(args.config)
    removed = reset_state(config.quality_path)
    if removed:
        for path in removed:
            print(f"Deleted {path}", file=sys.stderr)
    else:
        print(f"No state found in {config.quality_path}", file=sys.stderr)
    return 0


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------


def _add_common(parser: argparse.ArgumentParser, task_id: bool = False,
                json_output: bool = False) -> None:
    parser.add_argument("--config", default=DEFAULT_CONFIG_FILE,
                        help=f"Config file (default: {DEFAULT_CONFIG_FILE})")
    if task_id:
        parser.add_argument("--task-id", dest="task_id", default=None,
                            help="Task id(s) to verify against")
    if json_output:
        parser.add_argument("--json", action="store_true", help="JSON output")


def main(argv: list[str] | None = None) -> int:
    """CLI entry point for compound quality."""
    parser = argparse.ArgumentParser(
        prog="compound-quality",
        description="Compounding quality scorecard and verification gates",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable debug logging",
    )

    sub = parser.add_subparsers(dest="command")

    # reflect
    reflect_parser = sub.add_parser("reflect", help="Run checks and update the scorecard")
    _add_common(reflect_parser, task_id=True, json_output=True)

    # verify
    verify_parser = sub.add_parser("verify", help="Evaluate verification gates")
    _add_common(verify_parser, task_id=True, json_output=True)

    # status
    status_parser = sub.add_parser("status", help="Show the persisted scorecard")
    _add_common(status_parser)

    # reset
    reset_parser = sub.add_parser("reset", help="Delete persisted state")
    _add_common(reset_parser)

    args = parser.parse_args(argv)

    if args.verbose:
        logging.basicConfig(level=logging.DEBUG)
    else:
        logging.basicConfig(level=logging.WARNING)

    try:
        if args.command == "reflect":
            return cmd_reflect(args)
        if args.command == "verify":
            return cmd_verify(args)
        if args.command == "status":
            return cmd_status(args)
        if args.command == "reset":
            return cmd_reset(args)
    except ConfigError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    parser.print_help()
    return 1


if __name__ == "__main__":
    sys.exit(main())
