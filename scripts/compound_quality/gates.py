"""Gate evaluation.

Each enabled gate is evaluated independently, in configured order:

    pending -> pass | fail -> (fail and required) -> fail | waived

Gate string fields may contain ``${dotted.path}`` tokens resolved against
the run context::

    {root, qualityDir, commands: {typecheck, lint, test, build}, taskId, taskIds}

Gates with ``forEachTaskId`` run once per resolved task id; others run once
with the primary id (first resolved id, or ""). Any exception raised while
evaluating a gate becomes a ``fail`` result -- one broken gate never stops
the rest.
"""

from __future__ import annotations

import json
import logging
import re
import shlex
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from .models import (
    STATUS_FAIL,
    STATUS_PASS,
    STATUS_WAIVED,
    CommandGate,
    CommandResult,
    CustomScriptGate,
    FileExistsGate,
    Gate,
    GateResult,
    JsonSchemaGate,
    RegexGate,
    Waiver,
)
from .patterns import compile_flags
from .policy import PackRef, VerifyConfig
from .runner import run_command
from .schema import validate
from .waivers import find_waiver

log = logging.getLogger(__name__)

MAX_OUTPUT_CHARS = 20_000
ARTIFACT_VERSION = 1

_TOKEN = re.compile(r"\$\{([^}]+)\}")

Runner = Callable[[str | Path, str, str], CommandResult]
Outcome = tuple[bool, str, dict[str, Any]]


class InterpolationError(ValueError):
    """A ``${...}`` token names nothing in the run context."""


# ---------------------------------------------------------------------------
# Context + interpolation
# ---------------------------------------------------------------------------


def build_context(root: str | Path, quality_dir: str, commands: dict[str, str],
                  task_ids: list[str]) -> dict[str, Any]:
    """Run context shared by every gate; ``taskId`` is set per evaluation."""
    return {
        "root": str(root),
        "qualityDir": quality_dir,
        "commands": dict(commands),
        "taskIds": list(task_ids),
        "taskId": task_ids[0] if task_ids else "",
    }


def _lookup(context: dict[str, Any], dotted: str) -> Any:
    node: Any = context
    for part in dotted.strip().split("."):
        if isinstance(node, dict) and part in node:
            node = node[part]
        elif isinstance(node, list) and part.isdigit() and int(part) < len(node):
            node = node[int(part)]
        else:
            raise InterpolationError(f"unresolved token ${{{dotted}}}")
    return node


def _render(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (list, tuple)):
        return " ".join(_render(v) for v in value)
    if isinstance(value, dict):
        return json.dumps(value, sort_keys=True)
    return str(value)


def interpolate(template: str, context: dict[str, Any]) -> str:
    """Replace every ``${a.b.c}`` token; raises InterpolationError if one is unknown."""
    return _TOKEN.sub(lambda m: _render(_lookup(context, m.group(1))), template)


def _truncate(text: str) -> str:
    return text if len(text) <= MAX_OUTPUT_CHARS else text[:MAX_OUTPUT_CHARS]


# ---------------------------------------------------------------------------
# Per-type evaluators
# ---------------------------------------------------------------------------


def _run_commands(gate: Gate, commands: list[tuple[str, str]], root: Path,
                  runner: Runner) -> Outcome:
    """Run (task_id, command) pairs; pass only if every one exits 0."""
    runs: list[dict[str, Any]] = []
    for task_id, command in commands:
        result = runner(root, gate.id, command)
        runs.append({
            "taskId": task_id,
            "command": command,
            "exitCode": result.exit_code,
            "durationMs": result.duration_ms,
            "stdout": _truncate(result.stdout),
            "stderr": _truncate(result.stderr),
        })
    failed = [r for r in runs if r["exitCode"] != 0]
    if not failed:
        return True, "command exited 0", {"runs": runs}
    first = failed[0]
    where = f" for task {first['taskId']}" if first["taskId"] else ""
    return False, f"command exited {first['exitCode']}{where}", {"runs": runs}


def _eval_command(gate: CommandGate, contexts: list[dict[str, Any]],
                  root: Path, runner: Runner) -> Outcome:
    if not gate.command:
        return False, "no command configured", {}
    commands = [(ctx["taskId"], interpolate(gate.command, ctx)) for ctx in contexts]
    return _run_commands(gate, commands, root, runner)


def _eval_custom_script(gate: CustomScriptGate, contexts: list[dict[str, Any]],
                        root: Path, runner: Runner) -> Outcome:
    if not gate.script:
        return False, "no script configured", {}
    commands = []
    for ctx in contexts:
        parts = [interpolate(gate.script, ctx)]
        parts += [shlex.quote(interpolate(a, ctx)) for a in gate.args]
        commands.append((ctx["taskId"], " ".join(parts)))
    return _run_commands(gate, commands, root, runner)


def _eval_file_exists(gate: FileExistsGate, contexts: list[dict[str, Any]],
                      root: Path) -> Outcome:
    if not gate.paths:
        return False, "no paths configured", {}
    checked: list[str] = []
    missing: list[str] = []
    for ctx in contexts:
        for template in gate.paths:
            rel = interpolate(template, ctx)
            checked.append(rel)
            if not (root / rel).exists():
                missing.append(rel)
    details = {"checked": checked, "missing": missing}
    if missing:
        return False, "missing: " + ", ".join(missing), details
    return True, f"{len(checked)} path(s) present", details


def _eval_regex(gate: RegexGate, contexts: list[dict[str, Any]], root: Path) -> Outcome:
    if not gate.file or not gate.pattern:
        return False, "regex gate needs file and pattern", {}
    regex = re.compile(gate.pattern, compile_flags(gate.flags))
    files: list[dict[str, Any]] = []
    problems: list[str] = []
    for ctx in contexts:
        rel = interpolate(gate.file, ctx)
        path = root / rel
        if not path.is_file():
            files.append({"file": rel, "found": False, "matches": 0})
            problems.append(f"file not found: {rel}")
            continue
        count = sum(1 for _ in regex.finditer(path.read_text(encoding="utf-8", errors="replace")))
        files.append({"file": rel, "found": True, "matches": count})
        if count < gate.min_matches:
            problems.append(f"{rel}: {count} match(es), need {gate.min_matches}")
    details = {"pattern": gate.pattern, "minMatches": gate.min_matches, "files": files}
    if problems:
        return False, "; ".join(problems), details
    return True, f"pattern matched in {len(files)} file(s)", details


def _load_schema(gate: JsonSchemaGate, ctx: dict[str, Any], root: Path) -> dict[str, Any]:
    if gate.schema is not None:
        return gate.schema
    if not gate.schema_file:
        raise ValueError("no schema or schemaFile configured")
    path = root / interpolate(gate.schema_file, ctx)
    schema = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(schema, dict):
        raise ValueError(f"schema {path} is not an object")
    return schema


def _eval_json_schema(gate: JsonSchemaGate, contexts: list[dict[str, Any]],
                      root: Path) -> Outcome:
    if not gate.data_file:
        return False, "no dataFile configured", {}
    schema = _load_schema(gate, contexts[0], root)
    tasks: list[dict[str, Any]] = []
    for ctx in contexts:
        rel = interpolate(gate.data_file, ctx)
        path = root / rel
        entry: dict[str, Any] = {"taskId": ctx["taskId"], "file": rel}
        if not path.is_file():
            entry.update(valid=False, errors=[f"data file not found: {rel}"])
        else:
            try:
                data = json.loads(path.read_text(encoding="utf-8"))
            except (OSError, ValueError) as exc:
                entry.update(valid=False, errors=[f"cannot parse {rel}: {exc}"])
            else:
                errors = validate(schema, data)
                entry.update(valid=not errors, errors=errors)
        tasks.append(entry)
    invalid = [t for t in tasks if not t["valid"]]
    if invalid:
        return False, f"{len(invalid)} of {len(tasks)} data file(s) invalid", {"tasks": tasks}
    return True, f"{len(tasks)} data file(s) valid", {"tasks": tasks}


# ---------------------------------------------------------------------------
# Gate driver
# ---------------------------------------------------------------------------


def _task_contexts(gate: Gate, context: dict[str, Any]) -> list[dict[str, Any]]:
    task_ids: list[str] = context["taskIds"]
    if gate.for_each_task_id:
        return [{**context, "taskId": t} for t in task_ids]
    return [{**context, "taskId": task_ids[0] if task_ids else ""}]


def _dispatch(gate: Gate, contexts: list[dict[str, Any]], root: Path,
              runner: Runner) -> Outcome:
    if isinstance(gate, CommandGate):
        return _eval_command(gate, contexts, root, runner)
    if isinstance(gate, CustomScriptGate):
        return _eval_custom_script(gate, contexts, root, runner)
    if isinstance(gate, FileExistsGate):
        return _eval_file_exists(gate, contexts, root)
    if isinstance(gate, RegexGate):
        return _eval_regex(gate, contexts, root)
    if isinstance(gate, JsonSchemaGate):
        return _eval_json_schema(gate, contexts, root)
    return False, f"unsupported gate type: {gate.type}", {}


def evaluate_gate(gate: Gate, context: dict[str, Any], root: str | Path,
                  runner: Runner = run_command) -> GateResult:
    """Evaluate one gate to pass/fail (waivers are applied separately)."""
    start = time.monotonic()
    contexts = _task_contexts(gate, context)
    task_ids = [c["taskId"] for c in contexts if c["taskId"]]
    try:
        if not contexts:
            passed, message, details = False, "gate runs per task id but none were resolved", {}
        else:
            passed, message, details = _dispatch(gate, contexts, Path(root), runner)
    except Exception as exc:  # noqa: BLE001
        log.warning("Gate %s raised: %s", gate.id, exc, exc_info=log.isEnabledFor(logging.DEBUG))
        passed, message, details = False, f"error: {exc}", {"exception": type(exc).__name__}
    duration_ms = int((time.monotonic() - start) * 1000)
    log.debug("Gate %s: %s (%s)", gate.id, "pass" if passed else "fail", message)
    return GateResult(
        id=gate.id,
        type=gate.type,
        required=gate.required,
        status=STATUS_PASS if passed else STATUS_FAIL,
        message=message,
        task_ids=task_ids,
        duration_ms=duration_ms,
        details=details,
    )


def apply_waiver(result: GateResult, waivers: list[Waiver], task_ids: list[str],
                 now: datetime | None = None) -> GateResult:
    """Mark a failed required gate ``waived`` when a waiver covers it."""
    if result.status != STATUS_FAIL or not result.required:
        return result
    waiver = find_waiver(waivers, result.id, task_ids, now)
    if waiver is None:
        return result
    log.info("Gate %s waived (%s)", result.id, waiver.reason or "no reason given")
    result.status = STATUS_WAIVED
    result.waiver = waiver.to_dict()
    return result


def evaluate_gates(gates: list[Gate], context: dict[str, Any], root: str | Path,
                   waivers: list[Waiver], runner: Runner = run_command,
                   now: datetime | None = None) -> list[GateResult]:
    """Evaluate every enabled gate in order, then apply waivers."""
    results: list[GateResult] = []
    for gate in gates:
        if not gate.enabled:
            log.debug("Skipping disabled gate %s", gate.id)
            continue
        result = evaluate_gate(gate, context, root, runner)
        results.append(apply_waiver(result, waivers, context["taskIds"], now))
    return results


def summarize(results: list[GateResult]) -> dict[str, int]:
    """Gate counts for the verification artifact."""
    return {
        "total": len(results),
        "passed": sum(1 for r in results if r.status == STATUS_PASS),
        "failed": sum(1 for r in results if r.status == STATUS_FAIL),
        "waived": sum(1 for r in results if r.status == STATUS_WAIVED),
    }


# ---------------------------------------------------------------------------
# Verification
# ---------------------------------------------------------------------------


@dataclass
class Verification:
    """Outcome of one verify invocation; serialises to verification.json."""

    passed: bool
    generated_at: str
    task_ids: list[str] = field(default_factory=list)
    policy_packs: list[PackRef] = field(default_factory=list)
    results: list[GateResult] = field(default_factory=list)
    missing_task_ids: bool = False

    @property
    def gate_counts(self) -> dict[str, int]:
        return summarize(self.results)

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": ARTIFACT_VERSION,
            "generatedAt": self.generated_at,
            "passed": self.passed,
            "taskIds": list(self.task_ids),
            "policyPacks": [p.to_dict() for p in self.policy_packs],
            "gateCounts": self.gate_counts,
            "missingTaskIds": self.missing_task_ids,
            "results": [r.to_dict() for r in self.results],
        }


def run_verification(verify: VerifyConfig, context: dict[str, Any], root: str | Path,
                     waivers: list[Waiver], runner: Runner = run_command,
                     now: datetime | None = None) -> Verification:
    """Evaluate the effective gate list and decide pass/fail.

    Fails when any required gate ends in ``fail``, or when task ids are
    required and none were resolved.
    """
    current = now or datetime.now(timezone.utc)
    results = evaluate_gates(verify.gates, context, root, waivers, runner, current)
    missing = verify.require_task_id and not context["taskIds"]
    if missing:
        log.warning("Verification requires a task id but none was resolved")
    passed = not missing and not any(r.blocking for r in results)
    return Verification(
        passed=passed,
        generated_at=current.isoformat(),
        task_ids=list(context["taskIds"]),
        policy_packs=list(verify.policy_packs),
        results=results,
        missing_task_ids=missing,
    )
