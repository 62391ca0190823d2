"""Data models for compound quality.

Zero external dependencies -- pure Python dataclasses.

Persisted records serialise to camelCase JSON (the on-disk format shared
with other tooling); attributes stay snake_case:
  - CommandResult: one executed shell command (ephemeral)
  - Metrics: per-run metrics snapshot (ephemeral, never persisted raw)
  - ComponentScores / HistoryEntry / Scorecard: maps to scorecard.json
  - PatternRule / PatternRecord / PatternState: maps to patterns.json
  - Gate and its variants: one verification gate, keyed by ``type``
  - GateResult: outcome of one gate, written into verification.json
  - Waiver: scoped, optionally expiring exemption for a failed gate
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

SCORECARD_VERSION = 1
PATTERNS_VERSION = 1
HISTORY_LIMIT = 50

RECOMMENDATION_NONE = "none"
RECOMMENDATION_CLAUDE_RULE = "claude_rule"
RECOMMENDATION_LINT_RULE = "lint_rule"

STATUS_PASS = "pass"
STATUS_FAIL = "fail"
STATUS_WAIVED = "waived"


# ---------------------------------------------------------------------------
# Check execution
# ---------------------------------------------------------------------------


@dataclass
class CommandResult:
    """Outcome of one shell command run by the runner."""

    name: str
    command: str
    exit_code: int = 1
    duration_ms: int = 0
    stdout: str = ""
    stderr: str = ""

    @property
    def output(self) -> str:
        """Stdout and stderr joined the way pattern/metric parsing sees them."""
        return f"{self.stdout}\n{self.stderr}"

    def to_summary(self) -> dict[str, Any]:
        """Compact form stored in the scorecard (no captured output)."""
        return {
            "name": self.name,
            "exitCode": self.exit_code,
            "durationMs": self.duration_ms,
        }


@dataclass
class CoverageSummary:
    """Average line coverage across the packages that produced a summary."""

    pct: float = 0.0
    package_count: int = 0


@dataclass
class Metrics:
    """Per-run metrics snapshot derived from check output and coverage."""

    type_errors: int = 0
    lint_violations: int = 0
    tests_passed: int = 0
    tests_failed: int = 0
    coverage_pct: float = 0.0
    build_exit_code: int = 1
    test_exit_code: int = 1
    build_time_ms: int = 0

    def to_dict(self) -> dict[str, Any]:
        """Serialise the persisted subset for scorecard.json."""
        return {
            "typeErrors": self.type_errors,
            "lintViolations": self.lint_violations,
            "testsPassed": self.tests_passed,
            "testsFailed": self.tests_failed,
            "coveragePct": self.coverage_pct,
            "buildTimeMs": self.build_time_ms,
        }


# ---------------------------------------------------------------------------
# Scorecard
# ---------------------------------------------------------------------------


@dataclass
class ComponentScores:
    """The five 0-100 component scores."""

    type_safety: float = 0.0
    test_health: float = 0.0
    lint_compliance: float = 0.0
    coverage_level: float = 0.0
    build_stability: float = 0.0

    def to_dict(self) -> dict[str, float]:
        """Serialise keyed by weight name."""
        return {
            "typeSafety": self.type_safety,
            "testHealth": self.test_health,
            "lintCompliance": self.lint_compliance,
            "coverageLevel": self.coverage_level,
            "buildStability": self.build_stability,
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> ComponentScores:
        """Reconstruct from scorecard.json."""
        return cls(
            type_safety=float(d.get("typeSafety", 0)),
            test_health=float(d.get("testHealth", 0)),
            lint_compliance=float(d.get("lintCompliance", 0)),
            coverage_level=float(d.get("coverageLevel", 0)),
            build_stability=float(d.get("buildStability", 0)),
        )


@dataclass
class HistoryEntry:
    """One run in the bounded scorecard history."""

    at: str
    score: float = 0.0
    coverage_pct: float = 0.0
    type_errors: int = 0
    lint_violations: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "at": self.at,
            "score": self.score,
            "coveragePct": self.coverage_pct,
            "typeErrors": self.type_errors,
            "lintViolations": self.lint_violations,
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> HistoryEntry:
        return cls(
            at=str(d.get("at", "")),
            score=float(d.get("score", 0)),
            coverage_pct=float(d.get("coveragePct", 0)),
            type_errors=int(d.get("typeErrors", 0)),
            lint_violations=int(d.get("lintViolations", 0)),
        )


@dataclass
class Scorecard:
    """Persisted per-project scorecard.

    Maps to ``<qualityDir>/scorecard.json``. Rewritten in full once per run.
    """

    updated_at: str = ""
    overall: float = 0.0
    components: ComponentScores = field(default_factory=ComponentScores)
    metrics: dict[str, Any] = field(default_factory=dict)
    coverage_floor: float = 0.0
    coverage_qualified: bool = False
    coverage_package_count: int = 0
    action_items: list[str] = field(default_factory=list)
    command_results: list[dict[str, Any]] = field(default_factory=list)
    history: list[HistoryEntry] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Serialise to the scorecard.json document."""
        return {
            "version": SCORECARD_VERSION,
            "updatedAt": self.updated_at,
            "score": {
                "overall": self.overall,
                "components": self.components.to_dict(),
            },
            "metrics": dict(self.metrics),
            "thresholds": {
                "coverageFloor": self.coverage_floor,
                "coverageQualified": self.coverage_qualified,
                "coveragePackageCount": self.coverage_package_count,
            },
            "actionItems": list(self.action_items),
            "commandResults": list(self.command_results),
            "history": [h.to_dict() for h in self.history],
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> Scorecard:
        """Reconstruct from scorecard.json, tolerating missing sections."""
        score = d.get("score") if isinstance(d.get("score"), dict) else {}
        thresholds = d.get("thresholds") if isinstance(d.get("thresholds"), dict) else {}
        components = score.get("components") if isinstance(score.get("components"), dict) else {}
        history_raw = d.get("history") if isinstance(d.get("history"), list) else []
        return cls(
            updated_at=str(d.get("updatedAt", "")),
            overall=float(score.get("overall", 0)),
            components=ComponentScores.from_dict(components),
            metrics=dict(d.get("metrics") or {}),
            coverage_floor=float(thresholds.get("coverageFloor", 0)),
            coverage_qualified=bool(thresholds.get("coverageQualified", False)),
            coverage_package_count=int(thresholds.get("coveragePackageCount", 0)),
            action_items=[str(a) for a in d.get("actionItems") or []],
            command_results=list(d.get("commandResults") or []),
            history=[HistoryEntry.from_dict(h) for h in history_raw if isinstance(h, dict)],
        )


# ---------------------------------------------------------------------------
# Patterns
# ---------------------------------------------------------------------------


@dataclass
class PatternRule:
    """A named regular expression counted in check output."""

    key: str
    pattern: str
    flags: str = "gi"

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> PatternRule:
        return cls(
            key=str(d.get("key", "")),
            pattern=str(d.get("pattern", "")),
            flags=str(d.get("flags", "gi")),
        )


@dataclass
class PatternRecord:
    """Cumulative sightings of one pattern (never reset)."""

    count: int = 0
    last_seen_at: str = ""
    recommendation: str = RECOMMENDATION_NONE

    def to_dict(self) -> dict[str, Any]:
        return {
            "count": self.count,
            "lastSeenAt": self.last_seen_at,
            "recommendation": self.recommendation,
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> PatternRecord:
        return cls(
            count=int(d.get("count", 0)),
            last_seen_at=str(d.get("lastSeenAt", "")),
            recommendation=str(d.get("recommendation", RECOMMENDATION_NONE)),
        )


@dataclass
class PatternState:
    """All tracked patterns. Maps to ``<qualityDir>/patterns.json``."""

    updated_at: str = ""
    patterns: dict[str, PatternRecord] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": PATTERNS_VERSION,
            "updatedAt": self.updated_at,
            "patterns": {k: v.to_dict() for k, v in self.patterns.items()},
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> PatternState:
        raw = d.get("patterns") if isinstance(d.get("patterns"), dict) else {}
        return cls(
            updated_at=str(d.get("updatedAt", "")),
            patterns={
                str(k): PatternRecord.from_dict(v)
                for k, v in raw.items()
                if isinstance(v, dict)
            },
        )


@dataclass
class Promotion:
    """A pattern crossing into a stricter recommendation tier."""

    pattern: str
    recommendation: str

    def to_dict(self) -> dict[str, str]:
        return {"pattern": self.pattern, "recommendation": self.recommendation}


# ---------------------------------------------------------------------------
# Gates
# ---------------------------------------------------------------------------


@dataclass
class Gate:
    """Fields shared by every gate type."""

    id: str
    type: str = ""
    required: bool = True
    enabled: bool = True
    for_each_task_id: bool = False
    description: str = ""


@dataclass
class CommandGate(Gate):
    """Passes iff the interpolated shell command exits 0."""

    type: str = "command"
    command: str = ""


@dataclass
class CustomScriptGate(Gate):
    """Runs a shell script template plus quoted arguments; passes iff it exits 0."""

    type: str = "custom_script"
    script: str = ""
    args: list[str] = field(default_factory=list)


@dataclass
class FileExistsGate(Gate):
    """Passes iff every configured path exists for every task id."""

    type: str = "file_exists"
    paths: list[str] = field(default_factory=list)


@dataclass
class RegexGate(Gate):
    """Passes iff ``pattern`` matches at least ``min_matches`` times in ``file``."""

    type: str = "regex"
    file: str = ""
    pattern: str = ""
    flags: str = ""
    min_matches: int = 1


@dataclass
class JsonSchemaGate(Gate):
    """Validates each task's data file against a structural schema."""

    type: str = "json_schema"
    data_file: str = ""
    schema: dict[str, Any] | None = None
    schema_file: str = ""


@dataclass
class UnsupportedGate(Gate):
    """Any gate whose ``type`` is not one of the known kinds."""


class GateDefinitionError(ValueError):
    """A gate definition has a field of the wrong type."""


def _as_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return [str(v) for v in value]
    return [str(value)]


def _flag(d: dict[str, Any], key: str, default: bool) -> bool:
    value = d.get(key, default)
    if not isinstance(value, bool):
        raise GateDefinitionError(f'gate "{d.get("id", "")}": {key} must be true or false')
    return value


def _count(d: dict[str, Any], key: str, default: int) -> int:
    value = d.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise GateDefinitionError(
            f'gate "{d.get("id", "")}": {key} must be a non-negative integer')
    return value


def parse_gate(d: dict[str, Any]) -> Gate:
    """Build the typed gate variant for a merged gate definition.

    Raises ``GateDefinitionError`` when a flag is not a boolean or
    ``minMatches`` is not an integer.
    """
    common: dict[str, Any] = {
        "id": str(d.get("id", "")),
        "required": _flag(d, "required", True),
        "enabled": _flag(d, "enabled", True),
        "for_each_task_id": _flag(d, "forEachTaskId", False),
        "description": str(d.get("description", "")),
    }
    gate_type = d.get("type")
    if gate_type == "command":
        return CommandGate(command=str(d.get("command", "")), **common)
    if gate_type == "custom_script":
        return CustomScriptGate(
            script=str(d.get("script", d.get("command", ""))),
            args=_as_list(d.get("args")),
            **common,
        )
    if gate_type == "file_exists":
        paths = d.get("paths", d.get("path"))
        return FileExistsGate(paths=_as_list(paths), **common)
    if gate_type == "regex":
        return RegexGate(
            file=str(d.get("file", "")),
            pattern=str(d.get("pattern", "")),
            flags=str(d.get("flags", "")),
            min_matches=_count(d, "minMatches", 1),
            **common,
        )
    if gate_type == "json_schema":
        schema = d.get("schema")
        return JsonSchemaGate(
            data_file=str(d.get("dataFile", "")),
            schema=schema if isinstance(schema, dict) else None,
            schema_file=str(d.get("schemaFile", "")),
            **common,
        )
    return UnsupportedGate(type=str(gate_type), **common)


@dataclass
class GateResult:
    """Outcome of one evaluated gate."""

    id: str
    type: str
    required: bool = True
    status: str = STATUS_FAIL
    message: str = ""
    task_ids: list[str] = field(default_factory=list)
    duration_ms: int = 0
    details: dict[str, Any] = field(default_factory=dict)
    waiver: dict[str, Any] | None = None

    @property
    def blocking(self) -> bool:
        """A required gate left in ``fail`` fails the verification."""
        return self.required and self.status == STATUS_FAIL

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "id": self.id,
            "type": self.type,
            "required": self.required,
            "status": self.status,
            "message": self.message,
            "taskIds": list(self.task_ids),
            "durationMs": self.duration_ms,
            "details": self.details,
        }
        if self.waiver is not None:
            out["waiver"] = self.waiver
        return out


# ---------------------------------------------------------------------------
# Waivers
# ---------------------------------------------------------------------------


@dataclass
class Waiver:
    """Exemption for a failing required gate.

    ``gate_id`` of ``*`` matches any gate; ``task_id`` of ``None``/``*``
    matches any task. Expired waivers never match.
    """

    gate_id: str
    task_id: str | None = None
    expires_at: datetime | None = None
    reason: str = ""
    approved_by: str = ""

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"gateId": self.gate_id}
        if self.task_id is not None:
            out["taskId"] = self.task_id
        if self.expires_at is not None:
            out["expiresAt"] = self.expires_at.isoformat()
        if self.reason:
            out["reason"] = self.reason
        if self.approved_by:
            out["approvedBy"] = self.approved_by
        return out
