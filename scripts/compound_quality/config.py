"""Repository configuration: loading, validation, and defaults.

The config is a JSON document (default ``.compound-quality.json`` at the
repo root). Problems found here are configuration errors: they are fatal
and surface before any check command runs.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .models import PatternRule
from .patterns import (
    DEFAULT_CLAUDE_RULE_THRESHOLD,
    DEFAULT_LINT_RULE_THRESHOLD,
    DEFAULT_PATTERN_RULES,
    Thresholds,
)
from .scorecard import DEFAULT_WEIGHTS

log = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = ".compound-quality.json"
DEFAULT_QUALITY_DIR = ".quality"
DEFAULT_SUMMARY_FILE = "coverage/coverage-summary.json"
REQUIRED_COMMAND_NAMES = ("typecheck", "lint", "test", "build")


class ConfigError(ValueError):
    """Invalid or missing configuration; aborts the run before any check."""


@dataclass
class QualityConfig:
    """Normalised repo configuration with defaults filled in."""

    root: Path
    commands: dict[str, str]
    package_dirs: list[str]
    quality_dir: str = DEFAULT_QUALITY_DIR
    summary_file: str = DEFAULT_SUMMARY_FILE
    expected_packages: int = 0
    pattern_rules: list[PatternRule] = field(default_factory=list)
    thresholds: Thresholds = field(default_factory=Thresholds)
    weights: dict[str, float] = field(default_factory=lambda: dict(DEFAULT_WEIGHTS))
    policy_packs: list[str] = field(default_factory=list)
    verify: dict[str, Any] = field(default_factory=dict)

    @property
    def quality_path(self) -> Path:
        """Absolute quality directory."""
        return self.root / self.quality_dir


def _require_int(value: Any, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigError(f"{name} must be an integer")
    return value


def _normalize_commands(raw: Any) -> dict[str, str]:
    commands = raw if isinstance(raw, dict) else {}
    out: dict[str, str] = {}
    for name in REQUIRED_COMMAND_NAMES:
        cmd = commands.get(name)
        if not cmd or not isinstance(cmd, str):
            raise ConfigError(f'Missing required command config for "{name}"')
        out[name] = cmd
    return out


def _normalize_weights(raw: Any) -> dict[str, float]:
    weights = dict(DEFAULT_WEIGHTS)
    if raw is None:
        return weights
    if not isinstance(raw, dict):
        raise ConfigError("weights must be an object")
    for name, value in raw.items():
        if name not in DEFAULT_WEIGHTS:
            log.warning("Ignoring unknown weight %r", name)
            continue
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ConfigError(f"weights.{name} must be a number")
        weights[name] = float(value)
    return weights


def _normalize_patterns(raw: Any) -> tuple[list[PatternRule], Thresholds]:
    patterns = raw if isinstance(raw, dict) else {}
    rules_raw = patterns.get("rules")
    if isinstance(rules_raw, list):
        rules = [PatternRule.from_dict(r) for r in rules_raw if isinstance(r, dict)]
    else:
        rules = list(DEFAULT_PATTERN_RULES)
    thresholds = Thresholds(
        claude_rule=_require_int(
            patterns.get("claudeRuleThreshold", DEFAULT_CLAUDE_RULE_THRESHOLD),
            "patterns.claudeRuleThreshold"),
        lint_rule=_require_int(
            patterns.get("lintRuleThreshold", DEFAULT_LINT_RULE_THRESHOLD),
            "patterns.lintRuleThreshold"),
    )
    return rules, thresholds


def normalize_config(user_config: dict[str, Any], root: str | Path) -> QualityConfig:
    """Validate a parsed config document and fill defaults."""
    if not isinstance(user_config, dict):
        raise ConfigError("Config must be a JSON object")

    commands = _normalize_commands(user_config.get("commands"))

    coverage = user_config.get("coverage")
    coverage = coverage if isinstance(coverage, dict) else {}
    package_dirs = coverage.get("packageDirs")
    if not isinstance(package_dirs, list) or not package_dirs:
        raise ConfigError("coverage.packageDirs must contain at least one package directory")
    package_dirs = [str(p) for p in package_dirs]
    expected = coverage.get("expectedPackages", len(package_dirs))

    rules, thresholds = _normalize_patterns(user_config.get("patterns"))

    policy_packs = user_config.get("policyPacks") or []
    if not isinstance(policy_packs, list) or not all(isinstance(p, str) for p in policy_packs):
        raise ConfigError("policyPacks must be a list of pack references")

    verify = user_config.get("verify") or {}
    if not isinstance(verify, dict):
        raise ConfigError("verify must be an object")

    return QualityConfig(
        root=Path(root),
        commands=commands,
        package_dirs=package_dirs,
        quality_dir=str(user_config.get("qualityDir") or DEFAULT_QUALITY_DIR),
        summary_file=str(coverage.get("summaryFile") or DEFAULT_SUMMARY_FILE),
        expected_packages=_require_int(expected, "coverage.expectedPackages"),
        pattern_rules=rules,
        thresholds=thresholds,
        weights=_normalize_weights(user_config.get("weights")),
        policy_packs=list(policy_packs),
        verify=verify,
    )


def load_config(config_path: str | Path, root: str | Path | None = None) -> QualityConfig:
    """Read and normalise the config file.

    ``root`` defaults to the current directory; a relative ``config_path``
    is resolved against it.
    """
    base = Path(root).resolve() if root else Path.cwd()
    path = Path(config_path)
    if not path.is_absolute():
        path = base / path
    if not path.is_file():
        raise ConfigError(f"Config file not found: {path}")
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        raise ConfigError(f"Cannot read config {path}: {exc}") from exc
    log.debug("Loaded config from %s", path)
    return normalize_config(raw, base)
