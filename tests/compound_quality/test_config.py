"""Tests for compound_quality.config -- loading, validation, defaults."""

# pylint: disable=missing-class-docstring,missing-function-docstring

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import pytest

from compound_quality.config import (
    DEFAULT_QUALITY_DIR,
    DEFAULT_SUMMARY_FILE,
    ConfigError,
    load_config,
    normalize_config,
)
from compound_quality.patterns import DEFAULT_PATTERN_RULES
from compound_quality.scorecard import DEFAULT_WEIGHTS


def _config(**overrides: Any) -> dict[str, Any]:
    base: dict[str, Any] = {
        "commands": {
            "typecheck": "tsc --noEmit",
            "lint": "eslint .",
            "test": "jest --coverage",
            "build": "npm run build",
        },
        "coverage": {"packageDirs": ["packages/a", "packages/b"]},
    }
    base.update(overrides)
    return base


class TestNormalizeConfig:
    def test_defaults(self, tmp_path: Path) -> None:
        cfg = normalize_config(_config(), tmp_path)
        assert cfg.root == tmp_path
        assert cfg.quality_dir == DEFAULT_QUALITY_DIR
        assert cfg.quality_path == tmp_path / DEFAULT_QUALITY_DIR
        assert cfg.summary_file == DEFAULT_SUMMARY_FILE
        assert cfg.expected_packages == 2
        assert cfg.pattern_rules == DEFAULT_PATTERN_RULES
        assert cfg.thresholds.claude_rule == 3
        assert cfg.thresholds.lint_rule == 5
        assert cfg.weights == DEFAULT_WEIGHTS
        assert cfg.policy_packs == []
        assert cfg.verify == {}

    @pytest.mark.parametrize("missing", ["typecheck", "lint", "test", "build"])
    def test_missing_command(self, tmp_path: Path, missing: str) -> None:
        raw = _config()
        del raw["commands"][missing]
        with pytest.raises(ConfigError, match=missing):
            normalize_config(raw, tmp_path)

    def test_empty_command_rejected(self, tmp_path: Path) -> None:
        raw = _config()
        raw["commands"]["build"] = ""
        with pytest.raises(ConfigError):
            normalize_config(raw, tmp_path)

    def test_empty_package_dirs(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigError, match="packageDirs"):
            normalize_config(_config(coverage={"packageDirs": []}), tmp_path)

    def test_coverage_overrides(self, tmp_path: Path) -> None:
        cfg = normalize_config(_config(coverage={
            "packageDirs": ["."], "summaryFile": "cov.json", "expectedPackages": 3,
        }), tmp_path)
        assert cfg.summary_file == "cov.json"
        assert cfg.expected_packages == 3

    def test_weights_merge(self, tmp_path: Path) -> None:
        cfg = normalize_config(_config(weights={"coverageLevel": 0.5, "bogus": 1}), tmp_path)
        assert cfg.weights["coverageLevel"] == 0.5
        assert cfg.weights["typeSafety"] == DEFAULT_WEIGHTS["typeSafety"]
        assert "bogus" not in cfg.weights

    def test_bad_weight(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigError, match="weights.testHealth"):
            normalize_config(_config(weights={"testHealth": "high"}), tmp_path)

    def test_pattern_overrides(self, tmp_path: Path) -> None:
        cfg = normalize_config(_config(patterns={
            "rules": [{"key": "oom", "pattern": "out of memory"}],
            "claudeRuleThreshold": 2,
        }), tmp_path)
        assert [r.key for r in cfg.pattern_rules] == ["oom"]
        assert cfg.thresholds.claude_rule == 2
        assert cfg.thresholds.lint_rule == 5

    def test_bad_threshold(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigError):
            normalize_config(_config(patterns={"lintRuleThreshold": "5"}), tmp_path)

    def test_policy_packs_must_be_strings(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigError, match="policyPacks"):
            normalize_config(_config(policyPacks=[1]), tmp_path)

    def test_verify_must_be_object(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigError, match="verify"):
            normalize_config(_config(verify="strict"), tmp_path)

    def test_not_an_object(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigError):
            normalize_config([], tmp_path)  # type: ignore[arg-type]


class TestLoadConfig:
    def test_relative_to_root(self, tmp_path: Path) -> None:
        (tmp_path / ".compound-quality.json").write_text(json.dumps(_config()))
        cfg = load_config(".compound-quality.json", root=tmp_path)
        assert cfg.root == tmp_path.resolve()
        assert cfg.commands["lint"] == "eslint ."

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigError, match="not found"):
            load_config("nope.json", root=tmp_path)

    def test_invalid_json(self, tmp_path: Path) -> None:
        (tmp_path / "c.json").write_text("{")
        with pytest.raises(ConfigError, match="Cannot read config"):
            load_config("c.json", root=tmp_path)
