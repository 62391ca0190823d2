"""Policy packs and the effective verify configuration.

The effective configuration is rebuilt on every invocation by merging,
left to right:

    built-in defaults -> each pack in ``policyPacks`` order -> repo ``verify``

Merge rules:
  - defined scalar/list/object fields overwrite
  - ``gates`` merge by ``id``: a known id is patched field by field, a new id
    is appended; order is first appearance across all sources
  - ``commands`` never come from packs; the four named commands are taken
    from the repo config and materialised for interpolation

Pack references are either ``builtin:<key>`` (shipped in ``packs/``) or a
path relative to the repository root.
"""

from __future__ import annotations

import copy
import json
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .config import ConfigError, QualityConfig
from .models import Gate, GateDefinitionError, parse_gate

log = logging.getLogger(__name__)

BUILTIN_PREFIX = "builtin:"
PACKS_DIR = Path(__file__).resolve().parent / "packs"
BUILTIN_PACKS: dict[str, str] = {
    "core": "core.json",
    "task-evidence": "task-evidence.json",
}

DEFAULT_TASK_ID_PATTERN = r"[A-Z][A-Z0-9]+-\d+"
DEFAULT_TASK_ID_SOURCES = ["cli", "env", "branch"]

DEFAULT_VERIFY: dict[str, Any] = {
    "enabled": False,
    "requireTaskId": False,
    "taskIdPattern": DEFAULT_TASK_ID_PATTERN,
    "taskIdSources": list(DEFAULT_TASK_ID_SOURCES),
    "taskIdEnvVar": "TASK_ID",
    "waiversFile": "${qualityDir}/waivers.json",
    "gates": [],
}

# Keys a pack or repo verify block may not set.
_EXCLUDED_KEYS = ("commands", "policyPacks")


class PolicyPackError(ConfigError):
    """A policy pack could not be loaded or merged."""


class PolicyPackNotFound(PolicyPackError):
    """A pack reference resolves to no existing file."""


@dataclass
class PackRef:
    """A loaded pack: the configured reference and the file it resolved to."""

    reference: str
    path: str

    def to_dict(self) -> dict[str, str]:
        return {"reference": self.reference, "path": self.path}


@dataclass
class VerifyConfig:
    """Effective verify configuration for one invocation (never persisted)."""

    enabled: bool = False
    require_task_id: bool = False
    task_id_pattern: str = DEFAULT_TASK_ID_PATTERN
    task_id_sources: list[str] = field(default_factory=lambda: list(DEFAULT_TASK_ID_SOURCES))
    task_id_env_var: str = "TASK_ID"
    waivers_file: str = ""
    gates: list[Gate] = field(default_factory=list)
    policy_packs: list[PackRef] = field(default_factory=list)
    commands: dict[str, str] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Pack resolution
# ---------------------------------------------------------------------------


def resolve_pack(reference: str, root: str | Path) -> Path:
    """Map a pack reference to an existing file.

    Raises PolicyPackNotFound for an unknown builtin key or a missing file.
    """
    if reference.startswith(BUILTIN_PREFIX):
        key = reference[len(BUILTIN_PREFIX):]
        filename = BUILTIN_PACKS.get(key)
        if filename is None:
            raise PolicyPackNotFound(f"Unknown builtin policy pack: {reference}")
        path = PACKS_DIR / filename
    else:
        path = Path(root) / reference
    if not path.is_file():
        raise PolicyPackNotFound(f"Policy pack not found: {reference} ({path})")
    return path


def load_pack(reference: str, root: str | Path) -> tuple[dict[str, Any], Path]:
    """Load a pack's verify block.

    Takes the ``verify`` object when present, otherwise the whole document.
    Commands are dropped. Returns (verify_block, resolved_path).
    """
    path = resolve_pack(reference, root)
    try:
        doc = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        raise PolicyPackError(f"Cannot read policy pack {reference}: {exc}") from exc
    block = doc.get("verify", doc) if isinstance(doc, dict) else doc
    if not isinstance(block, dict):
        raise PolicyPackError(f"Policy pack {reference} must contain a verify object")
    block = dict(block)
    if "commands" in block:
        log.debug("Ignoring commands in policy pack %s", reference)
        block.pop("commands")
    return block, path


# ---------------------------------------------------------------------------
# Merging
# ---------------------------------------------------------------------------


def merge_gates(base: list[dict[str, Any]], patch: list[Any],
                source: str = "verify") -> list[dict[str, Any]]:
    """Merge gate lists by id, patching known ids field by field."""
    merged = [dict(g) for g in base]
    index = {g["id"]: i for i, g in enumerate(merged)}
    for i, gate in enumerate(patch):
        if not isinstance(gate, dict):
            raise PolicyPackError(f"{source}: gate #{i} is not an object")
        gate_id = gate.get("id")
        if not isinstance(gate_id, str) or not gate_id:
            raise PolicyPackError(f"{source}: gate #{i} has no id")
        if gate_id in index:
            merged[index[gate_id]].update(copy.deepcopy(gate))
        else:
            index[gate_id] = len(merged)
            merged.append(copy.deepcopy(gate))
    return merged


def merge_verify(base: dict[str, Any], patch: dict[str, Any],
                 source: str = "verify") -> dict[str, Any]:
    """Merge one verify block over another, returning a new dict."""
    merged = copy.deepcopy(base)
    for key, value in patch.items():
        if value is None or key in _EXCLUDED_KEYS:
            continue
        if key == "gates":
            if not isinstance(value, list):
                raise PolicyPackError(f"{source}: gates must be a list")
            merged["gates"] = merge_gates(merged.get("gates") or [], value, source)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


# ---------------------------------------------------------------------------
# Effective configuration
# ---------------------------------------------------------------------------


def resolve_verify_config(config: QualityConfig) -> VerifyConfig:
    """Build the effective verify configuration for a repo config."""
    merged = copy.deepcopy(DEFAULT_VERIFY)
    packs: list[PackRef] = []
    for reference in config.policy_packs:
        block, path = load_pack(reference, config.root)
        merged = merge_verify(merged, block, source=reference)
        packs.append(PackRef(reference=reference, path=str(path)))
        log.debug("Applied policy pack %s from %s", reference, path)
    merged = merge_verify(merged, config.verify, source="verify")

    sources = merged.get("taskIdSources")
    if not isinstance(sources, list) or not sources:
        log.warning("taskIdSources is empty; falling back to %s", DEFAULT_TASK_ID_SOURCES)
        sources = list(DEFAULT_TASK_ID_SOURCES)

    pattern = str(merged.get("taskIdPattern") or DEFAULT_TASK_ID_PATTERN)
    try:
        re.compile(pattern)
    except re.error as exc:
        raise ConfigError(f"verify.taskIdPattern is not a valid regex: {exc}") from exc

    try:
        gates = [parse_gate(g) for g in merged.get("gates") or []]
    except GateDefinitionError as exc:
        raise PolicyPackError(f"verify.gates: {exc}") from exc

    return VerifyConfig(
        enabled=merged.get("enabled") is True,
        require_task_id=merged.get("requireTaskId") is True,
        task_id_pattern=pattern,
        task_id_sources=[str(s) for s in sources],
        task_id_env_var=str(merged.get("taskIdEnvVar") or "TASK_ID"),
        waivers_file=str(merged.get("waiversFile") or ""),
        gates=gates,
        policy_packs=packs,
        commands=dict(config.commands),
    )
