"""State files under the quality directory.

Layout (``<root>/<qualityDir>/``):
  scorecard.json     -- written every reflect run
  patterns.json      -- written every reflect run
  verification.json  -- written every run that evaluates gates
  paused             -- presence pauses automated runs
  waivers.json       -- user-maintained, read only

Every write replaces the whole file atomically (temp file + rename), so a
reader never sees a half-written document. A missing or unparseable state
file is treated as absent.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from .models import PatternState, Scorecard

log = logging.getLogger(__name__)

SCORECARD_FILE = "scorecard.json"
PATTERNS_FILE = "patterns.json"
VERIFICATION_FILE = "verification.json"
PAUSE_FILE = "paused"
PAUSE_ENV_VAR = "COMPOUND_QUALITY_PAUSED"

STATE_FILES = (SCORECARD_FILE, PATTERNS_FILE, VERIFICATION_FILE)


# ---------------------------------------------------------------------------
# Raw JSON
# ---------------------------------------------------------------------------


def load_json(path: str | Path) -> Any | None:
    """Read a JSON document, or None if the file is missing or malformed."""
    p = Path(path)
    if not p.exists():
        return None
    try:
        return json.loads(p.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        log.warning("Ignoring unreadable state file %s: %s", p, exc)
        return None


def write_json(path: str | Path, data: Any) -> Path:
    """Atomically write ``data`` as indented JSON with a trailing newline."""
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(prefix=f".{p.name}.", suffix=".tmp", dir=str(p.parent))
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
            f.write("\n")
        os.replace(tmp, p)
    except BaseException:
        Path(tmp).unlink(missing_ok=True)
        raise
    log.debug("Wrote %s", p)
    return p


# ---------------------------------------------------------------------------
# Typed state
# ---------------------------------------------------------------------------


def load_scorecard(quality_path: str | Path) -> Scorecard | None:
    data = load_json(Path(quality_path) / SCORECARD_FILE)
    return Scorecard.from_dict(data) if isinstance(data, dict) else None


def save_scorecard(quality_path: str | Path, scorecard: Scorecard) -> Path:
    return write_json(Path(quality_path) / SCORECARD_FILE, scorecard.to_dict())


def load_patterns(quality_path: str | Path) -> PatternState | None:
    data = load_json(Path(quality_path) / PATTERNS_FILE)
    return PatternState.from_dict(data) if isinstance(data, dict) else None


def save_patterns(quality_path: str | Path, state: PatternState) -> Path:
    return write_json(Path(quality_path) / PATTERNS_FILE, state.to_dict())


def load_verification(quality_path: str | Path) -> dict[str, Any] | None:
    data = load_json(Path(quality_path) / VERIFICATION_FILE)
    return data if isinstance(data, dict) else None


def save_verification(quality_path: str | Path, artifact: dict[str, Any]) -> Path:
    return write_json(Path(quality_path) / VERIFICATION_FILE, artifact)


# ---------------------------------------------------------------------------
# Pause + reset
# ---------------------------------------------------------------------------


def is_paused(quality_path: str | Path, environ: Mapping[str, str] | None = None) -> bool:
    """True if the pause file exists or the pause env var is set to 1/true."""
    env = os.environ if environ is None else environ
    if env.get(PAUSE_ENV_VAR, "").strip().lower() in ("1", "true", "yes"):
        return True
    return (Path(quality_path) / PAUSE_FILE).exists()


def reset_state(quality_path: str | Path) -> list[Path]:
    """Delete generated state files. Waivers and the pause flag are kept."""
    removed: list[Path] = []
    for name in STATE_FILES:
        p = Path(quality_path) / name
        if p.exists():
            p.unlink()
            removed.append(p)
            log.info("Removed %s", p)
    return removed
