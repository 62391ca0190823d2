"""Task id discovery.

Candidate ids come from up to three sources, each scanned with the same
identifier pattern (default ``[A-Z][A-Z0-9]+-\\d+``, e.g. ``ABC-123``):
  - cli:    the ``--task-id`` value
  - env:    the configured environment variable (default TASK_ID)
  - branch: the current git branch name
Results are deduplicated, keeping first-seen order.
"""

from __future__ import annotations

import logging
import os
import re
import subprocess
from collections.abc import Mapping
from pathlib import Path

log = logging.getLogger(__name__)


def _git(args: list[str], cwd: str | Path) -> str:
    """Run a git command, return stdout. Returns empty string on failure."""
    try:
        result = subprocess.run(
            ["git"] + args,
            cwd=str(cwd),
            capture_output=True,
            text=True,
            timeout=30,
            check=False,
        )
        if result.returncode != 0:
            return ""
        return result.stdout.strip()
    except (subprocess.TimeoutExpired, FileNotFoundError, OSError):
        return ""


def git_branch(repo: str | Path) -> str:
    """Current branch name, or empty string (detached HEAD, no repo)."""
    branch = _git(["rev-parse", "--abbrev-ref", "HEAD"], cwd=repo)
    return "" if branch == "HEAD" else branch


def extract_task_ids(text: str, pattern: str) -> list[str]:
    """All identifier matches in ``text``, in order."""
    if not text:
        return []
    return [m.group(0) for m in re.finditer(pattern, text)]


def discover_task_ids(
    sources: list[str],
    pattern: str,
    cli_value: str | None = None,
    env_var: str = "TASK_ID",
    environ: Mapping[str, str] | None = None,
    repo: str | Path = ".",
) -> list[str]:
    """Collect deduplicated task ids from the configured sources."""
    env = os.environ if environ is None else environ
    found: list[str] = []
    for source in sources:
        if source == "cli":
            text = cli_value or ""
        elif source == "env":
            text = env.get(env_var, "")
        elif source == "branch":
            text = git_branch(repo)
        else:
            log.warning("Ignoring unknown task id source %r", source)
            continue
        for task_id in extract_task_ids(text, pattern):
            if task_id not in found:
                found.append(task_id)
    log.debug("Resolved task ids: %s", found)
    return found
