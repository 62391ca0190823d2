"""Shell command execution for checks and gates."""

from __future__ import annotations

import logging
import subprocess
import time
from pathlib import Path

from .models import CommandResult

log = logging.getLogger(__name__)


def run_command(working_dir: str | Path, name: str, command: str) -> CommandResult:
    """Run a shell-interpreted command synchronously and capture its output.

    No timeout is imposed here: a hung child hangs the run. Failure to
    launch the shell is reported as exit code 1 with the error on stderr.
    """
    log.debug("$ %s (%s, cwd=%s)", command, name, working_dir)
    start = time.monotonic()
    try:
        result = subprocess.run(
            command,
            shell=True,
            cwd=str(working_dir),
            capture_output=True,
            text=True,
            encoding="utf-8",
            errors="replace",
            check=False,
        )
    except OSError as exc:
        duration_ms = int((time.monotonic() - start) * 1000)
        log.warning("Command %s could not be started: %s", name, exc)
        return CommandResult(
            name=name,
            command=command,
            exit_code=1,
            duration_ms=duration_ms,
            stderr=str(exc),
        )

    duration_ms = int((time.monotonic() - start) * 1000)
    if result.returncode != 0:
        log.info("Command %s exited %d after %dms", name, result.returncode, duration_ms)
    return CommandResult(
        name=name,
        command=command,
        exit_code=result.returncode,
        duration_ms=duration_ms,
        stdout=result.stdout or "",
        stderr=result.stderr or "",
    )
