"""Waivers: scoped, optionally expiring exemptions for failing required gates.

The waivers file is either a JSON list of waiver objects or an object
wrapping that list under ``waivers``:

    [{"gateId": "build-stability", "taskId": "ABC-12",
      "expiresAt": "2026-01-01T00:00:00Z", "reason": "...", "approvedBy": "..."}]

Matching is first-match-wins in file order; a later, more specific waiver
does not override an earlier general one.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from .config import ConfigError
from .models import Waiver

log = logging.getLogger(__name__)

WILDCARD = "*"


class WaiverFileError(ConfigError):
    """The waivers file exists but cannot be used."""


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 timestamp; naive values are taken as UTC."""
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _parse_waiver(raw: Any, index: int) -> Waiver:
    if not isinstance(raw, dict):
        raise WaiverFileError(f"waiver #{index} is not an object")
    gate_id = raw.get("gateId")
    if not isinstance(gate_id, str) or not gate_id:
        raise WaiverFileError(f"waiver #{index} has no gateId")
    task_id = raw.get("taskId")
    expires_raw = raw.get("expiresAt")
    expires_at = None
    if expires_raw is not None:
        try:
            expires_at = parse_timestamp(str(expires_raw))
        except ValueError as exc:
            raise WaiverFileError(
                f"waiver #{index} has invalid expiresAt {expires_raw!r}") from exc
    return Waiver(
        gate_id=gate_id,
        task_id=str(task_id) if task_id is not None else None,
        expires_at=expires_at,
        reason=str(raw.get("reason", "")),
        approved_by=str(raw.get("approvedBy", "")),
    )


def load_waivers(path: str | Path) -> list[Waiver]:
    """Load waivers in file order. A missing file means no waivers."""
    p = Path(path)
    if not p.exists():
        log.debug("No waivers file at %s", p)
        return []
    try:
        doc = json.loads(p.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        raise WaiverFileError(f"Cannot read waivers file {p}: {exc}") from exc
    if isinstance(doc, dict):
        doc = doc.get("waivers")
    if not isinstance(doc, list):
        raise WaiverFileError(f"Waivers file {p} must be a list or {{\"waivers\": [...]}}")
    return [_parse_waiver(raw, i) for i, raw in enumerate(doc)]


def is_expired(waiver: Waiver, now: datetime) -> bool:
    return waiver.expires_at is not None and waiver.expires_at <= now


def find_waiver(waivers: list[Waiver], gate_id: str, task_ids: list[str],
                now: datetime | None = None) -> Waiver | None:
    """Return the first waiver that covers a failed gate, or None.

    A waiver covers the gate when its gate id matches (or is ``*``), its
    task id is absent/``*``/among ``task_ids`` (any task id matches when
    none were resolved), and it has not expired.
    """
    current = now or datetime.now(timezone.utc)
    if current.tzinfo is None:
        current = current.replace(tzinfo=timezone.utc)
    for waiver in waivers:
        if waiver.gate_id not in (gate_id, WILDCARD):
            continue
        if not (
            waiver.task_id in (None, WILDCARD)
            or not task_ids
            or waiver.task_id in task_ids
        ):
            continue
        if is_expired(waiver, current):
            continue
        return waiver
    return None
