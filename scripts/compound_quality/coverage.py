"""Coverage summary reader.

Reads one summary file per package directory and averages line coverage.
Understands two summary shapes:
  - Istanbul coverage-summary.json: ``{"total": {"lines": {"pct": 91.2}}}``
  - coverage.py ``coverage json``: ``{"totals": {"percent_covered": 91.2}}``

A package only counts towards ``package_count`` when its summary exists,
parses, and yields a number -- the ratchet's qualification check relies on
that count.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from .models import CoverageSummary

log = logging.getLogger(__name__)


def _line_pct(doc: Any) -> float | None:
    """Extract line coverage percentage from a parsed summary document."""
    if not isinstance(doc, dict):
        return None
    total = doc.get("total")
    if isinstance(total, dict):
        lines = total.get("lines")
        if isinstance(lines, dict):
            pct = lines.get("pct")
            if isinstance(pct, (int, float)) and not isinstance(pct, bool):
                return float(pct)
    totals = doc.get("totals")
    if isinstance(totals, dict):
        pct = totals.get("percent_covered")
        if isinstance(pct, (int, float)) and not isinstance(pct, bool):
            return float(pct)
    return None


def read_coverage(root: str | Path, package_dirs: list[str],
                  summary_file: str) -> CoverageSummary:
    """Average line coverage across packages that produced a summary.

    Missing or malformed summaries are skipped. Returns 0% with a package
    count of 0 when nothing was readable.
    """
    values: list[float] = []
    for package_dir in package_dirs:
        summary_path = Path(root) / package_dir / summary_file
        if not summary_path.is_file():
            log.debug("No coverage summary at %s", summary_path)
            continue
        try:
            doc = json.loads(summary_path.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            log.warning("Ignoring unreadable coverage summary %s", summary_path)
            continue
        pct = _line_pct(doc)
        if pct is None:
            log.warning("No line coverage in %s", summary_path)
            continue
        values.append(pct)

    if not values:
        return CoverageSummary(pct=0.0, package_count=0)
    return CoverageSummary(
        pct=round(sum(values) / len(values), 2),
        package_count=len(values),
    )
