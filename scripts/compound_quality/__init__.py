"""Compound quality -- scored checks, pattern tracking, and verification gates.

Runs a project's typecheck/lint/test/build commands, turns their output
into a weighted scorecard with a ratcheting coverage floor, tracks
recurring failure patterns across runs, and evaluates declarative
verification gates layered from policy packs.
No external dependencies beyond Python stdlib.

Modules:
  - models: Data classes (Metrics, Scorecard, PatternRecord, gates, waivers)
  - runner: Shell command execution
  - classify: Output parsing heuristics (type errors, lint, test counts)
  - coverage: Coverage summary reader
  - scorecard: Component scores, overall score, coverage ratchet
  - patterns: Failure pattern detection and promotion
  - config: Repo configuration loading and defaults
  - policy: Policy pack resolution and verify-config merging
  - schema: Restricted structural schema validator
  - waivers: Waiver loading and matching
  - task_ids: Task id discovery
  - gates: Gate evaluation
  - store: Persisted JSON state under the quality directory
"""

from __future__ import annotations
