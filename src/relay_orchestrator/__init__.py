"""
relay-orchestrator: externally driven multi-agent workflow engine.

Purpose
- Sequence implementor, auditor, test-writer, test-runner and final-audit jobs
  over a validated task graph, one job at a time.

Import boundary
- No side effects at import time (no config loading, no logging init).
- The engine lives in ``relay_orchestrator.control_plane.scheduler``.
"""
