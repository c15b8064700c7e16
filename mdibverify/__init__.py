"""
MDIB Replay-and-Verify Core
===========================

Rebuilds the evolving MDIB of a device under test from a captured message
log and drives the device into states a requirement check needs.

ARCHITECTURE:
=============
Layer 1: contracts      - immutable data (versions, descriptors, reports, errors)
Layer 2: storage        - message log interface, JSONL log, wire codec
Layer 3: observability  - audit log, invalidation sink
Layer 4: temporal       - snapshot model, report applier, historian, clock
Layer 5: manipulation   - manipulation client, orchestrator, preconditions
Layer 6: checks         - requirement registry and invariant checks

BOUNDARY ENFORCEMENT:
=====================
- Lower layers never import from higher layers
- Only the composition root (engine.py) wires layers together
- Snapshots are never mutated after construction
"""

from .engine import ConformanceCore
from .config import CoreConfig, HistorianConfig, OrchestratorConfig, load_config

__all__ = [
    "ConformanceCore",
    "CoreConfig",
    "HistorianConfig",
    "OrchestratorConfig",
    "load_config",
]

__version__ = "0.1.0"
