"""
Temporal Layer
==============

Snapshots, report application and session replay.

GUARANTEES:
- Snapshots are immutable; applying a report yields a new snapshot
- Replay of the same log always yields the same snapshot sequence
"""

from .snapshot import Snapshot, SnapshotBuilder, ContainmentTopology
from .applier import ApplyError, ReportApplicationError, ReportApplier
from .historian import Historian, HistoryCursor, InitialVersionFilter
from .clock import Clock, ManualClock, SystemClock

__all__ = [
    "Snapshot", "SnapshotBuilder", "ContainmentTopology",
    "ApplyError", "ReportApplicationError", "ReportApplier",
    "Historian", "HistoryCursor", "InitialVersionFilter",
    "Clock", "ManualClock", "SystemClock",
]
