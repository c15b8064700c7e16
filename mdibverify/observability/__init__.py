"""
Observability & Audit Layer

RESPONSIBILITY: Audit logging, run invalidation
ALLOWED INPUTS: Any event from other layers
OUTPUTS: AuditLog entries, InvalidationSink reasons

WHAT THIS LAYER MUST NOT DO:
============================
- Modify system behavior
- Filter or interpret events (only record them)
- Make decisions based on logged data

BOUNDARY ENFORCEMENT:
=====================
- Append-only: nothing recorded here is ever removed or cleared
- Every collector is guarded by a lock; producers may run on any thread
- Provides read-only access (tuples) to what was recorded
"""

from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple
import hashlib
import threading

from ..contracts.base import Timestamp, TimeRange


# =============================================================================
# AUDIT LOG
# =============================================================================

class AuditEventType(Enum):
    """Explicit audit event types."""
    HISTORY = "history"
    APPLY = "apply"
    PRECONDITION = "precondition"
    MANIPULATION = "manipulation"
    INVALIDATION = "invalidation"
    CHECK = "check"
    ERROR = "error"
    SYSTEM = "system"


@dataclass(frozen=True)
class AuditEntry:
    """Immutable audit log entry."""
    entry_id: str
    event_type: AuditEventType
    timestamp: Timestamp
    layer: str
    action: str
    entity_id: Optional[str] = None
    outcome: str = "success"
    metadata: Tuple[Tuple[str, str], ...] = field(default_factory=tuple)

    def detail(self, key: str) -> Optional[str]:
        return dict(self.metadata).get(key)


class AuditLog:
    """
    Append-only collector of audit entries from all layers.

    Entries are numbered in arrival order; ids derive from that number so
    two runs over the same inputs produce the same ids.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._entries: List[AuditEntry] = []

    def record(
        self,
        layer: str,
        action: str,
        event_type: AuditEventType = AuditEventType.SYSTEM,
        entity_id: Optional[str] = None,
        outcome: str = "success",
        **details: str
    ) -> AuditEntry:
        with self._lock:
            sequence = len(self._entries)
            digest = hashlib.sha256(f"{layer}_{action}|{sequence}".encode()).hexdigest()[:16]
            entry = AuditEntry(
                entry_id=f"audit_{digest}",
                event_type=event_type,
                timestamp=Timestamp.now(),
                layer=layer,
                action=action,
                entity_id=entity_id,
                outcome=outcome,
                metadata=tuple(sorted((k, str(v)) for k, v in details.items())),
            )
            self._entries.append(entry)
        return entry

    def entries(
        self,
        layer: Optional[str] = None,
        event_type: Optional[AuditEventType] = None,
        time_range: Optional[TimeRange] = None
    ) -> Tuple[AuditEntry, ...]:
        """Get entries, optionally filtered."""
        with self._lock:
            entries = list(self._entries)

        if layer:
            entries = [e for e in entries if e.layer == layer]
        if event_type:
            entries = [e for e in entries if e.event_type == event_type]
        if time_range:
            entries = [e for e in entries if time_range.contains(e.timestamp)]

        return tuple(entries)

    @property
    def entry_count(self) -> int:
        with self._lock:
            return len(self._entries)


# =============================================================================
# INVALIDATION SINK
# =============================================================================

class InvalidationSink:
    """
    Records that the test run can no longer be trusted.

    GUARANTEES:
    ===========
    1. Once invalid, the run stays invalid; there is no reset
    2. Reasons keep insertion order; an identical reason is kept once
    3. invalidate() may be called from any thread
    """

    def __init__(self, audit: Optional[AuditLog] = None):
        self._lock = threading.Lock()
        self._reasons: List[str] = []
        self._audit = audit

    def invalidate(self, reason: str, cause: Optional[BaseException] = None):
        if cause is not None:
            reason = f"{reason} ({type(cause).__name__}: {cause})"

        with self._lock:
            is_new = reason not in self._reasons
            if is_new:
                self._reasons.append(reason)

        if self._audit is not None:
            self._audit.record(
                "observability", "invalidate",
                event_type=AuditEventType.INVALIDATION,
                outcome="recorded" if is_new else "duplicate",
                reason=reason,
            )

    def is_invalid(self) -> bool:
        with self._lock:
            return bool(self._reasons)

    def reasons(self) -> Tuple[str, ...]:
        with self._lock:
            return tuple(self._reasons)


__all__ = [
    "AuditEventType",
    "AuditEntry",
    "AuditLog",
    "InvalidationSink",
]
