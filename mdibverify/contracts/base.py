"""
Base Contracts and Shared Types

These are the foundational types used across all layers.
All types here are IMMUTABLE and represent pure data.

BOUNDARY ENFORCEMENT:
=====================
- This module is READ-ONLY from all layers
- All types are frozen dataclasses for immutability guarantee
- Errors are values; exceptions are reserved for the few checked
  failures the layers document explicitly
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple
from enum import Enum, auto


# =============================================================================
# ERROR STATES (Explicit, never silent)
# =============================================================================

class ErrorCode(Enum):
    """
    Explicit error codes for deterministic error handling.
    No silent fallbacks - every error state is enumerated.
    """
    # Report application errors
    UNKNOWN_HANDLE = auto()
    DUPLICATE_HANDLE = auto()
    UNKNOWN_PARENT = auto()
    PARTIAL_SUBTREE_DELETION = auto()
    HANDLE_COLLISION = auto()
    REPARENTING = auto()
    MALFORMED_REPORT = auto()

    # History errors
    NO_INITIAL_DOCUMENT = auto()
    NO_APPLICABLE_DATA = auto()
    STRUCTURAL_INCONSISTENCY = auto()

    # Manipulation errors
    MANIPULATION_FAILED = auto()
    MANIPULATION_TIMEOUT = auto()
    DEVICE_DEFECT = auto()

    # Storage errors
    STORAGE_FAILURE = auto()


@dataclass(frozen=True)
class Error:
    """
    Immutable error representation with full context.
    Errors are data, not exceptions - they can be stored and queried.
    """
    code: ErrorCode
    message: str
    timestamp: datetime
    context: Tuple[Tuple[str, str], ...] = field(default_factory=tuple)

    def with_context(self, key: str, value: str) -> Error:
        """Return new Error with additional context (immutable)."""
        return Error(
            code=self.code,
            message=self.message,
            timestamp=self.timestamp,
            context=self.context + ((key, value),)
        )

    def context_value(self, key: str) -> Optional[str]:
        for k, v in self.context:
            if k == key:
                return v
        return None

    @staticmethod
    def create(code: ErrorCode, message: str, **context: str) -> Error:
        return Error(
            code=code,
            message=message,
            timestamp=datetime.now(timezone.utc),
            context=tuple((k, str(v)) for k, v in context.items())
        )


@dataclass(frozen=True)
class Result:
    """
    Generic result type for operations that can fail.
    Either contains a value OR an error, never both.
    """
    value: Optional[object] = None
    error: Optional[object] = None

    @property
    def is_success(self) -> bool:
        return self.error is None

    @property
    def is_failure(self) -> bool:
        return self.error is not None

    @staticmethod
    def success(value: object) -> Result:
        return Result(value=value, error=None)

    @staticmethod
    def failure(error: object) -> Result:
        return Result(value=None, error=error)


@dataclass(frozen=True)
class NoApplicableData:
    """
    Typed "not applicable" signal.

    Zero entities matched a precondition, or a session carried no report a
    check could look at. This is a value, never a failure: it must not
    invalidate the run.
    """
    reason: str


# =============================================================================
# TEMPORAL TYPES (Immutable, explicit semantics)
# =============================================================================

@dataclass(frozen=True)
class Timestamp:
    """
    Immutable timestamp with explicit semantics.
    All timestamps are UTC, never local time.
    """
    value: datetime

    def __post_init__(self):
        # Ensure UTC timezone
        if self.value.tzinfo is None:
            object.__setattr__(self, 'value', self.value.replace(tzinfo=timezone.utc))

    @staticmethod
    def now() -> Timestamp:
        return Timestamp(value=datetime.now(timezone.utc))

    @staticmethod
    def from_iso(iso_string: str) -> Timestamp:
        dt = datetime.fromisoformat(iso_string.replace('Z', '+00:00'))
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return Timestamp(value=dt)

    def to_iso(self) -> str:
        return self.value.isoformat()

    def plus(self, seconds: float) -> Timestamp:
        return Timestamp(value=self.value + timedelta(seconds=seconds))

    def seconds_until(self, other: Timestamp) -> float:
        return (other.value - self.value).total_seconds()


@dataclass(frozen=True)
class TimeRange:
    """Immutable, inclusive time range for queries."""
    start: Timestamp
    end: Timestamp

    def __post_init__(self):
        if self.start.value > self.end.value:
            raise ValueError("TimeRange start must be before or equal to end")

    def contains(self, timestamp: Timestamp) -> bool:
        return self.start.value <= timestamp.value <= self.end.value
