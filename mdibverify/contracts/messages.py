"""
Message Log Contracts
=====================

Captured messages and manipulation records as stored by the message log.
Both are append-only facts: never modified after capture.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import Mapping, Optional, Tuple

from .base import TimeRange, Timestamp


class Direction(Enum):
    INBOUND = "inbound"
    OUTBOUND = "outbound"


@dataclass(frozen=True)
class CapturedMessage:
    """A message body exactly as captured, tagged with its body type."""
    message_id: str
    body_type: str
    received_at: Timestamp
    body: str
    sequence_id: Optional[str] = None
    direction: Direction = Direction.INBOUND


class ManipulationResult(Enum):
    SUCCESS = "SUCCESS"
    FAIL = "FAIL"
    NOT_SUPPORTED = "NOT_SUPPORTED"
    NOT_IMPLEMENTED = "NOT_IMPLEMENTED"


@dataclass(frozen=True)
class ManipulationResponse:
    """What a manipulation client returned for one invocation."""
    result: ManipulationResult
    value: Optional[str] = None
    timed_out: bool = False

    @property
    def succeeded(self) -> bool:
        return self.result is ManipulationResult.SUCCESS


@dataclass(frozen=True)
class ManipulationRecord:
    """
    Out-of-band record of one manipulation call.

    The start and finish timestamps bracket the call so reports received
    in between can be correlated with it.
    """
    record_id: str
    operation: str
    parameters: Tuple[Tuple[str, str], ...]
    result: ManipulationResult
    started_at: Timestamp
    finished_at: Timestamp
    value: Optional[str] = None

    @staticmethod
    def create(
        record_id: str,
        operation: str,
        parameters: Mapping[str, str],
        response: ManipulationResponse,
        started_at: Timestamp,
        finished_at: Timestamp
    ) -> ManipulationRecord:
        return ManipulationRecord(
            record_id=record_id,
            operation=operation,
            parameters=tuple(sorted((str(k), str(v)) for k, v in parameters.items())),
            result=response.result,
            started_at=started_at,
            finished_at=finished_at,
            value=response.value,
        )

    @property
    def window(self) -> TimeRange:
        return TimeRange(start=self.started_at, end=self.finished_at)

    def parameter(self, name: str) -> Optional[str]:
        return dict(self.parameters).get(name)
