"""
Manipulation Layer

RESPONSIBILITY: Drive the device under test into required states
ALLOWED INPUTS: Operation names and string parameters
OUTPUTS: ManipulationResponse, ManipulationRecord in the message log

WHAT THIS LAYER MUST NOT DO:
============================
- Decide whether a test passed
- Modify captured messages

BOUNDARY ENFORCEMENT:
=====================
- Every invocation made through RecordingManipulationClient leaves a
  ManipulationRecord (start/finish timestamps) in the message log
- Clients never raise for a device saying no; FAIL, NOT_SUPPORTED and
  NOT_IMPLEMENTED are ordinary results
"""

from __future__ import annotations
from typing import Mapping, Optional
import uuid

from ..contracts.messages import ManipulationRecord, ManipulationResponse
from ..observability import AuditEventType, AuditLog
from ..storage import MessageLog
from ..temporal.clock import Clock, SystemClock


# =============================================================================
# OPERATION NAMES
# =============================================================================

CREATE_CONTEXT_STATE_WITH_ASSOCIATION = "createContextStateWithAssociation"
SET_COMPONENT_ACTIVATION = "setComponentActivation"
TRIGGER_ANY_DESCRIPTOR_UPDATE = "triggerAnyDescriptorUpdate"
SET_ALERT_ACTIVATION = "setAlertActivation"
SET_METRIC_STATUS = "setMetricStatus"


class ManipulationClient:
    """
    Abstract manipulation client.

    Concrete clients talk to whatever remote control the device under test
    offers. invoke() must return within the client's own hard timeout.
    """

    def invoke(self, operation: str, params: Mapping[str, str]) -> ManipulationResponse:
        raise NotImplementedError


class RecordingManipulationClient(ManipulationClient):
    """
    Wraps a client and records every call in the message log.

    The record is written after the call returns, with the timestamps
    taken immediately before and after it.
    """

    def __init__(
        self,
        delegate: ManipulationClient,
        message_log: MessageLog,
        clock: Optional[Clock] = None,
        audit: Optional[AuditLog] = None
    ):
        self._delegate = delegate
        self._message_log = message_log
        self._clock = clock or SystemClock()
        self._audit = audit

    def invoke(self, operation: str, params: Mapping[str, str]) -> ManipulationResponse:
        started_at = self._clock.now()
        response = self._delegate.invoke(operation, params)
        finished_at = self._clock.now()

        record = ManipulationRecord.create(
            record_id=uuid.uuid4().hex,
            operation=operation,
            parameters=params,
            response=response,
            started_at=started_at,
            finished_at=finished_at,
        )
        self._message_log.append_manipulation(record)

        if self._audit is not None:
            self._audit.record(
                "manipulation", operation,
                event_type=AuditEventType.MANIPULATION,
                entity_id=record.record_id,
                outcome=response.result.value,
                timed_out=str(response.timed_out),
                value=response.value or "",
            )
        return response


__all__ = [
    "CREATE_CONTEXT_STATE_WITH_ASSOCIATION",
    "SET_COMPONENT_ACTIVATION",
    "TRIGGER_ANY_DESCRIPTOR_UPDATE",
    "SET_ALERT_ACTIVATION",
    "SET_METRIC_STATUS",
    "ManipulationClient",
    "RecordingManipulationClient",
]
