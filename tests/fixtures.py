"""
Test Fixtures
=============

Factories for descriptors, states and captured sessions. Sessions are
written through the real codec so replay tests exercise decoding too.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple

from mdibverify.contracts.base import Timestamp
from mdibverify.contracts.mdib import (
    CHANNEL, MDS, NUMERIC_METRIC, PATIENT_CONTEXT, SYSTEM_CONTEXT, VMD,
    Descriptor, MdibVersion, State,
)
from mdibverify.contracts.messages import CapturedMessage, ManipulationResponse, ManipulationResult
from mdibverify.contracts.reports import (
    GET_MDIB_RESPONSE, MdibDocument, ModificationKind, Report, ReportKind, ReportPart,
)
from mdibverify.manipulation import ManipulationClient
from mdibverify.storage import MessageLog
from mdibverify.storage.codec import encode_document, encode_report
from mdibverify.temporal.clock import ManualClock

BASE_TIME = datetime(2024, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


def mds(handle: str = "mds0", version: int = 0, **attributes) -> Descriptor:
    return Descriptor.create(handle, MDS, descriptor_version=version, **attributes)


def vmd(handle: str, parent: str = "mds0", version: int = 0, **attributes) -> Descriptor:
    return Descriptor.create(handle, VMD, parent_handle=parent, descriptor_version=version, **attributes)


def channel(handle: str, parent: str, version: int = 0, **attributes) -> Descriptor:
    return Descriptor.create(handle, CHANNEL, parent_handle=parent, descriptor_version=version, **attributes)


def metric(handle: str, parent: str, version: int = 0, **attributes) -> Descriptor:
    return Descriptor.create(
        handle, NUMERIC_METRIC, parent_handle=parent, descriptor_version=version, **attributes
    )


def single_state(descriptor_handle: str, version: int = 0, state_type: str = "NumericMetricState", **attributes) -> State:
    return State.create(descriptor_handle, state_type, state_version=version, **attributes)


def context_state(handle: str, descriptor_handle: str = "pat0", version: int = 0, **attributes) -> State:
    return State.create(
        descriptor_handle, "PatientContextState", state_version=version, handle=handle, **attributes
    )


def basic_mdib() -> Tuple[Tuple[Descriptor, ...], Tuple[State, ...]]:
    """mds0 with a system context holding one patient context descriptor."""
    descriptors = (
        mds("mds0"),
        Descriptor.create("sc0", SYSTEM_CONTEXT, parent_handle="mds0"),
        Descriptor.create("pat0", PATIENT_CONTEXT, parent_handle="sc0"),
    )
    states = (
        single_state("mds0", state_type="MdsState", ActivationState="On"),
        single_state("sc0", state_type="SystemContextState"),
    )
    return descriptors, states


class SessionRecorder:
    """
    Captures one session into a message log.

    Versions increase by one per captured message unless given. Receive
    timestamps come from the clock when one is given, else they advance by
    one second per message.
    """

    def __init__(
        self,
        message_log: MessageLog,
        sequence_id: str = "urn:uuid:seq-1",
        clock: Optional[ManualClock] = None
    ):
        self.message_log = message_log
        self.sequence_id = sequence_id
        self.clock = clock
        self.version = 0
        self._count = 0

    def _timestamp(self) -> Timestamp:
        if self.clock is not None:
            return self.clock.now()
        return Timestamp(value=BASE_TIME + timedelta(seconds=self._count))

    def _capture(self, body_type: str, body: str) -> CapturedMessage:
        message = CapturedMessage(
            message_id=f"{self.sequence_id}#{self._count}",
            body_type=body_type,
            received_at=self._timestamp(),
            body=body,
            sequence_id=self.sequence_id,
        )
        self._count += 1
        self.message_log.append(message)
        return message

    def next_version(self, version: Optional[int] = None) -> MdibVersion:
        if version is None:
            self.version += 1
            version = self.version
        else:
            self.version = version
        return MdibVersion(sequence_id=self.sequence_id, version=version)

    def document(self, descriptors=None, states=None, version: int = 0) -> MdibDocument:
        if descriptors is None:
            descriptors, default_states = basic_mdib()
            states = default_states if states is None else states
        self.version = version
        document = MdibDocument(
            mdib_version=MdibVersion(sequence_id=self.sequence_id, version=version),
            descriptors=tuple(descriptors),
            states=tuple(states or ()),
        )
        self._capture(GET_MDIB_RESPONSE, encode_document(document))
        return document

    def report(self, report: Report) -> Report:
        self._capture(report.kind.body_type, encode_report(report))
        return report

    def raw(self, body_type: str, body: str) -> CapturedMessage:
        return self._capture(body_type, body)

    def create(self, *descriptors: Descriptor, parent: Optional[str] = None, states=(), version=None) -> Report:
        return self.report(Report.description_modification(
            self.next_version(version),
            ReportPart(
                descriptors=tuple(descriptors),
                states=tuple(states),
                modification=ModificationKind.CREATE,
                parent_handle=parent,
            ),
        ))

    def update(self, *descriptors: Descriptor, states=(), version=None) -> Report:
        return self.report(Report.description_modification(
            self.next_version(version),
            ReportPart(
                descriptors=tuple(descriptors),
                states=tuple(states),
                modification=ModificationKind.UPDATE,
            ),
        ))

    def delete(self, *descriptors: Descriptor, version=None) -> Report:
        return self.report(Report.description_modification(
            self.next_version(version),
            ReportPart(descriptors=tuple(descriptors), modification=ModificationKind.DELETE),
        ))

    def states(self, kind: ReportKind, *states: State, version=None) -> Report:
        return self.report(Report.state_report(kind, self.next_version(version), tuple(states)))


class FakeDevice(ManipulationClient):
    """
    Manipulation client standing in for a device under test.

    handlers maps an operation to a callable(params) -> ManipulationResponse;
    handlers usually capture reports through a SessionRecorder. Unknown
    operations are NOT_IMPLEMENTED. The clock moves a little around each
    call so reports land strictly inside the call window.
    """

    def __init__(self, clock: ManualClock, handlers=None):
        self.clock = clock
        self.handlers = dict(handlers or {})
        self.calls = []

    def invoke(self, operation, params) -> ManipulationResponse:
        self.calls.append((operation, dict(params)))
        handler = self.handlers.get(operation)
        if handler is None:
            return ManipulationResponse(result=ManipulationResult.NOT_IMPLEMENTED)
        self.clock.advance(0.1)
        response = handler(dict(params))
        self.clock.advance(0.1)
        return response

    def operations(self):
        return [operation for operation, _ in self.calls]
