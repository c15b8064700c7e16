"""
Precondition Orchestrator
=========================

Makes sure the captured session contains what a requirement check needs,
and if it does not, drives the device there through manipulations.

STATE MACHINE:
==============
    NOT_CHECKED -> SATISFIED
    NOT_CHECKED -> REMEDIATING -> SATISFIED | UNSATISFIED

GUARANTEES:
===========
1. A satisfied check never triggers a manipulation
2. Remediation runs a bounded number of times; every wait for a confirming
   report is bounded by the configured timeout on the injected clock
3. Only a DEVICE_DEFECT outcome (or a crash inside a precondition)
   invalidates the run. "Not applicable", refused manipulations,
   timeouts and captured reports that cannot be applied only leave the
   precondition unsatisfied
4. The orchestrator keeps no state between evaluations; freshness of
   returned identifiers is judged from manipulation records in the log
"""

from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, FrozenSet, Iterable, Optional, Tuple, Union

from ..config import OrchestratorConfig
from ..contracts.base import TimeRange, Timestamp
from ..contracts.messages import ManipulationResponse, ManipulationResult
from ..contracts.reports import REPORT_BODY_TYPES, Report, ReportKind
from ..observability import AuditEventType, AuditLog, InvalidationSink
from ..storage import MessageLog
from ..storage.codec import decode_report
from ..temporal.applier import ReportApplicationError
from ..temporal.clock import Clock, SystemClock
from ..temporal.historian import Historian
from ..temporal.snapshot import Snapshot
from . import ManipulationClient


# =============================================================================
# OUTCOMES
# =============================================================================

class PreconditionState(Enum):
    NOT_CHECKED = "not_checked"
    REMEDIATING = "remediating"
    SATISFIED = "satisfied"
    UNSATISFIED = "unsatisfied"


class OutcomeKind(Enum):
    SATISFIED = "satisfied"
    NOT_APPLICABLE = "not_applicable"
    MANIPULATION_FAILED = "manipulation_failed"
    TIMEOUT = "timeout"
    DEVICE_DEFECT = "device_defect"


@dataclass(frozen=True)
class RemediationOutcome:
    """
    What one remediation attempt established.

    The remediation itself classifies the outcome; the orchestrator only
    acts on the classification.
    """
    kind: OutcomeKind
    reason: str = ""

    @staticmethod
    def satisfied(reason: str = "") -> RemediationOutcome:
        return RemediationOutcome(OutcomeKind.SATISFIED, reason)

    @staticmethod
    def not_applicable(reason: str) -> RemediationOutcome:
        return RemediationOutcome(OutcomeKind.NOT_APPLICABLE, reason)

    @staticmethod
    def failed(reason: str) -> RemediationOutcome:
        return RemediationOutcome(OutcomeKind.MANIPULATION_FAILED, reason)

    @staticmethod
    def timeout(reason: str) -> RemediationOutcome:
        return RemediationOutcome(OutcomeKind.TIMEOUT, reason)

    @staticmethod
    def defect(reason: str) -> RemediationOutcome:
        return RemediationOutcome(OutcomeKind.DEVICE_DEFECT, reason)


Check = Callable[["RemediationContext"], bool]
Remediation = Callable[["RemediationContext"], Union[RemediationOutcome, bool]]


@dataclass(frozen=True)
class Precondition:
    """
    A named requirement on the captured data.

    check=None means the precondition is a pure manipulation: it always
    remediates and its outcome alone decides.
    """
    name: str
    check: Optional[Check] = None
    remediation: Optional[Remediation] = None
    max_attempts: int = 1

    def __post_init__(self):
        if self.check is None and self.remediation is None:
            raise ValueError(f"Precondition {self.name} needs a check or a remediation")
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")


@dataclass(frozen=True)
class PreconditionReport:
    name: str
    state: PreconditionState
    attempts: int = 0
    outcomes: Tuple[RemediationOutcome, ...] = field(default_factory=tuple)

    @property
    def satisfied(self) -> bool:
        return self.state is PreconditionState.SATISFIED


@dataclass(frozen=True)
class ManipulationInvocation:
    """A manipulation call with the wall-clock window it ran in."""
    operation: str
    parameters: Tuple[Tuple[str, str], ...]
    response: ManipulationResponse
    started_at: Timestamp
    finished_at: Timestamp

    @property
    def result(self) -> ManipulationResult:
        return self.response.result

    @property
    def succeeded(self) -> bool:
        return self.response.succeeded

    @property
    def refused(self) -> bool:
        """The device cannot do this at all."""
        return self.response.result in (
            ManipulationResult.NOT_SUPPORTED, ManipulationResult.NOT_IMPLEMENTED
        )

    @property
    def window(self) -> TimeRange:
        return TimeRange(start=self.started_at, end=self.finished_at)


# =============================================================================
# REMEDIATION CONTEXT
# =============================================================================

class RemediationContext:
    """Everything a check or remediation may look at or act through."""

    def __init__(
        self,
        historian: Historian,
        client: Optional[ManipulationClient],
        clock: Clock,
        config: OrchestratorConfig,
        audit: Optional[AuditLog] = None
    ):
        self.historian = historian
        self.client = client
        self.clock = clock
        self.config = config
        self._audit = audit

    @property
    def message_log(self) -> MessageLog:
        return self.historian.message_log

    def current_session(self) -> Optional[str]:
        """The most recently started session, if any."""
        session = None
        for session in self.historian.list_sequences():
            pass
        return session

    def latest_snapshot(self, sequence_id: Optional[str] = None) -> Snapshot:
        sequence_id = sequence_id or self.current_session()
        if sequence_id is None:
            return Snapshot.empty()
        return self.historian.latest_snapshot(sequence_id)

    def has_report(self, *kinds: ReportKind) -> bool:
        body_types = [k.body_type for k in kinds] if kinds else REPORT_BODY_TYPES
        with self.message_log.query_inbound(body_types=body_types) as stream:
            for _ in stream:
                return True
        return False

    def manipulate(self, operation: str, **params: str) -> ManipulationInvocation:
        """
        Invoke a manipulation. Without a client every manipulation is
        NOT_SUPPORTED.
        """
        started_at = self.clock.now()
        if self.client is None:
            response = ManipulationResponse(result=ManipulationResult.NOT_SUPPORTED)
        else:
            response = self.client.invoke(operation, params)
        finished_at = self.clock.now()
        return ManipulationInvocation(
            operation=operation,
            parameters=tuple(sorted(params.items())),
            response=response,
            started_at=started_at,
            finished_at=finished_at,
        )

    def previously_returned_values(self, operation: str) -> FrozenSet[str]:
        """
        Values returned by earlier successful calls of operation.

        Read this before invoking: the new call's own record lands in the
        log as soon as it returns.
        """
        with self.message_log.manipulations(operations=(operation,)) as stream:
            return frozenset(
                record.value for record in stream
                if record.result is ManipulationResult.SUCCESS and record.value
            )

    def reports_between(self, time_range: TimeRange) -> Tuple[Report, ...]:
        with self.message_log.query_inbound(
            body_types=REPORT_BODY_TYPES, time_range=time_range
        ) as stream:
            return tuple(decode_report(message) for message in stream)

    def await_report(
        self,
        match: Callable[[Report], bool],
        since: Timestamp,
        timeout_seconds: Optional[float] = None
    ) -> Optional[Report]:
        """
        Poll the log for a report received at or after since that matches.
        Returns None once the timeout has passed on the injected clock.
        """
        timeout = self.config.confirmation_timeout_seconds if timeout_seconds is None else timeout_seconds
        deadline = self.clock.now().plus(timeout)
        polls = 0

        while True:
            now = self.clock.now()
            end = now if now.value >= since.value else since
            polls += 1
            for report in self.reports_between(TimeRange(start=since, end=end)):
                if match(report):
                    return report

            remaining = now.seconds_until(deadline)
            if remaining <= 0:
                if self._audit is not None:
                    self._audit.record(
                        "manipulation", "await_report",
                        event_type=AuditEventType.PRECONDITION,
                        outcome="timeout",
                        polls=str(polls),
                    )
                return None
            self.clock.sleep(min(self.config.poll_interval_seconds, remaining))

    def await_snapshot(
        self,
        predicate: Callable[[Snapshot], bool],
        sequence_id: Optional[str] = None,
        timeout_seconds: Optional[float] = None
    ) -> Optional[Snapshot]:
        """Poll the replayed session until predicate holds or time runs out."""
        timeout = self.config.confirmation_timeout_seconds if timeout_seconds is None else timeout_seconds
        deadline = self.clock.now().plus(timeout)

        while True:
            snapshot = self.latest_snapshot(sequence_id)
            if predicate(snapshot):
                return snapshot
            remaining = self.clock.now().seconds_until(deadline)
            if remaining <= 0:
                return None
            self.clock.sleep(min(self.config.poll_interval_seconds, remaining))


# =============================================================================
# ORCHESTRATOR
# =============================================================================

_ABORTED = object()


class Orchestrator:
    """
    Evaluates preconditions and escalates device defects.

    Safe to call from several threads: each evaluation builds its own
    context and the only shared collaborators (log, sink, audit) are
    thread-safe.
    """

    def __init__(
        self,
        historian: Historian,
        client: Optional[ManipulationClient] = None,
        sink: Optional[InvalidationSink] = None,
        clock: Optional[Clock] = None,
        config: Optional[OrchestratorConfig] = None,
        audit: Optional[AuditLog] = None
    ):
        self._historian = historian
        self._client = client
        self._audit = audit
        self._sink = sink or InvalidationSink(audit)
        self._clock = clock or SystemClock()
        self._config = config or OrchestratorConfig()

    @property
    def sink(self) -> InvalidationSink:
        return self._sink

    def context(self) -> RemediationContext:
        return RemediationContext(
            self._historian, self._client, self._clock, self._config, self._audit
        )

    def run(self, precondition: Precondition) -> bool:
        return self.evaluate(precondition).satisfied

    def run_all(self, preconditions: Iterable[Precondition]) -> bool:
        """Evaluate each distinct precondition once, in order. All must hold."""
        seen = set()
        satisfied = True
        for precondition in preconditions:
            if precondition.name in seen:
                continue
            seen.add(precondition.name)
            satisfied = self.run(precondition) and satisfied
        return satisfied

    def evaluate(self, precondition: Precondition) -> PreconditionReport:
        ctx = self.context()
        name = precondition.name
        self._transition(name, PreconditionState.NOT_CHECKED)

        if precondition.check is not None:
            holds = self._guarded(name, "check", precondition.check, ctx)
            if holds is _ABORTED:
                return self._finish(name, PreconditionState.UNSATISFIED, 0, ())
            if holds:
                return self._finish(name, PreconditionState.SATISFIED, 0, ())

        if precondition.remediation is None:
            return self._finish(name, PreconditionState.UNSATISFIED, 0, ())

        allowed = min(precondition.max_attempts, self._config.max_remediation_attempts)
        outcomes = []
        for attempt in range(1, allowed + 1):
            self._transition(name, PreconditionState.REMEDIATING, attempt=str(attempt))

            raw = self._guarded(name, "remediation", precondition.remediation, ctx)
            if raw is _ABORTED:
                return self._finish(name, PreconditionState.UNSATISFIED, attempt, tuple(outcomes))
            outcome = _as_outcome(raw)
            outcomes.append(outcome)

            if outcome.kind is OutcomeKind.DEVICE_DEFECT:
                self._sink.invalidate(f"Precondition {name}: {outcome.reason}")
                return self._finish(name, PreconditionState.UNSATISFIED, attempt, tuple(outcomes))

            if outcome.kind is OutcomeKind.NOT_APPLICABLE:
                return self._finish(name, PreconditionState.UNSATISFIED, attempt, tuple(outcomes))

            if outcome.kind is OutcomeKind.SATISFIED:
                if precondition.check is None:
                    return self._finish(name, PreconditionState.SATISFIED, attempt, tuple(outcomes))
                holds = self._guarded(name, "check", precondition.check, ctx)
                if holds is _ABORTED:
                    return self._finish(name, PreconditionState.UNSATISFIED, attempt, tuple(outcomes))
                if holds:
                    return self._finish(name, PreconditionState.SATISFIED, attempt, tuple(outcomes))

        return self._finish(name, PreconditionState.UNSATISFIED, allowed, tuple(outcomes))

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _guarded(self, name: str, phase: str, func, ctx: RemediationContext):
        """
        Run a check or remediation; _ABORTED ends the evaluation unsatisfied.

        A captured report that cannot be applied is a protocol failure the
        requirement checks report themselves, so it is only audited. Any
        other exception taints the run and goes to the sink.
        """
        try:
            return func(ctx)
        except ReportApplicationError as exc:
            self._record_abort(name, phase, "report_unappliable", exc.error.code.name, exc)
            return _ABORTED
        except Exception as exc:
            self._sink.invalidate(f"Precondition {name} {phase} raised", cause=exc)
            self._record_abort(name, phase, "failure", type(exc).__name__, exc)
            return _ABORTED

    def _record_abort(self, name: str, phase: str, outcome: str, code: str, exc: Exception):
        if self._audit is not None:
            self._audit.record(
                "manipulation", f"{phase}_raised",
                event_type=AuditEventType.ERROR,
                entity_id=name,
                outcome=outcome,
                code=code,
                error=repr(exc),
            )

    def _transition(self, name: str, state: PreconditionState, **details: str):
        if self._audit is not None:
            self._audit.record(
                "manipulation", "precondition",
                event_type=AuditEventType.PRECONDITION,
                entity_id=name,
                outcome=state.value,
                **details
            )

    def _finish(
        self,
        name: str,
        state: PreconditionState,
        attempts: int,
        outcomes: Tuple[RemediationOutcome, ...]
    ) -> PreconditionReport:
        details = {}
        if outcomes:
            details["last_outcome"] = outcomes[-1].kind.value
            details["reason"] = outcomes[-1].reason
        self._transition(name, state, attempts=str(attempts), **details)
        return PreconditionReport(name=name, state=state, attempts=attempts, outcomes=outcomes)


def _as_outcome(raw: Union[RemediationOutcome, bool]) -> RemediationOutcome:
    if isinstance(raw, RemediationOutcome):
        return raw
    if raw:
        return RemediationOutcome.satisfied()
    return RemediationOutcome.failed("remediation reported failure")
