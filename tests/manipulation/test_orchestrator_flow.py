"""
Orchestrator Tests
==================

INVARIANTS TESTED:
1. A satisfied check never triggers a manipulation
2. Remediation attempts are bounded by the precondition and the config
3. Only device defects and crashes invalidate the run
4. Every confirmation wait ends on the injected clock
"""

import pytest

from mdibverify.contracts.mdib import VMD
from mdibverify.contracts.messages import ManipulationResponse, ManipulationResult
from mdibverify.contracts.reports import ReportKind
from mdibverify.manipulation.orchestrator import (
    OutcomeKind, Orchestrator, Precondition, PreconditionState, RemediationOutcome,
)
from mdibverify.manipulation.preconditions import component_activation
from mdibverify.observability import AuditEventType
from mdibverify.temporal.clock import ManualClock

from tests.fixtures import BASE_TIME, SessionRecorder, single_state, vmd
from tests.manipulation.conftest import CONFIG


class Counter:
    """Callable returning scripted values, counting its calls."""

    def __init__(self, *results):
        self.results = list(results)
        self.calls = 0

    def __call__(self, ctx):
        self.calls += 1
        result = self.results[min(self.calls, len(self.results)) - 1]
        if isinstance(result, Exception):
            raise result
        return result


class TestCheckFirst:

    def test_satisfied_check_never_manipulates(self, orchestrator, device):
        remediation = Counter(True)

        report = orchestrator.evaluate(Precondition("p", check=Counter(True), remediation=remediation))

        assert report.state is PreconditionState.SATISFIED
        assert report.attempts == 0
        assert remediation.calls == 0
        assert device.calls == []

    def test_check_rerun_after_successful_remediation(self, orchestrator):
        check = Counter(False, True)

        report = orchestrator.evaluate(Precondition("p", check=check, remediation=Counter(True)))

        assert report.satisfied
        assert report.attempts == 1
        assert check.calls == 2

    def test_remediation_claiming_success_is_not_trusted(self, orchestrator, sink):
        check = Counter(False)

        report = orchestrator.evaluate(
            Precondition("p", check=check, remediation=Counter(True), max_attempts=2)
        )

        assert report.state is PreconditionState.UNSATISFIED
        assert report.attempts == 2
        assert check.calls == 3
        assert not sink.is_invalid()

    def test_no_remediation_means_unsatisfied(self, orchestrator):
        report = orchestrator.evaluate(Precondition("p", check=Counter(False)))

        assert report.state is PreconditionState.UNSATISFIED
        assert report.attempts == 0

    def test_pure_manipulation_decided_by_outcome(self, orchestrator):
        report = orchestrator.evaluate(
            Precondition("p", remediation=Counter(RemediationOutcome.satisfied()))
        )

        assert report.satisfied
        assert report.outcomes == (RemediationOutcome.satisfied(),)


class TestBoundedRemediation:

    def test_attempts_capped_by_config(self, orchestrator):
        remediation = Counter(RemediationOutcome.failed("device said FAIL"))

        report = orchestrator.evaluate(
            Precondition("p", check=Counter(False), remediation=remediation, max_attempts=10)
        )

        assert remediation.calls == CONFIG.max_remediation_attempts
        assert report.attempts == CONFIG.max_remediation_attempts
        assert all(o.kind is OutcomeKind.MANIPULATION_FAILED for o in report.outcomes)

    def test_attempts_capped_by_precondition(self, orchestrator):
        remediation = Counter(False)

        orchestrator.evaluate(Precondition("p", remediation=remediation, max_attempts=2))

        assert remediation.calls == 2

    def test_retry_succeeds_on_second_attempt(self, orchestrator):
        remediation = Counter(
            RemediationOutcome.timeout("no report"), RemediationOutcome.satisfied()
        )

        report = orchestrator.evaluate(Precondition("p", remediation=remediation, max_attempts=3))

        assert report.satisfied
        assert report.attempts == 2
        assert [o.kind for o in report.outcomes] == [OutcomeKind.TIMEOUT, OutcomeKind.SATISFIED]

    def test_not_applicable_stops_without_invalidating(self, orchestrator, sink):
        remediation = Counter(RemediationOutcome.not_applicable("No PatientContextDescriptor"))

        report = orchestrator.evaluate(Precondition("p", remediation=remediation, max_attempts=3))

        assert report.state is PreconditionState.UNSATISFIED
        assert remediation.calls == 1
        assert not sink.is_invalid()

    def test_invalid_precondition_definitions(self):
        with pytest.raises(ValueError):
            Precondition("p")
        with pytest.raises(ValueError):
            Precondition("p", check=Counter(True), max_attempts=0)


class TestInvalidation:

    def test_device_defect_invalidates_and_stops(self, orchestrator, sink):
        remediation = Counter(RemediationOutcome.defect("returned previously used handle ctx1"))

        report = orchestrator.evaluate(Precondition("assoc", remediation=remediation, max_attempts=3))

        assert report.state is PreconditionState.UNSATISFIED
        assert remediation.calls == 1
        assert sink.reasons() == ("Precondition assoc: returned previously used handle ctx1",)

    def test_crashing_check_invalidates(self, orchestrator, sink, audit):
        report = orchestrator.evaluate(
            Precondition("p", check=Counter(RuntimeError("boom")), remediation=Counter(True))
        )

        assert report.state is PreconditionState.UNSATISFIED
        assert report.attempts == 0
        assert sink.reasons() == ("Precondition p check raised (RuntimeError: boom)",)
        errors = audit.entries(event_type=AuditEventType.ERROR)
        assert [e.action for e in errors] == ["check_raised"]

    def test_crashing_remediation_invalidates(self, orchestrator, sink):
        remediation = Counter(KeyError("handle"))

        report = orchestrator.evaluate(Precondition("p", remediation=remediation, max_attempts=3))

        assert report.state is PreconditionState.UNSATISFIED
        assert remediation.calls == 1
        assert sink.is_invalid()
        assert "remediation raised" in sink.reasons()[0]

    def test_unappliable_report_leaves_precondition_unsatisfied(self, orchestrator, live_session, device, sink, audit):
        live_session.document()
        live_session.create(vmd("vmd1", parent="mdsX"))

        assert orchestrator.run(component_activation(VMD)) is False

        assert not sink.is_invalid()
        assert device.calls == []
        errors = audit.entries(event_type=AuditEventType.ERROR)
        assert [(e.action, e.outcome, e.detail("code")) for e in errors] == [
            ("check_raised", "report_unappliable", "UNKNOWN_PARENT")
        ]

    def test_timeout_does_not_invalidate(self, orchestrator, sink):
        def wait_for_nothing(ctx):
            if ctx.await_report(lambda r: True, since=ctx.clock.now()) is None:
                return RemediationOutcome.timeout("nothing arrived")
            return RemediationOutcome.satisfied()

        report = orchestrator.evaluate(Precondition("p", remediation=wait_for_nothing))

        assert report.outcomes[0].kind is OutcomeKind.TIMEOUT
        assert not sink.is_invalid()


class TestRunAll:

    def test_duplicates_evaluated_once(self, orchestrator):
        check = Counter(True)
        precondition = Precondition("p", check=check)

        assert orchestrator.run_all([precondition, precondition, Precondition("p", check=check)])
        assert check.calls == 1

    def test_every_precondition_runs_even_after_a_failure(self, orchestrator):
        second = Counter(True)

        result = orchestrator.run_all([
            Precondition("first", check=Counter(False)),
            Precondition("second", check=second),
        ])

        assert result is False
        assert second.calls == 1

    def test_audit_trail_of_state_transitions(self, orchestrator, audit):
        orchestrator.run(Precondition("p", check=Counter(False, True), remediation=Counter(True)))

        states = [e.outcome for e in audit.entries(event_type=AuditEventType.PRECONDITION)
                  if e.action == "precondition"]
        assert states == ["not_checked", "remediating", "satisfied"]


class TestRemediationContext:

    def test_await_report_times_out_on_manual_clock(self, orchestrator, clock):
        ctx = orchestrator.context()

        assert ctx.await_report(lambda r: True, since=clock.now()) is None
        assert clock.total_slept == pytest.approx(CONFIG.confirmation_timeout_seconds)
        assert clock.sleep_count == 4

    def test_await_report_sees_late_report(self, message_log, historian, sink):
        clock = DeliveringClock(BASE_TIME, deliver_after=2)
        session = SessionRecorder(message_log, clock=clock)
        session.document()
        clock.deliver = lambda: session.create(vmd("vmd1"))
        since = clock.now()
        ctx = Orchestrator(historian, sink=sink, clock=clock, config=CONFIG).context()

        report = ctx.await_report(lambda r: r.kind is ReportKind.DESCRIPTION_MODIFICATION, since=since)

        assert report is not None
        assert report.descriptor_handles() == ("vmd1",)
        assert clock.sleep_count == 2

    def test_await_report_ignores_reports_before_since(self, orchestrator, live_session, clock):
        live_session.document()
        live_session.create(vmd("vmd1"))
        clock.advance(1)

        ctx = orchestrator.context()

        assert ctx.await_report(lambda r: True, since=clock.now(), timeout_seconds=0) is None

    def test_await_snapshot(self, orchestrator, live_session):
        live_session.document()
        ctx = orchestrator.context()

        assert ctx.await_snapshot(lambda s: "mds0" in s) is not None
        assert ctx.await_snapshot(lambda s: "vmd1" in s, timeout_seconds=1.0) is None

    def test_manipulation_without_client_is_not_supported(self, historian, sink, clock):
        ctx = Orchestrator(historian, sink=sink, clock=clock, config=CONFIG).context()

        invocation = ctx.manipulate("setComponentActivation", handle="vmd1")

        assert invocation.result is ManipulationResult.NOT_SUPPORTED
        assert invocation.refused
        assert invocation.parameters == (("handle", "vmd1"),)

    def test_manipulations_are_recorded_with_window(self, orchestrator, device, message_log):
        device.handlers["createContextStateWithAssociation"] = (
            lambda params: ManipulationResponse(ManipulationResult.SUCCESS, value="ctx7")
        )
        ctx = orchestrator.context()

        invocation = ctx.manipulate("createContextStateWithAssociation", descriptorHandle="pat0")

        with message_log.manipulations() as stream:
            records = list(stream)
        assert len(records) == 1
        assert records[0].parameter("descriptorHandle") == "pat0"
        assert records[0].value == "ctx7"
        assert invocation.window.contains(records[0].started_at)
        assert invocation.window.contains(records[0].finished_at)

    def test_previously_returned_values_only_counts_successes(self, orchestrator, device):
        responses = iter([
            ManipulationResponse(ManipulationResult.SUCCESS, value="ctx1"),
            ManipulationResponse(ManipulationResult.FAIL, value="ctx2"),
        ])
        device.handlers["createContextStateWithAssociation"] = lambda params: next(responses)
        ctx = orchestrator.context()

        ctx.manipulate("createContextStateWithAssociation")
        ctx.manipulate("createContextStateWithAssociation")

        assert ctx.previously_returned_values("createContextStateWithAssociation") == frozenset({"ctx1"})
        assert ctx.previously_returned_values("setComponentActivation") == frozenset()

    def test_sessions_and_reports(self, orchestrator, message_log, live_session):
        ctx = orchestrator.context()
        assert ctx.current_session() is None
        assert len(ctx.latest_snapshot()) == 0
        assert not ctx.has_report()

        live_session.document()
        live_session.states(ReportKind.EPISODIC_COMPONENT,
                            single_state("mds0", version=1, state_type="MdsState"))
        SessionRecorder(message_log, sequence_id="urn:uuid:seq-2").document()

        assert ctx.current_session() == "urn:uuid:seq-2"
        assert ctx.has_report(ReportKind.EPISODIC_COMPONENT)
        assert not ctx.has_report(ReportKind.DESCRIPTION_MODIFICATION)
        assert ctx.latest_snapshot("urn:uuid:seq-1").mdib_version.version == 1


class DeliveringClock(ManualClock):
    """Manual clock that runs a delivery callback after a given number of sleeps."""

    def __init__(self, start, deliver_after):
        super().__init__(start)
        self.deliver_after = deliver_after
        self.deliver = None

    def sleep(self, seconds):
        super().sleep(seconds)
        if self.sleep_count == self.deliver_after and self.deliver is not None:
            self.deliver()
