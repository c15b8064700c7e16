"""
Concrete Preconditions
======================

Preconditions shared by several requirement checks. Each remediation
classifies its own outcome: a device that claims success but reports
something else is a DEVICE_DEFECT, a device that cannot do the
manipulation is NOT_APPLICABLE.
"""

from __future__ import annotations
from typing import Optional, Tuple

from ..contracts.base import TimeRange
from ..contracts.mdib import (
    ACTIVATION_STATE, ALERT_ACTIVATIONS, ALERT_SYSTEM, ASSOCIATED, COMPONENT_DESCRIPTOR_TYPES,
    CONTEXT_ASSOCIATION, CONTEXT_DESCRIPTOR_TYPES, METRIC_CATEGORY, METRIC_DESCRIPTOR_TYPES,
    PATIENT_CONTEXT,
)
from ..contracts.reports import Report, ReportKind
from . import (
    CREATE_CONTEXT_STATE_WITH_ASSOCIATION, SET_ALERT_ACTIVATION, SET_COMPONENT_ACTIVATION,
    SET_METRIC_STATUS, TRIGGER_ANY_DESCRIPTOR_UPDATE,
)
from .orchestrator import (
    ManipulationInvocation, Precondition, RemediationContext, RemediationOutcome,
)


def _refusal(invocation: ManipulationInvocation, subject: str) -> Optional[RemediationOutcome]:
    if invocation.refused:
        return RemediationOutcome.not_applicable(
            f"{invocation.operation} for {subject} returned {invocation.result.value}"
        )
    if not invocation.succeeded:
        return RemediationOutcome.failed(
            f"{invocation.operation} for {subject} returned {invocation.result.value}"
        )
    return None


# =============================================================================
# DESCRIPTION MODIFICATION
# =============================================================================

def _has_description_modification(ctx: RemediationContext) -> bool:
    return ctx.has_report(ReportKind.DESCRIPTION_MODIFICATION)


def _trigger_description_modification(ctx: RemediationContext) -> RemediationOutcome:
    invocation = ctx.manipulate(TRIGGER_ANY_DESCRIPTOR_UPDATE)
    refusal = _refusal(invocation, "any descriptor")
    if refusal is not None:
        return refusal

    report = ctx.await_report(
        lambda r: r.kind is ReportKind.DESCRIPTION_MODIFICATION,
        since=invocation.started_at,
    )
    if report is None:
        return RemediationOutcome.timeout(
            f"No description modification report within "
            f"{ctx.config.confirmation_timeout_seconds}s of {invocation.operation}"
        )
    return RemediationOutcome.satisfied()


def trigger_description_modification(max_attempts: int = 2) -> Precondition:
    """
    The session must contain at least one description modification report.

    Each attempt waits up to confirmation_timeout_seconds, so an unanswered
    trigger holds the run for max_attempts times that timeout (further
    capped by max_remediation_attempts).
    """
    return Precondition(
        name="description_modification_present",
        check=_has_description_modification,
        remediation=_trigger_description_modification,
        max_attempts=max_attempts,
    )


# =============================================================================
# CONTEXT ASSOCIATION
# =============================================================================

def associate_context_states(descriptor_type: str = PATIENT_CONTEXT, rounds: int = 2) -> Precondition:
    """
    For every context descriptor of descriptor_type, ask the device for a
    new associated context state, rounds times.

    Every returned handle must be fresh and must show up in a context
    report, bound to the requested descriptor, associated.
    """
    if descriptor_type not in CONTEXT_DESCRIPTOR_TYPES:
        raise ValueError(f"{descriptor_type} is not a context descriptor type")

    def _remediate(ctx: RemediationContext) -> RemediationOutcome:
        entities = ctx.latest_snapshot().entities_by_type(descriptor_type)
        if not entities:
            return RemediationOutcome.not_applicable(f"No {descriptor_type} in the MDIB")

        for entity in entities:
            for _ in range(rounds):
                outcome = _associate_once(ctx, entity.handle)
                if outcome is not None:
                    return outcome
        return RemediationOutcome.satisfied()

    return Precondition(
        name=f"associate_{descriptor_type}",
        check=None,
        remediation=_remediate,
    )


def _associate_once(ctx: RemediationContext, descriptor_handle: str) -> Optional[RemediationOutcome]:
    returned_before = ctx.previously_returned_values(CREATE_CONTEXT_STATE_WITH_ASSOCIATION)
    present_before = frozenset(ctx.latest_snapshot().multi_state_handles())

    invocation = ctx.manipulate(
        CREATE_CONTEXT_STATE_WITH_ASSOCIATION,
        descriptorHandle=descriptor_handle,
        contextAssociation=ASSOCIATED,
    )
    refusal = _refusal(invocation, descriptor_handle)
    if refusal is not None:
        return refusal

    new_handle = invocation.response.value
    if not new_handle:
        return RemediationOutcome.defect(
            f"{invocation.operation} for {descriptor_handle} succeeded without "
            f"returning a context state handle"
        )
    if new_handle in returned_before:
        return RemediationOutcome.defect(
            f"{invocation.operation} for {descriptor_handle} returned previously "
            f"used handle {new_handle}"
        )
    if new_handle in present_before:
        return RemediationOutcome.defect(
            f"{invocation.operation} for {descriptor_handle} returned handle "
            f"{new_handle}, which was already present before the manipulation"
        )

    def _announces_new_state(report: Report) -> bool:
        if report.kind is not ReportKind.EPISODIC_CONTEXT:
            return False
        return any(
            s.handle == new_handle
            or (s.descriptor_handle == descriptor_handle and s.handle not in present_before)
            for s in report.states()
        )

    report = ctx.await_report(_announces_new_state, since=invocation.started_at)
    if report is None:
        return RemediationOutcome.timeout(
            f"No context report for {new_handle} within "
            f"{ctx.config.confirmation_timeout_seconds}s"
        )

    state = report.state_for(new_handle)
    if state is None:
        reported = ", ".join(
            s.key for s in report.states() if s.descriptor_handle == descriptor_handle
        )
        return RemediationOutcome.defect(
            f"{invocation.operation} returned handle {new_handle} for "
            f"{descriptor_handle} but the context report announced {reported}"
        )
    if state.descriptor_handle != descriptor_handle:
        return RemediationOutcome.defect(
            f"Context state {new_handle} was requested for {descriptor_handle} "
            f"but reported for {state.descriptor_handle}"
        )
    association = state.attribute(CONTEXT_ASSOCIATION)
    if association != ASSOCIATED:
        return RemediationOutcome.defect(
            f"Context state {new_handle} reported association {association} "
            f"instead of {ASSOCIATED}"
        )
    return None


# =============================================================================
# CONFIRMATION
# =============================================================================

def _confirm(
    ctx: RemediationContext,
    invocation: ManipulationInvocation,
    kind: ReportKind,
    handle: str,
    expected: str,
    what: str
) -> Optional[RemediationOutcome]:
    """
    Await a report of kind showing handle with ActivationState expected.

    Within the manipulation window, a report of kind giving handle another
    value, or giving expected to some other handle, is a device defect.
    """
    def _carries(report: Report) -> bool:
        state = report.state_for(handle) if report.kind is kind else None
        return state is not None and state.attribute(ACTIVATION_STATE) == expected

    if ctx.await_report(_carries, since=invocation.started_at) is not None:
        return None

    window = TimeRange(start=invocation.started_at, end=ctx.clock.now())
    seen = [r for r in ctx.reports_between(window) if r.kind is kind]

    for report in reversed(seen):
        state = report.state_for(handle)
        if state is not None:
            return RemediationOutcome.defect(
                f"{invocation.operation} for {handle} succeeded but {handle} "
                f"reported {ACTIVATION_STATE} {state.attribute(ACTIVATION_STATE)} "
                f"instead of {expected}"
            )

    for report in seen:
        for state in report.states():
            if state.attribute(ACTIVATION_STATE) == expected:
                return RemediationOutcome.defect(
                    f"{invocation.operation} for {handle} succeeded but "
                    f"{ACTIVATION_STATE} {expected} was reported for {state.key}"
                )

    return RemediationOutcome.timeout(
        f"No {what} report for {handle} within "
        f"{ctx.config.confirmation_timeout_seconds}s"
    )


# =============================================================================
# COMPONENT ACTIVATION
# =============================================================================

def component_activation(
    descriptor_type: str,
    activation: str = "On",
    starting_activation: str = "Off"
) -> Precondition:
    """
    Every component of descriptor_type must report activation. Components
    already there are first driven to starting_activation so the change
    is observable.
    """
    if descriptor_type not in COMPONENT_DESCRIPTOR_TYPES:
        raise ValueError(f"{descriptor_type} is not a component descriptor type")

    def _check(ctx: RemediationContext) -> bool:
        entities = ctx.latest_snapshot().entities_by_type(descriptor_type)
        return bool(entities) and all(
            e.state is not None and e.state.attribute(ACTIVATION_STATE) == activation
            for e in entities
        )

    def _remediate(ctx: RemediationContext) -> RemediationOutcome:
        entities = ctx.latest_snapshot().entities_by_type(descriptor_type)
        if not entities:
            return RemediationOutcome.not_applicable(f"No {descriptor_type} in the MDIB")

        for entity in entities:
            current = entity.state.attribute(ACTIVATION_STATE) if entity.state else None
            if current == activation:
                outcome = _set_activation(ctx, entity.handle, starting_activation)
                if outcome is not None:
                    return outcome
            outcome = _set_activation(ctx, entity.handle, activation)
            if outcome is not None:
                return outcome
        return RemediationOutcome.satisfied()

    return Precondition(
        name=f"activate_{descriptor_type}_{activation}",
        check=_check,
        remediation=_remediate,
    )


def _set_activation(ctx: RemediationContext, handle: str, activation: str) -> Optional[RemediationOutcome]:
    invocation = ctx.manipulate(SET_COMPONENT_ACTIVATION, handle=handle, activation=activation)
    refusal = _refusal(invocation, handle)
    if refusal is not None:
        return refusal
    return _confirm(ctx, invocation, ReportKind.EPISODIC_COMPONENT, handle, activation, "component")


# =============================================================================
# ALERT SYSTEM ACTIVATION
# =============================================================================

def alert_system_activation(activations=ALERT_ACTIVATIONS) -> Precondition:
    """
    Walk every alert system through activations in order. Each step must
    be confirmed by an alert report carrying the new ActivationState.
    """

    def _remediate(ctx: RemediationContext) -> RemediationOutcome:
        entities = ctx.latest_snapshot().entities_by_type(ALERT_SYSTEM)
        if not entities:
            return RemediationOutcome.not_applicable(f"No {ALERT_SYSTEM} in the MDIB")

        for entity in entities:
            for activation in activations:
                invocation = ctx.manipulate(
                    SET_ALERT_ACTIVATION, handle=entity.handle, activation=activation
                )
                outcome = _refusal(invocation, entity.handle) or _confirm(
                    ctx, invocation, ReportKind.EPISODIC_ALERT, entity.handle, activation, "alert"
                )
                if outcome is not None:
                    return outcome
        return RemediationOutcome.satisfied()

    return Precondition(
        name="alert_system_activation",
        check=None,
        remediation=_remediate,
    )


# =============================================================================
# METRIC STATUS
# =============================================================================

def _metrics_of(snapshot, category: str) -> Tuple[str, ...]:
    return tuple(
        handle for handle, descriptor in snapshot.descriptors.items()
        if descriptor.descriptor_type in METRIC_DESCRIPTOR_TYPES
        and descriptor.attribute(METRIC_CATEGORY) == category
    )


def metric_status(
    category: str,
    activation: str,
    starting_activation: Optional[str] = None
) -> Precondition:
    """
    Every metric of category is set to starting_activation, then
    setMetricStatus must bring it to activation as shown by a metric report.

    starting_activation defaults to Off when activation is On, else to On.
    The first step only has to succeed; devices may skip the report when
    the metric already had that activation.
    """
    starting = starting_activation or ("Off" if activation == "On" else "On")

    def _remediate(ctx: RemediationContext) -> RemediationOutcome:
        handles = _metrics_of(ctx.latest_snapshot(), category)
        if not handles:
            return RemediationOutcome.not_applicable(f"No metric of category {category} in the MDIB")

        for handle in handles:
            prepared = ctx.manipulate(SET_COMPONENT_ACTIVATION, handle=handle, activation=starting)
            refusal = _refusal(prepared, handle)
            if refusal is not None:
                return refusal

            invocation = ctx.manipulate(
                SET_METRIC_STATUS, handle=handle, category=category, activation=activation
            )
            outcome = _refusal(invocation, handle) or _confirm(
                ctx, invocation, ReportKind.EPISODIC_METRIC, handle, activation, "metric"
            )
            if outcome is not None:
                return outcome
        return RemediationOutcome.satisfied()

    return Precondition(
        name=f"metric_status_{category}_{activation}",
        check=None,
        remediation=_remediate,
    )
