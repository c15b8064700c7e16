"""
Conformance Core
================

Composition root. Builds every layer from a message log, an optional
manipulation client and a CoreConfig, then runs registered requirements.

LAYER FLOW:
===========
1. Storage: captured messages and manipulation records
2. Temporal: snapshots replayed from the log
3. Manipulation: preconditions satisfied or remediated
4. Checks: requirements judged on the replayed snapshots
5. Observability: records all layer activity, collects invalidations

NO LAYER BYPASSES THIS FLOW.
"""

from __future__ import annotations
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, Optional, Tuple

from .checks import register_default_checks
from .config import CoreConfig
from .manipulation import ManipulationClient, RecordingManipulationClient
from .manipulation.http_client import HttpManipulationClient
from .manipulation.orchestrator import Orchestrator
from .observability import AuditEventType, AuditLog, InvalidationSink
from .registry import (
    CheckContext, CheckOutcome, CheckStatus, Requirement, RequirementRegistry,
)
from .storage import MessageLog
from .temporal.applier import ReportApplier
from .temporal.clock import Clock, SystemClock
from .temporal.historian import Historian


class ConformanceCore:
    """
    Wires the replay-and-verify core together.

    The manipulation client, if any, is wrapped so every call is recorded
    in the message log. Without one, a configured manipulation_url gets an
    HttpManipulationClient bounded by manipulation_timeout_seconds; close()
    releases it.
    """

    def __init__(
        self,
        message_log: MessageLog,
        manipulation_client: Optional[ManipulationClient] = None,
        config: Optional[CoreConfig] = None,
        clock: Optional[Clock] = None,
        registry: Optional[RequirementRegistry] = None
    ):
        self._config = config or CoreConfig()
        self._clock = clock or SystemClock()
        self._message_log = message_log

        # Observability first: every other layer reports into it
        self._audit = AuditLog()
        self._sink = InvalidationSink(self._audit)

        self._applier = ReportApplier(
            strict_subtree_deletion=self._config.historian.strict_subtree_deletion
        )
        self._historian = Historian(
            message_log, self._applier, self._audit, self._config.historian
        )

        self._owned_client: Optional[HttpManipulationClient] = None
        if manipulation_client is None and self._config.manipulation_url is not None:
            self._owned_client = HttpManipulationClient(
                self._config.manipulation_url,
                timeout_seconds=self._config.orchestrator.manipulation_timeout_seconds,
            )
            manipulation_client = self._owned_client
        self._manipulation_client = manipulation_client

        client = None
        if manipulation_client is not None:
            client = RecordingManipulationClient(
                manipulation_client, message_log, self._clock, self._audit
            )
        self._orchestrator = Orchestrator(
            self._historian,
            client=client,
            sink=self._sink,
            clock=self._clock,
            config=self._config.orchestrator,
            audit=self._audit,
        )

        if registry is None:
            registry = register_default_checks(RequirementRegistry())
        self._registry = registry

    # -------------------------------------------------------------------------
    # Accessors
    # -------------------------------------------------------------------------

    @property
    def historian(self) -> Historian:
        return self._historian

    @property
    def orchestrator(self) -> Orchestrator:
        return self._orchestrator

    @property
    def registry(self) -> RequirementRegistry:
        return self._registry

    @property
    def sink(self) -> InvalidationSink:
        return self._sink

    @property
    def audit(self) -> AuditLog:
        return self._audit

    @property
    def manipulation_client(self) -> Optional[ManipulationClient]:
        """The unwrapped client the orchestrator manipulates through."""
        return self._manipulation_client

    @property
    def config(self) -> CoreConfig:
        return self._config

    def close(self):
        if self._owned_client is not None:
            self._owned_client.close()

    def check_context(self) -> CheckContext:
        return CheckContext(
            historian=self._historian,
            orchestrator=self._orchestrator,
            sink=self._sink,
        )

    # -------------------------------------------------------------------------
    # Running requirements
    # -------------------------------------------------------------------------

    def run_requirement(self, requirement_id: str) -> CheckOutcome:
        return self._run(self._registry.get(requirement_id))

    def run_all(self) -> Tuple[CheckOutcome, ...]:
        """
        Run every enabled requirement. With worker_count > 1 requirements
        run in parallel; outcomes keep registration order either way.
        """
        requirements = self._registry.select(self._config.enabled_requirements)
        if self._config.worker_count == 1:
            return tuple(self._run(r) for r in requirements)

        with ThreadPoolExecutor(max_workers=self._config.worker_count) as pool:
            return tuple(pool.map(self._run, requirements))

    def summary(self, outcomes: Tuple[CheckOutcome, ...]) -> Dict[str, Any]:
        """Machine-readable totals for a set of outcomes."""
        counts = {status.value: 0 for status in CheckStatus}
        for outcome in outcomes:
            counts[outcome.status.value] += 1
        return {
            "total": len(outcomes),
            "counts": counts,
            "invalid": self._sink.is_invalid(),
            "invalidation_reasons": list(self._sink.reasons()),
        }

    def _run(self, requirement: Requirement) -> CheckOutcome:
        if requirement.preconditions:
            if not self._orchestrator.run_all(requirement.preconditions):
                outcome = CheckOutcome(
                    requirement.requirement_id,
                    CheckStatus.NOT_APPLICABLE,
                    ("Preconditions not satisfied",),
                )
                self._record(outcome)
                return outcome

        outcome = requirement.check(self.check_context())
        self._record(outcome)
        return outcome

    def _record(self, outcome: CheckOutcome):
        self._audit.record(
            "checks", "requirement",
            event_type=AuditEventType.CHECK,
            entity_id=outcome.requirement_id,
            outcome=outcome.status.value,
            checked=str(outcome.checked),
            messages=str(len(outcome.messages)),
        )
