"""
Requirement Registry
====================

Explicit registry of the requirement checks a run may execute.
Constraint: no dynamic discovery. A check exists only if someone called
register() with it.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, Iterable, Optional, Tuple

from .manipulation.orchestrator import Orchestrator, Precondition
from .observability import InvalidationSink
from .temporal.historian import Historian


class CheckStatus(Enum):
    PASSED = "passed"
    FAILED = "failed"
    NOT_APPLICABLE = "not_applicable"


@dataclass(frozen=True)
class CheckOutcome:
    """Result of one requirement check. Messages explain failures."""
    requirement_id: str
    status: CheckStatus
    messages: Tuple[str, ...] = field(default_factory=tuple)
    checked: int = 0

    @property
    def passed(self) -> bool:
        return self.status is CheckStatus.PASSED

    @staticmethod
    def judge(requirement_id: str, failures: Iterable[str], checked: int) -> CheckOutcome:
        """FAILED if any failure, NOT_APPLICABLE if nothing was checked."""
        failures = tuple(failures)
        if failures:
            return CheckOutcome(requirement_id, CheckStatus.FAILED, failures, checked)
        if checked == 0:
            return CheckOutcome(
                requirement_id, CheckStatus.NOT_APPLICABLE,
                ("No applicable data in any session",), 0
            )
        return CheckOutcome(requirement_id, CheckStatus.PASSED, (), checked)


@dataclass(frozen=True)
class CheckContext:
    """Collaborators a check may use."""
    historian: Historian
    orchestrator: Orchestrator
    sink: InvalidationSink


CheckFunction = Callable[[CheckContext], CheckOutcome]


@dataclass(frozen=True)
class Requirement:
    requirement_id: str
    description: str
    check: CheckFunction
    preconditions: Tuple[Precondition, ...] = field(default_factory=tuple)


class RequirementRegistry:
    """Requirements in registration order. Ids are unique."""

    def __init__(self, requirements: Optional[Iterable[Requirement]] = None):
        self._requirements: Dict[str, Requirement] = {}
        for requirement in requirements or ():
            self.register(requirement)

    def register(self, requirement: Requirement) -> Requirement:
        if requirement.requirement_id in self._requirements:
            raise ValueError(f"Requirement already registered: {requirement.requirement_id}")
        self._requirements[requirement.requirement_id] = requirement
        return requirement

    def get(self, requirement_id: str) -> Requirement:
        """Lookup requirement by ID or raise error."""
        try:
            return self._requirements[requirement_id]
        except KeyError:
            raise ValueError(f"Unknown requirement_id: {requirement_id}") from None

    def all(self) -> Tuple[Requirement, ...]:
        return tuple(self._requirements.values())

    def select(self, requirement_ids: Optional[Iterable[str]]) -> Tuple[Requirement, ...]:
        """The named requirements in registration order; None selects all."""
        if requirement_ids is None:
            return self.all()
        wanted = frozenset(requirement_ids)
        for requirement_id in wanted:
            self.get(requirement_id)
        return tuple(r for r in self._requirements.values() if r.requirement_id in wanted)

    def __contains__(self, requirement_id: object) -> bool:
        return requirement_id in self._requirements

    def __len__(self) -> int:
        return len(self._requirements)
