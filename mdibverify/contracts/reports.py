"""
Report Contracts
================

Decoded reports as immutable values, and the body type tags under which
they are captured in the message log.

INVARIANTS:
===========
- Parts are applied strictly in order
- Only description modification parts carry a modification kind
- State reports carry exactly one part
"""

from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, FrozenSet, Optional, Tuple

from .mdib import Descriptor, MdibVersion, State


# =============================================================================
# BODY TYPES
# =============================================================================

GET_MDIB_RESPONSE = "msg:GetMdibResponse"


class ReportKind(Enum):
    """Report families the applier understands, valued by body type tag."""
    DESCRIPTION_MODIFICATION = "msg:DescriptionModificationReport"
    EPISODIC_ALERT = "msg:EpisodicAlertReport"
    EPISODIC_COMPONENT = "msg:EpisodicComponentReport"
    EPISODIC_CONTEXT = "msg:EpisodicContextReport"
    EPISODIC_METRIC = "msg:EpisodicMetricReport"
    EPISODIC_OPERATIONAL_STATE = "msg:EpisodicOperationalStateReport"

    @property
    def body_type(self) -> str:
        return self.value

    @property
    def is_state_report(self) -> bool:
        return self is not ReportKind.DESCRIPTION_MODIFICATION

    @staticmethod
    def from_body_type(body_type: str) -> ReportKind:
        for kind in ReportKind:
            if kind.value == body_type:
                return kind
        raise ValueError(f"Unknown report body type: {body_type}")


REPORT_BODY_TYPES: FrozenSet[str] = frozenset(kind.body_type for kind in ReportKind)


class ModificationKind(Enum):
    CREATE = "Crt"
    UPDATE = "Upt"
    DELETE = "Del"


# =============================================================================
# REPORTS
# =============================================================================

@dataclass(frozen=True)
class ReportPart:
    """
    One ordered unit of a report.

    For description modifications, parent_handle names the parent of the
    created descriptors unless a descriptor names its own parent.
    """
    descriptors: Tuple[Descriptor, ...] = field(default_factory=tuple)
    states: Tuple[State, ...] = field(default_factory=tuple)
    modification: Optional[ModificationKind] = None
    parent_handle: Optional[str] = None


@dataclass(frozen=True)
class Report:
    """A decoded report with the MdibVersion it declares."""
    kind: ReportKind
    mdib_version: MdibVersion
    parts: Tuple[ReportPart, ...] = field(default_factory=tuple)
    description_version: Optional[int] = None
    state_version: Optional[int] = None

    @property
    def sequence_id(self) -> str:
        return self.mdib_version.sequence_id

    def descriptor_handles(self) -> Tuple[str, ...]:
        return tuple(d.handle for part in self.parts for d in part.descriptors)

    def states(self) -> Tuple[State, ...]:
        return tuple(s for part in self.parts for s in part.states)

    def state_for(self, key: str) -> Optional[State]:
        for state in self.states():
            if state.key == key:
                return state
        return None

    @staticmethod
    def description_modification(
        mdib_version: MdibVersion,
        *parts: ReportPart,
        description_version: Optional[int] = None
    ) -> Report:
        return Report(
            kind=ReportKind.DESCRIPTION_MODIFICATION,
            mdib_version=mdib_version,
            parts=tuple(parts),
            description_version=description_version,
        )

    @staticmethod
    def state_report(
        kind: ReportKind,
        mdib_version: MdibVersion,
        states: Tuple[State, ...],
        state_version: Optional[int] = None
    ) -> Report:
        if not kind.is_state_report:
            raise ValueError(f"{kind.name} is not a state report kind")
        return Report(
            kind=kind,
            mdib_version=mdib_version,
            parts=(ReportPart(states=tuple(states)),),
            state_version=state_version,
        )


@dataclass(frozen=True)
class MdibDocument:
    """Full MDIB as captured in an initial GetMdibResponse."""
    mdib_version: MdibVersion
    descriptors: Tuple[Descriptor, ...] = field(default_factory=tuple)
    states: Tuple[State, ...] = field(default_factory=tuple)
    description_version: int = 0
    state_version: int = 0


ReportFilter = Callable[[Report], bool]


def any_report(report: Report) -> bool:
    return True


def of_kind(*kinds: ReportKind) -> ReportFilter:
    """Report filter admitting only the given kinds."""
    wanted = frozenset(kinds)

    def _filter(report: Report) -> bool:
        return report.kind in wanted
    return _filter


def state_reports(report: Report) -> bool:
    return report.kind.is_state_report
