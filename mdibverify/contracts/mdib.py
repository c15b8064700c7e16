"""
MDIB Data Contracts
===================

Immutable building blocks of a snapshot: the version triple, descriptors,
states and the entity query view.

INVARIANTS:
===========
- A descriptor handle identifies exactly one descriptor
- A multi-state handle identifies exactly one state and never equals a
  descriptor handle
- Single states are addressed through their descriptor handle
- Attributes are stored sorted so equal content compares equal
"""

from __future__ import annotations
from dataclasses import dataclass, field, replace
from typing import Mapping, Optional, Tuple


# =============================================================================
# DESCRIPTOR TYPES
# =============================================================================

MDS = "MdsDescriptor"
VMD = "VmdDescriptor"
CHANNEL = "ChannelDescriptor"
SCO = "ScoDescriptor"
SYSTEM_CONTEXT = "SystemContextDescriptor"
CLOCK = "ClockDescriptor"
BATTERY = "BatteryDescriptor"
NUMERIC_METRIC = "NumericMetricDescriptor"
STRING_METRIC = "StringMetricDescriptor"
ENUM_STRING_METRIC = "EnumStringMetricDescriptor"
ALERT_SYSTEM = "AlertSystemDescriptor"
ALERT_CONDITION = "AlertConditionDescriptor"
ALERT_SIGNAL = "AlertSignalDescriptor"
PATIENT_CONTEXT = "PatientContextDescriptor"
LOCATION_CONTEXT = "LocationContextDescriptor"
ENSEMBLE_CONTEXT = "EnsembleContextDescriptor"
OPERATOR_CONTEXT = "OperatorContextDescriptor"
WORKFLOW_CONTEXT = "WorkflowContextDescriptor"
MEANS_CONTEXT = "MeansContextDescriptor"

COMPONENT_DESCRIPTOR_TYPES = frozenset({
    MDS, VMD, CHANNEL, SCO, SYSTEM_CONTEXT, CLOCK, BATTERY,
})

CONTEXT_DESCRIPTOR_TYPES = frozenset({
    PATIENT_CONTEXT, LOCATION_CONTEXT, ENSEMBLE_CONTEXT,
    OPERATOR_CONTEXT, WORKFLOW_CONTEXT, MEANS_CONTEXT,
})

METRIC_DESCRIPTOR_TYPES = frozenset({
    NUMERIC_METRIC, STRING_METRIC, ENUM_STRING_METRIC,
})

# Attribute names with protocol meaning
ACTIVATION_STATE = "ActivationState"
CONTEXT_ASSOCIATION = "ContextAssociation"
METRIC_CATEGORY = "MetricCategory"

ASSOCIATED = "Assoc"

# MetricCategory values
MEASUREMENT = "Msrmt"
CALCULATION = "Clc"
SETTING = "Set"

ALERT_ACTIVATIONS = ("On", "Psd", "Off")


def _sorted_attributes(attributes: Mapping[str, str]) -> Tuple[Tuple[str, str], ...]:
    return tuple(sorted((str(k), str(v)) for k, v in attributes.items()))


# =============================================================================
# VERSION
# =============================================================================

@dataclass(frozen=True)
class MdibVersion:
    """
    Version triple of an MDIB.

    Versions are only totally ordered inside one sequence id. Comparing
    versions of different sequences is a programming error.
    """
    sequence_id: str
    instance_id: int = 0
    version: int = 0

    def comparable_with(self, other: MdibVersion) -> bool:
        return self.sequence_id == other.sequence_id

    def _key(self, other: MdibVersion) -> Tuple[int, int]:
        if not self.comparable_with(other):
            raise ValueError(
                f"MdibVersions of sequences {self.sequence_id!r} and "
                f"{other.sequence_id!r} are not comparable"
            )
        return (self.instance_id, self.version)

    def __lt__(self, other: MdibVersion) -> bool:
        return self._key(other) < (other.instance_id, other.version)

    def __le__(self, other: MdibVersion) -> bool:
        return self._key(other) <= (other.instance_id, other.version)

    def __gt__(self, other: MdibVersion) -> bool:
        return self._key(other) > (other.instance_id, other.version)

    def __ge__(self, other: MdibVersion) -> bool:
        return self._key(other) >= (other.instance_id, other.version)


# =============================================================================
# DESCRIPTORS AND STATES
# =============================================================================

@dataclass(frozen=True)
class Descriptor:
    """Immutable descriptor. Children are tracked by the snapshot, not here."""
    handle: str
    descriptor_type: str
    descriptor_version: int = 0
    parent_handle: Optional[str] = None
    attributes: Tuple[Tuple[str, str], ...] = field(default_factory=tuple)

    def __post_init__(self):
        if not self.handle:
            raise ValueError("Descriptor handle must be a non-empty string")

    @staticmethod
    def create(
        handle: str,
        descriptor_type: str,
        parent_handle: Optional[str] = None,
        descriptor_version: int = 0,
        **attributes: str
    ) -> Descriptor:
        return Descriptor(
            handle=handle,
            descriptor_type=descriptor_type,
            descriptor_version=descriptor_version,
            parent_handle=parent_handle,
            attributes=_sorted_attributes(attributes),
        )

    def attribute(self, name: str) -> Optional[str]:
        return dict(self.attributes).get(name)

    def with_parent(self, parent_handle: Optional[str]) -> Descriptor:
        return replace(self, parent_handle=parent_handle)

    def content_equals(self, other: Descriptor) -> bool:
        """Compare everything but the version and the containment position."""
        return (
            self.handle == other.handle
            and self.descriptor_type == other.descriptor_type
            and self.attributes == other.attributes
        )


@dataclass(frozen=True)
class State:
    """
    Immutable state.

    handle is only set for multi-states (context states). Single states are
    keyed by their descriptor handle.
    """
    descriptor_handle: str
    state_type: str
    state_version: int = 0
    handle: Optional[str] = None
    descriptor_version: int = 0
    attributes: Tuple[Tuple[str, str], ...] = field(default_factory=tuple)

    @staticmethod
    def create(
        descriptor_handle: str,
        state_type: str,
        state_version: int = 0,
        handle: Optional[str] = None,
        descriptor_version: int = 0,
        **attributes: str
    ) -> State:
        return State(
            descriptor_handle=descriptor_handle,
            state_type=state_type,
            state_version=state_version,
            handle=handle,
            descriptor_version=descriptor_version,
            attributes=_sorted_attributes(attributes),
        )

    @property
    def is_multi_state(self) -> bool:
        return self.handle is not None

    @property
    def key(self) -> str:
        return self.handle if self.handle is not None else self.descriptor_handle

    def attribute(self, name: str) -> Optional[str]:
        return dict(self.attributes).get(name)

    def content_equals(self, other: State) -> bool:
        return (
            self.key == other.key
            and self.descriptor_handle == other.descriptor_handle
            and self.state_type == other.state_type
            and self.attributes == other.attributes
        )


@dataclass(frozen=True)
class Entity:
    """Query view joining a descriptor with its states and child handles."""
    descriptor: Descriptor
    states: Tuple[State, ...]
    children: Tuple[str, ...]

    @property
    def handle(self) -> str:
        return self.descriptor.handle

    @property
    def is_multi_state(self) -> bool:
        return self.descriptor.descriptor_type in CONTEXT_DESCRIPTOR_TYPES

    @property
    def state(self) -> Optional[State]:
        """The single state, if this is not a multi-state entity."""
        if self.is_multi_state or not self.states:
            return None
        return self.states[0]
