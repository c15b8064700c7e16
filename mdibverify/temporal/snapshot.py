"""
Snapshot Model
==============

Immutable, versioned view of a whole MDIB at one point of a session.

INVARIANTS:
===========
- A Snapshot is never mutated after construction
- Lookup indices (by handle, by type, by parent) are derived from the
  descriptor and state maps and never take part in equality
- Two snapshots built from the same inputs compare equal

GUARANTEES:
===========
- Queries never return mutable internals (read-only mappings, tuples)
- verify_structure() reports every broken tree/uniqueness invariant as an
  Error value instead of raising
"""

from __future__ import annotations
from collections import Counter
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional, Tuple
import networkx as nx

from ..contracts.base import Error, ErrorCode
from ..contracts.mdib import Descriptor, Entity, MdibVersion, State
from ..contracts.reports import MdibDocument


def _freeze(mapping: Mapping) -> Mapping:
    if isinstance(mapping, MappingProxyType):
        return mapping
    return MappingProxyType(dict(mapping))


# =============================================================================
# SNAPSHOT
# =============================================================================

@dataclass(frozen=True)
class Snapshot:
    """
    Immutable MDIB snapshot.

    descriptors keeps document order (insertion order of the applier).
    states is keyed by State.key: the multi-state handle, or the descriptor
    handle for single states.
    """
    mdib_version: MdibVersion
    descriptors: Mapping[str, Descriptor]
    states: Mapping[str, State]
    description_version: int = 0
    state_version: int = 0

    _children: Mapping[str, Tuple[str, ...]] = field(init=False, compare=False, repr=False)
    _roots: Tuple[str, ...] = field(init=False, compare=False, repr=False)
    _by_type: Mapping[str, Tuple[str, ...]] = field(init=False, compare=False, repr=False)
    _states_by_descriptor: Mapping[str, Tuple[str, ...]] = field(init=False, compare=False, repr=False)

    def __post_init__(self):
        object.__setattr__(self, 'descriptors', _freeze(self.descriptors))
        object.__setattr__(self, 'states', _freeze(self.states))

        children: Dict[str, List[str]] = {}
        roots: List[str] = []
        by_type: Dict[str, List[str]] = {}
        for handle, descriptor in self.descriptors.items():
            if descriptor.parent_handle is None:
                roots.append(handle)
            else:
                children.setdefault(descriptor.parent_handle, []).append(handle)
            by_type.setdefault(descriptor.descriptor_type, []).append(handle)

        states_by_descriptor: Dict[str, List[str]] = {}
        for key, state in self.states.items():
            states_by_descriptor.setdefault(state.descriptor_handle, []).append(key)

        object.__setattr__(self, '_children', {k: tuple(v) for k, v in children.items()})
        object.__setattr__(self, '_roots', tuple(roots))
        object.__setattr__(self, '_by_type', {k: tuple(v) for k, v in by_type.items()})
        object.__setattr__(
            self, '_states_by_descriptor',
            {k: tuple(v) for k, v in states_by_descriptor.items()}
        )

    # -------------------------------------------------------------------------
    # Construction
    # -------------------------------------------------------------------------

    @staticmethod
    def empty(sequence_id: str = "", instance_id: int = 0) -> Snapshot:
        """Bootstrap snapshot for a session without an initial document."""
        return Snapshot(
            mdib_version=MdibVersion(sequence_id=sequence_id, instance_id=instance_id),
            descriptors={},
            states={},
        )

    @staticmethod
    def from_document(document: MdibDocument) -> Snapshot:
        """
        Bootstrap snapshot from a captured full MDIB.

        A handle listed twice keeps its last entry; document_errors()
        reports such documents.
        """
        return Snapshot(
            mdib_version=document.mdib_version,
            descriptors={d.handle: d for d in document.descriptors},
            states={s.key: s for s in document.states},
            description_version=document.description_version,
            state_version=document.state_version,
        )

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def __contains__(self, handle: object) -> bool:
        return handle in self.descriptors or handle in self.states

    def __len__(self) -> int:
        return len(self.descriptors)

    def descriptor(self, handle: str) -> Optional[Descriptor]:
        return self.descriptors.get(handle)

    def state(self, key: str) -> Optional[State]:
        """Single state by descriptor handle, or multi-state by its handle."""
        return self.states.get(key)

    def states_of(self, descriptor_handle: str) -> Tuple[State, ...]:
        return tuple(
            self.states[key]
            for key in self._states_by_descriptor.get(descriptor_handle, ())
        )

    def multi_states_of(self, descriptor_handle: str) -> Tuple[State, ...]:
        return tuple(s for s in self.states_of(descriptor_handle) if s.is_multi_state)

    def entity(self, handle: str) -> Optional[Entity]:
        descriptor = self.descriptors.get(handle)
        if descriptor is None:
            return None
        return Entity(
            descriptor=descriptor,
            states=self.states_of(handle),
            children=self.children_of(handle),
        )

    def entities_by_type(self, descriptor_type: str) -> Tuple[Entity, ...]:
        return tuple(
            self.entity(handle)
            for handle in self._by_type.get(descriptor_type, ())
        )

    def children_of(self, handle: str) -> Tuple[str, ...]:
        return self._children.get(handle, ())

    def descendants_of(self, handle: str) -> Tuple[str, ...]:
        """All descendants in pre-order, excluding handle itself."""
        result: List[str] = []
        stack = list(reversed(self.children_of(handle)))
        while stack:
            current = stack.pop()
            result.append(current)
            stack.extend(reversed(self.children_of(current)))
        return tuple(result)

    def root_handles(self) -> Tuple[str, ...]:
        return self._roots

    def descriptor_handles(self) -> Tuple[str, ...]:
        return tuple(self.descriptors)

    def multi_state_handles(self) -> Tuple[str, ...]:
        return tuple(s.handle for s in self.states.values() if s.is_multi_state)

    def verify_structure(self) -> Tuple[Error, ...]:
        """Check tree shape, references and handle uniqueness."""
        return ContainmentTopology(self).verify()


def document_errors(document: MdibDocument) -> Tuple[Error, ...]:
    """
    Handles listed more than once in a full MDIB.

    A snapshot cannot hold duplicates, so they must be found on the
    document itself.
    """
    errors: List[Error] = []
    for handle, count in Counter(d.handle for d in document.descriptors).items():
        if count > 1:
            errors.append(Error.create(
                ErrorCode.DUPLICATE_HANDLE,
                f"Descriptor handle {handle} is listed {count} times",
                handle=handle,
            ))
    for key, count in Counter(s.key for s in document.states).items():
        if count > 1:
            errors.append(Error.create(
                ErrorCode.DUPLICATE_HANDLE,
                f"State {key} is listed {count} times",
                handle=key,
            ))
    return tuple(errors)


# =============================================================================
# TREE VERIFICATION
# =============================================================================

class ContainmentTopology:
    """
    Containment tree of a snapshot as a directed graph (parent -> child).

    Used for structural verification only; queries go through the
    snapshot's own indices.
    """

    def __init__(self, snapshot: Snapshot):
        self._snapshot = snapshot
        self._graph = nx.DiGraph()
        for handle, descriptor in snapshot.descriptors.items():
            self._graph.add_node(handle)
            if descriptor.parent_handle is not None:
                self._graph.add_edge(descriptor.parent_handle, handle)

    def verify(self) -> Tuple[Error, ...]:
        snapshot = self._snapshot
        errors: List[Error] = []

        for handle, descriptor in snapshot.descriptors.items():
            parent = descriptor.parent_handle
            if parent is not None and parent not in snapshot.descriptors:
                errors.append(Error.create(
                    ErrorCode.UNKNOWN_PARENT,
                    f"Descriptor {handle} references unknown parent {parent}",
                    handle=handle,
                ))

        if not nx.is_directed_acyclic_graph(self._graph):
            cycle = nx.find_cycle(self._graph)
            errors.append(Error.create(
                ErrorCode.STRUCTURAL_INCONSISTENCY,
                f"Containment cycle through {', '.join(edge[0] for edge in cycle)}",
            ))

        for key, state in snapshot.states.items():
            if state.descriptor_handle not in snapshot.descriptors:
                errors.append(Error.create(
                    ErrorCode.UNKNOWN_HANDLE,
                    f"State {key} references unknown descriptor {state.descriptor_handle}",
                    handle=key,
                ))
            if state.is_multi_state and state.handle in snapshot.descriptors:
                errors.append(Error.create(
                    ErrorCode.HANDLE_COLLISION,
                    f"Multi-state handle {state.handle} is also a descriptor handle",
                    handle=state.handle,
                ))

        return tuple(errors)


# =============================================================================
# COPY-ON-WRITE BUILDER
# =============================================================================

class SnapshotBuilder:
    """
    Private working copy used by the report applier.

    The base snapshot is never touched; build() freezes the working copy
    into a new Snapshot. A builder that is discarded leaves no trace.
    """

    def __init__(self, base: Snapshot):
        self._descriptors: Dict[str, Descriptor] = dict(base.descriptors)
        self._states: Dict[str, State] = dict(base.states)
        self._mdib_version = base.mdib_version
        self._description_version = base.description_version
        self._state_version = base.state_version

    def descriptor(self, handle: str) -> Optional[Descriptor]:
        return self._descriptors.get(handle)

    def state(self, key: str) -> Optional[State]:
        return self._states.get(key)

    def put_descriptor(self, descriptor: Descriptor):
        self._descriptors[descriptor.handle] = descriptor

    def put_state(self, state: State):
        self._states[state.key] = state

    def descendants(self, handle: str) -> Tuple[str, ...]:
        children: Dict[str, List[str]] = {}
        for child, descriptor in self._descriptors.items():
            if descriptor.parent_handle is not None:
                children.setdefault(descriptor.parent_handle, []).append(child)
        result: List[str] = []
        stack = list(reversed(children.get(handle, [])))
        while stack:
            current = stack.pop()
            result.append(current)
            stack.extend(reversed(children.get(current, [])))
        return tuple(result)

    def remove_subtree(self, handle: str) -> Tuple[str, ...]:
        """Remove handle, all descendants and all their states."""
        removed = (handle,) + self.descendants(handle)
        gone = frozenset(removed)
        for h in removed:
            del self._descriptors[h]
        for key in [k for k, s in self._states.items() if s.descriptor_handle in gone]:
            del self._states[key]
        return removed

    def set_versions(
        self,
        mdib_version: MdibVersion,
        description_version: Optional[int] = None,
        state_version: Optional[int] = None
    ):
        self._mdib_version = mdib_version
        if description_version is not None:
            self._description_version = description_version
        if state_version is not None:
            self._state_version = state_version

    def build(self) -> Snapshot:
        return Snapshot(
            mdib_version=self._mdib_version,
            descriptors=self._descriptors,
            states=self._states,
            description_version=self._description_version,
            state_version=self._state_version,
        )
