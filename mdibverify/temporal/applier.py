"""
Report Applier
==============

Pure function (snapshot, report) -> next snapshot or ApplyError.

INVARIANTS:
===========
- Deterministic: equal inputs give structurally equal snapshots
- Transactional: a rejected report leaves no partial result behind; the
  input snapshot is immutable and the working copy is discarded
- Deleting a descriptor removes its whole subtree and every state hanging
  off it
- The report's own MdibVersion is recorded as-is; version regressions are
  left for the checks to judge

ERROR HANDLING:
===============
Content problems never raise. They come back as Result.failure(ApplyError)
so the caller decides whether they are a failed assertion.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import FrozenSet, Optional, Set

from ..contracts.base import Error, ErrorCode, Result
from ..contracts.mdib import MdibVersion, State
from ..contracts.reports import ModificationKind, Report, ReportKind, ReportPart
from .snapshot import Snapshot, SnapshotBuilder


# =============================================================================
# ERRORS
# =============================================================================

@dataclass(frozen=True)
class ApplyError:
    """Why a report could not be applied to a snapshot."""
    code: ErrorCode
    message: str
    report_kind: ReportKind
    mdib_version: MdibVersion
    handle: Optional[str] = None

    def to_error(self) -> Error:
        error = Error.create(
            self.code,
            self.message,
            report=self.report_kind.name,
            sequence_id=self.mdib_version.sequence_id,
            version=str(self.mdib_version.version),
        )
        if self.handle is not None:
            error = error.with_context("handle", self.handle)
        return error


class ReportApplicationError(Exception):
    """
    Checked failure raised by a history cursor when a report cannot be
    applied. Carries the ApplyError value.
    """

    def __init__(self, error: ApplyError):
        super().__init__(error.message)
        self.error = error


# =============================================================================
# APPLIER
# =============================================================================

class ReportApplier:
    """
    Applies description modification and episodic state reports.

    With strict_subtree_deletion, a deletion must list every descendant of
    the deleted descriptor in the same report; otherwise the missing
    descendants are reported as a partial deletion.
    """

    def __init__(self, strict_subtree_deletion: bool = False):
        self._strict_subtree_deletion = strict_subtree_deletion

    def apply(self, snapshot: Snapshot, report: Report) -> Result:
        """Return Result.success(Snapshot) or Result.failure(ApplyError)."""
        builder = SnapshotBuilder(snapshot)

        if report.kind is ReportKind.DESCRIPTION_MODIFICATION:
            error = self._apply_description(builder, report)
        else:
            error = self._apply_states(builder, report)

        if error is not None:
            return Result.failure(error)

        builder.set_versions(
            report.mdib_version,
            description_version=report.description_version,
            state_version=report.state_version,
        )
        return Result.success(builder.build())

    # -------------------------------------------------------------------------
    # Description modification
    # -------------------------------------------------------------------------

    def _apply_description(self, builder: SnapshotBuilder, report: Report) -> Optional[ApplyError]:
        deleted: Set[str] = set()
        listed_for_deletion = frozenset(
            d.handle
            for part in report.parts
            if part.modification is ModificationKind.DELETE
            for d in part.descriptors
        )

        for part in report.parts:
            if part.modification is ModificationKind.CREATE:
                error = self._create(builder, report, part)
            elif part.modification is ModificationKind.UPDATE:
                error = self._update(builder, report, part)
            elif part.modification is ModificationKind.DELETE:
                error = self._delete(builder, report, part, deleted, listed_for_deletion)
            else:
                error = _reject(
                    ErrorCode.MALFORMED_REPORT, report,
                    "Description modification part without modification kind"
                )
            if error is not None:
                return error
        return None

    def _create(self, builder: SnapshotBuilder, report: Report, part: ReportPart) -> Optional[ApplyError]:
        for descriptor in part.descriptors:
            handle = descriptor.handle
            if builder.descriptor(handle) is not None:
                return _reject(
                    ErrorCode.DUPLICATE_HANDLE, report,
                    f"Descriptor {handle} inserted but already present", handle
                )
            existing_state = builder.state(handle)
            if existing_state is not None and existing_state.is_multi_state:
                return _reject(
                    ErrorCode.HANDLE_COLLISION, report,
                    f"Descriptor {handle} collides with a multi-state handle", handle
                )
            parent = descriptor.parent_handle or part.parent_handle
            if parent is not None and builder.descriptor(parent) is None:
                return _reject(
                    ErrorCode.UNKNOWN_PARENT, report,
                    f"Descriptor {handle} inserted below unknown parent {parent}", handle
                )
            builder.put_descriptor(descriptor.with_parent(parent))
        return self._install_states(builder, report, part.states)

    def _update(self, builder: SnapshotBuilder, report: Report, part: ReportPart) -> Optional[ApplyError]:
        for descriptor in part.descriptors:
            handle = descriptor.handle
            existing = builder.descriptor(handle)
            if existing is None:
                return _reject(
                    ErrorCode.UNKNOWN_HANDLE, report,
                    f"Descriptor {handle} updated but not present", handle
                )
            parent = descriptor.parent_handle or part.parent_handle or existing.parent_handle
            if parent != existing.parent_handle:
                return _reject(
                    ErrorCode.REPARENTING, report,
                    f"Descriptor {handle} moved from {existing.parent_handle} to {parent}",
                    handle
                )
            builder.put_descriptor(descriptor.with_parent(existing.parent_handle))
        return self._install_states(builder, report, part.states)

    def _delete(
        self,
        builder: SnapshotBuilder,
        report: Report,
        part: ReportPart,
        deleted: Set[str],
        listed: FrozenSet[str]
    ) -> Optional[ApplyError]:
        for descriptor in part.descriptors:
            handle = descriptor.handle
            if handle in deleted:
                # already gone with an ancestor deleted earlier in this report
                continue
            if builder.descriptor(handle) is None:
                return _reject(
                    ErrorCode.UNKNOWN_HANDLE, report,
                    f"Descriptor {handle} deleted but not present", handle
                )
            if self._strict_subtree_deletion:
                missing = [h for h in builder.descendants(handle) if h not in listed]
                if missing:
                    return _reject(
                        ErrorCode.PARTIAL_SUBTREE_DELETION, report,
                        f"Descriptor {handle} deleted without its descendants "
                        f"{', '.join(missing)}",
                        handle
                    )
            deleted.update(builder.remove_subtree(handle))
        return None

    # -------------------------------------------------------------------------
    # States
    # -------------------------------------------------------------------------

    def _apply_states(self, builder: SnapshotBuilder, report: Report) -> Optional[ApplyError]:
        for part in report.parts:
            if part.modification is not None or part.descriptors:
                return _reject(
                    ErrorCode.MALFORMED_REPORT, report,
                    f"{report.kind.name} carries descriptors or a modification kind"
                )
            error = self._install_states(builder, report, part.states)
            if error is not None:
                return error
        return None

    def _install_states(self, builder: SnapshotBuilder, report: Report, states) -> Optional[ApplyError]:
        for state in states:
            error = _check_state(builder, report, state)
            if error is not None:
                return error
            builder.put_state(state)
        return None


def _check_state(builder: SnapshotBuilder, report: Report, state: State) -> Optional[ApplyError]:
    if builder.descriptor(state.descriptor_handle) is None:
        return _reject(
            ErrorCode.UNKNOWN_HANDLE, report,
            f"State references unknown descriptor {state.descriptor_handle}",
            state.descriptor_handle
        )
    if state.is_multi_state:
        if builder.descriptor(state.handle) is not None:
            return _reject(
                ErrorCode.HANDLE_COLLISION, report,
                f"Multi-state handle {state.handle} is already a descriptor handle",
                state.handle
            )
        existing = builder.state(state.handle)
        if existing is not None and existing.descriptor_handle != state.descriptor_handle:
            return _reject(
                ErrorCode.HANDLE_COLLISION, report,
                f"Multi-state handle {state.handle} moved from descriptor "
                f"{existing.descriptor_handle} to {state.descriptor_handle}",
                state.handle
            )
    return None


def _reject(code: ErrorCode, report: Report, message: str, handle: Optional[str] = None) -> ApplyError:
    return ApplyError(
        code=code,
        message=message,
        report_kind=report.kind,
        mdib_version=report.mdib_version,
        handle=handle,
    )
