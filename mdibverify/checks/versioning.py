"""
Versioning Checks
=================

Version discipline of descriptors and states across consecutive
snapshots.

ACCUMULATORS:
=============
Per-session memory (last seen versions, versions of deleted descriptors)
lives in an immutable ledger that the historian's fold threads from one
report to the next. Nothing is shared between sessions or checks.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import List, Mapping, Tuple

from ..contracts.reports import (
    ModificationKind, Report, ReportKind, any_report, of_kind, state_reports,
)
from ..registry import CheckContext, CheckOutcome
from ..temporal.snapshot import Snapshot
from . import over_sessions


@dataclass(frozen=True)
class VersionLedger:
    """Last known version per key plus the failures found so far."""
    versions: Mapping[str, int] = field(default_factory=lambda: MappingProxyType({}))
    failures: Tuple[str, ...] = field(default_factory=tuple)
    checked: int = 0

    def remember(self, updates: Mapping[str, int], failures: Tuple[str, ...], checked: int) -> VersionLedger:
        merged = dict(self.versions)
        merged.update(updates)
        return VersionLedger(
            versions=MappingProxyType(merged),
            failures=self.failures + failures,
            checked=self.checked + checked,
        )


# =============================================================================
# VERSION MONOTONICITY
# =============================================================================

def _monotonic_step(sequence_id: str):
    """Compare every handle present in both snapshots, whatever the report kind."""
    def _step(ledger: VersionLedger, previous: Snapshot, current: Snapshot, report: Report) -> VersionLedger:
        where = f"Session {sequence_id}, version {report.mdib_version.version}"
        failures = []
        checked = 0

        for handle, after in current.descriptors.items():
            before = previous.descriptor(handle)
            if before is None:
                continue
            checked += 1
            if after.descriptor_version < before.descriptor_version:
                failures.append(
                    f"{where}: descriptor {handle} went from version "
                    f"{before.descriptor_version} to {after.descriptor_version}"
                )

        for key, after in current.states.items():
            before = previous.state(key)
            if before is None:
                continue
            checked += 1
            if after.state_version < before.state_version:
                failures.append(
                    f"{where}: state {key} went from version "
                    f"{before.state_version} to {after.state_version}"
                )

        return ledger.remember({}, tuple(failures), checked)
    return _step


def _monotonic_in_session(ctx: CheckContext, sequence_id: str) -> Tuple[List[str], int]:
    ledger = ctx.historian.fold_pairs(
        sequence_id, any_report, _monotonic_step(sequence_id), VersionLedger()
    )
    return list(ledger.failures), ledger.checked


def check_state_version_monotonic(ctx: CheckContext) -> CheckOutcome:
    failures, checked = over_sessions(ctx, _monotonic_in_session)
    return CheckOutcome.judge("mdib.state_version_monotonic", failures, checked)


# =============================================================================
# DESCRIPTOR VERSION INCREMENT
# =============================================================================

def _descriptor_step(sequence_id: str):
    def _step(ledger: VersionLedger, previous: Snapshot, current: Snapshot, report: Report) -> VersionLedger:
        where = f"Session {sequence_id}, version {report.mdib_version.version}"
        updates = {}
        failures = []
        checked = 0

        for part in report.parts:
            for reported in part.descriptors:
                handle = reported.handle
                before = previous.descriptor(handle)
                if part.modification is ModificationKind.DELETE:
                    if before is not None:
                        updates[handle] = before.descriptor_version
                    continue

                after = current.descriptor(handle)
                if after is None:
                    continue
                checked += 1

                if part.modification is ModificationKind.CREATE:
                    deleted_at = ledger.versions.get(handle)
                    if deleted_at is not None and after.descriptor_version <= deleted_at:
                        failures.append(
                            f"{where}: descriptor {handle} re-inserted with version "
                            f"{after.descriptor_version}, not above {deleted_at} before deletion"
                        )
                elif before is not None and not before.content_equals(after):
                    expected = before.descriptor_version + 1
                    if after.descriptor_version != expected:
                        failures.append(
                            f"{where}: descriptor {handle} changed but its version went from "
                            f"{before.descriptor_version} to {after.descriptor_version}, "
                            f"expected {expected}"
                        )
        return ledger.remember(updates, tuple(failures), checked)
    return _step


def _descriptor_in_session(ctx: CheckContext, sequence_id: str) -> Tuple[List[str], int]:
    ledger = ctx.historian.fold_pairs(
        sequence_id,
        of_kind(ReportKind.DESCRIPTION_MODIFICATION),
        _descriptor_step(sequence_id),
        VersionLedger(),
    )
    return list(ledger.failures), ledger.checked


def check_descriptor_version_increment(ctx: CheckContext) -> CheckOutcome:
    failures, checked = over_sessions(ctx, _descriptor_in_session)
    return CheckOutcome.judge("mdib.descriptor_version_increment", failures, checked)


# =============================================================================
# STATE VERSION INCREMENT
# =============================================================================

def _state_increment_step(sequence_id: str):
    def _step(ledger: VersionLedger, previous: Snapshot, current: Snapshot, report: Report) -> VersionLedger:
        failures = []
        checked = 0
        for reported in report.states():
            before = previous.state(reported.key)
            after = current.state(reported.key)
            if before is None or after is None:
                continue
            checked += 1
            if before.content_equals(after):
                continue
            expected = before.state_version + 1
            if after.state_version != expected:
                failures.append(
                    f"Session {sequence_id}, version {report.mdib_version.version}: "
                    f"state {reported.key} changed but its version went from "
                    f"{before.state_version} to {after.state_version}, expected {expected}"
                )
        return ledger.remember({}, tuple(failures), checked)
    return _step


def _state_increment_in_session(ctx: CheckContext, sequence_id: str) -> Tuple[List[str], int]:
    ledger = ctx.historian.fold_pairs(
        sequence_id, state_reports, _state_increment_step(sequence_id), VersionLedger()
    )
    return list(ledger.failures), ledger.checked


def check_state_version_increment(ctx: CheckContext) -> CheckOutcome:
    failures, checked = over_sessions(ctx, _state_increment_in_session)
    return CheckOutcome.judge("mdib.state_version_increment", failures, checked)
