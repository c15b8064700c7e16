"""Structural checks on every snapshot of a session."""

from __future__ import annotations
from typing import List, Tuple

from ..contracts.reports import Report, any_report
from ..registry import CheckContext, CheckOutcome
from ..temporal.snapshot import Snapshot, document_errors
from . import over_sessions

REQUIREMENT_ID = "mdib.unique_handles"


def _unique_handles_in_session(ctx: CheckContext, sequence_id: str) -> Tuple[List[str], int]:
    failures: List[str] = []

    document = ctx.historian.initial_document(sequence_id)
    if document is not None:
        errors = document_errors(document) + Snapshot.from_document(document).verify_structure()
        for error in errors:
            failures.append(f"Session {sequence_id}, initial MDIB: {error.message}")

    def _visit(snapshot: Snapshot, report: Report):
        for error in snapshot.verify_structure():
            failures.append(
                f"Session {sequence_id}, version {report.mdib_version.version}: {error.message}"
            )

    visited = ctx.historian.walk_single(sequence_id, any_report, _visit)
    return failures, visited + (1 if document is not None else 0)


def check_unique_handles(ctx: CheckContext) -> CheckOutcome:
    failures, checked = over_sessions(ctx, _unique_handles_in_session)
    return CheckOutcome.judge(REQUIREMENT_ID, failures, checked)
