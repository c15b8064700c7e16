"""
Invariant Checks
================

Requirement checks built on the historian. Each check replays every known
session and judges the snapshots it sees.

ERROR HANDLING:
===============
- A report that cannot be applied fails the check for that session
- No session, or nothing relevant in any session, is NOT_APPLICABLE
- Checks never invalidate the run; they only pass or fail
"""

from __future__ import annotations
from typing import Callable, List, Tuple

from ..registry import CheckContext, Requirement, RequirementRegistry
from ..temporal.applier import ReportApplicationError

SessionCheck = Callable[[CheckContext, str], Tuple[List[str], int]]


def over_sessions(ctx: CheckContext, session_check: SessionCheck) -> Tuple[List[str], int]:
    """Run session_check for every session; apply failures become messages."""
    failures: List[str] = []
    checked = 0
    for sequence_id in ctx.historian.list_sequences():
        try:
            session_failures, session_checked = session_check(ctx, sequence_id)
        except ReportApplicationError as exc:
            error = exc.error
            failures.append(
                f"Session {sequence_id}: report at version {error.mdib_version.version} "
                f"could not be applied ({error.code.name}): {error.message}"
            )
            continue
        failures.extend(session_failures)
        checked += session_checked
    return failures, checked


def register_default_checks(registry: RequirementRegistry) -> RequirementRegistry:
    from .structure import check_unique_handles
    from .versioning import (
        check_descriptor_version_increment,
        check_state_version_increment,
        check_state_version_monotonic,
    )

    registry.register(Requirement(
        requirement_id="mdib.unique_handles",
        description="Handles are unique and the containment tree is well formed in every snapshot",
        check=check_unique_handles,
    ))
    registry.register(Requirement(
        requirement_id="mdib.state_version_monotonic",
        description="Descriptor and state versions of a handle never decrease between consecutive snapshots",
        check=check_state_version_monotonic,
    ))
    registry.register(Requirement(
        requirement_id="mdib.descriptor_version_increment",
        description="A changed descriptor increments its version by exactly one",
        check=check_descriptor_version_increment,
    ))
    registry.register(Requirement(
        requirement_id="mdib.state_version_increment",
        description="A changed state increments its version by exactly one",
        check=check_state_version_increment,
    ))
    return registry
