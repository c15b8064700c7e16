"""
Contracts Layer
===============

Immutable data shared by every layer. Nothing in here performs I/O.
"""

from .base import (
    ErrorCode, Error, Result, NoApplicableData, Timestamp, TimeRange,
)
from .mdib import MdibVersion, Descriptor, State, Entity
from .reports import (
    GET_MDIB_RESPONSE, REPORT_BODY_TYPES, ReportKind, ModificationKind,
    ReportPart, Report, MdibDocument, ReportFilter, any_report, of_kind,
    state_reports,
)
from .messages import (
    Direction, CapturedMessage, ManipulationResult, ManipulationResponse,
    ManipulationRecord,
)

__all__ = [
    "ErrorCode", "Error", "Result", "NoApplicableData", "Timestamp", "TimeRange",
    "MdibVersion", "Descriptor", "State", "Entity",
    "GET_MDIB_RESPONSE", "REPORT_BODY_TYPES", "ReportKind", "ModificationKind",
    "ReportPart", "Report", "MdibDocument", "ReportFilter", "any_report",
    "of_kind", "state_reports",
    "Direction", "CapturedMessage", "ManipulationResult", "ManipulationResponse",
    "ManipulationRecord",
]
