import json
from datetime import datetime, date
from enum import Enum
from typing import Any, Dict

from ..contracts.base import Timestamp
from ..contracts.messages import (
    CapturedMessage, Direction, ManipulationRecord, ManipulationResult
)


class StrictRecordEncoder(json.JSONEncoder):
    """
    JSON Encoder that prioritizes Fidelity over Flexibility.

    RULES:
    1. Dates and Timestamps MUST be ISO 8601 strings (UTC).
    2. Enums MUST use their .value.
    3. Sets -> Lists (sorted for determinism).
    4. Tuples of pairs stay lists of pairs; order is preserved.
    """

    def default(self, obj: Any) -> Any:
        if isinstance(obj, Timestamp):
            return obj.to_iso()
        if isinstance(obj, (datetime, date)):
            return obj.isoformat()
        if isinstance(obj, Enum):
            return obj.value
        if isinstance(obj, (set, frozenset)):
            return sorted(list(obj))
        if hasattr(obj, "__dataclass_fields__"):
            return {name: getattr(obj, name) for name in obj.__dataclass_fields__}

        return super().default(obj)


def dumps(obj: Any) -> str:
    return json.dumps(obj, cls=StrictRecordEncoder, sort_keys=True)


def message_from_record(record: Dict[str, Any]) -> CapturedMessage:
    return CapturedMessage(
        message_id=record["message_id"],
        body_type=record["body_type"],
        received_at=Timestamp.from_iso(record["received_at"]),
        body=record["body"],
        sequence_id=record.get("sequence_id"),
        direction=Direction(record.get("direction", Direction.INBOUND.value)),
    )


def manipulation_from_record(record: Dict[str, Any]) -> ManipulationRecord:
    return ManipulationRecord(
        record_id=record["record_id"],
        operation=record["operation"],
        parameters=tuple((str(k), str(v)) for k, v in record["parameters"]),
        result=ManipulationResult(record["result"]),
        started_at=Timestamp.from_iso(record["started_at"]),
        finished_at=Timestamp.from_iso(record["finished_at"]),
        value=record.get("value"),
    )
