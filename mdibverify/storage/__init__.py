"""
Message Log Layer

RESPONSIBILITY: Append-only storage of captured messages and manipulation
records, streaming queries over them
ALLOWED INPUTS: CapturedMessage, ManipulationRecord
OUTPUTS: MessageStream (closable, single pass)

WHAT THIS LAYER MUST NOT DO:
============================
- Decode or interpret message bodies
- Reorder messages (storage order is capture order)
- Delete or modify existing data (append-only)

BOUNDARY ENFORCEMENT:
=====================
- Every query returns a MessageStream that owns its reader; callers must
  close it (or use it as a context manager)
- Implementations are safe for concurrent appends and queries
"""

from __future__ import annotations
from typing import Callable, Generic, Iterable, Iterator, List, Optional, TypeVar
from pathlib import Path
import json
import threading

from ..contracts.base import Error, ErrorCode, TimeRange
from ..contracts.messages import CapturedMessage, Direction, ManipulationRecord
from .serialization import dumps, manipulation_from_record, message_from_record

T = TypeVar("T")


class StorageError(Exception):
    """Stored data could not be read back."""

    def __init__(self, error: Error):
        super().__init__(error.message)
        self.error = error


# =============================================================================
# STREAMS
# =============================================================================

class MessageStream(Generic[T]):
    """
    Closable single-pass stream over stored objects.

    close() is idempotent and releases the underlying reader. Reading from
    a closed stream raises ValueError, like reading from a closed file.
    """

    def __init__(self, source: Iterable[T], on_close: Optional[Callable[[], None]] = None):
        self._iterator: Iterator[T] = iter(source)
        self._on_close = on_close
        self._closed = False

    def __iter__(self) -> MessageStream[T]:
        return self

    def __next__(self) -> T:
        if self._closed:
            raise ValueError("I/O operation on closed MessageStream")
        return next(self._iterator)

    def __enter__(self) -> MessageStream[T]:
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self):
        if self._closed:
            return
        self._closed = True
        close = getattr(self._iterator, "close", None)
        if close is not None:
            close()
        if self._on_close is not None:
            self._on_close()


# =============================================================================
# MESSAGE LOG INTERFACE (Dependency Inversion)
# =============================================================================

class MessageLog:
    """
    Abstract message log interface.

    Implementations can use different storage systems (memory, file,
    database) while keeping the same append-only, streaming semantics.
    """

    def append(self, message: CapturedMessage):
        raise NotImplementedError

    def append_manipulation(self, record: ManipulationRecord):
        raise NotImplementedError

    def query_inbound(
        self,
        body_types: Optional[Iterable[str]] = None,
        time_range: Optional[TimeRange] = None,
        sequence_id: Optional[str] = None
    ) -> MessageStream[CapturedMessage]:
        """Inbound messages in storage order, optionally filtered."""
        raise NotImplementedError

    def list_session_ids(self) -> MessageStream[str]:
        """Unique, non-null session ids in order of first appearance."""
        raise NotImplementedError

    def manipulations(
        self,
        operations: Optional[Iterable[str]] = None,
        time_range: Optional[TimeRange] = None
    ) -> MessageStream[ManipulationRecord]:
        """Manipulation records whose call window overlaps time_range."""
        raise NotImplementedError


def _inbound_filter(
    body_types: Optional[Iterable[str]],
    time_range: Optional[TimeRange],
    sequence_id: Optional[str]
) -> Callable[[CapturedMessage], bool]:
    wanted = frozenset(body_types) if body_types is not None else None

    def _matches(message: CapturedMessage) -> bool:
        if message.direction is not Direction.INBOUND:
            return False
        if wanted is not None and message.body_type not in wanted:
            return False
        if time_range is not None and not time_range.contains(message.received_at):
            return False
        if sequence_id is not None and message.sequence_id != sequence_id:
            return False
        return True
    return _matches


def _manipulation_filter(
    operations: Optional[Iterable[str]],
    time_range: Optional[TimeRange]
) -> Callable[[ManipulationRecord], bool]:
    wanted = frozenset(operations) if operations is not None else None

    def _matches(record: ManipulationRecord) -> bool:
        if wanted is not None and record.operation not in wanted:
            return False
        if time_range is not None:
            if record.finished_at.value < time_range.start.value:
                return False
            if record.started_at.value > time_range.end.value:
                return False
        return True
    return _matches


def _unique_session_ids(messages: Iterable[CapturedMessage]) -> Iterator[str]:
    seen = set()
    for message in messages:
        if message.direction is not Direction.INBOUND or message.sequence_id is None:
            continue
        if message.sequence_id not in seen:
            seen.add(message.sequence_id)
            yield message.sequence_id


# =============================================================================
# IN-MEMORY IMPLEMENTATION
# =============================================================================

class InMemoryMessageLog(MessageLog):
    """
    In-memory message log.

    Queries see the log as it was when the query was issued. Open streams
    are counted so tests can assert that every reader was released.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._messages: List[CapturedMessage] = []
        self._manipulations: List[ManipulationRecord] = []
        self._open_streams = 0

    def append(self, message: CapturedMessage):
        with self._lock:
            self._messages.append(message)

    def append_manipulation(self, record: ManipulationRecord):
        with self._lock:
            self._manipulations.append(record)

    def query_inbound(self, body_types=None, time_range=None, sequence_id=None):
        with self._lock:
            messages = list(self._messages)
        matches = _inbound_filter(body_types, time_range, sequence_id)
        return self._stream(m for m in messages if matches(m))

    def list_session_ids(self):
        with self._lock:
            messages = list(self._messages)
        return self._stream(_unique_session_ids(messages))

    def manipulations(self, operations=None, time_range=None):
        with self._lock:
            records = list(self._manipulations)
        matches = _manipulation_filter(operations, time_range)
        return self._stream(r for r in records if matches(r))

    @property
    def open_stream_count(self) -> int:
        with self._lock:
            return self._open_streams

    @property
    def message_count(self) -> int:
        with self._lock:
            return len(self._messages)

    def _stream(self, source: Iterable[T]) -> MessageStream[T]:
        with self._lock:
            self._open_streams += 1
        return MessageStream(source, on_close=self._release)

    def _release(self):
        with self._lock:
            self._open_streams -= 1


# =============================================================================
# JSONL IMPLEMENTATION
# =============================================================================

class JsonlMessageLog(MessageLog):
    """
    Append-only message log persisted as two JSONL files.

    Each stream holds its own open file handle until it is closed or
    exhausted. A line that cannot be decoded raises StorageError.
    """

    MESSAGES_FILE = "messages.jsonl"
    MANIPULATIONS_FILE = "manipulations.jsonl"

    def __init__(self, directory: Path):
        self._directory = Path(directory)
        self._directory.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    @property
    def messages_path(self) -> Path:
        return self._directory / self.MESSAGES_FILE

    @property
    def manipulations_path(self) -> Path:
        return self._directory / self.MANIPULATIONS_FILE

    def append(self, message: CapturedMessage):
        self._append_line(self.messages_path, dumps(message))

    def append_manipulation(self, record: ManipulationRecord):
        self._append_line(self.manipulations_path, dumps(record))

    def query_inbound(self, body_types=None, time_range=None, sequence_id=None):
        matches = _inbound_filter(body_types, time_range, sequence_id)
        return MessageStream(
            m for m in self._read(self.messages_path, message_from_record) if matches(m)
        )

    def list_session_ids(self):
        return MessageStream(
            _unique_session_ids(self._read(self.messages_path, message_from_record))
        )

    def manipulations(self, operations=None, time_range=None):
        matches = _manipulation_filter(operations, time_range)
        return MessageStream(
            r for r in self._read(self.manipulations_path, manipulation_from_record) if matches(r)
        )

    def _append_line(self, path: Path, line: str):
        with self._lock:
            with open(path, "a", encoding="utf-8") as f:
                f.write(line + "\n")

    def _read(self, path: Path, decode: Callable[[dict], T]) -> Iterator[T]:
        if not path.exists():
            return
        with open(path, "r", encoding="utf-8") as f:
            for line_number, line in enumerate(f, start=1):
                if not line.strip():
                    continue
                try:
                    item = decode(json.loads(line))
                except (ValueError, KeyError, TypeError) as exc:
                    raise StorageError(Error.create(
                        ErrorCode.STORAGE_FAILURE,
                        f"Unreadable record in {path.name} line {line_number}: {exc}",
                        path=str(path),
                    )) from exc
                yield item


__all__ = [
    "StorageError",
    "MessageStream",
    "MessageLog",
    "InMemoryMessageLog",
    "JsonlMessageLog",
]
