"""
Historian
=========

Reconstructs the sequence of MDIB snapshots a device exposed during one
session by replaying its captured reports in storage order.

INVARIANTS:
===========
1. Replay is deterministic: same log -> same snapshot sequence
2. Each cursor reads its report stream once, lazily, and owns it until
   close(); cursors on the same session never share state
3. A report that cannot be applied fails the cursor; it never skips
   silently
4. walk_pairs hands the visitor the snapshot immediately before and
   immediately after the matching report

BOOTSTRAP:
==========
A session starts from its first captured full MDIB if there is one,
otherwise from an empty snapshot. Reports older than that full MDIB were
already folded into it and are skipped until a report at or past its
version shows up.
"""

from __future__ import annotations
from typing import Callable, Iterator, Optional, TypeVar

from ..contracts.mdib import MdibVersion
from ..contracts.base import ErrorCode
from ..contracts.reports import (
    GET_MDIB_RESPONSE, REPORT_BODY_TYPES, MdibDocument, Report, ReportFilter, ReportKind
)
from ..config import HistorianConfig
from ..observability import AuditEventType, AuditLog
from ..storage import MessageLog, MessageStream
from ..storage.codec import MessageDecodeError, decode_document, decode_report
from .applier import ApplyError, ReportApplicationError, ReportApplier
from .snapshot import Snapshot

A = TypeVar("A")

PairVisitor = Callable[[Snapshot, Snapshot, Report], None]
SingleVisitor = Callable[[Snapshot, Report], None]


# =============================================================================
# REPORT ADMISSION
# =============================================================================

class InitialVersionFilter:
    """
    Admits reports from the initial full MDIB onwards.

    Reports are dropped until one at or past the initial version is seen.
    Once a strictly newer report has passed, everything after it passes,
    so later version regressions still reach the checks.
    """

    def __init__(self, initial: Optional[MdibVersion]):
        self._initial = initial
        self._open = initial is None

    def __call__(self, report: Report) -> bool:
        if self._open:
            return True
        version = report.mdib_version
        if not version.comparable_with(self._initial):
            return False
        if version > self._initial:
            self._open = True
            return True
        return version >= self._initial


def load_initial_document(message_log: MessageLog, sequence_id: str) -> Optional[MdibDocument]:
    """First captured full MDIB of the session, or None."""
    with message_log.query_inbound(
        body_types=(GET_MDIB_RESPONSE,), sequence_id=sequence_id
    ) as stream:
        for message in stream:
            try:
                return decode_document(message)
            except MessageDecodeError as exc:
                raise ReportApplicationError(ApplyError(
                    code=ErrorCode.MALFORMED_REPORT,
                    message=str(exc),
                    report_kind=ReportKind.DESCRIPTION_MODIFICATION,
                    mdib_version=MdibVersion(sequence_id=sequence_id),
                )) from exc
    return None


# =============================================================================
# CURSOR
# =============================================================================

class HistoryCursor:
    """
    Forward-only iterator over the snapshots of one session.

    next() returns the snapshot after the next admitted report, or None
    once the session is exhausted. After a failed report every further
    next() raises the same ReportApplicationError.
    """

    def __init__(
        self,
        sequence_id: str,
        message_log: MessageLog,
        applier: ReportApplier,
        config: HistorianConfig,
        audit: Optional[AuditLog] = None
    ):
        self._sequence_id = sequence_id
        self._message_log = message_log
        self._applier = applier
        self._config = config
        self._audit = audit

        self._stream: Optional[MessageStream] = None
        self._bootstrap: Optional[Snapshot] = None
        self._admit: Optional[Callable[[Report], bool]] = None
        self._snapshot: Optional[Snapshot] = None
        self._last_report: Optional[Report] = None
        self._failure: Optional[ReportApplicationError] = None
        self._position = 0
        self._exhausted = False
        self._closed = False

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def __enter__(self) -> HistoryCursor:
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False

    def __iter__(self) -> Iterator[Snapshot]:
        while True:
            snapshot = self.next()
            if snapshot is None:
                return
            yield snapshot

    def close(self):
        """Release the storage reader. Idempotent."""
        if self._closed:
            return
        self._closed = True
        self._release()
        self._log("cursor_closed", position=str(self._position))

    @property
    def closed(self) -> bool:
        return self._closed

    # -------------------------------------------------------------------------
    # State
    # -------------------------------------------------------------------------

    @property
    def sequence_id(self) -> str:
        return self._sequence_id

    @property
    def bootstrap(self) -> Snapshot:
        """Snapshot before the first report."""
        self._ensure_open()
        return self._bootstrap

    @property
    def current(self) -> Snapshot:
        """Snapshot after the last returned report (bootstrap before any)."""
        self._ensure_open()
        return self._snapshot

    @property
    def last_report(self) -> Optional[Report]:
        return self._last_report

    @property
    def position(self) -> int:
        """Number of reports applied so far."""
        return self._position

    # -------------------------------------------------------------------------
    # Replay
    # -------------------------------------------------------------------------

    def next(self) -> Optional[Snapshot]:
        if self._closed:
            raise ValueError(f"History cursor for {self._sequence_id} is closed")
        if self._failure is not None:
            raise self._failure
        if self._exhausted:
            return None

        self._ensure_open()
        for message in self._stream:
            report = self._decode(message)
            if not self._admit(report):
                self._log(
                    "report_skipped",
                    entity_id=message.message_id,
                    version=str(report.mdib_version.version),
                )
                continue

            result = self._applier.apply(self._snapshot, report)
            if result.is_failure:
                self._fail(result.error)

            self._snapshot = result.value
            self._last_report = report
            self._position += 1
            return self._snapshot

        self._exhausted = True
        self._release()
        return None

    def _ensure_open(self):
        if self._stream is not None or self._exhausted:
            return
        if self._closed:
            raise ValueError(f"History cursor for {self._sequence_id} is closed")

        document = load_initial_document(self._message_log, self._sequence_id)
        if document is None:
            self._bootstrap = Snapshot.empty(self._sequence_id)
            self._admit = InitialVersionFilter(None)
        else:
            self._bootstrap = Snapshot.from_document(document)
            self._admit = InitialVersionFilter(
                document.mdib_version
                if self._config.skip_reports_before_initial_document else None
            )
        self._snapshot = self._bootstrap

        self._stream = self._message_log.query_inbound(
            body_types=REPORT_BODY_TYPES, sequence_id=self._sequence_id
        )
        self._log(
            "cursor_opened",
            bootstrap="document" if document is not None else "empty",
        )

    def _decode(self, message) -> Report:
        try:
            return decode_report(message)
        except MessageDecodeError as exc:
            kind = ReportKind.DESCRIPTION_MODIFICATION
            if message.body_type in REPORT_BODY_TYPES:
                kind = ReportKind.from_body_type(message.body_type)
            self._fail(ApplyError(
                code=ErrorCode.MALFORMED_REPORT,
                message=str(exc),
                report_kind=kind,
                mdib_version=MdibVersion(sequence_id=self._sequence_id),
                handle=None,
            ), cause=exc)

    def _fail(self, error: ApplyError, cause: Optional[BaseException] = None):
        self._failure = ReportApplicationError(error)
        self._release()
        if self._audit is not None:
            self._audit.record(
                "temporal", "apply_failed",
                event_type=AuditEventType.APPLY,
                entity_id=self._sequence_id,
                outcome="failure",
                code=error.code.name,
                message=error.message,
                position=str(self._position),
            )
        if cause is not None:
            raise self._failure from cause
        raise self._failure

    def _release(self):
        if self._stream is not None:
            self._stream.close()

    def _log(self, action: str, entity_id: Optional[str] = None, **details: str):
        if self._audit is not None:
            self._audit.record(
                "temporal", action,
                event_type=AuditEventType.HISTORY,
                entity_id=entity_id or self._sequence_id,
                **details
            )


# =============================================================================
# HISTORIAN
# =============================================================================

class Historian:
    """
    Entry point for replaying captured sessions.

    Holds no per-session state: every query opens its own cursor, so the
    historian can be shared between threads.
    """

    def __init__(
        self,
        message_log: MessageLog,
        applier: Optional[ReportApplier] = None,
        audit: Optional[AuditLog] = None,
        config: Optional[HistorianConfig] = None
    ):
        self._message_log = message_log
        self._config = config or HistorianConfig()
        self._applier = applier or ReportApplier(
            strict_subtree_deletion=self._config.strict_subtree_deletion
        )
        self._audit = audit

    @property
    def message_log(self) -> MessageLog:
        return self._message_log

    def list_sequences(self) -> Iterator[str]:
        """Known session ids; the storage stream is closed when done."""
        with self._message_log.list_session_ids() as stream:
            yield from stream

    def open_history(self, sequence_id: str) -> HistoryCursor:
        return HistoryCursor(
            sequence_id, self._message_log, self._applier, self._config, self._audit
        )

    def initial_document(self, sequence_id: str) -> Optional[MdibDocument]:
        return load_initial_document(self._message_log, sequence_id)

    def all_reports(self, sequence_id: str) -> Iterator[Report]:
        """Admitted reports of the session in storage order, undecoded bodies raise."""
        document = self.initial_document(sequence_id)
        admit = InitialVersionFilter(
            document.mdib_version
            if document is not None and self._config.skip_reports_before_initial_document
            else None
        )
        with self._message_log.query_inbound(
            body_types=REPORT_BODY_TYPES, sequence_id=sequence_id
        ) as stream:
            for message in stream:
                report = decode_report(message)
                if admit(report):
                    yield report

    def latest_snapshot(self, sequence_id: str) -> Snapshot:
        """Replay the whole session and return its final snapshot."""
        with self.open_history(sequence_id) as cursor:
            for _ in cursor:
                pass
            return cursor.current

    # -------------------------------------------------------------------------
    # Walks
    # -------------------------------------------------------------------------

    def fold_single(
        self,
        sequence_id: str,
        report_filter: ReportFilter,
        step: Callable[[A, Snapshot, Report], A],
        initial: A
    ) -> A:
        """Thread an accumulator through every matching (snapshot, report)."""
        accumulator = initial
        with self.open_history(sequence_id) as cursor:
            for snapshot in cursor:
                report = cursor.last_report
                if report_filter(report):
                    accumulator = step(accumulator, snapshot, report)
        return accumulator

    def fold_pairs(
        self,
        sequence_id: str,
        report_filter: ReportFilter,
        step: Callable[[A, Snapshot, Snapshot, Report], A],
        initial: A
    ) -> A:
        """
        Thread an accumulator through every matching (previous, current,
        report) triple. Two cursors run one report apart.
        """
        accumulator = initial
        with self.open_history(sequence_id) as lagging, \
                self.open_history(sequence_id) as leading:
            previous = lagging.bootstrap
            while True:
                current = leading.next()
                if current is None:
                    break
                report = leading.last_report
                if report_filter(report):
                    accumulator = step(accumulator, previous, current, report)
                previous = lagging.next()
        return accumulator

    def walk_single(self, sequence_id: str, report_filter: ReportFilter, visitor: SingleVisitor) -> int:
        """Visit every snapshot produced by a matching report. Returns visit count."""
        def _step(count: int, snapshot: Snapshot, report: Report) -> int:
            visitor(snapshot, report)
            return count + 1
        return self.fold_single(sequence_id, report_filter, _step, 0)

    def walk_pairs(self, sequence_id: str, report_filter: ReportFilter, visitor: PairVisitor) -> int:
        """Visit (previous, current, report) for every matching report. Returns visit count."""
        def _step(count: int, previous: Snapshot, current: Snapshot, report: Report) -> int:
            visitor(previous, current, report)
            return count + 1
        return self.fold_pairs(sequence_id, report_filter, _step, 0)
