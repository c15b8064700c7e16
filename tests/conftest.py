import pytest

from mdibverify.observability import AuditLog, InvalidationSink
from mdibverify.storage import InMemoryMessageLog
from mdibverify.temporal.clock import ManualClock
from mdibverify.temporal.historian import Historian

from tests.fixtures import BASE_TIME, SessionRecorder


@pytest.fixture
def message_log():
    return InMemoryMessageLog()


@pytest.fixture
def audit():
    return AuditLog()


@pytest.fixture
def sink(audit):
    return InvalidationSink(audit)


@pytest.fixture
def clock():
    return ManualClock(BASE_TIME)


@pytest.fixture
def historian(message_log, audit):
    return Historian(message_log, audit=audit)


@pytest.fixture
def session(message_log):
    return SessionRecorder(message_log)
