import pytest

from mdibverify.config import OrchestratorConfig
from mdibverify.manipulation import RecordingManipulationClient
from mdibverify.manipulation.orchestrator import Orchestrator

from tests.fixtures import FakeDevice, SessionRecorder

CONFIG = OrchestratorConfig(
    confirmation_timeout_seconds=2.0,
    poll_interval_seconds=0.5,
    max_remediation_attempts=3,
)


@pytest.fixture
def live_session(message_log, clock):
    """A session whose receive timestamps follow the manual clock."""
    return SessionRecorder(message_log, clock=clock)


@pytest.fixture
def device(clock):
    return FakeDevice(clock)


@pytest.fixture
def orchestrator(historian, device, message_log, sink, clock, audit):
    return Orchestrator(
        historian,
        client=RecordingManipulationClient(device, message_log, clock, audit),
        sink=sink,
        clock=clock,
        config=CONFIG,
        audit=audit,
    )
