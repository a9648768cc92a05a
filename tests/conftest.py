"""Global pytest configuration and fixtures."""
from types import SimpleNamespace

import pytest

from reqlog.core.config import LoggerSettings
from reqlog.core.logging import BaseSink, LogConfig, LoggerFacade, configure_logging
from reqlog.core.logging.sinks import SinkBinding


class ListSink(BaseSink):
    """Sink keeping every record it receives."""

    def __init__(self, transforms=None):
        super().__init__(transforms)
        self.records = []
        self.closed = False

    def emit(self, record):
        self.records.append(record)

    def close(self):
        self.closed = True


class FakeClock:
    """Monotonic clock advanced by hand, in seconds."""

    def __init__(self, now: float = 100.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance_ms(self, ms: float) -> None:
        self.now += ms / 1000


def make_request(headers=None, url="http://testserver/items?page=1", method="GET"):
    """Minimal request object exposing what the facade reads."""
    return SimpleNamespace(
        url=url,
        method=method,
        headers=headers or {},
        state=SimpleNamespace(),
    )


@pytest.fixture(scope="session", autouse=True)
def diagnostic_logging():
    """Send library diagnostics to stderr so stdout only carries records."""
    configure_logging(LogConfig(level="WARNING", format="console"))


@pytest.fixture
def sink() -> ListSink:
    return ListSink()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def facade(sink, clock) -> LoggerFacade:
    """Facade delivering every record to the in-memory sink."""
    settings = LoggerSettings(is_json=True, streams=[SinkBinding(sink=sink, level=0)])
    return LoggerFacade(settings, clock=clock)


@pytest.fixture
def request_factory():
    return make_request


@pytest.fixture
def sink_factory():
    return ListSink
