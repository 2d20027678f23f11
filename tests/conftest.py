import pytest

from blocker_config import BlockerConfig
from event_recorder import VirtualClock
from feed_blocker_engine import FeedBlockerEngine
from helpers import FakeHost


@pytest.fixture
def host():
    return FakeHost()


@pytest.fixture
def clock():
    return VirtualClock()


@pytest.fixture
def make_engine(host, clock):
    def _make(config=None, **kwargs):
        return FeedBlockerEngine(host, config or BlockerConfig(), clock=clock, **kwargs)
    return _make
