import os
import sys
import pytest

# Ensure the backend root (containing the `gobachi` package) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
BACKEND_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if BACKEND_ROOT not in sys.path:
    sys.path.insert(0, BACKEND_ROOT)

from gobachi import create_app, socketio
from gobachi.chat import ChatEntry
from gobachi.services.feeding.session import FeedingConfig
from gobachi.services.feeding.timers import TimerHandle


class TestConfig:
    TESTING = True
    SECRET_KEY = os.environ.get('SECRET_KEY', 'test-secret')
    CORS_ORIGINS = ['http://localhost:5173']
    FEED_TOTAL_DROPS = 50
    FEED_JOIN_WINDOW_SEC = 10
    FEED_RESULTS_WINDOW_SEC = 6
    FEED_TICK_MS = 250
    FEED_COOP_BONUS_PER_PLAYER = 5
    FEED_COOP_BONUS_CAP = 15
    FEED_DROP_TIMEOUT_MS = 2200
    CHAT_HISTORY_SIZE = 3
    CHAT_MAX_LENGTH = 40


START_MS = 1_700_000_000_000


class FakeClock:
    def __init__(self, now=START_MS):
        self.now = now

    def now_ms(self):
        return self.now


class ManualScheduler:
    """Repeating timers fired by advancing a FakeClock."""

    def __init__(self, clock):
        self.clock = clock
        self.timers = []

    def every(self, interval_ms, callback):
        handle = TimerHandle()
        self.timers.append([handle, interval_ms, callback, self.clock.now + interval_ms])
        return handle

    def active(self):
        return [t for t in self.timers if not t[0].cancelled]

    def advance(self, ms):
        target = self.clock.now + ms
        while True:
            due = [t for t in self.timers if not t[0].cancelled and t[3] <= target]
            if not due:
                break
            timer = min(due, key=lambda t: t[3])
            self.clock.now = timer[3]
            timer[3] += timer[1]
            timer[2]()
        self.clock.now = target


class LoopbackHub:
    """In-memory chat channel; lines queue until deliver() is called."""

    def __init__(self, clock):
        self.clock = clock
        self.transports = []
        self.pending = []

    def connect(self, sender_id, emoji):
        transport = FakeTransport(self, sender_id, emoji)
        self.transports.append(transport)
        return transport

    def deliver(self):
        while self.pending:
            entry = self.pending.pop(0)
            for transport in list(self.transports):
                transport.receive(entry)

    def discard_pending(self):
        self.pending.clear()


class FakeTransport:
    def __init__(self, hub, sender_id, emoji):
        self.hub = hub
        self.sender_id = sender_id
        self.emoji = emoji
        self.sent = []
        self.handlers = []

    def broadcast(self, text):
        self.sent.append(text)
        self.hub.pending.append(ChatEntry(self.sender_id, self.emoji, text, self.hub.clock.now))

    def on_message(self, handler):
        self.handlers.append(handler)

    def receive(self, entry):
        for handler in list(self.handlers):
            handler(entry)


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def scheduler(clock):
    return ManualScheduler(clock)


@pytest.fixture()
def feeding_config():
    return FeedingConfig(
        total_drops=50,
        join_window_ms=10_000,
        result_window_ms=6_000,
        tick_interval_ms=250,
        per_player_bonus=5,
        bonus_cap=15,
    )


@pytest.fixture()
def hub(clock):
    return LoopbackHub(clock)


@pytest.fixture()
def flask_app():
    application = create_app(TestConfig)
    from gobachi.socketio_events import reset_relay_state
    reset_relay_state()
    with application.app_context():
        yield application
    reset_relay_state()


@pytest.fixture()
def client(flask_app):
    return flask_app.test_client()


@pytest.fixture()
def sio_client(flask_app):
    test_client = socketio.test_client(
        flask_app,
        flask_test_client=flask_app.test_client(),
        namespace='/ws'
    )
    yield test_client
    try:
        test_client.disconnect(namespace='/ws')
    except Exception:
        pass
