import threading

import pytest

from factsync.adapters import InMemoryStore
from factsync.config import SinkConfig, SyncConfig
from factsync.models import AnalyticsEvent, FeedbackEvent
from factsync.sink import RemoteSinkClient

PROJECT_URL = "https://example-project.supabase.co"
API_KEY = "anon-key-0123456789"


class FakeResponse:
    def __init__(self, status_code=201, text=""):
        self.status_code = status_code
        self.text = text


class FakeSession:
    """Stands in for requests.Session; ``responder(call_index, url, json)`` decides the reply."""

    def __init__(self, responder=None):
        self.responder = responder or (lambda index, url, body: FakeResponse(201))
        self.posts = []
        self.gets = []
        self.closed = False
        self._lock = threading.Lock()

    def post(self, url, **kwargs):
        with self._lock:
            index = len(self.posts)
            self.posts.append({"url": url, **kwargs})
        result = self.responder(index, url, kwargs.get("json"))
        if isinstance(result, BaseException):
            raise result
        return result

    def get(self, url, **kwargs):
        self.gets.append({"url": url, **kwargs})
        return FakeResponse(200)

    def close(self):
        self.closed = True


class FlakyStore(InMemoryStore):
    """In-memory store whose writes and reads can be made to fail."""

    def __init__(self, initial=None):
        super().__init__(initial)
        self.fail_set = False
        self.fail_get = False

    def get(self, keys):
        if self.fail_get:
            raise OSError("store read failed")
        return super().get(keys)

    def set(self, items):
        if self.fail_set:
            raise OSError("disk full")
        super().set(items)


class FakeClock:
    def __init__(self, now=1_700_000_000_000):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, ms):
        self.now += ms


def make_events(count, start=0, domain="example.com"):
    return [
        AnalyticsEvent(
            domain=domain,
            text_length=100 + i,
            query_length=10,
            model="gpt-4o-mini",
            rating=i % 5,
            search_used=i % 2 == 0,
            timestamp=1_700_000_000_000 + i,
        )
        for i in range(start, start + count)
    ]


def make_feedback(count):
    return [
        FeedbackEvent(rating="positive" if i % 2 == 0 else "negative", analytics_id=f"a-{i}", timestamp=i)
        for i in range(count)
    ]


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sink_config():
    return SinkConfig(project_url=PROJECT_URL, api_key=API_KEY, timeout_s=2.0)


@pytest.fixture
def session():
    return FakeSession()


@pytest.fixture
def sink(sink_config, session):
    return RemoteSinkClient(sink_config, session=session)


@pytest.fixture
def sync_config():
    return SyncConfig(force_wait_attempts=2, force_wait_interval_s=0.01, initial_delay_ms=0)
