import threading

import pytest
from fastapi.testclient import TestClient

from biggie.app import create_app
from biggie.backends import Backend
from biggie.backends.sql import SqlBackend
from biggie.config import Settings
from biggie.logformat import select_format


class FakeBackend(Backend):
    """Counts connections; can be told to fail on open or on every operation"""

    name = "fake"
    error_code = "DB_ERROR"

    def __init__(self, fail_open=False, fail_ops=False, error_code="DB_ERROR"):
        self.fail_open = fail_open
        self.fail_ops = fail_ops
        self.error_code = error_code
        self._lock = threading.Lock()
        self.open_now = 0
        self.opened = 0
        self.closed = 0
        self.peak = 0
        self.reads = 0
        self.writes = 0
        self.prepared = 0
        self.flushes = 0

    def connect(self):
        if self.fail_open:
            raise ConnectionError("connection refused")
        with self._lock:
            self.opened += 1
            self.open_now += 1
            self.peak = max(self.peak, self.open_now)
            return {"id": self.opened}

    def ping(self, resource):
        return None

    def read(self, resource):
        if self.fail_ops:
            raise RuntimeError("read failed")
        with self._lock:
            self.reads += 1

    def write(self, resource, payload=None):
        if self.fail_ops:
            raise RuntimeError("write failed")
        with self._lock:
            self.writes += 1

    def flush(self, resource):
        with self._lock:
            self.flushes += 1

    def prepare(self, resource):
        with self._lock:
            self.prepared += 1

    def close(self, resource):
        with self._lock:
            self.closed += 1
            self.open_now -= 1


class FakeClock:
    """Deterministic monotonic clock whose sleep just advances time"""

    def __init__(self, start=100.0):
        self.now = start
        self.sleeps = []

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fake_backend():
    return FakeBackend()


@pytest.fixture
def backends(fake_backend):
    return {
        "mysql": fake_backend,
        "postgres": FakeBackend(fail_open=True),
        "redis": FakeBackend(error_code="REDIS_ERROR"),
        "kafka": FakeBackend(error_code="KAFKA_ERROR"),
    }


@pytest.fixture
def settings():
    return Settings({"LOG_FORMAT": "full"})


@pytest.fixture
def app(settings, backends):
    factories = {name: (lambda s, b=backend: b) for name, backend in backends.items()}
    # redshift stays real so an empty environment yields CONFIG_ERROR
    factories["redshift"] = lambda s: SqlBackend(s.database("redshift"))
    return create_app(settings, backend_factories=factories, log_format=select_format("full"))


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client
