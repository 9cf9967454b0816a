import random
import threading

import pytest
import requests
from structlog.testing import capture_logs

from biggie.routes import chaos


class RecordingGet:
    """Stands in for requests.get; records every URL it was called with"""

    def __init__(self, error=None):
        self.error = error
        self.urls = []
        self._lock = threading.Lock()

    def __call__(self, url, timeout=None):
        with self._lock:
            self.urls.append(url)
        if self.error is not None:
            raise self.error
        return None


@pytest.fixture
def recorder(monkeypatch):
    get = RecordingGet()
    monkeypatch.setattr(chaos.requests, "get", get)
    return get


class TestBurst:
    def test_sends_count_requests(self, recorder):
        assert chaos.burst("http://target/x", 5, "flood") == 0
        assert recorder.urls == ["http://target/x"] * 5

    def test_zero_count(self, recorder):
        assert chaos.burst("http://target/x", 0, "flood") == 0
        assert recorder.urls == []

    def test_failed_requests_are_counted_and_logged(self, monkeypatch):
        get = RecordingGet(error=requests.ConnectionError("refused"))
        monkeypatch.setattr(chaos.requests, "get", get)
        with capture_logs() as logs:
            assert chaos.burst("http://target/x", 3, "flood") == 3
        assert len(get.urls) == 3
        assert sum(1 for entry in logs if entry["event"] == "request failed") == 3

    def test_simulated_errors_skip_calls(self, recorder):
        expected = random.Random(7)
        skipped = sum(1 for _ in range(200) if expected.random() < 0.2)
        failures = chaos.burst("http://target/x", 200, "third_party", 0.2, rng=random.Random(7))
        assert failures == skipped
        assert len(recorder.urls) == 200 - skipped
        assert 0 < skipped < 200

    def test_full_error_rate_sends_nothing(self, recorder):
        with capture_logs() as logs:
            assert chaos.burst("http://target/x", 4, "third_party", 1.0) == 4
        assert recorder.urls == []
        assert sum(1 for entry in logs if entry["event"] == "simulated call error") == 4


class TestFloodRoutes:
    def test_concurrent_flood_targets_own_endpoint(self, client, recorder):
        body = client.post(
            "/stress/concurrent_flood",
            json={"target_endpoint": "/healthcheck", "request_count": 3, "maintain_second": 1},
        ).json()
        assert body["message"] == "concurrent flood simulation completed"
        assert recorder.urls == ["http://testserver/healthcheck"] * 3

    def test_ddos_per_interval_intensity(self, client, recorder):
        body = client.post("/stress/ddos", json={"attack_intensity": 4, "maintain_second": 1}).json()
        assert body["attack_intensity"] == 4
        assert recorder.urls == ["http://testserver/simple"] * 4

    def test_third_party_calls(self, client, recorder):
        body = client.post(
            "/stress/third_party",
            json={"target_url": "http://api.example.test/v1", "call_rate": 2, "maintain_second": 1},
        ).json()
        assert body["simulate_errors"] is False
        assert recorder.urls == ["http://api.example.test/v1"] * 2

    def test_third_party_simulated_errors(self, client, recorder, monkeypatch):
        monkeypatch.setattr(chaos, "THIRD_PARTY_ERROR_RATE", 1.0)
        body = client.post(
            "/stress/third_party",
            json={"target_url": "http://api.example.test/v1", "call_rate": 3, "maintain_second": 1, "simulate_errors": True},
        ).json()
        assert body["simulate_errors"] is True
        assert recorder.urls == []

    def test_third_party_requires_target(self, client):
        resp = client.post("/stress/third_party", json={"call_rate": 2})
        assert resp.status_code == 400
        assert resp.json()["error"] == "INVALID_PAYLOAD"
