import glob
import os
import tempfile
import time

import pytest

from biggie.routes import chaos
from biggie.simulation import DOWNTIME, ERROR_RATE, LATENCY, PACKET_LOSS


def wait_for(predicate, timeout=5.0, step=0.05):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(step)
    return predicate()


class TestSimple:
    def test_ok(self, client):
        resp = client.get("/simple")
        assert resp.status_code == 200
        assert resp.json()["message"] == "ok"
        assert resp.json()["requested_at"].endswith("Z")

    def test_tracking_headers(self, client):
        resp = client.get("/simple")
        assert resp.headers["X-Endpoint"] == "/simple"
        assert resp.headers["X-Server-ID"]
        assert resp.headers["X-Request-ID"]
        assert float(resp.headers["X-Response-Time-Ms"]) >= 0

    def test_foo_details(self, client):
        resp = client.get("/simple/foo?x=1&x=2", headers={"X-Forwarded-For": "10.0.0.9, 10.0.0.1"})
        body = resp.json()
        assert body["query"] == {"x": ["1", "2"]}
        assert body["ip"] == "10.0.0.9"
        assert body["method"] == "GET"

    def test_bar_echo(self, client):
        body = client.post("/simple/bar", json={"a": 1}).json()
        assert body["body"]["payload"] == {"a": 1}

    def test_color_from_query(self, client):
        resp = client.get("/simple/color?color=red")
        assert resp.headers["content-type"].startswith("text/html")
        assert "background-color:red" in resp.text

    def test_color_escaped(self, client):
        assert "<script>" not in client.get("/simple/color?color=<script>").text

    def test_large(self, client):
        assert client.get("/simple/large?length=3&sentence=hi").json()["large_text"] == "hi hi hi"
        assert client.get("/simple/large").json()["large_text"].count("sample sentence") == 10


class TestHealth:
    def test_ok(self, client):
        assert client.get("/healthcheck").json()["message"] == "ok"

    def test_slow_explicit_wait(self, client):
        assert client.get("/healthcheck/slow?wait=0").json()["wait_second"] == 0

    def test_external(self, client):
        body = client.get("/healthcheck/external").json()
        assert body["mysql"] == "ok"
        assert body["postgres"] == "failed: connection refused"
        assert body["redshift"] == "not configured"

    def test_hops_bad_url(self, client):
        resp = client.post("/healthcheck/hops", json={"url": "not a url"})
        assert resp.status_code == 500
        assert resp.json()["error"] == "REQUEST_CREATION_FAILED"


class TestValidation:
    def test_inverted_range(self, client):
        resp = client.post("/stress/cpu", json={"maintain_second": "RANDOM:50:10"})
        assert resp.status_code == 400
        body = resp.json()
        assert body["error"] == "INVALID_RANGE"
        assert "RANDOM:50:10" in body["request"]["body"]["payload"]

    def test_bad_value(self, client):
        resp = client.post("/stress/cpu", json={"maintain_second": "abc"})
        assert resp.status_code == 400
        assert resp.json()["error"] == "INVALID_PAYLOAD"

    def test_malformed_json(self, client):
        resp = client.post("/stress/cpu", content="{bad", headers={"content-type": "application/json"})
        assert resp.status_code == 400
        assert resp.json()["error"] == "INVALID_PAYLOAD"

    def test_required_field(self, client):
        resp = client.post("/stress/filesystem/read", json={"maintain_second": 1})
        assert resp.status_code == 400
        assert resp.json()["error"] == "INVALID_PAYLOAD"

    def test_random_resolved_and_echoed(self, client):
        body = client.post("/stress/cpu", json={"maintain_second": "RANDOM:1:2", "cpu_percent": 5, "async": True}).json()
        assert body["maintain_second"] == 1
        assert body["message"] == "cpu stress started"


class TestLocalStress:
    def test_sync_cpu_blocks_for_duration(self, client):
        start = time.monotonic()
        resp = client.post("/stress/cpu", json={"cpu_percent": 10, "maintain_second": 2})
        elapsed = time.monotonic() - start
        assert resp.json()["message"] == "cpu stress completed"
        assert resp.json()["chosen_cpu_percent"] == 10
        assert 1.8 <= elapsed < 4

    def test_memory(self, client):
        body = client.post("/stress/memory", json={"memory_percent": 1, "maintain_second": 1}).json()
        assert body["message"] == "memory stress completed"
        assert body["chosen_memory_percent"] == 1

    def test_memory_leak_is_kept(self, client, app):
        body = client.post("/stress/memory_leak", json={"leak_size_mb": 1, "maintain_second": 1}).json()
        assert body["chosen_leak_size_mb"] == 1
        assert app.state.leaks.total_mb >= 1.0
        assert client.get("/metrics/system").json()["leaked_memory_mb"] >= 1.0

    def test_file_write_cleans_up(self, client):
        before = set(glob.glob(os.path.join(tempfile.gettempdir(), "biggie_write_*")))
        resp = client.post("/stress/filesystem/write", json={"file_size": 1024, "file_count": 2, "maintain_second": 1})
        assert resp.json()["message"] == "file write stress completed"
        assert set(glob.glob(os.path.join(tempfile.gettempdir(), "biggie_write_*"))) <= before

    def test_file_read(self, client, tmp_path):
        target = tmp_path / "data.bin"
        target.write_bytes(b"x" * 2048)
        body = client.post("/stress/filesystem/read", json={"file_path": str(target), "maintain_second": 1}).json()
        assert body["message"] == "file read stress completed"
        assert body["file_path"] == str(target)

    def test_logs(self, client):
        body = client.post("/stress/logs", json={"maintain_second": 1, "line_per_log": 2}).json()
        assert body["message"] == "logs generation completed"


class TestDatastores:
    def test_heavy_reads_and_writes(self, client, fake_backend):
        resp = client.post(
            "/mysql/heavy",
            json={"maintain_second": 1, "reads": True, "writes": True, "query_per_interval": 3},
        )
        assert resp.json()["message"] == "MySQL heavy query (single connection) completed"
        assert fake_backend.prepared == 1
        assert fake_backend.reads == fake_backend.writes
        assert fake_backend.reads >= 3 and fake_backend.reads % 3 == 0
        assert fake_backend.opened == fake_backend.closed == 1

    def test_multi_heavy(self, client, fake_backend):
        resp = client.post("/mysql/multi_heavy", json={"maintain_second": 1, "reads": True, "connection_counts": 3})
        assert resp.json()["connection_counts"] == 3
        assert fake_backend.peak == 3
        assert fake_backend.open_now == 0

    def test_async_connection_ramp(self, client, fake_backend):
        resp = client.post(
            "/mysql/connection",
            json={"async": True, "maintain_second": 3, "connection_counts": 5, "increase_per_interval": 2, "interval_second": 1},
        )
        assert resp.json()["message"] == "MySQL connection stress started"
        assert fake_backend.peak < 5
        assert wait_for(lambda: fake_backend.peak == 5)
        assert wait_for(lambda: fake_backend.open_now == 0)
        assert fake_backend.opened == fake_backend.closed == 5

    def test_unconfigured(self, client):
        resp = client.post("/redshift/heavy", json={})
        assert resp.status_code == 500
        assert resp.json()["error"] == "CONFIG_ERROR"

    def test_connection_failure(self, client):
        resp = client.post("/postgres/heavy", json={"maintain_second": 1})
        assert resp.status_code == 500
        assert resp.json()["error"] == "DB_ERROR"
        assert resp.json()["message"] == "connection refused"

    def test_kafka_produce(self, client, backends):
        producer = backends["kafka"]
        body = client.post("/kafka/heavy", json={"maintain_second": 1, "produce_per_interval": 2}).json()
        assert body["messages"]
        assert producer.writes == 2 * producer.flushes
        assert producer.closed == 1


class TestChaos:
    def test_packet_loss_window(self, client):
        resp = client.post("/stress/network/packet_loss", json={"loss_percentage": 100, "maintain_second": 1, "async": True})
        assert resp.json()["message"] == "packet loss simulation started"
        dropped = client.get("/simple")
        assert dropped.status_code == 503
        assert dropped.json()["error"] == "SIMULATED_PACKET_LOSS"
        time.sleep(1.1)
        assert client.get("/simple").status_code == 200

    def test_latency(self, client):
        client.post("/stress/network/latency", json={"latency_ms": 300, "maintain_second": 5, "async": True})
        start = time.monotonic()
        client.get("/simple")
        assert time.monotonic() - start >= 0.3

    def test_downtime(self, client):
        client.post("/stress/downtime", json={"downtime_second": 2, "async": True})
        resp = client.get("/healthcheck")
        assert resp.status_code == 503
        assert resp.json()["error"] == "SERVICE_DOWN"
        assert resp.json()["request"]["method"] == "GET"

    def test_error_injection(self, client):
        client.post("/stress/error_injection", json={"error_rate": 1, "maintain_second": 5, "async": True})
        resp = client.get("/simple")
        assert resp.status_code == 500
        assert resp.json()["error"] == "RANDOM_ERROR"

    def test_metrics_show_active_simulation(self, client):
        client.post("/stress/network/latency", json={"latency_ms": 100, "maintain_second": 5, "async": True})
        body = client.get("/metrics/system").json()
        assert body["stress_tests"]["latency_ms"]["active"] is True
        assert {"server_id", "cpu_load", "cpu_count", "memory_usage", "network_throughput"} <= set(body)

    def test_downtime_wins_over_packet_loss(self, client, app):
        state = app.state.simulation
        state.activate(DOWNTIME, 1, 5)
        state.activate(PACKET_LOSS, 100, 5)
        assert client.get("/simple").json()["error"] == "SERVICE_DOWN"

    def test_packet_loss_wins_over_error_injection(self, client, app):
        state = app.state.simulation
        state.activate(PACKET_LOSS, 100, 5)
        state.activate(ERROR_RATE, 1.0, 5)
        resp = client.get("/simple")
        assert resp.status_code == 503
        assert resp.json()["error"] == "SIMULATED_PACKET_LOSS"

    def test_latency_applies_before_packet_loss(self, client, app):
        state = app.state.simulation
        state.activate(LATENCY, 200, 5)
        state.activate(PACKET_LOSS, 100, 5)
        start = time.monotonic()
        assert client.get("/simple").status_code == 503
        assert time.monotonic() - start >= 0.2

    @pytest.mark.parametrize(
        "endpoint, payload",
        [
            ("/stress/network/latency", {"latency_ms": 10, "maintain_second": -1}),
            ("/stress/network/packet_loss", {"loss_percentage": 50, "maintain_second": -1}),
            ("/stress/downtime", {"downtime_second": -1}),
            ("/stress/error_injection", {"error_rate": 0.5, "maintain_second": "RANDOM:-3:-1"}),
        ],
    )
    def test_negative_window_completes(self, client, endpoint, payload):
        resp = client.post(endpoint, json=payload)
        assert resp.status_code == 200
        assert resp.json()["message"].endswith("completed")
        assert client.get("/simple").status_code == 200

    def test_sync_crash(self, client, monkeypatch):
        codes = []
        monkeypatch.setattr(chaos, "terminate", codes.append)
        body = client.post("/stress/crash", json={"maintain_second": 0}).json()
        assert body["message"] == "crash simulation completed"
        assert codes == [1]


@pytest.mark.parametrize("endpoint", ["/simple", "/healthcheck"])
def test_self_url(endpoint):
    class FakeRequest:
        base_url = "http://testserver/"

    assert chaos.self_url(FakeRequest(), endpoint.lstrip("/")) == "http://testserver" + endpoint
