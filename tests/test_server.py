import queue
import threading
import time
import urllib.error
import urllib.request

import pytest

from gpumetrics.pipeline import format_gpu_metrics
from gpumetrics.server import INDEX_PAGE, MetricsServer
from gpumetrics.types import Collector, Counter, Metric

COUNTER = Counter(field_id=155, field_name="DCGM_FI_DEV_POWER_USAGE", prom_type="gauge")


class _FixedCollector(Collector):
    def __init__(self, metrics):
        self.metrics = metrics

    def get_metrics(self):
        return self.metrics

    def cleanup(self):
        pass


class _FailingCollector(Collector):
    def get_metrics(self):
        raise RuntimeError("Boom!")

    def cleanup(self):
        pass


def _server():
    return MetricsServer("localhost:0", queue.Queue())


def test_health_is_ko_without_metrics():
    response = _server().respond("/health")
    assert response.status == 503
    assert response.body == "KO"
    assert response.headers["X-Content-Type-Options"] == "nosniff"


def test_health_is_ok_with_metrics():
    server = _server()
    server.update_metrics("some metrics\n")
    response = server.respond("/health")
    assert response.status == 200
    assert response.body == "OK"


def test_update_and_current_metrics_round_trip():
    server = _server()
    assert server.current_metrics() == ""
    server.update_metrics("abc")
    assert server.current_metrics() == "abc"


def test_index_page():
    response = _server().respond("/")
    assert response.status == 200
    assert response.body == INDEX_PAGE
    assert "./metrics" in response.body


def test_metrics_serves_current_text_with_empty_registry():
    server = _server()
    server.update_metrics("line 1\n")
    response = server.respond("/metrics")
    assert response.status == 200
    assert response.body == "line 1\n"


def test_metrics_appends_registry_output():
    server = _server()
    server.update_metrics("pipeline\n")
    gathered = {COUNTER: [Metric(counter=COUNTER, gpu="0", value="42")]}
    server.registry.register(_FixedCollector(gathered))
    response = server.respond("/metrics")
    assert response.status == 200
    assert response.body == "pipeline\n" + format_gpu_metrics(gathered)
    assert "DCGM_FI_DEV_POWER_USAGE" in response.body


def test_metrics_registry_failure_appends_error():
    server = _server()
    server.update_metrics("pipeline\n")
    server.registry.register(_FailingCollector())
    response = server.respond("/metrics")
    assert response.body.startswith("pipeline\n")
    assert response.body.endswith("failed to write response\n")


def test_unknown_path_is_not_found():
    response = _server().respond("/nowhere")
    assert response.status == 404


@pytest.mark.parametrize("address", ["no-port", "localhost:http", "localhost:70000"])
def test_invalid_address_is_rejected(address):
    with pytest.raises(ValueError):
        MetricsServer(address, queue.Queue())


def _wait_for(predicate, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.02)
    return predicate()


def test_run_serves_metrics_over_http():
    metrics_queue = queue.Queue()
    server = MetricsServer("127.0.0.1:0", metrics_queue)
    stop = threading.Event()
    runner = threading.Thread(target=server.run, args=(stop,), daemon=True)
    runner.start()
    try:
        assert server.ready.wait(5)
        host, port = server.bound_address
        base = f"http://{host}:{port}"

        with pytest.raises(urllib.error.HTTPError) as excinfo:
            urllib.request.urlopen(base + "/health", timeout=5)
        assert excinfo.value.code == 503

        metrics_queue.put("DCGM_FI_DEV_GPU_TEMP{gpu=\"0\"} 40\n")
        assert _wait_for(lambda: server.current_metrics() != "")

        with urllib.request.urlopen(base + "/metrics", timeout=5) as resp:
            assert resp.status == 200
            assert resp.read().decode() == "DCGM_FI_DEV_GPU_TEMP{gpu=\"0\"} 40\n"

        with urllib.request.urlopen(base + "/health", timeout=5) as resp:
            assert resp.read().decode() == "OK"

        with pytest.raises(urllib.error.HTTPError) as excinfo:
            urllib.request.urlopen(base + "/missing", timeout=5)
        assert excinfo.value.code == 404
    finally:
        stop.set()
        runner.join(10)
    assert not runner.is_alive()
    assert not server.ready.is_set()