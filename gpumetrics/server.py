"""HTTP server that exposes the latest rendered metrics."""

from __future__ import annotations

import logging
import queue
import socket
import threading
from dataclasses import dataclass, field
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Dict, Optional, Tuple
from urllib.parse import urlsplit

from gpumetrics.pipeline import format_gpu_metrics
from gpumetrics.registry import Registry
from gpumetrics.utils import wait_with_timeout

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = 10.0
SHUTDOWN_TIMEOUT = 3.0
_QUEUE_POLL_INTERVAL = 0.1

_WRITE_FAILURE = "failed to write response\n"
_NOT_FOUND = "404 page not found\n"

INDEX_PAGE = """<html>
			<head><title>GPU Exporter</title></head>
			<body>
			<h1>GPU Exporter</h1>
			<p><a href="./metrics">Metrics</a></p>
			</body>
			</html>"""


@dataclass
class Response:
    """What the server answers to a request."""

    status: int
    body: str
    headers: Dict[str, str] = field(default_factory=dict)


def _parse_address(address: str) -> Tuple[str, int]:
    host, sep, port = address.rpartition(":")
    if not sep:
        raise ValueError(f"address '{address}' has no port")
    try:
        port_number = int(port)
    except ValueError:
        raise ValueError(f"address '{address}' has an invalid port") from None
    if not 0 <= port_number <= 65535:
        raise ValueError(f"address '{address}' has an out of range port")
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    return host, port_number


class _Handler(BaseHTTPRequestHandler):
    timeout = REQUEST_TIMEOUT

    def _serve(self, with_body: bool) -> None:
        path = urlsplit(self.path).path
        response = self.server.metrics_server.respond(path)
        data = response.body.encode("utf-8")
        self.send_response(response.status)
        for name, value in response.headers.items():
            self.send_header(name, value)
        self.send_header("Content-Type", "text/plain; charset=utf-8")
        self.send_header("Content-Length", str(len(data)))
        self.end_headers()
        if with_body:
            self.wfile.write(data)

    def do_GET(self) -> None:  # noqa: N802
        self._serve(True)

    def do_POST(self) -> None:  # noqa: N802
        self._serve(True)

    def do_HEAD(self) -> None:  # noqa: N802
        self._serve(False)

    def log_message(self, format: str, *args) -> None:  # noqa: A002
        logger.debug(format, *args)


class _HTTPServer(ThreadingHTTPServer):
    daemon_threads = True

    def __init__(self, address: Tuple[str, int], metrics_server: "MetricsServer") -> None:
        if ":" in address[0]:
            self.address_family = socket.AF_INET6
        self.metrics_server = metrics_server
        super().__init__(address, _Handler)


class MetricsServer:
    """Serves ``/``, ``/health`` and ``/metrics`` from the latest pipeline output."""

    def __init__(self, address: str, metrics: "queue.Queue[str]") -> None:
        self.address = address
        self._host, self._port = _parse_address(address)
        self.metrics_queue = metrics
        self.registry = Registry()
        self.ready = threading.Event()
        self.bound_address: Optional[Tuple[str, int]] = None
        self._metrics = ""
        self._lock = threading.Lock()

    def update_metrics(self, text: str) -> None:
        """Replace the metrics text being served."""
        with self._lock:
            self._metrics = text

    def current_metrics(self) -> str:
        """The metrics text being served."""
        with self._lock:
            return self._metrics

    def _index(self) -> Response:
        return Response(200, INDEX_PAGE, {"X-Content-Type-Options": "nosniff"})

    def _health(self) -> Response:
        headers = {"X-Content-Type-Options": "nosniff"}
        if self.current_metrics() == "":
            return Response(503, "KO", headers)
        return Response(200, "OK", headers)

    def _metrics_page(self) -> Response:
        body = self.current_metrics()
        headers = {"X-Content-Type-Options": "nosniff"}
        # The status is already sent when the registry is gathered, so a
        # failure can only append an error line to the body.
        try:
            gathered = self.registry.gather()
        except Exception as exc:
            logger.error("Failed to write response: %s", exc)
            return Response(200, body + _WRITE_FAILURE, headers)
        try:
            body += format_gpu_metrics(gathered)
        except Exception as exc:
            logger.error("Failed to encode metrics: %s", exc)
            return Response(200, body + _WRITE_FAILURE, headers)
        return Response(200, body, headers)

    def respond(self, path: str) -> Response:
        """Build the response for a request to ``path``."""
        routes = {
            "/": self._index,
            "/health": self._health,
            "/metrics": self._metrics_page,
        }
        handler = routes.get(path)
        if handler is None:
            return Response(404, _NOT_FOUND, {"X-Content-Type-Options": "nosniff"})
        return handler()

    def _consume(self, stop: threading.Event) -> None:
        while not stop.is_set():
            try:
                text = self.metrics_queue.get(timeout=_QUEUE_POLL_INTERVAL)
            except queue.Empty:
                continue
            self.update_metrics(text)

    def run(self, stop: threading.Event) -> None:
        """Serve until ``stop`` is set, then shut down within a few seconds."""
        httpd = _HTTPServer((self._host, self._port), self)
        self.bound_address = httpd.server_address[:2]

        def _serve() -> None:
            logger.info("Starting webserver")
            httpd.serve_forever(poll_interval=_QUEUE_POLL_INTERVAL)

        threads = [
            threading.Thread(target=_serve, daemon=True),
            threading.Thread(target=self._consume, args=(stop,), daemon=True),
        ]
        for thread in threads:
            thread.start()
        self.ready.set()

        try:
            stop.wait()
            httpd.shutdown()
        finally:
            httpd.server_close()
            self.ready.clear()

        def _join_all() -> None:
            for thread in threads:
                thread.join()

        wait_with_timeout(_join_all, SHUTDOWN_TIMEOUT)