"""
HTTP endpoint for Prometheus scrapes.

Routes:
    GET /metrics   200, Prometheus text format
    GET /health    200, "OK"
    anything else  404

Built on ``http.server`` so the exporter carries no web framework. Each
request is served on its own thread and runs a handful of read-only
queries against the audit store.

Example:
    server = MetricsServer(AuditDB(), port=9090)
    server.start_background()
    ...
    server.stop()
"""

import logging
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

from gatehouse.metrics.exporter import CONTENT_TYPE, collect, format_metrics
from gatehouse.store.db import AuditDB

logger = logging.getLogger(__name__)

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 9090


class _MetricsHandler(BaseHTTPRequestHandler):
    """Request handler; ``db`` is injected per server instance."""

    db: AuditDB

    def do_GET(self) -> None:  # noqa: N802
        path = self.path.split("?", 1)[0]

        if path == "/metrics":
            try:
                body = format_metrics(collect(self.db))
            except Exception:
                logger.exception("Error generating metrics")
                self._send(500, "Internal Server Error")
                return
            self._send(200, body, CONTENT_TYPE)
        elif path == "/health":
            self._send(200, "OK")
        else:
            self._not_found()

    def _not_found(self) -> None:
        # Drain any request body so closing the socket does not reset it
        length = int(self.headers.get("Content-Length") or 0)
        if length > 0:
            self.rfile.read(length)
        self._send(404, "Not Found")

    # Only GET is routed; every other method is a 404
    do_POST = _not_found  # noqa: N815
    do_PUT = _not_found  # noqa: N815
    do_DELETE = _not_found  # noqa: N815
    do_PATCH = _not_found  # noqa: N815
    do_OPTIONS = _not_found  # noqa: N815
    do_HEAD = _not_found  # noqa: N815

    def _send(self, status: int, text: str, content_type: str = "text/plain; charset=utf-8") -> None:
        body = text.encode("utf-8")
        self.send_response(status)
        self.send_header("Content-Type", content_type)
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        if self.command != "HEAD":
            self.wfile.write(body)

    def log_message(self, fmt: str, *args: object) -> None:  # type: ignore[override]
        """Route request logs to DEBUG instead of stderr."""
        logger.debug(fmt, *args)


class MetricsServer:
    """
    Wraps a ``ThreadingHTTPServer`` serving the metrics endpoint.

    Args:
        db: Audit store to aggregate on every scrape
        host: Bind address
        port: Port to listen on (0 picks a free port)
    """

    def __init__(self, db: AuditDB, host: str = DEFAULT_HOST, port: int = DEFAULT_PORT) -> None:
        self._db = db
        self._host = host
        self._port = port
        self._server: ThreadingHTTPServer | None = None
        self._thread: threading.Thread | None = None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start the server and block until interrupted."""
        self._server = self._build_server()
        logger.info("Metrics server started on %s", self.url)
        try:
            self._server.serve_forever()
        except KeyboardInterrupt:
            pass
        finally:
            self._server.server_close()
            self._server = None
            logger.info("Metrics server stopped")

    def start_background(self) -> None:
        """Start the server in a daemon thread."""
        if self._server is not None:
            logger.warning("Metrics server already running on %s", self.url)
            return
        self._server = self._build_server()
        self._thread = threading.Thread(
            target=self._server.serve_forever,
            daemon=True,
            name="gatehouse-metrics",
        )
        self._thread.start()
        logger.info("Metrics server started (background) on %s", self.url)

    def stop(self) -> None:
        """Stop a background server."""
        if self._server is None:
            return
        self._server.shutdown()
        self._server.server_close()
        self._server = None
        if self._thread is not None:
            self._thread.join()
            self._thread = None
        logger.info("Metrics server stopped")

    @property
    def running(self) -> bool:
        return self._server is not None

    @property
    def port(self) -> int:
        """The bound port (the configured one until the server starts)."""
        if self._server is not None:
            return self._server.server_address[1]
        return self._port

    @property
    def url(self) -> str:
        return f"http://{self._host}:{self.port}/"

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _build_server(self) -> ThreadingHTTPServer:
        # Subclass per server so instances never share the injected store
        db = self._db

        class _Handler(_MetricsHandler):
            pass

        _Handler.db = db
        server = ThreadingHTTPServer((self._host, self._port), _Handler)
        server.daemon_threads = True
        return server
