"""HTTP server – serves the metrics snapshot and a landing page."""

from __future__ import annotations

import gzip
import html
import logging
import socket
import ssl
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from urllib.parse import parse_qs, urlsplit

from prometheus_client.exposition import choose_encoder, gzip_accepted
from prometheus_client.registry import CollectorRegistry

from ..config import ConfigError, TLSConfig, WebConfig

logger = logging.getLogger(__name__)

LANDING_PAGE = """<html>
<head><title>NVIDIA GPU Exporter</title></head>
<body>
<h1>NVIDIA GPU Exporter</h1>
<p><a href='{path}'>Metrics</a></p>
</body>
</html>
"""


def parse_listen_address(address: str) -> tuple[str, int]:
    """Split ``host:port``, ``:port`` or ``[v6addr]:port`` into host and port.

    An empty host means every interface.
    """
    host, sep, port = address.rpartition(":")
    if not sep or not port:
        raise ConfigError(f"listen address needs a port: {address!r}")
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    elif ":" in host:
        raise ConfigError(f"IPv6 listen address must be bracketed: {address!r}")
    try:
        port_number = int(port)
    except ValueError:
        raise ConfigError(f"invalid port in listen address: {address!r}") from None
    if not 0 <= port_number <= 65535:
        raise ConfigError(f"port out of range in listen address: {address!r}")
    return host, port_number


class _ExporterHTTPServer(ThreadingHTTPServer):
    daemon_threads = True
    allow_reuse_port = False

    def __init__(self, address: tuple[str, int], registry: CollectorRegistry, telemetry_path: str) -> None:
        if ":" in address[0]:
            self.address_family = socket.AF_INET6
        super().__init__(address, _MetricsHandler)
        self.registry = registry
        self.telemetry_path = telemetry_path


class _MetricsHandler(BaseHTTPRequestHandler):
    server: _ExporterHTTPServer
    _head = False

    def do_GET(self) -> None:  # noqa: N802
        self._route(head=False)

    def do_HEAD(self) -> None:  # noqa: N802
        self._route(head=True)

    def _route(self, head: bool) -> None:
        self._head = head
        url = urlsplit(self.path)
        if url.path == self.server.telemetry_path:
            self._send_metrics(url.query)
        elif url.path == "/":
            body = LANDING_PAGE.format(path=html.escape(self.server.telemetry_path, quote=True))
            self._send(200, "text/html; charset=utf-8", body.encode("utf-8"))
        else:
            self._send(404, "text/plain; charset=utf-8", b"404 page not found\n")

    def _send_metrics(self, query: str) -> None:
        registry = self.server.registry
        params = parse_qs(query)
        if "name[]" in params:
            registry = registry.restricted_registry(params["name[]"])
        encoder, content_type = choose_encoder(self.headers.get("Accept"))
        try:
            output = encoder(registry)
        except Exception:
            logger.exception("Error generating metrics output")
            self._send(500, "text/plain; charset=utf-8", b"error collecting metrics\n")
            return
        if gzip_accepted(self.headers.get("Accept-Encoding")):
            self._send(200, content_type, gzip.compress(output), encoding="gzip")
        else:
            self._send(200, content_type, output)

    def _send(self, status: int, content_type: str, body: bytes, encoding: str | None = None) -> None:
        self.send_response(status)
        self.send_header("Content-Type", content_type)
        if encoding is not None:
            self.send_header("Content-Encoding", encoding)
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        if not self._head:
            self.wfile.write(body)

    def log_message(self, format: str, *args: object) -> None:  # noqa: A002
        logger.debug("%s - %s", self.address_string(), format % args)


class MetricsServer:
    """Serves *registry* on the configured listen address and telemetry path.

    Requests are handled on separate threads; concurrent scrapes are
    serialized by the GPU collector itself.
    """

    def __init__(
        self,
        registry: CollectorRegistry,
        config: WebConfig,
        tls: TLSConfig | None = None,
    ) -> None:
        self._config = config
        host, port = parse_listen_address(config.listen_address)
        self._httpd = _ExporterHTTPServer((host, port), registry, config.telemetry_path)
        if tls is not None:
            try:
                context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
                context.load_cert_chain(tls.cert_file, tls.key_file)
                self._httpd.socket = context.wrap_socket(self._httpd.socket, server_side=True)
            except OSError:
                self._httpd.server_close()
                raise
        self._tls = tls is not None
        self._thread: threading.Thread | None = None

    @property
    def server_address(self) -> tuple[str, int]:
        host, port = self._httpd.server_address[:2]
        return host, port

    def serve_forever(self) -> None:
        host, port = self.server_address
        logger.info(
            "Listening on %s:%d%s (telemetry path %s)",
            host, port, " with TLS" if self._tls else "", self._config.telemetry_path,
        )
        self._httpd.serve_forever()

    def start(self) -> None:
        """Serve in a background thread."""
        if self._thread is not None:
            return
        self._thread = threading.Thread(target=self.serve_forever, daemon=True)
        self._thread.start()

    def shutdown(self) -> None:
        """Stop serving and close the listening socket."""
        if self._thread is not None:
            self._httpd.shutdown()
            self._thread.join(timeout=5)
            self._thread = None
        self._httpd.server_close()
        logger.info("Metrics server stopped")
