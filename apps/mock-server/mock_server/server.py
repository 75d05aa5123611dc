"""Server runtime serving configured mock routes over HTTP."""

from __future__ import annotations

import json
import socketserver
import threading
import time
from dataclasses import dataclass
from http import HTTPStatus
from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import Any

import structlog

from .models import MockConfig, MockRoute, MockServer

LOGGER = structlog.get_logger("mock_server")


@dataclass
class MockRequest:
    method: str
    path: str
    headers: dict[str, str]
    body: bytes

    @property
    def json(self) -> Any:
        if not self.body:
            return None
        try:
            return json.loads(self.body.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError):
            return None


class ThreadedHTTPServer(socketserver.ThreadingMixIn, HTTPServer):
    daemon_threads = True


class MockServerRunner:
    """Runs a single HTTP server instance based on a MockServer definition."""

    def __init__(self, server_config: MockServer, logger: Any = None) -> None:
        self._config = server_config
        self._httpd: ThreadedHTTPServer | None = None
        self._thread: threading.Thread | None = None
        self._ready = threading.Event()
        self._logger = (logger or LOGGER).bind(server=server_config.name)

    @property
    def port(self) -> int:
        if self._httpd is None:
            return self._config.port
        return self._httpd.server_address[1]

    @property
    def base_url(self) -> str:
        return f"http://{self._config.host}:{self.port}"

    def start(self) -> None:
        handler_factory = self._build_handler_factory()
        self._logger.info("server_starting", host=self._config.host, port=self._config.port)
        httpd = ThreadedHTTPServer((self._config.host, self._config.port), handler_factory)
        self._httpd = httpd
        self._thread = threading.Thread(target=httpd.serve_forever, daemon=True)
        self._thread.start()
        self._ready.set()
        self._logger = self._logger.bind(host=httpd.server_address[0], port=httpd.server_address[1])
        self._logger.info("server_started", routes=len(self._config.routes))

    def stop(self) -> None:
        if not self._httpd:
            return
        self._logger.info("server_stopping")
        try:
            self._httpd.shutdown()
            self._httpd.server_close()
        finally:
            if self._thread:
                self._thread.join(timeout=2)
            self._httpd = None
        self._logger.info("server_stopped")

    def wait_until_ready(self, timeout: float = 1.0) -> bool:
        return self._ready.wait(timeout=timeout)

    def _build_handler_factory(self) -> type[BaseHTTPRequestHandler]:
        server_config = self._config
        handler_logger = self._logger

        class Handler(BaseHTTPRequestHandler):
            def log_message(self, format: str, *args: Any) -> None:  # pragma: no cover - avoid stderr noise
                handler_logger.debug("http_trace", client_ip=self.client_address[0], message=format % args)

            def do_GET(self) -> None:  # noqa: N802 (BaseHTTPRequestHandler requirement)
                self._handle()

            def do_POST(self) -> None:  # noqa: N802
                self._handle()

            def do_PUT(self) -> None:  # noqa: N802
                self._handle()

            def do_DELETE(self) -> None:  # noqa: N802
                self._handle()

            def do_PATCH(self) -> None:  # noqa: N802
                self._handle()

            def _handle(self) -> None:
                request = MockRequest(
                    method=self.command,
                    path=self.path.split("?", 1)[0],
                    headers={key: value for key, value in self.headers.items()},
                    body=self.rfile.read(int(self.headers.get("Content-Length", 0) or 0)),
                )
                handler_logger.info("request_received", method=request.method, path=request.path)
                try:
                    route = match_route(server_config, request)
                    if route is None:
                        handler_logger.warning("request_unmatched", method=request.method, path=request.path)
                        self._respond(HTTPStatus.NOT_FOUND, {"error": "Not Found on mock server"})
                        return
                    self._respond_with_route(route, request)
                except Exception:  # pragma: no cover - resilience path
                    handler_logger.exception("request_failed", method=request.method, path=request.path)
                    self._respond(HTTPStatus.INTERNAL_SERVER_ERROR, {"error": "mock failure"})

            def _respond_with_route(self, route: MockRoute, request: MockRequest) -> None:
                response = route.response
                latency = max(response.latency_ms, 0) / 1000
                if latency:
                    time.sleep(latency)
                payload = response.body if isinstance(response.body, str) else json.dumps(response.body)
                body_bytes = payload.encode("utf-8")
                self.send_response(response.status)
                headers = {"Content-Type": "application/json", **response.headers}
                for key, value in headers.items():
                    self.send_header(key, value)
                self.send_header("Content-Length", str(len(body_bytes)))
                self.end_headers()
                self.wfile.write(body_bytes)
                handler_logger.info(
                    "request_served",
                    method=request.method,
                    path=request.path,
                    operation=route.operation,
                    status=response.status,
                )

            def _respond(self, status: HTTPStatus, payload: dict[str, Any]) -> None:
                body = json.dumps(payload).encode("utf-8")
                self.send_response(status)
                self.send_header("Content-Type", "application/json")
                self.send_header("Content-Length", str(len(body)))
                self.end_headers()
                self.wfile.write(body)

        return Handler


def match_route(server: MockServer, request: MockRequest) -> MockRoute | None:
    """Return the first route whose matcher accepts the request."""

    request_headers = {key.lower(): value for key, value in request.headers.items()}
    for route in server.routes:
        matcher = route.matcher
        if matcher.method and matcher.method.upper() != request.method.upper():
            continue
        if matcher.path and not _path_matches(matcher.path, request.path):
            continue
        if any(request_headers.get(key.lower()) != value for key, value in matcher.headers.items()):
            continue
        if matcher.body is not None and not _contains(request.json, matcher.body):
            continue
        return route
    return None


def _contains(payload: Any, expected: dict[str, Any]) -> bool:
    if not isinstance(payload, dict):
        return False
    return all(key in payload and payload[key] == value for key, value in expected.items())


def _path_matches(matcher_path: str, request_path: str) -> bool:
    if matcher_path == request_path:
        return True
    if "{" not in matcher_path:
        return False
    matcher_parts = matcher_path.strip("/").split("/")
    request_parts = request_path.strip("/").split("/")
    if len(matcher_parts) != len(request_parts):
        return False
    for matcher_part, request_part in zip(matcher_parts, request_parts):
        if matcher_part.startswith("{") and matcher_part.endswith("}"):
            continue
        if matcher_part != request_part:
            return False
    return True


class MockRuntime:
    """Starts all configured servers and manages their lifecycle."""

    def __init__(self, config: MockConfig, logger: Any = None) -> None:
        self._config = config
        self._runners: list[MockServerRunner] = []
        self._base_logger = logger or LOGGER
        self._logger = self._base_logger.bind(service=config.service)

    @property
    def base_urls(self) -> list[str]:
        return [runner.base_url for runner in self._runners]

    def start(self) -> None:
        self._logger.info("runtime_starting_servers", server_count=len(self._config.servers))
        try:
            for server in self._config.servers:
                runner = MockServerRunner(server, self._base_logger)
                runner.start()
                runner.wait_until_ready()
                self._runners.append(runner)
        except OSError:
            self.stop()
            raise
        self._logger.info("runtime_running", active_servers=len(self._runners))

    def stop(self) -> None:
        self._logger.info("runtime_stopping_servers", active_servers=len(self._runners))
        for runner in self._runners:
            runner.stop()
        self._runners.clear()
        self._logger.info("runtime_stopped_servers")

    def __enter__(self) -> "MockRuntime":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()
