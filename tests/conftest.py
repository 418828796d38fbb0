from __future__ import annotations

import os
import threading
from collections.abc import Iterator
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path

import pytest


@pytest.hookimpl(trylast=True)
def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    del config
    for item in items:
        path = Path(str(getattr(item, "path", item.fspath)))
        if "integration" in path.parts:
            item.add_marker(pytest.mark.integration)
            item.add_marker(pytest.mark.slow)


@pytest.fixture(autouse=True)
def _isolate_backoff_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in list(os.environ):
        if name.startswith("HTTPBACKOFF_"):
            monkeypatch.delenv(name, raising=False)


class FakeClock:
    """Monotonic clock that only moves when the retry loop sleeps."""

    def __init__(self, start: float = 0.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def empty_config(tmp_path: Path) -> Path:
    path = tmp_path / "config.toml"
    path.write_text("", encoding="utf-8")
    return path


class QueuedResponses:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._queue: list[tuple[int, str]] = []
        self.requests: list[tuple[str, str, bytes]] = []

    def queue(self, status_code: int, body: str | None = None) -> None:
        text = body if body is not None else f"This is a *fake* HTTP {status_code} response body for testing purposes"
        with self._lock:
            self._queue.append((status_code, text))

    def pop(self) -> tuple[int, str]:
        with self._lock:
            if not self._queue:
                return 200, ""
            return self._queue.pop(0)

    def clear(self) -> None:
        with self._lock:
            self._queue.clear()
            self.requests.clear()


class StubServer:
    def __init__(self) -> None:
        self.responses = QueuedResponses()
        responses = self.responses

        class Handler(BaseHTTPRequestHandler):
            def _reply(self) -> None:
                length = int(self.headers.get("Content-Length") or 0)
                body = self.rfile.read(length) if length else b""
                responses.requests.append((self.command, self.path, body))
                status_code, text = responses.pop()
                payload = text.encode("utf-8")
                self.send_response(status_code)
                self.send_header("Content-Type", "text/plain; charset=utf-8")
                self.send_header("Content-Length", str(len(payload)))
                self.end_headers()
                if self.command != "HEAD":
                    self.wfile.write(payload)

            do_GET = _reply
            do_HEAD = _reply
            do_POST = _reply

            def log_message(self, format: str, *args: object) -> None:
                del format, args

        self._server = ThreadingHTTPServer(("127.0.0.1", 0), Handler)
        self._thread = threading.Thread(target=self._server.serve_forever, daemon=True)

    @property
    def base_url(self) -> str:
        host, port = self._server.server_address[:2]
        return f"http://{host}:{port}"

    def start(self) -> None:
        self._thread.start()

    def stop(self) -> None:
        self._server.shutdown()
        self._server.server_close()
        self._thread.join(timeout=5)


@pytest.fixture(scope="session")
def stub_server() -> Iterator[StubServer]:
    server = StubServer()
    server.start()
    try:
        yield server
    finally:
        server.stop()


@pytest.fixture
def queued(stub_server: StubServer) -> Iterator[QueuedResponses]:
    stub_server.responses.clear()
    yield stub_server.responses
    stub_server.responses.clear()
