"""Pytest configuration and fixtures for the SOCKS5 proxy tests."""

import asyncio
import logging
import socket
import socketserver
import threading
import time
from collections.abc import Iterator
from typing import Callable, Optional

import pytest

from config import ServerConfig
from proxy import Socks5Server
from socks5_client import Socks5Client

ADVERTISED_HOST = "proxy.test"


class _EchoHandler(socketserver.BaseRequestHandler):
    def handle(self) -> None:
        while True:
            try:
                data = self.request.recv(65536)
            except OSError:
                return
            if not data:
                return
            self.request.sendall(data)


class _EchoServer(socketserver.ThreadingTCPServer):
    daemon_threads = True
    allow_reuse_address = True


class ProxyThread:
    """Runs a Socks5Server on its own event loop in a background thread."""

    def __init__(self, config: ServerConfig):
        self.config = config
        self.loop = asyncio.new_event_loop()
        self.server: Optional[Socks5Server] = None
        self.error: Optional[BaseException] = None
        self._ready = threading.Event()
        self._thread = threading.Thread(target=self._run, daemon=True)

    def _run(self) -> None:
        asyncio.set_event_loop(self.loop)
        try:
            self.server = Socks5Server(self.config)
            self.loop.run_until_complete(self.server.start_serving())
        except BaseException as e:
            self.error = e
            self._ready.set()
            return
        self._ready.set()
        self.loop.run_forever()

    def start(self) -> "ProxyThread":
        self._thread.start()
        assert self._ready.wait(5), "proxy did not start"
        if self.error:
            raise self.error
        return self

    @property
    def port(self) -> int:
        return self.server.bind_port

    def stop(self) -> None:
        if self.loop.is_closed():
            return
        future = asyncio.run_coroutine_threadsafe(self.server.stop(), self.loop)
        future.result(timeout=5)
        self.loop.call_soon_threadsafe(self.loop.stop)
        self._thread.join(timeout=5)
        self.loop.close()


def wait_until(predicate: Callable[[], bool], timeout: float = 5.0) -> bool:
    """Poll predicate until it returns True or the timeout expires."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.02)
    return predicate()


def make_config(**overrides) -> ServerConfig:
    values = dict(
        host="127.0.0.1",
        port=0,
        advertised_host=ADVERTISED_HOST,
        stats_interval=0,
    )
    values.update(overrides)
    return ServerConfig(**values)


@pytest.fixture
def echo_server_addr() -> Iterator[tuple[str, int]]:
    """Start a threaded TCP echo server on an ephemeral port."""
    server = _EchoServer(("127.0.0.1", 0), _EchoHandler)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    yield server.server_address[0], server.server_address[1]
    server.shutdown()
    server.server_close()


@pytest.fixture
def closed_port() -> int:
    """Return a local port that has no listener."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.bind(("127.0.0.1", 0))
    port = sock.getsockname()[1]
    sock.close()
    return port


@pytest.fixture
def proxy_factory() -> Iterator[Callable[..., ProxyThread]]:
    """Build proxies with config overrides; all are stopped at teardown."""
    started: list[ProxyThread] = []

    def factory(**overrides) -> ProxyThread:
        proxy = ProxyThread(make_config(**overrides)).start()
        started.append(proxy)
        return proxy

    yield factory
    for proxy in started:
        proxy.stop()


@pytest.fixture
def proxy(proxy_factory) -> ProxyThread:
    return proxy_factory()


@pytest.fixture
def socks5_client(proxy: ProxyThread) -> Socks5Client:
    return Socks5Client("127.0.0.1", proxy.port)


@pytest.fixture
def restore_root_logger() -> Iterator[None]:
    """Undo handler changes LoggerManager.initialize makes to the root logger."""
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield
    for handler in list(root.handlers):
        if handler not in handlers:
            root.removeHandler(handler)
            handler.close()
    for handler in handlers:
        if handler not in root.handlers:
            root.addHandler(handler)
    root.setLevel(level)
