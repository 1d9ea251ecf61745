"""
Shared fixtures: short socket paths, settings, and a server machine
running in a background thread.
"""
import shutil
import tempfile
import threading
from pathlib import Path

import pytest

from udsfsm.config import Settings
from udsfsm.server.machine import ServerMachine


@pytest.fixture
def socket_dir():
    # tmp_path can exceed the sun_path limit on some platforms
    path = Path(tempfile.mkdtemp(prefix="udsfsm-", dir="/tmp"))
    yield path
    shutil.rmtree(path, ignore_errors=True)


@pytest.fixture
def socket_path(socket_dir):
    return str(socket_dir / "example.sock")


@pytest.fixture
def make_settings(socket_path):
    def _make(**overrides) -> Settings:
        values = {
            "socket_path": socket_path,
            "exchange_timeout_sec": 2.0,
            "log_to_file": False,
        }
        values.update(overrides)
        return Settings(**values)

    return _make


class ServerThread:
    """Runs a ServerMachine off the main thread and keeps its report."""

    def __init__(self, settings: Settings):
        self.listening = threading.Event()
        self.machine = ServerMachine(settings, on_listening=lambda ctx: self.listening.set())
        self.report = None
        self._thread = threading.Thread(target=self._run, daemon=True)

    def _run(self) -> None:
        try:
            self.report = self.machine.run()
        finally:
            self.listening.set()

    def start(self, timeout: float = 5.0) -> "ServerThread":
        self._thread.start()
        assert self.listening.wait(timeout), "server never started listening"
        return self

    def join(self, timeout: float = 5.0):
        self._thread.join(timeout)
        assert not self._thread.is_alive(), "server thread did not finish"
        return self.report

    def stop(self, timeout: float = 5.0):
        if self._thread.is_alive():
            self.machine.stop()
        return self.join(timeout)

    @property
    def alive(self) -> bool:
        return self._thread.is_alive()


@pytest.fixture
def start_server():
    servers = []

    def _start(settings: Settings) -> ServerThread:
        server = ServerThread(settings).start()
        servers.append(server)
        return server

    yield _start

    for server in servers:
        if server.alive:
            server.stop()
