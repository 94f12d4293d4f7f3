"""
Pytest configuration and fixtures.
"""

from pathlib import Path
from typing import Optional

import pytest
from fastapi.testclient import TestClient

from dreamshell.config import Settings
from dreamshell.core.lifecycle import ContainerLifecycle
from dreamshell.core.session_log import SessionLog
from dreamshell.lib.auth import issue_token
from dreamshell.lib.errors import RuntimeFailure

TEST_SECRET = "test-secret-0123456789abcdef0123456789abcdef"
TEST_IMAGE = "dreamshell-nixos:test"


class FakeRuntime:
    """In-memory ContainerRuntime that records every call.

    `failures` maps an operation name (e.g. "run", "stop") to the stderr
    text it should fail with.
    """

    def __init__(self):
        self.calls: list[tuple[str, ...]] = []
        self.failures: dict[str, str] = {}
        self.volumes: set[str] = set()
        self.containers: dict[str, bool] = {}  # name -> running
        self.keep_running_after_stop = False
        self._next_id = 0

    def _record(self, op: str, *args: str) -> None:
        self.calls.append((op, *args))
        if op in self.failures:
            raise RuntimeFailure(f"{op} {args[-1] if args else ''}".strip(), self.failures[op])

    def ops(self) -> list[str]:
        return [call[0] for call in self.calls]

    async def create_volume(self, name: str) -> None:
        self._record("volume_create", name)
        self.volumes.add(name)

    async def remove_volume(self, name: str) -> None:
        self._record("volume_rm", name)
        self.volumes.discard(name)

    async def run(self, image: str, volume: str, name: str) -> str:
        self._record("run", image, volume, name)
        self.containers[name] = True
        self._next_id += 1
        return f"{self._next_id:064x}"

    async def start(self, name: str) -> None:
        self._record("start", name)
        self.containers[name] = True

    async def stop(self, name: str) -> None:
        self._record("stop", name)
        self.containers[name] = self.keep_running_after_stop

    async def remove(self, name: str) -> None:
        self._record("rm", name)
        self.containers.pop(name, None)

    async def is_running(self, name: str) -> bool:
        self._record("inspect", name)
        return self.containers.get(name, False)

    async def is_available(self) -> bool:
        return True

    def health_info(self) -> dict:
        return {"docker_available": True, "docker_binary": "fake"}


@pytest.fixture
def home(tmp_path: Path) -> Path:
    """A fresh dreamshell home directory for each test."""
    home = tmp_path / "dreamshell-home"
    home.mkdir()
    return home


@pytest.fixture
def test_settings(home: Path) -> Settings:
    """Create test settings."""
    return Settings(
        dreamshell_home=home,
        jwt_secret=TEST_SECRET,
        port=3334,  # Different port for testing
        host="127.0.0.1",
        image=TEST_IMAGE,
        log_level="WARNING",
    )


@pytest.fixture
def fake_runtime() -> FakeRuntime:
    return FakeRuntime()


@pytest.fixture
def session_log(test_settings: Settings) -> SessionLog:
    return SessionLog(test_settings.sessions_path)


@pytest.fixture
def lifecycle(fake_runtime: FakeRuntime, session_log: SessionLog) -> ContainerLifecycle:
    return ContainerLifecycle(fake_runtime, session_log, TEST_IMAGE)


@pytest.fixture
def make_token():
    """Factory for signed tokens: make_token(sub="alice", ttl=60)."""

    def _make(sub: str = "tester", ttl: Optional[int] = None, secret: str = TEST_SECRET) -> str:
        return issue_token(secret, sub, ttl_seconds=ttl)

    return _make


@pytest.fixture
def auth_headers(make_token) -> dict[str, str]:
    return {"Authorization": f"Bearer {make_token()}"}


@pytest.fixture
def test_client(test_settings: Settings, fake_runtime: FakeRuntime):
    """Create a FastAPI test client with the fake runtime injected."""
    from dreamshell.server import create_app

    app = create_app(test_settings, runtime=fake_runtime)
    with TestClient(app) as client:
        yield client
