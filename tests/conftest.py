"""Shared test fixtures for mcworker."""

from __future__ import annotations

import uuid
from collections.abc import AsyncIterator
from typing import Any

import pytest

from mcworker.engine import EngineError
from mcworker.lifecycle import LifecycleService
from mcworker.types import ContainerCreateInfo, ContainerDetails, ContainerState

# ---------------------------------------------------------------------------
# Shared helpers (plain functions, not fixtures, importable by test files)
# ---------------------------------------------------------------------------


def make_settings(**overrides):
    """Create a Settings object from pure defaults, no config.toml or .env.

    Usage::

        s = make_settings(engine=EngineConfig(image="custom:latest"))
    """
    from mcworker.config import (
        DatabaseConfig,
        EngineConfig,
        LoggingConfig,
        ServerConfig,
        Settings,
        WorkerDefaultsConfig,
    )

    defaults = {
        "engine": EngineConfig(),
        "server": ServerConfig(),
        "worker_defaults": WorkerDefaultsConfig(),
        "database": DatabaseConfig(),
        "logging": LoggingConfig(),
    }
    defaults.update(overrides)
    return Settings.model_construct(**defaults)


class FakeAttachedStream:
    """Records what the service writes to a container's stdin."""

    def __init__(self, fail_on: str | None = None) -> None:
        self.written = bytearray()
        self.flushed = False
        self.closed = False
        self._fail_on = fail_on

    async def write(self, data: bytes) -> None:
        if self._fail_on == "write":
            raise EngineError(500, "broken pipe")
        self.written += data

    async def flush(self) -> None:
        if self._fail_on == "flush":
            raise EngineError(500, "broken pipe")
        self.flushed = True

    async def close(self) -> None:
        self.closed = True


class FakeEngine:
    """In-memory engine with Docker-like state transitions.

    Set ``fail[<op>]`` to an exception to make that call raise it. Set
    ``post_start_error`` to simulate a container that dies right after the
    engine accepted the start (e.g. a port conflict).
    """

    def __init__(self) -> None:
        self.containers: dict[str, dict[str, Any]] = {}
        self.log_lines: dict[str, list[bytes]] = {}
        self.streams: list[FakeAttachedStream] = []
        self.calls: list[tuple[str, str]] = []
        self.fail: dict[str, BaseException] = {}
        self.warnings: list[str] = []
        self.post_start_error = ""
        self.stream_fail_on: str | None = None
        self.close_count = 0

    def _check(self, op: str, container_id: str = "") -> None:
        self.calls.append((op, container_id))
        exc = self.fail.get(op)
        if exc is not None:
            raise exc

    def _get(self, container_id: str) -> dict[str, Any]:
        try:
            return self.containers[container_id]
        except KeyError:
            raise EngineError(404, f"No such container: {container_id}") from None

    def emit(self, container_id: str, *lines: bytes) -> None:
        self.log_lines.setdefault(container_id, []).extend(lines)

    def ops(self) -> list[str]:
        return [op for op, _ in self.calls]

    async def create(
        self, options: dict[str, Any], name: str | None = None
    ) -> ContainerCreateInfo:
        self._check("create")
        container_id = uuid.uuid4().hex
        self.containers[container_id] = {
            "options": options,
            "name": name,
            "status": "created",
            "error": "",
        }
        return ContainerCreateInfo(id=container_id, warnings=list(self.warnings))

    async def start(self, container_id: str) -> None:
        self._check("start", container_id)
        container = self._get(container_id)
        if container["status"] == "running":
            raise EngineError(304, "container already started")
        if self.post_start_error:
            container["status"] = "exited"
            container["error"] = self.post_start_error
        else:
            container["status"] = "running"

    async def inspect(self, container_id: str) -> ContainerDetails:
        self._check("inspect", container_id)
        container = self._get(container_id)
        return ContainerDetails(
            id=container_id,
            state=ContainerState(
                status=container["status"],
                running=container["status"] == "running",
                error=container["error"],
            ),
        )

    async def stop(self, container_id: str, timeout: int | None = None) -> None:
        self._check("stop", container_id)
        container = self._get(container_id)
        if container["status"] != "running":
            raise EngineError(304, "container already stopped")
        container["status"] = "exited"

    async def attach(self, container_id: str) -> FakeAttachedStream:
        self._check("attach", container_id)
        self._get(container_id)
        stream = FakeAttachedStream(fail_on=self.stream_fail_on)
        self.streams.append(stream)
        return stream

    async def logs(
        self,
        container_id: str,
        *,
        stdout: bool = True,
        stderr: bool = True,
        tail: str = "all",
    ) -> AsyncIterator[bytes]:
        self._check("logs", container_id)
        self._get(container_id)
        lines = self.log_lines.get(container_id, [])
        if tail != "all":
            limit = int(tail)
            lines = lines[-limit:] if limit else []
        for line in lines:
            yield line

    async def remove(self, container_id: str, *, force: bool = False) -> None:
        self._check("remove", container_id)
        container = self._get(container_id)
        if container["status"] == "running" and not force:
            raise EngineError(409, "cannot remove a running container")
        del self.containers[container_id]

    async def close(self) -> None:
        self.close_count += 1


# ---------------------------------------------------------------------------
# Autouse fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def reset_settings(monkeypatch):
    """Each test starts from default Settings, isolated from local config files."""
    monkeypatch.setattr("mcworker.config._settings", make_settings())


@pytest.fixture(autouse=True, scope="session")
def _close_test_database():
    """Stop the aiosqlite worker thread after all tests complete.

    ``stop()`` + join instead of ``await close()`` because the connection
    was created on a function-scoped event loop that is gone by now.
    """
    yield
    import mcworker.db as db

    if db._db is not None:
        db._db.stop()
        if db._db._thread is not None and db._db._thread.is_alive():
            db._db._thread.join(timeout=2)
        db._db = None


# ---------------------------------------------------------------------------
# Reusable fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def engine() -> FakeEngine:
    return FakeEngine()


@pytest.fixture
def service(engine: FakeEngine):
    svc = LifecycleService(engine=engine)
    yield svc
    svc.close()
