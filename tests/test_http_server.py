"""Tests for the HTTP API."""

from __future__ import annotations

from pathlib import Path

from aiohttp import web
from aiohttp.test_utils import AioHTTPTestCase

from conftest import FakeEngine
from mcworker import db
from mcworker.db import _init_test_database
from mcworker.engine import EngineError
from mcworker.http_server import CreateContainerRequest, RunCommandRequest, _build_spec, create_app
from mcworker.lifecycle import LifecycleService
from mcworker.types import Op

# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


def test_run_command_request_builds_op():
    req = RunCommandRequest.model_validate({"username": "Alice"})
    assert req.to_command() == Op("Alice")


def test_build_spec_fills_defaults():
    spec = _build_spec(CreateContainerRequest())
    assert spec.name == "minecraft"
    assert spec.host_port == 25565
    assert spec.volume_path == Path("./worlds/default").resolve()


def test_build_spec_uses_request_fields():
    spec = _build_spec(
        CreateContainerRequest(name="test", volume_path="/data/world", port=25566)
    )
    assert spec.name == "test"
    assert spec.volume_path == Path("/data/world")
    assert spec.host_port == 25566


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


class _ApiTestCase(AioHTTPTestCase):
    async def get_application(self) -> web.Application:
        await _init_test_database()
        self.engine = FakeEngine()
        return create_app(lambda: LifecycleService(engine=self.engine))

    async def _create(self, **body) -> str:
        body.setdefault("name", "test")
        body.setdefault("volume_path", "/data/world")
        resp = await self.client.post("/container", json=body)
        assert resp.status == 200
        data = await resp.json()
        return data["success"]


class TestCreateEndpoint(_ApiTestCase):
    async def test_returns_container_id(self):
        container_id = await self._create(port=25566)
        assert container_id in self.engine.containers
        options = self.engine.containers[container_id]["options"]
        assert options["HostConfig"]["PortBindings"] == {"25565/tcp": [{"HostPort": "25566"}]}
        assert options["HostConfig"]["Binds"] == ["/data/world:/data"]

    async def test_records_worker(self):
        container_id = await self._create(port=25566)
        worker = await db.get_worker(container_id)
        assert worker is not None
        assert worker.name == "test"
        assert worker.volume == "/data/world"
        assert worker.port == 25566
        assert worker.status == "created"

    async def test_empty_body_uses_defaults(self):
        resp = await self.client.post("/container")
        assert resp.status == 200
        container_id = (await resp.json())["success"]
        options = self.engine.containers[container_id]["options"]
        assert options["Labels"] == {"mcworker.name": "minecraft"}

    async def test_engine_failure(self):
        self.engine.fail["create"] = EngineError(500, "no such image")
        resp = await self.client.post("/container", json={"name": "test"})
        assert resp.status == 400
        assert await resp.json() == {"error": "failed to create container"}
        assert await db.list_workers() == []

    async def test_unknown_field_rejected(self):
        resp = await self.client.post("/container", json={"name": "test", "memory": "2G"})
        assert resp.status == 400
        data = await resp.json()
        assert data["error"].startswith("invalid request:")

    async def test_port_out_of_range(self):
        resp = await self.client.post("/container", json={"port": 70000})
        assert resp.status == 400

    async def test_non_object_body(self):
        resp = await self.client.post("/container", json=["test"])
        assert resp.status == 400
        assert "JSON object" in (await resp.json())["error"]

    async def test_malformed_json(self):
        resp = await self.client.post(
            "/container", data=b"{not json", headers={"Content-Type": "application/json"}
        )
        assert resp.status == 400


class TestLifecycleEndpoints(_ApiTestCase):
    async def test_start_stop_remove_flow(self):
        container_id = await self._create()

        resp = await self.client.post(f"/container/{container_id}/start")
        assert resp.status == 200
        assert await resp.json() == {"success": "success"}
        assert (await db.get_worker(container_id)).status == "running"

        resp = await self.client.post(f"/container/{container_id}/stop")
        assert resp.status == 200
        assert (await db.get_worker(container_id)).status == "stopped"

        resp = await self.client.delete(f"/container/{container_id}")
        assert resp.status == 200
        assert await resp.json() == {"success": "success"}
        assert container_id not in self.engine.containers
        assert await db.get_worker(container_id) is None

    async def test_start_twice_is_400(self):
        container_id = await self._create()
        await self.client.post(f"/container/{container_id}/start")
        resp = await self.client.post(f"/container/{container_id}/start")
        assert resp.status == 400
        assert await resp.json() == {"error": f"failed to start container {container_id}"}

    async def test_container_fault_message_passed_through(self):
        self.engine.post_start_error = "port is already allocated"
        container_id = await self._create()
        resp = await self.client.post(f"/container/{container_id}/start")
        assert resp.status == 400
        assert await resp.json() == {"error": "port is already allocated"}
        # bookkeeping is left untouched on failure
        assert (await db.get_worker(container_id)).status == "created"

    async def test_stop_unknown(self):
        resp = await self.client.post("/container/missing/stop")
        assert resp.status == 400
        assert await resp.json() == {"error": "failed to stop container missing"}

    async def test_remove_unknown(self):
        resp = await self.client.delete("/container/missing")
        assert resp.status == 400
        assert await resp.json() == {"error": "failed to rm container missing"}


class TestCommandEndpoint(_ApiTestCase):
    async def test_op(self):
        container_id = await self._create()
        resp = await self.client.post(
            f"/container/{container_id}/command", json={"kind": "op", "username": "Alice"}
        )
        assert resp.status == 200
        assert bytes(self.engine.streams[-1].written) == b"/op Alice\n"

    async def test_kind_defaults_to_op(self):
        container_id = await self._create()
        resp = await self.client.post(
            f"/container/{container_id}/command", json={"username": "Bob"}
        )
        assert resp.status == 200
        assert bytes(self.engine.streams[-1].written) == b"/op Bob\n"

    async def test_unknown_kind(self):
        container_id = await self._create()
        resp = await self.client.post(
            f"/container/{container_id}/command", json={"kind": "ban", "username": "Eve"}
        )
        assert resp.status == 400
        assert self.engine.streams == []

    async def test_missing_username(self):
        container_id = await self._create()
        resp = await self.client.post(f"/container/{container_id}/command", json={})
        assert resp.status == 400

    async def test_attach_failure(self):
        container_id = await self._create()
        self.engine.stream_fail_on = "write"
        resp = await self.client.post(
            f"/container/{container_id}/command", json={"username": "Alice"}
        )
        assert resp.status == 400
        assert container_id in (await resp.json())["error"]


class TestLogsEndpoint(_ApiTestCase):
    async def test_default_tail(self):
        container_id = await self._create()
        self.engine.emit(container_id, *[f"line {i}\n".encode() for i in range(25)])
        resp = await self.client.get(f"/container/{container_id}/logs")
        assert resp.status == 200
        lines = (await resp.json())["success"]
        assert len(lines) == 20
        assert lines[-1] == "line 24\n"

    async def test_tail_param(self):
        container_id = await self._create()
        self.engine.emit(container_id, b"a\n", b"b\n", b"c\n")
        resp = await self.client.get(f"/container/{container_id}/logs", params={"tail": "2"})
        assert await resp.json() == {"success": ["b\n", "c\n"]}

    async def test_unknown_container(self):
        resp = await self.client.get("/container/missing/logs")
        assert resp.status == 400
        assert await resp.json() == {"error": "failed to fetch logs for container missing"}


class TestStatusEndpoint(_ApiTestCase):
    async def test_phase_follows_lifecycle(self):
        container_id = await self._create()
        resp = await self.client.get(f"/container/{container_id}/status")
        assert await resp.json() == {
            "success": {"id": container_id, "phase": "created", "error": ""}
        }

        await self.client.post(f"/container/{container_id}/start")
        resp = await self.client.get(f"/container/{container_id}/status")
        assert (await resp.json())["success"]["phase"] == "running"

    async def test_unknown_container(self):
        resp = await self.client.get("/container/missing/status")
        assert resp.status == 400


class TestBookkeepingEndpoints(_ApiTestCase):
    async def test_workers_lists_created_containers(self):
        first = await self._create(name="alpha")
        second = await self._create(name="beta", port=25570)
        resp = await self.client.get("/workers")
        assert resp.status == 200
        workers = (await resp.json())["success"]
        assert [w["container"] for w in workers] == [first, second]
        assert [w["name"] for w in workers] == ["alpha", "beta"]
        assert workers[1]["port"] == 25570

    async def test_health(self):
        resp = await self.client.get("/health")
        assert resp.status == 200
        data = await resp.json()
        assert data["status"] == "ok"
        assert isinstance(data["uptime_seconds"], int)

    async def test_unknown_route(self):
        resp = await self.client.get("/nope")
        assert resp.status == 404

    async def test_wrong_method(self):
        resp = await self.client.get("/container")
        assert resp.status == 405
