"""HTTP API for the lifecycle service.

Every response uses the same envelope: ``{"success": <payload>}`` or
``{"error": <message>}``. Lifecycle failures map to 400.

Lifecycle calls block, so each one runs in a worker thread with its own
freshly built :class:`~mcworker.lifecycle.LifecycleService`.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any, Literal, Protocol, TypeVar

from aiohttp import web
from pydantic import BaseModel, Field

from mcworker import db
from mcworker.config import get_settings
from mcworker.errors import LifecycleError
from mcworker.lifecycle import LifecycleService
from mcworker.logger import logger
from mcworker.types import LogQuery, Op, ProvisioningSpec, ProvisioningSpecBuilder

T = TypeVar("T")

_start_time = time.monotonic()


class ServiceFactory(Protocol):
    def __call__(self) -> LifecycleService: ...


service_factory_key: web.AppKey[ServiceFactory] = web.AppKey("service_factory", ServiceFactory)


# ------------------------------------------------------------------
# Request bodies
# ------------------------------------------------------------------


class CreateContainerRequest(BaseModel):
    model_config = {"extra": "forbid"}

    name: str | None = None
    volume_path: str | None = None
    port: int | None = Field(None, ge=1, le=65535)


class RunCommandRequest(BaseModel):
    model_config = {"extra": "forbid"}

    kind: Literal["op"] = "op"
    username: str = Field(..., min_length=1)

    def to_command(self) -> Op:
        return Op(self.username)


# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------


def _success(payload: Any) -> web.Response:
    return web.json_response({"success": payload})


def _error(message: str, status: int = 400) -> web.Response:
    return web.json_response({"error": message}, status=status)


def _call_service(factory: ServiceFactory, op: Callable[[LifecycleService], T]) -> T:
    with factory() as service:
        return op(service)


async def _run_lifecycle(request: web.Request, op: Callable[[LifecycleService], T]) -> T:
    """Run *op* against a fresh service in a worker thread."""
    factory = request.app[service_factory_key]
    return await asyncio.to_thread(_call_service, factory, op)


async def _read_json(request: web.Request) -> dict[str, Any]:
    if not request.can_read_body:
        return {}
    body = await request.json()
    if body is None:
        return {}
    if not isinstance(body, dict):
        raise ValueError("request body must be a JSON object")
    return body


def _build_spec(req: CreateContainerRequest) -> ProvisioningSpec:
    settings = get_settings()
    defaults = settings.worker_defaults
    volume = (
        Path(req.volume_path).expanduser().resolve()
        if req.volume_path
        else settings.default_volume_path
    )
    return (
        ProvisioningSpecBuilder(req.name or defaults.name, volume)
        .with_port(req.port or defaults.port)
        .build()
    )


@web.middleware
async def _lifecycle_error_middleware(
    request: web.Request,
    handler: Callable[[web.Request], Awaitable[web.StreamResponse]],
) -> web.StreamResponse:
    try:
        return await handler(request)
    except LifecycleError as exc:
        logger.warning(
            "Request failed",
            path=request.path,
            container_id=exc.container_id,
            err=str(exc),
        )
        return _error(str(exc))


# ------------------------------------------------------------------
# Container endpoints
# ------------------------------------------------------------------


async def _handle_create(request: web.Request) -> web.Response:
    try:
        req = CreateContainerRequest.model_validate(await _read_json(request))
    except ValueError as exc:
        return _error(f"invalid request: {exc}")

    spec = _build_spec(req)
    handle = await _run_lifecycle(request, lambda svc: svc.create(spec))
    await db.record_worker(
        name=spec.name,
        container=handle.id,
        volume=str(spec.volume_path),
        port=spec.host_port,
    )
    return _success(handle.id)


async def _handle_start(request: web.Request) -> web.Response:
    handle = LifecycleService.get_container(request.match_info["id"])
    await _run_lifecycle(request, lambda svc: svc.start(handle))
    await db.set_worker_status(handle.id, "running")
    return _success("success")


async def _handle_stop(request: web.Request) -> web.Response:
    handle = LifecycleService.get_container(request.match_info["id"])
    await _run_lifecycle(request, lambda svc: svc.stop(handle))
    await db.set_worker_status(handle.id, "stopped")
    return _success("success")


async def _handle_command(request: web.Request) -> web.Response:
    try:
        req = RunCommandRequest.model_validate(await _read_json(request))
    except ValueError as exc:
        return _error(f"invalid request: {exc}")

    handle = LifecycleService.get_container(request.match_info["id"])
    command = req.to_command()
    await _run_lifecycle(request, lambda svc: svc.run_command(handle, command))
    return _success("success")


async def _handle_remove(request: web.Request) -> web.Response:
    handle = LifecycleService.get_container(request.match_info["id"])
    await _run_lifecycle(request, lambda svc: svc.remove(handle))
    await db.delete_worker(handle.id)
    return _success("success")


async def _handle_logs(request: web.Request) -> web.Response:
    handle = LifecycleService.get_container(request.match_info["id"])
    query = LogQuery(tail_limit=request.query.get("tail", LogQuery().tail_limit))
    lines = await _run_lifecycle(request, lambda svc: svc.logs(handle, query))
    return _success(lines)


async def _handle_status(request: web.Request) -> web.Response:
    handle = LifecycleService.get_container(request.match_info["id"])
    status = await _run_lifecycle(request, lambda svc: svc.status(handle))
    return _success(status.to_dict())


# ------------------------------------------------------------------
# Bookkeeping
# ------------------------------------------------------------------


async def _handle_workers(request: web.Request) -> web.Response:
    workers = await db.list_workers()
    return _success([w.to_dict() for w in workers])


async def _handle_health(request: web.Request) -> web.Response:
    return web.json_response(
        {
            "status": "ok",
            "uptime_seconds": round(time.monotonic() - _start_time),
        }
    )


# ------------------------------------------------------------------
# Server setup
# ------------------------------------------------------------------


def create_app(service_factory: ServiceFactory = LifecycleService) -> web.Application:
    app = web.Application(middlewares=[_lifecycle_error_middleware])
    app[service_factory_key] = service_factory
    app.router.add_get("/health", _handle_health)
    app.router.add_get("/workers", _handle_workers)
    app.router.add_post("/container", _handle_create)
    app.router.add_post("/container/{id}/start", _handle_start)
    app.router.add_post("/container/{id}/stop", _handle_stop)
    app.router.add_post("/container/{id}/command", _handle_command)
    app.router.add_get("/container/{id}/logs", _handle_logs)
    app.router.add_get("/container/{id}/status", _handle_status)
    app.router.add_delete("/container/{id}", _handle_remove)
    return app


async def start_http_server(
    host: str,
    port: int,
    service_factory: ServiceFactory = LifecycleService,
) -> web.AppRunner:
    """Create, start, and return the HTTP server runner."""
    runner = web.AppRunner(create_app(service_factory))
    await runner.setup()
    site = web.TCPSite(runner, host, port)
    await site.start()
    logger.info("HTTP server listening", host=host, port=port)
    return runner
