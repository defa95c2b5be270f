"""Docker Engine API client.

Thin async wrapper over the engine's HTTP API using aiohttp. Only the calls
the lifecycle service needs are implemented. Every method is a coroutine and
must run on the event loop that owns the client's session (the lifecycle
service's bridge loop).

Non-2xx responses raise :class:`EngineError`; transport problems surface as
``aiohttp.ClientError`` / ``TimeoutError``.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncIterator
from typing import Any, Protocol, runtime_checkable

import aiohttp
from aiohttp.http_exceptions import LineTooLong

from mcworker.types import ContainerCreateInfo, ContainerDetails

# Multiplexed log frames: 1 byte stream type, 3 bytes padding, 4 bytes big-endian size
_FRAME_HEADER_SIZE = 8
MULTIPLEXED_STREAM = "application/vnd.docker.multiplexed-stream"


class EngineError(Exception):
    """The engine answered with a non-2xx status."""

    def __init__(self, status: int, message: str) -> None:
        super().__init__(f"{status}: {message}")
        self.status = status
        self.message = message

    @property
    def is_client_error(self) -> bool:
        return 400 <= self.status < 500

    @property
    def is_server_error(self) -> bool:
        return self.status >= 500


# Everything an engine call may raise that the lifecycle layer translates.
ENGINE_FAILURES: tuple[type[BaseException], ...] = (EngineError, aiohttp.ClientError, TimeoutError)


@runtime_checkable
class AttachedStream(Protocol):
    """Writable handle on a container's stdin."""

    async def write(self, data: bytes) -> None: ...
    async def flush(self) -> None: ...
    async def close(self) -> None: ...


@runtime_checkable
class EngineClient(Protocol):
    """Engine contract consumed by :class:`~mcworker.lifecycle.LifecycleService`."""

    async def create(
        self, options: dict[str, Any], name: str | None = None
    ) -> ContainerCreateInfo: ...
    async def start(self, container_id: str) -> None: ...
    async def inspect(self, container_id: str) -> ContainerDetails: ...
    async def stop(self, container_id: str, timeout: int | None = None) -> None: ...
    async def attach(self, container_id: str) -> AttachedStream: ...
    def logs(
        self,
        container_id: str,
        *,
        stdout: bool = True,
        stderr: bool = True,
        tail: str = "all",
    ) -> AsyncIterator[bytes]: ...
    async def remove(self, container_id: str, *, force: bool = False) -> None: ...
    async def close(self) -> None: ...


def _flag(value: bool) -> str:
    return "true" if value else "false"


async def _error_message(resp: aiohttp.ClientResponse) -> str:
    body = await resp.text()
    try:
        data = json.loads(body)
    except ValueError:
        return body.strip() or (resp.reason or "")
    if isinstance(data, dict) and data.get("message"):
        return str(data["message"])
    return body.strip() or (resp.reason or "")


async def _raise_for_status(resp: aiohttp.ClientResponse) -> None:
    # 304 (already started / already stopped) counts as a failure too
    if not 200 <= resp.status < 300:
        raise EngineError(resp.status, await _error_message(resp))


async def _iter_frames(content: aiohttp.StreamReader) -> AsyncIterator[bytes]:
    """Split a multiplexed stdout/stderr stream into frame payloads."""
    while True:
        try:
            header = await content.readexactly(_FRAME_HEADER_SIZE)
        except asyncio.IncompleteReadError as exc:
            if exc.partial:
                raise aiohttp.ClientPayloadError("truncated log frame header") from exc
            return
        size = int.from_bytes(header[4:8], "big")
        if size == 0:
            continue
        try:
            yield await content.readexactly(size)
        except asyncio.IncompleteReadError as exc:
            raise aiohttp.ClientPayloadError("truncated log frame") from exc


async def _iter_lines(content: aiohttp.StreamReader) -> AsyncIterator[bytes]:
    """Split a raw (TTY) stream on newlines."""
    while True:
        try:
            line = await content.readline()
        except (ValueError, LineTooLong) as exc:
            # older aiohttp raises ValueError("Chunk too big"), newer LineTooLong
            raise aiohttp.ClientPayloadError("log line exceeds read buffer") from exc
        if not line:
            return
        yield line


class _WebSocketStream:
    """Attached stdin over the engine's websocket attach endpoint."""

    def __init__(self, ws: aiohttp.ClientWebSocketResponse) -> None:
        self._ws = ws

    async def write(self, data: bytes) -> None:
        await self._ws.send_bytes(data)

    async def flush(self) -> None:
        # send_bytes hands each frame to the transport; nothing is buffered here
        if self._ws.closed:
            raise aiohttp.ClientConnectionError("attach stream closed before flush")

    async def close(self) -> None:
        await self._ws.close()


class DockerEngineClient:
    """aiohttp client for one Docker engine endpoint.

    ``host`` is either an HTTP base URL (``http://localhost:2375``) or a
    ``unix://`` socket path. The session is created lazily so it binds to
    the loop that first uses it.
    """

    def __init__(self, host: str = "http://localhost:2375") -> None:
        if host.startswith("unix://"):
            self._socket_path: str | None = host.removeprefix("unix://")
            self._base_url = "http://docker"
        else:
            self._socket_path = None
            self._base_url = host.rstrip("/")
        self._session: aiohttp.ClientSession | None = None

    @property
    def base_url(self) -> str:
        return self._base_url

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            connector = (
                aiohttp.UnixConnector(path=self._socket_path) if self._socket_path else None
            )
            # No client-side deadline: callers layer timeouts on top if they want one
            self._session = aiohttp.ClientSession(
                connector=connector,
                timeout=aiohttp.ClientTimeout(total=None),
            )
        return self._session

    def _url(self, path: str) -> str:
        return f"{self._base_url}{path}"

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, str] | None = None,
        body: dict[str, Any] | None = None,
    ) -> Any:
        async with self._get_session().request(
            method, self._url(path), params=params, json=body
        ) as resp:
            await _raise_for_status(resp)
            if resp.content_type == "application/json":
                return await resp.json()
            return None

    # ------------------------------------------------------------------
    # Container operations
    # ------------------------------------------------------------------

    async def create(
        self, options: dict[str, Any], name: str | None = None
    ) -> ContainerCreateInfo:
        params = {"name": name} if name else None
        data = await self._request("POST", "/containers/create", params=params, body=options)
        return ContainerCreateInfo.from_dict(data)

    async def start(self, container_id: str) -> None:
        await self._request("POST", f"/containers/{container_id}/start")

    async def inspect(self, container_id: str) -> ContainerDetails:
        data = await self._request("GET", f"/containers/{container_id}/json")
        return ContainerDetails.from_dict(data)

    async def stop(self, container_id: str, timeout: int | None = None) -> None:
        params = {"t": str(timeout)} if timeout is not None else None
        await self._request("POST", f"/containers/{container_id}/stop", params=params)

    async def attach(self, container_id: str) -> AttachedStream:
        ws = await self._get_session().ws_connect(
            self._url(f"/containers/{container_id}/attach/ws"),
            params={"stdin": "1", "stream": "1"},
        )
        return _WebSocketStream(ws)

    async def logs(
        self,
        container_id: str,
        *,
        stdout: bool = True,
        stderr: bool = True,
        tail: str = "all",
    ) -> AsyncIterator[bytes]:
        """Yield log chunks in emission order.

        Containers without a TTY send a multiplexed stream, one frame per
        write; TTY containers send raw bytes, which are split on newlines.
        Engines older than API 1.42 do not label the multiplexed stream, so
        for any other content type the container's TTY setting decides.
        """
        params = {"stdout": _flag(stdout), "stderr": _flag(stderr), "tail": tail}
        async with self._get_session().get(
            self._url(f"/containers/{container_id}/logs"), params=params
        ) as resp:
            await _raise_for_status(resp)
            if resp.content_type == MULTIPLEXED_STREAM:
                multiplexed = True
            else:
                multiplexed = not (await self.inspect(container_id)).tty
            chunks = _iter_frames(resp.content) if multiplexed else _iter_lines(resp.content)
            async for chunk in chunks:
                yield chunk

    async def remove(self, container_id: str, *, force: bool = False) -> None:
        await self._request("DELETE", f"/containers/{container_id}", params={"force": _flag(force)})

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None
