"""Container lifecycle service.

Drives the async engine client through a private :class:`BlockingBridge` and
translates every engine failure into one :mod:`mcworker.errors` type.
Instances are cheap and meant to be short-lived: the HTTP layer builds one
per request and closes it afterwards.

Caller-visible states of a container (never stored here)::

    absent -> created -> running -> stopped -> removed

Usage::

    with LifecycleService() as svc:
        handle = svc.create(ProvisioningSpecBuilder("survival", world_dir).build())
        svc.start(handle)
        svc.run_command(handle, Op("Alice"))
"""

from __future__ import annotations

import weakref
from typing import Any

from mcworker.bridge import BlockingBridge
from mcworker.config import get_settings
from mcworker.engine import ENGINE_FAILURES, DockerEngineClient, EngineClient, EngineError
from mcworker.errors import (
    ContainerError,
    FailedToCreateContainer,
    FailedToFetchLogs,
    FailedToInspectContainer,
    FailedToRMContainer,
    FailedToRunCommand,
    FailedToStartContainer,
    FailedToStopContainer,
)
from mcworker.logger import logger
from mcworker.types import (
    DATA_DIR,
    EULA_ENV,
    SERVER_PORT,
    ContainerHandle,
    ContainerPhase,
    ContainerStatus,
    LogQuery,
    ProvisioningSpec,
    ServerCommand,
)

NAME_LABEL = "mcworker.name"


def build_container_options(spec: ProvisioningSpec, image: str) -> dict[str, Any]:
    """Engine create payload for one Minecraft server container."""
    port_key = f"{SERVER_PORT}/tcp"
    return {
        "Image": image,
        "Env": [EULA_ENV],
        "Labels": {NAME_LABEL: spec.name},
        "AttachStdin": True,
        "OpenStdin": True,
        "ExposedPorts": {port_key: {}},
        "HostConfig": {
            "Binds": [f"{spec.volume_path}:{DATA_DIR}"],
            "PortBindings": {port_key: [{"HostPort": str(spec.host_port)}]},
        },
    }


def _release(bridge: BlockingBridge, engine: EngineClient) -> None:
    """Close the engine session on the bridge loop, then stop the bridge."""
    if bridge.closed:
        return
    try:
        bridge.run(engine.close())
    finally:
        bridge.close()


class LifecycleService:
    """Blocking create/start/stop/command/logs/remove over one engine client."""

    def __init__(self, engine: EngineClient | None = None, *, image: str | None = None) -> None:
        settings = get_settings()
        self._engine: EngineClient = engine or DockerEngineClient(settings.engine.host)
        self._image = image or settings.engine.image
        self._bridge = BlockingBridge()
        # also runs if the service is dropped without close()
        self._finalizer = weakref.finalize(self, _release, self._bridge, self._engine)

    # ------------------------------------------------------------------
    # Handles
    # ------------------------------------------------------------------

    @staticmethod
    def get_container(container_id: str) -> ContainerHandle:
        """Wrap a known id, e.g. one created by an earlier process."""
        return ContainerHandle(id=container_id)

    # ------------------------------------------------------------------
    # Lifecycle operations
    # ------------------------------------------------------------------

    def create(self, spec: ProvisioningSpec) -> ContainerHandle:
        logger.info(
            "Creating container",
            name=spec.name,
            volume=str(spec.volume_path),
            host_port=spec.host_port,
        )
        options = build_container_options(spec, self._image)
        try:
            info = self._bridge.run(self._engine.create(options))
        except ENGINE_FAILURES as exc:
            logger.error("Failed to create container", name=spec.name, err=str(exc))
            raise FailedToCreateContainer() from exc

        for warning in info.warnings:
            logger.warning("Engine warning", container_id=info.id, warning=warning)
        return self.get_container(info.id)

    def start(self, container: ContainerHandle) -> None:
        """Start the container and verify the engine reports no fault afterwards."""
        container_id = container.id
        logger.info("Starting container", container_id=container_id)
        try:
            self._bridge.run(self._engine.start(container_id))
        except ENGINE_FAILURES as exc:
            if isinstance(exc, EngineError) and not (exc.is_client_error or exc.is_server_error):
                # e.g. 304 when the container is already running
                logger.info(
                    "Start not applied", container_id=container_id, status=exc.status
                )
            else:
                logger.error("Failed to start container", container_id=container_id, err=str(exc))
            raise FailedToStartContainer(container_id) from exc

        try:
            details = self._bridge.run(self._engine.inspect(container_id))
        except ENGINE_FAILURES as exc:
            logger.error("Failed to inspect container", container_id=container_id, err=str(exc))
            raise FailedToInspectContainer(container_id) from exc

        if details.state.error:
            logger.error(
                "Container reported an error after start",
                container_id=container_id,
                status=details.state.status,
                err=details.state.error,
            )
            raise ContainerError(container_id, details.state.error)

    def stop(self, container: ContainerHandle) -> None:
        container_id = container.id
        logger.info("Stopping container", container_id=container_id)
        try:
            self._bridge.run(self._engine.stop(container_id))
        except ENGINE_FAILURES as exc:
            logger.error("Failed to stop container", container_id=container_id, err=str(exc))
            raise FailedToStopContainer(container_id) from exc

    def run_command(self, container: ContainerHandle, command: ServerCommand) -> None:
        """Write *command* to the container's stdin. Does not wait for the server to act."""
        container_id = container.id
        logger.info("Running command", container_id=container_id, command=repr(command))
        try:
            self._bridge.run(self._send_command(container_id, command))
        except ENGINE_FAILURES as exc:
            logger.error("Failed to run command", container_id=container_id, err=str(exc))
            raise FailedToRunCommand(container_id, command) from exc

    async def _send_command(self, container_id: str, command: ServerCommand) -> None:
        stream = await self._engine.attach(container_id)
        try:
            await stream.write(command.render().encode("utf-8"))
            await stream.flush()
        finally:
            await stream.close()

    def logs(self, container: ContainerHandle, query: LogQuery | None = None) -> list[str]:
        """Return the last ``query.tail_limit`` stdout+stderr chunks, oldest first."""
        container_id = container.id
        query = query or LogQuery()
        logger.info("Fetching logs", container_id=container_id, tail=query.tail_limit)
        try:
            return self._bridge.run(self._collect_logs(container_id, query.tail_limit))
        except ENGINE_FAILURES as exc:
            logger.error("Failed to fetch logs", container_id=container_id, err=str(exc))
            raise FailedToFetchLogs(container_id) from exc

    async def _collect_logs(self, container_id: str, tail: str) -> list[str]:
        return [
            chunk.decode("utf-8", errors="replace")
            async for chunk in self._engine.logs(container_id, stdout=True, stderr=True, tail=tail)
        ]

    def remove(self, container: ContainerHandle) -> None:
        """Force-remove the container; the engine kills it first if it is running."""
        container_id = container.id
        logger.info("Removing container", container_id=container_id)
        try:
            self._bridge.run(self._engine.remove(container_id, force=True))
        except ENGINE_FAILURES as exc:
            logger.error("Failed to remove container", container_id=container_id, err=str(exc))
            raise FailedToRMContainer(container_id) from exc

    def status(self, container: ContainerHandle) -> ContainerStatus:
        """Read the container's current phase from the engine."""
        container_id = container.id
        try:
            details = self._bridge.run(self._engine.inspect(container_id))
        except ENGINE_FAILURES as exc:
            logger.error("Failed to inspect container", container_id=container_id, err=str(exc))
            raise FailedToInspectContainer(container_id) from exc
        return ContainerStatus(
            id=container_id,
            phase=ContainerPhase.from_state(details.state),
            error=details.state.error,
        )

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    def close(self) -> None:
        """Close the engine session on its own loop, then stop the bridge. Idempotent."""
        self._finalizer()

    def __enter__(self) -> LifecycleService:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
