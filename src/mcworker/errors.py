"""Lifecycle error taxonomy.

Every engine failure is translated into exactly one of these. ``str(err)``
is the message shown to API callers.
"""

from __future__ import annotations

from mcworker.types import ServerCommand


class LifecycleError(Exception):
    """Base for all lifecycle failures."""

    def __init__(self, message: str, container_id: str | None = None) -> None:
        super().__init__(message)
        self.container_id = container_id


class FailedToCreateContainer(LifecycleError):
    # No id exists yet when creation fails.
    def __init__(self) -> None:
        super().__init__("failed to create container")


class FailedToStartContainer(LifecycleError):
    def __init__(self, container_id: str) -> None:
        super().__init__(f"failed to start container {container_id}", container_id)


class FailedToInspectContainer(LifecycleError):
    def __init__(self, container_id: str) -> None:
        super().__init__(f"failed to inspect container {container_id}", container_id)


class ContainerError(LifecycleError):
    """The engine accepted the start but the container reports a fault."""

    def __init__(self, container_id: str, message: str) -> None:
        super().__init__(message, container_id)
        self.message = message


class FailedToStopContainer(LifecycleError):
    def __init__(self, container_id: str) -> None:
        super().__init__(f"failed to stop container {container_id}", container_id)


class FailedToRunCommand(LifecycleError):
    def __init__(self, container_id: str, command: ServerCommand) -> None:
        super().__init__(
            f"failed to run command {command!r} on container {container_id}", container_id
        )
        self.command = command


class FailedToRMContainer(LifecycleError):
    def __init__(self, container_id: str) -> None:
        super().__init__(f"failed to rm container {container_id}", container_id)


class FailedToFetchLogs(LifecycleError):
    def __init__(self, container_id: str) -> None:
        super().__init__(f"failed to fetch logs for container {container_id}", container_id)
