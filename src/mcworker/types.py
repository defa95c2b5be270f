"""Data models for mcworker."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path
from typing import Any

# Workload constants for the itzg/minecraft-server image
DEFAULT_PORT = 25565
SERVER_PORT = 25565  # port the server listens on inside the container
DATA_DIR = "/data"
EULA_ENV = "EULA=TRUE"


# ---------------------------------------------------------------------------
# Provisioning
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ProvisioningSpec:
    name: str
    volume_path: Path  # host directory bind-mounted at DATA_DIR
    host_port: int = DEFAULT_PORT


class ProvisioningSpecBuilder:
    """Fluent builder for :class:`ProvisioningSpec`.

    No validation happens here. A missing volume path or a taken port is
    reported by the engine when a container is created from it.

    Usage::

        spec = ProvisioningSpecBuilder("survival", Path("/srv/world")).with_port(25566).build()
    """

    def __init__(self, name: str, volume_path: Path | str) -> None:
        self._name = name
        self._volume_path = Path(volume_path)
        self._port = DEFAULT_PORT

    def with_port(self, port: int) -> ProvisioningSpecBuilder:
        self._port = port
        return self

    def build(self) -> ProvisioningSpec:
        return ProvisioningSpec(
            name=self._name,
            volume_path=self._volume_path,
            host_port=self._port,
        )


# ---------------------------------------------------------------------------
# Containers
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ContainerHandle:
    id: str  # engine-assigned container id


@dataclass(frozen=True)
class ContainerCreateInfo:
    id: str
    warnings: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> ContainerCreateInfo:
        return cls(id=raw["Id"], warnings=list(raw.get("Warnings") or []))


@dataclass(frozen=True)
class ContainerState:
    status: str = ""  # "created", "running", "exited", ...
    running: bool = False
    error: str = ""
    exit_code: int = 0

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> ContainerState:
        return cls(
            status=raw.get("Status") or "",
            running=bool(raw.get("Running", False)),
            error=raw.get("Error") or "",
            exit_code=int(raw.get("ExitCode") or 0),
        )


@dataclass(frozen=True)
class ContainerDetails:
    id: str
    state: ContainerState
    tty: bool = False

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> ContainerDetails:
        return cls(
            id=raw.get("Id", ""),
            state=ContainerState.from_dict(raw.get("State") or {}),
            tty=bool((raw.get("Config") or {}).get("Tty", False)),
        )


class ContainerPhase(StrEnum):
    CREATED = "created"
    RUNNING = "running"
    STOPPED = "stopped"

    @classmethod
    def from_state(cls, state: ContainerState) -> ContainerPhase:
        if state.running or state.status in ("running", "restarting", "paused"):
            return cls.RUNNING
        if state.status == "created":
            return cls.CREATED
        return cls.STOPPED


@dataclass(frozen=True)
class ContainerStatus:
    id: str
    phase: ContainerPhase
    error: str = ""  # set when the engine reports a fault

    def to_dict(self) -> dict[str, str]:
        return {"id": self.id, "phase": str(self.phase), "error": self.error}


# ---------------------------------------------------------------------------
# Console commands
# ---------------------------------------------------------------------------


class ServerCommand(ABC):
    """A console command written to the server's stdin.

    Each variant renders itself as exactly one newline-terminated line.
    """

    @abstractmethod
    def render(self) -> str:
        """The exact line sent to stdin, newline included."""


@dataclass(frozen=True)
class Op(ServerCommand):
    """Grant operator status to a player."""

    username: str

    def render(self) -> str:
        return f"/op {self.username}\n"


# ---------------------------------------------------------------------------
# Logs
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LogQuery:
    tail_limit: str = "20"  # passed through to the engine's ``tail`` parameter
