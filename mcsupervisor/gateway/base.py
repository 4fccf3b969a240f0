"""Narrow capability interface the core consumes from the container runtime."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol


@dataclass(frozen=True)
class VolumeMount:
    source: str  # named volume or host path
    target: str
    read_only: bool = False


@dataclass
class WorkerResult:
    exit_code: int
    output: str


class LogStream(Protocol):
    async def read(self) -> bytes | None:
        """Next raw chunk, or None once the stream has ended."""
        ...

    async def close(self) -> None:
        ...


class ContainerGateway(Protocol):
    async def start_workload(self) -> None: ...

    async def stop_workload(self) -> None: ...

    async def restart_workload(self) -> None: ...

    async def is_workload_running(self) -> bool: ...

    async def inspect_workload(self) -> dict[str, Any]: ...

    async def get_workload_handle(self) -> Any: ...

    async def fetch_logs(self, tail: int = 100, timestamps: bool = False) -> bytes: ...

    async def follow_logs(self, tail: int = 50) -> LogStream: ...

    async def fetch_stats(self) -> dict[str, Any]: ...

    async def run_ephemeral_worker(
        self,
        image: str,
        command: list[str],
        volumes: list[VolumeMount],
        timeout: float,
    ) -> WorkerResult: ...
