"""
In-memory stand-ins for the container gateway and the RCON transport.
No docker daemon or game server needed.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any

from mcsupervisor.errors import GatewayError
from mcsupervisor.gateway.base import VolumeMount, WorkerResult

# ---------------------------------------------------------------------------
# Gateway fakes
# ---------------------------------------------------------------------------

class FakeLogStream:
    """Yields scripted chunks; an Exception item is raised from read()."""

    def __init__(self, chunks: list[Any], hold_open: bool = False) -> None:
        self._chunks = list(chunks)
        self._hold_open = hold_open
        self._closed = asyncio.Event()
        self.closed = False

    async def read(self) -> bytes | None:
        await asyncio.sleep(0)
        if self.closed:
            return None
        if self._chunks:
            item = self._chunks.pop(0)
            if isinstance(item, BaseException):
                raise item
            return item
        if self._hold_open:
            await self._closed.wait()
        return None

    async def close(self) -> None:
        self.closed = True
        self._closed.set()


@dataclass
class FakeGateway:
    running: bool = True
    logs: bytes = b""
    log_chunks: list[Any] = field(default_factory=list)
    hold_log_stream_open: bool = False
    stats: list[dict[str, Any]] = field(default_factory=list)
    worker_results: list[Any] = field(default_factory=list)
    worker_calls: list[dict[str, Any]] = field(default_factory=list)
    streams: list[FakeLogStream] = field(default_factory=list)
    start_calls: int = 0
    stop_calls: int = 0
    fail_running: Exception | None = None
    fail_start: Exception | None = None
    start_makes_running: bool = True

    async def start_workload(self) -> None:
        self.start_calls += 1
        if self.fail_start is not None:
            raise self.fail_start
        if self.start_makes_running:
            self.running = True

    async def stop_workload(self) -> None:
        self.stop_calls += 1
        self.running = False

    async def restart_workload(self) -> None:
        await self.stop_workload()
        await self.start_workload()

    async def is_workload_running(self) -> bool:
        if self.fail_running is not None:
            raise self.fail_running
        return self.running

    async def inspect_workload(self) -> dict[str, Any]:
        return {"name": "minecraft-server", "running": self.running,
                "state": "running" if self.running else "exited"}

    async def get_workload_handle(self) -> Any:
        return object()

    async def fetch_logs(self, tail: int = 100, timestamps: bool = False) -> bytes:
        return self.logs

    async def follow_logs(self, tail: int = 50) -> FakeLogStream:
        stream = FakeLogStream(self.log_chunks, hold_open=self.hold_log_stream_open)
        self.streams.append(stream)
        return stream

    async def fetch_stats(self) -> dict[str, Any]:
        if not self.stats:
            raise GatewayError("no stats available")
        item = self.stats.pop(0) if len(self.stats) > 1 else self.stats[0]
        if isinstance(item, BaseException):
            raise item
        return item

    async def run_ephemeral_worker(
        self, image: str, command: list[str], volumes: list[VolumeMount], timeout: float,
    ) -> WorkerResult:
        self.worker_calls.append({"image": image, "command": command, "volumes": volumes, "timeout": timeout})
        if self.worker_results:
            result = self.worker_results.pop(0)
            if isinstance(result, BaseException):
                raise result
            return result
        return WorkerResult(0, "")


# ---------------------------------------------------------------------------
# RCON fakes
# ---------------------------------------------------------------------------

class FakeRconConnection:
    """Scripted console: ``responses`` maps command → text (or callable)."""

    def __init__(self, responses: dict[str, Any] | None = None, delay: float = 0.0) -> None:
        self.responses = responses or {}
        self.delay = delay
        self.sent: list[str] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self.fail_with: BaseException | None = None
        self.closed = False

    async def execute(self, command: str) -> str:
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            self.sent.append(command)
            await asyncio.sleep(self.delay)
            if self.fail_with is not None:
                exc, self.fail_with = self.fail_with, None
                raise exc
            response = self.responses.get(command, "")
            return response(command) if callable(response) else response
        finally:
            self.in_flight -= 1

    async def close(self) -> None:
        self.closed = True


class ConnectionFactory:
    """Returns scripted outcomes in order; an Exception item is raised."""

    def __init__(self, *outcomes: Any) -> None:
        self.outcomes = list(outcomes)
        self.calls = 0

    async def __call__(self) -> Any:
        self.calls += 1
        item = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(item, BaseException):
            raise item
        return item
