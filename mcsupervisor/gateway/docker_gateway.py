"""Docker-backed container gateway.

The docker SDK is blocking, so every call is pushed onto a worker thread with
``asyncio.to_thread``. Compose-managed workloads are started and stopped through
the ``docker compose`` CLI, everything else through the SDK.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Iterator

import docker
import requests
from docker.errors import APIError, DockerException, ImageNotFound, NotFound

from ..config import SupervisorConfig
from ..errors import GatewayError, WorkerExecutionError
from .base import VolumeMount, WorkerResult

logger = logging.getLogger("mcsupervisor.gateway")


class DockerLogStream:
    """Async view over the SDK's blocking follow-mode log generator."""

    def __init__(self, raw: Iterator[bytes]) -> None:
        self._raw = raw
        self._closed = False

    async def read(self) -> bytes | None:
        if self._closed:
            return None
        try:
            return await asyncio.to_thread(next, self._raw, None)
        except (requests.exceptions.RequestException, DockerException, OSError, ValueError) as exc:
            if self._closed:
                return None
            raise GatewayError(f"Log stream failed: {exc}") from exc

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        close = getattr(self._raw, "close", None)
        if close is not None:
            try:
                close()
            except (OSError, DockerException) as exc:
                logger.debug("Log stream close failed: %s", exc)


class DockerGateway:
    """ContainerGateway implementation on top of the docker SDK."""

    def __init__(self, config: SupervisorConfig, client: docker.DockerClient | None = None) -> None:
        self._config = config
        self._client = client

    # -- helpers --------------------------------------------------------------

    @property
    def client(self) -> docker.DockerClient:
        if self._client is None:
            try:
                self._client = docker.from_env()
            except DockerException as exc:
                raise GatewayError(f"Docker is not reachable: {exc}") from exc
        return self._client

    def _container(self) -> Any:
        """Resolve the workload by name, falling back to compose labels."""
        try:
            return self.client.containers.get(self._config.container_name)
        except NotFound:
            pass
        except APIError as exc:
            raise GatewayError(str(exc)) from exc

        found = self.client.containers.list(all=True, filters={"label": [
            f"com.docker.compose.project={self._config.compose_project}",
            f"com.docker.compose.service={self._config.compose_service}",
        ]})
        if not found:
            raise GatewayError(
                f"Container for service '{self._config.compose_service}' not found. Is the server running?"
            )
        return found[0]

    async def _call(self, fn: Any, *args: Any, **kwargs: Any) -> Any:
        try:
            return await asyncio.to_thread(fn, *args, **kwargs)
        except GatewayError:
            raise
        except DockerException as exc:
            raise GatewayError(str(exc)) from exc

    async def _compose(self, *args: str) -> str:
        proc = await asyncio.create_subprocess_exec(
            "docker", "compose", "-f", self._config.compose_file,
            "-p", self._config.compose_project, *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        stdout, stderr = await proc.communicate()
        if proc.returncode != 0:
            raise GatewayError(
                f"docker compose {' '.join(args)} exited {proc.returncode}: "
                f"{stderr.decode(errors='replace').strip()}"
            )
        return stdout.decode(errors="replace")

    # -- workload -------------------------------------------------------------

    async def start_workload(self) -> None:
        logger.info("Starting workload %s", self._config.container_name)
        if self._config.compose_file:
            await self._compose("up", "-d")
            return
        container = await self._call(self._container)
        await self._call(container.start)

    async def stop_workload(self) -> None:
        logger.info("Stopping workload %s", self._config.container_name)
        if self._config.compose_file:
            await self._compose("down")
            return
        container = await self._call(self._container)
        await self._call(container.stop)

    async def restart_workload(self) -> None:
        await self.stop_workload()
        await self.start_workload()

    async def inspect_workload(self) -> dict[str, Any]:
        def _inspect() -> dict[str, Any]:
            c = self._container()
            c.reload()
            state = c.attrs.get("State", {})
            return {
                "id": c.id,
                "name": c.name,
                "state": state.get("Status"),
                "running": bool(state.get("Running")),
                "restarting": bool(state.get("Restarting")),
                "started_at": state.get("StartedAt"),
                "finished_at": state.get("FinishedAt"),
                "exit_code": state.get("ExitCode"),
                "health": (state.get("Health") or {}).get("Status"),
            }
        return await self._call(_inspect)

    async def is_workload_running(self) -> bool:
        try:
            info = await self.inspect_workload()
        except GatewayError as exc:
            if "not found" in str(exc).lower():
                return False
            raise
        return info["running"]

    async def get_workload_handle(self) -> Any:
        return await self._call(self._container)

    async def fetch_logs(self, tail: int = 100, timestamps: bool = False) -> bytes:
        container = await self.get_workload_handle()
        return await self._call(container.logs, stdout=True, stderr=True,
                                tail=tail, timestamps=timestamps)

    async def follow_logs(self, tail: int = 50) -> DockerLogStream:
        container = await self.get_workload_handle()
        raw = await self._call(container.logs, stdout=True, stderr=True, stream=True,
                               follow=True, tail=tail, timestamps=True)
        return DockerLogStream(raw)

    async def fetch_stats(self) -> dict[str, Any]:
        container = await self.get_workload_handle()
        return await self._call(container.stats, stream=False)

    # -- ephemeral workers ----------------------------------------------------

    def _ensure_image(self, image: str) -> None:
        try:
            self.client.images.get(image)
        except ImageNotFound:
            logger.info("Pulling %s for helper workers...", image)
            self.client.images.pull(image)

    def _run_worker(self, image: str, command: list[str], volumes: list[VolumeMount],
                    timeout: float) -> WorkerResult:
        self._ensure_image(image)
        binds = {
            v.source: {"bind": v.target, "mode": "ro" if v.read_only else "rw"}
            for v in volumes
        }
        container = self.client.containers.create(image, command=command, volumes=binds)
        try:
            container.start()
            try:
                status = container.wait(timeout=timeout)
            except requests.exceptions.RequestException as exc:
                try:
                    container.kill()
                except APIError as kill_exc:
                    logger.warning("Could not kill timed-out worker %s: %s", container.id, kill_exc)
                raise WorkerExecutionError(f"Worker timed out after {timeout}s") from exc
            output = container.logs(stdout=True, stderr=True).decode("utf-8", errors="replace")
            return WorkerResult(exit_code=int(status.get("StatusCode", -1)), output=output)
        finally:
            try:
                container.remove(force=True)
            except APIError as exc:
                logger.warning("Could not remove worker %s: %s", container.id, exc)

    async def run_ephemeral_worker(
        self,
        image: str,
        command: list[str],
        volumes: list[VolumeMount],
        timeout: float,
    ) -> WorkerResult:
        logger.debug("Running worker %s: %s", image, command)
        try:
            return await asyncio.to_thread(self._run_worker, image, command, volumes, timeout)
        except (WorkerExecutionError, GatewayError):
            raise
        except DockerException as exc:
            raise WorkerExecutionError(f"Worker failed to run: {exc}") from exc
