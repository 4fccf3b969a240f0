"""Readiness state machine: container running, startup logged, port open."""

from __future__ import annotations

import asyncio
import logging
import re
import time
from typing import Callable

from ..context import SupervisorContext
from ..errors import ReadinessTimeout
from .models import ReadinessProgress, ReadinessResult, ReadinessSnapshot

logger = logging.getLogger("mcsupervisor.readiness")

# Stream headers and terminal noise, keep \t \n \r
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F]")

STARTUP_LOG_TAIL = 100


def startup_marker_seen(text: str) -> bool:
    """Vanilla/Paper/Forge print 'Done (X.XXXs)! For help, type "help"'."""
    return ("Done" in text and "For help" in text) or "RCON running" in text


async def probe_port(host: str, port: int, timeout: float) -> bool:
    """TCP connect probe. Any failure counts as closed."""
    try:
        _, writer = await asyncio.wait_for(asyncio.open_connection(host, port), timeout)
    except (OSError, asyncio.TimeoutError):
        return False
    writer.close()
    try:
        await writer.wait_closed()
    except OSError:
        pass
    return True


class ReadinessChecker:
    """Stateless: every call recomputes from live observation."""

    def __init__(self, context: SupervisorContext) -> None:
        self._ctx = context
        cfg = context.config
        self.host = cfg.host
        self.port = cfg.game_port
        self.rcon_port = cfg.rcon_port
        self.probe_timeout = cfg.probe_timeout_s

    # -- individual checks ----------------------------------------------------

    async def _check_container_running(self) -> bool:
        try:
            return await asyncio.wait_for(self._ctx.gateway.is_workload_running(), self.probe_timeout)
        except Exception as exc:
            logger.debug("Container check failed: %s", exc)
            return False

    async def _check_startup_log(self) -> bool:
        try:
            raw = await asyncio.wait_for(
                self._ctx.gateway.fetch_logs(tail=STARTUP_LOG_TAIL, timestamps=False), self.probe_timeout,
            )
        except Exception as exc:
            logger.debug("Startup log check failed: %s", exc)
            return False
        text = _CONTROL_CHARS.sub("", raw.decode("utf-8", errors="replace"))
        return startup_marker_seen(text)

    async def _check_port(self, port: int) -> bool:
        return await probe_port(self.host, port, self.probe_timeout)

    # -- public API -----------------------------------------------------------

    async def check_status(self) -> ReadinessSnapshot:
        running, logged, game_open, rcon_open = await asyncio.gather(
            self._check_container_running(),
            self._check_startup_log(),
            self._check_port(self.port),
            self._check_port(self.rcon_port),
        )
        return ReadinessSnapshot(
            container_running=running,
            startup_log_observed=logged,
            game_port_open=game_open,
            rcon_port_open=rcon_open,
            fully_ready=running and logged and game_open,
        )

    async def wait_for_ready(
        self,
        timeout: float | None = None,
        poll_interval: float | None = None,
        on_progress: Callable[[ReadinessProgress], None] | None = None,
    ) -> ReadinessResult:
        """Poll until container, startup log and game port all hold.

        Raises ReadinessTimeout once ``timeout`` seconds have elapsed, never earlier.
        """
        cfg = self._ctx.config
        timeout = cfg.readiness_timeout_s if timeout is None else timeout
        poll_interval = cfg.readiness_poll_s if poll_interval is None else poll_interval
        timeout_ms = int(timeout * 1000)
        t0 = time.monotonic()

        def _report(phase: str, message: str, elapsed_ms: int) -> None:
            progress = ReadinessProgress(phase, message, elapsed_ms, timeout_ms)
            if on_progress is not None:
                on_progress(progress)
            self._ctx.events.emit("readiness-progress", progress)

        while True:
            elapsed = time.monotonic() - t0
            if elapsed >= timeout:
                logger.warning("Server not ready after %.1fs", elapsed)
                raise ReadinessTimeout(int(elapsed * 1000))
            elapsed_ms = int(elapsed * 1000)

            if not await self._check_container_running():
                _report("waiting-container", "Waiting for container to start...", elapsed_ms)
            elif not await self._check_startup_log():
                _report("waiting-startup", "Waiting for server to finish starting...", elapsed_ms)
            elif not await self._check_port(self.port):
                _report("waiting-port", "Waiting for server port to be accessible...", elapsed_ms)
            else:
                rcon_ready = await self._check_port(self.rcon_port)
                _report("ready", "Server is ready!", elapsed_ms)
                logger.info("Server ready after %dms (rcon=%s)", elapsed_ms, rcon_ready)
                return ReadinessResult(ready=True, rcon_ready=rcon_ready, startup_time_ms=elapsed_ms)

            remaining = timeout - (time.monotonic() - t0)
            await asyncio.sleep(max(0.0, min(poll_interval, remaining)))
