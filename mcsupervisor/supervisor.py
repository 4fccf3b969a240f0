"""Lifecycle supervisor: owns the components for one workload and its state."""

from __future__ import annotations

import asyncio
import enum
import logging

from .backup import BackupOrchestrator
from .context import SupervisorContext
from .errors import RconConnectionError, RetryExhausted, SupervisorError
from .journal import ActivityJournal
from .logstream import LogStreamProcessor
from .rcon import RconCommands, RconSession
from .readiness import ReadinessChecker, ReadinessResult
from .telemetry import TelemetryEngine

logger = logging.getLogger("mcsupervisor.supervisor")

COUNTDOWN_MARKS = (60, 30, 10, 5, 3, 2, 1)
READY_RCON_ATTEMPTS = 5


class ServerLifecycleState(str, enum.Enum):
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    UNKNOWN = "unknown"


def countdown_schedule(grace_seconds: int) -> list[tuple[int, int]]:
    """(seconds remaining, seconds to sleep after announcing) pairs."""
    if grace_seconds <= 0:
        return []
    marks = sorted({grace_seconds, *(m for m in COUNTDOWN_MARKS if m < grace_seconds)}, reverse=True)
    return [(mark, mark - (marks[i + 1] if i + 1 < len(marks) else 0)) for i, mark in enumerate(marks)]


class ServerSupervisor:
    """Entry point for callers: start, wait for ready, stop, restart.

    A fresh RconSession is placed in the context on every start and torn down on
    every stop; the other components read it from the context when they need it.
    """

    def __init__(self, context: SupervisorContext) -> None:
        self.context = context
        self.readiness = ReadinessChecker(context)
        self.commands = RconCommands(context)
        self.telemetry = TelemetryEngine(context)
        self.logs = LogStreamProcessor(context)
        self.backups = BackupOrchestrator(context)
        self.journal = ActivityJournal.from_config(context.config).attach(context.events)
        self.state = ServerLifecycleState.STOPPED

    def _set_state(self, state: ServerLifecycleState) -> None:
        if state is not self.state:
            logger.info("Server %s → %s", self.state.value, state.value)
            self.state = state
            self.context.events.emit("server-state", state)

    async def _discard_session(self) -> None:
        session, self.context.session = self.context.session, None
        if session is not None:
            await session.disconnect()

    async def _teardown(self) -> None:
        await self.telemetry.stop_polling()
        await self.logs.stop_following()
        await self._discard_session()

    # -- lifecycle ------------------------------------------------------------

    async def start(self) -> None:
        if self.state in (ServerLifecycleState.STARTING, ServerLifecycleState.RUNNING):
            logger.info("Start requested while %s; ignoring", self.state.value)
            return
        self._set_state(ServerLifecycleState.STARTING)
        await self._discard_session()
        try:
            await self.context.gateway.start_workload()
        except SupervisorError:
            await self.refresh_state()
            raise
        self.context.session = RconSession.from_context(self.context)

    async def wait_until_ready(self, timeout: float | None = None) -> ReadinessResult:
        """Readiness first, then RCON. An RCON failure is logged, not raised."""
        result = await self.readiness.wait_for_ready(timeout=timeout)
        session = self.context.session
        if session is None:
            session = self.context.session = RconSession.from_context(self.context)
        try:
            await session.connect_with_retry(max_attempts=READY_RCON_ATTEMPTS)
        except (RetryExhausted, RconConnectionError) as exc:
            logger.warning("Server is up but RCON is unavailable: %s", exc)
        self._set_state(ServerLifecycleState.RUNNING)
        return result

    async def _announce_shutdown(self, grace_seconds: int) -> None:
        for remaining, pause in countdown_schedule(grace_seconds):
            try:
                await self.commands.say(f"Server stopping in {remaining} second{'s' if remaining != 1 else ''}")
            except SupervisorError as exc:
                logger.warning("Shutdown notice failed, stopping now: %s", exc)
                return
            await asyncio.sleep(pause)

    async def stop(self, grace_seconds: int = 0) -> None:
        session = self.context.session
        if grace_seconds > 0 and session is not None and session.is_connected:
            await self._announce_shutdown(grace_seconds)
        self._set_state(ServerLifecycleState.STOPPING)
        await self._teardown()
        try:
            await self.context.gateway.stop_workload()
        except SupervisorError:
            await self.refresh_state()
            raise
        self._set_state(ServerLifecycleState.STOPPED)

    async def restart(self, grace_seconds: int = 0, timeout: float | None = None) -> ReadinessResult:
        await self.stop(grace_seconds)
        await self.start()
        return await self.wait_until_ready(timeout)

    async def close(self) -> None:
        """Detach from the workload without stopping it."""
        await self._teardown()
        self.journal.close()

    async def refresh_state(self) -> ServerLifecycleState:
        """Reconcile with the observed container state."""
        try:
            running = await self.context.gateway.is_workload_running()
        except SupervisorError as exc:
            logger.warning("Container state unavailable: %s", exc)
            self._set_state(ServerLifecycleState.UNKNOWN)
            return self.state
        if running and self.state is not ServerLifecycleState.STARTING:
            self._set_state(ServerLifecycleState.RUNNING)
        elif not running and self.state is not ServerLifecycleState.STOPPING:
            self._set_state(ServerLifecycleState.STOPPED)
        return self.state
