"""Resilient RCON session: FIFO command queue, heartbeat and auto-reconnect.

The wire protocol has no usable response correlation, so exactly one command is
ever on the wire. Every request, including the heartbeat, goes through the same
queue and the single drain task.

State machine::

    DISCONNECTED → CONNECTING → CONNECTED
    CONNECTED → RECONNECTING      (transport loss)
    RECONNECTING → CONNECTED      (policy succeeded, queued work resumes)
    RECONNECTING → DISCONNECTED   (policy exhausted, queued work fails)
"""

from __future__ import annotations

import asyncio
import enum
import logging
import time
from collections import deque
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Awaitable, Callable

from ..errors import (
    ConnectionExhausted,
    NotConnected,
    RconAuthError,
    RconConnectionError,
    RconProtocolError,
    RetryExhausted,
    ValidationError,
)
from ..events import EventEmitter
from ..retry import RetryPolicy, with_retry
from .protocol import RconConnection

if TYPE_CHECKING:
    from ..context import SupervisorContext

logger = logging.getLogger("mcsupervisor.rcon")

TRANSPORT_ERRORS = (OSError, asyncio.IncompleteReadError, asyncio.TimeoutError, RconProtocolError)

ConnectionFactory = Callable[[], Awaitable[Any]]


class ConnectionState(str, enum.Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"


@dataclass
class PendingCommand:
    command: str
    future: asyncio.Future[str]
    enqueued_at: float = field(default_factory=time.monotonic)
    heartbeat: bool = False


@dataclass
class SessionStatus:
    state: ConnectionState
    queue_length: int
    in_flight: bool


class RconSession:
    """One logical RCON connection, created per workload start."""

    RECONNECT_POLICY = RetryPolicy(
        max_attempts=5, initial_delay=5.0, max_delay=30.0, backoff_factor=1.5, total_timeout=None,
    )

    def __init__(
        self,
        host: str,
        port: int,
        password: str,
        *,
        timeout: float = 5.0,
        heartbeat_interval: float = 30.0,
        heartbeat_command: str = "list",
        events: EventEmitter | None = None,
        reconnect_policy: RetryPolicy | None = None,
        connection_factory: ConnectionFactory | None = None,
    ) -> None:
        self.host = host
        self.port = port
        self._password = password
        self._timeout = timeout
        self._heartbeat_interval = heartbeat_interval
        self._heartbeat_command = heartbeat_command
        self._events = events or EventEmitter()
        self._reconnect_policy = reconnect_policy or self.RECONNECT_POLICY
        self._factory = connection_factory

        self.state = ConnectionState.DISCONNECTED
        self._conn: Any = None
        self._queue: deque[PendingCommand] = deque()
        self._in_flight: PendingCommand | None = None
        self._worker: asyncio.Task[None] | None = None
        self._heartbeat_task: asyncio.Task[None] | None = None
        self._reconnect_task: asyncio.Task[None] | None = None

    @classmethod
    def from_context(cls, context: SupervisorContext, **kwargs: Any) -> RconSession:
        cfg = context.config
        return cls(
            cfg.host, cfg.rcon_port, cfg.rcon_password,
            timeout=cfg.rcon_timeout_s,
            heartbeat_interval=cfg.heartbeat_interval_s,
            events=context.events,
            **kwargs,
        )

    # -- status ---------------------------------------------------------------

    @property
    def is_connected(self) -> bool:
        return self.state is ConnectionState.CONNECTED

    def status(self) -> SessionStatus:
        return SessionStatus(self.state, len(self._queue), self._in_flight is not None)

    def _set_state(self, state: ConnectionState) -> None:
        if state is not self.state:
            logger.debug("RCON %s → %s", self.state.value, state.value)
            self.state = state
            self._events.emit("rcon-state", state)

    # -- connection -----------------------------------------------------------

    async def _open(self) -> Any:
        if self._factory is not None:
            return await self._factory()
        return await RconConnection.open(self.host, self.port, self._password, self._timeout)

    async def connect(self) -> None:
        """Single connection attempt. Raises RconConnectionError."""
        if self.state is ConnectionState.CONNECTED:
            return
        if self.state is ConnectionState.RECONNECTING and self._reconnect_task is not None:
            await asyncio.shield(self._reconnect_task)
            if self.state is ConnectionState.CONNECTED:
                return

        logger.info("Connecting to RCON %s:%d...", self.host, self.port)
        self._set_state(ConnectionState.CONNECTING)
        try:
            self._conn = await self._open()
        except RconConnectionError:
            self._set_state(ConnectionState.DISCONNECTED)
            raise
        except TRANSPORT_ERRORS as exc:
            self._set_state(ConnectionState.DISCONNECTED)
            raise RconConnectionError(str(exc)) from exc

        self._on_connected()
        logger.info("RCON connected")
        self._events.emit("rcon-connected", {"host": self.host, "port": self.port})

    async def connect_with_retry(
        self,
        max_attempts: int = 10,
        initial_delay: float = 2.0,
        max_delay: float = 30.0,
        backoff_factor: float = 1.5,
        on_attempt: Callable[[int, int], Any] | None = None,
    ) -> None:
        """Repeated connect() with exponential backoff.

        Raises ConnectionExhausted after ``max_attempts``. A rejected password is
        not retried and surfaces as RconAuthError.
        """
        policy = RetryPolicy(max_attempts, initial_delay, max_delay, backoff_factor, total_timeout=None)

        async def _attempt(attempt: int) -> None:
            if on_attempt is not None:
                on_attempt(attempt, max_attempts)
            await self.connect()

        try:
            await with_retry(
                _attempt, policy,
                should_retry=lambda exc, _: not isinstance(exc, RconAuthError),
            )
        except RetryExhausted as exc:
            raise ConnectionExhausted(
                exc.attempts, exc.last_error,
                f"RCON connection failed after {exc.attempts} attempts: {exc.last_error}",
            ) from exc.last_error

    def _on_connected(self) -> None:
        self._set_state(ConnectionState.CONNECTED)
        self._start_heartbeat()
        self._kick()

    async def disconnect(self) -> None:
        """Stop heartbeat, fail every pending command, close the connection."""
        self._stop_heartbeat()
        if self._reconnect_task is not None:
            self._reconnect_task.cancel()
            try:
                await self._reconnect_task
            except asyncio.CancelledError:
                pass
            self._reconnect_task = None

        was = self.state
        self._set_state(ConnectionState.DISCONNECTED)
        self._fail_pending("RCON disconnected")

        worker, self._worker = self._worker, None
        if worker is not None and not worker.done():
            worker.cancel()
            try:
                await worker
            except asyncio.CancelledError:
                pass

        conn, self._conn = self._conn, None
        if conn is not None:
            await conn.close()
        if was is not ConnectionState.DISCONNECTED:
            logger.info("RCON disconnected")
            self._events.emit("rcon-disconnected", {"reason": "requested"})

    # -- auto-reconnect -------------------------------------------------------

    def _handle_transport_loss(self, exc: BaseException) -> None:
        if self.state is not ConnectionState.CONNECTED:
            return
        logger.warning("RCON connection lost: %s", exc)
        self._stop_heartbeat()
        old, self._conn = self._conn, None
        self._set_state(ConnectionState.RECONNECTING)
        self._events.emit("rcon-disconnected", {"reason": str(exc)})
        self._events.emit("rcon-reconnecting", None)
        self._reconnect_task = asyncio.create_task(self._auto_reconnect(old), name="rcon-reconnect")

    async def _auto_reconnect(self, old: Any) -> None:
        if old is not None:
            await old.close()
        policy = self._reconnect_policy

        async def _attempt(attempt: int) -> None:
            self._events.emit("rcon-reconnect-attempt", {
                "attempt": attempt, "max_attempts": policy.max_attempts,
            })
            try:
                self._conn = await self._open()
            except TRANSPORT_ERRORS as exc:
                raise RconConnectionError(str(exc)) from exc

        try:
            await with_retry(_attempt, policy)
        except RetryExhausted as exc:
            logger.error("RCON reconnect failed after %d attempts: %s", exc.attempts, exc.last_error)
            self._set_state(ConnectionState.DISCONNECTED)
            self._fail_pending("RCON reconnect failed")
            self._events.emit("rcon-reconnect-failed", exc)
            return
        finally:
            self._reconnect_task = None

        logger.info("RCON reconnected; %d queued command(s) resuming", len(self._queue))
        self._on_connected()
        self._events.emit("rcon-reconnected", None)

    # -- heartbeat ------------------------------------------------------------

    def _start_heartbeat(self) -> None:
        self._stop_heartbeat()
        if self._heartbeat_interval > 0:
            self._heartbeat_task = asyncio.create_task(self._heartbeat_loop(), name="rcon-heartbeat")

    def _stop_heartbeat(self) -> None:
        if self._heartbeat_task is not None:
            self._heartbeat_task.cancel()
            self._heartbeat_task = None

    def set_heartbeat_interval(self, seconds: float) -> None:
        self._heartbeat_interval = seconds
        if self.is_connected:
            self._start_heartbeat()

    async def _heartbeat_loop(self) -> None:
        while True:
            await asyncio.sleep(self._heartbeat_interval)
            if not self.is_connected:
                continue
            try:
                await self._enqueue(self._heartbeat_command, heartbeat=True)
            except NotConnected as exc:
                # transport loss is handled by the drain task
                self._events.emit("rcon-heartbeat-failed", exc)

    # -- command queue --------------------------------------------------------

    async def send(self, command: str) -> str:
        """Queue ``command``; responses resolve in submission order."""
        return await self._enqueue(command)

    async def _enqueue(self, command: str, heartbeat: bool = False) -> str:
        if self.state not in (ConnectionState.CONNECTED, ConnectionState.RECONNECTING):
            raise NotConnected()
        pending = PendingCommand(command, asyncio.get_running_loop().create_future(), heartbeat=heartbeat)
        self._queue.append(pending)
        self._kick()
        return await pending.future

    def _kick(self) -> None:
        if not self.is_connected or not self._queue:
            return
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self._drain(), name="rcon-drain")

    async def _drain(self) -> None:
        while self._queue and self.is_connected:
            pending = self._queue.popleft()
            if pending.future.done():  # caller gave up
                continue
            self._in_flight = pending
            try:
                response = await self._conn.execute(pending.command)
            except ValidationError as exc:
                if not pending.future.done():
                    pending.future.set_exception(exc)
            except TRANSPORT_ERRORS as exc:
                if not pending.future.done():
                    pending.future.set_exception(NotConnected(f"RCON connection lost: {exc}"))
                self._in_flight = None
                self._handle_transport_loss(exc)
                return
            except Exception as exc:
                logger.error("RCON command %r failed: %s", pending.command, exc)
                if not pending.future.done():
                    pending.future.set_exception(exc)
            else:
                if not pending.future.done():
                    pending.future.set_result(response)
            finally:
                self._in_flight = None

    def _fail_pending(self, message: str) -> None:
        failed = 0
        if self._in_flight is not None and not self._in_flight.future.done():
            self._in_flight.future.set_exception(NotConnected(message))
            failed += 1
        self._in_flight = None
        while self._queue:
            pending = self._queue.popleft()
            if not pending.future.done():
                pending.future.set_exception(NotConnected(message))
                failed += 1
        if failed:
            logger.warning("Failed %d pending RCON command(s): %s", failed, message)
