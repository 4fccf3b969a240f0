"""Exception taxonomy for the server lifecycle & control core."""

from __future__ import annotations


class SupervisorError(Exception):
    """Base class for every error raised by mcsupervisor."""


# ---------------------------------------------------------------------------
# RCON
# ---------------------------------------------------------------------------

class RconConnectionError(SupervisorError, ConnectionError):
    """A single RCON connection attempt failed."""


class RconAuthError(RconConnectionError):
    """The server rejected the RCON password."""


class RconProtocolError(SupervisorError):
    """Malformed packet on the RCON wire."""


class NotConnected(SupervisorError):
    """No live RCON session to carry the command."""

    def __init__(self, message: str = "RCON not connected") -> None:
        super().__init__(message)


class RetryExhausted(SupervisorError):
    """Every attempt allowed by a retry policy failed."""

    def __init__(self, attempts: int, last_error: BaseException | None, message: str | None = None) -> None:
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(message or f"gave up after {attempts} attempts: {last_error}")


class ConnectionExhausted(RetryExhausted):
    """RCON connect_with_retry ran out of attempts."""


# ---------------------------------------------------------------------------
# Readiness / gateway
# ---------------------------------------------------------------------------

class ReadinessTimeout(SupervisorError):
    """Server did not become ready before the ceiling."""

    def __init__(self, elapsed_ms: int) -> None:
        self.elapsed_ms = elapsed_ms
        super().__init__(f"Server not ready after {elapsed_ms}ms")


class GatewayError(SupervisorError):
    """Container runtime call failed."""


class WorkerExecutionError(SupervisorError):
    """An ephemeral worker could not be run to completion."""

    def __init__(self, message: str, exit_code: int | None = None, output: str = "") -> None:
        self.exit_code = exit_code
        self.output = output
        super().__init__(message)


# ---------------------------------------------------------------------------
# Backup
# ---------------------------------------------------------------------------

class BackupError(SupervisorError):
    """Base class for backup/restore failures."""


class BackupInProgress(BackupError):
    """Another backup or restore is already running."""

    def __init__(self) -> None:
        super().__init__("A backup operation is already running")


class ArchiveFailed(BackupError):
    """Archive worker failed or left no artifact behind."""


class RestoreFailed(BackupError):
    """Extraction did not complete; previous state was moved aside."""


class ValidationError(SupervisorError, ValueError):
    """Caller-supplied argument rejected before use."""
