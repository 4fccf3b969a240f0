"""mcsupervisor: lifecycle, RCON control, telemetry, logs and backups for a containerised game server."""

from .config import SupervisorConfig
from .context import SupervisorContext
from .errors import SupervisorError
from .events import EventEmitter, Subscription
from .supervisor import ServerLifecycleState, ServerSupervisor

__version__ = "0.1.0"

__all__ = [
    "EventEmitter",
    "ServerLifecycleState",
    "ServerSupervisor",
    "Subscription",
    "SupervisorConfig",
    "SupervisorContext",
    "SupervisorError",
]
