"""Per-instance context shared by every component of one supervisor."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from .config import SupervisorConfig
from .events import EventEmitter

if TYPE_CHECKING:
    from .gateway.base import ContainerGateway
    from .rcon.session import RconSession


@dataclass
class SupervisorContext:
    """Constructed once and handed to each component.

    ``session`` is replaced with a fresh RconSession on every workload start and
    cleared on stop.
    """

    config: SupervisorConfig
    gateway: ContainerGateway
    events: EventEmitter = field(default_factory=EventEmitter)
    session: RconSession | None = None
