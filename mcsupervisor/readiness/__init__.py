"""Readiness state machine."""
from .checker import ReadinessChecker, probe_port, startup_marker_seen
from .models import ReadinessProgress, ReadinessResult, ReadinessSnapshot

__all__ = [
    "ReadinessChecker",
    "ReadinessProgress",
    "ReadinessResult",
    "ReadinessSnapshot",
    "probe_port",
    "startup_marker_seen",
]
