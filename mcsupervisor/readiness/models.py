"""Readiness data models."""
from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class ReadinessSnapshot:
    container_running: bool
    startup_log_observed: bool
    game_port_open: bool
    rcon_port_open: bool
    fully_ready: bool


@dataclass(frozen=True)
class ReadinessResult:
    ready: bool
    rcon_ready: bool
    startup_time_ms: int


@dataclass(frozen=True)
class ReadinessProgress:
    phase: str  # waiting-container | waiting-startup | waiting-port | ready
    message: str
    elapsed_ms: int
    timeout_ms: int
