"""Supervisor configuration loaded from environment variables, .env or YAML."""

from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from typing import Any

import yaml
from dotenv import load_dotenv

load_dotenv()


def _env(name: str, default: str) -> Any:
    return field(default_factory=lambda: os.getenv(name, default))


def _env_int(name: str, default: int) -> Any:
    return field(default_factory=lambda: int(os.getenv(name, str(default))))


def _env_float(name: str, default: float) -> Any:
    return field(default_factory=lambda: float(os.getenv(name, str(default))))


@dataclass(frozen=True)
class SupervisorConfig:
    """Immutable configuration for one supervised game server."""

    # Workload
    container_name: str = _env("MC_CONTAINER_NAME", "minecraft-server")
    compose_file: str = _env("MC_COMPOSE_FILE", "")
    compose_project: str = _env("MC_COMPOSE_PROJECT", "minecraft")
    compose_service: str = _env("MC_COMPOSE_SERVICE", "minecraft")

    # Network
    host: str = _env("MC_HOST", "127.0.0.1")
    game_port: int = _env_int("MC_GAME_PORT", 25565)
    rcon_port: int = _env_int("MC_RCON_PORT", 25575)
    rcon_password: str = _env("MC_RCON_PASSWORD", "")
    rcon_timeout_s: float = _env_float("MC_RCON_TIMEOUT_S", 5.0)
    heartbeat_interval_s: float = _env_float("MC_HEARTBEAT_INTERVAL_S", 30.0)

    # Readiness
    readiness_timeout_s: float = _env_float("MC_READINESS_TIMEOUT_S", 180.0)
    readiness_poll_s: float = _env_float("MC_READINESS_POLL_S", 2.0)
    probe_timeout_s: float = 2.0

    # Telemetry / logs
    stats_interval_s: float = _env_float("MC_STATS_INTERVAL_S", 2.0)
    log_buffer_size: int = _env_int("MC_LOG_BUFFER_SIZE", 500)

    # Backups
    data_volume: str = _env("MC_DATA_VOLUME", "minecraft-data")
    backup_volume: str = _env("MC_BACKUP_VOLUME", "minecraft-backups")
    world_dir: str = _env("MC_WORLD_DIR", "world")
    helper_image: str = _env("MC_HELPER_IMAGE", "alpine:latest")
    worker_timeout_s: float = _env_float("MC_WORKER_TIMEOUT_S", 600.0)
    max_backups: int = _env_int("MC_MAX_BACKUPS", 10)
    max_backup_mb: int = _env_int("MC_MAX_BACKUP_MB", 5000)

    # Logging
    log_dir: str = _env("MC_LOG_DIR", "logs")
    log_level: str = _env("MC_LOG_LEVEL", "INFO")
    log_retention_days: int = _env_int("MC_LOG_RETENTION_DAYS", 7)

    # Activity journal (relative to log_dir; empty keeps it in memory only)
    journal_file: str = _env("MC_JOURNAL_FILE", "activity.jsonl")
    journal_max_entries: int = _env_int("MC_JOURNAL_MAX_ENTRIES", 1000)
    journal_max_bytes: int = _env_int("MC_JOURNAL_MAX_BYTES", 1_000_000)
    journal_backup_count: int = _env_int("MC_JOURNAL_BACKUP_COUNT", 3)

    # Status endpoint
    status_host: str = _env("MC_STATUS_HOST", "127.0.0.1")
    status_port: int = _env_int("MC_STATUS_PORT", 8087)
    status_token: str = _env("MC_STATUS_TOKEN", "")

    @classmethod
    def from_env(cls) -> SupervisorConfig:
        """Create config from environment, raising on missing required vars."""
        cfg = cls()
        if not cfg.rcon_password:
            raise RuntimeError("MC_RCON_PASSWORD env var is required")
        return cfg

    @classmethod
    def from_yaml(cls, path: str) -> SupervisorConfig:
        """Overlay a nested YAML file on top of the environment defaults."""
        with open(path, "r") as f:
            raw: dict[str, Any] = yaml.safe_load(f) or {}
        server = raw.get("server", {})
        rcon = raw.get("rcon", {})
        readiness = raw.get("readiness", {})
        telemetry = raw.get("telemetry", {})
        logs = raw.get("logs", {})
        backup = raw.get("backup", {})
        log_cfg = raw.get("logging", {})
        journal = raw.get("journal", {})
        status = raw.get("status", {})

        mapping = {
            "container_name": server.get("container_name"),
            "compose_file": server.get("compose_file"),
            "compose_project": server.get("compose_project"),
            "compose_service": server.get("compose_service"),
            "host": server.get("host"),
            "game_port": server.get("port"),
            "rcon_port": rcon.get("port"),
            "rcon_password": rcon.get("password"),
            "rcon_timeout_s": rcon.get("timeout_s"),
            "heartbeat_interval_s": rcon.get("heartbeat_s"),
            "readiness_timeout_s": readiness.get("timeout_s"),
            "readiness_poll_s": readiness.get("poll_s"),
            "probe_timeout_s": readiness.get("probe_timeout_s"),
            "stats_interval_s": telemetry.get("interval_s"),
            "log_buffer_size": logs.get("buffer_size"),
            "data_volume": backup.get("data_volume"),
            "backup_volume": backup.get("backup_volume"),
            "world_dir": backup.get("world_dir"),
            "helper_image": backup.get("helper_image"),
            "worker_timeout_s": backup.get("worker_timeout_s"),
            "max_backups": backup.get("max_count"),
            "max_backup_mb": backup.get("max_size_mb"),
            "log_dir": log_cfg.get("dir"),
            "log_level": log_cfg.get("level"),
            "log_retention_days": log_cfg.get("retention_days"),
            "journal_file": journal.get("file"),
            "journal_max_entries": journal.get("max_entries"),
            "journal_max_bytes": journal.get("max_bytes"),
            "journal_backup_count": journal.get("backup_count"),
            "status_host": status.get("host"),
            "status_port": status.get("port"),
            "status_token": status.get("token"),
        }
        return replace(cls(), **{k: v for k, v in mapping.items() if v is not None})
