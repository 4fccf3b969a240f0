"""Backup data models and archive naming."""
from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from ..config import SupervisorConfig
from ..errors import ValidationError

MIB = 1024 * 1024

ARCHIVE_NAME = re.compile(r"^[A-Za-z0-9_.-]+\.tar(\.gz)?$")
LABEL = re.compile(r"^[A-Za-z0-9_-]{1,64}$")
_STAMP = re.compile(r"_(\d{4})-(\d{2})-(\d{2})T(\d{2})-(\d{2})-(\d{2})(?:-(\d{3}))?Z?\.tar")


@dataclass(frozen=True)
class BackupRecord:
    name: str
    size_bytes: int
    created_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "size_bytes": self.size_bytes, "created_at": self.created_at.isoformat()}


@dataclass(frozen=True)
class BackupResult:
    filename: str
    size_bytes: int
    path: str


@dataclass(frozen=True)
class RestoreResult:
    success: bool
    message: str
    preserved_as: str | None = None


@dataclass(frozen=True)
class BackupStats:
    count: int
    total_bytes: int
    oldest: datetime | None
    newest: datetime | None


@dataclass(frozen=True)
class RetentionPolicy:
    max_count: int = 10
    max_total_bytes: int = 5000 * MIB

    @classmethod
    def from_config(cls, cfg: SupervisorConfig) -> RetentionPolicy:
        return cls(max_count=cfg.max_backups, max_total_bytes=cfg.max_backup_mb * MIB)


def archive_timestamp(now: datetime | None = None) -> str:
    """``2024-01-05T12-34-56-789Z``: ISO-8601 with ':' and '.' made filename-safe."""
    now = now or datetime.now(timezone.utc)
    return now.strftime("%Y-%m-%dT%H-%M-%S-") + f"{now.microsecond // 1000:03d}Z"


def parse_archive_timestamp(filename: str) -> datetime | None:
    match = _STAMP.search(filename)
    if not match:
        return None
    year, month, day, hour, minute, second, millis = match.groups()
    try:
        return datetime(
            int(year), int(month), int(day), int(hour), int(minute), int(second),
            int(millis or 0) * 1000, tzinfo=timezone.utc,
        )
    except ValueError:
        return None


def validate_archive_name(filename: str) -> str:
    if not isinstance(filename, str) or not ARCHIVE_NAME.match(filename) or filename.startswith("."):
        raise ValidationError(f"invalid backup filename: {filename!r}")
    return filename


def validate_label(label: str) -> str:
    if not isinstance(label, str) or not LABEL.match(label):
        raise ValidationError(f"invalid backup label: {label!r}")
    return label
