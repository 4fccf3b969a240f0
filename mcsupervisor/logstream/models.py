"""Log data models."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any


@dataclass(frozen=True)
class LogEntry:
    raw: str
    timestamp: datetime
    severity: str
    thread: str | None
    message: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "raw": self.raw,
            "timestamp": self.timestamp.isoformat(),
            "severity": self.severity,
            "thread": self.thread,
            "message": self.message,
        }
