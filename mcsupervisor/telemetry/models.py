"""Telemetry data models."""
from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any


@dataclass(frozen=True)
class TelemetrySample:
    cpu_percent: float = 0.0
    cpu_core_count: int = 1
    memory_used_bytes: int = 0
    memory_limit_bytes: int = 0
    memory_cached_bytes: int = 0
    memory_percent: float = 0.0
    net_rx_bytes: int = 0
    net_tx_bytes: int = 0
    block_read_bytes: int = 0
    block_write_bytes: int = 0
    process_count: int = 0
    sampled_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["sampled_at"] = self.sampled_at.isoformat()
        return data
