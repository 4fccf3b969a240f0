"""Resource telemetry: one-shot samples and a background poller.

CPU percent is derived from two cumulative counters::

    cpu% = (cpu_delta / system_delta) * online_cpus * 100

so a container saturating two of four cores reads 200.0. The poller keeps its
own baseline (the previous tick) and reports 0 until it has one.
"""

from __future__ import annotations

import asyncio
import logging
import math
from typing import Any

from ..context import SupervisorContext
from .models import TelemetrySample

logger = logging.getLogger("mcsupervisor.telemetry")

_UNITS = ("B", "KB", "MB", "GB", "TB")


def format_bytes(n: int | float) -> str:
    if n <= 0:
        return "0 B"
    i = max(0, min(int(math.log(n, 1024)), len(_UNITS) - 1))
    return f"{n / 1024 ** i:.1f} {_UNITS[i]}"


def cpu_core_count(cpu_stats: dict[str, Any]) -> int:
    return (
        cpu_stats.get("online_cpus")
        or len((cpu_stats.get("cpu_usage") or {}).get("percpu_usage") or ())
        or 1
    )


def compute_cpu_percent(current: dict[str, Any], previous: dict[str, Any] | None) -> float:
    if not previous:
        return 0.0
    cpu_delta = (
        (current.get("cpu_usage") or {}).get("total_usage", 0)
        - (previous.get("cpu_usage") or {}).get("total_usage", 0)
    )
    system_delta = current.get("system_cpu_usage", 0) - previous.get("system_cpu_usage", 0)
    if cpu_delta <= 0 or system_delta <= 0:
        return 0.0
    return round(cpu_delta / system_delta * cpu_core_count(current) * 100, 1)


def build_sample(raw: dict[str, Any], baseline: dict[str, Any] | None) -> TelemetrySample:
    """Reduce a docker stats document to a TelemetrySample."""
    cpu_stats = raw.get("cpu_stats") or {}

    memory = raw.get("memory_stats") or {}
    mem_detail = memory.get("stats") or {}
    # cgroup v1 reports "cache", v2 "inactive_file"
    cached = mem_detail.get("cache", mem_detail.get("inactive_file", 0))
    usage = memory.get("usage", 0)
    limit = memory.get("limit", 0)
    used = max(usage - cached, 0)

    rx = tx = 0
    for iface in (raw.get("networks") or {}).values():
        rx += iface.get("rx_bytes", 0)
        tx += iface.get("tx_bytes", 0)

    read = write = 0
    for entry in (raw.get("blkio_stats") or {}).get("io_service_bytes_recursive") or ():
        op = str(entry.get("op", "")).lower()
        if op == "read":
            read += entry.get("value", 0)
        elif op == "write":
            write += entry.get("value", 0)

    return TelemetrySample(
        cpu_percent=compute_cpu_percent(cpu_stats, baseline),
        cpu_core_count=cpu_core_count(cpu_stats),
        memory_used_bytes=used,
        memory_limit_bytes=limit,
        memory_cached_bytes=cached,
        memory_percent=round(used / limit * 100, 1) if limit > 0 else 0.0,
        net_rx_bytes=rx,
        net_tx_bytes=tx,
        block_read_bytes=read,
        block_write_bytes=write,
        process_count=(raw.get("pids_stats") or {}).get("current", 0),
    )


class TelemetryEngine:
    def __init__(self, context: SupervisorContext) -> None:
        self._ctx = context
        self._baseline: dict[str, Any] | None = None
        self._polling = False
        self._task: asyncio.Task[None] | None = None

    @property
    def is_polling(self) -> bool:
        return self._polling

    async def get_stats(self) -> TelemetrySample:
        """One-shot sample; CPU is measured against the document's own precpu_stats."""
        raw = await self._ctx.gateway.fetch_stats()
        return build_sample(raw, raw.get("precpu_stats"))

    async def _tick(self) -> None:
        try:
            raw = await self._ctx.gateway.fetch_stats()
        except Exception as exc:
            logger.warning("Stats poll failed: %s", exc)
            if self._polling:
                self._ctx.events.emit("stats-error", exc)
            return
        if not self._polling:
            return
        sample = build_sample(raw, self._baseline)
        self._baseline = raw.get("cpu_stats") or {}
        self._ctx.events.emit("stats", sample)

    async def _poll_loop(self, interval: float) -> None:
        while self._polling:
            await asyncio.sleep(interval)
            await self._tick()

    async def start_polling(self, interval: float | None = None) -> None:
        if self._polling:
            return
        interval = self._ctx.config.stats_interval_s if interval is None else interval
        self._polling = True
        logger.debug("Stats polling every %.1fs", interval)
        await self._tick()
        if self._polling:
            self._task = asyncio.create_task(self._poll_loop(interval), name="stats-poll")

    async def stop_polling(self) -> None:
        self._polling = False
        task, self._task = self._task, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._baseline = None
