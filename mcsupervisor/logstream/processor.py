"""Snapshot and live-follow of the workload's combined output."""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from typing import Iterable

from ..context import SupervisorContext
from ..gateway.base import LogStream
from .models import LogEntry
from .parser import FrameDemuxer, LineAssembler, parse_line, parse_output

logger = logging.getLogger("mcsupervisor.logs")


def filter_by_level(entries: Iterable[LogEntry], levels: str | Iterable[str]) -> list[LogEntry]:
    wanted = {levels.upper()} if isinstance(levels, str) else {lvl.upper() for lvl in levels}
    return [entry for entry in entries if entry.severity in wanted]


def search(entries: Iterable[LogEntry], query: str, case_sensitive: bool = False) -> list[LogEntry]:
    if case_sensitive:
        return [entry for entry in entries if query in entry.raw]
    query = query.lower()
    return [entry for entry in entries if query in entry.raw.lower()]


class LogStreamProcessor:
    def __init__(self, context: SupervisorContext, capacity: int | None = None) -> None:
        self._ctx = context
        self._buffer: deque[LogEntry] = deque(maxlen=capacity or context.config.log_buffer_size)
        self._stream: LogStream | None = None
        self._task: asyncio.Task[None] | None = None
        self._following = False

    @property
    def is_following(self) -> bool:
        return self._following

    # -- buffer ---------------------------------------------------------------

    def buffer(self) -> list[LogEntry]:
        return list(self._buffer)

    def clear_buffer(self) -> None:
        self._buffer.clear()

    def set_capacity(self, capacity: int) -> None:
        """Resize the buffer, keeping the most recent entries."""
        if capacity < 1:
            raise ValueError("capacity must be positive")
        self._buffer = deque(self._buffer, maxlen=capacity)

    def _ingest(self, line: str) -> None:
        entry = parse_line(line)
        self._buffer.append(entry)
        self._ctx.events.emit("log", entry)

    # -- snapshot -------------------------------------------------------------

    async def get_snapshot(self, lines: int = 100) -> list[LogEntry]:
        raw = await self._ctx.gateway.fetch_logs(tail=lines, timestamps=True)
        return parse_output(raw)

    # -- follow ---------------------------------------------------------------

    async def start_following(self, tail: int = 50) -> None:
        if self._following:
            return
        self._following = True
        try:
            self._stream = await self._ctx.gateway.follow_logs(tail=tail)
        except BaseException:
            self._following = False
            raise
        self._task = asyncio.create_task(self._pump(self._stream), name="log-follow")
        logger.debug("Following workload output (tail=%d)", tail)

    async def _pump(self, stream: LogStream) -> None:
        demux, lines = FrameDemuxer(), LineAssembler()
        try:
            while True:
                chunk = await stream.read()
                if chunk is None:
                    break
                for line in lines.feed(demux.feed(chunk)):
                    self._ingest(line)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.warning("Log stream error: %s", exc)
            self._ctx.events.emit("log-error", exc)
            self._following = False
            await self._release(stream)
            return

        for line in lines.flush():
            self._ingest(line)
        logger.info("Log stream ended")
        self._following = False
        await self._release(stream)
        self._ctx.events.emit("log-end", None)

    async def _release(self, stream: LogStream) -> None:
        if self._stream is stream:
            self._stream = None
        try:
            await stream.close()
        except Exception as exc:
            logger.debug("Closing log stream failed: %s", exc)

    async def stop_following(self) -> None:
        self._following = False
        task, self._task = self._task, None
        stream, self._stream = self._stream, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        if stream is not None:
            await self._release(stream)
