"""Framing, line assembly and line parsing for the combined output stream."""

from __future__ import annotations

import codecs
import re
import struct
from datetime import datetime, timezone

from .models import LogEntry

_FRAME_HEADER = struct.Struct(">BxxxI")
_FRAME_CHANNELS = (0, 1, 2)  # stdin, stdout, stderr

_TIMESTAMP = re.compile(r"^(\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2})(\.\d+)?(Z|[+-]\d{2}:?\d{2})?\s*")
_SEVERITY = re.compile(r"\[(?:[^\]/]*/)?(INFO|WARN|WARNING|ERROR|DEBUG|FATAL|TRACE)\]", re.I)
_THREAD = re.compile(r"\[([^\]/]+)/[^\]]+\]")


def _plausible_header(buf: bytes | bytearray) -> bool:
    """True while ``buf`` could still be the start of a frame header."""
    if not buf or buf[0] not in _FRAME_CHANNELS:
        return False
    return all(b == 0 for b in buf[1:4])


class FrameDemuxer:
    """Strips the 8-byte channel header the engine puts on non-TTY output.

    Headers and payloads may be split across chunks. A stream whose first bytes
    are not a header is passed through untouched from then on.
    """

    def __init__(self) -> None:
        self._pending = bytearray()
        self._framed: bool | None = None

    def feed(self, chunk: bytes) -> bytes:
        if self._framed is False:
            return chunk
        self._pending += chunk
        if self._framed is None:
            if not _plausible_header(self._pending[:4]):
                self._framed = False
                data, self._pending = bytes(self._pending), bytearray()
                return data
            if len(self._pending) < _FRAME_HEADER.size:
                return b""
            self._framed = True

        out = bytearray()
        while len(self._pending) >= _FRAME_HEADER.size:
            if not _plausible_header(self._pending[:4]):
                # lost sync; hand the rest over as plain text
                self._framed = False
                out += self._pending
                self._pending = bytearray()
                break
            _, size = _FRAME_HEADER.unpack_from(self._pending)
            end = _FRAME_HEADER.size + size
            if len(self._pending) < end:
                break
            out += self._pending[_FRAME_HEADER.size:end]
            del self._pending[:end]
        return bytes(out)


class LineAssembler:
    """Splits decoded text into complete lines, holding the trailing fragment."""

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._partial = ""

    def feed(self, data: bytes) -> list[str]:
        text = self._partial + self._decoder.decode(data)
        *lines, self._partial = text.split("\n")
        return [line.rstrip("\r") for line in lines if line.strip()]

    def flush(self) -> list[str]:
        rest = self._partial + self._decoder.decode(b"", final=True)
        self._partial = ""
        return [rest.rstrip("\r")] if rest.strip() else []


def _parse_timestamp(match: re.Match[str]) -> datetime:
    base, fraction, zone = match.group(1), match.group(2) or "", match.group(3) or ""
    # the engine emits nanoseconds; datetime keeps microseconds
    text = base + fraction[:7]
    if zone in ("", "Z"):
        zone = "+00:00"
    elif ":" not in zone:
        zone = zone[:3] + ":" + zone[3:]
    try:
        return datetime.fromisoformat(text + zone)
    except ValueError:
        return datetime.now(timezone.utc)


def parse_line(line: str) -> LogEntry:
    """Parse one output line.

    ``2024-01-05T12:34:56Z [Server thread/INFO]: Done`` yields severity INFO,
    thread "Server thread" and message "Done".
    """
    line = line.strip()
    rest = line
    ts_match = _TIMESTAMP.match(line)
    if ts_match:
        timestamp = _parse_timestamp(ts_match)
        rest = line[ts_match.end():]
    else:
        timestamp = datetime.now(timezone.utc)

    severity_match = _SEVERITY.search(rest)
    severity = severity_match.group(1).upper() if severity_match else "INFO"
    if severity == "WARNING":
        severity = "WARN"

    thread_match = _THREAD.search(rest)
    marker = rest.rfind("]:")
    message = rest[marker + 2:].strip() if marker != -1 else rest

    return LogEntry(
        raw=line,
        timestamp=timestamp,
        severity=severity,
        thread=thread_match.group(1) if thread_match else None,
        message=message,
    )


def parse_output(data: bytes) -> list[LogEntry]:
    """Parse a complete (non-streamed) output blob."""
    lines = LineAssembler()
    payload = FrameDemuxer().feed(data)
    return [parse_line(line) for line in lines.feed(payload) + lines.flush()]
