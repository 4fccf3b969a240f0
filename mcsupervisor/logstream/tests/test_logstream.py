"""Tests for log framing, parsing, buffering and follow mode."""
from __future__ import annotations

import asyncio
import struct
from datetime import datetime, timezone

import pytest

from mcsupervisor.errors import GatewayError
from mcsupervisor.logstream import (
    FrameDemuxer,
    LineAssembler,
    LogStreamProcessor,
    filter_by_level,
    parse_line,
    parse_output,
    search,
)


def frame(payload: bytes, channel: int = 1) -> bytes:
    return struct.pack(">BxxxI", channel, len(payload)) + payload


def test_parse_line_server_thread_info():
    entry = parse_line('2024-01-05T12:34:56Z [Server thread/INFO]: Done (12.3s)! For help, type "help"')
    assert entry.severity == "INFO"
    assert entry.thread == "Server thread"
    assert entry.message == 'Done (12.3s)! For help, type "help"'
    assert entry.timestamp == datetime(2024, 1, 5, 12, 34, 56, tzinfo=timezone.utc)


def test_parse_line_nanosecond_timestamp_and_warning():
    entry = parse_line("2024-01-05T12:34:56.123456789Z [12:34:56] [Worker-1/WARNING]: Can't keep up!")
    assert entry.timestamp.microsecond == 123456
    assert entry.severity == "WARN"
    assert entry.thread == "Worker-1"
    assert entry.message == "Can't keep up!"


def test_parse_line_without_markers():
    before = datetime.now(timezone.utc)
    entry = parse_line("Starting minecraft server version 1.20.4")
    assert entry.severity == "INFO"
    assert entry.thread is None
    assert entry.message == "Starting minecraft server version 1.20.4"
    assert entry.timestamp >= before


def test_parse_line_plain_level_token():
    entry = parse_line("[ERROR]: Failed to bind to port")
    assert entry.severity == "ERROR"
    assert entry.message == "Failed to bind to port"


def test_demuxer_handles_frames_split_across_chunks():
    data = frame(b"hello\nwor") + frame(b"ld\n", channel=2)
    demux = FrameDemuxer()
    out = b"".join(demux.feed(data[i:i + 3]) for i in range(0, len(data), 3))
    assert out == b"hello\nworld\n"


def test_demuxer_passes_unframed_text_through():
    demux = FrameDemuxer()
    assert demux.feed(b"[12:00] plain tty output\n") == b"[12:00] plain tty output\n"
    assert demux.feed(b"\x01more") == b"\x01more"


def test_line_assembler_holds_partial_line():
    lines = LineAssembler()
    assert lines.feed(b"first li") == []
    assert lines.feed(b"ne\r\nsecond\n\n  \nthi") == ["first line", "second"]
    assert lines.flush() == ["thi"]


def test_line_assembler_joins_split_utf8():
    lines = LineAssembler()
    encoded = "Kicked Zoë\n".encode()
    assert lines.feed(encoded[:9]) == []
    assert lines.feed(encoded[9:]) == ["Kicked Zoë"]


def test_parse_output_framed_blob():
    blob = frame(b"[Server thread/INFO]: a\n") + frame(b"[Server thread/ERROR]: b\n", channel=2)
    assert [(e.severity, e.message) for e in parse_output(blob)] == [("INFO", "a"), ("ERROR", "b")]


def test_filter_and_search():
    entries = [parse_line(f"[Server thread/{lvl}]: msg {i}") for i, lvl in enumerate(["INFO", "WARN", "ERROR"])]
    assert [e.severity for e in filter_by_level(entries, ["warn", "ERROR"])] == ["WARN", "ERROR"]
    assert [e.message for e in search(entries, "MSG 1")] == ["msg 1"]
    assert search(entries, "MSG 1", case_sensitive=True) == []


def test_buffer_keeps_most_recent_entries(context):
    processor = LogStreamProcessor(context)
    for i in range(600):
        processor._ingest(f"[Server thread/INFO]: line {i}")
    buffered = processor.buffer()
    assert len(buffered) == 500
    assert buffered[0].message == "line 100"
    assert buffered[-1].message == "line 599"

    processor.set_capacity(10)
    assert [e.message for e in processor.buffer()] == [f"line {i}" for i in range(590, 600)]
    processor.clear_buffer()
    assert processor.buffer() == []


@pytest.mark.asyncio
async def test_get_snapshot(context, gateway):
    gateway.logs = b"2024-01-05T12:34:56Z [Server thread/INFO]: one\n2024-01-05T12:34:57Z [Server thread/INFO]: two\n"
    entries = await LogStreamProcessor(context).get_snapshot(2)
    assert [e.message for e in entries] == ["one", "two"]


@pytest.mark.asyncio
async def test_follow_emits_entries_then_end(context, gateway, collect):
    logs = collect("log")
    ends = collect("log-end")
    gateway.log_chunks = [frame(b"[Server thread/INFO]: joi"), frame(b"ned\n[Server thread/WARN]: lag\n"), frame(b"tail")]
    processor = LogStreamProcessor(context)

    await processor.start_following()
    await asyncio.sleep(0.05)

    assert [e.message for e in logs] == ["joined", "lag", "tail"]
    assert len(ends) == 1
    assert not processor.is_following
    assert gateway.streams[0].closed


@pytest.mark.asyncio
async def test_start_following_is_idempotent_and_stop_releases(context, gateway):
    gateway.hold_log_stream_open = True
    processor = LogStreamProcessor(context)

    await processor.start_following()
    await processor.start_following()
    assert len(gateway.streams) == 1
    assert processor.is_following

    await processor.stop_following()
    assert not processor.is_following
    assert gateway.streams[0].closed


@pytest.mark.asyncio
async def test_stream_error_keeps_buffer(context, gateway, collect):
    errors = collect("log-error")
    gateway.log_chunks = [b"[Server thread/INFO]: kept\n", GatewayError("stream broke")]
    processor = LogStreamProcessor(context)

    await processor.start_following()
    await asyncio.sleep(0.05)

    assert len(errors) == 1
    assert [e.message for e in processor.buffer()] == ["kept"]
    assert not processor.is_following
