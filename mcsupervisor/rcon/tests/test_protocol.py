"""Tests for the Source RCON wire format and a single authenticated connection."""
from __future__ import annotations

import socket
import struct

import pytest

from mcsupervisor.errors import RconAuthError, RconConnectionError, RconProtocolError, ValidationError
from mcsupervisor.rcon.protocol import (
    SERVERDATA_EXECCOMMAND,
    Packet,
    RconConnection,
    decode_packet,
    encode_packet,
)


def _free_port() -> int:
    with socket.socket() as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


def test_encode_packet_length_prefix_counts_remaining_bytes():
    data = encode_packet(7, SERVERDATA_EXECCOMMAND, "list")
    (length,) = struct.unpack("<i", data[:4])
    assert length == len(data) - 4
    assert data.endswith(b"list\x00\x00")


def test_decode_packet_inverts_encode():
    data = encode_packet(42, 0, "There are 0 of a max of 20 players online:")
    assert decode_packet(data[4:]) == Packet(42, 0, "There are 0 of a max of 20 players online:")


def test_decode_short_packet_raises():
    with pytest.raises(RconProtocolError):
        decode_packet(b"\x01\x00\x00\x00")


@pytest.mark.asyncio
async def test_open_and_execute(rcon_server):
    conn = await RconConnection.open(rcon_server["host"], rcon_server["port"], "secret", timeout=1.0)
    try:
        assert await conn.execute("say hi") == "echo: say hi"
        assert await conn.execute("list") == "There are 0 of a max of 20 players online: "
    finally:
        await conn.close()
    assert rcon_server["received"] == ["say hi", "list"]


@pytest.mark.asyncio
async def test_wrong_password_raises_auth_error(rcon_server):
    with pytest.raises(RconAuthError):
        await RconConnection.open(rcon_server["host"], rcon_server["port"], "wrong", timeout=1.0)


@pytest.mark.asyncio
async def test_unreachable_port_raises_connection_error():
    with pytest.raises(RconConnectionError):
        await RconConnection.open("127.0.0.1", _free_port(), "secret", timeout=0.5)


@pytest.mark.asyncio
async def test_oversized_command_rejected_before_write(rcon_server):
    conn = await RconConnection.open(rcon_server["host"], rcon_server["port"], "secret", timeout=1.0)
    try:
        with pytest.raises(ValidationError):
            await conn.execute("say " + "x" * 2000)
    finally:
        await conn.close()
    assert rcon_server["received"] == []
