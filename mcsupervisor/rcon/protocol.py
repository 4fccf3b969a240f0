"""Source RCON wire format over asyncio streams.

Packet layout (little-endian)::

    int32 length   # bytes that follow: id + type + body + 2 NULs
    int32 request_id
    int32 type
    bytes body
    b"\\x00\\x00"
"""

from __future__ import annotations

import asyncio
import logging
import struct
from dataclasses import dataclass

from ..errors import RconAuthError, RconConnectionError, RconProtocolError, ValidationError

logger = logging.getLogger("mcsupervisor.rcon.protocol")

SERVERDATA_AUTH = 3
SERVERDATA_AUTH_RESPONSE = 2
SERVERDATA_EXECCOMMAND = 2
SERVERDATA_RESPONSE_VALUE = 0

MIN_PACKET_LENGTH = 10
MAX_PACKET_LENGTH = 4096 + MIN_PACKET_LENGTH
AUTH_FAILED_ID = -1

_HEADER = struct.Struct("<iii")


@dataclass(frozen=True)
class Packet:
    request_id: int
    type: int
    body: str


def encode_packet(request_id: int, packet_type: int, body: str) -> bytes:
    payload = body.encode("utf-8") + b"\x00\x00"
    return _HEADER.pack(8 + len(payload), request_id, packet_type) + payload


def decode_packet(data: bytes) -> Packet:
    """Decode a packet *without* its leading length field."""
    if len(data) < MIN_PACKET_LENGTH:
        raise RconProtocolError(f"short packet ({len(data)} bytes)")
    request_id, packet_type = struct.unpack_from("<ii", data)
    body = data[8:]
    if body.endswith(b"\x00\x00"):
        body = body[:-2]
    else:
        body = body.rstrip(b"\x00")
    return Packet(request_id, packet_type, body.decode("utf-8", errors="replace"))


async def read_packet(reader: asyncio.StreamReader) -> Packet:
    (length,) = struct.unpack("<i", await reader.readexactly(4))
    if length < MIN_PACKET_LENGTH or length > MAX_PACKET_LENGTH:
        raise RconProtocolError(f"invalid packet length {length}")
    return decode_packet(await reader.readexactly(length))


class RconConnection:
    """One authenticated TCP connection. Not safe for concurrent use."""

    def __init__(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter, timeout: float) -> None:
        self._reader = reader
        self._writer = writer
        self._timeout = timeout
        self._next_id = 1

    @classmethod
    async def open(cls, host: str, port: int, password: str, timeout: float = 5.0) -> RconConnection:
        try:
            reader, writer = await asyncio.wait_for(asyncio.open_connection(host, port), timeout)
        except (OSError, asyncio.TimeoutError) as exc:
            raise RconConnectionError(f"cannot reach {host}:{port}: {exc}") from exc

        conn = cls(reader, writer, timeout)
        try:
            await conn._authenticate(password)
        except BaseException:
            await conn.close()
            raise
        return conn

    def _allocate_id(self) -> int:
        request_id = self._next_id
        self._next_id = self._next_id + 1 if self._next_id < 2**31 - 1 else 1
        return request_id

    async def _authenticate(self, password: str) -> None:
        request_id = self._allocate_id()
        try:
            self._writer.write(encode_packet(request_id, SERVERDATA_AUTH, password))
            await self._writer.drain()
            while True:
                packet = await asyncio.wait_for(read_packet(self._reader), self._timeout)
                # Source servers send an empty RESPONSE_VALUE ahead of the auth result
                if packet.type == SERVERDATA_AUTH_RESPONSE:
                    break
        except (OSError, asyncio.IncompleteReadError, asyncio.TimeoutError, RconProtocolError) as exc:
            raise RconConnectionError(f"authentication exchange failed: {exc}") from exc
        if packet.request_id == AUTH_FAILED_ID:
            raise RconAuthError("RCON authentication failed (wrong password?)")

    async def execute(self, command: str) -> str:
        """Write one command and read exactly one response packet.

        Transport problems surface as OSError, IncompleteReadError or RconProtocolError.
        """
        try:
            encoded = command.encode("utf-8")
        except UnicodeEncodeError as exc:
            raise ValidationError(f"command is not valid UTF-8: {exc.reason}") from exc
        if len(encoded) > 1446:
            raise ValidationError("command too long")
        self._writer.write(encode_packet(self._allocate_id(), SERVERDATA_EXECCOMMAND, command))
        await self._writer.drain()
        packet = await asyncio.wait_for(read_packet(self._reader), self._timeout)
        return packet.body

    async def close(self) -> None:
        self._writer.close()
        try:
            await self._writer.wait_closed()
        except OSError:
            pass
