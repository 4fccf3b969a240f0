"""
Shared pytest fixtures for mcsupervisor tests, built on the fakes in fakes.py.
"""

from __future__ import annotations

import asyncio
from typing import Any, Callable

import pytest
import pytest_asyncio

from fakes import FakeGateway
from mcsupervisor.config import SupervisorConfig
from mcsupervisor.context import SupervisorContext
from mcsupervisor.rcon.protocol import (
    SERVERDATA_AUTH,
    SERVERDATA_AUTH_RESPONSE,
    SERVERDATA_RESPONSE_VALUE,
    encode_packet,
    read_packet,
)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def config() -> SupervisorConfig:
    return SupervisorConfig(
        container_name="mc-test",
        host="127.0.0.1",
        rcon_password="secret",
        rcon_timeout_s=1.0,
        heartbeat_interval_s=0,
        readiness_timeout_s=1.0,
        readiness_poll_s=0.01,
        probe_timeout_s=0.2,
        stats_interval_s=0.01,
        log_buffer_size=500,
        worker_timeout_s=30.0,
        log_dir="logs",
        journal_file="",
    )


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def context(config, gateway) -> SupervisorContext:
    return SupervisorContext(config=config, gateway=gateway)


@pytest.fixture
def collect(context) -> Callable[[str], list[Any]]:
    """Subscribe to an event on the context and return the list it fills."""
    def _collect(event: str) -> list[Any]:
        seen: list[Any] = []
        context.events.subscribe(event, seen.append)
        return seen
    return _collect


@pytest_asyncio.fixture
async def rcon_server():
    """Minimal Source RCON server on an ephemeral port. Password: ``secret``."""
    received: list[str] = []

    def respond(command: str) -> str:
        if command == "list":
            return "There are 0 of a max of 20 players online: "
        return f"echo: {command}"

    async def handle(reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        try:
            while True:
                packet = await read_packet(reader)
                if packet.type == SERVERDATA_AUTH:
                    ok = packet.body == "secret"
                    writer.write(encode_packet(packet.request_id, SERVERDATA_RESPONSE_VALUE, ""))
                    writer.write(encode_packet(packet.request_id if ok else -1, SERVERDATA_AUTH_RESPONSE, ""))
                else:
                    received.append(packet.body)
                    writer.write(encode_packet(packet.request_id, SERVERDATA_RESPONSE_VALUE, respond(packet.body)))
                await writer.drain()
        except (asyncio.IncompleteReadError, ConnectionError):
            pass
        finally:
            writer.close()

    server = await asyncio.start_server(handle, "127.0.0.1", 0)
    port = server.sockets[0].getsockname()[1]
    yield {"host": "127.0.0.1", "port": port, "received": received, "server": server}
    server.close()
    await server.wait_closed()
