"""Tests for the status endpoint and logging setup."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from unittest.mock import AsyncMock, patch

import pytest
from aiohttp.test_utils import TestClient, TestServer

from mcsupervisor.context import SupervisorContext
from mcsupervisor.daemon import bring_up, create_app, setup_logging, supervise
from mcsupervisor.errors import BackupInProgress, GatewayError, ReadinessTimeout
from mcsupervisor.gateway.base import WorkerResult
from mcsupervisor.supervisor import ServerLifecycleState, ServerSupervisor

STATS = {
    "cpu_stats": {"cpu_usage": {"total_usage": 1200, "percpu_usage": [1, 1]}, "system_cpu_usage": 2000},
    "precpu_stats": {"cpu_usage": {"total_usage": 1000}, "system_cpu_usage": 1000},
    "memory_stats": {"usage": 2048, "limit": 4096, "stats": {}},
    "networks": {"eth0": {"rx_bytes": 10, "tx_bytes": 20}},
    "blkio_stats": {},
    "pids_stats": {"current": 42},
}


@pytest.fixture
def supervisor(context) -> ServerSupervisor:
    return ServerSupervisor(context)


@pytest.mark.asyncio
async def test_status_reports_components(supervisor, config):
    app = create_app(supervisor, config)
    with patch("mcsupervisor.readiness.checker.probe_port", AsyncMock(return_value=False)):
        async with TestClient(TestServer(app)) as client:
            resp = await client.get("/status")
            assert resp.status == 200
            data = await resp.json()
    assert data["state"] == "stopped"
    assert data["rcon"] is None
    assert data["readiness"]["container_running"] is True
    assert data["readiness"]["fully_ready"] is False
    assert data["backup_running"] is False


@pytest.mark.asyncio
async def test_stats_endpoint(supervisor, config, gateway):
    gateway.stats = [STATS]
    async with TestClient(TestServer(create_app(supervisor, config))) as client:
        resp = await client.get("/stats")
        data = await resp.json()
    assert resp.status == 200
    assert data["cpu_percent"] == 40.0
    assert data["memory_percent"] == 50.0
    assert data["process_count"] == 42


@pytest.mark.asyncio
async def test_stats_unavailable_is_503(supervisor, config, gateway):
    gateway.stats = [GatewayError("container gone")]
    async with TestClient(TestServer(create_app(supervisor, config))) as client:
        resp = await client.get("/stats")
    assert resp.status == 503


@pytest.mark.asyncio
async def test_logs_endpoint_validates_n(supervisor, config, gateway):
    gateway.logs = b"[Server thread/INFO]: hello\n"
    async with TestClient(TestServer(create_app(supervisor, config))) as client:
        bad = await client.get("/logs?n=lots")
        good = await client.get("/logs?n=5")
        entries = await good.json()
    assert bad.status == 400
    assert [e["message"] for e in entries] == ["hello"]


@pytest.mark.asyncio
async def test_backup_requires_token_when_configured(context, config):
    cfg = replace(config, status_token="s3cret")
    supervisor = ServerSupervisor(context)
    async with TestClient(TestServer(create_app(supervisor, cfg))) as client:
        denied = await client.post("/backups", json={"name": "x"})
        wrong = await client.post("/backups", json={}, headers={"Authorization": "Bearer nope"})
    assert denied.status == 401
    assert wrong.status == 401


@pytest.mark.asyncio
async def test_backup_create_and_list(supervisor, config, gateway):
    gateway.worker_results = [WorkerResult(0, "321\n"), WorkerResult(0, "")]
    async with TestClient(TestServer(create_app(supervisor, config))) as client:
        created = await client.post("/backups", json={"name": "api"})
        body = await created.json()
        bad = await client.post("/backups", json={"name": "no spaces allowed"})
        not_object = await client.post("/backups", json=["api"])
        listed = await client.get("/backups")
    assert created.status == 201
    assert body["size_bytes"] == 321
    assert body["filename"].startswith("api_")
    assert bad.status == 400
    assert not_object.status == 400
    assert listed.status == 200


@pytest.mark.asyncio
async def test_backup_with_malformed_json_is_400(supervisor, config, gateway):
    async with TestClient(TestServer(create_app(supervisor, config))) as client:
        resp = await client.post("/backups", data="{bad", headers={"Content-Type": "application/json"})
        body = await resp.json()
    assert resp.status == 400
    assert "JSON" in body["error"]
    assert gateway.worker_calls == []


@pytest.mark.asyncio
async def test_backup_conflict_is_409(supervisor, config):
    supervisor.backups.create_backup = AsyncMock(side_effect=BackupInProgress())
    async with TestClient(TestServer(create_app(supervisor, config))) as client:
        resp = await client.post("/backups", json={})
    assert resp.status == 409


@pytest.mark.asyncio
async def test_events_endpoint_filters_the_journal(supervisor, config):
    old = supervisor.journal.record("server_start")
    old["timestamp"] = "2024-01-01T00:00:00+00:00"
    supervisor.context.events.emit("backup-start", {"type": "backup", "filename": "a.tar.gz"})
    supervisor.journal.record("rcon_command", command="list")

    async with TestClient(TestServer(create_app(supervisor, config))) as client:
        everything = await (await client.get("/events")).json()
        latest = await (await client.get("/events", params={"n": "1"})).json()
        backups = await (await client.get("/events", params={"type": "backup_start"})).json()
        recent = await (await client.get("/events", params={"since": "2024-06-01T00:00:00Z"})).json()
        bad = await client.get("/events", params={"since": "yesterday"})

    assert [e["type"] for e in everything] == ["rcon_command", "backup_start", "server_start"]
    assert [e["type"] for e in latest] == ["rcon_command"]
    assert backups[0]["filename"] == "a.tar.gz"
    assert "server_start" not in [e["type"] for e in recent]
    assert bad.status == 400


@pytest.mark.asyncio
async def test_bring_up_adopts_running_server(context, gateway):
    gateway.hold_log_stream_open = True
    gateway.stats = [STATS]
    supervisor = ServerSupervisor(context)
    supervisor.wait_until_ready = AsyncMock()

    await bring_up(supervisor)

    assert gateway.start_calls == 0
    assert supervisor.state is ServerLifecycleState.RUNNING
    assert supervisor.logs.is_following
    assert supervisor.telemetry.is_polling
    await supervisor.close()
    assert not supervisor.logs.is_following
    assert not supervisor.telemetry.is_polling


@pytest.mark.asyncio
async def test_failed_startup_is_logged_and_stops_the_daemon(supervisor, caplog):
    supervisor.close = AsyncMock()
    stop_event = asyncio.Event()
    with patch("mcsupervisor.daemon.bring_up", AsyncMock(side_effect=ReadinessTimeout(1000))):
        with caplog.at_level(logging.ERROR, logger="mcsupervisor.daemon"):
            code = await asyncio.wait_for(supervise(supervisor, stop_event), timeout=1.0)

    assert code == 1
    assert stop_event.is_set()
    assert "Startup failed: Server not ready after 1000ms" in caplog.text
    supervisor.close.assert_awaited_once()


@pytest.mark.asyncio
async def test_shutdown_signal_cancels_pending_startup(supervisor):
    supervisor.close = AsyncMock()
    started = asyncio.Event()

    async def slow_bring_up(_supervisor):
        started.set()
        await asyncio.sleep(60)

    stop_event = asyncio.Event()
    with patch("mcsupervisor.daemon.bring_up", slow_bring_up):
        task = asyncio.create_task(supervise(supervisor, stop_event))
        await started.wait()
        stop_event.set()
        code = await asyncio.wait_for(task, timeout=1.0)

    assert code == 0
    supervisor.close.assert_awaited_once()

def test_setup_logging_writes_file(config, tmp_path):
    cfg = replace(config, log_dir=str(tmp_path / "logs"), log_level="debug")
    root = logging.getLogger("mcsupervisor")
    before = list(root.handlers)
    try:
        setup_logging(cfg)
        assert root.level == logging.DEBUG
        logging.getLogger("mcsupervisor.test").info("hello")
        for handler in root.handlers:
            handler.flush()
        assert "hello" in (tmp_path / "logs" / "supervisor.log").read_text()
    finally:
        for handler in root.handlers[len(before):]:
            root.removeHandler(handler)
            handler.close()
        root.setLevel(logging.NOTSET)
