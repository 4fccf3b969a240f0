"""Supervisor daemon: logging, status endpoint and process entrypoint.

Usage::

    MC_RCON_PASSWORD=... python -m mcsupervisor.daemon
    MC_CONFIG=/etc/mcsupervisor.yaml python -m mcsupervisor.daemon
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import signal
import sys
from dataclasses import asdict
from datetime import datetime
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path
from typing import Any

from aiohttp import web

from .backup import BackupOrchestrator
from .config import SupervisorConfig
from .context import SupervisorContext
from .errors import BackupInProgress, SupervisorError, ValidationError
from .gateway import DockerGateway
from .journal import ActivityJournal
from .supervisor import ServerLifecycleState, ServerSupervisor

logger = logging.getLogger("mcsupervisor.daemon")

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
MAX_LOG_LINES = 1000


def setup_logging(cfg: SupervisorConfig) -> None:
    """Rotating file (one per day, keep N days) + console."""
    log_dir = Path(cfg.log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)

    root = logging.getLogger("mcsupervisor")
    root.setLevel(getattr(logging, cfg.log_level.upper(), logging.INFO))

    fh = TimedRotatingFileHandler(
        log_dir / "supervisor.log",
        when="midnight",
        backupCount=cfg.log_retention_days,
        utc=True,
    )
    fh.setFormatter(logging.Formatter(LOG_FORMAT))

    ch = logging.StreamHandler(sys.stdout)
    ch.setFormatter(logging.Formatter(LOG_FORMAT))

    root.addHandler(fh)
    root.addHandler(ch)


# ---------------------------------------------------------------------------
# Status endpoint
# ---------------------------------------------------------------------------

def _check_auth(request: web.Request, cfg: SupervisorConfig) -> bool:
    if not cfg.status_token:
        return True
    return request.headers.get("Authorization", "") == f"Bearer {cfg.status_token}"


async def handle_status(request: web.Request) -> web.Response:
    supervisor: ServerSupervisor = request.app["supervisor"]
    session = supervisor.context.session
    rcon: dict[str, Any] | None = None
    if session is not None:
        status = session.status()
        rcon = {"state": status.state.value, "queue_length": status.queue_length, "in_flight": status.in_flight}
    snapshot = await supervisor.readiness.check_status()
    return web.json_response({
        "state": supervisor.state.value,
        "readiness": asdict(snapshot),
        "rcon": rcon,
        "backup_running": supervisor.backups.is_running,
        "following_logs": supervisor.logs.is_following,
        "polling_stats": supervisor.telemetry.is_polling,
    })


async def handle_stats(request: web.Request) -> web.Response:
    supervisor: ServerSupervisor = request.app["supervisor"]
    try:
        sample = await supervisor.telemetry.get_stats()
    except SupervisorError as exc:
        return web.json_response({"error": str(exc)}, status=503)
    return web.json_response(sample.to_dict())


async def handle_logs(request: web.Request) -> web.Response:
    supervisor: ServerSupervisor = request.app["supervisor"]
    try:
        lines = int(request.query.get("n", "100"))
    except ValueError:
        return web.json_response({"error": "n must be an integer"}, status=400)
    lines = max(1, min(lines, MAX_LOG_LINES))
    try:
        entries = await supervisor.logs.get_snapshot(lines)
    except SupervisorError as exc:
        return web.json_response({"error": str(exc)}, status=503)
    return web.json_response([entry.to_dict() for entry in entries])


async def handle_backups_list(request: web.Request) -> web.Response:
    backups: BackupOrchestrator = request.app["supervisor"].backups
    try:
        records = await backups.list_backups()
    except SupervisorError as exc:
        return web.json_response({"error": str(exc)}, status=503)
    return web.json_response([record.to_dict() for record in records])


async def handle_backups_create(request: web.Request) -> web.Response:
    if not _check_auth(request, request.app["config"]):
        return web.json_response({"error": "unauthorized"}, status=401)
    backups: BackupOrchestrator = request.app["supervisor"].backups
    try:
        body = await request.json() if request.can_read_body else {}
    except json.JSONDecodeError:
        return web.json_response({"error": "body is not valid JSON"}, status=400)
    if not isinstance(body, dict):
        return web.json_response({"error": "expected a JSON object"}, status=400)
    try:
        result = await backups.create_backup(
            name=body.get("name", "backup"),
            stop_server=bool(body.get("stop_server", False)),
        )
    except BackupInProgress as exc:
        return web.json_response({"error": str(exc)}, status=409)
    except ValidationError as exc:
        return web.json_response({"error": str(exc)}, status=400)
    except SupervisorError as exc:
        logger.error("Backup via status endpoint failed: %s", exc)
        return web.json_response({"error": str(exc)}, status=500)
    return web.json_response(asdict(result), status=201)


async def handle_events(request: web.Request) -> web.Response:
    """Activity journal, newest first. Filters: ``type``, ``since`` (ISO 8601), ``n``."""
    journal: ActivityJournal = request.app["supervisor"].journal
    try:
        count = int(request.query.get("n", "50"))
    except ValueError:
        return web.json_response({"error": "n must be an integer"}, status=400)
    count = max(1, min(count, MAX_LOG_LINES))
    kind = request.query.get("type")
    since = request.query.get("since")
    if since:
        try:
            entries = journal.since(datetime.fromisoformat(since.replace("Z", "+00:00")))
        except ValueError:
            return web.json_response({"error": "since must be an ISO 8601 timestamp"}, status=400)
        if kind:
            entries = [e for e in entries if e["type"] == kind]
    elif kind:
        entries = journal.by_type(kind, count)
    else:
        entries = journal.recent(count)
    return web.json_response(entries[:count], dumps=lambda obj: json.dumps(obj, default=str))


def create_app(supervisor: ServerSupervisor, cfg: SupervisorConfig) -> web.Application:
    app = web.Application()
    app["supervisor"] = supervisor
    app["config"] = cfg
    app.router.add_get("/status", handle_status)
    app.router.add_get("/stats", handle_stats)
    app.router.add_get("/logs", handle_logs)
    app.router.add_get("/backups", handle_backups_list)
    app.router.add_post("/backups", handle_backups_create)
    app.router.add_get("/events", handle_events)
    return app


async def start_status_server(supervisor: ServerSupervisor, cfg: SupervisorConfig) -> web.AppRunner:
    runner = web.AppRunner(create_app(supervisor, cfg))
    await runner.setup()
    site = web.TCPSite(runner, cfg.status_host, cfg.status_port)
    await site.start()
    logger.info("Status endpoint listening on %s:%d", cfg.status_host, cfg.status_port)
    return runner


# ---------------------------------------------------------------------------
# Entrypoint
# ---------------------------------------------------------------------------

async def bring_up(supervisor: ServerSupervisor) -> None:
    """Adopt a running server or start one, then follow logs and poll stats."""
    if await supervisor.refresh_state() is not ServerLifecycleState.RUNNING:
        await supervisor.start()
    await supervisor.wait_until_ready()
    await supervisor.logs.start_following()
    await supervisor.telemetry.start_polling()


async def supervise(supervisor: ServerSupervisor, stop_event: asyncio.Event) -> int:
    """Run bring_up until ``stop_event``; a failed startup sets it. Returns the exit code."""
    failed = False

    def _startup_done(task: asyncio.Task[None]) -> None:
        nonlocal failed
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            failed = True
            logger.error("Startup failed: %s", exc, exc_info=exc)
            stop_event.set()

    startup = asyncio.create_task(bring_up(supervisor), name="startup")
    startup.add_done_callback(_startup_done)
    await stop_event.wait()

    if not startup.done():
        startup.cancel()
        try:
            await startup
        except asyncio.CancelledError:
            pass
    await supervisor.close()
    return 1 if failed else 0


async def main() -> int:
    config_path = os.environ.get("MC_CONFIG", "")
    if config_path and Path(config_path).exists():
        cfg = SupervisorConfig.from_yaml(config_path)
    else:
        cfg = SupervisorConfig.from_env()
    setup_logging(cfg)

    context = SupervisorContext(config=cfg, gateway=DockerGateway(cfg))
    supervisor = ServerSupervisor(context)
    runner = await start_status_server(supervisor, cfg)

    loop = asyncio.get_running_loop()
    stop_event = asyncio.Event()

    def _shutdown(sig: int) -> None:
        logger.info("Received signal %d, shutting down...", sig)
        stop_event.set()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, _shutdown, sig)

    try:
        return await supervise(supervisor, stop_event)
    finally:
        await runner.cleanup()


def run() -> None:
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
