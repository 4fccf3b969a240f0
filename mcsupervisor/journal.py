"""Activity journal: a JSON-lines record of what happened to the server.

Entries are built from the context's events. Each one is written as a single
JSON object per line to a size-rotated file, and the newest ``max_entries`` are
kept in memory to answer queries.
"""

from __future__ import annotations

import json
import logging
import re
from collections import deque
from dataclasses import asdict, is_dataclass
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import TYPE_CHECKING, Any

from .events import EventEmitter, Subscription

if TYPE_CHECKING:
    from .config import SupervisorConfig

logger = logging.getLogger("mcsupervisor.journal")

MAX_COMMAND_CHARS = 100

# event name → entry type, payload copied as-is
FORWARDED_EVENTS = {
    "rcon-connected": "rcon_connect",
    "rcon-disconnected": "rcon_disconnect",
    "backup-start": "backup_start",
    "backup-complete": "backup_complete",
    "backup-failed": "backup_failed",
    "restore-start": "restore_start",
    "restore-complete": "restore_complete",
    "restore-failed": "restore_failed",
}

PLAYER_ACTIONS = {
    "kick": "player_kick",
    "ban": "player_ban",
    "pardon": "player_pardon",
    "whitelist_add": "whitelist_add",
    "whitelist_remove": "whitelist_remove",
    "op": "op_add",
    "deop": "op_remove",
}

_PLAYER_JOINED = re.compile(r"^(\w{3,16}) joined the game$")
_PLAYER_LEFT = re.compile(r"^(\w{3,16}) left the game$")


def _payload(value: Any) -> dict[str, Any]:
    if is_dataclass(value) and not isinstance(value, type):
        data = asdict(value)
    elif isinstance(value, BaseException):
        data = {"error": str(value), "error_type": type(value).__name__}
    elif isinstance(value, dict):
        data = dict(value)
    elif value is None:
        data = {}
    else:
        data = {"value": value}
    data.pop("type", None)
    data.pop("timestamp", None)
    return data


def _as_utc(when: datetime) -> datetime:
    return when.replace(tzinfo=timezone.utc) if when.tzinfo is None else when


class ActivityJournal:
    """Server activity log with recent/by-type/since queries.

    Without a ``path`` the journal is memory-only.
    """

    def __init__(
        self,
        path: str | Path | None = None,
        max_entries: int = 1000,
        max_bytes: int = 1_000_000,
        backup_count: int = 3,
    ) -> None:
        self.path = Path(path) if path else None
        self._entries: deque[dict[str, Any]] = deque(maxlen=max(1, max_entries))
        self._subscriptions: list[Subscription] = []
        self._server_state: str | None = None
        self._handler: RotatingFileHandler | None = None
        if self.path is not None:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._load(self.path)
            self._handler = RotatingFileHandler(
                self.path, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8",
            )
            self._handler.setFormatter(logging.Formatter("%(message)s"))

    @classmethod
    def from_config(cls, cfg: SupervisorConfig) -> ActivityJournal:
        path = Path(cfg.log_dir) / cfg.journal_file if cfg.journal_file else None
        return cls(path, cfg.journal_max_entries, cfg.journal_max_bytes, cfg.journal_backup_count)

    def _load(self, path: Path) -> None:
        if not path.exists():
            return
        skipped = 0
        with open(path, "r", encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    entry = json.loads(line)
                except json.JSONDecodeError:
                    skipped += 1
                    continue
                if isinstance(entry, dict) and "type" in entry and "timestamp" in entry:
                    self._entries.append(entry)
        if skipped:
            logger.warning("Skipped %d unreadable line(s) in %s", skipped, path)
        logger.debug("Loaded %d journal entries from %s", len(self._entries), path)

    # -- writing --------------------------------------------------------------

    def record(self, kind: str, **data: Any) -> dict[str, Any]:
        entry = {"timestamp": datetime.now(timezone.utc).isoformat(), "type": kind, **data}
        self._entries.append(entry)
        if self._handler is not None:
            line = json.dumps(entry, default=str)
            self._handler.handle(logging.makeLogRecord({"msg": line, "levelno": logging.INFO}))
        return entry

    def clear(self) -> None:
        self._entries.clear()
        if self._handler is not None and self.path is not None:
            self._handler.close()
            self.path.write_text("", encoding="utf-8")

    # -- queries (newest first) -----------------------------------------------

    def recent(self, count: int = 50) -> list[dict[str, Any]]:
        if count <= 0:
            return []
        return list(reversed(self._entries))[:count]

    def by_type(self, kind: str, count: int = 50) -> list[dict[str, Any]]:
        return [e for e in reversed(self._entries) if e["type"] == kind][:max(count, 0)]

    def since(self, when: datetime) -> list[dict[str, Any]]:
        """Entries strictly after ``when``; a naive ``when`` is taken as UTC."""
        when = _as_utc(when)
        out = []
        for entry in reversed(self._entries):
            try:
                stamp = _as_utc(datetime.fromisoformat(entry["timestamp"]))
            except (TypeError, ValueError):
                continue
            if stamp > when:
                out.append(entry)
        return out

    # -- event wiring ---------------------------------------------------------

    def attach(self, events: EventEmitter) -> ActivityJournal:
        self.detach()
        for event, kind in FORWARDED_EVENTS.items():
            self._subscriptions.append(
                events.subscribe(event, lambda payload, kind=kind: self.record(kind, **_payload(payload)))
            )
        self._subscriptions += [
            events.subscribe("server-state", self._on_server_state),
            events.subscribe("readiness-progress", self._on_readiness),
            events.subscribe("rcon-command", self._on_command),
            events.subscribe("log", self._on_log),
        ]
        return self

    def detach(self) -> None:
        for sub in self._subscriptions:
            sub.dispose()
        self._subscriptions = []

    def close(self) -> None:
        self.detach()
        if self._handler is not None:
            self._handler.close()
            self._handler = None

    def _on_server_state(self, state: Any) -> None:
        value = getattr(state, "value", str(state))
        previous, self._server_state = self._server_state, value
        if value == "starting":
            kind = "server_start"
        elif value == "stopping":
            kind = "server_stop"
        elif value == "stopped" and previous == "running":
            kind = "server_crash"  # stopped without a stop request
        else:
            kind = "server_state"
        self.record(kind, state=value, previous=previous)

    def _on_readiness(self, progress: Any) -> None:
        if getattr(progress, "phase", None) == "ready":
            self.record("server_ready", elapsed_ms=progress.elapsed_ms)

    def _on_command(self, payload: dict[str, Any]) -> None:
        family = payload.get("family")
        self.record(
            PLAYER_ACTIONS.get(family, "rcon_command"),
            command=str(payload.get("command", ""))[:MAX_COMMAND_CHARS],
            outcome=payload.get("outcome"),
        )

    def _on_log(self, entry: Any) -> None:
        message = getattr(entry, "message", "")
        joined = _PLAYER_JOINED.match(message)
        if joined:
            self.record("player_join", player=joined.group(1))
            return
        left = _PLAYER_LEFT.match(message)
        if left:
            self.record("player_leave", player=left.group(1))
