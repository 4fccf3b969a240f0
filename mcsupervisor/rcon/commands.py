"""Typed console commands on top of the RCON session.

Arguments are validated before anything is queued so a name like
``"bob; op evil"`` never reaches the console.
"""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING

from ..errors import NotConnected, ValidationError
from . import parser
from .parser import CommandResult, PlayerList, Whitelist
from .session import ConnectionState, RconSession

if TYPE_CHECKING:
    from ..context import SupervisorContext

logger = logging.getLogger("mcsupervisor.rcon.commands")

PLAYER_NAME = re.compile(r"^[A-Za-z0-9_]{3,16}$")
ITEM_ID = re.compile(r"^[a-z0-9_.:-]+$")
COORDINATE = re.compile(r"^(?:[~^]|[~^]?-?\d+(?:\.\d+)?)$")

DIFFICULTIES = ("peaceful", "easy", "normal", "hard")
GAMEMODES = ("survival", "creative", "adventure", "spectator")
WEATHER = ("clear", "rain", "thunder")
TIME_KEYWORDS = ("day", "night", "noon", "midnight")
MAX_GIVE_COUNT = 6400


def validate_player(name: str) -> str:
    if not isinstance(name, str) or not PLAYER_NAME.match(name):
        raise ValidationError(f"invalid player name: {name!r}")
    return name


def validate_text(text: str, what: str = "text") -> str:
    if not isinstance(text, str) or any(c in text for c in "\r\n\x00"):
        raise ValidationError(f"{what} must be a single line")
    try:
        text.encode("utf-8")
    except UnicodeEncodeError as exc:
        raise ValidationError(f"{what} is not valid UTF-8") from exc
    return text.strip()


def validate_choice(value: str, choices: tuple[str, ...], what: str) -> str:
    lowered = str(value).lower()
    if lowered not in choices:
        raise ValidationError(f"{what} must be one of {', '.join(choices)} (got {value!r})")
    return lowered


def validate_time(value: int | str) -> str:
    if isinstance(value, bool):
        raise ValidationError(f"invalid time: {value!r}")
    if isinstance(value, int):
        if value < 0:
            raise ValidationError(f"time must be non-negative (got {value})")
        return str(value)
    text = str(value).strip().lower()
    if text.isdigit() or text in TIME_KEYWORDS:
        return text
    raise ValidationError(f"invalid time: {value!r}")


def validate_target(target: str) -> str:
    """A player name or three coordinates ("~ 64 ~", "10 70 -3")."""
    if isinstance(target, str) and PLAYER_NAME.match(target):
        return target
    parts = str(target).split()
    if len(parts) == 3 and all(COORDINATE.match(p) for p in parts):
        return " ".join(parts)
    raise ValidationError(f"invalid teleport target: {target!r}")


class RconCommands:
    """Resolves the live session from the context on every call."""

    def __init__(self, context: SupervisorContext) -> None:
        self._ctx = context

    def _session(self) -> RconSession:
        session = self._ctx.session
        if session is None or session.state is ConnectionState.DISCONNECTED:
            raise NotConnected()
        return session

    async def _run(self, family: str, command: str) -> CommandResult:
        response = await self._session().send(command)
        result = parser.classify(family, response)
        logger.debug("%s → %s: %r", command.split(" ", 1)[0], result.outcome.value, result.message)
        self._ctx.events.emit("rcon-command", {"family": family, "command": command, "outcome": result.outcome.value})
        return result

    async def raw(self, command: str) -> str:
        """Send a command verbatim and return the raw response text."""
        command = validate_text(command, "command")
        if not command:
            raise ValidationError("command must not be empty")
        response = await self._session().send(command)
        self._ctx.events.emit("rcon-command", {"family": "raw", "command": command, "outcome": None})
        return response

    # -- players ----------------------------------------------------------------

    async def list_players(self) -> PlayerList:
        return parser.parse_player_list(await self._session().send("list"))

    async def kick(self, player: str, reason: str = "") -> CommandResult:
        player, reason = validate_player(player), validate_text(reason, "reason")
        return await self._run("kick", f"kick {player} {reason}".rstrip())

    async def ban(self, player: str, reason: str = "") -> CommandResult:
        player, reason = validate_player(player), validate_text(reason, "reason")
        return await self._run("ban", f"ban {player} {reason}".rstrip())

    async def pardon(self, player: str) -> CommandResult:
        return await self._run("pardon", f"pardon {validate_player(player)}")

    async def ban_list(self) -> list[str]:
        return parser.parse_ban_list(await self._session().send("banlist"))

    # -- whitelist --------------------------------------------------------------

    async def whitelist(self) -> Whitelist:
        return parser.parse_whitelist(await self._session().send("whitelist list"))

    async def whitelist_add(self, player: str) -> CommandResult:
        return await self._run("whitelist_add", f"whitelist add {validate_player(player)}")

    async def whitelist_remove(self, player: str) -> CommandResult:
        return await self._run("whitelist_remove", f"whitelist remove {validate_player(player)}")

    async def whitelist_on(self) -> CommandResult:
        return await self._run("whitelist_on", "whitelist on")

    async def whitelist_off(self) -> CommandResult:
        return await self._run("whitelist_off", "whitelist off")

    async def whitelist_reload(self) -> CommandResult:
        return await self._run("whitelist_reload", "whitelist reload")

    # -- operators --------------------------------------------------------------

    async def ops(self) -> list[str]:
        # vanilla has no "op list"; Paper/Essentials answer it
        return parser.parse_op_list(await self._session().send("op list"))

    async def op(self, player: str) -> CommandResult:
        return await self._run("op", f"op {validate_player(player)}")

    async def deop(self, player: str) -> CommandResult:
        return await self._run("deop", f"deop {validate_player(player)}")

    # -- chat -------------------------------------------------------------------

    async def say(self, message: str) -> CommandResult:
        message = validate_text(message, "message")
        if not message:
            raise ValidationError("message must not be empty")
        return await self._run("say", f"say {message}")

    async def tell(self, player: str, message: str) -> CommandResult:
        player, message = validate_player(player), validate_text(message, "message")
        if not message:
            raise ValidationError("message must not be empty")
        return await self._run("tell", f"tell {player} {message}")

    # -- world ------------------------------------------------------------------

    async def save_all(self, flush: bool = False) -> CommandResult:
        return await self._run("save_all", "save-all flush" if flush else "save-all")

    async def save_off(self) -> CommandResult:
        return await self._run("save_off", "save-off")

    async def save_on(self) -> CommandResult:
        return await self._run("save_on", "save-on")

    async def difficulty(self) -> str | None:
        return parser.parse_difficulty(await self._session().send("difficulty"))

    async def set_difficulty(self, difficulty: str) -> CommandResult:
        difficulty = validate_choice(difficulty, DIFFICULTIES, "difficulty")
        return await self._run("set_difficulty", f"difficulty {difficulty}")

    async def set_gamemode(self, player: str, mode: str) -> CommandResult:
        player, mode = validate_player(player), validate_choice(mode, GAMEMODES, "gamemode")
        return await self._run("set_gamemode", f"gamemode {mode} {player}")

    async def teleport(self, player: str, target: str) -> CommandResult:
        player, target = validate_player(player), validate_target(target)
        return await self._run("teleport", f"tp {player} {target}")

    async def give(self, player: str, item: str, count: int = 1) -> CommandResult:
        player = validate_player(player)
        if not isinstance(item, str) or not ITEM_ID.match(item):
            raise ValidationError(f"invalid item id: {item!r}")
        if isinstance(count, bool) or not isinstance(count, int) or not 1 <= count <= MAX_GIVE_COUNT:
            raise ValidationError(f"count must be between 1 and {MAX_GIVE_COUNT} (got {count!r})")
        return await self._run("give", f"give {player} {item} {count}")

    async def query_time(self) -> int | None:
        return parser.parse_time(await self._session().send("time query daytime"))

    async def set_time(self, value: int | str) -> CommandResult:
        return await self._run("set_time", f"time set {validate_time(value)}")

    async def set_weather(self, kind: str, duration: int | None = None) -> CommandResult:
        kind = validate_choice(kind, WEATHER, "weather")
        if duration is None:
            return await self._run("set_weather", f"weather {kind}")
        if isinstance(duration, bool) or not isinstance(duration, int) or duration <= 0:
            raise ValidationError(f"duration must be a positive integer (got {duration!r})")
        return await self._run("set_weather", f"weather {kind} {duration}")

    async def seed(self) -> str:
        return parser.parse_seed(await self._session().send("seed"))
