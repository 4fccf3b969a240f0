"""Console response parsing.

Classification is table-driven: each command family has a ResponseRule.
Failure patterns win over success patterns, and text matching neither is
reported as UNKNOWN rather than guessed to be a success.
"""

from __future__ import annotations

import enum
import re
from dataclasses import dataclass, field

# Paper and Spigot colour/format codes
_FORMAT_CODES = re.compile(r"§[0-9a-fk-orA-FK-OR]")

_PLAYERS_MAX_OF = re.compile(r"There are (\d+) of a max of (\d+) players online", re.I)
_PLAYERS_SLASH = re.compile(r"There are (\d+)/(\d+) players online", re.I)
_WHITELIST_STATE = re.compile(r"Whitelist is (?:now )?(?:turned )?(on|off|enabled|disabled)", re.I)
_WHITELIST_NAMES = re.compile(r"There are (\d+) whitelisted players?(?:\(s\))?:\s*(.*)", re.I | re.S)
_SEED = re.compile(r"Seed:\s*\[?(-?\d+)\]?", re.I)
_TIME = re.compile(r"time is (\d+)", re.I)
_DIFFICULTY = re.compile(r"difficulty is (\w+)", re.I)
_BANNED_BY = re.compile(r"^(\S+) was banned by", re.I)


class Outcome(str, enum.Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class CommandResult:
    outcome: Outcome
    message: str

    @property
    def success(self) -> bool:
        return self.outcome is Outcome.SUCCESS


@dataclass(frozen=True)
class PlayerList:
    online: int = 0
    max: int = 0
    players: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class Whitelist:
    enabled: bool = True
    players: list[str] = field(default_factory=list)


COMMON_FAILURES = (
    r"unknown or incomplete command",
    r"unknown command",
    r"incorrect argument",
    r"you do not have permission",
    r"an unexpected error occurred",
)


@dataclass(frozen=True)
class ResponseRule:
    success_patterns: tuple[str, ...] = ()
    failure_patterns: tuple[str, ...] = ()
    empty_is_success: bool = False

    def classify(self, response: str) -> CommandResult:
        text = clean(response)
        if not text:
            return CommandResult(Outcome.SUCCESS if self.empty_is_success else Outcome.UNKNOWN, text)
        for pattern in self.failure_patterns + COMMON_FAILURES:
            if re.search(pattern, text, re.I):
                return CommandResult(Outcome.FAILURE, text)
        for pattern in self.success_patterns:
            if re.search(pattern, text, re.I):
                return CommandResult(Outcome.SUCCESS, text)
        return CommandResult(Outcome.UNKNOWN, text)


_NO_PLAYER = r"no player was found"
_NOTHING_CHANGED = r"nothing changed"

RULES: dict[str, ResponseRule] = {
    "kick": ResponseRule((r"^kicked ",), (_NO_PLAYER,)),
    "ban": ResponseRule((r"^banned ",), (_NOTHING_CHANGED, r"does not exist")),
    "pardon": ResponseRule((r"^unbanned ",), (_NOTHING_CHANGED,)),
    "whitelist_add": ResponseRule(
        (r"^added .* to the whitelist",),
        (r"already whitelisted", r"does not exist"),
    ),
    "whitelist_remove": ResponseRule(
        (r"^removed .* from the whitelist",),
        (r"not whitelisted", r"does not exist"),
    ),
    "whitelist_on": ResponseRule((r"whitelist is now turned on",), (r"already turned on",)),
    "whitelist_off": ResponseRule((r"whitelist is now turned off",), (r"already turned off",)),
    "whitelist_reload": ResponseRule((r"reloaded the whitelist",)),
    "op": ResponseRule((r"^made .* a server operator",), (_NOTHING_CHANGED, r"does not exist")),
    "deop": ResponseRule((r"^made .* no longer a server operator",), (_NOTHING_CHANGED,)),
    "say": ResponseRule(empty_is_success=True),
    "tell": ResponseRule((r"^you whisper to ",), (_NO_PLAYER,), empty_is_success=True),
    "save_all": ResponseRule((r"saved the game", r"saving the game"), (r"saving failed",)),
    "save_off": ResponseRule((r"saving is now disabled",), (r"already turned off",)),
    "save_on": ResponseRule((r"saving is now enabled",), (r"already turned on",)),
    "set_difficulty": ResponseRule((r"difficulty has been set to",), (r"did not change",)),
    "set_gamemode": ResponseRule((r"game mode to",), (_NO_PLAYER,)),
    "teleport": ResponseRule((r"^teleported ",), (_NO_PLAYER, r"no entity was found")),
    "give": ResponseRule((r"^gave ",), (_NO_PLAYER, r"unknown item")),
    "set_time": ResponseRule((r"set the time to",)),
    "set_weather": ResponseRule((r"set the weather to", r"changing to .* weather")),
}

GENERIC_RULE = ResponseRule(
    success_patterns=(
        r"\badded\b", r"\bremoved\b", r"\bmade\b", r"\bset\b", r"\bgave\b",
        r"\bteleported\b", r"\bkicked\b", r"\bbanned\b", r"\bunbanned\b",
        r"\benabled\b", r"\bdisabled\b", r"\bsaved\b", r"\breloaded\b",
    ),
    failure_patterns=(
        _NO_PLAYER, r"player not found", r"does not exist", r"could not",
        r"cannot", r"failed", r"\berror\b", r"invalid", r"not allowed",
        r"no targets matched", _NOTHING_CHANGED,
    ),
)


def clean(response: str | None) -> str:
    return _FORMAT_CODES.sub("", response or "").strip()


def classify(family: str, response: str) -> CommandResult:
    return RULES.get(family, GENERIC_RULE).classify(response)


def _split_names(text: str) -> list[str]:
    return [name.strip() for name in re.split(r"[\n,]+", text) if name.strip()]


def parse_player_list(response: str) -> PlayerList:
    """Handles both "X of a max of Y" (vanilla) and "X/Y" (Paper) formats."""
    text = clean(response)
    match = _PLAYERS_MAX_OF.search(text) or _PLAYERS_SLASH.search(text)
    if not match:
        return PlayerList()
    online, max_players = int(match.group(1)), int(match.group(2))
    players: list[str] = []
    _, sep, tail = text.partition(":")
    if sep and online > 0:
        players = _split_names(tail)
    return PlayerList(online, max_players, players)


def parse_whitelist(response: str) -> Whitelist:
    text = clean(response)
    state = _WHITELIST_STATE.search(text)
    enabled = state.group(1).lower() in ("on", "enabled") if state else True
    if "no whitelisted players" in text.lower():
        return Whitelist(enabled, [])
    match = _WHITELIST_NAMES.search(text)
    if match:
        return Whitelist(enabled, _split_names(match.group(2)))
    _, sep, tail = text.rpartition(":")
    return Whitelist(enabled, _split_names(tail) if sep else [])


def parse_op_list(response: str) -> list[str]:
    text = clean(response)
    lowered = text.lower()
    if not text or "no ops" in lowered or "there are 0" in lowered or "unknown" in lowered:
        return []
    _, sep, tail = text.partition(":")
    if sep:
        return _split_names(tail)
    return _split_names(text)


def parse_ban_list(response: str) -> list[str]:
    """Entries look like "bob was banned by Server: Banned by an operator."."""
    text = clean(response)
    if not text or re.search(r"there are no bans|there are 0 ", text, re.I):
        return []
    header, sep, body = text.partition(":")
    if not sep or not header.lower().startswith("there are"):
        body = text
    names = []
    for line in body.splitlines() or [body]:
        line = line.strip()
        if not line:
            continue
        match = _BANNED_BY.match(line)
        if match:
            names.append(match.group(1))
        else:
            names.extend(n for n in _split_names(line) if not n.lower().startswith("there are"))
    return names


def parse_seed(response: str) -> str:
    match = _SEED.search(clean(response))
    return match.group(1) if match else ""


def parse_time(response: str) -> int | None:
    match = _TIME.search(clean(response))
    return int(match.group(1)) if match else None


def parse_difficulty(response: str) -> str | None:
    match = _DIFFICULTY.search(clean(response))
    return match.group(1).lower() if match else None
