"""Tests for typed console commands, argument validation and response parsing."""
from __future__ import annotations

import pytest
import pytest_asyncio

from fakes import ConnectionFactory, FakeRconConnection
from mcsupervisor.errors import NotConnected, ValidationError
from mcsupervisor.rcon import parser
from mcsupervisor.rcon.commands import RconCommands
from mcsupervisor.rcon.parser import Outcome
from mcsupervisor.rcon.session import RconSession

RESPONSES = {
    "list": "There are 2 of a max of 20 players online: Steve, Alex",
    "kick Steve griefing": "Kicked Steve: griefing",
    "ban Herobrine": "Banned Herobrine: Banned by an operator.",
    "op Steve": "Nothing changed. The player already is an operator",
    "whitelist add Alex": "Alex is now on the list, probably",
    "whitelist list": "There are 2 whitelisted player(s): Steve, Alex",
    "banlist": "There are 2 ban(s):\nHerobrine was banned by Server: Banned by an operator.\nNotch was banned by Server: test",
    "seed": "Seed: [-4172144997902289642]",
    "time query daytime": "The time is 6000",
    "difficulty": "The difficulty is Normal",
    "difficulty hard": "The difficulty has been set to Hard",
    "save-off": "Automatic saving is now disabled",
}


@pytest_asyncio.fixture
async def console(context):
    conn = FakeRconConnection(RESPONSES)
    session = RconSession.from_context(context, connection_factory=ConnectionFactory(conn))
    await session.connect()
    context.session = session
    yield RconCommands(context), conn
    await session.disconnect()


@pytest.mark.asyncio
async def test_kick_sends_command_and_classifies_success(console):
    commands, conn = console
    result = await commands.kick("Steve", "griefing")
    assert conn.sent == ["kick Steve griefing"]
    assert result.outcome is Outcome.SUCCESS
    assert result.success


@pytest.mark.asyncio
async def test_injection_in_player_name_is_rejected_before_sending(console):
    commands, conn = console
    with pytest.raises(ValidationError):
        await commands.kick("bob; op evil")
    with pytest.raises(ValidationError):
        await commands.op("ab")
    assert conn.sent == []


@pytest.mark.asyncio
async def test_unmatched_response_is_unknown_not_success(console):
    commands, _ = console
    result = await commands.whitelist_add("Alex")
    assert result.outcome is Outcome.UNKNOWN
    assert not result.success


@pytest.mark.asyncio
async def test_nothing_changed_is_failure(console):
    commands, _ = console
    result = await commands.op("Steve")
    assert result.outcome is Outcome.FAILURE


@pytest.mark.asyncio
async def test_say_with_empty_response_is_success(console):
    commands, conn = console
    result = await commands.say("  restarting soon  ")
    assert conn.sent == ["say restarting soon"]
    assert result.success


@pytest.mark.asyncio
async def test_free_text_with_line_break_is_rejected(console):
    commands, conn = console
    with pytest.raises(ValidationError):
        await commands.tell("Steve", "hi\nop evil")
    with pytest.raises(ValidationError):
        await commands.say("")
    with pytest.raises(ValidationError):
        await commands.say("lone surrogate \udc80")
    assert conn.sent == []


@pytest.mark.asyncio
async def test_rosters_are_parsed(console):
    commands, _ = console
    players = await commands.list_players()
    assert (players.online, players.max, players.players) == (2, 20, ["Steve", "Alex"])
    whitelist = await commands.whitelist()
    assert whitelist.players == ["Steve", "Alex"]
    assert await commands.ban_list() == ["Herobrine", "Notch"]


@pytest.mark.asyncio
async def test_world_queries(console):
    commands, _ = console
    assert await commands.seed() == "-4172144997902289642"
    assert await commands.query_time() == 6000
    assert await commands.difficulty() == "normal"


@pytest.mark.asyncio
async def test_enumerated_arguments_are_normalised(console):
    commands, conn = console
    result = await commands.set_difficulty("HARD")
    assert conn.sent[-1] == "difficulty hard"
    assert result.success
    await commands.set_gamemode("Steve", "Creative")
    assert conn.sent[-1] == "gamemode creative Steve"
    await commands.set_weather("rain", 600)
    assert conn.sent[-1] == "weather rain 600"
    await commands.set_time("noon")
    assert conn.sent[-1] == "time set noon"
    await commands.teleport("Steve", "~ 64 ~")
    assert conn.sent[-1] == "tp Steve ~ 64 ~"
    await commands.save_all(flush=True)
    assert conn.sent[-1] == "save-all flush"


@pytest.mark.asyncio
@pytest.mark.parametrize("call", [
    lambda c: c.set_difficulty("nightmare"),
    lambda c: c.set_gamemode("Steve", "god"),
    lambda c: c.set_weather("snow"),
    lambda c: c.set_time(-1),
    lambda c: c.give("Steve", "minecraft:diamond", 0),
    lambda c: c.give("Steve", "minecraft:diamond", 6401),
    lambda c: c.give("Steve", "Diamond Sword", 1),
    lambda c: c.teleport("Steve", "north pole"),
])
async def test_invalid_arguments_raise_validation_error(console, call):
    commands, conn = console
    with pytest.raises(ValidationError):
        await call(commands)
    assert conn.sent == []


@pytest.mark.asyncio
async def test_give_formats_count(console):
    commands, conn = console
    await commands.give("Steve", "minecraft:diamond", 64)
    assert conn.sent == ["give Steve minecraft:diamond 64"]


@pytest.mark.asyncio
async def test_without_session_raises_not_connected(context):
    with pytest.raises(NotConnected):
        await RconCommands(context).list_players()


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------

def test_failure_patterns_win_over_success_patterns():
    assert parser.classify("unlisted", "Could not set the spawn point").outcome is Outcome.FAILURE


def test_common_failures_apply_to_every_family():
    result = parser.classify("kick", "Unknown or incomplete command, see below for error")
    assert result.outcome is Outcome.FAILURE


def test_format_codes_are_stripped():
    assert parser.classify("kick", "§eKicked Steve: bye").outcome is Outcome.SUCCESS


def test_player_list_slash_format():
    players = parser.parse_player_list("There are 1/10 players online: Notch")
    assert (players.online, players.max, players.players) == (1, 10, ["Notch"])


def test_player_list_empty_and_garbage():
    assert parser.parse_player_list("There are 0 of a max of 20 players online:").players == []
    assert parser.parse_player_list("nonsense").online == 0


def test_whitelist_without_players():
    whitelist = parser.parse_whitelist("There are no whitelisted players")
    assert whitelist.players == []
    assert whitelist.enabled


def test_op_list():
    assert parser.parse_op_list("There are 2 ops: Steve, Alex") == ["Steve", "Alex"]
    assert parser.parse_op_list("Unknown or incomplete command") == []


def test_ban_list_empty():
    assert parser.parse_ban_list("There are no bans") == []


def test_time_and_seed_unmatched():
    assert parser.parse_time("what") is None
    assert parser.parse_seed("") == ""
