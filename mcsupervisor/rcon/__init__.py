"""RCON client: wire protocol, resilient session and typed commands."""
from .commands import RconCommands
from .parser import CommandResult, Outcome, PlayerList, ResponseRule, Whitelist
from .protocol import RconConnection
from .session import ConnectionState, RconSession, SessionStatus

__all__ = [
    "CommandResult",
    "ConnectionState",
    "Outcome",
    "PlayerList",
    "RconCommands",
    "RconConnection",
    "RconSession",
    "ResponseRule",
    "SessionStatus",
    "Whitelist",
]
