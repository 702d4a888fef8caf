"""
TeamSpeak 3 Server Query client package.
"""

from .client import ServerQueryBot, SessionState, ping_handler
from .config import BotConfig
from .protocol import Message, ServerResponse
from .shutdown import ShutdownCoordinator
from .exceptions import (
    QueryError, ConfigurationError, ConnectionError, AuthenticationError,
    CommandRejectedError, InvalidResponseError, ProtocolError, SessionStateError
)

__all__ = [
    "ServerQueryBot", "SessionState", "ping_handler", "BotConfig", "Message",
    "ServerResponse", "ShutdownCoordinator", "QueryError", "ConfigurationError",
    "ConnectionError", "AuthenticationError", "CommandRejectedError",
    "InvalidResponseError", "ProtocolError", "SessionStateError",
]
