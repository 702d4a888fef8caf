"""
Custom exceptions for the TeamSpeak 3 Server Query client.
"""


class QueryError(Exception):
    """Base exception for all Server Query related errors."""
    pass


class ConfigurationError(QueryError):
    """Raised when the bot configuration is missing required fields."""
    pass


class ConnectionError(QueryError):
    """Raised when connection issues occur."""
    pass


class NotConnectedError(ConnectionError):
    """Raised when reading or writing before a server has been connected to."""
    pass


class ServerDisconnectionError(ConnectionError):
    """Raised when server disconnects unexpectedly."""
    pass


class TimeoutError(ConnectionError):
    """Raised when the read deadline expires before a full line arrives."""
    pass


class ProtocolError(QueryError):
    """Raised when protocol violations occur."""
    pass


class InvalidResponseError(ProtocolError):
    """Raised when the server returned an unexpected or undecodable response."""

    def __init__(self, message: str = "the server returned an unexpected response", raw: str = ""):
        if raw:
            message = f"{message}: {raw}"
        super().__init__(message)
        self.raw = raw


class CommandRejectedError(ProtocolError):
    """Raised when the server acknowledges a command with a non-ok message."""

    def __init__(self, server_message: str, error_id: str = ""):
        super().__init__(f"server returned an error code: {server_message}")
        self.server_message = server_message
        self.error_id = error_id


class AuthenticationError(CommandRejectedError):
    """Raised when the login command is rejected."""
    pass


class SessionStateError(QueryError):
    """Raised when an operation is not valid in the current session state."""
    pass
