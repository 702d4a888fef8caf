"""
TeamSpeak 3 Server Query wire protocol.

This module handles the encoding of outgoing command lines and the decoding
of the space separated ``action key=value ...`` lines the server sends back.
"""

from typing import Dict, Optional
from .exceptions import InvalidResponseError


# Protocol constants
class Commands:
    LOGIN = "login %s %s"
    USE = "use %d"
    REGISTER_TEXT_CHANNEL = "servernotifyregister event=textchannel"
    SEND_TEXT_MESSAGE = "sendtextmessage targetmode=2 target=%d msg=%s"

    # Inbound action tokens
    ACKNOWLEDGE = "error"
    TEXT_MESSAGE = "notifytextmessage"

    # msg value of a successful acknowledgment
    OK = "ok"


# Welcome banner sent on every new connection
BANNER_LENGTH = 2

# Seconds a listening read may block before cancellation is re-checked
DEFAULT_READ_DEADLINE = 60.0

LINE_TERMINATOR = "\n"
SPACE_ESCAPE = "\\s"


def encode_command(command: str) -> bytes:
    """
    Encode a command line for transmission.

    Server Query commands must end in a newline, it is added if missing.
    """
    if not command.endswith(LINE_TERMINATOR):
        command += LINE_TERMINATOR
    return command.encode("utf-8")


def escape_text(text: str) -> str:
    """Replace spaces with the ``\\s`` escape used inside msg= values."""
    return text.replace(" ", SPACE_ESCAPE)


def unescape_text(text: str) -> str:
    """Replace ``\\s`` escapes with literal spaces."""
    return text.replace(SPACE_ESCAPE, " ")


class ServerResponse:
    """
    A single decoded line from the server.

    Line Format:
    ACTION key1=value1 key2=value2 ...

    Replies to commands always use the ``error`` action, even on success.
    """

    def __init__(self, action: str = "", fields: Optional[Dict[str, str]] = None):
        self.action = action
        self.fields = fields or {}

    @property
    def is_empty(self) -> bool:
        return not self.action and not self.fields

    @property
    def message(self) -> str:
        """The ``msg`` field with escapes removed, empty if absent."""
        return unescape_text(self.fields.get("msg", ""))

    def get(self, key: str, default: str = "") -> str:
        return self.fields.get(key, default)

    @classmethod
    def decode(cls, line: str) -> "ServerResponse":
        """
        Decode a line received from the server.

        Args:
            line: Raw text line, with or without its terminator

        Returns:
            ServerResponse: Decoded response, empty for a blank line

        Raises:
            InvalidResponseError: If a field token has no ``=`` separator
        """
        tokens = line.split()
        if not tokens:
            return cls()

        fields = {}
        for token in tokens[1:]:
            key, sep, value = token.partition("=")
            if not sep:
                raise InvalidResponseError(raw=line.strip())
            fields[key] = value.strip()

        return cls(tokens[0], fields)

    def __repr__(self) -> str:
        return f"ServerResponse(action={self.action!r}, fields={sorted(self.fields)})"


class Message:
    """A chat message decoded from a ``notifytextmessage`` event."""

    def __init__(self, text: str, invoker_id: int, invoker_name: str, invoker_uid: str):
        self.text = text
        self.invoker_id = invoker_id
        self.invoker_name = invoker_name
        self.invoker_uid = invoker_uid

    @classmethod
    def from_response(cls, response: ServerResponse) -> "Message":
        """
        Build a message from a decoded text message event.

        Only plain ASCII decimal ids with an optional leading minus are
        accepted; underscores, a leading plus and padding are rejected.

        Raises:
            InvalidResponseError: If the invokerid field is not an integer
        """
        raw_id = response.get("invokerid")
        if not is_decimal(raw_id):
            raise InvalidResponseError(f"invalid invokerid {raw_id!r}")
        invoker_id = int(raw_id)

        return cls(
            text=response.message,
            invoker_id=invoker_id,
            invoker_name=response.get("invokername"),
            invoker_uid=response.get("invokeruid"),
        )

    def __eq__(self, other) -> bool:
        if not isinstance(other, Message):
            return NotImplemented
        return (
            self.text == other.text and
            self.invoker_id == other.invoker_id and
            self.invoker_name == other.invoker_name and
            self.invoker_uid == other.invoker_uid
        )

    def __repr__(self) -> str:
        return (
            f"Message(text={self.text!r}, invoker_id={self.invoker_id}, "
            f"invoker_name={self.invoker_name!r})"
        )


def is_decimal(value: str) -> bool:
    """Check for an ASCII decimal integer with an optional leading minus."""
    digits = value[1:] if value.startswith("-") else value
    return digits.isascii() and digits.isdigit()


def build_reply(invoker_id: int, text: str) -> str:
    """
    Build the sendtextmessage command answering a private chat.

    Line breaks in the reply become spaces so the text cannot end the
    command early and smuggle a second one onto the connection.
    """
    text = text.replace("\r\n", " ").replace("\r", " ").replace("\n", " ")
    return Commands.SEND_TEXT_MESSAGE % (invoker_id, escape_text(text))


def mask_command(command: str) -> str:
    """Hide the password of a login command for logs and transcripts."""
    tokens = command.split(" ")
    if len(tokens) >= 3 and tokens[0] == "login":
        return " ".join(tokens[:2] + ["****"])
    return command
