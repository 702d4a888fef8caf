"""
TeamSpeak 3 Server Query chat bot client.

This module implements the session engine: it connects to the query port,
authenticates, selects a virtual server, subscribes to text channel events
and feeds incoming chat messages to a handler until it is shut down.
"""

import argparse
import logging
import socket
import sys
import threading
from enum import Enum
from typing import Any, Callable, Optional
from .config import BotConfig, env_settings, load_settings
from .protocol import (
    BANNER_LENGTH, DEFAULT_READ_DEADLINE, Commands, Message, ServerResponse,
    build_reply, encode_command, mask_command
)
from .session import SessionRecorder
from .shutdown import ShutdownCoordinator
from .exceptions import (
    QueryError, ConfigurationError, ConnectionError, AuthenticationError,
    CommandRejectedError, InvalidResponseError, NotConnectedError,
    ServerDisconnectionError, SessionStateError, TimeoutError
)
from ..utils.logging import DEBUG_FORMAT, parse_log_level, setup_logger, silence_external_loggers


Handler = Callable[[Message], Optional[str]]


class SessionState(Enum):
    DISCONNECTED = "disconnected"
    BANNER_CONSUMED = "banner_consumed"
    AUTHENTICATED = "authenticated"
    SERVER_SELECTED = "server_selected"
    LISTENING = "listening"
    CLOSING = "closing"
    CLOSED = "closed"


class ServerQueryBot:
    """
    Server Query session that answers private chat messages.

    The caller thread drives the bootstrap commands one at a time. Once the
    event subscription is acknowledged a single listener thread owns every
    further read on the socket until ``close()`` tears it down.
    """

    # How often run() checks that the listener is still alive
    POLL_INTERVAL = 1.0
    RECV_SIZE = 4096

    def __init__(
        self,
        config: BotConfig,
        handler: Optional[Any] = None,
        read_deadline: float = DEFAULT_READ_DEADLINE,
        timeout: float = 10.0,
        coordinator: Optional[ShutdownCoordinator] = None,
        record_session: bool = False,
        sessions_dir: str = "sessions",
    ):
        self.config = config
        self.read_deadline = read_deadline
        self.timeout = timeout
        self.socket: Optional[socket.socket] = None
        self.state = SessionState.DISCONNECTED
        self.shutdown = coordinator or ShutdownCoordinator()
        self.session_recorder = SessionRecorder(output_dir=sessions_dir) if record_session else None
        self.logger = logging.getLogger(__name__)
        self.handler: Optional[Handler] = None
        self._buffer = b""
        self._listener: Optional[threading.Thread] = None

        if handler is not None:
            self.add_handler(handler)

    @property
    def listening(self) -> bool:
        return self._listener is not None and self._listener.is_alive()

    def add_handler(self, handler: Any) -> None:
        """
        Register the chat message handler.

        The handler is called with a ``Message`` and returns the reply text,
        or an empty value to stay silent. Objects with a ``handle(message)``
        method are accepted as well. Registration is only possible before
        ``start()``; the last registration wins.
        """
        if self.state is not SessionState.DISCONNECTED:
            raise SessionStateError(f"cannot change handler while {self.state.value}")

        if not callable(handler) and callable(getattr(handler, "handle", None)):
            handler = handler.handle
        if not callable(handler):
            raise TypeError("handler must be callable or provide a handle(message) method")
        self.handler = handler

    def _set_state(self, state: SessionState) -> None:
        self.logger.debug(f"Session state {self.state.value} -> {state.value}")
        self.state = state
        if self.session_recorder:
            self.session_recorder.record_event("state", f"Entered {state.value}", {"state": state.value})

    def _require_state(self, expected: SessionState, operation: str) -> None:
        if self.state is not expected:
            raise SessionStateError(
                f"cannot {operation} while {self.state.value}, expected {expected.value}"
            )

    def _record_error(self, error_msg: str, error_type: str) -> None:
        if self.session_recorder:
            self.session_recorder.record_event("error", error_msg, {"error_type": error_type})

    def connect(self) -> None:
        """
        Dial the query port and consume the welcome banner.

        Raises:
            ConnectionError: If the connection or banner read fails
        """
        self._require_state(SessionState.DISCONNECTED, "connect")
        host, port = self.config.address, int(self.config.port)

        try:
            self.logger.info(f"Connecting to {host}:{port}")
            self.socket = socket.create_connection((host, port), timeout=self.timeout)
        except OSError as e:
            error_msg = f"Failed to connect to {host}:{port}: {e}"
            self.logger.error(error_msg)
            self._record_error(error_msg, "connection_failed")
            raise ConnectionError(error_msg)

        self._buffer = b""
        if self.session_recorder:
            self.session_recorder.record_event(
                "connection",
                f"Connected to {host}:{port}",
                {"host": host, "port": port, "timeout": self.timeout}
            )
        self.logger.info("Connection established")

        for _ in range(BANNER_LENGTH):
            self._read_line()
        self._set_state(SessionState.BANNER_CONSUMED)

    def disconnect(self) -> None:
        """Close the connection to the server and forget it."""
        self._close_transport()
        self.socket = None
        self._buffer = b""

    def _close_transport(self) -> None:
        """
        Shut the socket down and close it.

        Shutting down first wakes any thread blocked in recv() on the socket.
        """
        if not self.socket:
            return
        try:
            self.socket.shutdown(socket.SHUT_RDWR)
        except OSError:
            # Already disconnected by the peer
            pass
        try:
            self.socket.close()
            self.logger.info("Disconnected from server")
            if self.session_recorder:
                self.session_recorder.record_event("disconnection", "Client disconnected")
        except OSError as e:
            self.logger.warning(f"Error during disconnect: {e}")

    def _write(self, command: str) -> None:
        """
        Send one command line to the server.

        Raises:
            NotConnectedError: If no server is connected
            ConnectionError: If sending fails
        """
        if not self.socket:
            raise NotConnectedError("Not connected to server")

        try:
            self.socket.sendall(encode_command(command))
        except OSError as e:
            error_msg = f"Failed to send command: {e}"
            self.logger.error(error_msg)
            self._record_error(error_msg, "send_failed")
            raise ConnectionError(error_msg)

        self.logger.debug(f"Sent: {mask_command(command)}")
        if self.session_recorder:
            self.session_recorder.record_request(command)

    def _read_line(self, timeout: Optional[float] = None) -> str:
        """
        Read the next line from the server, without its terminator.

        Bytes received after the line stay buffered for the next call, and a
        partial line survives an expired deadline.

        Args:
            timeout: Read deadline in seconds, the socket's current one if None

        Raises:
            NotConnectedError: If no server is connected
            TimeoutError: If the deadline expires first
            ServerDisconnectionError: If the server closes the connection
            ConnectionError: If reading fails
        """
        if not self.socket:
            raise NotConnectedError("Not connected to server")

        try:
            if timeout is not None:
                self.socket.settimeout(timeout)
            while b"\n" not in self._buffer:
                chunk = self.socket.recv(self.RECV_SIZE)
                if not chunk:
                    raise ServerDisconnectionError("Server closed the connection")
                self._buffer += chunk
        except socket.timeout:
            raise TimeoutError("Read deadline expired")
        except OSError as e:
            raise ConnectionError(f"Failed to read from server: {e}")

        raw, _, self._buffer = self._buffer.partition(b"\n")
        line = raw.decode("utf-8", errors="replace").strip("\r")
        self.logger.debug(f"Received: {line}")
        return line

    def send_and_expect_ok(self, command: str) -> ServerResponse:
        """
        Send a command and require an ``error id=0 msg=ok`` acknowledgment.

        Only valid while the listener is not running: the next line read is
        taken to be the reply to this command.

        Raises:
            InvalidResponseError: If the reply cannot be decoded or is not an acknowledgment
            CommandRejectedError: If the server rejected the command
            ConnectionError: If the exchange fails on the transport
        """
        if self.listening:
            raise SessionStateError("cannot issue commands while the listener owns the connection")

        self._write(command)
        line = self._read_line()
        response = ServerResponse.decode(line)

        if self.session_recorder:
            self.session_recorder.record_response(line, response)

        # Replies use the "error" action even when they are successful
        if response.action != Commands.ACKNOWLEDGE:
            raise InvalidResponseError(raw=line)

        if response.message != Commands.OK:
            raise CommandRejectedError(response.message, response.get("id"))

        return response

    def login(self) -> None:
        """
        Authenticate with the configured credentials.

        Raises:
            AuthenticationError: If the server rejects the credentials
        """
        self._require_state(SessionState.BANNER_CONSUMED, "login")
        try:
            self.send_and_expect_ok(Commands.LOGIN % (self.config.username, self.config.password))
        except CommandRejectedError as e:
            raise AuthenticationError(e.server_message, e.error_id) from e
        self.logger.info(f"Authenticated as {self.config.username}")
        self._set_state(SessionState.AUTHENTICATED)

    def select_server(self) -> None:
        """Select the virtual server the bot attaches to."""
        self._require_state(SessionState.AUTHENTICATED, "select a server")
        self.send_and_expect_ok(Commands.USE % self.config.server_id)
        self.logger.info(f"Selected virtual server {self.config.server_id}")
        self._set_state(SessionState.SERVER_SELECTED)

    def register_notifications(self) -> None:
        """Subscribe to text channel message events."""
        self._require_state(SessionState.SERVER_SELECTED, "register for notifications")
        self.send_and_expect_ok(Commands.REGISTER_TEXT_CHANNEL)
        self.logger.info("Registered for text channel events")

    def start(self) -> None:
        """
        Run the bootstrap sequence and start the listener thread.

        Any failure disconnects, leaves the session closed and re-raises.

        Raises:
            SessionStateError: If the session was already started
            QueryError: If any bootstrap step fails
        """
        if self.state is not SessionState.DISCONNECTED:
            raise SessionStateError(f"session cannot be started while {self.state.value}")

        try:
            self.connect()
            self.login()
            self.select_server()
            self.register_notifications()
        except Exception as e:
            self.logger.error(f"Session startup failed: {e}")
            self._record_error(f"Startup failed: {e}", "startup_failed")
            self.disconnect()
            self._finish()
            raise

        self._set_state(SessionState.LISTENING)
        self._listener = threading.Thread(target=self._listen, name="tsquery-listener", daemon=True)
        self._listener.start()

    def run(self) -> None:
        """
        Start the session and block until cancellation, then close it.

        Also returns if the listener stops on its own, e.g. when the server
        drops the connection. There is no reconnection.
        """
        self.start()
        try:
            while not self.shutdown.wait_cancelled(self.POLL_INTERVAL):
                if not self.listening:
                    self.logger.warning("Listener stopped, closing session")
                    break
        finally:
            self.close()

    def close(self) -> None:
        """
        Shut the session down.

        Raises cancellation, closes the socket to unblock a pending read and
        waits for the listener to signal completion before returning.
        """
        if self.state is SessionState.CLOSED:
            return

        self.shutdown.cancel()
        if self.state is not SessionState.LISTENING:
            self.disconnect()
            self._finish()
            return

        self._set_state(SessionState.CLOSING)
        self._close_transport()
        self.shutdown.wait_completed()
        self._listener.join()
        self.socket = None
        self._buffer = b""
        self._finish()

    def _finish(self) -> None:
        self._set_state(SessionState.CLOSED)
        if not self.session_recorder:
            return
        # Runs while a bootstrap error may be propagating; never replace it.
        try:
            session_file = self.session_recorder.close()
        except Exception as e:
            self.logger.error(f"Failed to close session transcript: {e}")
            return
        if session_file:
            self.logger.info(f"Session saved to: {session_file}")

    def _listen(self) -> None:
        """Listener loop, runs on its own thread while listening."""
        try:
            while not self.shutdown.cancelled:
                try:
                    line = self._read_line(timeout=self.read_deadline)
                except TimeoutError:
                    continue
                except ConnectionError as e:
                    if self.shutdown.cancelled:
                        self.logger.debug(f"Listener stopped after cancellation: {e}")
                    else:
                        self.logger.error(f"Listener stopped: {e}")
                        self._record_error(str(e), "listener_failed")
                    break

                self._dispatch(line)
        finally:
            self.shutdown.mark_completed()

    def _dispatch(self, line: str) -> None:
        """Decode one event line and hand chat messages to the handler."""
        if not line.strip():
            return

        try:
            response = ServerResponse.decode(line)
        except InvalidResponseError as e:
            self.logger.warning(f"Dropping undecodable line: {e}")
            return

        if self.session_recorder:
            self.session_recorder.record_response(line, response)

        # Never answer our own messages
        if response.get("invokeruid") == self.config.username:
            return

        if response.action != Commands.TEXT_MESSAGE:
            self.logger.debug(f"Ignoring {response.action} event")
            return

        try:
            message = Message.from_response(response)
        except InvalidResponseError as e:
            self.logger.warning(f"Dropping text message: {e}")
            return

        if self.handler is None:
            self.logger.warning("No handler registered, dropping text message")
            return

        try:
            reply = self.handler(message)
        except Exception as e:
            self.logger.error(f"Handler failed for message from {message.invoker_name}: {e}")
            self._record_error(str(e), "handler_failed")
            return

        if not reply:
            return

        try:
            self._write(build_reply(message.invoker_id, reply))
        except ConnectionError as e:
            self.logger.warning(f"Failed to send reply to {message.invoker_name}: {e}")


def ping_handler(message: Message) -> str:
    """Example handler answering ``.ping`` with ``pong``."""
    if message.text.strip() == ".ping":
        return "pong"
    return ""


def build_config(args: argparse.Namespace, settings: Optional[dict] = None) -> BotConfig:
    """Merge config file settings, TS3_* environment variables and CLI flags."""
    settings = dict(settings or {})
    settings.update(env_settings())
    for key in ("address", "port", "username", "password", "server_id"):
        value = getattr(args, key)
        if value is not None:
            settings[key] = value
    return BotConfig.from_mapping(settings)


def main():
    """Main entry point for the Server Query bot."""
    parser = argparse.ArgumentParser(description="TeamSpeak 3 Server Query chat bot")
    parser.add_argument("--host", dest="address", help="Server hostname or IP address")
    parser.add_argument("--port", help="Server Query port (usually 10011)")
    parser.add_argument("--username", help="Server Query login name")
    parser.add_argument("--password", help="Server Query password")
    parser.add_argument("--server-id", dest="server_id", type=int, help="Virtual server id to use")
    parser.add_argument("--config", "-c", help="JSON configuration file")
    parser.add_argument("--read-deadline", type=float,
                        help=f"Seconds between cancellation checks while listening (default {DEFAULT_READ_DEADLINE:g})")
    parser.add_argument("--record", action="store_true", help="Record the session transcript")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose logging")

    args = parser.parse_args()

    try:
        settings = load_settings(args.config) if args.config else {}
        config = build_config(args, settings)
        log_level = parse_log_level(settings.get("log_level", logging.INFO))
        read_deadline = args.read_deadline
        if read_deadline is None:
            read_deadline = float(settings.get("read_deadline", DEFAULT_READ_DEADLINE))
    except (ConfigurationError, ValueError) as e:
        print(f"Configuration error: {e}")
        return 1

    if args.verbose:
        setup_logger("src", level=logging.DEBUG, format_string=DEBUG_FORMAT)
    else:
        setup_logger("src", level=log_level)
    silence_external_loggers()

    bot = ServerQueryBot(
        config,
        handler=ping_handler,
        read_deadline=read_deadline,
        record_session=args.record,
    )
    bot.shutdown.install_signal_handlers()

    try:
        bot.run()
        return 0
    except KeyboardInterrupt:
        print("\nBot stopped by user")
        return 1
    except QueryError as e:
        print(f"\nBot failed: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
