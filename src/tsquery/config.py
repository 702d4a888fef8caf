"""
Bot configuration loading and validation.
"""

import json
import os
from typing import Any, Dict, Mapping, Optional

from .exceptions import ConfigurationError


class BotConfig:
    """
    Connection settings for a Server Query session.

    All string fields are required and validated once at construction,
    before any connection attempt. The instance is read-only afterwards.
    """

    __slots__ = ("_address", "_port", "_username", "_password", "_server_id")

    def __init__(self, address: str, port: Any, username: str, password: str, server_id: int = 1):
        port = str(port) if port is not None else ""
        missing = [
            name for name, value in (
                ("address", address),
                ("port", port),
                ("username", username),
                ("password", password),
            )
            if not value
        ]
        if missing:
            raise ConfigurationError(
                f"invalid configuration, ensure all fields are present (missing: {', '.join(missing)})"
            )
        if not port.isdigit():
            raise ConfigurationError(f"invalid port: {port!r}")
        try:
            server_id = int(server_id)
        except (TypeError, ValueError):
            raise ConfigurationError(f"invalid server id: {server_id!r}")

        object.__setattr__(self, "_address", address)
        object.__setattr__(self, "_port", port)
        object.__setattr__(self, "_username", username)
        object.__setattr__(self, "_password", password)
        object.__setattr__(self, "_server_id", server_id)

    def __setattr__(self, name, value):
        raise AttributeError("BotConfig is read-only")

    @property
    def address(self) -> str:
        return self._address

    @property
    def port(self) -> str:
        return self._port

    @property
    def username(self) -> str:
        return self._username

    @property
    def password(self) -> str:
        return self._password

    @property
    def server_id(self) -> int:
        return self._server_id

    @classmethod
    def from_mapping(cls, values: Mapping[str, Any]) -> "BotConfig":
        return cls(
            address=values.get("address", ""),
            port=values.get("port", ""),
            username=values.get("username", ""),
            password=values.get("password", ""),
            server_id=values.get("server_id", 1),
        )

    @classmethod
    def from_file(cls, path: str) -> "BotConfig":
        """
        Load a configuration from a JSON file.

        Raises:
            ConfigurationError: If the file cannot be read or is invalid
        """
        return cls.from_mapping(load_settings(path))

    @classmethod
    def from_env(cls, prefix: str = "TS3_", environ: Optional[Mapping[str, str]] = None) -> "BotConfig":
        return cls.from_mapping(env_settings(prefix, environ))

    def __eq__(self, other) -> bool:
        if not isinstance(other, BotConfig):
            return NotImplemented
        return all(getattr(self, name) == getattr(other, name) for name in self.__slots__)

    def __hash__(self) -> int:
        return hash(tuple(getattr(self, name) for name in self.__slots__))

    def __repr__(self) -> str:
        return (
            f"BotConfig(address={self.address!r}, port={self.port!r}, "
            f"username={self.username!r}, password='****', server_id={self.server_id})"
        )


def load_settings(path: str) -> Dict[str, Any]:
    """Read a JSON settings file into a dictionary."""
    try:
        with open(path, 'r', encoding='utf-8') as f:
            settings = json.load(f)
    except OSError as e:
        raise ConfigurationError(f"cannot read configuration file {path}: {e}")
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"invalid JSON in configuration file {path}: {e}")

    if not isinstance(settings, dict):
        raise ConfigurationError(f"configuration file {path} must contain a JSON object")
    return settings


def env_settings(prefix: str = "TS3_", environ: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
    """Collect settings from ``<prefix>ADDRESS``-style environment variables."""
    environ = os.environ if environ is None else environ
    settings = {}
    for key in ("address", "port", "username", "password", "server_id"):
        value = environ.get(prefix + key.upper())
        if value:
            settings[key] = value
    return settings
