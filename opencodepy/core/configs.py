"""Configuration management for opencodepy.

Loads user settings from ~/.config/opencodepy/config.cfg, a local .env file
and environment variables. Provides ClientOptions (how to reach or spawn a
server) and ServerOptions (how to launch one).
"""

import configparser
from dataclasses import dataclass
import os
from pathlib import Path
from typing import Dict, Optional, Tuple

from dotenv import dotenv_values

# Default location for user configuration.
CONFIG_PATH = Path.home() / ".config" / "opencodepy" / "config.cfg"
ENV_PATH = Path(".env")

DEFAULT_HOSTNAME = "127.0.0.1"
DEFAULT_PORT = 4096

# Environment variable -> raw config key.
ENV_OVERRIDES = {
    "OPENCODE_BASE_URL": "base_url",
    "OPENCODE_BINARY": "opencode_path",
    "OPENCODE_DIRECTORY": "directory",
    "OPENCODE_STARTUP_TIMEOUT_MS": "startup_timeout_ms",
    "OPENCODE_SERVER_USERNAME": "username",
    "OPENCODE_SERVER_PASSWORD": "password",
}


@dataclass
class ClientOptions:
    base_url: Optional[str] = None
    opencode_path: str = "opencode"
    directory: Optional[str] = None
    startup_timeout_ms: int = 10000
    basic_auth: Optional[Tuple[str, str]] = None
    default_provider: Optional[str] = None
    default_model: Optional[str] = None
    connection_timeout: int = 30
    read_timeout: int = 300


@dataclass
class ServerOptions:
    """
    Options for spawning a server process.

    Credentials and the injected config travel through the environment of
    the child, never on its command line.
    """
    opencode_binary: str = "opencode"
    hostname: str = DEFAULT_HOSTNAME
    port: int = DEFAULT_PORT
    mdns: bool = False
    config_json: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = None
    working_directory: Optional[str] = None
    startup_timeout: float = 30.0


def load_raw_config(
    path: Path = CONFIG_PATH, env_file: Optional[Path] = ENV_PATH
) -> Dict[str, str]:
    """
    Load configuration values from the config file, .env and environment.
    Values are returned with lowercase keys for convenience.

    Precedence (highest first): environment, config file, .env file.
    """
    data: Dict[str, str] = {}

    if env_file is not None and Path(env_file).exists():
        for key, value in dotenv_values(env_file).items():
            if value is None:
                continue
            mapped = ENV_OVERRIDES.get(key.upper(), key.lower())
            data[mapped] = value

    cfg = configparser.ConfigParser()
    if path.exists():
        cfg.read(path)
        if "DEFAULT" in cfg:
            data.update({k.lower(): v for k, v in cfg["DEFAULT"].items()})
        if "AUTH" in cfg:
            data.update({k.lower(): v for k, v in cfg["AUTH"].items()})

    for env_key, raw_key in ENV_OVERRIDES.items():
        value = os.environ.get(env_key)
        if value is not None and value.strip() != "":
            data[raw_key] = value

    return data


def _get_int(raw: Dict[str, str], key: str, default: int) -> int:
    value = raw.get(key)
    if value is None or str(value).strip() == "":
        return default
    try:
        return int(float(value))
    except ValueError:
        raise ValueError(f"Invalid integer for '{key}': {value!r}")


def _get_optional(raw: Dict[str, str], key: str) -> Optional[str]:
    value = raw.get(key, "")
    value = str(value).strip()
    return value or None


def get_client_options(raw: Optional[Dict[str, str]] = None) -> ClientOptions:
    """
    Build ClientOptions from raw configuration values.
    Raises ValueError if a numeric field is not a number or a username is
    set without a password. The username defaults to "opencode".
    """
    raw = raw if raw is not None else load_raw_config()

    username = _get_optional(raw, "username")
    password = _get_optional(raw, "password")
    basic_auth = None
    if password:
        basic_auth = (username or "opencode", password)
    elif username:
        raise ValueError("A username was configured without a password.")

    return ClientOptions(
        base_url=_get_optional(raw, "base_url"),
        opencode_path=_get_optional(raw, "opencode_path") or "opencode",
        directory=_get_optional(raw, "directory"),
        startup_timeout_ms=_get_int(raw, "startup_timeout_ms", 10000),
        basic_auth=basic_auth,
        default_provider=_get_optional(raw, "default_provider"),
        default_model=_get_optional(raw, "default_model"),
        connection_timeout=_get_int(raw, "connection_timeout", 30),
        read_timeout=_get_int(raw, "read_timeout", 300),
    )


def server_options_for(options: ClientOptions) -> ServerOptions:
    """Options for the private server a Client spawns (OS-assigned port)."""
    username, password = options.basic_auth or (None, None)
    return ServerOptions(
        opencode_binary=options.opencode_path,
        port=0,
        username=username,
        password=password,
        working_directory=options.directory,
        startup_timeout=options.startup_timeout_ms / 1000.0,
    )
