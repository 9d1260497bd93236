"""Server configuration, config file loading and CLI argument parsing."""

import argparse
import dataclasses
import logging
import os
import tomllib
from dataclasses import dataclass
from typing import Any, Optional

from spsrv.domain.correlation_id import CorrelationLoggerAdapter

CONFIG_LOGGER = CorrelationLoggerAdapter(logging.getLogger("spsrv.config"), {})

VERSION = "0.1.0"
DEFAULT_CONFIG_PATH = "/etc/spsrv.conf"
DIRLIST_SORT_KEYS = ("name", "time", "size")


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    return int(value) if value is not None else default


class ConfigError(Exception):
    """Raised when the configuration file cannot be read or is invalid."""


@dataclass(frozen=True)
class ServerConfig:
    """Read-only server configuration shared by every connection handler."""

    port: int = 300
    hostname: str = "localhost"
    root_dir: str = "/var/spartan/"
    home_root: str = "/home"
    user_dir_enable: bool = False
    user_dir: str = "public_spartan"
    user_subdomains: bool = False
    user_cgi_enable: bool = False
    dirlist_enable: bool = True
    dirlist_sort: str = "name"
    dirlist_reverse: bool = False
    dirlist_titles: bool = True
    cgi_paths: tuple[str, ...] = ("cgi/",)
    cgi_timeout: float = 10.0
    listen_address: str = ""
    max_request_line: int = 1024
    max_data_bytes: int = 5 * 1024 * 1024
    shutdown_grace_seconds: int = 30


# TOML key -> (field name, accepted types)
CONFIG_KEYS: dict[str, tuple[str, tuple[type, ...]]] = {
    "Port": ("port", (int,)),
    "Hostname": ("hostname", (str,)),
    "RootDir": ("root_dir", (str,)),
    "HomeRoot": ("home_root", (str,)),
    "UserDirEnable": ("user_dir_enable", (bool,)),
    "UserDir": ("user_dir", (str,)),
    "UserSubdomains": ("user_subdomains", (bool,)),
    "UserCGIEnable": ("user_cgi_enable", (bool,)),
    "DirlistEnable": ("dirlist_enable", (bool,)),
    "DirlistSort": ("dirlist_sort", (str,)),
    "DirlistReverse": ("dirlist_reverse", (bool,)),
    "DirlistTitles": ("dirlist_titles", (bool,)),
    "CGIPaths": ("cgi_paths", (list,)),
    "CGITimeout": ("cgi_timeout", (int, float)),
    "ListenAddress": ("listen_address", (str,)),
    "MaxRequestLine": ("max_request_line", (int,)),
    "MaxDataBytes": ("max_data_bytes", (int,)),
    "ShutdownGraceSeconds": ("shutdown_grace_seconds", (int,)),
}


def normalize_dirlist_sort(value: str) -> str:
    """Coerce unknown listing sort keys to ``name``."""
    if value in DIRLIST_SORT_KEYS:
        return value
    CONFIG_LOGGER.warning(
        "DirlistSort is not one of name/time/size, defaulting to name",
        extra={"event": "config_sort_coerced", "value": value},
    )
    return "name"


def _coerce_value(key: str, value: Any) -> Any:
    field_name, accepted = CONFIG_KEYS[key]
    # bool is an int subclass; only accept it where a bool is expected.
    if isinstance(value, bool) and bool not in accepted:
        raise ConfigError(f"{key} must not be a boolean")
    if not isinstance(value, accepted):
        raise ConfigError(f"{key} has an invalid type: {type(value).__name__}")
    if field_name == "cgi_paths":
        if not all(isinstance(item, str) for item in value):
            raise ConfigError("CGIPaths must be a list of strings")
        return tuple(value)
    if field_name == "cgi_timeout":
        return float(value)
    return value


def config_from_mapping(values: dict[str, Any]) -> ServerConfig:
    """Build a configuration from TOML-style keys, ignoring unknown ones."""
    overrides: dict[str, Any] = {}
    for key, value in values.items():
        if key not in CONFIG_KEYS:
            CONFIG_LOGGER.warning(
                "Ignoring unknown configuration key",
                extra={"event": "config_unknown_key", "key": key},
            )
            continue
        overrides[CONFIG_KEYS[key][0]] = _coerce_value(key, value)
    config = ServerConfig(**overrides)
    sort_key = normalize_dirlist_sort(config.dirlist_sort)
    if sort_key != config.dirlist_sort:
        config = dataclasses.replace(config, dirlist_sort=sort_key)
    return config


def load_config(path: str) -> ServerConfig:
    """Load a TOML config file, falling back to defaults when it is missing."""
    if not os.path.exists(path):
        CONFIG_LOGGER.info(
            "Config file does not exist, using default configuration values",
            extra={"event": "config_missing", "path": path},
        )
        return ServerConfig()
    try:
        with open(path, "rb") as config_file:
            values = tomllib.load(config_file)
    except (OSError, tomllib.TOMLDecodeError) as error:
        raise ConfigError(f"Unable to load {path}: {error}") from error
    return config_from_mapping(values)


def build_config(args: argparse.Namespace) -> ServerConfig:
    """Load the config file named on the command line and apply CLI overrides."""
    config = load_config(args.config)
    overrides: dict[str, Any] = {}
    if args.hostname is not None:
        overrides["hostname"] = args.hostname
    if args.port is not None:
        overrides["port"] = args.port
    if args.dir is not None:
        overrides["root_dir"] = args.dir
    if args.shutdown_grace_seconds is not None:
        overrides["shutdown_grace_seconds"] = args.shutdown_grace_seconds
    if overrides:
        config = dataclasses.replace(config, **overrides)
    return config


def parse_cli_args(argv: list[str]) -> argparse.Namespace:
    """Return parsed CLI arguments for server configuration.

    Options left unset stay ``None`` so the config file value is kept.
    """
    parser = argparse.ArgumentParser(
        prog="spsrv",
        description="Spartan protocol server",
        add_help=False,
    )
    parser.add_argument("-?", "--help", action="help", help="Get CLI help")
    parser.add_argument(
        "-v",
        "--version",
        action="version",
        version=f"spsrv {VERSION}",
        help="View version and exit",
    )
    parser.add_argument(
        "-c", "--config", default=DEFAULT_CONFIG_PATH, help="Path to config file"
    )
    parser.add_argument("-h", "--hostname", default=None, help="Hostname")
    parser.add_argument(
        "-p", "--port", type=int, default=None, help="Port to listen to"
    )
    parser.add_argument(
        "-d", "--dir", default=None, help="Root content directory"
    )
    default_log_level = os.getenv("SPSRV_LOG_LEVEL", "INFO").upper()
    default_destination = os.getenv("SPSRV_LOG_DESTINATION", "stdout")
    parser.add_argument(
        "--log-level",
        default=default_log_level,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        type=str.upper,
    )
    parser.add_argument(
        "--log-destination",
        default=default_destination,
        help="stdout or a file path",
    )
    shutdown_grace: Optional[int] = None
    if os.getenv("SPSRV_SHUTDOWN_GRACE_SECONDS") is not None:
        shutdown_grace = _env_int("SPSRV_SHUTDOWN_GRACE_SECONDS", 30)
    parser.add_argument(
        "--shutdown-grace-seconds",
        type=int,
        default=shutdown_grace,
        help="Grace period in seconds for graceful shutdown",
    )
    return parser.parse_args(argv)
