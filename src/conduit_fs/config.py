"""Server configuration from the command line and the environment.

Allowed directories come from positional arguments, falling back to
`CONDUIT_FS_ALLOWED_DIRS` (separated by `os.pathsep`). A `.env` file in the
working directory is loaded first, so any variable can live there.
"""

import argparse
import logging
import os
import sys
from dataclasses import dataclass
from pathlib import Path

from dotenv import find_dotenv, load_dotenv

from conduit_fs import __version__

ENV_ALLOWED_DIRS = "CONDUIT_FS_ALLOWED_DIRS"
ENV_LOG_LEVEL = "CONDUIT_FS_LOG_LEVEL"
ENV_WATCH = "CONDUIT_FS_WATCH"

DEFAULT_LOG_LEVEL = "INFO"
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


class ConfigError(Exception):
    """Raised when the server cannot be configured from its inputs."""


@dataclass
class ServerConfig:
    allowed_dirs: list[Path]
    log_level: str = DEFAULT_LOG_LEVEL
    watch: bool = True
    name: str = "conduit-fs"
    version: str = __version__
    instructions: str | None = (
        "Filesystem access restricted to the allowed directories. "
        "Call list_allowed_directories to see them."
    )


def _parse_args(argv: list[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="conduit-fs",
        description="MCP server exposing confined filesystem access over stdio.",
    )
    parser.add_argument(
        "allowed_dirs",
        nargs="*",
        metavar="DIR",
        help="Directory the server may access. Repeat for several.",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help=f"Logging level (default: ${ENV_LOG_LEVEL} or {DEFAULT_LOG_LEVEL}).",
    )
    parser.add_argument(
        "--no-watch",
        action="store_true",
        help="Index the allowed directories once without watching for changes.",
    )
    parser.add_argument("--version", action="version", version=__version__)
    return parser.parse_args(argv)


def _env_flag(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return value.strip().lower() not in ("0", "false", "no", "off")


def load_config(argv: list[str] | None = None) -> ServerConfig:
    """Build the server configuration.

    Raises:
        ConfigError: If no allowed directory is given or one of them is not
            an existing directory.
    """
    load_dotenv(find_dotenv(usecwd=True))
    args = _parse_args(argv)

    raw_dirs: list[str] = list(args.allowed_dirs)
    if not raw_dirs:
        env_dirs = os.getenv(ENV_ALLOWED_DIRS, "")
        raw_dirs = [d for d in env_dirs.split(os.pathsep) if d.strip()]
    if not raw_dirs:
        raise ConfigError(
            f"At least one allowed directory is required "
            f"(pass it as an argument or set {ENV_ALLOWED_DIRS})"
        )

    allowed_dirs: list[Path] = []
    for raw in raw_dirs:
        directory = Path(os.path.abspath(os.path.expanduser(raw)))
        if not directory.is_dir():
            raise ConfigError(f"Allowed directory is not a directory: {raw}")
        allowed_dirs.append(directory)

    log_level = args.log_level or os.getenv(ENV_LOG_LEVEL) or DEFAULT_LOG_LEVEL
    log_level = log_level.upper()
    if not isinstance(logging.getLevelName(log_level), int):
        raise ConfigError(f"Unknown log level: {log_level}")

    watch = not args.no_watch and _env_flag(ENV_WATCH, True)
    return ServerConfig(allowed_dirs=allowed_dirs, log_level=log_level, watch=watch)


def configure_logging(level: str = DEFAULT_LOG_LEVEL) -> None:
    """Send all log output to stderr. stdout carries the protocol stream."""
    logging.basicConfig(
        stream=sys.stderr, level=level.upper(), format=LOG_FORMAT, force=True
    )
