"""
Runtime settings for tailscalesd

Settings are resolved once at startup from command-line flags, environment
variables and an optional YAML file, in that order of precedence, and then
passed explicitly into the components that need them.
"""

from __future__ import annotations

import argparse
import os
import re

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field, fields
from datetime import timedelta
from pathlib import Path
from typing import Any

import structlog
import yaml

from tailscalesd import __version__
from tailscalesd.discovery.local_api import LOCAL_API_SOCKET

logger = structlog.get_logger(__name__)

DEFAULT_ADDRESS = "0.0.0.0:9242"
DEFAULT_POLL_LIMIT = timedelta(minutes=5)

_DURATION_UNITS: dict[str, float] = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}
_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)")


class ConfigError(ValueError):
    """Raised when the resolved settings cannot run the service."""


def parse_duration(text: str) -> timedelta:
    """Parse a Go-style duration string such as ``5m``, ``90s`` or ``1h30m``.

    Args:
        text: Duration string; a bare ``0`` is accepted

    Returns:
        The parsed duration

    Raises:
        ValueError: If the string is not a valid duration
    """
    value = text.strip()
    sign = 1
    if value[:1] in ("+", "-"):
        sign = -1 if value[0] == "-" else 1
        value = value[1:]

    if value == "0":
        return timedelta(0)
    if not value:
        raise ValueError(f"invalid duration {text!r}")

    seconds = 0.0
    position = 0
    while position < len(value):
        match = _DURATION_PART.match(value, position)
        if not match:
            raise ValueError(f"invalid duration {text!r}")
        seconds += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        position = match.end()

    return timedelta(seconds=sign * seconds)


def _parse_bool(text: str) -> bool:
    return text.strip().lower() in ("true", "yes")


@dataclass(frozen=True)
class Settings:
    """Immutable configuration for one tailscalesd instance."""

    # HTTP serving
    address: str = DEFAULT_ADDRESS

    # Public API backend
    tailnet: str = ""
    token: str = field(default="", repr=False)

    # Minimum interval between upstream polls
    poll_limit: timedelta = DEFAULT_POLL_LIMIT

    # Local API backend
    use_local_api: bool = False
    local_api_socket: str = LOCAL_API_SOCKET

    # Logging
    log_level: str = "INFO"
    json_logs: bool = False

    @property
    def host(self) -> str:
        """Host part of the listen address."""
        host, _, _ = self.address.rpartition(":")
        return host.strip("[]") or "0.0.0.0"

    @property
    def port(self) -> int:
        """Port part of the listen address."""
        _, _, port = self.address.rpartition(":")
        return int(port)

    def validate(self) -> None:
        """Check that the settings describe a runnable service.

        Raises:
            ConfigError: If a required value is missing or malformed
        """
        if self.use_local_api:
            if not self.local_api_socket:
                raise ConfigError(
                    "--localapi_socket must not be empty when using the local API."
                )
        elif not self.token or not self.tailnet:
            raise ConfigError(
                "Both --token and --tailnet are required when using the public API"
            )

        if self.log_level.upper() not in _LOG_LEVELS:
            raise ConfigError(f"Invalid log level: {self.log_level!r}")

        try:
            port = self.port
        except ValueError:
            raise ConfigError(f"Invalid listen address: {self.address!r}")  # noqa: B904
        if not 0 <= port <= 65535:
            raise ConfigError(f"Invalid listen port: {port}")


def _load_file(config_path: Path | None) -> dict[str, Any]:
    """Load settings overrides from a YAML file."""
    if config_path is None:
        return {}

    try:
        with config_path.open("r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except FileNotFoundError:
        raise ConfigError(f"Config file not found: {config_path}")  # noqa: B904
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in config file: {e.__class__.__name__}: {e}")  # noqa: B904

    if not isinstance(data, dict):
        raise ConfigError("Config file must contain a mapping")

    known = {f.name for f in fields(Settings)}
    unknown = set(data) - known
    if unknown:
        raise ConfigError(f"Unknown config keys: {', '.join(sorted(unknown))}")

    poll_limit = data.get("poll_limit")
    if isinstance(poll_limit, bool):
        raise ConfigError(f"invalid duration {poll_limit!r}")
    if "poll_limit" in data and poll_limit is None:
        # Same as the limiter: no interval means always refresh
        data["poll_limit"] = timedelta(0)
    elif isinstance(poll_limit, (int, float)):
        # Plain numbers are seconds
        data["poll_limit"] = timedelta(seconds=poll_limit)
    elif "poll_limit" in data:
        try:
            data["poll_limit"] = parse_duration(str(data["poll_limit"]))
        except ValueError as e:
            raise ConfigError(str(e))  # noqa: B904

    return data


def _env_defaults(environ: Mapping[str, str], base: dict[str, Any]) -> dict[str, Any]:
    """Overlay environment variables on top of file/default values."""
    defaults = dict(base)

    if "LISTEN" in environ:
        defaults["address"] = environ["LISTEN"]
    if "TAILSCALE_API_TOKEN" in environ:
        defaults["token"] = environ["TAILSCALE_API_TOKEN"]
    if "TAILNET" in environ:
        defaults["tailnet"] = environ["TAILNET"]
    if "TAILSCALE_API_POLL_LIMIT" in environ:
        try:
            defaults["poll_limit"] = parse_duration(environ["TAILSCALE_API_POLL_LIMIT"])
        except ValueError as e:
            logger.warning(
                "Duration parsing failed, using default",
                default=str(defaults["poll_limit"]),
                error=str(e),
            )
    if "TAILSCALE_USE_LOCAL_API" in environ:
        defaults["use_local_api"] = _parse_bool(environ["TAILSCALE_USE_LOCAL_API"])
    if "TAILSCALE_LOCAL_API_SOCKET" in environ:
        defaults["local_api_socket"] = environ["TAILSCALE_LOCAL_API_SOCKET"]
    if "LOG_LEVEL" in environ:
        defaults["log_level"] = environ["LOG_LEVEL"]
    if "LOG_JSON" in environ:
        defaults["json_logs"] = _parse_bool(environ["LOG_JSON"])

    return defaults


def _duration_arg(text: str) -> timedelta:
    try:
        return parse_duration(text)
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e))  # noqa: B904


def build_parser(defaults: Mapping[str, Any]) -> argparse.ArgumentParser:
    """Build the command-line parser, seeding flags with resolved defaults."""
    parser = argparse.ArgumentParser(
        prog="tailscalesd",
        description="Prometheus HTTP service discovery for Tailscale tailnets",
    )
    parser.add_argument("--config", "-c", type=Path, help="YAML configuration file path")
    parser.add_argument(
        "--address",
        default=defaults["address"],
        help="Address on which to serve Tailscale SD",
    )
    parser.add_argument("--token", default=defaults["token"], help="Tailscale API Token")
    parser.add_argument("--tailnet", default=defaults["tailnet"], help="Tailnet name.")
    parser.add_argument(
        "--poll",
        dest="poll_limit",
        type=_duration_arg,
        default=defaults["poll_limit"],
        help=(
            "Max frequency with which to poll the Tailscale API. "
            "Cached results are served between intervals."
        ),
    )
    parser.add_argument(
        "--localapi",
        dest="use_local_api",
        action=argparse.BooleanOptionalAction,
        default=defaults["use_local_api"],
        help="Use the Tailscale local API exported by the local node's tailscaled",
    )
    parser.add_argument(
        "--localapi_socket",
        dest="local_api_socket",
        default=defaults["local_api_socket"],
        help="Unix Domain Socket to use for communication with the local tailscaled API.",
    )
    parser.add_argument("--log-level", default=defaults["log_level"], help="Logging level")
    parser.add_argument(
        "--json-logs",
        action=argparse.BooleanOptionalAction,
        default=defaults["json_logs"],
        help="Emit logs as JSON",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"tailscalesd version {__version__}",
        help="Print the version and exit.",
    )
    return parser


def load_settings(
    argv: Sequence[str] | None = None,
    environ: Mapping[str, str] | None = None,
) -> Settings:
    """Resolve settings from flags, environment and an optional YAML file.

    Args:
        argv: Command-line arguments (defaults to ``sys.argv[1:]``)
        environ: Environment mapping (defaults to ``os.environ``)

    Returns:
        Resolved, unvalidated settings
    """
    environ = os.environ if environ is None else environ

    pre = argparse.ArgumentParser(add_help=False)
    pre.add_argument("--config", "-c", type=Path)
    known, _ = pre.parse_known_args(argv)

    base = {f.name: f.default for f in fields(Settings)}
    base.update(_load_file(known.config))

    parser = build_parser(_env_defaults(environ, base))
    args = parser.parse_args(argv)

    return Settings(
        address=args.address,
        tailnet=args.tailnet,
        token=args.token,
        poll_limit=args.poll_limit,
        use_local_api=args.use_local_api,
        local_api_socket=args.local_api_socket,
        log_level=args.log_level,
        json_logs=args.json_logs,
    )
