"""Client configuration: defaults, option overrides, validation and YAML loading."""

from __future__ import annotations

from dataclasses import dataclass, fields, replace
from enum import Enum
from typing import Any, Callable, Dict, List

import yaml

from togomq.errors import ErrorCode, new_error

DEFAULT_HOST = "q.togomq.io"
DEFAULT_PORT = 5123
DEFAULT_MAX_MESSAGE_SIZE = 50 * 1024 * 1024
DEFAULT_WINDOW_SIZE = 128 * 1024 * 1024
DEFAULT_BUFFER_SIZE = 2 * 1024 * 1024


class ConfigIssue(str, Enum):
    """The invariants checked by :meth:`Config.validate`, in checking order."""

    EMPTY_HOST = "host cannot be empty"
    INVALID_PORT = "port must be between 1 and 65535"
    MISSING_TOKEN = "token is required"
    INVALID_MAX_MESSAGE_SIZE = "max message size must be greater than 0"
    INVALID_WINDOW_SIZE = "initial window size must be greater than 0"
    INVALID_CONN_WINDOW_SIZE = "initial connection window size must be greater than 0"
    INVALID_WRITE_BUFFER_SIZE = "write buffer size must be greater than 0"
    INVALID_READ_BUFFER_SIZE = "read buffer size must be greater than 0"
    INVALID_KEEPALIVE_TIME = "keepalive time must be greater than 0"
    INVALID_KEEPALIVE_TIMEOUT = "keepalive timeout must be greater than 0"


class ConfigValidationError(ValueError):
    """Raised by :meth:`Config.validate` with the first violated invariant."""

    def __init__(self, issue: ConfigIssue) -> None:
        super().__init__(issue.value)
        self.issue = issue


@dataclass(frozen=True)
class Config:
    """Connection parameters and transport tuning for a :class:`~togomq.client.Client`.

    Sizes are in bytes, keepalive durations in seconds.
    """

    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    log_level: str = "info"
    token: str = ""
    use_tls: bool = True
    max_message_size: int = DEFAULT_MAX_MESSAGE_SIZE
    initial_window_size: int = DEFAULT_WINDOW_SIZE
    initial_conn_window_size: int = DEFAULT_WINDOW_SIZE
    write_buffer_size: int = DEFAULT_BUFFER_SIZE
    read_buffer_size: int = DEFAULT_BUFFER_SIZE
    keepalive_time: float = 60.0
    keepalive_timeout: float = 20.0

    def validate(self) -> None:
        """Raise :class:`ConfigValidationError` for the first violated invariant."""
        if not self.host or not self.host.strip():
            raise ConfigValidationError(ConfigIssue.EMPTY_HOST)
        if self.port <= 0 or self.port > 65535:
            raise ConfigValidationError(ConfigIssue.INVALID_PORT)
        if not self.token or not self.token.strip():
            raise ConfigValidationError(ConfigIssue.MISSING_TOKEN)

        positive = (
            (self.max_message_size, ConfigIssue.INVALID_MAX_MESSAGE_SIZE),
            (self.initial_window_size, ConfigIssue.INVALID_WINDOW_SIZE),
            (self.initial_conn_window_size, ConfigIssue.INVALID_CONN_WINDOW_SIZE),
            (self.write_buffer_size, ConfigIssue.INVALID_WRITE_BUFFER_SIZE),
            (self.read_buffer_size, ConfigIssue.INVALID_READ_BUFFER_SIZE),
            (self.keepalive_time, ConfigIssue.INVALID_KEEPALIVE_TIME),
            (self.keepalive_timeout, ConfigIssue.INVALID_KEEPALIVE_TIMEOUT),
        )
        for value, issue in positive:
            if value <= 0:
                raise ConfigValidationError(issue)

    def address(self) -> str:
        """Return the server address as ``host:port``."""
        return f"{self.host}:{self.port}"


ConfigOption = Callable[[Config], Config]


def default_config() -> Config:
    """Return a fully populated configuration with the documented defaults."""
    return Config()


def new_config(*options: ConfigOption) -> Config:
    """Apply *options* in order on top of :func:`default_config`."""
    cfg = default_config()
    for option in options:
        cfg = option(cfg)
    return cfg


# ---------------------------------------------------------------------------
# Options
# ---------------------------------------------------------------------------


def with_host(host: str) -> ConfigOption:
    return lambda cfg: replace(cfg, host=host)


def with_port(port: int) -> ConfigOption:
    return lambda cfg: replace(cfg, port=port)


def with_log_level(level: str) -> ConfigOption:
    return lambda cfg: replace(cfg, log_level=level)


def with_token(token: str) -> ConfigOption:
    return lambda cfg: replace(cfg, token=token)


def with_use_tls(use_tls: bool) -> ConfigOption:
    return lambda cfg: replace(cfg, use_tls=use_tls)


def with_max_message_size(size: int) -> ConfigOption:
    """Set the max message size; both flow-control windows follow it."""
    return lambda cfg: replace(
        cfg,
        max_message_size=size,
        initial_window_size=size,
        initial_conn_window_size=size,
    )


def with_initial_window_size(size: int) -> ConfigOption:
    return lambda cfg: replace(cfg, initial_window_size=size)


def with_initial_conn_window_size(size: int) -> ConfigOption:
    return lambda cfg: replace(cfg, initial_conn_window_size=size)


def with_write_buffer_size(size: int) -> ConfigOption:
    return lambda cfg: replace(cfg, write_buffer_size=size)


def with_read_buffer_size(size: int) -> ConfigOption:
    return lambda cfg: replace(cfg, read_buffer_size=size)


def with_keepalive_time(seconds: float) -> ConfigOption:
    return lambda cfg: replace(cfg, keepalive_time=seconds)


def with_keepalive_timeout(seconds: float) -> ConfigOption:
    return lambda cfg: replace(cfg, keepalive_timeout=seconds)


# Order matters: max_message_size must come before the window sizes so that
# explicit window sizes in a file override the derived ones.
_OPTION_BUILDERS: Dict[str, Callable[[Any], ConfigOption]] = {
    "host": with_host,
    "port": with_port,
    "log_level": with_log_level,
    "token": with_token,
    "use_tls": with_use_tls,
    "max_message_size": with_max_message_size,
    "initial_window_size": with_initial_window_size,
    "initial_conn_window_size": with_initial_conn_window_size,
    "write_buffer_size": with_write_buffer_size,
    "read_buffer_size": with_read_buffer_size,
    "keepalive_time": with_keepalive_time,
    "keepalive_timeout": with_keepalive_timeout,
}


def options_from_mapping(raw: Dict[str, Any]) -> List[ConfigOption]:
    """Turn a mapping of :class:`Config` field names into ordered options."""
    known = {f.name for f in fields(Config)}
    unknown = sorted(set(raw) - known)
    if unknown:
        raise new_error(
            ErrorCode.CONFIGURATION,
            f"unknown configuration key(s): {', '.join(unknown)}",
        )
    return [build(raw[key]) for key, build in _OPTION_BUILDERS.items() if key in raw]


def load_config(path: str) -> Config:
    """Load a YAML configuration file and return a :class:`Config`.

    The file holds a flat mapping of :class:`Config` field names.  Missing
    keys keep their defaults.  The result is not validated here; the client
    validates it on construction.
    """
    with open(path, "r") as fh:
        raw = yaml.safe_load(fh)

    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise new_error(
            ErrorCode.CONFIGURATION,
            f"configuration file {path} must contain a mapping",
        )
    return new_config(*options_from_mapping(raw))
