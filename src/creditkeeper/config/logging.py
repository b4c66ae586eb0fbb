"""Logging setup for the CLI and other entry points."""

from __future__ import annotations

import logging

from .env import ConfigurationError, optional_env

LOG_LEVEL_ENV = "CREDITKEEPER_LOG_LEVEL"

# these log every request and every migration step at INFO
_NOISY_LOGGERS = ("httpx", "httpcore", "alembic.runtime.migration")


def log_level_from_environment(default: int = logging.INFO) -> int:
    raw = optional_env(LOG_LEVEL_ENV)
    if raw is None:
        return default
    level = logging.getLevelNamesMapping().get(raw.upper())
    if level is None:
        raise ConfigurationError(f"{LOG_LEVEL_ENV} must be a logging level name, got {raw!r}")
    return level


def configure_logging(*, level: int | None = None, force: bool = False) -> None:
    """Configure the root logger for terse CLI output.

    ``level`` defaults to ``CREDITKEEPER_LOG_LEVEL`` (INFO when unset). Third-party
    HTTP loggers are held at WARNING unless DEBUG is requested.
    """

    resolved = level if level is not None else log_level_from_environment()
    logging.basicConfig(
        level=resolved,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        datefmt="%H:%M:%S",
        force=force,
    )
    if resolved > logging.DEBUG:
        for name in _NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)
