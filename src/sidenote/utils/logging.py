"""Logging setup shared by the CLI, the Qt reader and the host service."""

from __future__ import annotations

import logging
import logging.handlers
import os
from pathlib import Path

__all__ = ["setup_logging", "resolve_level", "get_log_path", "reset_logging"]

_DEFAULT_LOG_DIR = Path.home() / ".sidenote" / "logs"
_LOG_FILENAME = "sidenote.log"
_LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
# Transport chatter drowns out assistant diagnostics at DEBUG.
_NOISY_LOGGERS: tuple[str, ...] = ("asyncio", "qasync", "httpx", "httpcore", "openai")
_LOG_PATH: Path | None = None


def resolve_level(debug: bool = False) -> int:
    """Return the root level, honouring ``SIDENOTE_LOG_LEVEL`` over ``debug``."""

    env_value = (os.environ.get("SIDENOTE_LOG_LEVEL") or "").strip().upper()
    if env_value:
        level = logging.getLevelName(env_value)
        if isinstance(level, int):
            return level
    return logging.DEBUG if debug else logging.INFO


def setup_logging(
    level: int | None = None,
    *,
    log_dir: Path | str | None = None,
    console: bool = True,
    max_bytes: int = 512_000,
    backup_count: int = 2,
    force: bool = False,
) -> Path:
    """Install a rotating file handler (and optionally stderr) on the root logger.

    Repeated calls are no-ops unless ``force`` is set, so the CLI and the Qt
    reader can both call this without stacking handlers.
    """

    global _LOG_PATH
    if _LOG_PATH is not None and not force:
        return _LOG_PATH

    resolved_level = resolve_level() if level is None else level
    target_dir = Path(log_dir or os.environ.get("SIDENOTE_LOG_DIR") or _DEFAULT_LOG_DIR).expanduser()
    target_dir.mkdir(parents=True, exist_ok=True)
    log_path = target_dir / _LOG_FILENAME

    formatter = logging.Formatter(fmt=_LOG_FORMAT, datefmt=_DATE_FORMAT)
    handlers: list[logging.Handler] = [
        logging.handlers.RotatingFileHandler(
            log_path, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
        )
    ]
    if console:
        handlers.append(logging.StreamHandler())
    for handler in handlers:
        handler.setLevel(resolved_level)
        handler.setFormatter(formatter)

    logging.basicConfig(level=resolved_level, handlers=handlers, force=True)
    logging.captureWarnings(True)

    quiet_level = max(logging.WARNING, resolved_level)
    for logger_name in _NOISY_LOGGERS:
        logging.getLogger(logger_name).setLevel(quiet_level)

    _LOG_PATH = log_path
    return log_path


def get_log_path() -> Path | None:
    """Return the active log file, or ``None`` before :func:`setup_logging`."""

    return _LOG_PATH


def reset_logging() -> None:
    """Detach and close the handlers installed by :func:`setup_logging`."""

    global _LOG_PATH
    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    _LOG_PATH = None
