"""Log file routing for the console host."""

from __future__ import annotations

import logging
import logging.handlers
from pathlib import Path

from ..services.settings import Settings

__all__ = ["setup_logging", "resolve_log_path"]

LOGGER = logging.getLogger(__name__)
_DEFAULT_LOG_DIR = Path.home() / ".colloquy" / "logs"
_LOG_FILE_NAME = "colloquy.log"
_RECORD_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
# HTTP and SDK internals stay at WARNING so debug output is our own dispatch trail.
_QUIET_LOGGERS: tuple[str, ...] = ("asyncio", "httpx", "httpcore", "openai")
_active_path: Path | None = None


def setup_logging(settings: Settings, *, debug: bool = False, console: bool | None = None, force: bool = False) -> Path:
    """Route log records to the rotating file described by *settings*.

    ``debug`` (or ``settings.debug_logging``) lowers the level to DEBUG and, unless
    ``console`` says otherwise, mirrors records to stderr. Later calls are no-ops
    returning the active file until ``force`` is passed.
    """

    global _active_path
    if _active_path is not None and not force:
        return _active_path

    debug = debug or settings.debug_logging
    level = logging.DEBUG if debug else _resolve_level(settings.log_level)
    log_path = resolve_log_path(settings)
    log_path.parent.mkdir(parents=True, exist_ok=True)

    handlers: list[logging.Handler] = [
        logging.handlers.RotatingFileHandler(
            log_path,
            maxBytes=settings.log_max_bytes,
            backupCount=settings.log_backups,
            encoding="utf-8",
        )
    ]
    if debug if console is None else console:
        handlers.append(logging.StreamHandler())
    formatter = logging.Formatter(fmt=_RECORD_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")
    for handler in handlers:
        handler.setFormatter(formatter)

    logging.basicConfig(level=level, handlers=handlers, force=True)
    logging.captureWarnings(True)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    _active_path = log_path
    LOGGER.debug("Logging to %s at %s", log_path, logging.getLevelName(level))
    return log_path


def resolve_log_path(settings: Settings) -> Path:
    directory = Path(settings.log_dir).expanduser() if settings.log_dir else _DEFAULT_LOG_DIR
    return directory / _LOG_FILE_NAME


def _resolve_level(name: str) -> int:
    level = logging.getLevelName(str(name).strip().upper())
    if isinstance(level, int):
        return level
    LOGGER.warning("Unknown log level %r; using INFO", name)
    return logging.INFO
