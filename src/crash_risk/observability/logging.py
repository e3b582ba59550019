"""
Structured logging setup.

Provides colored console output, a plain text file log and an optional
JSON-lines log for machine consumption of state transitions.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime
from enum import Enum
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from crash_risk.config.settings import LoggingSettings, Settings

# =============================================================================
# Constants
# =============================================================================

# Log tags for special message handling
LOG_TAG_TICK = "[TICK]"
LOG_TAG_STATE = "[STATE]"
LOG_TAG_STALE = "[STALE]"
LOG_TAG_HEALTH = "[HEALTH]"

# Record attributes copied into JSON lines when passed via `extra=`
JSON_EXTRA_FIELDS = ("instrument", "state", "previous_state", "rule", "tick_id", "error_code")

NOISY_LIBRARIES = ("aiohttp", "aiosqlite", "asyncio", "urllib3")

FILE_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
CONSOLE_DATEFMT = "%H:%M:%S"

__all__ = [
    "setup_logging",
    "get_logger",
    "JSONFormatter",
    "RiskLogFormatter",
    "LOG_TAG_TICK",
    "LOG_TAG_STATE",
    "LOG_TAG_STALE",
    "LOG_TAG_HEALTH",
]


class LogEncoder(json.JSONEncoder):
    """JSON encoder for enums, datetimes and domain objects."""

    def default(self, obj: Any) -> Any:
        if isinstance(obj, Enum):
            return obj.value
        if isinstance(obj, datetime):
            return obj.isoformat()
        if hasattr(obj, "to_dict"):
            return obj.to_dict()
        return str(obj)


class JSONFormatter(logging.Formatter):
    """Format log records as JSON lines."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        for key in JSON_EXTRA_FIELDS:
            if hasattr(record, key):
                log_data[key] = getattr(record, key)

        return json.dumps(log_data, cls=LogEncoder)


def _file_handler(cfg: LoggingSettings) -> logging.Handler:
    """Plain-text log, one file per process start."""
    directory = Path(cfg.directory)
    directory.mkdir(parents=True, exist_ok=True)
    started = datetime.now(UTC).strftime("%Y%m%d_%H%M%S")
    handler = logging.FileHandler(directory / f"crash_risk_{started}.log", encoding="utf-8")
    handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    return handler


def _json_handler(cfg: LoggingSettings) -> logging.Handler:
    """JSON-lines log, size-rotated unless rotation is configured off."""
    path = Path(cfg.json_file)
    path.parent.mkdir(parents=True, exist_ok=True)
    handler: logging.Handler
    if cfg.json_max_bytes > 0 and cfg.json_backup_count > 0:
        handler = RotatingFileHandler(
            path, maxBytes=cfg.json_max_bytes, backupCount=cfg.json_backup_count, encoding="utf-8"
        )
    else:
        handler = logging.FileHandler(path, encoding="utf-8")
    handler.setFormatter(JSONFormatter())
    return handler


def setup_logging(settings: Settings | None = None) -> logging.Logger:
    """
    Configure the root logger from settings.logging.

    Always logs to stdout; the text file and the JSON-lines file are
    optional. Calling it again replaces the previous handlers.

    Returns the root logger.
    """
    if settings is None:
        from crash_risk.config.settings import get_settings

        settings = get_settings()

    cfg = settings.logging
    level = logging.getLevelName(cfg.level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    root = logging.getLogger()
    root.setLevel(level)
    for old in list(root.handlers):
        root.removeHandler(old)
        old.close()

    console = logging.StreamHandler(sys.stdout)
    console.setFormatter(RiskLogFormatter(use_colors=cfg.colors))
    handlers: list[logging.Handler] = [console]
    if cfg.file_enabled:
        handlers.append(_file_handler(cfg))
    if cfg.json_enabled:
        handlers.append(_json_handler(cfg))

    for handler in handlers:
        handler.setLevel(level)
        root.addHandler(handler)

    for name in NOISY_LIBRARIES:
        logging.getLogger(name).setLevel(logging.WARNING)

    return root


def get_logger(name: str) -> logging.Logger:
    """Get a named logger."""
    return logging.getLogger(name)


# ANSI styles
_RESET = "\033[0m"
_STYLES = {
    # key: (ansi, label, color the whole line)
    "DEBUG": ("\033[90m", "DEBUG", True),
    "INFO": ("\033[92m", "INFO", False),
    "WARNING": ("\033[93m", "WARN", True),
    "ERROR": ("\033[91m", "ERROR", True),
    "CRITICAL": ("\033[1;91m", "CRITICAL", True),
    "STATE": ("\033[96m", "STATE", False),
    "STALE": ("\033[95m", "STALE", False),
    "HEALTH": ("\033[94m", "HEALTH", False),
    "TICK": ("\033[90m", "TICK", False),
}


class RiskLogFormatter(logging.Formatter):
    """
    Console formatter: short timestamps, colored level labels.

    INFO/DEBUG messages carrying one of the LOG_TAG_* markers are shown with
    the tag as their label instead of the level ([STATE] cyan, [STALE]
    magenta, [HEALTH] blue, [TICK] grey).
    """

    TAGS = {
        LOG_TAG_STATE: "STATE",
        LOG_TAG_STALE: "STALE",
        LOG_TAG_HEALTH: "HEALTH",
        LOG_TAG_TICK: "TICK",
    }

    def __init__(self, use_colors: bool = True):
        super().__init__(datefmt=CONSOLE_DATEFMT)
        self._by_key = {key: self._build(*style, use_colors=use_colors) for key, style in _STYLES.items()}

    @staticmethod
    def _build(ansi: str, label: str, whole_line: bool, *, use_colors: bool) -> logging.Formatter:
        if not use_colors:
            pattern = f"%(asctime)s [{label}] %(message)s"
        elif whole_line:
            pattern = f"{ansi}%(asctime)s [{label}] %(message)s{_RESET}"
        else:
            pattern = f"{ansi}%(asctime)s [{label}]{_RESET} %(message)s"
        return logging.Formatter(pattern, datefmt=CONSOLE_DATEFMT)

    def _tag_of(self, message: str) -> str | None:
        for tag in self.TAGS:
            if tag in message:
                return tag
        return None

    def format(self, record: logging.LogRecord) -> str:
        if record.levelno <= logging.INFO:
            message = record.getMessage()
            tag = self._tag_of(message)
            if tag is not None:
                record.msg = message.replace(tag, "").strip()
                record.args = ()
                return self._by_key[self.TAGS[tag]].format(record)
        return self._by_key.get(record.levelname, self._by_key["INFO"]).format(record)
