"""
Logging setup for the ChatRelay bot.

Console output is colored and human-readable; the optional log file gets one
JSON object per line and rotates by size. Handlers bind per-chat context with
chat_logger(), and every structured field passes through
filter_sensitive_data() so keys users type in never reach the logs.
"""

import json
import logging
import logging.handlers
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, Optional

CONSOLE_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
PLAIN_FILE_FORMAT = "%(asctime)s | %(levelname)s | %(name)s:%(funcName)s:%(lineno)d | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

LOG_FILE_MAX_BYTES = 10 * 1024 * 1024
LOG_FILE_BACKUPS = 5

# Matched as substrings of lower-cased field names
SENSITIVE_KEYS = (
    "candidate", "api_key", "api-key", "token", "secret", "authorization", "password",
)
FILTERED = "***FILTERED***"

# Chatty at INFO: one line per request or query
QUIET_LOGGERS = ("httpx", "httpcore", "aiosqlite", "uvicorn.access")


class ColoredFormatter(logging.Formatter):
    """Console formatter that colors the level name."""

    LEVEL_COLORS = {
        logging.DEBUG: "\033[36m",
        logging.INFO: "\033[32m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.LEVEL_COLORS.get(record.levelno)
        if color is None:
            return super().format(record)
        # The record is shared with the file handler
        colored = logging.makeLogRecord(record.__dict__)
        colored.levelname = f"{color}{record.levelname:8s}{self.RESET}"
        return super().format(colored)


class JSONFormatter(logging.Formatter):
    """One JSON object per record, with the record's extra_fields merged in."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "function": record.funcName,
            "line": record.lineno,
            "message": record.getMessage(),
        }
        fields = getattr(record, "extra_fields", None)
        if fields:
            entry.update(filter_sensitive_data(fields))
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


def _console_handler(level: int) -> logging.Handler:
    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(ColoredFormatter(CONSOLE_FORMAT, datefmt=DATE_FORMAT))
    return handler


def _file_handler(path: str, level: int, json_format: bool) -> logging.Handler:
    Path(path).parent.mkdir(parents=True, exist_ok=True)
    handler = logging.handlers.RotatingFileHandler(
        filename=path,
        maxBytes=LOG_FILE_MAX_BYTES,
        backupCount=LOG_FILE_BACKUPS,
        encoding="utf-8",
    )
    handler.setLevel(level)
    if json_format:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(PLAIN_FILE_FORMAT, datefmt=DATE_FORMAT))
    return handler


def setup_logging(config: Any) -> None:
    """
    Configure the root logger from settings. Replaces any existing handlers.

    Args:
        config: Settings object (log_level, log_console_enabled,
            log_file_enabled, log_file_path, log_json_format)
    """
    level = getattr(logging, config.log_level.upper(), logging.INFO)
    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(level)

    if config.log_console_enabled:
        root.addHandler(_console_handler(level))
    if config.log_file_enabled:
        root.addHandler(_file_handler(config.log_file_path, level, config.log_json_format))

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    root.info(
        f"Logging initialized: level={config.log_level.upper()}, "
        f"console={config.log_console_enabled}, file={config.log_file_enabled}"
    )


class LoggerAdapter(logging.LoggerAdapter):
    """Adds the adapter's bound fields to each record's extra_fields."""

    def process(self, msg: str, kwargs: Dict[str, Any]) -> tuple:
        extra = kwargs.setdefault("extra", {})
        extra["extra_fields"] = {**self.extra, **extra.get("extra_fields", {})}
        return msg, kwargs


def chat_logger(logger: logging.Logger, chat_id: int, **fields: Any) -> LoggerAdapter:
    """
    Bind a chat id (and any other fields) to a logger.

    Usage:
        log = chat_logger(logger, chat_id, model="gpt-4")
        log.info("Conversation turn stored")
    """
    return LoggerAdapter(logger, {"chat_id": chat_id, **fields})


def filter_sensitive_data(data: Any, sensitive_keys: Optional[Iterable[str]] = None) -> Any:
    """
    Mask values whose key contains a sensitive fragment, recursively.

    Args:
        data: Dict, list or primitive
        sensitive_keys: Key fragments to mask (default: SENSITIVE_KEYS)
    """
    keys = tuple(SENSITIVE_KEYS if sensitive_keys is None else sensitive_keys)
    if isinstance(data, dict):
        return {
            key: FILTERED if any(k in str(key).lower() for k in keys)
            else filter_sensitive_data(value, keys)
            for key, value in data.items()
        }
    if isinstance(data, list):
        return [filter_sensitive_data(item, keys) for item in data]
    return data


def truncate_large_data(data: str, max_length: int = 5000) -> str:
    """Cut a string to max_length characters, noting the original length."""
    if len(data) <= max_length:
        return data
    return data[:max_length] + f"... (truncated, total length: {len(data)})"
