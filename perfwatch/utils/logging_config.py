"""
Logging Setup
=============
Console + rotating-file logging for the host app and the pipeline.

    - perfwatch.* loggers get their own level (PERFWATCH_LOG_LEVEL), so the
      collectors can run at DEBUG while uvicorn stays at INFO.
    - Every perfwatch record is tagged with its component (collectors,
      analyzers, optimizer, services, api) and the tag leads the line.
    - uvicorn.access is held at WARNING; request lines already come from
      LoggingMiddleware with timing attached.
"""
import logging
import os
import sys
from logging.handlers import TimedRotatingFileHandler
from typing import Optional, Union

from perfwatch.core import config

LINE_FORMAT = "%(asctime)s | %(levelname)-8s | %(component)-10s | %(name)s:%(lineno)d - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

Level = Union[int, str]


class ComponentFilter(logging.Filter):
    """Sets `record.component` from the logger name (perfwatch.<component>.<module>)."""

    def filter(self, record: logging.LogRecord) -> bool:
        parts = record.name.split(".")
        if parts[0] == "perfwatch" and len(parts) > 1:
            record.component = parts[1]
        else:
            record.component = parts[0]
        return True


class ColoredFormatter(logging.Formatter):
    """Colors the whole line by level; alerts from the monitor stand out in yellow/red."""

    COLORS = {
        logging.DEBUG: "\x1b[36m",
        logging.INFO: "\x1b[32m",
        logging.WARNING: "\x1b[33m",
        logging.ERROR: "\x1b[31m",
        logging.CRITICAL: "\x1b[31;1m",
    }
    RESET = "\x1b[0m"

    def __init__(self):
        super().__init__(LINE_FORMAT, datefmt=DATE_FORMAT)

    def format(self, record):
        line = super().format(record)
        color = self.COLORS.get(record.levelno)
        return f"{color}{line}{self.RESET}" if color else line


def _level(value: Level) -> int:
    if isinstance(value, int):
        return value
    resolved = logging.getLevelName(value.upper())
    return resolved if isinstance(resolved, int) else logging.INFO


def setup_logging(
    level: Level = config.LOG_LEVEL,
    perfwatch_level: Optional[Level] = None,
    log_dir: str = config.LOG_DIR,
    log_to_file: bool = config.LOG_TO_FILE,
):
    """Replace the root handlers with console (+ rotating file) handlers."""
    root_level = _level(level)
    own_level = _level(perfwatch_level if perfwatch_level is not None else config.PERFWATCH_LOG_LEVEL)

    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
    root_logger.setLevel(min(root_level, own_level))

    component_filter = ComponentFilter()

    # stderr for uvicorn compatibility
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.addFilter(component_filter)
    console_handler.setFormatter(ColoredFormatter())
    root_logger.addHandler(console_handler)

    if log_to_file:
        os.makedirs(log_dir, exist_ok=True)
        file_handler = TimedRotatingFileHandler(
            os.path.join(log_dir, "perfwatch.log"),
            when="midnight",
            backupCount=14,
            encoding="utf-8",
        )
        file_handler.addFilter(component_filter)
        file_handler.setFormatter(logging.Formatter(LINE_FORMAT, datefmt=DATE_FORMAT))
        root_logger.addHandler(file_handler)

    logging.getLogger("perfwatch").setLevel(own_level)
    for name in ("uvicorn", "uvicorn.error", "main"):
        logging.getLogger(name).setLevel(root_level)
    logging.getLogger("uvicorn.access").setLevel(max(root_level, logging.WARNING))

    root_logger.info(
        "Logging initialized (console%s, perfwatch=%s)",
        f" + {log_dir}" if log_to_file else "",
        logging.getLevelName(own_level),
    )
