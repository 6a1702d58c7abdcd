"""Logging setup for snapdash.

Modules log through stdlib ``logging.getLogger(__name__)``; structlog's
ProcessorFormatter renders those records as JSON lines in the log file and
as colored lines on stderr for one-shot commands. While the dashboard owns
the terminal, stderr output is replaced by a NoticeHandler that feeds the
dashboard's log panel.
"""

from __future__ import annotations

import logging
import socket
from collections.abc import Callable
from datetime import datetime
from enum import IntEnum
from pathlib import Path
from typing import Any

import structlog
from structlog.typing import EventDict, WrappedLogger

__all__ = [
    "LogLevel",
    "NoticeHandler",
    "configure_logging",
    "create_log_file_path",
    "get_latest_log_file",
    "get_logger",
    "get_logs_directory",
]


class LogLevel(IntEnum):
    """Logging levels accepted in the configuration file."""

    DEBUG = logging.DEBUG
    INFO = logging.INFO
    WARNING = logging.WARNING
    ERROR = logging.ERROR
    CRITICAL = logging.CRITICAL


class NoticeHandler(logging.Handler):
    """Forwards log records to a callable, one formatted line per record."""

    def __init__(self, sink: Callable[[str], None], level: int = logging.WARNING) -> None:
        super().__init__(level)
        self._sink = sink
        self.setFormatter(logging.Formatter("%(levelname)s %(message)s"))

    def format(self, record: logging.LogRecord) -> str:
        # Records from structlog loggers carry the event dict as msg
        if isinstance(record.msg, dict):
            return f"{record.levelname} {record.msg.get('event', '')}"
        return super().format(record)

    def emit(self, record: logging.LogRecord) -> None:
        try:
            self._sink(self.format(record))
        except Exception:
            self.handleError(record)


def _add_hostname(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    """Add hostname to log context if not already present."""
    if "hostname" not in event_dict:
        event_dict["hostname"] = socket.gethostname()
    return event_dict


def configure_logging(
    log_file_level: int,
    log_cli_level: int,
    log_file_path: Path | None,
    notice_sink: Callable[[str], None] | None = None,
    ignore_notices_from: tuple[str, ...] = (),
) -> None:
    """Configure structlog over stdlib logging.

    Args:
        log_file_level: Minimum level for the JSON log file
        log_cli_level: Minimum level for terminal output (stderr or notices)
        log_file_path: Path to log file, None to skip file logging
        notice_sink: If given, terminal output goes to this callable instead of stderr
        ignore_notices_from: Logger names whose records never become notices
    """
    shared_processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        _add_hostname,
        structlog.processors.StackInfoRenderer(),
    ]

    structlog.configure(
        processors=[*shared_processors, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    handlers: list[logging.Handler] = []

    if log_file_path is not None:
        log_file_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file_path, encoding="utf-8")
        file_handler.setLevel(log_file_level)
        file_handler.setFormatter(
            structlog.stdlib.ProcessorFormatter(
                processors=[
                    structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                    structlog.processors.format_exc_info,
                    structlog.processors.JSONRenderer(),
                ],
                foreign_pre_chain=shared_processors,
            )
        )
        handlers.append(file_handler)

    if notice_sink is not None:
        notice_handler = NoticeHandler(notice_sink, level=log_cli_level)
        for name in ignore_notices_from:
            notice_handler.addFilter(lambda record, name=name: record.name != name)
        handlers.append(notice_handler)
    else:
        console_handler = logging.StreamHandler()
        console_handler.setLevel(log_cli_level)
        console_handler.setFormatter(
            structlog.stdlib.ProcessorFormatter(
                processors=[
                    structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                    structlog.dev.ConsoleRenderer(colors=True),
                ],
                foreign_pre_chain=shared_processors,
            )
        )
        handlers.append(console_handler)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    for handler in handlers:
        root_logger.addHandler(handler)
    root_logger.setLevel(min(log_file_level, log_cli_level) if log_file_path is not None else log_cli_level)
    # asyncssh is chatty at INFO
    logging.getLogger("asyncssh").setLevel(logging.WARNING)


def get_logger(name: str, **context: Any) -> structlog.stdlib.BoundLogger:
    """Get a structlog logger with bound context.

    Args:
        name: Logger name
        **context: Additional context to bind (e.g., host)
    """
    logger = structlog.get_logger(name)
    if context:
        logger = logger.bind(**context)
    return logger


def get_logs_directory() -> Path:
    """Get the logs directory path."""
    return Path.home() / ".local" / "share" / "snapdash" / "logs"


def create_log_file_path(timestamp: datetime | None = None) -> Path:
    """Create log file path in ~/.local/share/snapdash/logs/snapdash-<timestamp>.log."""
    if timestamp is None:
        timestamp = datetime.now()
    return get_logs_directory() / f"snapdash-{timestamp.strftime('%Y%m%dT%H%M%S')}.log"


def get_latest_log_file() -> Path | None:
    """Get the most recent log file, or None if no logs exist."""
    logs_dir = get_logs_directory()
    if not logs_dir.exists():
        return None

    log_files = sorted(logs_dir.glob("snapdash-*.log"), reverse=True)
    return log_files[0] if log_files else None
