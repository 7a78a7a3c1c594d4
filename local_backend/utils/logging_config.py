"""
Structured logging configuration for the local backend orchestrator.

Features:
- JSON structured logging for log files and CI
- Colored console logging for interactive dev sessions
- Context propagation (state id, startup stage)
- Duration logging for deploys
"""

from __future__ import annotations

import json
import logging
import os
import sys
import time
from contextvars import ContextVar
from dataclasses import dataclass, field
from datetime import datetime, timezone
from functools import wraps
from pathlib import Path
from typing import Any, Callable, Dict, Optional, TypeVar

# Context variables for log correlation
_run_id: ContextVar[Optional[str]] = ContextVar("run_id", default=None)
_stage: ContextVar[Optional[str]] = ContextVar("stage", default=None)
_extra_context: ContextVar[Dict[str, Any]] = ContextVar("extra_context", default={})

T = TypeVar("T")


def set_run_id(run_id: str) -> None:
    """Set the current state id for log correlation."""
    _run_id.set(run_id)


def set_stage(stage: Optional[str]) -> None:
    """Set the current startup stage."""
    _stage.set(stage)


def set_context(**kwargs: Any) -> None:
    """Set additional context fields."""
    current = _extra_context.get().copy()
    current.update(kwargs)
    _extra_context.set(current)


def clear_context() -> None:
    """Clear extra context."""
    _extra_context.set({})


class StructuredFormatter(logging.Formatter):
    """
    JSON structured log formatter.

    Output format:
    {
        "timestamp": "2024-12-22T02:15:30.123456Z",
        "level": "INFO",
        "logger": "local_backend.supervisor.process",
        "message": "Backend ready",
        "run_id": "main-3f2a9c0d1e4b5a6f",
        "stage": "spawn",
        "extra": {...}
    }
    """

    STANDARD_FIELDS = {
        "name", "msg", "args", "created", "filename", "funcName",
        "levelname", "levelno", "lineno", "module", "msecs",
        "pathname", "process", "processName", "relativeCreated",
        "stack_info", "exc_info", "exc_text", "thread", "threadName",
        "taskName", "message",
    }

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        run_id = _run_id.get()
        stage = _stage.get()
        extra = _extra_context.get()

        if run_id:
            log_data["run_id"] = run_id
        if stage:
            log_data["stage"] = stage
        if extra:
            log_data["context"] = extra

        record_extras = {
            k: v for k, v in record.__dict__.items()
            if k not in self.STANDARD_FIELDS and not k.startswith("_")
        }
        if record_extras:
            log_data["extra"] = record_extras

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


class RichConsoleFormatter(logging.Formatter):
    """
    Console formatter for development with colors and a short prefix.
    """

    COLORS = {
        "DEBUG": "\033[36m",    # Cyan
        "INFO": "\033[32m",     # Green
        "WARNING": "\033[33m",  # Yellow
        "ERROR": "\033[31m",    # Red
        "CRITICAL": "\033[35m", # Magenta
    }
    RESET = "\033[0m"
    BOLD = "\033[1m"
    DIM = "\033[2m"

    def __init__(self, prefix: str = "[backend]", use_color: bool = True):
        super().__init__()
        self.prefix = prefix
        self.use_color = use_color

    def _colorize(self, code: str, text: str) -> str:
        if not self.use_color:
            return text
        return f"{code}{text}{self.RESET}"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, "")
        timestamp = datetime.now().strftime("%H:%M:%S")

        stage = _stage.get()
        stage_str = f" ({stage})" if stage else ""

        output = (
            f"{self._colorize(self.DIM, timestamp)} "
            f"{self._colorize(color + self.BOLD, self.prefix)}"
            f"{self._colorize(self.DIM, stage_str)} "
            f"{record.getMessage()}"
        )

        if record.levelno >= logging.WARNING:
            output = f"{output} {self._colorize(self.DIM, '[' + record.levelname.lower() + ']')}"

        if record.exc_info:
            output += "\n" + self.formatException(record.exc_info)

        return output


@dataclass
class LoggingConfig:
    """Logging configuration."""

    level: str = field(
        default_factory=lambda: os.getenv("LOCAL_BACKEND_LOG_LEVEL", "INFO")
    )
    format: str = field(
        default_factory=lambda: os.getenv("LOCAL_BACKEND_LOG_FORMAT", "rich")
    )  # "rich" or "json"

    # File logging
    log_file: Optional[Path] = field(
        default_factory=lambda: Path(os.getenv("LOCAL_BACKEND_LOG_FILE", ""))
        if os.getenv("LOCAL_BACKEND_LOG_FILE") else None
    )
    max_file_size_mb: int = 10
    backup_count: int = 3

    console_enabled: bool = True
    console_prefix: str = "[backend]"

    quiet_loggers: list = field(
        default_factory=lambda: [
            "aiohttp",
            "asyncio",
            "watchdog",
            "urllib3",
        ]
    )


def setup_logging(config: Optional[LoggingConfig] = None) -> None:
    """
    Configure logging for the orchestrator.

    Args:
        config: Logging configuration. Uses defaults if None.
    """
    if config is None:
        config = LoggingConfig()

    level = getattr(logging, config.level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()

    if config.console_enabled:
        console_handler = logging.StreamHandler(sys.stderr)

        if config.format == "json":
            console_handler.setFormatter(StructuredFormatter())
        else:
            console_handler.setFormatter(
                RichConsoleFormatter(
                    prefix=config.console_prefix,
                    use_color=sys.stderr.isatty(),
                )
            )

        root_logger.addHandler(console_handler)

    if config.log_file:
        config.log_file.parent.mkdir(parents=True, exist_ok=True)

        from logging.handlers import RotatingFileHandler

        file_handler = RotatingFileHandler(
            config.log_file,
            maxBytes=config.max_file_size_mb * 1024 * 1024,
            backupCount=config.backup_count,
        )
        file_handler.setFormatter(StructuredFormatter())
        root_logger.addHandler(file_handler)

    for logger_name in config.quiet_loggers:
        logging.getLogger(logger_name).setLevel(logging.WARNING)

    logging.getLogger("local_backend").setLevel(level)


def get_logger(name: str) -> logging.Logger:
    """Get a logger with the given name."""
    return logging.getLogger(name)


class LogContext:
    """
    Context manager for temporary log context.

    Example:
        with LogContext(state_id="main-3f2a9c0d1e4b5a6f"):
            logger.info("Spawning")  # Includes state_id
        logger.info("Done")  # No longer includes state_id
    """

    def __init__(self, **kwargs: Any):
        self._context = kwargs
        self._previous: Dict[str, Any] = {}

    def __enter__(self) -> "LogContext":
        self._previous = _extra_context.get().copy()
        new_context = self._previous.copy()
        new_context.update(self._context)
        _extra_context.set(new_context)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        _extra_context.set(self._previous)


def log_duration(
    logger: logging.Logger,
    level: int = logging.INFO,
    message: str = "Operation completed",
) -> Callable:
    """
    Decorator to log coroutine duration.

    Example:
        @log_duration(logger, message="Deploy")
        async def deploy():
            ...
    """

    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @wraps(func)
        async def async_wrapper(*args, **kwargs) -> T:
            start = time.perf_counter()
            try:
                result = await func(*args, **kwargs)
            except Exception as e:
                duration = (time.perf_counter() - start) * 1000
                logger.debug(
                    f"{message} failed ({duration:.0f}ms): {type(e).__name__}",
                    extra={"duration_ms": duration, "function": func.__name__},
                )
                raise
            duration = (time.perf_counter() - start) * 1000
            logger.log(
                level,
                f"{message} ({duration:.0f}ms)",
                extra={"duration_ms": duration, "function": func.__name__},
            )
            return result

        return async_wrapper

    return decorator
