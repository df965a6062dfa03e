"""Logging for the API, the terminal client and operator scripts.

Records go through a queue to a rich console handler and, when a log
directory is configured, to one file per day. Tool invocations bind
``turn=`` / ``tool=`` / ``call_id=`` via :data:`log_context` so every line a
tool emits can be traced back to its chat turn.
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from datetime import date, datetime
from logging.handlers import QueueHandler, QueueListener
from pathlib import Path
from queue import SimpleQueue
from threading import RLock
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler
from rich.traceback import install as install_rich_traceback

from .context import ContextFilter, log_context
from .progress import progress_manager
from .timing import timeit

__all__ = [
    "init_logging",
    "get_logger",
    "set_level",
    "shutdown_logging",
    "log_context",
    "progress_manager",
    "timeit",
]

FILE_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(context)s%(message)s"

# Chatty third-party loggers: every LLM request line, every pooled connection.
QUIET_LOGGERS = ("httpx", "httpcore", "sqlalchemy.pool")


def _env_log_dir() -> Optional[Path]:
    raw = os.getenv("LOG_DIR", "logs").strip()
    return Path(raw) if raw else None


@dataclass
class LoggingConfig:
    """Runtime configuration for the logging subsystem."""

    app_name: str = "spending_analyst"
    level: str | int = "INFO"
    log_dir: Optional[Path] = field(default_factory=_env_log_dir)
    console: bool = True
    rich_tracebacks: bool = True
    queue: bool = True


_config_lock = RLock()
_config: LoggingConfig | None = None
_listener: QueueListener | None = None
_context_filter = ContextFilter()


def _parse_level(level: str | int) -> int:
    if isinstance(level, int):
        return level
    return getattr(logging, str(level).upper(), logging.INFO)


class DailyFileHandler(logging.FileHandler):
    """Append to ``<directory>/<app>_<YYYY-MM-DD>.log``, switching at midnight."""

    def __init__(self, directory: Path, app_name: str, *, encoding: str = "utf-8") -> None:
        directory.mkdir(parents=True, exist_ok=True)
        self.directory = directory
        self.app_name = app_name
        self.day: date = datetime.now().date()
        super().__init__(self.path_for(self.day), mode="a", encoding=encoding)

    def path_for(self, day: date) -> Path:
        return self.directory / f"{self.app_name}_{day.isoformat()}.log"

    def emit(self, record: logging.LogRecord) -> None:
        day = datetime.fromtimestamp(record.created).date()
        if day != self.day:
            self.day = day
            if self.stream:
                self.stream.close()
            self.baseFilename = os.fspath(self.path_for(day))
            self.stream = self._open()
        super().emit(record)


def _console_handler(cfg: LoggingConfig, level: int) -> logging.Handler:
    # stderr keeps the terminal client's answers on stdout clean.
    console = Console(stderr=True)
    progress_manager.use_console(console)
    handler = RichHandler(
        console=console,
        rich_tracebacks=cfg.rich_tracebacks,
        show_path=False,
        markup=False,
        log_time_format="%H:%M:%S",
    )
    handler.setFormatter(logging.Formatter("%(context)s%(message)s"))
    handler.setLevel(level)
    return handler


def _file_handler(cfg: LoggingConfig, level: int) -> logging.Handler:
    handler = DailyFileHandler(Path(cfg.log_dir), cfg.app_name)
    handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    handler.setLevel(level)
    return handler


def _build_handlers(cfg: LoggingConfig, level: int) -> list[logging.Handler]:
    handlers: list[logging.Handler] = []
    if cfg.console:
        handlers.append(_console_handler(cfg, level))
    if cfg.log_dir:
        handlers.append(_file_handler(cfg, level))
    for handler in handlers:
        handler.addFilter(_context_filter)
    return handlers


def init_logging(**kwargs: object) -> None:
    """Configure the root logger.

    Keyword arguments override :class:`LoggingConfig` fields. Calling again
    with the same options is a no-op; different options replace the handlers.
    """

    global _config, _listener

    with _config_lock:
        cfg = LoggingConfig()
        for key, value in kwargs.items():
            if hasattr(cfg, key):
                setattr(cfg, key, value)  # type: ignore[arg-type]

        if _config == cfg:
            return
        if _config is not None:
            _teardown_locked()

        level = _parse_level(cfg.level)
        if cfg.rich_tracebacks:
            install_rich_traceback(show_locals=False)

        root = logging.getLogger()
        root.setLevel(logging.NOTSET)
        for handler in list(root.handlers):
            root.removeHandler(handler)

        handlers = _build_handlers(cfg, level)
        if cfg.queue and handlers:
            queue_handler = QueueHandler(SimpleQueue())
            queue_handler.setLevel(level)
            queue_handler.addFilter(_context_filter)
            root.addHandler(queue_handler)
            _listener = QueueListener(queue_handler.queue, *handlers, respect_handler_level=True)
            _listener.start()
        else:
            for handler in handlers:
                root.addHandler(handler)

        for name in QUIET_LOGGERS:
            logging.getLogger(name).setLevel(max(level, logging.WARNING))

        _config = cfg


def _teardown_locked() -> None:
    global _listener, _config
    if _listener is not None:
        _listener.stop()
        for handler in _listener.handlers:
            handler.close()
    _listener = None
    _config = None
    progress_manager.reset_console()
    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()


def set_level(level: str | int) -> None:
    """Change the level of the running handlers without rebuilding them."""

    new_level = _parse_level(level)
    with _config_lock:
        handlers = list(logging.getLogger().handlers)
        if _listener is not None:
            handlers.extend(_listener.handlers)
        for handler in handlers:
            handler.setLevel(new_level)
        for name in QUIET_LOGGERS:
            logging.getLogger(name).setLevel(max(new_level, logging.WARNING))
        if _config is not None:
            _config.level = new_level


def shutdown_logging() -> None:
    """Flush queued records and close every handler."""

    with _config_lock:
        _teardown_locked()


def get_logger(name: str | None = None) -> logging.Logger:
    """Return a logger, configuring defaults on first use."""

    with _config_lock:
        if _config is None:
            init_logging()
        app_name = _config.app_name if _config else LoggingConfig.app_name
    return logging.getLogger(name or app_name)
