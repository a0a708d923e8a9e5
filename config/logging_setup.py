"""
Logging setup — structlog rendered through the stdlib logging module.

Console output always; when a log directory is configured each record is
also appended to a daily file (bot-YYYY-MM-DD.log).
"""
from __future__ import annotations

import logging
import sys
from datetime import datetime, timezone
from pathlib import Path

import structlog


class DailyFileHandler(logging.FileHandler):
    """Append to bot-<date>.log, switching files when the UTC date changes."""

    def __init__(self, log_dir: str):
        self._log_dir = Path(log_dir)
        self._log_dir.mkdir(parents=True, exist_ok=True)
        self._day = self._today()
        super().__init__(self._path_for(self._day), encoding="utf-8", delay=True)

    @staticmethod
    def _today() -> str:
        return datetime.now(timezone.utc).strftime("%Y-%m-%d")

    def _path_for(self, day: str) -> str:
        return str(self._log_dir / f"bot-{day}.log")

    def emit(self, record: logging.LogRecord) -> None:
        today = self._today()
        if today != self._day:
            self.close()
            self._day = today
            self.baseFilename = self._path_for(today)
        super().emit(record)


def configure_logging(level: str = "INFO", log_dir: str = "", json_logs: bool = False) -> None:
    shared = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]
    renderer = (
        structlog.processors.JSONRenderer()
        if json_logs
        else structlog.dev.ConsoleRenderer(colors=False)
    )

    structlog.configure(
        processors=shared + [
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_dir:
        handlers.append(DailyFileHandler(log_dir))

    root = logging.getLogger()
    for h in list(root.handlers):
        root.removeHandler(h)
    for h in handlers:
        h.setFormatter(formatter)
        root.addHandler(h)
    root.setLevel(level.upper())
