"""Logging for scrape runs: readable console lines plus JSON log files."""

import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from pythonjsonlogger import jsonlogger

from src.config import settings

CONSOLE_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"
JSON_FIELDS = "%(timestamp)s %(level)s %(name)s %(message)s"

# Per-request chatter from the HTTP and DB drivers
QUIET_LOGGERS = ("httpx", "httpcore", "aiosqlite")


class RunJsonFormatter(jsonlogger.JsonFormatter):
    """Adds a UTC timestamp, the level and the code location to every record."""

    def add_fields(self, log_record, record, message_dict):
        super().add_fields(log_record, record, message_dict)
        log_record["timestamp"] = datetime.now(timezone.utc).isoformat()
        log_record["level"] = record.levelname
        log_record["logger"] = record.name
        log_record["source"] = f"{record.module}.{record.funcName}:{record.lineno}"


def _file_handler(path: Path, level: int, formatter: logging.Formatter) -> logging.Handler:
    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setLevel(level)
    handler.setFormatter(formatter)
    return handler


def setup_logging(base_dir: str | Path | None = None) -> logging.Logger:
    """Send the root logger to stdout, ``app.log`` and ``error.log``.

    The files live in ``<base_dir or cwd>/<settings.log_dir>``. Calling this
    again replaces the handlers installed by the previous call.
    """
    logs_dir = (Path(base_dir) if base_dir else Path.cwd()) / settings.log_dir
    logs_dir.mkdir(parents=True, exist_ok=True)

    console = logging.StreamHandler(sys.stdout)
    console.setFormatter(logging.Formatter(CONSOLE_FORMAT))
    json_formatter = RunJsonFormatter(JSON_FIELDS)

    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(settings.log_level.upper())
    for handler in (
        console,
        _file_handler(logs_dir / "app.log", logging.DEBUG, json_formatter),
        _file_handler(logs_dir / "error.log", logging.ERROR, json_formatter),
    ):
        root.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return root


class ContextAdapter(logging.LoggerAdapter):
    """Merges fixed context such as a session key into each record's extras."""

    def process(self, msg, kwargs):
        kwargs["extra"] = {**self.extra, **kwargs.get("extra", {})}
        return msg, kwargs


def get_logger(name: str, **context) -> ContextAdapter:
    return ContextAdapter(logging.getLogger(name), context)
