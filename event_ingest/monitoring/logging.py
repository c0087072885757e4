"""Structured logging for ingestion runs.

Every module logs through ``logging.getLogger(__name__)`` under the
``event_ingest`` namespace. Workers and scrapers wrap their logger with
``with_context`` so each line carries the run, source, stage and queue item
it belongs to; both formatters render those fields.
"""

from __future__ import annotations

import json
import logging
import sys
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

ROOT_LOGGER = "event_ingest"

# Record attributes set through ``extra``, with their short text labels.
CONTEXT_FIELDS = {
    "run_id": "run",
    "source_id": "source",
    "stage": "stage",
    "item_id": "item",
    "strategy": "strategy",
}

# Chatty libraries that log every pooled connection.
NOISY_LOGGERS = ("urllib3", "geopy")


def _context(record: logging.LogRecord) -> dict[str, Any]:
    return {k: getattr(record, k) for k in CONTEXT_FIELDS if getattr(record, k, None)}


# ---------------------------------------------------------------------
# Formatters
# ---------------------------------------------------------------------


class JsonFormatter(logging.Formatter):
    """One JSON object per line, for log shippers."""

    def format(self, record: logging.LogRecord) -> str:
        doc: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            **_context(record),
        }
        payload = getattr(record, "payload", None)
        if isinstance(payload, dict):
            doc["payload"] = payload
        if record.exc_info:
            doc["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(doc, ensure_ascii=False, default=str)


class TextFormatter(logging.Formatter):
    """``LEVEL logger [run=.. source=..] message`` for terminals."""

    def format(self, record: logging.LogRecord) -> str:
        ctx = " ".join(f"{CONTEXT_FIELDS[k]}={v}" for k, v in _context(record).items())
        parts = (record.levelname, record.name, f"[{ctx}]" if ctx else "", record.getMessage())
        line = " ".join(p for p in parts if p)
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


# ---------------------------------------------------------------------
# Setup
# ---------------------------------------------------------------------


@dataclass(frozen=True)
class LoggingOptions:
    level: str = "INFO"
    json_logs: bool = False
    enable_console: bool = True
    log_file: Path | None = None


def configure_logging(options: LoggingOptions | None = None) -> logging.Logger:
    """
    Attach handlers to the package logger.

    Safe to call repeatedly; existing handlers are replaced, not duplicated.
    """
    options = options or LoggingOptions()
    level = getattr(logging, options.level.upper(), logging.INFO)
    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(level)
    logger.propagate = False

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    handlers: list[logging.Handler] = []
    if options.enable_console:
        handlers.append(logging.StreamHandler(sys.stderr))
    if options.log_file:
        path = Path(options.log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(path, encoding="utf-8"))

    formatter = JsonFormatter() if options.json_logs else TextFormatter()
    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))
    return logger


# ---------------------------------------------------------------------
# Context injection
# ---------------------------------------------------------------------


class ContextAdapter(logging.LoggerAdapter):
    """Merge the adapter's context into each call's ``extra``; the call wins."""

    def process(self, msg: str, kwargs: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        kwargs["extra"] = {**self.extra, **kwargs.get("extra", {})}
        return msg, kwargs


def with_context(
    logger: logging.Logger | logging.LoggerAdapter,
    *,
    run_id: str | None = None,
    source_id: str | None = None,
    stage: str | None = None,
    item_id: str | None = None,
) -> ContextAdapter:
    """
    Wrap ``logger`` with run / source / stage / item context.

    Wrapping an adapter extends its context instead of nesting adapters.
    """
    extra: dict[str, Any] = {}
    if isinstance(logger, logging.LoggerAdapter):
        extra.update(logger.extra or {})
        logger = logger.logger
    fields = {"run_id": run_id, "source_id": source_id, "stage": stage, "item_id": item_id}
    extra.update({k: v for k, v in fields.items() if v})
    return ContextAdapter(logger, extra)
