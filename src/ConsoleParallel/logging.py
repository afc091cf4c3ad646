# === NAVMAP v1 ===
# {
#   "module": "ConsoleParallel.logging",
#   "purpose": "Structured logging helpers shared by the parallel execution engine.",
#   "sections": [
#     {
#       "id": "jsonformatter",
#       "name": "JSONFormatter",
#       "anchor": "class-jsonformatter",
#       "kind": "class"
#     },
#     {
#       "id": "structuredlogger",
#       "name": "StructuredLogger",
#       "anchor": "class-structuredlogger",
#       "kind": "class"
#     },
#     {
#       "id": "get-logger",
#       "name": "get_logger",
#       "anchor": "function-get-logger",
#       "kind": "function"
#     },
#     {
#       "id": "configure-logging",
#       "name": "configure_logging",
#       "anchor": "function-configure-logging",
#       "kind": "function"
#     },
#     {
#       "id": "log-event",
#       "name": "log_event",
#       "anchor": "function-log-event",
#       "kind": "function"
#     }
#   ]
# }
# === /NAVMAP ===

"""
Structured logging utilities for parent and child processes.

Every process in a parallel run logs to standard error: a child's standard
output is reserved for progress markers, so anything written there that is not
a marker shows up as unexpected output in the parent. Records are rendered
either as one JSON object per line or as a compact console line, and carry the
``extra_fields`` mapping used throughout the package.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional

__all__ = [
    "ConsoleFormatter",
    "JSONFormatter",
    "StructuredLogger",
    "configure_logging",
    "get_logger",
    "log_event",
]

_ROOT_LOGGER_NAME = "ConsoleParallel"


class JSONFormatter(logging.Formatter):
    """Formatter emitting one JSON document per log record."""

    def format(self, record: logging.LogRecord) -> str:
        """Render ``record`` as a JSON string including structured fields."""

        now = datetime.now(timezone.utc)
        payload: Dict[str, Any] = {
            "timestamp": now.isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "stage": getattr(record, "stage", None),
        }
        if hasattr(record, "extra_fields") and isinstance(record.extra_fields, dict):
            payload.update(record.extra_fields)
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


class ConsoleFormatter(logging.Formatter):
    """Human readable formatter appending structured fields as ``key=value``."""

    def __init__(self) -> None:
        super().__init__("%(asctime)s %(levelname)-7s %(name)s: %(message)s")

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        fields = getattr(record, "extra_fields", None)
        if isinstance(fields, dict) and fields:
            rendered = " ".join(f"{key}={value}" for key, value in fields.items())
            line = f"{line} [{rendered}]"
        return line


class StructuredLogger(logging.LoggerAdapter):
    """Logger adapter that enriches structured logs with shared context."""

    def __init__(
        self, logger: logging.Logger, base_fields: Optional[Dict[str, Any]] = None
    ) -> None:
        """Store underlying logger and initial structured ``base_fields``."""

        super().__init__(logger, {})
        self.base_fields: Dict[str, Any] = dict(base_fields or {})

    def process(self, msg: str, kwargs: Dict[str, Any]) -> tuple[str, Dict[str, Any]]:
        """Merge adapter context into ``extra`` metadata for structured output."""

        extra = kwargs.setdefault("extra", {})
        fields = dict(self.base_fields)
        extra_fields = extra.get("extra_fields")
        if isinstance(extra_fields, dict):
            fields.update(extra_fields)
        extra["extra_fields"] = fields
        kwargs["extra"] = extra
        return msg, kwargs

    def bind(self, **fields: object) -> "StructuredLogger":
        """Attach additional persistent fields to the adapter and return ``self``."""

        filtered = {k: v for k, v in fields.items() if v is not None}
        self.base_fields.update(filtered)
        return self

    def child(self, **fields: object) -> "StructuredLogger":
        """Create a new adapter inheriting context with optional overrides."""

        merged = dict(self.base_fields)
        merged.update({k: v for k, v in fields.items() if v is not None})
        return StructuredLogger(self.logger, merged)


def configure_logging(level: str = "INFO", fmt: str = "console") -> logging.Logger:
    """Install a single stderr handler on the package root logger.

    Calling this repeatedly replaces the previous handler so that the level and
    format can be switched between CLI invocations in the same interpreter.
    """

    root = logging.getLogger(_ROOT_LOGGER_NAME)
    for handler in list(root.handlers):
        if getattr(handler, "_console_parallel_handler", False):
            root.removeHandler(handler)
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter() if str(fmt).lower() == "json" else ConsoleFormatter())
    setattr(handler, "_console_parallel_handler", True)
    root.addHandler(handler)
    root.setLevel(getattr(logging, str(level).upper(), logging.INFO))
    root.propagate = False
    return root


def get_logger(
    name: str, level: Optional[str] = None, *, base_fields: Optional[Dict[str, Any]] = None
) -> StructuredLogger:
    """Return a structured logger; handlers live on the package root logger."""

    logger = logging.getLogger(name)
    if level is not None:
        logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    adapter = getattr(logger, "_console_parallel_adapter", None)
    if not isinstance(adapter, StructuredLogger):
        adapter = StructuredLogger(logger, base_fields)
        setattr(logger, "_console_parallel_adapter", adapter)
    elif base_fields:
        adapter.bind(**base_fields)
    return adapter


def log_event(logger: logging.Logger, level: str, message: str, **fields: object) -> None:
    """Emit a structured log record using the ``extra_fields`` convention."""

    normalised_level = str(level).lower()
    if "stage" not in fields:
        base_stage = getattr(logger, "base_fields", {}).get("stage") if hasattr(
            logger, "base_fields"
        ) else None
        if base_stage is not None:
            fields["stage"] = base_stage
        elif normalised_level in {"warning", "error"}:
            fields["stage"] = "unknown"
    if normalised_level in {"warning", "error"}:
        error_code = fields.get("error_code")
        fields["error_code"] = str(error_code).upper() if error_code else "UNKNOWN"

    emitter = getattr(logger, normalised_level, None)
    if not callable(emitter):
        raise AttributeError(f"Logger has no level '{level}'")
    emitter(message, extra={"extra_fields": fields})
