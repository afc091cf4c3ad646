# === NAVMAP v1 ===
# {
#   "module": "ConsoleParallel.settings",
#   "purpose": "Environment-driven settings for the parallel execution engine.",
#   "sections": [
#     {
#       "id": "loglevel",
#       "name": "LogLevel",
#       "anchor": "class-loglevel",
#       "kind": "class"
#     },
#     {
#       "id": "logformat",
#       "name": "LogFormat",
#       "anchor": "class-logformat",
#       "kind": "class"
#     },
#     {
#       "id": "parallelsettings",
#       "name": "ParallelSettings",
#       "anchor": "class-parallelsettings",
#       "kind": "class"
#     }
#   ]
# }
# === /NAVMAP ===

"""
Pydantic v2 settings for ConsoleParallel.

All values can be supplied through environment variables sharing the
``CONSOLE_PARALLEL_`` prefix (for example ``CONSOLE_PARALLEL_CPU_COUNT=4``).
Command-line options take precedence over these values; the settings object is
built once at program start and handed down explicitly, never cached globally.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

__all__ = [
    "DEFAULT_BATCH_SIZE",
    "DEFAULT_PROGRESS_SYMBOL",
    "DEFAULT_SEGMENT_SIZE",
    "LogFormat",
    "LogLevel",
    "ParallelSettings",
]

DEFAULT_BATCH_SIZE = 50
DEFAULT_SEGMENT_SIZE = 50
DEFAULT_PROGRESS_SYMBOL = chr(254)


class LogLevel(str, Enum):
    """Supported logging levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"


class LogFormat(str, Enum):
    """Supported log output formats."""

    CONSOLE = "console"
    JSON = "json"


class ParallelSettings(BaseSettings):
    """Process-pool defaults and logging configuration."""

    model_config = SettingsConfigDict(
        env_prefix="CONSOLE_PARALLEL_",
        case_sensitive=False,
        extra="ignore",
    )

    cpu_count: int | None = Field(
        None, description="Override the detected number of CPU cores", ge=1
    )
    auto_processes: bool = Field(
        False,
        description="Default --processes to the CPU core count instead of 1",
    )
    batch_size: int = Field(DEFAULT_BATCH_SIZE, description="Items per batch", ge=1)
    segment_size: int = Field(
        DEFAULT_SEGMENT_SIZE, description="Items streamed to one child process", ge=1
    )
    progress_symbol: str = Field(
        DEFAULT_PROGRESS_SYMBOL, description="Marker written by children per processed item"
    )
    process_tick_s: float = Field(
        0.001, description="Sleep between pool polls while waiting for a free slot", gt=0
    )
    process_timeout_s: float | None = Field(
        None, description="Terminate children running longer than this many seconds", gt=0
    )
    log_level: LogLevel = Field(LogLevel.INFO, description="Root logging level")
    log_format: LogFormat = Field(LogFormat.CONSOLE, description="Pretty console or JSON lines")

    @field_validator("progress_symbol")
    @classmethod
    def validate_progress_symbol(cls, v: str) -> str:
        """Require a single Latin-1 character so the marker is exactly one byte."""
        if len(v) != 1:
            raise ValueError(f"progress_symbol must be a single character, got {v!r}")
        try:
            v.encode("latin-1")
        except UnicodeEncodeError as exc:
            raise ValueError(f"progress_symbol {v!r} is not a single-byte character") from exc
        return v

    @field_validator("cpu_count", "process_timeout_s", mode="before")
    @classmethod
    def blank_as_none(cls, v: Any) -> Any:
        if isinstance(v, str) and not v.strip():
            return None
        return v
