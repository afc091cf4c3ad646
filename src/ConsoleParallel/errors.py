# === NAVMAP v1 ===
# {
#   "module": "ConsoleParallel.errors",
#   "purpose": "Exception taxonomy and formatting helpers for parallel execution.",
#   "sections": [
#     {
#       "id": "parallelizationerror",
#       "name": "ParallelizationError",
#       "anchor": "class-parallelizationerror",
#       "kind": "class"
#     },
#     {
#       "id": "clivalidationerror",
#       "name": "CLIValidationError",
#       "anchor": "class-clivalidationerror",
#       "kind": "class"
#     },
#     {
#       "id": "invalidconfigurationerror",
#       "name": "InvalidConfigurationError",
#       "anchor": "class-invalidconfigurationerror",
#       "kind": "class"
#     },
#     {
#       "id": "invaliditemerror",
#       "name": "InvalidItemError",
#       "anchor": "class-invaliditemerror",
#       "kind": "class"
#     },
#     {
#       "id": "scriptnotfounderror",
#       "name": "ScriptNotFoundError",
#       "anchor": "class-scriptnotfounderror",
#       "kind": "class"
#     },
#     {
#       "id": "processstarterror",
#       "name": "ProcessStartError",
#       "anchor": "class-processstarterror",
#       "kind": "class"
#     },
#     {
#       "id": "format-cli-error",
#       "name": "format_cli_error",
#       "anchor": "function-format-cli-error",
#       "kind": "function"
#     }
#   ]
# }
# === /NAVMAP ===

"""Exception types and formatting helpers shared by the parallel execution engine.

Failures fall into two families. Validation problems (bad sizes, a malformed
process count, an item handed to a child process, invalid items, a missing
entry script) are detected before any subprocess is started and surface as
:class:`CLIValidationError` subclasses so the command layer can render them
consistently via :func:`format_cli_error`. Launch failures raise
:class:`ProcessStartError` and abort the pool. Per-item failures are never
raised from here; they are routed through the error handlers instead.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

__all__ = [
    "CLIValidationError",
    "InvalidConfigurationError",
    "InvalidItemError",
    "ParallelizationError",
    "ProcessStartError",
    "ScriptNotFoundError",
    "format_cli_error",
]


class ParallelizationError(Exception):
    """Marker base class for errors raised by the execution engine."""


@dataclass(slots=True)
class CLIValidationError(ParallelizationError, ValueError):
    """Base exception capturing option names and human-friendly messages."""

    option: str
    message: str
    hint: Optional[str] = None
    stage: str = "parallel"

    def __post_init__(self) -> None:  # pragma: no cover - simple wiring
        """Initialise the ``ValueError`` base with the human-readable message."""

        ValueError.__init__(self, self.message)

    def __str__(self) -> str:
        """Return the underlying message for convenience."""

        return self.message


class InvalidConfigurationError(CLIValidationError):
    """Raised when sizes, process counts, or mode flags are inconsistent."""

    def __post_init__(self) -> None:  # pragma: no cover - simple wiring
        """Ensure the configuration stage marker is applied before chaining."""

        self.stage = "config"
        CLIValidationError.__post_init__(self)


class InvalidItemError(CLIValidationError):
    """Raised when an item cannot be normalised into a newline-free string."""

    def __post_init__(self) -> None:  # pragma: no cover - simple wiring
        """Ensure the items stage marker is applied before chaining."""

        self.stage = "items"
        CLIValidationError.__post_init__(self)


class ScriptNotFoundError(ParallelizationError, FileNotFoundError):
    """Raised when the entry script used to re-invoke children does not exist."""

    def __init__(self, script_path: str, working_directory: str) -> None:
        self.script_path = script_path
        self.working_directory = working_directory
        super().__init__(
            f'The script file could not be found at the path "{script_path}" '
            f'(working directory: "{working_directory}").'
        )


class ProcessStartError(ParallelizationError, RuntimeError):
    """Raised when a child process could not be started."""

    def __init__(self, index: int, command_line: str, reason: str | None = None) -> None:
        self.index = index
        self.command_line = command_line
        self.reason = reason
        detail = f": {reason}" if reason else ""
        super().__init__(f"Could not start process #{index} ({command_line}){detail}")


def format_cli_error(error: CLIValidationError) -> str:
    """Return a consistent error string for CLI consumption."""

    prefix = f"[{error.stage}]"
    hint = f" Hint: {error.hint}" if error.hint else ""
    message = error.message.rstrip(".")
    return f"{prefix} {error.option}: {message}.{hint}".strip()
