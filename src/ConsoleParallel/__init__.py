"""
ConsoleParallel: process-pool execution for command line batch jobs.

A command fetches its items once and either processes them in the current
process or re-invokes itself as child processes, streaming each child a
segment of items over stdin. Children report one progress marker byte per
processed item; the parent tallies progress and sums exit codes.

Example:
    from ConsoleParallel import ParallelExecutor, ParallelizationInput, RawInput
    from ConsoleParallel.core.progress import NullLogger

    executor = ParallelExecutor(lambda: ["a", "b"], print, command_name=None)
    executor.execute(ParallelizationInput.from_values(), RawInput(), NullLogger())
"""

from __future__ import annotations

from ConsoleParallel.core import (
    BatchHooks,
    ChildInvocationBuilder,
    ChunkedItems,
    ExecutionMode,
    ExecutorOptions,
    ParallelExecutor,
    ParallelizationInput,
    RawInput,
    RunConfiguration,
)
from ConsoleParallel.errors import (
    CLIValidationError,
    InvalidConfigurationError,
    InvalidItemError,
    ProcessStartError,
    ScriptNotFoundError,
)

__version__ = "0.1.0"

__all__ = [
    "BatchHooks",
    "CLIValidationError",
    "ChildInvocationBuilder",
    "ChunkedItems",
    "ExecutionMode",
    "ExecutorOptions",
    "InvalidConfigurationError",
    "InvalidItemError",
    "ParallelExecutor",
    "ParallelizationInput",
    "ProcessStartError",
    "RawInput",
    "RunConfiguration",
    "ScriptNotFoundError",
    "__version__",
]
