"""Core namespace aggregating item batching, configuration and execution.

Downstream code can import from ``ConsoleParallel.core`` to access:
- Item normalisation and batching (``ChunkedItems``, ``chunk_items``)
- Run arithmetic (``RunConfiguration``)
- Child command lines (``ChildInvocationBuilder``, ``RawInput``)
- Per-item error handlers and progress loggers
- The executor itself (``ParallelExecutor``)
"""

from __future__ import annotations

from .batching import ChunkedItems, LazyRewindableIterator, chunk_items, normalize_items
from .configuration import RunConfiguration
from .error_handlers import (
    ExceptionCodeErrorHandler,
    LoggingErrorHandler,
    NullErrorHandler,
    ResetServiceErrorHandler,
    default_error_handler,
)
from .input import ExecutionMode, ParallelizationInput
from .invocation import ChildInvocationBuilder, OptionSpec, RawInput, serialize_options
from .progress import NullLogger, StandardLogger
from .runner import BatchHooks, ExecutorOptions, ParallelExecutor

__all__ = [
    "BatchHooks",
    "ChildInvocationBuilder",
    "ChunkedItems",
    "ExceptionCodeErrorHandler",
    "ExecutionMode",
    "ExecutorOptions",
    "LazyRewindableIterator",
    "LoggingErrorHandler",
    "NullErrorHandler",
    "NullLogger",
    "OptionSpec",
    "ParallelExecutor",
    "ParallelizationInput",
    "RawInput",
    "ResetServiceErrorHandler",
    "RunConfiguration",
    "StandardLogger",
    "chunk_items",
    "default_error_handler",
    "normalize_items",
    "serialize_options",
]
