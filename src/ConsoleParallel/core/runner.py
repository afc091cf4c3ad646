# === NAVMAP v1 ===
# {
#   "module": "ConsoleParallel.core.runner",
#   "purpose": "Execute a command's items locally or through child processes.",
#   "sections": [
#     {
#       "id": "batchhooks",
#       "name": "BatchHooks",
#       "anchor": "class-batchhooks",
#       "kind": "class"
#     },
#     {
#       "id": "executoroptions",
#       "name": "ExecutorOptions",
#       "anchor": "class-executoroptions",
#       "kind": "class"
#     },
#     {
#       "id": "count-markers",
#       "name": "count_markers",
#       "anchor": "function-count-markers",
#       "kind": "function"
#     },
#     {
#       "id": "parallelexecutor",
#       "name": "ParallelExecutor",
#       "anchor": "class-parallelexecutor",
#       "kind": "class"
#     }
#   ]
# }
# === /NAVMAP ===

"""Execution entry point shared by parallel commands.

:class:`ParallelExecutor` is created by the host command and entered once per
invocation. Depending on the :class:`~ConsoleParallel.core.input.ExecutionMode`
it either

* reads its segment from stdin and processes it (child process),
* fetches the items and processes them in the current process, or
* fetches the items and streams them through a
  :class:`~ConsoleParallel.concurrency.launcher.ProcessPoolLauncher`.

In the first two cases items are processed batch by batch: ``before_batch``
runs, every item of the batch goes through the per-item callback (failures are
routed to the error handler and never abort the batch), progress advances after
each item, then ``after_batch`` runs. A child process reports progress by
writing one marker byte per item to its stdout; the parent counts those bytes.
"""

from __future__ import annotations

import os
import sys
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from typing import IO, Any, List, Optional

from ConsoleParallel.concurrency.launcher import ProcessPoolLauncher, ProcessSlot
from ConsoleParallel.concurrency.processes import ProcessFactory, start_child_process
from ConsoleParallel.core.batching import ChunkedItems
from ConsoleParallel.core.configuration import RunConfiguration
from ConsoleParallel.core.error_handlers import ErrorHandler, default_error_handler
from ConsoleParallel.core.input import ExecutionMode, ParallelizationInput
from ConsoleParallel.core.invocation import ChildInvocationBuilder, RawInput
from ConsoleParallel.core.progress import ProgressLogger
from ConsoleParallel.errors import InvalidConfigurationError
from ConsoleParallel.logging import get_logger, log_event
from ConsoleParallel.settings import (
    DEFAULT_BATCH_SIZE,
    DEFAULT_PROGRESS_SYMBOL,
    DEFAULT_SEGMENT_SIZE,
)

__all__ = [
    "BatchHooks",
    "ExecutorOptions",
    "ParallelExecutor",
    "count_markers",
]

LOGGER = get_logger(__name__, base_fields={"stage": "executor"})


@dataclass(slots=True)
class BatchHooks:
    """Optional lifecycle hooks.

    ``before_first`` and ``after_last`` run once, in the process that fetched
    the items (never in children). The batch hooks run around every batch in
    whichever process handles that batch.
    """

    before_first: Callable[[], None] | None = None
    after_last: Callable[[], None] | None = None
    before_batch: Callable[[List[str]], None] | None = None
    after_batch: Callable[[List[str]], None] | None = None


@dataclass(slots=True)
class ExecutorOptions:
    """Static knobs of a parallel command."""

    batch_size: int = DEFAULT_BATCH_SIZE
    segment_size: int = DEFAULT_SEGMENT_SIZE
    progress_symbol: str = DEFAULT_PROGRESS_SYMBOL
    interpreter: str = field(default_factory=lambda: sys.executable)
    script_path: Optional[str] = field(default_factory=lambda: sys.argv[0])
    module: Optional[str] = None
    working_directory: Optional[str] = field(default_factory=os.getcwd)
    extra_environment: Mapping[str, str] | None = None
    process_tick: Callable[[], None] | None = None
    process_timeout_s: float | None = None

    def __post_init__(self) -> None:
        for name, option in (("batch size", "--batch-size"), ("segment size", "--segment-size")):
            value = getattr(self, name.replace(" ", "_"))
            if isinstance(value, bool) or not isinstance(value, int) or value < 1:
                raise InvalidConfigurationError(
                    option=option,
                    message=f'Expected the {name} to be an integer greater than or equal to 1. Got "{value}"',
                )
        if len(self.progress_symbol) != 1:
            raise InvalidConfigurationError(
                option="progress_symbol",
                message=f'Expected the progress symbol to be a single character. Got "{self.progress_symbol}"',
            )
        try:
            self.progress_symbol.encode("latin-1")
        except UnicodeEncodeError as exc:
            raise InvalidConfigurationError(
                option="progress_symbol",
                message=f'Expected the progress symbol to fit in one byte. Got "{self.progress_symbol}"',
            ) from exc

    @property
    def progress_marker(self) -> bytes:
        return self.progress_symbol.encode("latin-1")


def count_markers(chunk: bytes, marker: bytes) -> int:
    """Return how many progress markers ``chunk`` contains."""

    return chunk.count(marker)


class ParallelExecutor:
    """Process the items of one command invocation.

    Args:
        fetch_items: Returns the items; called once, and not at all when an
            explicit item was passed or when running as a child.
        run_single: Processes one item. An integer return value is added to the
            exit code; ``None`` counts as 0.
        command_name: Name of the command re-invoked by child processes.
        error_handler: Receives items whose processing raised.
        options: Sizes, marker and child process settings.
        hooks: Optional lifecycle hooks.
        item_name: Singular noun used in progress messages.
        child_source: Stream a child reads its segment from.
        child_sink: Binary stream a child writes progress markers to.
        process_factory: Starts child processes; injectable for tests.
    """

    def __init__(
        self,
        fetch_items: Callable[[], Iterable[Any]],
        run_single: Callable[[str], Optional[int]],
        command_name: Optional[str],
        *,
        error_handler: Optional[ErrorHandler] = None,
        options: Optional[ExecutorOptions] = None,
        hooks: Optional[BatchHooks] = None,
        item_name: str = "item",
        child_source: Optional[IO[Any]] = None,
        child_sink: Optional[IO[bytes]] = None,
        process_factory: ProcessFactory = start_child_process,
    ) -> None:
        self.fetch_items = fetch_items
        self.run_single = run_single
        self.command_name = command_name
        self.error_handler = error_handler or default_error_handler()
        self.options = options or ExecutorOptions()
        self.hooks = hooks or BatchHooks()
        self.item_name = item_name
        self._child_source = child_source
        self._child_sink = child_sink
        self.process_factory = process_factory

    def execute(
        self,
        parallel_input: ParallelizationInput,
        raw_input: RawInput,
        logger: ProgressLogger,
    ) -> int:
        """Run the invocation and return its exit code."""

        batch_size = parallel_input.batch_size or self.options.batch_size
        segment_size = parallel_input.segment_size or self.options.segment_size
        if segment_size < batch_size:
            raise InvalidConfigurationError(
                option="--segment-size",
                message=(
                    "Expected the segment size to be greater than or equal to the batch size. "
                    f'Got segment size "{segment_size}" and batch size "{batch_size}"'
                ),
            )

        if parallel_input.child_process:
            return self._execute_child(batch_size, logger)
        return self._execute_main(parallel_input, raw_input, logger, batch_size, segment_size)

    # ------------------------------------------------------------------
    # Child process
    # ------------------------------------------------------------------
    def _execute_child(self, batch_size: int, logger: ProgressLogger) -> int:
        source = self._child_source if self._child_source is not None else sys.stdin
        sink = self._child_sink if self._child_sink is not None else sys.stdout.buffer
        marker = self.options.progress_marker
        items = ChunkedItems.from_stream(source, batch_size)
        log_event(LOGGER, "debug", "Child process received its segment", items=items.number_of_items)

        def advance() -> None:
            sink.write(marker)
            sink.flush()

        return self._process_batches(items, logger, advance)

    # ------------------------------------------------------------------
    # Main / parent process
    # ------------------------------------------------------------------
    def _execute_main(
        self,
        parallel_input: ParallelizationInput,
        raw_input: RawInput,
        logger: ProgressLogger,
        batch_size: int,
        segment_size: int,
    ) -> int:
        self._run_hook("before_first", self.hooks.before_first)

        items = ChunkedItems.from_item_or_callable(parallel_input.item, self.fetch_items, batch_size)
        number_of_items = items.number_of_items
        mode = parallel_input.execution_mode(number_of_items, segment_size)
        spawn_children = mode is ExecutionMode.PARENT_PROCESS_WITH_CHILDREN
        if spawn_children:
            configuration = RunConfiguration.create(
                parallel_input.number_of_processes_defined,
                parallel_input.number_of_processes,
                number_of_items,
                segment_size,
                batch_size,
            )
        else:
            # Everything runs here: one implicit process, one segment.
            configuration = RunConfiguration.create(
                False, 1, number_of_items, segment_size, batch_size
            )
        log_event(
            LOGGER,
            "debug",
            "Execution mode selected",
            mode=mode.value,
            number_of_items=number_of_items,
        )

        logger.log_configuration(
            configuration, batch_size, number_of_items, self.item_name, spawn_children
        )
        logger.start_progress(number_of_items)

        if spawn_children:
            exit_code = self._execute_with_children(items, configuration, raw_input, logger)
        else:
            exit_code = self._process_batches(items, logger, logger.advance)

        logger.finish(self.item_name)
        self._run_hook("after_last", self.hooks.after_last)
        return exit_code

    def _execute_with_children(
        self,
        items: ChunkedItems,
        configuration: RunConfiguration,
        raw_input: RawInput,
        logger: ProgressLogger,
    ) -> int:
        builder = ChildInvocationBuilder(
            self.options.interpreter,
            self.options.script_path,
            self.command_name,
            module=self.options.module,
        )
        marker = self.options.progress_marker

        def on_output(slot: ProcessSlot, stream: str, chunk: bytes) -> None:
            markers = count_markers(chunk, marker)
            if markers != len(chunk):
                text = chunk.replace(marker, b"").decode("utf-8", errors="replace")
                logger.log_unexpected_child_output(slot.index, slot.pid, text, stream)
            if markers:
                logger.advance(markers)

        launcher = ProcessPoolLauncher(
            builder.build(raw_input),
            self.options.working_directory,
            self.options.extra_environment,
            configuration.number_of_processes,
            configuration.segment_size,
            logger,
            on_output,
            tick=self.options.process_tick,
            process_factory=self.process_factory,
            process_timeout_s=self.options.process_timeout_s,
            command_line=builder.command_line(raw_input),
        )
        return launcher.run(items)

    # ------------------------------------------------------------------
    # Batch loop
    # ------------------------------------------------------------------
    def _process_batches(
        self,
        items: ChunkedItems,
        logger: ProgressLogger,
        advance: Callable[[], None],
    ) -> int:
        exit_code = 0
        for batch in items.iter_batches():
            self._run_hook("before_batch", self.hooks.before_batch, batch)
            for item in batch:
                exit_code += self._process_item(item, logger)
                advance()
            self._run_hook("after_batch", self.hooks.after_batch, batch)
        return exit_code

    def _process_item(self, item: str, logger: ProgressLogger) -> int:
        try:
            result = self.run_single(item)
        except Exception as exc:
            return self.error_handler.handle_error(item, exc, logger)
        if isinstance(result, int) and not isinstance(result, bool):
            return result
        return 0

    def _run_hook(self, name: str, hook: Callable[..., None] | None, *args: Any) -> None:
        if hook is None:
            return
        try:
            hook(*args)
        except Exception as exc:
            log_event(LOGGER, "error", f"{name} hook failed", hook=name, error=str(exc))
            raise
