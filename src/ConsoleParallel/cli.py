# === NAVMAP v1 ===
# {
#   "module": "ConsoleParallel.cli",
#   "purpose": "Typer building blocks for commands that parallelise their items.",
#   "sections": [
#     {
#       "id": "parallelcommand",
#       "name": "ParallelCommand",
#       "anchor": "class-parallelcommand",
#       "kind": "class"
#     },
#     {
#       "id": "run-parallel-command",
#       "name": "run_parallel_command",
#       "anchor": "function-run-parallel-command",
#       "kind": "function"
#     }
#   ]
# }
# === /NAVMAP ===

"""Typer surfaces for parallel commands.

A host command declares the standard parallelisation parameters using the
``Annotated`` aliases below and hands them, together with a
:class:`ParallelCommand` describing its items and per-item work, to
:func:`run_parallel_command`::

    @app.command("import-rows")
    def import_rows(
        ctx: typer.Context,
        item: ItemArgument = None,
        processes: ProcessesOption = None,
        child: ChildOption = False,
        main_process: MainProcessOption = False,
        batch_size: BatchSizeOption = None,
        segment_size: SegmentSizeOption = None,
    ) -> None:
        run_parallel_command(ctx, ParallelCommand(...), item=item, ...)

The same command line, minus the item and ``--processes`` and plus ``--child``,
is used to start the child processes.
"""

from __future__ import annotations

import sys
import time
from dataclasses import dataclass, field
from typing import Annotated, Any, Callable, Iterable, List, Mapping, Optional

import typer

from ConsoleParallel.concurrency.cpu import CpuCoreCounter
from ConsoleParallel.core.error_handlers import ErrorHandler, default_error_handler
from ConsoleParallel.core.input import ParallelizationInput
from ConsoleParallel.core.invocation import RawInput
from ConsoleParallel.core.progress import ProgressLogger, StandardLogger
from ConsoleParallel.core.runner import BatchHooks, ExecutorOptions, ParallelExecutor
from ConsoleParallel.errors import (
    CLIValidationError,
    ProcessStartError,
    ScriptNotFoundError,
    format_cli_error,
)
from ConsoleParallel.logging import configure_logging, get_logger, log_event
from ConsoleParallel.settings import ParallelSettings

__all__ = [
    "BatchSizeOption",
    "ChildOption",
    "ItemArgument",
    "MainProcessOption",
    "ParallelCommand",
    "ProcessesOption",
    "SegmentSizeOption",
    "run_parallel_command",
]

LOGGER = get_logger(__name__, base_fields={"stage": "cli"})

MAX_EXIT_CODE = 255

ItemArgument = Annotated[
    Optional[str],
    typer.Argument(help="Process only this item, skipping the item fetch.", show_default=False),
]
ProcessesOption = Annotated[
    Optional[str],
    typer.Option(
        "--processes",
        "-p",
        help="Number of child processes to spawn (default: 1, or the CPU count when auto_processes is set).",
        show_default=False,
    ),
]
ChildOption = Annotated[
    bool,
    typer.Option("--child", help="Internal: run as a child reading items from stdin.", hidden=True),
]
MainProcessOption = Annotated[
    bool,
    typer.Option("--main-process", help="Process every item in the current process."),
]
BatchSizeOption = Annotated[
    Optional[int],
    typer.Option("--batch-size", min=1, help="Items handled between batch hooks.", show_default=False),
]
SegmentSizeOption = Annotated[
    Optional[int],
    typer.Option(
        "--segment-size", min=1, help="Items streamed to one child process.", show_default=False
    ),
]


@dataclass
class ParallelCommand:
    """What a host command parallelises and how each item is processed.

    ``module`` starts children with ``python -m <module>``; otherwise the entry
    script (``script_path``, default ``sys.argv[0]``) is re-run.
    """

    fetch_items: Callable[[], Iterable[Any]]
    run_single: Callable[[str], Optional[int]]
    hooks: BatchHooks = field(default_factory=BatchHooks)
    item_name: str = "item"
    error_handler: Optional[ErrorHandler] = None
    resettable: Any = None
    batch_size: Optional[int] = None
    segment_size: Optional[int] = None
    module: Optional[str] = None
    script_path: Optional[str] = None
    extra_environment: Optional[Mapping[str, str]] = None

    def create_executor(self, command_name: Optional[str], settings: ParallelSettings) -> ParallelExecutor:
        tick_s = settings.process_tick_s
        options = ExecutorOptions(
            batch_size=self.batch_size or settings.batch_size,
            segment_size=self.segment_size or settings.segment_size,
            progress_symbol=settings.progress_symbol,
            script_path=self.script_path or sys.argv[0],
            module=self.module,
            extra_environment=self.extra_environment,
            process_tick=lambda: time.sleep(tick_s),
            process_timeout_s=settings.process_timeout_s,
        )
        return ParallelExecutor(
            self.fetch_items,
            self.run_single,
            command_name,
            error_handler=self.error_handler or default_error_handler(self.resettable),
            options=options,
            hooks=self.hooks,
            item_name=self.item_name,
        )


def _command_name(ctx: typer.Context) -> Optional[str]:
    """Return the command path below the root group, e.g. ``"data import"``."""

    names: List[str] = []
    current = ctx
    while current.parent is not None:
        if current.info_name:
            names.append(current.info_name)
        current = current.parent
    return " ".join(reversed(names)) or None


def run_parallel_command(
    ctx: typer.Context,
    command: ParallelCommand,
    *,
    item: Optional[str] = None,
    processes: Optional[str] = None,
    child: bool = False,
    main_process: bool = False,
    batch_size: Optional[int] = None,
    segment_size: Optional[int] = None,
    settings: Optional[ParallelSettings] = None,
    logger: Optional[ProgressLogger] = None,
) -> None:
    """Execute ``command`` for the current invocation and exit with its code.

    Raises:
        typer.Exit: Always; code 2 for invalid input, 1 when a child process
            could not be started, otherwise the aggregated exit code.
    """

    settings = settings or ParallelSettings()
    configure_logging(settings.log_level.value, settings.log_format.value)
    default_processes: Any = CpuCoreCounter(settings) if settings.auto_processes else 1

    try:
        parallel_input = ParallelizationInput.from_values(
            processes,
            item,
            child,
            main_process=main_process,
            batch_size=batch_size,
            segment_size=segment_size,
            default_processes=default_processes,
        )
        raw_input = RawInput.from_click_context(ctx)
        executor = command.create_executor(_command_name(ctx), settings)
        if logger is None:
            # Children keep stdout for progress markers.
            logger = (
                StandardLogger(sys.stderr, show_progress=False)
                if parallel_input.child_process
                else StandardLogger()
            )
        exit_code = executor.execute(parallel_input, raw_input, logger)
    except CLIValidationError as exc:
        typer.echo(format_cli_error(exc), err=True)
        raise typer.Exit(code=2) from exc
    except (ScriptNotFoundError, ProcessStartError) as exc:
        log_event(LOGGER, "error", str(exc), error_code=type(exc).__name__)
        typer.echo(str(exc), err=True)
        raise typer.Exit(code=1) from exc
    # Process exit statuses wrap modulo 256; keep failures non-zero.
    raise typer.Exit(code=min(exit_code, MAX_EXIT_CODE))
