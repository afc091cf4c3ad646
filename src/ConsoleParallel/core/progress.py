# === NAVMAP v1 ===
# {
#   "module": "ConsoleParallel.core.progress",
#   "purpose": "Progress reporting and run summaries for parallel execution.",
#   "sections": [
#     {
#       "id": "pluralize",
#       "name": "pluralize",
#       "anchor": "function-pluralize",
#       "kind": "function"
#     },
#     {
#       "id": "format-memory",
#       "name": "format_memory",
#       "anchor": "function-format-memory",
#       "kind": "function"
#     },
#     {
#       "id": "progresslogger",
#       "name": "ProgressLogger",
#       "anchor": "class-progresslogger",
#       "kind": "class"
#     },
#     {
#       "id": "nulllogger",
#       "name": "NullLogger",
#       "anchor": "class-nulllogger",
#       "kind": "class"
#     },
#     {
#       "id": "standardlogger",
#       "name": "StandardLogger",
#       "anchor": "class-standardlogger",
#       "kind": "class"
#     }
#   ]
# }
# === /NAVMAP ===

"""Progress reporting for parent, main and child processes.

:class:`StandardLogger` prints the configuration summary, drives a ``tqdm``
progress bar while items complete, frames output that children print outside
of the progress protocol, and closes with a memory/time summary. Every event is
mirrored to the structured logger so JSON log consumers see the same run.
:class:`NullLogger` is used where nothing should be rendered.
"""

from __future__ import annotations

import shutil
import sys
import time
import traceback
from typing import IO, Any, Dict, List, Optional, Protocol

import psutil
from tqdm import tqdm

from ConsoleParallel.core.configuration import RunConfiguration
from ConsoleParallel.logging import StructuredLogger, get_logger, log_event

__all__ = [
    "FAILED_ITEM_PREFIX",
    "NullLogger",
    "ProgressLogger",
    "StandardLogger",
    "format_memory",
    "pluralize",
]

FAILED_ITEM_PREFIX = "Failed to process the item"

_UNITS = ("B", "KB", "MB", "GB", "TB")


def pluralize(word: str, count: Optional[int] = 2) -> str:
    """Return the English plural of ``word`` unless ``count`` is exactly one."""

    if count == 1:
        return word
    if word.endswith(("s", "x", "z", "ch", "sh")):
        return f"{word}es"
    if word.endswith("y") and len(word) > 1 and word[-2] not in "aeiou":
        return f"{word[:-1]}ies"
    return f"{word}s"


def format_memory(size: int) -> str:
    """Render a byte count with two decimals and a binary unit."""

    value = float(size)
    for unit in _UNITS:
        if value < 1024 or unit == _UNITS[-1]:
            return f"{value:.2f}{unit}"
        value /= 1024
    return f"{value:.2f}{_UNITS[-1]}"  # pragma: no cover - loop always returns


def _enunciate(word: str, count: Optional[int]) -> Optional[str]:
    if count is None:
        return None
    return f"{count} {pluralize(word, count)}"


class ProgressLogger(Protocol):
    """Events emitted by the executor and the process pool."""

    def log_configuration(
        self,
        configuration: RunConfiguration,
        batch_size: int,
        number_of_items: Optional[int],
        item_name: str,
        spawn_children: bool,
    ) -> None: ...

    def start_progress(self, number_of_items: Optional[int]) -> None: ...

    def advance(self, steps: int = 1) -> None: ...

    def finish(self, item_name: str) -> None: ...

    def log_child_process_started(self, index: int, pid: Optional[int], command_line: str) -> None: ...

    def log_child_process_finished(self, index: int, exit_code: Optional[int] = None) -> None: ...

    def log_unexpected_child_output(
        self, index: int, pid: Optional[int], text: str, stream: str = "out"
    ) -> None: ...

    def log_item_processing_failed(self, item: str, exc: BaseException) -> None: ...


class NullLogger:
    """Progress logger that renders nothing."""

    def log_configuration(self, *args: Any, **kwargs: Any) -> None:
        return None

    def start_progress(self, number_of_items: Optional[int]) -> None:
        return None

    def advance(self, steps: int = 1) -> None:
        return None

    def finish(self, item_name: str) -> None:
        return None

    def log_child_process_started(self, index: int, pid: Optional[int], command_line: str) -> None:
        return None

    def log_child_process_finished(self, index: int, exit_code: Optional[int] = None) -> None:
        return None

    def log_unexpected_child_output(
        self, index: int, pid: Optional[int], text: str, stream: str = "out"
    ) -> None:
        return None

    def log_item_processing_failed(self, item: str, exc: BaseException) -> None:
        return None


class StandardLogger:
    """Console progress logger backed by ``tqdm``.

    Args:
        stream: Text stream for the summary lines and the progress bar.
            Defaults to ``sys.stdout`` as it is at the time of writing.
        terminal_width: Width used to centre the child output banner.
        verbose: Print child process start/stop notices.
        logger: Structured logger receiving a copy of every event.
        show_progress: Disable to keep the summary lines without a bar.
    """

    def __init__(
        self,
        stream: Optional[IO[str]] = None,
        *,
        terminal_width: Optional[int] = None,
        verbose: bool = False,
        logger: Optional[StructuredLogger] = None,
        show_progress: bool = True,
    ) -> None:
        self._stream = stream
        self.terminal_width = terminal_width or shutil.get_terminal_size((80, 20)).columns
        self.verbose = verbose
        self.logger = logger or get_logger(__name__, base_fields={"stage": "progress"})
        self.show_progress = show_progress
        self._bar: Optional[tqdm] = None
        self._total: Optional[int] = None
        self._started_at: Optional[float] = None
        self._peak_rss = 0
        self._advanced = 0
        self._framing: Dict[int, str] = {}

    @property
    def stream(self) -> IO[str]:
        return self._stream if self._stream is not None else sys.stdout

    def _write(self, message: str) -> None:
        if self._bar is not None:
            tqdm.write(message, file=self.stream)
        else:
            self.stream.write(f"{message}\n")
            self.stream.flush()

    def _sample_memory(self) -> int:
        rss = psutil.Process().memory_info().rss
        self._peak_rss = max(self._peak_rss, rss)
        return rss

    def log_configuration(
        self,
        configuration: RunConfiguration,
        batch_size: int,
        number_of_items: Optional[int],
        item_name: str,
        spawn_children: bool,
    ) -> None:
        count = "???" if number_of_items is None else str(number_of_items)
        items = pluralize(item_name, number_of_items)
        if spawn_children:
            parts = [
                f"Processing {count} {items} in segments of {configuration.segment_size}",
                f"batches of {batch_size}",
                _enunciate("round", configuration.number_of_rounds),
                _enunciate("batch", configuration.number_of_batches),
            ]
            processes = configuration.number_of_processes
            message = "{}, with {} {}.".format(
                ", ".join(part for part in parts if part),
                processes,
                pluralize("child process", processes),
            )
        else:
            parts = [
                f"Processing {count} {items}",
                f"batches of {batch_size}",
                _enunciate("batch", configuration.number_of_batches),
            ]
            message = "{}, in the current process.".format(", ".join(part for part in parts if part))

        self._write(message)
        self._write("")
        log_event(
            self.logger,
            "info",
            message,
            number_of_items=number_of_items,
            segment_size=configuration.segment_size,
            batch_size=batch_size,
            number_of_processes=configuration.number_of_processes,
            spawn_children=spawn_children,
        )

    def start_progress(self, number_of_items: Optional[int]) -> None:
        if self._started_at is not None:
            raise RuntimeError("Cannot start the progress: already started.")
        self._started_at = time.perf_counter()
        self._total = number_of_items
        self._sample_memory()
        if self.show_progress:
            self._bar = tqdm(
                total=number_of_items,
                file=self.stream,
                unit="item",
                dynamic_ncols=True,
                leave=True,
            )

    def advance(self, steps: int = 1) -> None:
        if self._started_at is None:
            raise RuntimeError("Expected the progress to be started.")
        if self._bar is not None and steps:
            self._bar.update(steps)
        self._advanced += steps

    def finish(self, item_name: str) -> None:
        if self._started_at is None:
            raise RuntimeError("Expected the progress to be started.")
        processed = max(self._total or 0, self._advanced)
        if self._bar is not None:
            self._bar.close()
            self._bar = None
        elapsed = time.perf_counter() - self._started_at
        rss = self._sample_memory()
        self._write("")
        self._write(
            f" // Memory usage: {format_memory(rss)} (peak: {format_memory(self._peak_rss)}), "
            f"time: {tqdm.format_interval(elapsed)}"
        )
        self._write("")
        self._write(f"Processed {processed} {pluralize(item_name, processed)}.")
        log_event(
            self.logger,
            "info",
            "Processing finished",
            processed=processed,
            elapsed_s=round(elapsed, 3),
            rss_bytes=rss,
            peak_rss_bytes=self._peak_rss,
        )
        self._started_at = None
        self._advanced = 0

    def log_child_process_started(self, index: int, pid: Optional[int], command_line: str) -> None:
        message = f"Started process #{index} (PID {pid}): {command_line}"
        if self.verbose:
            self._write(message)
        log_event(self.logger, "debug", message, process_index=index, pid=pid)

    def log_child_process_finished(self, index: int, exit_code: Optional[int] = None) -> None:
        message = f"Stopped process #{index}"
        if self.verbose:
            self._write(message)
        self._framing.pop(index, None)
        self._sample_memory()
        log_event(self.logger, "debug", message, process_index=index, exit_code=exit_code)

    def log_unexpected_child_output(
        self, index: int, pid: Optional[int], text: str, stream: str = "out"
    ) -> None:
        pid_part = f" (PID {pid})" if pid is not None else ""
        title = f" Process #{index}{pid_part} Output "
        error = FAILED_ITEM_PREFIX in text or stream == "err"
        self._write("")
        self._write(title.center(self.terminal_width, "="))
        self._write(self._frame(index, text, error))
        self._write("")
        log_event(
            self.logger,
            "warning" if error else "info",
            "Unexpected child process output",
            process_index=index,
            pid=pid,
            stream=stream,
            output=text,
            error_code="CHILD_OUTPUT",
        )

    def _frame(self, index: int, text: str, error: bool) -> str:
        prefix = " ERR " if error else " OUT "
        lines: List[str] = []
        if self._framing.get(index) not in (None, prefix):
            lines.append("")
        self._framing[index] = prefix
        lines.extend(f"{prefix} {line}" for line in text.rstrip("\n").split("\n"))
        return "\n".join(lines)

    def log_item_processing_failed(self, item: str, exc: BaseException) -> None:
        trace = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__)).rstrip()
        self._write(f'{FAILED_ITEM_PREFIX} "{item}": {exc}\n{trace}')
        log_event(
            self.logger,
            "error",
            f'{FAILED_ITEM_PREFIX} "{item}"',
            item=item,
            error=str(exc),
            error_code=type(exc).__name__,
        )
