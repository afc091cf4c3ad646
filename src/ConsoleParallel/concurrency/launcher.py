# === NAVMAP v1 ===
# {
#   "module": "ConsoleParallel.concurrency.launcher",
#   "purpose": "Bounded process pool streaming item segments to child processes.",
#   "sections": [
#     {
#       "id": "processslot",
#       "name": "ProcessSlot",
#       "anchor": "class-processslot",
#       "kind": "class"
#     },
#     {
#       "id": "aggregate-exit-code",
#       "name": "aggregate_exit_code",
#       "anchor": "function-aggregate-exit-code",
#       "kind": "function"
#     },
#     {
#       "id": "processpoollauncher",
#       "name": "ProcessPoolLauncher",
#       "anchor": "class-processpoollauncher",
#       "kind": "class"
#     }
#   ]
# }
# === /NAVMAP ===

"""Process pool feeding item segments to child processes over stdin.

The launcher walks the item source once. Items are written, one per line, to
the stdin of the process currently being filled; once that process received
``segment_size`` items its stdin is closed and the next item goes to a new
process. At most ``number_of_processes`` children run at the same time; while
the pool is full the launcher polls for finished children and sleeps for one
``tick`` in between.

Child output is collected by reader threads into a queue and dispatched to the
output callback from the thread calling :meth:`ProcessPoolLauncher.run`, which
is also the only thread touching the pool bookkeeping. A child is reaped only
after it exited and both of its output pipes reached EOF, so no output is lost.
When the run fails, every running child is killed and reaped before the error
propagates.
"""

from __future__ import annotations

import os
import queue
import time
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, Mapping, Optional, Sequence

from ConsoleParallel.concurrency.processes import (
    OutputEvent,
    ProcessFactory,
    ProcessHandle,
    render_command,
    start_child_process,
)
from ConsoleParallel.core.progress import ProgressLogger
from ConsoleParallel.errors import ProcessStartError
from ConsoleParallel.logging import get_logger, log_event

__all__ = [
    "OutputCallback",
    "ProcessPoolLauncher",
    "ProcessSlot",
    "aggregate_exit_code",
]

LOGGER = get_logger(__name__, base_fields={"stage": "pool"})

DEFAULT_TICK_S = 0.001
DEFAULT_KILL_GRACE_S = 5.0


@dataclass(slots=True)
class ProcessSlot:
    """A running child together with its pool index and segment counter."""

    index: int
    pid: Optional[int]
    process: ProcessHandle
    written: int = 0
    terminated_at: Optional[float] = None
    killed: bool = False


OutputCallback = Callable[[ProcessSlot, str, bytes], None]


def aggregate_exit_code(codes: Iterable[int]) -> int:
    """Sum exit codes, counting signal terminations (negative codes) as positive."""

    return sum(abs(code) for code in codes)


def _default_tick() -> None:
    time.sleep(DEFAULT_TICK_S)


class ProcessPoolLauncher:
    """Run at most ``number_of_processes`` children over one item stream.

    Args:
        command: Argument vector every child is started with.
        working_directory: Working directory of the children.
        extra_environment: Variables added on top of ``os.environ``.
        number_of_processes: Maximum number of children alive at once.
        segment_size: Items written to one child before its stdin is closed.
        logger: Receives child start/stop notices.
        callback: Called with ``(slot, "out" | "err", chunk)`` for child output.
        tick: Called while waiting for a free slot or for children to exit.
        process_factory: Starts one child; injectable for tests.
        process_timeout_s: Terminate children running longer than this.
        kill_grace_s: Delay between terminating and killing a timed out child.
    """

    def __init__(
        self,
        command: Sequence[str],
        working_directory: Optional[str],
        extra_environment: Optional[Mapping[str, str]],
        number_of_processes: int,
        segment_size: int,
        logger: ProgressLogger,
        callback: OutputCallback,
        *,
        tick: Optional[Callable[[], None]] = None,
        process_factory: ProcessFactory = start_child_process,
        process_timeout_s: Optional[float] = None,
        kill_grace_s: float = DEFAULT_KILL_GRACE_S,
        command_line: Optional[str] = None,
    ) -> None:
        if number_of_processes < 1:
            raise ValueError("number_of_processes must be >= 1")
        if segment_size < 1:
            raise ValueError("segment_size must be >= 1")
        self.command = list(command)
        self.command_line = command_line or render_command(self.command)
        self.working_directory = working_directory
        self.environment: Dict[str, str] = {**os.environ, **dict(extra_environment or {})}
        self.number_of_processes = number_of_processes
        self.segment_size = segment_size
        self.logger = logger
        self.callback = callback
        self.tick = tick or _default_tick
        self.process_factory = process_factory
        self.process_timeout_s = process_timeout_s
        self.kill_grace_s = kill_grace_s

        self._output: "queue.Queue[OutputEvent]" = queue.Queue()
        self._active: Dict[int, ProcessSlot] = {}
        self._slots: Dict[int, ProcessSlot] = {}
        self._next_index = 0
        self._exit_code = 0

    @property
    def started(self) -> int:
        """Number of children started so far."""

        return self._next_index

    def run(self, items: Iterable[str]) -> int:
        """Stream ``items`` through the pool and return the aggregated exit code."""

        current: Optional[ProcessSlot] = None
        try:
            for item in items:
                line = f"{item}\n".encode("utf-8")
                while True:
                    if current is not None and current.written >= self.segment_size:
                        current.process.close_stdin()
                        current = None
                    while current is None:
                        self._reap()
                        if len(self._active) < self.number_of_processes:
                            current = self._start()
                        else:
                            self._wait()
                    try:
                        current.process.write(line)
                    except BrokenPipeError:
                        log_event(
                            LOGGER,
                            "warning",
                            "Child process closed its input early; moving item to a new process",
                            process_index=current.index,
                            pid=current.pid,
                            error_code="BROKEN_PIPE",
                        )
                        current.process.close_stdin()
                        current = None
                        continue
                    current.written += 1
                    break
                self._dispatch_output()

            if current is not None:
                current.process.close_stdin()
                current = None
            while self._active:
                self._reap()
                if self._active:
                    self._wait()
        except BaseException:
            self._abort()
            raise
        return self._exit_code

    def _start(self) -> ProcessSlot:
        index = self._next_index
        self._next_index += 1
        try:
            process = self.process_factory(
                index, self.command, self.working_directory, self.environment, self._output
            )
        except OSError as exc:
            raise ProcessStartError(index, self.command_line, str(exc)) from exc
        if process.pid is None:
            raise ProcessStartError(index, self.command_line, "no process id available")
        slot = ProcessSlot(index=index, pid=process.pid, process=process)
        self._active[index] = slot
        self._slots[index] = slot
        self.logger.log_child_process_started(index, process.pid, self.command_line)
        return slot

    def _wait(self) -> None:
        self._dispatch_output()
        self.tick()

    def _reap(self) -> None:
        self._dispatch_output()
        for index, slot in list(self._active.items()):
            self._enforce_timeout(slot)
            exit_code = slot.process.poll()
            if exit_code is None or not slot.process.drained:
                continue
            self._dispatch_output()
            slot.process.close_stdin()
            del self._active[index]
            self._exit_code += aggregate_exit_code([exit_code])
            self.logger.log_child_process_finished(index, exit_code)
            if exit_code != 0:
                log_event(
                    LOGGER,
                    "warning",
                    "Child process exited with a non-zero code",
                    process_index=index,
                    pid=slot.pid,
                    exit_code=exit_code,
                    error_code="CHILD_EXIT",
                )

    def _enforce_timeout(self, slot: ProcessSlot) -> None:
        if self.process_timeout_s is None or slot.killed:
            return
        now = time.monotonic()
        if slot.terminated_at is None:
            if now - slot.process.started_at <= self.process_timeout_s:
                return
            log_event(
                LOGGER,
                "warning",
                "Child process exceeded its timeout; terminating",
                process_index=slot.index,
                pid=slot.pid,
                timeout_s=self.process_timeout_s,
                error_code="CHILD_TIMEOUT",
            )
            slot.terminated_at = now
            slot.process.close_stdin()
            if slot.process.poll() is None:
                slot.process.terminate()
        elif now - slot.terminated_at > self.kill_grace_s and slot.process.poll() is None:
            slot.killed = True
            slot.process.kill()

    def _dispatch_output(self) -> None:
        while True:
            try:
                index, stream, chunk = self._output.get_nowait()
            except queue.Empty:
                return
            self.callback(self._slots[index], stream, chunk)

    def _abort(self) -> None:
        slots = list(self._active.values())
        self._active.clear()
        for slot in slots:
            slot.process.close_stdin()
            if slot.process.poll() is None:
                slot.killed = True
                slot.process.kill()
        for slot in slots:
            if slot.process.wait(self.kill_grace_s) is None:
                log_event(
                    LOGGER,
                    "warning",
                    "Child process did not exit after being killed",
                    process_index=slot.index,
                    pid=slot.pid,
                    error_code="CHILD_KILL",
                )
