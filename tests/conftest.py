"""
Pytest Configuration

This module puts ``src`` on ``sys.path`` and provides the fakes shared by the
executor and process pool suites: a scripted child process that records the
items written to its stdin and replays canned output, a factory producing
such processes, and a recording progress logger.

Key Scenarios:
- Deterministic pool tests without spawning real interpreters
- Assertions on progress advances, child start/stop notices, and failures
"""

from __future__ import annotations

import os
import queue
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Mapping, Optional, Sequence, Tuple

import pytest

# --- Globals ---

ROOT = Path(__file__).resolve().parent.parent
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

FIXTURES = Path(__file__).resolve().parent / "fixtures"

# --- Fakes ---


class FakeProcess:
    """Scripted stand-in for :class:`ConsoleParallel.concurrency.processes.ChildProcess`.

    The process "runs" until its stdin is closed; on the next poll it emits the
    output produced by ``behaviour`` and reports ``exit_code``.
    """

    def __init__(
        self,
        index: int,
        command: Sequence[str],
        output: "queue.Queue[Tuple[int, str, bytes]]",
        *,
        pid: Optional[int],
        behaviour: Callable[[List[str]], List[Tuple[str, bytes]]],
        exit_code: int = 0,
        polls_before_exit: int = 0,
        stdin_limit: Optional[int] = None,
    ) -> None:
        self.index = index
        self.command = list(command)
        self.pid = pid
        self.started_at = 0.0
        self.items: List[str] = []
        self.stdin_closed = False
        self.terminated = False
        self.killed = False
        self.waited = False
        self._output = output
        self._behaviour = behaviour
        self._exit_code = exit_code
        self._polls_before_exit = polls_before_exit
        self._stdin_limit = stdin_limit
        self._returncode: Optional[int] = None

    def write(self, data: bytes) -> None:
        if self.stdin_closed or (
            self._stdin_limit is not None and len(self.items) >= self._stdin_limit
        ):
            raise BrokenPipeError("closed")
        self.items.append(data.decode("utf-8").rstrip("\n"))

    def close_stdin(self) -> None:
        self.stdin_closed = True

    def poll(self) -> Optional[int]:
        if self._returncode is not None:
            return self._returncode
        if self.terminated:
            self._returncode = -15
            return self._returncode
        if not self.stdin_closed:
            return None
        if self._polls_before_exit > 0:
            self._polls_before_exit -= 1
            return None
        for stream, chunk in self._behaviour(self.items):
            self._output.put((self.index, stream, chunk))
        self._returncode = self._exit_code
        return self._returncode

    @property
    def drained(self) -> bool:
        return self._returncode is not None

    def terminate(self) -> None:
        self.terminated = True

    def kill(self) -> None:
        self.killed = True

    def wait(self, timeout: Optional[float] = None) -> Optional[int]:
        self.waited = True
        if self._returncode is None and (self.killed or self.terminated):
            self._returncode = -9 if self.killed else -15
        return self._returncode


def markers_for(items: List[str]) -> List[Tuple[str, bytes]]:
    """Default behaviour: one progress marker per received item."""

    return [("out", b"\xfe" * len(items))]


@dataclass
class FakeProcessFactory:
    """Callable matching ``start_child_process`` that records started fakes."""

    behaviour: Callable[[List[str]], List[Tuple[str, bytes]]] = markers_for
    exit_codes: Dict[int, int] = field(default_factory=dict)
    pids: Dict[int, Optional[int]] = field(default_factory=dict)
    polls_before_exit: int = 0
    stdin_limits: Dict[int, int] = field(default_factory=dict)
    fail_with: Optional[BaseException] = None
    processes: List[FakeProcess] = field(default_factory=list)
    environments: List[Mapping[str, str]] = field(default_factory=list)
    working_directories: List[Optional[str]] = field(default_factory=list)

    def __call__(
        self,
        index: int,
        command: Sequence[str],
        cwd: Optional[str],
        env: Mapping[str, str],
        output: "queue.Queue[Tuple[int, str, bytes]]",
    ) -> FakeProcess:
        if self.fail_with is not None:
            raise self.fail_with
        process = FakeProcess(
            index,
            command,
            output,
            pid=self.pids.get(index, 1000 + index),
            behaviour=self.behaviour,
            exit_code=self.exit_codes.get(index, 0),
            polls_before_exit=self.polls_before_exit,
            stdin_limit=self.stdin_limits.get(index),
        )
        self.processes.append(process)
        self.environments.append(dict(env))
        self.working_directories.append(cwd)
        return process

    @property
    def distributions(self) -> List[List[str]]:
        return [process.items for process in self.processes]


class RecordingLogger:
    """Progress logger collecting every event for later assertions."""

    def __init__(self) -> None:
        self.events: List[Tuple] = []
        self.advanced = 0
        self.failures: List[Tuple[str, BaseException]] = []
        self.unexpected: List[Tuple[int, Optional[int], str, str]] = []

    def log_configuration(self, configuration, batch_size, number_of_items, item_name, spawn_children):
        self.events.append(("configuration", configuration, spawn_children))

    def start_progress(self, number_of_items):
        self.events.append(("start", number_of_items))

    def advance(self, steps: int = 1) -> None:
        self.advanced += steps

    def finish(self, item_name: str) -> None:
        self.events.append(("finish", item_name))

    def log_child_process_started(self, index, pid, command_line):
        self.events.append(("started", index, pid))

    def log_child_process_finished(self, index, exit_code=None):
        self.events.append(("finished", index, exit_code))

    def log_unexpected_child_output(self, index, pid, text, stream="out"):
        self.unexpected.append((index, pid, text, stream))

    def log_item_processing_failed(self, item, exc):
        self.failures.append((item, exc))

    def names(self) -> List[str]:
        return [event[0] for event in self.events]


@pytest.fixture
def fake_factory() -> FakeProcessFactory:
    return FakeProcessFactory()


@pytest.fixture
def recording_logger() -> RecordingLogger:
    return RecordingLogger()


@pytest.fixture(autouse=True)
def _isolate_settings_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep ``CONSOLE_PARALLEL_*`` variables of the developer shell out of tests."""

    for name in list(os.environ):
        if name.upper().startswith("CONSOLE_PARALLEL_"):
            monkeypatch.delenv(name, raising=False)
