# === NAVMAP v1 ===
# {
#   "module": "ConsoleParallel.concurrency.processes",
#   "purpose": "Child process handles with background stdout and stderr readers.",
#   "sections": [
#     {
#       "id": "processhandle",
#       "name": "ProcessHandle",
#       "anchor": "class-processhandle",
#       "kind": "class"
#     },
#     {
#       "id": "processfactory",
#       "name": "ProcessFactory",
#       "anchor": "class-processfactory",
#       "kind": "class"
#     },
#     {
#       "id": "childprocess",
#       "name": "ChildProcess",
#       "anchor": "class-childprocess",
#       "kind": "class"
#     },
#     {
#       "id": "start-child-process",
#       "name": "start_child_process",
#       "anchor": "function-start-child-process",
#       "kind": "function"
#     },
#     {
#       "id": "render-command",
#       "name": "render_command",
#       "anchor": "function-render-command",
#       "kind": "function"
#     }
#   ]
# }
# === /NAVMAP ===

"""Child process handles with background output readers.

Each child is a :class:`subprocess.Popen` with all three standard streams piped.
Two daemon threads read the child's stdout and stderr and push every chunk onto
a queue shared with the launcher; they never call back into user code, so all
output callbacks run on the thread that owns the pool.
"""

from __future__ import annotations

import os
import queue
import shlex
import subprocess as sp
import threading
import time
from typing import IO, Mapping, Optional, Protocol, Sequence, Tuple

__all__ = [
    "ChildProcess",
    "OutputEvent",
    "ProcessFactory",
    "ProcessHandle",
    "render_command",
    "start_child_process",
]

#: ``(process index, "out" | "err", chunk)``
OutputEvent = Tuple[int, str, bytes]

_READ_SIZE = 65536


class ProcessHandle(Protocol):
    """Operations the launcher needs from a running child."""

    pid: Optional[int]
    started_at: float

    def poll(self) -> Optional[int]: ...

    def write(self, data: bytes) -> None: ...

    def close_stdin(self) -> None: ...

    @property
    def drained(self) -> bool: ...

    def terminate(self) -> None: ...

    def kill(self) -> None: ...

    def wait(self, timeout: Optional[float] = None) -> Optional[int]: ...


class ProcessFactory(Protocol):
    def __call__(
        self,
        index: int,
        command: Sequence[str],
        cwd: Optional[str],
        env: Mapping[str, str],
        output: "queue.Queue[OutputEvent]",
    ) -> ProcessHandle: ...


def _pump(stream: IO[bytes], index: int, name: str, output: "queue.Queue[OutputEvent]") -> None:
    """Forward raw chunks from ``stream`` until EOF."""

    try:
        for chunk in iter(lambda: stream.read(_READ_SIZE), b""):
            output.put((index, name, chunk))
    finally:
        stream.close()


class ChildProcess:
    """A started child process bound to an output queue."""

    def __init__(
        self,
        index: int,
        proc: sp.Popen,
        output: "queue.Queue[OutputEvent]",
    ) -> None:
        self.index = index
        self.proc = proc
        self.pid: Optional[int] = proc.pid
        self.started_at = time.monotonic()
        self._readers = [
            threading.Thread(
                target=_pump,
                args=(stream, index, name, output),
                name=f"console-parallel-{index}-{name}",
                daemon=True,
            )
            for stream, name in ((proc.stdout, "out"), (proc.stderr, "err"))
            if stream is not None
        ]
        for reader in self._readers:
            reader.start()

    def poll(self) -> Optional[int]:
        return self.proc.poll()

    def write(self, data: bytes) -> None:
        """Write ``data`` fully to the child's stdin.

        Raises:
            BrokenPipeError: If the child has closed its end of the pipe.
        """

        stdin = self.proc.stdin
        if stdin is None or stdin.closed:
            raise BrokenPipeError(f"stdin of process #{self.index} is closed")
        view = memoryview(data)
        while view:
            written = stdin.write(view)
            view = view[written or 0 :]

    def close_stdin(self) -> None:
        stdin = self.proc.stdin
        if stdin is None or stdin.closed:
            return
        try:
            stdin.close()
        except BrokenPipeError:
            # Child exited before reading everything; its exit code tells the rest.
            pass

    @property
    def drained(self) -> bool:
        """``True`` once both output readers reached EOF."""

        return not any(reader.is_alive() for reader in self._readers)

    def terminate(self) -> None:
        self.proc.terminate()

    def kill(self) -> None:
        self.proc.kill()

    def wait(self, timeout: Optional[float] = None) -> Optional[int]:
        """Reap the child and join its readers; ``None`` if still running after ``timeout``."""

        try:
            exit_code = self.proc.wait(timeout)
        except sp.TimeoutExpired:
            return None
        for reader in self._readers:
            reader.join(timeout)
        return exit_code


def start_child_process(
    index: int,
    command: Sequence[str],
    cwd: Optional[str],
    env: Mapping[str, str],
    output: "queue.Queue[OutputEvent]",
) -> ChildProcess:
    """Spawn ``command`` with piped, unbuffered standard streams."""

    proc = sp.Popen(
        list(command),
        cwd=cwd,
        env=dict(env),
        stdin=sp.PIPE,
        stdout=sp.PIPE,
        stderr=sp.PIPE,
        bufsize=0,
        close_fds=True,
    )
    return ChildProcess(index, proc, output)


def render_command(command: Sequence[str]) -> str:
    """Shell-quoted rendering of ``command`` for log messages."""

    if os.name == "nt":  # pragma: no cover - platform specific
        return sp.list2cmdline(list(command))
    return shlex.join(list(command))
