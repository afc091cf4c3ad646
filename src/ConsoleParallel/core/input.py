# === NAVMAP v1 ===
# {
#   "module": "ConsoleParallel.core.input",
#   "purpose": "Parallelisation flags parsed from the host command line.",
#   "sections": [
#     {
#       "id": "executionmode",
#       "name": "ExecutionMode",
#       "anchor": "class-executionmode",
#       "kind": "class"
#     },
#     {
#       "id": "parallelizationinput",
#       "name": "ParallelizationInput",
#       "anchor": "class-parallelizationinput",
#       "kind": "class"
#     }
#   ]
# }
# === /NAVMAP ===

"""Parallelisation flags and the execution mode derived from them.

The host command exposes an optional ``item`` argument and the ``--processes``,
``--child`` and ``--main-process`` options. :class:`ParallelizationInput`
validates the raw values and, once the number of items is known, decides
whether work runs in the current process or is fanned out to children.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Optional, Union

from ConsoleParallel.errors import InvalidConfigurationError

__all__ = ["ExecutionMode", "ParallelizationInput"]


class ExecutionMode(str, Enum):
    """Code path taken by the executor for one invocation."""

    MAIN_PROCESS = "main-process"
    PARENT_PROCESS_LOCAL = "parent-process-local"
    PARENT_PROCESS_WITH_CHILDREN = "parent-process-with-children"
    CHILD_PROCESS = "child-process"


ProcessCount = Union[int, Callable[[], int]]


def _coerce_processes(value: Any) -> int:
    """Return ``value`` as a positive integer or raise a configuration error."""

    error = InvalidConfigurationError(
        option="--processes",
        message=(
            "Expected the number of processes to be an integer greater than or equal "
            f'to 1. Got "{value}"'
        ),
    )
    if isinstance(value, bool):
        raise error
    if isinstance(value, int):
        number = value
    elif isinstance(value, str) and value.strip().isdigit():
        number = int(value.strip())
    else:
        raise error
    if number < 1:
        raise error
    return number


@dataclass(slots=True)
class ParallelizationInput:
    """Validated parallelisation flags.

    ``number_of_processes`` may be given as a zero-argument callable, for
    example a CPU core counter; it is evaluated the first time the value is
    read and the result is kept.
    """

    number_of_processes_defined: bool
    number_of_processes_source: ProcessCount
    item: Optional[str] = None
    child_process: bool = False
    main_process: bool = False
    batch_size: Optional[int] = None
    segment_size: Optional[int] = None
    _resolved_processes: Optional[int] = field(default=None, init=False, repr=False)

    def __post_init__(self) -> None:
        if self.item is not None and self.child_process:
            raise InvalidConfigurationError(
                option="item",
                message=f'Cannot have an item passed to a child process as an argument. Got "{self.item}"',
            )
        if not callable(self.number_of_processes_source):
            self._resolved_processes = _coerce_processes(self.number_of_processes_source)

    @classmethod
    def from_values(
        cls,
        processes: Any = None,
        item: Optional[str] = None,
        child: bool = False,
        *,
        main_process: bool = False,
        batch_size: Optional[int] = None,
        segment_size: Optional[int] = None,
        default_processes: ProcessCount = 1,
    ) -> "ParallelizationInput":
        """Build the input from raw option values.

        ``processes`` is ``None`` when the option was not given on the command
        line; ``default_processes`` then applies and the count is not considered
        user-defined.
        """

        defined = processes is not None
        return cls(
            number_of_processes_defined=defined,
            number_of_processes_source=processes if defined else default_processes,
            item=item,
            child_process=bool(child),
            main_process=bool(main_process),
            batch_size=batch_size,
            segment_size=segment_size,
        )

    @property
    def number_of_processes(self) -> int:
        if self._resolved_processes is None:
            source = self.number_of_processes_source
            self._resolved_processes = _coerce_processes(source() if callable(source) else source)
        return self._resolved_processes

    def should_spawn_children(self, number_of_items: Optional[int], segment_size: int) -> bool:
        """Return ``True`` when the work should be fanned out to child processes."""

        if self.child_process or self.main_process or self.item is not None:
            return False
        if number_of_items is not None and number_of_items <= segment_size:
            return False
        return self.number_of_processes > 1 or self.number_of_processes_defined

    def execution_mode(self, number_of_items: Optional[int], segment_size: int) -> ExecutionMode:
        if self.child_process:
            return ExecutionMode.CHILD_PROCESS
        if self.main_process:
            return ExecutionMode.MAIN_PROCESS
        if self.should_spawn_children(number_of_items, segment_size):
            return ExecutionMode.PARENT_PROCESS_WITH_CHILDREN
        return ExecutionMode.PARENT_PROCESS_LOCAL
