# === NAVMAP v1 ===
# {
#   "module": "ConsoleParallel.concurrency.cpu",
#   "purpose": "CPU core detection for the default child process count.",
#   "sections": [
#     {
#       "id": "cpucorecounter",
#       "name": "CpuCoreCounter",
#       "anchor": "class-cpucorecounter",
#       "kind": "class"
#     }
#   ]
# }
# === /NAVMAP ===

"""CPU core detection used to pick a default number of child processes."""

from __future__ import annotations

import os
from typing import Callable, Optional

import psutil

from ConsoleParallel.settings import ParallelSettings

__all__ = ["CpuCoreCounter"]


class CpuCoreCounter:
    """
    Return the number of usable CPU cores.

    The ``cpu_count`` setting (``CONSOLE_PARALLEL_CPU_COUNT``) takes precedence
    over detection. Detection asks :mod:`psutil` for logical cores and falls
    back to :func:`os.cpu_count`, then to 1. The value is computed on first use
    and kept on the instance; build a new counter to detect again.
    """

    def __init__(
        self,
        settings: Optional[ParallelSettings] = None,
        *,
        detector: Optional[Callable[[], Optional[int]]] = None,
    ) -> None:
        self.settings = settings or ParallelSettings()
        self._detector = detector or _detect
        self._count: Optional[int] = None

    def __call__(self) -> int:
        return self.get_count()

    def get_count(self) -> int:
        if self._count is None:
            override = self.settings.cpu_count
            if override is not None:
                self._count = override
            else:
                detected = self._detector()
                self._count = detected if detected and detected > 0 else 1
        return self._count


def _detect() -> Optional[int]:
    count = psutil.cpu_count(logical=True)
    if not count:
        count = os.cpu_count()
    return count
