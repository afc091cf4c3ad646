"""
Process pool helpers.

Exposes :class:`ProcessPoolLauncher`, which streams item segments to a bounded
number of child processes, and :class:`CpuCoreCounter` for picking a default
pool size.
"""

from .cpu import CpuCoreCounter
from .launcher import ProcessPoolLauncher, ProcessSlot, aggregate_exit_code

__all__ = ["CpuCoreCounter", "ProcessPoolLauncher", "ProcessSlot", "aggregate_exit_code"]
