# === NAVMAP v1 ===
# {
#   "module": "ConsoleParallel.core.configuration",
#   "purpose": "Derive segment, round and batch counts for a parallel run.",
#   "sections": [
#     {
#       "id": "runconfiguration",
#       "name": "RunConfiguration",
#       "anchor": "class-runconfiguration",
#       "kind": "class"
#     }
#   ]
# }
# === /NAVMAP ===

"""Run configuration derived once per top-level invocation.

The numbers computed here drive both the process pool (how many children to
start and how many items each receives) and the configuration summary logged
before processing starts. Zero items are still reported as one round and one
batch; execution itself simply has no batch to run.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional

from ConsoleParallel.errors import InvalidConfigurationError

__all__ = ["RunConfiguration"]


def _require_positive(name: str, option: str, value: int) -> None:
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise InvalidConfigurationError(
            option=option,
            message=f'Expected the {name} to be an integer greater than or equal to 1. Got "{value}"',
        )


@dataclass(slots=True, frozen=True)
class RunConfiguration:
    """Immutable segment/batch arithmetic for one execution.

    ``number_of_segments`` and ``number_of_batches`` are ``None`` when the item
    count is unknown (lazy item sources); in that case ``number_of_processes``
    is not capped either.
    """

    number_of_processes: int
    number_of_items: Optional[int]
    segment_size: int
    batch_size: int
    number_of_segments: Optional[int]
    number_of_batches: Optional[int]

    @classmethod
    def create(
        cls,
        number_of_processes_defined: bool,
        number_of_processes: int,
        number_of_items: Optional[int],
        segment_size: int,
        batch_size: int,
    ) -> "RunConfiguration":
        """Validate the inputs and compute the derived counts."""

        _require_positive("number of processes", "--processes", number_of_processes)
        _require_positive("segment size", "--segment-size", segment_size)
        _require_positive("batch size", "--batch-size", batch_size)
        if number_of_items is not None and number_of_items < 0:
            raise InvalidConfigurationError(
                option="items",
                message=f'Expected the number of items to be greater than or equal to 0. Got "{number_of_items}"',
            )
        if segment_size < batch_size:
            raise InvalidConfigurationError(
                option="--segment-size",
                message=(
                    "Expected the segment size to be greater than or equal to the batch size. "
                    f'Got segment size "{segment_size}" and batch size "{batch_size}"'
                ),
                hint="Lower --batch-size or raise --segment-size",
            )

        if number_of_items is None:
            return cls(
                number_of_processes=number_of_processes,
                number_of_items=None,
                segment_size=segment_size,
                batch_size=batch_size,
                number_of_segments=None,
                number_of_batches=None,
            )

        # A single implicit process handles everything as one segment.
        if number_of_processes == 1 and not number_of_processes_defined:
            segment_size = number_of_items

        if number_of_processes == 1:
            number_of_segments = 1
        else:
            number_of_segments = max(1, math.ceil(number_of_items / segment_size))
        number_of_batches = max(1, math.ceil(segment_size / batch_size) * number_of_segments)

        return cls(
            number_of_processes=min(number_of_processes, number_of_segments),
            number_of_items=number_of_items,
            segment_size=segment_size,
            batch_size=batch_size,
            number_of_segments=number_of_segments,
            number_of_batches=number_of_batches,
        )

    @property
    def number_of_rounds(self) -> Optional[int]:
        """Alias used in the human readable summary."""

        return self.number_of_segments
