# === NAVMAP v1 ===
# {
#   "module": "ConsoleParallel.core.batching",
#   "purpose": "Item normalisation, batching, and rewindable item sources.",
#   "sections": [
#     {
#       "id": "normalize-item",
#       "name": "normalize_item",
#       "anchor": "function-normalize-item",
#       "kind": "function"
#     },
#     {
#       "id": "normalize-items",
#       "name": "normalize_items",
#       "anchor": "function-normalize-items",
#       "kind": "function"
#     },
#     {
#       "id": "iter-batches",
#       "name": "iter_batches",
#       "anchor": "function-iter-batches",
#       "kind": "function"
#     },
#     {
#       "id": "chunk-items",
#       "name": "chunk_items",
#       "anchor": "function-chunk-items",
#       "kind": "function"
#     },
#     {
#       "id": "lazyrewindableiterator",
#       "name": "LazyRewindableIterator",
#       "anchor": "class-lazyrewindableiterator",
#       "kind": "class"
#     },
#     {
#       "id": "chunkeditems",
#       "name": "ChunkedItems",
#       "anchor": "class-chunkeditems",
#       "kind": "class"
#     }
#   ]
# }
# === /NAVMAP ===

"""Item normalisation and batching helpers.

Items travel to child processes as newline-terminated lines on standard input,
so every item must be a string without a newline. Numbers are accepted and
rendered canonically with :func:`str`; anything else is rejected up front, before
a single item is processed. Normalised items are then partitioned into ordered
batches. Item sources that can only be iterated once (generators, cursors) are
wrapped in :class:`LazyRewindableIterator` so the sequence can be walked more
than once without fetching it again.
"""

from __future__ import annotations

import numbers
from decimal import Decimal
from itertools import islice
from typing import (
    IO,
    Any,
    Callable,
    Iterable,
    Iterator,
    List,
    Optional,
    Sequence,
    TypeVar,
    Union,
)

from ConsoleParallel.errors import InvalidConfigurationError, InvalidItemError

T = TypeVar("T")

__all__ = [
    "ChunkedItems",
    "LazyRewindableIterator",
    "chunk_items",
    "iter_batches",
    "normalize_item",
    "normalize_items",
]


def normalize_item(item: Any, index: int) -> str:
    """Return ``item`` as a newline-free string or raise :class:`InvalidItemError`."""

    if isinstance(item, str):
        value = item
    elif isinstance(item, bool):
        raise _invalid_type(item, index)
    elif isinstance(item, (numbers.Real, Decimal)):
        value = str(item)
    else:
        raise _invalid_type(item, index)

    if "\n" in value:
        raise InvalidItemError(
            option="items",
            message=f'An item cannot contain a line return. Got "{value}" for the item "{index}".',
            hint="Items are streamed to child processes one per line",
        )
    # Child processes trim each line they read, so the parent must agree.
    value = value.strip()
    if not value:
        raise InvalidItemError(
            option="items",
            message=f'An item cannot be empty or only whitespace. Got an empty value for the item "{index}".',
        )
    return value


def _invalid_type(item: Any, index: int) -> InvalidItemError:
    return InvalidItemError(
        option="items",
        message=(
            "The items are potentially passed to the child processes via STDIN, so "
            f'they are expected to be strings or numbers. Got "{type(item).__name__}" '
            f'for the item "{index}".'
        ),
    )


def normalize_items(items: Iterable[Any]) -> List[str]:
    """Normalise every element of ``items`` eagerly."""

    return [normalize_item(item, index) for index, item in enumerate(items)]


def _check_batch_size(batch_size: int) -> None:
    if isinstance(batch_size, bool) or not isinstance(batch_size, int) or batch_size < 1:
        raise InvalidConfigurationError(
            option="--batch-size",
            message=f'Expected the batch size to be an integer greater than or equal to 1. Got "{batch_size}"',
        )


def iter_batches(items: Iterable[T], batch_size: int) -> Iterator[List[T]]:
    """Lazily yield contiguous batches of at most ``batch_size`` elements."""

    _check_batch_size(batch_size)
    iterator = iter(items)
    while True:
        batch = list(islice(iterator, batch_size))
        if not batch:
            break
        yield batch


def chunk_items(items: Iterable[T], batch_size: int) -> List[List[T]]:
    """Partition ``items`` into ordered batches; no items yields no batches."""

    return list(iter_batches(items, batch_size))


class LazyRewindableIterator(Iterable[T]):
    """Iterate a one-shot source lazily while allowing repeated passes.

    Values are pulled from the underlying iterator only when a pass reaches a
    position that has not been seen yet, and every pulled value is appended to
    an internal buffer. Each call to :meth:`__iter__` starts a fresh pass at the
    beginning which replays buffered values before resuming the source, so a
    partially consumed pass can be followed by a complete one without touching
    the source twice for the same position.
    """

    def __init__(self, source: Iterable[T]) -> None:
        self._source = source
        self._iterator: Optional[Iterator[T]] = None
        self._buffer: List[T] = []
        self._exhausted = False

    @property
    def buffered(self) -> int:
        """Number of values pulled from the source so far."""

        return len(self._buffer)

    @property
    def exhausted(self) -> bool:
        return self._exhausted

    def _pull(self) -> bool:
        if self._exhausted:
            return False
        if self._iterator is None:
            self._iterator = iter(self._source)
        try:
            value = next(self._iterator)
        except StopIteration:
            self._exhausted = True
            self._iterator = None
            return False
        self._buffer.append(value)
        return True

    def __iter__(self) -> Iterator[T]:
        position = 0
        while True:
            if position < len(self._buffer):
                yield self._buffer[position]
                position += 1
            elif not self._pull():
                return


ItemSource = Union[Sequence[str], LazyRewindableIterator[str]]


class ChunkedItems:
    """Normalised items together with their batch size and (optional) count.

    ``number_of_items`` is ``None`` when the items come from a lazy iterable
    whose length is unknown until it has been consumed.
    """

    def __init__(self, items: ItemSource, batch_size: int, number_of_items: Optional[int]) -> None:
        _check_batch_size(batch_size)
        self._items = items
        self.batch_size = batch_size
        self.number_of_items = number_of_items

    @classmethod
    def from_item_or_callable(
        cls,
        item: Optional[str],
        fetch_items: Callable[[], Iterable[Any]],
        batch_size: int,
    ) -> "ChunkedItems":
        """Build the item set from an explicit item or by fetching once.

        An explicit ``item`` short-circuits ``fetch_items`` entirely. Lists and
        tuples are normalised eagerly; any other iterable is wrapped lazily and
        normalised as it is consumed.
        """

        if item is not None:
            return cls([normalize_item(item, 0)], batch_size, 1)

        fetched = fetch_items()
        if isinstance(fetched, (list, tuple)):
            items = normalize_items(fetched)
            return cls(items, batch_size, len(items))
        if isinstance(fetched, (str, bytes)) or not isinstance(fetched, Iterable):
            raise InvalidItemError(
                option="items",
                message=(
                    "Expected the fetched items to be a list or an iterable of strings. "
                    f'Got "{type(fetched).__name__}".'
                ),
            )

        def _normalised() -> Iterator[str]:
            for index, value in enumerate(fetched):
                yield normalize_item(value, index)

        return cls(LazyRewindableIterator(_normalised()), batch_size, None)

    @classmethod
    def from_stream(cls, stream: IO[Any], batch_size: int) -> "ChunkedItems":
        """Read newline separated items until EOF, trimming and skipping blanks.

        Text streams are read through their binary buffer when they have one,
        so a carriage return inside an item is not taken for a line break.
        """

        binary = getattr(stream, "buffer", None)
        raw = binary.read() if binary is not None else stream.read()
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        items = [line.strip() for line in raw.split("\n")]
        items = [line for line in items if line]
        return cls(items, batch_size, len(items))

    @property
    def items(self) -> ItemSource:
        return self._items

    def __iter__(self) -> Iterator[str]:
        return iter(self._items)

    def iter_batches(self) -> Iterator[List[str]]:
        """Yield ordered batches of at most ``batch_size`` items."""

        return iter_batches(self._items, self.batch_size)
