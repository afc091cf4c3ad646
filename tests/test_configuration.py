"""Tests for run configuration arithmetic."""

from __future__ import annotations

import pytest
from hypothesis import given
from hypothesis import strategies as st

from ConsoleParallel.core.configuration import RunConfiguration
from ConsoleParallel.errors import InvalidConfigurationError


def test_segment_smaller_than_batch_is_rejected():
    with pytest.raises(InvalidConfigurationError) as excinfo:
        RunConfiguration.create(True, 2, 10, segment_size=3, batch_size=5)

    message = str(excinfo.value)
    assert '"3"' in message
    assert '"5"' in message


@pytest.mark.parametrize(
    ("processes", "items", "segment", "batch", "expected"),
    [
        # (processes, segments, batches, segment size)
        (2, 5, 2, 2, (2, 3, 3, 2)),
        (4, 5, 2, 2, (3, 3, 3, 2)),
        (2, 10, 5, 2, (2, 2, 6, 5)),
        (3, 0, 5, 2, (1, 1, 3, 5)),
        (2, 50, 50, 50, (1, 1, 1, 50)),
    ],
)
def test_counts_with_several_processes(processes, items, segment, batch, expected):
    configuration = RunConfiguration.create(True, processes, items, segment, batch)

    assert (
        configuration.number_of_processes,
        configuration.number_of_segments,
        configuration.number_of_batches,
        configuration.segment_size,
    ) == expected


def test_single_implicit_process_uses_one_segment_for_everything():
    configuration = RunConfiguration.create(False, 1, 7, segment_size=50, batch_size=2)

    assert configuration.segment_size == 7
    assert configuration.number_of_segments == 1
    assert configuration.number_of_rounds == 1
    assert configuration.number_of_batches == 4


def test_single_defined_process_keeps_segment_size():
    configuration = RunConfiguration.create(True, 1, 7, segment_size=4, batch_size=2)

    assert configuration.segment_size == 4
    assert configuration.number_of_segments == 1
    assert configuration.number_of_batches == 2


def test_zero_items_still_report_one_round_and_one_batch():
    configuration = RunConfiguration.create(False, 1, 0, segment_size=50, batch_size=50)

    assert configuration.number_of_segments == 1
    assert configuration.number_of_batches == 1


def test_unknown_item_count_leaves_counts_open():
    configuration = RunConfiguration.create(True, 4, None, segment_size=10, batch_size=5)

    assert configuration.number_of_processes == 4
    assert configuration.number_of_segments is None
    assert configuration.number_of_batches is None


@pytest.mark.parametrize("field", ["processes", "segment", "batch"])
def test_non_positive_values_are_rejected(field):
    values = {"processes": 2, "segment": 5, "batch": 5}
    values[field] = 0
    with pytest.raises(InvalidConfigurationError):
        RunConfiguration.create(True, values["processes"], 10, values["segment"], values["batch"])


def test_configuration_is_frozen():
    configuration = RunConfiguration.create(True, 2, 10, 5, 5)

    with pytest.raises(AttributeError):
        configuration.segment_size = 1  # type: ignore[misc]


@given(
    processes=st.integers(min_value=1, max_value=16),
    defined=st.booleans(),
    items=st.integers(min_value=0, max_value=500),
    batch=st.integers(min_value=1, max_value=20),
    extra=st.integers(min_value=0, max_value=40),
)
def test_batches_never_fewer_than_segments(processes, defined, items, batch, extra):
    configuration = RunConfiguration.create(defined, processes, items, batch + extra, batch)

    assert configuration.number_of_segments >= 1
    assert configuration.number_of_batches >= configuration.number_of_segments
    assert 1 <= configuration.number_of_processes <= processes
