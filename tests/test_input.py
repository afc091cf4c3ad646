"""Tests for parallelisation flag validation and execution mode selection."""

from __future__ import annotations

import pytest

from ConsoleParallel.core.input import ExecutionMode, ParallelizationInput
from ConsoleParallel.errors import CLIValidationError, InvalidConfigurationError


@pytest.mark.parametrize("processes", ["0", "-1", "two", "1.5", "", 0, True])
def test_invalid_process_counts_are_rejected(processes):
    with pytest.raises(InvalidConfigurationError) as excinfo:
        ParallelizationInput.from_values(processes)

    error = excinfo.value
    assert isinstance(error, CLIValidationError)
    assert error.option == "--processes"
    assert f'Got "{processes}"' in str(error)


@pytest.mark.parametrize(("processes", "expected"), [("1", 1), ("4", 4), (" 3 ", 3), (8, 8)])
def test_valid_process_counts(processes, expected):
    parallel_input = ParallelizationInput.from_values(processes)

    assert parallel_input.number_of_processes == expected
    assert parallel_input.number_of_processes_defined


def test_item_and_child_are_mutually_exclusive():
    with pytest.raises(InvalidConfigurationError) as excinfo:
        ParallelizationInput.from_values(item="item1", child=True)

    assert 'Cannot have an item passed to a child process as an argument. Got "item1"' in str(
        excinfo.value
    )


def test_default_process_count_is_not_user_defined():
    parallel_input = ParallelizationInput.from_values()

    assert parallel_input.number_of_processes == 1
    assert not parallel_input.number_of_processes_defined


def test_callable_default_is_resolved_lazily_and_once():
    calls = []

    def count_cores():
        calls.append(1)
        return 6

    parallel_input = ParallelizationInput.from_values(default_processes=count_cores)

    assert calls == []
    assert parallel_input.number_of_processes == 6
    assert parallel_input.number_of_processes == 6
    assert calls == [1]


def test_explicit_item_never_spawns_children():
    parallel_input = ParallelizationInput.from_values("4", item="item3")

    assert not parallel_input.should_spawn_children(None, 1)
    assert parallel_input.execution_mode(1, 1) is ExecutionMode.PARENT_PROCESS_LOCAL


@pytest.mark.parametrize(
    ("processes", "items", "segment", "expected"),
    [
        ("2", 100, 10, True),
        ("1", 100, 10, True),
        (None, 100, 10, False),
        ("4", 10, 10, False),
        ("4", 3, 10, False),
        ("4", None, 10, True),
    ],
)
def test_spawn_decision(processes, items, segment, expected):
    parallel_input = ParallelizationInput.from_values(processes)

    assert parallel_input.should_spawn_children(items, segment) is expected


def test_implicit_process_count_above_one_spawns():
    parallel_input = ParallelizationInput.from_values(default_processes=lambda: 4)

    assert parallel_input.should_spawn_children(100, 10)


def test_small_workload_bypass_does_not_resolve_the_count():
    def explode():
        raise AssertionError("count must not be resolved")

    parallel_input = ParallelizationInput.from_values(default_processes=explode)

    assert parallel_input.execution_mode(5, 10) is ExecutionMode.PARENT_PROCESS_LOCAL


def test_main_process_and_child_modes():
    assert (
        ParallelizationInput.from_values("4", main_process=True).execution_mode(100, 10)
        is ExecutionMode.MAIN_PROCESS
    )
    assert (
        ParallelizationInput.from_values(child=True).execution_mode(None, 10)
        is ExecutionMode.CHILD_PROCESS
    )
