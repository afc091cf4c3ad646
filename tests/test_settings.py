"""Tests for environment driven settings and CPU core detection."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from ConsoleParallel.concurrency.cpu import CpuCoreCounter
from ConsoleParallel.settings import (
    DEFAULT_BATCH_SIZE,
    DEFAULT_PROGRESS_SYMBOL,
    LogFormat,
    LogLevel,
    ParallelSettings,
)


def test_defaults():
    settings = ParallelSettings()

    assert settings.batch_size == DEFAULT_BATCH_SIZE
    assert settings.progress_symbol == DEFAULT_PROGRESS_SYMBOL == "\xfe"
    assert settings.cpu_count is None
    assert settings.auto_processes is False
    assert settings.log_level is LogLevel.INFO
    assert settings.log_format is LogFormat.CONSOLE


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("CONSOLE_PARALLEL_CPU_COUNT", "3")
    monkeypatch.setenv("CONSOLE_PARALLEL_BATCH_SIZE", "10")
    monkeypatch.setenv("console_parallel_log_format", "json")
    monkeypatch.setenv("CONSOLE_PARALLEL_PROCESS_TIMEOUT_S", " ")

    settings = ParallelSettings()

    assert settings.cpu_count == 3
    assert settings.batch_size == 10
    assert settings.log_format is LogFormat.JSON
    assert settings.process_timeout_s is None


@pytest.mark.parametrize(
    "values",
    [
        {"batch_size": 0},
        {"cpu_count": 0},
        {"progress_symbol": "##"},
        {"progress_symbol": "€"},
        {"process_tick_s": 0},
    ],
)
def test_invalid_values(values):
    with pytest.raises(ValidationError):
        ParallelSettings(**values)


def test_cpu_override_wins_over_detection():
    counter = CpuCoreCounter(ParallelSettings(cpu_count=5), detector=lambda: 64)

    assert counter() == 5


def test_cpu_detection_is_cached():
    calls = []

    def detect():
        calls.append(1)
        return 12

    counter = CpuCoreCounter(ParallelSettings(), detector=detect)

    assert counter.get_count() == 12
    assert counter() == 12
    assert calls == [1]


@pytest.mark.parametrize("detected", [None, 0])
def test_cpu_detection_falls_back_to_one(detected):
    assert CpuCoreCounter(ParallelSettings(), detector=lambda: detected)() == 1


def test_cpu_detection_uses_the_machine():
    assert CpuCoreCounter(ParallelSettings())() >= 1
