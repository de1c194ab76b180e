"""
Shared pytest fixtures for ecs-runner tests.

This module provides:
- In-memory collaborators (FakeClusterControl, FakeLogAggregation)
- A deterministic clock whose sleep() advances time instead of blocking
- A config factory built from scheduler-style job params
- Log capture so diagnostics never reach stdout

Usage:
    def test_something(control, logs, make_config, lines):
        ...
"""

from __future__ import annotations

import io
from pathlib import Path
from typing import Any

import pytest

from ecs_runner.config import RunnerConfig
from ecs_runner.core.logging import clear_context, configure_logging
from ecs_runner.emitter import ResultEmitter
from ecs_runner.fakes import FakeClusterControl, FakeLogAggregation


# =============================================================================
# Test Markers Configuration
# =============================================================================


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Auto-mark tests based on their location."""
    for item in items:
        markers = {mark.name for mark in item.iter_markers()}
        if "integration" in Path(str(item.fspath)).name:
            item.add_marker(pytest.mark.integration)
        elif not markers.intersection({"unit", "integration"}):
            item.add_marker(pytest.mark.unit)


# =============================================================================
# Logging isolation
# =============================================================================


@pytest.fixture(autouse=True)
def diagnostics() -> io.StringIO:
    """Route structlog output to a buffer for the duration of each test."""
    buffer = io.StringIO()
    configure_logging(level="DEBUG", json_format=True, stream=buffer)
    yield buffer
    clear_context()


# =============================================================================
# Time
# =============================================================================


class FakeClock:
    """Monotonic clock where sleep() advances time instantly."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


# =============================================================================
# Collaborators
# =============================================================================


LOG_GROUP = "/ecs/jobs"
TASK_ARN = "arn:aws:ecs:us-east-1:123456789012:task/c1/0123456789abcdef"
STREAM_NAME = "ecs/app/0123456789abcdef"


@pytest.fixture
def control() -> FakeClusterControl:
    return FakeClusterControl(task_arn=TASK_ARN)


@pytest.fixture
def logs() -> FakeLogAggregation:
    return FakeLogAggregation()


@pytest.fixture
def lines() -> list[str]:
    """Captured output sink."""
    return []


@pytest.fixture
def out() -> io.StringIO:
    return io.StringIO()


@pytest.fixture
def emitter(out: io.StringIO) -> ResultEmitter:
    return ResultEmitter(stream=out)


# =============================================================================
# Config
# =============================================================================


BASE_PARAMS: dict[str, Any] = {
    "ecs_cluster": "c1",
    "mode": "task_definition",
    "task_definition": "td:3",
    "subnets": "s1",
    "wait_timeout_sec": 5,
    "wait_poll_interval_sec": 1,
}


@pytest.fixture
def make_config():
    """Factory: ``make_config(**param_overrides) -> RunnerConfig``."""

    def _make(**overrides: Any) -> RunnerConfig:
        params = {**BASE_PARAMS, **overrides}
        params = {k: v for k, v in params.items() if v is not None}
        return RunnerConfig.from_params(params, env={})

    return _make
