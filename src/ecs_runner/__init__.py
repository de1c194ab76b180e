"""
ecs-runner -- run a single ECS task as a scheduler job.

Launches one containerized task (from an existing task definition or a
one-off definition registered from an image), follows it to a terminal
state, optionally streams its CloudWatch log lines while it runs, and writes
exactly one JSON completion record.

Architecture::

    ┌──────────────────────────────────────────────────────────────┐
    │                        TaskRunner                             │
    ├──────────────┬──────────────┬───────────────┬────────────────┤
    │ Provisioner  │   Launcher   │ StatusPoller  │ LiveLogTailer  │
    │ (image mode) │   RunTask    │ DescribeTasks │ (thread)       │
    ├──────────────┴──────────────┴───────────────┴────────────────┤
    │   PostRunLogFetcher │ LogFilter │ ResultEmitter               │
    ├──────────────────────────────────────────────────────────────┤
    │   ClusterControlAPI (ECS)   │   LogAggregationAPI (Logs)      │
    └──────────────────────────────────────────────────────────────┘

Example:
    >>> from ecs_runner import RunnerConfig
    >>> config = RunnerConfig.from_params({"ecs_cluster": "c1", "task_definition": "td:3"}, env={})
    >>> config.request.mode.value
    'by_reference'
"""

from __future__ import annotations

from ecs_runner.config import LaunchMode, LaunchType, LogSettings, RunnerConfig, TaskRequest, WaitSettings
from ecs_runner.core.errors import ResultCode, RunnerError
from ecs_runner.results import ContainerResult, RunOutcome
from ecs_runner.workflow import TaskRunner, read_job, run_job

__version__ = "0.1.0"

__all__ = [
    "ContainerResult",
    "LaunchMode",
    "LaunchType",
    "LogSettings",
    "ResultCode",
    "RunOutcome",
    "RunnerConfig",
    "RunnerError",
    "TaskRequest",
    "TaskRunner",
    "WaitSettings",
    "read_job",
    "run_job",
]
