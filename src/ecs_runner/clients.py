"""Collaborator interfaces for ecs-runner and their boto3 adapters.

The pipeline talks to two remote systems through narrow protocols:

- ``ClusterControlAPI`` -- register/deregister task definitions, run and
  describe tasks (ECS).
- ``LogAggregationAPI`` -- enumerate log streams and page through log events
  (CloudWatch Logs).

Components receive pre-authenticated client objects; credential acquisition
happens once, in ``build_clients()``.

Architecture::

    ┌───────────────────────┐       ┌────────────────────────┐
    │  ClusterControlAPI    │       │  LogAggregationAPI     │
    │  (Protocol)           │       │  (Protocol)            │
    └──────────┬────────────┘       └───────────┬────────────┘
               │                                │
    ┌──────────▼────────────┐       ┌───────────▼────────────┐
    │  Boto3ClusterControl  │       │  Boto3LogAggregation   │
    │  boto3 "ecs" client   │       │  boto3 "logs" client   │
    └───────────────────────┘       └────────────────────────┘

    Fakes for tests: ecs_runner.fakes.FakeClusterControl / FakeLogAggregation

Requests are ECS-shaped dicts built by the components themselves, so the
adapters stay thin pass-throughs that only normalize responses into the
dataclasses below.

Tags:
    aws, boto3, ecs, cloudwatch-logs, protocol, adapter
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

import boto3

from ecs_runner.config import AwsSettings, RunnerConfig
from ecs_runner.results import ContainerResult


# ---------------------------------------------------------------------------
# Value objects
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LaunchFailure:
    """One entry of a RunTask ``failures`` list."""

    reason: str = ""
    arn: str = ""
    detail: str = ""

    def __str__(self) -> str:
        return f"{self.reason}:{self.arn}"


@dataclass
class RunTaskResponse:
    task_arns: list[str] = field(default_factory=list)
    failures: list[LaunchFailure] = field(default_factory=list)


@dataclass
class TaskDescription:
    """Observed state of a task."""

    task_arn: str
    last_status: str
    containers: list[ContainerResult] = field(default_factory=list)
    stopped_reason: str = ""


@dataclass(frozen=True)
class LogStream:
    name: str
    last_event_timestamp: int | None = None


@dataclass(frozen=True)
class LogEvent:
    message: str
    timestamp: int | None = None  # epoch milliseconds


@dataclass
class LogEventPage:
    events: list[LogEvent] = field(default_factory=list)
    next_forward_token: str | None = None


# ---------------------------------------------------------------------------
# Protocols
# ---------------------------------------------------------------------------


@runtime_checkable
class ClusterControlAPI(Protocol):
    """Cluster control plane consumed by the provisioner, launcher and poller."""

    def register_task_definition(self, definition: dict[str, Any]) -> str:
        """Register a task definition and return its ARN."""
        ...

    def deregister_task_definition(self, task_definition_arn: str) -> None:
        ...

    def run_task(self, request: dict[str, Any]) -> RunTaskResponse:
        ...

    def describe_task(self, cluster: str, task_arn: str) -> TaskDescription | None:
        """Return the task's state, or None if the platform no longer knows it."""
        ...


@runtime_checkable
class LogAggregationAPI(Protocol):
    """Log store consumed by the live tailer and the post-run fetcher."""

    def describe_streams(
        self,
        log_group: str,
        name_prefix: str,
        *,
        most_recent_first: bool = True,
        limit: int = 1,
    ) -> list[LogStream]:
        ...

    def get_events(
        self,
        log_group: str,
        stream_name: str,
        *,
        next_token: str | None = None,
        start_from_head: bool = False,
        limit: int = 10000,
    ) -> LogEventPage:
        ...


# ---------------------------------------------------------------------------
# boto3 adapters
# ---------------------------------------------------------------------------


def _drop_none(d: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in d.items() if v is not None}


class Boto3ClusterControl:
    """``ClusterControlAPI`` over a boto3 ECS client."""

    def __init__(self, ecs_client: Any) -> None:
        self._ecs = ecs_client

    def register_task_definition(self, definition: dict[str, Any]) -> str:
        response = self._ecs.register_task_definition(**_drop_none(definition))
        return (response.get("taskDefinition") or {}).get("taskDefinitionArn", "")

    def deregister_task_definition(self, task_definition_arn: str) -> None:
        self._ecs.deregister_task_definition(taskDefinition=task_definition_arn)

    def run_task(self, request: dict[str, Any]) -> RunTaskResponse:
        response = self._ecs.run_task(**_drop_none(request))
        return RunTaskResponse(
            task_arns=[t["taskArn"] for t in response.get("tasks") or [] if t.get("taskArn")],
            failures=[
                LaunchFailure(
                    reason=f.get("reason", ""),
                    arn=f.get("arn", ""),
                    detail=f.get("detail", ""),
                )
                for f in response.get("failures") or []
            ],
        )

    def describe_task(self, cluster: str, task_arn: str) -> TaskDescription | None:
        response = self._ecs.describe_tasks(cluster=cluster, tasks=[task_arn])
        tasks = response.get("tasks") or []
        if not tasks:
            return None
        task = tasks[0]
        containers = [
            ContainerResult(
                name=c.get("name", ""),
                exit_code=c["exitCode"] if isinstance(c.get("exitCode"), int) else None,
                reason=c.get("reason", ""),
            )
            for c in task.get("containers") or []
        ]
        return TaskDescription(
            task_arn=task.get("taskArn", task_arn),
            last_status=task.get("lastStatus", "UNKNOWN"),
            containers=containers,
            stopped_reason=task.get("stoppedReason", ""),
        )


class Boto3LogAggregation:
    """``LogAggregationAPI`` over a boto3 CloudWatch Logs client."""

    def __init__(self, logs_client: Any) -> None:
        self._logs = logs_client

    def describe_streams(
        self,
        log_group: str,
        name_prefix: str,
        *,
        most_recent_first: bool = True,
        limit: int = 1,
    ) -> list[LogStream]:
        # CloudWatch rejects orderBy=LastEventTime combined with a name prefix,
        # so the prefix query is ordered by name.
        response = self._logs.describe_log_streams(
            logGroupName=log_group,
            logStreamNamePrefix=name_prefix,
            orderBy="LogStreamName",
            descending=most_recent_first,
            limit=limit,
        )
        return [
            LogStream(
                name=s["logStreamName"],
                last_event_timestamp=s.get("lastEventTimestamp"),
            )
            for s in response.get("logStreams") or []
        ]

    def get_events(
        self,
        log_group: str,
        stream_name: str,
        *,
        next_token: str | None = None,
        start_from_head: bool = False,
        limit: int = 10000,
    ) -> LogEventPage:
        request: dict[str, Any] = {
            "logGroupName": log_group,
            "logStreamName": stream_name,
            "startFromHead": start_from_head,
            "limit": limit,
        }
        if next_token:
            request["nextToken"] = next_token
        response = self._logs.get_log_events(**request)
        return LogEventPage(
            events=[
                LogEvent(message=e.get("message"), timestamp=e.get("timestamp"))
                for e in response.get("events") or []
                if e.get("message") is not None
            ],
            next_forward_token=response.get("nextForwardToken"),
        )


def make_session(aws: AwsSettings) -> boto3.Session:
    """Build a boto3 session; static credentials win over the ambient chain."""
    if aws.has_static_credentials:
        return boto3.Session(
            region_name=aws.region,
            aws_access_key_id=aws.access_key_id,
            aws_secret_access_key=aws.secret_access_key,
            aws_session_token=aws.session_token,
        )
    return boto3.Session(region_name=aws.region)


def build_clients(config: RunnerConfig) -> tuple[Boto3ClusterControl, Boto3LogAggregation]:
    """Create the pre-authenticated control and log clients for a run."""
    session = make_session(config.aws)
    return (
        Boto3ClusterControl(session.client("ecs")),
        Boto3LogAggregation(session.client("logs")),
    )


__all__ = [
    "Boto3ClusterControl",
    "Boto3LogAggregation",
    "ClusterControlAPI",
    "LaunchFailure",
    "LogAggregationAPI",
    "LogEvent",
    "LogEventPage",
    "LogStream",
    "RunTaskResponse",
    "TaskDescription",
    "build_clients",
    "make_session",
]
