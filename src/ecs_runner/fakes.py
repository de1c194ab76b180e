"""In-memory collaborators for tests and dry runs.

Architecture::

    ClusterControlAPI
    └── FakeClusterControl    scripted status progression, recorded calls,
                              injectable failures per operation

    LogAggregationAPI
    └── FakeLogAggregation    per-stream event lists with forward tokens
                              that mimic CloudWatch paging

Example::

    control = FakeClusterControl(statuses=["RUNNING", "RUNNING", "STOPPED"],
                                 exit_codes={"app": 0})
    logs = FakeLogAggregation()
    logs.add_events("/ecs/jobs", "ecs/app/task-1", ["hello", "world"])

Token model:
    A forward token is ``f/<index>``: the position after the last event
    returned. Fetching with a token returns events from that index on; once
    the stream is drained the same token comes back, like CloudWatch does.
"""

from __future__ import annotations

import threading
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from ecs_runner.clients import (
    LaunchFailure,
    LogEvent,
    LogEventPage,
    LogStream,
    RunTaskResponse,
    TaskDescription,
)
from ecs_runner.results import ContainerResult


@dataclass
class FakeClusterControl:
    """Scripted ``ClusterControlAPI``.

    ``statuses`` is consumed one entry per ``describe_task`` call; the last
    entry repeats. ``None`` in the list simulates a vanished task.
    """

    statuses: list[str | None] = field(default_factory=lambda: ["STOPPED"])
    exit_codes: dict[str, int | None] = field(default_factory=lambda: {"app": 0})
    launch_failures: list[LaunchFailure] = field(default_factory=list)
    return_no_task: bool = False
    register_error: Exception | None = None
    deregister_error: Exception | None = None
    run_error: Exception | None = None
    describe_error: Exception | None = None
    describe_error_after: int = 0
    task_arn: str = "arn:aws:ecs:us-east-1:123456789012:task/c1/0123456789abcdef"

    calls: list[tuple[str, Any]] = field(default_factory=list)
    registered: set[str] = field(default_factory=set)
    deregistered: list[str] = field(default_factory=list)
    _describe_count: int = 0
    _revision: int = 0

    def _record(self, name: str, payload: Any) -> None:
        self.calls.append((name, payload))

    def calls_to(self, name: str) -> list[Any]:
        return [payload for call, payload in self.calls if call == name]

    def register_task_definition(self, definition: dict[str, Any]) -> str:
        self._record("register_task_definition", definition)
        if self.register_error is not None:
            raise self.register_error
        self._revision += 1
        arn = f"arn:aws:ecs:us-east-1:123456789012:task-definition/{definition['family']}:{self._revision}"
        self.registered.add(arn)
        return arn

    def deregister_task_definition(self, task_definition_arn: str) -> None:
        self._record("deregister_task_definition", task_definition_arn)
        if self.deregister_error is not None:
            raise self.deregister_error
        if task_definition_arn not in self.registered:
            raise RuntimeError(f"TaskDefinition is inactive: {task_definition_arn}")
        self.registered.discard(task_definition_arn)
        self.deregistered.append(task_definition_arn)

    def run_task(self, request: dict[str, Any]) -> RunTaskResponse:
        self._record("run_task", request)
        if self.run_error is not None:
            raise self.run_error
        if self.launch_failures:
            return RunTaskResponse(failures=list(self.launch_failures))
        if self.return_no_task:
            return RunTaskResponse()
        return RunTaskResponse(task_arns=[self.task_arn])

    def describe_task(self, cluster: str, task_arn: str) -> TaskDescription | None:
        self._record("describe_task", (cluster, task_arn))
        self._describe_count += 1
        if self.describe_error is not None and self._describe_count > self.describe_error_after:
            raise self.describe_error
        index = min(self._describe_count - 1, len(self.statuses) - 1)
        status = self.statuses[index]
        if status is None:
            return None
        containers: list[ContainerResult] = []
        if status == "STOPPED":
            containers = [
                ContainerResult(name=name, exit_code=code, reason="" if code == 0 else "Essential container exited")
                for name, code in self.exit_codes.items()
            ]
        return TaskDescription(task_arn=task_arn, last_status=status, containers=containers)


class FakeLogAggregation:
    """Thread-safe in-memory ``LogAggregationAPI``."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._streams: dict[tuple[str, str], list[LogEvent]] = {}
        self.calls: list[tuple[str, Any]] = []
        self.describe_errors: list[Exception] = []
        self.fetch_errors: list[Exception] = []

    def add_events(
        self,
        log_group: str,
        stream_name: str,
        messages: Iterable[str],
        *,
        start_timestamp: int = 1_700_000_000_000,
    ) -> None:
        """Append messages to a stream, creating it if needed."""
        with self._lock:
            events = self._streams.setdefault((log_group, stream_name), [])
            base = events[-1].timestamp + 1 if events and events[-1].timestamp else start_timestamp
            for offset, message in enumerate(messages):
                events.append(LogEvent(message=message, timestamp=base + offset))

    def create_stream(self, log_group: str, stream_name: str) -> None:
        with self._lock:
            self._streams.setdefault((log_group, stream_name), [])

    def calls_to(self, name: str) -> list[Any]:
        with self._lock:
            return [payload for call, payload in self.calls if call == name]

    def describe_streams(
        self,
        log_group: str,
        name_prefix: str,
        *,
        most_recent_first: bool = True,
        limit: int = 1,
    ) -> list[LogStream]:
        with self._lock:
            self.calls.append(("describe_streams", (log_group, name_prefix)))
            if self.describe_errors:
                raise self.describe_errors.pop(0)
            matches = [
                (name, events)
                for (group, name), events in self._streams.items()
                if group == log_group and name.startswith(name_prefix)
            ]
        matches.sort(
            key=lambda item: item[1][-1].timestamp if item[1] and item[1][-1].timestamp else 0,
            reverse=most_recent_first,
        )
        return [
            LogStream(name=name, last_event_timestamp=events[-1].timestamp if events else None)
            for name, events in matches[:limit]
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
        with self._lock:
            self.calls.append(("get_events", (log_group, stream_name, next_token, start_from_head, limit)))
            if self.fetch_errors:
                raise self.fetch_errors.pop(0)
            key = (log_group, stream_name)
            if key not in self._streams:
                raise LookupError(f"The specified log stream does not exist: {stream_name}")
            events = list(self._streams[key])

        if next_token:
            start = int(next_token.split("/", 1)[1])
        elif start_from_head:
            start = 0
        else:
            start = max(len(events) - limit, 0)
        page = events[start:start + limit]
        return LogEventPage(events=page, next_forward_token=f"f/{start + len(page)}")
