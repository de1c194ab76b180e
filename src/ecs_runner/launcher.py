"""Task submission.

Builds the RunTask request from a ``TaskRequest`` and turns the response into
exactly one ``TaskHandle``.

Request shaping:
    - ``overrides.containerOverrides`` only when a command or environment
      override is present, so task-definition defaults are not clobbered.
    - ``networkConfiguration.awsvpcConfiguration`` only for FARGATE-compatible
      requests; a missing subnet list fails before the call (code 6).
    - ``platformVersion`` / ``propagateTags`` only when set.

Response handling:
    - non-empty ``failures``  -> ``LaunchFailuresError`` (code 7)
    - no task ARN             -> ``NoTaskHandleError`` (code 8)
    - API exception           -> ``LaunchError`` (code 9)

Tags:
    ecs, run-task, launch
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from ecs_runner.clients import ClusterControlAPI
from ecs_runner.config import TaskRequest
from ecs_runner.core.errors import (
    LaunchError,
    LaunchFailuresError,
    MissingSubnetsError,
    NoTaskHandleError,
)
from ecs_runner.core.logging import get_logger
from ecs_runner.log_filter import LineSink
from ecs_runner.provisioner import name_value_list

logger = get_logger(__name__)


@dataclass(frozen=True)
class TaskHandle:
    """Reference to a launched task. Immutable once obtained."""

    arn: str
    cluster: str

    @property
    def task_id(self) -> str:
        """Last ARN segment (``arn:aws:ecs:region:acct:task/cluster/<id>``)."""
        return self.arn.rsplit("/", 1)[-1]


class TaskLauncher:
    def __init__(self, control: ClusterControlAPI, *, sink: LineSink | None = None) -> None:
        self.control = control
        self.sink = sink

    def build_run_request(self, request: TaskRequest, task_definition: str | None = None) -> dict[str, Any]:
        run: dict[str, Any] = {
            "cluster": request.cluster,
            "taskDefinition": task_definition or request.task_definition,
            "launchType": request.launch_type.value,
            "count": 1,
        }
        if request.platform_version:
            run["platformVersion"] = request.platform_version
        if request.propagate_tags:
            run["propagateTags"] = request.propagate_tags

        environment = name_value_list(request.environment)
        if request.command or environment:
            override: dict[str, Any] = {"name": request.container_name}
            if request.command:
                override["command"] = list(request.command)
            if environment:
                override["environment"] = environment
            run["overrides"] = {"containerOverrides": [override]}

        if request.needs_network:
            network = request.network
            if not network.subnets:
                raise MissingSubnetsError(request.compatibility.value)
            vpc: dict[str, Any] = {
                "subnets": list(network.subnets),
                "assignPublicIp": network.assign_public_ip,
            }
            if network.security_groups:
                vpc["securityGroups"] = list(network.security_groups)
            run["networkConfiguration"] = {"awsvpcConfiguration": vpc}
        return run

    def launch(self, request: TaskRequest, *, task_definition: str | None = None) -> TaskHandle:
        """Submit the run request and return the single task handle."""
        run = self.build_run_request(request, task_definition)
        try:
            response = self.control.run_task(run)
        except Exception as exc:
            raise LaunchError(f"RunTask error: {exc}", cause=exc) from exc

        if response.failures:
            raise LaunchFailuresError(response.failures)
        if not response.task_arns:
            raise NoTaskHandleError()
        if len(response.task_arns) > 1:
            logger.warning("multiple_tasks_launched", count=len(response.task_arns))

        handle = TaskHandle(arn=response.task_arns[0], cluster=request.cluster)
        logger.info("task_launched", task_arn=handle.arn, task_definition=run["taskDefinition"])
        if self.sink is not None:
            self.sink(f"Started ECS task: {handle.arn}")
        return handle
