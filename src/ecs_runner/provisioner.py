"""One-off task definition lifecycle for image-mode runs.

In ``by_image`` mode the runner registers a throwaway task definition from
the job's image, command, environment and secrets, runs it once, and
deregisters it when the run ends. The container definition always carries an
``awslogs`` configuration when a log group is configured, so the tailer can
find the task's stream by its deterministic name
``{stream_prefix}/{container_name}/{task_id}``.

Key Concepts:
    TaskDefinitionHandle: Opaque ARN of the registered definition.
    TaskDefinitionProvisioner: ``register()`` (fatal on failure, code 5) and
        ``deregister()`` (best-effort, never raises).

Best Practices:
    - Set ``keep_task_definition`` to leave the definition registered for
      post-mortem debugging; the orchestrator then skips ``deregister()``.

Related Modules:
    - :mod:`ecs_runner.launcher` -- runs the registered definition
    - :mod:`ecs_runner.workflow` -- calls ``deregister()`` in its ``finally``

Tags:
    ecs, task-definition, provisioning, cleanup
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from ecs_runner.clients import ClusterControlAPI
from ecs_runner.config import LaunchType, LogSettings, TaskRequest
from ecs_runner.core.errors import CleanupError, ProvisioningError
from ecs_runner.core.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class TaskDefinitionHandle:
    arn: str

    def __str__(self) -> str:
        return self.arn


def name_value_list(pairs: list[tuple[str, str]], value_key: str = "value") -> list[dict[str, str]] | None:
    """ECS ``[{name, value}]`` list, or None when empty so the field is omitted."""
    if not pairs:
        return None
    return [{"name": name, value_key: value} for name, value in pairs]


class TaskDefinitionProvisioner:
    """Registers and deregisters one-off task definitions.

    Parameters
    ----------
    control
        Pre-authenticated cluster control client.
    """

    def __init__(self, control: ClusterControlAPI) -> None:
        self.control = control

    def build_definition(
        self,
        request: TaskRequest,
        *,
        logs: LogSettings | None = None,
        region: str | None = None,
    ) -> dict[str, Any]:
        """Build the RegisterTaskDefinition request for ``request``."""
        container: dict[str, Any] = {
            "name": request.container_name,
            "image": request.image,
            "essential": True,
        }
        if request.command:
            container["command"] = list(request.command)
        environment = name_value_list(request.environment)
        if environment:
            container["environment"] = environment
        secrets = name_value_list(request.secrets, value_key="valueFrom")
        if secrets:
            container["secrets"] = secrets
        if logs is not None and logs.enabled:
            options = {
                "awslogs-group": logs.log_group,
                "awslogs-stream-prefix": logs.stream_prefix,
            }
            if region:
                options["awslogs-region"] = region
            container["logConfiguration"] = {"logDriver": "awslogs", "options": options}

        compatibility = request.compatibility
        definition: dict[str, Any] = {
            "family": request.family,
            "requiresCompatibilities": [compatibility.value],
            "containerDefinitions": [container],
        }
        if compatibility == LaunchType.FARGATE:
            definition["networkMode"] = "awsvpc"
        for key, value in (
            ("cpu", request.cpu),
            ("memory", request.memory),
            ("taskRoleArn", request.task_role_arn),
            ("executionRoleArn", request.execution_role_arn),
        ):
            if value:
                definition[key] = value
        return definition

    def register(
        self,
        request: TaskRequest,
        *,
        logs: LogSettings | None = None,
        region: str | None = None,
    ) -> TaskDefinitionHandle:
        """Register a one-off definition. Raises ``ProvisioningError``."""
        definition = self.build_definition(request, logs=logs, region=region)
        try:
            arn = self.control.register_task_definition(definition)
        except Exception as exc:
            raise ProvisioningError(
                f"Failed to register task definition: {exc}", cause=exc
            ) from exc
        if not arn:
            raise ProvisioningError("Failed to register task definition: no ARN returned")
        logger.info("task_definition_registered", arn=arn, family=request.family)
        return TaskDefinitionHandle(arn)

    def deregister(self, handle: TaskDefinitionHandle) -> bool:
        """Best-effort deregistration. Returns False (and logs) on failure."""
        try:
            self.control.deregister_task_definition(handle.arn)
        except Exception as exc:
            err = CleanupError(f"Deregister TD failed: {exc}", cause=exc)
            logger.warning("task_definition_deregister_failed", **err.to_dict())
            return False
        logger.info("task_definition_deregistered", arn=handle.arn)
        return True
