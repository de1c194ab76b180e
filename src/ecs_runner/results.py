"""Result models for ecs-runner.

``RunOutcome`` is the only artifact a run hands back to its caller. It is
rendered as a single JSON line the scheduler reads from stdout::

    {"complete": 1, "code": 0, "description": "ECS task stopped OK (STOPPED)",
     "details": {"taskArn": "...", "containers": [{"name": "app", "exitCode": 0, "reason": ""}]}}

Key Concepts:
    ContainerResult: One container's exit code (nullable) and stop reason.
    RunDetails: Task ARN plus per-container results.
    RunOutcome: code + description + optional details; built with the
        ``from_poll`` and ``from_error`` constructors.

Tags:
    results, pydantic, completion-record
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from ecs_runner.core.errors import ResultCode, RunnerError


class ContainerResult(BaseModel):
    """Exit status of a single container once the task is terminal."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    name: str = ""
    exit_code: int | None = Field(default=None, alias="exitCode")
    reason: str = ""

    @property
    def succeeded(self) -> bool:
        return self.exit_code == 0


class RunDetails(BaseModel):
    """Details payload attached to the completion record."""

    model_config = ConfigDict(populate_by_name=True)

    task_arn: str | None = Field(default=None, alias="taskArn")
    containers: list[ContainerResult] = Field(default_factory=list)


class RunOutcome(BaseModel):
    """Final outcome of a run."""

    code: int
    description: str = ""
    details: RunDetails | None = None
    started_at: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())
    completed_at: str | None = None
    duration_seconds: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.code == ResultCode.SUCCESS

    def mark_complete(self, started_at: str | None = None) -> RunOutcome:
        """Stamp completion time and duration, optionally from a known start."""
        if started_at is not None:
            self.started_at = started_at
        self.completed_at = datetime.now(UTC).isoformat()
        start = datetime.fromisoformat(self.started_at)
        end = datetime.fromisoformat(self.completed_at)
        self.duration_seconds = (end - start).total_seconds()
        return self

    def to_record(self) -> dict[str, Any]:
        """Render the scheduler-facing completion record."""
        record: dict[str, Any] = {"complete": 1, "code": int(self.code)}
        if self.description:
            record["description"] = self.description
        if self.details is not None:
            record["details"] = self.details.model_dump(by_alias=True)
        return record

    # ------------------------------------------------------------------
    # Constructors
    # ------------------------------------------------------------------

    @classmethod
    def from_error(
        cls,
        error: RunnerError,
        *,
        task_arn: str | None = None,
        containers: list[ContainerResult] | None = None,
    ) -> RunOutcome:
        details = None
        if task_arn:
            details = RunDetails(task_arn=task_arn, containers=containers or [])
        return cls(code=int(error.code), description=error.message, details=details)

    @classmethod
    def from_poll(
        cls,
        *,
        stop_code: int,
        last_status: str,
        task_arn: str,
        containers: list[ContainerResult],
        timeout_seconds: float | None = None,
    ) -> RunOutcome:
        if stop_code == ResultCode.SUCCESS:
            description = f"ECS task stopped OK ({last_status})"
        elif stop_code == ResultCode.TIMEOUT:
            description = (
                f"Timed out after {timeout_seconds or 0:g}s waiting for ECS task to stop "
                f"(last status: {last_status})"
            )
        elif not containers:
            description = f"ECS task reached {last_status} without reporting any containers"
        else:
            description = "ECS task stopped with non-zero exit"
        return cls(
            code=stop_code,
            description=description,
            details=RunDetails(task_arn=task_arn, containers=containers),
        )


__all__ = ["ContainerResult", "ResultCode", "RunDetails", "RunOutcome"]
