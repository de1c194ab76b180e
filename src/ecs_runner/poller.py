"""Task status polling.

``StatusPoller.await_terminal()`` describes the task every ``interval``
seconds until it reaches ``STOPPED`` or the wall-clock ``timeout`` elapses.

Stop code:
    - 0    every reported container exited with exactly 0
    - 1    any container exited non-zero, has no exit code, or the task
           stopped without reporting containers at all
    - 124  timeout; polling ends immediately, container state is ignored

Any API error while polling is fatal and not retried (``PollingError``,
code 10); a task the platform no longer knows raises
``TaskDisappearedError``.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass, field

from ecs_runner.clients import ClusterControlAPI
from ecs_runner.core.errors import PollingError, ResultCode, TaskDisappearedError
from ecs_runner.core.logging import get_logger
from ecs_runner.launcher import TaskHandle
from ecs_runner.results import ContainerResult

logger = get_logger(__name__)

TERMINAL_STATUS = "STOPPED"


@dataclass
class PollResult:
    status: str
    containers: list[ContainerResult] = field(default_factory=list)
    stop_code: int = ResultCode.FAILURE
    polls: int = 0

    @property
    def timed_out(self) -> bool:
        return self.stop_code == ResultCode.TIMEOUT


def compute_stop_code(containers: list[ContainerResult]) -> int:
    """0 iff at least one container reported and all exited with exactly 0."""
    if not containers:
        return ResultCode.FAILURE
    if all(c.exit_code == 0 for c in containers):
        return ResultCode.SUCCESS
    return ResultCode.FAILURE


class StatusPoller:
    def __init__(
        self,
        control: ClusterControlAPI,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.control = control
        self._clock = clock
        self._sleep = sleep

    def await_terminal(self, handle: TaskHandle, *, timeout: float, interval: float) -> PollResult:
        start = self._clock()
        last_status = "UNKNOWN"
        polls = 0

        while True:
            try:
                task = self.control.describe_task(handle.cluster, handle.arn)
            except Exception as exc:
                raise PollingError(
                    f"Error while waiting for task to stop: {exc}", cause=exc
                ) from exc
            polls += 1
            if task is None:
                raise TaskDisappearedError(handle.arn)

            if task.last_status != last_status:
                logger.info("task_status", status=task.last_status, previous=last_status)
            last_status = task.last_status

            if last_status == TERMINAL_STATUS:
                containers = list(task.containers)
                stop_code = compute_stop_code(containers)
                if not containers:
                    logger.warning("task_stopped_without_containers", task_arn=handle.arn)
                logger.info(
                    "task_stopped",
                    stop_code=stop_code,
                    stopped_reason=task.stopped_reason,
                    containers=[c.model_dump(by_alias=True) for c in containers],
                )
                return PollResult(last_status, containers, stop_code, polls)

            elapsed = self._clock() - start
            if elapsed > timeout:
                logger.warning("task_wait_timeout", elapsed=round(elapsed, 3), timeout=timeout)
                return PollResult(last_status, [], ResultCode.TIMEOUT, polls)

            self._sleep(interval)
