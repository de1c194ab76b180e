"""Run orchestration for ecs-runner.

``TaskRunner`` takes one ``RunnerConfig`` through the full lifecycle:
preflight → provision (image mode) → launch → {poll ∥ live tail} → join →
post-run log fetch → deregister → emit.

Why This Matters:
    The scheduler only sees what the runner writes on stdout. Whatever
    happens -- a missing parameter, a capacity failure at launch, a status
    API that starts throwing halfway through -- the run must still end with
    exactly one completion record carrying a meaningful code.

Key Concepts:
    TaskRunner: Config + clients → ``RunOutcome``. Fatal ``RunnerError``s
        short-circuit into an outcome; cleanup runs in ``finally``.
    run_job(): Scheduler entry point. Parses the job descriptor, builds
        clients and runs; a descriptor that cannot be parsed still yields a
        record (code 1).
    read_job(): First ``{``-prefixed line of the input stream as JSON.

Architecture Decisions:
    - Single control thread: provisioning, launch, post-run fetch and
      cleanup are sequential blocking calls.
    - The tailer is the only concurrent activity. It shares nothing with the
      poller except a ``threading.Event`` that this class sets exactly once
      after polling returns, then joins the tailer before any post-run fetch.
    - Teardown in finally: a one-off task definition is deregistered even if
      launch or polling fails, unless ``keep_task_definition`` is set.

Related Modules:
    - :mod:`ecs_runner.config` -- RunnerConfig
    - :mod:`ecs_runner.provisioner`, :mod:`ecs_runner.launcher`,
      :mod:`ecs_runner.poller`, :mod:`ecs_runner.tailer`,
      :mod:`ecs_runner.post_run`, :mod:`ecs_runner.emitter`

Tags:
    workflow, orchestration, runner, ecs, lifecycle
"""

from __future__ import annotations

import json
import threading
import time
from collections.abc import Callable, Mapping
from datetime import UTC, datetime
from typing import Any, TextIO

from ecs_runner.clients import ClusterControlAPI, LogAggregationAPI, build_clients
from ecs_runner.config import LaunchMode, RunnerConfig
from ecs_runner.core.errors import InvalidParamsError, RunnerError
from ecs_runner.core.logging import LogContext, bind_context, ensure_logging, get_logger, unbind_context
from ecs_runner.emitter import ResultEmitter
from ecs_runner.launcher import TaskHandle, TaskLauncher
from ecs_runner.log_filter import LineSink, LogFilter
from ecs_runner.poller import PollResult, StatusPoller
from ecs_runner.post_run import PostRunLogFetcher
from ecs_runner.provisioner import TaskDefinitionHandle, TaskDefinitionProvisioner
from ecs_runner.results import RunOutcome
from ecs_runner.tailer import ERROR_BACKOFF_FLOOR_SECONDS, LiveLogTailer

logger = get_logger(__name__)


class TaskRunner:
    """Runs one ECS task to completion and reports its outcome.

    Parameters
    ----------
    config
        Run configuration.
    control, logs
        Pre-authenticated collaborator clients.
    emitter
        Completion record writer; stdout when omitted.
    sink
        Destination for task log lines and status notes; defaults to the
        emitter's primary channel.

    Example::

        control, logs = build_clients(config)
        outcome = TaskRunner(config, control=control, logs=logs).run()
    """

    def __init__(
        self,
        config: RunnerConfig,
        *,
        control: ClusterControlAPI,
        logs: LogAggregationAPI,
        emitter: ResultEmitter | None = None,
        sink: LineSink | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
        error_backoff_floor: float = ERROR_BACKOFF_FLOOR_SECONDS,
    ) -> None:
        self.config = config
        self.emitter = emitter or ResultEmitter()
        self.sink: LineSink = sink or self.emitter.write_line

        request = config.request
        log_filter = LogFilter(
            config.logs.include_regex,
            config.logs.exclude_regex,
            annotate=config.logs.annotate,
        )
        self.provisioner = TaskDefinitionProvisioner(control)
        self.launcher = TaskLauncher(control, sink=self.sink)
        self.poller = StatusPoller(control, clock=clock, sleep=sleep)
        self.tailer = LiveLogTailer(
            logs,
            config.logs,
            container_name=request.container_name,
            log_filter=log_filter,
            sink=self.sink,
            error_backoff_floor=error_backoff_floor,
        )
        self.post_run = PostRunLogFetcher(
            logs,
            config.logs,
            container_name=request.container_name,
            log_filter=log_filter,
            sink=self.sink,
        )
        self.handle: TaskHandle | None = None
        self.task_definition: TaskDefinitionHandle | None = None

    def run(self) -> RunOutcome:
        """Execute the run and emit its single completion record."""
        started_at = datetime.now(UTC).isoformat()
        with LogContext(run_id=self.config.run_id, cluster=self.config.request.cluster):
            try:
                outcome = self._execute()
            finally:
                unbind_context("task_arn")
            outcome.mark_complete(started_at=started_at)
            self.emitter.emit(outcome)
        return outcome

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    def _execute(self) -> RunOutcome:
        request = self.config.request
        try:
            # Phase 1: Validate before any remote call
            request.preflight()

            # Phase 2: Provision a one-off definition (image mode)
            if request.mode == LaunchMode.BY_IMAGE:
                self.task_definition = self.provisioner.register(
                    request,
                    logs=self.config.logs,
                    region=self.config.aws.region,
                )

            # Phase 3: Launch
            self.handle = self.launcher.launch(
                request,
                task_definition=self.task_definition.arn if self.task_definition else None,
            )
            bind_context(task_arn=self.handle.arn)

            # Phase 4: Poll (+ live tail) until terminal or timeout
            poll = self._observe(self.handle)

            # Phase 5: Post-run log window
            if self.config.logs.tail_after_run and self.config.logs.enabled:
                self.post_run.fetch_final(self.handle, limit=self.config.logs.fetch_limit)

            return RunOutcome.from_poll(
                stop_code=poll.stop_code,
                last_status=poll.status,
                task_arn=self.handle.arn,
                containers=poll.containers,
                timeout_seconds=self.config.wait.timeout_seconds,
            )
        except RunnerError as exc:
            logger.error("run_failed", **exc.to_dict())
            return RunOutcome.from_error(exc, task_arn=self.handle.arn if self.handle else None)
        except Exception as exc:
            logger.exception("run_crashed")
            err = RunnerError(f"Unexpected error: {exc}", cause=exc)
            return RunOutcome.from_error(err, task_arn=self.handle.arn if self.handle else None)
        finally:
            # Phase 6: Cleanup
            self._teardown()

    def _observe(self, handle: TaskHandle) -> PollResult:
        cancel = threading.Event()
        tail_thread: threading.Thread | None = None
        if self.config.logs.stream_live and self.config.logs.enabled:
            tail_thread = self.tailer.start(handle, cancel)
        try:
            return self.poller.await_terminal(
                handle,
                timeout=self.config.wait.timeout_seconds,
                interval=self.config.wait.poll_interval_seconds,
            )
        finally:
            cancel.set()
            if tail_thread is not None:
                tail_thread.join()

    def _teardown(self) -> None:
        if self.task_definition is None:
            return
        if self.config.keep_task_definition:
            logger.info("task_definition_kept", arn=self.task_definition.arn)
            return
        if self.provisioner.deregister(self.task_definition):
            self.sink(f"Deregistered task definition: {self.task_definition.arn}")


# ---------------------------------------------------------------------------
# Scheduler entry point
# ---------------------------------------------------------------------------


def read_job(stream: TextIO) -> dict[str, Any]:
    """Read the job descriptor: the first line that starts with ``{``."""
    for line in stream.read().splitlines():
        if line.strip().startswith("{"):
            try:
                job = json.loads(line)
            except json.JSONDecodeError as exc:
                raise InvalidParamsError(f"Failed to parse job JSON: {exc}", cause=exc) from exc
            if not isinstance(job, dict):
                raise InvalidParamsError("Failed to parse job JSON: not an object")
            return job
    raise InvalidParamsError("Failed to parse job JSON: No job JSON found on stdin")


def emit_failure(emitter: ResultEmitter, error: RunnerError) -> RunOutcome:
    """Emit a record for a run that failed before a TaskRunner existed."""
    outcome = RunOutcome.from_error(error).mark_complete()
    emitter.emit(outcome)
    return outcome


def run_job(
    job: Mapping[str, Any],
    *,
    control: ClusterControlAPI | None = None,
    logs: LogAggregationAPI | None = None,
    emitter: ResultEmitter | None = None,
    env: Mapping[str, str] | None = None,
    **runner_kwargs: Any,
) -> RunOutcome:
    """Run a scheduler job descriptor end to end. Always emits one record."""
    ensure_logging()
    emitter = emitter or ResultEmitter()
    try:
        config = RunnerConfig.from_job(job, env=env)
        if control is None or logs is None:
            default_control, default_logs = build_clients(config)
            control = control or default_control
            logs = logs or default_logs
    except RunnerError as exc:
        logger.error("job_params_invalid", **exc.to_dict())
        return emit_failure(emitter, exc)
    except Exception as exc:
        logger.exception("client_setup_failed")
        return emit_failure(emitter, RunnerError(f"Failed to create AWS clients: {exc}", cause=exc))

    runner = TaskRunner(config, control=control, logs=logs, emitter=emitter, **runner_kwargs)
    return runner.run()
