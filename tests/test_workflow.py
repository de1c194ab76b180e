"""End-to-end tests for TaskRunner and the scheduler entry points.

Every run goes through the in-memory fakes. Most use an injected clock so
status polling never sleeps; the duration test sleeps for real.
"""

from __future__ import annotations

import io
import json
from datetime import datetime
from unittest.mock import MagicMock, patch

import pytest
import structlog

from ecs_runner.clients import LaunchFailure
from ecs_runner.core.errors import InvalidParamsError, ResultCode
from ecs_runner.fakes import FakeClusterControl, FakeLogAggregation
from ecs_runner.workflow import TaskRunner, read_job, run_job
from tests.conftest import LOG_GROUP, STREAM_NAME, TASK_ARN


def _run(config, control, logs, emitter, clock):
    runner = TaskRunner(
        config,
        control=control,
        logs=logs,
        emitter=emitter,
        clock=clock,
        sleep=clock.sleep,
        error_backoff_floor=0.01,
    )
    return runner.run()


def _output(out: io.StringIO) -> tuple[list[str], dict]:
    lines = out.getvalue().splitlines()
    records = [line for line in lines if line.startswith('{"complete"')]
    assert len(records) == 1, lines
    assert lines[-1] == records[0]
    return lines[:-1], json.loads(records[0])


# ------------------------------------------------------------------ #
# Successful runs
# ------------------------------------------------------------------ #


class TestSuccessfulRuns:
    def test_reference_mode_stops_ok(self, make_config, logs, emitter, out, clock):
        control = FakeClusterControl(statuses=["RUNNING", "RUNNING", "STOPPED"], exit_codes={"app": 0})
        outcome = _run(make_config(), control, logs, emitter, clock)

        assert outcome.code == ResultCode.SUCCESS
        text, record = _output(out)
        assert text == [f"Started ECS task: {TASK_ARN}"]
        assert record["code"] == 0
        assert "STOPPED" in record["description"]
        assert record["details"] == {
            "taskArn": TASK_ARN,
            "containers": [{"name": "app", "exitCode": 0, "reason": ""}],
        }
        assert len(control.calls_to("describe_task")) == 3
        assert control.calls_to("register_task_definition") == []
        assert control.calls_to("deregister_task_definition") == []

    def test_duration_covers_whole_run(self, make_config, logs, emitter):
        control = FakeClusterControl(statuses=["RUNNING", "STOPPED"])
        runner = TaskRunner(make_config(wait_poll_interval_sec=0.2), control=control, logs=logs, emitter=emitter)
        outcome = runner.run()
        assert outcome.duration_seconds >= 0.2
        started = datetime.fromisoformat(outcome.started_at)
        completed = datetime.fromisoformat(outcome.completed_at)
        assert (completed - started).total_seconds() == pytest.approx(outcome.duration_seconds)

    def test_image_mode_without_logs(self, make_config, logs, emitter, out, clock, control):
        config = make_config(mode="image", image="repo/app:1", task_definition=None)
        outcome = _run(config, control, logs, emitter, clock)

        assert outcome.code == 0
        (registered,) = control.calls_to("register_task_definition")
        assert "logConfiguration" not in registered["containerDefinitions"][0]
        (run_request,) = control.calls_to("run_task")
        td_arn = control.deregistered[0]
        assert run_request["taskDefinition"] == td_arn
        assert logs.calls == []
        text, _ = _output(out)
        assert text == [f"Started ECS task: {TASK_ARN}", f"Deregistered task definition: {td_arn}"]

    def test_nonzero_exit(self, make_config, logs, emitter, out, clock):
        control = FakeClusterControl(exit_codes={"app": 0, "worker": 3})
        outcome = _run(make_config(), control, logs, emitter, clock)
        assert outcome.code == 1
        _, record = _output(out)
        assert record["description"] == "ECS task stopped with non-zero exit"
        assert record["details"]["containers"][1] == {"name": "worker", "exitCode": 3, "reason": "Essential container exited"}

    def test_keep_task_definition(self, make_config, logs, emitter, clock, control):
        config = make_config(mode="image", image="repo/app:1", keep_task_definition=1)
        _run(config, control, logs, emitter, clock)
        assert control.calls_to("deregister_task_definition") == []
        assert len(control.registered) == 1


class TestLogs:
    def test_live_tail_then_post_run_fetch(self, make_config, logs, emitter, out, clock, control):
        logs.add_events(LOG_GROUP, STREAM_NAME, ["hello", "world"])
        config = make_config(
            cw_log_group=LOG_GROUP,
            stream_logs_live=1,
            tail_logs=1,
            stream_log_poll_interval_sec=0.01,
        )
        outcome = _run(config, control, logs, emitter, clock)

        assert outcome.code == 0
        text, _ = _output(out)
        # live tail, then the post-run window re-reads from the head
        assert text == [f"Started ECS task: {TASK_ARN}", "hello", "world", "hello", "world"]

    def test_post_run_only(self, make_config, logs, emitter, out, clock, control):
        logs.add_events(LOG_GROUP, STREAM_NAME, ["a", "b", "c"])
        config = make_config(cw_log_group=LOG_GROUP, tail_logs=1, log_fetch_limit=2)
        _run(config, control, logs, emitter, clock)
        text, _ = _output(out)
        assert text == [f"Started ECS task: {TASK_ARN}", "a", "b"]

    def test_missing_stream_note(self, make_config, logs, emitter, out, clock, control):
        config = make_config(cw_log_group=LOG_GROUP, tail_logs=1)
        _run(config, control, logs, emitter, clock)
        text, _ = _output(out)
        assert text[-1] == f"(No log stream found: {STREAM_NAME})"

    def test_log_failures_do_not_change_outcome(self, make_config, logs, emitter, out, clock, control):
        logs.add_events(LOG_GROUP, STREAM_NAME, ["a"])
        logs.fetch_errors.extend([RuntimeError("throttled")] * 5)
        logs.describe_errors.extend([RuntimeError("throttled")] * 5)
        config = make_config(
            cw_log_group=LOG_GROUP,
            stream_logs_live=1,
            tail_logs=1,
            stream_log_poll_interval_sec=0.01,
        )
        outcome = _run(config, control, logs, emitter, clock)
        assert outcome.code == 0
        _output(out)

    def test_no_log_group_means_no_log_calls(self, make_config, logs, emitter, clock, control):
        config = make_config(stream_logs_live=1, tail_logs=1)
        _run(config, control, logs, emitter, clock)
        assert logs.calls == []


# ------------------------------------------------------------------ #
# Failures
# ------------------------------------------------------------------ #


class TestFailures:
    def test_timeout(self, make_config, logs, emitter, out, clock):
        control = FakeClusterControl(statuses=["RUNNING"])
        outcome = _run(make_config(wait_timeout_sec=5, wait_poll_interval_sec=1), control, logs, emitter, clock)
        assert outcome.code == ResultCode.TIMEOUT
        _, record = _output(out)
        assert record["code"] == 124
        assert record["details"] == {"taskArn": TASK_ARN, "containers": []}

    def test_missing_task_definition(self, make_config, logs, emitter, out, clock, control):
        outcome = _run(make_config(task_definition=None), control, logs, emitter, clock)
        assert outcome.code == 3
        assert control.calls == []
        text, record = _output(out)
        assert text == []
        assert "details" not in record

    def test_missing_cluster(self, make_config, logs, emitter, clock, control):
        assert _run(make_config(ecs_cluster=None), control, logs, emitter, clock).code == 2

    def test_missing_image(self, make_config, logs, emitter, clock, control):
        outcome = _run(make_config(mode="image"), control, logs, emitter, clock)
        assert outcome.code == 4
        assert control.calls == []

    def test_fargate_without_subnets(self, make_config, logs, emitter, clock, control):
        outcome = _run(make_config(subnets=None), control, logs, emitter, clock)
        assert outcome.code == 6
        assert control.calls_to("run_task") == []

    def test_registration_failed(self, make_config, logs, emitter, clock):
        control = FakeClusterControl(register_error=RuntimeError("AccessDenied"))
        outcome = _run(make_config(mode="image", image="repo/app:1"), control, logs, emitter, clock)
        assert outcome.code == 5
        assert control.calls_to("run_task") == []
        assert control.calls_to("deregister_task_definition") == []

    def test_launch_failures_still_deregister(self, make_config, logs, emitter, out, clock):
        control = FakeClusterControl(launch_failures=[LaunchFailure(reason="RESOURCE:CPU", arn="arn:ci")])
        outcome = _run(make_config(mode="image", image="repo/app:1"), control, logs, emitter, clock)
        assert outcome.code == 7
        assert len(control.deregistered) == 1
        _, record = _output(out)
        assert record["description"] == "RunTask failures: RESOURCE:CPU:arn:ci"

    def test_no_task_handle(self, make_config, logs, emitter, clock):
        control = FakeClusterControl(return_no_task=True)
        assert _run(make_config(), control, logs, emitter, clock).code == 8

    def test_launch_error(self, make_config, logs, emitter, clock):
        control = FakeClusterControl(run_error=RuntimeError("InvalidParameterException"))
        assert _run(make_config(), control, logs, emitter, clock).code == 9

    def test_polling_error_keeps_task_arn(self, make_config, logs, emitter, out, clock):
        control = FakeClusterControl(statuses=["RUNNING"], describe_error=RuntimeError("boom"), describe_error_after=1)
        outcome = _run(make_config(mode="image", image="repo/app:1"), control, logs, emitter, clock)
        assert outcome.code == 10
        assert len(control.deregistered) == 1
        _, record = _output(out)
        assert record["details"]["taskArn"] == TASK_ARN

    def test_deregister_failure_does_not_change_outcome(self, make_config, logs, emitter, out, clock):
        control = FakeClusterControl(deregister_error=RuntimeError("already inactive"))
        outcome = _run(make_config(mode="image", image="repo/app:1"), control, logs, emitter, clock)
        assert outcome.code == 0
        text, _ = _output(out)
        assert not any(line.startswith("Deregistered") for line in text)

    def test_unexpected_error(self, make_config, logs, emitter, out, clock, control):
        runner = TaskRunner(make_config(), control=control, logs=logs, emitter=emitter, clock=clock, sleep=clock.sleep)
        runner.poller = MagicMock()
        runner.poller.await_terminal.side_effect = ValueError("kaboom")
        outcome = runner.run()
        assert outcome.code == 1
        assert outcome.description == "Unexpected error: kaboom"
        _output(out)


# ------------------------------------------------------------------ #
# Entry points
# ------------------------------------------------------------------ #


class TestReadJob:
    def test_first_json_line(self):
        stream = io.StringIO('banner\n{"id": "j1", "params": {}}\n{"id": "j2"}\n')
        assert read_job(stream)["id"] == "j1"

    def test_invalid_json(self):
        with pytest.raises(InvalidParamsError, match="Failed to parse job JSON"):
            read_job(io.StringIO("{not json\n"))

    def test_no_json(self):
        with pytest.raises(InvalidParamsError, match="No job JSON found"):
            read_job(io.StringIO("hello\n"))


class TestRunJob:
    def test_runs_with_given_clients(self, logs, emitter, out, clock):
        control = FakeClusterControl(task_arn=TASK_ARN)
        job = {"id": "j1", "params": {"ecs_cluster": "c1", "task_definition": "td:3", "subnets": "s1"}}
        outcome = run_job(job, control=control, logs=logs, emitter=emitter, env={}, clock=clock, sleep=clock.sleep)
        assert outcome.code == 0
        _output(out)

    def test_invalid_params_emit_record(self, logs, emitter, out, control):
        job = {"params": {"ecs_cluster": "c1", "wait_timeout_sec": "never"}}
        outcome = run_job(job, control=control, logs=logs, emitter=emitter, env={})
        assert outcome.code == 1
        assert control.calls == []
        _, record = _output(out)
        assert record["description"].startswith("Invalid job parameters")

    def test_client_setup_failure_emits_record(self, emitter, out):
        job = {"params": {"ecs_cluster": "c1", "task_definition": "td:3", "subnets": "s1"}}
        with patch("ecs_runner.workflow.build_clients", side_effect=RuntimeError("no credentials")):
            outcome = run_job(job, emitter=emitter, env={})
        assert outcome.code == 1
        assert outcome.description == "Failed to create AWS clients: no credentials"
        _output(out)

    def test_diagnostics_stay_off_stdout_without_app_logging(self, capsys):
        structlog.reset_defaults()
        job = {"params": {"ecs_cluster": "c1", "task_definition": "td:3", "subnets": "s1"}}
        outcome = run_job(job, control=FakeClusterControl(), logs=FakeLogAggregation(), env={})

        assert outcome.code == 0
        captured = capsys.readouterr()
        started, record = captured.out.splitlines()
        assert started == f"Started ECS task: {TASK_ARN}"
        assert json.loads(record)["complete"] == 1
        assert "task_status" in captured.err
        assert "run_complete" in captured.err
