"""Tests for the boto3 adapters, against MagicMock clients."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

from ecs_runner.clients import (
    Boto3ClusterControl,
    Boto3LogAggregation,
    ClusterControlAPI,
    LaunchFailure,
    LogAggregationAPI,
    build_clients,
    make_session,
)
from ecs_runner.config import AwsSettings, RunnerConfig
from ecs_runner.fakes import FakeClusterControl, FakeLogAggregation


class TestProtocols:
    def test_fakes_satisfy_protocols(self):
        assert isinstance(FakeClusterControl(), ClusterControlAPI)
        assert isinstance(FakeLogAggregation(), LogAggregationAPI)

    def test_adapters_satisfy_protocols(self):
        assert isinstance(Boto3ClusterControl(MagicMock()), ClusterControlAPI)
        assert isinstance(Boto3LogAggregation(MagicMock()), LogAggregationAPI)


class TestBoto3ClusterControl:
    def test_register_returns_arn(self):
        ecs = MagicMock()
        ecs.register_task_definition.return_value = {"taskDefinition": {"taskDefinitionArn": "arn:td:1"}}
        arn = Boto3ClusterControl(ecs).register_task_definition({"family": "f", "cpu": None})
        assert arn == "arn:td:1"
        ecs.register_task_definition.assert_called_once_with(family="f")

    def test_deregister(self):
        ecs = MagicMock()
        Boto3ClusterControl(ecs).deregister_task_definition("arn:td:1")
        ecs.deregister_task_definition.assert_called_once_with(taskDefinition="arn:td:1")

    def test_run_task_tasks_and_failures(self):
        ecs = MagicMock()
        ecs.run_task.return_value = {
            "tasks": [{"taskArn": "arn:task/1"}],
            "failures": [{"reason": "RESOURCE:CPU", "arn": "arn:ci"}],
        }
        response = Boto3ClusterControl(ecs).run_task({"cluster": "c1", "count": 1})
        assert response.task_arns == ["arn:task/1"]
        assert response.failures == [LaunchFailure(reason="RESOURCE:CPU", arn="arn:ci")]
        ecs.run_task.assert_called_once_with(cluster="c1", count=1)

    def test_describe_task(self):
        ecs = MagicMock()
        ecs.describe_tasks.return_value = {
            "tasks": [
                {
                    "taskArn": "arn:task/1",
                    "lastStatus": "STOPPED",
                    "stoppedReason": "Essential container in task exited",
                    "containers": [
                        {"name": "app", "exitCode": 0},
                        {"name": "sidecar", "reason": "OutOfMemoryError"},
                    ],
                }
            ]
        }
        task = Boto3ClusterControl(ecs).describe_task("c1", "arn:task/1")
        ecs.describe_tasks.assert_called_once_with(cluster="c1", tasks=["arn:task/1"])
        assert task.last_status == "STOPPED"
        assert task.containers[0].exit_code == 0
        assert task.containers[1].exit_code is None
        assert task.containers[1].reason == "OutOfMemoryError"

    def test_describe_task_missing(self):
        ecs = MagicMock()
        ecs.describe_tasks.return_value = {"tasks": [], "failures": [{"reason": "MISSING"}]}
        assert Boto3ClusterControl(ecs).describe_task("c1", "arn:task/1") is None


class TestBoto3LogAggregation:
    def test_describe_streams(self):
        client = MagicMock()
        client.describe_log_streams.return_value = {
            "logStreams": [{"logStreamName": "ecs/app/1", "lastEventTimestamp": 5}]
        }
        streams = Boto3LogAggregation(client).describe_streams("/g", "ecs/app/1")
        assert streams[0].name == "ecs/app/1"
        assert streams[0].last_event_timestamp == 5
        kwargs = client.describe_log_streams.call_args.kwargs
        assert kwargs["logGroupName"] == "/g"
        assert kwargs["logStreamNamePrefix"] == "ecs/app/1"
        assert kwargs["limit"] == 1

    def test_get_events_with_token(self):
        client = MagicMock()
        client.get_log_events.return_value = {
            "events": [{"message": "hi", "timestamp": 1}, {"timestamp": 2}],
            "nextForwardToken": "f/next",
        }
        page = Boto3LogAggregation(client).get_events("/g", "s", next_token="f/prev", limit=50)
        client.get_log_events.assert_called_once_with(
            logGroupName="/g",
            logStreamName="s",
            startFromHead=False,
            limit=50,
            nextToken="f/prev",
        )
        assert [e.message for e in page.events] == ["hi"]
        assert page.next_forward_token == "f/next"

    def test_get_events_without_token(self):
        client = MagicMock()
        client.get_log_events.return_value = {"events": []}
        Boto3LogAggregation(client).get_events("/g", "s", start_from_head=True)
        kwargs = client.get_log_events.call_args.kwargs
        assert "nextToken" not in kwargs
        assert kwargs["startFromHead"] is True


class TestSession:
    @patch("ecs_runner.clients.boto3.Session")
    def test_ambient_credentials(self, mock_session):
        make_session(AwsSettings(region="eu-west-1"))
        mock_session.assert_called_once_with(region_name="eu-west-1")

    @patch("ecs_runner.clients.boto3.Session")
    def test_static_credentials(self, mock_session):
        make_session(AwsSettings(access_key_id="AKIA", secret_access_key="s3cr3t"))
        kwargs = mock_session.call_args.kwargs
        assert kwargs["aws_access_key_id"] == "AKIA"
        assert kwargs["aws_secret_access_key"] == "s3cr3t"

    @patch("ecs_runner.clients.boto3.Session")
    def test_build_clients(self, mock_session):
        config = RunnerConfig.from_params({"ecs_cluster": "c1"}, env={})
        control, logs = build_clients(config)
        assert isinstance(control, Boto3ClusterControl)
        assert isinstance(logs, Boto3LogAggregation)
        services = [call.args[0] for call in mock_session.return_value.client.call_args_list]
        assert services == ["ecs", "logs"]
