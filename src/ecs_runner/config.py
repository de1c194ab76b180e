"""Configuration models for ecs-runner.

Provides Pydantic v2 models for a single run: what to launch
(``TaskRequest``), how to follow its logs (``LogSettings``), how long to wait
(``WaitSettings``) and where the AWS clients point (``AwsSettings``).

Key Concepts:
    TaskRequest: Immutable launch request. ``preflight()`` enforces the
        invariants that must hold before any remote call.
    RunnerConfig: Everything a run needs. Built with ``from_params()`` from
        a scheduler job's ``params`` dict, ``from_job()`` from the whole job
        descriptor, or ``from_env()`` for ``ECS_RUNNER_*`` defaults only.
    LaunchMode: ``by_reference`` (existing task definition) or ``by_image``
        (register a one-off definition from an image).

Architecture Decisions:
    - Override precedence: kwargs > job params > ``ECS_RUNNER_*`` env vars >
      field defaults.
    - Scheduler params arrive loosely typed (checkbox ``0``/``1``, numbers as
      strings, empty strings for unset fields). ``_clean_params`` drops the
      empty values and the models coerce the rest. A numeric ``0`` for a
      limit, interval or timeout means "use the default".
    - Missing required fields are not pydantic validation errors: each one
      maps to its own result code, so ``preflight()`` raises the matching
      ``ConfigError`` subclass instead.

Tags:
    config, settings, pydantic, job-params, environment
"""

from __future__ import annotations

import os
import shlex
import uuid
from collections.abc import Mapping
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from ecs_runner.core.errors import (
    InvalidParamsError,
    MissingClusterError,
    MissingImageError,
    MissingSubnetsError,
    MissingTaskDefinitionError,
)

DEFAULT_REGION = "us-east-1"
DEFAULT_FAMILY = "cronicle-ecs-runner"
DEFAULT_CONTAINER_NAME = "app"


class LaunchMode(str, Enum):
    """How the task definition to run is obtained."""

    BY_REFERENCE = "by_reference"
    BY_IMAGE = "by_image"

    @classmethod
    def parse(cls, value: str | LaunchMode) -> LaunchMode:
        if isinstance(value, LaunchMode):
            return value
        aliases = {
            "task_definition": cls.BY_REFERENCE,
            "by_reference": cls.BY_REFERENCE,
            "image": cls.BY_IMAGE,
            "by_image": cls.BY_IMAGE,
        }
        key = str(value).strip().lower()
        if key not in aliases:
            raise InvalidParamsError(f"Invalid mode {value!r} (expected task_definition or image)")
        return aliases[key]


class LaunchType(str, Enum):
    FARGATE = "FARGATE"
    EC2 = "EC2"


# ---------------------------------------------------------------------------
# Parsing helpers
# ---------------------------------------------------------------------------


def split_csv(value: str | list[str] | None) -> list[str]:
    """Split a comma-joined string into trimmed, non-empty items."""
    if value is None:
        return []
    if isinstance(value, list):
        return [str(v).strip() for v in value if str(v).strip()]
    return [item.strip() for item in str(value).split(",") if item.strip()]


def parse_pairs(value: str | list[str] | None) -> list[tuple[str, str]]:
    """Parse ``KEY=VALUE,KEY2=VALUE2`` into pairs. Items without ``=`` are dropped.

    Only the first ``=`` separates key from value, so values may contain ``=``.
    """
    pairs: list[tuple[str, str]] = []
    for item in split_csv(value):
        key, sep, val = item.partition("=")
        if not sep:
            continue
        pairs.append((key, val))
    return pairs


def parse_command(value: str | list[str] | None) -> list[str] | None:
    """Turn a command parameter into argv tokens, or None when unset."""
    if value is None:
        return None
    if isinstance(value, list):
        tokens = [str(v) for v in value]
        return tokens or None
    if not str(value).strip():
        return None
    try:
        return shlex.split(str(value))
    except ValueError as exc:
        raise InvalidParamsError(f"Invalid command {value!r}: {exc}") from exc


def parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    return str(value).strip().lower() in ("true", "1", "yes", "on", "enabled")


def _clean_params(params: Mapping[str, Any]) -> dict[str, Any]:
    """Drop unset scheduler fields (None and blank strings)."""
    cleaned: dict[str, Any] = {}
    for key, value in params.items():
        if value is None:
            continue
        if isinstance(value, str) and not value.strip():
            continue
        cleaned[key] = value
    return cleaned


# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------


class NetworkSettings(BaseModel):
    """awsvpc networking for FARGATE-compatible launches."""

    model_config = ConfigDict(frozen=True)

    subnets: list[str] = Field(default_factory=list)
    security_groups: list[str] = Field(default_factory=list)
    assign_public_ip: Literal["ENABLED", "DISABLED"] = "DISABLED"

    @field_validator("assign_public_ip", mode="before")
    @classmethod
    def _normalize_public_ip(cls, value: Any) -> str:
        return "ENABLED" if str(value).strip().upper() == "ENABLED" else "DISABLED"


class TaskRequest(BaseModel):
    """Immutable description of the task to launch.

    Example::

        request = TaskRequest(
            cluster="c1",
            mode=LaunchMode.BY_REFERENCE,
            task_definition="td:3",
            network=NetworkSettings(subnets=["s1"]),
        )
        request.preflight()
    """

    model_config = ConfigDict(frozen=True)

    cluster: str = Field(default="", description="Cluster name or ARN")
    mode: LaunchMode = Field(default=LaunchMode.BY_REFERENCE)
    launch_type: LaunchType = Field(default=LaunchType.FARGATE)
    requires_compatibilities: LaunchType | None = Field(
        default=None,
        description="Compatibility of a registered definition; defaults to launch_type",
    )

    # Task definition source
    task_definition: str = Field(default="", description="Existing family:revision or ARN")
    image: str = Field(default="", description="Container image for by_image mode")
    family: str = DEFAULT_FAMILY
    container_name: str = DEFAULT_CONTAINER_NAME
    cpu: str | None = None
    memory: str | None = None
    task_role_arn: str | None = None
    execution_role_arn: str | None = None

    # Overrides
    command: list[str] | None = None
    environment: list[tuple[str, str]] = Field(default_factory=list)
    secrets: list[tuple[str, str]] = Field(default_factory=list)

    network: NetworkSettings = Field(default_factory=NetworkSettings)
    platform_version: str | None = None
    propagate_tags: str | None = None

    @field_validator("launch_type", "requires_compatibilities", mode="before")
    @classmethod
    def _upper(cls, value: Any) -> Any:
        return value.strip().upper() if isinstance(value, str) else value

    @field_validator("cpu", "memory", mode="before")
    @classmethod
    def _as_str(cls, value: Any) -> Any:
        return str(value) if value is not None else None

    @property
    def compatibility(self) -> LaunchType:
        return self.requires_compatibilities or self.launch_type

    @property
    def needs_network(self) -> bool:
        return self.compatibility == LaunchType.FARGATE

    def preflight(self) -> None:
        """Check the invariants that must hold before any remote call."""
        if not self.cluster:
            raise MissingClusterError()
        if self.mode == LaunchMode.BY_REFERENCE and not self.task_definition:
            raise MissingTaskDefinitionError()
        if self.mode == LaunchMode.BY_IMAGE and not self.image:
            raise MissingImageError()
        if self.needs_network and not self.network.subnets:
            raise MissingSubnetsError(self.compatibility.value)


class LogSettings(BaseModel):
    """Where the task's logs live and how to follow them."""

    model_config = ConfigDict(frozen=True)

    log_group: str = Field(default="", description="CloudWatch log group; empty disables all log work")
    stream_prefix: str = Field(default="ecs", description="awslogs-stream-prefix")

    # Post-run fetch
    tail_after_run: bool = False
    fetch_limit: int = Field(default=1000, ge=1)

    # Live streaming
    stream_live: bool = False
    start_from_head: bool = False
    poll_interval_seconds: float = Field(default=3.0, gt=0)

    # Filtering
    include_regex: str | None = None
    exclude_regex: str | None = None
    annotate: bool = False

    @property
    def enabled(self) -> bool:
        return bool(self.log_group)

    def stream_name(self, container_name: str, task_id: str) -> str:
        return f"{self.stream_prefix}/{container_name}/{task_id}"


class WaitSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    timeout_seconds: float = Field(default=1800.0, gt=0)
    poll_interval_seconds: float = Field(default=5.0, gt=0)


class AwsSettings(BaseModel):
    """Region and optional static credentials for the boto3 session."""

    model_config = ConfigDict(frozen=True)

    region: str = DEFAULT_REGION
    access_key_id: str | None = None
    secret_access_key: str | None = Field(default=None, repr=False)
    session_token: str | None = Field(default=None, repr=False)

    @property
    def has_static_credentials(self) -> bool:
        return bool(self.access_key_id and self.secret_access_key)


class RunnerConfig(BaseModel):
    """Configuration for one run of the ECS runner.

    Example::

        config = RunnerConfig.from_params({
            "ecs_cluster": "c1",
            "task_definition": "td:3",
            "subnets": "s1",
            "wait_timeout_sec": 5,
        })
    """

    request: TaskRequest = Field(default_factory=TaskRequest)
    logs: LogSettings = Field(default_factory=LogSettings)
    wait: WaitSettings = Field(default_factory=WaitSettings)
    aws: AwsSettings = Field(default_factory=AwsSettings)
    keep_task_definition: bool = Field(
        default=False,
        description="Keep a one-off task definition registered after the run (for debugging)",
    )

    # Internal
    run_id: str = Field(default="", description="Unique run identifier (auto-generated)")

    @model_validator(mode="after")
    def _set_defaults(self) -> RunnerConfig:
        if not self.run_id:
            self.run_id = uuid.uuid4().hex[:12]
        return self

    # ------------------------------------------------------------------
    # Constructors
    # ------------------------------------------------------------------

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None, **overrides: Any) -> RunnerConfig:
        """Create config from ECS_RUNNER_* environment variables."""
        return cls.from_params({}, env=env, **overrides)

    @classmethod
    def from_job(cls, job: Mapping[str, Any], env: Mapping[str, str] | None = None) -> RunnerConfig:
        """Create config from a scheduler job descriptor (params under ``params``)."""
        params = job.get("params") or {}
        if not isinstance(params, Mapping):
            raise InvalidParamsError("Job params must be an object")
        overrides: dict[str, Any] = {}
        if job.get("id"):
            overrides["run_id"] = str(job["id"])
        return cls.from_params(params, env=env, **overrides)

    @classmethod
    def from_params(
        cls,
        params: Mapping[str, Any],
        env: Mapping[str, str] | None = None,
        **overrides: Any,
    ) -> RunnerConfig:
        """Create config from scheduler job params, with env-var fallbacks."""
        env = os.environ if env is None else env
        p = {**_env_defaults(env), **_clean_params(params)}

        try:
            request = TaskRequest(
                cluster=str(p.get("ecs_cluster", "")).strip(),
                mode=LaunchMode.parse(p.get("mode", "task_definition")),
                launch_type=p.get("launch_type", LaunchType.FARGATE),
                requires_compatibilities=p.get("requires_compatibilities"),
                task_definition=str(p.get("task_definition", "")).strip(),
                image=str(p.get("image", "")).strip(),
                family=p.get("family", DEFAULT_FAMILY),
                container_name=p.get("container_name", DEFAULT_CONTAINER_NAME),
                cpu=p.get("cpu"),
                memory=p.get("memory"),
                task_role_arn=p.get("task_role_arn"),
                execution_role_arn=p.get("execution_role_arn"),
                command=parse_command(p.get("command")),
                environment=parse_pairs(p.get("environment")),
                secrets=parse_pairs(p.get("secrets")),
                network=NetworkSettings(
                    subnets=split_csv(p.get("subnets")),
                    security_groups=split_csv(p.get("security_groups")),
                    assign_public_ip=p.get("assign_public_ip", "DISABLED"),
                ),
                platform_version=p.get("platform_version"),
                propagate_tags=p.get("propagate_tags"),
            )
            logs = LogSettings(
                log_group=p.get("cw_log_group", ""),
                stream_prefix=p.get("cw_log_stream_prefix", "ecs"),
                tail_after_run=parse_bool(p.get("tail_logs", False)),
                fetch_limit=p.get("log_fetch_limit") or 1000,
                stream_live=parse_bool(p.get("stream_logs_live", False)),
                start_from_head=parse_bool(p.get("stream_log_start_from_head", False)),
                poll_interval_seconds=p.get("stream_log_poll_interval_sec") or 3,
                include_regex=p.get("log_include_regex"),
                exclude_regex=p.get("log_exclude_regex"),
                annotate=parse_bool(p.get("annotate", False)),
            )
            wait = WaitSettings(
                timeout_seconds=p.get("wait_timeout_sec") or 1800,
                poll_interval_seconds=p.get("wait_poll_interval_sec") or 5,
            )
            aws = AwsSettings(
                region=p.get("aws_region") or env.get("AWS_REGION") or env.get("AWS_DEFAULT_REGION") or DEFAULT_REGION,
                access_key_id=p.get("aws_access_key_id"),
                secret_access_key=p.get("aws_secret_access_key"),
                session_token=p.get("aws_session_token"),
            )
            values: dict[str, Any] = {
                "request": request,
                "logs": logs,
                "wait": wait,
                "aws": aws,
                "keep_task_definition": parse_bool(p.get("keep_task_definition", False)),
            }
            values.update(overrides)
            return cls(**values)
        except ValidationError as exc:
            raise InvalidParamsError(f"Invalid job parameters: {exc}", cause=exc) from exc


def _env_defaults(env: Mapping[str, str]) -> dict[str, Any]:
    """Map ECS_RUNNER_* environment variables onto job param names."""
    env_map = {
        "ecs_cluster": "ECS_RUNNER_CLUSTER",
        "launch_type": "ECS_RUNNER_LAUNCH_TYPE",
        "subnets": "ECS_RUNNER_SUBNETS",
        "security_groups": "ECS_RUNNER_SECURITY_GROUPS",
        "cw_log_group": "ECS_RUNNER_LOG_GROUP",
        "cw_log_stream_prefix": "ECS_RUNNER_LOG_STREAM_PREFIX",
        "execution_role_arn": "ECS_RUNNER_EXECUTION_ROLE_ARN",
        "task_role_arn": "ECS_RUNNER_TASK_ROLE_ARN",
        "aws_region": "ECS_RUNNER_REGION",
    }
    values: dict[str, Any] = {}
    for param, env_var in env_map.items():
        env_val = env.get(env_var)
        if env_val:
            values[param] = env_val
    return values


__all__ = [
    "AwsSettings",
    "LaunchMode",
    "LaunchType",
    "LogSettings",
    "NetworkSettings",
    "RunnerConfig",
    "TaskRequest",
    "WaitSettings",
    "parse_bool",
    "parse_command",
    "parse_pairs",
    "split_csv",
]
