"""
Structured error types for ecs-runner.

Every failure a run can hit is classified twice: by ``ErrorCategory`` (which
stage of the pipeline raised it) and by ``ResultCode`` (the numeric code the
invoking scheduler reads from the completion record).

Architecture:
    ::

        ┌─────────────────────────────────────────────────────────────────┐
        │                        RunnerError                               │
        │              (category, code, message, cause)                    │
        ├─────────────────────────────────────────────────────────────────┤
        │  ConfigError            ProvisioningError     LaunchError        │
        │  (CONFIG, fatal)        (PROVISIONING, 5)     (LAUNCH, 9)        │
        │      │                                            │              │
        │  MissingClusterError 2                     LaunchFailuresError 7 │
        │  MissingTaskDefinitionError 3              NoTaskHandleError 8   │
        │  MissingImageError 4                                             │
        │  MissingSubnetsError 6  PollingError (POLLING, 10)               │
        │  InvalidParamsError 1       │                                    │
        │                         TaskDisappearedError 10                  │
        │                                                                  │
        │  LogFetchError (LOGS)   CleanupError (CLEANUP)   -- never fatal  │
        └─────────────────────────────────────────────────────────────────┘

Propagation:
    Fatal errors (CONFIG, PROVISIONING, LAUNCH, POLLING) short-circuit the
    pipeline and become the run's outcome. LOGS and CLEANUP errors are
    absorbed at the component boundary and never change the outcome.

Tags:
    errors, exceptions, result-codes, taxonomy
"""

from __future__ import annotations

from enum import Enum, IntEnum
from typing import Any


class ResultCode(IntEnum):
    """Numeric completion codes reported in the final record."""

    SUCCESS = 0
    FAILURE = 1
    MISSING_CLUSTER = 2
    MISSING_TASK_DEFINITION = 3
    MISSING_IMAGE = 4
    REGISTRATION_FAILED = 5
    MISSING_SUBNETS = 6
    LAUNCH_FAILURES = 7
    NO_TASK_HANDLE = 8
    LAUNCH_ERROR = 9
    POLLING_ERROR = 10
    TIMEOUT = 124


class ErrorCategory(str, Enum):
    """Pipeline stage an error originated from."""

    CONFIG = "CONFIG"
    PROVISIONING = "PROVISIONING"
    LAUNCH = "LAUNCH"
    POLLING = "POLLING"
    LOGS = "LOGS"
    CLEANUP = "CLEANUP"
    INTERNAL = "INTERNAL"


FATAL_CATEGORIES = frozenset(
    {
        ErrorCategory.CONFIG,
        ErrorCategory.PROVISIONING,
        ErrorCategory.LAUNCH,
        ErrorCategory.POLLING,
        ErrorCategory.INTERNAL,
    }
)


class RunnerError(Exception):
    """
    Base exception for all ecs-runner errors.

    Subclasses set ``default_category`` and ``default_code``; both can be
    overridden per instance.

    Examples:
        >>> err = RunnerError("boom")
        >>> err.code
        <ResultCode.FAILURE: 1>
        >>> err.to_dict()["category"]
        'INTERNAL'
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_code: ResultCode = ResultCode.FAILURE

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        code: ResultCode | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.code = code if code is not None else self.default_code
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    @property
    def fatal(self) -> bool:
        """True if this error must end the run."""
        return self.category in FATAL_CATEGORIES

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result: dict[str, Any] = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
            "code": int(self.code),
        }
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, code={int(self.code)})"


# =============================================================================
# CONFIGURATION ERRORS
# =============================================================================


class ConfigError(RunnerError):
    """
    Configuration error, detected before any remote call.

    Never retryable - the job parameters must be fixed.
    """

    default_category = ErrorCategory.CONFIG


class InvalidParamsError(ConfigError):
    """Job descriptor could not be read or a parameter has the wrong shape."""


class MissingClusterError(ConfigError):
    default_code = ResultCode.MISSING_CLUSTER

    def __init__(self, message: str = "Missing ecs_cluster parameter"):
        super().__init__(message)


class MissingTaskDefinitionError(ConfigError):
    default_code = ResultCode.MISSING_TASK_DEFINITION

    def __init__(self, message: str = "mode=task_definition but task_definition is empty"):
        super().__init__(message)


class MissingImageError(ConfigError):
    default_code = ResultCode.MISSING_IMAGE

    def __init__(self, message: str = "mode=image but image is empty"):
        super().__init__(message)


class MissingSubnetsError(ConfigError):
    default_code = ResultCode.MISSING_SUBNETS

    def __init__(self, launch_type: str = "FARGATE"):
        self.launch_type = launch_type
        super().__init__(f"{launch_type} requires subnets (params.subnets)")


# =============================================================================
# PROVISIONING / LAUNCH ERRORS
# =============================================================================


class ProvisioningError(RunnerError):
    """Registering the one-off task definition failed."""

    default_category = ErrorCategory.PROVISIONING
    default_code = ResultCode.REGISTRATION_FAILED


class LaunchError(RunnerError):
    """The run request itself raised."""

    default_category = ErrorCategory.LAUNCH
    default_code = ResultCode.LAUNCH_ERROR


class LaunchFailuresError(LaunchError):
    """The control API accepted the call but reported failures instead of tasks."""

    default_code = ResultCode.LAUNCH_FAILURES

    def __init__(self, failures: list[Any]):
        self.failures = list(failures)
        joined = ", ".join(str(f) for f in self.failures)
        super().__init__(f"RunTask failures: {joined}")


class NoTaskHandleError(LaunchError):
    default_code = ResultCode.NO_TASK_HANDLE

    def __init__(self, message: str = "ECS returned no task ARN"):
        super().__init__(message)


# =============================================================================
# POLLING ERRORS
# =============================================================================


class PollingError(RunnerError):
    """
    Failure while observing task status.

    Always fatal: without a reliable status channel the run cannot make a
    trustworthy completion claim.
    """

    default_category = ErrorCategory.POLLING
    default_code = ResultCode.POLLING_ERROR


class TaskDisappearedError(PollingError):
    def __init__(self, task_arn: str):
        self.task_arn = task_arn
        super().__init__(f"DescribeTasks returned no task for {task_arn}")


# =============================================================================
# NON-FATAL ERRORS
# =============================================================================


class LogFetchError(RunnerError):
    """Transient log retrieval failure. Logged and retried or skipped."""

    default_category = ErrorCategory.LOGS


class CleanupError(RunnerError):
    """Deregistration failure. Logged only."""

    default_category = ErrorCategory.CLEANUP


__all__ = [
    "ResultCode",
    "ErrorCategory",
    "FATAL_CATEGORIES",
    "RunnerError",
    "ConfigError",
    "InvalidParamsError",
    "MissingClusterError",
    "MissingTaskDefinitionError",
    "MissingImageError",
    "MissingSubnetsError",
    "ProvisioningError",
    "LaunchError",
    "LaunchFailuresError",
    "NoTaskHandleError",
    "PollingError",
    "TaskDisappearedError",
    "LogFetchError",
    "CleanupError",
]
