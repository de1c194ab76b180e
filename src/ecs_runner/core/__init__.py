"""ecs-runner core -- error taxonomy and structured logging.

Architecture::

    errors.py     ResultCode, ErrorCategory, RunnerError hierarchy
    logging.py    structlog configuration (stderr), get_logger, LogContext
"""

from ecs_runner.core.errors import ErrorCategory, ResultCode, RunnerError
from ecs_runner.core.logging import LogContext, configure_logging, get_logger

__all__ = [
    "ErrorCategory",
    "LogContext",
    "ResultCode",
    "RunnerError",
    "configure_logging",
    "get_logger",
]
