"""Include/exclude filtering of task log lines."""

from __future__ import annotations

import re
from collections.abc import Callable
from datetime import UTC, datetime

from ecs_runner.core.logging import get_logger

logger = get_logger(__name__)

LineSink = Callable[[str], None]


def _compile(pattern: str | None, kind: str) -> re.Pattern[str] | None:
    if not pattern:
        return None
    try:
        return re.compile(pattern)
    except re.error as exc:
        # Fail open: a bad pattern filters nothing.
        logger.warning("invalid_log_regex", kind=kind, pattern=pattern, error=str(exc))
        return None


class LogFilter:
    """Decides whether a log line is emitted.

    A line passes if (no include pattern OR include matches) AND
    (no exclude pattern OR exclude does not match). Patterns are searched
    anywhere in the line.

    Example:
        >>> f = LogFilter(include=r"ERROR|WARN", exclude=r"healthcheck")
        >>> f.allows("ERROR db down")
        True
        >>> f.allows("WARN healthcheck slow")
        False
    """

    def __init__(
        self,
        include: str | None = None,
        exclude: str | None = None,
        *,
        annotate: bool = False,
    ) -> None:
        self.include = _compile(include, "include")
        self.exclude = _compile(exclude, "exclude")
        self.annotate = annotate

    def allows(self, line: str) -> bool:
        if self.include is not None and not self.include.search(line):
            return False
        if self.exclude is not None and self.exclude.search(line):
            return False
        return True

    def format(self, line: str, timestamp_ms: int | None = None) -> str:
        """Prefix ``[YYYY-MM-DD HH:MM:SS]`` when annotation is enabled."""
        if not self.annotate:
            return line
        when = (
            datetime.fromtimestamp(timestamp_ms / 1000, UTC)
            if timestamp_ms is not None
            else datetime.now(UTC)
        )
        return f"[{when:%Y-%m-%d %H:%M:%S}] {line}"

    def emit(self, sink: LineSink, line: str, timestamp_ms: int | None = None) -> bool:
        """Write ``line`` to ``sink`` if it passes. Returns True when written."""
        if not self.allows(line):
            return False
        sink(self.format(line, timestamp_ms))
        return True
