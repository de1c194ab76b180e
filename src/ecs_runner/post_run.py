"""Bounded log fetch after the task has stopped.

Runs only when enabled (``tail_logs``) and a log group is configured, and
only after the live tailer has been joined. Reads up to ``limit`` events from
the head of the task's stream, so lines already streamed live may be printed
again.
"""

from __future__ import annotations

from ecs_runner.clients import LogAggregationAPI
from ecs_runner.config import LogSettings
from ecs_runner.core.errors import LogFetchError
from ecs_runner.core.logging import get_logger
from ecs_runner.launcher import TaskHandle
from ecs_runner.log_filter import LineSink, LogFilter
from ecs_runner.tailer import find_stream

logger = get_logger(__name__)


class PostRunLogFetcher:
    def __init__(
        self,
        logs: LogAggregationAPI,
        settings: LogSettings,
        *,
        container_name: str,
        log_filter: LogFilter,
        sink: LineSink,
    ) -> None:
        self.logs = logs
        self.settings = settings
        self.container_name = container_name
        self.log_filter = log_filter
        self.sink = sink

    def fetch_final(self, handle: TaskHandle, *, limit: int | None = None) -> int:
        """Emit up to ``limit`` historical lines. Returns the number written."""
        if not self.settings.enabled:
            return 0
        limit = limit or self.settings.fetch_limit
        stream_name = self.settings.stream_name(self.container_name, handle.task_id)
        written = 0
        try:
            if find_stream(self.logs, self.settings.log_group, stream_name) is None:
                self.sink(f"(No log stream found: {stream_name})")
                return 0
            page = self.logs.get_events(
                self.settings.log_group,
                stream_name,
                start_from_head=True,
                limit=limit,
            )
            for event in page.events[:limit]:
                if self.log_filter.emit(self.sink, event.message, event.timestamp):
                    written += 1
        except Exception as exc:
            err = LogFetchError(f"CloudWatch logs fetch failed: {exc}", cause=exc)
            logger.error("post_run_log_fetch_failed", **err.to_dict())
        logger.info("post_run_logs_fetched", stream=stream_name, lines=written)
        return written
