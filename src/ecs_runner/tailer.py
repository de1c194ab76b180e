"""Live log tailing while the task runs.

``LiveLogTailer`` runs on its own thread next to the status poller and
streams the task's log lines as they arrive.

State machine::

    DISCOVERING ──stream found──▶ STREAMING
         │                            │
         └──────cancel set────────────┴──▶ STOPPING ──▶ DONE
                                                  (one final sweep)

    DISCOVERING  describe_streams(prefix/container/task_id) until it exists
    STREAMING    get_events(cursor) -> filter -> sink; advance cursor
    STOPPING     cancel observed between iterations; loop exits
    DONE         exactly one final fetch (start_from_head=False) to catch
                 events written between the last poll and task stop

Concurrency:
    The only shared state is the ``threading.Event`` passed to ``start()``.
    The orchestrator sets it once, after the poller returns, and then joins
    the thread before any post-run fetch touches the same stream.
    Cancellation is cooperative: the flag is checked between iterations.
    Waits use ``cancel.wait()``, so setting the flag also ends a pending
    poll-interval sleep early.

Failure semantics:
    A fetch error is logged and followed by a backoff of
    ``max(poll_interval, error_backoff_floor)``; the tailer never ends the
    run. Errors in the final sweep are logged and dropped.

Related Modules:
    - :mod:`ecs_runner.post_run` -- bounded fetch after the run
    - :mod:`ecs_runner.workflow` -- owns the cancellation event

Tags:
    logs, cloudwatch, tail, thread, cancellation, state-machine
"""

from __future__ import annotations

import contextvars
import threading
from dataclasses import dataclass
from enum import Enum

from ecs_runner.clients import LogAggregationAPI, LogEventPage
from ecs_runner.config import LogSettings
from ecs_runner.core.errors import LogFetchError
from ecs_runner.core.logging import get_logger
from ecs_runner.launcher import TaskHandle
from ecs_runner.log_filter import LineSink, LogFilter

logger = get_logger(__name__)

EVENTS_PER_FETCH = 10000
ERROR_BACKOFF_FLOOR_SECONDS = 3.0


class TailerState(str, Enum):
    DISCOVERING = "DISCOVERING"
    STREAMING = "STREAMING"
    STOPPING = "STOPPING"
    DONE = "DONE"


@dataclass
class LogCursor:
    """Position within one log stream.

    ``token`` only moves forward: ``advance()`` ignores empty tokens and the
    token already held, which is what the log store returns once a stream is
    drained.
    """

    stream_name: str
    token: str | None = None

    def advance(self, token: str | None) -> bool:
        if token and token != self.token:
            self.token = token
            return True
        return False


def find_stream(logs: LogAggregationAPI, log_group: str, stream_name: str) -> str | None:
    """Most recent stream matching ``stream_name``, or None."""
    streams = logs.describe_streams(log_group, stream_name, most_recent_first=True, limit=1)
    return streams[0].name if streams else None


class LiveLogTailer:
    """Streams a running task's log lines to ``sink``.

    Parameters
    ----------
    logs
        Pre-authenticated log aggregation client.
    settings
        Log group, stream prefix, poll interval and start-from-head policy.
    container_name
        Container whose stream is followed.
    log_filter
        Include/exclude filter applied to every line.
    sink
        Where passing lines are written.
    error_backoff_floor
        Minimum wait after a fetch error.
    """

    def __init__(
        self,
        logs: LogAggregationAPI,
        settings: LogSettings,
        *,
        container_name: str,
        log_filter: LogFilter,
        sink: LineSink,
        error_backoff_floor: float = ERROR_BACKOFF_FLOOR_SECONDS,
    ) -> None:
        self.logs = logs
        self.settings = settings
        self.container_name = container_name
        self.log_filter = log_filter
        self.sink = sink
        self.error_backoff_floor = error_backoff_floor
        self.state = TailerState.DISCOVERING
        self.cursor: LogCursor | None = None
        self.stream_found = False
        self.lines_emitted = 0
        self.errors = 0

    # ------------------------------------------------------------------
    # Thread entry points
    # ------------------------------------------------------------------

    def start(self, handle: TaskHandle, cancel: threading.Event) -> threading.Thread:
        """Run the tailer on a daemon thread and return it for joining."""
        ctx = contextvars.copy_context()
        thread = threading.Thread(
            target=ctx.run,
            args=(self.run, handle, cancel),
            name=f"log-tail-{handle.task_id}",
            daemon=True,
        )
        thread.start()
        return thread

    def run(self, handle: TaskHandle, cancel: threading.Event) -> None:
        if not self.settings.enabled:
            self.state = TailerState.DONE
            return

        cursor = LogCursor(self.settings.stream_name(self.container_name, handle.task_id))
        self.cursor = cursor
        interval = self.settings.poll_interval_seconds
        logger.info("log_tail_started", stream=cursor.stream_name)

        while not cancel.is_set():
            try:
                if not self.stream_found:
                    self.state = TailerState.DISCOVERING
                    self.stream_found = self._discover(cursor)
                    if not self.stream_found:
                        cancel.wait(interval)
                        continue
                    self.state = TailerState.STREAMING
                    logger.info("log_stream_found", stream=cursor.stream_name)

                self._fetch(cursor, start_from_head=self.settings.start_from_head)
                cancel.wait(interval)
            except Exception as exc:
                self.errors += 1
                err = LogFetchError(f"live log tail error: {exc}", cause=exc)
                logger.error("log_tail_error", **err.to_dict())
                cancel.wait(max(interval, self.error_backoff_floor))

        self.state = TailerState.STOPPING
        self._final_sweep(cursor)
        self.state = TailerState.DONE
        logger.info("log_tail_finished", lines=self.lines_emitted, errors=self.errors)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _discover(self, cursor: LogCursor) -> bool:
        return find_stream(self.logs, self.settings.log_group, cursor.stream_name) is not None

    def _fetch(self, cursor: LogCursor, *, start_from_head: bool) -> LogEventPage:
        page = self.logs.get_events(
            self.settings.log_group,
            cursor.stream_name,
            next_token=cursor.token,
            start_from_head=start_from_head,
            limit=EVENTS_PER_FETCH,
        )
        for event in page.events:
            if self.log_filter.emit(self.sink, event.message, event.timestamp):
                self.lines_emitted += 1
        cursor.advance(page.next_forward_token)
        return page

    def _final_sweep(self, cursor: LogCursor) -> None:
        """One last fetch after stop, never starting from the head."""
        try:
            if not self.stream_found:
                self.stream_found = self._discover(cursor)
                if not self.stream_found:
                    logger.info("log_stream_never_found", stream=cursor.stream_name)
                    return
            self._fetch(cursor, start_from_head=False)
        except Exception as exc:
            err = LogFetchError(f"final log sweep failed: {exc}", cause=exc)
            logger.warning("log_tail_final_sweep_failed", **err.to_dict())
