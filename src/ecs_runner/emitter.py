"""Completion record output.

The scheduler treats the first JSON line with ``"complete": 1`` on stdout as
the job's result, so a run must write exactly one. Streamed log lines share
stdout but are plain text; diagnostics go to stderr via structlog.
"""

from __future__ import annotations

import json
import sys
import threading
from typing import TextIO

from ecs_runner.core.logging import get_logger
from ecs_runner.results import RunOutcome

logger = get_logger(__name__)


class ResultEmitter:
    """Writes the single completion record for a run."""

    def __init__(self, stream: TextIO | None = None) -> None:
        self._stream = stream
        self._lock = threading.Lock()
        self.emitted: RunOutcome | None = None

    @property
    def stream(self) -> TextIO:
        return self._stream or sys.stdout

    def write_line(self, line: str) -> None:
        """Plain output line (task logs, status notes) on the primary channel."""
        with self._lock:
            self.stream.write(line if line.endswith("\n") else line + "\n")
            self.stream.flush()

    def emit(self, outcome: RunOutcome) -> None:
        with self._lock:
            if self.emitted is not None:
                raise RuntimeError("completion record already emitted for this run")
            self.emitted = outcome
            self.stream.write(json.dumps(outcome.to_record()) + "\n")
            self.stream.flush()
        logger.info(
            "run_complete",
            code=int(outcome.code),
            description=outcome.description,
            duration_seconds=round(outcome.duration_seconds, 3),
        )
