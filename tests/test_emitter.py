"""Tests for ResultEmitter."""

from __future__ import annotations

import json

import pytest

from ecs_runner.emitter import ResultEmitter
from ecs_runner.results import RunOutcome


class TestResultEmitter:
    def test_emit_writes_one_json_line(self, emitter, out):
        emitter.emit(RunOutcome(code=0, description="ok"))
        assert out.getvalue() == '{"complete": 1, "code": 0, "description": "ok"}\n'
        assert emitter.emitted is not None

    def test_second_emit_raises(self, emitter, out):
        emitter.emit(RunOutcome(code=0))
        with pytest.raises(RuntimeError):
            emitter.emit(RunOutcome(code=1))
        assert len(out.getvalue().splitlines()) == 1

    def test_write_line_appends_newline(self, emitter, out):
        emitter.write_line("hello")
        emitter.write_line("world\n")
        assert out.getvalue() == "hello\nworld\n"

    def test_log_lines_precede_record(self, emitter, out):
        emitter.write_line("Started ECS task: arn")
        emitter.emit(RunOutcome(code=124, description="Timed out"))
        first, last = out.getvalue().splitlines()
        assert first == "Started ECS task: arn"
        assert json.loads(last)["code"] == 124

    def test_defaults_to_stdout(self, capsys):
        ResultEmitter().emit(RunOutcome(code=3, description="missing"))
        captured = capsys.readouterr()
        assert json.loads(captured.out) == {"complete": 1, "code": 3, "description": "missing"}
