"""
CLI: ``ecs-runner`` -- run one ECS task as a scheduler job.

Usage::

    ecs-runner run < job.json                 # scheduler plugin mode (stdin)
    ecs-runner run --job job.json --exit-code # mirror result code as exit status
    ecs-runner validate --job job.json        # preflight + print requests
    ecs-runner codes                          # list result codes

stdout carries task log lines and the final completion record; all
diagnostics are written to stderr.
"""

from __future__ import annotations

import json
import sys
from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

app = typer.Typer(
    name="ecs-runner",
    help="Launch an ECS task, follow it to completion, report one result record.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)
err_console = Console(stderr=True)


def _read_job_source(job: Path | None) -> dict:
    from ecs_runner.workflow import read_job

    if job is None:
        return read_job(sys.stdin)
    with job.open(encoding="utf-8") as fh:
        return read_job(fh)


# ── Run ──────────────────────────────────────────────────────────────────


@app.command()
def run(
    job: Path | None = typer.Option(None, "--job", "-j", help="Job JSON file (default: stdin)."),
    log_level: str = typer.Option("INFO", "--log-level", "-l", help="Diagnostic log level."),
    json_logs: bool | None = typer.Option(
        None, "--json-logs/--console-logs", help="Diagnostic format (default: JSON unless stderr is a tty).",
    ),
    exit_code: bool = typer.Option(
        False, "--exit-code", help="Exit with the run's result code instead of 0.",
    ),
) -> None:
    """Run the job and print exactly one completion record."""
    from ecs_runner.core.errors import RunnerError
    from ecs_runner.core.logging import configure_logging
    from ecs_runner.emitter import ResultEmitter
    from ecs_runner.workflow import emit_failure, run_job

    configure_logging(level=log_level, json_format=json_logs)
    emitter = ResultEmitter()
    try:
        job_data = _read_job_source(job)
    except RunnerError as exc:
        outcome = emit_failure(emitter, exc)
    except OSError as exc:
        outcome = emit_failure(emitter, RunnerError(f"Failed to read job file: {exc}", cause=exc))
    else:
        outcome = run_job(job_data, emitter=emitter)

    if exit_code and outcome.code:
        raise typer.Exit(code=outcome.code)


# ── Validate ─────────────────────────────────────────────────────────────


@app.command()
def validate(
    job: Path | None = typer.Option(None, "--job", "-j", help="Job JSON file (default: stdin)."),
    json_out: bool = typer.Option(False, "--json", help="Print the would-be API requests as JSON."),
) -> None:
    """Parse and preflight a job without calling AWS."""
    from ecs_runner.config import LaunchMode, RunnerConfig
    from ecs_runner.core.errors import RunnerError
    from ecs_runner.launcher import TaskLauncher
    from ecs_runner.provisioner import TaskDefinitionProvisioner

    try:
        config = RunnerConfig.from_job(_read_job_source(job))
        request = config.request
        request.preflight()
        definition = None
        placeholder = None
        if request.mode == LaunchMode.BY_IMAGE:
            definition = TaskDefinitionProvisioner(control=None).build_definition(
                request, logs=config.logs, region=config.aws.region,
            )
            placeholder = f"<registered {request.family}>"
        run_request = TaskLauncher(control=None).build_run_request(request, placeholder)
    except RunnerError as exc:
        err_console.print(f"[bold red]Invalid job[/bold red] (code {int(exc.code)}): {exc.message}")
        raise typer.Exit(code=int(exc.code)) from exc

    if json_out:
        payload = {"registerTaskDefinition": definition, "runTask": run_request}
        typer.echo(json.dumps(payload, indent=2))
        return

    table = Table(title=f"ecs-runner job {config.run_id}")
    table.add_column("Setting", style="cyan")
    table.add_column("Value")
    table.add_row("cluster", request.cluster)
    table.add_row("mode", request.mode.value)
    table.add_row("launch type", request.launch_type.value)
    table.add_row("task definition", run_request["taskDefinition"])
    table.add_row("container", request.container_name)
    table.add_row("subnets", ", ".join(request.network.subnets) or "-")
    table.add_row("log group", config.logs.log_group or "-")
    table.add_row("live tail", str(config.logs.stream_live and config.logs.enabled))
    table.add_row("post-run fetch", str(config.logs.tail_after_run and config.logs.enabled))
    table.add_row("timeout", f"{config.wait.timeout_seconds:g}s")
    Console().print(table)


# ── Codes ────────────────────────────────────────────────────────────────


@app.command()
def codes() -> None:
    """List the result codes a run can report."""
    from ecs_runner.core.errors import ResultCode

    table = Table(title="Result codes")
    table.add_column("Code", justify="right", style="bold")
    table.add_column("Meaning")
    for code in ResultCode:
        table.add_row(str(int(code)), code.name.replace("_", " ").lower())
    Console().print(table)


if __name__ == "__main__":  # pragma: no cover
    app()
