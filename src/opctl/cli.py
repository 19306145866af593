"""Typer-powered command line interface for ``opctl``.

``opctl backup`` and ``opctl restore`` are task entry points: they read a
single JSON object of parameters from standard input and print a single
JSON result document to standard output. On failure that document is the
``{"_error": {...}}`` form and the exit status is 1.
"""
from __future__ import annotations

import json
import textwrap
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import NoReturn

import typer
from rich.console import Console
from rich.table import Table

from . import __version__
from .backups import BackupTask
from .config import AppConfig, ConfigError, load_config
from .exit_codes import ExitCode
from .logging import OperationScope, StructuredLogger
from .metadata import task_metadata
from .reporting import ErrorKind, TaskError, error_document, success_document
from .restore import RestoreTask
from .runner import CommandRunner, SubprocessRunner

console = Console()

CONFIG_FILE_OPTION = typer.Option(
    None,
    "--config-file",
    dir_okay=False,
    help="Override the path to opctl's YAML config file.",
)

app = typer.Typer(
    add_completion=False,
    help=textwrap.dedent(
        """
        OpenProject backup and restore task runner.

        The backup and restore commands read their parameters as a JSON object
        on standard input and print a JSON result document on standard output.
        """
    ).strip(),
)
config_app = typer.Typer(help="Inspect the effective configuration.")
app.add_typer(config_app, name="config")


class TaskName(str, Enum):
    """Tasks that publish metadata."""

    BACKUP = "backup"
    RESTORE = "restore"


@dataclass
class RuntimeContext:
    """Aggregated runtime objects shared by commands."""

    config: AppConfig
    logger: StructuredLogger
    runner: CommandRunner


def _ensure_runtime(ctx: typer.Context, config_file: Path | None) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime

    try:
        config = load_config(config_file=config_file)
    except ConfigError as exc:
        _fail_without_runtime(exc)
    runtime = RuntimeContext(
        config=config,
        logger=StructuredLogger(config.logs_dir),
        runner=SubprocessRunner(timeout=config.command_timeout),
    )
    ctx.obj = runtime
    return runtime


def _get_runtime(ctx: typer.Context) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime
    return _ensure_runtime(ctx, None)


def _fail_without_runtime(exc: ConfigError) -> NoReturn:
    console.print_json(data=error_document(str(exc), ErrorKind.CONFIG_ERROR))
    raise typer.Exit(code=ExitCode.FAILURE)


def _read_stdin() -> bytes:
    stream = typer.get_binary_stream("stdin")
    if stream.isatty():
        return b""
    return stream.read()


def _report_failure(op: OperationScope, exc: TaskError) -> NoReturn:
    console.print_json(data=exc.to_document())
    op.error(
        exc.message,
        errors=[exc.kind.qualified],
        rc=ExitCode.FAILURE,
        context={"kind": exc.kind.qualified},
    )
    raise typer.Exit(code=ExitCode.FAILURE)


@app.callback(invoke_without_command=True)
def _root(  # noqa: D401 - Typer displays help for us, docstring optional.
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show the opctl version and exit.",
    ),
    config_file: Path | None = CONFIG_FILE_OPTION,
) -> None:
    """Entry point callback invoked for every CLI execution."""
    if version:
        runtime = _ensure_runtime(ctx, config_file)
        with runtime.logger.operation(
            "root --version",
            args={"version": True},
            target={"kind": "meta", "scope": "version"},
        ) as op:
            console.print(f"opctl {__version__}")
            op.success("Reported CLI version.", changed=0)
        raise typer.Exit(code=ExitCode.OK)

    _ensure_runtime(ctx, config_file)

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())
        raise typer.Exit(code=ExitCode.OK)


@app.command("backup")
def backup(ctx: typer.Context) -> None:
    """Create a full backup with ``openproject run backup``.

    Reads ``{"backup_dir": ...}`` (optional) from standard input.
    """
    runtime = _get_runtime(ctx)
    raw = _read_stdin()

    with runtime.logger.operation(
        "backup",
        args={"stdin_bytes": len(raw)},
        target={"kind": "task", "task": "backup"},
    ) as op:
        task = BackupTask(config=runtime.config, runner=runtime.runner, scope=op)
        try:
            result = task.run(raw)
        except TaskError as exc:
            _report_failure(op, exc)

        console.print_json(data=success_document(result.to_dict()))
        op.success(
            f"Backup created {result.file_count} file(s) in {result.backup_dir}.",
            changed=result.file_count,
            context={
                "backup_dir": result.backup_dir,
                "files": [record.name for record in result.files],
                "total_bytes": result.total_bytes,
            },
        )


@app.command("restore")
def restore(ctx: typer.Context) -> None:
    """Restore a backup set identified by its timestamp.

    Reads ``{"timestamp": ..., "backup_dir": ..., "pg_no_owner": ...}`` from
    standard input. The service is stopped for the duration of the restore.
    """
    runtime = _get_runtime(ctx)
    raw = _read_stdin()

    with runtime.logger.operation(
        "restore",
        args={"stdin_bytes": len(raw)},
        target={"kind": "task", "task": "restore"},
    ) as op:
        task = RestoreTask(config=runtime.config, runner=runtime.runner, scope=op)
        try:
            result = task.run(raw)
        except TaskError as exc:
            _report_failure(op, exc)

        console.print_json(data=success_document(result.to_dict()))
        op.success(
            f"Restored backup {result.plan.timestamp} from {result.plan.backup_dir}.",
            changed=len(result.plan.restored),
            context={
                "timestamp": result.plan.timestamp,
                "restored": result.plan.restored,
                "skipped": result.plan.skipped,
            },
        )


@app.command("metadata")
def metadata(
    ctx: typer.Context,
    task: TaskName = typer.Argument(..., help="Task to describe."),
) -> None:
    """Print the task metadata document used to register a task."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "metadata",
        args={"task": task.value},
        target={"kind": "meta", "scope": "metadata"},
    ) as op:
        console.print_json(data=task_metadata(task.value))
        op.success(f"Rendered {task.value} task metadata.", changed=0)


@config_app.command("show")
def config_show(
    ctx: typer.Context,
    json_output: bool = typer.Option(
        False,
        "--json",
        help="Emit configuration as JSON instead of a table.",
    ),
) -> None:
    """Display the effective configuration after merges."""
    runtime = _get_runtime(ctx)
    data = runtime.config.to_dict()

    with runtime.logger.operation(
        "config show",
        args={"json": json_output},
        target={"kind": "config"},
    ) as op:
        if json_output:
            console.print_json(data=data)
            op.success("Rendered configuration as JSON.", changed=0)
            return

        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Key", style="bold")
        table.add_column("Value")

        for key, value in data.items():
            if isinstance(value, dict):
                rendered = json.dumps(value, indent=2, sort_keys=True)
            else:
                rendered = str(value)
            table.add_row(key, rendered)

        console.print(table)
        op.success("Rendered configuration table.", changed=0)


def main() -> None:
    """Console script entry point."""
    app()


__all__ = ["app", "main"]
