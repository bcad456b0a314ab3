"""Typer-powered command line entry point for ``dbdoctor``."""
from __future__ import annotations

import json
import textwrap
from dataclasses import dataclass, replace
from pathlib import Path

import typer
from rich.console import Console

from . import get_version
from .config import AppConfig, ConfigError, load_config
from .doctor import (
    DiagnosticRunner,
    OverallStatus,
    Report,
    Severity,
    serialize_report,
)
from .doctor.render import render_report
from .exit_codes import ExitCode
from .logging import OperationScope, StructuredLogger

console = Console()

CONFIG_FILE_OPTION = typer.Option(
    None,
    "--config-file",
    dir_okay=False,
    help="Override the path to dbdoctor's YAML config file.",
)
CHECK_URL_OPTION = typer.Option(
    None,
    "--url",
    help="Connection string to diagnose (defaults to config, then $DATABASE_URL).",
)
CHECK_JSON_OPTION = typer.Option(
    False,
    "--json",
    help="Emit the diagnostic report as JSON.",
)
CHECK_REPETITIONS_OPTION = typer.Option(
    None,
    "--repetitions",
    min=1,
    help="Number of round-trips performed by the stability probe.",
)
CHECK_DELAY_MS_OPTION = typer.Option(
    None,
    "--delay-ms",
    min=0,
    help="Delay between stability round-trips in milliseconds.",
)
CHECK_TIMEOUT_MS_OPTION = typer.Option(
    None,
    "--timeout-ms",
    min=1,
    help="Per-query timeout in milliseconds (applies to connect and each probe query).",
)
CHECK_NO_LINKS_OPTION = typer.Option(
    False,
    "--no-links",
    help="Omit the useful-links section from the text report.",
)

_STATUS_MESSAGES = {
    OverallStatus.HEALTHY: "Database connection is healthy.",
    OverallStatus.DEGRADED: "Database connection completed with warnings.",
    OverallStatus.UNHEALTHY: "Database connection is unhealthy.",
}

app = typer.Typer(
    add_completion=False,
    help=textwrap.dedent(
        """
        Database connectivity diagnostics.

        Runs an ordered set of read-only probes against a PostgreSQL
        connection string and exits non-zero when the connection is not
        healthy, so it can gate CI jobs and on-call runbooks.
        """
    ).strip(),
)


@dataclass
class RuntimeContext:
    """Aggregated runtime objects shared by commands."""

    config: AppConfig
    logger: StructuredLogger


def _ensure_runtime(ctx: typer.Context, config_file: Path | None) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime
    try:
        config = load_config(config_file=config_file)
    except ConfigError as exc:
        console.print(f"[red]Configuration error: {exc}[/red]")
        raise typer.Exit(code=ExitCode.CONFIGURATION) from exc
    runtime = RuntimeContext(config=config, logger=StructuredLogger(config.logs_dir))
    ctx.obj = runtime
    return runtime


def _get_runtime(ctx: typer.Context) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime
    return _ensure_runtime(ctx, None)


@app.callback(invoke_without_command=True)
def _root(  # noqa: D401 - Typer displays help for us, docstring optional.
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show the dbdoctor version and exit.",
    ),
    config_file: Path | None = CONFIG_FILE_OPTION,
) -> None:
    """Entry point callback invoked for every CLI execution."""
    if version:
        console.print(f"dbdoctor {get_version()}")
        raise typer.Exit(code=0)

    _ensure_runtime(ctx, config_file)

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())
        raise typer.Exit(code=0)


def _collect_ids(report: Report, severity: Severity) -> list[str]:
    return [finding.probe for finding in report.findings if finding.severity is severity]


def _record_outcome(op: OperationScope, report: Report, payload: dict[str, object]) -> None:
    summary = report.summary
    warning_ids = _collect_ids(report, Severity.WARNING)
    error_ids = _collect_ids(report, Severity.ERROR)
    message = _STATUS_MESSAGES[summary.status]
    context = {"report": payload}
    if summary.status is OverallStatus.HEALTHY:
        op.success(message, context=context)
    elif summary.status is OverallStatus.DEGRADED and summary.exit_code == 0:
        op.warning(message, warnings=warning_ids or None, context=context)
    else:
        op.error(
            message,
            rc=summary.exit_code,
            errors=error_ids or None,
            warnings=warning_ids or None,
            context=context,
        )


@app.command()
def check(
    ctx: typer.Context,
    url: str | None = CHECK_URL_OPTION,
    json_output: bool = CHECK_JSON_OPTION,
    repetitions: int | None = CHECK_REPETITIONS_OPTION,
    delay_ms: int | None = CHECK_DELAY_MS_OPTION,
    timeout_ms: int | None = CHECK_TIMEOUT_MS_OPTION,
    no_links: bool = CHECK_NO_LINKS_OPTION,
) -> None:
    """Diagnose connectivity to the configured database."""
    runtime = _get_runtime(ctx)
    policy = runtime.config.probes
    overrides: dict[str, object] = {}
    if repetitions is not None:
        overrides["stability_repetitions"] = repetitions
    if delay_ms is not None:
        overrides["stability_delay_ms"] = delay_ms
    if timeout_ms is not None:
        overrides["query_timeout"] = timeout_ms / 1000.0
    if overrides:
        policy = replace(policy, **overrides)  # type: ignore[arg-type]

    connection_string = url or runtime.config.resolve_database_url()
    with runtime.logger.operation(
        "check",
        args={
            "url": "<provided>" if url else None,
            "json": json_output,
            "repetitions": repetitions,
            "delay_ms": delay_ms,
            "timeout_ms": timeout_ms,
        },
        target={"kind": "database", "scope": "connectivity"},
    ) as op:
        runner = DiagnosticRunner(policy)
        report = runner.run(connection_string, op=op)
        payload = serialize_report(report)

        if json_output:
            typer.echo(json.dumps(payload, indent=2))
        else:
            render_report(report, console, show_links=not no_links)

        _record_outcome(op, report, payload)
    raise typer.Exit(code=report.exit_code)


def main() -> None:
    """Console script entry point."""
    app()


__all__ = ["RuntimeContext", "app", "main"]
