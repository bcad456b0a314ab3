"""Human-readable rendering of diagnostic reports."""
from __future__ import annotations

from collections.abc import Mapping

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from .models import OverallStatus, Report, Severity

_SEVERITY_STYLE = {
    Severity.OK: "[green]PASS[/green]",
    Severity.WARNING: "[yellow]WARN[/yellow]",
    Severity.ERROR: "[red]FAIL[/red]",
}
_STATUS_STYLE = {
    OverallStatus.HEALTHY: "[green]HEALTHY[/green]",
    OverallStatus.DEGRADED: "[yellow]DEGRADED[/yellow]",
    OverallStatus.UNHEALTHY: "[red]UNHEALTHY[/red]",
}
_STATUS_MESSAGES = {
    OverallStatus.HEALTHY: "No issues detected! Database connection is healthy.",
    OverallStatus.DEGRADED: "Database connection works but needs attention.",
    OverallStatus.UNHEALTHY: "Database connection is unhealthy.",
}
USEFUL_LINKS: tuple[tuple[str, str], ...] = (
    (
        "PostgreSQL connection strings",
        "https://www.postgresql.org/docs/current/libpq-connect.html",
    ),
    (
        "Connection settings",
        "https://www.postgresql.org/docs/current/runtime-config-connection.html",
    ),
    (
        "pg_stat_activity",
        "https://www.postgresql.org/docs/current/monitoring-stats.html",
    ),
)
_RULE = "=" * 50


def _render_parameters(console: Console, descriptor: Mapping[str, object] | None) -> None:
    console.print("[bold]Parameters[/bold]")
    if not descriptor:
        console.print("  Connection string could not be parsed.")
        return
    pooling = descriptor.get("pooling_params")
    pooling_text = (
        ", ".join(str(item) for item in pooling)
        if isinstance(pooling, list) and pooling
        else "none"
    )
    rows = (
        ("URL", descriptor.get("url")),
        ("Host", descriptor.get("host")),
        ("Port", descriptor.get("port") or "not specified"),
        ("Database", descriptor.get("database") or "not specified"),
        ("User", descriptor.get("user") or "not specified"),
        ("SSL", descriptor.get("ssl_mode") or "not specified"),
        ("Pooling", pooling_text),
    )
    for label, value in rows:
        console.print(f"  {label}: {escape(str(value))}")


def _render_findings(console: Console, report: Report) -> None:
    table = Table("Status", "Probe", "Result", "Duration")
    for finding in report.findings:
        duration = f"{finding.duration_ms} ms" if finding.duration_ms is not None else "-"
        table.add_row(
            _SEVERITY_STYLE[finding.severity],
            finding.probe,
            escape(finding.message),
            duration,
        )
    console.print(table)
    skipped = (report.metadata or {}).get("skipped_probes")
    if isinstance(skipped, list) and skipped:
        console.print(f"Skipped probes: {', '.join(str(item) for item in skipped)}")


def render_report(report: Report, console: Console, *, show_links: bool = True) -> None:
    """Render *report* as a multi-section text report."""
    metadata = report.metadata or {}
    console.print("[bold]Database Connection Diagnostic[/bold]")
    console.print(_RULE)
    _render_parameters(console, metadata.get("descriptor"))
    console.print()
    _render_findings(console, report)

    summary = report.summary
    console.print()
    console.print(_RULE)
    console.print(
        f"Diagnostic summary: {_STATUS_STYLE[summary.status]} (exit={summary.exit_code})"
    )
    console.print(_RULE)
    issues = [finding for finding in report.findings if finding.severity is not Severity.OK]
    if not issues:
        console.print(_STATUS_MESSAGES[summary.status])
    else:
        console.print(f"{_STATUS_MESSAGES[summary.status]} Found {len(issues)} issue(s):")
        for finding in issues:
            console.print(f"  {_SEVERITY_STYLE[finding.severity]} {escape(finding.message)}")

    if report.recommendations:
        console.print()
        console.print("[bold]Recommendations:[/bold]")
        for recommendation in report.recommendations:
            console.print(
                f"  - [{recommendation.category.value}] {recommendation.text}",
                markup=False,
            )

    if show_links:
        console.print()
        console.print("[bold]Useful links:[/bold]")
        for label, url in USEFUL_LINKS:
            console.print(f"  {label}: {url}")


__all__ = ["USEFUL_LINKS", "render_report"]
