"""Rich console rendering for scan results, plans and history."""

from __future__ import annotations

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from hostdoctor.diagnostics.result import DiagnosticResult, PhaseStatus, Severity
from hostdoctor.history.store import MetricDelta, ScanSnapshot, format_mb
from hostdoctor.optimize.actions import (
    ActionStatus,
    ActionType,
    OptimizationAction,
    OptimizationSummary,
    VerificationStatus,
)
from hostdoctor.rollback.journal import RestoreResult

_SEVERITY_STYLE = {
    Severity.CRITICAL: "bold red",
    Severity.WARNING: "yellow",
    Severity.INFO: "cyan",
}
_STATUS_STYLE = {
    ActionStatus.SUCCESS: "green",
    ActionStatus.PARTIAL_SUCCESS: "yellow",
    ActionStatus.NO_CHANGE: "dim",
    ActionStatus.FAILED: "red",
    ActionStatus.SKIPPED: "dim",
}
_VERIFY_STYLE = {
    VerificationStatus.VERIFIED: "green",
    VerificationStatus.PARTIALLY_VERIFIED: "yellow",
    VerificationStatus.NOT_VERIFIED: "red",
    VerificationStatus.REQUIRES_REBOOT: "magenta",
}


def score_style(score: int) -> str:
    if score >= 80:
        return "bold green"
    if score >= 50:
        return "bold yellow"
    return "bold red"


def render_result(console: Console, result: DiagnosticResult) -> None:
    sysinfo = result.system
    header = (
        f"[{score_style(result.health_score)}]Health score: {result.health_score}/100[/]\n"
        f"{sysinfo.hostname or 'unknown host'} · {sysinfo.os_name} {sysinfo.os_version} · "
        f"scanned in {result.scan_duration_seconds:.1f}s"
    )
    console.print(Panel(header, title="HostDoctor scan", style="bold blue"))

    gaps = [p for p in result.phase_outcomes if p.status != PhaseStatus.COMPLETED]
    if gaps:
        console.print(
            "[dim]Incomplete phases: "
            + ", ".join(f"{p.name} ({p.status.value})" for p in gaps)
            + "[/dim]",
        )

    if not result.flagged_issues:
        console.print("[green]No issues found.[/green]")
        return

    table = Table(title=f"{len(result.flagged_issues)} issue(s)", show_lines=False)
    table.add_column("Severity")
    table.add_column("Category")
    table.add_column("Issue")
    table.add_column("Recommendation", style="dim")
    for issue in result.flagged_issues:
        style = _SEVERITY_STYLE[issue.severity]
        table.add_row(
            f"[{style}]{issue.severity.value}[/]",
            issue.category,
            issue.description,
            issue.recommendation,
        )
    console.print(table)


def render_plan(console: Console, actions: list[OptimizationAction]) -> None:
    if not actions:
        console.print("[green]Nothing to optimize.[/green]")
        return
    table = Table(title="Proposed actions")
    table.add_column("", width=3)
    table.add_column("Key", style="dim")
    table.add_column("Action")
    table.add_column("Type")
    table.add_column("Risk")
    table.add_column("Impact")
    table.add_column("Est.", justify="right")
    for action in actions:
        mark = "[x]" if action.is_selected else ("[ ]" if action.type == ActionType.AUTO_FIX else " ")
        est = format_mb(action.estimated_free_mb) if action.estimated_free_mb else action.estimated_duration
        table.add_row(
            mark,
            action.action_key,
            action.title,
            action.type.value,
            action.risk.value,
            action.impact.value,
            est,
        )
    console.print(table)


def render_summary(
    console: Console, summary: OptimizationSummary, actions: list[OptimizationAction],
) -> None:
    title = "Optimization cancelled" if summary.cancelled else "Optimization complete"
    console.print(Panel(
        f"{summary.success_count} succeeded · {summary.failure_count} failed · "
        f"{format_mb(summary.total_freed_mb)} freed",
        title=title,
        style="bold yellow" if summary.cancelled or summary.failure_count else "bold green",
    ))

    ran = [a for a in actions if a.status != ActionStatus.PENDING and a.type != ActionType.MANUAL_ONLY]
    if not ran:
        return
    table = Table()
    table.add_column("Action")
    table.add_column("Status")
    table.add_column("Verification")
    table.add_column("Result", style="dim")
    for action in ran:
        status_style = _STATUS_STYLE.get(action.status, "")
        verify_style = _VERIFY_STYLE.get(action.verification, "dim")
        table.add_row(
            action.title,
            f"[{status_style}]{action.status.value}[/]",
            f"[{verify_style}]{action.verification.value}[/]",
            action.verification_message or action.result_message,
        )
    console.print(table)


def render_history(console: Console, snapshots: list[ScanSnapshot], deltas: list[MetricDelta]) -> None:
    if not snapshots:
        console.print("[dim]No scans recorded yet.[/dim]")
        return
    table = Table(title=f"Last {len(snapshots)} scan(s)")
    table.add_column("When")
    table.add_column("Score", justify="right")
    table.add_column("RAM", justify="right")
    table.add_column("Disk free", justify="right")
    table.add_column("Critical", justify="right")
    table.add_column("Warnings", justify="right")
    for snap in snapshots:
        table.add_row(
            snap.timestamp.strftime("%Y-%m-%d %H:%M"),
            f"[{score_style(snap.health_score)}]{snap.health_score}[/]",
            f"{snap.ram_used_percent:.0f}%",
            format_mb(snap.disk_free_mb),
            str(snap.critical_count),
            str(snap.warning_count),
        )
    console.print(table)

    if deltas:
        console.print("\n[bold]Since previous scan:[/bold]")
        for d in deltas:
            arrow = "[green]▲ better[/green]" if d.direction > 0 else "[red]▼ worse[/red]"
            console.print(f"  {d.label}: {d.before} → {d.after}  {arrow}")


def render_restore(console: Console, results: list[RestoreResult]) -> None:
    for r in results:
        mark = "[green]✓[/green]" if r.success else "[red]✗[/red]"
        label = f"{r.action_key}: " if r.action_key else ""
        console.print(f"{mark} {label}{r.message}")
