"""Entry point for the hostdoctor CLI."""

from __future__ import annotations

import argparse
import json
import logging
import sys
import threading
from collections.abc import Callable
from typing import Any

import uvicorn
from rich.console import Console
from rich.panel import Panel
from rich.prompt import Confirm

from hostdoctor import report
from hostdoctor.config import settings
from hostdoctor.history.store import changed, compare
from hostdoctor.optimize.actions import ActionType, OptimizationProgress
from hostdoctor.optimize.remediations import UnknownActionError
from hostdoctor.scan.phases import ScanProgress
from hostdoctor.service import HostDoctor

console = Console()
logging.basicConfig(
    level=getattr(logging, settings.log_level),
    format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
)


def _run_cancellable(doctor: HostDoctor, fn: Callable[[], Any]) -> Any:
    """Run ``fn`` on a worker thread so Ctrl+C can cancel it cooperatively."""
    box: dict[str, Any] = {}

    def _target() -> None:
        try:
            box["value"] = fn()
        except BaseException as e:
            box["error"] = e

    worker = threading.Thread(target=_target, name="hostdoctor-cli", daemon=True)
    worker.start()
    while worker.is_alive():
        try:
            worker.join(0.2)
        except KeyboardInterrupt:
            console.print("[yellow]Cancelling...[/yellow]")
            doctor.cancel()
    if "error" in box:
        raise box["error"]
    return box.get("value")


def run_scan(doctor: HostDoctor, as_json: bool = False):
    with console.status("[bold green]Scanning...") as status:
        def _progress(p: ScanProgress) -> None:
            status.update(f"[bold green][{p.index + 1}/{p.total}] {p.description}...")

        result = _run_cancellable(doctor, lambda: doctor.scan(on_progress=_progress))

    if result is None:
        console.print("[yellow]Scan cancelled; no result.[/yellow]")
        return None
    if as_json:
        console.print_json(json.dumps(result.to_dict()))
    else:
        report.render_result(console, result)
    return result


def run_shortcuts(doctor: HostDoctor, result, keys: list[str]) -> int:
    failed = 0
    for key in keys:
        try:
            doctor.open_shortcut(key, result)
        except UnknownActionError as e:
            console.print(f"[red]{e}[/red]")
            failed += 1
            continue
        console.print(f"[green]Opened[/green] {key}")
    return 1 if failed else 0


def run_optimize(
    doctor: HostDoctor,
    assume_yes: bool,
    select: list[str],
    skip_verify: bool,
    open_keys: list[str] | None = None,
) -> int:
    result = run_scan(doctor)
    if result is None:
        return 1
    if open_keys:
        return run_shortcuts(doctor, result, open_keys)

    actions = doctor.plan(result)
    if select:
        wanted = set(select)
        for action in actions:
            if action.type == ActionType.AUTO_FIX:
                action.is_selected = action.action_key in wanted
    report.render_plan(console, actions)

    selected = [a for a in actions if a.is_selected and a.type == ActionType.AUTO_FIX]
    if not selected:
        console.print("[dim]No automatic fixes selected.[/dim]")
        return 0
    if not assume_yes and not Confirm.ask(f"Run {len(selected)} selected action(s)?", default=False):
        return 0

    with console.status("[bold green]Optimizing...") as status:
        def _progress(p: OptimizationProgress) -> None:
            suffix = f" (may take ~{p.estimated_seconds // 60:.0f} min)" if p.is_long_running else ""
            status.update(f"[bold green][{p.index + 1}/{p.total}] {p.name}{suffix}")

        summary = _run_cancellable(
            doctor,
            lambda: doctor.optimize(result, actions, verify=not skip_verify, on_progress=_progress),
        )
    report.render_summary(console, summary, actions)
    if doctor.has_rollback():
        console.print("[dim]Changed settings can be undone with `hostdoctor restore`.[/dim]")
    return 0


def run_history(doctor: HostDoctor) -> None:
    snapshots = doctor.history.load()
    deltas = changed(compare(snapshots[-2], snapshots[-1])) if len(snapshots) >= 2 else []
    report.render_history(console, snapshots, deltas)


def run_restore(doctor: HostDoctor, assume_yes: bool) -> int:
    if not doctor.has_rollback():
        console.print("[dim]No rollback data found.[/dim]")
        return 0
    entries = doctor.journal.load_entries()
    if not assume_yes and not Confirm.ask(f"Restore {len(entries)} saved setting(s)?", default=False):
        return 0
    results = doctor.restore()
    report.render_restore(console, results)
    return 0 if all(r.success for r in results) else 1


def run_server() -> None:
    """Start the FastAPI server."""
    console.print(Panel("Starting HostDoctor API Server", style="bold green"))
    uvicorn.run(
        "hostdoctor.api.server:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=False,
    )


def main() -> None:
    parser = argparse.ArgumentParser(description="HostDoctor: machine health scan and repair")
    sub = parser.add_subparsers(dest="command")

    scan_parser = sub.add_parser("scan", help="Run a diagnostic scan")
    scan_parser.add_argument("--json", action="store_true", help="Print the raw result as JSON")

    opt_parser = sub.add_parser("optimize", help="Scan, then run selected fixes")
    opt_parser.add_argument("--yes", "-y", action="store_true", help="Do not ask for confirmation")
    opt_parser.add_argument(
        "--select", action="append", default=[], metavar="KEY",
        help="Run only these action keys (repeatable)",
    )
    opt_parser.add_argument("--skip-verify", action="store_true", help="Skip post-action verification")
    opt_parser.add_argument(
        "--open", action="append", default=[], metavar="KEY", dest="open_keys",
        help="Open these Shortcut actions instead of running fixes (repeatable)",
    )

    sub.add_parser("history", help="Show scan history and the latest changes")

    restore_parser = sub.add_parser("restore", help="Undo settings changed by optimizations")
    restore_parser.add_argument("--yes", "-y", action="store_true", help="Do not ask for confirmation")

    sub.add_parser("serve", help="Start the API server")

    args = parser.parse_args()

    if args.command == "serve":
        run_server()
        return
    if args.command is None:
        parser.print_help()
        sys.exit(1)

    doctor = HostDoctor(settings)
    if args.command == "scan":
        sys.exit(0 if run_scan(doctor, as_json=args.json) is not None else 1)
    elif args.command == "optimize":
        sys.exit(run_optimize(doctor, args.yes, args.select, args.skip_verify, args.open_keys))
    elif args.command == "history":
        run_history(doctor)
    elif args.command == "restore":
        sys.exit(run_restore(doctor, args.yes))


if __name__ == "__main__":
    main()
