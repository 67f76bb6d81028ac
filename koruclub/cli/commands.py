"""KoruClub CLI — Typer-based command-line interface."""

from __future__ import annotations

import typer
from rich.console import Console
from rich.table import Table

from koruclub import __version__

app = typer.Typer(
    name="koruclub",
    help="koruclub - sprint goal-tracking bot for WhatsApp groups",
    no_args_is_help=True,
)

console = Console()

_STATUS_STYLE = {
    "completed": "green",
    "manual": "green",
    "skipped": "dim",
    "pending": "yellow",
    "missed": "red",
    "failed": "red",
}


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"koruclub v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        None, "--version", "-v", callback=_version_callback, is_eager=True
    ),
) -> None:
    """koruclub - sprint goal-tracking bot for WhatsApp groups."""


def _open_ledger():
    from koruclub.core.config.loader import load_config
    from koruclub.memory.ledger import JobLedger

    config = load_config()
    return config, JobLedger(config.database.path)


# ════════════════════════════════════════════════════════════
# run — start API server (webhook + scheduler)
# ════════════════════════════════════════════════════════════


@app.command()
def run(
    port: int = typer.Option(8000, "--port", "-p", help="Port number"),
    host: str = typer.Option("0.0.0.0", "--host", "-h", help="Host address"),
    reload: bool = typer.Option(False, "--reload", help="Enable auto-reload"),
) -> None:
    """Start the API server (uvicorn)."""
    import uvicorn

    console.print(f"[green]Starting koruclub on {host}:{port}[/green]")
    uvicorn.run("koruclub.api.app:app", host=host, port=port, reload=reload)


# ════════════════════════════════════════════════════════════
# status — config + DB info
# ════════════════════════════════════════════════════════════


@app.command()
def status() -> None:
    """Show configuration, heartbeat and goal counts."""
    from koruclub.memory.store import MemoryStore

    config, ledger = _open_ledger()
    store = MemoryStore(config.database.path)
    state = ledger.get_state()

    table = Table(title="koruclub status")
    table.add_column("Key", style="cyan")
    table.add_column("Value", style="green")

    table.add_row("Version", __version__)
    table.add_row("Timezone", config.scheduler.timezone)
    table.add_row("Target Group", config.whatsapp.target_group or "-")
    table.add_row("LLM Model", config.llm.model if config.llm.enabled else "disabled")
    table.add_row("DB Path", config.database.path)
    table.add_row("Last Heartbeat", f"{state.last_heartbeat:%Y-%m-%d %H:%M:%S}" if state else "never")
    table.add_row("Missed Jobs", str(len(ledger.get_missed_jobs())))
    table.add_row("Goals", str(store.count_goals()))

    console.print(table)


# ════════════════════════════════════════════════════════════
# jobs — sprint schedule + ledger (sub-command group)
# ════════════════════════════════════════════════════════════

jobs_app = typer.Typer(help="Inspect the sprint schedule and job ledger")
app.add_typer(jobs_app, name="jobs")


@jobs_app.command("next")
def jobs_next() -> None:
    """Show the next occurrence of every sprint job."""
    from koruclub.core.config.loader import load_config
    from koruclub.core.schedule.calendar import all_next_occurrences, format_when, now_local

    config = load_config()
    table = Table(title="Upcoming")
    table.add_column("Job", style="cyan")
    table.add_column("When", style="green")

    for occurrence in all_next_occurrences(now_local(config.scheduler.timezone)):
        table.add_row(occurrence.label, format_when(occurrence.date))

    console.print(table)


@jobs_app.command("missed")
def jobs_missed() -> None:
    """List jobs that were due while the bot was offline."""
    from koruclub.core.schedule.types import job_spec

    config, ledger = _open_ledger()
    missed = ledger.get_missed_jobs()
    if not missed:
        console.print("[dim]No missed jobs.[/dim]")
        return

    table = Table(title="Missed Jobs")
    table.add_column("Job", style="cyan")
    table.add_column("Scheduled For", style="red")
    table.add_column("Resolve With", style="yellow")
    for run in missed:
        table.add_row(
            run.label,
            f"{run.scheduled_for:%Y-%m-%d %H:%M}",
            config.command(job_spec(run.job_type).command),
        )
    console.print(table)


@jobs_app.command("history")
def jobs_history(
    limit: int = typer.Option(20, "--limit", "-n", help="Number of runs"),
    job: str | None = typer.Option(None, "--job", "-j", help="Filter by job (kickoff, review, ...)"),
) -> None:
    """Show recent ledger entries, newest first."""
    from koruclub.core.schedule.types import job_type_from_command

    job_type = None
    if job:
        job_type = job_type_from_command(job)
        if job_type is None:
            console.print(f"[red]Unknown job:[/red] {job}")
            raise typer.Exit(code=1)

    _, ledger = _open_ledger()
    runs = ledger.get_recent_runs(limit=limit, job_type=job_type)
    if not runs:
        console.print("[dim]No job runs recorded.[/dim]")
        return

    table = Table(title="Job History")
    table.add_column("Job", style="cyan")
    table.add_column("Scheduled For")
    table.add_column("Status")
    table.add_column("Detail", style="dim")
    for run in runs:
        style = _STATUS_STYLE.get(run.status.value, "white")
        table.add_row(
            run.label,
            f"{run.scheduled_for:%Y-%m-%d %H:%M}",
            f"[{style}]{run.status.value}[/{style}]",
            run.skipped_reason or run.error or run.message_id or "-",
        )
    console.print(table)
