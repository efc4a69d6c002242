import json
from typing import Optional

import typer
from rich import print
from rich.markup import escape
from rich.table import Table
from rich.console import Console

from .adapters import SQLiteAdapter
from .config import config_from_mapping, load_config
from .errors import RetryctlError
from .executor import Executor
from .job import resolve_job_class
from .log import setup_logging
from .storage import (
    DEAD_STATES, list_jobs, counts_by_state, list_workers,
    config_all, config_get, config_set, get_job, reset_lineage
)
from .worker import start_workers

app = typer.Typer(help="retryctl - background jobs with declarative retry and discard rules.")

# Sub-apps so CLI supports commands like:
#   retryctl worker start --count 3
#   retryctl config set poll_interval 0.5
worker_app = typer.Typer(help="Start and stop worker processes.")
config_app = typer.Typer(help="Read and write configuration keys.")

app.add_typer(worker_app, name="worker")
app.add_typer(config_app, name="config")


def _fmt(value) -> str:
    return "" if value is None else str(value)


# -----------------------------
# Enqueue
# -----------------------------
@app.command()
def enqueue(
    job_class: str = typer.Argument(..., help="Job class as module:ClassName"),
    args: Optional[str] = typer.Argument(None, help="JSON array of arguments, e.g. '[1, \"two\"]'"),
    wait: Optional[float] = typer.Option(None, "--wait", help="Delay in seconds before the first run"),
    queue: Optional[str] = typer.Option(None, "--queue", help="Queue name"),
    priority: Optional[int] = typer.Option(None, "--priority", help="Priority (higher first)"),
):
    """Add a new job to the queue."""
    arguments = []
    if args:
        try:
            arguments = json.loads(args)
        except json.JSONDecodeError as e:
            raise typer.BadParameter(f"Invalid JSON: {e.msg}")
        if not isinstance(arguments, list):
            raise typer.BadParameter("Arguments must be a JSON array")

    try:
        cls = resolve_job_class(job_class)
        executor = Executor(SQLiteAdapter(), config=load_config())
        descriptor = executor.enqueue(cls, *arguments, wait=wait, queue=queue, priority=priority)
    except RetryctlError as e:
        print(f"[red]{escape(e.message)}[/red]")
        raise typer.Exit(1)
    print(f"[green]Enqueued[/green] job [bold]{descriptor.id}[/bold] ({descriptor.job_class})")


# -----------------------------
# Worker controls
# -----------------------------
@worker_app.command("start")
def worker_start(
    count: int = typer.Option(1, "--count", "-c", help="Number of worker processes"),
    reset_shutdown: bool = typer.Option(True, help="Set shutdown=false before start"),
):
    """Start worker processes."""
    if reset_shutdown:
        config_set("shutdown", "false")
    setup_logging(load_config().log_level)
    print(f"Starting {count} worker(s). Ctrl+C to stop.")
    start_workers(count)


@worker_app.command("stop")
def worker_stop():
    """Signal workers to stop gracefully (finish current job)."""
    config_set("shutdown", "true")
    print("[yellow]Set shutdown=true. Workers will exit after finishing the current job.[/yellow]")


# -----------------------------
# Status & listing
# -----------------------------
@app.command()
def status():
    """Show job state counts and active workers."""
    console = Console()
    tbl = Table(title="Jobs")
    tbl.add_column("State")
    tbl.add_column("Count")
    for state, count in counts_by_state():
        tbl.add_row(state, str(count))
    console.print(tbl)

    wt = Table(title="Active Workers")
    wt.add_column("worker_id")
    wt.add_column("pid")
    wt.add_column("started_at")
    for w in list_workers():
        wt.add_row(w["id"], str(w["pid"]), w["started_at"])
    console.print(wt)


def _jobs_table(title: str, jobs) -> Table:
    t = Table(title=title)
    for c in ["id", "job_class", "state", "executions", "queue", "priority", "scheduled_at", "last_error"]:
        t.add_column(c)
    for j in jobs:
        t.add_row(
            j.id,
            j.job_class,
            j.state.value,
            str(j.executions),
            j.queue,
            str(j.priority),
            _fmt(j.scheduled_at),
            (j.last_error or "")[:80],
        )
    return t


@app.command("list")
def list_cmd(state: Optional[str] = typer.Option(None, "--state", help="Filter by state")):
    """List jobs, optionally by state."""
    Console().print(_jobs_table(f"Jobs{'' if not state else f' ({state})'}", list_jobs(state)))


@app.command()
def show(job_id: str):
    """Show one job, including its per-rule attempt counters."""
    job = get_job(job_id)
    if job is None:
        print(f"[red]Not found:[/red] {job_id}")
        raise typer.Exit(1)
    Console().print_json(job.model_dump_json())


# -----------------------------
# Cancel, dead jobs, retry
# -----------------------------
@app.command()
def cancel(job_id: str):
    """Cancel a pending or retrying job before it runs again."""
    if not SQLiteAdapter().cancel(job_id):
        print(f"[red]No pending job:[/red] {job_id}")
        raise typer.Exit(1)
    print(f"[yellow]Cancelled[/yellow] {job_id}")


@app.command()
def dead():
    """List jobs that escalated or exhausted their retries."""
    jobs = [j for state in DEAD_STATES for j in list_jobs(state)]
    Console().print(_jobs_table("Dead jobs", jobs))


@app.command()
def retry(job_id: str):
    """Re-queue a dead, discarded or cancelled job as a new lineage (attempt counters start over)."""
    if not reset_lineage(job_id):
        print(f"[red]Not a finished job:[/red] {job_id}")
        raise typer.Exit(1)
    print(f"[green]Re-queued[/green] {job_id}")


# -----------------------------
# Config
# -----------------------------
@config_app.command("set")
def config_set_cmd(key: str = typer.Argument(..., help="Config key"), value: str = typer.Argument(..., help="Value")):
    values = config_all()
    values[key] = value
    try:
        config_from_mapping(values)
    except RetryctlError as e:
        print(f"[red]{escape(e.message)}[/red]")
        raise typer.Exit(1)
    config_set(key, value)
    print(f"set {key}={value}")


@config_app.command("get")
def config_get_cmd(key: str = typer.Argument(..., help="Config key")):
    print(config_get(key, ""))


def main():
    app()
