"""
ferry run - Run tasks once.

Runs the selected tasks (default: all) one after another and prints a
summary. Exits non-zero if any task run was aborted.
"""

from pathlib import Path

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from ferry.cli.common import load_project
from ferry.exceptions import FerryError
from ferry.sync.engine import RunSummary, TransferEngine
from ferry.utils.logging import get_logger

logger = get_logger("ferry.cli.run")

app = typer.Typer(name="run", help="Run tasks once and exit", invoke_without_command=True)

console = Console()


def _summary_table(results: list[tuple[str, RunSummary | None, str]]) -> Table:
    table = Table(title="Run summary", show_header=True)
    table.add_column("Task", style="cyan")
    table.add_column("Status")
    table.add_column("Transferred", justify="right", style="green")
    table.add_column("Skipped", justify="right")
    table.add_column("Failed", justify="right", style="red")
    table.add_column("Removed", justify="right", style="yellow")
    table.add_column("Bytes", justify="right", style="dim")

    for name, summary, _ in results:
        if summary is None:
            table.add_row(name, "[red]aborted[/red]", "-", "-", "-", "-", "-")
            continue
        status = "[green]ok[/green]" if not (summary.failed or summary.failed_dirs) else "[yellow]partial[/yellow]"
        table.add_row(
            name,
            status,
            str(summary.transferred),
            str(summary.skipped),
            str(summary.failed + summary.failed_dirs),
            str(summary.removed),
            str(summary.bytes_copied),
        )
    return table


@app.callback()
def run(
    ctx: typer.Context,
    tasks: list[str] | None = typer.Argument(None, help="Specific tasks to run (default: all)"),
    config_path: Path = typer.Option(Path("config.yaml"), "--config", "-c", help="Path to config file"),
    history_path: Path | None = typer.Option(None, "--history", help="Path to history file (default: from config)"),
    env: str | None = typer.Option(None, help="Environment overlay (config.<env>.yaml)"),
) -> None:
    """
    Run tasks once, in order.
    """
    if ctx.invoked_subcommand is None:
        project = load_project(config_path, env=env, history_path=history_path)

        selected = project.tasks
        if tasks:
            known = {t.name for t in project.tasks}
            unknown = [name for name in tasks if name not in known]
            if unknown:
                typer.echo(f"Error: unknown task(s): {', '.join(unknown)}", err=True)
                raise typer.Exit(1)
            selected = [t for t in project.tasks if t.name in set(tasks)]

        if not selected:
            typer.echo("No tasks configured")
            raise typer.Exit(1)

        engine = TransferEngine(project.ledger)
        results: list[tuple[str, RunSummary | None, str]] = []
        for task in selected:
            try:
                results.append((task.name, engine.run_task(task), ""))
            except FerryError as e:
                logger.error(f"Task {task.name} failed: {e}")
                results.append((task.name, None, str(e)))

        console.print(_summary_table(results))
        for name, summary, error in results:
            if summary is None:
                console.print(f"[red]{name}:[/red] {escape(error)}")

        if any(summary is None for _, summary, _ in results):
            raise typer.Exit(1)
