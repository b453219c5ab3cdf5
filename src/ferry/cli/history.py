"""
ferry history - Show the transfer ledger.
"""

from pathlib import Path

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from ferry.cli.common import load_project

app = typer.Typer(name="history", help="Show transferred files per task", invoke_without_command=True)

console = Console()


@app.callback()
def history(
    ctx: typer.Context,
    task: str | None = typer.Option(None, "--task", "-t", help="Only show this task"),
    config_path: Path = typer.Option(Path("config.yaml"), "--config", "-c", help="Path to config file"),
    history_path: Path | None = typer.Option(None, "--history", help="Path to history file (default: from config)"),
    env: str | None = typer.Option(None, help="Environment overlay (config.<env>.yaml)"),
) -> None:
    """
    List every recorded transfer, newest first.
    """
    if ctx.invoked_subcommand is None:
        project = load_project(config_path, env=env, history_path=history_path)
        ledger = project.ledger

        names = [task] if task else sorted(ledger.task_names())
        if task and task not in ledger.task_names():
            console.print(f"[yellow]No history for task: {task}[/yellow]")
            return
        if not names:
            console.print("[yellow]History is empty[/yellow]")
            return

        for name in names:
            records = ledger.get_task_history(name).snapshot()
            table = Table(title=f"{name} ({len(records)} file(s))", show_header=True)
            table.add_column("Path", style="cyan")
            table.add_column("Transferred at", style="green")
            for path, ts in sorted(records.items(), key=lambda item: item[1], reverse=True):
                table.add_row(escape(path), ts.isoformat(timespec="seconds"))
            console.print(table)
