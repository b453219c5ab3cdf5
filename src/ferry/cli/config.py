"""
ferry config - Validate configuration.

Loads the config file, validates every task and lists them.
"""

from pathlib import Path

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from ferry.config.loader import load_config
from ferry.config.tasks import load_tasks
from ferry.exceptions import ConfigurationError
from ferry.service.cron_parser import CronParseError, validate_cron

app = typer.Typer(name="config", help="Validate configuration and list tasks", invoke_without_command=True)

console = Console()


def _endpoint(kind: str, path: str, auth) -> str:
    if auth is None:
        return f"{kind}:{path}"
    return f"{kind}://{auth.user + '@' if auth.user else ''}{auth.host}:{auth.port}{path}"


@app.callback()
def config(
    ctx: typer.Context,
    config_path: Path = typer.Option(Path("config.yaml"), "--config", "-c", help="Path to config file"),
    env: str | None = typer.Option(None, help="Environment overlay (config.<env>.yaml)"),
):
    """
    Validate the configuration and list configured tasks.
    """
    if ctx.invoked_subcommand is None:
        try:
            cfg = load_config(config_path, env=env)
            tasks = load_tasks(cfg)
        except ConfigurationError as e:
            console.print(f"[red]Invalid configuration:[/red] {escape(str(e))}")
            raise typer.Exit(1) from e

        problems = 0
        table = Table(title=f"Tasks ({len(tasks)})", show_header=True)
        table.add_column("Name", style="cyan")
        table.add_column("Cron", style="green")
        table.add_column("Source")
        table.add_column("Target")
        table.add_column("Regex", style="dim")
        table.add_column("Retention", justify="right")
        table.add_column("Newer than", justify="right")

        for task in tasks:
            cron = task.cron
            try:
                validate_cron(task.cron)
            except CronParseError as e:
                problems += 1
                cron = f"[red]{escape(task.cron)} ({escape(str(e))})[/red]"
            table.add_row(
                task.name,
                cron,
                escape(_endpoint(task.source_type, task.source_path, task.source_auth)),
                escape(_endpoint(task.target_type, task.target_path, task.target_auth)),
                escape(task.source_regex),
                f"{task.retention_days}d" if task.retention_days > 0 else "-",
                f"{task.source_newer_days}d" if task.source_newer_days > 0 else "-",
            )

        console.print(table)
        console.print(f"\n[dim]History file: {cfg.history_path}[/dim]")
        if problems:
            raise typer.Exit(1)
