"""
ferry serve - Long-running scheduler.

Runs every configured task once at start-up and then on its cron cadence
until SIGINT/SIGTERM. On shutdown the scheduler stops triggering new runs,
waits for in-flight runs, and saves the history ledger.
"""

import asyncio
import signal
from pathlib import Path

import typer

from ferry.cli.common import Project, load_project
from ferry.exceptions import LedgerIOError
from ferry.service.scheduler import TaskScheduler
from ferry.sync.engine import TransferEngine
from ferry.utils.logging import get_logger

logger = get_logger("ferry.cli.serve")

app = typer.Typer(name="serve", help="Run the task scheduler until interrupted", invoke_without_command=True)


async def run_service(
    project: Project,
    *,
    run_immediately: bool = True,
    stop_event: asyncio.Event | None = None,
    install_signal_handlers: bool = True,
) -> None:
    """Run the scheduler until ``stop_event`` is set (or a stop signal arrives)."""
    stop_event = stop_event or asyncio.Event()
    loop = asyncio.get_running_loop()

    installed: list[signal.Signals] = []
    if install_signal_handlers:
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, stop_event.set)
                installed.append(sig)
            except (NotImplementedError, RuntimeError):
                # No signal support on this platform/thread; Ctrl+C still raises KeyboardInterrupt
                pass

    engine = TransferEngine(project.ledger)
    scheduler = TaskScheduler(project.tasks, engine, timezone=project.config.scheduler.get("timezone"))
    scheduler.start(run_immediately=run_immediately)
    logger.info(f"Ferry started with {len(project.tasks)} task(s)")

    try:
        await stop_event.wait()
    finally:
        logger.info("Shutting down...")
        await scheduler.stop(wait=True)
        try:
            project.ledger.save()
        except LedgerIOError as e:
            logger.warning(f"Failed to save history on shutdown: {e}")
        for sig in installed:
            loop.remove_signal_handler(sig)


@app.callback()
def serve(
    ctx: typer.Context,
    config_path: Path = typer.Option(Path("config.yaml"), "--config", "-c", help="Path to config file"),
    history_path: Path | None = typer.Option(None, "--history", help="Path to history file (default: from config)"),
    env: str | None = typer.Option(None, help="Environment overlay (config.<env>.yaml)"),
    no_initial_run: bool = typer.Option(False, "--no-initial-run", help="Skip the immediate run at start-up"),
) -> None:
    """
    Run the scheduler in the foreground.
    """
    if ctx.invoked_subcommand is None:
        project = load_project(config_path, env=env, history_path=history_path)
        if not project.tasks:
            typer.echo("No tasks configured", err=True)
            raise typer.Exit(1)
        asyncio.run(run_service(project, run_immediately=not no_initial_run))
