"""
Shared start-up for CLI commands: config, logging, tasks, ledger.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import typer

from ferry.config.loader import Config, load_config
from ferry.config.tasks import Task, load_tasks
from ferry.exceptions import ConfigurationError, LedgerIOError
from ferry.sync.ledger import HistoryLedger
from ferry.utils.logging import get_logger, setup_logging_from_config

logger = get_logger("ferry.cli")


@dataclass
class Project:
    config: Config
    tasks: list[Task]
    ledger: HistoryLedger


def load_project(config_path: Path, *, env: str | None = None, history_path: Path | None = None) -> Project:
    """
    Load config and tasks, configure logging, and load the ledger.

    A ledger that cannot be loaded is reported as a warning and the run
    continues with an empty one. Configuration errors end the command.
    """
    try:
        config = load_config(config_path, env=env)
        setup_logging_from_config(config.data, base_dir=config.base_dir)
        tasks = load_tasks(config)
    except ConfigurationError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1) from e

    ledger = HistoryLedger(history_path or config.history_path)
    try:
        ledger.load()
    except LedgerIOError as e:
        logger.warning(f"Failed to load history, starting empty: {e}")

    return Project(config=config, tasks=tasks, ledger=ledger)
