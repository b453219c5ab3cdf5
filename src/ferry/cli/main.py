"""
Main CLI entry point.
"""

import typer

from ferry import __version__
from ferry.cli import config, history, run, serve


def version_callback(value: bool):
    """Callback to display version and exit."""
    if value:
        typer.echo(f"ferry version {__version__}")
        raise typer.Exit()


app = typer.Typer(
    name="ferry",
    help="Ferry - scheduled file transfer between local disk, SFTP and FTP",
    add_completion=True,
)

# Register subcommands
app.add_typer(serve.app, name="serve")
app.add_typer(run.app, name="run")
app.add_typer(history.app, name="history")
app.add_typer(config.app, name="config")


@app.callback(invoke_without_command=True)
def entrypoint(
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        "-v",
        callback=version_callback,
        help="Show version and exit.",
    ),
):
    """
    Ferry - scheduled file transfer between local disk, SFTP and FTP.

    Run 'ferry <command> --help' for help on a specific command.
    """
    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())
        raise typer.Exit()


def main():
    """Main CLI entry point."""
    app()


if __name__ == "__main__":
    main()
