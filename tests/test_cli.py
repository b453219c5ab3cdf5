"""
Tests for CLI commands.

Uses typer's CliRunner against local-to-local tasks in tmp_path.
"""

import asyncio
import json

import pytest
from typer.testing import CliRunner

from ferry.cli.main import app

runner = CliRunner()


def _project(tmp_path, **task_overrides):
    src = tmp_path / "in"
    dst = tmp_path / "out"
    src.mkdir()
    (src / "a.csv").write_text("a")
    (src / "b.txt").write_text("b")

    task = {
        "name": "copy-csv",
        "cron": "0 * * * *",
        "source_type": "local",
        "source_path": str(src),
        "target_type": "local",
        "target_path": str(dst),
        "source_regex": r"^.*\.csv$",
    }
    task.update(task_overrides)
    config = {
        "history_file": "history.json",
        "logging": {"console_enabled": False},
        "tasks": [task],
    }
    path = tmp_path / "config.yaml"
    # JSON is valid YAML
    path.write_text(json.dumps(config))
    return path


class TestVersion:
    """Tests for --version flag."""

    def test_version_flag(self):
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert "ferry version" in result.output

    def test_version_short_flag(self):
        result = runner.invoke(app, ["-v"])
        assert result.exit_code == 0
        assert "ferry version" in result.output


class TestHelp:
    """Tests for help output."""

    def test_help(self):
        result = runner.invoke(app, ["--help"])
        assert result.exit_code == 0
        assert "ferry" in result.output.lower()

    def test_no_args_shows_help(self):
        result = runner.invoke(app, [])
        assert result.exit_code == 0
        assert "serve" in result.output

    @pytest.mark.parametrize("command", ["serve", "run", "history", "config"])
    def test_command_help(self, command):
        result = runner.invoke(app, [command, "--help"])
        assert result.exit_code == 0


class TestRun:
    """Tests for the run command."""

    def test_run_all(self, tmp_path):
        config = _project(tmp_path)

        result = runner.invoke(app, ["run", "-c", str(config)])

        assert result.exit_code == 0, result.output
        assert "Run summary" in result.output
        assert (tmp_path / "out" / "a.csv").read_text() == "a"
        assert not (tmp_path / "out" / "b.txt").exists()
        history = json.loads((tmp_path / "history.json").read_text())
        assert list(history["copy-csv"]["records"]) == ["a.csv"]

    def test_run_is_idempotent(self, tmp_path):
        config = _project(tmp_path)
        runner.invoke(app, ["run", "-c", str(config)])
        (tmp_path / "out" / "a.csv").write_text("changed downstream")

        result = runner.invoke(app, ["run", "-c", str(config)])

        assert result.exit_code == 0
        assert (tmp_path / "out" / "a.csv").read_text() == "changed downstream"

    def test_run_named_task(self, tmp_path):
        config = _project(tmp_path)

        result = runner.invoke(app, ["run", "-c", str(config), "copy-csv"])

        assert result.exit_code == 0, result.output

    def test_run_unknown_task(self, tmp_path):
        config = _project(tmp_path)

        result = runner.invoke(app, ["run", "-c", str(config), "nope"])

        assert result.exit_code == 1
        assert not (tmp_path / "out").exists()

    def test_run_aborted_task_exits_nonzero(self, tmp_path):
        config = _project(tmp_path, source_regex="([bad")

        result = runner.invoke(app, ["run", "-c", str(config)])

        assert result.exit_code == 1
        assert "aborted" in result.output

    def test_run_history_override(self, tmp_path):
        config = _project(tmp_path)
        override = tmp_path / "elsewhere" / "h.json"

        result = runner.invoke(app, ["run", "-c", str(config), "--history", str(override)])

        assert result.exit_code == 0
        assert override.exists()
        assert not (tmp_path / "history.json").exists()

    def test_run_missing_config(self, tmp_path):
        result = runner.invoke(app, ["run", "-c", str(tmp_path / "missing.yaml")])
        assert result.exit_code == 1


class TestHistory:
    """Tests for the history command."""

    def test_history_lists_transfers(self, tmp_path):
        config = _project(tmp_path)
        runner.invoke(app, ["run", "-c", str(config)])

        result = runner.invoke(app, ["history", "-c", str(config)])

        assert result.exit_code == 0
        assert "copy-csv" in result.output
        assert "a.csv" in result.output

    def test_history_empty(self, tmp_path):
        config = _project(tmp_path)

        result = runner.invoke(app, ["history", "-c", str(config)])

        assert result.exit_code == 0
        assert "empty" in result.output

    def test_history_unknown_task(self, tmp_path):
        config = _project(tmp_path)

        result = runner.invoke(app, ["history", "-c", str(config), "--task", "nope"])

        assert result.exit_code == 0
        assert "No history" in result.output


class TestConfigCommand:
    """Tests for the config command."""

    def test_valid_config(self, tmp_path):
        config = _project(tmp_path)

        result = runner.invoke(app, ["config", "-c", str(config)])

        assert result.exit_code == 0, result.output
        assert "Tasks (1)" in result.output

    def test_invalid_cron(self, tmp_path):
        config = _project(tmp_path, cron="every tuesday")

        result = runner.invoke(app, ["config", "-c", str(config)])

        assert result.exit_code == 1

    def test_invalid_task(self, tmp_path):
        config = _project(tmp_path, target_type="s3")

        result = runner.invoke(app, ["config", "-c", str(config)])

        assert result.exit_code == 1
        assert "Invalid configuration" in result.output


class TestServe:
    """Tests for the serve command and its service loop."""

    def test_serve_without_tasks(self, tmp_path):
        config = tmp_path / "config.yaml"
        config.write_text("tasks: []\nlogging:\n  console_enabled: false\n")

        result = runner.invoke(app, ["serve", "-c", str(config)])

        assert result.exit_code == 1

    @pytest.mark.asyncio
    async def test_run_service_runs_then_saves_on_stop(self, tmp_path):
        from ferry.cli.common import load_project
        from ferry.cli.serve import run_service

        project = load_project(_project(tmp_path))
        stop = asyncio.Event()
        stop.set()

        await run_service(project, stop_event=stop, install_signal_handlers=False)

        assert (tmp_path / "out" / "a.csv").exists()
        history = json.loads((tmp_path / "history.json").read_text())
        assert "a.csv" in history["copy-csv"]["records"]

    @pytest.mark.asyncio
    async def test_run_service_without_initial_run(self, tmp_path):
        from ferry.cli.common import load_project
        from ferry.cli.serve import run_service

        project = load_project(_project(tmp_path))
        stop = asyncio.Event()
        stop.set()

        await run_service(project, run_immediately=False, stop_event=stop, install_signal_handlers=False)

        assert not (tmp_path / "out").exists()
        assert (tmp_path / "history.json").exists()
