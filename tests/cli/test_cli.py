"""
CLI tests using typer.testing.CliRunner.

Every command that touches persistence is pointed at a temporary SQLite
file with ``--store`` so tests never see the developer's data directory.
"""

from __future__ import annotations

import json
import logging

import pytest
import structlog
from typer.testing import CliRunner

from blockflow.cli import utils as cli_utils
from blockflow.cli.app import app
from blockflow.core import logging as bf_logging
from blockflow.core.logging import configure_logging
from blockflow.core.storage import SQLiteKeyValueStore
from blockflow.execution.models import ExecutionStatus
from blockflow.execution.state import StateStore

runner = CliRunner()

STORYBOARD = """\
metadata:
  id: storyboard
  name: Storyboard
spec:
  nodes:
    - id: a
      number: A01
      content: "Write a title"
    - id: b
      number: B01
      content: "Cover for [A01]"
  edges:
    - from: a
      to: b
"""

LOOP = """\
metadata:
  name: Loop
spec:
  nodes:
    - id: a
    - id: b
  edges:
    - {from: a, to: b}
    - {from: b, to: a}
"""


@pytest.fixture(autouse=True)
def _wide_console(monkeypatch):
    monkeypatch.setattr(cli_utils.console, "width", 200)


@pytest.fixture(autouse=True)
def _quiet_logging():
    configure_logging(level="WARNING", json_format=True, force=True)
    yield
    structlog.reset_defaults()
    bf_logging._configured = False
    logging.getLogger().handlers = []


@pytest.fixture
def workflows(tmp_path):
    directory = tmp_path / "workflows"
    directory.mkdir()
    (directory / "storyboard.yaml").write_text(STORYBOARD)
    (directory / "loop.yaml").write_text(LOOP)
    return directory


@pytest.fixture
def store_path(tmp_path):
    return str(tmp_path / "blockflow.db")


def _json(result):
    return json.loads(result.stdout)


class TestRoot:
    def test_version(self):
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert "blockflow 0.1.0" in result.stdout

    def test_help_lists_groups(self):
        result = runner.invoke(app, ["--help"])
        assert result.exit_code == 0
        for group in ("cron", "workflow", "schedule", "runs"):
            assert group in result.stdout


class TestCronCommands:
    def test_check_valid(self):
        result = runner.invoke(app, ["cron", "check", "0 9 * * *"])
        assert result.exit_code == 0
        assert "valid" in result.stdout
        assert "At 9:00" in result.stdout

    def test_check_invalid(self):
        result = runner.invoke(app, ["cron", "check", "0 25 * * *"])
        assert result.exit_code == 1
        assert "VALIDATION" in result.output

    def test_check_json(self):
        result = runner.invoke(app, ["cron", "check", "* * *", "--json"])
        assert result.exit_code == 1
        assert _json(result)["is_valid"] is False

    def test_next_runs(self):
        result = runner.invoke(app, ["cron", "next", "*/15 * * * *", "-n", "3", "--json"])
        assert result.exit_code == 0
        runs = _json(result)
        assert len(runs) == 3
        assert all(r["run"][14:16] in {"00", "15", "30", "45"} for r in runs)

    def test_next_never_matching(self):
        result = runner.invoke(app, ["cron", "next", "0 0 31 2 *"])
        assert result.exit_code == 1


class TestWorkflowCommands:
    def test_list(self, workflows):
        result = runner.invoke(app, ["workflow", "list", str(workflows), "--json"])
        assert result.exit_code == 0
        assert _json(result) == [
            {"id": "loop", "name": "Loop"},
            {"id": "storyboard", "name": "Storyboard"},
        ]

    def test_list_missing_directory(self, tmp_path):
        result = runner.invoke(app, ["workflow", "list", str(tmp_path / "nope")])
        assert result.exit_code == 1

    def test_validate_valid(self, workflows):
        result = runner.invoke(app, ["workflow", "validate", str(workflows / "storyboard.yaml"), "--json"])
        assert result.exit_code == 0
        report = _json(result)
        assert report["workflow_id"] == "storyboard"
        assert report["order"] == ["a", "b"]
        assert report["is_valid"] is True

    def test_validate_cycle(self, workflows):
        result = runner.invoke(app, ["workflow", "validate", str(workflows / "loop.yaml")])
        assert result.exit_code == 1
        assert "invalid" in result.stdout
        assert "Cycle detected" in result.stdout

    def test_validate_malformed(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("metadata: {}\n")
        result = runner.invoke(app, ["workflow", "validate", str(path)])
        assert result.exit_code == 1
        assert "VALIDATION" in result.output


class TestScheduleCommands:
    def _create(self, workflows, store_path, *extra):
        return runner.invoke(
            app,
            [
                "schedule", "create", "storyboard",
                "--cron", "0 9 * * *",
                "--workflows", str(workflows),
                "--store", store_path,
                "--json",
                *extra,
            ],
        )

    def test_create_and_list(self, workflows, store_path):
        created = self._create(workflows, store_path, "--max-runs", "3", "--max-retries", "1")
        assert created.exit_code == 0
        schedule = _json(created)
        assert schedule["workflow_id"] == "storyboard"
        assert schedule["workflow_name"] == "Storyboard"
        assert schedule["max_runs"] == 3
        assert schedule["execution_options"] == {"max_retries": 1}
        assert schedule["next_run"] is not None

        listed = runner.invoke(app, ["schedule", "list", "--store", store_path, "--json"])
        assert listed.exit_code == 0
        assert [s["id"] for s in _json(listed)] == [schedule["id"]]

    def test_create_disabled(self, workflows, store_path):
        schedule = _json(self._create(workflows, store_path, "--disabled"))
        assert schedule["enabled"] is False
        assert schedule["status"] == "paused"
        assert schedule["next_run"] is None

    def test_create_rejects_unknown_workflow(self, workflows, store_path):
        result = runner.invoke(
            app,
            ["schedule", "create", "ghost", "--cron", "0 9 * * *", "-w", str(workflows), "-s", store_path],
        )
        assert result.exit_code == 1
        assert "VALIDATION" in result.output

    def test_create_rejects_bad_cron(self, workflows, store_path):
        result = runner.invoke(
            app,
            ["schedule", "create", "storyboard", "--cron", "61 * * * *", "-w", str(workflows), "-s", store_path],
        )
        assert result.exit_code == 1
        listed = runner.invoke(app, ["schedule", "list", "-s", store_path, "--json"])
        assert _json(listed) == []

    def test_show_toggle_cancel(self, workflows, store_path):
        schedule_id = _json(self._create(workflows, store_path))["id"]

        shown = runner.invoke(app, ["schedule", "show", schedule_id, "-s", store_path, "--json"])
        assert _json(shown)["cron_expression"] == "0 9 * * *"

        toggled = runner.invoke(app, ["schedule", "toggle", schedule_id, "--disable", "-s", store_path, "--json"])
        assert toggled.exit_code == 0
        assert _json(toggled)["enabled"] is False

        cancelled = runner.invoke(app, ["schedule", "cancel", schedule_id, "-s", store_path])
        assert cancelled.exit_code == 0
        assert f"Cancelled {schedule_id}" in cancelled.stdout

        missing = runner.invoke(app, ["schedule", "show", schedule_id, "-s", store_path])
        assert missing.exit_code == 1
        assert "NOT_FOUND" in missing.output

    def test_list_table(self, workflows, store_path):
        self._create(workflows, store_path)
        result = runner.invoke(app, ["schedule", "list", "-s", store_path])
        assert result.exit_code == 0
        assert "storyboard" in result.stdout

    def test_empty_list(self, store_path):
        result = runner.invoke(app, ["schedule", "list", "-s", store_path])
        assert result.exit_code == 0
        assert "No items." in result.stdout


@pytest.fixture
def runs_store(store_path, settings):
    kv = SQLiteKeyValueStore(store_path)
    states = StateStore(kv, settings)
    states.begin("exec_running", ["A", "B"], workflow_ref="storyboard")
    states.checkpoint("exec_running", {"reason": "automatic"})
    states.begin("exec_done", ["A"], workflow_ref="storyboard")
    states.complete("exec_done", "completed")
    yield states
    kv.close()


class TestRunsCommands:
    def test_list(self, runs_store, store_path):
        result = runner.invoke(app, ["runs", "list", "-s", store_path, "--json"])
        assert result.exit_code == 0
        rows = {r["execution_id"]: r for r in _json(result)}
        assert rows["exec_running"]["status"] == "running"
        assert rows["exec_running"]["progress"] == "0/2"
        assert rows["exec_done"]["checkpoints"] == 1

    def test_list_filtered(self, runs_store, store_path):
        result = runner.invoke(app, ["runs", "list", "--status", "completed", "-s", store_path, "--json"])
        assert [r["execution_id"] for r in _json(result)] == ["exec_done"]

    def test_show(self, runs_store, store_path):
        result = runner.invoke(app, ["runs", "show", "exec_running", "-s", store_path, "--json"])
        assert result.exit_code == 0
        assert _json(result)["total_nodes"] == 2

        table = runner.invoke(app, ["runs", "show", "exec_running", "-s", store_path])
        assert table.exit_code == 0
        assert "automatic" in table.stdout
        assert "Checkpoints" in table.stdout

    def test_show_missing(self, runs_store, store_path):
        result = runner.invoke(app, ["runs", "show", "nope", "-s", store_path])
        assert result.exit_code == 1
        assert "NOT_FOUND" in result.output

    def test_recoverable_mark(self, runs_store, store_path):
        listed = runner.invoke(app, ["runs", "recoverable", "-s", store_path, "--json"])
        assert [r["execution_id"] for r in _json(listed)] == ["exec_running"]

        marked = runner.invoke(app, ["runs", "recoverable", "--mark", "-s", store_path, "--json"])
        assert _json(marked)[0]["status"] == "paused"
        assert runs_store.get("exec_running").status == ExecutionStatus.PAUSED

    def test_expire_keeps_active_runs(self, runs_store, store_path):
        result = runner.invoke(app, ["runs", "expire", "--max-age", "0", "-s", store_path])
        assert result.exit_code == 0
        assert "Expired 1 run(s)" in result.stdout
        assert runs_store.get("exec_running") is not None
        assert runs_store.get("exec_done") is None

    def test_delete(self, runs_store, store_path):
        result = runner.invoke(app, ["runs", "delete", "exec_done", "-s", store_path])
        assert result.exit_code == 0
        assert "Deleted exec_done" in result.stdout
        again = runner.invoke(app, ["runs", "delete", "exec_done", "-s", store_path])
        assert again.exit_code == 1

    def test_export_import(self, runs_store, store_path, tmp_path):
        export_file = tmp_path / "runs.json"
        exported = runner.invoke(app, ["runs", "export", "-o", str(export_file), "-s", store_path])
        assert exported.exit_code == 0
        assert json.loads(export_file.read_text())["state_count"] == 2

        target = str(tmp_path / "other.db")
        imported = runner.invoke(app, ["runs", "import", str(export_file), "-s", target])
        assert imported.exit_code == 0
        assert "Imported 2 run(s)" in imported.stdout

    def test_export_to_stdout(self, runs_store, store_path):
        result = runner.invoke(app, ["runs", "export", "-s", store_path])
        assert _json(result)["state_count"] == 2

    def test_import_bad_mode(self, runs_store, store_path, tmp_path):
        source = tmp_path / "runs.json"
        source.write_text(runs_store.export_states())
        result = runner.invoke(app, ["runs", "import", str(source), "--mode", "upsert", "-s", store_path])
        assert result.exit_code == 1
        assert "VALIDATION" in result.output
