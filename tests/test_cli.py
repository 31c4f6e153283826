"""Tests for the click CLI — run and history commands."""

from __future__ import annotations

import importlib
import json
import sys
from pathlib import Path

import pytest
from click.testing import CliRunner

from nexus.cli import run as run_module
from nexus.cli.app import cli
from nexus.logging_setup import configure_logging
from nexus.memory.mission_archive import MissionArchive
from nexus.swarm.control import MissionControl
from nexus.swarm.errors import DecompositionError


@pytest.fixture(autouse=True)
def _env(tmp_path: Path, monkeypatch):
    configure_logging("WARNING", colors=False)
    monkeypatch.setenv("NEXUS_DATA_DIR", str(tmp_path))


@pytest.fixture()
def cli_archive(tmp_path: Path) -> MissionArchive:
    return MissionArchive(tmp_path / "missions.json")


@pytest.fixture()
def fake_control(monkeypatch, backend, swarm_config, chat_config, cli_archive):
    def _build(config, event_bus):
        return MissionControl(backend, swarm_config, chat_config, archive=cli_archive, event_bus=event_bus)

    monkeypatch.setattr(run_module, "_build_control", _build)


class TestHistory:

    def test_list_empty(self):
        result = CliRunner().invoke(cli, ["history", "list"])
        assert result.exit_code == 0
        assert "Swarm memory is empty." in result.output

    def test_list_json(self, cli_archive):
        cli_archive.append("Plan a trip", "# Report", timestamp=10.0)
        cli_archive.append("Write a poem", "# Poem", timestamp=20.0)

        result = CliRunner().invoke(cli, ["history", "list", "--json"])

        assert result.exit_code == 0
        assert [e["goal"] for e in json.loads(result.output)] == ["Write a poem", "Plan a trip"]

    def test_list_table(self, cli_archive):
        cli_archive.append("Plan a trip", "# Report")
        result = CliRunner().invoke(cli, ["--no-color", "history", "list"])
        assert result.exit_code == 0
        assert "Plan a trip" in result.output

    def test_show(self, cli_archive):
        entry = cli_archive.append("Plan a trip", "Fly on Tuesday")
        result = CliRunner().invoke(cli, ["history", "show", entry.entry_id])
        assert result.exit_code == 0
        assert "Plan a trip" in result.output
        assert "Fly on Tuesday" in result.output

    def test_show_unknown(self):
        result = CliRunner().invoke(cli, ["history", "show", "nope"])
        assert result.exit_code == 1
        assert "No archived mission" in result.output

    def test_delete_with_yes(self, cli_archive):
        entry = cli_archive.append("Plan a trip", "r")
        result = CliRunner().invoke(cli, ["history", "delete", entry.entry_id, "--yes"])
        assert result.exit_code == 0
        assert cli_archive.get(entry.entry_id) is None

    def test_delete_declined(self, cli_archive):
        entry = cli_archive.append("Plan a trip", "r")
        result = CliRunner().invoke(cli, ["history", "delete", entry.entry_id], input="n\n")
        assert result.exit_code == 1
        assert cli_archive.get(entry.entry_id) is not None


class TestRun:

    def test_run_prints_report_and_archives(self, fake_control, cli_archive):
        result = CliRunner().invoke(cli, ["--no-color", "run", "Plan a trip", "--no-chat"])

        assert result.exit_code == 0, result.output
        assert "Report for Plan a trip" in result.output
        assert [e.goal for e in cli_archive.entries()] == ["Plan a trip"]

    def test_run_json(self, fake_control):
        result = CliRunner().invoke(cli, ["run", "Plan a trip", "--json", "--no-memory"])

        assert result.exit_code == 0, result.output
        mission = json.loads(result.stdout)
        assert mission["status"] == "COMPLETE"
        assert [a["id"] for a in mission["agents"]] == ["A1", "A2", "A3"]

    def test_run_chat_until_blank_line(self, fake_control, backend):
        result = CliRunner().invoke(
            cli, ["--no-color", "run", "Plan a trip"], input="Which airline?\n\n"
        )

        assert result.exit_code == 0, result.output
        assert "answer to Which airline?" in result.output
        assert [c["question"] for c in backend.query_calls] == ["Which airline?"]

    def test_run_offers_synthesis_retry(self, fake_control, backend):
        backend.synthesis_failures = 1
        result = CliRunner().invoke(cli, ["--no-color", "run", "Plan a trip", "--no-chat"], input="y\n")

        assert result.exit_code == 0, result.output
        assert "Synthesis failed" in result.output
        assert len(backend.synthesize_calls) == 2

    def test_run_planning_failure(self, fake_control, backend):
        async def _fail(goal, past_missions=()):
            raise DecompositionError("model returned nonsense")

        backend.decompose = _fail
        result = CliRunner().invoke(cli, ["run", "Plan a trip", "--no-chat"])

        assert result.exit_code == 1
        assert "Could not plan mission" in result.output

    def test_run_without_credentials(self, monkeypatch):
        for name in ("ANTHROPIC_API_KEY", "ANTHROPIC_AUTH_TOKEN", "NEXUS_AUTH_TOKEN"):
            monkeypatch.delenv(name, raising=False)

        result = CliRunner().invoke(cli, ["run", "Plan a trip"])

        assert result.exit_code == 1
        assert "Provider is not configured" in result.output


class TestImports:

    def test_run_module_imports_on_its_own(self, monkeypatch):
        for name in ("nexus.cli.app", "nexus.cli.run", "nexus.cli.history"):
            monkeypatch.delitem(sys.modules, name, raising=False)

        run = importlib.import_module("nexus.cli.run")
        app = importlib.import_module("nexus.cli.app")

        assert app.cli.commands["run"] is run.run_cmd
        assert "history" in app.cli.commands
