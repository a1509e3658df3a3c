"""Tests for the allergy-ledger command line interface."""

import json

import pytest
from rich.console import Console
from typer.testing import CliRunner

from src import cli

from conftest import HIVES, PENICILLIN, SEVERE

runner = CliRunner()


@pytest.fixture
def db_env(tmp_path, monkeypatch):
    """Point the CLI at a file database and keep output wide and logging untouched."""
    monkeypatch.setenv("AL_DB_PATH", str(tmp_path / "ledger.duckdb"))
    monkeypatch.setattr(cli, "console", Console(width=200))
    monkeypatch.setattr(cli, "setup_logging", lambda **kwargs: None)
    return tmp_path


@pytest.fixture
def candidate_file(db_env):
    path = db_env / "candidate.json"
    path.write_text(json.dumps([
        {
            "allergen": {"allergen_type": "drug", "coded_allergen": {"uuid": PENICILLIN.uuid}},
            "severity": {"uuid": SEVERE.uuid},
            "comment": "rash after first dose",
            "reactions": [{"reaction": {"uuid": HIVES.uuid}}],
        },
        {
            "allergen": {"allergen_type": "FOOD", "non_coded_allergen": "Peanuts"},
        },
    ]))
    return path


def register_vocabulary():
    for concept in (PENICILLIN, SEVERE, HIVES):
        result = runner.invoke(cli.app, ["add-concept", concept.uuid, "--name", concept.name])
        assert result.exit_code == 0, result.output


class TestCli:
    """Test suite for CLI commands."""

    def test_init_db(self, db_env):
        result = runner.invoke(cli.app, ["init-db"])
        assert result.exit_code == 0, result.output
        assert "Schema initialized" in result.output

    def test_show_empty_patient(self, db_env):
        result = runner.invoke(cli.app, ["show", "7"])
        assert result.exit_code == 0, result.output
        assert "UNKNOWN" in result.output

    def test_apply_and_show(self, db_env, candidate_file):
        register_vocabulary()

        result = runner.invoke(cli.app, ["apply", "2", str(candidate_file)])
        assert result.exit_code == 0, result.output
        assert "SEE_LIST" in result.output

        result = runner.invoke(cli.app, ["show", "2"])
        assert result.exit_code == 0, result.output
        assert "Penicillin" in result.output
        assert "Peanuts" in result.output
        assert "Hives" in result.output

    def test_apply_with_status(self, db_env):
        path = db_env / "nka.json"
        path.write_text(json.dumps({"allergies": [], "status": "no_known_allergies"}))

        result = runner.invoke(cli.app, ["apply", "6", str(path)])

        assert result.exit_code == 0, result.output
        assert "NO_KNOWN_ALLERGIES" in result.output

    def test_apply_invalid_candidate(self, db_env):
        path = db_env / "bad.json"
        path.write_text(json.dumps([{"allergen": {"allergen_type": "DRUG"}}]))

        result = runner.invoke(cli.app, ["apply", "2", str(path)])

        assert result.exit_code == 1
        assert "Save failed" in result.output

    def test_apply_wrong_patient(self, db_env):
        path = db_env / "other.json"
        path.write_text(json.dumps([
            {"patient_id": "6", "allergen": {"allergen_type": "FOOD", "non_coded_allergen": "Peanuts"}}
        ]))

        result = runner.invoke(cli.app, ["apply", "2", str(path)])

        assert result.exit_code == 1
        assert "belongs to patient 6" in result.output

    def test_confirm_nka_and_history(self, db_env, candidate_file):
        register_vocabulary()
        runner.invoke(cli.app, ["apply", "2", str(candidate_file)])

        result = runner.invoke(cli.app, ["confirm-nka", "2"])
        assert result.exit_code == 0, result.output
        assert "NO_KNOWN_ALLERGIES" in result.output
        assert "2 retired" in result.output

        result = runner.invoke(cli.app, ["history", "2"])
        assert result.exit_code == 0, result.output
        assert "Allergy removed" in result.output

    def test_history_empty(self, db_env):
        result = runner.invoke(cli.app, ["history", "7"])
        assert result.exit_code == 0, result.output
        assert "No allergy history" in result.output

    def test_version(self, db_env):
        result = runner.invoke(cli.app, ["--version"])
        assert result.exit_code == 0
        assert "v1.0.0" in result.output
