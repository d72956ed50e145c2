"""Tests for the ew-engine command line."""

import json

import pytest
import yaml
from typer.testing import CliRunner

from cli import __version__
from cli.main import app

runner = CliRunner()

INDEX_REQUEST = "design a composite index for range queries"


@pytest.fixture
def cli_config(tmp_path):
    """Config file that keeps the session log out of test state."""
    path = tmp_path / "ew-engine.yaml"
    with open(path, "w") as f:
        yaml.dump({"logging": {"level": "WARNING", "file": False}}, f)
    return path


@pytest.fixture
def invoke(state_dir, cli_config):
    """Run a CLI command against the test state directory."""

    def run(*args):
        return runner.invoke(
            app,
            [*args, "--state-dir", str(state_dir), "--config", str(cli_config)],
        )

    return run


def add_constraint(invoke, cid, value, priority):
    return invoke(
        "constraints", "add",
        "--id", cid,
        "--source", "stage-1",
        "--type", "requires",
        "--target", "storage-engine",
        "--value", value,
        "--priority", priority,
    )


class TestMain:
    """Tests for the top-level app."""

    def test_version(self):
        result = runner.invoke(app, ["--version"])

        assert result.exit_code == 0
        assert f"ew-engine version {__version__}" in result.stdout


class TestClassifyCommand:
    """Tests for ew-engine classify."""

    def test_json_output(self, invoke):
        result = invoke("classify", INDEX_REQUEST, "--json")

        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["query"] == INDEX_REQUEST
        assert data["systems"] == ["DB"]
        assert data["domains"] == ["index-query"]
        assert data["pattern"] == "single"
        assert data["confidence"] == 0.85
        assert data["classifier_source"] == "keyword-fast-path"

    def test_text_output(self, invoke):
        result = invoke("classify", INDEX_REQUEST)

        assert result.exit_code == 0
        assert "DB" in result.stdout
        assert "index-query" in result.stdout

    def test_no_classification(self, invoke):
        result = invoke("classify", "what should we have for lunch")

        assert result.exit_code == 0
        assert "No classification" in result.stdout

    def test_no_record(self, invoke, state_dir):
        invoke("classify", INDEX_REQUEST, "--no-record")
        assert not (state_dir / "sessions" / "default" / "history.jsonl").exists()

    def test_records_history_per_session(self, invoke, state_dir):
        invoke("classify", INDEX_REQUEST, "--session", "review-1")
        assert (state_dir / "sessions" / "review-1" / "history.jsonl").exists()

    def test_cache_hit_on_fourth_run(self, invoke):
        for _ in range(3):
            invoke("classify", INDEX_REQUEST, "--json")

        result = invoke("classify", INDEX_REQUEST, "--json")

        data = json.loads(result.stdout)
        assert data["confidence"] == 1.0
        assert data["classifier_source"] == "pattern-cache"

    def test_invalid_session_id(self, invoke):
        result = invoke("classify", INDEX_REQUEST, "--session", "../escape")

        assert result.exit_code == 1
        assert "Invalid session id" in result.stdout

    def test_broken_corpus_config(self, state_dir, tmp_path):
        config_path = tmp_path / "broken.yaml"
        with open(config_path, "w") as f:
            yaml.dump({"corpus": {"path": str(tmp_path / "absent")}}, f)

        result = runner.invoke(
            app,
            ["classify", INDEX_REQUEST, "--state-dir", str(state_dir), "--config", str(config_path)],
        )

        assert result.exit_code == 1
        assert "Corpus directory not found" in result.stdout


class TestConstraintsCommands:
    """Tests for ew-engine constraints."""

    def test_add(self, invoke):
        result = add_constraint(invoke, "c1", "lsm", "hard")

        assert result.exit_code == 0
        assert "Constraint c1 added to session default" in result.stdout

    def test_add_duplicate_fails(self, invoke):
        add_constraint(invoke, "c1", "lsm", "hard")

        result = add_constraint(invoke, "c1", "btree", "soft")

        assert result.exit_code == 1
        assert "Duplicate" in result.stdout

    def test_resolve_json(self, invoke):
        add_constraint(invoke, "c1", "lsm", "hard")
        add_constraint(invoke, "c2", "btree", "soft")

        result = invoke("constraints", "resolve", "--json")

        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["rejected_ids"] == ["c2"]
        assert data["conflicts"][0]["resolution"] == "accept_a"
        assert data["metadata"]["total_unresolved"] == 0

    def test_resolve_without_conflicts(self, invoke):
        add_constraint(invoke, "c1", "lsm", "hard")

        result = invoke("constraints", "resolve")

        assert result.exit_code == 0
        assert "No conflicts" in result.stdout

    def test_resolve_reports_unresolved(self, invoke):
        add_constraint(invoke, "c1", "lsm", "soft")
        add_constraint(invoke, "c2", "btree", "soft")

        result = invoke("constraints", "resolve")

        assert result.exit_code == 0
        assert "need adjudication" in result.stdout

    def test_archive(self, invoke, state_dir):
        add_constraint(invoke, "c1", "lsm", "hard")

        result = invoke("constraints", "archive")

        assert result.exit_code == 0
        assert len(list((state_dir / "constraints-archive").glob("constraints-default-*.json"))) == 1

    def test_archive_nothing(self, invoke):
        result = invoke("constraints", "archive")
        assert "No constraints to archive" in result.stdout


class TestCacheCommands:
    """Tests for ew-engine cache."""

    def test_list_empty(self, invoke):
        result = invoke("cache", "list")
        assert "Pattern cache is empty" in result.stdout

    def test_list_json_after_promotion(self, invoke):
        for _ in range(3):
            invoke("classify", INDEX_REQUEST)

        result = invoke("cache", "list", "--json")

        entries = json.loads(result.stdout)
        assert len(entries) == 1
        assert entries[0]["result"]["systems"] == ["DB"]
        assert entries[0]["hit_count"] == 3

    def test_show_entry(self, invoke):
        for _ in range(3):
            invoke("classify", INDEX_REQUEST)

        result = invoke("cache", "show", "Range queries: design a composite index for", "--json")

        assert result.exit_code == 0
        entry = json.loads(result.stdout)
        assert entry["signature"] == "a composite design for index queries range"
        assert entry["result"]["domains"] == ["index-query"]

    def test_show_panel(self, invoke):
        for _ in range(3):
            invoke("classify", INDEX_REQUEST)

        result = invoke("cache", "show", INDEX_REQUEST)

        assert result.exit_code == 0
        assert "Pattern Cache Entry" in result.stdout
        assert "serving" in result.stdout

    def test_show_missing(self, invoke):
        result = invoke("cache", "show", INDEX_REQUEST, "--json")

        assert result.exit_code == 0
        assert json.loads(result.stdout) is None

    def test_evict(self, invoke):
        result = invoke("cache", "evict", "--days", "30")

        assert result.exit_code == 0
        assert "Evicted 0 cache entries older than 30 days" in result.stdout

    def test_clear(self, invoke):
        for _ in range(3):
            invoke("classify", INDEX_REQUEST)

        result = invoke("cache", "clear", "--yes")

        assert "Cleared 1 cache entries" in result.stdout
        assert json.loads(invoke("cache", "list", "--json").stdout) == []

    def test_clear_transitions(self, invoke, state_dir):
        invoke("classify", INDEX_REQUEST)
        invoke("classify", "jwt login with refresh token rotation")

        result = invoke("cache", "clear", "--yes", "--transitions")

        assert result.exit_code == 0
        assert "Cleared 1 transition records" in result.stdout
        assert not (state_dir / "transitions.json").exists()

    def test_clear_keeps_transitions_by_default(self, invoke, state_dir):
        invoke("classify", INDEX_REQUEST)
        invoke("classify", "jwt login with refresh token rotation")

        invoke("cache", "clear", "--yes")

        assert (state_dir / "transitions.json").exists()


class TestMaintenanceCommands:
    """Tests for ew-engine cleanup and health."""

    def test_cleanup_force(self, invoke):
        result = invoke("cleanup", "--force")

        assert result.exit_code == 0
        assert "Cleanup done" in result.stdout

    def test_cleanup_skipped_when_recent(self, invoke):
        invoke("cleanup")
        result = invoke("cleanup")
        assert "Cleanup ran recently" in result.stdout

    def test_health_json(self, invoke):
        result = invoke("health", "--json")

        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["overall"] == "healthy"
        assert data["corpus"]["systems"] == 4

    def test_health_degraded(self, invoke, state_dir):
        state_dir.mkdir(parents=True)
        (state_dir / "pattern-cache.json").write_text("{broken")

        result = invoke("health", "--json")

        assert result.exit_code == 0
        assert json.loads(result.stdout)["overall"] == "degraded"
