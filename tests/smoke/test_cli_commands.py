"""
Smoke Tests for CLI Commands.

These tests verify that CLI commands run without errors and produce output.
They don't validate correctness deeply - just that commands work.

Usage:
    pytest tests/smoke/test_cli_commands.py -v
    pytest tests/smoke/test_cli_commands.py -v -m smoke
"""

import re

import pytest
from typer.testing import CliRunner

from config import get_settings
from quizrank.cli.main import app
from quizrank.db.database import get_session_factory, reset_engine

# Mark all tests in this module as smoke tests
pytestmark = pytest.mark.smoke

UUID_PATTERN = re.compile(r"[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}")

runner = CliRunner()


def invoke(*args: str):
    return runner.invoke(app, list(args))


@pytest.fixture(autouse=True)
def cli_database(tmp_path, monkeypatch):
    """Point the CLI at a fresh SQLite database."""
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path / 'cli.db'}")
    monkeypatch.setenv("SELECTION_WEIGHT_JITTER", "0")
    get_settings.cache_clear()
    reset_engine()
    yield
    reset_engine()
    get_settings.cache_clear()


@pytest.fixture
def initialized(catalog_seeder):
    result = invoke("db", "init")
    assert result.exit_code == 0, result.output
    return catalog_seeder(get_session_factory())


def start_session(subject: str = "alice", *extra: str) -> str:
    result = invoke("session", "start", subject, *extra)
    assert result.exit_code == 0, result.output
    return UUID_PATTERN.search(result.output).group(0)


class TestCLIHelp:
    """Test that help commands work."""

    def test_main_help(self):
        result = invoke("--help")

        assert result.exit_code == 0
        assert "quizrank" in result.output
        assert "session" in result.output

    @pytest.mark.parametrize("command", ["db", "session", "next", "answer", "ratings", "simulate"])
    def test_command_help(self, command):
        assert invoke(command, "--help").exit_code == 0


class TestCLIDatabase:
    def test_db_init_is_idempotent(self):
        assert "Database initialized" in invoke("db", "init").output
        assert invoke("db", "init").exit_code == 0


class TestCLISession:
    def test_lifecycle(self, initialized):
        session_id = start_session("alice", "--type", "diagnostic", "--max-items", "3")

        assert "paused" in invoke("session", "pause", session_id).output
        assert "active" in invoke("session", "resume", session_id, "--subject", "alice").output
        assert "completed" in invoke("session", "complete", session_id).output

    def test_invalid_transition_fails(self, initialized):
        session_id = start_session()
        invoke("session", "abandon", session_id)

        result = invoke("session", "resume", session_id)

        assert result.exit_code == 1
        assert "abandoned" in result.output

    def test_unknown_session(self, initialized):
        result = invoke("session", "score", "00000000-0000-0000-0000-000000000000")
        assert result.exit_code == 1
        assert "not found" in result.output

    def test_bad_session_type(self, initialized):
        assert invoke("session", "start", "alice", "--type", "exam").exit_code == 1


class TestCLIPractice:
    def test_next_and_answer(self, initialized):
        session_id = start_session()

        result = invoke("next", "alice", session_id)
        assert result.exit_code == 0, result.output
        assert "What is 1/4 + 1/4?" in result.output

        item_id = str(initialized.items["f_mid"])
        result = invoke("answer", "alice", session_id, item_id, "One half", "--time", "9")
        assert result.exit_code == 0, result.output
        assert "Correct" in result.output
        assert "+50" in result.output
        assert "Answered correctly by 100%" in result.output

        score = invoke("session", "score", session_id)
        assert score.exit_code == 0
        assert "100.0%" in score.output

    def test_duplicate_answer(self, initialized):
        session_id = start_session()
        item_id = str(initialized.items["g_mid"])

        assert invoke("answer", "alice", session_id, item_id, "180").exit_code == 0
        result = invoke("answer", "alice", session_id, item_id, "180")

        assert result.exit_code == 1
        assert "already answered" in result.output

    def test_wrong_answer_shows_solution(self, initialized):
        session_id = start_session()
        result = invoke("answer", "alice", session_id, str(initialized.items["g_mid"]), "90")

        assert result.exit_code == 0
        assert "Incorrect" in result.output
        assert "180" in result.output

    def test_next_with_category(self, initialized):
        session_id = start_session()
        result = invoke("next", "alice", session_id, "--category", "geometry")

        assert result.exit_code == 0
        assert "triangle" in result.output


class TestCLIReports:
    def test_ratings(self, initialized):
        result = invoke("ratings", "alice")

        assert result.exit_code == 0, result.output
        assert "overall 500" in result.output
        assert "Rating confidence: 15%" in result.output
        assert "Fractions" in result.output

    def test_priorities(self, initialized):
        result = invoke("priorities", "alice")

        assert result.exit_code == 0, result.output
        assert "Geometry" in result.output
        assert "Statistics" in result.output

    def test_simulate(self):
        result = invoke("simulate", "--ability", "700", "--attempts", "30", "--seed", "3")

        assert result.exit_code == 0, result.output
        assert "Final rating" in result.output

    def test_version(self):
        assert "quizrank" in invoke("version").output
