import json
from unittest.mock import patch

import pytest
from typer.testing import CliRunner

from config import settings
from main import app
from utils.ui_helpers import OUTPUT_MODE_ENV

runner = CliRunner()


@pytest.fixture(autouse=True)
def cli_db(tmp_path, monkeypatch):
    # Each CLI call opens its own store, so share one file per test
    monkeypatch.setattr(settings, "store_backend", "sqlite")
    monkeypatch.setattr(settings, "database_file", str(tmp_path / "cli.db"))
    monkeypatch.delenv(OUTPUT_MODE_ENV, raising=False)
    yield
    monkeypatch.delenv(OUTPUT_MODE_ENV, raising=False)


def _seed():
    assert runner.invoke(app, ["add-category", "Novel"]).exit_code == 0
    assert runner.invoke(app, ["add-person", "Ada", "Lovelace", "ada", "ada@example.com"]).exit_code == 0
    assert runner.invoke(app, ["add-book", "Rayuela", "A novel", "1"]).exit_code == 0


def test_books_empty():
    result = runner.invoke(app, ["books"])
    assert result.exit_code == 0
    assert "No books." in result.stdout


def test_lend_and_return():
    _seed()

    result = runner.invoke(app, ["lend", "1", "1"])
    assert result.exit_code == 0
    assert "Book 1 lent to person 1." in result.stdout

    result = runner.invoke(app, ["lend", "1", "1"])
    assert result.exit_code == 1
    assert "Error (already_lent)" in result.stdout

    result = runner.invoke(app, ["return", "1"])
    assert result.exit_code == 0
    assert "Book 1 returned." in result.stdout

    result = runner.invoke(app, ["remove", "1"])
    assert result.exit_code == 0
    assert "Book 1 has been removed." in result.stdout


def test_lend_missing_book():
    result = runner.invoke(app, ["lend", "999", "2"])
    assert result.exit_code == 1
    assert "Error (book_not_found): Book 999 not found." in result.stdout


def test_add_book_unknown_category():
    result = runner.invoke(app, ["add-book", "Rayuela", "A novel", "7"])
    assert result.exit_code == 1
    assert "unknown_reference" in result.stdout


def test_books_json_output():
    _seed()
    result = runner.invoke(app, ["--output", "json", "books"])
    assert result.exit_code == 0
    payload = json.loads(result.stdout.strip().splitlines()[-1])
    assert payload[0]["title"] == "Rayuela"
    assert payload[0]["state"] == "available"


def test_persons_and_categories_plain_output():
    _seed()
    result = runner.invoke(app, ["persons"])
    assert "email=ada@example.com" in result.stdout
    result = runner.invoke(app, ["categories"])
    assert "name=Novel" in result.stdout


@patch("subprocess.run")
def test_serve_command(mock_subprocess_run):
    result = runner.invoke(app, ["serve", "--port", "9000"])
    assert result.exit_code == 0
    assert "Starting API on" in result.stdout
    args = mock_subprocess_run.call_args[0][0]
    assert "uvicorn" in args
    assert "api:app" in args
    assert "9000" in args
