import asyncio

from typer.testing import CliRunner

from lcmcore.cli import app
from lcmcore.persistence import SQLiteLifecycleStore


def _setup_store(tmp_path, monkeypatch) -> SQLiteLifecycleStore:
    db_path = tmp_path / "cli.db"
    monkeypatch.setenv("LCM_DATABASE_URL", f"sqlite://{db_path}")
    return SQLiteLifecycleStore(db_path)


def test_state_and_history_commands(tmp_path, monkeypatch):
    store = _setup_store(tmp_path, monkeypatch)
    asyncio.run(store.create_state("api-1", "apiLifecycle", "Created", "alice"))
    asyncio.run(store.transition("api-1", "Created", "Testing", "bob"))

    runner = CliRunner()
    result = runner.invoke(app, ["state", "api-1"])
    assert result.exit_code == 0, f"Output: {result.stdout}"
    assert "apiLifecycle" in result.stdout
    assert "Testing" in result.stdout
    assert "bob" in result.stdout

    result = runner.invoke(app, ["history", "api-1"])
    assert result.exit_code == 0, f"Output: {result.stdout}"
    assert "Created -> Testing" in result.stdout


def test_checklist_and_ids_commands(tmp_path, monkeypatch):
    store = _setup_store(tmp_path, monkeypatch)
    asyncio.run(store.create_state("api-1", "apiLifecycle", "Testing", "alice"))
    asyncio.run(store.create_state("api-2", "apiLifecycle", "Created", "alice"))
    asyncio.run(store.set_checklist_item("api-1", "Testing", "reviewed", True, "bob"))

    runner = CliRunner()
    result = runner.invoke(app, ["checklist", "api-1", "Testing"])
    assert result.exit_code == 0, f"Output: {result.stdout}"
    assert "[x] reviewed (bob)" in result.stdout

    result = runner.invoke(app, ["ids", "apiLifecycle", "Testing"])
    assert result.exit_code == 0, f"Output: {result.stdout}"
    assert "api-1" in result.stdout
    assert "api-2" not in result.stdout


def test_missing_instance(tmp_path, monkeypatch):
    _setup_store(tmp_path, monkeypatch)

    runner = CliRunner()
    result = runner.invoke(app, ["state", "missing-id"])
    assert result.exit_code == 1
    assert "Lifecycle instance not found" in result.stdout

    result = runner.invoke(app, ["history", "missing-id"])
    assert result.exit_code == 0
    assert "No transitions recorded" in result.stdout


def test_init_with_database_url_option(tmp_path):
    db_path = tmp_path / "init.db"
    runner = CliRunner()
    result = runner.invoke(app, ["--database-url", f"sqlite://{db_path}", "init"])
    assert result.exit_code == 0, f"Output: {result.stdout}"
    assert db_path.exists()
