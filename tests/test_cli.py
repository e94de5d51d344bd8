"""CLI tests for the table-log Typer commands."""

import contextlib
import sqlite3

import pytest
from typer.testing import CliRunner

from table_log.cli import DATABASE_ERROR_EXIT_CODE, TABLE_LOG_ERROR_EXIT_CODE, app

runner = CliRunner()


@pytest.fixture
def database(tmp_path, monkeypatch):
    for name in ("TABLE_LOG_ACTING_USER", "TABLE_LOG_PARTITIONED", "TABLE_LOG_BASIC", "TABLE_LOG_LOG_TABLE"):
        monkeypatch.delenv(name, raising=False)
    path = tmp_path / "shop.db"
    with contextlib.closing(sqlite3.connect(path, autocommit=True)) as conn:
        conn.execute("CREATE TABLE orders (id INTEGER PRIMARY KEY, status TEXT)")
    return str(path)


def query(database, sql):
    with contextlib.closing(sqlite3.connect(database, autocommit=True)) as conn:
        return conn.execute(sql).fetchall()


def test_install_creates_log_and_triggers(database):
    result = runner.invoke(app, ["install", database, "orders", "--create"])

    assert result.exit_code == 0, result.output
    assert '"main"."table_log_orders_insert"' in result.output

    with contextlib.closing(sqlite3.connect(database, autocommit=True)) as conn:
        conn.execute("INSERT INTO orders VALUES (1, 'new')")
        records = conn.execute("SELECT id, mode, tuple_role FROM orders_log").fetchall()
    assert records == [(1, "INSERT", "new")], f"Unexpected records {records}"


def test_create_log_prints_log_tables(database):
    result = runner.invoke(app, ["create-log", database, "orders", "--partitioned"])

    assert result.exit_code == 0, result.output
    assert result.output.split() == ['"main"."orders_log_0"', '"main"."orders_log_1"']


def test_restore(database):
    assert runner.invoke(app, ["install", database, "orders", "--create"]).exit_code == 0
    with contextlib.closing(sqlite3.connect(database, autocommit=True)) as conn:
        conn.execute("INSERT INTO orders VALUES (1, 'new'), (2, 'new')")
        conn.execute("DELETE FROM orders WHERE id = 2")

    result = runner.invoke(
        app,
        ["restore", database, "orders", "orders_log", "orders_copy", "--cutoff", "2999-01-01"],
    )

    assert result.exit_code == 0, result.output
    assert result.output.strip() == '"main"."orders_copy"'
    assert query(database, "SELECT id, status FROM orders_copy") == [(1, "new")]


def test_restore_backward_with_key(database):
    assert runner.invoke(app, ["install", database, "orders", "--create"]).exit_code == 0
    with contextlib.closing(sqlite3.connect(database, autocommit=True)) as conn:
        conn.execute("INSERT INTO orders VALUES (1, 'new'), (2, 'new')")

    result = runner.invoke(
        app,
        [
            "restore", database, "orders", "orders_log", "orders_one",
            "--cutoff", "2999-01-01", "--backward", "--key", "2",
        ],
    )

    assert result.exit_code == 0, result.output
    assert query(database, "SELECT id, status FROM orders_one") == [(2, "new")]


def test_uninstall(database):
    assert runner.invoke(app, ["install", database, "orders", "--create"]).exit_code == 0

    result = runner.invoke(app, ["uninstall", database, "orders"])

    assert result.exit_code == 0, result.output
    assert result.output.strip() == "ok"
    assert query(database, "SELECT name FROM sqlite_master WHERE type = 'trigger'") == []


def test_table_log_error_maps_to_exit_code_3(database):
    result = runner.invoke(app, ["install", database, "missing", "--create"])

    assert result.exit_code == TABLE_LOG_ERROR_EXIT_CODE
    assert "source table does not exist" in result.output


def test_database_error_maps_to_exit_code_4(tmp_path):
    result = runner.invoke(app, ["uninstall", str(tmp_path / "no" / "such" / "dir.db"), "orders"])

    assert result.exit_code == DATABASE_ERROR_EXIT_CODE


def test_bad_cutoff_is_a_usage_error(database):
    result = runner.invoke(
        app, ["restore", database, "orders", "orders_log", "r", "--cutoff", "last tuesday"]
    )

    assert result.exit_code == 2
