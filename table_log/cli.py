"""table_log command line interface implemented with Typer."""

import logging
import sqlite3
from typing import Any, Callable, Optional

import typer

from table_log.backend import SQLiteBackend, connect
from table_log.config import CaptureConfig
from table_log.errors import TableLogError
from table_log.replay import ReplayMode, format_cutoff, restore_table
from table_log.triggers import create_log_table, install_triggers, remove_triggers

SUCCESS_EXIT_CODE = 0
TABLE_LOG_ERROR_EXIT_CODE = 3
DATABASE_ERROR_EXIT_CODE = 4


def _emit_error(exc: Exception) -> None:
    typer.echo(f"error: {exc}", err=True)


def _run_command(database: str, invoke: Callable[[SQLiteBackend], Any]) -> None:
    """Run one operation against a database and map errors to exit codes."""
    try:
        with connect(database) as backend:
            result = invoke(backend)
    except TableLogError as exc:
        _emit_error(exc)
        raise typer.Exit(code=TABLE_LOG_ERROR_EXIT_CODE) from exc
    except sqlite3.Error as exc:
        _emit_error(exc)
        raise typer.Exit(code=DATABASE_ERROR_EXIT_CODE) from exc

    typer.echo("ok" if result is None else result)
    raise typer.Exit(code=SUCCESS_EXIT_CODE)


def _check_cutoff(value: str) -> str:
    try:
        format_cutoff(value)
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc
    return value


def _capture_config(
    log_table: Optional[str],
    log_schema: Optional[str],
    acting_user: bool,
    partitioned: bool,
    basic: bool = False,
) -> CaptureConfig:
    """Environment defaults, overridden by command line options."""
    config = CaptureConfig.from_env()
    if log_table is not None:
        config.log_table = log_table
    if log_schema is not None:
        config.log_schema = log_schema
    config.acting_user = config.acting_user or acting_user
    config.partitioned = config.partitioned or partitioned
    config.basic = config.basic or basic
    return config


app = typer.Typer(no_args_is_help=True, help="Log table changes and restore past table states")


@app.callback()
def main(
    verbose: int = typer.Option(
        0, "--verbose", "-v", count=True, help="Log progress (-vv for SQL)"
    ),
) -> None:
    """Configure logging for all commands."""
    if verbose:
        level = logging.INFO if verbose == 1 else logging.DEBUG
        logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")


@app.command("create-log")
def create_log_command(
    database: str = typer.Argument(..., help="SQLite database file"),
    source: str = typer.Argument(..., help="Source table"),
    log_table: Optional[str] = typer.Option(None, help="Log table name (default <source>_log)"),
    log_schema: Optional[str] = typer.Option(None, help="Schema of the log table"),
    acting_user: bool = typer.Option(False, "--acting-user", help="Add an acting_user column"),
    partitioned: bool = typer.Option(
        False, "--partitioned", help="Create one log table per partition"
    ),
) -> None:
    """Create the log table(s) for a source table."""
    config = _capture_config(log_table, log_schema, acting_user, partitioned)
    _run_command(
        database,
        lambda backend: "\n".join(
            log.render() for log in create_log_table(backend, source, config)
        ),
    )


@app.command("install")
def install_command(
    database: str = typer.Argument(..., help="SQLite database file"),
    source: str = typer.Argument(..., help="Source table"),
    log_table: Optional[str] = typer.Option(None, help="Log table name (default <source>_log)"),
    acting_user: bool = typer.Option(False, "--acting-user", help="Log the acting user"),
    partitioned: bool = typer.Option(False, "--partitioned", help="Log into the active partition"),
    basic: bool = typer.Option(False, "--basic", help="Log only the old image of updates"),
    create: bool = typer.Option(False, "--create", help="Create the log table first"),
) -> None:
    """
    Install logging triggers on a source table.

    Triggers installed with --acting-user or --partitioned call SQL
    functions every writing connection must register (table_log.register_functions).
    """
    config = _capture_config(log_table, None, acting_user, partitioned, basic)

    def invoke(backend: SQLiteBackend) -> str:
        if create:
            create_log_table(backend, source, config)
        triggers = install_triggers(backend, source, config)
        return "\n".join(trigger.render() for trigger in triggers)

    _run_command(database, invoke)


@app.command("uninstall")
def uninstall_command(
    database: str = typer.Argument(..., help="SQLite database file"),
    source: str = typer.Argument(..., help="Source table"),
) -> None:
    """Remove the logging triggers from a source table; the log is kept."""
    _run_command(database, lambda backend: remove_triggers(backend, source))


@app.command("restore")
def restore_command(
    database: str = typer.Argument(..., help="SQLite database file"),
    source: str = typer.Argument(..., help="Source table"),
    log: str = typer.Argument(..., help="Log table"),
    restore: str = typer.Argument(..., help="Table to create"),
    cutoff: str = typer.Option(
        ..., callback=_check_cutoff, help="Point in time to restore, e.g. '2024-03-04 12:00:00'"
    ),
    source_pk: Optional[str] = typer.Option(
        None, help="Source key column (default: from the catalog)"
    ),
    log_pk: str = typer.Option("log_id", help="Ordering key column of the log table"),
    key: Optional[str] = typer.Option(None, help="Restore only the row with this key"),
    backward: bool = typer.Option(False, "--backward", help="Undo changes from the current table"),
    temporary: bool = typer.Option(False, "--temporary", help="Create a temporary table"),
) -> None:
    """Restore a table as of a past point in time."""
    mode = ReplayMode.BACKWARD if backward else ReplayMode.FORWARD
    _run_command(
        database,
        lambda backend: restore_table(
            backend,
            source=source,
            source_pk=source_pk,
            log=log,
            log_pk=log_pk,
            restore=restore,
            cutoff=cutoff,
            key=key,
            mode=mode,
            keep_permanent=not temporary,
        ),
    )


if __name__ == "__main__":
    app()
