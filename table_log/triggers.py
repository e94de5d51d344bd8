"""
Trigger-based capture for SQLite.

Installs AFTER INSERT, UPDATE and DELETE triggers on a source table that
append change records with exactly the layout ``table_log.capture``
writes. The triggers run inside the mutating statement, so a row change
and its log records commit or roll back together.

Usage:
    backend = SQLiteBackend(conn)
    config = CaptureConfig()

    create_log_table(backend, "orders", config)
    install_triggers(backend, "orders", config)

    conn.execute("INSERT INTO orders (id, status) VALUES (1, 'new')")
    # orders_log now holds one INSERT/new record

Acting user and partition selection reach the triggers through SQL
functions registered on the connection (``register_functions``); every
connection that writes to a source table configured with either option
must register them, or its writes fail with "no such function".
"""

import logging
from typing import List, Optional, Union

from table_log import catalog, statements
from table_log.backend import SQLiteBackend
from table_log.capture import ChangeMode, TupleRole, prepare_layouts
from table_log.config import CaptureConfig
from table_log.errors import ConfigurationError, KeyCollision
from table_log.relations import Qualified, RelationIdentifier, as_relation

logger = logging.getLogger(__name__)

_EVENTS = (ChangeMode.INSERT, ChangeMode.UPDATE, ChangeMode.DELETE)


def trigger_name(source: Qualified, event: ChangeMode) -> Qualified:
    return Qualified(schema=source.schema, name=f"table_log_{source.name}_{event.value.lower()}")


def _images(event: ChangeMode, basic: bool) -> List[tuple]:
    if event is ChangeMode.INSERT:
        return [("NEW", TupleRole.NEW.value)]
    if event is ChangeMode.DELETE:
        return [("OLD", TupleRole.OLD.value)]
    if basic:
        return [("OLD", TupleRole.OLD.value)]
    return [("OLD", TupleRole.OLD.value), ("NEW", TupleRole.NEW.value)]


def create_log_table(
    backend: SQLiteBackend,
    source: Union[str, RelationIdentifier],
    config: Optional[CaptureConfig] = None,
) -> List[Qualified]:
    """
    Create the log table(s) for a source table.

    The log table copies the surviving source columns with their declared
    types, adds the optional acting-user column and the trailer, and
    declares the ordering key as ``INTEGER PRIMARY KEY AUTOINCREMENT`` so
    the sequence is stable and never reused. A partitioned configuration
    gets one log table per partition.

    Returns:
        The created (or already existing) log relations
    """
    config = config or CaptureConfig()
    layouts = prepare_layouts(backend, source, config, check=False)
    ordering_key = config.declared_ordering_key()

    created = []
    with backend.transaction():
        for layout in layouts.values():
            names = {name.lower() for name in layout.column_names}
            if ordering_key and ordering_key.lower() in names:
                raise KeyCollision(
                    "ordering key of log table is a column of the source table",
                    source=layout.source.render(),
                    ordering_key=ordering_key,
                )
            reserved = set(statements.TRAILER_COLUMNS)
            if layout.acting_user:
                reserved.add(statements.ACTING_USER_COLUMN)
            clashes = sorted(name for name in names if name in reserved)
            if clashes:
                raise ConfigurationError(
                    "source column names clash with log table columns",
                    source=layout.source.render(),
                    columns=clashes,
                )

            logger.debug("create log table %s", layout.log.render())
            backend.execute(
                statements.create_log_table(
                    layout.log, layout.surviving, layout.acting_user, ordering_key
                )
            )
            index = Qualified(schema=layout.log.schema, name=f"{layout.log.name}_changed_at")
            backend.execute(statements.create_log_index(index, layout.log.name))
            created.append(layout.log)

    return created


def register_functions(backend: SQLiteBackend, config: CaptureConfig) -> None:
    """Register the SQL functions the configuration's triggers call."""
    if config.partitioned:
        selector = config.partition_selector()
        backend.register_function(statements.PARTITION_FUNCTION, 0, lambda: selector.active)
    if config.acting_user:
        backend.register_function(statements.ACTING_USER_FUNCTION, 0, config.acting_user_provider)


def install_triggers(
    backend: SQLiteBackend,
    source: Union[str, RelationIdentifier],
    config: Optional[CaptureConfig] = None,
) -> List[Qualified]:
    """
    Install INSERT, UPDATE and DELETE logging triggers on a source table.

    The log layout is validated first. SQLite triggers can only write to
    tables of their own database, so the log table must live in the source
    table's schema.

    The triggers re-check both column counts on every row event. Once the
    source or a log table gains or loses a column, every INSERT, UPDATE and
    DELETE on the source fails with ``sqlite3.IntegrityError`` until the
    log matches again and the triggers are reinstalled. Installing replaces
    existing triggers.

    Returns:
        The installed trigger names

    Raises:
        ColumnCountMismatch: If a log table has the wrong shape
        ConfigurationError: If the log table is in another schema
    """
    config = config or CaptureConfig()
    layouts = prepare_layouts(backend, source, config)
    first = next(iter(layouts.values()))
    resolved = first.source

    if first.log.schema.lower() != resolved.schema.lower():
        raise ConfigurationError(
            "triggers can only log into the source table's schema",
            source=resolved.render(),
            log=first.log.render(),
        )

    register_functions(backend, config)

    targets = [(layout.log.name, pid) for pid, layout in layouts.items()]
    names = []
    with backend.transaction():
        for event in _EVENTS:
            name = trigger_name(resolved, event)
            sql = statements.create_trigger(
                trigger=name,
                event=event.value,
                source_name=resolved.name,
                targets=targets,
                images=_images(event, config.basic),
                columns=first.column_names,
                acting_user=config.acting_user,
                clock=config.clock_sql,
                log_columns=first.expected_log_columns(),
                ordering_key=first.ordering_key,
            )
            backend.execute(statements.drop_trigger(name))
            backend.execute(sql)
            names.append(name)

    logger.info("installed table_log triggers on %s", resolved.render())
    return names


def remove_triggers(backend: SQLiteBackend, source: Union[str, RelationIdentifier]) -> None:
    """Drop the logging triggers of a source table; the log is kept."""
    resolved = catalog.resolve_relation(backend, as_relation(source), "source table")
    with backend.transaction():
        for event in _EVENTS:
            backend.execute(statements.drop_trigger(trigger_name(resolved, event)))
    logger.info("removed table_log triggers from %s", resolved.render())


def triggers_installed(backend: SQLiteBackend, source: Union[str, RelationIdentifier]) -> bool:
    """Return True if all three logging triggers exist."""
    resolved = catalog.resolve_relation(backend, as_relation(source), "source table")
    names = [trigger_name(resolved, event).name for event in _EVENTS]
    count = backend.scalar(
        f"SELECT COUNT(*) FROM {statements.quote_identifier(resolved.schema)}.sqlite_master "
        "WHERE type = 'trigger' AND name IN (?, ?, ?)",
        names,
    )
    return count == len(names)
