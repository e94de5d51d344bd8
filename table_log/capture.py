"""
Change capture.

Every row-level mutation of a source table becomes one record in its log
table (two for an UPDATE: the old image, then the new one). A record is
the full row, restricted to surviving columns in source order, followed
by an optional acting-user column and the trailer ``mode``,
``tuple_role`` and ``changed_at``.

Usage:
    backend = SQLiteBackend(conn)
    capture = ChangeCapture(backend, "orders")

    with backend.transaction():
        conn.execute("UPDATE orders SET status = 'shipped' WHERE id = 1")
        capture.log_update(old_row, new_row)

The log layout is validated once when the capture session starts; a log
table with the wrong number of columns is rejected before any record is
written.
"""

import logging
import sqlite3
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

from table_log import catalog, statements
from table_log.backend import SQLiteBackend
from table_log.catalog import Column
from table_log.config import DEFAULT_CLOCK_SQL, CaptureConfig
from table_log.errors import ColumnCountMismatch, LogWriteFailed, RelationNotFound
from table_log.relations import Qualified, RelationIdentifier, as_relation, with_suffix

logger = logging.getLogger(__name__)


class ChangeMode(str, Enum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


class TupleRole(str, Enum):
    OLD = "old"
    NEW = "new"


# A row image: column name -> value, or values in source attribute order
Row = Union[Mapping[str, Any], Sequence[Any]]


@dataclass
class LogLayout:
    """Column layout shared by a source table and one log table."""

    source: Qualified
    # All source attributes, dropped ones included
    columns: List[Column]
    log: Qualified
    acting_user: bool = False
    ordering_key: Optional[str] = None
    clock_sql: str = DEFAULT_CLOCK_SQL
    validated: bool = field(default=False, compare=False)

    @property
    def surviving(self) -> List[Column]:
        return catalog.surviving(self.columns)

    @property
    def column_names(self) -> List[str]:
        return [col.name for col in self.surviving]

    def expected_log_columns(self) -> int:
        extra = len(statements.TRAILER_COLUMNS) + (1 if self.acting_user else 0)
        return len(self.surviving) + extra

    def validate(self, log_columns: List[Column]) -> None:
        """
        Check the log table's column count against the source.

        The log table's ordering key column is not part of the record and is
        not counted.

        Raises:
            ColumnCountMismatch: If the counts differ
        """
        counted = [
            col
            for col in catalog.surviving(log_columns)
            if not (self.ordering_key and col.name.lower() == self.ordering_key.lower())
        ]
        expected = self.expected_log_columns()

        logger.debug(
            "number columns in source table %s: %d", self.source.render(), len(self.surviving)
        )
        logger.debug("number columns in log table %s: %d", self.log.render(), len(counted))

        if len(counted) != expected:
            raise ColumnCountMismatch(
                "number of columns in log table does not match source table",
                source=self.source.render(),
                source_columns=len(self.surviving),
                log=self.log.render(),
                log_columns=len(counted),
                expected=expected,
            )
        self.validated = True

    def encode(self, row: Row) -> List[Any]:
        """
        Return the values of the surviving columns of a row image.

        A mapping is read by column name (missing columns are NULL). A
        sequence holds one value per source attribute, or one per surviving
        attribute; values at dropped positions are skipped.

        Raises:
            ColumnCountMismatch: If the row does not fit the source columns
        """
        surviving = self.surviving

        if hasattr(row, "keys"):
            values = {key: row[key] for key in row.keys()}
            known = {col.name for col in surviving}
            unknown = [key for key in values if key not in known]
            if unknown:
                raise ColumnCountMismatch(
                    "row image has columns unknown to the source table",
                    source=self.source.render(),
                    columns=unknown,
                )
            return [values.get(col.name) for col in surviving]

        row = list(row)
        if len(row) == len(self.columns):
            return [value for col, value in zip(self.columns, row) if not col.dropped]
        if len(row) == len(surviving):
            return row

        raise ColumnCountMismatch(
            "row image does not match source table",
            source=self.source.render(),
            source_columns=len(surviving),
            row_columns=len(row),
        )


def check_log_layout(backend: SQLiteBackend, layout: LogLayout) -> LogLayout:
    """Validate a layout against the log table in the database."""
    log = catalog.find_relation(backend, layout.log)
    if log is None:
        raise RelationNotFound("log table does not exist", relation=layout.log.render())
    layout.validate(catalog.columns(backend, log))
    logger.debug("log table %s OK", layout.log.render())
    return layout


def prepare_layouts(
    backend: SQLiteBackend,
    source: Union[str, RelationIdentifier],
    config: CaptureConfig,
    check: bool = True,
) -> Dict[Optional[int], LogLayout]:
    """
    Build the log layouts of a capture session.

    Returns one layout keyed by None for an unpartitioned log, or one per
    partition id otherwise.

    Raises:
        RelationNotFound: If the source or a log table is missing
        ColumnCountMismatch: If a log table has the wrong shape
    """
    config.validate()
    resolved = catalog.resolve_relation(backend, as_relation(source), "source table")
    cols = catalog.columns(backend, resolved)
    if not catalog.surviving(cols):
        raise ColumnCountMismatch("source table has no columns", source=resolved.render())

    base = config.log_relation(resolved)
    if config.partitioned:
        selector = config.partition_selector()
        logs = {pid: with_suffix(base, selector.suffix(pid)) for pid in selector.partitions()}
    else:
        logs = {None: base}

    layouts = {}
    for pid, log in logs.items():
        layout = LogLayout(
            source=resolved,
            columns=cols,
            log=log,
            acting_user=config.acting_user,
            ordering_key=config.ordering_key,
            clock_sql=config.clock_sql,
        )
        if check:
            check_log_layout(backend, layout)
        layouts[pid] = layout
    return layouts


def append_change_record(
    backend: SQLiteBackend,
    layout: LogLayout,
    row: Row,
    mode: Union[ChangeMode, str],
    tuple_role: Union[TupleRole, str],
    acting_user: Optional[str] = None,
) -> None:
    """
    Append one change record to the layout's log table.

    Args:
        backend: Database backend
        layout: A validated log layout
        row: The row image to record
        mode: INSERT, UPDATE or DELETE
        tuple_role: ``old`` or ``new``
        acting_user: Value of the acting-user column, if the layout has one

    Raises:
        ColumnCountMismatch: If the layout was not validated or the row does
            not fit it
        LogWriteFailed: If the insert does not append exactly one row
    """
    if not layout.validated:
        raise ColumnCountMismatch(
            "log table layout has not been validated", log=layout.log.render()
        )

    mode = ChangeMode(mode)
    tuple_role = TupleRole(tuple_role)

    params = layout.encode(row)
    if layout.acting_user:
        params.append(acting_user)
    params.extend([mode.value, tuple_role.value])

    sql = statements.insert_log_record(
        layout.log, layout.column_names, layout.acting_user, layout.clock_sql
    )

    try:
        cursor = backend.execute(sql, params)
    except sqlite3.Error as exc:
        raise LogWriteFailed(
            f"could not insert log information into relation: {exc}",
            log=layout.log.render(),
            mode=mode.value,
            tuple_role=tuple_role.value,
        ) from exc

    if cursor.rowcount != 1:
        raise LogWriteFailed(
            "could not insert log information into relation",
            log=layout.log.render(),
            rowcount=cursor.rowcount,
        )


class ChangeCapture:
    """
    Capture session for one source table.

    Validates the log layout on construction, then appends records for the
    row events it is given. Partitioned sessions pick the log table of the
    currently active partition on every call.
    """

    def __init__(
        self,
        backend: SQLiteBackend,
        source: Union[str, RelationIdentifier],
        config: Optional[CaptureConfig] = None,
    ):
        self.backend = backend
        self.config = config or CaptureConfig()
        self.layouts = prepare_layouts(backend, source, self.config)
        self.source = next(iter(self.layouts.values())).source

    @property
    def layout(self) -> LogLayout:
        """The layout of the active log table."""
        if not self.config.partitioned:
            return self.layouts[None]
        return self.layouts[self.config.partition_selector().active]

    @property
    def log(self) -> Qualified:
        return self.layout.log

    def capture(
        self,
        event: Union[ChangeMode, str],
        row: Row,
        new_row: Optional[Row] = None,
        acting_user: Optional[str] = None,
    ) -> None:
        """
        Log one row event.

        Args:
            event: INSERT, UPDATE or DELETE
            row: The new row for INSERT, the old row for UPDATE and DELETE
            new_row: The new row of an UPDATE (ignored in basic mode)
            acting_user: Overrides the configured acting-user provider
        """
        event = ChangeMode(event)
        layout = self.layout

        if event is ChangeMode.UPDATE and new_row is None and not self.config.basic:
            raise ValueError("UPDATE capture needs the new row image")

        if layout.acting_user and acting_user is None:
            acting_user = self.config.acting_user_provider()

        logger.debug(
            "capture %s on %s into %s", event.value, self.source.render(), layout.log.render()
        )

        with self.backend.transaction():
            if event is ChangeMode.INSERT:
                append_change_record(self.backend, layout, row, event, TupleRole.NEW, acting_user)
            elif event is ChangeMode.DELETE:
                append_change_record(self.backend, layout, row, event, TupleRole.OLD, acting_user)
            else:
                append_change_record(self.backend, layout, row, event, TupleRole.OLD, acting_user)
                if not self.config.basic:
                    append_change_record(
                        self.backend, layout, new_row, event, TupleRole.NEW, acting_user
                    )

    def log_insert(self, row: Row, acting_user: Optional[str] = None) -> None:
        self.capture(ChangeMode.INSERT, row, acting_user=acting_user)

    def log_update(
        self, old_row: Row, new_row: Optional[Row] = None, acting_user: Optional[str] = None
    ) -> None:
        self.capture(ChangeMode.UPDATE, old_row, new_row, acting_user=acting_user)

    def log_delete(self, row: Row, acting_user: Optional[str] = None) -> None:
        self.capture(ChangeMode.DELETE, row, acting_user=acting_user)
