"""
Replay engine.

Reconstructs a table as of a past point in time from its change log.

Forward replay starts from an empty copy of the source and applies every
record up to the cutoff in log order. Backward replay starts from a copy
of the current source and undoes every record from the cutoff on, newest
first. Both produce the same table as long as the log covers the source's
whole history (forward) or every change since the cutoff (backward).

Usage:
    with connect("shop.db") as backend:
        name = restore_table(
            backend,
            source="orders",
            source_pk="id",
            log="orders_log",
            log_pk="log_id",
            restore="orders_as_of_monday",
            cutoff="2024-03-04 00:00:00",
        )
"""

import contextlib
import logging
from datetime import datetime, timezone
from enum import IntEnum
from typing import Any, Optional, Union

from table_log import statements
from table_log.backend import SQLiteBackend
from table_log.capture import ChangeMode, TupleRole
from table_log.descriptor import RestoreDescriptor, build_restore_descriptor
from table_log.errors import NullKeyError, UnknownChangeMode
from table_log.relations import RelationIdentifier

logger = logging.getLogger(__name__)

Cutoff = Union[datetime, str]


class ReplayMode(IntEnum):
    FORWARD = 0
    BACKWARD = 1

    @classmethod
    def coerce(cls, value: Union["ReplayMode", int, str]) -> "ReplayMode":
        """Accept a mode, its name, or an integer where anything above 0 is backward."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                return cls[value.strip().upper()]
            except KeyError:
                raise ValueError(f"unknown replay mode: {value!r}") from None
        return cls.BACKWARD if int(value) > 0 else cls.FORWARD


def format_cutoff(cutoff: Cutoff) -> str:
    """
    Render a cutoff in the format of the default log clock.

    Naive datetimes are taken as UTC, aware ones are converted. Text is
    parsed with ``datetime.fromisoformat`` so a date alone means midnight.
    """
    if isinstance(cutoff, str):
        try:
            cutoff = datetime.fromisoformat(cutoff.strip())
        except ValueError as exc:
            raise ValueError(f"invalid cutoff timestamp: {cutoff!r}") from exc
    if not isinstance(cutoff, datetime):
        raise TypeError(f"Unsupported cutoff type: {type(cutoff)}")

    if cutoff.tzinfo is not None:
        cutoff = cutoff.astimezone(timezone.utc).replace(tzinfo=None)
    return cutoff.strftime("%Y-%m-%d %H:%M:%S.") + f"{cutoff.microsecond // 1000:03d}"


class _UpdatePairing:
    """
    Key carried from the first half of an UPDATE record pair to the second.

    Scoped to one replay pass. The key is consumed when used, so an
    actionable record without a preceding partner (logs written in basic
    mode) falls back to its own key.
    """

    def __init__(self):
        self._key: Any = None
        self._pending = False

    def remember(self, key: Any) -> None:
        self._key = key
        self._pending = True

    def take(self, own_key: Any) -> Any:
        if not self._pending:
            return own_key
        key = self._key
        self._key = None
        self._pending = False
        return key


class _Applier:
    """Row mutations against the restore table, rendered once per pass."""

    def __init__(self, backend: SQLiteBackend, descr: RestoreDescriptor):
        self.backend = backend
        self.descr = descr
        self.insert_sql = statements.insert_row(descr.restore, descr.columns)
        self.update_sql = statements.update_row(descr.restore, descr.columns, descr.key_column)
        self.delete_sql = statements.delete_row(descr.restore, descr.key_column)

    def _require_key(self, key: Any, action: str) -> None:
        if key is None:
            raise NullKeyError(
                f"cannot {action} row with NULL primary key",
                restore=self.descr.restore.render(),
                column=self.descr.key_column,
            )

    def insert(self, values: list) -> None:
        self.backend.execute(self.insert_sql, values)

    def update(self, values: list, key: Any) -> None:
        self._require_key(key, "update")
        cursor = self.backend.execute(self.update_sql, values + [key])
        if cursor.rowcount == 0:
            logger.warning(
                "update of %s = %r in %s matched no row",
                self.descr.key_column,
                key,
                self.descr.restore.render(),
            )

    def delete(self, key: Any) -> None:
        self._require_key(key, "delete")
        cursor = self.backend.execute(self.delete_sql, [key])
        if cursor.rowcount == 0:
            logger.warning(
                "delete of %s = %r in %s matched no row",
                self.descr.key_column,
                key,
                self.descr.restore.render(),
            )


def replay(
    backend: SQLiteBackend,
    descr: RestoreDescriptor,
    cutoff: Cutoff,
    key: Optional[Any] = None,
    mode: Union[ReplayMode, int, str] = ReplayMode.FORWARD,
) -> str:
    """
    Create and populate the restore table described by ``descr``.

    Args:
        backend: Database backend
        descr: A validated restore descriptor
        cutoff: Point in time to reconstruct
        key: Restore only the row with this primary key value
        mode: FORWARD (replay from empty) or BACKWARD (undo from current)

    Returns:
        The rendered, schema-qualified name of the restore table

    Raises:
        UnknownChangeMode: If a log record has an unrecognised mode or role
        NullKeyError: If a record that targets a row has a NULL key
    """
    mode = ReplayMode.coerce(mode)
    backward = mode is ReplayMode.BACKWARD
    cutoff_text = format_cutoff(cutoff)
    has_key = key is not None

    # restore table: a copy of the source, empty when replaying forward
    backend.execute(
        statements.seed_restore_table(
            descr.restore,
            descr.source,
            descr.columns,
            temporary=descr.temporary,
            empty=not backward,
            key_column=descr.key_column,
            key=key,
            has_key=has_key,
        )
    )
    logger.debug("seeded restore table %s", descr.restore.render())

    select_sql = statements.select_log_records(
        descr.log,
        descr.columns,
        descr.ordering_key,
        backward=backward,
        key_column=descr.key_column,
        has_key=has_key,
    )
    params = [cutoff_text, key] if has_key else [cutoff_text]

    applier = _Applier(backend, descr)
    pairing = _UpdatePairing()
    # the UPDATE half that carries the row state to restore
    update_role = TupleRole.OLD.value if backward else TupleRole.NEW.value

    n_columns = len(descr.columns)
    key_index = descr.key_index
    applied = 0

    with contextlib.closing(backend.execute(select_sql, params)) as cursor:
        for record in cursor:
            values = list(record[:n_columns])
            change_mode, tuple_role, changed_at = record[n_columns:]
            own_key = values[key_index]
            logger.debug(
                "apply %s/%s at %s for key %r", change_mode, tuple_role, changed_at, own_key
            )

            if change_mode == ChangeMode.INSERT.value:
                if backward:
                    applier.delete(own_key)
                else:
                    applier.insert(values)
            elif change_mode == ChangeMode.DELETE.value:
                if backward:
                    applier.insert(values)
                else:
                    applier.delete(own_key)
            elif change_mode == ChangeMode.UPDATE.value:
                if tuple_role == update_role:
                    applier.update(values, pairing.take(own_key))
                elif tuple_role in (TupleRole.OLD.value, TupleRole.NEW.value):
                    pairing.remember(own_key)
                else:
                    raise UnknownChangeMode(
                        "unknown tuple role in log table",
                        log=descr.log.render(),
                        tuple_role=tuple_role,
                    )
            else:
                raise UnknownChangeMode(
                    "unknown operation in log table", log=descr.log.render(), mode=change_mode
                )
            applied += 1

    logger.info(
        "restored %s from %s (%s, cutoff %s, %d records)",
        descr.restore.render(),
        descr.log.render(),
        mode.name.lower(),
        cutoff_text,
        applied,
    )
    return descr.restore.render()


def restore_table(
    backend: SQLiteBackend,
    source: Union[str, RelationIdentifier],
    source_pk: Optional[str],
    log: Union[str, RelationIdentifier],
    log_pk: str,
    restore: Union[str, RelationIdentifier],
    cutoff: Cutoff,
    key: Optional[Any] = None,
    mode: Union[ReplayMode, int, str] = ReplayMode.FORWARD,
    keep_permanent: Union[bool, int] = False,
    atomic: bool = True,
) -> str:
    """
    Restore a table as of ``cutoff`` into a new table.

    Args:
        backend: Database backend
        source: Source table name
        source_pk: Source key column; empty or None reads it from the catalog
        log: Log table name
        log_pk: Ordering key column of the log table
        restore: Name of the table to create
        cutoff: Point in time to reconstruct
        key: Restore a single row; an empty string means no filter
        mode: FORWARD / BACKWARD, or an integer (> 0 means backward)
        keep_permanent: Create a permanent table instead of a temporary one
        atomic: Run the whole restore in one savepoint, so a failure leaves
            no restore table behind

    Returns:
        The rendered, schema-qualified name of the restore table
    """
    if key == "":
        key = None
    temporary = not int(keep_permanent) > 0

    if not atomic:
        descr = build_restore_descriptor(
            backend, source, source_pk, log, log_pk, restore, temporary=temporary
        )
        return replay(backend, descr, cutoff, key=key, mode=mode)

    with backend.transaction():
        descr = build_restore_descriptor(
            backend, source, source_pk, log, log_pk, restore, temporary=temporary
        )
        return replay(backend, descr, cutoff, key=key, mode=mode)
