"""
Restore descriptor.

Collects and validates everything a restore needs before the first
statement that changes the database runs: the resolved source, its
single-column primary key, the log relation with its ordering key and the
restore relation that is about to be created.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Union

from table_log import catalog, statements
from table_log.backend import SQLiteBackend
from table_log.errors import (
    ColumnNotFound,
    CompositeKeyUnsupported,
    InvalidIdentifier,
    KeyCollision,
    RelationNotFound,
    RestoreTableExists,
)
from table_log.primary_key import PrimaryKeyDescriptor, resolve_primary_key
from table_log.quoting import split_identifier
from table_log.relations import Bare, Qualified, RelationIdentifier, as_relation

logger = logging.getLogger(__name__)

TEMP_SCHEMA = "temp"
MAIN_SCHEMA = "main"


@dataclass(frozen=True)
class RestoreDescriptor:
    source: Qualified
    primary_key: PrimaryKeyDescriptor
    # Surviving source columns, in source order
    columns: List[str]
    log: Qualified
    ordering_key: str
    restore: Qualified
    temporary: bool = True

    @property
    def key_column(self) -> str:
        return self.primary_key.names[0]

    @property
    def key_index(self) -> int:
        wanted = self.key_column.lower()
        return next(i for i, name in enumerate(self.columns) if name.lower() == wanted)


def _restore_relation(
    backend: SQLiteBackend, restore: RelationIdentifier, temporary: bool
) -> Qualified:
    if temporary:
        if isinstance(restore, Qualified) and restore.schema.lower() != TEMP_SCHEMA:
            raise InvalidIdentifier(
                "temporary restore table cannot be created in another schema",
                restore=restore.render(),
            )
        return Qualified(schema=TEMP_SCHEMA, name=restore.name)

    if isinstance(restore, Bare):
        return Qualified(schema=MAIN_SCHEMA, name=restore.name)
    if not catalog.schema_exists(backend, restore.schema):
        raise RelationNotFound(
            "schema does not exist", schema=restore.schema, relation=restore.name
        )
    return restore


def _ordering_key(log_pk_column: str) -> str:
    parts = split_identifier(log_pk_column)
    if len(parts) != 1:
        raise InvalidIdentifier("log ordering key must be a column name", column=log_pk_column)
    return parts[0]


def build_restore_descriptor(
    backend: SQLiteBackend,
    source_name: Union[str, RelationIdentifier],
    source_pk_column: Optional[str],
    log_name: Union[str, RelationIdentifier],
    log_pk_column: str,
    restore_name: Union[str, RelationIdentifier],
    temporary: bool = True,
) -> RestoreDescriptor:
    """
    Validate a restore request.

    Args:
        backend: Database backend
        source_name: Source table, bare or schema-qualified
        source_pk_column: Source key column, or None to read it from the catalog
        log_name: Log table, bare or schema-qualified
        log_pk_column: Ordering key column of the log table
        restore_name: Table to create; a temporary one lives in ``temp``, a
            permanent bare name is created in ``main``
        temporary: Create the restore table as a temporary table

    Returns:
        The restore descriptor; nothing has been written

    Raises:
        InvalidIdentifier: For unparsable names, or a temporary restore table
            qualified with a schema other than ``temp``
        RelationNotFound: If the source or log table, or a named schema, is missing
        NoPrimaryKey: If no key column was given and the source has none
        KeyCollision: If the ordering key is also a source key column
        CompositeKeyUnsupported: If the source key has more than one column
        RestoreTableExists: If the restore table is already present
        ColumnNotFound: If the log lacks its ordering key or a record column
    """
    source_rel = as_relation(source_name)
    log_rel = as_relation(log_name)
    restore_rel = as_relation(restore_name)
    ordering_key = _ordering_key(log_pk_column)
    restore = _restore_relation(backend, restore_rel, temporary)

    with backend.transaction():
        source = catalog.resolve_relation(backend, source_rel, "source table")
        logger.debug("source table: %s", source.render())
        log = catalog.resolve_relation(backend, log_rel, "log table")
        logger.debug("log table: %s", log.render())

        primary_key = resolve_primary_key(backend, source, source_pk_column or None)

        if ordering_key.lower() in (name.lower() for name in primary_key.names):
            raise KeyCollision(
                "primary key of source table and log table cannot be equal",
                source=source.render(),
                column=ordering_key,
            )
        if primary_key.is_composite:
            raise CompositeKeyUnsupported(
                "composite primary keys are not supported",
                source=source.render(),
                columns=list(primary_key.names),
            )

        # a bare name must not shadow or be shadowed by any existing relation
        lookup = restore_rel if isinstance(restore_rel, Bare) else restore
        existing = catalog.find_relation(backend, lookup)
        if existing is not None:
            raise RestoreTableExists("restore table already exists", relation=existing.render())

        columns = [col.name for col in catalog.surviving(catalog.columns(backend, source))]
        log_columns = catalog.columns(backend, log)

        implicit_rowid = (
            ordering_key.lower() in catalog.ROWID_ALIASES
            and catalog.find_column(log_columns, ordering_key) is None
        )
        if implicit_rowid and not catalog.has_rowid(backend, log):
            raise ColumnNotFound(
                "log table has no rowid to order by", relation=log.render(), column=ordering_key
            )

    required = [] if implicit_rowid else [ordering_key]
    required += columns + list(statements.TRAILER_COLUMNS)
    for name in required:
        if catalog.find_column(log_columns, name) is None:
            raise ColumnNotFound(
                "column not found in log table", relation=log.render(), column=name
            )

    logger.debug("restore table: %s", restore.render())
    return RestoreDescriptor(
        source=source,
        primary_key=primary_key,
        columns=columns,
        log=log,
        ordering_key=ordering_key,
        restore=restore,
        temporary=temporary,
    )
