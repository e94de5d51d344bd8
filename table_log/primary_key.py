"""Primary key resolution for source relations."""

import logging
from dataclasses import dataclass
from typing import Optional, Tuple, Union

from table_log import catalog
from table_log.backend import SQLiteBackend
from table_log.errors import ColumnNotFound, NoPrimaryKey
from table_log.relations import RelationIdentifier, as_relation

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class KeyColumn:
    position: int
    name: str


@dataclass(frozen=True)
class PrimaryKeyDescriptor:
    """Ordered primary key columns of a source relation."""

    columns: Tuple[KeyColumn, ...]

    def __post_init__(self):
        if not self.columns:
            raise NoPrimaryKey("primary key descriptor needs at least one column")

    def __len__(self) -> int:
        return len(self.columns)

    @property
    def names(self) -> Tuple[str, ...]:
        return tuple(col.name for col in self.columns)

    @property
    def is_composite(self) -> bool:
        return len(self.columns) > 1


def resolve_primary_key(
    backend: SQLiteBackend,
    relation: Union[str, RelationIdentifier],
    explicit_column: Optional[str] = None,
) -> PrimaryKeyDescriptor:
    """
    Discover the primary key of a source relation.

    With ``explicit_column`` the key is that single column. Otherwise the
    key columns come from the catalog in key order, which covers rowid
    aliases (``INTEGER PRIMARY KEY``) as well as composite keys. The lookup
    runs inside a savepoint, so it holds only a shared read lock.

    Args:
        backend: Database backend
        relation: Source relation name or identifier
        explicit_column: Optional single key column supplied by the caller

    Returns:
        The primary key descriptor

    Raises:
        RelationNotFound: If the relation does not exist
        ColumnNotFound: If ``explicit_column`` is not a column of the relation
        NoPrimaryKey: If no column was supplied and the relation has no key
    """
    with backend.transaction():
        source = catalog.resolve_relation(backend, as_relation(relation), "source table")
        cols = catalog.columns(backend, source)

    if explicit_column is not None:
        col = catalog.find_column(cols, explicit_column)
        if col is None:
            raise ColumnNotFound(
                "primary key column not found", relation=source.render(), column=explicit_column
            )
        key = PrimaryKeyDescriptor(columns=(KeyColumn(position=col.position, name=col.name),))
    else:
        pk_columns = catalog.primary_key_columns(cols)
        if not pk_columns:
            raise NoPrimaryKey("no primary key on table found", relation=source.render())
        key = PrimaryKeyDescriptor(
            columns=tuple(KeyColumn(position=col.position, name=col.name) for col in pk_columns)
        )

    logger.debug("primary key of %s: %s", source.render(), ", ".join(key.names))
    return key
