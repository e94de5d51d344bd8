"""
Catalog introspection for SQLite.

Answers the few questions capture and restore ask about the schema: which
databases exist, whether a relation exists, and what its columns and
primary key are. Columns come from ``pragma_table_xinfo``; hidden columns
of virtual tables cannot be read or written through ordinary statements,
so they are reported as dropped and skipped like dropped columns.
"""

import sqlite3
from dataclasses import dataclass
from typing import List, Optional

from table_log.backend import SQLiteBackend
from table_log.errors import RelationNotFound
from table_log.quoting import quote_identifier
from table_log.relations import Qualified, RelationIdentifier

# Names accepted as the implicit rowid of a table
ROWID_ALIASES = ("rowid", "oid", "_rowid_")


@dataclass(frozen=True)
class Column:
    """One attribute of a relation, in attribute order."""

    position: int
    name: str
    type: str = ""
    notnull: bool = False
    # 1-based position within the primary key, 0 if not part of it
    pk: int = 0
    dropped: bool = False


def schemas(backend: SQLiteBackend) -> List[str]:
    """
    Return attached database names in unqualified-name search order.

    SQLite resolves an unqualified name against ``temp`` first, then
    ``main``, then attached databases in the order they were attached.
    """
    rows = backend.query("SELECT seq, name FROM pragma_database_list ORDER BY seq")
    names = [name for _, name in rows]
    ordered = [name for name in names if name.lower() == "temp"]
    if not ordered:
        # temp is always searchable even before the first temp object exists
        ordered.append("temp")
    ordered.extend(name for name in names if name.lower() != "temp")
    return ordered


def schema_exists(backend: SQLiteBackend, schema: str) -> bool:
    return any(name.lower() == schema.lower() for name in schemas(backend))


def _relation_in_schema(backend: SQLiteBackend, schema: str, name: str) -> Optional[str]:
    sql = (
        f"SELECT name FROM {quote_identifier(schema)}.sqlite_master "
        "WHERE type IN ('table', 'view') AND name = ? COLLATE NOCASE"
    )
    return backend.scalar(sql, (name,))


def find_relation(backend: SQLiteBackend, relation: RelationIdentifier) -> Optional[Qualified]:
    """
    Locate a relation.

    Returns:
        The relation qualified with the schema it lives in, or None if it
        does not exist

    Raises:
        RelationNotFound: If a qualified name refers to an unknown schema
    """
    if isinstance(relation, Qualified):
        if not schema_exists(backend, relation.schema):
            raise RelationNotFound(
                "schema does not exist", schema=relation.schema, relation=relation.name
            )
        found = _relation_in_schema(backend, relation.schema, relation.name)
        return Qualified(schema=relation.schema, name=found) if found else None

    for schema in schemas(backend):
        found = _relation_in_schema(backend, schema, relation.name)
        if found:
            return Qualified(schema=schema, name=found)
    return None


def resolve_relation(
    backend: SQLiteBackend, relation: RelationIdentifier, role: str = "relation"
) -> Qualified:
    """Like find_relation, but a missing relation is an error."""
    found = find_relation(backend, relation)
    if found is None:
        raise RelationNotFound(f"{role} does not exist", relation=relation.render())
    return found


def relation_exists(backend: SQLiteBackend, relation: RelationIdentifier) -> bool:
    return find_relation(backend, relation) is not None


def columns(backend: SQLiteBackend, relation: Qualified) -> List[Column]:
    """Return all attributes of a relation, dropped ones included."""
    rows = backend.query(
        'SELECT cid, name, type, "notnull", pk, hidden FROM pragma_table_xinfo(?, ?) ORDER BY cid',
        (relation.name, relation.schema),
    )
    if not rows:
        raise RelationNotFound("could not read columns", relation=relation.render())

    return [
        Column(
            position=cid,
            name=name,
            type=type_ or "",
            notnull=bool(notnull),
            pk=pk,
            dropped=hidden == 1,
        )
        for cid, name, type_, notnull, pk, hidden in rows
    ]


def surviving(cols: List[Column]) -> List[Column]:
    """Columns that take part in logging and restore."""
    return [col for col in cols if not col.dropped]


def find_column(cols: List[Column], name: str) -> Optional[Column]:
    for col in cols:
        if not col.dropped and col.name.lower() == name.lower():
            return col
    return None


def primary_key_columns(cols: List[Column]) -> List[Column]:
    """Return the primary key columns ordered by their position in the key."""
    pk_columns = [col for col in cols if col.pk > 0 and not col.dropped]
    pk_columns.sort(key=lambda col: col.pk)
    return pk_columns


def has_rowid(backend: SQLiteBackend, relation: Qualified) -> bool:
    """Return False for WITHOUT ROWID tables and views."""
    try:
        backend.query(f"SELECT rowid FROM {relation.render()} LIMIT 0")
    except sqlite3.OperationalError:
        return False
    return True
