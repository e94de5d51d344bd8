"""Relation identifiers: schema-qualified or bare names."""

from dataclasses import dataclass
from typing import Union

from table_log.quoting import quote_identifier, quote_qualified, split_identifier


@dataclass(frozen=True)
class Qualified:
    """A relation name with an explicit schema (attached database)."""

    schema: str
    name: str

    def render(self) -> str:
        return quote_qualified(self.schema, self.name)


@dataclass(frozen=True)
class Bare:
    """A relation name resolved through SQLite's search order."""

    name: str

    def render(self) -> str:
        return quote_identifier(self.name)


RelationIdentifier = Union[Qualified, Bare]


def parse_relation(text: str) -> RelationIdentifier:
    """
    Classify a relation name as qualified or bare.

    Args:
        text: ``name``, ``schema.name`` or a quoted variant such as
            ``"my.schema"."tbl"``

    Returns:
        Qualified if a schema part is present, otherwise Bare
    """
    parts = split_identifier(text)
    if len(parts) == 2:
        return Qualified(schema=parts[0], name=parts[1])
    return Bare(name=parts[0])


def as_relation(value: Union[str, RelationIdentifier]) -> RelationIdentifier:
    """Accept either an identifier or its textual form."""
    if isinstance(value, (Qualified, Bare)):
        return value
    return parse_relation(value)


def with_suffix(relation: RelationIdentifier, suffix: str) -> RelationIdentifier:
    """Return the same relation with ``suffix`` appended to its name."""
    if isinstance(relation, Qualified):
        return Qualified(schema=relation.schema, name=relation.name + suffix)
    return Bare(name=relation.name + suffix)
