"""
Statement builder.

Every statement table_log sends to SQLite is rendered from a jinja2
template. Templates never see raw names or types. Each filter delegates to
``table_log.quoting``:

- ``ident`` for identifiers, ``relation`` for relations
- ``literal`` / ``value`` for literals
- ``typename`` for declared column types copied from the catalog

Row values are bound as ``?`` parameters wherever SQLite accepts them.
"""

from typing import Any, List, Optional, Sequence

from jinja2 import Environment, StrictUndefined

from table_log.quoting import check_type_name, quote_identifier, quote_literal, sql_value
from table_log.relations import Qualified, RelationIdentifier

# Column names of the log relation trailer
ACTING_USER_COLUMN = "acting_user"
MODE_COLUMN = "mode"
TUPLE_ROLE_COLUMN = "tuple_role"
CHANGED_AT_COLUMN = "changed_at"
TRAILER_COLUMNS = (MODE_COLUMN, TUPLE_ROLE_COLUMN, CHANGED_AT_COLUMN)

# SQL functions registered on connections whose triggers need them
PARTITION_FUNCTION = "table_log_active_partition"
ACTING_USER_FUNCTION = "table_log_acting_user"


def _relation(relation: RelationIdentifier) -> str:
    return relation.render()


_env = Environment(undefined=StrictUndefined, autoescape=False, keep_trailing_newline=False)
_env.filters["ident"] = quote_identifier
_env.filters["literal"] = quote_literal
_env.filters["value"] = sql_value
_env.filters["relation"] = _relation
_env.filters["typename"] = check_type_name


INSERT_LOG_RECORD = _env.from_string("""
    INSERT INTO {{ log | relation }} (
        {%- for name in columns %}{{ name | ident }}, {% endfor -%}
        {%- if acting_user %}{{ acting_user_column | ident }}, {% endif -%}
        {{ mode_column | ident }}, {{ tuple_role_column | ident }}, {{ changed_at_column | ident }}
    ) VALUES (
        {%- for name in columns %}?, {% endfor -%}
        {%- if acting_user %}?, {% endif -%}
        ?, ?, {{ clock }}
    )
""")

CREATE_LOG_TABLE = _env.from_string("""
    CREATE TABLE IF NOT EXISTS {{ log | relation }} (
        {%- if ordering_key %}
        {{ ordering_key | ident }} INTEGER PRIMARY KEY AUTOINCREMENT,
        {%- endif %}
        {%- for col in columns %}
        {{ col.name | ident }}{% if col.type %} {{ col.type | typename }}{% endif %},
        {%- endfor %}
        {%- if acting_user %}
        {{ acting_user_column | ident }} TEXT,
        {%- endif %}
        {{ mode_column | ident }} TEXT NOT NULL,
        {{ tuple_role_column | ident }} TEXT NOT NULL,
        {{ changed_at_column | ident }} TEXT NOT NULL
    )
""")

CREATE_LOG_INDEX = _env.from_string("""
    CREATE INDEX IF NOT EXISTS {{ index | relation }}
    ON {{ log_name | ident }} ({{ changed_at_column | ident }})
""")

# Trigger bodies cannot qualify their target tables, so the log relation
# is written unqualified and must live in the trigger's schema. The guards
# re-count the source and log columns on every row event and abort the
# mutating statement when either has changed since installation.
CREATE_TRIGGER = _env.from_string("""
    CREATE TRIGGER IF NOT EXISTS {{ trigger | relation }}
    AFTER {{ event }} ON {{ source_name | ident }}
    FOR EACH ROW
    BEGIN
        SELECT RAISE(ABORT, {{ drift_message | literal }})
        WHERE (
            SELECT COUNT(*)
            FROM pragma_table_xinfo({{ source_name | literal }}, {{ schema | literal }})
            WHERE hidden <> 1
        ) <> {{ columns | length }};
    {%- for log_name, partition in targets %}
        SELECT RAISE(ABORT, {{ drift_message | literal }})
        WHERE (
            SELECT COUNT(*)
            FROM pragma_table_xinfo({{ log_name | literal }}, {{ schema | literal }})
            WHERE hidden <> 1
            {%- if ordering_key %}
              AND name <> {{ ordering_key | literal }} COLLATE NOCASE
            {%- endif %}
        ) <> {{ log_columns }};
    {%- endfor %}
    {%- for log_name, partition in targets %}
        {%- for tuple, role in images %}
        INSERT INTO {{ log_name | ident }} (
            {%- for name in columns %}{{ name | ident }}, {% endfor -%}
            {%- if acting_user %}{{ acting_user_column | ident }}, {% endif -%}
            {{ mode_column | ident }}, {{ tuple_role_column | ident }},
            {{ changed_at_column | ident }}
        )
        SELECT
            {%- for name in columns %} {{ tuple }}.{{ name | ident }},{% endfor %}
            {%- if acting_user %} {{ acting_user_function }}(),{% endif %}
            {{ event | literal }}, {{ role | literal }}, {{ clock }}
        {%- if partition is not none %}
        WHERE {{ partition_function }}() = {{ partition | value }}
        {%- endif %};
        {%- endfor %}
    {%- endfor %}
    END
""")

DROP_TRIGGER = _env.from_string("DROP TRIGGER IF EXISTS {{ trigger | relation }}")

SEED_RESTORE_TABLE = _env.from_string("""
    CREATE {% if temporary %}TEMP {% endif %}TABLE {{ restore | relation }} AS
    SELECT {{ columns | map("ident") | join(", ") }}
    FROM {{ source | relation }}
    {%- if has_key %}
    WHERE {{ key_column | ident }} = {{ key | value }}
    {%- endif %}
    {%- if empty %}
    LIMIT 0
    {%- endif %}
""")

SELECT_LOG_RECORDS = _env.from_string("""
    SELECT
        {%- for name in columns %} {{ name | ident }},{% endfor %}
        {{ mode_column | ident }}, {{ tuple_role_column | ident }}, {{ changed_at_column | ident }}
    FROM {{ log | relation }}
    WHERE {{ changed_at_column | ident }} {{ '>=' if backward else '<=' }} ?
    {%- if has_key %}
      AND {{ key_column | ident }} = ?
    {%- endif %}
    ORDER BY {{ ordering_key | ident }} {{ 'DESC' if backward else 'ASC' }}
""")

INSERT_ROW = _env.from_string("""
    INSERT INTO {{ table | relation }} (
        {%- for name in columns %}{{ name | ident }}{% if not loop.last %}, {% endif %}{% endfor -%}
    ) VALUES (
        {%- for name in columns %}?{% if not loop.last %}, {% endif %}{% endfor -%}
    )
""")

UPDATE_ROW = _env.from_string("""
    UPDATE {{ table | relation }} SET
        {%- for name in columns %} {{ name | ident }} = ?
        {%- if not loop.last %},{% endif %}{% endfor %}
    WHERE {{ key_column | ident }} = ?
""")

DELETE_ROW = _env.from_string("""
    DELETE FROM {{ table | relation }} WHERE {{ key_column | ident }} = ?
""")


def _render(template, **context: Any) -> str:
    return template.render(**context).strip()


def insert_log_record(
    log: RelationIdentifier, columns: Sequence[str], acting_user: bool, clock: str
) -> str:
    return _render(
        INSERT_LOG_RECORD,
        log=log,
        columns=columns,
        acting_user=acting_user,
        clock=clock,
        acting_user_column=ACTING_USER_COLUMN,
        mode_column=MODE_COLUMN,
        tuple_role_column=TUPLE_ROLE_COLUMN,
        changed_at_column=CHANGED_AT_COLUMN,
    )


def create_log_table(
    log: RelationIdentifier, columns: Sequence[Any], acting_user: bool, ordering_key: Optional[str]
) -> str:
    """Columns are catalog columns; their declared types are copied."""
    return _render(
        CREATE_LOG_TABLE,
        log=log,
        columns=columns,
        acting_user=acting_user,
        ordering_key=ordering_key,
        acting_user_column=ACTING_USER_COLUMN,
        mode_column=MODE_COLUMN,
        tuple_role_column=TUPLE_ROLE_COLUMN,
        changed_at_column=CHANGED_AT_COLUMN,
    )


def create_log_index(index: RelationIdentifier, log_name: str) -> str:
    return _render(
        CREATE_LOG_INDEX, index=index, log_name=log_name, changed_at_column=CHANGED_AT_COLUMN
    )


def create_trigger(
    trigger: Qualified,
    event: str,
    source_name: str,
    targets: List[tuple],
    images: List[tuple],
    columns: Sequence[str],
    acting_user: bool,
    clock: str,
    log_columns: int,
    ordering_key: Optional[str] = None,
) -> str:
    """
    Render an AFTER trigger that appends log records.

    Args:
        targets: ``(log_name, partition)`` pairs; partition is None when the
            log is not partitioned, otherwise the insert only fires while
            that partition is active
        images: ``(tuple, role)`` pairs such as ``("OLD", "old")``, one
            insert per pair and target, in the given order
        log_columns: Record columns every log table must have, the ordering
            key not counted
    """
    return _render(
        CREATE_TRIGGER,
        trigger=trigger,
        event=event,
        source_name=source_name,
        schema=trigger.schema,
        targets=targets,
        images=images,
        columns=columns,
        acting_user=acting_user,
        clock=clock,
        log_columns=log_columns,
        ordering_key=ordering_key,
        drift_message=f"table_log: column count drift on {trigger.schema}.{source_name}",
        acting_user_column=ACTING_USER_COLUMN,
        mode_column=MODE_COLUMN,
        tuple_role_column=TUPLE_ROLE_COLUMN,
        changed_at_column=CHANGED_AT_COLUMN,
        partition_function=PARTITION_FUNCTION,
        acting_user_function=ACTING_USER_FUNCTION,
    )


def drop_trigger(trigger: RelationIdentifier) -> str:
    return _render(DROP_TRIGGER, trigger=trigger)


def seed_restore_table(
    restore: RelationIdentifier,
    source: RelationIdentifier,
    columns: Sequence[str],
    temporary: bool,
    empty: bool,
    key_column: str,
    key: Any = None,
    has_key: bool = False,
) -> str:
    # CREATE TABLE ... AS does not take bound parameters, so the key filter
    # is rendered as a literal
    return _render(
        SEED_RESTORE_TABLE,
        restore=restore,
        source=source,
        columns=columns,
        temporary=temporary,
        empty=empty,
        key_column=key_column,
        key=key,
        has_key=has_key,
    )


def select_log_records(
    log: RelationIdentifier,
    columns: Sequence[str],
    ordering_key: str,
    backward: bool,
    key_column: str,
    has_key: bool,
) -> str:
    return _render(
        SELECT_LOG_RECORDS,
        log=log,
        columns=columns,
        ordering_key=ordering_key,
        backward=backward,
        key_column=key_column,
        has_key=has_key,
        mode_column=MODE_COLUMN,
        tuple_role_column=TUPLE_ROLE_COLUMN,
        changed_at_column=CHANGED_AT_COLUMN,
    )


def insert_row(table: RelationIdentifier, columns: Sequence[str]) -> str:
    return _render(INSERT_ROW, table=table, columns=columns)


def update_row(table: RelationIdentifier, columns: Sequence[str], key_column: str) -> str:
    return _render(UPDATE_ROW, table=table, columns=columns, key_column=key_column)


def delete_row(table: RelationIdentifier, key_column: str) -> str:
    return _render(DELETE_ROW, table=table, key_column=key_column)
