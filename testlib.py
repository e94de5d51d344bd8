"""
Shared test library for table_log.

In-memory databases, a deterministic clock for the log, table hashing for
comparing restored tables with their source, and a random workload
generator.
"""

import contextlib
import hashlib
import random
import sqlite3
import struct
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Iterable, Iterator, List, Literal, Optional, Tuple

from pretty_good_diff import show_diff

from table_log.backend import SQLiteBackend
from table_log.replay import format_cutoff

CLOCK_FUNCTION = "test_clock"
CLOCK_SQL = f"{CLOCK_FUNCTION}()"


@contextmanager
def sqlite3_test_db() -> Iterator[sqlite3.Connection]:
    """Create an in-memory SQLite database with autocommit enabled."""
    with contextlib.closing(sqlite3.connect(":memory:", autocommit=True)) as conn:
        yield conn


class LogicalClock:
    """
    Stand-in for the log clock that only moves when told to.

    Registered as the SQL function ``test_clock()``; configure capture with
    ``clock_sql=CLOCK_SQL`` so every record gets the current logical time.
    """

    def __init__(self, start: datetime = datetime(2024, 1, 1, 12, 0, 0)):
        self.current = start

    def now(self) -> str:
        return format_cutoff(self.current)

    def tick(self, seconds: float = 1) -> str:
        """Advance the clock and return the new time."""
        self.current += timedelta(seconds=seconds)
        return self.now()

    def install(self, conn: sqlite3.Connection) -> "LogicalClock":
        conn.create_function(CLOCK_FUNCTION, 0, self.now)
        return self


@contextmanager
def memory_backend() -> Iterator[Tuple[SQLiteBackend, LogicalClock]]:
    """An in-memory backend and the logical clock installed on it."""
    with sqlite3_test_db() as conn:
        yield SQLiteBackend(conn), LogicalClock().install(conn)


def compute_hash_from_rows(rows: Iterable[tuple]) -> str:
    """
    Compute a SHA256 hash from an iterator of row tuples.

    Hashes each cell with an explicit type prefix to ensure deterministic output.
    """
    hasher = hashlib.sha256()

    for row in rows:
        for cell in row:
            if cell is None:
                hasher.update(b"n")
            elif isinstance(cell, int):
                hasher.update(b"i")
                hasher.update(struct.pack("<q", cell))
            elif isinstance(cell, float):
                hasher.update(b"f")
                hasher.update(struct.pack("<d", cell))
            elif isinstance(cell, str):
                encoded = cell.encode("utf-8")
                hasher.update(b"s")
                hasher.update(struct.pack("<I", len(encoded)))
                hasher.update(encoded)
            elif isinstance(cell, bytes):
                hasher.update(b"b")
                hasher.update(struct.pack("<I", len(cell)))
                hasher.update(cell)
            else:
                raise TypeError(f"Unsupported type in table: {type(cell)}")

    return hasher.hexdigest()


def _select_rows(
    conn: sqlite3.Connection, table_name: str, columns: List[str] | Literal["*"], order_by: str
) -> List[tuple]:
    cols = ", ".join(columns) if columns != "*" else "*"
    return conn.execute(f"SELECT {cols} FROM {table_name} ORDER BY {order_by}").fetchall()


def compute_table_hash(
    conn: sqlite3.Connection,
    table_name: str,
    columns: List[str] | Literal["*"] = "*",
    order_by: Optional[str] = None,
) -> str:
    """
    Compute a SHA256 hash of a table's contents for verification.

    Restore tables are created with ``CREATE TABLE ... AS`` and carry no
    primary key, so they need an explicit ``order_by``; otherwise the
    table's primary key (or ROWID) orders the scan.
    """
    if order_by is None:
        pk_columns = []
        for _, name, _, _, _, pk in conn.execute(f"PRAGMA table_info({table_name})"):
            # pk is the position in primary key (1-based), 0 means not part of PK
            if pk > 0:
                pk_columns.append((pk, name))
        pk_columns.sort(key=lambda x: x[0])
        order_by = ", ".join(name for _, name in pk_columns) if pk_columns else "ROWID"

    return compute_hash_from_rows(_select_rows(conn, table_name, columns, order_by))


def generate_random_workload(max_id: int, seed: int) -> Iterator[tuple]:
    """
    Generate a random workload of insert, update, and delete operations.

    IDs stay in the range [1, max_id] so the dataset doesn't grow unbounded.
    Inserts only use free IDs and updates and deletes only existing ones, so
    every operation touches exactly one row.

    Yields:
        tuple: (operation_type, row_id, data) where operation_type is
        "insert", "update" or "delete"
    """
    rng = random.Random(seed)
    existing_ids = set()

    while True:
        operation_type = rng.choice(["insert", "update", "delete"])

        if operation_type == "insert" and len(existing_ids) < max_id:
            row_id = rng.choice([i for i in range(1, max_id + 1) if i not in existing_ids])
            existing_ids.add(row_id)
            yield ("insert", row_id, f"data_{row_id}_v{rng.randint(1, 1000)}")

        elif operation_type == "update" and existing_ids:
            target_id = rng.choice(sorted(existing_ids))
            yield ("update", target_id, f"updated_data_{target_id}_v{rng.randint(1, 1000)}")

        elif operation_type == "delete" and existing_ids:
            target_id = rng.choice(sorted(existing_ids))
            existing_ids.discard(target_id)
            yield ("delete", target_id, None)


def apply_operation(conn: sqlite3.Connection, table_name: str, operation: tuple) -> None:
    """Apply one workload operation to a ``(id, data)`` table."""
    operation_type, row_id, data = operation
    if operation_type == "insert":
        conn.execute(f"INSERT INTO {table_name} (id, data) VALUES (?, ?)", (row_id, data))
    elif operation_type == "update":
        conn.execute(f"UPDATE {table_name} SET data = ? WHERE id = ?", (data, row_id))
    elif operation_type == "delete":
        conn.execute(f"DELETE FROM {table_name} WHERE id = ?", (row_id,))
    else:
        raise ValueError(f"Unknown operation: {operation_type}")


def assert_tables_equal(
    errmsg: str,
    conn1: sqlite3.Connection,
    table1: str,
    conn2: sqlite3.Connection,
    table2: str,
    columns: List[str] | Literal["*"] = "*",
    order_by: Optional[str] = None,
):
    """
    Compare two tables, failing if they differ.
    This function will print out differences if they differ.
    """
    hash1 = compute_table_hash(conn1, table1, columns, order_by)
    hash2 = compute_table_hash(conn2, table2, columns, order_by)

    if hash1 != hash2:
        print(f"Failure: {errmsg}")
        print(f"Hash {table1}: {hash1}")
        print(f"Hash {table2}: {hash2}")

        key = order_by or "ROWID"
        table1_rows = {r[0]: r for r in _select_rows(conn1, table1, columns, key)}
        table2_rows = {r[0]: r for r in _select_rows(conn2, table2, columns, key)}

        print("Differences found:")
        show_diff(table1_rows, table2_rows)
        print("-" * 80)
        raise AssertionError(errmsg)
