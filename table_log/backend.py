"""
Statement transport for SQLite.

A thin wrapper around ``sqlite3.Connection`` that executes statements,
logs their text at debug level and provides nestable savepoint
transactions. Everything else in table_log talks to the database through
this class.
"""

import contextlib
import itertools
import logging
import sqlite3
from contextlib import contextmanager
from typing import Any, Callable, Iterator, List, Sequence

logger = logging.getLogger(__name__)

_savepoint_ids = itertools.count(1)


class SQLiteBackend:
    """Execute statements against one SQLite connection."""

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    def execute(self, sql: str, params: Sequence[Any] = ()) -> sqlite3.Cursor:
        logger.debug("query: %s", sql)
        return self.conn.execute(sql, tuple(params))

    def query(self, sql: str, params: Sequence[Any] = ()) -> List[tuple]:
        return self.execute(sql, params).fetchall()

    def scalar(self, sql: str, params: Sequence[Any] = ()) -> Any:
        row = self.execute(sql, params).fetchone()
        return None if row is None else row[0]

    def register_function(self, name: str, narg: int, func: Callable[..., Any]) -> None:
        """Make a Python callable available to SQL on this connection."""
        self.conn.create_function(name, narg, func)

    @contextmanager
    def transaction(self) -> Iterator["SQLiteBackend"]:
        """
        Run the block inside a savepoint.

        Outside of a transaction the savepoint opens one and releasing it
        commits; inside the caller's transaction it nests. Any exception
        rolls back to the savepoint and is re-raised.
        """
        name = f"table_log_{next(_savepoint_ids)}"
        self.conn.execute(f"SAVEPOINT {name}")
        try:
            yield self
        except BaseException:
            self.conn.execute(f"ROLLBACK TO SAVEPOINT {name}")
            self.conn.execute(f"RELEASE SAVEPOINT {name}")
            raise
        else:
            self.conn.execute(f"RELEASE SAVEPOINT {name}")


@contextmanager
def connect(database: str = ":memory:") -> Iterator[SQLiteBackend]:
    """Open an autocommit connection and wrap it in a backend."""
    with contextlib.closing(sqlite3.connect(database, autocommit=True)) as conn:
        yield SQLiteBackend(conn)
