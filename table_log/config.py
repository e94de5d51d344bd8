"""
Capture configuration.

One ``CaptureConfig`` describes how a source table is logged: where the
log table lives, which optional columns it carries and how records are
stamped. The same configuration drives programmatic capture
(``table_log.capture``) and the logging triggers (``table_log.triggers``).
"""

import getpass
import os
from dataclasses import dataclass
from typing import Callable, Optional

from table_log.catalog import ROWID_ALIASES
from table_log.errors import ConfigurationError
from table_log.partition import PartitionSelector, default_selector
from table_log.relations import Qualified

# Backend clock; constant for all records written by one statement step
DEFAULT_CLOCK_SQL = "strftime('%Y-%m-%d %H:%M:%f', 'now')"

DEFAULT_ORDERING_KEY = "log_id"

_TRUE_VALUES = ("1", "true", "yes", "on")


def _env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in _TRUE_VALUES


def _session_user() -> Optional[str]:
    return getpass.getuser()


@dataclass
class CaptureConfig:
    """Configuration for logging one source table"""

    # Log table name; defaults to "<source>_log"
    log_table: Optional[str] = None
    # Schema (attached database) of the log table; defaults to the source's
    log_schema: Optional[str] = None

    # Record the acting user in an extra "acting_user" column
    acting_user: bool = False
    acting_user_provider: Callable[[], Optional[str]] = _session_user

    # Write to "<log_table>_<id>" for the active partition
    partitioned: bool = False
    selector: Optional[PartitionSelector] = None

    # Basic mode logs only the old image of an UPDATE: backward replay
    # still works, forward replay of updates does not
    basic: bool = False

    # The log table's own monotonic key; excluded from column accounting
    ordering_key: Optional[str] = DEFAULT_ORDERING_KEY
    clock_sql: str = DEFAULT_CLOCK_SQL

    @classmethod
    def from_env(cls) -> "CaptureConfig":
        """Load configuration from TABLE_LOG_* environment variables"""
        config = cls()

        config.log_table = os.getenv("TABLE_LOG_LOG_TABLE", config.log_table)
        config.log_schema = os.getenv("TABLE_LOG_LOG_SCHEMA", config.log_schema)

        config.acting_user = _env_flag("TABLE_LOG_ACTING_USER", config.acting_user)
        config.partitioned = _env_flag("TABLE_LOG_PARTITIONED", config.partitioned)
        config.basic = _env_flag("TABLE_LOG_BASIC", config.basic)

        config.ordering_key = os.getenv("TABLE_LOG_ORDERING_KEY", config.ordering_key)
        config.clock_sql = os.getenv("TABLE_LOG_CLOCK_SQL", config.clock_sql)

        return config

    def partition_selector(self) -> PartitionSelector:
        return self.selector if self.selector is not None else default_selector()

    def declared_ordering_key(self) -> Optional[str]:
        """The ordering key column to declare, or None for the implicit rowid."""
        if not self.ordering_key or self.ordering_key.lower() in ROWID_ALIASES:
            return None
        return self.ordering_key

    def log_relation(self, source: Qualified) -> Qualified:
        """Return the (unpartitioned) log relation for a resolved source."""
        return Qualified(
            schema=self.log_schema or source.schema,
            name=self.log_table or f"{source.name}_log",
        )

    def validate(self) -> None:
        """Validate configuration settings"""
        errors = []

        if self.log_table is not None and not self.log_table:
            errors.append("log_table must not be empty")

        if self.log_schema is not None and not self.log_schema:
            errors.append("log_schema must not be empty")

        if not self.clock_sql.strip():
            errors.append("clock_sql must not be empty")

        if errors:
            raise ConfigurationError(f"Configuration validation errors: {'; '.join(errors)}")
