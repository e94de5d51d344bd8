"""
Error taxonomy for change capture and table restore.

All errors are fatal for the operation that raised them. Configuration
errors are detected before anything is written; encoding errors abort the
capturing transaction; replay errors abort the restore.
"""

from typing import Any, Dict


class TableLogError(Exception):
    """Base class for every error raised by table_log."""

    def __init__(self, message: str, **details: Any):
        self.message = message
        self.details: Dict[str, Any] = details
        super().__init__(message)

    def __str__(self) -> str:
        if not self.details:
            return self.message
        context = ", ".join(f"{key}={value!r}" for key, value in self.details.items())
        return f"{self.message} ({context})"


class ConfigurationError(TableLogError):
    """Invalid setup detected before any mutation."""


class InvalidIdentifier(ConfigurationError):
    """A relation or column name could not be parsed or quoted."""


class RelationNotFound(ConfigurationError):
    """A source, log or schema name does not resolve."""


class ColumnNotFound(ConfigurationError):
    """A named column does not exist in its relation."""


class NoPrimaryKey(ConfigurationError):
    """The source relation has no primary key and none was given."""


class CompositeKeyUnsupported(ConfigurationError):
    """Replay only handles single-column primary keys."""


class KeyCollision(ConfigurationError):
    """The log ordering key has the same name as a source key column."""


class RestoreTableExists(ConfigurationError):
    """The restore target relation is already present."""


class ColumnCountMismatch(ConfigurationError):
    """The log relation layout does not match the source relation."""


class InvalidPartition(ConfigurationError):
    """A partition id outside ``[0, MAX_PARTITIONS)``."""


class EncodeError(TableLogError):
    """Writing a change record failed."""


class LogWriteFailed(EncodeError):
    """The insert into the log relation did not append exactly one row."""


class ReplayError(TableLogError):
    """Applying a log record to the restore relation failed."""


class UnknownChangeMode(ReplayError):
    """A log record carries a mode other than INSERT, UPDATE or DELETE."""


class NullKeyError(ReplayError):
    """A record that must target a row has a NULL primary key."""
