"""Row-level change logging for SQLite tables, with point-in-time restore."""

from table_log.backend import SQLiteBackend, connect
from table_log.capture import ChangeCapture, ChangeMode, LogLayout, TupleRole, append_change_record
from table_log.config import CaptureConfig
from table_log.descriptor import RestoreDescriptor, build_restore_descriptor
from table_log.errors import (
    ColumnCountMismatch,
    ColumnNotFound,
    CompositeKeyUnsupported,
    ConfigurationError,
    EncodeError,
    InvalidIdentifier,
    InvalidPartition,
    KeyCollision,
    LogWriteFailed,
    NoPrimaryKey,
    NullKeyError,
    RelationNotFound,
    ReplayError,
    RestoreTableExists,
    TableLogError,
    UnknownChangeMode,
)
from table_log.partition import (
    MAX_PARTITIONS,
    PartitionSelector,
    get_active_partition,
    set_active_partition,
)
from table_log.primary_key import PrimaryKeyDescriptor, resolve_primary_key
from table_log.relations import Bare, Qualified, parse_relation
from table_log.replay import ReplayMode, replay, restore_table
from table_log.triggers import (
    create_log_table,
    install_triggers,
    register_functions,
    remove_triggers,
    triggers_installed,
)

__all__ = [
    "SQLiteBackend",
    "connect",
    "CaptureConfig",
    "ChangeCapture",
    "ChangeMode",
    "TupleRole",
    "LogLayout",
    "append_change_record",
    "create_log_table",
    "install_triggers",
    "remove_triggers",
    "triggers_installed",
    "register_functions",
    "PartitionSelector",
    "MAX_PARTITIONS",
    "set_active_partition",
    "get_active_partition",
    "PrimaryKeyDescriptor",
    "resolve_primary_key",
    "RestoreDescriptor",
    "build_restore_descriptor",
    "ReplayMode",
    "replay",
    "restore_table",
    "Qualified",
    "Bare",
    "parse_relation",
    "TableLogError",
    "ConfigurationError",
    "InvalidIdentifier",
    "RelationNotFound",
    "ColumnNotFound",
    "NoPrimaryKey",
    "CompositeKeyUnsupported",
    "KeyCollision",
    "RestoreTableExists",
    "ColumnCountMismatch",
    "InvalidPartition",
    "EncodeError",
    "LogWriteFailed",
    "ReplayError",
    "UnknownChangeMode",
    "NullKeyError",
]
