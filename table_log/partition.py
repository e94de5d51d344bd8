"""
Log table partition selection.

A partitioned capture writes to ``<log table>_<id>`` where ``id`` is the
currently active partition. The selector is explicit state passed through
``CaptureConfig``; ``default_selector()`` provides the process-wide
instance used when a configuration does not name one. Changing the active
partition takes effect for every subsequent capture immediately and has no
transactional semantics.
"""

import logging
import os
from typing import Optional

from table_log.errors import InvalidPartition

logger = logging.getLogger(__name__)

MAX_PARTITIONS = 2

ACTIVE_PARTITION_ENV = "TABLE_LOG_ACTIVE_PARTITION"


class PartitionSelector:
    """Holds the active log partition id."""

    def __init__(self, active: int = 0, max_partitions: int = MAX_PARTITIONS):
        if max_partitions < 1:
            raise InvalidPartition(
                "at least one partition is required", max_partitions=max_partitions
            )
        self.max_partitions = max_partitions
        self._active = 0
        self.select(active)

    @property
    def active(self) -> int:
        return self._active

    def select(self, partition_id: int) -> None:
        """
        Make ``partition_id`` the active partition.

        Raises:
            InvalidPartition: If the id is outside ``[0, max_partitions)``
        """
        if isinstance(partition_id, bool) or not isinstance(partition_id, int):
            raise InvalidPartition("partition id must be an integer", partition=partition_id)
        if not 0 <= partition_id < self.max_partitions:
            raise InvalidPartition(
                "partition id out of range",
                partition=partition_id,
                max_partitions=self.max_partitions,
            )
        if partition_id != self._active:
            logger.info("active log partition: %d -> %d", self._active, partition_id)
        self._active = partition_id

    def suffix(self, partition_id: Optional[int] = None) -> str:
        """Return the log table name suffix for a partition (default: active)."""
        return f"_{self._active if partition_id is None else partition_id}"

    def partitions(self) -> range:
        return range(self.max_partitions)

    def __repr__(self) -> str:
        return f"PartitionSelector(active={self._active}, max_partitions={self.max_partitions})"


_default: Optional[PartitionSelector] = None


def default_selector() -> PartitionSelector:
    """
    Return the process-wide selector.

    Created on first use; the initial partition comes from the
    ``TABLE_LOG_ACTIVE_PARTITION`` environment variable (default 0).
    """
    global _default
    if _default is None:
        raw = os.environ.get(ACTIVE_PARTITION_ENV, "0")
        try:
            active = int(raw)
        except ValueError as exc:
            raise InvalidPartition(
                f"{ACTIVE_PARTITION_ENV} is not an integer", value=raw
            ) from exc
        _default = PartitionSelector(active=active)
    return _default


def set_active_partition(partition_id: int) -> None:
    """Administrative setter for the process-wide active partition."""
    default_selector().select(partition_id)


def get_active_partition() -> int:
    return default_selector().active
