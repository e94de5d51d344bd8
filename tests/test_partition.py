import pytest

from table_log import partition
from table_log.errors import InvalidPartition
from table_log.partition import MAX_PARTITIONS, PartitionSelector


@pytest.fixture
def fresh_default(monkeypatch):
    monkeypatch.setattr(partition, "_default", None)


def test_select_and_suffix():
    selector = PartitionSelector()
    assert selector.active == 0
    assert selector.suffix() == "_0"

    selector.select(1)
    assert selector.active == 1
    assert selector.suffix() == "_1"
    assert selector.suffix(0) == "_0"
    assert list(selector.partitions()) == list(range(MAX_PARTITIONS))


@pytest.mark.parametrize("bad", [-1, MAX_PARTITIONS, True, "1", 0.0])
def test_out_of_range_partition(bad):
    selector = PartitionSelector()
    with pytest.raises(InvalidPartition):
        selector.select(bad)
    assert selector.active == 0


def test_default_selector_reads_environment(monkeypatch, fresh_default):
    monkeypatch.setenv(partition.ACTIVE_PARTITION_ENV, "1")
    assert partition.get_active_partition() == 1

    partition.set_active_partition(0)
    assert partition.default_selector().active == 0


def test_default_selector_rejects_bad_environment(monkeypatch, fresh_default):
    monkeypatch.setenv(partition.ACTIVE_PARTITION_ENV, "first")
    with pytest.raises(InvalidPartition):
        partition.default_selector()


def test_default_selector_range_check(monkeypatch, fresh_default):
    monkeypatch.delenv(partition.ACTIVE_PARTITION_ENV, raising=False)
    with pytest.raises(InvalidPartition):
        partition.set_active_partition(MAX_PARTITIONS)
    assert partition.get_active_partition() == 0
