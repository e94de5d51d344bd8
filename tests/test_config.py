import pytest

from table_log.config import DEFAULT_CLOCK_SQL, CaptureConfig
from table_log.errors import ConfigurationError
from table_log.partition import PartitionSelector
from table_log.relations import Qualified


def test_defaults():
    config = CaptureConfig()
    assert config.ordering_key == "log_id"
    assert config.clock_sql == DEFAULT_CLOCK_SQL
    assert config.log_relation(Qualified("main", "orders")) == Qualified("main", "orders_log")


def test_log_relation_overrides():
    config = CaptureConfig(log_table="history", log_schema="aux")
    assert config.log_relation(Qualified("main", "orders")) == Qualified("aux", "history")


def test_from_env(monkeypatch):
    monkeypatch.setenv("TABLE_LOG_LOG_TABLE", "orders_history")
    monkeypatch.setenv("TABLE_LOG_ACTING_USER", "yes")
    monkeypatch.setenv("TABLE_LOG_PARTITIONED", "0")
    monkeypatch.setenv("TABLE_LOG_BASIC", "true")
    monkeypatch.setenv("TABLE_LOG_ORDERING_KEY", "seq")

    config = CaptureConfig.from_env()

    assert config.log_table == "orders_history"
    assert config.log_schema is None
    assert config.acting_user is True
    assert config.partitioned is False
    assert config.basic is True
    assert config.ordering_key == "seq"


@pytest.mark.parametrize("ordering_key, declared", [("log_id", "log_id"), ("rowid", None), ("OID", None), (None, None)])
def test_declared_ordering_key(ordering_key, declared):
    assert CaptureConfig(ordering_key=ordering_key).declared_ordering_key() == declared


def test_explicit_selector_wins():
    selector = PartitionSelector(active=1)
    assert CaptureConfig(partitioned=True, selector=selector).partition_selector() is selector


@pytest.mark.parametrize(
    "kwargs", [{"log_table": ""}, {"log_schema": ""}, {"clock_sql": "  "}]
)
def test_validate(kwargs):
    with pytest.raises(ConfigurationError):
        CaptureConfig(**kwargs).validate()
