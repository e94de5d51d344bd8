import sqlite3

import pytest

from table_log.capture import ChangeCapture
from table_log.config import CaptureConfig
from table_log.errors import ColumnCountMismatch, ConfigurationError, KeyCollision
from table_log.partition import PartitionSelector
from table_log.relations import Qualified
from table_log.triggers import (
    create_log_table,
    install_triggers,
    remove_triggers,
    triggers_installed,
)
from testlib import CLOCK_SQL, memory_backend

LOG_QUERY = "SELECT id, status, mode, tuple_role, changed_at FROM {} ORDER BY log_id"


def setup_orders(backend, config):
    backend.execute("CREATE TABLE orders (id INTEGER PRIMARY KEY, status TEXT)")
    create_log_table(backend, "orders", config)
    install_triggers(backend, "orders", config)


def test_triggers_log_every_row_event():
    with memory_backend() as (backend, clock):
        setup_orders(backend, CaptureConfig(clock_sql=CLOCK_SQL))

        t1 = clock.tick()
        backend.execute("INSERT INTO orders (id, status) VALUES (1, 'new'), (2, 'new')")
        t2 = clock.tick()
        backend.execute("UPDATE orders SET status = 'shipped' WHERE id = 1")
        t3 = clock.tick()
        backend.execute("DELETE FROM orders WHERE id = 2")

        records = backend.query(LOG_QUERY.format("orders_log"))
        expected = [
            (1, "new", "INSERT", "new", t1),
            (2, "new", "INSERT", "new", t1),
            (1, "new", "UPDATE", "old", t2),
            (1, "shipped", "UPDATE", "new", t2),
            (2, "new", "DELETE", "old", t3),
        ]
        assert records == expected, f"Expected {expected}, got {records}"


def test_triggers_and_python_capture_write_the_same_records():
    with memory_backend() as (backend, _):
        config = CaptureConfig(clock_sql=CLOCK_SQL)
        setup_orders(backend, config)
        backend.execute("CREATE TABLE shadow (id INTEGER PRIMARY KEY, status TEXT)")
        create_log_table(backend, "shadow", config)
        capture = ChangeCapture(backend, "shadow", config)

        backend.execute("INSERT INTO orders VALUES (1, 'new')")
        capture.log_insert({"id": 1, "status": "new"})
        backend.execute("UPDATE orders SET status = 'paid' WHERE id = 1")
        capture.log_update((1, "new"), (1, "paid"))
        backend.execute("DELETE FROM orders")
        capture.log_delete((1, "paid"))

        from_triggers = backend.query(LOG_QUERY.format("orders_log"))
        from_capture = backend.query(LOG_QUERY.format("shadow_log"))
        assert from_triggers == from_capture, f"Expected {from_capture}, got {from_triggers}"


def test_mutation_rollback_discards_log_records():
    with memory_backend() as (backend, _):
        setup_orders(backend, CaptureConfig(clock_sql=CLOCK_SQL))
        with pytest.raises(RuntimeError):
            with backend.transaction():
                backend.execute("INSERT INTO orders VALUES (1, 'new')")
                raise RuntimeError("abort")
        assert backend.scalar("SELECT COUNT(*) FROM orders_log") == 0


def test_basic_mode_trigger():
    with memory_backend() as (backend, _):
        setup_orders(backend, CaptureConfig(basic=True, clock_sql=CLOCK_SQL))
        backend.execute("INSERT INTO orders VALUES (1, 'new')")
        backend.execute("UPDATE orders SET status = 'paid'")

        roles = backend.query("SELECT mode, tuple_role FROM orders_log ORDER BY log_id")
        assert roles == [("INSERT", "new"), ("UPDATE", "old")], f"Unexpected records {roles}"


def test_acting_user_trigger():
    with memory_backend() as (backend, _):
        setup_orders(
            backend,
            CaptureConfig(acting_user=True, acting_user_provider=lambda: "carol", clock_sql=CLOCK_SQL),
        )
        backend.execute("INSERT INTO orders VALUES (1, 'new')")
        assert backend.scalar("SELECT acting_user FROM orders_log") == "carol"


def test_partitioned_triggers_follow_selector():
    with memory_backend() as (backend, _):
        selector = PartitionSelector()
        setup_orders(backend, CaptureConfig(partitioned=True, selector=selector, clock_sql=CLOCK_SQL))

        backend.execute("INSERT INTO orders VALUES (1, 'new')")
        selector.select(1)
        backend.execute("UPDATE orders SET status = 'paid'")

        part0 = backend.query("SELECT mode, tuple_role FROM orders_log_0 ORDER BY log_id")
        part1 = backend.query("SELECT mode, tuple_role FROM orders_log_1 ORDER BY log_id")
        assert part0 == [("INSERT", "new")], f"Unexpected partition 0 records {part0}"
        assert part1 == [("UPDATE", "old"), ("UPDATE", "new")], f"Unexpected partition 1 records {part1}"


def test_install_validates_log_layout():
    with memory_backend() as (backend, _):
        backend.execute("CREATE TABLE orders (id INTEGER PRIMARY KEY, status TEXT)")
        backend.execute("CREATE TABLE orders_log (log_id INTEGER PRIMARY KEY, id, mode, tuple_role, changed_at)")
        with pytest.raises(ColumnCountMismatch):
            install_triggers(backend, "orders")
        assert not triggers_installed(backend, "orders")


def test_log_must_share_the_source_schema():
    with memory_backend() as (backend, _):
        backend.execute("ATTACH DATABASE ':memory:' AS aux")
        backend.execute("CREATE TABLE orders (id INTEGER PRIMARY KEY, status TEXT)")
        config = CaptureConfig(log_schema="aux")

        assert create_log_table(backend, "orders", config) == [Qualified("aux", "orders_log")]
        with pytest.raises(ConfigurationError):
            install_triggers(backend, "orders", config)


def test_remove_triggers_keeps_the_log():
    with memory_backend() as (backend, _):
        setup_orders(backend, CaptureConfig(clock_sql=CLOCK_SQL))
        assert triggers_installed(backend, "orders")

        backend.execute("INSERT INTO orders VALUES (1, 'new')")
        remove_triggers(backend, "orders")
        backend.execute("INSERT INTO orders VALUES (2, 'new')")

        assert not triggers_installed(backend, "orders")
        assert backend.scalar("SELECT COUNT(*) FROM orders_log") == 1


def test_install_is_idempotent():
    with memory_backend() as (backend, _):
        config = CaptureConfig(clock_sql=CLOCK_SQL)
        setup_orders(backend, config)
        install_triggers(backend, "orders", config)
        backend.execute("INSERT INTO orders VALUES (1, 'new')")
        assert backend.scalar("SELECT COUNT(*) FROM orders_log") == 1


def test_quoted_names():
    with memory_backend() as (backend, _):
        backend.execute('CREATE TABLE "odd ""table""" ("the id" INTEGER PRIMARY KEY, "it\'s" TEXT)')
        config = CaptureConfig(clock_sql=CLOCK_SQL)
        create_log_table(backend, '"odd ""table"""', config)
        install_triggers(backend, '"odd ""table"""', config)

        backend.execute('INSERT INTO "odd ""table""" VALUES (1, \'x\')')
        rows = backend.query('SELECT "the id", "it\'s", mode FROM "odd ""table""_log"')
        assert rows == [(1, "x", "INSERT")], f"Unexpected records {rows}"


def test_ordering_key_collision():
    with memory_backend() as (backend, _):
        backend.execute("CREATE TABLE t (log_id INTEGER PRIMARY KEY, v TEXT)")
        with pytest.raises(KeyCollision):
            create_log_table(backend, "t")


def test_trailer_column_clash():
    with memory_backend() as (backend, _):
        backend.execute("CREATE TABLE t (id INTEGER PRIMARY KEY, mode TEXT)")
        with pytest.raises(ConfigurationError):
            create_log_table(backend, "t")


def test_source_column_drift_aborts_mutations():
    with memory_backend() as (backend, _):
        setup_orders(backend, CaptureConfig(clock_sql=CLOCK_SQL))
        backend.execute("ALTER TABLE orders ADD COLUMN note TEXT")

        with pytest.raises(sqlite3.IntegrityError, match="column count drift"):
            backend.execute("INSERT INTO orders VALUES (1, 'new', 'important')")

        assert backend.scalar("SELECT COUNT(*) FROM orders") == 0
        assert backend.scalar("SELECT COUNT(*) FROM orders_log") == 0


def test_log_column_drift_aborts_mutations():
    with memory_backend() as (backend, _):
        setup_orders(backend, CaptureConfig(clock_sql=CLOCK_SQL))
        backend.execute("INSERT INTO orders VALUES (1, 'new')")
        backend.execute("ALTER TABLE orders_log ADD COLUMN extra TEXT")

        for sql in (
            "INSERT INTO orders VALUES (2, 'new')",
            "UPDATE orders SET status = 'paid' WHERE id = 1",
            "DELETE FROM orders WHERE id = 1",
        ):
            with pytest.raises(sqlite3.IntegrityError, match="column count drift"):
                backend.execute(sql)

        rows = backend.query("SELECT id, status FROM orders")
        assert rows == [(1, "new")], f"Expected [(1, 'new')], got {rows}"
        assert backend.scalar("SELECT COUNT(*) FROM orders_log") == 1


def test_reinstall_after_adding_a_column_to_source_and_log():
    with memory_backend() as (backend, _):
        config = CaptureConfig(clock_sql=CLOCK_SQL)
        setup_orders(backend, config)
        backend.execute("ALTER TABLE orders ADD COLUMN note TEXT")
        backend.execute("ALTER TABLE orders_log ADD COLUMN note TEXT")

        install_triggers(backend, "orders", config)
        backend.execute("INSERT INTO orders VALUES (1, 'new', 'important')")

        rows = backend.query("SELECT id, status, note, mode FROM orders_log")
        assert rows == [(1, "new", "important", "INSERT")], f"Unexpected records {rows}"
