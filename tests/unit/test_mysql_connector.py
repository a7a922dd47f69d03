"""
Unit tests for the MySQL connector.

PyMySQL is replaced by a scripted in-memory connection; each test answers
queries through a responder keyed on the SQL text.
"""

from collections.abc import Callable
from typing import Any

import pymysql
import pytest

from ops_bridge.config import MySQLConfig
from ops_bridge.connectors.base import Connection, MigrationUnit, UnitDefinition, WriteOptions
from ops_bridge.connectors.mysql import MySQLConnector, qualified_name, quote_identifier
from ops_bridge.exceptions import ConnectionFailedError, NotFoundError, WriteError

Responder = Callable[[str, Any], list[tuple]]

USERS = MigrationUnit("shop", "table", "users")
USERS_DDL = "CREATE TABLE `users` (\n  `id` int NOT NULL,\n  PRIMARY KEY (`id`)\n)"


class FakeCursor:
    def __init__(self, handle: "FakeHandle", dict_rows: bool = False):
        self.handle = handle
        self.dict_rows = dict_rows
        self._rows: list[Any] = []

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def execute(self, sql, params=None):
        self.handle.executed.append((sql, params))
        self._rows = self.handle.responder(sql, params)

    def executemany(self, sql, values):
        self.handle.executed.append((sql, values))
        self.handle.responder(sql, values)

    def fetchone(self):
        return self._rows[0] if self._rows else None

    def fetchall(self):
        return list(self._rows)


class FakeHandle:
    def __init__(self, responder: Responder):
        self.responder = responder
        self.executed: list[tuple[str, Any]] = []
        self.transactions: list[str] = []
        self.open = True

    def cursor(self, cursor_class=None):
        return FakeCursor(self, dict_rows=cursor_class is pymysql.cursors.DictCursor)

    def begin(self):
        self.transactions.append("begin")

    def commit(self):
        self.transactions.append("commit")

    def rollback(self):
        self.transactions.append("rollback")

    def close(self):
        self.open = False

    def statements(self) -> list[str]:
        return [sql for sql, _ in self.executed]


def table_exists(existing: set[str]) -> Responder:
    """Responder answering information_schema lookups from a set of 'db.table' names."""

    def respond(sql, params):
        if "information_schema.TABLES" in sql:
            return [(1 if f"{params[0]}.{params[1]}" in existing else 0,)]
        return []

    return respond


def server_lost(code: int, message: str = "Lost connection to MySQL server during query") -> Responder:
    def respond(sql, params):
        raise pymysql.err.OperationalError(code, message)

    return respond


@pytest.fixture
def config() -> MySQLConfig:
    return MySQLConfig(host="db.local", user="migrator", password="pw")


@pytest.fixture
def connector() -> MySQLConnector:
    return MySQLConnector(retry_attempts=3, retry_backoff_min=0, retry_backoff_max=0)


def connection(config: MySQLConfig, responder: Responder) -> Connection:
    return Connection(config=config, handle=FakeHandle(responder), metadata={"primary_keys": {}})


class TestIdentifiers:
    def test_backticks_doubled(self):
        assert quote_identifier("we`ird") == "`we``ird`"

    def test_qualified_name(self):
        assert qualified_name("shop", "users") == "`shop`.`users`"


class TestConnect:
    def test_connects_with_autocommit(self, connector, config, monkeypatch):
        calls = []

        def fake_connect(**kwargs):
            calls.append(kwargs)
            return FakeHandle(lambda sql, params: [])

        monkeypatch.setattr(pymysql, "connect", fake_connect)

        conn = connector.connect(config)

        assert calls[0]["autocommit"] is True
        assert calls[0]["charset"] == "utf8mb4"
        connector.close(conn)
        assert conn.handle.open is False

    def test_transient_errors_retried(self, connector, config, monkeypatch):
        attempts = []

        def flaky_connect(**kwargs):
            attempts.append(kwargs)
            if len(attempts) == 1:
                raise pymysql.err.OperationalError(2003, "Can't connect to MySQL server")
            return FakeHandle(lambda sql, params: [])

        monkeypatch.setattr(pymysql, "connect", flaky_connect)

        connector.connect(config)

        assert len(attempts) == 2

    def test_access_denied_not_retried(self, connector, config, monkeypatch):
        attempts = []

        def denied(**kwargs):
            attempts.append(kwargs)
            raise pymysql.err.OperationalError(1045, "Access denied for user 'migrator'")

        monkeypatch.setattr(pymysql, "connect", denied)

        with pytest.raises(ConnectionFailedError, match="Access denied"):
            connector.connect(config)

        assert len(attempts) == 1

    def test_test_connection_reports_failure(self, connector, config, monkeypatch):
        def refused(**kwargs):
            raise pymysql.err.OperationalError(1045, "Access denied")

        monkeypatch.setattr(pymysql, "connect", refused)

        ok, message = connector.test_connection(config)

        assert ok is False
        assert "Access denied" in message


class TestDiscovery:
    def test_system_schemas_hidden(self, connector, config):
        databases = [("information_schema",), ("mysql",), ("shop",), ("sys",), ("crm",)]
        conn = connection(config, lambda sql, params: databases)

        assert connector.list_collections(conn) == ["shop", "crm"]

    def test_list_units_base_tables(self, connector, config):
        conn = connection(config, lambda sql, params: [("users", "BASE TABLE"), ("orders", "BASE TABLE")])

        units = connector.list_units(conn, "shop")

        assert [u.name for u in units] == ["users", "orders"]
        assert "SHOW FULL TABLES FROM `shop`" in conn.handle.statements()[0]

    def test_list_units_other_types(self, connector, config):
        conn = connection(config, lambda sql, params: [("users", "BASE TABLE")])

        assert connector.list_units(conn, "shop", ["deployments"]) == []
        assert conn.handle.executed == []

    def test_fetch_definition(self, connector, config):
        def respond(sql, params):
            if sql.startswith("SHOW CREATE TABLE"):
                return [("users", USERS_DDL)]
            if sql.startswith("SHOW COLUMNS"):
                return [("id", "int"), ("name", "varchar(64)")]
            if sql.startswith("SELECT COUNT(*)"):
                return [(42,)]
            return []

        definition = connector.fetch_definition(connection(config, respond), USERS)

        assert definition.body == USERS_DDL
        assert definition.columns == ["id", "name"]
        assert definition.row_count == 42

    def test_fetch_missing_table(self, connector, config):
        def respond(sql, params):
            raise pymysql.err.ProgrammingError(1146, "Table 'shop.users' doesn't exist")

        with pytest.raises(NotFoundError):
            connector.fetch_definition(connection(config, respond), USERS)

    def test_count_absent_table(self, connector, config):
        count = connector.count_units(connection(config, table_exists(set())), USERS)

        assert (count.exists, count.count) == (False, 0)

    def test_count_present_table(self, connector, config):
        def respond(sql, params):
            if "information_schema.TABLES" in sql:
                return [(1,)]
            return [(7,)]

        count = connector.count_units(connection(config, respond), USERS)

        assert (count.exists, count.count) == (True, 7)


class TestWriteDefinition:
    definition = UnitDefinition(unit=USERS, body=USERS_DDL)

    def test_creates_database_and_table(self, connector, config):
        conn = connection(config, table_exists(set()))

        connector.write_definition(conn, USERS, self.definition, WriteOptions())

        statements = conn.handle.statements()
        assert statements[0].startswith("CREATE DATABASE IF NOT EXISTS `shop`")
        assert "utf8mb4" in statements[0]
        assert statements[-1].startswith("CREATE TABLE IF NOT EXISTS `shop`.`users` (")

    def test_existing_table_left_alone(self, connector, config):
        conn = connection(config, table_exists({"shop.users"}))

        connector.write_definition(conn, USERS, self.definition, WriteOptions())
        connector.write_definition(conn, USERS, self.definition, WriteOptions())

        assert not any(sql.startswith("CREATE TABLE") for sql in conn.handle.statements())

    def test_truncate_recreates(self, connector, config):
        conn = connection(config, table_exists({"shop.users"}))

        connector.write_definition(conn, USERS, self.definition, WriteOptions(truncate_target=True))

        statements = conn.handle.statements()
        assert "DROP TABLE IF EXISTS `shop`.`users`" in statements
        assert statements[-1].startswith("CREATE TABLE IF NOT EXISTS `shop`.`users`")

    def test_renamed_database(self, connector, config):
        conn = connection(config, table_exists(set()))

        connector.write_definition(
            conn, USERS, self.definition, WriteOptions(target_collection="shop_copy")
        )

        assert conn.handle.statements()[-1].startswith("CREATE TABLE IF NOT EXISTS `shop_copy`.`users`")

    def test_missing_table_without_schema_creation(self, connector, config):
        conn = connection(config, table_exists(set()))

        with pytest.raises(WriteError, match="schema creation is disabled"):
            connector.write_definition(conn, USERS, self.definition, WriteOptions(create_schema=False))

    def test_ddl_failure(self, connector, config):
        def respond(sql, params):
            if sql.startswith("CREATE TABLE"):
                raise pymysql.err.OperationalError(1050, "Table already exists")
            return table_exists(set())(sql, params)

        with pytest.raises(WriteError, match="Failed to create table"):
            connector.write_definition(connection(config, respond), USERS, self.definition, WriteOptions())


class TestRows:
    def test_read_rows_ordered_by_primary_key(self, connector, config):
        def respond(sql, params):
            if "KEY_COLUMN_USAGE" in sql:
                return [("id",)]
            return [{"id": 1}, {"id": 2}]

        conn = connection(config, respond)

        rows = connector.read_rows(conn, USERS, 10, 2)
        connector.read_rows(conn, USERS, 12, 2)

        assert rows == [{"id": 1}, {"id": 2}]
        select_sql, params = conn.handle.executed[1]
        assert select_sql.endswith("ORDER BY `id` LIMIT %s OFFSET %s")
        assert params == (2, 10)
        key_lookups = [sql for sql in conn.handle.statements() if "KEY_COLUMN_USAGE" in sql]
        assert len(key_lookups) == 1

    def test_write_rows_upserts_in_transaction(self, connector, config):
        conn = connection(config, lambda sql, params: [])
        rows = [{"id": 1, "name": "a"}, {"id": 2, "name": "b"}]

        written = connector.write_rows(conn, USERS, rows, WriteOptions())

        sql, values = conn.handle.executed[0]
        assert written == 2
        assert sql.startswith("INSERT INTO `shop`.`users` (`id`, `name`) VALUES (%s, %s)")
        assert "ON DUPLICATE KEY UPDATE `id` = VALUES(`id`), `name` = VALUES(`name`)" in sql
        assert values == [(1, "a"), (2, "b")]
        assert conn.handle.transactions == ["begin", "commit"]

    def test_write_rows_failure_rolls_back(self, connector, config):
        def respond(sql, params):
            raise pymysql.err.IntegrityError(1062, "Duplicate entry")

        conn = connection(config, respond)

        with pytest.raises(WriteError, match="Failed to write 1 rows"):
            connector.write_rows(conn, USERS, [{"id": 1}], WriteOptions())

        assert conn.handle.transactions == ["begin", "rollback"]

    def test_write_no_rows(self, connector, config):
        conn = connection(config, lambda sql, params: [])

        assert connector.write_rows(conn, USERS, [], WriteOptions()) == 0
        assert conn.handle.executed == []


class TestLostConnection:
    @pytest.mark.parametrize("code", [2006, 2013, 2055])
    def test_table_creation(self, connector, config, code):
        conn = connection(config, server_lost(code))

        with pytest.raises(ConnectionFailedError, match="Lost connection"):
            connector.write_definition(conn, USERS, UnitDefinition(unit=USERS, body=USERS_DDL), WriteOptions())

    def test_table_lookup_during_write(self, connector, config):
        def respond(sql, params):
            if "information_schema.TABLES" in sql:
                raise pymysql.err.OperationalError(2006, "MySQL server has gone away")
            return []

        with pytest.raises(ConnectionFailedError, match="gone away"):
            connector.write_definition(
                connection(config, respond), USERS, UnitDefinition(unit=USERS, body=USERS_DDL), WriteOptions()
            )

    def test_listing(self, connector, config):
        with pytest.raises(ConnectionFailedError):
            connector.list_collections(connection(config, server_lost(2013)))

    def test_closed_handle(self, connector, config):
        def respond(sql, params):
            raise pymysql.err.InterfaceError(0, "")

        with pytest.raises(ConnectionFailedError):
            connector.fetch_definition(connection(config, respond), USERS)

    def test_read_rows(self, connector, config):
        def respond(sql, params):
            if "KEY_COLUMN_USAGE" in sql:
                return [("id",)]
            raise pymysql.err.OperationalError(2013, "Lost connection to MySQL server during query")

        with pytest.raises(ConnectionFailedError, match="Lost connection"):
            connector.read_rows(connection(config, respond), USERS, 0, 10)

    def test_write_rows_skips_rollback(self, connector, config):
        conn = connection(config, server_lost(2013))

        with pytest.raises(ConnectionFailedError):
            connector.write_rows(conn, USERS, [{"id": 1}], WriteOptions())

        assert conn.handle.transactions == ["begin"]
