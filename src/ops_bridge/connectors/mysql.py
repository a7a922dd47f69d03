"""MySQL connector backed by PyMySQL.

Units are base tables inside a database. Structure is copied with the DDL
reported by ``SHOW CREATE TABLE``; data is copied in LIMIT/OFFSET batches and
written with ``INSERT ... ON DUPLICATE KEY UPDATE`` so a repeated batch is an
upsert.
"""

from typing import Any

import pymysql
import pymysql.cursors

from ops_bridge.config import MySQLConfig, SystemType
from ops_bridge.connectors.base import (
    Connection,
    Connector,
    MigrationUnit,
    UnitCount,
    UnitDefinition,
    WriteOptions,
)
from ops_bridge.exceptions import (
    ConnectionFailedError,
    DiscoveryError,
    NotFoundError,
    WriteError,
)
from ops_bridge.utils.logging import get_logger
from ops_bridge.utils.retry import call_with_retry

logger = get_logger(__name__)

UNIT_TYPE = "table"

SYSTEM_SCHEMAS = frozenset({"information_schema", "mysql", "performance_schema", "sys"})

# MySQL error codes
ER_DBACCESS_DENIED = 1044
ER_ACCESS_DENIED = 1045
ER_BAD_DB = 1049
ER_NO_SUCH_TABLE = 1146
CR_SERVER_GONE_ERROR = 2006
CR_SERVER_LOST = 2013
CR_SERVER_LOST_EXTENDED = 2055

_AUTH_ERRORS = (ER_DBACCESS_DENIED, ER_ACCESS_DENIED)
_LOST_CONNECTION_ERRORS = (CR_SERVER_GONE_ERROR, CR_SERVER_LOST, CR_SERVER_LOST_EXTENDED)


def quote_identifier(name: str) -> str:
    """Backtick-quote an identifier, doubling embedded backticks."""
    return "`" + name.replace("`", "``") + "`"


def qualified_name(database: str, table: str) -> str:
    return f"{quote_identifier(database)}.{quote_identifier(table)}"


def _error_code(error: BaseException) -> int | None:
    args = getattr(error, "args", ())
    if args and isinstance(args[0], int):
        return args[0]
    return None


def _is_transient(error: BaseException) -> bool:
    return _error_code(error) not in _AUTH_ERRORS


def _is_lost_connection(error: BaseException) -> bool:
    # PyMySQL raises InterfaceError for any use of an already closed connection
    return isinstance(error, pymysql.err.InterfaceError) or (
        _error_code(error) in _LOST_CONNECTION_ERRORS
    )


def _lost_connection(conn: Connection, error: BaseException) -> ConnectionFailedError:
    return ConnectionFailedError(
        f"Lost connection to {conn.config.display_name}", system="mysql", detail=str(error)
    )


class MySQLConnector(Connector):
    """Connector for MySQL databases and their tables."""

    system_type = SystemType.MYSQL

    def __init__(
        self,
        include_system_schemas: bool = False,
        retry_attempts: int = 3,
        retry_backoff_min: float = 1.0,
        retry_backoff_max: float = 10.0,
    ):
        self.include_system_schemas = include_system_schemas
        self.retry_attempts = retry_attempts
        self.retry_backoff_min = retry_backoff_min
        self.retry_backoff_max = retry_backoff_max

    # Connection lifecycle

    def connect(self, config: MySQLConfig) -> Connection:
        try:
            handle = call_with_retry(
                pymysql.connect,
                host=config.host,
                port=config.port,
                user=config.user,
                password=config.password,
                database=config.database,
                charset=config.charset,
                connect_timeout=config.connect_timeout,
                autocommit=True,
                max_attempts=self.retry_attempts,
                min_wait=self.retry_backoff_min,
                max_wait=self.retry_backoff_max,
                retry_on_exceptions=(pymysql.err.OperationalError,),
                retry_if=_is_transient,
            )
        except pymysql.MySQLError as e:
            raise ConnectionFailedError(
                f"Cannot connect to {config.display_name}", system="mysql", detail=str(e)
            ) from e

        logger.debug("mysql_connected", server=config.display_name)
        return Connection(config=config, handle=handle, metadata={"primary_keys": {}})

    def close(self, conn: Connection) -> None:
        if conn.handle is not None and conn.handle.open:
            conn.handle.close()

    # Discovery

    def list_unit_types(self) -> list[str]:
        return [UNIT_TYPE]

    def list_collections(self, conn: Connection) -> list[str]:
        rows = self._query(conn, "SHOW DATABASES", error="Failed to list databases")
        databases = [row[0] for row in rows]
        if self.include_system_schemas:
            return databases
        return [db for db in databases if db.lower() not in SYSTEM_SCHEMAS]

    def list_units(
        self, conn: Connection, collection: str, unit_types: list[str] | None = None
    ) -> list[MigrationUnit]:
        if unit_types and UNIT_TYPE not in unit_types:
            return []
        rows = self._query(
            conn,
            f"SHOW FULL TABLES FROM {quote_identifier(collection)} WHERE Table_type = 'BASE TABLE'",
            error=f"Failed to list tables in '{collection}'",
        )
        return [MigrationUnit(collection, UNIT_TYPE, row[0]) for row in rows]

    def fetch_definition(self, conn: Connection, unit: MigrationUnit) -> UnitDefinition:
        table = qualified_name(unit.collection, unit.name)
        try:
            with conn.handle.cursor() as cursor:
                cursor.execute(f"SHOW CREATE TABLE {table}")
                _, ddl = cursor.fetchone()
                cursor.execute(f"SHOW COLUMNS FROM {table}")
                columns = [row[0] for row in cursor.fetchall()]
                cursor.execute(f"SELECT COUNT(*) FROM {table}")
                (row_count,) = cursor.fetchone()
        except pymysql.MySQLError as e:
            if _is_lost_connection(e):
                raise _lost_connection(conn, e) from e
            if _error_code(e) in (ER_NO_SUCH_TABLE, ER_BAD_DB):
                raise NotFoundError(
                    f"Table '{unit.name}' not found in '{unit.collection}'", system="mysql"
                ) from e
            raise DiscoveryError(f"Failed to read {unit.key}", system="mysql", detail=str(e)) from e

        return UnitDefinition(unit=unit, body=ddl, columns=columns, row_count=int(row_count))

    def count_units(self, conn: Connection, unit: MigrationUnit) -> UnitCount:
        if not self._table_exists(conn, unit.collection, unit.name):
            return UnitCount(exists=False, count=0)
        rows = self._query(
            conn,
            f"SELECT COUNT(*) FROM {qualified_name(unit.collection, unit.name)}",
            error=f"Failed to count rows of {unit.key}",
        )
        return UnitCount(exists=True, count=int(rows[0][0]))

    # Writes

    def write_definition(
        self,
        conn: Connection,
        unit: MigrationUnit,
        definition: UnitDefinition,
        options: WriteOptions,
    ) -> None:
        database = options.destination(unit)
        try:
            if options.create_schema:
                self.create_database(conn, database)

            if self._table_exists(conn, database, unit.name):
                if not options.truncate_target:
                    logger.debug("table_exists", database=database, table=unit.name)
                    return
                self._execute(conn, f"DROP TABLE IF EXISTS {qualified_name(database, unit.name)}")
                logger.info("table_dropped", database=database, table=unit.name)
            elif not options.create_schema:
                raise WriteError(
                    f"Table '{unit.name}' does not exist in '{database}' and schema creation is disabled",
                    system="mysql",
                )

            self._execute(conn, self._rewrite_ddl(definition.body, unit.name, database))
        except DiscoveryError as e:
            raise WriteError(
                f"Failed to create table '{unit.name}'", system="mysql", detail=e.detail
            ) from e
        except pymysql.MySQLError as e:
            if _is_lost_connection(e):
                raise _lost_connection(conn, e) from e
            raise WriteError(
                f"Failed to create table '{unit.name}'", system="mysql", detail=str(e)
            ) from e

    def create_database(self, conn: Connection, database: str) -> None:
        """Create a database with the utf8mb4 character set if it is missing."""
        self._execute(
            conn,
            f"CREATE DATABASE IF NOT EXISTS {quote_identifier(database)} "
            "CHARACTER SET utf8mb4 COLLATE utf8mb4_general_ci",
        )

    def read_rows(
        self, conn: Connection, unit: MigrationUnit, offset: int, limit: int
    ) -> list[dict[str, Any]]:
        order_by = self._primary_key(conn, unit.collection, unit.name)
        query = f"SELECT * FROM {qualified_name(unit.collection, unit.name)}"
        if order_by:
            query += " ORDER BY " + ", ".join(quote_identifier(col) for col in order_by)
        query += " LIMIT %s OFFSET %s"
        try:
            with conn.handle.cursor(pymysql.cursors.DictCursor) as cursor:
                cursor.execute(query, (limit, offset))
                return list(cursor.fetchall())
        except pymysql.MySQLError as e:
            if _is_lost_connection(e):
                raise _lost_connection(conn, e) from e
            raise DiscoveryError(
                f"Failed to read rows of {unit.key}", system="mysql", detail=str(e)
            ) from e

    def write_rows(
        self,
        conn: Connection,
        unit: MigrationUnit,
        rows: list[dict[str, Any]],
        options: WriteOptions,
    ) -> int:
        if not rows:
            return 0

        columns = list(rows[0])
        column_list = ", ".join(quote_identifier(col) for col in columns)
        placeholders = ", ".join(["%s"] * len(columns))
        updates = ", ".join(
            f"{quote_identifier(col)} = VALUES({quote_identifier(col)})" for col in columns
        )
        query = (
            f"INSERT INTO {qualified_name(options.destination(unit), unit.name)} "
            f"({column_list}) VALUES ({placeholders}) ON DUPLICATE KEY UPDATE {updates}"
        )
        values = [tuple(row.get(col) for col in columns) for row in rows]

        handle = conn.handle
        try:
            handle.begin()
            with handle.cursor() as cursor:
                cursor.executemany(query, values)
            handle.commit()
        except pymysql.MySQLError as e:
            if _is_lost_connection(e):
                raise _lost_connection(conn, e) from e
            handle.rollback()
            raise WriteError(
                f"Failed to write {len(rows)} rows to '{unit.name}'", system="mysql", detail=str(e)
            ) from e
        return len(rows)

    # Helpers

    @staticmethod
    def _rewrite_ddl(ddl: str, table: str, database: str) -> str:
        """Point a SHOW CREATE TABLE statement at the destination database."""
        prefix = f"CREATE TABLE {quote_identifier(table)}"
        target = f"CREATE TABLE IF NOT EXISTS {qualified_name(database, table)}"
        if ddl.startswith(prefix):
            return target + ddl[len(prefix):]
        return ddl

    def _table_exists(self, conn: Connection, database: str, table: str) -> bool:
        rows = self._query(
            conn,
            "SELECT COUNT(*) FROM information_schema.TABLES "
            "WHERE TABLE_SCHEMA = %s AND TABLE_NAME = %s",
            (database, table),
            error=f"Failed to look up table '{database}.{table}'",
        )
        return rows[0][0] > 0

    def _primary_key(self, conn: Connection, database: str, table: str) -> list[str]:
        cache: dict[str, list[str]] = conn.metadata.setdefault("primary_keys", {})
        key = f"{database}.{table}"
        if key not in cache:
            rows = self._query(
                conn,
                "SELECT COLUMN_NAME FROM information_schema.KEY_COLUMN_USAGE "
                "WHERE TABLE_SCHEMA = %s AND TABLE_NAME = %s AND CONSTRAINT_NAME = 'PRIMARY' "
                "ORDER BY ORDINAL_POSITION",
                (database, table),
                error=f"Failed to read primary key of '{key}'",
            )
            cache[key] = [row[0] for row in rows]
        return cache[key]

    def _query(
        self,
        conn: Connection,
        sql: str,
        params: tuple[Any, ...] | None = None,
        error: str = "Query failed",
    ) -> list[tuple[Any, ...]]:
        try:
            with conn.handle.cursor() as cursor:
                cursor.execute(sql, params)
                return list(cursor.fetchall())
        except pymysql.MySQLError as e:
            if _is_lost_connection(e):
                raise _lost_connection(conn, e) from e
            raise DiscoveryError(error, system="mysql", detail=str(e)) from e

    @staticmethod
    def _execute(conn: Connection, sql: str) -> None:
        with conn.handle.cursor() as cursor:
            cursor.execute(sql)
