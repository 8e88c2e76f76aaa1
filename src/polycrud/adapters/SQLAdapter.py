# src/polycrud/adapters/SQLAdapter.py
from __future__ import annotations

import os
import sqlite3
import threading
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional, Tuple

from ..base.BaseProvider import BaseProvider
from ..errors import AdapterConfigurationError, BackendRequestError, CrudError
from ..models import (
    CreateParams,
    DeleteParams,
    GetListParams,
    GetOneParams,
    ListResult,
    RecordResult,
    UpdateParams,
)
from ..query import QueryBuilder
from ..types import JsonDict
from ..utils import validate_column_name, validate_columns, validate_table_name

# DB-API error classes worth retrying (lost connection, locked database)
_TRANSIENT_ERRORS = ("OperationalError", "InterfaceError")


def _rows(cursor: Any) -> List[JsonDict]:
    columns = [desc[0] for desc in cursor.description]
    return [dict(zip(columns, row)) for row in cursor.fetchall()]


def _row(cursor: Any) -> Optional[JsonDict]:
    row = cursor.fetchone()
    if row is None:
        return None
    columns = [desc[0] for desc in cursor.description]
    return dict(zip(columns, row))


class SQLAdapter(BaseProvider):
    """
    Relational backend over DB-API drivers.

    Filters become a parameterized WHERE clause, sorting ORDER BY and
    pagination LIMIT/OFFSET; a separate COUNT(*) supplies the exact total.
    Blocking driver calls run in a worker thread. Connections are opened on
    the first operation.
    """

    provider_type = "sql"
    placeholder = "%s"
    contains_operator = "LIKE"

    def __init__(
        self,
        *,
        primary_key: str = "id",
        resources: Optional[Dict[str, str]] = None,
        strict_resources: bool = False,
    ):
        super().__init__(resources=resources, strict_resources=strict_resources,
                         id_field=primary_key)
        self.primary_key = validate_column_name(primary_key)
        self._lock = threading.Lock()

    # Connection handling, provided by dialects
    @contextmanager
    def _connection(self) -> Iterator[Any]:
        raise NotImplementedError
        yield

    def _order_clause(self, field: str, descending: bool) -> str:
        return f"{validate_column_name(field)} {'DESC' if descending else 'ASC'}"

    def _insert_sync(self, cursor: Any, table: str, data: JsonDict) -> Optional[JsonDict]:
        raise NotImplementedError

    def _update_sync(self, cursor: Any, table: str, record_id: Any,
                     data: JsonDict) -> Optional[JsonDict]:
        raise NotImplementedError

    def _close_sync(self) -> None:
        return None

    def _table(self, resource: str, operation: str) -> str:
        return validate_table_name(self._resolve(resource, operation))

    @contextmanager
    def _transaction(self, resource: str, operation: str, record_id: Any = None) -> Iterator[Any]:
        """Cursor inside a transaction; driver errors become BackendRequestError"""
        with self._connection() as conn:
            cursor = conn.cursor()
            try:
                yield cursor
                conn.commit()
            except CrudError:
                conn.rollback()
                raise
            except Exception as e:
                try:
                    conn.rollback()
                except Exception as rollback_error:
                    self.logger.warning(f"Rollback failed: {rollback_error}")
                raise BackendRequestError(
                    f"{operation} on '{resource}' failed: {e}",
                    backend_message=str(e),
                    retryable=type(e).__name__ in _TRANSIENT_ERRORS,
                    resource=resource,
                    record_id=record_id,
                    operation=operation,
                ) from e
            finally:
                cursor.close()

    def _fetch_by_id(self, cursor: Any, table: str, record_id: Any) -> Optional[JsonDict]:
        cursor.execute(
            f"SELECT * FROM {table} WHERE {self.primary_key} = {self.placeholder}",
            [record_id],
        )
        return _row(cursor)

    def _list_sync(self, resource: str, builder: QueryBuilder) -> Tuple[List[JsonDict], int]:
        table = self._table(resource, "get_list")
        where, params = builder.to_sql_where(self.placeholder, self.contains_operator)
        where_sql = f" WHERE {where}" if where else ""

        with self._transaction(resource, "get_list") as cursor:
            cursor.execute(f"SELECT COUNT(*) FROM {table}{where_sql}", params)
            total = int(cursor.fetchone()[0])

            sql = f"SELECT * FROM {table}{where_sql}"
            query_params = list(params)
            if builder.order_by_field:
                field, desc = builder.order_by_field
                sql += f" ORDER BY {self._order_clause(field, desc)}"
            if builder.take_count is not None:
                sql += f" LIMIT {self.placeholder} OFFSET {self.placeholder}"
                query_params.extend([builder.take_count, builder.skip_count])

            self.logger.debug("Executing SQL: %s", sql)
            cursor.execute(sql, query_params)
            return _rows(cursor), total

    def _get_sync(self, resource: str, record_id: Any) -> Optional[JsonDict]:
        table = self._table(resource, "get_one")
        with self._transaction(resource, "get_one", record_id) as cursor:
            return self._fetch_by_id(cursor, table, record_id)

    def _create_sync(self, resource: str, data: JsonDict) -> Optional[JsonDict]:
        table = self._table(resource, "create")
        validate_columns(data)
        with self._transaction(resource, "create") as cursor:
            return self._insert_sync(cursor, table, data)

    def _modify_sync(self, resource: str, record_id: Any, data: JsonDict) -> Optional[JsonDict]:
        table = self._table(resource, "update")
        data = {k: v for k, v in validate_columns(dict(data)).items() if k != self.primary_key}
        with self._transaction(resource, "update", record_id) as cursor:
            if not data:
                return self._fetch_by_id(cursor, table, record_id)
            return self._update_sync(cursor, table, record_id, data)

    def _delete_sync(self, resource: str, record_id: Any) -> Optional[JsonDict]:
        table = self._table(resource, "delete_one")
        with self._transaction(resource, "delete_one", record_id) as cursor:
            previous = self._fetch_by_id(cursor, table, record_id)
            if previous is None:
                return None
            cursor.execute(
                f"DELETE FROM {table} WHERE {self.primary_key} = {self.placeholder}",
                [record_id],
            )
            return previous

    async def get_list(self, params: GetListParams) -> ListResult:
        builder = QueryBuilder.from_params(params)
        rows, total = await self._to_thread(self._list_sync, params.resource, builder)
        return self._list_result(rows, total=total)

    async def get_one(self, params: GetOneParams) -> RecordResult:
        row = await self._to_thread(self._get_sync, params.resource, params.id)
        return self._record_result(row, resource=params.resource, record_id=params.id,
                                   operation="get_one")

    async def create(self, params: CreateParams) -> RecordResult:
        row = await self._to_thread(self._create_sync, params.resource, dict(params.variables))
        return self._record_result(row, resource=params.resource, operation="create")

    async def update(self, params: UpdateParams) -> RecordResult:
        row = await self._to_thread(self._modify_sync, params.resource, params.id,
                                    dict(params.variables))
        return self._record_result(row, resource=params.resource, record_id=params.id,
                                   operation="update")

    async def delete_one(self, params: DeleteParams) -> RecordResult:
        row = await self._to_thread(self._delete_sync, params.resource, params.id)
        return self._record_result(row, resource=params.resource, record_id=params.id,
                                   operation="delete_one")

    async def aclose(self) -> None:
        await self._to_thread(self._close_sync)


class PostgreSQLAdapter(SQLAdapter):
    """PostgreSQL with a lazily created psycopg2 connection pool"""

    provider_type = "postgresql"
    contains_operator = "ILIKE"

    def __init__(
        self,
        *,
        dsn: Optional[str] = None,
        min_connections: Optional[int] = None,
        max_connections: Optional[int] = None,
        **kwargs: Any,
    ):
        super().__init__(**kwargs)
        self.connection_string = dsn or os.getenv(
            "POSTGRES_CONNECTION_STRING",
            os.getenv("POSTGRES_URL", os.getenv("DATABASE_URL", "")),
        )
        if not self.connection_string:
            raise AdapterConfigurationError(f"{self.provider_type}: dsn is required")
        self.min_connections = min_connections or int(os.getenv("POSTGRES_MIN_CONNECTIONS", "1"))
        self.max_connections = max_connections or int(os.getenv("POSTGRES_MAX_CONNECTIONS", "20"))
        self._pool = None

    def _initialize_pool(self) -> None:
        import psycopg2.pool

        with self._lock:
            if not self._pool:
                try:
                    self._pool = psycopg2.pool.ThreadedConnectionPool(
                        minconn=self.min_connections,
                        maxconn=self.max_connections,
                        dsn=self.connection_string,
                    )
                except Exception as e:
                    raise BackendRequestError(
                        f"Failed to initialize PostgreSQL pool: {e}",
                        backend_message=str(e),
                    ) from e
                self.logger.info("PostgreSQL pool initialized")

    @contextmanager
    def _connection(self) -> Iterator[Any]:
        if not self._pool:
            self._initialize_pool()
        try:
            conn = self._pool.getconn()  # type: ignore
        except Exception as e:
            raise BackendRequestError(
                f"Failed to get a PostgreSQL connection: {e}",
                backend_message=str(e),
                retryable=True,
            ) from e

        broken = False
        try:
            yield conn
        except BackendRequestError as e:
            broken = bool(e.retryable)
            raise
        finally:
            # connections that failed at the transport level are closed, not reused
            self._pool.putconn(conn, close=broken or bool(getattr(conn, "closed", 0)))  # type: ignore

    def _order_clause(self, field: str, descending: bool) -> str:
        # match the in-memory ordering: nulls first ascending, last descending
        nulls = "NULLS LAST" if descending else "NULLS FIRST"
        return f"{super()._order_clause(field, descending)} {nulls}"

    def _insert_sync(self, cursor: Any, table: str, data: JsonDict) -> Optional[JsonDict]:
        if data:
            columns = ", ".join(data.keys())
            marks = ", ".join([self.placeholder] * len(data))
            cursor.execute(f"INSERT INTO {table} ({columns}) VALUES ({marks}) RETURNING *",
                           list(data.values()))
        else:
            cursor.execute(f"INSERT INTO {table} DEFAULT VALUES RETURNING *")
        return _row(cursor)

    def _update_sync(self, cursor: Any, table: str, record_id: Any,
                     data: JsonDict) -> Optional[JsonDict]:
        set_clause = ", ".join(f"{k} = {self.placeholder}" for k in data.keys())
        cursor.execute(
            f"UPDATE {table} SET {set_clause} WHERE {self.primary_key} = {self.placeholder} "
            f"RETURNING *",
            list(data.values()) + [record_id],
        )
        return _row(cursor)

    def _close_sync(self) -> None:
        if self._pool:
            self._pool.closeall()
            self._pool = None


class NeonAdapter(PostgreSQLAdapter):
    """Neon serverless Postgres, reached over its standard connection string"""

    provider_type = "neon"

    def __init__(self, *, dsn: Optional[str] = None, **kwargs: Any):
        dsn = dsn or os.getenv("NEON_DATABASE_URL") or os.getenv("DATABASE_URL")
        if dsn and "sslmode=" not in dsn:
            dsn += ("&" if "?" in dsn else "?") + "sslmode=require"
        super().__init__(dsn=dsn, **kwargs)


class SQLiteAdapter(SQLAdapter):
    """SQLite through the standard library driver, one shared connection"""

    provider_type = "sqlite"
    placeholder = "?"

    def __init__(self, *, database: Optional[str] = None, **kwargs: Any):
        super().__init__(**kwargs)
        self.database = database or os.getenv("SQLITE_DATABASE", ":memory:")
        self._conn: Optional[sqlite3.Connection] = None

    def _initialize_connection(self) -> sqlite3.Connection:
        if self._conn is None:
            self._conn = sqlite3.connect(self.database, check_same_thread=False)
            self.logger.info(f"SQLite connection opened: {self.database}")
        return self._conn

    @contextmanager
    def _connection(self) -> Iterator[Any]:
        # one connection shared across worker threads
        with self._lock:
            yield self._initialize_connection()

    def execute_script(self, script: str) -> None:
        """Run DDL, mainly to prepare schemas for local use and tests"""
        with self._connection() as conn:
            conn.executescript(script)
            conn.commit()

    def _insert_sync(self, cursor: Any, table: str, data: JsonDict) -> Optional[JsonDict]:
        if data:
            columns = ", ".join(data.keys())
            marks = ", ".join([self.placeholder] * len(data))
            cursor.execute(f"INSERT INTO {table} ({columns}) VALUES ({marks})",
                           list(data.values()))
        else:
            cursor.execute(f"INSERT INTO {table} DEFAULT VALUES")

        if data.get(self.primary_key) is not None:
            return self._fetch_by_id(cursor, table, data[self.primary_key])
        cursor.execute(f"SELECT * FROM {table} WHERE rowid = ?", [cursor.lastrowid])
        return _row(cursor)

    def _update_sync(self, cursor: Any, table: str, record_id: Any,
                     data: JsonDict) -> Optional[JsonDict]:
        set_clause = ", ".join(f"{k} = ?" for k in data.keys())
        cursor.execute(
            f"UPDATE {table} SET {set_clause} WHERE {self.primary_key} = ?",
            list(data.values()) + [record_id],
        )
        if cursor.rowcount == 0:
            return None
        return self._fetch_by_id(cursor, table, record_id)

    def _close_sync(self) -> None:
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None
