"""PostgreSQL connection management.

Provides a thin async wrapper over a single psycopg connection with
transaction scoping and SQL-annotated error reporting.
"""

import asyncio
import logging
from collections.abc import AsyncGenerator, Awaitable, Mapping
from contextlib import asynccontextmanager
from typing import Any, Optional, TypeVar, Union

import psycopg
from psycopg import sql
from psycopg.rows import dict_row

from .config import PostgresConfig, get_config

logger = logging.getLogger(__name__)

T = TypeVar("T")

Query = Union[str, sql.Composable]
Params = Optional[Mapping[str, Any]]


class DatabaseError(Exception):
    """Base exception for database errors."""

    pass


class ConnectionError(DatabaseError):
    """Database connection error."""

    pass


class QueryError(DatabaseError):
    """Database query error.

    Attributes:
        sql: The SQL text that failed, if known
    """

    def __init__(self, message: str, sql: Optional[str] = None):
        super().__init__(message)
        self.sql = sql

    def __str__(self) -> str:
        message = super().__str__()
        if self.sql:
            return f"{message}\nSQL:\n    " + self.sql.strip().replace("\n", "\n    ")
        return message


class Connection:
    """A single PostgreSQL connection wrapper.

    Opens lazily on first use. Not safe for concurrent use by several tasks;
    callers own one Connection per logical flow.
    """

    def __init__(self, config: Optional[PostgresConfig] = None):
        """Initialize connection.

        Args:
            config: PostgreSQL configuration (global config if not provided)
        """
        self.config = config or get_config()
        self._conn: Optional[psycopg.AsyncConnection[dict[str, Any]]] = None
        self._in_transaction = False

    @property
    def is_connected(self) -> bool:
        """Check if connection is open."""
        return self._conn is not None and not self._conn.closed

    @property
    def in_transaction(self) -> bool:
        """Whether a transaction opened by :meth:`transaction` is active."""
        return self._in_transaction

    @property
    def raw(self) -> "psycopg.AsyncConnection[dict[str, Any]]":
        """Underlying psycopg connection (must be connected)."""
        if self._conn is None:
            raise ConnectionError("Connection is not open")
        return self._conn

    async def connect(self) -> None:
        """Open the connection if it is not already open."""
        if self.is_connected:
            return

        try:
            self._conn = await psycopg.AsyncConnection.connect(
                self.config.dsn,
                autocommit=True,
                row_factory=dict_row,
                connect_timeout=max(1, int(self.config.connect_timeout)),
                application_name=self.config.application_name,
            )
            logger.debug(f"Connected to PostgreSQL: {self.config.redacted_dsn}")
        except psycopg.Error as e:
            raise ConnectionError(f"Failed to connect: {e}") from e

    async def disconnect(self) -> None:
        """Close connection."""
        if self._conn is None:
            return
        try:
            await self._conn.close()
        except psycopg.Error as e:
            logger.warning(f"Error closing connection: {e}")
        finally:
            self._conn = None
            self._in_transaction = False

    async def __aenter__(self) -> "Connection":
        await self.connect()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.disconnect()

    def _sql_text(self, query: Query) -> str:
        if isinstance(query, str):
            return query
        try:
            return query.as_string(self._conn)
        except Exception:
            return repr(query)

    async def _run(self, awaitable: Awaitable[T]) -> T:
        if self.config.query_timeout is None:
            return await awaitable
        return await asyncio.wait_for(awaitable, timeout=self.config.query_timeout)

    async def _execute(self, query: Query, params: Params) -> tuple[int, list[dict[str, Any]]]:
        await self.connect()
        assert self._conn is not None

        try:
            async with self._conn.cursor() as cur:
                # Without params the text is sent verbatim so multi-statement
                # scripts and literal '%' characters work.
                if params is None:
                    await self._run(cur.execute(query))
                else:
                    await self._run(cur.execute(query, params))
                rows = await cur.fetchall() if cur.description is not None else []
                return cur.rowcount, rows
        except asyncio.TimeoutError as e:
            raise QueryError(
                f"Query timeout after {self.config.query_timeout}s", sql=self._sql_text(query)
            ) from e
        except psycopg.Error as e:
            raise QueryError(f"Query failed: {e}", sql=self._sql_text(query)) from e

    async def execute(self, query: Query, params: Params = None) -> int:
        """Execute a statement (or a parameterless script).

        Args:
            query: SQL text or composed statement
            params: Named parameters for %(name)s placeholders

        Returns:
            Number of rows affected (-1 when not applicable)
        """
        rowcount, _ = await self._execute(query, params)
        return rowcount

    async def query(self, query: Query, params: Params = None) -> list[dict[str, Any]]:
        """Execute a query and return all rows as dicts.

        Args:
            query: SQL text or composed statement
            params: Named parameters for %(name)s placeholders

        Returns:
            List of result records
        """
        _, rows = await self._execute(query, params)
        return rows

    async def query_one(self, query: Query, params: Params = None) -> Optional[dict[str, Any]]:
        """Execute a query and return the first row, or None."""
        rows = await self.query(query, params)
        return rows[0] if rows else None

    async def query_scalar(self, query: Query, params: Params = None) -> Any:
        """Execute a query and return the first column of the first row."""
        row = await self.query_one(query, params)
        if not row:
            return None
        return next(iter(row.values()))

    @asynccontextmanager
    async def transaction(self) -> AsyncGenerator["Connection", None]:
        """Run the enclosed block in a transaction.

        Commits on normal exit and rolls back on any exception, including
        cancellation. A nested call joins the already active transaction.

        Usage:
            async with conn.transaction():
                await conn.execute("...")
        """
        if self._in_transaction:
            yield self
            return

        await self.connect()
        assert self._conn is not None

        self._in_transaction = True
        try:
            async with self._conn.transaction():
                yield self
        except psycopg.Error as e:
            raise QueryError(f"Transaction failed: {e}") from e
        finally:
            self._in_transaction = False


@asynccontextmanager
async def get_connection(
    config: Optional[PostgresConfig] = None,
) -> AsyncGenerator[Connection, None]:
    """Context manager for an open database connection.

    Usage:
        async with get_connection() as conn:
            await conn.execute("SELECT 1")

    Args:
        config: Optional configuration override

    Yields:
        Database connection
    """
    conn = Connection(config)
    await conn.connect()
    try:
        yield conn
    finally:
        await conn.disconnect()
