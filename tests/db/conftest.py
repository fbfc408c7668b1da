"""DB-specific pytest fixtures.

Provides mocked psycopg connections and cursors for testing the
connection wrapper, tracking store and catalog queries.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from pgmigrate.db.connection import Connection


@pytest.fixture
def mock_pg_cursor():
    """Create a mock psycopg cursor usable as an async context manager."""
    cursor = MagicMock()
    cursor.__aenter__ = AsyncMock(return_value=cursor)
    cursor.__aexit__ = AsyncMock(return_value=False)
    cursor.execute = AsyncMock()
    cursor.fetchall = AsyncMock(return_value=[])
    cursor.description = None
    cursor.rowcount = 0
    return cursor


@pytest.fixture
def mock_pg_transaction():
    """Create a mock psycopg transaction block."""
    tx = MagicMock()
    tx.__aenter__ = AsyncMock(return_value=tx)
    tx.__aexit__ = AsyncMock(return_value=False)
    return tx


@pytest.fixture
def mock_pg_conn(mock_pg_cursor, mock_pg_transaction):
    """Create a mock psycopg AsyncConnection."""
    conn = MagicMock()
    conn.closed = False
    conn.close = AsyncMock()
    conn.cursor = MagicMock(return_value=mock_pg_cursor)
    conn.transaction = MagicMock(return_value=mock_pg_transaction)
    return conn


@pytest.fixture
def mock_connection(mock_pg_conn, pg_config):
    """Create a Connection wired to the mock psycopg connection."""
    conn = Connection(pg_config)
    conn._conn = mock_pg_conn
    return conn


@pytest.fixture
def query_connection():
    """Create a Connection double whose query methods are AsyncMocks."""
    conn = MagicMock(spec=Connection)
    conn.execute = AsyncMock(return_value=0)
    conn.query = AsyncMock(return_value=[])
    conn.query_one = AsyncMock(return_value=None)
    conn.query_scalar = AsyncMock(return_value=None)
    return conn
