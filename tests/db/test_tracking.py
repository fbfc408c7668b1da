"""Tests for the migration tracking table store."""

from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest
from psycopg import sql

from pgmigrate.db.migrations.base import ExecutedMigrationRecord
from pgmigrate.db.migrations.tracking import (
    DEFAULT_TABLE_CONFIGURATION,
    SCHEMA_EXISTS_SQL,
    TABLE_EXISTS_SQL,
    MigrationTableConfiguration,
    MigrationTrackingStore,
)

EXECUTED_AT = datetime(2025, 5, 18, 12, 0, tzinfo=timezone.utc)


def _identifiers(composed):
    return [part for part in composed if isinstance(part, sql.Identifier)]


class TestMigrationTableConfiguration:
    """Tests for MigrationTableConfiguration."""

    def test_defaults(self):
        config = MigrationTableConfiguration()
        assert config.schema == "pgmigrate"
        assert config.table == "migrations"
        assert DEFAULT_TABLE_CONFIGURATION == config

    def test_fully_qualified_name(self):
        assert MigrationTableConfiguration().fully_qualified_name == '"pgmigrate"."migrations"'

    def test_fully_qualified_name_quotes_mixed_case(self):
        config = MigrationTableConfiguration(schema="Ops", table="History")
        assert config.fully_qualified_name == '"Ops"."History"'


class TestMigrationTrackingStore:
    """Tests for MigrationTrackingStore against a mocked connection."""

    @pytest.fixture
    def store(self, query_connection):
        return MigrationTrackingStore(
            query_connection, MigrationTableConfiguration(schema="ops", table="history")
        )

    @pytest.mark.asyncio
    async def test_table_exists_uses_parameters(self, store, query_connection):
        query_connection.query_scalar = AsyncMock(return_value=True)

        assert await store.table_exists() is True
        query_connection.query_scalar.assert_awaited_once_with(
            TABLE_EXISTS_SQL, {"schema": "ops", "table": "history"}
        )

    @pytest.mark.asyncio
    async def test_schema_exists(self, store, query_connection):
        query_connection.query_scalar = AsyncMock(return_value=False)

        assert await store.schema_exists() is False
        query_connection.query_scalar.assert_awaited_once_with(
            SCHEMA_EXISTS_SQL, {"schema": "ops"}
        )

    @pytest.mark.asyncio
    async def test_ensure_table_exists_creates_schema_and_table(self, store, query_connection):
        query_connection.query_scalar = AsyncMock(return_value=False)

        await store.ensure_table_exists()

        assert query_connection.execute.await_count == 2
        create_schema, create_table = [c.args[0] for c in query_connection.execute.await_args_list]
        assert _identifiers(create_schema) == [sql.Identifier("ops")]
        assert _identifiers(create_table) == [sql.Identifier("ops", "history")]

    @pytest.mark.asyncio
    async def test_ensure_table_exists_is_idempotent(self, store, query_connection):
        query_connection.query_scalar = AsyncMock(return_value=True)

        await store.ensure_table_exists()

        query_connection.execute.assert_not_called()

    @pytest.mark.asyncio
    async def test_insert(self, store, query_connection):
        await store.insert(202505181200, "AddUsers", EXECUTED_AT)

        query, params = query_connection.execute.await_args.args
        assert _identifiers(query) == [sql.Identifier("ops", "history")]
        assert params == {
            "identifier": 202505181200,
            "name": "AddUsers",
            "executed_at": EXECUTED_AT,
        }

    @pytest.mark.asyncio
    async def test_select_all(self, store, query_connection):
        query_connection.query = AsyncMock(
            return_value=[
                {"identifier": 100, "name": "First", "executed_at": EXECUTED_AT},
                {"identifier": 200, "name": "Second", "executed_at": "2025-05-19T08:30:00+00:00"},
            ]
        )

        records = await store.select_all()

        assert records == [
            ExecutedMigrationRecord(100, "First", EXECUTED_AT),
            ExecutedMigrationRecord(
                200, "Second", datetime(2025, 5, 19, 8, 30, tzinfo=timezone.utc)
            ),
        ]

    @pytest.mark.asyncio
    async def test_count(self, store, query_connection):
        query_connection.query_scalar = AsyncMock(return_value=3)
        assert await store.count() == 3

    @pytest.mark.asyncio
    async def test_count_none_is_zero(self, store, query_connection):
        assert await store.count() == 0

    @pytest.mark.asyncio
    async def test_current_version(self, store, query_connection):
        query_connection.query_scalar = AsyncMock(return_value=True)
        query_connection.query_one = AsyncMock(
            return_value={"identifier": 300, "name": "Latest", "executed_at": EXECUTED_AT}
        )

        version = await store.current_version()

        assert version == ExecutedMigrationRecord(300, "Latest", EXECUTED_AT)

    @pytest.mark.asyncio
    async def test_current_version_without_schema(self, store, query_connection):
        query_connection.query_scalar = AsyncMock(return_value=False)

        assert await store.current_version() is None
        query_connection.query_one.assert_not_called()

    @pytest.mark.asyncio
    async def test_current_version_empty_table(self, store, query_connection):
        query_connection.query_scalar = AsyncMock(return_value=True)

        assert await store.current_version() is None
