"""Tests for the migration runner.

Runs against the in-memory database from conftest.py, whose transactions
roll back the fake state when the block raises.
"""

import asyncio
from unittest.mock import AsyncMock

import pytest

from pgmigrate.db.connection import QueryError
from pgmigrate.db.migrations.base import (
    BaseMigration,
    MigrationDescriptor,
    MigrationError,
    MigrationFailure,
    MigrationStatus,
    SnapshotApplicationFailure,
)
from pgmigrate.db.schema.header import SchemaVersion, render_header


class SnapshotResources:
    """Resource container holding schema snapshots in memory."""

    def __init__(self, resources):
        self.resources = dict(resources)

    def list_resource_names(self):
        return list(self.resources)

    def read_resource(self, name):
        return self.resources[name]


def create_table_migration(identifier, name, table, calls=None):
    """Migration whose up-action creates ``table``."""

    async def up(conn):
        if calls is not None:
            calls.append(identifier)
        await conn.execute(f"CREATE TABLE {table} (id BIGINT)")

    return MigrationDescriptor(identifier=identifier, name=name, up=up)


def snapshot(version, body="CREATE TABLE t (id BIGINT);"):
    return render_header(version) + body


@pytest.fixture
def calls():
    return []


@pytest.fixture
def abc_migrations(calls):
    return [
        create_table_migration(100, "A", "a", calls),
        create_table_migration(200, "B", "b", calls),
        create_table_migration(300, "C", "c", calls),
    ]


class TestMigrateToLatest:
    """Tests for applying every pending migration."""

    @pytest.mark.asyncio
    async def test_applies_all_in_order(self, make_runner, fake_db, abc_migrations, calls):
        runner = make_runner(abc_migrations)

        result = await runner.migrate_to_latest()

        assert fake_db.identifiers == [100, 200, 300]
        assert [m.identifier for m in result.applied] == [100, 200, 300]
        assert calls == [100, 200, 300]
        assert fake_db.tables == {"a", "b", "c"}
        assert result.snapshot_applied is False

    @pytest.mark.asyncio
    async def test_order_ignores_registration_order(self, make_runner, fake_db, calls):
        runner = make_runner(
            [
                create_table_migration(202501030000, "Third", "third", calls),
                create_table_migration(202501010000, "First", "first", calls),
                create_table_migration(202501020000, "Second", "second", calls),
            ]
        )

        await runner.migrate_to_latest()

        assert calls == [202501010000, 202501020000, 202501030000]
        assert fake_db.identifiers == calls

    @pytest.mark.asyncio
    async def test_rerun_applies_nothing(self, make_runner, fake_db, abc_migrations, calls):
        runner = make_runner(abc_migrations)

        await runner.migrate_to_latest()
        result = await runner.migrate_to_latest()

        assert result.applied == []
        assert fake_db.identifiers == [100, 200, 300]
        assert calls == [100, 200, 300]

    @pytest.mark.asyncio
    async def test_only_pending_migrations_run(self, make_runner, fake_db, abc_migrations, calls):
        runner = make_runner(abc_migrations[:2])
        await runner.migrate_to_latest()

        runner = make_runner(abc_migrations)
        result = await runner.migrate_to_latest()

        assert [m.identifier for m in result.applied] == [300]
        assert calls == [100, 200, 300]

    @pytest.mark.asyncio
    async def test_no_migrations_creates_tracking_table(self, make_runner, fake_db):
        result = await make_runner().migrate_to_latest()

        assert result.applied == []
        assert fake_db.tracking_table_exists is True
        assert fake_db.ensure_calls == 1

    @pytest.mark.asyncio
    async def test_each_migration_gets_its_own_transaction(
        self, make_runner, fake_db, abc_migrations
    ):
        await make_runner(abc_migrations).migrate_to_latest()

        assert fake_db.transactions == 3

    @pytest.mark.asyncio
    async def test_executed_at_is_utc(self, make_runner, fake_db, abc_migrations):
        await make_runner(abc_migrations[:1]).migrate_to_latest()

        assert fake_db.rows[0].executed_at.utcoffset().total_seconds() == 0


class TestMigrateTo:
    """Tests for applying migrations up to a target."""

    @pytest.mark.asyncio
    async def test_stops_at_target(self, make_runner, fake_db, abc_migrations, calls):
        result = await make_runner(abc_migrations).migrate_to(200)

        assert fake_db.identifiers == [100, 200]
        assert [m.identifier for m in result.applied] == [100, 200]
        assert 300 not in calls
        assert "c" not in fake_db.tables

    @pytest.mark.asyncio
    async def test_target_between_identifiers(self, make_runner, fake_db, abc_migrations):
        await make_runner(abc_migrations).migrate_to(250)

        assert fake_db.identifiers == [100, 200]

    @pytest.mark.asyncio
    async def test_target_below_all(self, make_runner, fake_db, abc_migrations):
        result = await make_runner(abc_migrations).migrate_to(50)

        assert result.applied == []
        assert fake_db.identifiers == []

    @pytest.mark.asyncio
    async def test_later_migrate_to_latest_continues(self, make_runner, fake_db, abc_migrations):
        runner = make_runner(abc_migrations)

        await runner.migrate_to(100)
        await runner.migrate_to_latest()

        assert fake_db.identifiers == [100, 200, 300]


class TestSnapshotBootstrap:
    """Tests for bootstrapping empty databases from a schema snapshot."""

    @pytest.mark.asyncio
    async def test_snapshot_applied_to_empty_database(
        self, make_runner, fake_db, abc_migrations, calls
    ):
        runner = make_runner(
            abc_migrations,
            schema_sources=[SnapshotResources({"schema.sql": snapshot(SchemaVersion(100, "A"))})],
        )

        result = await runner.migrate_to_latest()

        assert "t" in fake_db.tables
        assert fake_db.identifiers == [100, 200, 300]
        assert calls == [200, 300]
        assert result.snapshot == "schema.sql"
        assert result.snapshot_version == SchemaVersion(100, "A")
        assert [m.identifier for m in result.applied] == [200, 300]

    @pytest.mark.asyncio
    async def test_snapshot_skipped_when_database_not_empty(
        self, make_runner, fake_db, fake_store, abc_migrations, calls
    ):
        await fake_store.ensure_table_exists()
        await fake_store.insert(100, "A", None)
        runner = make_runner(
            abc_migrations,
            schema_sources=[SnapshotResources({"schema.sql": snapshot(SchemaVersion(100, "A"))})],
        )

        result = await runner.migrate_to_latest()

        assert "t" not in fake_db.tables
        assert result.snapshot_applied is False
        assert calls == [200, 300]
        assert fake_db.identifiers == [100, 200, 300]

    @pytest.mark.asyncio
    async def test_snapshot_applied_when_tracking_table_empty(
        self, make_runner, fake_db, fake_store, abc_migrations
    ):
        await fake_store.ensure_table_exists()
        runner = make_runner(
            abc_migrations,
            schema_sources=[SnapshotResources({"schema.sql": snapshot(SchemaVersion(200, "B"))})],
        )

        result = await runner.migrate_to_latest()

        assert result.snapshot_applied is True
        assert fake_db.identifiers == [200, 100, 300]

    @pytest.mark.asyncio
    async def test_snapshot_and_record_share_one_transaction(
        self, make_runner, fake_db, abc_migrations
    ):
        runner = make_runner(
            [],
            schema_sources=[SnapshotResources({"schema.sql": snapshot(SchemaVersion(100, "A"))})],
        )

        await runner.migrate_to_latest()

        assert fake_db.transactions == 1
        assert fake_db.identifiers == [100]

    @pytest.mark.asyncio
    async def test_snapshot_without_version(self, make_runner, fake_db, abc_migrations, calls):
        runner = make_runner(
            abc_migrations,
            schema_sources=[SnapshotResources({"schema.sql": "CREATE TABLE t (id BIGINT);"})],
        )

        result = await runner.migrate_to(200)

        assert result.snapshot_applied is True
        assert result.snapshot_version is None
        assert "t" in fake_db.tables
        assert calls == [100, 200]

    @pytest.mark.asyncio
    async def test_snapshot_declaring_none_is_unversioned(self, make_runner, fake_db):
        runner = make_runner(
            [],
            schema_sources=[SnapshotResources({"schema.sql": snapshot(None)})],
        )

        result = await runner.migrate_to_latest()

        assert result.snapshot_applied is True
        assert fake_db.identifiers == []
        assert fake_db.tracking_table_exists is True

    @pytest.mark.parametrize("target,applied", [(99, False), (100, True), (250, True)])
    @pytest.mark.asyncio
    async def test_snapshot_gated_by_target(
        self, make_runner, fake_db, abc_migrations, target, applied
    ):
        runner = make_runner(
            abc_migrations,
            schema_sources=[SnapshotResources({"schema.sql": snapshot(SchemaVersion(100, "A"))})],
        )

        result = await runner.migrate_to(target)

        assert result.snapshot_applied is applied
        assert ("t" in fake_db.tables) is applied
        assert fake_db.identifiers == [i for i in (100, 200) if i <= target]

    @pytest.mark.asyncio
    async def test_newer_snapshot_falls_back_to_replay(
        self, make_runner, fake_db, abc_migrations, calls
    ):
        runner = make_runner(
            abc_migrations,
            schema_sources=[SnapshotResources({"schema.sql": snapshot(SchemaVersion(300, "C"))})],
        )

        result = await runner.migrate_to(200)

        assert result.snapshot_applied is False
        assert calls == [100, 200]
        assert fake_db.identifiers == [100, 200]

    @pytest.mark.asyncio
    async def test_environment_snapshot_selected(self, make_runner, fake_db):
        resources = SnapshotResources(
            {
                "schema.sql": snapshot(SchemaVersion(100, "A"), "CREATE TABLE t_default ();"),
                "schema.local.sql": snapshot(SchemaVersion(100, "A"), "CREATE TABLE t_local ();"),
            }
        )
        runner = make_runner([], environment="local", schema_sources=[resources])

        result = await runner.migrate_to_latest()

        assert result.snapshot == "schema.local.sql"
        assert fake_db.tables == {"t_local"}

    @pytest.mark.asyncio
    async def test_no_snapshot_found_replays(self, make_runner, fake_db, abc_migrations, calls):
        runner = make_runner(
            abc_migrations,
            schema_sources=[SnapshotResources({"seed.sql": "INSERT INTO t VALUES (1);"})],
        )

        result = await runner.migrate_to_latest()

        assert result.snapshot_applied is False
        assert calls == [100, 200, 300]

    @pytest.mark.asyncio
    async def test_snapshot_failure_rolls_back_everything(
        self, make_runner, fake_db, abc_migrations, calls
    ):
        fake_db.fail_on.append("CREATE TABLE t")
        runner = make_runner(
            abc_migrations,
            schema_sources=[SnapshotResources({"schema.sql": snapshot(SchemaVersion(100, "A"))})],
        )

        with pytest.raises(SnapshotApplicationFailure) as exc_info:
            await runner.migrate_to_latest()

        assert exc_info.value.resource_name == "schema.sql"
        assert isinstance(exc_info.value.__cause__, QueryError)
        assert fake_db.tracking_table_exists is False
        assert fake_db.identifiers == []
        assert calls == []

    @pytest.mark.asyncio
    async def test_empty_snapshot_is_an_error(self, make_runner, fake_db):
        runner = make_runner([], schema_sources=[SnapshotResources({"schema.sql": "  \n"})])

        with pytest.raises(MigrationError, match="is empty"):
            await runner.migrate_to_latest()

        assert fake_db.tracking_table_exists is False


class TestFailures:
    """Tests for migration failure handling."""

    @pytest.mark.asyncio
    async def test_failure_halts_run(self, make_runner, fake_db, calls):
        async def broken(conn):
            calls.append(200)
            await conn.execute("CREATE TABLE b (id BIGINT)")
            raise RuntimeError("column already exists")

        runner = make_runner(
            [
                create_table_migration(100, "A", "a", calls),
                MigrationDescriptor(200, "B", broken),
                create_table_migration(300, "C", "c", calls),
            ]
        )

        with pytest.raises(MigrationFailure) as exc_info:
            await runner.migrate_to_latest()

        error = exc_info.value
        assert error.migration.identifier == 200
        assert isinstance(error.__cause__, RuntimeError)
        assert "Error while executing migration 200: B." in str(error)
        assert fake_db.identifiers == [100]
        assert fake_db.tables == {"a"}
        assert calls == [100, 200]

    @pytest.mark.asyncio
    async def test_retry_after_fix_resumes(self, make_runner, fake_db, calls):
        async def broken(conn):
            raise RuntimeError("boom")

        with pytest.raises(MigrationFailure):
            await make_runner(
                [create_table_migration(100, "A", "a", calls), MigrationDescriptor(200, "B", broken)]
            ).migrate_to_latest()

        result = await make_runner(
            [
                create_table_migration(100, "A", "a", calls),
                create_table_migration(200, "B", "b", calls),
            ]
        ).migrate_to_latest()

        assert [m.identifier for m in result.applied] == [200]
        assert fake_db.identifiers == [100, 200]

    @pytest.mark.asyncio
    async def test_insert_failure_rolls_back_migration(self, make_runner, fake_db, fake_store):
        runner = make_runner([create_table_migration(100, "A", "a")])
        await fake_store.ensure_table_exists()
        fake_store.insert = AsyncMock(side_effect=QueryError("duplicate key value"))

        with pytest.raises(MigrationFailure) as exc_info:
            await runner.migrate_to_latest()

        assert isinstance(exc_info.value.__cause__, QueryError)
        assert "a" not in fake_db.tables

    @pytest.mark.asyncio
    async def test_cancellation_is_not_wrapped(self, make_runner, fake_db, calls):
        async def cancelled(conn):
            await conn.execute("CREATE TABLE b (id BIGINT)")
            raise asyncio.CancelledError()

        runner = make_runner(
            [create_table_migration(100, "A", "a", calls), MigrationDescriptor(200, "B", cancelled)]
        )

        with pytest.raises(asyncio.CancelledError):
            await runner.migrate_to_latest()

        assert fake_db.identifiers == [100]
        assert "b" not in fake_db.tables


class TestRunOne:
    """Tests for running a single migration."""

    @pytest.mark.asyncio
    async def test_run_descriptor(self, make_runner, fake_db, fake_store):
        await fake_store.ensure_table_exists()
        runner = make_runner()

        await runner.run_one(create_table_migration(100, "A", "a"))

        assert fake_db.identifiers == [100]
        assert fake_db.rows[0].name == "A"

    @pytest.mark.asyncio
    async def test_run_class_based_migration(self, make_runner, fake_db, fake_store):
        class _202505181200_AddUsers(BaseMigration):
            async def up(self, conn):
                await conn.execute("CREATE TABLE users (id BIGINT)")

        await fake_store.ensure_table_exists()

        await make_runner().run_one(_202505181200_AddUsers())

        assert fake_db.identifiers == [202505181200]
        assert "users" in fake_db.tables


class TestInspection:
    """Tests for the read-only runner operations."""

    @pytest.mark.asyncio
    async def test_is_database_empty_sequence(self, make_runner, fake_store):
        runner = make_runner()

        assert await runner.is_database_empty() is True
        await fake_store.ensure_table_exists()
        assert await runner.is_database_empty() is True
        await fake_store.insert(100, "A", None)
        assert await runner.is_database_empty() is False

    @pytest.mark.asyncio
    async def test_retrieve_already_executed(self, make_runner, abc_migrations):
        runner = make_runner(abc_migrations)
        await runner.migrate_to(200)

        records = await runner.retrieve_already_executed()

        assert [(r.identifier, r.name) for r in records] == [(100, "A"), (200, "B")]

    @pytest.mark.asyncio
    async def test_pending_without_tracking_table(self, make_runner, fake_db, abc_migrations):
        runner = make_runner(abc_migrations)

        pending = await runner.get_pending_migrations()

        assert [m.identifier for m in pending] == [100, 200, 300]
        assert fake_db.tracking_table_exists is False

    @pytest.mark.asyncio
    async def test_pending_with_target(self, make_runner, abc_migrations):
        runner = make_runner(abc_migrations)
        await runner.migrate_to(100)

        pending = await runner.get_pending_migrations(target=200)

        assert [m.identifier for m in pending] == [200]

    @pytest.mark.asyncio
    async def test_status(self, make_runner, fake_store, abc_migrations):
        await fake_store.ensure_table_exists()
        await fake_store.insert(50, "Removed", None)
        runner = make_runner(abc_migrations)
        await runner.migrate_to(100)

        entries = await runner.get_status()

        assert [(e.identifier, e.status) for e in entries] == [
            (50, MigrationStatus.APPLIED),
            (100, MigrationStatus.APPLIED),
            (200, MigrationStatus.PENDING),
            (300, MigrationStatus.PENDING),
        ]
        assert entries[0].name == "Removed"
        assert entries[1].executed_at is not None
        assert entries[2].executed_at is None

    @pytest.mark.asyncio
    async def test_status_without_tracking_table(self, make_runner, abc_migrations):
        entries = await make_runner(abc_migrations).get_status()

        assert all(e.status == MigrationStatus.PENDING for e in entries)
