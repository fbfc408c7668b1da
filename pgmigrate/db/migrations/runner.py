"""Migration runner for bringing a database up to date.

Provides:
- Schema-first bootstrap of empty databases from a bundled snapshot
- Apply pending migrations in ascending identifier order
- Migration status reporting
- Dry-run support (pending migrations without applying them)
"""

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, Union

from ..connection import Connection
from ..schema.header import SchemaVersion, parse_migration_version
from .base import (
    BaseMigration,
    ExecutedMigrationRecord,
    MigrationDescriptor,
    MigrationError,
    MigrationFailure,
    MigrationStatus,
    SnapshotApplicationFailure,
)
from .discovery import ResourceContainer, SchemaResource, find_schema_resource
from .registry import MigrationRegistry, MigrationRetriever
from .tracking import MigrationTableConfiguration, MigrationTrackingStore

logger = logging.getLogger(__name__)


@dataclass
class MigrationResult:
    """Result of a migration run."""

    applied: list[MigrationDescriptor] = field(default_factory=list)
    snapshot: Optional[str] = None
    snapshot_version: Optional[SchemaVersion] = None

    @property
    def snapshot_applied(self) -> bool:
        return self.snapshot is not None


@dataclass
class MigrationStatusEntry:
    """Status of a single migration."""

    identifier: int
    name: str
    status: MigrationStatus
    executed_at: Optional[datetime] = None


@dataclass
class _Snapshot:
    resource: SchemaResource
    content: str
    version: Optional[SchemaVersion]


class MigrationRunner:
    """Runner for executing migrations against one connection.

    The runner owns no connection of its own: the caller passes one in and
    keeps it for the duration of each call. Runs are sequential; two runners
    against the same database are only kept apart by the tracking table's
    primary key.
    """

    def __init__(
        self,
        conn: Connection,
        retriever: Optional[MigrationRetriever] = None,
        table_config: Optional[MigrationTableConfiguration] = None,
        environment: Optional[str] = None,
        schema_sources: Sequence[ResourceContainer] = (),
        store: Optional[MigrationTrackingStore] = None,
    ):
        """Initialize the runner.

        Args:
            conn: Open database connection
            retriever: Source of migrations (empty registry if not provided)
            table_config: Location of the tracking table
            environment: Environment name used to pick ``schema.<environment>.sql``
            schema_sources: Resource containers searched for a schema snapshot;
                empty disables the schema-first bootstrap
            store: Tracking store override (built from conn and table_config if not provided)
        """
        self.conn = conn
        self.retriever = retriever if retriever is not None else MigrationRegistry()
        self.table_config = table_config or MigrationTableConfiguration()
        self.environment = environment
        self.schema_sources = list(schema_sources)
        self.store = store or MigrationTrackingStore(conn, self.table_config)

    async def migrate_to_latest(self) -> MigrationResult:
        """Apply every pending migration.

        Raises:
            SnapshotApplicationFailure: If bootstrapping from the snapshot fails
            MigrationFailure: If a migration fails; earlier ones stay applied
        """
        return await self._migrate(target=None)

    async def migrate_to(self, target: int) -> MigrationResult:
        """Apply pending migrations with an identifier up to and including ``target``.

        Raises:
            SnapshotApplicationFailure: If bootstrapping from the snapshot fails
            MigrationFailure: If a migration fails; earlier ones stay applied
        """
        return await self._migrate(target=target)

    async def is_database_empty(self) -> bool:
        """True if the tracking table is missing or has no rows."""
        if not await self.store.table_exists():
            return True
        return await self.store.count() == 0

    async def retrieve_already_executed(self) -> list[ExecutedMigrationRecord]:
        """Records of every applied migration."""
        return await self.store.select_all()

    async def run_one(self, migration: Union[MigrationDescriptor, BaseMigration]) -> None:
        """Apply a single migration and record it, in one transaction.

        Raises:
            MigrationFailure: If the migration or its tracking insert fails;
                the transaction is rolled back
        """
        if isinstance(migration, BaseMigration):
            migration = migration.descriptor()

        logger.info(f"Applying migration {migration.full_name}")
        try:
            async with self.conn.transaction():
                await migration.up(self.conn)
                await self.store.insert(
                    migration.identifier, migration.name, datetime.now(timezone.utc)
                )
        except Exception as e:
            logger.error(f"Migration {migration.full_name} failed: {e}")
            raise MigrationFailure(migration, e) from e

        logger.info(f"Applied migration {migration.full_name}")

    async def get_pending_migrations(self, target: Optional[int] = None) -> list[MigrationDescriptor]:
        """Migrations that would run, in order, without applying anything.

        A snapshot bootstrap is not taken into account.
        """
        executed: set[int] = set()
        if await self.store.table_exists():
            executed = {r.identifier for r in await self.retrieve_already_executed()}
        return [m for m in self._candidates(target) if m.identifier not in executed]

    async def get_status(self) -> list[MigrationStatusEntry]:
        """Status of every known and every recorded migration, by identifier."""
        executed: dict[int, ExecutedMigrationRecord] = {}
        if await self.store.table_exists():
            executed = {r.identifier: r for r in await self.retrieve_already_executed()}

        entries: dict[int, MigrationStatusEntry] = {}
        for migration in self._candidates(None):
            record = executed.get(migration.identifier)
            entries[migration.identifier] = MigrationStatusEntry(
                identifier=migration.identifier,
                name=migration.name,
                status=MigrationStatus.APPLIED if record else MigrationStatus.PENDING,
                executed_at=record.executed_at if record else None,
            )

        for identifier, record in executed.items():
            if identifier not in entries:
                entries[identifier] = MigrationStatusEntry(
                    identifier=identifier,
                    name=record.name,
                    status=MigrationStatus.APPLIED,
                    executed_at=record.executed_at,
                )

        return [entries[key] for key in sorted(entries)]

    def _candidates(self, target: Optional[int]) -> list[MigrationDescriptor]:
        migrations = self.retriever.retrieve_migrations()
        if target is not None:
            migrations = [m for m in migrations if m.identifier <= target]
        return sorted(migrations, key=lambda m: m.identifier)

    async def _migrate(self, target: Optional[int]) -> MigrationResult:
        result = MigrationResult()

        snapshot = await self._snapshot_to_apply(target)
        if snapshot is not None:
            await self._apply_snapshot(snapshot)
            result.snapshot = snapshot.resource.name
            result.snapshot_version = snapshot.version
        else:
            await self.store.ensure_table_exists()

        executed = {r.identifier for r in await self.retrieve_already_executed()}
        for migration in self._candidates(target):
            if migration.identifier in executed:
                continue
            await self.run_one(migration)
            result.applied.append(migration)

        if not result.applied:
            logger.info("Database is up to date")
        return result

    async def _snapshot_to_apply(self, target: Optional[int]) -> Optional[_Snapshot]:
        if not self.schema_sources:
            return None

        resource = find_schema_resource(self.schema_sources, self.environment)
        if resource is None:
            return None

        if not await self.is_database_empty():
            logger.debug(f"Database is not empty, skipping schema {resource.name}")
            return None

        content = resource.read()
        version = parse_migration_version(content)

        if target is not None and version is not None and version.identifier > target:
            logger.info(
                f"Schema {resource.name} version {version.identifier} is newer than "
                f"target {target}, running migrations instead"
            )
            return None

        return _Snapshot(resource=resource, content=content, version=version)

    async def _apply_snapshot(self, snapshot: _Snapshot) -> None:
        if not snapshot.content.strip():
            raise MigrationError(f"Schema resource {snapshot.resource.name} is empty")

        logger.info(f"Empty database detected, applying schema {snapshot.resource.name}")
        try:
            async with self.conn.transaction():
                await self.conn.execute(snapshot.content)
                await self.store.ensure_table_exists()
                if snapshot.version is not None:
                    await self.store.insert(
                        snapshot.version.identifier,
                        snapshot.version.name,
                        datetime.now(timezone.utc),
                    )
        except Exception as e:
            logger.error(f"Applying schema {snapshot.resource.name} failed: {e}")
            raise SnapshotApplicationFailure(snapshot.resource.name, e) from e

        if snapshot.version is not None:
            logger.info(
                f"Applied schema {snapshot.resource.name} at version "
                f"{snapshot.version.identifier} ({snapshot.version.name})"
            )
        else:
            logger.info(f"Applied schema {snapshot.resource.name} (no migration version)")
