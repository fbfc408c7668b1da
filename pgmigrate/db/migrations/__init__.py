"""Database migration system for PostgreSQL.

Provides a migration framework with:
- Migrations identified by 12-digit YYYYMMDDHHmm identifiers
- Static registration or discovery from a Python package
- One transaction per migration, recorded in a tracking table
- Schema-first bootstrap of empty databases from a schema.sql snapshot
- CLI operations for migrate/status/pull/create

Usage:
    from pgmigrate.db import get_connection
    from pgmigrate.db.migrations import (
        MigrationRunner,
        PackageResources,
        discover_migrations,
    )

    async with get_connection() as conn:
        runner = MigrationRunner(
            conn,
            retriever=discover_migrations("myapp.migrations"),
            schema_sources=[PackageResources("myapp.schemas")],
        )
        await runner.migrate_to_latest()

CLI Usage:
    python -m pgmigrate.db.migrations migrate
    python -m pgmigrate.db.migrations migrate --target 202505181200
    python -m pgmigrate.db.migrations status
    python -m pgmigrate.db.migrations create add_new_feature
"""

from .base import (
    BaseMigration,
    DuplicateMigrationError,
    ExecutedMigrationRecord,
    MigrationDescriptor,
    MigrationError,
    MigrationFailure,
    MigrationStatus,
    SnapshotApplicationFailure,
)

from .naming import (
    MigrationNameError,
    generate_identifier,
    is_valid_name,
    parse_identifier,
    parse_name,
)

from .registry import (
    MigrationRegistry,
    MigrationRetriever,
    PackageMigrationRetriever,
    discover_migrations,
)

from .tracking import (
    MigrationTableConfiguration,
    MigrationTrackingStore,
)

from .discovery import (
    DirectoryResources,
    PackageResources,
    ResourceContainer,
    find_schema_resource,
    get_schema_resource_name,
    read_schema_content,
    schema_resource_exists,
)

from .runner import (
    MigrationResult,
    MigrationRunner,
    MigrationStatusEntry,
)

__all__ = [
    # Base classes
    "BaseMigration",
    "DuplicateMigrationError",
    "ExecutedMigrationRecord",
    "MigrationDescriptor",
    "MigrationError",
    "MigrationFailure",
    "MigrationStatus",
    "SnapshotApplicationFailure",
    # Naming
    "MigrationNameError",
    "generate_identifier",
    "is_valid_name",
    "parse_identifier",
    "parse_name",
    # Registry
    "MigrationRegistry",
    "MigrationRetriever",
    "PackageMigrationRetriever",
    "discover_migrations",
    # Tracking
    "MigrationTableConfiguration",
    "MigrationTrackingStore",
    # Schema discovery
    "DirectoryResources",
    "PackageResources",
    "ResourceContainer",
    "find_schema_resource",
    "get_schema_resource_name",
    "read_schema_content",
    "schema_resource_exists",
    # Runner
    "MigrationResult",
    "MigrationRunner",
    "MigrationStatusEntry",
]
