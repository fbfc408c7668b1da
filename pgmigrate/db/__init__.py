"""PostgreSQL integration.

Provides:
- Connection management over psycopg with transaction scoping
- Versioned migrations with a schema-first bootstrap
- Schema extraction into idempotent snapshot scripts

Usage:
    from pgmigrate.db import get_connection
    from pgmigrate.db.migrations import MigrationRunner, discover_migrations

    async with get_connection() as conn:
        runner = MigrationRunner(conn, retriever=discover_migrations("myapp.migrations"))
        await runner.migrate_to_latest()

Environment Variables:
    PGMIGRATE_DATABASE_URL: libpq connection string or postgresql:// URL
    PGMIGRATE_CONNECT_TIMEOUT: Connection timeout in seconds
    PGMIGRATE_QUERY_TIMEOUT: Per-statement timeout in seconds (unset disables it)
    PGMIGRATE_APPLICATION_NAME: application_name reported to the server
    PGMIGRATE_ENVIRONMENT: Environment used to pick schema.<environment>.sql
    PGMIGRATE_MIGRATION_SCHEMA: Schema of the migration tracking table
    PGMIGRATE_MIGRATION_TABLE: Name of the migration tracking table
"""

from .config import (
    PostgresConfig,
    get_config,
    set_config,
)

from .connection import (
    Connection,
    ConnectionError,
    DatabaseError,
    QueryError,
    get_connection,
)

from .migrations import (
    BaseMigration,
    MigrationDescriptor,
    MigrationError,
    MigrationFailure,
    MigrationRegistry,
    MigrationRunner,
    MigrationTableConfiguration,
    SnapshotApplicationFailure,
    discover_migrations,
)

from .schema import (
    SchemaScriptGenerator,
    SchemaVersion,
    parse_migration_version,
)

__all__ = [
    # Config
    "PostgresConfig",
    "get_config",
    "set_config",
    # Connection
    "Connection",
    "ConnectionError",
    "DatabaseError",
    "QueryError",
    "get_connection",
    # Migrations
    "BaseMigration",
    "MigrationDescriptor",
    "MigrationError",
    "MigrationFailure",
    "MigrationRegistry",
    "MigrationRunner",
    "MigrationTableConfiguration",
    "SnapshotApplicationFailure",
    "discover_migrations",
    # Schema
    "SchemaScriptGenerator",
    "SchemaVersion",
    "parse_migration_version",
]
