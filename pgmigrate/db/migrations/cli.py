"""CLI for database migrations.

Usage:
    pgmigrate init
    pgmigrate migrate
    pgmigrate migrate --target 202505181200 --environment prod
    pgmigrate migrate --dry-run
    pgmigrate status
    pgmigrate pull --environment local
    pgmigrate create add_users_table
"""

import argparse
import asyncio
import dataclasses
import logging
import sys
from pathlib import Path
from textwrap import dedent
from typing import Optional

from rich.console import Console
from rich.table import Table

from ..config import PostgresConfig, get_config
from ..connection import DatabaseError, get_connection
from ..schema.generator import SchemaScriptGenerator
from .base import MigrationError, MigrationStatus
from .discovery import DirectoryResources
from .naming import generate_file_name, generate_identifier, normalize_name
from .registry import MigrationRegistry, PackageMigrationRetriever
from .runner import MigrationRunner
from .tool_config import CONFIG_FILE_NAME, ToolConfiguration

logger = logging.getLogger(__name__)

console = Console()


def setup_logging(verbose: bool = False) -> None:
    """Configure logging for CLI."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def _postgres_config(
    tool_config: ToolConfiguration, args: argparse.Namespace
) -> Optional[PostgresConfig]:
    """Connection settings from the command line, the config file and the environment.

    Returns None when an explicitly requested environment is not configured.
    """
    config = get_config()
    dsn = tool_config.resolve_connection_string(
        getattr(args, "connection_string", None),
        getattr(args, "environment", None),
    )
    if dsn is None and getattr(args, "environment", None):
        return None
    if dsn:
        config = dataclasses.replace(config, dsn=dsn)
    if tool_config.migration_table is not None:
        config = dataclasses.replace(
            config,
            migration_schema=tool_config.migration_table.schema,
            migration_table=tool_config.migration_table.table,
        )
    return config


def _environment_name(tool_config: ToolConfiguration, args: argparse.Namespace) -> Optional[str]:
    return tool_config.resolve_environment_name(
        getattr(args, "connection_string", None),
        getattr(args, "environment", None),
    ) or get_config().environment


def _unknown_environment(tool_config: ToolConfiguration, environment: str) -> int:
    print(f"Error: Environment '{environment}' not found in {CONFIG_FILE_NAME}")
    available = tool_config.available_environments()
    if available:
        print(f"Available environments: {', '.join(available)}")
    return 1


def _retriever(tool_config: ToolConfiguration):
    if not tool_config.migrations_package:
        logger.warning(f"migrationsPackage is not set in {CONFIG_FILE_NAME}; no migrations to run")
        return MigrationRegistry()

    base_path = str(tool_config.base_path)
    if base_path not in sys.path:
        sys.path.insert(0, base_path)
    return PackageMigrationRetriever(tool_config.migrations_package)


def cmd_init(args: argparse.Namespace) -> int:
    """Write a default configuration file."""
    directory = Path.cwd()
    path = directory / CONFIG_FILE_NAME

    if path.exists():
        print(f"Error: Configuration file already exists: {path}")
        return 1

    config = ToolConfiguration(base_path=directory)
    config.save(directory)

    print(f"Created configuration file: {path}")
    print()
    print("Default settings:")
    print(f"  migrationsDirectory: {config.migrations_directory}")
    print(f"  schemasDirectory:    {config.schemas_directory}")
    print("  connectionStrings:   (not set)")
    print()
    print("Edit the file to configure your project settings.")
    return 0


async def cmd_migrate(args: argparse.Namespace) -> int:
    """Apply pending migrations."""
    tool_config = ToolConfiguration.load()
    pg_config = _postgres_config(tool_config, args)
    if pg_config is None:
        return _unknown_environment(tool_config, args.environment)

    async with get_connection(pg_config) as conn:
        runner = MigrationRunner(
            conn,
            retriever=_retriever(tool_config),
            table_config=pg_config.table_configuration(),
            environment=_environment_name(tool_config, args),
            schema_sources=[DirectoryResources(tool_config.schemas_directory_path())],
        )

        if args.dry_run:
            pending = await runner.get_pending_migrations(args.target)
            if not pending:
                print("No pending migrations")
                return 0
            print(f"[DRY-RUN] Would apply {len(pending)} migration(s):")
            for m in pending:
                print(f"  + {m.full_name}")
            return 0

        if args.target is None:
            result = await runner.migrate_to_latest()
        else:
            result = await runner.migrate_to(args.target)

    if result.snapshot_applied:
        version = result.snapshot_version
        suffix = f" at version {version.identifier} ({version.name})" if version else ""
        print(f"Applied schema {result.snapshot}{suffix}")

    if result.applied:
        print(f"Applied {len(result.applied)} migration(s):")
        for m in result.applied:
            print(f"  + {m.full_name}")
    elif not result.snapshot_applied:
        print("No pending migrations")

    return 0


async def cmd_status(args: argparse.Namespace) -> int:
    """Show migration status."""
    tool_config = ToolConfiguration.load()
    pg_config = _postgres_config(tool_config, args)
    if pg_config is None:
        return _unknown_environment(tool_config, args.environment)

    async with get_connection(pg_config) as conn:
        runner = MigrationRunner(
            conn,
            retriever=_retriever(tool_config),
            table_config=pg_config.table_configuration(),
        )
        entries = await runner.get_status()

    if not entries:
        print("No migrations found")
        return 0

    table = Table(title="Migrations")
    table.add_column("", width=3)
    table.add_column("Identifier")
    table.add_column("Name")
    table.add_column("Executed at (UTC)", style="dim")

    for entry in entries:
        applied = entry.status == MigrationStatus.APPLIED
        table.add_row(
            "[green]x[/green]" if applied else " ",
            str(entry.identifier),
            entry.name,
            entry.executed_at.strftime("%Y-%m-%d %H:%M") if entry.executed_at else "",
        )

    console.print(table)

    applied_count = sum(1 for e in entries if e.status == MigrationStatus.APPLIED)
    pending_count = sum(1 for e in entries if e.status == MigrationStatus.PENDING)
    print(f"Total: {len(entries)} | Applied: {applied_count} | Pending: {pending_count}")
    return 0


async def cmd_pull(args: argparse.Namespace) -> int:
    """Write the current database schema to a snapshot file."""
    tool_config = ToolConfiguration.load()
    pg_config = _postgres_config(tool_config, args)
    if pg_config is None:
        return _unknown_environment(tool_config, args.environment)

    environment = tool_config.resolve_environment_name(args.connection_string, args.environment)
    file_name = f"schema.{environment.lower()}.sql" if environment else "schema.sql"
    schemas_dir = tool_config.schemas_directory_path()
    schemas_dir.mkdir(parents=True, exist_ok=True)
    output_path = schemas_dir / file_name

    print("Extracting schema...")
    async with get_connection(pg_config) as conn:
        generator = SchemaScriptGenerator(conn, pg_config.table_configuration())
        script = await generator.generate_script()

    output_path.write_text(script, encoding="utf-8")
    print(f"Schema written to {output_path}")
    return 0


MIGRATION_TEMPLATE = '''\
"""Migration {identifier}: {title}."""

from pgmigrate.db.connection import Connection
from pgmigrate.db.migrations import BaseMigration


class _{identifier}_{class_name}(BaseMigration):

    async def up(self, conn: Connection) -> None:
        # Example:
        # await conn.execute("CREATE TABLE example (id BIGINT PRIMARY KEY)")
        pass
'''


def cmd_create(args: argparse.Namespace) -> int:
    """Create a new migration file."""
    name = normalize_name(args.name)
    if not name:
        print(f"Error: Invalid migration name: {args.name!r}")
        return 1

    tool_config = ToolConfiguration.load()
    identifier = generate_identifier()
    migrations_dir = tool_config.migrations_directory_path()
    migrations_dir.mkdir(parents=True, exist_ok=True)

    filepath = migrations_dir / generate_file_name(identifier, name)
    if filepath.exists():
        print(f"Error: Migration file already exists: {filepath}")
        return 1

    class_name = "".join(word[:1].upper() + word[1:] for word in name.split("_"))
    filepath.write_text(
        MIGRATION_TEMPLATE.format(
            identifier=identifier,
            title=name.replace("_", " "),
            class_name=class_name,
        ),
        encoding="utf-8",
    )

    print(f"Created migration: {filepath}")
    print(f"  Identifier: {identifier}")
    print(f"  Name: {class_name}")
    return 0


def _add_connection_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--environment", "-e",
        help=f"Environment whose connection string to use (from {CONFIG_FILE_NAME})",
    )
    parser.add_argument(
        "--connection-string",
        help="Connection string overriding the configuration file",
    )


def create_parser() -> argparse.ArgumentParser:
    """Create argument parser."""
    parser = argparse.ArgumentParser(
        prog="pgmigrate",
        description="PostgreSQL migration management",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=dedent("""
            Examples:
              # Create a configuration file
              pgmigrate init

              # Apply all pending migrations
              pgmigrate migrate

              # Apply migrations up to and including a target
              pgmigrate migrate --target 202505181200

              # Preview pending migrations
              pgmigrate migrate --dry-run

              # Write schemas/schema.local.sql from the local database
              pgmigrate pull --environment local

              # Create new migration
              pgmigrate create add_user_preferences
        """),
    )

    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose output",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser(
        "init",
        help=f"Create a {CONFIG_FILE_NAME} file in the current directory",
    )

    migrate_parser = subparsers.add_parser(
        "migrate",
        help="Apply pending migrations",
    )
    migrate_parser.add_argument(
        "--target",
        type=int,
        help="Identifier of the last migration to apply",
    )
    migrate_parser.add_argument(
        "--dry-run",
        action="store_true",
        help="List pending migrations without applying them",
    )
    _add_connection_arguments(migrate_parser)

    status_parser = subparsers.add_parser(
        "status",
        help="Show migration status",
    )
    _add_connection_arguments(status_parser)

    pull_parser = subparsers.add_parser(
        "pull",
        help="Write the database schema to schema.sql or schema.<environment>.sql",
    )
    _add_connection_arguments(pull_parser)

    create_parser_cmd = subparsers.add_parser(
        "create",
        help="Create a new migration file",
    )
    create_parser_cmd.add_argument(
        "name",
        help="Migration name (e.g., add_user_preferences)",
    )

    return parser


async def async_main(args: argparse.Namespace) -> int:
    """Async main entry point."""
    try:
        if args.command == "init":
            return cmd_init(args)
        elif args.command == "migrate":
            return await cmd_migrate(args)
        elif args.command == "status":
            return await cmd_status(args)
        elif args.command == "pull":
            return await cmd_pull(args)
        elif args.command == "create":
            return cmd_create(args)
        else:
            print(f"Unknown command: {args.command}")
            return 1
    except (MigrationError, DatabaseError) as e:
        print(f"Error: {e}")
        return 1


def main(argv: Optional[list[str]] = None) -> None:
    """Main entry point."""
    parser = create_parser()
    args = parser.parse_args(argv)

    setup_logging(args.verbose)

    exit_code = asyncio.run(async_main(args))
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
