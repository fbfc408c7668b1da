"""Migration tracking table.

The tracking table records one row per applied migration (or per schema
snapshot version). Its location is configurable through
MigrationTableConfiguration.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import ClassVar, Optional

from ..connection import Connection
from ..sql import compose, qualified_name
from .base import ExecutedMigrationRecord

logger = logging.getLogger(__name__)

TABLE_EXISTS_SQL = """
SELECT EXISTS (
    SELECT 1
    FROM information_schema.tables
    WHERE table_schema = %(schema)s
      AND table_name = %(table)s
) AS exists
"""

SCHEMA_EXISTS_SQL = """
SELECT EXISTS (
    SELECT 1
    FROM information_schema.schemata
    WHERE schema_name = %(schema)s
) AS exists
"""

CREATE_SCHEMA_SQL = "CREATE SCHEMA IF NOT EXISTS {schema}"

CREATE_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS {table} (
    identifier  BIGINT      NOT NULL,
    name        TEXT        NOT NULL,
    executed_at TIMESTAMPTZ NOT NULL,
    PRIMARY KEY (identifier)
)
"""

INSERT_SQL = """
INSERT INTO {table} (identifier, name, executed_at)
VALUES (%(identifier)s, %(name)s, %(executed_at)s)
"""

SELECT_ALL_SQL = "SELECT identifier, name, executed_at FROM {table} ORDER BY identifier"

SELECT_LATEST_SQL = (
    "SELECT identifier, name, executed_at FROM {table} ORDER BY identifier DESC LIMIT 1"
)

COUNT_SQL = "SELECT COUNT(*) AS count FROM {table}"


@dataclass(frozen=True)
class MigrationTableConfiguration:
    """Location of the migration tracking table.

    Attributes:
        schema: Schema holding the table
        table: Table name
    """

    DEFAULT_SCHEMA: ClassVar[str] = "pgmigrate"
    DEFAULT_TABLE: ClassVar[str] = "migrations"

    schema: str = DEFAULT_SCHEMA
    table: str = DEFAULT_TABLE

    @property
    def fully_qualified_name(self) -> str:
        """Quoted ``"schema"."table"`` form."""
        return qualified_name(self.schema, self.table)


DEFAULT_TABLE_CONFIGURATION = MigrationTableConfiguration()


def _record(row: dict) -> ExecutedMigrationRecord:
    executed_at = row["executed_at"]
    if isinstance(executed_at, str):
        executed_at = datetime.fromisoformat(executed_at)
    return ExecutedMigrationRecord(
        identifier=int(row["identifier"]),
        name=row["name"],
        executed_at=executed_at,
    )


class MigrationTrackingStore:
    """Reads and writes the migration tracking table."""

    def __init__(
        self,
        conn: Connection,
        config: Optional[MigrationTableConfiguration] = None,
    ):
        self.conn = conn
        self.config = config or MigrationTableConfiguration()

    def _compose(self, template: str):
        return compose(template, table=(self.config.schema, self.config.table))

    async def table_exists(self) -> bool:
        """Whether the tracking table exists."""
        return bool(
            await self.conn.query_scalar(
                TABLE_EXISTS_SQL,
                {"schema": self.config.schema, "table": self.config.table},
            )
        )

    async def schema_exists(self) -> bool:
        """Whether the tracking table's schema exists."""
        return bool(
            await self.conn.query_scalar(SCHEMA_EXISTS_SQL, {"schema": self.config.schema})
        )

    async def ensure_table_exists(self) -> None:
        """Create the tracking schema and table if missing. Idempotent."""
        if await self.table_exists():
            return

        await self.conn.execute(compose(CREATE_SCHEMA_SQL, schema=self.config.schema))
        await self.conn.execute(self._compose(CREATE_TABLE_SQL))
        logger.info(f"Created migration table {self.config.fully_qualified_name}")

    async def insert(self, identifier: int, name: str, executed_at: datetime) -> None:
        """Record an applied migration."""
        await self.conn.execute(
            self._compose(INSERT_SQL),
            {"identifier": identifier, "name": name, "executed_at": executed_at},
        )

    async def select_all(self) -> list[ExecutedMigrationRecord]:
        """All recorded migrations, ascending by identifier."""
        rows = await self.conn.query(self._compose(SELECT_ALL_SQL))
        return [_record(row) for row in rows]

    async def count(self) -> int:
        """Number of recorded migrations."""
        return int(await self.conn.query_scalar(self._compose(COUNT_SQL)) or 0)

    async def current_version(self) -> Optional[ExecutedMigrationRecord]:
        """Highest recorded migration, or None if the table is missing or empty."""
        if not await self.schema_exists() or not await self.table_exists():
            return None

        row = await self.conn.query_one(self._compose(SELECT_LATEST_SQL))
        return _record(row) if row else None
