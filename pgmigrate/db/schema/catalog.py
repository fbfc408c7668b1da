"""Read-only queries against the PostgreSQL system catalogs.

Each query returns one typed collection. System schemas and temporary schemas
are excluded from every result. The migration tracking table is excluded along
with its indexes, constraints, triggers and owned sequences. Its schema is left
out of the schema list only when it holds nothing else.
"""

import logging
from collections.abc import Iterable
from typing import Optional

from ..connection import Connection
from ..migrations.tracking import MigrationTableConfiguration
from .models import (
    ColumnInfo,
    CompositeTypeAttributeInfo,
    CompositeTypeInfo,
    ConstraintInfo,
    DomainTypeInfo,
    EnumTypeInfo,
    ExtensionInfo,
    FunctionInfo,
    IndexInfo,
    SequenceInfo,
    TableInfo,
    TriggerInfo,
    ViewInfo,
)

logger = logging.getLogger(__name__)

SYSTEM_SCHEMAS = ("pg_catalog", "information_schema", "pg_toast")

# Queries run with parameters, so literal '%' is written '%%'.
SCHEMA_FILTER = r"""
    n.nspname <> ALL(%(excluded_schemas)s)
    AND n.nspname NOT LIKE 'pg\_temp\_%%'
    AND n.nspname NOT LIKE 'pg\_toast\_temp\_%%'
"""


def _not_tracking_relation(alias: str) -> str:
    return f"NOT (n.nspname = %(tracking_schema)s AND {alias}.relname = %(tracking_table)s)"


EXTENSIONS_SQL = """
SELECT
    e.extname    AS name,
    n.nspname    AS schema,
    e.extversion AS version
FROM pg_extension e
JOIN pg_namespace n ON e.extnamespace = n.oid
WHERE e.extname <> 'plpgsql'
ORDER BY e.extname
"""

USER_SCHEMAS_SQL = f"""
SELECT n.nspname AS name
FROM pg_namespace n
WHERE {SCHEMA_FILTER}
  AND n.nspname <> 'public'
  AND NOT (
      n.nspname = %(tracking_schema)s
      AND NOT EXISTS (
          SELECT 1 FROM pg_class c
          WHERE c.relnamespace = n.oid
            AND c.relkind IN ('r', 'p', 'v', 'm', 'S', 'f', 'c')
            AND c.relname <> %(tracking_table)s
      )
      AND NOT EXISTS (SELECT 1 FROM pg_proc p WHERE p.pronamespace = n.oid)
      AND NOT EXISTS (
          SELECT 1 FROM pg_type t
          WHERE t.typnamespace = n.oid AND t.typtype IN ('e', 'd')
      )
  )
ORDER BY n.nspname
"""

ENUM_TYPES_SQL = f"""
SELECT
    n.nspname       AS schema,
    t.typname       AS name,
    e.enumlabel     AS label
FROM pg_type t
JOIN pg_namespace n ON t.typnamespace = n.oid
JOIN pg_enum e ON e.enumtypid = t.oid
WHERE t.typtype = 'e'
  AND {SCHEMA_FILTER}
ORDER BY n.nspname, t.typname, e.enumsortorder
"""

COMPOSITE_TYPES_SQL = f"""
SELECT
    n.nspname                                       AS schema,
    t.typname                                       AS type_name,
    a.attname                                       AS attribute_name,
    pg_catalog.format_type(a.atttypid, a.atttypmod) AS data_type
FROM pg_type t
JOIN pg_namespace n ON t.typnamespace = n.oid
JOIN pg_class c ON c.oid = t.typrelid
JOIN pg_attribute a ON a.attrelid = c.oid AND a.attnum > 0 AND NOT a.attisdropped
WHERE t.typtype = 'c'
  AND c.relkind = 'c'
  AND {SCHEMA_FILTER}
ORDER BY n.nspname, t.typname, a.attnum
"""

DOMAIN_TYPES_SQL = f"""
SELECT
    n.nspname                                          AS schema,
    t.typname                                          AS name,
    pg_catalog.format_type(t.typbasetype, t.typtypmod) AS base_type,
    t.typdefault                                       AS default_value,
    t.typnotnull                                       AS is_not_null
FROM pg_type t
JOIN pg_namespace n ON t.typnamespace = n.oid
WHERE t.typtype = 'd'
  AND {SCHEMA_FILTER}
ORDER BY n.nspname, t.typname
"""

DOMAIN_CHECKS_SQL = f"""
SELECT
    n.nspname                              AS schema,
    t.typname                              AS name,
    pg_catalog.pg_get_constraintdef(c.oid) AS definition
FROM pg_constraint c
JOIN pg_type t ON t.oid = c.contypid
JOIN pg_namespace n ON t.typnamespace = n.oid
WHERE t.typtype = 'd'
  AND {SCHEMA_FILTER}
ORDER BY n.nspname, t.typname, c.conname
"""

SEQUENCES_SQL = f"""
SELECT
    n.nspname                                AS schema,
    c.relname                                AS name,
    pg_catalog.format_type(s.seqtypid, NULL) AS data_type,
    s.seqstart                               AS start_value,
    s.seqincrement                           AS increment_by,
    s.seqmin                                 AS min_value,
    s.seqmax                                 AS max_value,
    s.seqcache                               AS cache_size,
    s.seqcycle                               AS is_cyclic,
    dep_c.relname                            AS owned_by_table,
    dep_a.attname                            AS owned_by_column
FROM pg_sequence s
JOIN pg_class c ON c.oid = s.seqrelid
JOIN pg_namespace n ON n.oid = c.relnamespace
LEFT JOIN pg_depend d ON d.objid = c.oid AND d.deptype = 'a' AND d.classid = 'pg_class'::regclass
LEFT JOIN pg_class dep_c ON dep_c.oid = d.refobjid AND dep_c.relkind IN ('r', 'p')
LEFT JOIN pg_attribute dep_a
    ON dep_a.attrelid = d.refobjid AND dep_a.attnum = d.refobjsubid AND NOT dep_a.attisdropped
WHERE {SCHEMA_FILTER}
  AND NOT (n.nspname = %(tracking_schema)s AND dep_c.relname IS NOT DISTINCT FROM %(tracking_table)s)
  AND NOT EXISTS (
      SELECT 1 FROM pg_depend di
      WHERE di.objid = c.oid AND di.deptype = 'i' AND di.classid = 'pg_class'::regclass
  )
ORDER BY n.nspname, c.relname
"""

TABLES_SQL = f"""
SELECT
    n.nspname                                       AS schema,
    c.relname                                       AS table_name,
    a.attname                                       AS column_name,
    pg_catalog.format_type(a.atttypid, a.atttypmod) AS data_type,
    NOT a.attnotnull                                AS is_nullable,
    CASE WHEN a.attidentity = '' THEN pg_get_expr(d.adbin, d.adrelid) ELSE NULL END
                                                    AS default_value,
    a.attidentity <> ''                             AS is_identity,
    CASE a.attidentity WHEN 'a' THEN 'ALWAYS' WHEN 'd' THEN 'BY DEFAULT' ELSE NULL END
                                                    AS identity_generation
FROM pg_class c
JOIN pg_namespace n ON n.oid = c.relnamespace
JOIN pg_attribute a ON a.attrelid = c.oid AND a.attnum > 0 AND NOT a.attisdropped
LEFT JOIN pg_attrdef d ON d.adrelid = c.oid AND d.adnum = a.attnum
WHERE c.relkind IN ('r', 'p')
  AND {SCHEMA_FILTER}
  AND {_not_tracking_relation('c')}
ORDER BY n.nspname, c.relname, a.attnum
"""

CONSTRAINTS_SQL = f"""
SELECT
    n.nspname                                      AS schema,
    c.relname                                      AS table_name,
    con.conname                                    AS constraint_name,
    con.contype::text                              AS constraint_type,
    pg_catalog.pg_get_constraintdef(con.oid, true) AS definition
FROM pg_constraint con
JOIN pg_class c ON c.oid = con.conrelid
JOIN pg_namespace n ON n.oid = c.relnamespace
WHERE c.relkind IN ('r', 'p')
  AND {SCHEMA_FILTER}
  AND {_not_tracking_relation('c')}
ORDER BY
    CASE con.contype WHEN 'p' THEN 0 WHEN 'u' THEN 1 WHEN 'c' THEN 2 WHEN 'f' THEN 3 WHEN 'x' THEN 4 ELSE 5 END,
    n.nspname, c.relname, con.conname
"""

INDEXES_SQL = f"""
SELECT
    n.nspname                                 AS schema,
    t.relname                                 AS table_name,
    i.relname                                 AS index_name,
    pg_catalog.pg_get_indexdef(ix.indexrelid) AS definition
FROM pg_index ix
JOIN pg_class i ON i.oid = ix.indexrelid
JOIN pg_class t ON t.oid = ix.indrelid
JOIN pg_namespace n ON n.oid = t.relnamespace
WHERE t.relkind IN ('r', 'p')
  AND NOT ix.indisprimary
  AND {SCHEMA_FILTER}
  AND {_not_tracking_relation('t')}
  AND NOT EXISTS (
      SELECT 1 FROM pg_constraint con
      WHERE con.conindid = ix.indexrelid
        AND con.conrelid = ix.indrelid
  )
ORDER BY n.nspname, t.relname, i.relname
"""

FUNCTIONS_SQL = f"""
SELECT
    n.nspname                                            AS schema,
    p.proname                                            AS name,
    pg_catalog.pg_get_function_identity_arguments(p.oid) AS identity_arguments,
    pg_catalog.pg_get_functiondef(p.oid)                 AS definition
FROM pg_proc p
JOIN pg_namespace n ON n.oid = p.pronamespace
WHERE {SCHEMA_FILTER}
  AND p.prokind IN ('f', 'p')
  AND NOT EXISTS (
      SELECT 1 FROM pg_depend d
      WHERE d.objid = p.oid AND d.deptype = 'e'
  )
ORDER BY n.nspname, p.proname, identity_arguments
"""

TRIGGERS_SQL = f"""
SELECT
    n.nspname                          AS schema,
    c.relname                          AS table_name,
    t.tgname                           AS trigger_name,
    pg_catalog.pg_get_triggerdef(t.oid) AS definition
FROM pg_trigger t
JOIN pg_class c ON c.oid = t.tgrelid
JOIN pg_namespace n ON n.oid = c.relnamespace
WHERE NOT t.tgisinternal
  AND {SCHEMA_FILTER}
  AND {_not_tracking_relation('c')}
ORDER BY n.nspname, c.relname, t.tgname
"""

VIEWS_SQL = f"""
SELECT
    n.nspname                              AS schema,
    c.relname                              AS name,
    pg_catalog.pg_get_viewdef(c.oid, true) AS definition
FROM pg_class c
JOIN pg_namespace n ON n.oid = c.relnamespace
WHERE c.relkind = 'v'
  AND {SCHEMA_FILTER}
ORDER BY n.nspname, c.relname
"""


class CatalogQueries:
    """Typed access to the catalog queries used for schema extraction.

    Results are never cached; each call reflects the catalog at that moment.
    """

    def __init__(
        self,
        conn: Connection,
        table_config: Optional[MigrationTableConfiguration] = None,
        excluded_schemas: Iterable[str] = (),
    ):
        """Initialize queries.

        Args:
            conn: Open database connection
            table_config: Tracking table location; the table is excluded
            excluded_schemas: Additional schemas to exclude
        """
        self.conn = conn
        self.table_config = table_config or MigrationTableConfiguration()
        self.excluded_schemas = list(dict.fromkeys([*SYSTEM_SCHEMAS, *excluded_schemas]))

    @property
    def params(self) -> dict:
        return {
            "excluded_schemas": self.excluded_schemas,
            "tracking_schema": self.table_config.schema,
            "tracking_table": self.table_config.table,
        }

    async def _query(self, query: str) -> list[dict]:
        return await self.conn.query(query, self.params)

    async def get_extensions(self) -> list[ExtensionInfo]:
        """Installed extensions other than plpgsql."""
        rows = await self.conn.query(EXTENSIONS_SQL)
        return [ExtensionInfo(**row) for row in rows]

    async def get_user_schemas(self) -> list[str]:
        """User schemas, excluding public."""
        rows = await self._query(USER_SCHEMAS_SQL)
        return [row["name"] for row in rows]

    async def get_enum_types(self) -> list[EnumTypeInfo]:
        rows = await self._query(ENUM_TYPES_SQL)
        grouped: dict[tuple[str, str], list[str]] = {}
        for row in rows:
            grouped.setdefault((row["schema"], row["name"]), []).append(row["label"])
        return [
            EnumTypeInfo(schema=schema, name=name, labels=labels)
            for (schema, name), labels in grouped.items()
        ]

    async def get_composite_types(self) -> list[CompositeTypeInfo]:
        """Standalone composite types (table row types are not included)."""
        rows = await self._query(COMPOSITE_TYPES_SQL)
        grouped: dict[tuple[str, str], list[CompositeTypeAttributeInfo]] = {}
        for row in rows:
            grouped.setdefault((row["schema"], row["type_name"]), []).append(
                CompositeTypeAttributeInfo(name=row["attribute_name"], data_type=row["data_type"])
            )
        return [
            CompositeTypeInfo(schema=schema, name=name, attributes=attributes)
            for (schema, name), attributes in grouped.items()
        ]

    async def get_domain_types(self) -> list[DomainTypeInfo]:
        """Domain types with their check constraints."""
        rows = await self._query(DOMAIN_TYPES_SQL)
        check_rows = await self._query(DOMAIN_CHECKS_SQL)

        checks: dict[tuple[str, str], list[str]] = {}
        for row in check_rows:
            checks.setdefault((row["schema"], row["name"]), []).append(row["definition"])

        return [
            DomainTypeInfo(
                schema=row["schema"],
                name=row["name"],
                base_type=row["base_type"],
                default_value=row["default_value"],
                is_not_null=bool(row["is_not_null"]),
                check_constraints=checks.get((row["schema"], row["name"]), []),
            )
            for row in rows
        ]

    async def get_sequences(self) -> list[SequenceInfo]:
        """Sequences, excluding those backing identity columns."""
        rows = await self._query(SEQUENCES_SQL)
        return [SequenceInfo(**row) for row in rows]

    async def get_tables(self) -> list[TableInfo]:
        """Ordinary and partitioned tables with their columns in ordinal order."""
        rows = await self._query(TABLES_SQL)
        grouped: dict[tuple[str, str], list[ColumnInfo]] = {}
        for row in rows:
            grouped.setdefault((row["schema"], row["table_name"]), []).append(
                ColumnInfo(
                    name=row["column_name"],
                    data_type=row["data_type"],
                    is_nullable=bool(row["is_nullable"]),
                    default_value=row["default_value"],
                    is_identity=bool(row["is_identity"]),
                    identity_generation=row["identity_generation"],
                )
            )
        return [
            TableInfo(schema=schema, name=name, columns=columns)
            for (schema, name), columns in grouped.items()
        ]

    async def get_constraints(self) -> list[ConstraintInfo]:
        """Table constraints ordered primary key, unique, check, foreign key, exclusion."""
        rows = await self._query(CONSTRAINTS_SQL)
        return [ConstraintInfo(**row) for row in rows]

    async def get_indexes(self) -> list[IndexInfo]:
        """Indexes not backing a constraint."""
        rows = await self._query(INDEXES_SQL)
        return [IndexInfo(**row) for row in rows]

    async def get_functions(self) -> list[FunctionInfo]:
        """Functions and procedures not owned by an extension."""
        rows = await self._query(FUNCTIONS_SQL)
        return [FunctionInfo(**row) for row in rows]

    async def get_triggers(self) -> list[TriggerInfo]:
        rows = await self._query(TRIGGERS_SQL)
        return [TriggerInfo(**row) for row in rows]

    async def get_views(self) -> list[ViewInfo]:
        rows = await self._query(VIEWS_SQL)
        return [ViewInfo(**row) for row in rows]
