"""Schema script generation.

Renders the catalog state of a database as one idempotent SQL script. Object
kinds are emitted in dependency order:

    extensions, schemas, enum types, composite types, domain types,
    sequences, tables, sequence ownership, constraints, indexes,
    functions and procedures, triggers, views

Every statement can be re-run against a database that already contains the
object: native IF NOT EXISTS / OR REPLACE forms are used where PostgreSQL has
them, and a DO block with an existence check where it does not.
"""

import logging
import re
from collections.abc import Callable
from datetime import datetime
from typing import Optional

from ..connection import Connection
from ..migrations.tracking import MigrationTableConfiguration, MigrationTrackingStore
from ..sql import escape_sql_string, qualified_name, quote_ident
from .catalog import CatalogQueries
from .header import SchemaVersion, render_header
from .models import (
    CatalogSnapshot,
    CompositeTypeInfo,
    ConstraintInfo,
    DomainTypeInfo,
    EnumTypeInfo,
    FunctionInfo,
    IndexInfo,
    SequenceInfo,
    TableInfo,
    TriggerInfo,
    ViewInfo,
)

logger = logging.getLogger(__name__)

BANNER = "-- " + "=" * 76

CONSTRAINT_TYPE_ORDER = {"p": 0, "u": 1, "c": 2, "f": 3, "x": 4}

_INDEX_RE = re.compile(r"^\s*CREATE\s+(UNIQUE\s+)?INDEX\s+(?!IF\s+NOT\s+EXISTS\b)", re.IGNORECASE)
_ROUTINE_RE = re.compile(r"\bCREATE\s+(FUNCTION|PROCEDURE)\b", re.IGNORECASE)
_TRIGGER_RE = re.compile(r"^\s*CREATE\s+TRIGGER\b", re.IGNORECASE)
_CONSTRAINT_TRIGGER_RE = re.compile(r"^\s*CREATE\s+CONSTRAINT\s+TRIGGER\b", re.IGNORECASE)
_OR_REPLACE_RE = re.compile(r"\bOR\s+REPLACE\b", re.IGNORECASE)


def _section(title: str, statements: list[str]) -> str:
    if not statements:
        return ""
    return "\n".join([BANNER, f"-- {title}", BANNER, "", *statements, ""]) + "\n"


def _dollar_tag(body: str) -> str:
    tag = "$pgmigrate$"
    counter = 0
    while tag in body:
        counter += 1
        tag = f"$pgmigrate{counter}$"
    return tag


def _guarded(condition: str, statement: str) -> str:
    tag = _dollar_tag(condition + statement)
    return "\n".join(
        [
            f"DO {tag} BEGIN",
            f"    IF NOT EXISTS ({condition}) THEN",
            f"        {statement}",
            "    END IF;",
            f"END {tag};",
        ]
    )


def _type_exists(schema: str, name: str) -> str:
    return (
        "SELECT 1 FROM pg_type t JOIN pg_namespace n ON t.typnamespace = n.oid "
        f"WHERE t.typname = '{escape_sql_string(name)}' "
        f"AND n.nspname = '{escape_sql_string(schema)}'"
    )


def render_extensions(snapshot: CatalogSnapshot) -> list[str]:
    return [
        f"CREATE EXTENSION IF NOT EXISTS {quote_ident(ext.name)} SCHEMA {quote_ident(ext.schema)};"
        for ext in snapshot.extensions
    ]


def render_schemas(snapshot: CatalogSnapshot) -> list[str]:
    return [f"CREATE SCHEMA IF NOT EXISTS {quote_ident(schema)};" for schema in snapshot.schemas]


def render_enum_type(enum_type: EnumTypeInfo) -> str:
    labels = ", ".join(f"'{escape_sql_string(label)}'" for label in enum_type.labels)
    return _guarded(
        _type_exists(enum_type.schema, enum_type.name),
        f"CREATE TYPE {qualified_name(enum_type.schema, enum_type.name)} AS ENUM ({labels});",
    ) + "\n"


def render_composite_type(composite: CompositeTypeInfo) -> str:
    attributes = ",\n            ".join(
        f"{quote_ident(a.name)} {a.data_type}" for a in composite.attributes
    )
    statement = (
        f"CREATE TYPE {qualified_name(composite.schema, composite.name)} AS (\n"
        f"            {attributes}\n"
        "        );"
    )
    return _guarded(_type_exists(composite.schema, composite.name), statement) + "\n"


def render_domain_type(domain: DomainTypeInfo) -> str:
    statement = f"CREATE DOMAIN {qualified_name(domain.schema, domain.name)} AS {domain.base_type}"
    if domain.default_value is not None:
        statement += f" DEFAULT {domain.default_value}"
    if domain.is_not_null:
        statement += " NOT NULL"
    for check in domain.check_constraints:
        statement += f" {check}"
    return _guarded(_type_exists(domain.schema, domain.name), statement + ";") + "\n"


def render_sequence(seq: SequenceInfo) -> str:
    return (
        f"CREATE SEQUENCE IF NOT EXISTS {qualified_name(seq.schema, seq.name)}"
        f" AS {seq.data_type}"
        f" INCREMENT BY {seq.increment_by}"
        f" MINVALUE {seq.min_value}"
        f" MAXVALUE {seq.max_value}"
        f" START WITH {seq.start_value}"
        f" CACHE {seq.cache_size}"
        + (" CYCLE" if seq.is_cyclic else " NO CYCLE")
        + ";"
    )


def render_sequence_ownership(seq: SequenceInfo) -> str:
    return (
        f"ALTER SEQUENCE {qualified_name(seq.schema, seq.name)} OWNED BY "
        f"{qualified_name(seq.schema, seq.owned_by_table, seq.owned_by_column)};"
    )


def render_table(table: TableInfo) -> str:
    lines = []
    for column in table.columns:
        line = f"    {quote_ident(column.name)} {column.data_type}"
        if column.is_identity:
            line += f" GENERATED {column.identity_generation} AS IDENTITY"
        elif column.default_value is not None:
            line += f" DEFAULT {column.default_value}"
        if not column.is_nullable:
            line += " NOT NULL"
        lines.append(line)

    body = ",\n".join(lines)
    return f"CREATE TABLE IF NOT EXISTS {qualified_name(table.schema, table.name)} (\n{body}\n);\n"


def order_constraints(constraints: list[ConstraintInfo]) -> list[ConstraintInfo]:
    """Order by kind (primary key, unique, check, foreign key, exclusion, other), then by name."""
    return sorted(
        constraints,
        key=lambda c: (
            CONSTRAINT_TYPE_ORDER.get(c.constraint_type or "", len(CONSTRAINT_TYPE_ORDER)),
            c.schema or "",
            c.table_name or "",
            c.constraint_name or "",
        ),
    )


def render_constraint(constraint: ConstraintInfo) -> Optional[str]:
    """DO block adding the constraint if missing; None for incomplete catalog rows."""
    if not constraint.is_complete:
        return None

    # ADD CONSTRAINT has no IF NOT EXISTS form.
    condition = (
        "SELECT 1 FROM pg_constraint c "
        "JOIN pg_class t ON t.oid = c.conrelid "
        "JOIN pg_namespace n ON n.oid = t.relnamespace "
        f"WHERE c.conname = '{escape_sql_string(constraint.constraint_name)}' "
        f"AND t.relname = '{escape_sql_string(constraint.table_name)}' "
        f"AND n.nspname = '{escape_sql_string(constraint.schema)}'"
    )
    statement = (
        f"ALTER TABLE {qualified_name(constraint.schema, constraint.table_name)} "
        f"ADD CONSTRAINT {quote_ident(constraint.constraint_name)} {constraint.definition};"
    )
    return _guarded(condition, statement) + "\n"


def inject_if_not_exists(index_definition: str) -> str:
    """Turn ``CREATE [UNIQUE] INDEX name`` into ``CREATE [UNIQUE] INDEX IF NOT EXISTS name``."""
    return _INDEX_RE.sub(
        lambda m: f"CREATE {'UNIQUE ' if m.group(1) else ''}INDEX IF NOT EXISTS ",
        index_definition,
        count=1,
    )


def render_index(index: IndexInfo) -> str:
    return f"{inject_if_not_exists(index.definition.rstrip().rstrip(';'))};"


def render_function(function: FunctionInfo) -> str:
    definition = function.definition.rstrip()
    if not _OR_REPLACE_RE.search(definition):
        definition = _ROUTINE_RE.sub(
            lambda m: f"CREATE OR REPLACE {m.group(1).upper()}", definition, count=1
        )
    if not definition.endswith(";"):
        definition += ";"
    return definition + "\n"


def render_trigger(trigger: TriggerInfo) -> str:
    definition = trigger.definition.rstrip().rstrip(";")

    if _CONSTRAINT_TRIGGER_RE.match(definition):
        # Constraint triggers do not accept OR REPLACE.
        condition = (
            "SELECT 1 FROM pg_trigger tg "
            "JOIN pg_class t ON t.oid = tg.tgrelid "
            "JOIN pg_namespace n ON n.oid = t.relnamespace "
            f"WHERE tg.tgname = '{escape_sql_string(trigger.trigger_name)}' "
            f"AND t.relname = '{escape_sql_string(trigger.table_name)}' "
            f"AND n.nspname = '{escape_sql_string(trigger.schema)}'"
        )
        return _guarded(condition, f"{definition};")

    if not _OR_REPLACE_RE.search(definition):
        definition = _TRIGGER_RE.sub("CREATE OR REPLACE TRIGGER", definition, count=1)
    return f"{definition};"


def render_view(view: ViewInfo) -> str:
    definition = view.definition.rstrip().rstrip(";")
    return f"CREATE OR REPLACE VIEW {qualified_name(view.schema, view.name)} AS\n{definition};\n"


def _render_each(render: Callable, items: list) -> list[str]:
    return [text for text in (render(item) for item in items) if text is not None]


def render_script(
    snapshot: CatalogSnapshot,
    version: Optional[SchemaVersion] = None,
    generated_at: Optional[datetime] = None,
) -> str:
    """Render a full schema script from extracted catalog state."""
    owned_sequences = [seq for seq in snapshot.sequences if seq.is_owned]

    sections = [
        render_header(version, generated_at),
        _section("Extensions", render_extensions(snapshot)),
        _section("Schemas", render_schemas(snapshot)),
        _section("Enum types", _render_each(render_enum_type, snapshot.enum_types)),
        _section("Composite types", _render_each(render_composite_type, snapshot.composite_types)),
        _section("Domain types", _render_each(render_domain_type, snapshot.domain_types)),
        _section("Sequences", _render_each(render_sequence, snapshot.sequences)),
        _section("Tables", _render_each(render_table, snapshot.tables)),
        _section("Sequence ownership", _render_each(render_sequence_ownership, owned_sequences)),
        _section(
            "Constraints",
            _render_each(render_constraint, order_constraints(snapshot.constraints)),
        ),
        _section("Indexes", _render_each(render_index, snapshot.indexes)),
        _section("Functions", _render_each(render_function, snapshot.functions)),
        _section("Triggers", _render_each(render_trigger, snapshot.triggers)),
        _section("Views", _render_each(render_view, snapshot.views)),
    ]
    return "".join(sections)


class SchemaScriptGenerator:
    """Generates an idempotent script reproducing a database's schema.

    Usage:
        async with get_connection() as conn:
            script = await SchemaScriptGenerator(conn).generate_script()
    """

    def __init__(
        self,
        conn: Connection,
        table_config: Optional[MigrationTableConfiguration] = None,
        queries: Optional[CatalogQueries] = None,
        store: Optional[MigrationTrackingStore] = None,
    ):
        self.conn = conn
        self.table_config = table_config or MigrationTableConfiguration()
        self.queries = queries or CatalogQueries(conn, self.table_config)
        self.store = store or MigrationTrackingStore(conn, self.table_config)

    async def get_current_migration_version(self) -> Optional[SchemaVersion]:
        """Latest applied migration, or None if nothing is recorded."""
        record = await self.store.current_version()
        if record is None:
            return None
        return SchemaVersion(identifier=record.identifier, name=record.name)

    async def extract(self) -> CatalogSnapshot:
        """Run every catalog query, in order."""
        q = self.queries
        snapshot = CatalogSnapshot(
            extensions=await q.get_extensions(),
            schemas=await q.get_user_schemas(),
            enum_types=await q.get_enum_types(),
            composite_types=await q.get_composite_types(),
            domain_types=await q.get_domain_types(),
            sequences=await q.get_sequences(),
            tables=await q.get_tables(),
            constraints=await q.get_constraints(),
            indexes=await q.get_indexes(),
            functions=await q.get_functions(),
            triggers=await q.get_triggers(),
            views=await q.get_views(),
        )
        logger.debug(
            f"Extracted {len(snapshot.tables)} tables, {len(snapshot.constraints)} constraints, "
            f"{len(snapshot.indexes)} indexes, {len(snapshot.functions)} functions, "
            f"{len(snapshot.views)} views"
        )
        return snapshot

    async def generate_script(self, generated_at: Optional[datetime] = None) -> str:
        """Generate the schema script.

        Args:
            generated_at: Timestamp for the header (current UTC time if not provided)

        Returns:
            SQL script text

        Raises:
            QueryError: If a catalog query fails; no partial script is produced
        """
        version = await self.get_current_migration_version()
        snapshot = await self.extract()
        return render_script(snapshot, version, generated_at)
