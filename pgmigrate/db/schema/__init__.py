"""Schema extraction and snapshot scripts.

Provides:
- Catalog queries returning typed records for every object kind
- An idempotent script generator reproducing a database's schema
- The snapshot header recording the migration version a script corresponds to

Usage:
    from pgmigrate.db import get_connection
    from pgmigrate.db.schema import SchemaScriptGenerator

    async with get_connection() as conn:
        script = await SchemaScriptGenerator(conn).generate_script()
"""

from .header import (
    SchemaVersion,
    parse_migration_version,
    parse_migration_version_from_file,
    read_schema_file,
    render_header,
    render_migration_version,
)

from .catalog import CatalogQueries

from .generator import (
    SchemaScriptGenerator,
    render_script,
)

from .models import (
    CatalogSnapshot,
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

__all__ = [
    # Header
    "SchemaVersion",
    "parse_migration_version",
    "parse_migration_version_from_file",
    "read_schema_file",
    "render_header",
    "render_migration_version",
    # Extraction
    "CatalogQueries",
    "SchemaScriptGenerator",
    "render_script",
    # Models
    "CatalogSnapshot",
    "ColumnInfo",
    "CompositeTypeAttributeInfo",
    "CompositeTypeInfo",
    "ConstraintInfo",
    "DomainTypeInfo",
    "EnumTypeInfo",
    "ExtensionInfo",
    "FunctionInfo",
    "IndexInfo",
    "SequenceInfo",
    "TableInfo",
    "TriggerInfo",
    "ViewInfo",
]
