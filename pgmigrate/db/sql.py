"""Identifier and literal helpers for SQL built by this package.

Identifiers are always quoted, never parameterized. Values sent to the server are
always parameterized through the connection; the literal helpers here exist only
for rendering SQL text that is written out (schema scripts), never executed with
user-supplied values spliced in.
"""

from typing import Optional

from psycopg import sql


def escape_sql_string(value: Optional[str]) -> str:
    """Double embedded single quotes so the value is safe inside '...'.

    None renders as an empty string.
    """
    if value is None:
        return ""
    return value.replace("'", "''")


def quote_literal(value: Optional[str]) -> str:
    """Render a string as a SQL literal."""
    return f"'{escape_sql_string(value)}'"


def quote_ident(name: str) -> str:
    """Render a name as a double-quoted identifier."""
    return '"' + name.replace('"', '""') + '"'


def qualified_name(*parts: str) -> str:
    """Render a dotted, quoted name, e.g. "schema"."table"."""
    return ".".join(quote_ident(part) for part in parts)


def identifier(*parts: str) -> sql.Identifier:
    """Composable identifier for SQL executed through a connection."""
    return sql.Identifier(*parts)


def compose(template: str, **identifiers: str | tuple[str, ...]) -> sql.Composed:
    """Fill ``{name}`` placeholders in a SQL template with quoted identifiers.

    Values still go through ``%(name)s`` parameters at execution time.

    Example:
        compose("SELECT COUNT(*) FROM {table}", table=("pgmigrate", "migrations"))
    """
    parts = {
        key: sql.Identifier(*value) if isinstance(value, tuple) else sql.Identifier(value)
        for key, value in identifiers.items()
    }
    return sql.SQL(template).format(**parts)
