"""Schema snapshot header.

Every generated snapshot starts with a comment block recording when it was
generated and which migration it corresponds to:

    --
    -- PostgreSQL database schema
    -- Generated at 2026-02-18 10:30:45 UTC
    -- Migration version: 202602161430 (AddUsersTable)
    --

A malformed or missing version line parses as "no version", never as an error.
"""

import re
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Union

HEADER_TITLE = "PostgreSQL database schema"
NO_VERSION = "(none)"
TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"

_VERSION_LINE_RE = re.compile(r"^\s*--\s*Migration version:(.*)$", re.IGNORECASE | re.MULTILINE)
_VERSION_VALUE_RE = re.compile(r"^\s*([^\s(]+)\s*\(\s*((?:\\.|[^)\\])*?)\s*\)\s*$")
_IDENTIFIER_RE = re.compile(r"^[+-]?\d+$")
_ESCAPED_RE = re.compile(r"\\(.)")
_ESCAPES = {"\\": "\\\\", ")": "\\)", "\n": "\\n", "\r": "\\r"}
_UNESCAPES = {"n": "\n", "r": "\r"}


@dataclass(frozen=True)
class SchemaVersion:
    """Migration version recorded in a snapshot header."""

    identifier: int
    name: str


def _escape_name(name: str) -> str:
    # Whitespace around the name is dropped when parsing unless escaped
    lead = len(name) - len(name.lstrip())
    trail = len(name) - len(name.rstrip())
    escaped = []
    for index, char in enumerate(name):
        if char in _ESCAPES:
            escaped.append(_ESCAPES[char])
        elif char.isspace() and (index < lead or index >= len(name) - trail):
            escaped.append("\\" + char)
        else:
            escaped.append(char)
    return "".join(escaped)


def _unescape_name(name: str) -> str:
    return _ESCAPED_RE.sub(lambda m: _UNESCAPES.get(m.group(1), m.group(1)), name)


def parse_migration_version(content: str) -> Optional[SchemaVersion]:
    """Parse the migration version from snapshot content.

    The first ``-- Migration version:`` line anywhere in the document is used.

    Returns:
        The recorded version, or None for ``(none)``, a missing line or a
        malformed value
    """
    if not content:
        return None

    line = _VERSION_LINE_RE.search(content)
    if line is None:
        return None

    value = line.group(1).strip()
    if value.lower() == NO_VERSION:
        return None

    match = _VERSION_VALUE_RE.match(value)
    if match is None:
        return None

    identifier, name = match.groups()
    if not _IDENTIFIER_RE.match(identifier):
        return None

    return SchemaVersion(identifier=int(identifier), name=_unescape_name(name))


def read_schema_file(path: Union[str, Path]) -> str:
    """Read a snapshot file.

    Raises:
        FileNotFoundError: If the file does not exist
    """
    return Path(path).read_text(encoding="utf-8")


def parse_migration_version_from_file(path: Union[str, Path]) -> Optional[SchemaVersion]:
    """Parse the migration version of a snapshot file.

    Raises:
        FileNotFoundError: If the file does not exist
    """
    return parse_migration_version(read_schema_file(path))


def render_migration_version(version: Optional[SchemaVersion]) -> str:
    """Render the version line parsed by :func:`parse_migration_version`."""
    if version is None:
        return f"-- Migration version: {NO_VERSION}"
    return f"-- Migration version: {version.identifier} ({_escape_name(version.name)})"


def render_header(
    version: Optional[SchemaVersion],
    generated_at: Optional[datetime] = None,
) -> str:
    """Render the full snapshot header block, ending with a blank line."""
    moment = generated_at or datetime.now(timezone.utc)
    lines = [
        "--",
        f"-- {HEADER_TITLE}",
        f"-- Generated at {moment.strftime(TIMESTAMP_FORMAT)} UTC",
        render_migration_version(version),
        "--",
        "",
    ]
    return "\n".join(lines) + "\n"
