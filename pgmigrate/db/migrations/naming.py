"""Migration naming convention.

Migrations may be named ``_{identifier}_{name}`` (e.g. ``_202310191050_AddUsersTable``),
where the identifier is a 12-digit ``YYYYMMDDHHmm`` timestamp. These helpers parse that
convention and generate new identifiers and file names.
"""

import re
from datetime import datetime, timezone
from typing import Optional

IDENTIFIER_FORMAT = "%Y%m%d%H%M"
EXPECTED_PATTERN = "_{identifier}_{name} (e.g. '_202310191050_AddUsersTable')"

_MIGRATION_NAME_RE = re.compile(r"^_?(\d{12})_(.+)$")


class MigrationNameError(ValueError):
    """A name does not follow the migration naming convention."""

    def __init__(self, value: str):
        super().__init__(
            f"Migration name '{value}' does not match the expected format {EXPECTED_PATTERN}."
        )
        self.value = value
        self.expected = EXPECTED_PATTERN


def _match(value: str) -> re.Match[str]:
    match = _MIGRATION_NAME_RE.match(value)
    if match is None:
        raise MigrationNameError(value)
    return match


def parse_identifier(value: str) -> int:
    """Extract the numeric identifier from a convention name.

    Raises:
        MigrationNameError: If the name does not match the convention
    """
    return int(_match(value).group(1))


def parse_name(value: str) -> str:
    """Extract the human-readable part from a convention name.

    Raises:
        MigrationNameError: If the name does not match the convention
    """
    return _match(value).group(2)


def is_valid_name(value: str) -> bool:
    """Whether ``value`` follows the ``_{identifier}_{name}`` convention."""
    return _MIGRATION_NAME_RE.match(value) is not None


def generate_identifier(now: Optional[datetime] = None) -> int:
    """Identifier for a new migration, from the current UTC time."""
    moment = now or datetime.now(timezone.utc)
    return int(moment.strftime(IDENTIFIER_FORMAT))


def normalize_name(name: str) -> str:
    """Normalize a free-form migration name to an identifier-safe form."""
    normalized = re.sub(r"[^0-9a-zA-Z_]+", "_", name.strip().replace("-", "_"))
    return normalized.strip("_")


def generate_file_name(identifier: int, name: str) -> str:
    """Module file name for a new migration."""
    return f"m_{identifier}_{normalize_name(name).lower()}.py"
