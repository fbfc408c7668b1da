"""Base classes for the migration system.

Defines the core abstractions:
- MigrationDescriptor: Identifier, name and up-action of one migration
- BaseMigration: Abstract base class for class-based migrations
- ExecutedMigrationRecord: Row of the migration tracking table
- MigrationStatus: Enum for migration states
- MigrationError and its subclasses
"""

import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional

from ..connection import Connection
from .naming import MigrationNameError, parse_identifier, parse_name

logger = logging.getLogger(__name__)

UpAction = Callable[[Connection], Awaitable[None]]


class MigrationError(Exception):
    """Base exception for migration errors."""

    pass


class DuplicateMigrationError(MigrationError):
    """Two migrations share an identifier."""

    pass


class MigrationFailure(MigrationError):
    """A migration's up-action or its tracking insert failed.

    The migration's transaction has been rolled back when this is raised.

    Attributes:
        migration: Descriptor of the failing migration
    """

    def __init__(self, migration: "MigrationDescriptor", cause: Optional[BaseException] = None):
        super().__init__(
            f"Error while executing migration {migration.identifier}: {migration.name}."
            + (f" {cause}" if cause is not None else "")
        )
        self.migration = migration
        self.__cause__ = cause


class SnapshotApplicationFailure(MigrationError):
    """Applying a schema snapshot to an empty database failed.

    The whole bootstrap transaction has been rolled back when this is raised.

    Attributes:
        resource_name: Name of the snapshot resource that was applied
    """

    def __init__(self, resource_name: str, cause: Optional[BaseException] = None):
        super().__init__(
            f"Error while applying schema snapshot '{resource_name}'."
            + (f" {cause}" if cause is not None else "")
        )
        self.resource_name = resource_name
        self.__cause__ = cause


class MigrationStatus(str, Enum):
    """Status of a migration."""

    PENDING = "pending"
    APPLIED = "applied"


@dataclass(frozen=True)
class MigrationDescriptor:
    """One migration: a unique identifier, a name and the action applying it.

    The identifier is a ``YYYYMMDDHHmm`` timestamp-like integer; migrations run in
    ascending identifier order.
    """

    identifier: int
    name: str
    up: UpAction = field(compare=False, repr=False)

    @property
    def full_name(self) -> str:
        """Get full migration name (identifier_name)."""
        return f"{self.identifier}_{self.name}"


@dataclass(frozen=True)
class ExecutedMigrationRecord:
    """Record of an applied migration, as stored in the tracking table."""

    identifier: int
    name: str
    executed_at: datetime


class BaseMigration(ABC):
    """Abstract base class for class-based migrations.

    Subclasses either define ``identifier`` and ``name`` explicitly or are named
    after the ``_{identifier}_{name}`` convention, from which both are derived:

        class _202505181200_AddUsersTable(BaseMigration):
            async def up(self, conn: Connection) -> None:
                await conn.execute("CREATE TABLE users (id BIGINT PRIMARY KEY)")

    Attributes:
        identifier: Unique 12-digit identifier (e.g. 202505181200)
        name: Human-readable migration name
    """

    identifier: int
    name: str

    def __init_subclass__(cls, **kwargs):
        """Validate subclass attributes, deriving them from the class name if absent."""
        super().__init_subclass__(**kwargs)

        # Intermediate bases that leave up() abstract are not migrations
        if getattr(cls.up, "__isabstractmethod__", False):
            return

        if getattr(cls, "identifier", None) is None or not getattr(cls, "name", None):
            try:
                derived_identifier = parse_identifier(cls.__name__)
                derived_name = parse_name(cls.__name__)
            except MigrationNameError as e:
                raise TypeError(
                    f"Migration {cls.__name__} must define 'identifier' and 'name' "
                    f"or follow the naming convention: {e}"
                ) from e

            if getattr(cls, "identifier", None) is None:
                cls.identifier = derived_identifier
            if not getattr(cls, "name", None):
                cls.name = derived_name

        if not isinstance(cls.identifier, int) or isinstance(cls.identifier, bool):
            raise TypeError(f"Migration {cls.__name__} 'identifier' must be an int")

    @abstractmethod
    async def up(self, conn: Connection) -> None:
        """Apply the migration.

        Args:
            conn: Connection to run the migration on; a transaction is already open
        """
        pass

    @property
    def full_name(self) -> str:
        """Get full migration name (identifier_name)."""
        return f"{self.identifier}_{self.name}"

    def descriptor(self) -> MigrationDescriptor:
        """Describe this migration for the registry and runner."""
        return MigrationDescriptor(identifier=self.identifier, name=self.name, up=self.up)

    def __repr__(self) -> str:
        return f"<Migration {self.full_name}>"
