"""Migration registry for discovering and ordering migrations.

Provides:
- The MigrationRetriever protocol the runner consumes
- A static registry that migrations are added to explicitly
- Discovery of BaseMigration subclasses from a Python package
"""

import importlib
import inspect
import logging
import pkgutil
from types import ModuleType
from typing import Optional, Protocol, Union

from .base import (
    BaseMigration,
    DuplicateMigrationError,
    MigrationDescriptor,
    MigrationError,
    UpAction,
)

logger = logging.getLogger(__name__)


class MigrationRetriever(Protocol):
    """Source of the full set of known migrations."""

    def retrieve_migrations(self) -> list[MigrationDescriptor]:
        """Return every known migration; order is not significant."""
        ...


class MigrationRegistry:
    """Registry of migrations keyed by identifier.

    Migrations are returned in ascending identifier order. Identifiers must be
    unique; registering a second migration with a known identifier fails.
    """

    def __init__(self, migrations: Optional[list[Union[BaseMigration, MigrationDescriptor]]] = None):
        """Initialize registry.

        Args:
            migrations: Optional initial migrations to register
        """
        self._migrations: dict[int, MigrationDescriptor] = {}
        for migration in migrations or []:
            self.register(migration)

    def register(self, migration: Union[BaseMigration, MigrationDescriptor]) -> MigrationDescriptor:
        """Register a migration.

        Args:
            migration: Migration instance or descriptor to register

        Returns:
            The registered descriptor

        Raises:
            DuplicateMigrationError: If the identifier is already registered
        """
        descriptor = migration.descriptor() if isinstance(migration, BaseMigration) else migration

        if descriptor.identifier in self._migrations:
            existing = self._migrations[descriptor.identifier]
            raise DuplicateMigrationError(
                f"Duplicate migration identifier {descriptor.identifier}: "
                f"{existing.name} and {descriptor.name}"
            )

        self._migrations[descriptor.identifier] = descriptor
        return descriptor

    def add(self, identifier: int, name: str, up: UpAction) -> MigrationDescriptor:
        """Register a migration from its parts."""
        return self.register(MigrationDescriptor(identifier=identifier, name=name, up=up))

    def get(self, identifier: int) -> Optional[MigrationDescriptor]:
        """Get a migration by identifier.

        Args:
            identifier: Migration identifier

        Returns:
            Migration descriptor or None
        """
        return self._migrations.get(identifier)

    def get_all(self) -> list[MigrationDescriptor]:
        """Get all migrations in ascending identifier order."""
        return [self._migrations[key] for key in sorted(self._migrations)]

    def get_identifiers(self) -> list[int]:
        """Get all registered identifiers in order."""
        return sorted(self._migrations)

    def retrieve_migrations(self) -> list[MigrationDescriptor]:
        return self.get_all()

    def __len__(self) -> int:
        return len(self._migrations)


def _migration_classes(module: ModuleType) -> list[type[BaseMigration]]:
    classes = []
    for _, attr in inspect.getmembers(module, inspect.isclass):
        if (
            issubclass(attr, BaseMigration)
            and attr is not BaseMigration
            and attr.__module__ == module.__name__
            and not inspect.isabstract(attr)
        ):
            classes.append(attr)
    return classes


class PackageMigrationRetriever:
    """Retrieves migrations by importing every module of a Python package.

    Each concrete BaseMigration subclass defined in one of the package's modules
    is instantiated once per retrieval.
    """

    def __init__(self, package: Union[str, ModuleType]):
        """Initialize retriever.

        Args:
            package: Dotted package name or an imported package module
        """
        self.package = package

    def _import(self, name: str) -> ModuleType:
        try:
            return importlib.import_module(name)
        except Exception as e:
            raise MigrationError(f"Failed to import migration module {name}: {e}") from e

    def _package_module(self) -> ModuleType:
        if isinstance(self.package, ModuleType):
            return self.package
        return self._import(self.package)

    def retrieve_migrations(self) -> list[MigrationDescriptor]:
        package = self._package_module()
        search_path = getattr(package, "__path__", None)
        if search_path is None:
            raise MigrationError(f"{package.__name__} is not a package")

        migrations: list[MigrationDescriptor] = []
        for module_info in pkgutil.walk_packages(search_path, prefix=f"{package.__name__}."):
            module = self._import(module_info.name)
            for cls in _migration_classes(module):
                migration = cls()
                migrations.append(migration.descriptor())
                logger.debug(f"Discovered migration: {migration.full_name}")

        return migrations


def discover_migrations(package: Union[str, ModuleType]) -> MigrationRegistry:
    """Discover all migrations in a package.

    Args:
        package: Dotted package name or an imported package module

    Returns:
        Registry with discovered migrations

    Raises:
        MigrationError: If a module fails to import
        DuplicateMigrationError: If two migrations share an identifier
    """
    registry = MigrationRegistry(PackageMigrationRetriever(package).retrieve_migrations())
    logger.debug(f"Discovered {len(registry)} migrations")
    return registry
