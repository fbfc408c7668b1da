"""Schema snapshot discovery.

Locates a ``schema.sql`` (or ``schema.<environment>.sql``) snapshot bundled
with the code that holds the migrations. Resource containers may flatten
names into dotted or slash-separated paths, so matching accepts both an
exact file name and a namespaced suffix.

Absence is a normal outcome: every lookup returns None rather than raising.
"""

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from importlib import resources
from importlib.resources.abc import Traversable
from pathlib import Path
from types import ModuleType
from typing import Optional, Protocol, Union

logger = logging.getLogger(__name__)

SCHEMA_PREFIX = "schema."
SCHEMA_SUFFIX = ".sql"
DEFAULT_SCHEMA_NAME = "schema.sql"


class ResourceContainer(Protocol):
    """A bundle of named text resources."""

    def list_resource_names(self) -> list[str]:
        ...

    def read_resource(self, name: str) -> str:
        ...


class PackageResources:
    """Resources shipped as data files inside a Python package.

    Names are package-relative paths using ``/`` (e.g. ``schemas/schema.sql``).
    """

    def __init__(self, package: Union[str, ModuleType]):
        self.package = package

    def _root(self) -> Traversable:
        return resources.files(self.package)

    def list_resource_names(self) -> list[str]:
        names: list[str] = []
        pending: list[tuple[str, Traversable]] = [("", self._root())]
        while pending:
            prefix, node = pending.pop()
            for child in node.iterdir():
                if child.name == "__pycache__":
                    continue
                if child.is_dir():
                    pending.append((f"{prefix}{child.name}/", child))
                elif child.is_file():
                    names.append(f"{prefix}{child.name}")
        return sorted(names)

    def read_resource(self, name: str) -> str:
        node = self._root()
        for part in name.split("/"):
            node = node.joinpath(part)
        return node.read_text(encoding="utf-8")

    def __repr__(self) -> str:
        package = self.package if isinstance(self.package, str) else self.package.__name__
        return f"PackageResources({package!r})"


class DirectoryResources:
    """Resources stored as files under a directory on disk."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    def list_resource_names(self) -> list[str]:
        if not self.path.is_dir():
            return []
        return sorted(
            p.relative_to(self.path).as_posix() for p in self.path.rglob("*") if p.is_file()
        )

    def read_resource(self, name: str) -> str:
        return (self.path / name).read_text(encoding="utf-8")

    def __repr__(self) -> str:
        return f"DirectoryResources({str(self.path)!r})"


@dataclass(frozen=True)
class SchemaResource:
    """A located snapshot resource."""

    container: ResourceContainer
    name: str

    def read(self) -> str:
        return self.container.read_resource(self.name)


def get_resource_file_name(resource_name: str) -> str:
    """Extract the ``schema.*.sql`` file name from a possibly namespaced resource name.

    ``MyApp.Data.Schemas.schema.local.sql`` and ``schemas/schema.local.sql`` both
    yield ``schema.local.sql``. Names that cannot be parsed are returned unchanged.
    """
    name = resource_name.rsplit("/", 1)[-1]
    if "." not in name:
        return name

    parts = name.split(".")
    if len(parts) >= 2 and parts[-1].lower() == "sql":
        for i, part in enumerate(parts[:-1]):
            if part.lower() == "schema":
                return ".".join(parts[i:])

    return name


def _is_schema_file(resource_name: str) -> bool:
    file_name = get_resource_file_name(resource_name).lower()
    return file_name.startswith(SCHEMA_PREFIX) and file_name.endswith(SCHEMA_SUFFIX)


def _find_by_name(
    containers: Sequence[ResourceContainer], file_name: str
) -> Optional[SchemaResource]:
    wanted = file_name.lower()
    for container in containers:
        names = container.list_resource_names()

        for name in names:
            if name.lower() == wanted:
                return SchemaResource(container, name)

        for name in names:
            lowered = name.lower()
            if lowered.endswith("." + wanted) or lowered.endswith(wanted):
                return SchemaResource(container, name)

    return None


def _find_any(containers: Sequence[ResourceContainer]) -> Optional[SchemaResource]:
    for container in containers:
        for name in container.list_resource_names():
            if _is_schema_file(name):
                return SchemaResource(container, name)
    return None


def find_schema_resource(
    containers: Sequence[ResourceContainer],
    environment: Optional[str] = None,
) -> Optional[SchemaResource]:
    """Find the snapshot resource for an environment.

    With an environment, ``schema.<environment>.sql`` is preferred and
    ``schema.sql`` is the fallback. Without one, ``schema.sql`` is preferred and
    any ``schema.*.sql`` is the fallback. Matching is case-insensitive.

    Args:
        containers: Resource containers to search, in order
        environment: Optional environment name

    Returns:
        The located resource, or None
    """
    if not containers:
        return None

    if environment and environment.strip():
        env_name = f"{SCHEMA_PREFIX}{environment.strip().lower()}{SCHEMA_SUFFIX}"
        resource = _find_by_name(containers, env_name) or _find_by_name(
            containers, DEFAULT_SCHEMA_NAME
        )
    else:
        resource = _find_by_name(containers, DEFAULT_SCHEMA_NAME) or _find_any(containers)

    if resource is None:
        logger.debug(f"No schema resource found (environment={environment!r})")
    else:
        logger.debug(f"Found schema resource {resource.name} in {resource.container!r}")
    return resource


def read_schema_content(
    containers: Sequence[ResourceContainer],
    environment: Optional[str] = None,
) -> Optional[str]:
    """Content of the snapshot resource, or None if there is none.

    Errors reading a resource that does exist propagate.
    """
    resource = find_schema_resource(containers, environment)
    if resource is None:
        return None
    return resource.read()


def schema_resource_exists(
    containers: Sequence[ResourceContainer],
    environment: Optional[str] = None,
) -> bool:
    return find_schema_resource(containers, environment) is not None


def get_schema_resource_name(
    containers: Sequence[ResourceContainer],
    environment: Optional[str] = None,
) -> Optional[str]:
    resource = find_schema_resource(containers, environment)
    return resource.name if resource else None
