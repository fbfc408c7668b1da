"""Catalog snapshot records.

Read-only projections of catalog state, rebuilt on every extraction.
"""

from dataclasses import dataclass, field
from typing import Optional


@dataclass(frozen=True)
class ExtensionInfo:
    name: str
    schema: str
    version: Optional[str] = None


@dataclass(frozen=True)
class EnumTypeInfo:
    schema: str
    name: str
    labels: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class CompositeTypeAttributeInfo:
    name: str
    data_type: str


@dataclass(frozen=True)
class CompositeTypeInfo:
    schema: str
    name: str
    attributes: list[CompositeTypeAttributeInfo] = field(default_factory=list)


@dataclass(frozen=True)
class DomainTypeInfo:
    schema: str
    name: str
    base_type: str
    default_value: Optional[str] = None
    is_not_null: bool = False
    check_constraints: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class SequenceInfo:
    """A sequence, with the column owning it if any."""

    schema: str
    name: str
    data_type: str
    start_value: int
    increment_by: int
    min_value: int
    max_value: int
    cache_size: int
    is_cyclic: bool
    owned_by_table: Optional[str] = None
    owned_by_column: Optional[str] = None

    @property
    def is_owned(self) -> bool:
        return self.owned_by_table is not None and self.owned_by_column is not None


@dataclass(frozen=True)
class ColumnInfo:
    name: str
    data_type: str
    is_nullable: bool = True
    default_value: Optional[str] = None
    is_identity: bool = False
    identity_generation: Optional[str] = None


@dataclass(frozen=True)
class TableInfo:
    schema: str
    name: str
    columns: list[ColumnInfo] = field(default_factory=list)


@dataclass(frozen=True)
class ConstraintInfo:
    """A table constraint.

    Fields are optional because catalog rows can lack them; such rows are
    skipped when rendering.
    """

    schema: Optional[str]
    table_name: Optional[str]
    constraint_name: Optional[str]
    constraint_type: Optional[str]
    definition: Optional[str]

    @property
    def is_complete(self) -> bool:
        return None not in (self.schema, self.table_name, self.constraint_name, self.definition)


@dataclass(frozen=True)
class IndexInfo:
    schema: str
    table_name: str
    index_name: str
    definition: str


@dataclass(frozen=True)
class FunctionInfo:
    schema: str
    name: str
    identity_arguments: str
    definition: str


@dataclass(frozen=True)
class TriggerInfo:
    schema: str
    table_name: str
    trigger_name: str
    definition: str


@dataclass(frozen=True)
class ViewInfo:
    schema: str
    name: str
    definition: str


@dataclass
class CatalogSnapshot:
    """Everything extracted from the catalog for one script generation."""

    extensions: list[ExtensionInfo] = field(default_factory=list)
    schemas: list[str] = field(default_factory=list)
    enum_types: list[EnumTypeInfo] = field(default_factory=list)
    composite_types: list[CompositeTypeInfo] = field(default_factory=list)
    domain_types: list[DomainTypeInfo] = field(default_factory=list)
    sequences: list[SequenceInfo] = field(default_factory=list)
    tables: list[TableInfo] = field(default_factory=list)
    constraints: list[ConstraintInfo] = field(default_factory=list)
    indexes: list[IndexInfo] = field(default_factory=list)
    functions: list[FunctionInfo] = field(default_factory=list)
    triggers: list[TriggerInfo] = field(default_factory=list)
    views: list[ViewInfo] = field(default_factory=list)
