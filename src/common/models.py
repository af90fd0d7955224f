"""Data models shared across schema, transfer, storage and UI layers."""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

EXTRA_COLUMN = "extra"
EXTRA_COLUMN_TYPE = "VARCHAR(5000)"
ID_COLUMN = "_id"
JUNCTION_ID_TYPE = "VARCHAR(100)"
DEFAULT_REFERENCE_TYPE = "VARCHAR(100)"
BOOLEAN_TYPE = "BOOLEAN"


@dataclass(frozen=True, slots=True)
class ColumnDefinition:
    """Plain column mapped one-to-one from a document field."""

    name: str
    sql_type: str
    is_primary_key: bool = False

    @property
    def is_boolean(self) -> bool:
        return self.sql_type.strip().upper() == BOOLEAN_TYPE


@dataclass(frozen=True, slots=True)
class SimpleConstraint:
    """Scalar foreign key owned by ``column`` (rendered ON DELETE SET NULL)."""

    column: str
    references: str
    references_on: str = ID_COLUMN
    sql_type: str = DEFAULT_REFERENCE_TYPE
    is_primary_key: bool = False

    def as_column(self) -> ColumnDefinition:
        return ColumnDefinition(name=self.column, sql_type=self.sql_type, is_primary_key=self.is_primary_key)


@dataclass(frozen=True, slots=True)
class ManyOnConstraint:
    """Array-of-objects field realized as junction rows.

    ``key`` has the form ``<arrayField>_<innerKey>``; the array field is the
    part before the first underscore.
    """

    key: str
    references: str
    references_on: str = ID_COLUMN
    many_on: str = ID_COLUMN

    @property
    def array_field(self) -> str:
        return self.key.partition("_")[0]

    @property
    def inner_key(self) -> str:
        return self.key.partition("_")[2]


@dataclass(frozen=True, slots=True)
class JunctionTable:
    """Synthesized table linking an owner document to referenced entities."""

    owner: str
    referenced: str
    referenced_column: str = ID_COLUMN
    owner_column: str = ID_COLUMN

    @property
    def name(self) -> str:
        return f"{self.owner}_{self.referenced}"

    @property
    def owner_id_column(self) -> str:
        return f"{self.owner}Id"

    @property
    def referenced_id_column(self) -> str:
        return f"{self.referenced}Id"


@dataclass(frozen=True, slots=True)
class JunctionRow:
    """One association; identity is the ``(owner_id, referenced_id)`` pair."""

    owner_id: str
    referenced_id: Optional[str] = None

    @property
    def key(self) -> Tuple[str, Optional[str]]:
        return (self.owner_id, self.referenced_id)

    @property
    def row_id(self) -> str:
        # single-column primary key: serialized form of ``key``
        if self.referenced_id is None:
            return self.owner_id
        return f"{self.owner_id}{self.referenced_id}"

    def to_values(self, junction: JunctionTable) -> Dict[str, Any]:
        return {
            ID_COLUMN: self.row_id,
            junction.owner_id_column: self.owner_id,
            junction.referenced_id_column: self.referenced_id,
        }


@dataclass(frozen=True, slots=True)
class TableDefinition:
    """Relational table derived from one collection entry of the configuration."""

    name: str
    columns: Tuple[ColumnDefinition, ...] = ()
    constraints: Tuple[SimpleConstraint, ...] = ()
    many_on: Tuple[ManyOnConstraint, ...] = ()

    @property
    def primary_key(self) -> Optional[ColumnDefinition]:
        for column in self.mapped_columns:
            if column.is_primary_key:
                return column
        return None

    @property
    def mapped_columns(self) -> Tuple[ColumnDefinition, ...]:
        """Plain columns plus constraint-owning columns, sorted by name."""

        merged = list(self.columns) + [constraint.as_column() for constraint in self.constraints]
        return tuple(sorted(merged, key=lambda column: column.name))

    def column_types(self) -> Dict[str, str]:
        return {column.name: column.sql_type for column in self.mapped_columns}

    def junction_for(self, constraint: ManyOnConstraint) -> JunctionTable:
        pk = self.primary_key
        return JunctionTable(
            owner=self.name,
            referenced=constraint.references,
            referenced_column=constraint.references_on,
            owner_column=pk.name if pk else ID_COLUMN,
        )

    def junction_tables(self) -> List[JunctionTable]:
        seen: Dict[str, JunctionTable] = {}
        for constraint in self.many_on:
            junction = self.junction_for(constraint)
            seen.setdefault(junction.name, junction)
        return list(seen.values())


@dataclass(frozen=True, slots=True)
class Schema:
    """Ordered, read-only collection of table definitions."""

    tables: Tuple[TableDefinition, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not self.tables

    @property
    def table_names(self) -> List[str]:
        return [table.name for table in self.tables]

    def get(self, name: str) -> Optional[TableDefinition]:
        for table in self.tables:
            if table.name == name:
                return table
        return None

    def junction_tables(self) -> List[JunctionTable]:
        seen: Dict[str, JunctionTable] = {}
        for table in self.tables:
            for junction in table.junction_tables():
                seen.setdefault(junction.name, junction)
        return list(seen.values())


@dataclass(slots=True)
class DocumentConversion:
    """Outcome of converting one document: rows to write, or an error message."""

    row: Dict[str, Any] = field(default_factory=dict)
    junction_rows: List[Tuple[JunctionTable, JunctionRow]] = field(default_factory=list)
    owner_id: Optional[str] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(slots=True)
class CollectionProgress:
    """Progress payload reported while a collection is imported or exported."""

    collection: str
    processed: int
    total: int
    phase: str = "import"
    file_path: Optional[Path] = None


@dataclass(slots=True)
class ImportSummary:
    """Counts accumulated over one import run."""

    rows_inserted: int = 0
    junction_rows: int = 0
    tables_touched: int = 0
    files_processed: int = 0
    files_skipped: int = 0
    duration_seconds: float = 0.0

    def summary(self) -> str:
        return f"Inserted {self.rows_inserted} rows in {self.tables_touched} tables"


@dataclass(slots=True)
class ExportSummary:
    """Files written by one export run."""

    tables_exported: int = 0
    rows_exported: int = 0
    files: List[Path] = field(default_factory=list)


@dataclass(slots=True)
class DatabaseSettings:
    """Location and encryption of the relational store."""

    path: str = "artifacts/store.db"
    encryption_key: Optional[str] = None


@dataclass(slots=True)
class TransferSettings:
    """Knobs shared by import and export."""

    encoding: str = "utf-8"
    progress_every: int = 500
    export_indent: Optional[int] = None
    progress_log: Optional[str] = None


@dataclass(slots=True)
class RuntimeConfig:
    """Resolved configuration for a single run."""

    database: DatabaseSettings = field(default_factory=DatabaseSettings)
    transfer: TransferSettings = field(default_factory=TransferSettings)
