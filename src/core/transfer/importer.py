"""Import engine: per-collection JSON arrays into relational and junction rows."""
from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from common.errors import ImportDataError, StorageError
from common.models import (
    EXTRA_COLUMN,
    ID_COLUMN,
    CollectionProgress,
    ColumnDefinition,
    DocumentConversion,
    ImportSummary,
    JunctionRow,
    Schema,
    TableDefinition,
)
from storage.json_store import collect_collection_files, read_collection
from storage.sqlite_store import SQLiteGateway

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[CollectionProgress], None]

_TRUE_TOKENS = {"true"}
_FALSE_TOKENS = {"false"}


@dataclass(slots=True)
class FileOutcome:
    """Result of writing one collection file inside its transaction."""

    rows: int = 0
    junction_rows: int = 0
    error: Optional[str] = None


class ImportEngine:
    """Walks a directory of collection files and writes them through the gateway.

    Each file is applied in its own transaction: either every document of the
    file is committed or none is.
    """

    def __init__(
        self,
        gateway: SQLiteGateway,
        schema: Schema,
        *,
        encoding: str = "utf-8",
        progress_callback: Optional[ProgressCallback] = None,
        progress_every: int = 500,
    ) -> None:
        self.gateway = gateway
        self.schema = schema
        self.encoding = encoding
        self.progress_callback = progress_callback
        self.progress_every = max(1, progress_every)

    def run(self, root: Path | str) -> ImportSummary:
        root = Path(root)
        if not root.is_dir():
            raise ImportDataError(f"Import root '{root}' is not a directory", context={"root": str(root)})

        summary = ImportSummary()
        touched: set[str] = set()
        start = time.perf_counter()
        for path in collect_collection_files(root):
            table = self.schema.get(path.stem)
            if table is None:
                logger.debug("skipping %s: no table named '%s'", path, path.stem)
                summary.files_skipped += 1
                continue
            documents = read_collection(path, encoding=self.encoding)
            outcome = self.import_file(table, path, documents)
            if outcome.error is not None:
                raise ImportDataError(
                    f"Import of '{path}' rolled back: {outcome.error}",
                    context={"file": str(path), "table": table.name},
                )
            summary.rows_inserted += outcome.rows
            summary.junction_rows += outcome.junction_rows
            summary.files_processed += 1
            touched.add(table.name)
            logger.info(
                "imported %d document(s) and %d junction row(s) into %s from %s",
                outcome.rows,
                outcome.junction_rows,
                table.name,
                path,
            )
        summary.tables_touched = len(touched)
        summary.duration_seconds = time.perf_counter() - start
        return summary

    def import_file(
        self,
        table: TableDefinition,
        path: Path,
        documents: List[Dict[str, Any]],
    ) -> FileOutcome:
        """Write all documents of one file atomically; roll back on any failure."""

        self.gateway.begin()
        try:
            outcome = self._write_documents(table, path, documents)
        except BaseException:
            self.gateway.rollback()
            raise
        if outcome.error is not None:
            self.gateway.rollback()
            return outcome
        try:
            self.gateway.commit()
        except StorageError as exc:
            self.gateway.rollback()
            return FileOutcome(error=f"commit failed: {exc}")
        return outcome

    def _write_documents(
        self,
        table: TableDefinition,
        path: Path,
        documents: List[Dict[str, Any]],
    ) -> FileOutcome:
        outcome = FileOutcome()
        total = len(documents)
        for index, document in enumerate(documents):
            conversion = convert_document(table, document)
            if not conversion.ok:
                return FileOutcome(error=f"document {index}: {conversion.error}")
            try:
                self.gateway.insert_or_replace(table.name, conversion.row)
                for junction, junction_row in conversion.junction_rows:
                    self.gateway.insert_or_replace(junction.name, junction_row.to_values(junction))
            except StorageError as exc:
                return FileOutcome(error=f"document {index}: {exc}")
            outcome.rows += 1
            outcome.junction_rows += len(conversion.junction_rows)
            processed = index + 1
            if processed % self.progress_every == 0 and processed != total:
                self._emit(table.name, processed, total, path)
        self._emit(table.name, total, total, path)
        return outcome

    def _emit(self, collection: str, processed: int, total: int, path: Path) -> None:
        if not self.progress_callback:
            return
        self.progress_callback(
            CollectionProgress(
                collection=collection,
                processed=processed,
                total=total,
                phase="import",
                file_path=path,
            )
        )


def convert_document(table: TableDefinition, document: Dict[str, Any]) -> DocumentConversion:
    """Split one document into its table row and junction rows.

    Mapped fields are moved into columns; whatever remains (many-on source
    arrays included) is serialized into the ``extra`` column. Data problems are
    reported through ``DocumentConversion.error``.
    """

    working = dict(document)
    row: Dict[str, Any] = {}
    owner_id: Optional[str] = None
    for column in table.mapped_columns:
        raw = working.pop(column.name, None)
        try:
            value = coerce_value(column, raw)
        except ValueError as exc:
            return DocumentConversion(error=f"field '{column.name}': {exc}")
        row[column.name] = value
        if column.name == ID_COLUMN and value is not None:
            owner_id = value if isinstance(value, str) else _as_text(value)

    conversion = DocumentConversion(row=row, owner_id=owner_id)
    pk = table.primary_key
    if pk is not None and row[pk.name] is None:
        # NULL keys never conflict on replace
        conversion.error = f"primary key '{pk.name}' must not be null"
        return conversion
    if table.many_on:
        if owner_id is None:
            conversion.error = f"many-on relations require a non-null '{ID_COLUMN}'"
            return conversion
        for constraint in table.many_on:
            junction = table.junction_for(constraint)
            items = working.get(constraint.array_field)
            if items is None:
                items = []
            if not isinstance(items, list):
                conversion.error = f"field '{constraint.array_field}' must be an array"
                return conversion
            if not items:
                conversion.junction_rows.append((junction, JunctionRow(owner_id)))
                continue
            for position, item in enumerate(items):
                if not isinstance(item, dict):
                    conversion.error = f"'{constraint.array_field}[{position}]' must be an object"
                    return conversion
                inner = item.get(constraint.inner_key)
                if inner is None:
                    conversion.junction_rows.append((junction, JunctionRow(owner_id)))
                    continue
                try:
                    referenced_id = _as_text(inner)
                except ValueError as exc:
                    conversion.error = f"'{constraint.array_field}[{position}].{constraint.inner_key}': {exc}"
                    return conversion
                conversion.junction_rows.append((junction, JunctionRow(owner_id, referenced_id)))

    row[EXTRA_COLUMN] = json.dumps(working, ensure_ascii=False, separators=(",", ":"))
    return conversion


def coerce_value(column: ColumnDefinition, value: Any) -> Any:
    """JSON value → SQL parameter for ``column``; raises ValueError on mismatch."""

    if value is None:
        return None
    if column.is_boolean:
        return _as_bool(value)
    return _as_text(value)


def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        token = value.strip().lower()
        if token in _TRUE_TOKENS:
            return True
        if token in _FALSE_TOKENS:
            return False
    raise ValueError(f"expected a boolean, got {value!r}")


def _as_text(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    raise ValueError(f"expected a scalar, got {type(value).__name__}")
