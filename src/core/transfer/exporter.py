"""Export engine: relational rows back into per-collection JSON arrays."""
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from common.errors import ExportDataError
from common.models import (
    EXTRA_COLUMN,
    CollectionProgress,
    ExportSummary,
    Schema,
    TableDefinition,
)
from storage.json_store import write_collection
from storage.sqlite_store import SQLiteGateway

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[CollectionProgress], None]


class ExportEngine:
    """Reads every table inside one transaction and writes ``<table>.json`` files."""

    def __init__(
        self,
        gateway: SQLiteGateway,
        schema: Schema,
        *,
        encoding: str = "utf-8",
        indent: Optional[int] = None,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> None:
        self.gateway = gateway
        self.schema = schema
        self.encoding = encoding
        self.indent = indent
        self.progress_callback = progress_callback

    def run(self, target_dir: Path | str) -> ExportSummary:
        target_dir = Path(target_dir)
        snapshot = self.read_snapshot()

        summary = ExportSummary()
        for table, documents in snapshot:
            path = target_dir / f"{table.name}.json"
            write_collection(path, documents, encoding=self.encoding, indent=self.indent)
            summary.tables_exported += 1
            summary.rows_exported += len(documents)
            summary.files.append(path)
            logger.info("exported %d document(s) from %s to %s", len(documents), table.name, path)
        return summary

    def read_snapshot(self) -> List[Tuple[TableDefinition, List[Dict[str, Any]]]]:
        """Rebuild documents for every table from one consistent read transaction."""

        self.gateway.begin()
        try:
            snapshot = [(table, self._read_table(table)) for table in self.schema.tables]
        except BaseException:
            self.gateway.rollback()
            raise
        self.gateway.commit()
        return snapshot

    def _read_table(self, table: TableDefinition) -> List[Dict[str, Any]]:
        cursor = self.gateway.query(f"SELECT * FROM {table.name}")
        columns = [item[0] for item in cursor.description]
        documents: List[Dict[str, Any]] = []
        for row in cursor:
            documents.append(rebuild_document(table, columns, row))
        if not documents:
            raise ExportDataError(
                f"Export failed: {table.name} was unexpectedly empty",
                context={"table": table.name},
            )
        if self.progress_callback:
            self.progress_callback(
                CollectionProgress(
                    collection=table.name,
                    processed=len(documents),
                    total=len(documents),
                    phase="export",
                )
            )
        return documents


def rebuild_document(
    table: TableDefinition,
    columns: Sequence[str],
    row: Sequence[Any],
) -> Dict[str, Any]:
    """Inverse of the import conversion for a single row."""

    types = {column.name: column for column in table.mapped_columns}
    document: Dict[str, Any] = {}
    for name, value in zip(columns, row):
        if name == EXTRA_COLUMN:
            document.update(_parse_extra(table.name, value))
            continue
        column = types.get(name)
        if column is not None and column.is_boolean:
            document[name] = None if value is None else bool(value)
        elif value is None:
            document[name] = None
        else:
            document[name] = str(value)
    return document


def _parse_extra(table: str, raw: Any) -> Dict[str, Any]:
    if raw is None or raw == "":
        return {}
    try:
        payload = json.loads(raw)
    except (TypeError, json.JSONDecodeError) as exc:
        raise ExportDataError(
            f"Column '{EXTRA_COLUMN}' of {table} holds invalid JSON: {exc}",
            context={"table": table},
        ) from exc
    if not isinstance(payload, dict):
        raise ExportDataError(
            f"Column '{EXTRA_COLUMN}' of {table} must hold a JSON object",
            context={"table": table},
        )
    return payload
