"""Coordinator owning the single store handle and its dedicated worker thread."""
from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from common.errors import StorageError
from common.models import CollectionProgress, ExportSummary, ImportSummary, RuntimeConfig, Schema
from common.progress import ProgressLogger
from core.schema import render_ddl
from core.transfer import ExportEngine, ImportEngine
from storage.sqlite_store import SQLiteGateway

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[CollectionProgress], None]


class StoreCoordinator:
    """Serializes every store operation onto one background worker.

    Each public method submits work and returns a Future; callers wait on
    ``result()`` for completion or the typed error.
    """

    def __init__(self, settings: RuntimeConfig) -> None:
        self.settings = settings
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="store-io")
        self._gateway: Optional[SQLiteGateway] = None
        self._schema: Optional[Schema] = None
        self._closed = False
        progress_log = settings.transfer.progress_log
        self._progress_logger = ProgressLogger(Path(progress_log)) if progress_log else None

    @property
    def schema(self) -> Optional[Schema]:
        return self._schema

    def configure(self, schema: Schema, *, reset: bool = False) -> "Future[None]":
        """Open (or recreate with ``reset``) the store and create missing tables."""

        return self._executor.submit(self._configure, schema, reset)

    def import_data(
        self, root: Path | str, progress_callback: Optional[ProgressCallback] = None
    ) -> "Future[ImportSummary]":
        return self._executor.submit(self._import, Path(root), progress_callback)

    def export_data(
        self, target_dir: Path | str, progress_callback: Optional[ProgressCallback] = None
    ) -> "Future[ExportSummary]":
        return self._executor.submit(self._export, Path(target_dir), progress_callback)

    def perform_select(self, sql: str) -> "Future[List[Dict[str, Any]]]":
        return self._executor.submit(lambda: self._require_gateway().fetch_all(sql))

    def perform_update(self, sql: str) -> "Future[None]":
        return self._executor.submit(lambda: self._require_gateway().execute_statement(sql))

    def close(self) -> None:
        """Close the store on the worker, then stop the worker. Safe to call twice."""

        if self._closed:
            return
        self._closed = True
        try:
            self._executor.submit(self._close).result()
        finally:
            self._executor.shutdown(wait=True)

    def __enter__(self) -> "StoreCoordinator":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # -- worker-side -------------------------------------------------------

    def _configure(self, schema: Schema, reset: bool) -> None:
        self._close()
        db_path = Path(self.settings.database.path)
        if reset and db_path.exists():
            logger.info("removing existing store %s", db_path)
            db_path.unlink()
        gateway = SQLiteGateway(db_path, encryption_key=self.settings.database.encryption_key).open()
        try:
            names = schema.table_names + [junction.name for junction in schema.junction_tables()]
            present = [name for name in names if gateway.table_exists(name)]
            if not present:
                gateway.execute_statement(render_ddl(schema))
                logger.info("created %d table(s) in %s", len(names), db_path)
            elif len(present) != len(names):
                missing = sorted(set(names) - set(present))
                raise StorageError(
                    f"Store '{db_path}' holds a partial schema (missing {missing}); reconfigure with reset",
                    context={"missing": missing},
                )
        except StorageError:
            gateway.close()
            raise
        self._gateway = gateway
        self._schema = schema

    def _import(self, root: Path, callback: Optional[ProgressCallback]) -> ImportSummary:
        engine = ImportEngine(
            self._require_gateway(),
            self._require_schema(),
            encoding=self.settings.transfer.encoding,
            progress_callback=self._progress_sink(callback),
            progress_every=self.settings.transfer.progress_every,
        )
        return engine.run(root)

    def _export(self, target_dir: Path, callback: Optional[ProgressCallback]) -> ExportSummary:
        engine = ExportEngine(
            self._require_gateway(),
            self._require_schema(),
            encoding=self.settings.transfer.encoding,
            indent=self.settings.transfer.export_indent,
            progress_callback=self._progress_sink(callback),
        )
        return engine.run(target_dir)

    def _close(self) -> None:
        if self._gateway is not None:
            self._gateway.close()
            self._gateway = None

    def _progress_sink(self, callback: Optional[ProgressCallback]) -> Optional[ProgressCallback]:
        progress_logger = self._progress_logger
        if callback is None and progress_logger is None:
            return None

        def sink(progress: CollectionProgress) -> None:
            if progress_logger is not None:
                progress_logger.emit(progress)
            if callback is not None:
                callback(progress)

        return sink

    def _require_gateway(self) -> SQLiteGateway:
        if self._gateway is None:
            raise StorageError("Store not configured; call configure() first")
        return self._gateway

    def _require_schema(self) -> Schema:
        if self._schema is None:
            raise StorageError("Store not configured; call configure() first")
        return self._schema
