"""SQLite gateway: transactional SQL execution over an optionally encrypted store."""
from __future__ import annotations

import logging
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence

from common.errors import StorageError

try:  # pragma: no cover - optional dependency for encrypted stores
    from sqlcipher3 import dbapi2 as sqlcipher
except ImportError:  # pragma: no cover
    sqlcipher = None  # type: ignore[assignment]

logger = logging.getLogger(__name__)


class SQLiteGateway:
    """Single-connection gateway; one transaction at a time, guarded by a lock."""

    def __init__(self, db_path: Path | str, *, encryption_key: Optional[str] = None) -> None:
        self.db_path = Path(db_path)
        self.encryption_key = encryption_key
        self._driver: Any = sqlite3
        self._conn: Any = None
        self._lock = threading.RLock()
        self._in_transaction = False

    # -- lifecycle ---------------------------------------------------------

    def open(self) -> "SQLiteGateway":
        with self._lock:
            if self._conn is not None:
                return self
            if self.encryption_key is not None:
                if sqlcipher is None:
                    raise StorageError(
                        f"Encrypted store '{self.db_path}' requires the sqlcipher3 driver"
                    )
                self._driver = sqlcipher
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            try:
                conn = self._driver.connect(
                    str(self.db_path), isolation_level=None, check_same_thread=False
                )
            except self._driver.Error as exc:
                raise StorageError(f"Failed to open store '{self.db_path}': {exc}") from exc
            try:
                if self.encryption_key is not None:
                    conn.execute(f"PRAGMA key = {_quote_literal(self.encryption_key)}")
                # fails here on a wrong key or a non-database file
                conn.execute("SELECT count(*) FROM sqlite_master").fetchone()
            except self._driver.Error as exc:
                conn.close()
                raise StorageError(f"Failed to open store '{self.db_path}': {exc}") from exc
            self._conn = conn
            logger.debug("opened store %s (encrypted=%s)", self.db_path, self.encryption_key is not None)
            return self

    def close(self) -> None:
        with self._lock:
            if self._conn is None:
                return
            if self._in_transaction:
                self.rollback()
            self._conn.close()
            self._conn = None
            logger.debug("closed store %s", self.db_path)

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    @property
    def in_transaction(self) -> bool:
        return self._in_transaction

    def __enter__(self) -> "SQLiteGateway":
        return self.open()

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # -- statements --------------------------------------------------------

    def execute_statement(self, sql: str) -> None:
        """Run one or more ``;``-separated statements (DDL, bulk updates)."""

        with self._lock:
            conn = self._require_conn()
            if self._in_transaction:
                raise StorageError("Scripts cannot run inside an open transaction")
            try:
                conn.executescript(sql)
            except self._driver.Error as exc:
                raise StorageError(f"Statement failed: {exc}") from exc

    def execute(self, sql: str, params: Sequence[Any] = ()) -> None:
        with self._lock:
            conn = self._require_conn()
            try:
                conn.execute(sql, tuple(params))
            except self._driver.Error as exc:
                raise StorageError(f"Statement failed: {exc}") from exc

    def query(self, sql: str, params: Sequence[Any] = ()) -> Any:
        """Return a streaming cursor; column names are in ``cursor.description``."""

        with self._lock:
            conn = self._require_conn()
            try:
                return conn.execute(sql, tuple(params))
            except self._driver.Error as exc:
                raise StorageError(f"Query failed: {exc}") from exc

    def fetch_all(self, sql: str, params: Sequence[Any] = ()) -> List[Dict[str, Any]]:
        with self._lock:
            cursor = self.query(sql, params)
            if cursor.description is None:
                return []
            names = [item[0] for item in cursor.description]
            try:
                return [dict(zip(names, row)) for row in cursor.fetchall()]
            except self._driver.Error as exc:
                raise StorageError(f"Query failed: {exc}") from exc

    def insert_or_replace(self, table: str, values: Mapping[str, Any]) -> None:
        if not values:
            raise StorageError(f"No values supplied for insert into '{table}'")
        columns = list(values.keys())
        col_list = ", ".join(_quote_identifier(name) for name in columns)
        placeholders = ", ".join("?" for _ in columns)
        self.execute(
            f"INSERT OR REPLACE INTO {_quote_identifier(table)} ({col_list}) VALUES ({placeholders})",
            [values[name] for name in columns],
        )

    def table_exists(self, name: str) -> bool:
        cursor = self.query(
            "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = ?", (name,)
        )
        return cursor.fetchone() is not None

    def count_rows(self, table: str) -> int:
        row = self.query(f"SELECT count(*) FROM {_quote_identifier(table)}").fetchone()
        return int(row[0]) if row else 0

    # -- transactions ------------------------------------------------------

    def begin(self) -> None:
        with self._lock:
            conn = self._require_conn()
            if self._in_transaction:
                raise StorageError("A transaction is already open on this store")
            try:
                conn.execute("BEGIN")
            except self._driver.Error as exc:
                raise StorageError(f"Failed to begin transaction: {exc}") from exc
            self._in_transaction = True

    def commit(self) -> None:
        with self._lock:
            conn = self._require_conn()
            if not self._in_transaction:
                raise StorageError("No open transaction to commit")
            try:
                conn.execute("COMMIT")
            except self._driver.Error as exc:
                raise StorageError(f"Commit failed: {exc}") from exc
            finally:
                self._in_transaction = False

    def rollback(self) -> None:
        with self._lock:
            conn = self._require_conn()
            if not self._in_transaction:
                return
            try:
                conn.execute("ROLLBACK")
            except self._driver.Error as exc:
                raise StorageError(f"Rollback failed: {exc}") from exc
            finally:
                self._in_transaction = False

    @contextmanager
    def transaction(self) -> Iterator["SQLiteGateway"]:
        self.begin()
        try:
            yield self
        except BaseException:
            self.rollback()
            raise
        self.commit()

    def _require_conn(self) -> Any:
        if self._conn is None:
            raise StorageError(f"Store '{self.db_path}' is not open")
        return self._conn


def _quote_identifier(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


def _quote_literal(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"
