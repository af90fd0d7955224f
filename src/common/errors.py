"""Shared error codes and exceptions for schema, transfer and storage layers."""
from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(str, Enum):
    CONFIG_ERROR = "CONFIG_ERROR"
    SCHEMA_ERROR = "SCHEMA_ERROR"
    IMPORT_ERROR = "IMPORT_ERROR"
    EXPORT_ERROR = "EXPORT_ERROR"
    STORAGE_ERROR = "STORAGE_ERROR"


class BackendError(RuntimeError):
    """Exception carrying a structured error code for the CLI and host layers."""

    def __init__(self, code: ErrorCode, message: str, *, context: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.code = code
        self.context = context or {}

    def __str__(self) -> str:  # pragma: no cover - formatting sugar
        base = super().__str__()
        return f"[{self.code.value}] {base}" if base else self.code.value


class _CodedError(BackendError):
    code_value: ErrorCode

    def __init__(self, message: str, *, context: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(self.code_value, message, context=context)


class ConfigError(_CodedError):
    """Configuration missing, unparseable, or empty (schema not initialized)."""

    code_value = ErrorCode.CONFIG_ERROR


class SchemaError(_CodedError):
    """DDL requested for a schema that has no tables."""

    code_value = ErrorCode.SCHEMA_ERROR


class ImportDataError(_CodedError):
    """Malformed collection file, coercion failure, or failed file transaction."""

    code_value = ErrorCode.IMPORT_ERROR


class ExportDataError(_CodedError):
    """Empty table on export or failure writing a collection file."""

    code_value = ErrorCode.EXPORT_ERROR


class StorageError(_CodedError):
    """Failure reported by the underlying store (open, key, SQL execution)."""

    code_value = ErrorCode.STORAGE_ERROR
