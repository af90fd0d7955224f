"""JSON persistence helpers for schema configs and per-collection document files."""
from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from common.errors import ConfigError, ExportDataError, ImportDataError


def load_schema_config(path: Path) -> Any:
    """Read the schema configuration tree from a JSON file."""

    try:
        with path.open("r", encoding="utf-8") as handle:
            return json.load(handle)
    except FileNotFoundError as exc:
        raise ConfigError(f"Schema config '{path}' not found") from exc
    except OSError as exc:
        raise ConfigError(f"Schema config '{path}' could not be read: {exc}") from exc
    except json.JSONDecodeError as exc:
        raise ConfigError(f"Schema config '{path}' is not valid JSON: {exc}") from exc


def parse_schema_config(text: str) -> Any:
    try:
        return json.loads(text)
    except json.JSONDecodeError as exc:
        raise ConfigError(f"Inline schema config is not valid JSON: {exc}") from exc


def collect_collection_files(root: Path) -> List[Path]:
    """Regular files under ``root`` (nested included), sorted by path."""

    return sorted(path for path in root.rglob("*") if path.is_file())


def read_collection(path: Path, *, encoding: str = "utf-8") -> List[Dict[str, Any]]:
    """Load a collection file; it must hold a JSON array of objects."""

    try:
        with path.open("r", encoding=encoding) as handle:
            data = json.load(handle)
    except (OSError, UnicodeDecodeError) as exc:
        raise ImportDataError(f"Collection file '{path}' could not be read: {exc}", context={"file": str(path)}) from exc
    except json.JSONDecodeError as exc:
        raise ImportDataError(f"Collection file '{path}' is not valid JSON: {exc}", context={"file": str(path)}) from exc
    if not isinstance(data, list):
        raise ImportDataError(
            f"Collection file '{path}' must contain a JSON array", context={"file": str(path)}
        )
    for index, item in enumerate(data):
        if not isinstance(item, dict):
            raise ImportDataError(
                f"Collection file '{path}' item {index} is not a JSON object",
                context={"file": str(path), "index": index},
            )
    return data


def write_collection(
    path: Path,
    documents: Iterable[Dict[str, Any]],
    *,
    encoding: str = "utf-8",
    indent: Optional[int] = None,
) -> None:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(
            json.dumps(list(documents), indent=indent, ensure_ascii=False),
            encoding=encoding,
        )
    except OSError as exc:
        raise ExportDataError(f"Failed to write '{path}': {exc}", context={"file": str(path)}) from exc
