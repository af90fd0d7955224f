"""Helpers for loading the runtime configuration profile."""
from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from .errors import ConfigError
from .models import DatabaseSettings, RuntimeConfig, TransferSettings

DEFAULT_CONFIG_PATH = Path("config/defaults.json")


@dataclass(slots=True)
class ConfigDocument:
    source: Path
    version: int
    database: DatabaseSettings
    transfer: TransferSettings


def load_runtime_config(
    *,
    config_path: Optional[Path] = None,
    overrides: Optional[Dict[str, Dict[str, Any]]] = None,
) -> RuntimeConfig:
    """Load configuration JSON, validate it, and apply per-run overrides."""

    document = load_config_document(config_path=config_path, overrides=overrides)
    return RuntimeConfig(database=document.database, transfer=document.transfer)


def load_config_document(
    *,
    config_path: Optional[Path] = None,
    overrides: Optional[Dict[str, Dict[str, Any]]] = None,
) -> ConfigDocument:
    cfg_path = config_path or DEFAULT_CONFIG_PATH
    raw = _read_config_json(cfg_path)
    if not isinstance(raw, Mapping):
        raise ConfigError(f"Config file '{cfg_path}' must contain a JSON object")

    version = _require_positive_int(raw.get("version"), "version", cfg_path)
    overrides = overrides or {}

    database_section = raw.get("database")
    if not isinstance(database_section, Mapping):
        raise ConfigError(f"'database' section missing in {cfg_path}")
    database_data = {**database_section, **(overrides.get("database") or {})}

    transfer_section = raw.get("transfer")
    if transfer_section is None:
        transfer_section = {}
    if not isinstance(transfer_section, Mapping):
        raise ConfigError(f"'transfer' must be an object in {cfg_path}")
    transfer_data = {**transfer_section, **(overrides.get("transfer") or {})}

    return ConfigDocument(
        source=cfg_path,
        version=version,
        database=_build_database_settings(database_data, cfg_path),
        transfer=_build_transfer_settings(transfer_data, cfg_path),
    )


# ---------------------------------------------------------------------------
# Internal helpers


def _read_config_json(path: Path) -> Any:
    try:
        with path.open("r", encoding="utf-8") as handle:
            return json.load(handle)
    except FileNotFoundError as exc:
        raise ConfigError(f"Config file '{path}' not found") from exc
    except json.JSONDecodeError as exc:
        raise ConfigError(f"Config file '{path}' is not valid JSON: {exc}") from exc


def _build_database_settings(data: Mapping[str, Any], source: Path) -> DatabaseSettings:
    path = _require_string(data.get("path", DatabaseSettings().path), "database.path", source)
    key = _optional_string(data.get("encryption_key"), "database.encryption_key", source)
    key_env = _optional_string(data.get("encryption_key_env"), "database.encryption_key_env", source)
    if key is None and key_env:
        # unset variable means an unencrypted store
        key = os.environ.get(key_env) or None
    return DatabaseSettings(path=path, encryption_key=key)


def _build_transfer_settings(data: Mapping[str, Any], source: Path) -> TransferSettings:
    defaults = TransferSettings()
    encoding = _require_string(data.get("encoding", defaults.encoding), "transfer.encoding", source)
    progress_every = _require_positive_int(
        data.get("progress_every", defaults.progress_every), "transfer.progress_every", source
    )
    export_indent = _optional_positive_int(data.get("export_indent"), "transfer.export_indent", source)
    progress_log = _optional_string(data.get("progress_log"), "transfer.progress_log", source)
    return TransferSettings(
        encoding=encoding,
        progress_every=progress_every,
        export_indent=export_indent,
        progress_log=progress_log,
    )


def _require_string(value: Any, field: str, source: Path) -> str:
    if not isinstance(value, str):
        raise ConfigError(f"{field} must be a string in {source}")
    text = value.strip()
    if not text:
        raise ConfigError(f"{field} must be non-empty in {source}")
    return text


def _optional_string(value: Any, field: str, source: Path) -> Optional[str]:
    if value is None:
        return None
    return _require_string(value, field, source)


def _require_positive_int(value: Any, field: str, source: Path) -> int:
    if isinstance(value, bool):
        raise ConfigError(f"{field} must be an integer in {source}")
    try:
        num = int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{field} must be an integer in {source}") from exc
    if num <= 0:
        raise ConfigError(f"{field} must be greater than zero in {source}")
    return num


def _optional_positive_int(value: Any, field: str, source: Path) -> Optional[int]:
    if value is None:
        return None
    return _require_positive_int(value, field, source)
