"""Builds the read-only Schema model from the declarative collection config."""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Union

from common.errors import ConfigError
from common.models import (
    DEFAULT_REFERENCE_TYPE,
    ID_COLUMN,
    ColumnDefinition,
    ManyOnConstraint,
    Schema,
    SimpleConstraint,
    TableDefinition,
)
from storage.json_store import load_schema_config, parse_schema_config

logger = logging.getLogger(__name__)

FieldSpec = Union[ColumnDefinition, SimpleConstraint, ManyOnConstraint]


def load_schema(
    config_path: Optional[Path] = None,
    config_text: Optional[str] = None,
) -> Schema:
    """Read the configuration from a file or inline JSON text and build a Schema."""

    if config_path is not None:
        tree = load_schema_config(Path(config_path))
    elif config_text is not None:
        tree = parse_schema_config(config_text)
    else:
        raise ConfigError("Invalid config: neither a config path nor inline config text was supplied")
    return build_schema(tree)


def build_schema(tree: Any) -> Schema:
    """Convert ``{table: {field: descriptor}}`` into a Schema.

    Tables keep configuration order; columns and constraints are sorted by name
    so rendered DDL is stable across runs.
    """

    if not isinstance(tree, Mapping):
        raise ConfigError("Schema config must be a JSON object keyed by table name")
    if not tree:
        raise ConfigError("Schema not initialized: configuration has no tables")
    tables = [_build_table(str(name), fields) for name, fields in tree.items()]
    logger.debug("built schema with %d table(s)", len(tables))
    return Schema(tables=tuple(tables))


def parse_field(table: str, name: str, descriptor: Any) -> FieldSpec:
    """Classify one field descriptor as column, simple reference, or many-on reference."""

    where = f"{table}.{name}"
    if not isinstance(descriptor, Mapping):
        raise ConfigError(f"Field descriptor {where} must be an object")

    references = _optional_string(descriptor.get("references"), where, "references")
    if references is None:
        sql_type = _optional_string(descriptor.get("type"), where, "type")
        if sql_type is None:
            raise ConfigError(f"Field {where} must declare a 'type'")
        return ColumnDefinition(name=name, sql_type=sql_type, is_primary_key=_pk_flag(descriptor, where))

    references_on = _optional_string(descriptor.get("referencesOn"), where, "referencesOn") or ID_COLUMN
    many_on = _optional_string(descriptor.get("manyOn"), where, "manyOn")
    if many_on is None:
        sql_type = _optional_string(descriptor.get("type"), where, "type") or DEFAULT_REFERENCE_TYPE
        return SimpleConstraint(
            column=name,
            references=references,
            references_on=references_on,
            sql_type=sql_type,
            is_primary_key=_pk_flag(descriptor, where),
        )

    array_field, _, inner_key = name.partition("_")
    if not array_field or not inner_key:
        raise ConfigError(
            f"Many-on field {where} must be named '<arrayField>_<innerKey>'"
        )
    if references == table:
        # junction columns <owner>Id and <referenced>Id would collide
        raise ConfigError(f"Many-on field {where} cannot reference its own table")
    return ManyOnConstraint(
        key=name,
        references=references,
        references_on=references_on,
        many_on=many_on,
    )


def _build_table(name: str, fields: Any) -> TableDefinition:
    if not isinstance(fields, Mapping):
        raise ConfigError(f"Table '{name}' must map field names to descriptors")
    if not fields:
        raise ConfigError(f"Table '{name}' declares no fields")

    columns: Dict[str, ColumnDefinition] = {}
    constraints: Dict[str, SimpleConstraint] = {}
    many_on: Dict[str, ManyOnConstraint] = {}
    for field_name, descriptor in fields.items():
        spec = parse_field(name, str(field_name), descriptor)
        if isinstance(spec, ColumnDefinition):
            columns[spec.name] = spec
        elif isinstance(spec, SimpleConstraint):
            constraints[spec.column] = spec
        else:
            many_on[spec.key] = spec

    table = TableDefinition(
        name=name,
        columns=tuple(columns[key] for key in sorted(columns)),
        constraints=tuple(constraints[key] for key in sorted(constraints)),
        many_on=tuple(many_on[key] for key in sorted(many_on)),
    )
    primary_keys: List[str] = [column.name for column in table.mapped_columns if column.is_primary_key]
    if len(primary_keys) > 1:
        raise ConfigError(f"Table '{name}' declares more than one primary key: {sorted(primary_keys)}")
    if table.many_on:
        _check_many_on_owner(table)
    return table


def _check_many_on_owner(table: TableDefinition) -> None:
    # junction rows store the document's _id in the owner FK column
    if ID_COLUMN not in table.column_types():
        raise ConfigError(
            f"Table '{table.name}' has many-on fields but no '{ID_COLUMN}' column"
        )
    pk = table.primary_key
    if pk is not None and pk.name != ID_COLUMN:
        raise ConfigError(
            f"Table '{table.name}' has many-on fields, so its primary key must be '{ID_COLUMN}', not '{pk.name}'"
        )


def _pk_flag(descriptor: Mapping[str, Any], where: str) -> bool:
    pk = descriptor.get("pk", False)
    if pk is None:
        return False
    if not isinstance(pk, bool):
        raise ConfigError(f"Field {where}: 'pk' must be a boolean")
    return pk


def _optional_string(value: Any, where: str, key: str) -> Optional[str]:
    if value is None:
        return None
    if not isinstance(value, str) or not value.strip():
        raise ConfigError(f"Field {where}: '{key}' must be a non-empty string")
    return value.strip()
