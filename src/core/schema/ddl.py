"""Renders the Schema model into CREATE TABLE statements."""
from __future__ import annotations

from typing import List

from common.errors import SchemaError
from common.models import (
    EXTRA_COLUMN,
    EXTRA_COLUMN_TYPE,
    ID_COLUMN,
    JUNCTION_ID_TYPE,
    JunctionTable,
    Schema,
    TableDefinition,
)

INDENT = "    "


def render_ddl(schema: Schema) -> str:
    """Full DDL script for ``schema``; identical input gives identical text."""

    return "\n\n".join(render_statements(schema)) + "\n"


def render_statements(schema: Schema) -> List[str]:
    if schema.is_empty:
        raise SchemaError("Schema has not been initialized: no tables to render")
    statements: List[str] = []
    rendered_junctions = set()
    for table in schema.tables:
        statements.append(render_table(table))
        for junction in table.junction_tables():
            if junction.name in rendered_junctions:
                continue
            rendered_junctions.add(junction.name)
            statements.append(render_junction_table(junction))
    return statements


def render_table(table: TableDefinition) -> str:
    items: List[str] = []
    for column in table.mapped_columns:
        line = f"{column.name} {column.sql_type}"
        if column.is_primary_key:
            line += " PRIMARY KEY"
        items.append(line)
    items.append(f"{EXTRA_COLUMN} {EXTRA_COLUMN_TYPE}")
    for constraint in table.constraints:
        items.append(
            _foreign_key(constraint.references, constraint.column, constraint.references_on)
        )
    return _create_table(table.name, items)


def render_junction_table(junction: JunctionTable) -> str:
    items = [
        f"{ID_COLUMN} {JUNCTION_ID_TYPE} PRIMARY KEY",
        f"{junction.referenced_id_column} {JUNCTION_ID_TYPE}",
        f"{junction.owner_id_column} {JUNCTION_ID_TYPE}",
        f"{EXTRA_COLUMN} {EXTRA_COLUMN_TYPE}",
        _foreign_key(junction.referenced, junction.referenced_id_column, junction.referenced_column),
        _foreign_key(junction.owner, junction.owner_id_column, junction.owner_column),
    ]
    return _create_table(junction.name, items)


def _create_table(name: str, items: List[str]) -> str:
    body = ",\n".join(INDENT + item for item in items)
    return f"CREATE TABLE {name} (\n{body}\n);"


def _foreign_key(referenced: str, column: str, referenced_column: str) -> str:
    return (
        f"CONSTRAINT fk_{referenced} FOREIGN KEY ({column}) "
        f"REFERENCES {referenced}({referenced_column}) ON DELETE SET NULL"
    )
