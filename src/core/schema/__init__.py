"""Schema model construction and DDL synthesis."""

from .builder import build_schema, load_schema, parse_field
from .ddl import render_ddl, render_statements

__all__ = ["build_schema", "load_schema", "parse_field", "render_ddl", "render_statements"]
