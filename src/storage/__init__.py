"""Storage providers: SQLite gateway and JSON collection files."""

from .json_store import (
	collect_collection_files,
	load_schema_config,
	parse_schema_config,
	read_collection,
	write_collection,
)
from .sqlite_store import SQLiteGateway

__all__ = [
	"SQLiteGateway",
	"collect_collection_files",
	"load_schema_config",
	"parse_schema_config",
	"read_collection",
	"write_collection",
]
