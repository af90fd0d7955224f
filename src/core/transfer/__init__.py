"""Document ⇄ row translation: import and export engines."""

from .exporter import ExportEngine, rebuild_document
from .importer import ImportEngine, coerce_value, convert_document

__all__ = ["ExportEngine", "ImportEngine", "coerce_value", "convert_document", "rebuild_document"]
