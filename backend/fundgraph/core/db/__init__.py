from .source import SOURCE_TABLES, RowSource

__all__ = ["SOURCE_TABLES", "RowSource"]
