"""Data extraction from console tables."""

from openconsole.extraction.tables import TableExtractor, rows_to_records

__all__ = ["TableExtractor", "rows_to_records"]
