"""Input parsers for bulk transaction imports."""

from .csv_parser import ParseResult, ParsedRow, RowError, parse_csv

__all__ = ["ParseResult", "ParsedRow", "RowError", "parse_csv"]
