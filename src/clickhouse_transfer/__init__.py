"""Moves tabular data between ClickHouse and CSV files."""

__version__ = "0.1.0"
