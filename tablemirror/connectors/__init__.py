"""
Source Connectors
=================

Batch readers for concrete source engines.
"""

from .sql_source import SqlBatchReader, create_source_engine, quote_identifier, split_identifier

__all__ = ["SqlBatchReader", "create_source_engine", "quote_identifier", "split_identifier"]
