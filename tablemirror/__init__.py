"""
tablemirror
===========

In-process, continuously refreshed mirror of an external SQL table.

A replica is kept in sync by polling the source for rows whose watermark
(ROWVERSION column or auto-increment row key) is newer than the last one seen:
- Inserts and updates become upserts
- Rows flagged by a tombstone column become deletes
- The replica is memory-only and rebuilt on every start

Usage:
    from tablemirror import ReplicaSet, ReplicationSettings, column, table

    @table("Users", schema="dbo")
    @dataclass
    class User:
        Id: int = column(row_key=True)
        Name: str = column()

    replicas = ReplicaSet(engine, ReplicationSettings(version_column="RowVersion"))
    users = replicas.table(User)
    replicas.wait_until_ready(timeout=60)
    print(users[42].Name)
"""

from .batch import BatchReader, Record
from .config import ReplicationSettings, load_settings
from .connectors.sql_source import SqlBatchReader, create_source_engine, quote_identifier
from .errors import (
    AmbiguousRowKeyError,
    ConfigurationError,
    FetchTimeoutError,
    MappingError,
    MissingRowKeyError,
    ReplicationError,
    SchemaResolutionError,
    SourceError,
    WatermarkStallError,
)
from .reader import ContinuousReader, ReaderState, RetryPolicy
from .schema import SchemaResolver, TypeSchema, column, default_resolver, ignored, table
from .observability import ReplicationMetrics, configure_logging
from .store import ReplicaStore
from .replica import ReplicaSet, Table
from .watermark import RowVersionCodec, ScalarWatermarkCodec, WatermarkCodec

__version__ = "1.0.0"
__all__ = [
    "AmbiguousRowKeyError",
    "BatchReader",
    "ConfigurationError",
    "ContinuousReader",
    "FetchTimeoutError",
    "MappingError",
    "MissingRowKeyError",
    "ReaderState",
    "Record",
    "ReplicaSet",
    "ReplicaStore",
    "ReplicationMetrics",
    "ReplicationError",
    "ReplicationSettings",
    "RetryPolicy",
    "RowVersionCodec",
    "ScalarWatermarkCodec",
    "SchemaResolutionError",
    "SchemaResolver",
    "SourceError",
    "SqlBatchReader",
    "Table",
    "TypeSchema",
    "WatermarkCodec",
    "WatermarkStallError",
    "column",
    "configure_logging",
    "create_source_engine",
    "default_resolver",
    "ignored",
    "load_settings",
    "quote_identifier",
    "table",
]
