"""
SQL Source Connector
====================

Batch reader over any SQLAlchemy-supported database.
Reads rows newer than a watermark, ordered ascending, one bounded batch at a time.
"""

import logging
import threading
import time
from typing import Any, Dict, List, Optional, Union

from sqlalchemy import create_engine, text
from sqlalchemy.engine import URL, Connection, Engine
from sqlalchemy.exc import SQLAlchemyError

from ..batch import BatchReader, Record
from ..config import build_connection_url
from ..errors import ConfigurationError, FetchTimeoutError, MappingError, SourceError
from ..observability.metrics import TableMetrics
from ..schema import NAMESPACE_SEPARATOR, SchemaResolver, default_resolver
from ..watermark import RowVersionCodec, ScalarWatermarkCodec

logger = logging.getLogger(__name__)

QUOTE_CHARS = '[]"`'


def split_identifier(name: str) -> List[str]:
    """
    Split a possibly qualified identifier and strip existing quoting.

    "[dbo].[User]" -> ["dbo", "User"]
    """
    if not name or not name.strip():
        raise ConfigurationError("Identifier must not be empty")
    parts = [part.strip().strip(QUOTE_CHARS).strip() for part in name.split(NAMESPACE_SEPARATOR)]
    if not all(parts):
        raise ConfigurationError(f"Malformed identifier: {name!r}")
    return parts


def quote_identifier(name: str, dialect) -> str:
    """
    Quote every segment of an identifier with the dialect's quoting rule.

    Args:
        name: Table or column name, optionally schema-qualified and/or already quoted
        dialect: SQLAlchemy dialect of the target source

    Returns:
        Quoted identifier, e.g. [dbo].[User] on SQL Server, "dbo"."User" on PostgreSQL
    """
    preparer = dialect.identifier_preparer
    return NAMESPACE_SEPARATOR.join(preparer.quote_identifier(part) for part in split_identifier(name))


def create_source_engine(connection: Union[str, URL, Dict], **engine_kwargs) -> Engine:
    """
    Create and verify an engine for the source database.

    Args:
        connection: SQLAlchemy URL, or dict with driver, host, port, database, username, password
        **engine_kwargs: Passed through to sqlalchemy.create_engine

    Returns:
        Connected SQLAlchemy engine
    """
    if not connection:
        raise ConfigurationError("Source connection is required")
    url = connection if isinstance(connection, (str, URL)) else build_connection_url(connection)
    engine = create_engine(url, **engine_kwargs)

    # Test connection
    with engine.connect() as conn:
        conn.execute(text("SELECT 1"))

    logger.info(f"Connected to source: {engine.url.render_as_string(hide_password=True)}")
    return engine


class SqlBatchReader(BatchReader):
    """
    Watermark-ordered batch reader for a SQL table.

    Two watermark modes:
    - version_column given: the column holds a big-endian row version
      (SQL Server ROWVERSION); rows are identified by the schema row key
    - otherwise: the schema row key is an increasing integer and doubles as
      the watermark
    """

    def __init__(
        self,
        engine: Engine,
        value_type: type,
        table_name: Optional[str] = None,
        version_column: Optional[str] = None,
        tombstone_column: Optional[str] = None,
        fetch_timeout: float = 30,
        batch_size: int = 1000,
        resolver: Optional[SchemaResolver] = None,
        metrics: Optional[TableMetrics] = None
    ):
        """
        Initialize SQL batch reader.

        Args:
            engine: SQLAlchemy engine of the source database
            value_type: Dataclass rows are mapped to
            table_name: Table override; resolved from value_type when omitted
            version_column: Row version column; enables version-counter mode
            tombstone_column: Column flagging deleted rows; None disables delete detection
            fetch_timeout: Seconds a single fetch may take, 0 for no limit
            batch_size: Maximum rows per fetch
            resolver: Schema resolver (defaults to the shared one)
            metrics: Optional per-table metrics
        """
        if engine is None:
            raise ConfigurationError("engine is required")
        if batch_size is None or batch_size <= 0:
            raise ConfigurationError(f"batch_size must be positive, got {batch_size}")
        if fetch_timeout is None or fetch_timeout < 0:
            raise ConfigurationError(f"fetch_timeout must not be negative, got {fetch_timeout}")

        self.engine = engine
        self.batch_size = batch_size
        self.fetch_timeout = fetch_timeout
        self.metrics = metrics

        resolver = resolver or default_resolver
        self.schema = resolver.resolve(
            value_type,
            table_name=table_name,
            require_row_key=version_column is None
        )

        if version_column:
            self.codec = RowVersionCodec()
            self.watermark_column = split_identifier(version_column)[-1]
        else:
            self.codec = ScalarWatermarkCodec()
            self.watermark_column = self.schema.row_key_column
        self.tombstone_column = split_identifier(tombstone_column)[-1] if tombstone_column else None
        self.name = self.schema.table_name

        self._queries = {
            False: text(self.build_query(inclusive=False)),
            True: text(self.build_query(inclusive=True)),
        }
        self._lock = threading.Lock()
        self._active: Optional[Connection] = None
        self._timed_out = False

    @property
    def has_row_key(self) -> bool:
        return self.schema.row_key_member is not None

    @property
    def in_flight(self) -> bool:
        """Whether a fetch is currently executing."""
        with self._lock:
            return self._active is not None

    def build_query(self, inclusive: bool = False) -> str:
        """
        Build the batch query for the engine's dialect.

        Args:
            inclusive: Use >= instead of > against the watermark

        Returns:
            SQL text with :since and :batch_size parameters
        """
        dialect = self.engine.dialect

        selected = list(self.schema.columns)
        for extra in (self.tombstone_column, self.watermark_column):
            if extra and extra not in selected:
                selected.append(extra)

        columns = ", ".join(quote_identifier(c, dialect) for c in selected)
        table = quote_identifier(self.schema.table_name, dialect)
        watermark = quote_identifier(self.watermark_column, dialect)
        operator = ">=" if inclusive else ">"

        order_by = f"{watermark} ASC"
        row_key = self.schema.row_key_column
        if inclusive and row_key and row_key != self.watermark_column:
            order_by += f", {quote_identifier(row_key, dialect)} ASC"

        if dialect.name == "mssql":
            return f"""
                SELECT TOP (:batch_size) {columns}
                FROM {table}
                WHERE {watermark} {operator} :since
                ORDER BY {order_by}
            """
        if dialect.name == "oracle":
            return f"""
                SELECT {columns}
                FROM {table}
                WHERE {watermark} {operator} :since
                ORDER BY {order_by}
                FETCH FIRST :batch_size ROWS ONLY
            """
        return f"""
            SELECT {columns}
            FROM {table}
            WHERE {watermark} {operator} :since
            ORDER BY {order_by}
            LIMIT :batch_size
        """

    def read_next_batch(self, since: Any, inclusive: bool = False) -> List[Record]:
        """
        Fetch the next batch after `since`.

        Raises:
            SourceError: driver or transport failure
            FetchTimeoutError: fetch exceeded fetch_timeout
            MappingError: a row does not match the value type
        """
        params = {"since": self.codec.encode(since), "batch_size": self.batch_size}
        started = time.monotonic()

        try:
            with self.engine.connect() as conn:
                rows = self._execute(conn, self._queries[inclusive], params)
        except SQLAlchemyError as e:
            if self._timed_out:
                raise FetchTimeoutError(
                    f"Fetch from {self.name} exceeded {self.fetch_timeout}s and was interrupted"
                ) from e
            raise SourceError(f"Fetch from {self.name} failed: {e}") from e
        finally:
            if self.metrics:
                self.metrics.observe_fetch(time.monotonic() - started)

        logger.debug(f"Fetched {len(rows)} rows from {self.name} (since: {since})")
        return [self._parse_row(row) for row in rows]

    def cancel(self) -> bool:
        """
        Interrupt the in-flight query through the DBAPI connection.

        Uses cancel() (psycopg2, pyodbc) or interrupt() (sqlite3) when the driver
        offers one.

        Returns:
            True if a running query was signalled
        """
        with self._lock:
            conn = self._active
            if conn is None:
                return False
            dbapi_connection = conn.connection.dbapi_connection

        for method_name in ("cancel", "interrupt"):
            method = getattr(dbapi_connection, method_name, None)
            if callable(method):
                method()
                logger.debug(f"Interrupted in-flight fetch from {self.name}")
                return True

        logger.warning(f"Driver for {self.name} cannot interrupt a running query")
        return False

    def _execute(self, conn: Connection, statement, params: Dict) -> List:
        timer = None
        self._timed_out = False
        with self._lock:
            self._active = conn
        try:
            if self.fetch_timeout:
                timer = threading.Timer(self.fetch_timeout, self._on_timeout)
                timer.daemon = True
                timer.start()
            return conn.execute(statement, params).mappings().all()
        finally:
            if timer is not None:
                timer.cancel()
            with self._lock:
                self._active = None

    def _on_timeout(self):
        self._timed_out = True
        self.cancel()

    def _parse_row(self, row) -> Record:
        value = self.schema.build(row)

        try:
            raw_watermark = row[self.watermark_column]
        except KeyError:
            raise MappingError(self.schema.type_name, self.watermark_column) from None
        try:
            watermark = self.codec.decode(raw_watermark)
        except (TypeError, ValueError) as e:
            raise MappingError(
                self.schema.type_name,
                self.watermark_column,
                f"Cannot decode watermark column '{self.watermark_column}': {e}"
            ) from e

        deleted = False
        if self.tombstone_column:
            try:
                deleted = bool(row[self.tombstone_column])
            except KeyError:
                raise MappingError(self.schema.type_name, self.tombstone_column) from None

        row_key = None
        if self.schema.row_key_member is not None:
            row_key = getattr(value, self.schema.row_key_member)

        return Record(watermark=watermark, value=value, deleted=deleted, row_key=row_key)
