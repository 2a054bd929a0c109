"""
Tables and Replica Sets
=======================

Table: one SQL table mirrored in memory (batch reader + continuous reader +
replica store).

ReplicaSet: several tables over one source, started together, ready once
every table finished its initial read.

Usage:
    replicas = ReplicaSet(engine, ReplicationSettings(version_column="RowVersion",
                                                      tombstone_column="IsDeleted"))
    users = replicas.table(User)
    orders = replicas.table(Order, key_func=lambda o: (o.CustomerId, o.Number))

    with replicas:
        replicas.wait_until_ready(timeout=60)
        print(len(users), users.get(42))
"""

import logging
import threading
from concurrent.futures import Future
from pathlib import Path
from typing import Any, Iterable, Iterator, List, Optional, Union

from sqlalchemy.engine import Engine

from .config import ReplicationSettings, load_settings
from .connectors.sql_source import SqlBatchReader, create_source_engine
from .errors import ConfigurationError, ReplicationError
from .observability.metrics import ReplicationMetrics
from .observability.structured_logger import configure_logging
from .reader import ContinuousReader, ErrorCallback, ReaderState, RetryPolicy
from .schema import SchemaResolver
from .store import KeyFunction, ReplicaStore

logger = logging.getLogger(__name__)


def all_of(futures: Iterable[Future]) -> Future:
    """
    Future resolved when every input future succeeded.

    Fails with the first exception raised by any input and is cancelled if
    any input is cancelled.
    """
    futures = list(futures)
    combined = Future()
    remaining = [len(futures)]
    lock = threading.Lock()

    if not futures:
        combined.set_result(True)
        return combined

    def on_done(future: Future):
        with lock:
            if combined.done():
                return
            if future.cancelled():
                combined.cancel()
                return
            error = future.exception()
            if error is not None:
                combined.set_exception(error)
                return
            remaining[0] -= 1
            if remaining[0] == 0:
                combined.set_result(True)

    for future in futures:
        future.add_done_callback(on_done)
    return combined


class Table(ReplicaStore):
    """In-memory replica of one SQL table."""

    def __init__(
        self,
        engine: Engine,
        value_type: type,
        key_func: Optional[KeyFunction] = None,
        table_name: Optional[str] = None,
        version_column: Optional[str] = None,
        tombstone_column: Optional[str] = None,
        fetch_timeout: float = 30,
        batch_size: int = 1000,
        delay: float = 0.2,
        on_error: Optional[ErrorCallback] = None,
        cancellation: Optional[threading.Event] = None,
        retry: Optional[RetryPolicy] = None,
        unique_watermark: bool = True,
        resolver: Optional[SchemaResolver] = None,
        metrics: Optional[ReplicationMetrics] = None
    ):
        """
        Initialize table replica.

        Args:
            engine: SQLAlchemy engine of the source database
            value_type: Dataclass rows are mapped to
            key_func: Application key of a value; defaults to its row key
            table_name: Table override; resolved from value_type when omitted
            version_column: Row version column (version-counter mode)
            tombstone_column: Column flagging deleted rows
            fetch_timeout: Seconds a single fetch may take, 0 for no limit
            batch_size: Maximum rows per fetch
            delay: Seconds between polls once caught up
            on_error: Called with errors raised after the initial read finished
            cancellation: Stops the reader when set
            retry: Retry policy for source errors
            unique_watermark: Watermark values are unique per row
            resolver: Schema resolver (defaults to the shared one)
            metrics: Metrics registry shared by a replica set
        """
        batch_reader = SqlBatchReader(
            engine,
            value_type,
            table_name=table_name,
            version_column=version_column,
            tombstone_column=tombstone_column,
            fetch_timeout=fetch_timeout,
            batch_size=batch_size,
            resolver=resolver
        )
        table_metrics = metrics.for_table(batch_reader.name) if metrics else None
        batch_reader.metrics = table_metrics

        reader = ContinuousReader(
            batch_reader,
            delay=delay,
            on_error=on_error,
            cancellation=cancellation,
            retry=retry,
            unique_watermark=unique_watermark,
            metrics=table_metrics
        )
        self.value_type = value_type
        super().__init__(reader, key_func)

    @property
    def name(self) -> str:
        return self.reader.name

    @property
    def state(self) -> ReaderState:
        return self.reader.state

    @property
    def watermark(self) -> Any:
        return self.reader.watermark

    def start(self) -> Future:
        """Start replicating; returns the initial-read future."""
        self.reader.start()
        return self.when_initial_read_finished()

    def stop(self, timeout: Optional[float] = None) -> bool:
        return self.reader.stop(timeout)


class ReplicaSet:
    """
    Group of tables replicated from one source.

    Per-table options default to the set's ReplicationSettings and can be
    overridden in table().
    """

    def __init__(
        self,
        engine: Engine,
        settings: Optional[ReplicationSettings] = None,
        on_error: Optional[ErrorCallback] = None,
        cancellation: Optional[threading.Event] = None,
        metrics: Optional[ReplicationMetrics] = None,
        resolver: Optional[SchemaResolver] = None
    ):
        if engine is None:
            raise ConfigurationError("engine is required")
        self.engine = engine
        self.settings = (settings or ReplicationSettings()).validate()
        self.on_error = on_error
        self.cancellation = cancellation
        self.metrics = metrics
        self.resolver = resolver
        self._tables: List[Table] = []
        self._ready: Optional[Future] = None
        self._lock = threading.Lock()

    @classmethod
    def from_config(cls, path: Union[str, Path], **kwargs) -> "ReplicaSet":
        """
        Build a replica set from a JSON task file.

        Configures logging from the file's "logging" section and connects to
        the source before returning.
        """
        task = load_settings(path)
        log_settings = task.logging
        configure_logging(
            level=log_settings.get("level", "INFO"),
            json_format=log_settings.get("json_format", False),
            log_to_file=log_settings.get("log_to_file", False),
            log_path=log_settings.get("log_path")
        )
        engine = create_source_engine(task.connection)
        return cls(engine, task.replication, **kwargs)

    def table(
        self,
        value_type: type,
        key_func: Optional[KeyFunction] = None,
        table_name: Optional[str] = None,
        **overrides
    ) -> Table:
        """
        Register a table.

        Args:
            value_type: Dataclass rows are mapped to
            key_func: Application key of a value; defaults to its row key
            table_name: Table override
            **overrides: Per-table ReplicationSettings fields

        Returns:
            The registered Table
        """
        settings = self.settings.merged(**overrides)
        with self._lock:
            if self._ready is not None:
                raise ReplicationError("Tables must be registered before init()")
            table = Table(
                self.engine,
                value_type,
                key_func=key_func,
                table_name=table_name,
                version_column=settings.version_column,
                tombstone_column=settings.tombstone_column,
                fetch_timeout=settings.fetch_timeout,
                batch_size=settings.batch_size,
                delay=settings.delay,
                on_error=self.on_error,
                cancellation=self.cancellation,
                retry=RetryPolicy(settings.max_retries, settings.backoff_base, settings.backoff_max),
                unique_watermark=settings.unique_watermark,
                resolver=self.resolver,
                metrics=self.metrics
            )
            self._tables.append(table)
        logger.info(f"Registered table {table.name} ({value_type.__name__})")
        return table

    @property
    def tables(self) -> List[Table]:
        return list(self._tables)

    def __iter__(self) -> Iterator[Table]:
        return iter(self.tables)

    def __len__(self) -> int:
        return len(self._tables)

    def init(self) -> Future:
        """
        Start every table.

        Returns:
            Future resolved once all tables finished their initial read; failed
            with the first table error
        """
        with self._lock:
            if self._ready is not None:
                return self._ready
            tables = list(self._tables)
            for table in tables:
                table.start()
            self._ready = all_of(table.when_initial_read_finished() for table in tables)

        logger.info(f"Started {len(tables)} tables")
        return self._ready

    def wait_until_ready(self, timeout: Optional[float] = None):
        """
        Start (if needed) and block until every table finished its initial read.

        Raises:
            concurrent.futures.TimeoutError: not ready within timeout
            Exception: the error that failed a table's initial read
        """
        return self.init().result(timeout)

    def stop(self, timeout: Optional[float] = None):
        for table in self.tables:
            table.stop(timeout)
        logger.info("Replica set stopped")

    def __enter__(self) -> "ReplicaSet":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.stop()
