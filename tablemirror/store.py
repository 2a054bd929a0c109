"""
Replica Store
=============

Concurrent keyed mirror of a source table, fed by a ContinuousReader.

Only the reader's thread mutates the store, one whole batch at a time under
the store lock; any number of threads may read concurrently and always see
whole batches.
"""

import dataclasses
import logging
import threading
from collections.abc import Mapping
from concurrent.futures import Future
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

import pandas as pd

from .batch import Record
from .errors import ConfigurationError
from .reader import ContinuousReader

logger = logging.getLogger(__name__)

KeyFunction = Callable[[Any], Any]


def row_key_function(reader: ContinuousReader) -> KeyFunction:
    """
    Default key function: the value's row-key member.

    Raises:
        ConfigurationError: the value type has no resolvable row key
    """
    schema = getattr(reader.batch_reader, "schema", None)
    if schema is None or schema.row_key_member is None:
        raise ConfigurationError(
            f"{reader.name} has no resolvable row key; pass key_func explicitly"
        )
    member = schema.row_key_member
    return lambda value: getattr(value, member)


class ReplicaStore(Mapping):
    """
    Read-only mapping view over the replicated rows.

    Supports len(), `in`, item lookup, get() and iteration; keys(), values()
    and items() return snapshots.
    """

    def __init__(self, reader: ContinuousReader, key_func: Optional[KeyFunction] = None):
        """
        Initialize replica store and subscribe to the reader.

        Args:
            reader: Reader whose batches are applied to this store
            key_func: Maps a value to its application key; defaults to the row key
        """
        if reader is None:
            raise ConfigurationError("reader is required")
        self._reader = reader
        self._key_func = key_func or row_key_function(reader)
        self._data: Dict[Any, Any] = {}
        self._lock = threading.RLock()
        reader.on_batch(self._apply_batch)

    @property
    def reader(self) -> ContinuousReader:
        return self._reader

    def when_initial_read_finished(self) -> Future:
        return self._reader.when_initial_read_finished()

    def _apply_batch(self, batch: List[Record]):
        # keys are computed up front so a failing key_func leaves the store untouched
        changes = [(self._key_func(record.value), record) for record in batch]
        with self._lock:
            for key, record in changes:
                if record.deleted:
                    self._data.pop(key, None)
                else:
                    self._data[key] = record.value
            count = len(self._data)
        if self._reader.metrics:
            self._reader.metrics.set_replica_rows(count)

    def __getitem__(self, key) -> Any:
        with self._lock:
            return self._data[key]

    def __contains__(self, key) -> bool:
        with self._lock:
            return key in self._data

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)

    def __iter__(self) -> Iterator:
        return iter(self.keys())

    def get(self, key, default=None) -> Any:
        with self._lock:
            return self._data.get(key, default)

    def keys(self) -> List:
        with self._lock:
            return list(self._data.keys())

    def values(self) -> List:
        with self._lock:
            return list(self._data.values())

    def items(self) -> List[Tuple[Any, Any]]:
        with self._lock:
            return list(self._data.items())

    def snapshot(self) -> Dict[Any, Any]:
        """Consistent copy of the replica."""
        with self._lock:
            return dict(self._data)

    def to_dataframe(self) -> pd.DataFrame:
        """
        Snapshot the replica as a DataFrame indexed by key.

        Returns:
            DataFrame with one column per dataclass field
        """
        items = self.items()
        records = [dataclasses.asdict(value) for _, value in items]
        return pd.DataFrame(records, index=pd.Index([key for key, _ in items], name="key"))

    def __repr__(self):
        return f"{type(self).__name__}({self._reader.name!r}, rows={len(self)})"
