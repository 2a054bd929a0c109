"""
Continuous Reader
=================

Polls a batch reader in a background thread and turns batches into
upsert/delete notifications.

State machine:
    IDLE --start()--> POLLING --stop()--> STOPPED
                         |
                         +--error--> FAILED

Loop body:
1. Stop if cancellation was requested
2. Fetch the next batch since the watermark cursor
3. Empty batch: signal "initial read finished" (once), then sleep `delay`
4. Non-empty batch: dispatch records in ascending watermark order, advance
   the cursor to the batch maximum and poll again immediately (drain mode)
5. Error: fail the initial-read signal if still pending, otherwise report it
   through on_error; the loop ends (unless a RetryPolicy allows a retry)
"""

import logging
import threading
from concurrent.futures import Future, InvalidStateError
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, List, Optional, Set

from .batch import BatchReader, Record
from .errors import (
    ConfigurationError,
    MappingError,
    ReplicationError,
    SchemaResolutionError,
    SourceError,
    WatermarkStallError,
)
from .observability.metrics import TableMetrics
from .observability.structured_logger import log_context

logger = logging.getLogger(__name__)

RecordCallback = Callable[[Record], None]
BatchCallback = Callable[[List[Record]], None]
ErrorCallback = Callable[[BaseException], None]


class ReaderState(Enum):
    IDLE = "idle"
    POLLING = "polling"
    STOPPED = "stopped"
    FAILED = "failed"


@dataclass(frozen=True)
class RetryPolicy:
    """
    Retry behaviour for source errors.

    max_retries=0 (the default) is fail-fast: the first source error ends the
    loop. Otherwise each consecutive failure waits
    min(backoff_base ** attempt, backoff_max) seconds, then fetches again from
    the same cursor. Mapping and schema errors are never retried.
    """

    max_retries: int = 0
    backoff_base: float = 2.0
    backoff_max: float = 60.0

    def __post_init__(self):
        if self.max_retries < 0:
            raise ConfigurationError(f"max_retries must not be negative, got {self.max_retries}")
        if self.backoff_base <= 0 or self.backoff_max <= 0:
            raise ConfigurationError("backoff_base and backoff_max must be positive")

    def backoff(self, attempt: int) -> float:
        return min(self.backoff_base ** attempt, self.backoff_max)

    def should_retry(self, error: BaseException, attempt: int) -> bool:
        if attempt > self.max_retries:
            return False
        if isinstance(error, (MappingError, SchemaResolutionError, WatermarkStallError)):
            return False
        return isinstance(error, SourceError)


@dataclass
class SyncState:
    """Initial-sync flag, one-shot completion signal and watermark cursor."""

    watermark: Any
    initial_sync_done: bool = False
    signal: Future = field(default_factory=Future)


class ContinuousReader:
    """
    Drives the polling loop over a BatchReader.

    Consumers register with on_upsert / on_delete (per record) and on_batch
    (whole batch, dispatched first). Registration must happen before start().
    """

    def __init__(
        self,
        batch_reader: BatchReader,
        delay: float = 0.2,
        on_error: Optional[ErrorCallback] = None,
        cancellation: Optional[threading.Event] = None,
        retry: Optional[RetryPolicy] = None,
        unique_watermark: bool = True,
        name: Optional[str] = None,
        metrics: Optional[TableMetrics] = None
    ):
        """
        Initialize continuous reader.

        Args:
            batch_reader: Source of watermark-ordered batches
            delay: Seconds to wait after an empty poll
            on_error: Called with errors raised after the initial read finished
            cancellation: Event that stops the loop when set (shared or own)
            retry: Retry policy for source errors (default: fail-fast)
            unique_watermark: Watermarks are unique per row. When False the
                reader re-reads rows at the cursor and drops those already seen
            name: Name used in logs and the thread name
            metrics: Optional per-table metrics
        """
        if batch_reader is None:
            raise ConfigurationError("batch_reader is required")
        if delay is None or delay <= 0:
            raise ConfigurationError(f"delay must be positive, got {delay}")
        if not unique_watermark and not batch_reader.has_row_key:
            raise ConfigurationError(
                "unique_watermark=False requires a row key to de-duplicate rows sharing a watermark"
            )

        self.batch_reader = batch_reader
        self.delay = delay
        self.on_error = on_error
        self.retry = retry or RetryPolicy()
        self.unique_watermark = unique_watermark
        self.name = name or batch_reader.name
        self.metrics = metrics

        self._cancel = cancellation or threading.Event()
        self._sync = SyncState(watermark=batch_reader.initial_watermark)
        self._seen_at_cursor: Set[Any] = set()
        self._state = ReaderState.IDLE
        self._lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None
        self._error: Optional[BaseException] = None

        self._upsert_callbacks: List[RecordCallback] = []
        self._delete_callbacks: List[RecordCallback] = []
        self._batch_callbacks: List[BatchCallback] = []

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def on_upsert(self, callback: RecordCallback) -> RecordCallback:
        self._register(self._upsert_callbacks, callback)
        return callback

    def on_delete(self, callback: RecordCallback) -> RecordCallback:
        self._register(self._delete_callbacks, callback)
        return callback

    def on_batch(self, callback: BatchCallback) -> BatchCallback:
        self._register(self._batch_callbacks, callback)
        return callback

    def _register(self, callbacks: list, callback):
        if not callable(callback):
            raise ConfigurationError("callback must be callable")
        with self._lock:
            if self._state is not ReaderState.IDLE:
                raise ReplicationError(f"Reader {self.name} already started; register callbacks before start()")
            callbacks.append(callback)

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def state(self) -> ReaderState:
        return self._state

    @property
    def watermark(self) -> Any:
        return self._sync.watermark

    @property
    def is_initial_read_finished(self) -> bool:
        return self._sync.initial_sync_done

    @property
    def error(self) -> Optional[BaseException]:
        return self._error

    @property
    def cancellation(self) -> threading.Event:
        return self._cancel

    def when_initial_read_finished(self) -> Future:
        """Future resolved once, the first time a poll returns no rows."""
        return self._sync.signal

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self):
        """
        Start the polling thread.

        Raises:
            ReplicationError: if the reader was already started
        """
        with self._lock:
            if self._state is not ReaderState.IDLE:
                raise ReplicationError(f"Reader {self.name} cannot start from state {self._state.value}")
            self._state = ReaderState.POLLING
            self._thread = threading.Thread(
                target=self._run,
                name=f"tablemirror-{self.name}",
                daemon=True
            )
        logger.info(f"Starting reader for {self.name} (delay: {self.delay}s)")
        self._thread.start()

    def stop(self, timeout: Optional[float] = None) -> bool:
        """
        Request cancellation and wait for the loop to exit.

        A still-pending initial-read signal is cancelled so waiters do not block
        forever.

        Returns:
            True if the thread has exited (or never ran)
        """
        self._cancel.set()
        self.batch_reader.cancel()

        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)

        with self._lock:
            if self._state is ReaderState.IDLE:
                self._state = ReaderState.STOPPED
        self._sync.signal.cancel()
        return thread is None or not thread.is_alive()

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------

    def _run(self):
        with log_context(table=self.name):
            try:
                self._poll()
            except Exception as e:
                if self._cancel.is_set():
                    self._finish_stopped()
                else:
                    self._fail(e)
            else:
                self._finish_stopped()

    def _poll(self):
        attempt = 0
        while not self._cancel.is_set():
            try:
                batch = self._read_batch()
            except Exception as e:
                if self._cancel.is_set():
                    return
                attempt += 1
                if not self.retry.should_retry(e, attempt):
                    raise
                backoff = self.retry.backoff(attempt)
                logger.warning(
                    f"Fetch from {self.name} failed (attempt {attempt}/{self.retry.max_retries}), "
                    f"retrying in {backoff:.1f}s: {e}"
                )
                if self.metrics:
                    self.metrics.record_error()
                self._cancel.wait(backoff)
                continue

            attempt = 0
            if self._cancel.is_set():
                return

            if not batch:
                self._signal_initial_read()
                self._cancel.wait(self.delay)
                continue

            self._dispatch(batch)

    def _read_batch(self) -> List[Record]:
        since = self._sync.watermark
        if self.unique_watermark:
            return self.batch_reader.read_next_batch(since)

        raw = self.batch_reader.read_next_batch(since, inclusive=True)
        batch = [
            record for record in raw
            if not (record.watermark == since and record.row_key in self._seen_at_cursor)
        ]
        if len(raw) >= self.batch_reader.batch_size and raw[-1].watermark == since:
            raise WatermarkStallError(
                f"At least {self.batch_reader.batch_size} rows of {self.name} share watermark "
                f"{since!r}; increase batch_size"
            )
        return batch

    def _dispatch(self, batch: List[Record]):
        upserted = deleted = 0

        for callback in self._batch_callbacks:
            callback(batch)

        for record in batch:
            if record.deleted:
                deleted += 1
                for callback in self._delete_callbacks:
                    callback(record)
            else:
                upserted += 1
                for callback in self._upsert_callbacks:
                    callback(record)

        self._advance(batch)
        logger.debug(
            f"Applied batch of {len(batch)} from {self.name}: "
            f"{upserted} upserts, {deleted} deletes, watermark={self._sync.watermark!r}"
        )
        if self.metrics:
            self.metrics.record_batch(upserted, deleted, self._sync.watermark)

    def _advance(self, batch: List[Record]):
        previous = self._sync.watermark
        highest = max(record.watermark for record in batch)
        if not self.unique_watermark:
            at_highest = {record.row_key for record in batch if record.watermark == highest}
            if highest == previous:
                self._seen_at_cursor |= at_highest
            else:
                self._seen_at_cursor = at_highest
        if highest > previous:
            self._sync.watermark = highest

    def _signal_initial_read(self):
        with self._lock:
            if self._sync.initial_sync_done or self._sync.signal.done():
                return
            self._sync.initial_sync_done = True
        logger.info(f"Initial read of {self.name} finished (watermark: {self._sync.watermark!r})")
        try:
            self._sync.signal.set_result(True)
        except InvalidStateError:
            # cancelled by stop()
            pass

    def _finish_stopped(self):
        with self._lock:
            self._state = ReaderState.STOPPED
        self._sync.signal.cancel()
        logger.info(f"Reader for {self.name} stopped")

    def _fail(self, error: BaseException):
        with self._lock:
            self._state = ReaderState.FAILED
            self._error = error
            pending = not self._sync.initial_sync_done and not self._sync.signal.done()

        logger.error(f"Reader for {self.name} failed: {error}", exc_info=error)
        if self.metrics:
            self.metrics.record_error()

        if pending:
            try:
                self._sync.signal.set_exception(error)
            except InvalidStateError:
                pass
            return

        if self.on_error is not None:
            try:
                self.on_error(error)
            except Exception:
                logger.exception(f"Error callback of {self.name} raised")
