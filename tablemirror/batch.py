"""
Batch Reader Contract
=====================

A batch reader issues one bounded, watermark-ordered fetch:
"rows with watermark > since, ascending, at most batch_size of them".
"""

from typing import Any, List, NamedTuple, Optional

from .watermark import WatermarkCodec


class Record(NamedTuple):
    """One fetched row: its watermark, decoded value and tombstone flag."""

    watermark: Any
    value: Any
    deleted: bool = False
    row_key: Optional[Any] = None


class BatchReader:
    """
    Base class for batch readers.

    Subclasses implement read_next_batch. Repeated calls with the same
    `since` against an unchanged source must return equal batches.
    """

    batch_size: int
    codec: WatermarkCodec
    name: str = "batch-reader"

    @property
    def initial_watermark(self) -> Any:
        return self.codec.initial

    @property
    def has_row_key(self) -> bool:
        """Whether records carry the row identity (needed for de-duplication)."""
        return False

    def read_next_batch(self, since: Any, inclusive: bool = False) -> List[Record]:
        """
        Read the next batch after `since`.

        Args:
            since: Watermark to read after
            inclusive: Also return rows whose watermark equals `since`

        Returns:
            Records ordered ascending by watermark
        """
        raise NotImplementedError

    def cancel(self):
        """Interrupt an in-flight fetch, if the source supports it."""
        pass
