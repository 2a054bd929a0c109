"""
Watermark Codecs
================

Conversion between the raw watermark a source returns and a comparable
watermark value.

- ScalarWatermarkCodec: auto-increment row keys, raw and watermark coincide
- RowVersionCodec: ROWVERSION / TIMESTAMP columns transported as big-endian
  byte sequences, decoded to an unsigned integer
"""

from typing import Any


class WatermarkCodec:
    """Converts between raw source watermarks and ordered watermark values."""

    initial: Any = 0

    def encode(self, watermark: Any) -> Any:
        raise NotImplementedError

    def decode(self, raw: Any) -> Any:
        raise NotImplementedError


class ScalarWatermarkCodec(WatermarkCodec):
    """Identity codec for natively ordered scalars (integer row keys)."""

    def __init__(self, initial: Any = 0):
        self.initial = initial

    def encode(self, watermark: Any) -> Any:
        return watermark

    def decode(self, raw: Any) -> Any:
        return raw

    def __repr__(self):
        return f"ScalarWatermarkCodec(initial={self.initial!r})"


class RowVersionCodec(WatermarkCodec):
    """
    Big-endian unsigned integer codec.

    The source orders row versions by comparing their bytes, most significant
    first. Decoding always reads the bytes in big-endian order, so the decoded
    integers sort exactly as the source sorts the raw values.
    """

    initial = 0

    def __init__(self, width: int = 8):
        if width <= 0:
            raise ValueError(f"width must be positive, got {width}")
        self.width = width
        self._max = (1 << (8 * width)) - 1

    def encode(self, watermark: int) -> bytes:
        """
        Encode a watermark as `width` big-endian bytes.

        Raises:
            ValueError: if the watermark is negative or does not fit in `width` bytes
        """
        watermark = int(watermark)
        if watermark < 0 or watermark > self._max:
            raise ValueError(f"Watermark {watermark} out of range for {self.width}-byte row version")
        return watermark.to_bytes(self.width, byteorder="big", signed=False)

    def decode(self, raw) -> int:
        """Decode a big-endian byte sequence of any width."""
        if isinstance(raw, memoryview):
            raw = raw.tobytes()
        if not isinstance(raw, (bytes, bytearray)):
            raise TypeError(f"Row version must be a byte sequence, got {type(raw).__name__}")
        return int.from_bytes(raw, byteorder="big", signed=False)

    def __repr__(self):
        return f"RowVersionCodec(width={self.width})"
