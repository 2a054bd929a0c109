import pytest

from tablemirror import RowVersionCodec, ScalarWatermarkCodec


def test_row_version_decodes_big_endian():
    codec = RowVersionCodec()

    assert codec.decode(b"\x00\x00\x00\x00\x00\x00\x07\xd1") == 2001
    assert codec.decode(bytearray(b"\x01\x00")) == 256
    assert codec.decode(memoryview(b"\x00\x02")) == 2


def test_row_version_order_matches_byte_order():
    codec = RowVersionCodec()
    raw = [b"\x00\x00\x00\x00\x00\x00\x01\x00", b"\x00\x00\x00\x00\x00\x00\x00\xff",
           b"\x01\x00\x00\x00\x00\x00\x00\x00"]

    assert sorted(raw) == sorted(raw, key=codec.decode)


def test_row_version_encode():
    codec = RowVersionCodec()

    assert codec.encode(0) == b"\x00" * 8
    assert codec.encode(2001) == b"\x00\x00\x00\x00\x00\x00\x07\xd1"
    assert codec.decode(codec.encode(2 ** 63)) == 2 ** 63


def test_row_version_rejects_out_of_range():
    codec = RowVersionCodec(width=2)

    with pytest.raises(ValueError):
        codec.encode(-1)
    with pytest.raises(ValueError):
        codec.encode(1 << 16)


def test_row_version_rejects_non_bytes():
    with pytest.raises(TypeError):
        RowVersionCodec().decode(42)


def test_scalar_codec_is_identity():
    codec = ScalarWatermarkCodec(initial=-1)

    assert codec.initial == -1
    assert codec.encode(5) == 5
    assert codec.decode(5) == 5
