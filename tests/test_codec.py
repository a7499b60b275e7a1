import struct

import pytest

from supply_db.engine.record import (
    FIXED_OVERHEAD, MAX_SIZE, Product, ProductCodec,
)
from supply_db.errors import CorruptRecord, RecordTooLarge

codec = ProductCodec()


def _product(**kw):
    base = dict(id=7, name="Tea", origin="Assam", current_location="Kolkata", status="In Transit",
                certification="Organic", timestamp=1_700_000_000_000_000_000,
                last_update=1_700_000_000_000_005_000, iot_data='{"temp": 21.5}')
    base.update(kw)
    return Product(**base)


@pytest.mark.parametrize("product", [
    _product(),
    _product(certification=None, last_update=None, iot_data=None),
    _product(id=2**64 - 1, timestamp=2**64 - 1, last_update=0),
    _product(name="咖啡豆", origin="云南", current_location="上海港", status="已发货", iot_data=""),
])
def test_round_trip(product):
    data = codec.encode(product)
    assert codec.decode(data) == product
    assert ProductCodec().encoded_size(product) == len(data)


def test_encoding_is_deterministic():
    assert codec.encode(_product()) == codec.encode(_product())


def test_fixed_overhead():
    p = _product(name="", origin="", current_location="", status="", certification="", iot_data="")
    assert len(codec.encode(p)) == FIXED_OVERHEAD == 53


def test_too_large():
    p = _product(iot_data="x" * MAX_SIZE)
    with pytest.raises(RecordTooLarge) as ei:
        codec.encode(p)
    assert ei.value.limit == MAX_SIZE
    # 上限刚好容纳时可以编码
    fits = _product(iot_data="")
    fits.iot_data = "x" * (MAX_SIZE - len(codec.encode(fits)))
    assert len(codec.encode(fits)) == MAX_SIZE


def test_custom_limit():
    small = ProductCodec(max_size=100)
    with pytest.raises(RecordTooLarge):
        small.encode(_product())
    with pytest.raises(ValueError):
        ProductCodec(max_size=FIXED_OVERHEAD)


def test_decode_rejects_unknown_version():
    data = bytearray(codec.encode(_product()))
    data[0] = 2
    with pytest.raises(CorruptRecord, match="version"):
        codec.decode(bytes(data))


def test_decode_rejects_wrong_field_count():
    data = bytearray(codec.encode(_product()))
    data[1] = 8
    with pytest.raises(CorruptRecord, match="fields"):
        codec.decode(bytes(data))


def test_decode_rejects_truncation():
    data = codec.encode(_product())
    for cut in (0, 1, 5, 20, len(data) - 1):
        with pytest.raises(CorruptRecord):
            codec.decode(data[:cut])


def test_decode_rejects_trailing_bytes():
    with pytest.raises(CorruptRecord, match="trailing"):
        codec.decode(codec.encode(_product()) + b"\x00")


def test_decode_rejects_bad_flag():
    p = _product(certification=None, last_update=None, iot_data=None)
    data = bytearray(codec.encode(p))
    data[-1] = 7  # iot_data 的标志位
    with pytest.raises(CorruptRecord, match="flag"):
        codec.decode(bytes(data))


def test_decode_rejects_invalid_utf8():
    p = _product(name="ab")
    data = bytearray(codec.encode(p))
    # version, count, id(8), name 长度(4) 之后就是 name 的字节
    off = 2 + 8 + 4
    assert struct.unpack_from("<I", data, 10)[0] == 2
    data[off] = 0xFF
    with pytest.raises(CorruptRecord, match="UTF-8"):
        codec.decode(bytes(data))
