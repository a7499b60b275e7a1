"""
Product 记录与定长上界的二进制编解码（v1，小端）：

  version(u8) | field_count(u8) | id(u64)
  | name(str) | origin(str) | current_location(str) | status(str)
  | certification(opt str) | timestamp(u64) | last_update(opt u64) | iot_data(opt str)

  str     = u32 长度 + UTF-8 字节
  opt X   = u8 标志(0/1)，为 1 时后接 X
"""
from __future__ import annotations

import struct
from dataclasses import dataclass, asdict
from typing import Any, Dict, Optional

from ..errors import CorruptRecord, RecordTooLarge

FORMAT_VERSION = 1
FIELD_COUNT = 9
TEXT_FIELD_COUNT = 6
MAX_SIZE = 2048

_HDR = struct.Struct("<BB")
_U64 = struct.Struct("<Q")
_U32 = struct.Struct("<I")
_FLAG = struct.Struct("<B")

# 可选字段全部存在时，除文本字节之外的开销（53 字节）
FIXED_OVERHEAD = (
    _HDR.size
    + 2 * _U64.size
    + 4 * _U32.size
    + 2 * (_FLAG.size + _U32.size)
    + (_FLAG.size + _U64.size)
)


@dataclass
class Product:
    id: int
    name: str
    origin: str
    current_location: str
    status: str
    certification: Optional[str] = None
    timestamp: int = 0
    last_update: Optional[int] = None
    iot_data: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ProductPayload:
    name: str = ""
    origin: str = ""
    current_location: str = ""
    status: str = ""
    certification: Optional[str] = None
    iot_data: Optional[str] = None


def _pack_str(out: bytearray, s: str) -> None:
    b = s.encode("utf-8")
    out += _U32.pack(len(b)) + b


def _pack_opt_str(out: bytearray, s: Optional[str]) -> None:
    if s is None:
        out += _FLAG.pack(0)
    else:
        out += _FLAG.pack(1)
        _pack_str(out, s)


class ProductCodec:
    """编码总长不超过 max_size；解码严格，任何不符都报 CorruptRecord。"""

    def __init__(self, max_size: int = MAX_SIZE):
        if max_size <= FIXED_OVERHEAD:
            raise ValueError(f"max_size must exceed {FIXED_OVERHEAD}")
        self.max_size = max_size

    def encoded_size(self, p: Product) -> int:
        """与 len(encode(p)) 相同，但不检查上限。"""
        size = _HDR.size + 2 * _U64.size + 3 * _FLAG.size
        for s in (p.name, p.origin, p.current_location, p.status, p.certification, p.iot_data):
            if s is not None:
                size += _U32.size + len(s.encode("utf-8"))
        if p.last_update is not None:
            size += _U64.size
        return size

    def encode(self, p: Product) -> bytes:
        out = bytearray(_HDR.pack(FORMAT_VERSION, FIELD_COUNT))
        out += _U64.pack(p.id)
        _pack_str(out, p.name)
        _pack_str(out, p.origin)
        _pack_str(out, p.current_location)
        _pack_str(out, p.status)
        _pack_opt_str(out, p.certification)
        out += _U64.pack(p.timestamp)
        if p.last_update is None:
            out += _FLAG.pack(0)
        else:
            out += _FLAG.pack(1) + _U64.pack(p.last_update)
        _pack_opt_str(out, p.iot_data)
        if len(out) > self.max_size:
            raise RecordTooLarge(len(out), self.max_size)
        return bytes(out)

    def decode(self, data: bytes) -> Product:
        r = _Reader(bytes(data))
        version, count = r.take(_HDR)
        if version != FORMAT_VERSION:
            raise CorruptRecord(f"unknown record format version {version}")
        if count != FIELD_COUNT:
            raise CorruptRecord(f"expected {FIELD_COUNT} fields, found {count}")
        (pid,) = r.take(_U64)
        name = r.text()
        origin = r.text()
        location = r.text()
        status = r.text()
        certification = r.text() if r.flag() else None
        (timestamp,) = r.take(_U64)
        last_update = r.take(_U64)[0] if r.flag() else None
        iot_data = r.text() if r.flag() else None
        if r.pos != len(r.data):
            raise CorruptRecord(f"{len(r.data) - r.pos} trailing byte(s) after record")
        return Product(
            id=pid,
            name=name,
            origin=origin,
            current_location=location,
            status=status,
            certification=certification,
            timestamp=timestamp,
            last_update=last_update,
            iot_data=iot_data,
        )


class _Reader:
    __slots__ = ("data", "pos")

    def __init__(self, data: bytes):
        self.data = data
        self.pos = 0

    def take(self, st: struct.Struct) -> tuple:
        if self.pos + st.size > len(self.data):
            raise CorruptRecord(f"truncated record at offset {self.pos}")
        vals = st.unpack_from(self.data, self.pos)
        self.pos += st.size
        return vals

    def flag(self) -> bool:
        (f,) = self.take(_FLAG)
        if f not in (0, 1):
            raise CorruptRecord(f"bad option flag {f} at offset {self.pos - 1}")
        return f == 1

    def text(self) -> str:
        (n,) = self.take(_U32)
        end = self.pos + n
        if end > len(self.data):
            raise CorruptRecord(f"truncated string at offset {self.pos}")
        try:
            s = self.data[self.pos:end].decode("utf-8")
        except UnicodeDecodeError as e:
            raise CorruptRecord(f"invalid UTF-8 at offset {self.pos}") from e
        self.pos = end
        return s

