# cell.py
from __future__ import annotations

import struct
import logging

from .regions import Region
from ..errors import StorageError

log = logging.getLogger(__name__)

# 单值持久化单元，占用区域开头 12 字节：
#   magic(3s) | layout_version(uint8) | value(uint64)
_CELL_FMT = "<3sBQ"
_CELL_SIZE = struct.calcsize(_CELL_FMT)
_CELL_MAGIC = b"SCL"
_CELL_VERSION = 1


class Cell:
    """
    u64 持久化单元：
      - 区域为空，或区域页全 0（增长后首次写入前崩溃）：写入初始值
      - 否则：从区域读回上次的值（校验 magic / 版本）
    set() 在返回前落盘。
    """

    def __init__(self, region: Region, init_value: int = 0):
        self.region = region
        if region.size() == 0:
            region.grow(1)
        raw = region.read(0, _CELL_SIZE)
        if raw == bytes(_CELL_SIZE):
            self._value = init_value
            self._persist(init_value)
            log.info("initialized cell in region %d with %d", region.id, init_value)
        else:
            magic, version, value = struct.unpack(_CELL_FMT, raw)
            if magic != _CELL_MAGIC:
                raise StorageError(f"region {region.id}: bad cell magic {magic!r}")
            if version != _CELL_VERSION:
                raise StorageError(f"region {region.id}: unsupported cell layout {version}")
            self._value = value

    def get(self) -> int:
        return self._value

    def set(self, value: int) -> int:
        """写入新值并落盘，返回旧值。"""
        old = self._value
        self._persist(value)
        self._value = value
        return old

    def _persist(self, value: int) -> None:
        data = struct.pack(_CELL_FMT, _CELL_MAGIC, _CELL_VERSION, value)
        try:
            self.region.write(0, data)
            self.region.flush()
        except OSError as e:
            raise StorageError(f"cannot persist cell in region {self.region.id}: {e}") from e
