# supply_db/errors.py
"""
错误分类：
  - InvalidInput / NotFound：调用方可恢复的错误，原样返回给调用方
  - StorageError 及其子类：存储层致命错误，只中止当前操作
  - RecordTooLarge / ConfigError：编程或配置错误，应在持久化之前暴露
"""
from __future__ import annotations


class SupplyDbError(Exception):
    """supply_db 所有错误的基类。"""


class InvalidInput(SupplyDbError):
    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFound(SupplyDbError):
    def __init__(self, id: int, message: str | None = None):
        super().__init__(message or f"Product with id={id} not found")
        self.id = id


class StorageError(SupplyDbError):
    """存储损坏或写盘失败。"""


class CorruptRecord(StorageError):
    """存储字节无法解码为合法记录。"""


class StorageExhausted(StorageError):
    """物理空间（页数上限）耗尽。"""


class IdExhausted(StorageExhausted):
    """u64 id 已用尽。"""


class RecordTooLarge(SupplyDbError, ValueError):
    def __init__(self, size: int, limit: int):
        super().__init__(f"encoded record is {size} bytes, limit is {limit}")
        self.size = size
        self.limit = limit


class ConfigError(SupplyDbError, ValueError):
    pass
