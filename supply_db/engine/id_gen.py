# engine/id_gen.py
from __future__ import annotations

import logging

from ..errors import IdExhausted
from ..storage.cell import Cell

log = logging.getLogger(__name__)

U64_MAX = 2**64 - 1


class MonotonicIdGenerator:
    """
    单调递增 id 生成器：
      - next() 读出当前值作为新 id，并把 current+1 落盘后才返回
      - 计数器只增不减，删除记录不会让 id 被复用
    """

    def __init__(self, cell: Cell):
        self.cell = cell

    def peek(self) -> int:
        """下一次 next() 会返回的值（不消耗）"""
        return self.cell.get()

    def next(self) -> int:
        current = self.cell.get()
        if current >= U64_MAX:
            raise IdExhausted(f"identifier space exhausted at {current}")
        # 写盘失败时 Cell 抛 StorageError，调用方的操作随之中止
        self.cell.set(current + 1)
        log.debug("allocated id %d", current)
        return current
