# engine/context.py
from __future__ import annotations

import logging
from typing import Optional

from .id_gen import MonotonicIdGenerator
from .record import ProductCodec
from .record_store import RecordStore
from ..config import Settings
from ..storage.buffer_pool import BufferPool
from ..storage.cell import Cell
from ..storage.pager import MEMORY, Pager
from ..storage.regions import RegionManager

log = logging.getLogger(__name__)

ID_REGION = 0
RECORD_REGION = 1


class StorageContext:
    """
    一个数据文件对应的全部存储状态：
      Pager -> BufferPool -> RegionManager
        region 0: id 计数器（Cell + MonotonicIdGenerator）
        region 1: 记录（RecordStore）
    由 ProductService 持有；不使用模块级全局变量，测试可用 ":memory:" 或临时文件。
    """

    def __init__(self, settings: Optional[Settings] = None, path: Optional[str] = None):
        self.settings = (settings or Settings()).validate()
        self.path = path or self.settings.data_path
        s = self.settings
        self.pager = Pager(self.path, page_size=s.page_size, max_pages=s.max_pages)
        try:
            self.bp = BufferPool(self.pager, capacity=s.bp_capacity, policy=s.bp_policy)  # type: ignore[arg-type]
            self.regions = RegionManager(self.pager, self.bp)
            self.ids = MonotonicIdGenerator(Cell(self.regions.region(ID_REGION), 0))
            self.codec = ProductCodec(s.max_record_size)
            self.store = RecordStore(self.regions.region(RECORD_REGION), self.codec, order=s.btree_order)
            self.bp.flush_all()
        except BaseException:
            self.pager.close()
            raise
        log.info("opened %s: %d record(s), next id %d", self.path, len(self.store), self.ids.peek())

    @classmethod
    def in_memory(cls, settings: Optional[Settings] = None) -> "StorageContext":
        return cls(settings, path=MEMORY)

    def rollback(self) -> None:
        """中止当前操作：丢弃未落盘的脏页，按磁盘内容重建记录索引"""
        self.bp.discard_dirty()
        self.store.reload()

    def stats(self) -> dict:
        return {
            "path": self.path,
            "records": len(self.store),
            "next_id": self.ids.peek(),
            "pages": self.pager.page_count(),
            "regions": self.regions.region_sizes(),
            "buffer_pool": self.bp.stats,
        }

    def close(self) -> None:
        if self.pager.closed:
            return
        try:
            self.bp.flush_all()
        finally:
            self.pager.close()
        log.info("closed %s", self.path)

    def __enter__(self) -> "StorageContext":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
