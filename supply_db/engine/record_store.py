# engine/record_store.py
from __future__ import annotations

import struct
import logging
from typing import Dict, Iterator, List, Optional, Tuple

from .bptree import BPlusTree
from .record import Product, ProductCodec
from ..errors import CorruptRecord, StorageError
from ..storage.region_heap import RegionHeap, RID
from ..storage.regions import Region

log = logging.getLogger(__name__)

# 堆中每个条目：id(u64) | generation(u64) | 编码后的记录
#   generation 每次写同一个 id 加 1；换页更新中途崩溃会留下两份，打开时保留较新的一份
_ENTRY = struct.Struct("<QQ")
ENTRY_HEADER_SIZE = _ENTRY.size


class RecordStore:
    """
    有序持久化映射 id -> Product：
      - 数据：区域内的 slotted 数据页（RegionHeap）
      - 索引：内存 B+ 树 id -> RID，打开时扫描区域重建，只读条目头不解码记录
      - 每次变更在返回前 flush + fsync；换页更新分两步提交（先写新副本，再删旧副本）
    记录字节损坏只在访问该条目时以 CorruptRecord 暴露。
    """

    def __init__(self, region: Region, codec: Optional[ProductCodec] = None, order: int = 64):
        self.region = region
        self.bp = region.bp
        self.codec = codec or ProductCodec()
        self.order = order
        self.heap = RegionHeap(region)
        self.index = BPlusTree(order)
        if self._rebuild_index():
            self._commit()

    # ---------- 打开 / 重建 ----------
    def _rebuild_index(self) -> int:
        """重建索引，返回被清理的旧副本数（清理只改缓冲池，由调用方决定何时落盘）"""
        self.index.clear()
        gens: Dict[int, int] = {}
        stale: List[RID] = []
        for rid, payload in self.heap.scan():
            if len(payload) < _ENTRY.size:
                raise CorruptRecord(f"entry at {rid} is shorter than its header")
            key, gen = _ENTRY.unpack_from(payload, 0)
            seen = self.index.get(key)
            if seen is None:
                self.index.insert(key, rid)
                gens[key] = gen
            elif gen == gens[key]:
                log.error("duplicate entry for id=%d at %s and %s", key, seen, rid)
                raise CorruptRecord(f"duplicate entry for id={key}")
            elif gen > gens[key]:
                stale.append(seen)
                self.index.insert(key, rid)
                gens[key] = gen
            else:
                stale.append(rid)
        for rid in stale:
            self.heap.delete(rid)
        if stale:
            log.warning("dropped %d superseded entr(ies) left by an interrupted update: %s", len(stale), stale)
        log.debug("record index rebuilt: %d entries over %d pages", len(self.index), self.region.size())
        return len(stale)

    def reload(self) -> None:
        """丢弃内存状态，按磁盘（缓冲池）内容重建 FSM 与索引"""
        self.heap.reload()
        self._rebuild_index()

    # ---------- 读 ----------
    def __len__(self) -> int:
        return len(self.index)

    def __contains__(self, id: int) -> bool:
        return id in self.index

    def get(self, id: int) -> Optional[Product]:
        rid = self.index.get(id)
        if rid is None:
            return None
        return self._load(id, rid)

    def items(self, low: Optional[int] = None, high: Optional[int] = None) -> Iterator[Tuple[int, Product]]:
        """按 id 升序遍历"""
        for key, rid in list(self.index.items(low, high)):
            yield key, self._load(key, rid)

    def _load(self, id: int, rid: RID) -> Product:
        payload = self.heap.read(rid)
        key, _ = _ENTRY.unpack_from(payload, 0)
        if key != id:
            raise CorruptRecord(f"entry at {rid} holds id={key}, expected {id}")
        try:
            product = self.codec.decode(payload[_ENTRY.size:])
        except CorruptRecord as e:
            log.error("corrupt record id=%d at %s: %s", id, rid, e)
            raise
        if product.id != id:
            raise CorruptRecord(f"record at {rid} claims id={product.id}, stored under {id}")
        return product

    # ---------- 写 ----------
    def insert_or_replace(self, product: Product) -> None:
        """无条件写入 product.id 处（不存在则插入，存在则覆盖）"""
        record = self.codec.encode(product)
        rid = self.index.get(product.id)
        if rid is None:
            new_rid = self.heap.insert(_ENTRY.pack(product.id, 0) + record)
            self._commit()
            self.index.insert(product.id, new_rid)
            return

        _, gen = _ENTRY.unpack_from(self.heap.read(rid), 0)
        payload = _ENTRY.pack(product.id, gen + 1) + record
        if self.heap.overwrite(rid, payload):
            self._commit()
            return

        # 换页：新副本落盘之后才给旧副本打 tombstone，任何时刻磁盘上都至少有一份完整记录
        new_rid = self.heap.insert(payload, avoid=rid[0])
        self._commit()
        self.index.insert(product.id, new_rid)
        self.heap.delete(rid)
        self._commit()

    def remove(self, id: int) -> Optional[Product]:
        rid = self.index.get(id)
        if rid is None:
            return None
        product = self._load(id, rid)
        self.heap.delete(rid)
        self._commit()
        self.index.delete(id)
        return product

    def _commit(self) -> None:
        try:
            self.bp.flush_all()
        except OSError as e:
            raise StorageError(f"cannot persist region {self.region.id}: {e}") from e
