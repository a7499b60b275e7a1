# region_heap.py
from __future__ import annotations
import logging
from typing import Dict, Iterable, Optional, Tuple

from .data_page import DataPageView, PAGE_OVERHEAD
from .regions import Region

log = logging.getLogger(__name__)

# RID = Record ID，用（区域内虚拟页号, slot_id）唯一标识一条记录
RID = Tuple[int, int]


class RegionHeap:
    """
    “堆”抽象：一个区域 = 若干数据页（虚拟页号 0..N-1）
      - insert(payload) -> RID
      - read(RID) / delete(RID) / overwrite(RID, payload) -> bool
      - scan() -> (RID, bytes) 序列
    FSM（简易版）：vpage -> compact 后可用字节数，打开时按页重建。
    本类只修改缓冲池中的页，是否落盘由上层决定。
    """
    def __init__(self, region: Region):
        self.region = region
        self.fsm: Dict[int, int] = {}
        self.max_payload = region.page_size - PAGE_OVERHEAD
        self._load_fsm()

    # ---------- 读取/扫描 ----------
    def scan(self) -> Iterable[Tuple[RID, bytes]]:
        for vpage in range(self.region.size()):
            mv = self.region.get_page(vpage)
            try:
                page = DataPageView(mv)
                rows = [((vpage, sid), page.read_record(sid)) for sid in page.iter_slots()]
            finally:
                self.region.unpin(vpage, dirty=False)
            yield from rows

    def read(self, rid: RID) -> bytes:
        vpage, sid = rid
        mv = self.region.get_page(vpage)
        try:
            return DataPageView(mv).read_record(sid)
        finally:
            self.region.unpin(vpage, dirty=False)

    # ---------- 插入 ----------
    def insert(self, payload: bytes, avoid: Optional[int] = None) -> RID:
        """
        插入记录：
          - 按 FSM 找第一个放得下的页（跳过 avoid 页）
          - 没有就让区域增长一页
        """
        if len(payload) > self.max_payload:
            raise ValueError(f"payload of {len(payload)} bytes exceeds page capacity {self.max_payload}")
        vpage = self._choose_page_for_insert(len(payload), avoid)
        if vpage is None:
            vpage = self._allocate_data_page()

        mv = self.region.get_page(vpage)
        try:
            page = DataPageView(mv)
            slot_id = page.insert_record(payload)
            self.fsm[vpage] = page.room()
        finally:
            self.region.unpin(vpage, dirty=True)
        return (vpage, slot_id)

    # ---------- 删除 ----------
    def delete(self, rid: RID) -> None:
        vpage, sid = rid
        mv = self.region.get_page(vpage)
        try:
            page = DataPageView(mv)
            page.delete_record(sid)
            self.fsm[vpage] = page.room()
        finally:
            self.region.unpin(vpage, dirty=True)

    # ---------- 页内改写 ----------
    def overwrite(self, rid: RID, new_payload: bytes) -> bool:
        """
        在原页内改写（RID 不变）。放不下时返回 False 且页内容不变，
        由上层决定换页的写入顺序。
        """
        vpage, sid = rid
        mv = self.region.get_page(vpage)
        ok = False
        try:
            page = DataPageView(mv)
            ok = page.overwrite_record(sid, new_payload)
            if ok:
                self.fsm[vpage] = page.room()
        finally:
            self.region.unpin(vpage, dirty=ok)
        return ok

    # ---------- 内部 ----------
    def _choose_page_for_insert(self, need: int, avoid: Optional[int] = None) -> Optional[int]:
        for vpage in range(self.region.size()):
            if vpage != avoid and self.fsm.get(vpage, 0) >= need:
                return vpage
        return None

    def _allocate_data_page(self) -> int:
        vpage = self.region.grow(1)
        self._format(vpage)
        return vpage

    def _format(self, vpage: int) -> None:
        mv = self.region.get_page(vpage)
        try:
            page = DataPageView(mv)
            page.format_empty(vpage)
            self.fsm[vpage] = page.room()
        finally:
            self.region.unpin(vpage, dirty=True)

    def _load_fsm(self) -> None:
        """
        打开时重建 FSM；区域里未格式化的页（增长后尚未写入就崩溃/回滚）在此补格式化。
        """
        self.fsm.clear()
        for vpage in range(self.region.size()):
            mv = self.region.get_page(vpage)
            fresh = False
            try:
                page = DataPageView(mv)
                fresh = not page.is_formatted()
                if fresh:
                    page.format_empty(vpage)
                self.fsm[vpage] = page.room()
            finally:
                self.region.unpin(vpage, dirty=fresh)
            if fresh:
                log.debug("formatted orphan page %d in region %d", vpage, self.region.id)

    def reload(self) -> None:
        self._load_fsm()
