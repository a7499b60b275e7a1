# data_page.py
from __future__ import annotations
import struct
from typing import Iterable, Optional, Tuple

# ---------------- 页面内部布局定义 ----------------
# Header 格式: page_no(uint32) | free_off(uint16) | slot_count(uint16) | flags(uint16)
#   - page_no     区域内的虚拟页号
#   - free_off    数据区已经使用到的偏移（从头部向上增长）；0 表示页尚未格式化
#   - slot_count  槽目录中已有的槽数量（含 tombstone）
#   - flags       预留
_HDR_FMT = "<IHHH"
_HDR_SIZE = struct.calcsize(_HDR_FMT)  # 10 字节

# Slot entry 格式: offset(uint16) | length(uint16) | tombstone(uint8) | pad(uint8)
_SLOT_FMT = "<HHBx"
_SLOT_SIZE = struct.calcsize(_SLOT_FMT)  # 6 字节

# 一页放入一条记录的最小额外开销
PAGE_OVERHEAD = _HDR_SIZE + _SLOT_SIZE


class DataPageView:
    """
    针对单个数据页的“视图”，直接基于 memoryview 操作，不复制字节。

    页面逻辑布局（固定大小）:
    [ Header | .... Data area (↑向上增长) .... | Slot[n-1] ... Slot[0] ]

    删除只打 tombstone；插入优先复用 tombstone 槽；
    连续空间不够而死空间够时，compact() 原地整理，slot_id 保持不变。
    """

    def __init__(self, mv: memoryview):
        assert mv.readonly is False, "DataPageView requires writable memoryview"
        self.mv = mv
        self.page_size = len(mv)

    # ---------- Header 读写 ----------
    def _read_header(self):
        return struct.unpack_from(_HDR_FMT, self.mv, 0)

    def _write_header(self, page_no: int, free_off: int, slot_cnt: int, flags: int = 0):
        struct.pack_into(_HDR_FMT, self.mv, 0, page_no, free_off, slot_cnt, flags)

    @property
    def page_no(self) -> int:
        return self._read_header()[0]

    @property
    def free_off(self) -> int:
        return self._read_header()[1]

    @property
    def slot_count(self) -> int:
        return self._read_header()[2]

    def is_formatted(self) -> bool:
        return self.free_off >= _HDR_SIZE

    def format_empty(self, page_no: int) -> None:
        """把整页清零，并写入初始 header"""
        self.mv[:] = bytes(self.page_size)
        self._write_header(page_no, _HDR_SIZE, 0, 0)

    # ---------- 槽目录操作 ----------
    def _slot_pos(self, slot_id: int) -> int:
        """槽目录从页尾向前增长，第 0 个槽在最末尾。"""
        if not 0 <= slot_id < self.slot_count:
            raise KeyError(f"slot {slot_id} out of range (slot_count={self.slot_count})")
        return self.page_size - (slot_id + 1) * _SLOT_SIZE

    def _read_slot(self, slot_id: int) -> Tuple[int, int, int]:
        return struct.unpack_from(_SLOT_FMT, self.mv, self._slot_pos(slot_id))

    def _write_slot(self, slot_id: int, offset: int, length: int, tomb: int) -> None:
        struct.pack_into(_SLOT_FMT, self.mv, self._slot_pos(slot_id), offset, length, tomb)

    def _find_tomb(self) -> Optional[int]:
        for sid in range(self.slot_count):
            if self._read_slot(sid)[2]:
                return sid
        return None

    # ---------- 空间管理 ----------
    def free_space(self) -> int:
        """
        连续可用空间（为一个新槽预留了槽位）：
          = 页大小 - 数据区末尾 - (现有槽数+1)*槽大小
        """
        return self.page_size - self.free_off - (self.slot_count + 1) * _SLOT_SIZE

    def dead_space(self) -> int:
        """数据区里已删除/被覆盖短了的字节数，compact() 可回收"""
        live = sum(length for _, length in self._live_extents())
        return self.free_off - _HDR_SIZE - live

    def available(self, reuse_slot: bool = False) -> int:
        """compact 之后能放下的最大 payload"""
        extra = _SLOT_SIZE if reuse_slot else 0
        return max(0, self.free_space() + self.dead_space() + extra)

    def room(self) -> int:
        """下一条 insert_record 最多能放多少字节"""
        return self.available(reuse_slot=self._find_tomb() is not None)

    def compact(self) -> None:
        """把存活记录紧凑地挪到数据区开头，slot_id 不变"""
        page_no, _, sc, flags = self._read_header()
        live = []
        for sid in range(sc):
            off, length, tomb = self._read_slot(sid)
            if not tomb:
                live.append((sid, bytes(self.mv[off : off + length])))
        off = _HDR_SIZE
        for sid, payload in live:
            self.mv[off : off + len(payload)] = payload
            self._write_slot(sid, off, len(payload), 0)
            off += len(payload)
        slot_area = self.page_size - sc * _SLOT_SIZE
        self.mv[off:slot_area] = bytes(slot_area - off)
        self._write_header(page_no, off, sc, flags)

    # ---------- 记录操作 ----------
    def insert_record(self, payload: bytes) -> int:
        """
        插入一条新记录，返回 slot_id：
          - 有 tombstone 槽则复用，否则在槽目录末尾追加
          - 连续空间不够时先 compact
        """
        tomb = self._find_tomb()
        need = len(payload) - (_SLOT_SIZE if tomb is not None else 0)
        if self.free_space() < need:
            if self.available(reuse_slot=tomb is not None) < len(payload):
                raise MemoryError("not enough space in page")
            self.compact()

        page_no, free_off, sc, flags = self._read_header()
        self.mv[free_off : free_off + len(payload)] = payload
        if tomb is None:
            self._write_header(page_no, free_off + len(payload), sc + 1, flags)
            slot_id = sc
        else:
            self._write_header(page_no, free_off + len(payload), sc, flags)
            slot_id = tomb
        self._write_slot(slot_id, free_off, len(payload), 0)
        return slot_id

    def read_record(self, slot_id: int) -> bytes:
        off, length, tomb = self._read_slot(slot_id)
        if tomb:
            raise KeyError(f"slot {slot_id} is deleted")
        return bytes(self.mv[off : off + length])

    def delete_record(self, slot_id: int) -> None:
        """删除记录：只打 tombstone 标记，空间留给 compact 回收"""
        off, length, tomb = self._read_slot(slot_id)
        if tomb:
            return
        self._write_slot(slot_id, off, length, 1)

    def overwrite_record(self, slot_id: int, payload: bytes) -> bool:
        """
        在本页内改写记录（slot_id 不变）：
          - 新长度 <= 原长度：原位覆盖，缩短槽长度
          - 否则：本页（必要时 compact 后）放得下就搬到数据区末尾
          - 都不行返回 False，由上层换页重插
        """
        off, length, tomb = self._read_slot(slot_id)
        if tomb:
            raise KeyError(f"slot {slot_id} is deleted")
        if len(payload) <= length:
            self.mv[off : off + len(payload)] = payload
            self._write_slot(slot_id, off, len(payload), 0)
            return True
        # 旧数据搬走后也算死空间；新记录不需要新槽
        if self.free_space() + _SLOT_SIZE + self.dead_space() + length < len(payload):
            return False
        if self.free_space() + _SLOT_SIZE < len(payload):
            self._write_slot(slot_id, off, length, 1)
            self.compact()
        page_no, free_off, sc, flags = self._read_header()
        self.mv[free_off : free_off + len(payload)] = payload
        self._write_header(page_no, free_off + len(payload), sc, flags)
        self._write_slot(slot_id, free_off, len(payload), 0)
        return True

    # ---------- 遍历 ----------
    def _live_extents(self) -> Iterable[Tuple[int, int]]:
        for sid in range(self.slot_count):
            off, length, tomb = self._read_slot(sid)
            if not tomb:
                yield off, length

    def iter_slots(self) -> Iterable[int]:
        """遍历所有有效记录的 slot_id"""
        for sid in range(self.slot_count):
            if not self._read_slot(sid)[2]:
                yield sid
