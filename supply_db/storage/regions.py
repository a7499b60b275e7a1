# regions.py
from __future__ import annotations

import struct
import logging
from typing import Dict, List

from .pager import Pager
from .buffer_pool import BufferPool
from ..errors import StorageError

log = logging.getLogger(__name__)

# ---------------- 区域目录（位于 page 1）----------------
# 把一个物理页文件切成若干可独立增长的“区域”（region），上层按固定编号认领：
#   region 0 -> id 计数器；region 1 -> 记录页 ……
#
# 目录页格式：
#   magic(4s) | version(uint16) | max_regions(uint16)
#   然后每个区域一个条目：index_head(int32) | page_count(uint32)
#   - index_head: 该区域第一张索引页的物理页号；-1 表示区域为空
#   - page_count: 区域当前拥有的页数
#
# 索引页格式（单链表）：
#   next_index_pid(int32) | count(uint16) | pid(int32) * count
#   区域内第 n 页（虚拟页号）= 索引链上第 n 个 pid
_DIR_PID = 1
_DIR_FMT = "<4sHH"
_DIR_SIZE = struct.calcsize(_DIR_FMT)
_DIR_MAGIC = b"RGN1"
_DIR_VERSION = 1
_ENTRY_FMT = "<iI"
_ENTRY_SIZE = struct.calcsize(_ENTRY_FMT)

_IDX_HDR_FMT = "<iH"
_IDX_HDR_SIZE = struct.calcsize(_IDX_HDR_FMT)
_PID_FMT = "<i"
_PID_SIZE = struct.calcsize(_PID_FMT)

MAX_REGIONS = 32


class Region:
    """
    一段可增长的虚拟内存：
      - 以“虚拟页号”0..size()-1 编址，映射到 Pager 的物理页
      - read/write 把区域当作连续字节访问（经由缓冲池）
      - grow(n) 追加 n 页，返回增长前的页数
    """

    def __init__(self, manager: "RegionManager", region_id: int):
        self.manager = manager
        self.id = region_id

    @property
    def bp(self) -> BufferPool:
        return self.manager.bp

    @property
    def page_size(self) -> int:
        return self.manager.pager.page_size()

    def size(self) -> int:
        """区域页数"""
        return len(self.manager._pages[self.id])

    def size_bytes(self) -> int:
        return self.size() * self.page_size

    def grow(self, pages: int = 1) -> int:
        old = self.size()
        try:
            for _ in range(pages):
                self.manager._append_page(self.id)
        except OSError as e:
            raise StorageError(f"region {self.id}: cannot grow: {e}") from e
        return old

    def physical(self, vpage: int) -> int:
        pages = self.manager._pages[self.id]
        if vpage < 0 or vpage >= len(pages):
            raise IndexError(f"region {self.id}: page {vpage} out of range (size={len(pages)})")
        return pages[vpage]

    def get_page(self, vpage: int) -> memoryview:
        return self.bp.get_page(self.physical(vpage))

    def unpin(self, vpage: int, dirty: bool = False) -> None:
        self.bp.unpin(self.physical(vpage), dirty=dirty)

    def read(self, offset: int, length: int) -> bytes:
        self._check_range(offset, length)
        out = bytearray()
        ps = self.page_size
        while length > 0:
            vpage, off = divmod(offset, ps)
            n = min(length, ps - off)
            mv = self.get_page(vpage)
            try:
                out += mv[off : off + n]
            finally:
                self.unpin(vpage)
            offset += n
            length -= n
        return bytes(out)

    def write(self, offset: int, data: bytes) -> None:
        self._check_range(offset, len(data))
        ps = self.page_size
        pos = 0
        while pos < len(data):
            vpage, off = divmod(offset + pos, ps)
            n = min(len(data) - pos, ps - off)
            mv = self.get_page(vpage)
            try:
                mv[off : off + n] = data[pos : pos + n]
            finally:
                self.unpin(vpage, dirty=True)
            pos += n

    def flush(self) -> None:
        """把本区域的脏页写回并 fsync"""
        for pid in self.manager._pages[self.id]:
            self.bp.flush_page(pid)
        self.manager.pager.sync()

    def _check_range(self, offset: int, length: int) -> None:
        if offset < 0 or length < 0 or offset + length > self.size_bytes():
            raise IndexError(
                f"region {self.id}: access [{offset}, {offset + length}) out of bounds (size={self.size_bytes()})"
            )

    def __repr__(self) -> str:
        return f"Region(id={self.id}, pages={self.size()})"


class RegionManager:
    """
    区域分配器：
      - 新文件：分配 page 1 作为目录页
      - 旧文件：读取目录页，沿各区域的索引链恢复虚拟页表
      - region(id) 幂等：同一 id 始终返回同一个 Region 对象，跨重启指向同一批字节
    目录页与索引页直接经 Pager 读写（不进缓冲池），每次增长后立即 sync。
    """

    def __init__(self, pager: Pager, bp: BufferPool):
        self.pager = pager
        self.bp = bp
        ps = pager.page_size()
        if _DIR_SIZE + MAX_REGIONS * _ENTRY_SIZE > ps:
            raise ValueError(f"page size {ps} too small for region directory")
        self._idx_capacity = (ps - _IDX_HDR_SIZE) // _PID_SIZE

        self._heads: List[int] = [-1] * MAX_REGIONS
        self._pages: List[List[int]] = [[] for _ in range(MAX_REGIONS)]
        self._index_pids: List[List[int]] = [[] for _ in range(MAX_REGIONS)]
        self._regions: Dict[int, Region] = {}

        if pager.page_count() == 1:
            pid = pager.allocate_page()
            assert pid == _DIR_PID
            self._write_directory()
            pager.sync()
            log.info("initialized region directory on page %d", _DIR_PID)
        else:
            self._load()

    # ------------------------- 公共 API -------------------------

    def region(self, region_id: int) -> Region:
        if not 0 <= region_id < MAX_REGIONS:
            raise ValueError(f"region id must be within [0, {MAX_REGIONS}), got {region_id}")
        reg = self._regions.get(region_id)
        if reg is None:
            reg = Region(self, region_id)
            self._regions[region_id] = reg
        return reg

    def region_sizes(self) -> Dict[int, int]:
        """非空区域的页数"""
        return {rid: len(p) for rid, p in enumerate(self._pages) if p}

    # ------------------------- 内部方法 -------------------------

    def _load(self) -> None:
        raw = self.pager.read_page(_DIR_PID)
        magic, version, max_regions = struct.unpack_from(_DIR_FMT, raw, 0)
        if magic != _DIR_MAGIC:
            raise StorageError("bad region directory magic")
        if version != _DIR_VERSION or max_regions != MAX_REGIONS:
            raise StorageError(f"unsupported region directory (version={version}, max_regions={max_regions})")
        for rid in range(MAX_REGIONS):
            head, count = struct.unpack_from(_ENTRY_FMT, raw, _DIR_SIZE + rid * _ENTRY_SIZE)
            self._heads[rid] = head
            pages: List[int] = []
            idx_pid = head
            while idx_pid != -1 and len(pages) < count:
                if idx_pid in self._index_pids[rid]:
                    raise StorageError(f"region {rid}: index chain has a cycle at page {idx_pid}")
                self._index_pids[rid].append(idx_pid)
                idx = self.pager.read_page(idx_pid)
                nxt, n = struct.unpack_from(_IDX_HDR_FMT, idx, 0)
                for i in range(n):
                    (pid,) = struct.unpack_from(_PID_FMT, idx, _IDX_HDR_SIZE + i * _PID_SIZE)
                    pages.append(pid)
                idx_pid = nxt
            if len(pages) < count:
                raise StorageError(f"region {rid}: directory says {count} pages, index holds {len(pages)}")
            # 目录最后落盘：索引链上多出来的页（崩溃残留）以目录计数为准
            self._pages[rid] = pages[:count]
        log.debug("loaded region directory: %s", self.region_sizes())

    def _append_page(self, region_id: int) -> int:
        """
        为区域追加一页：
          1) 分配数据页
          2) 把页号写进尾部索引页（满了就新开一张并挂到链尾）
          3) 最后更新目录并 sync
        """
        pid = self.pager.allocate_page()
        idx_pids = self._index_pids[region_id]
        slot = len(self._pages[region_id]) % self._idx_capacity

        if slot == 0:
            new_idx = self.pager.allocate_page()
            self._write_index(new_idx, -1, [])
            if idx_pids:
                self._relink(idx_pids[-1], new_idx)
            else:
                self._heads[region_id] = new_idx
            idx_pids.append(new_idx)

        tail = idx_pids[-1]
        buf = bytearray(self.pager.read_page(tail))
        nxt, _ = struct.unpack_from(_IDX_HDR_FMT, buf, 0)
        struct.pack_into(_IDX_HDR_FMT, buf, 0, nxt, slot + 1)
        struct.pack_into(_PID_FMT, buf, _IDX_HDR_SIZE + slot * _PID_SIZE, pid)
        self.pager.write_page(tail, bytes(buf))

        self._pages[region_id].append(pid)
        self._write_directory()
        self.pager.sync()
        log.debug("region %d grew to %d pages (pid=%d)", region_id, len(self._pages[region_id]), pid)
        return pid

    def _write_index(self, idx_pid: int, nxt: int, pids: List[int]) -> None:
        buf = bytearray(self.pager.page_size())
        struct.pack_into(_IDX_HDR_FMT, buf, 0, nxt, len(pids))
        for i, pid in enumerate(pids):
            struct.pack_into(_PID_FMT, buf, _IDX_HDR_SIZE + i * _PID_SIZE, pid)
        self.pager.write_page(idx_pid, bytes(buf))

    def _relink(self, idx_pid: int, nxt: int) -> None:
        buf = bytearray(self.pager.read_page(idx_pid))
        _, n = struct.unpack_from(_IDX_HDR_FMT, buf, 0)
        struct.pack_into(_IDX_HDR_FMT, buf, 0, nxt, n)
        self.pager.write_page(idx_pid, bytes(buf))

    def _write_directory(self) -> None:
        buf = bytearray(self.pager.page_size())
        struct.pack_into(_DIR_FMT, buf, 0, _DIR_MAGIC, _DIR_VERSION, MAX_REGIONS)
        for rid in range(MAX_REGIONS):
            struct.pack_into(_ENTRY_FMT, buf, _DIR_SIZE + rid * _ENTRY_SIZE,
                             self._heads[rid], len(self._pages[rid]))
        self.pager.write_page(_DIR_PID, bytes(buf))
