# pager.py
from __future__ import annotations
import io
import os
import struct
import logging
from dataclasses import dataclass

from ..errors import StorageError, StorageExhausted

log = logging.getLogger(__name__)

# ---------------- 元页(META)的二进制布局 ----------------
# 整个数据文件被切成固定大小的“页”。第 0 页存放元信息，其余页由 RegionManager 分配。
#
# Meta 二进制格式（位于 page 0 开头）：
#   magic(4s) | version(uint16) | page_size(uint16) | page_count(int32)
#   - magic:      魔数 b"SDB1"
#   - version:    文件格式版本
#   - page_size:  页大小（字节，固定）；uint16 决定了页不能超过 65535
#   - page_count: 当前已存在的页总数（包含第 0 页）
#
# 页只追加、不回收：区域（region）只会增长。
_META_FMT = "<4sHHi"
_META_SIZE = struct.calcsize(_META_FMT)
_MAGIC = b"SDB1"
_VERSION = 1

MEMORY = ":memory:"


@dataclass
class Meta:
    magic: bytes
    version: int
    page_size: int
    page_count: int

    def pack(self) -> bytes:
        return struct.pack(_META_FMT, self.magic, self.version, self.page_size, self.page_count)

    @classmethod
    def unpack_from(cls, data: bytes) -> "Meta":
        magic, version, page_size, page_count = struct.unpack_from(_META_FMT, data, 0)
        return cls(magic, version, page_size, page_count)


class Pager:
    """
    单文件页式存储管理器：
      - 负责打开/新建数据文件（或 ":memory:" 内存缓冲）
      - 负责按“页”为单位的读写
      - 负责追加新页，超过 max_pages 即视为物理空间耗尽
      - 第 0 页持久化保存全局元信息 Meta
    """

    def __init__(self, file_path: str, page_size: int = 4096, max_pages: int = 2**31 - 1):
        """
        打开或创建数据文件：
          - 已存在：读取第 0 页并校验 magic / version / page_size
          - 不存在：新建文件，写入初始 Meta，文件长度为 1 页
        """
        self.path = file_path
        self.max_pages = max_pages
        self._f: io.BufferedIOBase
        self.meta: Meta
        self._in_memory = file_path == MEMORY

        if self._in_memory:
            self._f = io.BytesIO()
            self._create(page_size)
        elif os.path.exists(self.path):
            # buffering=0 关闭 Python 级缓冲，写入直接交给操作系统
            self._f = open(self.path, "r+b", buffering=0)
            self._f.seek(0)
            first_page = self._f.read(page_size)
            if len(first_page) < _META_SIZE:
                self._f.close()
                raise StorageError("bad data file: truncated meta page")
            meta = Meta.unpack_from(first_page)
            if meta.magic != _MAGIC:
                self._f.close()
                raise StorageError("bad magic; not a supply_db file")
            if meta.version != _VERSION:
                self._f.close()
                raise StorageError(f"unsupported file version {meta.version}")
            if meta.page_size != page_size:
                self._f.close()
                raise StorageError(f"page size mismatch: file={meta.page_size}, expected={page_size}")
            self.meta = meta
            log.debug("opened %s: %d pages of %d bytes", self.path, meta.page_count, meta.page_size)
        else:
            parent = os.path.dirname(os.path.abspath(self.path))
            os.makedirs(parent, exist_ok=True)
            self._f = open(self.path, "w+b", buffering=0)
            self._create(page_size)
            log.info("created %s (page_size=%d)", self.path, page_size)

    def _create(self, page_size: int) -> None:
        self.meta = Meta(_MAGIC, _VERSION, page_size, page_count=1)
        self._write_meta()
        self._f.truncate(page_size)
        self.sync()

    # ------------------------- 公共 API -------------------------

    def page_size(self) -> int:
        return self.meta.page_size

    def page_count(self) -> int:
        """当前总页数（包含第 0 页）。"""
        return self.meta.page_count

    def read_page(self, page_id: int) -> bytes:
        self._check_pid(page_id)
        self._f.seek(page_id * self.meta.page_size)
        data = self._f.read(self.meta.page_size)
        if len(data) != self.meta.page_size:
            raise StorageError(f"short read on page {page_id} (corrupted file?)")
        return data

    def write_page(self, page_id: int, data: bytes) -> None:
        """整页覆盖写；长度必须等于 page_size。第 0 页只能由 Pager 自己写。"""
        self._check_pid(page_id)
        if page_id == 0:
            raise ValueError("page 0 is reserved for pager meta")
        if len(data) != self.meta.page_size:
            raise ValueError(f"write_page: bad data size {len(data)} != {self.meta.page_size}")
        self._f.seek(page_id * self.meta.page_size)
        self._f.write(data)

    def allocate_page(self) -> int:
        """
        在文件末尾追加一个全 0 的新页并返回其 page_id。
        先写页内容，再更新 Meta，崩溃时最多留下一个未登记的尾页。
        """
        pid = self.meta.page_count
        if pid >= self.max_pages:
            raise StorageExhausted(f"page limit reached ({self.max_pages} pages)")
        self._f.seek(pid * self.meta.page_size)
        self._f.write(bytes(self.meta.page_size))
        self.meta.page_count += 1
        self._write_meta()
        return pid

    def sync(self) -> None:
        """把缓冲区刷入磁盘（fsync）；内存模式下只 flush。"""
        self._f.flush()
        if not self._in_memory:
            os.fsync(self._f.fileno())

    def close(self) -> None:
        if self._f.closed:
            return
        try:
            self.sync()
        finally:
            self._f.close()

    @property
    def closed(self) -> bool:
        return self._f.closed

    # ------------------------- 内部方法 -------------------------

    def _check_pid(self, pid: int) -> None:
        if pid < 0 or pid >= self.meta.page_count:
            raise IndexError(f"page_id out of range: {pid} (page_count={self.meta.page_count})")

    def _write_meta(self) -> None:
        """Meta 写到第 0 页开头，其余字节补 0。"""
        page = bytearray(self.meta.page_size)
        packed = self.meta.pack()
        page[: len(packed)] = packed
        self._f.seek(0)
        self._f.write(page)
