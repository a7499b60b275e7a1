# buffer_pool.py
from __future__ import annotations

import time
import logging
from dataclasses import dataclass
from collections import OrderedDict, deque
from typing import Optional, Dict, Deque, Literal

from .pager import Pager

log = logging.getLogger(__name__)


# --------------------------- 数据结构与统计 ---------------------------

@dataclass
class Frame:
    """
    缓冲池槽位（一个 frame 对应磁盘上的一页）：
    - page_id: 物理页号（与 Pager 的页号一致）
    - data: 该页的内存副本（可写）
    - pin_count: 引用计数；>0 表示“被固定”，不可被淘汰
    - dirty: 内存数据较磁盘更新，淘汰或 flush 时必须写回
    """
    page_id: int
    data: bytearray
    pin_count: int = 0
    dirty: bool = False


@dataclass
class BPStats:
    hits: int = 0
    misses: int = 0
    reads: int = 0
    writes: int = 0
    evict_clean: int = 0
    evict_dirty: int = 0
    discarded: int = 0
    current_resident: int = 0
    max_resident: int = 0
    capacity: int = 0
    start_ts: float = 0.0


# --------------------------- 替换策略（LRU / FIFO） ---------------------------

class _LRUPolicy:
    """LRU 候选集合（仅跟踪 pin==0 的可替换页）"""
    def __init__(self) -> None:
        self._lru: "OrderedDict[int, None]" = OrderedDict()

    def touch(self, pid: int) -> None:
        self._lru.pop(pid, None)
        self._lru[pid] = None

    def remove(self, pid: int) -> None:
        self._lru.pop(pid, None)

    def victim(self) -> Optional[int]:
        if not self._lru:
            return None
        pid, _ = self._lru.popitem(last=False)
        return pid


class _FIFOPolicy:
    """FIFO 候选集合：按进入顺序淘汰"""
    def __init__(self) -> None:
        self._q: Deque[int] = deque()
        self._in_q: set[int] = set()

    def touch(self, pid: int) -> None:
        if pid not in self._in_q:
            self._q.append(pid)
            self._in_q.add(pid)

    def remove(self, pid: int) -> None:
        self._in_q.discard(pid)

    def victim(self) -> Optional[int]:
        while self._q:
            pid = self._q.popleft()
            if pid in self._in_q:
                self._in_q.remove(pid)
                return pid
            # 僵尸元素（之前 remove 过）：丢弃并继续
        return None


# --------------------------- 缓冲池主体 ---------------------------

class BufferPool:
    """
    页缓冲池：
    - get_page: 先查缓存，未命中时读盘；满了则按策略淘汰
    - unpin(dirty): 释放引用，可选标脏；pin==0 时进入候选集合
    - flush_page / flush_all: 脏页写回；flush_all 额外 fsync
    - discard_dirty: 丢弃所有脏页（中止一次操作，不提交半成品）
    上层在每次变更操作结束前调用 flush_all，相当于写穿透。
    """
    def __init__(self,
                 pager: Pager,
                 capacity: int = 128,
                 policy: Literal["LRU", "FIFO"] = "LRU") -> None:
        assert capacity > 0
        self.pager = pager
        self.capacity = capacity
        self.frames: Dict[int, Frame] = {}

        if policy.upper() == "LRU":
            self._policy = _LRUPolicy()
        elif policy.upper() == "FIFO":
            self._policy = _FIFOPolicy()
        else:
            raise ValueError("policy must be 'LRU' or 'FIFO'")
        self.policy = policy.upper()

        self._stats = BPStats(capacity=capacity, start_ts=time.time())

    # -------------------- 对外 API --------------------

    def get_page(self, page_id: int) -> memoryview:
        """
        取得指定页的可写 memoryview；返回值必须配对调用 unpin(page_id, dirty=...)
        """
        fr = self.frames.get(page_id)
        if fr is not None:
            self._stats.hits += 1
            if fr.pin_count == 0:
                self._policy.remove(page_id)
            fr.pin_count += 1
            return memoryview(fr.data)

        self._stats.misses += 1
        if len(self.frames) >= self.capacity:
            self._evict_for(page_id)

        raw = self.pager.read_page(page_id)
        self._stats.reads += 1

        fr = Frame(page_id=page_id, data=bytearray(raw), pin_count=1, dirty=False)
        self.frames[page_id] = fr
        self._stats.current_resident = len(self.frames)
        self._stats.max_resident = max(self._stats.max_resident, len(self.frames))
        return memoryview(fr.data)

    def unpin(self, page_id: int, dirty: bool = False) -> None:
        fr = self._require_frame(page_id)
        if fr.pin_count == 0:
            # 容错：重复 unpin 时不降为负数
            return
        fr.pin_count -= 1
        if dirty:
            fr.dirty = True
        if fr.pin_count == 0:
            self._policy.touch(page_id)

    def flush_page(self, page_id: int) -> None:
        """写回单个脏页（若非脏页则忽略），不做 fsync"""
        fr = self.frames.get(page_id)
        if fr and fr.dirty:
            self.pager.write_page(page_id, bytes(fr.data))
            fr.dirty = False
            self._stats.writes += 1

    def flush_all(self) -> None:
        """写回所有脏页，并请求 Pager 同步（fsync）"""
        for pid, fr in list(self.frames.items()):
            if fr.dirty:
                self.pager.write_page(pid, bytes(fr.data))
                fr.dirty = False
                self._stats.writes += 1
        self.pager.sync()

    def discard_dirty(self) -> int:
        """
        丢弃所有脏页（包括仍被 pin 的）：下次访问会从磁盘重新读入。
        返回丢弃的页数。
        """
        dropped = [pid for pid, fr in self.frames.items() if fr.dirty]
        for pid in dropped:
            self.frames.pop(pid, None)
            self._policy.remove(pid)
        self._stats.discarded += len(dropped)
        self._stats.current_resident = len(self.frames)
        if dropped:
            log.warning("discarded %d dirty page(s): %s", len(dropped), dropped)
        return len(dropped)

    def dirty_pages(self) -> list[int]:
        return sorted(pid for pid, fr in self.frames.items() if fr.dirty)

    @property
    def stats(self) -> dict:
        total = self._stats.hits + self._stats.misses
        return {
            "capacity": self._stats.capacity,
            "policy": self.policy,
            "cached": self._stats.current_resident,
            "max_cached": self._stats.max_resident,
            "hit": self._stats.hits,
            "miss": self._stats.misses,
            "reads": self._stats.reads,
            "writes": self._stats.writes,
            "evict_clean": self._stats.evict_clean,
            "evict_dirty": self._stats.evict_dirty,
            "discarded": self._stats.discarded,
            "hit_rate": (self._stats.hits / total) if total else 0.0,
            "uptime_s": round(time.time() - self._stats.start_ts, 3),
        }

    # -------------------- 内部方法 --------------------

    def _evict_for(self, incoming_pid: int) -> None:
        """为 incoming_pid 腾出一个槽位；脏页先写回再移除"""
        while True:
            victim_pid = self._policy.victim()
            if victim_pid is None:
                # 候选为空：所有页都被 pin 住了（上层忘记 unpin 的常见症状）
                raise RuntimeError("BufferPool is full and all pages are pinned; cannot evict")

            fr = self.frames.get(victim_pid)
            if fr is None or fr.pin_count > 0:
                continue

            if fr.dirty:
                log.debug("EVICT pid=%d dirty=True -> writeback; replace with pid=%d", victim_pid, incoming_pid)
                self.pager.write_page(victim_pid, bytes(fr.data))
                self._stats.evict_dirty += 1
                self._stats.writes += 1
            else:
                log.debug("EVICT pid=%d dirty=False", victim_pid)
                self._stats.evict_clean += 1

            self.frames.pop(victim_pid, None)
            self._stats.current_resident = len(self.frames)
            return

    def _require_frame(self, page_id: int) -> Frame:
        fr = self.frames.get(page_id)
        if fr is None:
            raise KeyError(f"page {page_id} not in buffer pool (did you forget get_page?)")
        return fr
