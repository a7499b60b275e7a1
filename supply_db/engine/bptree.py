# engine/bptree.py
# -*- coding: utf-8 -*-
from __future__ import annotations
from bisect import bisect_left, bisect_right
from typing import Any, Iterator, List, Optional, Tuple


class _Leaf:
    """
    叶子节点：
      - keys：有序键列表（唯一）
      - vals：与 keys 一一对应的值
      - next：指向右兄弟叶子，用于范围顺扫
    """
    __slots__ = ("keys", "vals", "next")

    def __init__(self):
        self.keys: List[int] = []
        self.vals: List[Any] = []
        self.next: Optional[_Leaf] = None


class _Inner:
    """
    内部节点：
      - keys：分隔键
      - children：孩子指针列表（长度比 keys 多 1）
    """
    __slots__ = ("keys", "children")

    def __init__(self):
        self.keys: List[int] = []
        self.children: List[object] = []


class BPlusTree:
    """
    纯内存 B+ 树（唯一键，整数比较）：
      - 阶为 M：每个节点最多 M-1 个键、M 个孩子
      - 数据只在叶子；叶子间通过 next 串联以支持范围扫描
      - 删除只从叶子摘除，不做合并；分隔键保持有效，查找不受影响
    """

    def __init__(self, order: int = 64):
        assert order >= 4
        self.M = order
        self.root: object = _Leaf()
        self._size = 0

    def __len__(self) -> int:
        return self._size

    def __contains__(self, key: int) -> bool:
        return self.get(key) is not None

    # =========================
    # 查找
    # =========================
    def _descend(self, key: int, path: Optional[List[_Inner]] = None) -> _Leaf:
        node = self.root
        while isinstance(node, _Inner):
            if path is not None:
                path.append(node)
            node = node.children[bisect_right(node.keys, key)]
        return node  # type: ignore[return-value]

    def get(self, key: int, default: Any = None) -> Any:
        leaf = self._descend(key)
        i = bisect_left(leaf.keys, key)
        if i < len(leaf.keys) and leaf.keys[i] == key:
            return leaf.vals[i]
        return default

    def items(self, low: Optional[int] = None, high: Optional[int] = None) -> Iterator[Tuple[int, Any]]:
        """按键升序返回 [low, high] 内的 (key, val)；None 表示不设界。"""
        if low is None:
            node = self.root
            while isinstance(node, _Inner):
                node = node.children[0]
            leaf: Optional[_Leaf] = node  # type: ignore[assignment]
            i = 0
        else:
            leaf = self._descend(low)
            i = bisect_left(leaf.keys, low)
        while leaf is not None:
            while i < len(leaf.keys):
                k = leaf.keys[i]
                if high is not None and k > high:
                    return
                yield k, leaf.vals[i]
                i += 1
            leaf = leaf.next
            i = 0

    # =========================
    # 插入 / 覆盖
    # =========================
    def insert(self, key: int, val: Any) -> Any:
        """
        插入或覆盖：返回旧值（不存在时为 None）。
        溢出时自底向上分裂，必要时提升新根。
        """
        path: List[_Inner] = []
        leaf = self._descend(key, path)
        i = bisect_left(leaf.keys, key)
        if i < len(leaf.keys) and leaf.keys[i] == key:
            old = leaf.vals[i]
            leaf.vals[i] = val
            return old
        leaf.keys.insert(i, key)
        leaf.vals.insert(i, val)
        self._size += 1
        self._split_upward_leaf(leaf, path)
        return None

    def _split_upward_leaf(self, leaf: _Leaf, path: List[_Inner]) -> None:
        if len(leaf.keys) <= self.M - 1:
            return
        mid = len(leaf.keys) // 2
        right = _Leaf()
        right.keys = leaf.keys[mid:]
        right.vals = leaf.vals[mid:]
        leaf.keys = leaf.keys[:mid]
        leaf.vals = leaf.vals[:mid]
        right.next = leaf.next
        leaf.next = right
        self._insert_to_parent(leaf, right.keys[0], right, path)

    def _insert_to_parent(self, left: object, sep_key: int, right: object, path: List[_Inner]) -> None:
        if not path:
            root = _Inner()
            root.keys = [sep_key]
            root.children = [left, right]
            self.root = root
            return

        parent = path.pop()
        i = parent.children.index(left)
        parent.keys.insert(i, sep_key)
        parent.children.insert(i + 1, right)

        if len(parent.keys) > self.M - 1:
            self._split_upward_inner(parent, path)

    def _split_upward_inner(self, node: _Inner, path: List[_Inner]) -> None:
        """按中位键分裂内部节点，中位键上推；原节点保留为左半部分。"""
        mid = len(node.keys) // 2
        sep = node.keys[mid]

        right = _Inner()
        right.keys = node.keys[mid + 1:]
        right.children = node.children[mid + 1:]
        node.keys = node.keys[:mid]
        node.children = node.children[: mid + 1]

        self._insert_to_parent(node, sep, right, path)

    # =========================
    # 删除
    # =========================
    def delete(self, key: int) -> Any:
        """删除 key，返回旧值；不存在返回 None。"""
        leaf = self._descend(key)
        i = bisect_left(leaf.keys, key)
        if i < len(leaf.keys) and leaf.keys[i] == key:
            leaf.keys.pop(i)
            self._size -= 1
            return leaf.vals.pop(i)
        return None

    def clear(self) -> None:
        self.root = _Leaf()
        self._size = 0
