# supply_db/config.py
from __future__ import annotations

import os
from dataclasses import dataclass, fields
from typing import Mapping, Optional

from .errors import ConfigError
from .engine.record import FIXED_OVERHEAD, TEXT_FIELD_COUNT
from .engine.record_store import ENTRY_HEADER_SIZE
from .storage.data_page import PAGE_OVERHEAD

ENV_PREFIX = "SUPPLY_DB_"

# 环境变量名 -> Settings 字段
_ENV_KEYS = {
    "DATA": "data_path",
    "PAGE_SIZE": "page_size",
    "BP_CAPACITY": "bp_capacity",
    "BP_POLICY": "bp_policy",
    "MAX_PAGES": "max_pages",
    "MAX_RECORD_SIZE": "max_record_size",
    "MAX_FIELD_BYTES": "max_field_bytes",
    "BTREE_ORDER": "btree_order",
    "LOG": "log_path",
}


@dataclass(frozen=True)
class Settings:
    """
    运行参数：
    - data_path: 数据文件路径；":memory:" 表示纯内存
    - page_size / max_pages: 页大小与页数上限（决定物理空间）
    - bp_capacity / bp_policy: 缓冲池容量与替换策略
    - max_record_size: 单条记录编码后的最大字节数
    - max_field_bytes: 单个文本字段 UTF-8 的最大字节数
    - btree_order: 内存索引 B+ 树的阶
    - log_path: 日志文件；None 表示不写文件
    """
    data_path: str = os.path.join("data", "supply.sdb")
    page_size: int = 4096
    bp_capacity: int = 256
    bp_policy: str = "LRU"
    max_pages: int = 2**31 - 1
    max_record_size: int = 2048
    max_field_bytes: int = 256
    btree_order: int = 64
    log_path: Optional[str] = None

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None, **overrides) -> "Settings":
        env = os.environ if environ is None else environ
        types = {f.name: f.type for f in fields(cls)}
        values = {}
        for key, attr in _ENV_KEYS.items():
            raw = env.get(ENV_PREFIX + key)
            if raw is None or raw == "":
                continue
            if types[attr] in (int, "int"):
                try:
                    values[attr] = int(raw)
                except ValueError:
                    raise ConfigError(f"{ENV_PREFIX}{key} must be an integer, got {raw!r}") from None
            else:
                values[attr] = raw
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values).validate()

    def max_encoded_size(self) -> int:
        """字段都取上限时记录编码后的最大字节数。"""
        return FIXED_OVERHEAD + TEXT_FIELD_COUNT * self.max_field_bytes

    def validate(self) -> "Settings":
        # 槽目录用 uint16 记录偏移，页不能超过 65535 字节
        if not 512 <= self.page_size <= 65535:
            raise ConfigError(f"page_size must be within [512, 65535], got {self.page_size}")
        if self.bp_policy.upper() not in ("LRU", "FIFO"):
            raise ConfigError("bp_policy must be 'LRU' or 'FIFO'")
        if self.bp_capacity <= 0:
            raise ConfigError("bp_capacity must be positive")
        if not 3 <= self.max_pages <= 2**31 - 1:
            raise ConfigError(f"max_pages must be within [3, 2**31-1], got {self.max_pages}")
        if self.btree_order < 4:
            raise ConfigError("btree_order must be >= 4")
        if self.max_record_size <= FIXED_OVERHEAD:
            raise ConfigError(f"max_record_size must exceed {FIXED_OVERHEAD}")
        # 一页必须能放下一条最大记录（外加条目头与页头/槽开销）
        if self.max_record_size + ENTRY_HEADER_SIZE + PAGE_OVERHEAD > self.page_size:
            raise ConfigError(
                f"page_size {self.page_size} cannot hold a {self.max_record_size}-byte record"
            )
        if self.max_field_bytes <= 0 or self.max_encoded_size() > self.max_record_size:
            raise ConfigError(
                f"max_field_bytes={self.max_field_bytes} allows records of "
                f"{self.max_encoded_size()} bytes, above max_record_size={self.max_record_size}"
            )
        return self
