# engine/service.py
from __future__ import annotations

import time
import logging
import threading
from dataclasses import replace
from typing import Callable, Optional

from .context import StorageContext
from .record import Product, ProductPayload
from ..errors import ConfigError, InvalidInput, NotFound, StorageError

log = logging.getLogger(__name__)

# 字段 -> 为空时的提示
_REQUIRED = {
    "name": "Product name cannot be empty",
    "origin": "Product origin cannot be empty",
    "current_location": "Current location cannot be empty",
    "status": "Status cannot be empty",
}
_TEXT_FIELDS = ("name", "origin", "current_location", "status", "certification", "iot_data")

REQUIRED_FIELDS = tuple(_REQUIRED)


def validate_payload(payload: ProductPayload, max_field_bytes: int = 256) -> None:
    """
    校验请求字段（create 与 update 共用），失败抛 InvalidInput：
      - name / origin / current_location / status 去掉空白后不能为空
      - 所有出现的文本字段（含可选字段）UTF-8 长度不超过 max_field_bytes
    """
    for f in REQUIRED_FIELDS:
        value = getattr(payload, f)
        if not isinstance(value, str) or not value.strip():
            raise InvalidInput(_REQUIRED[f])
    for f in _TEXT_FIELDS:
        value = getattr(payload, f)
        if value is None:
            continue
        if not isinstance(value, str):
            raise InvalidInput(f"{f} must be text")
        size = len(value.encode("utf-8"))
        if size > max_field_bytes:
            raise InvalidInput(f"{f} is {size} bytes, limit is {max_field_bytes}")


class ProductService:
    """
    对外的四个操作：create / read / update / delete。
      - 先校验，再委托给 StorageContext 中的 id 生成器与 RecordStore
      - 一把可重入锁保证同一时刻只有一个操作在执行
      - 变更途中出现 StorageError：丢弃脏页、重建索引后原样抛出；id 计数器不回退
    """

    def __init__(self, ctx: StorageContext, clock: Optional[Callable[[], int]] = None):
        self.ctx = ctx
        self.clock = clock or time.time_ns
        self.max_field_bytes = ctx.settings.max_field_bytes
        worst = ctx.settings.max_encoded_size()
        if worst > ctx.codec.max_size:
            raise ConfigError(
                f"max_field_bytes={self.max_field_bytes} allows {worst}-byte records, "
                f"codec limit is {ctx.codec.max_size}"
            )
        self._lock = threading.RLock()

    # ---------- 操作 ----------
    def create(self, payload: ProductPayload) -> Product:
        validate_payload(payload, self.max_field_bytes)
        with self._lock:
            with self._abort_on_storage_error("create"):
                pid = self.ctx.ids.next()
                product = Product(
                    id=pid,
                    name=payload.name,
                    origin=payload.origin,
                    current_location=payload.current_location,
                    status=payload.status,
                    certification=payload.certification,
                    timestamp=self.clock(),
                    last_update=None,
                    iot_data=payload.iot_data,
                )
                self.ctx.store.insert_or_replace(product)
        log.info("created product id=%d name=%r", product.id, product.name)
        return product

    def read(self, id: int) -> Product:
        with self._lock:
            product = self.ctx.store.get(id)
        if product is None:
            raise NotFound(id)
        return product

    def update(self, id: int, payload: ProductPayload) -> Product:
        """
        与 create 相同的校验（name、origin 也必须非空），
        但只替换 current_location / status / certification / iot_data，name、origin 不写入
        """
        validate_payload(payload, self.max_field_bytes)
        with self._lock:
            current = self.ctx.store.get(id)
            if current is None:
                raise NotFound(id, f"Cannot update product with id={id}. Product not found")
            product = replace(
                current,
                current_location=payload.current_location,
                status=payload.status,
                certification=payload.certification,
                iot_data=payload.iot_data,
                last_update=max(self.clock(), current.timestamp),
            )
            with self._abort_on_storage_error("update"):
                self.ctx.store.insert_or_replace(product)
        log.info("updated product id=%d status=%r", id, product.status)
        return product

    def delete(self, id: int) -> Product:
        with self._lock:
            with self._abort_on_storage_error("delete"):
                product = self.ctx.store.remove(id)
        if product is None:
            raise NotFound(id, f"Cannot delete product with id={id}. Product not found.")
        log.info("deleted product id=%d", id)
        return product

    # ---------- 内部 ----------
    def _abort_on_storage_error(self, op: str) -> "_Abort":
        return _Abort(self.ctx, op)


class _Abort:
    """with 块内出现 StorageError 时回滚未提交的页，再把异常交给调用方"""

    def __init__(self, ctx: StorageContext, op: str):
        self.ctx = ctx
        self.op = op

    def __enter__(self) -> None:
        return None

    def __exit__(self, exc_type, exc, tb) -> bool:
        if exc_type is not None and issubclass(exc_type, StorageError):
            log.error("%s aborted: %s", self.op, exc)
            self.ctx.rollback()
        return False
