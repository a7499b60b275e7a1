"""
supply_db：供应链商品记录的单文件页式存储。

  from supply_db import open_service, ProductPayload
  svc = open_service("data/supply.sdb")
  p = svc.create(ProductPayload(name="Coffee", origin="Kenya", current_location="Mombasa", status="Manufactured"))
"""
from __future__ import annotations

from typing import Optional

from .config import Settings
from .errors import (
    ConfigError,
    CorruptRecord,
    IdExhausted,
    InvalidInput,
    NotFound,
    RecordTooLarge,
    StorageError,
    StorageExhausted,
    SupplyDbError,
)
from .engine.context import StorageContext
from .engine.record import Product, ProductPayload
from .engine.service import ProductService

__version__ = "0.1.0"


def open_service(path: Optional[str] = None, settings: Optional[Settings] = None) -> ProductService:
    """打开（或新建）数据文件并返回 ProductService；用完调用 svc.ctx.close()"""
    return ProductService(StorageContext(settings, path=path))


__all__ = [
    "ConfigError", "CorruptRecord", "IdExhausted", "InvalidInput", "NotFound",
    "Product", "ProductPayload", "ProductService", "RecordTooLarge", "Settings",
    "StorageContext", "StorageError", "StorageExhausted", "SupplyDbError",
    "open_service",
]
