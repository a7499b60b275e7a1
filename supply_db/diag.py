# supply_db/diag.py
from __future__ import annotations

import os
import logging

LOGGER_NAME = "supply_db"


class _Diag:
    """
    全局日志开关（仅初始化一次）：
    - 所有模块都用 logging.getLogger(__name__)，挂在 "supply_db" 之下
    - enable_log 为 "supply_db" logger 加一个文件 handler，便于排障
    """
    _logger: logging.Logger | None = None
    _handler: logging.Handler | None = None
    _prev_level: int = logging.NOTSET

    @classmethod
    def enable(cls, path: str | None = None, level: int = logging.INFO) -> str:
        """开启文件日志；默认写入 __logs__/supply_db.log。返回实际路径。"""
        if cls._handler is not None:
            return cls._handler.baseFilename  # type: ignore[attr-defined]
        if path is None:
            os.makedirs("__logs__", exist_ok=True)
            path = os.path.join("__logs__", "supply_db.log")
        logger = logging.getLogger(LOGGER_NAME)
        cls._prev_level = logger.level
        logger.setLevel(level)
        handler = logging.FileHandler(path, encoding="utf-8")
        handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(message)s"))
        logger.addHandler(handler)
        cls._logger = logger
        cls._handler = handler
        return path

    @classmethod
    def disable(cls) -> None:
        """关闭文件日志（移除并关闭 handler，恢复开启前的级别）"""
        if cls._logger and cls._handler:
            cls._logger.removeHandler(cls._handler)
            cls._handler.close()
            cls._logger.setLevel(cls._prev_level)
        cls._logger = None
        cls._handler = None


def enable_log(path: str | None = None, level: int = logging.INFO) -> str:
    return _Diag.enable(path, level)


def disable_log() -> None:
    _Diag.disable()
