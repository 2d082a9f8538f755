# wmsledger/db/base.py
from __future__ import annotations

import importlib
import logging
import pkgutil
from datetime import datetime, timezone
from typing import Iterator, List

from sqlalchemy import MetaData
from sqlalchemy.orm import DeclarativeBase, configure_mappers

log = logging.getLogger("wmsledger.models")

# 约束统一命名，便于 Alembic 对比与迁移
NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}


class Base(DeclarativeBase):
    """全局唯一 ORM Base"""

    metadata = MetaData(naming_convention=NAMING_CONVENTION)


_INITIALIZED: bool = False  # 防重复初始化


def _iter_model_modules(pkg_name: str = "wmsledger.models") -> Iterator[str]:
    """发现 wmsledger.models.* 下的所有模块（排除以下划线开头的内部模块）"""
    pkg = importlib.import_module(pkg_name)
    for _, name, _ in pkgutil.walk_packages(list(pkg.__path__), prefix=pkg_name + "."):
        if name.rsplit(".", 1)[-1].startswith("_"):
            continue
        yield name


def init_models(*, force: bool = False) -> None:
    """
    集中导入模型 + 固化关系映射：
      1) 导入 wmsledger.models.*（保证字符串关系目标类已注册）
      2) 统一 configure_mappers()
    """
    global _INITIALIZED
    if _INITIALIZED and not force:
        return

    loaded: List[str] = []
    for mod in _iter_model_modules():
        importlib.import_module(mod)
        loaded.append(mod)

    configure_mappers()
    _INITIALIZED = True
    log.info("ORM models initialized & mappers configured (loaded %d modules)", len(loaded))


def utcnow() -> datetime:
    """Python 侧默认时间戳（插入后无需回读 server_default）。"""
    return datetime.now(timezone.utc)
