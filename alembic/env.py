# alembic/env.py：同步引擎执行迁移，DSN 与应用共用归一规则

from __future__ import annotations

import os
from logging.config import fileConfig
from typing import Any

from alembic import context
from sqlalchemy import create_engine
from sqlalchemy.engine import Connection
from sqlalchemy.pool import NullPool

# Alembic 基本配置
config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

# 延迟加载模型（避免导入时机引发的问题）
from wmsledger.db.base import Base, init_models  # noqa: E402
from wmsledger.db.session import normalize_async_dsn  # noqa: E402


# ---------------------------------------------------------------------------
# URL 获取：优先用 WMS_TEST_DATABASE_URL / WMS_DATABASE_URL
# ---------------------------------------------------------------------------


def to_sync_url(url: str) -> str:
    """应用侧是 async 驱动；迁移走同步连接（psycopg 本身同步可用，aiosqlite → pysqlite）。"""
    url = normalize_async_dsn(url)
    if url.startswith("sqlite+aiosqlite://"):
        return "sqlite://" + url[len("sqlite+aiosqlite://") :]
    return url


def get_url() -> str:
    """
    优先级：
      1. WMS_TEST_DATABASE_URL
      2. WMS_DATABASE_URL
      3. DATABASE_URL
      4. alembic.ini 里的 sqlalchemy.url
    """
    url = (
        os.getenv("WMS_TEST_DATABASE_URL")
        or os.getenv("WMS_DATABASE_URL")
        or os.getenv("DATABASE_URL")
        or config.get_main_option("sqlalchemy.url")
    )
    if not url:
        raise RuntimeError(
            "Alembic 无法确定数据库 URL：\n"
            "请设置 WMS_TEST_DATABASE_URL / WMS_DATABASE_URL / DATABASE_URL，"
            "或在 alembic.ini 里配置 sqlalchemy.url"
        )
    return to_sync_url(url)


def include_object(
    obj: Any, name: str | None, type_: str, reflected: bool, compare_to: Any
) -> bool:
    # DB 里多出来的对象不参与 diff，避免自动生成 drop
    if reflected and compare_to is None:
        return False
    return True


# ---------------------------------------------------------------------------
# 迁移执行函数
# ---------------------------------------------------------------------------


def run_migrations_offline() -> None:
    """Offline 模式：不真实连库，只生成 SQL。"""
    init_models()
    context.configure(
        url=get_url(),
        target_metadata=Base.metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        compare_type=True,
        compare_server_default=False,
        include_object=include_object,
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Online 模式：真实连库执行迁移。"""
    init_models()
    url = get_url()
    engine = create_engine(url, poolclass=NullPool)

    with engine.connect() as connection:  # type: Connection
        context.configure(
            connection=connection,
            target_metadata=Base.metadata,
            compare_type=True,
            compare_server_default=False,
            include_object=include_object,
            # SQLite 不支持 ALTER 约束，走 batch 模式
            render_as_batch=url.startswith("sqlite"),
        )
        with context.begin_transaction():
            context.run_migrations()

    engine.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
