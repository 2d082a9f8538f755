# wmsledger/db/session.py
# 统一的异步会话工厂 + FastAPI 依赖（get_session）
from __future__ import annotations

import os
import re
from collections.abc import AsyncGenerator
from typing import Any

from sqlalchemy import event
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from wmsledger.core.config import get_settings


# ---- DSN 归一：统一到 psycopg3 与 aiosqlite ----
def normalize_async_dsn(url: str) -> str:
    url = (url or "").strip()
    # 有些环境会把值写成 '"postgresql+psycopg://..."'，统一剥掉两侧引号
    if len(url) >= 2 and url[0] == url[-1] and url[0] in ("'", '"'):
        url = url[1:-1].strip()
    if url.startswith("sqlite:///"):
        return "sqlite+aiosqlite://" + url[len("sqlite:///") - 1 :]
    if url.startswith("postgresql+asyncpg://") or url.startswith("postgres+asyncpg://"):
        return re.sub(r"^postgres(?:ql)?\+asyncpg://", "postgresql+psycopg://", url)
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql+psycopg://", 1)
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+psycopg://", 1)
    return url


def _connect_args_for(url_str: str) -> dict[str, Any]:
    """SQLite 不允许跨线程检查；其他后端不额外传参。"""
    if make_url(url_str).get_backend_name().startswith("sqlite"):
        return {"check_same_thread": False, "timeout": 5}
    return {}


def _enable_sqlite_fk(engine: AsyncEngine) -> None:
    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_conn, _record):  # pragma: no cover - 驱动回调
        cur = dbapi_conn.cursor()
        cur.execute("PRAGMA foreign_keys=ON")
        cur.close()


def create_engine_for(url_str: str, *, echo: bool = False, **kwargs: Any) -> AsyncEngine:
    dsn = normalize_async_dsn(url_str)
    backend = make_url(dsn).get_backend_name()

    opts: dict[str, Any] = {"echo": echo, **kwargs}
    if backend.startswith("postgresql"):
        opts.setdefault("pool_pre_ping", True)
    connect_args = _connect_args_for(dsn)
    if connect_args:
        opts["connect_args"] = connect_args

    engine = create_async_engine(dsn, **opts)
    if backend.startswith("sqlite"):
        _enable_sqlite_fk(engine)
    return engine


def make_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


# 优先级：WMS_DATABASE_URL > DATABASE_URL(.env / settings)
RAW_URL = os.getenv("WMS_DATABASE_URL") or get_settings().DATABASE_URL
ASYNC_URL = normalize_async_dsn(RAW_URL)

async_engine: AsyncEngine = create_engine_for(ASYNC_URL, echo=get_settings().SQL_ECHO)
AsyncSessionLocal: async_sessionmaker[AsyncSession] = make_session_factory(async_engine)


# ---- FastAPI 依赖 ----
async def get_session() -> AsyncGenerator[AsyncSession, None]:
    async with AsyncSessionLocal() as session:
        yield session


async def close_engines() -> None:
    await async_engine.dispose()
