# tests/conftest.py
from __future__ import annotations

import os
from typing import AsyncGenerator

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import NullPool

# ============================================================
# 在 import wmsledger.main 之前给默认引擎一个本地 DSN（不会真正连接）
# ============================================================
os.environ.setdefault("WMS_DATABASE_URL", "sqlite+aiosqlite://")

from wmsledger.api import deps  # noqa: E402
from wmsledger.db.base import Base, init_models  # noqa: E402
from wmsledger.db.session import create_engine_for, make_session_factory  # noqa: E402
from wmsledger.main import app  # noqa: E402
from tests.helpers.inventory import TENANT  # noqa: E402

TENANT_HEADERS = {"X-Tenant-Id": TENANT}


# =========================================
# 每用例独立 Engine（NullPool，避免跨 loop）
#   - 默认：tmp_path 下的 sqlite 文件库，create_all 建表
#   - 设置 WMS_TEST_DATABASE_URL 时改连该库（需自行保证是空库）
# =========================================
@pytest_asyncio.fixture(scope="function")
async def async_engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    url = os.getenv("WMS_TEST_DATABASE_URL") or f"sqlite+aiosqlite:///{tmp_path / 'wmsledger.db'}"
    engine = create_engine_for(url, poolclass=NullPool)

    init_models()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    try:
        yield engine
    finally:
        await engine.dispose()


@pytest.fixture(scope="function")
def session_factory(async_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return make_session_factory(async_engine)


@pytest_asyncio.fixture(scope="function")
async def session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """
    标准 Session：事务由用例自己用 session.begin() 控制，
    结束时残留事务一律回滚。
    """
    async with session_factory() as sess:
        try:
            yield sess
        finally:
            if sess.in_transaction():
                await sess.rollback()


# =========================================
# HTTP 客户端：ASGITransport 直连 app，会话换成测试库
# =========================================
@pytest_asyncio.fixture(scope="function")
async def client(session_factory) -> AsyncGenerator[httpx.AsyncClient, None]:
    async def _override_session() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as sess:
            yield sess

    app.dependency_overrides[deps.get_session] = _override_session
    transport = httpx.ASGITransport(app=app)
    try:
        async with httpx.AsyncClient(
            transport=transport, base_url="http://testserver", headers=TENANT_HEADERS
        ) as c:
            yield c
    finally:
        app.dependency_overrides.pop(deps.get_session, None)
