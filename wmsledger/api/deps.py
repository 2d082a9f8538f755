# wmsledger/api/deps.py
from __future__ import annotations

from typing import AsyncGenerator

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession

from wmsledger.api.problem import raise_problem
from wmsledger.core.config import get_settings
from wmsledger.db.session import get_session as _get_session


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI 依赖：直接 yield AsyncSession。
    事务边界由路由自己掌握（TxManager.run / session.begin）。
    """
    async for session in _get_session():
        yield session


def get_tenant_id(request: Request) -> str:
    """租户由上游网关注入请求头（默认 X-Tenant-Id），缺失即 400。"""
    header = get_settings().TENANT_HEADER
    tenant_id = (request.headers.get(header) or "").strip()
    if not tenant_id:
        raise_problem(
            status_code=400,
            error_code="tenant_missing",
            message=f"缺少租户请求头 {header}",
            context={"header": header},
        )
    return tenant_id
