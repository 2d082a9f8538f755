# wmsledger/services/master_data.py
from __future__ import annotations

from typing import List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from wmsledger.models.warehouse import Bin, Warehouse
from wmsledger.services.errors import NotFound, ValidationFailed


async def get_warehouse(session: AsyncSession, tenant_id: str, warehouse_id: int) -> Warehouse:
    wh = (
        await session.execute(
            select(Warehouse).where(Warehouse.id == warehouse_id, Warehouse.tenant_id == tenant_id)
        )
    ).scalar_one_or_none()
    if wh is None:
        raise NotFound(
            f"仓库不存在：warehouse_id={warehouse_id}",
            context={"tenant_id": tenant_id, "warehouse_id": warehouse_id},
        )
    return wh


async def get_bin(session: AsyncSession, tenant_id: str, bin_id: int) -> Bin:
    b = (
        await session.execute(select(Bin).where(Bin.id == bin_id, Bin.tenant_id == tenant_id))
    ).scalar_one_or_none()
    if b is None:
        raise NotFound(
            f"库位不存在：bin_id={bin_id}", context={"tenant_id": tenant_id, "bin_id": bin_id}
        )
    return b


async def require_bin_in_warehouse(
    session: AsyncSession,
    tenant_id: str,
    bin_id: int,
    warehouse_id: int,
    *,
    role: str = "bin",
) -> Bin:
    b = await get_bin(session, tenant_id, bin_id)
    if int(b.warehouse_id) != int(warehouse_id):
        raise ValidationFailed(
            f"{role} 不属于仓库 {warehouse_id}：bin_id={bin_id}",
            context={"bin_id": bin_id, "bin_warehouse_id": b.warehouse_id, "warehouse_id": warehouse_id},
        )
    return b


async def list_bin_ids(
    session: AsyncSession,
    tenant_id: str,
    warehouse_id: int,
    *,
    only: Optional[Sequence[int]] = None,
) -> List[int]:
    stmt = select(Bin.id).where(Bin.tenant_id == tenant_id, Bin.warehouse_id == warehouse_id)
    if only:
        stmt = stmt.where(Bin.id.in_(list(only)))
    rows = (await session.execute(stmt.order_by(Bin.id))).scalars().all()
    return [int(x) for x in rows]
