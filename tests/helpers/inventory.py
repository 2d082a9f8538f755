# tests/helpers/inventory.py
from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from wmsledger.models.enums import BinType, LedgerReason
from wmsledger.models.stock_ledger import StockLedger
from wmsledger.models.stock_snapshot import StockSnapshot
from wmsledger.models.warehouse import Bin, Warehouse
from wmsledger.services.stock_service import StockService

TENANT = "t-test"

__all__ = [
    "TENANT",
    "Site",
    "seed_site",
    "receive",
    "snapshot",
    "ledger_sum",
    "ledger_count",
]


@dataclass
class Site:
    """一个仓 + 常用库位（收货 / 存储×2 / 隔离）。"""

    warehouse_id: int
    receiving: int
    storage_a: int
    storage_b: int
    quarantine: int


# ------------------------------------------------------------------------------
# 基础造数：仓库 / 库位
# ------------------------------------------------------------------------------


async def seed_site(session: AsyncSession, *, code: str = "WH1", tenant_id: str = TENANT) -> Site:
    """建仓 + 4 个库位并提交，返回 id 集合。"""
    async with session.begin():
        wh = Warehouse(tenant_id=tenant_id, code=code, name=f"仓库 {code}")
        session.add(wh)
        await session.flush()

        bins = {}
        for key, bin_code, bin_type in (
            ("receiving", "RCV-01", BinType.RECEIVING),
            ("storage_a", "A-01", BinType.STORAGE),
            ("storage_b", "B-01", BinType.STORAGE),
            ("quarantine", "QA-01", BinType.QUARANTINE),
        ):
            b = Bin(tenant_id=tenant_id, warehouse_id=wh.id, code=f"{code}-{bin_code}", bin_type=str(bin_type))
            session.add(b)
            bins[key] = b
        await session.flush()
        return Site(warehouse_id=wh.id, **{k: b.id for k, b in bins.items()})


async def receive(
    session: AsyncSession,
    *,
    bin_id: int,
    item_id: int,
    qty: int,
    batch_no: Optional[str] = None,
    expiry_date: Optional[date] = None,
    ref: Optional[str] = None,
    tenant_id: str = TENANT,
) -> StockLedger:
    """直接记一笔 RECEIVE（独立事务）。"""
    async with session.begin():
        return await StockService().apply_movement(
            session,
            tenant_id=tenant_id,
            bin_id=bin_id,
            item_id=item_id,
            reason=LedgerReason.RECEIVE,
            delta=qty,
            batch_no=batch_no,
            expiry_date=expiry_date,
            ref=ref,
        )


# ------------------------------------------------------------------------------
# 读数
# ------------------------------------------------------------------------------


async def snapshot(
    session: AsyncSession,
    *,
    bin_id: int,
    item_id: int,
    batch_no: Optional[str] = None,
    tenant_id: str = TENANT,
) -> Optional[StockSnapshot]:
    return await StockService().get_snapshot(
        session, tenant_id=tenant_id, bin_id=bin_id, item_id=item_id, batch_no=batch_no
    )


async def ledger_sum(session: AsyncSession, *, bin_id: int, item_id: int, batch_no: str = "") -> int:
    total = (
        await session.execute(
            select(func.coalesce(func.sum(StockLedger.qty_change), 0)).where(
                StockLedger.bin_id == bin_id,
                StockLedger.item_id == item_id,
                StockLedger.batch_no == batch_no,
            )
        )
    ).scalar_one()
    return int(total)


async def ledger_count(session: AsyncSession, *, item_id: int, reason: Optional[str] = None) -> int:
    stmt = select(func.count()).select_from(StockLedger).where(StockLedger.item_id == item_id)
    if reason is not None:
        stmt = stmt.where(StockLedger.reason == reason)
    return int((await session.execute(stmt)).scalar_one())
