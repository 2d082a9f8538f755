# wmsledger/services/ledger_writer.py
from __future__ import annotations

import logging
from datetime import date
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from wmsledger.models.stock_ledger import StockLedger
from wmsledger.obs.metrics import ledger_entries_total

log = logging.getLogger("wmsledger.ledger")


async def find_replay(
    session: AsyncSession,
    *,
    tenant_id: str,
    reason: str,
    bin_id: int,
    item_id: int,
    batch_no: str,
    ref: Optional[str],
    ref_line: int,
) -> Optional[StockLedger]:
    """
    幂等命中检查：与唯一约束 uq_stock_ledger_idem 同维度。
    ref 为空的写入不参与幂等。
    """
    if not ref:
        return None
    stmt = (
        select(StockLedger)
        .where(
            StockLedger.tenant_id == tenant_id,
            StockLedger.reason == reason,
            StockLedger.bin_id == bin_id,
            StockLedger.item_id == item_id,
            StockLedger.batch_no == batch_no,
            StockLedger.ref == ref,
            StockLedger.ref_line == int(ref_line),
        )
        .limit(1)
    )
    return (await session.execute(stmt)).scalar_one_or_none()


async def write_ledger(
    session: AsyncSession,
    *,
    tenant_id: str,
    bin_id: int,
    item_id: int,
    batch_no: str,
    reason: str,
    qty_change: int,
    qty_after: int,
    ref: Optional[str] = None,
    ref_line: int = 1,
    ref_type: Optional[str] = None,
    ref_id: Optional[int] = None,
    expiry_date: Optional[date] = None,
    created_by: Optional[str] = None,
    note: Optional[str] = None,
) -> StockLedger:
    """
    追加一条台账（只增不改）。

    必须与快照更新处于同一事务；flush 后返回带 id 的行。
    唯一约束冲突（并发重放同一 ref）由上层统一转成 ConcurrentModification。
    """
    entry = StockLedger(
        tenant_id=tenant_id,
        bin_id=int(bin_id),
        item_id=int(item_id),
        batch_no=batch_no,
        reason=str(reason),
        qty_change=int(qty_change),
        qty_after=int(qty_after),
        ref=ref,
        ref_line=int(ref_line),
        ref_type=ref_type,
        ref_id=ref_id,
        expiry_date=expiry_date,
        created_by=created_by,
        note=note,
    )
    session.add(entry)
    await session.flush()

    ledger_entries_total.labels(str(reason)).inc()
    log.debug(
        "ledger+ id=%s tenant=%s bin=%s item=%s batch=%r reason=%s change=%s after=%s ref=%s:%s",
        entry.id,
        tenant_id,
        bin_id,
        item_id,
        batch_no,
        reason,
        qty_change,
        qty_after,
        ref,
        ref_line,
    )
    return entry
