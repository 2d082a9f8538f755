# wmsledger/services/reconcile_service.py
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from wmsledger.models.stock_ledger import StockLedger
from wmsledger.models.stock_snapshot import StockSnapshot
from wmsledger.obs.metrics import ledger_snapshot_mismatch_total
from wmsledger.services.stock_service import batch_or_none

log = logging.getLogger("wmsledger.reconcile")


async def reconcile(
    session: AsyncSession,
    *,
    tenant_id: str,
    item_id: Optional[int] = None,
) -> List[Dict[str, Any]]:
    """
    台账 ↔ 快照 对账（只读）

    对每个快照维度校验：
      qty_on_hand == Σ ledger.qty_change == 最后一条 ledger.qty_after
    返回不一致的维度；同时覆盖"有台账无快照"的孤儿维度。
    """
    key = (StockLedger.bin_id, StockLedger.item_id, StockLedger.batch_no)

    sums_stmt = (
        select(*key, func.sum(StockLedger.qty_change), func.max(StockLedger.id))
        .where(StockLedger.tenant_id == tenant_id)
        .group_by(*key)
    )
    snap_stmt = select(StockSnapshot).where(StockSnapshot.tenant_id == tenant_id)
    if item_id is not None:
        sums_stmt = sums_stmt.where(StockLedger.item_id == int(item_id))
        snap_stmt = snap_stmt.where(StockSnapshot.item_id == int(item_id))

    ledger_rows = (await session.execute(sums_stmt)).all()
    last_ids = [int(r[4]) for r in ledger_rows]
    last_after: Dict[int, int] = {}
    if last_ids:
        rows = (
            await session.execute(
                select(StockLedger.id, StockLedger.qty_after).where(StockLedger.id.in_(last_ids))
            )
        ).all()
        last_after = {int(i): int(a) for i, a in rows}

    ledger_by_key = {
        (int(b), int(i), bn or ""): (int(total or 0), last_after.get(int(last_id)))
        for b, i, bn, total, last_id in ledger_rows
    }
    snaps = (await session.execute(snap_stmt.execution_options(populate_existing=True))).scalars().all()
    snap_by_key = {(s.bin_id, s.item_id, s.batch_no or ""): s for s in snaps}

    mismatches: List[Dict[str, Any]] = []
    for k in sorted(set(ledger_by_key) | set(snap_by_key)):
        ledger_sum, last_qty_after = ledger_by_key.get(k, (0, None))
        snap = snap_by_key.get(k)
        on_hand = int(snap.qty_on_hand) if snap is not None else None

        ok = on_hand is not None and on_hand == ledger_sum
        if last_qty_after is not None:
            ok = ok and last_qty_after == ledger_sum
        if ok:
            continue

        bin_id, i_id, bno = k
        mismatches.append(
            {
                "bin_id": bin_id,
                "item_id": i_id,
                "batch_no": batch_or_none(bno),
                "snapshot_qty_on_hand": on_hand,
                "ledger_sum": ledger_sum,
                "last_qty_after": last_qty_after,
            }
        )

    if mismatches:
        ledger_snapshot_mismatch_total.inc(len(mismatches))
        log.warning("reconcile tenant=%s item=%s mismatches=%s", tenant_id, item_id, len(mismatches))
    return mismatches
