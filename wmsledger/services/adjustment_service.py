# wmsledger/services/adjustment_service.py
from __future__ import annotations

import logging
from collections import defaultdict
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from wmsledger.models.adjustment import Adjustment, AdjustmentLine
from wmsledger.models.enums import AdjustmentStatus, LedgerReason
from wmsledger.obs.metrics import stock_rejections_total
from wmsledger.services.db_guard import conflict_guard
from wmsledger.services.doc_no import next_doc_no
from wmsledger.services.errors import InsufficientStock, NotFound, ValidationFailed, shortage_detail
from wmsledger.services.master_data import get_warehouse, require_bin_in_warehouse
from wmsledger.services.state_machine import ADJUSTMENT_TRANSITIONS, require_status, transition
from wmsledger.services.stock_service import StockService, batch_or_none, norm_batch

UTC = timezone.utc
log = logging.getLogger("wmsledger.adjustment")

WORKFLOW = "adjustment"

Key = Tuple[int, int, str]


class AdjustmentService:
    """
    库存调整单：DRAFT → SUBMITTED → APPROVED → POSTED；SUBMITTED → REJECTED

    post 全单原子：
      1) 预检：按 (bin, item, batch) 汇总所有行的 delta，对照快照校验，
         任一维度会让在库为负（或低于已预占）即整单拒绝，不落任何台账
      2) 逐行落 ADJUST 台账，回填 qty_before / qty_after / ledger_id
    预检之后若遇并发扣减，apply_movement 自身的校验仍会拒绝，外层事务整体回滚。
    """

    def __init__(self, stock: Optional[StockService] = None) -> None:
        self.stock = stock or StockService()

    async def get_adjustment(self, session: AsyncSession, *, tenant_id: str, adjustment_id: int) -> Adjustment:
        adj = (
            await session.execute(
                select(Adjustment)
                .where(Adjustment.id == int(adjustment_id), Adjustment.tenant_id == tenant_id)
                .execution_options(populate_existing=True)
            )
        ).scalar_one_or_none()
        if adj is None:
            raise NotFound(
                f"调整单不存在：adjustment_id={adjustment_id}", context={"adjustment_id": adjustment_id}
            )
        return adj

    async def list_adjustments(
        self,
        session: AsyncSession,
        *,
        tenant_id: str,
        status: Optional[str] = None,
        warehouse_id: Optional[int] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[Adjustment]:
        stmt = select(Adjustment).where(Adjustment.tenant_id == tenant_id)
        if status:
            stmt = stmt.where(Adjustment.status == str(status))
        if warehouse_id is not None:
            stmt = stmt.where(Adjustment.warehouse_id == int(warehouse_id))
        stmt = stmt.order_by(Adjustment.id.desc()).limit(int(limit)).offset(int(offset))
        return list((await session.execute(stmt)).scalars().all())

    async def create_adjustment(
        self,
        session: AsyncSession,
        *,
        tenant_id: str,
        warehouse_id: int,
        reason: str,
        notes: Optional[str] = None,
        cycle_count_id: Optional[int] = None,
        created_by: Optional[str] = None,
    ) -> Adjustment:
        if not (reason or "").strip():
            raise ValidationFailed("调整原因必填")
        await get_warehouse(session, tenant_id, warehouse_id)
        adj = Adjustment(
            tenant_id=tenant_id,
            adjustment_no=await next_doc_no(session, Adjustment.adjustment_no, tenant_id=tenant_id, prefix="ADJ"),
            warehouse_id=int(warehouse_id),
            reason=reason.strip(),
            notes=notes,
            cycle_count_id=cycle_count_id,
            status=AdjustmentStatus.DRAFT,
            version=0,
            lines=[],
            created_by=created_by,
        )
        session.add(adj)
        async with conflict_guard("create_adjustment", adjustment_no=adj.adjustment_no):
            await session.flush()
        log.info("adjustment created id=%s no=%s tenant=%s", adj.id, adj.adjustment_no, tenant_id)
        return adj

    async def add_line(
        self,
        session: AsyncSession,
        *,
        tenant_id: str,
        adjustment_id: int,
        bin_id: int,
        item_id: int,
        qty_delta: int,
        reason: str,
        batch_no: Optional[str] = None,
    ) -> AdjustmentLine:
        adj = await self.get_adjustment(session, tenant_id=tenant_id, adjustment_id=adjustment_id)
        require_status(adj, WORKFLOW, "add_line", AdjustmentStatus.DRAFT)
        if int(qty_delta) == 0:
            raise ValidationFailed("调整数量不能为 0", context={"item_id": item_id})
        if not (reason or "").strip():
            raise ValidationFailed("行级调整原因必填", context={"item_id": item_id})
        await require_bin_in_warehouse(session, tenant_id, bin_id, adj.warehouse_id)

        line = AdjustmentLine(
            tenant_id=tenant_id,
            bin_id=int(bin_id),
            item_id=int(item_id),
            batch_no=norm_batch(batch_no),
            qty_delta=int(qty_delta),
            reason=reason.strip(),
        )
        adj.lines.append(line)
        await session.flush()
        await transition(session, adj, workflow=WORKFLOW, table=ADJUSTMENT_TRANSITIONS)
        return line

    async def remove_line(
        self, session: AsyncSession, *, tenant_id: str, adjustment_id: int, line_id: int
    ) -> Adjustment:
        adj = await self.get_adjustment(session, tenant_id=tenant_id, adjustment_id=adjustment_id)
        require_status(adj, WORKFLOW, "remove_line", AdjustmentStatus.DRAFT)
        line = next((ln for ln in adj.lines if ln.id == int(line_id)), None)
        if line is None:
            raise NotFound(f"调整行不存在：line_id={line_id}", context={"line_id": line_id})
        adj.lines.remove(line)
        await session.flush()
        return await transition(session, adj, workflow=WORKFLOW, table=ADJUSTMENT_TRANSITIONS)

    async def delete_adjustment(self, session: AsyncSession, *, tenant_id: str, adjustment_id: int) -> None:
        adj = await self.get_adjustment(session, tenant_id=tenant_id, adjustment_id=adjustment_id)
        require_status(adj, WORKFLOW, "delete", AdjustmentStatus.DRAFT)
        await session.delete(adj)
        await session.flush()

    async def submit(self, session: AsyncSession, *, tenant_id: str, adjustment_id: int) -> Adjustment:
        adj = await self.get_adjustment(session, tenant_id=tenant_id, adjustment_id=adjustment_id)
        require_status(adj, WORKFLOW, "submit", AdjustmentStatus.DRAFT)
        if not adj.lines:
            raise ValidationFailed("调整单至少需要一行", context={"adjustment_id": adj.id})
        return await transition(
            session, adj, workflow=WORKFLOW, table=ADJUSTMENT_TRANSITIONS, to_status=AdjustmentStatus.SUBMITTED
        )

    async def approve(
        self, session: AsyncSession, *, tenant_id: str, adjustment_id: int, approved_by: Optional[str] = None
    ) -> Adjustment:
        adj = await self.get_adjustment(session, tenant_id=tenant_id, adjustment_id=adjustment_id)
        return await transition(
            session,
            adj,
            workflow=WORKFLOW,
            table=ADJUSTMENT_TRANSITIONS,
            to_status=AdjustmentStatus.APPROVED,
            approved_by=approved_by,
            approved_at=datetime.now(UTC),
        )

    async def reject(
        self, session: AsyncSession, *, tenant_id: str, adjustment_id: int, reason: str
    ) -> Adjustment:
        adj = await self.get_adjustment(session, tenant_id=tenant_id, adjustment_id=adjustment_id)
        return await transition(
            session,
            adj,
            workflow=WORKFLOW,
            table=ADJUSTMENT_TRANSITIONS,
            to_status=AdjustmentStatus.REJECTED,
            rejected_reason=(reason or "").strip() or None,
        )

    async def _precheck(self, session: AsyncSession, adj: Adjustment) -> None:
        net: Dict[Key, int] = defaultdict(int)
        for ln in adj.lines:
            net[(ln.bin_id, ln.item_id, ln.batch_no or "")] += int(ln.qty_delta)

        shortages = []
        for (bin_id, item_id, bno), delta in net.items():
            if delta >= 0:
                continue
            snap = await self.stock.get_snapshot(
                session, tenant_id=adj.tenant_id, bin_id=bin_id, item_id=item_id, batch_no=bno
            )
            on_hand = int(snap.qty_on_hand) if snap else 0
            reserved = int(snap.qty_reserved) if snap else 0
            if on_hand + delta < reserved:
                shortages.append(
                    shortage_detail(
                        item_id=item_id,
                        bin_id=bin_id,
                        batch_no=batch_or_none(bno),
                        required_qty=-delta,
                        available_qty=on_hand - reserved,
                        path=f"adjustments[{adj.id}]",
                    )
                )
        if shortages:
            stock_rejections_total.labels(InsufficientStock.error_code).inc()
            log.warning("adjustment=%s post rejected shortages=%s", adj.id, len(shortages))
            raise InsufficientStock(
                f"调整单 {adj.adjustment_no} 过账会使在库为负，整单拒绝",
                context={"adjustment_id": adj.id, "adjustment_no": adj.adjustment_no},
                details=shortages,
            )

    async def post(
        self, session: AsyncSession, *, tenant_id: str, adjustment_id: int, posted_by: Optional[str] = None
    ) -> Adjustment:
        adj = await self.get_adjustment(session, tenant_id=tenant_id, adjustment_id=adjustment_id)
        require_status(adj, WORKFLOW, "post", AdjustmentStatus.APPROVED)
        await self._precheck(session, adj)

        # 先加后减，避免同维度中间态为负
        for ln in sorted(adj.lines, key=lambda x: int(x.qty_delta) < 0):
            entry = await self.stock.apply_movement(
                session,
                tenant_id=tenant_id,
                bin_id=ln.bin_id,
                item_id=ln.item_id,
                batch_no=ln.batch_no,
                reason=LedgerReason.ADJUST,
                delta=int(ln.qty_delta),
                ref=adj.adjustment_no,
                ref_line=ln.id,
                ref_type=WORKFLOW,
                ref_id=adj.id,
                created_by=posted_by,
                note=ln.reason,
            )
            ln.qty_after = int(entry.qty_after)
            ln.qty_before = int(entry.qty_after) - int(entry.qty_change)
            ln.ledger_id = entry.id

        await transition(
            session,
            adj,
            workflow=WORKFLOW,
            table=ADJUSTMENT_TRANSITIONS,
            to_status=AdjustmentStatus.POSTED,
            posted_at=datetime.now(UTC),
        )
        log.info("adjustment=%s posted lines=%s", adj.id, len(adj.lines))
        return adj
