# wmsledger/services/cycle_count_service.py
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from wmsledger.models.adjustment import Adjustment
from wmsledger.models.cycle_count import CycleCount, CycleCountLine
from wmsledger.models.enums import CycleCountStatus, LedgerReason
from wmsledger.models.stock_snapshot import StockSnapshot
from wmsledger.services.adjustment_service import AdjustmentService
from wmsledger.services.db_guard import conflict_guard
from wmsledger.services.doc_no import next_doc_no
from wmsledger.services.errors import NotFound, ValidationFailed
from wmsledger.services.master_data import get_warehouse, list_bin_ids, require_bin_in_warehouse
from wmsledger.services.state_machine import CYCLE_COUNT_TRANSITIONS, require_status, transition
from wmsledger.services.stock_service import StockService, norm_batch

UTC = timezone.utc
log = logging.getLogger("wmsledger.cycle_count")

WORKFLOW = "cycle_count"
COUNTABLE = (CycleCountStatus.OPEN, CycleCountStatus.IN_PROGRESS)


class CycleCountService:
    """
    盘点：OPEN → IN_PROGRESS → PENDING_APPROVAL → CLOSED；未结案前均可 CANCELLED

    - 开单时冻结账面基线（expected_qty），盘点期间不随实时库存刷新
    - 提交审批时计算 variance = counted - expected
    - close 对每个非零差异行落一条 ADJUST 台账；任一行会让在库为负则整单失败，需重盘
    - recount：PENDING_APPROVAL → IN_PROGRESS，按当前账面重新冻结基线、清空实盘录入
    - 也可以 generate_adjustment：差异转成 DRAFT 调整单走审批链，盘点单直接关闭、不落台账
    """

    def __init__(self, stock: Optional[StockService] = None, adjustments: Optional[AdjustmentService] = None) -> None:
        self.stock = stock or StockService()
        self.adjustments = adjustments or AdjustmentService(self.stock)

    # ---------------------------------------------------------------
    # 读
    # ---------------------------------------------------------------
    async def get_count(self, session: AsyncSession, *, tenant_id: str, count_id: int) -> CycleCount:
        cc = (
            await session.execute(
                select(CycleCount)
                .where(CycleCount.id == int(count_id), CycleCount.tenant_id == tenant_id)
                .execution_options(populate_existing=True)
            )
        ).scalar_one_or_none()
        if cc is None:
            raise NotFound(f"盘点单不存在：count_id={count_id}", context={"count_id": count_id})
        return cc

    async def list_counts(
        self,
        session: AsyncSession,
        *,
        tenant_id: str,
        status: Optional[str] = None,
        warehouse_id: Optional[int] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[CycleCount]:
        stmt = select(CycleCount).where(CycleCount.tenant_id == tenant_id)
        if status:
            stmt = stmt.where(CycleCount.status == str(status))
        if warehouse_id is not None:
            stmt = stmt.where(CycleCount.warehouse_id == int(warehouse_id))
        stmt = stmt.order_by(CycleCount.id.desc()).limit(int(limit)).offset(int(offset))
        return list((await session.execute(stmt)).scalars().all())

    async def variance_lines(self, session: AsyncSession, *, tenant_id: str, count_id: int) -> List[CycleCountLine]:
        cc = await self.get_count(session, tenant_id=tenant_id, count_id=count_id)
        return [ln for ln in cc.lines if ln.variance_qty]

    # ---------------------------------------------------------------
    # 开单（冻结基线）
    # ---------------------------------------------------------------
    async def open_count(
        self,
        session: AsyncSession,
        *,
        tenant_id: str,
        warehouse_id: int,
        bin_ids: Optional[Sequence[int]] = None,
        item_ids: Optional[Sequence[int]] = None,
        created_by: Optional[str] = None,
    ) -> CycleCount:
        await get_warehouse(session, tenant_id, warehouse_id)
        scope_bins = await list_bin_ids(session, tenant_id, warehouse_id, only=bin_ids)
        if bin_ids:
            outside = sorted(set(int(b) for b in bin_ids) - set(scope_bins))
            if outside:
                raise ValidationFailed(
                    "盘点范围内的库位不属于该仓库",
                    context={"warehouse_id": warehouse_id, "bin_ids": outside},
                )

        stmt = select(StockSnapshot).where(
            StockSnapshot.tenant_id == tenant_id,
            StockSnapshot.bin_id.in_(scope_bins),
            StockSnapshot.qty_on_hand > 0,
        )
        if item_ids:
            stmt = stmt.where(StockSnapshot.item_id.in_([int(i) for i in item_ids]))
        stmt = stmt.order_by(StockSnapshot.bin_id, StockSnapshot.item_id, StockSnapshot.batch_no)
        snaps = (await session.execute(stmt.execution_options(populate_existing=True))).scalars().all()

        cc = CycleCount(
            tenant_id=tenant_id,
            count_no=await next_doc_no(session, CycleCount.count_no, tenant_id=tenant_id, prefix="CC"),
            warehouse_id=int(warehouse_id),
            status=CycleCountStatus.OPEN,
            version=0,
            lines=[],
            created_by=created_by,
        )
        for s in snaps:
            cc.lines.append(
                CycleCountLine(
                    tenant_id=tenant_id,
                    bin_id=s.bin_id,
                    item_id=s.item_id,
                    batch_no=s.batch_no,
                    expected_qty=int(s.qty_on_hand),
                )
            )
        session.add(cc)
        async with conflict_guard("open_count", count_no=cc.count_no):
            await session.flush()
        log.info(
            "cycle count opened id=%s no=%s wh=%s lines=%s", cc.id, cc.count_no, warehouse_id, len(cc.lines)
        )
        return cc

    async def add_line(
        self,
        session: AsyncSession,
        *,
        tenant_id: str,
        count_id: int,
        bin_id: int,
        item_id: int,
        batch_no: Optional[str] = None,
    ) -> CycleCountLine:
        """手工补行（盘到了账上没有的货）；基线取当前账面，没有则为 0。"""
        cc = await self.get_count(session, tenant_id=tenant_id, count_id=count_id)
        require_status(cc, WORKFLOW, "add_line", *COUNTABLE)
        await require_bin_in_warehouse(session, tenant_id, bin_id, cc.warehouse_id)

        bno = norm_batch(batch_no)
        if any(
            ln.bin_id == int(bin_id) and ln.item_id == int(item_id) and (ln.batch_no or "") == bno
            for ln in cc.lines
        ):
            raise ValidationFailed(
                "盘点单已包含该 库位/商品/批次",
                context={"bin_id": bin_id, "item_id": item_id, "batch_no": batch_no},
            )
        snap = await self.stock.get_snapshot(
            session, tenant_id=tenant_id, bin_id=bin_id, item_id=item_id, batch_no=bno
        )
        line = CycleCountLine(
            tenant_id=tenant_id,
            bin_id=int(bin_id),
            item_id=int(item_id),
            batch_no=bno,
            expected_qty=int(snap.qty_on_hand) if snap else 0,
        )
        cc.lines.append(line)
        await session.flush()
        await transition(session, cc, workflow=WORKFLOW, table=CYCLE_COUNT_TRANSITIONS)
        return line

    async def remove_line(self, session: AsyncSession, *, tenant_id: str, count_id: int, line_id: int) -> CycleCount:
        cc = await self.get_count(session, tenant_id=tenant_id, count_id=count_id)
        require_status(cc, WORKFLOW, "remove_line", *COUNTABLE)
        line = next((ln for ln in cc.lines if ln.id == int(line_id)), None)
        if line is None:
            raise NotFound(f"盘点行不存在：line_id={line_id}", context={"count_id": cc.id, "line_id": line_id})
        cc.lines.remove(line)
        await session.flush()
        return await transition(session, cc, workflow=WORKFLOW, table=CYCLE_COUNT_TRANSITIONS)

    async def delete_count(self, session: AsyncSession, *, tenant_id: str, count_id: int) -> None:
        """只有 OPEN 单可以物理删除（首次录入实盘即进入 IN_PROGRESS）。"""
        cc = await self.get_count(session, tenant_id=tenant_id, count_id=count_id)
        require_status(cc, WORKFLOW, "delete", CycleCountStatus.OPEN)
        await session.delete(cc)
        await session.flush()
        log.info("cycle count deleted id=%s no=%s tenant=%s", cc.id, cc.count_no, tenant_id)

    # ---------------------------------------------------------------
    # 录入 / 提交
    # ---------------------------------------------------------------
    async def record_count(
        self,
        session: AsyncSession,
        *,
        tenant_id: str,
        count_id: int,
        line_id: int,
        counted_qty: int,
        counted_by: Optional[str] = None,
    ) -> CycleCountLine:
        cc = await self.get_count(session, tenant_id=tenant_id, count_id=count_id)
        require_status(cc, WORKFLOW, "record_count", *COUNTABLE)
        if int(counted_qty) < 0:
            raise ValidationFailed("实盘数量不能为负", context={"line_id": line_id, "counted_qty": counted_qty})
        line = next((ln for ln in cc.lines if ln.id == int(line_id)), None)
        if line is None:
            raise NotFound(f"盘点行不存在：line_id={line_id}", context={"count_id": cc.id, "line_id": line_id})

        now = datetime.now(UTC)
        line.counted_qty = int(counted_qty)
        line.counted_by = counted_by
        line.counted_at = now

        if cc.status == CycleCountStatus.OPEN:
            await transition(
                session,
                cc,
                workflow=WORKFLOW,
                table=CYCLE_COUNT_TRANSITIONS,
                to_status=CycleCountStatus.IN_PROGRESS,
                started_at=now,
            )
        else:
            await transition(session, cc, workflow=WORKFLOW, table=CYCLE_COUNT_TRANSITIONS)
        return line

    async def submit_for_approval(self, session: AsyncSession, *, tenant_id: str, count_id: int) -> CycleCount:
        cc = await self.get_count(session, tenant_id=tenant_id, count_id=count_id)
        require_status(cc, WORKFLOW, "submit", CycleCountStatus.IN_PROGRESS)
        uncounted = [ln.id for ln in cc.lines if ln.counted_qty is None]
        if uncounted:
            raise ValidationFailed(
                "仍有未录入实盘数量的行", context={"count_id": cc.id, "line_ids": uncounted}
            )
        for ln in cc.lines:
            ln.variance_qty = int(ln.counted_qty) - int(ln.expected_qty)

        return await transition(
            session,
            cc,
            workflow=WORKFLOW,
            table=CYCLE_COUNT_TRANSITIONS,
            to_status=CycleCountStatus.PENDING_APPROVAL,
            submitted_at=datetime.now(UTC),
        )

    async def recount(self, session: AsyncSession, *, tenant_id: str, count_id: int) -> CycleCount:
        """
        退回重盘：基线按当前账面重新冻结，实盘 / 差异清空，状态回到 IN_PROGRESS。

        结案因在库不足被拒（审批期间有出库）时走这里，不能沿用旧基线。
        """
        cc = await self.get_count(session, tenant_id=tenant_id, count_id=count_id)
        require_status(cc, WORKFLOW, "recount", CycleCountStatus.PENDING_APPROVAL)
        for ln in cc.lines:
            snap = await self.stock.get_snapshot(
                session, tenant_id=tenant_id, bin_id=ln.bin_id, item_id=ln.item_id, batch_no=ln.batch_no
            )
            ln.expected_qty = int(snap.qty_on_hand) if snap else 0
            ln.counted_qty = None
            ln.counted_by = None
            ln.counted_at = None
            ln.variance_qty = None
        await session.flush()

        cc = await transition(
            session,
            cc,
            workflow=WORKFLOW,
            table=CYCLE_COUNT_TRANSITIONS,
            to_status=CycleCountStatus.IN_PROGRESS,
            submitted_at=None,
        )
        log.info("cycle count=%s sent back for recount", cc.id)
        return cc

    # ---------------------------------------------------------------
    # 结案
    # ---------------------------------------------------------------
    async def close(
        self,
        session: AsyncSession,
        *,
        tenant_id: str,
        count_id: int,
        approved_by: Optional[str] = None,
    ) -> CycleCount:
        cc = await self.get_count(session, tenant_id=tenant_id, count_id=count_id)
        require_status(cc, WORKFLOW, "close", CycleCountStatus.PENDING_APPROVAL)

        posted = 0
        for ln in cc.lines:
            if not ln.variance_qty:
                continue
            await self.stock.apply_movement(
                session,
                tenant_id=tenant_id,
                bin_id=ln.bin_id,
                item_id=ln.item_id,
                batch_no=ln.batch_no,
                reason=LedgerReason.ADJUST,
                delta=int(ln.variance_qty),
                ref=cc.count_no,
                ref_line=ln.id,
                ref_type=WORKFLOW,
                ref_id=cc.id,
                created_by=approved_by,
                note="cycle count variance",
            )
            posted += 1

        await transition(
            session,
            cc,
            workflow=WORKFLOW,
            table=CYCLE_COUNT_TRANSITIONS,
            to_status=CycleCountStatus.CLOSED,
            approved_by=approved_by,
            closed_at=datetime.now(UTC),
        )
        log.info("cycle count=%s closed adjustments=%s", cc.id, posted)
        return cc

    async def generate_adjustment(
        self,
        session: AsyncSession,
        *,
        tenant_id: str,
        count_id: int,
        approved_by: Optional[str] = None,
    ) -> Adjustment:
        """差异转 DRAFT 调整单（走调整审批链），盘点单关闭且自身不落台账。"""
        cc = await self.get_count(session, tenant_id=tenant_id, count_id=count_id)
        require_status(cc, WORKFLOW, "generate_adjustment", CycleCountStatus.PENDING_APPROVAL)
        variances = [ln for ln in cc.lines if ln.variance_qty]
        if not variances:
            raise ValidationFailed("盘点无差异，无需生成调整单", context={"count_id": cc.id})

        adj = await self.adjustments.create_adjustment(
            session,
            tenant_id=tenant_id,
            warehouse_id=cc.warehouse_id,
            reason="CYCLE_COUNT",
            notes=f"from {cc.count_no}",
            cycle_count_id=cc.id,
            created_by=approved_by,
        )
        for ln in variances:
            await self.adjustments.add_line(
                session,
                tenant_id=tenant_id,
                adjustment_id=adj.id,
                bin_id=ln.bin_id,
                item_id=ln.item_id,
                batch_no=ln.batch_no,
                qty_delta=int(ln.variance_qty),
                reason=f"{cc.count_no} line {ln.id}",
            )

        await transition(
            session,
            cc,
            workflow=WORKFLOW,
            table=CYCLE_COUNT_TRANSITIONS,
            to_status=CycleCountStatus.CLOSED,
            approved_by=approved_by,
            closed_at=datetime.now(UTC),
        )
        return await self.adjustments.get_adjustment(session, tenant_id=tenant_id, adjustment_id=adj.id)

    async def cancel(self, session: AsyncSession, *, tenant_id: str, count_id: int) -> CycleCount:
        cc = await self.get_count(session, tenant_id=tenant_id, count_id=count_id)
        return await transition(
            session, cc, workflow=WORKFLOW, table=CYCLE_COUNT_TRANSITIONS, to_status=CycleCountStatus.CANCELLED
        )
