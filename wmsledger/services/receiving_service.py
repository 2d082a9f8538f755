# wmsledger/services/receiving_service.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from wmsledger.models.enums import GrnStatus, LedgerReason, PutawayStatus
from wmsledger.models.grn import Grn, GrnLine
from wmsledger.models.putaway_task import PutawayTask
from wmsledger.models.stock_ledger import StockLedger
from wmsledger.services.batch_service import BatchService
from wmsledger.services.db_guard import conflict_guard
from wmsledger.services.doc_no import next_doc_no
from wmsledger.services.errors import InvalidTransition, NotFound, ValidationFailed
from wmsledger.services.ledger_writer import find_replay
from wmsledger.services.master_data import get_warehouse, require_bin_in_warehouse
from wmsledger.services.state_machine import GRN_TRANSITIONS, require_status, transition
from wmsledger.services.stock_service import StockService, norm_batch

UTC = timezone.utc
log = logging.getLogger("wmsledger.receiving")

WORKFLOW = "grn"
RECEIVABLE = (GrnStatus.OPEN, GrnStatus.PARTIAL, GrnStatus.RECEIVED)


@dataclass
class ReceiptResult:
    grn: Grn
    line: GrnLine
    task: Optional[PutawayTask]
    entry: StockLedger
    replayed: bool = False


def receipt_status(lines: Iterable[GrnLine]) -> GrnStatus:
    """一行都没收 → OPEN；任一行未收足 → PARTIAL；否则 RECEIVED。"""
    lines = list(lines)
    if not any(int(ln.qty_received or 0) > 0 for ln in lines):
        return GrnStatus.OPEN
    if any(ln.is_short for ln in lines):
        return GrnStatus.PARTIAL
    return GrnStatus.RECEIVED


class ReceivingService:
    """
    收货单（GRN）工作流

        DRAFT → OPEN → PARTIAL → RECEIVED → COMPLETE
        DRAFT / OPEN（且未收货）→ CANCELLED

    每次 receive_line：
      1) 收货库位落 RECEIVE 台账（+qty）
      2) 累加行实收；计划外商品自动补一行 qty_expected=0
      3) 生成一条 PENDING 上架任务
      4) 按行进度重算单头状态（版本校验）
    COMPLETE 只能显式调用 complete_grn。
    """

    def __init__(self, stock: Optional[StockService] = None, batches: Optional[BatchService] = None) -> None:
        self.stock = stock or StockService()
        self.batches = batches or self.stock.batches

    # ---------------------------------------------------------------
    # 读
    # ---------------------------------------------------------------
    async def get_grn(self, session: AsyncSession, *, tenant_id: str, grn_id: int) -> Grn:
        grn = (
            await session.execute(
                select(Grn)
                .where(Grn.id == int(grn_id), Grn.tenant_id == tenant_id)
                .execution_options(populate_existing=True)
            )
        ).scalar_one_or_none()
        if grn is None:
            raise NotFound(f"收货单不存在：grn_id={grn_id}", context={"grn_id": grn_id})
        return grn

    async def list_grns(
        self,
        session: AsyncSession,
        *,
        tenant_id: str,
        status: Optional[str] = None,
        warehouse_id: Optional[int] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[Grn]:
        stmt = select(Grn).where(Grn.tenant_id == tenant_id)
        if status:
            stmt = stmt.where(Grn.status == str(status))
        if warehouse_id is not None:
            stmt = stmt.where(Grn.warehouse_id == int(warehouse_id))
        stmt = stmt.order_by(Grn.id.desc()).limit(int(limit)).offset(int(offset))
        return list((await session.execute(stmt)).scalars().all())

    # ---------------------------------------------------------------
    # 建单 / 计划行
    # ---------------------------------------------------------------
    async def create_grn(
        self,
        session: AsyncSession,
        *,
        tenant_id: str,
        warehouse_id: int,
        supplier_ref: Optional[str] = None,
        purchase_order_ref: Optional[str] = None,
        notes: Optional[str] = None,
        created_by: Optional[str] = None,
        lines: Optional[List[Dict[str, Any]]] = None,
    ) -> Grn:
        await get_warehouse(session, tenant_id, warehouse_id)

        grn = Grn(
            tenant_id=tenant_id,
            grn_no=await next_doc_no(session, Grn.grn_no, tenant_id=tenant_id, prefix="GRN"),
            warehouse_id=int(warehouse_id),
            supplier_ref=supplier_ref,
            purchase_order_ref=purchase_order_ref,
            notes=notes,
            created_by=created_by,
            status=GrnStatus.DRAFT,
            version=0,
            lines=[],
        )
        for ln in lines or []:
            grn.lines.append(self._new_line(tenant_id, **ln))
        session.add(grn)
        async with conflict_guard("create_grn", grn_no=grn.grn_no):
            await session.flush()
        log.info("grn created id=%s no=%s tenant=%s lines=%s", grn.id, grn.grn_no, tenant_id, len(grn.lines))
        return grn

    @staticmethod
    def _new_line(
        tenant_id: str,
        *,
        item_id: int,
        qty_expected: int,
        batch_no: Optional[str] = None,
        expiry_date: Optional[date] = None,
    ) -> GrnLine:
        if int(qty_expected) <= 0:
            raise ValidationFailed("应收数量必须为正", context={"item_id": item_id, "qty_expected": qty_expected})
        return GrnLine(
            tenant_id=tenant_id,
            item_id=int(item_id),
            qty_expected=int(qty_expected),
            qty_received=0,
            batch_no=norm_batch(batch_no) or None,
            expiry_date=expiry_date,
        )

    async def add_expected_line(
        self,
        session: AsyncSession,
        *,
        tenant_id: str,
        grn_id: int,
        item_id: int,
        qty_expected: int,
        batch_no: Optional[str] = None,
        expiry_date: Optional[date] = None,
    ) -> GrnLine:
        grn = await self.get_grn(session, tenant_id=tenant_id, grn_id=grn_id)
        require_status(grn, WORKFLOW, "add_expected_line", GrnStatus.DRAFT, GrnStatus.OPEN)

        line = self._new_line(
            tenant_id, item_id=item_id, qty_expected=qty_expected, batch_no=batch_no, expiry_date=expiry_date
        )
        grn.lines.append(line)
        await session.flush()
        await transition(session, grn, workflow=WORKFLOW, table=GRN_TRANSITIONS)
        return line

    async def open_grn(self, session: AsyncSession, *, tenant_id: str, grn_id: int) -> Grn:
        grn = await self.get_grn(session, tenant_id=tenant_id, grn_id=grn_id)
        return await transition(
            session, grn, workflow=WORKFLOW, table=GRN_TRANSITIONS, to_status=GrnStatus.OPEN
        )

    # ---------------------------------------------------------------
    # 收货
    # ---------------------------------------------------------------
    @staticmethod
    def _match_line(
        grn: Grn, *, item_id: int, batch_no: str, line_id: Optional[int]
    ) -> Optional[GrnLine]:
        if line_id is not None:
            line = next((ln for ln in grn.lines if ln.id == int(line_id)), None)
            if line is None:
                raise NotFound(f"收货行不存在：line_id={line_id}", context={"grn_id": grn.id, "line_id": line_id})
            if int(line.item_id) != int(item_id):
                raise ValidationFailed(
                    "收货商品与行商品不一致",
                    context={"line_id": line.id, "line_item_id": line.item_id, "item_id": item_id},
                )
            return line

        candidates = [
            ln
            for ln in grn.lines
            if int(ln.item_id) == int(item_id) and (not ln.batch_no or not batch_no or ln.batch_no == batch_no)
        ]
        # 优先落在未收足的行
        for ln in candidates:
            if ln.is_short:
                return ln
        return candidates[0] if candidates else None

    async def _replayed_receipt(self, session: AsyncSession, grn: Grn, entry: StockLedger) -> ReceiptResult:
        task = (
            await session.execute(select(PutawayTask).where(PutawayTask.ledger_id == entry.id))
        ).scalar_one_or_none()
        line = next((ln for ln in grn.lines if task is not None and ln.id == task.grn_line_id), None)
        if line is None:
            raise ValidationFailed(
                f"ref={entry.ref} 已被其他收货使用", context={"grn_id": grn.id, "ref": entry.ref}
            )
        log.info("receipt replay ignored grn=%s ref=%s", grn.id, entry.ref)
        return ReceiptResult(grn=grn, line=line, task=task, entry=entry, replayed=True)

    async def receive_line(
        self,
        session: AsyncSession,
        *,
        tenant_id: str,
        grn_id: int,
        item_id: int,
        qty: int,
        bin_id: int,
        batch_no: Optional[str] = None,
        expiry_date: Optional[date] = None,
        manufactured_date: Optional[date] = None,
        line_id: Optional[int] = None,
        ref: Optional[str] = None,
        received_by: Optional[str] = None,
    ) -> ReceiptResult:
        qty = int(qty)
        bno = norm_batch(batch_no)
        grn = await self.get_grn(session, tenant_id=tenant_id, grn_id=grn_id)

        if ref:
            prior = await find_replay(
                session,
                tenant_id=tenant_id,
                reason=LedgerReason.RECEIVE,
                bin_id=int(bin_id),
                item_id=int(item_id),
                batch_no=bno,
                ref=ref,
                ref_line=1,
            )
            if prior is not None:
                return await self._replayed_receipt(session, grn, prior)

        require_status(grn, WORKFLOW, "receive_line", *RECEIVABLE)
        if qty <= 0:
            raise ValidationFailed("实收数量必须为正", context={"grn_id": grn.id, "qty": qty})
        await require_bin_in_warehouse(session, tenant_id, bin_id, grn.warehouse_id, role="收货库位")

        line = self._match_line(grn, item_id=item_id, batch_no=bno, line_id=line_id)
        if line is None:
            # 计划外商品：补一行 expected=0
            line = GrnLine(tenant_id=tenant_id, item_id=int(item_id), qty_expected=0, qty_received=0)
            grn.lines.append(line)
            await session.flush()
            log.info("grn=%s unexpected item=%s received", grn.id, item_id)

        # 本次未带效期时沿用计划行上的效期（批次与非批次一样）
        expiry_date = expiry_date or line.expiry_date
        if bno:
            batch = await self.batches.ensure_batch(
                session,
                tenant_id=tenant_id,
                item_id=item_id,
                batch_no=bno,
                expiry_date=expiry_date,
                manufactured_date=manufactured_date,
                grn_id=grn.id,
            )
            line.batch_id = batch.id
            expiry_date = batch.expiry_date or expiry_date
        line.batch_no = line.batch_no or (bno or None)
        line.expiry_date = line.expiry_date or expiry_date
        line.receiving_bin_id = int(bin_id)
        line.qty_received = int(line.qty_received or 0) + qty

        entry = await self.stock.apply_movement(
            session,
            tenant_id=tenant_id,
            bin_id=bin_id,
            item_id=item_id,
            batch_no=bno,
            reason=LedgerReason.RECEIVE,
            delta=qty,
            expiry_date=expiry_date,
            ref=ref,
            ref_type=WORKFLOW,
            ref_id=grn.id,
            created_by=received_by,
        )

        task = PutawayTask(
            tenant_id=tenant_id,
            grn_id=grn.id,
            grn_line_id=line.id,
            item_id=int(item_id),
            batch_no=bno or None,
            qty=qty,
            from_bin_id=int(bin_id),
            status=PutawayStatus.PENDING,
            version=0,
            ledger_id=entry.id,
        )
        session.add(task)
        await session.flush()

        new_status = receipt_status(grn.lines)
        extra: Dict[str, Any] = {}
        if new_status == GrnStatus.RECEIVED and grn.received_at is None:
            extra["received_at"] = datetime.now(UTC)
        await transition(
            session, grn, workflow=WORKFLOW, table=GRN_TRANSITIONS, to_status=new_status, **extra
        )
        log.info(
            "grn=%s received item=%s qty=%s bin=%s batch=%r line=%s task=%s status=%s",
            grn.id,
            item_id,
            qty,
            bin_id,
            bno,
            line.id,
            task.id,
            grn.status,
        )
        return ReceiptResult(grn=grn, line=line, task=task, entry=entry)

    # ---------------------------------------------------------------
    # 收尾
    # ---------------------------------------------------------------
    async def complete_grn(self, session: AsyncSession, *, tenant_id: str, grn_id: int) -> Grn:
        grn = await self.get_grn(session, tenant_id=tenant_id, grn_id=grn_id)
        require_status(grn, WORKFLOW, "complete", GrnStatus.PARTIAL, GrnStatus.RECEIVED)
        return await transition(
            session,
            grn,
            workflow=WORKFLOW,
            table=GRN_TRANSITIONS,
            to_status=GrnStatus.COMPLETE,
            completed_at=datetime.now(UTC),
        )

    async def cancel_grn(self, session: AsyncSession, *, tenant_id: str, grn_id: int) -> Grn:
        grn = await self.get_grn(session, tenant_id=tenant_id, grn_id=grn_id)
        require_status(grn, WORKFLOW, "cancel", GrnStatus.DRAFT, GrnStatus.OPEN)
        received = sum(int(ln.qty_received or 0) for ln in grn.lines)
        if received > 0:
            raise InvalidTransition(
                "收货单已有实收，不能取消",
                context={"grn_id": grn.id, "qty_received": received},
            )
        return await transition(
            session, grn, workflow=WORKFLOW, table=GRN_TRANSITIONS, to_status=GrnStatus.CANCELLED
        )

    async def delete_grn(self, session: AsyncSession, *, tenant_id: str, grn_id: int) -> None:
        grn = await self.get_grn(session, tenant_id=tenant_id, grn_id=grn_id)
        require_status(grn, WORKFLOW, "delete", GrnStatus.DRAFT)
        await session.delete(grn)
        await session.flush()
        log.info("grn deleted id=%s no=%s tenant=%s", grn.id, grn.grn_no, tenant_id)
