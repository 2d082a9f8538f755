# wmsledger/services/transfer_service.py
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from wmsledger.models.enums import IbtStatus, LedgerReason
from wmsledger.models.ibt import Ibt, IbtLine
from wmsledger.services.db_guard import conflict_guard
from wmsledger.services.doc_no import next_doc_no
from wmsledger.services.errors import InvalidTransition, NotFound, ValidationFailed
from wmsledger.services.master_data import get_warehouse, require_bin_in_warehouse
from wmsledger.services.state_machine import IBT_TRANSITIONS, require_status, transition
from wmsledger.services.stock_service import StockService, norm_batch

UTC = timezone.utc
log = logging.getLogger("wmsledger.transfer")

WORKFLOW = "ibt"
CANCELLABLE = (IbtStatus.DRAFT, IbtStatus.PENDING_APPROVAL, IbtStatus.APPROVED, IbtStatus.PICKING)


def _index_payload(ibt: Ibt, rows: Sequence[Dict[str, Any]], qty_key: str) -> Dict[int, Dict[str, Any]]:
    """行入参按 line_id 建索引：未知行 NotFound，重复行 / 负数 ValidationFailed。"""
    by_id = {ln.id: ln for ln in ibt.lines}
    out: Dict[int, Dict[str, Any]] = {}
    for row in rows:
        line_id = int(row["line_id"])
        if line_id not in by_id:
            raise NotFound(f"调拨行不存在：line_id={line_id}", context={"ibt_id": ibt.id, "line_id": line_id})
        if line_id in out:
            raise ValidationFailed("同一行重复提交", context={"ibt_id": ibt.id, "line_id": line_id})
        if int(row.get(qty_key) or 0) < 0:
            raise ValidationFailed(f"{qty_key} 不能为负", context={"line_id": line_id, qty_key: row.get(qty_key)})
        out[line_id] = row
    return out


class TransferService:
    """
    仓间调拨（IBT）

        DRAFT → PENDING_APPROVAL → APPROVED → PICKING → IN_TRANSIT → RECEIVED
        IN_TRANSIT 之前可 CANCELLED（不落台账）

    台账只在两处落：
      - ship：源库位 IBT_OUT（-qty_shipped），可少发
      - receive：目的库位 IBT_IN（+qty_received），qty_received <= qty_shipped，
        差额留在行上（qty_variance），不自动冲平
    """

    def __init__(self, stock: Optional[StockService] = None) -> None:
        self.stock = stock or StockService()

    # ---------------------------------------------------------------
    # 读
    # ---------------------------------------------------------------
    async def get_ibt(self, session: AsyncSession, *, tenant_id: str, ibt_id: int) -> Ibt:
        ibt = (
            await session.execute(
                select(Ibt)
                .where(Ibt.id == int(ibt_id), Ibt.tenant_id == tenant_id)
                .execution_options(populate_existing=True)
            )
        ).scalar_one_or_none()
        if ibt is None:
            raise NotFound(f"调拨单不存在：ibt_id={ibt_id}", context={"ibt_id": ibt_id})
        return ibt

    async def list_ibts(
        self,
        session: AsyncSession,
        *,
        tenant_id: str,
        status: Optional[str] = None,
        warehouse_id: Optional[int] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[Ibt]:
        stmt = select(Ibt).where(Ibt.tenant_id == tenant_id)
        if status:
            stmt = stmt.where(Ibt.status == str(status))
        if warehouse_id is not None:
            stmt = stmt.where(
                or_(Ibt.from_warehouse_id == int(warehouse_id), Ibt.to_warehouse_id == int(warehouse_id))
            )
        stmt = stmt.order_by(Ibt.id.desc()).limit(int(limit)).offset(int(offset))
        return list((await session.execute(stmt)).scalars().all())

    # ---------------------------------------------------------------
    # 草稿
    # ---------------------------------------------------------------
    async def create_ibt(
        self,
        session: AsyncSession,
        *,
        tenant_id: str,
        from_warehouse_id: int,
        to_warehouse_id: int,
        notes: Optional[str] = None,
        created_by: Optional[str] = None,
    ) -> Ibt:
        if int(from_warehouse_id) == int(to_warehouse_id):
            raise ValidationFailed(
                "源仓与目的仓不能相同", context={"warehouse_id": from_warehouse_id}
            )
        await get_warehouse(session, tenant_id, from_warehouse_id)
        await get_warehouse(session, tenant_id, to_warehouse_id)

        ibt = Ibt(
            tenant_id=tenant_id,
            ibt_no=await next_doc_no(session, Ibt.ibt_no, tenant_id=tenant_id, prefix="IBT"),
            from_warehouse_id=int(from_warehouse_id),
            to_warehouse_id=int(to_warehouse_id),
            status=IbtStatus.DRAFT,
            version=0,
            lines=[],
            notes=notes,
            created_by=created_by,
        )
        session.add(ibt)
        async with conflict_guard("create_ibt", ibt_no=ibt.ibt_no):
            await session.flush()
        log.info(
            "ibt created id=%s no=%s %s -> %s tenant=%s",
            ibt.id,
            ibt.ibt_no,
            from_warehouse_id,
            to_warehouse_id,
            tenant_id,
        )
        return ibt

    async def add_line(
        self,
        session: AsyncSession,
        *,
        tenant_id: str,
        ibt_id: int,
        item_id: int,
        qty_requested: int,
        batch_no: Optional[str] = None,
        from_bin_id: Optional[int] = None,
    ) -> IbtLine:
        ibt = await self.get_ibt(session, tenant_id=tenant_id, ibt_id=ibt_id)
        require_status(ibt, WORKFLOW, "add_line", IbtStatus.DRAFT)
        if int(qty_requested) <= 0:
            raise ValidationFailed("申请数量必须为正", context={"qty_requested": qty_requested})
        if from_bin_id is not None:
            await require_bin_in_warehouse(
                session, tenant_id, from_bin_id, ibt.from_warehouse_id, role="源库位"
            )

        line = IbtLine(
            tenant_id=tenant_id,
            item_id=int(item_id),
            batch_no=norm_batch(batch_no) or None,
            qty_requested=int(qty_requested),
            qty_shipped=0,
            qty_received=0,
            from_bin_id=from_bin_id,
        )
        ibt.lines.append(line)
        await session.flush()
        await transition(session, ibt, workflow=WORKFLOW, table=IBT_TRANSITIONS)
        return line

    async def remove_line(self, session: AsyncSession, *, tenant_id: str, ibt_id: int, line_id: int) -> Ibt:
        ibt = await self.get_ibt(session, tenant_id=tenant_id, ibt_id=ibt_id)
        require_status(ibt, WORKFLOW, "remove_line", IbtStatus.DRAFT)
        line = next((ln for ln in ibt.lines if ln.id == int(line_id)), None)
        if line is None:
            raise NotFound(f"调拨行不存在：line_id={line_id}", context={"ibt_id": ibt.id, "line_id": line_id})
        ibt.lines.remove(line)
        await session.flush()
        return await transition(session, ibt, workflow=WORKFLOW, table=IBT_TRANSITIONS)

    async def delete_ibt(self, session: AsyncSession, *, tenant_id: str, ibt_id: int) -> None:
        ibt = await self.get_ibt(session, tenant_id=tenant_id, ibt_id=ibt_id)
        require_status(ibt, WORKFLOW, "delete", IbtStatus.DRAFT)
        await session.delete(ibt)
        await session.flush()
        log.info("ibt deleted id=%s no=%s tenant=%s", ibt.id, ibt.ibt_no, tenant_id)

    # ---------------------------------------------------------------
    # 审批链（无库存副作用）
    # ---------------------------------------------------------------
    async def submit(self, session: AsyncSession, *, tenant_id: str, ibt_id: int) -> Ibt:
        ibt = await self.get_ibt(session, tenant_id=tenant_id, ibt_id=ibt_id)
        require_status(ibt, WORKFLOW, "submit", IbtStatus.DRAFT)
        if not ibt.lines:
            raise ValidationFailed("调拨单至少需要一行", context={"ibt_id": ibt.id})
        return await transition(
            session, ibt, workflow=WORKFLOW, table=IBT_TRANSITIONS, to_status=IbtStatus.PENDING_APPROVAL
        )

    async def approve(
        self, session: AsyncSession, *, tenant_id: str, ibt_id: int, approved_by: Optional[str] = None
    ) -> Ibt:
        ibt = await self.get_ibt(session, tenant_id=tenant_id, ibt_id=ibt_id)
        return await transition(
            session,
            ibt,
            workflow=WORKFLOW,
            table=IBT_TRANSITIONS,
            to_status=IbtStatus.APPROVED,
            approved_by=approved_by,
            approved_at=datetime.now(UTC),
        )

    async def start_picking(self, session: AsyncSession, *, tenant_id: str, ibt_id: int) -> Ibt:
        ibt = await self.get_ibt(session, tenant_id=tenant_id, ibt_id=ibt_id)
        return await transition(
            session, ibt, workflow=WORKFLOW, table=IBT_TRANSITIONS, to_status=IbtStatus.PICKING
        )

    # ---------------------------------------------------------------
    # 发货 / 收货（落台账）
    # ---------------------------------------------------------------
    async def ship(
        self,
        session: AsyncSession,
        *,
        tenant_id: str,
        ibt_id: int,
        lines: Sequence[Dict[str, Any]],
        shipped_by: Optional[str] = None,
    ) -> Ibt:
        """
        lines: [{line_id, qty_shipped, from_bin_id?}]；未列出的行视为发 0。
        """
        ibt = await self.get_ibt(session, tenant_id=tenant_id, ibt_id=ibt_id)
        require_status(ibt, WORKFLOW, "ship", IbtStatus.APPROVED, IbtStatus.PICKING)
        payload = _index_payload(ibt, lines, "qty_shipped")

        total = 0
        for line in ibt.lines:
            row = payload.get(line.id)
            qty = int(row.get("qty_shipped") or 0) if row else 0
            if qty > int(line.qty_requested):
                raise ValidationFailed(
                    f"发货数量 {qty} 超过申请数量 {line.qty_requested}",
                    context={"line_id": line.id, "qty_shipped": qty, "qty_requested": line.qty_requested},
                )
            if qty == 0:
                continue

            from_bin_id = (row or {}).get("from_bin_id") or line.from_bin_id
            if from_bin_id is None:
                raise ValidationFailed("调拨行缺少源库位", context={"line_id": line.id})
            await require_bin_in_warehouse(
                session, tenant_id, from_bin_id, ibt.from_warehouse_id, role="源库位"
            )

            await self.stock.apply_movement(
                session,
                tenant_id=tenant_id,
                bin_id=from_bin_id,
                item_id=line.item_id,
                batch_no=line.batch_no,
                reason=LedgerReason.IBT_OUT,
                delta=-qty,
                ref=f"{ibt.ibt_no}:OUT",
                ref_line=line.id,
                ref_type=WORKFLOW,
                ref_id=ibt.id,
                created_by=shipped_by,
            )
            line.from_bin_id = int(from_bin_id)
            line.qty_shipped = qty
            total += qty

        if total <= 0:
            raise ValidationFailed("发货数量合计必须为正", context={"ibt_id": ibt.id})

        await transition(
            session,
            ibt,
            workflow=WORKFLOW,
            table=IBT_TRANSITIONS,
            to_status=IbtStatus.IN_TRANSIT,
            shipped_at=datetime.now(UTC),
        )
        log.info("ibt=%s shipped total=%s", ibt.id, total)
        return ibt

    async def receive(
        self,
        session: AsyncSession,
        *,
        tenant_id: str,
        ibt_id: int,
        lines: Sequence[Dict[str, Any]],
        received_by: Optional[str] = None,
    ) -> Ibt:
        """
        lines: [{line_id, qty_received, to_bin_id}]；未列出的已发行视为实收 0（在途损耗）。
        """
        ibt = await self.get_ibt(session, tenant_id=tenant_id, ibt_id=ibt_id)
        require_status(ibt, WORKFLOW, "receive", IbtStatus.IN_TRANSIT)
        payload = _index_payload(ibt, lines, "qty_received")

        for line in ibt.lines:
            row = payload.get(line.id)
            qty = int(row.get("qty_received") or 0) if row else 0
            if qty > int(line.qty_shipped):
                raise ValidationFailed(
                    f"实收数量 {qty} 超过实发数量 {line.qty_shipped}",
                    context={"line_id": line.id, "qty_received": qty, "qty_shipped": line.qty_shipped},
                )
            if qty == 0:
                continue

            to_bin_id = row.get("to_bin_id") or line.to_bin_id
            if to_bin_id is None:
                raise ValidationFailed("收货行缺少目的库位 to_bin_id", context={"line_id": line.id})
            await require_bin_in_warehouse(
                session, tenant_id, to_bin_id, ibt.to_warehouse_id, role="目的库位"
            )

            # 效期随批次从源库位带过来
            src = await self.stock.get_snapshot(
                session,
                tenant_id=tenant_id,
                bin_id=line.from_bin_id,
                item_id=line.item_id,
                batch_no=line.batch_no,
            )
            await self.stock.apply_movement(
                session,
                tenant_id=tenant_id,
                bin_id=to_bin_id,
                item_id=line.item_id,
                batch_no=line.batch_no,
                reason=LedgerReason.IBT_IN,
                delta=qty,
                expiry_date=src.expiry_date if src is not None else None,
                ref=f"{ibt.ibt_no}:IN",
                ref_line=line.id,
                ref_type=WORKFLOW,
                ref_id=ibt.id,
                created_by=received_by,
            )
            line.to_bin_id = int(to_bin_id)
            line.qty_received = qty
            if line.qty_variance:
                log.warning(
                    "ibt=%s line=%s in-transit variance shipped=%s received=%s",
                    ibt.id,
                    line.id,
                    line.qty_shipped,
                    qty,
                )

        await transition(
            session,
            ibt,
            workflow=WORKFLOW,
            table=IBT_TRANSITIONS,
            to_status=IbtStatus.RECEIVED,
            received_at=datetime.now(UTC),
        )
        return ibt

    async def cancel(self, session: AsyncSession, *, tenant_id: str, ibt_id: int) -> Ibt:
        ibt = await self.get_ibt(session, tenant_id=tenant_id, ibt_id=ibt_id)
        require_status(ibt, WORKFLOW, "cancel", *CANCELLABLE)
        if any(int(ln.qty_shipped or 0) > 0 for ln in ibt.lines):
            raise InvalidTransition("调拨单已有发货，不能取消", context={"ibt_id": ibt.id})
        return await transition(
            session, ibt, workflow=WORKFLOW, table=IBT_TRANSITIONS, to_status=IbtStatus.CANCELLED
        )
