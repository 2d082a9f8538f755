# wmsledger/services/putaway_service.py
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import List, Optional, Tuple

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from wmsledger.models.enums import PutawayStatus
from wmsledger.models.putaway_task import PutawayTask
from wmsledger.models.stock_ledger import StockLedger
from wmsledger.services.errors import NotFound, ValidationFailed
from wmsledger.services.master_data import get_bin, require_bin_in_warehouse
from wmsledger.services.state_machine import PUTAWAY_TRANSITIONS, require_status, transition
from wmsledger.services.stock_service import StockService

UTC = timezone.utc
log = logging.getLogger("wmsledger.putaway")

WORKFLOW = "putaway"
OPEN_STATUSES = (PutawayStatus.PENDING, PutawayStatus.ASSIGNED)


class PutawayService:
    """
    上架任务：PENDING → ASSIGNED → COMPLETE / CANCELLED

    complete 落一对 TRANSFER 台账（收货库位 -qty，目标库位 +qty）；
    cancel 不动库存，货留在收货库位。
    """

    def __init__(self, stock: Optional[StockService] = None) -> None:
        self.stock = stock or StockService()

    async def get_task(self, session: AsyncSession, *, tenant_id: str, task_id: int) -> PutawayTask:
        task = (
            await session.execute(
                select(PutawayTask)
                .where(PutawayTask.id == int(task_id), PutawayTask.tenant_id == tenant_id)
                .execution_options(populate_existing=True)
            )
        ).scalar_one_or_none()
        if task is None:
            raise NotFound(f"上架任务不存在：task_id={task_id}", context={"task_id": task_id})
        return task

    async def list_tasks(
        self,
        session: AsyncSession,
        *,
        tenant_id: str,
        grn_id: Optional[int] = None,
        status: Optional[str] = None,
        limit: int = 100,
    ) -> List[PutawayTask]:
        stmt = select(PutawayTask).where(PutawayTask.tenant_id == tenant_id)
        if grn_id is not None:
            stmt = stmt.where(PutawayTask.grn_id == int(grn_id))
        if status:
            stmt = stmt.where(PutawayTask.status == str(status))
        stmt = stmt.order_by(PutawayTask.id).limit(int(limit))
        return list((await session.execute(stmt)).scalars().all())

    async def count_open(self, session: AsyncSession, *, tenant_id: str, grn_id: int) -> int:
        stmt = select(func.count()).where(
            PutawayTask.tenant_id == tenant_id,
            PutawayTask.grn_id == int(grn_id),
            PutawayTask.status.in_([str(s) for s in OPEN_STATUSES]),
        )
        return int((await session.execute(stmt)).scalar_one())

    async def assign(
        self,
        session: AsyncSession,
        *,
        tenant_id: str,
        task_id: int,
        assigned_to: str,
        to_bin_id: Optional[int] = None,
    ) -> PutawayTask:
        task = await self.get_task(session, tenant_id=tenant_id, task_id=task_id)
        extra = {"assigned_to": assigned_to}
        if to_bin_id is not None:
            await self._check_target(session, tenant_id, task, to_bin_id)
            extra["to_bin_id"] = int(to_bin_id)
        return await transition(
            session,
            task,
            workflow=WORKFLOW,
            table=PUTAWAY_TRANSITIONS,
            to_status=PutawayStatus.ASSIGNED,
            **extra,
        )

    async def _check_target(
        self, session: AsyncSession, tenant_id: str, task: PutawayTask, to_bin_id: int
    ) -> None:
        if int(to_bin_id) == int(task.from_bin_id):
            raise ValidationFailed(
                "目标库位不能是收货库位", context={"task_id": task.id, "bin_id": to_bin_id}
            )
        src = await get_bin(session, tenant_id, task.from_bin_id)
        await require_bin_in_warehouse(session, tenant_id, to_bin_id, src.warehouse_id, role="上架库位")

    async def complete(
        self,
        session: AsyncSession,
        *,
        tenant_id: str,
        task_id: int,
        to_bin_id: Optional[int] = None,
        completed_by: Optional[str] = None,
    ) -> Tuple[PutawayTask, StockLedger, StockLedger]:
        task = await self.get_task(session, tenant_id=tenant_id, task_id=task_id)
        require_status(task, WORKFLOW, "complete", *OPEN_STATUSES)

        target = to_bin_id if to_bin_id is not None else task.to_bin_id
        if target is None:
            raise ValidationFailed("缺少目标库位 to_bin_id", context={"task_id": task.id})
        await self._check_target(session, tenant_id, task, target)

        out_entry, in_entry = await self.stock.transfer_between_bins(
            session,
            tenant_id=tenant_id,
            from_bin_id=task.from_bin_id,
            to_bin_id=target,
            item_id=task.item_id,
            batch_no=task.batch_no,
            qty=task.qty,
            ref=f"PUT-{task.id}",
            ref_type=WORKFLOW,
            ref_id=task.id,
            created_by=completed_by,
        )
        await transition(
            session,
            task,
            workflow=WORKFLOW,
            table=PUTAWAY_TRANSITIONS,
            to_status=PutawayStatus.COMPLETE,
            to_bin_id=int(target),
            completed_at=datetime.now(UTC),
        )
        log.info(
            "putaway task=%s done item=%s qty=%s %s -> %s", task.id, task.item_id, task.qty, task.from_bin_id, target
        )
        return task, out_entry, in_entry

    async def cancel(self, session: AsyncSession, *, tenant_id: str, task_id: int) -> PutawayTask:
        task = await self.get_task(session, tenant_id=tenant_id, task_id=task_id)
        return await transition(
            session, task, workflow=WORKFLOW, table=PUTAWAY_TRANSITIONS, to_status=PutawayStatus.CANCELLED
        )
