# wmsledger/api/routers/putaway.py
from __future__ import annotations

from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from wmsledger.api.deps import get_session, get_tenant_id
from wmsledger.core.tx import TxManager
from wmsledger.schemas.grn import (
    AssignPutawayIn,
    CompletePutawayIn,
    PutawayCompleteOut,
    PutawayTaskOut,
)
from wmsledger.schemas.stock import LedgerEntryOut
from wmsledger.services.putaway_service import PutawayService

router = APIRouter(prefix="/putaway-tasks", tags=["putaway"])

_putaway = PutawayService()


@router.get("", response_model=List[PutawayTaskOut])
async def list_tasks(
    grn_id: Optional[int] = Query(None),
    status_: Optional[str] = Query(None, alias="status"),
    limit: int = Query(100, ge=1, le=1000),
    tenant_id: str = Depends(get_tenant_id),
    session: AsyncSession = Depends(get_session),
) -> List[PutawayTaskOut]:
    rows = await _putaway.list_tasks(session, tenant_id=tenant_id, grn_id=grn_id, status=status_, limit=limit)
    return [PutawayTaskOut.model_validate(r) for r in rows]


@router.get("/open-count")
async def count_open_tasks(
    grn_id: int = Query(..., ge=1),
    tenant_id: str = Depends(get_tenant_id),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, int]:
    """某收货单未完结（PENDING / ASSIGNED）的上架任务数。"""
    n = await _putaway.count_open(session, tenant_id=tenant_id, grn_id=grn_id)
    return {"grn_id": grn_id, "open": n}


@router.get("/{task_id}", response_model=PutawayTaskOut)
async def get_task(
    task_id: int,
    tenant_id: str = Depends(get_tenant_id),
    session: AsyncSession = Depends(get_session),
) -> PutawayTaskOut:
    return PutawayTaskOut.model_validate(await _putaway.get_task(session, tenant_id=tenant_id, task_id=task_id))


@router.post("/{task_id}/assign", response_model=PutawayTaskOut)
async def assign_task(
    task_id: int,
    body: AssignPutawayIn,
    tenant_id: str = Depends(get_tenant_id),
    session: AsyncSession = Depends(get_session),
) -> PutawayTaskOut:
    async def _run(session: AsyncSession) -> PutawayTaskOut:
        task = await _putaway.assign(session, tenant_id=tenant_id, task_id=task_id, **body.model_dump())
        return PutawayTaskOut.model_validate(task)

    return await TxManager.run(session, fn=_run)


@router.post("/{task_id}/complete", response_model=PutawayCompleteOut)
async def complete_task(
    task_id: int,
    body: CompletePutawayIn,
    tenant_id: str = Depends(get_tenant_id),
    session: AsyncSession = Depends(get_session),
) -> PutawayCompleteOut:
    """上架完成：收货库位 → 目标库位 的成对 TRANSFER 台账。"""

    async def _run(session: AsyncSession) -> PutawayCompleteOut:
        task, out_entry, in_entry = await _putaway.complete(
            session, tenant_id=tenant_id, task_id=task_id, **body.model_dump()
        )
        return PutawayCompleteOut(
            task=PutawayTaskOut.model_validate(task),
            out_entry=LedgerEntryOut.model_validate(out_entry),
            in_entry=LedgerEntryOut.model_validate(in_entry),
        )

    return await TxManager.run(session, fn=_run)


@router.post("/{task_id}/cancel", response_model=PutawayTaskOut)
async def cancel_task(
    task_id: int,
    tenant_id: str = Depends(get_tenant_id),
    session: AsyncSession = Depends(get_session),
) -> PutawayTaskOut:
    async def _run(session: AsyncSession) -> PutawayTaskOut:
        return PutawayTaskOut.model_validate(await _putaway.cancel(session, tenant_id=tenant_id, task_id=task_id))

    return await TxManager.run(session, fn=_run)
