# wmsledger/api/routers/grns.py
from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from wmsledger.api.deps import get_session, get_tenant_id
from wmsledger.core.tx import TxManager
from wmsledger.schemas.grn import (
    GrnCreateIn,
    GrnLineIn,
    GrnLineOut,
    GrnOut,
    PutawayTaskOut,
    ReceiptOut,
    ReceiveIn,
)
from wmsledger.schemas.stock import LedgerEntryOut
from wmsledger.services.putaway_service import PutawayService
from wmsledger.services.receiving_service import ReceivingService

router = APIRouter(prefix="/grns", tags=["grns"])

_receiving = ReceivingService()
_putaway = PutawayService(_receiving.stock)


@router.post("", response_model=GrnOut, status_code=status.HTTP_201_CREATED)
async def create_grn(
    body: GrnCreateIn,
    tenant_id: str = Depends(get_tenant_id),
    session: AsyncSession = Depends(get_session),
) -> GrnOut:
    async def _run(session: AsyncSession) -> GrnOut:
        grn = await _receiving.create_grn(session, tenant_id=tenant_id, **body.model_dump())
        return GrnOut.model_validate(grn)

    return await TxManager.run(session, fn=_run)


@router.get("", response_model=List[GrnOut])
async def list_grns(
    status_: Optional[str] = Query(None, alias="status"),
    warehouse_id: Optional[int] = Query(None),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    tenant_id: str = Depends(get_tenant_id),
    session: AsyncSession = Depends(get_session),
) -> List[GrnOut]:
    rows = await _receiving.list_grns(
        session, tenant_id=tenant_id, status=status_, warehouse_id=warehouse_id, limit=limit, offset=offset
    )
    return [GrnOut.model_validate(r) for r in rows]


@router.get("/{grn_id}", response_model=GrnOut)
async def get_grn(
    grn_id: int,
    tenant_id: str = Depends(get_tenant_id),
    session: AsyncSession = Depends(get_session),
) -> GrnOut:
    grn = await _receiving.get_grn(session, tenant_id=tenant_id, grn_id=grn_id)
    return GrnOut.model_validate(grn)


@router.post("/{grn_id}/lines", response_model=GrnLineOut, status_code=status.HTTP_201_CREATED)
async def add_expected_line(
    grn_id: int,
    body: GrnLineIn,
    tenant_id: str = Depends(get_tenant_id),
    session: AsyncSession = Depends(get_session),
) -> GrnLineOut:
    async def _run(session: AsyncSession) -> GrnLineOut:
        line = await _receiving.add_expected_line(
            session, tenant_id=tenant_id, grn_id=grn_id, **body.model_dump()
        )
        return GrnLineOut.model_validate(line)

    return await TxManager.run(session, fn=_run)


@router.post("/{grn_id}/open", response_model=GrnOut)
async def open_grn(
    grn_id: int,
    tenant_id: str = Depends(get_tenant_id),
    session: AsyncSession = Depends(get_session),
) -> GrnOut:
    async def _run(session: AsyncSession) -> GrnOut:
        return GrnOut.model_validate(await _receiving.open_grn(session, tenant_id=tenant_id, grn_id=grn_id))

    return await TxManager.run(session, fn=_run)


@router.post("/{grn_id}/receive", response_model=ReceiptOut)
async def receive_line(
    grn_id: int,
    body: ReceiveIn,
    tenant_id: str = Depends(get_tenant_id),
    session: AsyncSession = Depends(get_session),
) -> ReceiptOut:
    """
    收一行货：收货库位 +qty（RECEIVE 台账）→ 生成上架任务 → 重算单头状态。
    带 ref 重放时返回首次结果（replayed=true）。
    """

    async def _run(session: AsyncSession) -> ReceiptOut:
        r = await _receiving.receive_line(session, tenant_id=tenant_id, grn_id=grn_id, **body.model_dump())
        return ReceiptOut(
            grn=GrnOut.model_validate(r.grn),
            line=GrnLineOut.model_validate(r.line),
            task=PutawayTaskOut.model_validate(r.task) if r.task is not None else None,
            entry=LedgerEntryOut.model_validate(r.entry),
            replayed=r.replayed,
        )

    return await TxManager.run(session, fn=_run)


@router.post("/{grn_id}/complete", response_model=GrnOut)
async def complete_grn(
    grn_id: int,
    tenant_id: str = Depends(get_tenant_id),
    session: AsyncSession = Depends(get_session),
) -> GrnOut:
    async def _run(session: AsyncSession) -> GrnOut:
        return GrnOut.model_validate(await _receiving.complete_grn(session, tenant_id=tenant_id, grn_id=grn_id))

    return await TxManager.run(session, fn=_run)


@router.post("/{grn_id}/cancel", response_model=GrnOut)
async def cancel_grn(
    grn_id: int,
    tenant_id: str = Depends(get_tenant_id),
    session: AsyncSession = Depends(get_session),
) -> GrnOut:
    async def _run(session: AsyncSession) -> GrnOut:
        return GrnOut.model_validate(await _receiving.cancel_grn(session, tenant_id=tenant_id, grn_id=grn_id))

    return await TxManager.run(session, fn=_run)


@router.delete("/{grn_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_grn(
    grn_id: int,
    tenant_id: str = Depends(get_tenant_id),
    session: AsyncSession = Depends(get_session),
) -> None:
    async def _run(session: AsyncSession) -> None:
        await _receiving.delete_grn(session, tenant_id=tenant_id, grn_id=grn_id)

    await TxManager.run(session, fn=_run)


@router.get("/{grn_id}/putaway-tasks", response_model=List[PutawayTaskOut])
async def list_grn_putaway_tasks(
    grn_id: int,
    status_: Optional[str] = Query(None, alias="status"),
    tenant_id: str = Depends(get_tenant_id),
    session: AsyncSession = Depends(get_session),
) -> List[PutawayTaskOut]:
    rows = await _putaway.list_tasks(session, tenant_id=tenant_id, grn_id=grn_id, status=status_)
    return [PutawayTaskOut.model_validate(r) for r in rows]
