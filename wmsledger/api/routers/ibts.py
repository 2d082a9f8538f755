# wmsledger/api/routers/ibts.py
from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from wmsledger.api.deps import get_session, get_tenant_id
from wmsledger.core.tx import TxManager
from wmsledger.schemas.common import ApproveIn
from wmsledger.schemas.ibt import (
    IbtCreateIn,
    IbtLineIn,
    IbtOut,
    IbtReceiveIn,
    ShipIn,
)
from wmsledger.services.transfer_service import TransferService

router = APIRouter(prefix="/ibts", tags=["ibts"])

_transfers = TransferService()


@router.post("", response_model=IbtOut, status_code=status.HTTP_201_CREATED)
async def create_ibt(
    body: IbtCreateIn,
    tenant_id: str = Depends(get_tenant_id),
    session: AsyncSession = Depends(get_session),
) -> IbtOut:
    async def _run(session: AsyncSession) -> IbtOut:
        return IbtOut.model_validate(await _transfers.create_ibt(session, tenant_id=tenant_id, **body.model_dump()))

    return await TxManager.run(session, fn=_run)


@router.get("", response_model=List[IbtOut])
async def list_ibts(
    status_: Optional[str] = Query(None, alias="status"),
    warehouse_id: Optional[int] = Query(None, description="来源或目的仓任一匹配"),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    tenant_id: str = Depends(get_tenant_id),
    session: AsyncSession = Depends(get_session),
) -> List[IbtOut]:
    rows = await _transfers.list_ibts(
        session, tenant_id=tenant_id, status=status_, warehouse_id=warehouse_id, limit=limit, offset=offset
    )
    return [IbtOut.model_validate(r) for r in rows]


@router.get("/{ibt_id}", response_model=IbtOut)
async def get_ibt(
    ibt_id: int,
    tenant_id: str = Depends(get_tenant_id),
    session: AsyncSession = Depends(get_session),
) -> IbtOut:
    return IbtOut.model_validate(await _transfers.get_ibt(session, tenant_id=tenant_id, ibt_id=ibt_id))


@router.post("/{ibt_id}/lines", response_model=IbtOut, status_code=status.HTTP_201_CREATED)
async def add_line(
    ibt_id: int,
    body: IbtLineIn,
    tenant_id: str = Depends(get_tenant_id),
    session: AsyncSession = Depends(get_session),
) -> IbtOut:
    async def _run(session: AsyncSession) -> IbtOut:
        await _transfers.add_line(session, tenant_id=tenant_id, ibt_id=ibt_id, **body.model_dump())
        return IbtOut.model_validate(await _transfers.get_ibt(session, tenant_id=tenant_id, ibt_id=ibt_id))

    return await TxManager.run(session, fn=_run)


@router.delete("/{ibt_id}/lines/{line_id}", response_model=IbtOut)
async def remove_line(
    ibt_id: int,
    line_id: int,
    tenant_id: str = Depends(get_tenant_id),
    session: AsyncSession = Depends(get_session),
) -> IbtOut:
    async def _run(session: AsyncSession) -> IbtOut:
        ibt = await _transfers.remove_line(session, tenant_id=tenant_id, ibt_id=ibt_id, line_id=line_id)
        return IbtOut.model_validate(ibt)

    return await TxManager.run(session, fn=_run)


@router.delete("/{ibt_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_ibt(
    ibt_id: int,
    tenant_id: str = Depends(get_tenant_id),
    session: AsyncSession = Depends(get_session),
) -> None:
    async def _run(session: AsyncSession) -> None:
        await _transfers.delete_ibt(session, tenant_id=tenant_id, ibt_id=ibt_id)

    await TxManager.run(session, fn=_run)


@router.post("/{ibt_id}/submit", response_model=IbtOut)
async def submit_ibt(
    ibt_id: int,
    tenant_id: str = Depends(get_tenant_id),
    session: AsyncSession = Depends(get_session),
) -> IbtOut:
    async def _run(session: AsyncSession) -> IbtOut:
        return IbtOut.model_validate(await _transfers.submit(session, tenant_id=tenant_id, ibt_id=ibt_id))

    return await TxManager.run(session, fn=_run)


@router.post("/{ibt_id}/approve", response_model=IbtOut)
async def approve_ibt(
    ibt_id: int,
    body: ApproveIn,
    tenant_id: str = Depends(get_tenant_id),
    session: AsyncSession = Depends(get_session),
) -> IbtOut:
    async def _run(session: AsyncSession) -> IbtOut:
        ibt = await _transfers.approve(session, tenant_id=tenant_id, ibt_id=ibt_id, approved_by=body.approved_by)
        return IbtOut.model_validate(ibt)

    return await TxManager.run(session, fn=_run)


@router.post("/{ibt_id}/start-picking", response_model=IbtOut)
async def start_picking(
    ibt_id: int,
    tenant_id: str = Depends(get_tenant_id),
    session: AsyncSession = Depends(get_session),
) -> IbtOut:
    async def _run(session: AsyncSession) -> IbtOut:
        return IbtOut.model_validate(await _transfers.start_picking(session, tenant_id=tenant_id, ibt_id=ibt_id))

    return await TxManager.run(session, fn=_run)


@router.post("/{ibt_id}/ship", response_model=IbtOut)
async def ship_ibt(
    ibt_id: int,
    body: ShipIn,
    tenant_id: str = Depends(get_tenant_id),
    session: AsyncSession = Depends(get_session),
) -> IbtOut:
    """来源仓按行出库（IBT_OUT），允许部分发运；单头进入 IN_TRANSIT。"""

    async def _run(session: AsyncSession) -> IbtOut:
        ibt = await _transfers.ship(session, tenant_id=tenant_id, ibt_id=ibt_id, **body.model_dump())
        return IbtOut.model_validate(ibt)

    return await TxManager.run(session, fn=_run)


@router.post("/{ibt_id}/receive", response_model=IbtOut)
async def receive_ibt(
    ibt_id: int,
    body: IbtReceiveIn,
    tenant_id: str = Depends(get_tenant_id),
    session: AsyncSession = Depends(get_session),
) -> IbtOut:
    async def _run(session: AsyncSession) -> IbtOut:
        ibt = await _transfers.receive(session, tenant_id=tenant_id, ibt_id=ibt_id, **body.model_dump())
        return IbtOut.model_validate(ibt)

    return await TxManager.run(session, fn=_run)


@router.post("/{ibt_id}/cancel", response_model=IbtOut)
async def cancel_ibt(
    ibt_id: int,
    tenant_id: str = Depends(get_tenant_id),
    session: AsyncSession = Depends(get_session),
) -> IbtOut:
    async def _run(session: AsyncSession) -> IbtOut:
        return IbtOut.model_validate(await _transfers.cancel(session, tenant_id=tenant_id, ibt_id=ibt_id))

    return await TxManager.run(session, fn=_run)
