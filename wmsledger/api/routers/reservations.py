# wmsledger/api/routers/reservations.py
from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from wmsledger.api.deps import get_session, get_tenant_id
from wmsledger.core.tx import TxManager
from wmsledger.schemas.reservation import CommitIn, ReservationOut, ReserveIn
from wmsledger.schemas.stock import LedgerEntryOut
from wmsledger.services.reservation_service import ReservationManager

router = APIRouter(prefix="/reservations", tags=["reservations"])

_reservations = ReservationManager()


@router.post("", response_model=ReservationOut, status_code=status.HTTP_201_CREATED)
async def reserve(
    body: ReserveIn,
    tenant_id: str = Depends(get_tenant_id),
    session: AsyncSession = Depends(get_session),
) -> ReservationOut:
    """按 FEFO 软占用可用量；不足即 409 insufficient_available。"""

    async def _run(session: AsyncSession) -> ReservationOut:
        res = await _reservations.reserve(session, tenant_id=tenant_id, **body.model_dump())
        return ReservationOut.model_validate(res)

    return await TxManager.run(session, fn=_run)


@router.get("", response_model=List[ReservationOut])
async def list_reservations(
    item_id: Optional[int] = Query(None),
    status_: Optional[str] = Query(None, alias="status"),
    tenant_id: str = Depends(get_tenant_id),
    session: AsyncSession = Depends(get_session),
) -> List[ReservationOut]:
    rows = await _reservations.list_reservations(
        session, tenant_id=tenant_id, item_id=item_id, status=status_
    )
    return [ReservationOut.model_validate(r) for r in rows]


@router.get("/{reservation_id}", response_model=ReservationOut)
async def get_reservation(
    reservation_id: int,
    tenant_id: str = Depends(get_tenant_id),
    session: AsyncSession = Depends(get_session),
) -> ReservationOut:
    res = await _reservations.get(session, tenant_id=tenant_id, reservation_id=reservation_id)
    return ReservationOut.model_validate(res)


@router.post("/{reservation_id}/release", response_model=ReservationOut)
async def release(
    reservation_id: int,
    tenant_id: str = Depends(get_tenant_id),
    session: AsyncSession = Depends(get_session),
) -> ReservationOut:
    async def _run(session: AsyncSession) -> ReservationOut:
        res = await _reservations.release(session, tenant_id=tenant_id, reservation_id=reservation_id)
        return ReservationOut.model_validate(res)

    return await TxManager.run(session, fn=_run)


@router.post("/{reservation_id}/commit", response_model=List[LedgerEntryOut])
async def commit(
    reservation_id: int,
    body: CommitIn,
    tenant_id: str = Depends(get_tenant_id),
    session: AsyncSession = Depends(get_session),
) -> List[LedgerEntryOut]:
    """预占转出库：每条分配落一条台账，同时释放等量预占。"""

    async def _run(session: AsyncSession) -> List[LedgerEntryOut]:
        entries = await _reservations.commit(
            session, tenant_id=tenant_id, reservation_id=reservation_id, **body.model_dump()
        )
        return [LedgerEntryOut.model_validate(e) for e in entries]

    return await TxManager.run(session, fn=_run)
