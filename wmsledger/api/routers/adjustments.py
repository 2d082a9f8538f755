# wmsledger/api/routers/adjustments.py
from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from wmsledger.api.deps import get_session, get_tenant_id
from wmsledger.core.tx import TxManager
from wmsledger.schemas.adjustment import (
    AdjustmentCreateIn,
    AdjustmentLineIn,
    AdjustmentOut,
    PostIn,
    RejectIn,
)
from wmsledger.schemas.common import ApproveIn
from wmsledger.services.adjustment_service import AdjustmentService

router = APIRouter(prefix="/adjustments", tags=["adjustments"])

_adjustments = AdjustmentService()


@router.post("", response_model=AdjustmentOut, status_code=status.HTTP_201_CREATED)
async def create_adjustment(
    body: AdjustmentCreateIn,
    tenant_id: str = Depends(get_tenant_id),
    session: AsyncSession = Depends(get_session),
) -> AdjustmentOut:
    async def _run(session: AsyncSession) -> AdjustmentOut:
        adj = await _adjustments.create_adjustment(session, tenant_id=tenant_id, **body.model_dump())
        return AdjustmentOut.model_validate(adj)

    return await TxManager.run(session, fn=_run)


@router.get("", response_model=List[AdjustmentOut])
async def list_adjustments(
    status_: Optional[str] = Query(None, alias="status"),
    warehouse_id: Optional[int] = Query(None),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    tenant_id: str = Depends(get_tenant_id),
    session: AsyncSession = Depends(get_session),
) -> List[AdjustmentOut]:
    rows = await _adjustments.list_adjustments(
        session, tenant_id=tenant_id, status=status_, warehouse_id=warehouse_id, limit=limit, offset=offset
    )
    return [AdjustmentOut.model_validate(r) for r in rows]


@router.get("/{adjustment_id}", response_model=AdjustmentOut)
async def get_adjustment(
    adjustment_id: int,
    tenant_id: str = Depends(get_tenant_id),
    session: AsyncSession = Depends(get_session),
) -> AdjustmentOut:
    adj = await _adjustments.get_adjustment(session, tenant_id=tenant_id, adjustment_id=adjustment_id)
    return AdjustmentOut.model_validate(adj)


@router.post("/{adjustment_id}/lines", response_model=AdjustmentOut, status_code=status.HTTP_201_CREATED)
async def add_line(
    adjustment_id: int,
    body: AdjustmentLineIn,
    tenant_id: str = Depends(get_tenant_id),
    session: AsyncSession = Depends(get_session),
) -> AdjustmentOut:
    async def _run(session: AsyncSession) -> AdjustmentOut:
        await _adjustments.add_line(session, tenant_id=tenant_id, adjustment_id=adjustment_id, **body.model_dump())
        adj = await _adjustments.get_adjustment(session, tenant_id=tenant_id, adjustment_id=adjustment_id)
        return AdjustmentOut.model_validate(adj)

    return await TxManager.run(session, fn=_run)


@router.delete("/{adjustment_id}/lines/{line_id}", response_model=AdjustmentOut)
async def remove_line(
    adjustment_id: int,
    line_id: int,
    tenant_id: str = Depends(get_tenant_id),
    session: AsyncSession = Depends(get_session),
) -> AdjustmentOut:
    async def _run(session: AsyncSession) -> AdjustmentOut:
        adj = await _adjustments.remove_line(
            session, tenant_id=tenant_id, adjustment_id=adjustment_id, line_id=line_id
        )
        return AdjustmentOut.model_validate(adj)

    return await TxManager.run(session, fn=_run)


@router.delete("/{adjustment_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_adjustment(
    adjustment_id: int,
    tenant_id: str = Depends(get_tenant_id),
    session: AsyncSession = Depends(get_session),
) -> None:
    async def _run(session: AsyncSession) -> None:
        await _adjustments.delete_adjustment(session, tenant_id=tenant_id, adjustment_id=adjustment_id)

    await TxManager.run(session, fn=_run)


@router.post("/{adjustment_id}/submit", response_model=AdjustmentOut)
async def submit_adjustment(
    adjustment_id: int,
    tenant_id: str = Depends(get_tenant_id),
    session: AsyncSession = Depends(get_session),
) -> AdjustmentOut:
    async def _run(session: AsyncSession) -> AdjustmentOut:
        adj = await _adjustments.submit(session, tenant_id=tenant_id, adjustment_id=adjustment_id)
        return AdjustmentOut.model_validate(adj)

    return await TxManager.run(session, fn=_run)


@router.post("/{adjustment_id}/approve", response_model=AdjustmentOut)
async def approve_adjustment(
    adjustment_id: int,
    body: ApproveIn,
    tenant_id: str = Depends(get_tenant_id),
    session: AsyncSession = Depends(get_session),
) -> AdjustmentOut:
    async def _run(session: AsyncSession) -> AdjustmentOut:
        adj = await _adjustments.approve(
            session, tenant_id=tenant_id, adjustment_id=adjustment_id, approved_by=body.approved_by
        )
        return AdjustmentOut.model_validate(adj)

    return await TxManager.run(session, fn=_run)


@router.post("/{adjustment_id}/reject", response_model=AdjustmentOut)
async def reject_adjustment(
    adjustment_id: int,
    body: RejectIn,
    tenant_id: str = Depends(get_tenant_id),
    session: AsyncSession = Depends(get_session),
) -> AdjustmentOut:
    async def _run(session: AsyncSession) -> AdjustmentOut:
        adj = await _adjustments.reject(
            session, tenant_id=tenant_id, adjustment_id=adjustment_id, reason=body.reason
        )
        return AdjustmentOut.model_validate(adj)

    return await TxManager.run(session, fn=_run)


@router.post("/{adjustment_id}/post", response_model=AdjustmentOut)
async def post_adjustment(
    adjustment_id: int,
    body: PostIn,
    probe: bool = Query(False, description="试过账：执行全部校验后回滚"),
    tenant_id: str = Depends(get_tenant_id),
    session: AsyncSession = Depends(get_session),
) -> AdjustmentOut:
    """
    过账：先按 (库位, 商品, 批次) 聚合净变动做整单预检，
    任一行不足即 409 insufficient_stock（details 列出每个短缺维度），不落任何台账。
    """

    async def _run(session: AsyncSession) -> AdjustmentOut:
        adj = await _adjustments.post(
            session, tenant_id=tenant_id, adjustment_id=adjustment_id, posted_by=body.posted_by
        )
        return AdjustmentOut.model_validate(adj)

    return await TxManager.run(session, probe=probe, fn=_run)
