# wmsledger/api/routers/cycle_counts.py
from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from wmsledger.api.deps import get_session, get_tenant_id
from wmsledger.core.tx import TxManager
from wmsledger.schemas.adjustment import AdjustmentOut
from wmsledger.schemas.cycle_count import (
    CloseCountIn,
    CountLineIn,
    CountLineOut,
    CycleCountOut,
    OpenCountIn,
    RecordCountIn,
)
from wmsledger.services.cycle_count_service import CycleCountService

router = APIRouter(prefix="/cycle-counts", tags=["cycle-counts"])

_counts = CycleCountService()


@router.post("", response_model=CycleCountOut, status_code=status.HTTP_201_CREATED)
async def open_count(
    body: OpenCountIn,
    tenant_id: str = Depends(get_tenant_id),
    session: AsyncSession = Depends(get_session),
) -> CycleCountOut:
    """开单即冻结账面基线（expected_qty），之后实时库存变化不影响差异计算。"""

    async def _run(session: AsyncSession) -> CycleCountOut:
        cc = await _counts.open_count(session, tenant_id=tenant_id, **body.model_dump())
        return CycleCountOut.model_validate(cc)

    return await TxManager.run(session, fn=_run)


@router.get("", response_model=List[CycleCountOut])
async def list_counts(
    status_: Optional[str] = Query(None, alias="status"),
    warehouse_id: Optional[int] = Query(None),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    tenant_id: str = Depends(get_tenant_id),
    session: AsyncSession = Depends(get_session),
) -> List[CycleCountOut]:
    rows = await _counts.list_counts(
        session, tenant_id=tenant_id, status=status_, warehouse_id=warehouse_id, limit=limit, offset=offset
    )
    return [CycleCountOut.model_validate(r) for r in rows]


@router.get("/{count_id}", response_model=CycleCountOut)
async def get_count(
    count_id: int,
    tenant_id: str = Depends(get_tenant_id),
    session: AsyncSession = Depends(get_session),
) -> CycleCountOut:
    return CycleCountOut.model_validate(await _counts.get_count(session, tenant_id=tenant_id, count_id=count_id))


@router.get("/{count_id}/variances", response_model=List[CountLineOut])
async def list_variances(
    count_id: int,
    tenant_id: str = Depends(get_tenant_id),
    session: AsyncSession = Depends(get_session),
) -> List[CountLineOut]:
    rows = await _counts.variance_lines(session, tenant_id=tenant_id, count_id=count_id)
    return [CountLineOut.model_validate(r) for r in rows]


@router.post("/{count_id}/lines", response_model=CountLineOut, status_code=status.HTTP_201_CREATED)
async def add_line(
    count_id: int,
    body: CountLineIn,
    tenant_id: str = Depends(get_tenant_id),
    session: AsyncSession = Depends(get_session),
) -> CountLineOut:
    async def _run(session: AsyncSession) -> CountLineOut:
        line = await _counts.add_line(session, tenant_id=tenant_id, count_id=count_id, **body.model_dump())
        return CountLineOut.model_validate(line)

    return await TxManager.run(session, fn=_run)


@router.delete("/{count_id}/lines/{line_id}", response_model=CycleCountOut)
async def remove_line(
    count_id: int,
    line_id: int,
    tenant_id: str = Depends(get_tenant_id),
    session: AsyncSession = Depends(get_session),
) -> CycleCountOut:
    async def _run(session: AsyncSession) -> CycleCountOut:
        cc = await _counts.remove_line(session, tenant_id=tenant_id, count_id=count_id, line_id=line_id)
        return CycleCountOut.model_validate(cc)

    return await TxManager.run(session, fn=_run)


@router.delete("/{count_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_count(
    count_id: int,
    tenant_id: str = Depends(get_tenant_id),
    session: AsyncSession = Depends(get_session),
) -> None:
    async def _run(session: AsyncSession) -> None:
        await _counts.delete_count(session, tenant_id=tenant_id, count_id=count_id)

    await TxManager.run(session, fn=_run)


@router.post("/{count_id}/lines/{line_id}/count", response_model=CountLineOut)
async def record_count(
    count_id: int,
    line_id: int,
    body: RecordCountIn,
    tenant_id: str = Depends(get_tenant_id),
    session: AsyncSession = Depends(get_session),
) -> CountLineOut:
    async def _run(session: AsyncSession) -> CountLineOut:
        line = await _counts.record_count(
            session, tenant_id=tenant_id, count_id=count_id, line_id=line_id, **body.model_dump()
        )
        return CountLineOut.model_validate(line)

    return await TxManager.run(session, fn=_run)


@router.post("/{count_id}/submit", response_model=CycleCountOut)
async def submit_count(
    count_id: int,
    tenant_id: str = Depends(get_tenant_id),
    session: AsyncSession = Depends(get_session),
) -> CycleCountOut:
    async def _run(session: AsyncSession) -> CycleCountOut:
        cc = await _counts.submit_for_approval(session, tenant_id=tenant_id, count_id=count_id)
        return CycleCountOut.model_validate(cc)

    return await TxManager.run(session, fn=_run)


@router.post("/{count_id}/recount", response_model=CycleCountOut)
async def recount(
    count_id: int,
    tenant_id: str = Depends(get_tenant_id),
    session: AsyncSession = Depends(get_session),
) -> CycleCountOut:
    """退回重盘：按当前账面重冻基线，清空实盘录入。"""

    async def _run(session: AsyncSession) -> CycleCountOut:
        return CycleCountOut.model_validate(await _counts.recount(session, tenant_id=tenant_id, count_id=count_id))

    return await TxManager.run(session, fn=_run)


@router.post("/{count_id}/close", response_model=CycleCountOut)
async def close_count(
    count_id: int,
    body: CloseCountIn,
    probe: bool = Query(False, description="试算：执行全部校验后回滚"),
    tenant_id: str = Depends(get_tenant_id),
    session: AsyncSession = Depends(get_session),
) -> CycleCountOut:
    """审批关闭：每个非零差异行落一条 ADJUST 台账。"""

    async def _run(session: AsyncSession) -> CycleCountOut:
        cc = await _counts.close(session, tenant_id=tenant_id, count_id=count_id, approved_by=body.approved_by)
        return CycleCountOut.model_validate(cc)

    return await TxManager.run(session, probe=probe, fn=_run)


@router.post("/{count_id}/generate-adjustment", response_model=AdjustmentOut, status_code=status.HTTP_201_CREATED)
async def generate_adjustment(
    count_id: int,
    body: CloseCountIn,
    tenant_id: str = Depends(get_tenant_id),
    session: AsyncSession = Depends(get_session),
) -> AdjustmentOut:
    """差异转成一张 DRAFT 调整单（不直接记账），盘点单随之关闭。"""

    async def _run(session: AsyncSession) -> AdjustmentOut:
        adj = await _counts.generate_adjustment(
            session, tenant_id=tenant_id, count_id=count_id, approved_by=body.approved_by
        )
        return AdjustmentOut.model_validate(adj)

    return await TxManager.run(session, fn=_run)


@router.post("/{count_id}/cancel", response_model=CycleCountOut)
async def cancel_count(
    count_id: int,
    tenant_id: str = Depends(get_tenant_id),
    session: AsyncSession = Depends(get_session),
) -> CycleCountOut:
    async def _run(session: AsyncSession) -> CycleCountOut:
        return CycleCountOut.model_validate(await _counts.cancel(session, tenant_id=tenant_id, count_id=count_id))

    return await TxManager.run(session, fn=_run)
