# wmsledger/api/routers/stock.py
from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from wmsledger.api.deps import get_session, get_tenant_id
from wmsledger.api.problem import raise_problem
from wmsledger.core.tx import TxManager
from wmsledger.schemas.stock import (
    AvailableOut,
    BatchOut,
    BinTransferIn,
    BinTransferOut,
    LedgerEntryOut,
    MismatchOut,
    MovementIn,
    ReconcileOut,
    SnapshotOut,
)
from wmsledger.services.reconcile_service import reconcile
from wmsledger.services.stock_service import StockService

router = APIRouter(prefix="/stock", tags=["stock"])

_stock = StockService()


# ==========================
# 写
# ==========================


@router.post("/movements", response_model=LedgerEntryOut, status_code=status.HTTP_201_CREATED)
async def post_movement(
    body: MovementIn,
    probe: bool = Query(False, description="试算：执行全部校验后回滚"),
    tenant_id: str = Depends(get_tenant_id),
    session: AsyncSession = Depends(get_session),
) -> LedgerEntryOut:
    """
    单维度库存变动（写快照 + 台账，一个事务）。
    同一 ref/ref_line 重放返回原台账，不重复记账。
    """

    async def _run(session: AsyncSession) -> LedgerEntryOut:
        entry = await _stock.apply_movement(session, tenant_id=tenant_id, **body.model_dump())
        return LedgerEntryOut.model_validate(entry)

    return await TxManager.run(session, probe=probe, fn=_run)


@router.post("/transfers", response_model=BinTransferOut, status_code=status.HTTP_201_CREATED)
async def post_bin_transfer(
    body: BinTransferIn,
    tenant_id: str = Depends(get_tenant_id),
    session: AsyncSession = Depends(get_session),
) -> BinTransferOut:
    async def _run(session: AsyncSession) -> BinTransferOut:
        out_entry, in_entry = await _stock.transfer_between_bins(
            session, tenant_id=tenant_id, **body.model_dump()
        )
        return BinTransferOut(
            out_entry=LedgerEntryOut.model_validate(out_entry),
            in_entry=LedgerEntryOut.model_validate(in_entry),
        )

    return await TxManager.run(session, fn=_run)


# ==========================
# 读
# ==========================


@router.get("/snapshot", response_model=SnapshotOut)
async def get_snapshot(
    bin_id: int = Query(..., ge=1),
    item_id: int = Query(..., ge=1),
    batch_no: Optional[str] = Query(None),
    tenant_id: str = Depends(get_tenant_id),
    session: AsyncSession = Depends(get_session),
) -> SnapshotOut:
    snap = await _stock.get_snapshot(
        session, tenant_id=tenant_id, bin_id=bin_id, item_id=item_id, batch_no=batch_no
    )
    if snap is None:
        raise_problem(
            status_code=404,
            error_code="not_found",
            message="库存快照不存在",
            context={"bin_id": bin_id, "item_id": item_id, "batch_no": batch_no},
        )
    return SnapshotOut.model_validate(snap)


@router.get("/items/{item_id}", response_model=List[SnapshotOut])
async def list_item_stock(
    item_id: int,
    warehouse_id: Optional[int] = Query(None),
    include_empty: bool = Query(False),
    tenant_id: str = Depends(get_tenant_id),
    session: AsyncSession = Depends(get_session),
) -> List[SnapshotOut]:
    """按 FEFO 顺序列出某商品的库存分布。"""
    rows = await _stock.list_stock_for_item(
        session,
        tenant_id=tenant_id,
        item_id=item_id,
        warehouse_id=warehouse_id,
        include_empty=include_empty,
    )
    return [SnapshotOut.model_validate(r) for r in rows]


@router.get("/items/{item_id}/available", response_model=AvailableOut)
async def get_available(
    item_id: int,
    warehouse_id: Optional[int] = Query(None),
    tenant_id: str = Depends(get_tenant_id),
    session: AsyncSession = Depends(get_session),
) -> AvailableOut:
    qty = await _stock.query_available(
        session, tenant_id=tenant_id, item_id=item_id, warehouse_id=warehouse_id
    )
    return AvailableOut(item_id=item_id, warehouse_id=warehouse_id, qty_available=qty)


@router.get("/items/{item_id}/batches", response_model=List[BatchOut])
async def list_item_batches(
    item_id: int,
    active_only: bool = Query(True),
    tenant_id: str = Depends(get_tenant_id),
    session: AsyncSession = Depends(get_session),
) -> List[BatchOut]:
    """批次主档（FEFO 顺序）。"""
    rows = await _stock.batches.list_batches(
        session, tenant_id=tenant_id, item_id=item_id, active_only=active_only
    )
    return [BatchOut.model_validate(r) for r in rows]


@router.get("/items/{item_id}/ledger", response_model=List[LedgerEntryOut])
async def get_ledger_history(
    item_id: int,
    bin_id: Optional[int] = Query(None),
    batch_no: Optional[str] = Query(None),
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    tenant_id: str = Depends(get_tenant_id),
    session: AsyncSession = Depends(get_session),
) -> List[LedgerEntryOut]:
    rows = await _stock.ledger_history(
        session,
        tenant_id=tenant_id,
        item_id=item_id,
        bin_id=bin_id,
        batch_no=batch_no,
        limit=limit,
        offset=offset,
    )
    return [LedgerEntryOut.model_validate(r) for r in rows]


@router.get("/bins/{bin_id}", response_model=List[SnapshotOut])
async def list_bin_stock(
    bin_id: int,
    include_empty: bool = Query(False),
    tenant_id: str = Depends(get_tenant_id),
    session: AsyncSession = Depends(get_session),
) -> List[SnapshotOut]:
    rows = await _stock.list_stock_in_bin(
        session, tenant_id=tenant_id, bin_id=bin_id, include_empty=include_empty
    )
    return [SnapshotOut.model_validate(r) for r in rows]


@router.get("/reconcile", response_model=ReconcileOut)
async def get_reconcile(
    item_id: Optional[int] = Query(None),
    tenant_id: str = Depends(get_tenant_id),
    session: AsyncSession = Depends(get_session),
) -> ReconcileOut:
    """台账 ↔ 快照 对账（只读）。"""
    rows = await reconcile(session, tenant_id=tenant_id, item_id=item_id)
    return ReconcileOut(ok=not rows, mismatches=[MismatchOut.model_validate(r) for r in rows])
