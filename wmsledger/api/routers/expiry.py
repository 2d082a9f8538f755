# wmsledger/api/routers/expiry.py
from __future__ import annotations

from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from wmsledger.api.deps import get_session, get_tenant_id
from wmsledger.schemas.expiry import ExpiringStockOut, ExpiryAlertOut
from wmsledger.services.expiry_alert_service import ExpiryAlertService

router = APIRouter(prefix="/expiry", tags=["expiry"])


@router.get("/alerts", response_model=List[ExpiryAlertOut])
async def get_expiry_alerts(
    warehouse_id: Optional[int] = Query(None),
    days_ahead: Optional[int] = Query(None, ge=0, description="统计窗口（天），默认取预警阈值"),
    as_of: Optional[date] = Query(None),
    tenant_id: str = Depends(get_tenant_id),
    session: AsyncSession = Depends(get_session),
) -> List[ExpiryAlertOut]:
    """按分级统计 在库 > 0 的快照数：EXPIRED / CRITICAL / WARNING / OK。"""
    rows = await ExpiryAlertService().query_expiry_alerts(
        session, tenant_id=tenant_id, warehouse_id=warehouse_id, days_ahead=days_ahead, as_of=as_of
    )
    return [ExpiryAlertOut.model_validate(r) for r in rows]


@router.get("/expiring", response_model=List[ExpiringStockOut])
async def get_expiring_stock(
    days_ahead: int = Query(30, ge=0),
    warehouse_id: Optional[int] = Query(None),
    as_of: Optional[date] = Query(None),
    tenant_id: str = Depends(get_tenant_id),
    session: AsyncSession = Depends(get_session),
) -> List[ExpiringStockOut]:
    rows = await ExpiryAlertService().list_expiring_stock(
        session, tenant_id=tenant_id, days_ahead=days_ahead, warehouse_id=warehouse_id, as_of=as_of
    )
    return [ExpiringStockOut.model_validate(r) for r in rows]


@router.get("/expired", response_model=List[ExpiringStockOut])
async def get_expired_stock(
    warehouse_id: Optional[int] = Query(None),
    as_of: Optional[date] = Query(None),
    tenant_id: str = Depends(get_tenant_id),
    session: AsyncSession = Depends(get_session),
) -> List[ExpiringStockOut]:
    rows = await ExpiryAlertService().list_expired_stock(
        session, tenant_id=tenant_id, warehouse_id=warehouse_id, as_of=as_of
    )
    return [ExpiringStockOut.model_validate(r) for r in rows]
