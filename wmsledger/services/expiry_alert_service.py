# wmsledger/services/expiry_alert_service.py
from __future__ import annotations

from datetime import date, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from wmsledger.core.config import get_settings
from wmsledger.models.enums import ExpiryTier
from wmsledger.models.stock_snapshot import StockSnapshot
from wmsledger.models.warehouse import Bin
from wmsledger.services.errors import ValidationFailed
from wmsledger.services.expiry_classifier import classify, days_until
from wmsledger.services.stock_service import batch_or_none

TIER_ORDER = (ExpiryTier.EXPIRED, ExpiryTier.CRITICAL, ExpiryTier.WARNING, ExpiryTier.OK)


def _row(s: StockSnapshot, as_of: date, critical: int, warning: int) -> Dict[str, Any]:
    return {
        "snapshot_id": s.id,
        "bin_id": s.bin_id,
        "item_id": s.item_id,
        "batch_no": batch_or_none(s.batch_no),
        "expiry_date": s.expiry_date,
        "qty_on_hand": s.qty_on_hand,
        "qty_available": s.qty_available,
        "days_until": days_until(s.expiry_date, as_of),
        "tier": classify(s.expiry_date, as_of, critical_days=critical, warning_days=warning),
    }


class ExpiryAlertService:
    """
    效期预警（只读）

    统计口径：qty_on_hand > 0 且有效期的快照；分级统一走 expiry_classifier.classify。
    """

    def __init__(self, critical_days: Optional[int] = None, warning_days: Optional[int] = None) -> None:
        s = get_settings()
        self.critical_days = s.EXPIRY_CRITICAL_DAYS if critical_days is None else int(critical_days)
        self.warning_days = s.EXPIRY_WARNING_DAYS if warning_days is None else int(warning_days)

    async def _dated_stock(
        self,
        session: AsyncSession,
        *,
        tenant_id: str,
        warehouse_id: Optional[int],
        expiry_from: Optional[date] = None,
        expiry_to: Optional[date] = None,
        expiry_before: Optional[date] = None,
    ) -> List[StockSnapshot]:
        stmt = select(StockSnapshot).where(
            StockSnapshot.tenant_id == tenant_id,
            StockSnapshot.qty_on_hand > 0,
            StockSnapshot.expiry_date.is_not(None),
        )
        if warehouse_id is not None:
            stmt = stmt.join(Bin, Bin.id == StockSnapshot.bin_id).where(
                Bin.warehouse_id == int(warehouse_id)
            )
        if expiry_from is not None:
            stmt = stmt.where(StockSnapshot.expiry_date >= expiry_from)
        if expiry_to is not None:
            stmt = stmt.where(StockSnapshot.expiry_date <= expiry_to)
        if expiry_before is not None:
            stmt = stmt.where(StockSnapshot.expiry_date < expiry_before)
        stmt = stmt.order_by(StockSnapshot.expiry_date, StockSnapshot.bin_id, StockSnapshot.id).execution_options(
            populate_existing=True
        )
        return list((await session.execute(stmt)).scalars().all())

    async def query_expiry_alerts(
        self,
        session: AsyncSession,
        *,
        tenant_id: str,
        warehouse_id: Optional[int] = None,
        days_ahead: Optional[int] = None,
        as_of: Optional[date] = None,
    ) -> List[Dict[str, Any]]:
        """
        返回每个分级一行：[{tier, count, qty}]，顺序 EXPIRED → CRITICAL → WARNING → OK。
        days_ahead 限定统计窗口（默认取预警阈值）；已过期的始终计入。
        """
        as_of = as_of or date.today()
        window = self.warning_days if days_ahead is None else int(days_ahead)
        if window < 0:
            raise ValidationFailed("days_ahead 不能为负", context={"days_ahead": days_ahead})

        rows = await self._dated_stock(
            session,
            tenant_id=tenant_id,
            warehouse_id=warehouse_id,
            expiry_to=as_of + timedelta(days=window),
        )
        summary = {t: {"tier": t, "count": 0, "qty": 0} for t in TIER_ORDER}
        for s in rows:
            tier = classify(
                s.expiry_date, as_of, critical_days=self.critical_days, warning_days=self.warning_days
            )
            summary[tier]["count"] += 1
            summary[tier]["qty"] += int(s.qty_on_hand)
        return [summary[t] for t in TIER_ORDER]

    async def list_expiring_stock(
        self,
        session: AsyncSession,
        *,
        tenant_id: str,
        days_ahead: int = 30,
        warehouse_id: Optional[int] = None,
        as_of: Optional[date] = None,
    ) -> List[Dict[str, Any]]:
        as_of = as_of or date.today()
        rows = await self._dated_stock(
            session,
            tenant_id=tenant_id,
            warehouse_id=warehouse_id,
            expiry_from=as_of,
            expiry_to=as_of + timedelta(days=int(days_ahead)),
        )
        return [_row(s, as_of, self.critical_days, self.warning_days) for s in rows]

    async def list_expired_stock(
        self,
        session: AsyncSession,
        *,
        tenant_id: str,
        warehouse_id: Optional[int] = None,
        as_of: Optional[date] = None,
    ) -> List[Dict[str, Any]]:
        as_of = as_of or date.today()
        rows = await self._dated_stock(
            session, tenant_id=tenant_id, warehouse_id=warehouse_id, expiry_before=as_of
        )
        return [_row(s, as_of, self.critical_days, self.warning_days) for s in rows]
