# tests/services/test_expiry_alerts.py
from __future__ import annotations

from datetime import date, timedelta

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from tests.helpers.inventory import TENANT, receive, seed_site
from wmsledger.models.enums import ExpiryTier
from wmsledger.services.errors import ValidationFailed
from wmsledger.services.expiry_alert_service import ExpiryAlertService

pytestmark = pytest.mark.asyncio

ITEM = 7001
AS_OF = date(2025, 6, 1)


async def _seed(session: AsyncSession):
    site = await seed_site(session)
    for batch_no, offset, qty in (("X-OLD", -1, 2), ("X-5", 5, 3), ("X-10", 10, 4), ("X-90", 90, 5)):
        await receive(
            session,
            bin_id=site.storage_a,
            item_id=ITEM,
            qty=qty,
            batch_no=batch_no,
            expiry_date=AS_OF + timedelta(days=offset),
        )
    await receive(session, bin_id=site.storage_b, item_id=ITEM, qty=9)
    return site


async def test_alert_summary_by_tier(session: AsyncSession):
    await _seed(session)
    svc = ExpiryAlertService(critical_days=7, warning_days=30)
    async with session.begin():
        rows = await svc.query_expiry_alerts(session, tenant_id=TENANT, as_of=AS_OF)

    by_tier = {r["tier"]: (r["count"], r["qty"]) for r in rows}
    assert [r["tier"] for r in rows] == [ExpiryTier.EXPIRED, ExpiryTier.CRITICAL, ExpiryTier.WARNING, ExpiryTier.OK]
    assert by_tier[ExpiryTier.EXPIRED] == (1, 2)
    assert by_tier[ExpiryTier.CRITICAL] == (1, 3)
    assert by_tier[ExpiryTier.WARNING] == (1, 4)
    # 窗口外（90 天）与无效期的不计入
    assert by_tier[ExpiryTier.OK] == (0, 0)


async def test_wider_window_counts_ok_tier(session: AsyncSession):
    await _seed(session)
    async with session.begin():
        rows = await ExpiryAlertService().query_expiry_alerts(
            session, tenant_id=TENANT, as_of=AS_OF, days_ahead=120
        )
    assert {r["tier"]: r["count"] for r in rows}[ExpiryTier.OK] == 1


async def test_expiring_and_expired_lists(session: AsyncSession):
    await _seed(session)
    svc = ExpiryAlertService()
    async with session.begin():
        expiring = await svc.list_expiring_stock(session, tenant_id=TENANT, days_ahead=7, as_of=AS_OF)
        expired = await svc.list_expired_stock(session, tenant_id=TENANT, as_of=AS_OF)

    assert [(r["batch_no"], r["days_until"], r["tier"]) for r in expiring] == [("X-5", 5, ExpiryTier.CRITICAL)]
    assert [(r["batch_no"], r["tier"]) for r in expired] == [("X-OLD", ExpiryTier.EXPIRED)]


async def test_negative_window_rejected(session: AsyncSession):
    await seed_site(session)
    with pytest.raises(ValidationFailed):
        async with session.begin():
            await ExpiryAlertService().query_expiry_alerts(session, tenant_id=TENANT, days_ahead=-1)
