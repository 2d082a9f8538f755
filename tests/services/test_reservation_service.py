# tests/services/test_reservation_service.py
from __future__ import annotations

from datetime import date, timedelta

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from tests.helpers.inventory import TENANT, receive, seed_site, snapshot
from wmsledger.models.enums import LedgerReason, ReservationStatus
from wmsledger.services.errors import (
    InsufficientAvailable,
    InsufficientStock,
    InvalidTransition,
    ValidationFailed,
)
from wmsledger.services.reservation_service import ReservationManager
from wmsledger.services.stock_service import StockService

pytestmark = pytest.mark.asyncio

ITEM = 2001


async def _seed_two_batches(session: AsyncSession):
    """E1 先到期（A 库位），E2 后到期（B 库位），各 10。"""
    site = await seed_site(session)
    today = date.today()
    await receive(
        session, bin_id=site.storage_a, item_id=ITEM, qty=10, batch_no="E1", expiry_date=today + timedelta(days=10)
    )
    await receive(
        session, bin_id=site.storage_b, item_id=ITEM, qty=10, batch_no="E2", expiry_date=today + timedelta(days=60)
    )
    return site


async def test_reserve_allocates_fefo_and_exhausts_earliest_first(session: AsyncSession):
    site = await _seed_two_batches(session)
    mgr = ReservationManager()

    async with session.begin():
        r = await mgr.reserve(session, tenant_id=TENANT, item_id=ITEM, qty=15, ref="SO-100")
        allocs = [(a.bin_id, a.batch_no, a.qty) for a in r.allocations]

    assert r.status == ReservationStatus.OPEN
    assert allocs == [(site.storage_a, "E1", 10), (site.storage_b, "E2", 5)]

    async with session.begin():
        e1 = await snapshot(session, bin_id=site.storage_a, item_id=ITEM, batch_no="E1")
        e2 = await snapshot(session, bin_id=site.storage_b, item_id=ITEM, batch_no="E2")
    assert (e1.qty_reserved, e1.qty_available) == (10, 0)
    assert (e2.qty_reserved, e2.qty_available) == (5, 5)
    assert e1.qty_reserved <= e1.qty_on_hand


async def test_reserve_rejects_over_total_available(session: AsyncSession):
    site = await _seed_two_batches(session)
    mgr = ReservationManager()

    with pytest.raises(InsufficientAvailable) as ei:
        async with session.begin():
            await mgr.reserve(session, tenant_id=TENANT, item_id=ITEM, qty=21)
    assert ei.value.details[0]["available_qty"] == 20

    async with session.begin():
        e1 = await snapshot(session, bin_id=site.storage_a, item_id=ITEM, batch_no="E1")
    assert e1.qty_reserved == 0


async def test_reserve_skips_expired_and_quarantine_stock(session: AsyncSession):
    site = await seed_site(session)
    today = date.today()
    await receive(
        session, bin_id=site.storage_a, item_id=ITEM, qty=5, batch_no="OLD", expiry_date=today - timedelta(days=1)
    )
    await receive(session, bin_id=site.quarantine, item_id=ITEM, qty=5, batch_no="QA")
    await receive(session, bin_id=site.storage_b, item_id=ITEM, qty=3, batch_no="OK")

    mgr = ReservationManager()
    with pytest.raises(InsufficientAvailable):
        async with session.begin():
            await mgr.reserve(session, tenant_id=TENANT, item_id=ITEM, qty=4)

    async with session.begin():
        r = await mgr.reserve(session, tenant_id=TENANT, item_id=ITEM, qty=3)
        assert [a.batch_no for a in r.allocations] == ["OK"]

    async with session.begin():
        r2 = await mgr.reserve(session, tenant_id=TENANT, item_id=ITEM, qty=5, allow_expired=True)
        assert [a.batch_no for a in r2.allocations] == ["OLD"]


async def test_batch_expiring_on_as_of_date_is_still_reservable(session: AsyncSession):
    site = await seed_site(session)
    as_of = date(2030, 6, 1)
    await receive(session, bin_id=site.storage_a, item_id=ITEM, qty=2, batch_no="GONE", expiry_date=date(2030, 5, 31))
    await receive(session, bin_id=site.storage_a, item_id=ITEM, qty=2, batch_no="LAST-DAY", expiry_date=as_of)

    async with session.begin():
        r = await ReservationManager().reserve(session, tenant_id=TENANT, item_id=ITEM, qty=2, as_of=as_of)
        assert [a.batch_no for a in r.allocations] == ["LAST-DAY"]


async def test_reserved_stock_cannot_be_picked_directly(session: AsyncSession):
    site = await _seed_two_batches(session)
    async with session.begin():
        await ReservationManager().reserve(session, tenant_id=TENANT, item_id=ITEM, qty=8)

    with pytest.raises(InsufficientStock):
        async with session.begin():
            await StockService().apply_movement(
                session,
                tenant_id=TENANT,
                bin_id=site.storage_a,
                item_id=ITEM,
                batch_no="E1",
                reason=LedgerReason.PICK,
                delta=-3,
            )


async def test_release_returns_reserved_qty(session: AsyncSession):
    site = await _seed_two_batches(session)
    mgr = ReservationManager()
    async with session.begin():
        r = await mgr.reserve(session, tenant_id=TENANT, item_id=ITEM, qty=12)
    async with session.begin():
        released = await mgr.release(session, tenant_id=TENANT, reservation_id=r.id)
    assert released.status == ReservationStatus.RELEASED

    async with session.begin():
        e1 = await snapshot(session, bin_id=site.storage_a, item_id=ITEM, batch_no="E1")
        e2 = await snapshot(session, bin_id=site.storage_b, item_id=ITEM, batch_no="E2")
    assert (e1.qty_reserved, e2.qty_reserved) == (0, 0)
    assert (e1.qty_on_hand, e2.qty_on_hand) == (10, 10)

    with pytest.raises(InvalidTransition):
        async with session.begin():
            await mgr.release(session, tenant_id=TENANT, reservation_id=r.id)


async def test_commit_consumes_reservation_into_ledger(session: AsyncSession):
    site = await _seed_two_batches(session)
    mgr = ReservationManager()
    async with session.begin():
        r = await mgr.reserve(session, tenant_id=TENANT, item_id=ITEM, qty=12)
    async with session.begin():
        entries = await mgr.commit(session, tenant_id=TENANT, reservation_id=r.id, reason=LedgerReason.SHIP)

    assert [(e.batch_no, e.qty_change, e.reason) for e in entries] == [("E1", -10, "SHIP"), ("E2", -2, "SHIP")]
    assert all(e.ref == f"RES-{r.id}" for e in entries)

    async with session.begin():
        e1 = await snapshot(session, bin_id=site.storage_a, item_id=ITEM, batch_no="E1")
        e2 = await snapshot(session, bin_id=site.storage_b, item_id=ITEM, batch_no="E2")
        reloaded = await mgr.get(session, tenant_id=TENANT, reservation_id=r.id)
    assert (e1.qty_on_hand, e1.qty_reserved) == (0, 0)
    assert (e2.qty_on_hand, e2.qty_reserved) == (8, 0)
    assert reloaded.status == ReservationStatus.COMMITTED


async def test_commit_rejects_inbound_reason(session: AsyncSession):
    await _seed_two_batches(session)
    mgr = ReservationManager()
    async with session.begin():
        r = await mgr.reserve(session, tenant_id=TENANT, item_id=ITEM, qty=1)
    with pytest.raises(ValidationFailed):
        async with session.begin():
            await mgr.commit(session, tenant_id=TENANT, reservation_id=r.id, reason=LedgerReason.RECEIVE)
