# tests/services/test_stock_service.py
from __future__ import annotations

from datetime import date, timedelta

import pytest
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from tests.helpers.inventory import TENANT, ledger_count, ledger_sum, receive, seed_site, snapshot
from wmsledger.models.enums import LedgerReason
from wmsledger.models.stock_ledger import StockLedger
from wmsledger.models.stock_snapshot import StockSnapshot
from wmsledger.services.errors import InsufficientStock, NotFound, ValidationFailed
from wmsledger.services.reconcile_service import reconcile
from wmsledger.services.stock_service import StockService

pytestmark = pytest.mark.asyncio

ITEM = 1001


async def _move(session: AsyncSession, tenant_id: str = TENANT, **kw):
    async with session.begin():
        return await StockService().apply_movement(session, tenant_id=tenant_id, item_id=ITEM, **kw)


async def test_snapshot_equals_ledger_sum_and_last_qty_after(session: AsyncSession):
    site = await seed_site(session)
    await receive(session, bin_id=site.storage_a, item_id=ITEM, qty=20, ref="PO-1")
    await _move(session, bin_id=site.storage_a, reason=LedgerReason.PICK, delta=-7, ref="SO-1")
    last = await _move(session, bin_id=site.storage_a, reason=LedgerReason.ADJUST, delta=2, ref="ADJ-1")

    async with session.begin():
        snap = await snapshot(session, bin_id=site.storage_a, item_id=ITEM)
        total = await ledger_sum(session, bin_id=site.storage_a, item_id=ITEM)

    assert snap.qty_on_hand == 15
    assert total == 15
    assert last.qty_after == 15
    assert snap.version == 3


async def test_replay_same_ref_returns_original_entry(session: AsyncSession):
    site = await seed_site(session)
    first = await receive(session, bin_id=site.storage_a, item_id=ITEM, qty=10, ref="PO-9")
    again = await receive(session, bin_id=site.storage_a, item_id=ITEM, qty=10, ref="PO-9")

    assert again.id == first.id
    async with session.begin():
        snap = await snapshot(session, bin_id=site.storage_a, item_id=ITEM)
        assert await ledger_count(session, item_id=ITEM) == 1
    assert snap.qty_on_hand == 10


async def test_replay_with_different_delta_is_rejected(session: AsyncSession):
    site = await seed_site(session)
    await receive(session, bin_id=site.storage_a, item_id=ITEM, qty=10, ref="PO-9")
    with pytest.raises(ValidationFailed):
        await receive(session, bin_id=site.storage_a, item_id=ITEM, qty=12, ref="PO-9")


async def test_negative_receive_and_zero_delta_are_rejected(session: AsyncSession):
    site = await seed_site(session)
    with pytest.raises(ValidationFailed):
        await _move(session, bin_id=site.storage_a, reason=LedgerReason.RECEIVE, delta=-1)
    with pytest.raises(ValidationFailed):
        await _move(session, bin_id=site.storage_a, reason=LedgerReason.ADJUST, delta=0)
    with pytest.raises(ValidationFailed):
        await _move(session, bin_id=site.storage_a, reason="TELEPORT", delta=1)


async def test_withdraw_more_than_available_rejected_without_side_effects(session: AsyncSession):
    site = await seed_site(session)
    await receive(session, bin_id=site.storage_a, item_id=ITEM, qty=5)

    with pytest.raises(InsufficientStock) as ei:
        await _move(session, bin_id=site.storage_a, reason=LedgerReason.PICK, delta=-6)
    detail = ei.value.details[0]
    assert detail["required_qty"] == 6
    assert detail["available_qty"] == 5

    with pytest.raises(InsufficientStock):
        await _move(session, bin_id=site.storage_b, reason=LedgerReason.SCRAP, delta=-1)

    async with session.begin():
        snap = await snapshot(session, bin_id=site.storage_a, item_id=ITEM)
        assert await ledger_count(session, item_id=ITEM) == 1
    assert snap.qty_on_hand == 5


async def test_adjust_may_drain_to_zero_and_keeps_snapshot(session: AsyncSession):
    site = await seed_site(session)
    await receive(session, bin_id=site.storage_a, item_id=ITEM, qty=5)
    entry = await _move(session, bin_id=site.storage_a, reason=LedgerReason.ADJUST, delta=-5)
    assert entry.qty_after == 0

    async with session.begin():
        snap = await snapshot(session, bin_id=site.storage_a, item_id=ITEM)
    assert snap is not None
    assert snap.qty_on_hand == 0


async def test_unknown_bin_is_not_found(session: AsyncSession):
    await seed_site(session)
    with pytest.raises(NotFound):
        await _move(session, bin_id=99999, reason=LedgerReason.RECEIVE, delta=1)


async def test_batch_receive_creates_batch_and_keeps_expiry(session: AsyncSession):
    site = await seed_site(session)
    exp = date.today() + timedelta(days=40)
    entry = await receive(
        session, bin_id=site.storage_a, item_id=ITEM, qty=3, batch_no="B-1", expiry_date=exp
    )
    assert entry.batch_no == "B-1"
    assert entry.expiry_date == exp

    async with session.begin():
        snap = await snapshot(session, bin_id=site.storage_a, item_id=ITEM, batch_no="B-1")
    assert snap.batch_id is not None
    assert snap.expiry_date == exp


async def test_transfer_between_bins_writes_paired_entries(session: AsyncSession):
    site = await seed_site(session)
    exp = date.today() + timedelta(days=90)
    await receive(session, bin_id=site.receiving, item_id=ITEM, qty=10, batch_no="B-7", expiry_date=exp)

    async with session.begin():
        out_e, in_e = await StockService().transfer_between_bins(
            session,
            tenant_id=TENANT,
            from_bin_id=site.receiving,
            to_bin_id=site.storage_a,
            item_id=ITEM,
            batch_no="B-7",
            qty=4,
            ref="MV-1",
        )
    assert (out_e.qty_change, in_e.qty_change) == (-4, 4)
    assert out_e.reason == in_e.reason == "TRANSFER"

    async with session.begin():
        dst = await snapshot(session, bin_id=site.storage_a, item_id=ITEM, batch_no="B-7")
        src = await snapshot(session, bin_id=site.receiving, item_id=ITEM, batch_no="B-7")
    assert (src.qty_on_hand, dst.qty_on_hand) == (6, 4)
    assert dst.expiry_date == exp


async def test_transfer_same_bin_rejected(session: AsyncSession):
    site = await seed_site(session)
    with pytest.raises(ValidationFailed):
        async with session.begin():
            await StockService().transfer_between_bins(
                session,
                tenant_id=TENANT,
                from_bin_id=site.storage_a,
                to_bin_id=site.storage_a,
                item_id=ITEM,
                qty=1,
            )


async def test_query_available_excludes_quarantine_when_reservable_only(session: AsyncSession):
    site = await seed_site(session)
    await receive(session, bin_id=site.storage_a, item_id=ITEM, qty=10)
    await receive(session, bin_id=site.quarantine, item_id=ITEM, qty=4)

    stock = StockService()
    async with session.begin():
        total = await stock.query_available(session, tenant_id=TENANT, item_id=ITEM)
        reservable = await stock.query_available(
            session, tenant_id=TENANT, item_id=ITEM, reservable_only=True
        )
    assert total == 14
    assert reservable == 10


async def test_reconcile_clean_then_detects_drift(session: AsyncSession):
    site = await seed_site(session)
    await receive(session, bin_id=site.storage_a, item_id=ITEM, qty=8)
    await _move(session, bin_id=site.storage_a, reason=LedgerReason.SHIP, delta=-3)

    async with session.begin():
        assert await reconcile(session, tenant_id=TENANT) == []

    async with session.begin():
        await session.execute(
            update(StockSnapshot)
            .where(StockSnapshot.bin_id == site.storage_a, StockSnapshot.item_id == ITEM)
            .values(qty_on_hand=9)
            .execution_options(synchronize_session=False)
        )

    async with session.begin():
        rows = await reconcile(session, tenant_id=TENANT, item_id=ITEM)
        entries = (await session.execute(select(StockLedger))).scalars().all()
    assert len(rows) == 1
    assert rows[0]["snapshot_qty_on_hand"] == 9
    assert rows[0]["ledger_sum"] == 5
    assert len(entries) == 2


async def test_tenants_are_isolated(session: AsyncSession):
    site = await seed_site(session)
    await receive(session, bin_id=site.storage_a, item_id=ITEM, qty=8)
    with pytest.raises(NotFound):
        await _move(session, bin_id=site.storage_a, reason=LedgerReason.RECEIVE, delta=1, tenant_id="other")
