# tests/services/test_cycle_count_and_adjustment.py
from __future__ import annotations

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tests.helpers.inventory import TENANT, ledger_count, receive, seed_site, snapshot
from wmsledger.models.enums import AdjustmentStatus, CycleCountStatus
from wmsledger.models.stock_ledger import StockLedger
from wmsledger.services.adjustment_service import AdjustmentService
from wmsledger.services.cycle_count_service import CycleCountService
from wmsledger.services.errors import InsufficientStock, InvalidTransition, NotFound, ValidationFailed
from wmsledger.services.stock_service import StockService

pytestmark = pytest.mark.asyncio

ITEM = 6001


# ---------- 盘点 ----------


async def _counted(session: AsyncSession, site, counted_qty: int):
    """A 库位 100 在库，开盘点单并录入实盘数量、提交审批。"""
    await receive(session, bin_id=site.storage_a, item_id=ITEM, qty=100)
    svc = CycleCountService()
    async with session.begin():
        cc = await svc.open_count(session, tenant_id=TENANT, warehouse_id=site.warehouse_id, bin_ids=[site.storage_a])
        count_id = cc.id
        line_id = cc.lines[0].id
        assert cc.status == CycleCountStatus.OPEN
        assert cc.lines[0].expected_qty == 100

    async with session.begin():
        await svc.record_count(session, tenant_id=TENANT, count_id=count_id, line_id=line_id, counted_qty=counted_qty)
    async with session.begin():
        cc = await svc.submit_for_approval(session, tenant_id=TENANT, count_id=count_id)
    return svc, cc


async def test_close_posts_variance_as_adjust(session: AsyncSession):
    site = await seed_site(session)
    svc, cc = await _counted(session, site, 92)
    assert cc.status == CycleCountStatus.PENDING_APPROVAL
    assert cc.lines[0].variance_qty == -8

    async with session.begin():
        closed = await svc.close(session, tenant_id=TENANT, count_id=cc.id, approved_by="sup")
    assert closed.status == CycleCountStatus.CLOSED

    async with session.begin():
        snap = await snapshot(session, bin_id=site.storage_a, item_id=ITEM)
        adjust = (
            await session.execute(select(StockLedger).where(StockLedger.reason == "ADJUST"))
        ).scalar_one()
    assert snap.qty_on_hand == 92
    assert adjust.qty_change == -8
    assert adjust.ref == cc.count_no


async def test_submit_requires_every_line_counted(session: AsyncSession):
    site = await seed_site(session)
    await receive(session, bin_id=site.storage_a, item_id=ITEM, qty=5)
    await receive(session, bin_id=site.storage_b, item_id=ITEM, qty=5)
    svc = CycleCountService()
    async with session.begin():
        cc = await svc.open_count(session, tenant_id=TENANT, warehouse_id=site.warehouse_id)
        count_id, first_line = cc.id, cc.lines[0].id
        assert len(cc.lines) == 2

    async with session.begin():
        await svc.record_count(session, tenant_id=TENANT, count_id=count_id, line_id=first_line, counted_qty=5)
    with pytest.raises(ValidationFailed):
        async with session.begin():
            await svc.submit_for_approval(session, tenant_id=TENANT, count_id=count_id)


async def test_close_from_open_is_invalid(session: AsyncSession):
    site = await seed_site(session)
    await receive(session, bin_id=site.storage_a, item_id=ITEM, qty=5)
    svc = CycleCountService()
    async with session.begin():
        cc = await svc.open_count(session, tenant_id=TENANT, warehouse_id=site.warehouse_id)
    with pytest.raises(InvalidTransition):
        async with session.begin():
            await svc.close(session, tenant_id=TENANT, count_id=cc.id)


async def test_generate_adjustment_routes_variance_through_approval(session: AsyncSession):
    site = await seed_site(session)
    svc, cc = await _counted(session, site, 97)

    async with session.begin():
        adj = await svc.generate_adjustment(session, tenant_id=TENANT, count_id=cc.id, approved_by="sup")
        adj_id = adj.id
        assert adj.status == AdjustmentStatus.DRAFT
        assert adj.cycle_count_id == cc.id
        assert [(ln.bin_id, ln.qty_delta) for ln in adj.lines] == [(site.storage_a, -3)]

    async with session.begin():
        reloaded = await svc.get_count(session, tenant_id=TENANT, count_id=cc.id)
        assert await ledger_count(session, item_id=ITEM, reason="ADJUST") == 0
    assert reloaded.status == CycleCountStatus.CLOSED

    adjustments = AdjustmentService()
    async with session.begin():
        await adjustments.submit(session, tenant_id=TENANT, adjustment_id=adj_id)
    async with session.begin():
        await adjustments.approve(session, tenant_id=TENANT, adjustment_id=adj_id, approved_by="mgr")
    async with session.begin():
        posted = await adjustments.post(session, tenant_id=TENANT, adjustment_id=adj_id, posted_by="mgr")
    assert posted.status == AdjustmentStatus.POSTED

    async with session.begin():
        snap = await snapshot(session, bin_id=site.storage_a, item_id=ITEM)
    assert snap.qty_on_hand == 97


async def _submitted(session: AsyncSession, svc: CycleCountService, count_id: int, line_id: int, counted_qty: int):
    async with session.begin():
        await svc.record_count(session, tenant_id=TENANT, count_id=count_id, line_id=line_id, counted_qty=counted_qty)
    async with session.begin():
        await svc.submit_for_approval(session, tenant_id=TENANT, count_id=count_id)


async def test_rejected_close_can_be_recounted(session: AsyncSession):
    site = await seed_site(session)
    await receive(session, bin_id=site.storage_a, item_id=ITEM, qty=10)
    svc = CycleCountService()
    async with session.begin():
        cc = await svc.open_count(session, tenant_id=TENANT, warehouse_id=site.warehouse_id, bin_ids=[site.storage_a])
        count_id, line_id = cc.id, cc.lines[0].id
    await _submitted(session, svc, count_id, line_id, 2)

    # 审批期间被拣走 5，基线 10 / 实盘 2 的 -8 已扣不动
    async with session.begin():
        await StockService().apply_movement(
            session, tenant_id=TENANT, bin_id=site.storage_a, item_id=ITEM, reason="PICK", delta=-5, ref="SO-9"
        )
    with pytest.raises(InsufficientStock):
        async with session.begin():
            await svc.close(session, tenant_id=TENANT, count_id=count_id, approved_by="sup")

    async with session.begin():
        assert await ledger_count(session, item_id=ITEM, reason="ADJUST") == 0
        stuck = await svc.get_count(session, tenant_id=TENANT, count_id=count_id)
        assert stuck.status == CycleCountStatus.PENDING_APPROVAL

    async with session.begin():
        cc = await svc.recount(session, tenant_id=TENANT, count_id=count_id)
        assert cc.status == CycleCountStatus.IN_PROGRESS
        assert cc.submitted_at is None
        line = cc.lines[0]
        assert (line.expected_qty, line.counted_qty, line.variance_qty) == (5, None, None)

    await _submitted(session, svc, count_id, line_id, 2)
    async with session.begin():
        closed = await svc.close(session, tenant_id=TENANT, count_id=count_id, approved_by="sup")
    assert closed.status == CycleCountStatus.CLOSED

    async with session.begin():
        snap = await snapshot(session, bin_id=site.storage_a, item_id=ITEM)
        adjust = (
            await session.execute(select(StockLedger).where(StockLedger.reason == "ADJUST"))
        ).scalar_one()
    assert snap.qty_on_hand == 2
    assert adjust.qty_change == -3


async def test_pending_count_can_be_cancelled(session: AsyncSession):
    site = await seed_site(session)
    svc, cc = await _counted(session, site, 90)

    async with session.begin():
        cancelled = await svc.cancel(session, tenant_id=TENANT, count_id=cc.id)
    assert cancelled.status == CycleCountStatus.CANCELLED

    with pytest.raises(InvalidTransition):
        async with session.begin():
            await svc.recount(session, tenant_id=TENANT, count_id=cc.id)


async def test_recount_requires_pending_approval(session: AsyncSession):
    site = await seed_site(session)
    await receive(session, bin_id=site.storage_a, item_id=ITEM, qty=5)
    svc = CycleCountService()
    async with session.begin():
        cc = await svc.open_count(session, tenant_id=TENANT, warehouse_id=site.warehouse_id)
    with pytest.raises(InvalidTransition):
        async with session.begin():
            await svc.recount(session, tenant_id=TENANT, count_id=cc.id)


async def test_remove_line_and_delete_open_count(session: AsyncSession):
    site = await seed_site(session)
    await receive(session, bin_id=site.storage_a, item_id=ITEM, qty=5)
    await receive(session, bin_id=site.storage_b, item_id=ITEM, qty=5)
    svc = CycleCountService()
    async with session.begin():
        cc = await svc.open_count(session, tenant_id=TENANT, warehouse_id=site.warehouse_id)
        count_id = cc.id
        first, second = cc.lines[0].id, cc.lines[1].id

    async with session.begin():
        cc = await svc.remove_line(session, tenant_id=TENANT, count_id=count_id, line_id=first)
        assert [ln.id for ln in cc.lines] == [second]
        assert cc.status == CycleCountStatus.OPEN

    with pytest.raises(NotFound):
        async with session.begin():
            await svc.remove_line(session, tenant_id=TENANT, count_id=count_id, line_id=first)

    async with session.begin():
        await svc.delete_count(session, tenant_id=TENANT, count_id=count_id)
    with pytest.raises(NotFound):
        async with session.begin():
            await svc.get_count(session, tenant_id=TENANT, count_id=count_id)


async def test_counted_lines_are_locked_after_submit(session: AsyncSession):
    site = await seed_site(session)
    svc, cc = await _counted(session, site, 100)
    count_id, line_id = cc.id, cc.lines[0].id

    with pytest.raises(InvalidTransition):
        async with session.begin():
            await svc.remove_line(session, tenant_id=TENANT, count_id=count_id, line_id=line_id)
    with pytest.raises(InvalidTransition):
        async with session.begin():
            await svc.delete_count(session, tenant_id=TENANT, count_id=count_id)


async def test_in_progress_count_cannot_be_deleted(session: AsyncSession):
    site = await seed_site(session)
    await receive(session, bin_id=site.storage_a, item_id=ITEM, qty=5)
    svc = CycleCountService()
    async with session.begin():
        cc = await svc.open_count(session, tenant_id=TENANT, warehouse_id=site.warehouse_id)
        count_id, line_id = cc.id, cc.lines[0].id
    async with session.begin():
        await svc.record_count(session, tenant_id=TENANT, count_id=count_id, line_id=line_id, counted_qty=5)

    with pytest.raises(InvalidTransition):
        async with session.begin():
            await svc.delete_count(session, tenant_id=TENANT, count_id=count_id)


async def test_count_numbers_survive_deleting_an_older_draft(session: AsyncSession):
    site = await seed_site(session)
    await receive(session, bin_id=site.storage_a, item_id=ITEM, qty=5)
    svc = CycleCountService()
    async with session.begin():
        first = await svc.open_count(session, tenant_id=TENANT, warehouse_id=site.warehouse_id)
        second = await svc.open_count(session, tenant_id=TENANT, warehouse_id=site.warehouse_id)
        first_id = first.id
        assert (first.count_no, second.count_no) == ("CC-000001", "CC-000002")

    async with session.begin():
        await svc.delete_count(session, tenant_id=TENANT, count_id=first_id)
    async with session.begin():
        third = await svc.open_count(session, tenant_id=TENANT, warehouse_id=site.warehouse_id)
    assert third.count_no == "CC-000003"


# ---------- 调整单 ----------


async def _approved_adjustment(session: AsyncSession, site, lines):
    svc = AdjustmentService()
    async with session.begin():
        adj = await svc.create_adjustment(
            session, tenant_id=TENANT, warehouse_id=site.warehouse_id, reason="DAMAGE"
        )
        for bin_id, delta in lines:
            await svc.add_line(
                session,
                tenant_id=TENANT,
                adjustment_id=adj.id,
                bin_id=bin_id,
                item_id=ITEM,
                qty_delta=delta,
                reason="破损",
            )
        adj_id = adj.id
    async with session.begin():
        await svc.submit(session, tenant_id=TENANT, adjustment_id=adj_id)
    async with session.begin():
        await svc.approve(session, tenant_id=TENANT, adjustment_id=adj_id, approved_by="mgr")
    return svc, adj_id


async def test_post_fills_before_after_and_ledger_links(session: AsyncSession):
    site = await seed_site(session)
    await receive(session, bin_id=site.storage_a, item_id=ITEM, qty=10)
    svc, adj_id = await _approved_adjustment(session, site, [(site.storage_a, -4), (site.storage_b, 6)])

    async with session.begin():
        adj = await svc.post(session, tenant_id=TENANT, adjustment_id=adj_id)
        by_bin = {ln.bin_id: (ln.qty_before, ln.qty_after, ln.ledger_id is not None) for ln in adj.lines}
    assert by_bin[site.storage_a] == (10, 6, True)
    assert by_bin[site.storage_b] == (0, 6, True)
    assert adj.status == AdjustmentStatus.POSTED


async def test_post_rejects_whole_document_when_any_line_would_go_negative(session: AsyncSession):
    site = await seed_site(session)
    await receive(session, bin_id=site.storage_a, item_id=ITEM, qty=1)
    svc, adj_id = await _approved_adjustment(session, site, [(site.storage_b, 5), (site.storage_a, -2)])

    with pytest.raises(InsufficientStock) as ei:
        async with session.begin():
            await svc.post(session, tenant_id=TENANT, adjustment_id=adj_id)
    assert ei.value.details[0]["bin_id"] == site.storage_a

    async with session.begin():
        assert await ledger_count(session, item_id=ITEM, reason="ADJUST") == 0
        b = await snapshot(session, bin_id=site.storage_b, item_id=ITEM)
        adj = await svc.get_adjustment(session, tenant_id=TENANT, adjustment_id=adj_id)
    assert b is None
    assert adj.status == AdjustmentStatus.APPROVED


async def test_adjustment_line_and_workflow_guards(session: AsyncSession):
    site = await seed_site(session)
    svc = AdjustmentService()
    async with session.begin():
        adj = await svc.create_adjustment(session, tenant_id=TENANT, warehouse_id=site.warehouse_id, reason="X")
        adj_id = adj.id
    with pytest.raises(ValidationFailed):
        async with session.begin():
            await svc.add_line(
                session, tenant_id=TENANT, adjustment_id=adj_id, bin_id=site.storage_a, item_id=ITEM,
                qty_delta=0, reason="r",
            )
    with pytest.raises(ValidationFailed):
        async with session.begin():
            await svc.submit(session, tenant_id=TENANT, adjustment_id=adj_id)
    with pytest.raises(InvalidTransition):
        async with session.begin():
            await svc.post(session, tenant_id=TENANT, adjustment_id=adj_id)


async def test_rejected_adjustment_is_terminal(session: AsyncSession):
    site = await seed_site(session)
    await receive(session, bin_id=site.storage_a, item_id=ITEM, qty=3)
    svc = AdjustmentService()
    async with session.begin():
        adj = await svc.create_adjustment(session, tenant_id=TENANT, warehouse_id=site.warehouse_id, reason="X")
        await svc.add_line(
            session, tenant_id=TENANT, adjustment_id=adj.id, bin_id=site.storage_a, item_id=ITEM,
            qty_delta=-1, reason="r",
        )
        adj_id = adj.id
    async with session.begin():
        await svc.submit(session, tenant_id=TENANT, adjustment_id=adj_id)
    async with session.begin():
        rejected = await svc.reject(session, tenant_id=TENANT, adjustment_id=adj_id, reason="数量不对")
    assert rejected.status == AdjustmentStatus.REJECTED
    assert rejected.rejected_reason == "数量不对"

    with pytest.raises(InvalidTransition):
        async with session.begin():
            await svc.approve(session, tenant_id=TENANT, adjustment_id=adj_id)
