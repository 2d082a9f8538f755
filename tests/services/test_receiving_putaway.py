# tests/services/test_receiving_putaway.py
from __future__ import annotations

from datetime import date, timedelta

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from tests.helpers.inventory import TENANT, ledger_count, seed_site, snapshot
from wmsledger.models.enums import GrnStatus, PutawayStatus
from wmsledger.services.errors import InvalidTransition, ValidationFailed
from wmsledger.services.putaway_service import PutawayService
from wmsledger.services.receiving_service import ReceivingService

pytestmark = pytest.mark.asyncio

ITEM = 4001
ITEM_2 = 4002


async def _open_grn(session: AsyncSession, site, lines):
    svc = ReceivingService()
    async with session.begin():
        grn = await svc.create_grn(
            session, tenant_id=TENANT, warehouse_id=site.warehouse_id, supplier_ref="SUP-1", lines=lines
        )
        grn_id = grn.id
    async with session.begin():
        await svc.open_grn(session, tenant_id=TENANT, grn_id=grn_id)
    return svc, grn_id


async def test_grn_receipt_statuses_and_putaway_tasks(session: AsyncSession):
    site = await seed_site(session)
    exp = date.today() + timedelta(days=120)
    svc, grn_id = await _open_grn(
        session,
        site,
        [
            {"item_id": ITEM, "qty_expected": 10, "batch_no": "LOT-1", "expiry_date": exp},
            {"item_id": ITEM_2, "qty_expected": 5},
        ],
    )

    async with session.begin():
        r1 = await svc.receive_line(
            session, tenant_id=TENANT, grn_id=grn_id, item_id=ITEM, qty=6, bin_id=site.receiving,
            batch_no="LOT-1", ref="RCV-1",
        )
        assert r1.grn.status == GrnStatus.PARTIAL
        assert r1.task.status == PutawayStatus.PENDING
        assert r1.task.ledger_id == r1.entry.id
        assert r1.entry.expiry_date == exp

    async with session.begin():
        await svc.receive_line(
            session, tenant_id=TENANT, grn_id=grn_id, item_id=ITEM, qty=4, bin_id=site.receiving,
            batch_no="LOT-1", ref="RCV-2",
        )
        r3 = await svc.receive_line(
            session, tenant_id=TENANT, grn_id=grn_id, item_id=ITEM_2, qty=5, bin_id=site.receiving, ref="RCV-3"
        )
        assert r3.grn.status == GrnStatus.RECEIVED

    async with session.begin():
        snap = await snapshot(session, bin_id=site.receiving, item_id=ITEM, batch_no="LOT-1")
        open_tasks = await PutawayService().count_open(session, tenant_id=TENANT, grn_id=grn_id)
    assert snap.qty_on_hand == 10
    assert snap.expiry_date == exp
    assert open_tasks == 3

    async with session.begin():
        grn = await svc.complete_grn(session, tenant_id=TENANT, grn_id=grn_id)
    assert grn.status == GrnStatus.COMPLETE


async def test_receipt_replay_does_not_double_count(session: AsyncSession):
    site = await seed_site(session)
    svc, grn_id = await _open_grn(session, site, [{"item_id": ITEM, "qty_expected": 10}])

    async with session.begin():
        first = await svc.receive_line(
            session, tenant_id=TENANT, grn_id=grn_id, item_id=ITEM, qty=4, bin_id=site.receiving, ref="RCV-9"
        )
    async with session.begin():
        again = await svc.receive_line(
            session, tenant_id=TENANT, grn_id=grn_id, item_id=ITEM, qty=4, bin_id=site.receiving, ref="RCV-9"
        )

    assert again.replayed is True
    assert again.entry.id == first.entry.id
    assert again.task.id == first.task.id
    async with session.begin():
        assert await ledger_count(session, item_id=ITEM) == 1
        grn = await svc.get_grn(session, tenant_id=TENANT, grn_id=grn_id)
    assert grn.lines[0].qty_received == 4


async def test_unexpected_item_gets_its_own_line(session: AsyncSession):
    site = await seed_site(session)
    svc, grn_id = await _open_grn(session, site, [{"item_id": ITEM, "qty_expected": 2}])

    async with session.begin():
        r = await svc.receive_line(
            session, tenant_id=TENANT, grn_id=grn_id, item_id=ITEM_2, qty=3, bin_id=site.receiving
        )
    assert r.line.item_id == ITEM_2
    assert r.line.qty_expected == 0
    assert r.line.qty_received == 3
    assert r.grn.status == GrnStatus.PARTIAL


async def test_receive_requires_open_grn_and_bin_in_warehouse(session: AsyncSession):
    site = await seed_site(session)
    other = await seed_site(session, code="WH2")
    svc = ReceivingService()
    async with session.begin():
        grn = await svc.create_grn(session, tenant_id=TENANT, warehouse_id=site.warehouse_id)
        grn_id = grn.id

    with pytest.raises(InvalidTransition):
        async with session.begin():
            await svc.receive_line(
                session, tenant_id=TENANT, grn_id=grn_id, item_id=ITEM, qty=1, bin_id=site.receiving
            )

    async with session.begin():
        await svc.open_grn(session, tenant_id=TENANT, grn_id=grn_id)
    with pytest.raises(ValidationFailed):
        async with session.begin():
            await svc.receive_line(
                session, tenant_id=TENANT, grn_id=grn_id, item_id=ITEM, qty=1, bin_id=other.receiving
            )


async def test_cancel_only_before_any_receipt(session: AsyncSession):
    site = await seed_site(session)
    svc, grn_id = await _open_grn(session, site, [{"item_id": ITEM, "qty_expected": 2}])
    async with session.begin():
        await svc.receive_line(session, tenant_id=TENANT, grn_id=grn_id, item_id=ITEM, qty=1, bin_id=site.receiving)

    with pytest.raises(InvalidTransition):
        async with session.begin():
            await svc.cancel_grn(session, tenant_id=TENANT, grn_id=grn_id)

    svc2, grn2 = await _open_grn(session, site, [{"item_id": ITEM, "qty_expected": 2}])
    async with session.begin():
        cancelled = await svc2.cancel_grn(session, tenant_id=TENANT, grn_id=grn2)
    assert cancelled.status == GrnStatus.CANCELLED


async def test_putaway_moves_stock_out_of_receiving(session: AsyncSession):
    site = await seed_site(session)
    svc, grn_id = await _open_grn(session, site, [{"item_id": ITEM, "qty_expected": 8, "batch_no": "LOT-P"}])
    async with session.begin():
        r = await svc.receive_line(
            session, tenant_id=TENANT, grn_id=grn_id, item_id=ITEM, qty=8, bin_id=site.receiving, batch_no="LOT-P"
        )
        task_id = r.task.id

    putaway = PutawayService()
    with pytest.raises(ValidationFailed):
        async with session.begin():
            await putaway.complete(session, tenant_id=TENANT, task_id=task_id, to_bin_id=site.receiving)

    async with session.begin():
        await putaway.assign(session, tenant_id=TENANT, task_id=task_id, assigned_to="op-1")
    async with session.begin():
        task, out_e, in_e = await putaway.complete(
            session, tenant_id=TENANT, task_id=task_id, to_bin_id=site.storage_a, completed_by="op-1"
        )
    assert task.status == PutawayStatus.COMPLETE
    assert task.to_bin_id == site.storage_a
    assert out_e.ref == in_e.ref == f"PUT-{task_id}"

    async with session.begin():
        rcv = await snapshot(session, bin_id=site.receiving, item_id=ITEM, batch_no="LOT-P")
        dst = await snapshot(session, bin_id=site.storage_a, item_id=ITEM, batch_no="LOT-P")
        remaining = await putaway.count_open(session, tenant_id=TENANT, grn_id=grn_id)
    assert (rcv.qty_on_hand, dst.qty_on_hand) == (0, 8)
    assert remaining == 0

    with pytest.raises(InvalidTransition):
        async with session.begin():
            await putaway.cancel(session, tenant_id=TENANT, task_id=task_id)


async def test_grn_numbers_survive_deleting_an_older_draft(session: AsyncSession):
    site = await seed_site(session)
    svc = ReceivingService()
    async with session.begin():
        first = await svc.create_grn(session, tenant_id=TENANT, warehouse_id=site.warehouse_id)
        second = await svc.create_grn(session, tenant_id=TENANT, warehouse_id=site.warehouse_id)
        first_id = first.id
        assert (first.grn_no, second.grn_no) == ("GRN-000001", "GRN-000002")

    async with session.begin():
        await svc.delete_grn(session, tenant_id=TENANT, grn_id=first_id)
    async with session.begin():
        third = await svc.create_grn(session, tenant_id=TENANT, warehouse_id=site.warehouse_id)
    assert third.grn_no == "GRN-000003"


async def test_non_batch_receipt_takes_expiry_from_planned_line(session: AsyncSession):
    site = await seed_site(session)
    exp = date.today() + timedelta(days=30)
    svc, grn_id = await _open_grn(session, site, [{"item_id": ITEM, "qty_expected": 3, "expiry_date": exp}])

    async with session.begin():
        r = await svc.receive_line(
            session, tenant_id=TENANT, grn_id=grn_id, item_id=ITEM, qty=3, bin_id=site.receiving, ref="RCV-EXP"
        )
        assert r.entry.expiry_date == exp

    async with session.begin():
        snap = await snapshot(session, bin_id=site.receiving, item_id=ITEM)
    assert snap.expiry_date == exp
