# tests/services/test_concurrency.py
from __future__ import annotations

import asyncio

import pytest

from tests.helpers.inventory import TENANT, ledger_count, receive, seed_site, snapshot
from wmsledger.models.enums import LedgerReason
from wmsledger.services.errors import ConcurrentModification, InsufficientStock, InsufficientAvailable
from wmsledger.services.reservation_service import ReservationManager
from wmsledger.services.stock_service import StockService

pytestmark = [pytest.mark.asyncio, pytest.mark.slow]

ITEM = 3001


async def _withdraw(session_factory, bin_id: int, qty: int, ref: str):
    async with session_factory() as sess:
        async with sess.begin():
            return await StockService().apply_movement(
                sess,
                tenant_id=TENANT,
                bin_id=bin_id,
                item_id=ITEM,
                reason=LedgerReason.PICK,
                delta=-qty,
                ref=ref,
            )


async def test_two_sessions_racing_for_the_same_stock(session, session_factory):
    """10 在库，两个会话各扣 8：恰好一个成功，另一个冲突或不足，余额不为负。"""
    site = await seed_site(session)
    await receive(session, bin_id=site.storage_a, item_id=ITEM, qty=10)

    results = await asyncio.gather(
        _withdraw(session_factory, site.storage_a, 8, "SO-A"),
        _withdraw(session_factory, site.storage_a, 8, "SO-B"),
        return_exceptions=True,
    )
    ok = [r for r in results if not isinstance(r, BaseException)]
    failed = [r for r in results if isinstance(r, BaseException)]

    assert len(ok) == 1
    assert len(failed) == 1
    assert isinstance(failed[0], (ConcurrentModification, InsufficientStock))

    async with session.begin():
        snap = await snapshot(session, bin_id=site.storage_a, item_id=ITEM)
        assert await ledger_count(session, item_id=ITEM, reason="PICK") == 1
    assert snap.qty_on_hand == 2
    assert snap.qty_on_hand >= 0


async def test_two_reservations_cannot_overbook(session, session_factory):
    site = await seed_site(session)
    await receive(session, bin_id=site.storage_a, item_id=ITEM, qty=10)

    async def _reserve():
        async with session_factory() as sess:
            async with sess.begin():
                return await ReservationManager().reserve(sess, tenant_id=TENANT, item_id=ITEM, qty=7)

    results = await asyncio.gather(_reserve(), _reserve(), return_exceptions=True)
    ok = [r for r in results if not isinstance(r, BaseException)]
    failed = [r for r in results if isinstance(r, BaseException)]

    assert len(ok) == 1
    assert isinstance(failed[0], (ConcurrentModification, InsufficientAvailable))

    async with session.begin():
        snap = await snapshot(session, bin_id=site.storage_a, item_id=ITEM)
    assert snap.qty_reserved == 7
    assert snap.qty_reserved <= snap.qty_on_hand
