# tests/unit/test_fefo_allocator.py
from __future__ import annotations

from datetime import date
from types import SimpleNamespace

from wmsledger.services.fefo_allocator import plan_fefo


def _row(id_: int, bin_id: int, exp, qty: int):
    return SimpleNamespace(id=id_, bin_id=bin_id, expiry_date=exp, qty_available=qty)


def test_fefo_exhausts_earliest_batch_first():
    e1 = _row(1, 10, date(2025, 1, 10), 10)
    e2 = _row(2, 11, date(2025, 2, 10), 10)
    plan = plan_fefo([e2, e1], 15)
    assert [(r.id, take) for r, take in plan] == [(1, 10), (2, 5)]


def test_fefo_single_row_covers_need():
    e1 = _row(1, 10, date(2025, 1, 10), 10)
    e2 = _row(2, 11, date(2025, 2, 10), 10)
    assert [(r.id, take) for r, take in plan_fefo([e1, e2], 4)] == [(1, 4)]


def test_fefo_skips_empty_rows_and_reports_shortfall():
    rows = [_row(1, 10, date(2025, 1, 1), 0), _row(2, 10, None, 3)]
    plan = plan_fefo(rows, 5)
    assert [(r.id, take) for r, take in plan] == [(2, 3)]
    assert sum(take for _, take in plan) < 5


def test_fefo_non_positive_need_is_empty():
    assert plan_fefo([_row(1, 1, None, 5)], 0) == []
