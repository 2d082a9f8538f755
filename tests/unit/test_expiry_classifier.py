# tests/unit/test_expiry_classifier.py
from __future__ import annotations

from datetime import date, timedelta
from types import SimpleNamespace

import pytest

from wmsledger.models.enums import ExpiryTier
from wmsledger.services.expiry_classifier import classify, days_until, fefo_order, is_expired

AS_OF = date(2025, 3, 1)


@pytest.mark.parametrize(
    "offset, tier",
    [
        (-1, ExpiryTier.EXPIRED),
        (0, ExpiryTier.CRITICAL),
        (5, ExpiryTier.CRITICAL),
        (7, ExpiryTier.CRITICAL),
        (8, ExpiryTier.WARNING),
        (10, ExpiryTier.WARNING),
        (30, ExpiryTier.WARNING),
        (31, ExpiryTier.OK),
    ],
)
def test_classify_default_thresholds(offset: int, tier: ExpiryTier):
    assert classify(AS_OF + timedelta(days=offset), AS_OF) == tier


def test_no_expiry_is_ok():
    assert classify(None, AS_OF) == ExpiryTier.OK
    assert days_until(None, AS_OF) is None
    assert not is_expired(None, AS_OF)


def test_expiring_today_is_not_expired():
    assert not is_expired(AS_OF, AS_OF)
    assert is_expired(AS_OF - timedelta(days=1), AS_OF)
    assert classify(AS_OF, AS_OF) != ExpiryTier.EXPIRED


def test_custom_thresholds():
    exp = AS_OF + timedelta(days=10)
    assert classify(exp, AS_OF, critical_days=14, warning_days=60) == ExpiryTier.CRITICAL
    assert classify(exp, AS_OF, critical_days=3, warning_days=5) == ExpiryTier.OK


def test_thresholds_must_be_ordered():
    with pytest.raises(ValueError):
        classify(AS_OF, AS_OF, critical_days=30, warning_days=7)


def test_fefo_order_puts_undated_last_and_breaks_ties_by_bin():
    rows = [
        SimpleNamespace(id=1, bin_id=2, expiry_date=None),
        SimpleNamespace(id=2, bin_id=9, expiry_date=AS_OF + timedelta(days=20)),
        SimpleNamespace(id=3, bin_id=3, expiry_date=AS_OF + timedelta(days=5)),
        SimpleNamespace(id=4, bin_id=1, expiry_date=AS_OF + timedelta(days=20)),
    ]
    assert [r.id for r in fefo_order(rows)] == [3, 4, 2, 1]
