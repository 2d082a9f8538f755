# wmsledger/services/expiry_classifier.py
"""
批次效期分级（纯函数，不读写数据库）

    expiry_date <  as_of                    → EXPIRED
    0 <= days_until <= critical_days (7)    → CRITICAL
    critical_days < days_until <= warning (30) → WARNING
    其余 / 无效期                             → OK

FEFO 排序同样在这里定义：效期升序，无效期排最后，再按库位 id、快照 id 稳定排序。
"""
from __future__ import annotations

from datetime import date
from typing import Any, Iterable, List, Optional, Tuple

from wmsledger.models.enums import ExpiryTier

DEFAULT_CRITICAL_DAYS = 7
DEFAULT_WARNING_DAYS = 30


def days_until(expiry_date: Optional[date], as_of: date) -> Optional[int]:
    if expiry_date is None:
        return None
    return (expiry_date - as_of).days


def is_expired(expiry_date: Optional[date], as_of: date) -> bool:
    return expiry_date is not None and expiry_date < as_of


def classify(
    expiry_date: Optional[date],
    as_of: date,
    *,
    critical_days: int = DEFAULT_CRITICAL_DAYS,
    warning_days: int = DEFAULT_WARNING_DAYS,
) -> ExpiryTier:
    if critical_days > warning_days:
        raise ValueError(f"critical_days({critical_days}) > warning_days({warning_days})")

    if is_expired(expiry_date, as_of):
        return ExpiryTier.EXPIRED
    d = days_until(expiry_date, as_of)
    if d is None:
        return ExpiryTier.OK
    if d <= critical_days:
        return ExpiryTier.CRITICAL
    if d <= warning_days:
        return ExpiryTier.WARNING
    return ExpiryTier.OK


def fefo_sort_key(row: Any) -> Tuple[bool, date, int, int]:
    """
    适用于任何带 expiry_date / bin_id / id 属性的对象（ORM 快照或轻量 record）。
    """
    exp = getattr(row, "expiry_date", None)
    return (
        exp is None,
        exp or date.max,
        int(getattr(row, "bin_id", 0) or 0),
        int(getattr(row, "id", 0) or 0),
    )


def fefo_order(rows: Iterable[Any]) -> List[Any]:
    return sorted(rows, key=fefo_sort_key)


__all__ = [
    "DEFAULT_CRITICAL_DAYS",
    "DEFAULT_WARNING_DAYS",
    "days_until",
    "classify",
    "fefo_sort_key",
    "fefo_order",
    "is_expired",
]
