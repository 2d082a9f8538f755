# wmsledger/schemas/expiry.py
from __future__ import annotations

from datetime import date
from typing import Optional

from wmsledger.models.enums import ExpiryTier
from wmsledger.schemas.common import BatchNo, _Base


class ExpiryAlertOut(_Base):
    tier: ExpiryTier
    count: int
    qty: int


class ExpiringStockOut(_Base):
    snapshot_id: int
    bin_id: int
    item_id: int
    batch_no: BatchNo = None
    expiry_date: Optional[date] = None
    qty_on_hand: int
    qty_available: int
    days_until: Optional[int] = None
    tier: ExpiryTier
