# wmsledger/schemas/reservation.py
from __future__ import annotations

from datetime import datetime
from typing import Annotated, List, Optional

from pydantic import Field

from wmsledger.models.enums import LedgerReason
from wmsledger.schemas.common import BatchNo, _Base


class ReserveIn(_Base):
    item_id: Annotated[int, Field(ge=1)]
    qty: Annotated[int, Field(ge=1)]
    warehouse_id: Optional[int] = None
    ref: Annotated[Optional[str], Field(max_length=128, description="调用方业务号（订单号等）")] = None


class CommitIn(_Base):
    reason: LedgerReason = LedgerReason.PICK
    created_by: Optional[str] = None


class AllocationOut(_Base):
    snapshot_id: int
    bin_id: int
    batch_no: BatchNo = None
    qty: int


class ReservationOut(_Base):
    id: int
    item_id: int
    warehouse_id: Optional[int] = None
    qty: int
    status: str
    ref: Optional[str] = None
    created_at: datetime
    closed_at: Optional[datetime] = None
    allocations: List[AllocationOut] = []
