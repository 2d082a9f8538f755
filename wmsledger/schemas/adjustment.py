# wmsledger/schemas/adjustment.py
from __future__ import annotations

from datetime import datetime
from typing import Annotated, List, Optional

from pydantic import Field, field_validator

from wmsledger.schemas.common import BatchNo, _Base


class AdjustmentCreateIn(_Base):
    warehouse_id: Annotated[int, Field(ge=1)]
    reason: Annotated[str, Field(min_length=1, max_length=64)]
    notes: Optional[str] = None
    cycle_count_id: Optional[int] = None
    created_by: Optional[str] = None


class AdjustmentLineIn(_Base):
    bin_id: Annotated[int, Field(ge=1)]
    item_id: Annotated[int, Field(ge=1)]
    batch_no: BatchNo = None
    qty_delta: int
    reason: Annotated[str, Field(min_length=1, max_length=255)]

    @field_validator("qty_delta")
    @classmethod
    def _nonzero(cls, v: int):
        if v == 0:
            raise ValueError("qty_delta 不能为 0")
        return v


class RejectIn(_Base):
    reason: Annotated[str, Field(min_length=1, max_length=255)]


class PostIn(_Base):
    posted_by: Optional[str] = None


class AdjustmentLineOut(_Base):
    id: int
    bin_id: int
    item_id: int
    batch_no: BatchNo = None
    qty_delta: int
    reason: str
    qty_before: Optional[int] = None
    qty_after: Optional[int] = None
    ledger_id: Optional[int] = None


class AdjustmentOut(_Base):
    id: int
    adjustment_no: str
    warehouse_id: int
    reason: str
    notes: Optional[str] = None
    cycle_count_id: Optional[int] = None
    status: str
    version: int
    created_by: Optional[str] = None
    approved_by: Optional[str] = None
    approved_at: Optional[datetime] = None
    rejected_reason: Optional[str] = None
    posted_at: Optional[datetime] = None
    created_at: datetime
    lines: List[AdjustmentLineOut] = []
