# wmsledger/schemas/cycle_count.py
from __future__ import annotations

from datetime import datetime
from typing import Annotated, List, Optional

from pydantic import Field

from wmsledger.schemas.common import BatchNo, _Base


class OpenCountIn(_Base):
    warehouse_id: Annotated[int, Field(ge=1)]
    bin_ids: Optional[List[int]] = None
    item_ids: Optional[List[int]] = None
    created_by: Optional[str] = None


class CountLineIn(_Base):
    bin_id: Annotated[int, Field(ge=1)]
    item_id: Annotated[int, Field(ge=1)]
    batch_no: BatchNo = None


class RecordCountIn(_Base):
    counted_qty: Annotated[int, Field(ge=0)]
    counted_by: Optional[str] = None


class CloseCountIn(_Base):
    approved_by: Optional[str] = None


class CountLineOut(_Base):
    id: int
    bin_id: int
    item_id: int
    batch_no: BatchNo = None
    expected_qty: int
    counted_qty: Optional[int] = None
    variance_qty: Optional[int] = None
    counted_by: Optional[str] = None
    counted_at: Optional[datetime] = None


class CycleCountOut(_Base):
    id: int
    count_no: str
    warehouse_id: int
    status: str
    version: int
    created_by: Optional[str] = None
    approved_by: Optional[str] = None
    started_at: Optional[datetime] = None
    submitted_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None
    created_at: datetime
    lines: List[CountLineOut] = []
