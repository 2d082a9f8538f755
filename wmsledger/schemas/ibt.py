# wmsledger/schemas/ibt.py
from __future__ import annotations

from datetime import datetime
from typing import Annotated, List, Optional

from pydantic import Field

from wmsledger.schemas.common import BatchNo, _Base


class IbtCreateIn(_Base):
    from_warehouse_id: Annotated[int, Field(ge=1)]
    to_warehouse_id: Annotated[int, Field(ge=1)]
    notes: Optional[str] = None
    created_by: Optional[str] = None


class IbtLineIn(_Base):
    item_id: Annotated[int, Field(ge=1)]
    qty_requested: Annotated[int, Field(ge=1)]
    batch_no: BatchNo = None
    from_bin_id: Optional[int] = None


class ShipLineIn(_Base):
    line_id: int
    qty_shipped: Annotated[int, Field(ge=0)]
    from_bin_id: Optional[int] = None


class ShipIn(_Base):
    lines: Annotated[List[ShipLineIn], Field(min_length=1)]
    shipped_by: Optional[str] = None


class ReceiveLineIn(_Base):
    line_id: int
    qty_received: Annotated[int, Field(ge=0)]
    to_bin_id: Optional[int] = None


class IbtReceiveIn(_Base):
    lines: Annotated[List[ReceiveLineIn], Field(min_length=1)]
    received_by: Optional[str] = None


class IbtLineOut(_Base):
    id: int
    item_id: int
    batch_no: BatchNo = None
    qty_requested: int
    qty_shipped: int
    qty_received: int
    from_bin_id: Optional[int] = None
    to_bin_id: Optional[int] = None
    is_partially_shipped: bool
    qty_variance: int


class IbtOut(_Base):
    id: int
    ibt_no: str
    from_warehouse_id: int
    to_warehouse_id: int
    status: str
    version: int
    notes: Optional[str] = None
    created_by: Optional[str] = None
    approved_by: Optional[str] = None
    approved_at: Optional[datetime] = None
    shipped_at: Optional[datetime] = None
    received_at: Optional[datetime] = None
    created_at: datetime
    lines: List[IbtLineOut] = []
