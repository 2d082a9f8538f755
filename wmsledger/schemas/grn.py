# wmsledger/schemas/grn.py
from __future__ import annotations

from datetime import date, datetime
from typing import Annotated, List, Optional

from pydantic import Field

from wmsledger.schemas.common import BatchNo, _Base
from wmsledger.schemas.stock import LedgerEntryOut


# ========= 入参 =========
class GrnLineIn(_Base):
    item_id: Annotated[int, Field(ge=1)]
    qty_expected: Annotated[int, Field(ge=1)]
    batch_no: BatchNo = None
    expiry_date: Optional[date] = None


class GrnCreateIn(_Base):
    warehouse_id: Annotated[int, Field(ge=1)]
    supplier_ref: Annotated[Optional[str], Field(max_length=64)] = None
    purchase_order_ref: Annotated[Optional[str], Field(max_length=64)] = None
    notes: Optional[str] = None
    created_by: Optional[str] = None
    lines: List[GrnLineIn] = []


class ReceiveIn(_Base):
    """一次收货：落到收货库位并生成上架任务"""

    item_id: Annotated[int, Field(ge=1)]
    qty: Annotated[int, Field(ge=1)]
    bin_id: Annotated[int, Field(ge=1, description="收货库位")]
    batch_no: BatchNo = None
    expiry_date: Optional[date] = None
    manufactured_date: Optional[date] = None
    line_id: Optional[int] = None
    ref: Annotated[Optional[str], Field(max_length=128, description="操作句柄（幂等）")] = None
    received_by: Optional[str] = None


class AssignPutawayIn(_Base):
    assigned_to: Annotated[str, Field(min_length=1, max_length=64)]
    to_bin_id: Optional[int] = None


class CompletePutawayIn(_Base):
    to_bin_id: Optional[int] = None
    completed_by: Optional[str] = None


# ========= 输出 =========
class GrnLineOut(_Base):
    id: int
    item_id: int
    qty_expected: int
    qty_received: int
    batch_no: BatchNo = None
    expiry_date: Optional[date] = None
    batch_id: Optional[int] = None
    receiving_bin_id: Optional[int] = None
    is_short: bool


class GrnOut(_Base):
    id: int
    grn_no: str
    warehouse_id: int
    supplier_ref: Optional[str] = None
    purchase_order_ref: Optional[str] = None
    status: str
    version: int
    notes: Optional[str] = None
    created_by: Optional[str] = None
    created_at: datetime
    received_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    lines: List[GrnLineOut] = []


class PutawayTaskOut(_Base):
    id: int
    grn_id: int
    grn_line_id: int
    item_id: int
    batch_no: BatchNo = None
    qty: int
    from_bin_id: int
    to_bin_id: Optional[int] = None
    status: str
    version: int
    assigned_to: Optional[str] = None
    ledger_id: Optional[int] = None
    completed_at: Optional[datetime] = None


class ReceiptOut(_Base):
    grn: GrnOut
    line: GrnLineOut
    task: Optional[PutawayTaskOut] = None
    entry: LedgerEntryOut
    replayed: bool = False


class PutawayCompleteOut(_Base):
    task: PutawayTaskOut
    out_entry: LedgerEntryOut
    in_entry: LedgerEntryOut
