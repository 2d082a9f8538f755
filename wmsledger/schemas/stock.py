# wmsledger/schemas/stock.py
from __future__ import annotations

from datetime import date, datetime
from typing import Annotated, List, Optional

from pydantic import Field, field_validator

from wmsledger.models.enums import LedgerReason
from wmsledger.schemas.common import BatchNo, _Base


# ========= 库存变动 =========
class MovementIn(_Base):
    """单维度库存变动（正数入库，负数出库）"""

    bin_id: Annotated[int, Field(ge=1)]
    item_id: Annotated[int, Field(ge=1)]
    batch_no: BatchNo = None
    reason: LedgerReason
    delta: Annotated[int, Field(description="库存变动量；正数入库，负数出库")]
    expiry_date: Optional[date] = None
    ref: Annotated[Optional[str], Field(max_length=128, description="操作句柄（幂等）")] = None
    ref_line: Annotated[int, Field(ge=1)] = 1
    note: Annotated[Optional[str], Field(max_length=255)] = None
    created_by: Optional[str] = None

    @field_validator("delta")
    @classmethod
    def _nonzero(cls, v: int):
        if v == 0:
            raise ValueError("delta 不能为 0")
        return v


class BinTransferIn(_Base):
    from_bin_id: Annotated[int, Field(ge=1)]
    to_bin_id: Annotated[int, Field(ge=1)]
    item_id: Annotated[int, Field(ge=1)]
    batch_no: BatchNo = None
    qty: Annotated[int, Field(ge=1)]
    ref: Annotated[Optional[str], Field(max_length=128)] = None
    created_by: Optional[str] = None


# ========= 输出 =========
class LedgerEntryOut(_Base):
    id: int
    bin_id: int
    item_id: int
    batch_no: BatchNo = None
    reason: str
    qty_change: int
    qty_after: int
    ref: Optional[str] = None
    ref_line: int
    ref_type: Optional[str] = None
    ref_id: Optional[int] = None
    expiry_date: Optional[date] = None
    created_by: Optional[str] = None
    note: Optional[str] = None
    created_at: datetime


class SnapshotOut(_Base):
    id: int
    bin_id: int
    item_id: int
    batch_no: BatchNo = None
    batch_id: Optional[int] = None
    expiry_date: Optional[date] = None
    qty_on_hand: int
    qty_reserved: int
    qty_available: int
    version: int


class BinTransferOut(_Base):
    out_entry: LedgerEntryOut
    in_entry: LedgerEntryOut


class AvailableOut(_Base):
    item_id: int
    warehouse_id: Optional[int] = None
    qty_available: int


class MismatchOut(_Base):
    bin_id: int
    item_id: int
    batch_no: BatchNo = None
    snapshot_qty_on_hand: Optional[int] = None
    ledger_sum: int
    last_qty_after: Optional[int] = None


class ReconcileOut(_Base):
    ok: bool
    mismatches: List[MismatchOut]


class BatchOut(_Base):
    id: int
    item_id: int
    batch_no: str
    expiry_date: Optional[date] = None
    manufactured_date: Optional[date] = None
    grn_id: Optional[int] = None
    is_active: bool
    created_at: datetime
