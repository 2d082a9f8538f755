# wmsledger/models/enums.py
from __future__ import annotations

from enum import StrEnum


class LedgerReason(StrEnum):
    """
    台账 reason（落入 stock_ledger.reason）：

    - RECEIVE    收货入库（GRN，落在收货库位）
    - PICK       拣选出库
    - SHIP       发货出库
    - IBT_IN     仓间调拨入库（目的仓）
    - IBT_OUT    仓间调拨出库（源仓）
    - ADJUST     调整 / 盘点差异
    - SCRAP      报废
    - TRANSFER   库位间移动（上架 / 移库），成对出现
    - RETURN     退货
    """

    RECEIVE = "RECEIVE"
    PICK = "PICK"
    SHIP = "SHIP"
    IBT_IN = "IBT_IN"
    IBT_OUT = "IBT_OUT"
    ADJUST = "ADJUST"
    SCRAP = "SCRAP"
    TRANSFER = "TRANSFER"
    RETURN = "RETURN"


# 扣减时按"可用量"校验的 reason（不得动用已预占部分）
AVAILABILITY_CHECKED_REASONS = frozenset(
    {
        LedgerReason.PICK,
        LedgerReason.SHIP,
        LedgerReason.IBT_OUT,
        LedgerReason.TRANSFER,
        LedgerReason.RETURN,
    }
)

# 扣减时按"在库量"校验的 reason（可以扣到 0，不得为负）
ON_HAND_CHECKED_REASONS = frozenset({LedgerReason.ADJUST, LedgerReason.SCRAP})


class BinType(StrEnum):
    STORAGE = "STORAGE"
    PICKING = "PICKING"
    RECEIVING = "RECEIVING"
    QUARANTINE = "QUARANTINE"
    SHIPPING = "SHIPPING"
    SCRAP = "SCRAP"


# 不参与预占的库位类型
NON_RESERVABLE_BIN_TYPES = frozenset({BinType.QUARANTINE, BinType.SCRAP})


class ExpiryTier(StrEnum):
    EXPIRED = "EXPIRED"
    CRITICAL = "CRITICAL"
    WARNING = "WARNING"
    OK = "OK"


class ReservationStatus(StrEnum):
    OPEN = "OPEN"
    RELEASED = "RELEASED"
    COMMITTED = "COMMITTED"


class GrnStatus(StrEnum):
    DRAFT = "DRAFT"
    OPEN = "OPEN"
    PARTIAL = "PARTIAL"
    RECEIVED = "RECEIVED"
    COMPLETE = "COMPLETE"
    CANCELLED = "CANCELLED"


class PutawayStatus(StrEnum):
    PENDING = "PENDING"
    ASSIGNED = "ASSIGNED"
    COMPLETE = "COMPLETE"
    CANCELLED = "CANCELLED"


class IbtStatus(StrEnum):
    DRAFT = "DRAFT"
    PENDING_APPROVAL = "PENDING_APPROVAL"
    APPROVED = "APPROVED"
    PICKING = "PICKING"
    IN_TRANSIT = "IN_TRANSIT"
    RECEIVED = "RECEIVED"
    CANCELLED = "CANCELLED"


class CycleCountStatus(StrEnum):
    OPEN = "OPEN"
    IN_PROGRESS = "IN_PROGRESS"
    PENDING_APPROVAL = "PENDING_APPROVAL"
    CLOSED = "CLOSED"
    CANCELLED = "CANCELLED"


class AdjustmentStatus(StrEnum):
    DRAFT = "DRAFT"
    SUBMITTED = "SUBMITTED"
    APPROVED = "APPROVED"
    POSTED = "POSTED"
    REJECTED = "REJECTED"


__all__ = [
    "LedgerReason",
    "AVAILABILITY_CHECKED_REASONS",
    "ON_HAND_CHECKED_REASONS",
    "BinType",
    "NON_RESERVABLE_BIN_TYPES",
    "ExpiryTier",
    "ReservationStatus",
    "GrnStatus",
    "PutawayStatus",
    "IbtStatus",
    "CycleCountStatus",
    "AdjustmentStatus",
]
