# wmsledger/services/errors.py
from __future__ import annotations

from typing import Any, Dict, List, Optional


class InventoryError(Exception):
    """
    库存内核业务错误基类。

    - error_code / http_status 供 API 层转成 problem 响应
    - context 放定位信息（单据号、库位、批次、数量等）
    - 全部同步抛给调用方，内核不吞、不自动重试
    """

    error_code = "inventory_error"
    http_status = 400

    def __init__(
        self,
        message: str,
        *,
        context: Optional[Dict[str, Any]] = None,
        details: Optional[List[Dict[str, Any]]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.context: Dict[str, Any] = dict(context or {})
        self.details: List[Dict[str, Any]] = list(details or [])


class InsufficientStock(InventoryError):
    """扣减后余额会低于允许下限（可用量 / 在库量）。"""

    error_code = "insufficient_stock"
    http_status = 409


class InsufficientAvailable(InventoryError):
    """预占数量超过该商品全部可用量之和。"""

    error_code = "insufficient_available"
    http_status = 409


class InvalidTransition(InventoryError):
    """单据当前状态不允许该动作。"""

    error_code = "invalid_transition"
    http_status = 409


class ConcurrentModification(InventoryError):
    """乐观锁 / 串行化冲突：调用方可重试。"""

    error_code = "concurrent_modification"
    http_status = 409


class NotFound(InventoryError):
    error_code = "not_found"
    http_status = 404


class ValidationFailed(InventoryError):
    """入参不合法（数量非正、源目的相同、库位不属于该仓 ...）。"""

    error_code = "validation_failed"
    http_status = 422


def shortage_detail(
    *,
    item_id: int,
    bin_id: Optional[int],
    batch_no: Optional[str],
    required_qty: int,
    available_qty: int,
    path: str,
) -> Dict[str, Any]:
    short_qty = max(0, int(required_qty) - int(available_qty))
    return {
        "type": "shortage",
        "path": path,
        "item_id": int(item_id),
        "bin_id": bin_id,
        "batch_no": batch_no,
        "required_qty": int(required_qty),
        "available_qty": int(available_qty),
        "short_qty": int(short_qty),
    }


__all__ = [
    "InventoryError",
    "InsufficientStock",
    "InsufficientAvailable",
    "InvalidTransition",
    "ConcurrentModification",
    "NotFound",
    "ValidationFailed",
    "shortage_detail",
]
