# wmsledger/api/problem.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, TypedDict

from fastapi import HTTPException

from wmsledger.services.errors import InventoryError


class ProblemDetail(TypedDict, total=False):
    type: str  # validation|shortage|state|concurrency
    path: str  # e.g. adjustments[3]
    reason: str
    item_id: int
    bin_id: Optional[int]
    batch_no: Optional[str]
    required_qty: int
    available_qty: int
    short_qty: int


class NextAction(TypedDict, total=False):
    action: str
    label: str


# 按错误码给出的建议动作
_NEXT_ACTIONS: Dict[str, List[NextAction]] = {
    "concurrent_modification": [{"action": "retry", "label": "刷新后重试"}],
    "insufficient_stock": [{"action": "reduce_qty", "label": "减少数量或更换库位 / 批次"}],
    "insufficient_available": [{"action": "reduce_qty", "label": "减少预占数量"}],
    "invalid_transition": [{"action": "reload", "label": "刷新单据状态"}],
}


@dataclass(frozen=True)
class Problem:
    """
    统一错误体，挂在响应的 detail 下：

        {"detail": {"error_code", "message", "http_status", "context"?, "details"?, "next_actions"?}}
    """

    error_code: str
    message: str
    http_status: int
    context: Dict[str, Any] = field(default_factory=dict)
    details: List[ProblemDetail] = field(default_factory=list)
    next_actions: List[NextAction] = field(default_factory=list)

    @classmethod
    def of(cls, exc: InventoryError) -> "Problem":
        return cls(
            error_code=exc.error_code,
            message=exc.message,
            http_status=exc.http_status,
            context=dict(exc.context),
            details=list(exc.details),  # type: ignore[arg-type]
            next_actions=list(_NEXT_ACTIONS.get(exc.error_code, [])),
        )

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "error_code": self.error_code,
            "message": self.message,
            "http_status": int(self.http_status),
        }
        # 空字段不输出
        for key in ("context", "details", "next_actions"):
            value = getattr(self, key)
            if value:
                out[key] = value
        return out


def problem_from_error(exc: InventoryError) -> Dict[str, Any]:
    return Problem.of(exc).to_dict()


def raise_problem(
    *,
    status_code: int,
    error_code: str,
    message: str,
    context: Optional[Dict[str, Any]] = None,
    details: Optional[Sequence[ProblemDetail]] = None,
) -> None:
    """路由层直接抛 problem（租户缺失、快照不存在等非内核错误）。"""
    p = Problem(
        error_code=str(error_code),
        message=str(message),
        http_status=int(status_code),
        context=dict(context or {}),
        details=list(details or []),
        next_actions=list(_NEXT_ACTIONS.get(error_code, [])),
    )
    raise HTTPException(status_code=p.http_status, detail=p.to_dict())
