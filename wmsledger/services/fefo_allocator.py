# wmsledger/services/fefo_allocator.py
from __future__ import annotations

from typing import Any, Callable, List, Sequence, Tuple

from wmsledger.services.expiry_classifier import fefo_order


def plan_fefo(
    rows: Sequence[Any],
    need: int,
    *,
    qty_of: Callable[[Any], int] = lambda r: int(r.qty_available),
) -> List[Tuple[Any, int]]:
    """
    FEFO 分配计划：返回 [(row, take_qty)]

    - rows 先按 fefo_sort_key 排序（效期升序，无效期最后，再按库位 id）
    - 依次吃满最早到期的 批次/库位，只有单个不够时才拆到下一条
    - 合计不足时返回的计划 take 之和 < need，由调用方判定不足
    """
    remaining = int(need)
    plan: List[Tuple[Any, int]] = []
    if remaining <= 0:
        return plan
    for row in fefo_order(rows):
        if remaining <= 0:
            break
        avail = int(qty_of(row))
        if avail <= 0:
            continue
        take = min(avail, remaining)
        plan.append((row, take))
        remaining -= take
    return plan
