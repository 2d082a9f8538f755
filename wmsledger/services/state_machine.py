# wmsledger/services/state_machine.py
"""
工作流状态迁移表 + 单据头乐观迁移

每个工作流 = 一个状态枚举 + 一张显式迁移表；单据头迁移统一走 transition()：

    UPDATE <header> SET status=:to, version=version+1, ...
     WHERE id=:id AND version=:v AND status=:from

0 行命中即并发冲突（另一个请求已先一步改了该单据）。
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, FrozenSet, Mapping, Optional

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

from wmsledger.models.enums import (
    AdjustmentStatus,
    CycleCountStatus,
    GrnStatus,
    IbtStatus,
    PutawayStatus,
)
from wmsledger.obs.metrics import workflow_transitions_total
from wmsledger.services.db_guard import conflict_guard
from wmsledger.services.errors import ConcurrentModification, InvalidTransition

UTC = timezone.utc
log = logging.getLogger("wmsledger.workflow")

TransitionTable = Mapping[str, FrozenSet[str]]

GRN_TRANSITIONS: TransitionTable = {
    GrnStatus.DRAFT: frozenset({GrnStatus.OPEN, GrnStatus.CANCELLED}),
    GrnStatus.OPEN: frozenset({GrnStatus.PARTIAL, GrnStatus.RECEIVED, GrnStatus.CANCELLED}),
    GrnStatus.PARTIAL: frozenset({GrnStatus.RECEIVED, GrnStatus.COMPLETE}),
    GrnStatus.RECEIVED: frozenset({GrnStatus.COMPLETE}),
    GrnStatus.COMPLETE: frozenset(),
    GrnStatus.CANCELLED: frozenset(),
}

PUTAWAY_TRANSITIONS: TransitionTable = {
    PutawayStatus.PENDING: frozenset({PutawayStatus.ASSIGNED, PutawayStatus.COMPLETE, PutawayStatus.CANCELLED}),
    PutawayStatus.ASSIGNED: frozenset({PutawayStatus.COMPLETE, PutawayStatus.CANCELLED}),
    PutawayStatus.COMPLETE: frozenset(),
    PutawayStatus.CANCELLED: frozenset(),
}

IBT_TRANSITIONS: TransitionTable = {
    IbtStatus.DRAFT: frozenset({IbtStatus.PENDING_APPROVAL, IbtStatus.CANCELLED}),
    IbtStatus.PENDING_APPROVAL: frozenset({IbtStatus.APPROVED, IbtStatus.CANCELLED}),
    IbtStatus.APPROVED: frozenset({IbtStatus.PICKING, IbtStatus.IN_TRANSIT, IbtStatus.CANCELLED}),
    IbtStatus.PICKING: frozenset({IbtStatus.IN_TRANSIT, IbtStatus.CANCELLED}),
    IbtStatus.IN_TRANSIT: frozenset({IbtStatus.RECEIVED}),
    IbtStatus.RECEIVED: frozenset(),
    IbtStatus.CANCELLED: frozenset(),
}

CYCLE_COUNT_TRANSITIONS: TransitionTable = {
    CycleCountStatus.OPEN: frozenset({CycleCountStatus.IN_PROGRESS, CycleCountStatus.CANCELLED}),
    CycleCountStatus.IN_PROGRESS: frozenset(
        {CycleCountStatus.PENDING_APPROVAL, CycleCountStatus.CANCELLED}
    ),
    # 退回 IN_PROGRESS = 重盘（结案被拒后的出路）
    CycleCountStatus.PENDING_APPROVAL: frozenset(
        {CycleCountStatus.CLOSED, CycleCountStatus.IN_PROGRESS, CycleCountStatus.CANCELLED}
    ),
    CycleCountStatus.CLOSED: frozenset(),
    CycleCountStatus.CANCELLED: frozenset(),
}

ADJUSTMENT_TRANSITIONS: TransitionTable = {
    AdjustmentStatus.DRAFT: frozenset({AdjustmentStatus.SUBMITTED}),
    AdjustmentStatus.SUBMITTED: frozenset({AdjustmentStatus.APPROVED, AdjustmentStatus.REJECTED}),
    AdjustmentStatus.APPROVED: frozenset({AdjustmentStatus.POSTED}),
    AdjustmentStatus.POSTED: frozenset(),
    AdjustmentStatus.REJECTED: frozenset(),
}


def can_transition(table: TransitionTable, current: str, target: str) -> bool:
    return str(target) in {str(s) for s in table.get(current, frozenset())}


def require_status(header: Any, workflow: str, action: str, *allowed: str) -> None:
    """动作守卫：当前状态不在 allowed 内即 InvalidTransition。"""
    if str(header.status) not in {str(s) for s in allowed}:
        raise InvalidTransition(
            f"{workflow} 当前状态 {header.status} 不允许 {action}",
            context={
                "workflow": workflow,
                "id": header.id,
                "status": str(header.status),
                "action": action,
                "allowed": sorted(str(s) for s in allowed),
            },
        )


async def transition(
    session: AsyncSession,
    header: Any,
    *,
    workflow: str,
    table: Optional[TransitionTable],
    to_status: Optional[str] = None,
    **values: Any,
) -> Any:
    """
    版本校验的单据头写入。

    - to_status=None：状态不变，仅 bump version（并写入 values），用于行级动作的并发守卫
    - table 非空时先校验迁移合法性
    """
    current = str(header.status)
    target = str(to_status) if to_status is not None else current
    if target != current and table is not None and not can_transition(table, current, target):
        raise InvalidTransition(
            f"{workflow} 不允许 {current} → {target}",
            context={"workflow": workflow, "id": header.id, "from": current, "to": target},
        )

    model = type(header)
    now = datetime.now(UTC)
    new_values = {"status": target, "version": int(header.version) + 1, **values}
    if hasattr(model, "updated_at"):
        new_values["updated_at"] = now

    async with conflict_guard(f"{workflow}_transition", id=header.id, to=target):
        res = await session.execute(
            update(model)
            .where(
                model.id == header.id,
                model.version == header.version,
                model.status == current,
            )
            .values(**new_values)
            .execution_options(synchronize_session=False)
        )
    if res.rowcount != 1:
        raise ConcurrentModification(
            f"{workflow} 已被并发修改，请刷新后重试",
            context={"workflow": workflow, "id": header.id, "version": header.version},
        )

    # 同步内存对象（不标脏，避免 flush 再发一次 UPDATE）
    for k, v in new_values.items():
        set_committed_value(header, k, v)

    if target != current:
        workflow_transitions_total.labels(workflow, target).inc()
        log.info("%s id=%s %s -> %s (v%s)", workflow, header.id, current, target, new_values["version"])
    return header
