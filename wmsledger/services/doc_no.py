# wmsledger/services/doc_no.py
from __future__ import annotations

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession


async def next_doc_no(session: AsyncSession, number_col, *, tenant_id: str, prefix: str) -> str:
    """
    单据号：<PREFIX>-<6 位序号>，租户内取已有最大序号 +1。

    - number_col 为单据号列（如 Grn.grn_no），按其所属表的 tenant_id 过滤
    - DRAFT 单可物理删除，不能用行数推序号（删掉中间一张会撞号）
    - 序号超过 6 位后字符串比较失真，先按长度再按字面取最大
    - 并发建单撞号时由 (tenant_id, *_no) 唯一约束兜底，表现为 ConcurrentModification，重试即可
    """
    model = number_col.class_
    last = (
        await session.execute(
            select(number_col)
            .where(model.tenant_id == tenant_id, number_col.like(f"{prefix}-%"))
            .order_by(func.length(number_col).desc(), number_col.desc())
            .limit(1)
        )
    ).scalar_one_or_none()

    seq = 0
    if last:
        tail = last.rsplit("-", 1)[-1]
        seq = int(tail) if tail.isdigit() else 0
    return f"{prefix}-{seq + 1:06d}"
