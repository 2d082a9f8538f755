# wmsledger/models/putaway_task.py
from __future__ import annotations

from datetime import datetime
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from wmsledger.db.base import Base, utcnow


class PutawayTask(Base):
    """
    上架任务：每次收货落到收货库位后自动生成一条。

    PENDING → ASSIGNED → COMPLETE / CANCELLED。
    完成后成为独立历史记录；取消不动库存（货留在收货库位）。
    """

    __tablename__ = "putaway_tasks"

    id: Mapped[int] = mapped_column(sa.Integer, primary_key=True, autoincrement=True)
    tenant_id: Mapped[str] = mapped_column(sa.String(64), nullable=False, index=True)
    grn_id: Mapped[int] = mapped_column(
        sa.Integer, sa.ForeignKey("grns.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    grn_line_id: Mapped[int] = mapped_column(
        sa.Integer, sa.ForeignKey("grn_lines.id", ondelete="RESTRICT"), nullable=False
    )

    item_id: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    batch_no: Mapped[Optional[str]] = mapped_column(sa.String(64))
    qty: Mapped[int] = mapped_column(sa.Integer, nullable=False)

    from_bin_id: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    to_bin_id: Mapped[Optional[int]] = mapped_column(sa.Integer)

    status: Mapped[str] = mapped_column(
        sa.String(16), nullable=False, default="PENDING", server_default="PENDING"
    )
    version: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=0, server_default="0")
    assigned_to: Mapped[Optional[str]] = mapped_column(sa.String(64))
    # 生成该任务的 RECEIVE 台账行
    ledger_id: Mapped[Optional[int]] = mapped_column(sa.Integer)

    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))

    def __repr__(self) -> str:
        return (
            f"<PutawayTask id={self.id} grn={self.grn_id} item={self.item_id} qty={self.qty} "
            f"{self.from_bin_id}->{self.to_bin_id} status={self.status}>"
        )
