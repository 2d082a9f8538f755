# wmsledger/models/adjustment.py
from __future__ import annotations

from datetime import datetime
from typing import List, Optional

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.sql import func

from wmsledger.db.base import Base, utcnow


class Adjustment(Base):
    """
    库存调整单（报损 / 破损 / 盘盈 等人工纠偏）

    DRAFT → SUBMITTED → APPROVED → POSTED；SUBMITTED 可 REJECTED。
    POSTED 时逐行落 ADJUST 台账，全单原子：任何一行会让在库为负则整单拒绝。
    """

    __tablename__ = "adjustments"

    id: Mapped[int] = mapped_column(sa.Integer, primary_key=True, autoincrement=True)
    tenant_id: Mapped[str] = mapped_column(sa.String(64), nullable=False, index=True)
    adjustment_no: Mapped[str] = mapped_column(sa.String(32), nullable=False)
    warehouse_id: Mapped[int] = mapped_column(
        sa.Integer, sa.ForeignKey("warehouses.id", ondelete="RESTRICT"), nullable=False
    )
    reason: Mapped[str] = mapped_column(sa.String(64), nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(sa.Text)
    cycle_count_id: Mapped[Optional[int]] = mapped_column(
        sa.Integer, sa.ForeignKey("cycle_counts.id", ondelete="SET NULL")
    )

    status: Mapped[str] = mapped_column(
        sa.String(16), nullable=False, default="DRAFT", server_default="DRAFT"
    )
    version: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=0, server_default="0")

    created_by: Mapped[Optional[str]] = mapped_column(sa.String(64))
    approved_by: Mapped[Optional[str]] = mapped_column(sa.String(64))
    approved_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    rejected_reason: Mapped[Optional[str]] = mapped_column(sa.String(255))
    posted_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))

    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )

    lines: Mapped[List["AdjustmentLine"]] = relationship(
        "AdjustmentLine",
        back_populates="adjustment",
        cascade="all, delete-orphan",
        order_by="AdjustmentLine.id",
        lazy="selectin",
    )

    __table_args__ = (
        sa.UniqueConstraint("tenant_id", "adjustment_no", name="uq_adjustments_tenant_no"),
    )

    def __repr__(self) -> str:
        return (
            f"<Adjustment id={self.id} no={self.adjustment_no} status={self.status} "
            f"v={self.version}>"
        )


class AdjustmentLine(Base):
    __tablename__ = "adjustment_lines"

    id: Mapped[int] = mapped_column(sa.Integer, primary_key=True, autoincrement=True)
    tenant_id: Mapped[str] = mapped_column(sa.String(64), nullable=False)
    adjustment_id: Mapped[int] = mapped_column(
        sa.Integer, sa.ForeignKey("adjustments.id", ondelete="CASCADE"), nullable=False, index=True
    )
    bin_id: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    item_id: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    batch_no: Mapped[str] = mapped_column(sa.String(64), nullable=False, default="")

    qty_delta: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    # 行级原因（必填）：损坏 / 过期 / 找到 / 盘点差异 ...
    reason: Mapped[str] = mapped_column(sa.String(255), nullable=False)

    # 过账时回填，供审计
    qty_before: Mapped[Optional[int]] = mapped_column(sa.Integer)
    qty_after: Mapped[Optional[int]] = mapped_column(sa.Integer)
    ledger_id: Mapped[Optional[int]] = mapped_column(sa.Integer)

    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )

    adjustment: Mapped["Adjustment"] = relationship("Adjustment", back_populates="lines")

    def __repr__(self) -> str:
        return (
            f"<AdjustmentLine id={self.id} bin={self.bin_id} item={self.item_id} "
            f"delta={self.qty_delta}>"
        )
