# wmsledger/models/cycle_count.py
from __future__ import annotations

from datetime import datetime
from typing import List, Optional

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.sql import func

from wmsledger.db.base import Base, utcnow


class CycleCount(Base):
    """
    盘点单头表

    OPEN → IN_PROGRESS → PENDING_APPROVAL → CLOSED；OPEN / IN_PROGRESS 可 CANCELLED。
    CLOSED 为终态，不再可变。
    """

    __tablename__ = "cycle_counts"

    id: Mapped[int] = mapped_column(sa.Integer, primary_key=True, autoincrement=True)
    tenant_id: Mapped[str] = mapped_column(sa.String(64), nullable=False, index=True)
    count_no: Mapped[str] = mapped_column(sa.String(32), nullable=False)
    warehouse_id: Mapped[int] = mapped_column(
        sa.Integer, sa.ForeignKey("warehouses.id", ondelete="RESTRICT"), nullable=False
    )

    status: Mapped[str] = mapped_column(
        sa.String(20), nullable=False, default="OPEN", server_default="OPEN"
    )
    version: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=0, server_default="0")

    created_by: Mapped[Optional[str]] = mapped_column(sa.String(64))
    approved_by: Mapped[Optional[str]] = mapped_column(sa.String(64))
    started_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    submitted_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    closed_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))

    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )

    lines: Mapped[List["CycleCountLine"]] = relationship(
        "CycleCountLine",
        back_populates="cycle_count",
        cascade="all, delete-orphan",
        order_by="CycleCountLine.id",
        lazy="selectin",
    )

    __table_args__ = (
        sa.UniqueConstraint("tenant_id", "count_no", name="uq_cycle_counts_tenant_no"),
    )

    def __repr__(self) -> str:
        return f"<CycleCount id={self.id} no={self.count_no} status={self.status} v={self.version}>"


class CycleCountLine(Base):
    """
    盘点行：expected_qty 为开单时冻结的账面基线，之后不随实时库存刷新。
    variance_qty 在提交审批时计算：counted_qty - expected_qty。
    """

    __tablename__ = "cycle_count_lines"

    id: Mapped[int] = mapped_column(sa.Integer, primary_key=True, autoincrement=True)
    tenant_id: Mapped[str] = mapped_column(sa.String(64), nullable=False)
    cycle_count_id: Mapped[int] = mapped_column(
        sa.Integer, sa.ForeignKey("cycle_counts.id", ondelete="CASCADE"), nullable=False, index=True
    )
    bin_id: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    item_id: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    batch_no: Mapped[str] = mapped_column(sa.String(64), nullable=False, default="")

    expected_qty: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    counted_qty: Mapped[Optional[int]] = mapped_column(sa.Integer)
    variance_qty: Mapped[Optional[int]] = mapped_column(sa.Integer)

    counted_by: Mapped[Optional[str]] = mapped_column(sa.String(64))
    counted_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))

    cycle_count: Mapped["CycleCount"] = relationship("CycleCount", back_populates="lines")

    def __repr__(self) -> str:
        return (
            f"<CycleCountLine id={self.id} bin={self.bin_id} item={self.item_id} "
            f"expected={self.expected_qty} counted={self.counted_qty} var={self.variance_qty}>"
        )
