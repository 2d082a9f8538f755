# wmsledger/models/ibt.py
from __future__ import annotations

from datetime import datetime
from typing import List, Optional

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.sql import func

from wmsledger.db.base import Base, utcnow


class Ibt(Base):
    """
    仓间调拨单头表（Inter-Branch Transfer）

    DRAFT → PENDING_APPROVAL → APPROVED → PICKING → IN_TRANSIT → RECEIVED；
    IN_TRANSIT 之前任意状态可 CANCELLED。
    台账只在两处落：ship（源仓 IBT_OUT）与 receive（目的库位 IBT_IN）。
    """

    __tablename__ = "ibts"

    id: Mapped[int] = mapped_column(sa.Integer, primary_key=True, autoincrement=True)
    tenant_id: Mapped[str] = mapped_column(sa.String(64), nullable=False, index=True)
    ibt_no: Mapped[str] = mapped_column(sa.String(32), nullable=False)

    from_warehouse_id: Mapped[int] = mapped_column(
        sa.Integer, sa.ForeignKey("warehouses.id", ondelete="RESTRICT"), nullable=False
    )
    to_warehouse_id: Mapped[int] = mapped_column(
        sa.Integer, sa.ForeignKey("warehouses.id", ondelete="RESTRICT"), nullable=False
    )

    status: Mapped[str] = mapped_column(
        sa.String(20), nullable=False, default="DRAFT", server_default="DRAFT"
    )
    version: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=0, server_default="0")
    notes: Mapped[Optional[str]] = mapped_column(sa.Text)

    created_by: Mapped[Optional[str]] = mapped_column(sa.String(64))
    approved_by: Mapped[Optional[str]] = mapped_column(sa.String(64))
    approved_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    shipped_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    received_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))

    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )

    lines: Mapped[List["IbtLine"]] = relationship(
        "IbtLine",
        back_populates="ibt",
        cascade="all, delete-orphan",
        order_by="IbtLine.id",
        lazy="selectin",
    )

    __table_args__ = (sa.UniqueConstraint("tenant_id", "ibt_no", name="uq_ibts_tenant_no"),)

    def __repr__(self) -> str:
        return (
            f"<Ibt id={self.id} no={self.ibt_no} {self.from_warehouse_id}->{self.to_warehouse_id} "
            f"status={self.status} v={self.version}>"
        )


class IbtLine(Base):
    __tablename__ = "ibt_lines"

    id: Mapped[int] = mapped_column(sa.Integer, primary_key=True, autoincrement=True)
    tenant_id: Mapped[str] = mapped_column(sa.String(64), nullable=False)
    ibt_id: Mapped[int] = mapped_column(
        sa.Integer, sa.ForeignKey("ibts.id", ondelete="CASCADE"), nullable=False, index=True
    )
    item_id: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    batch_no: Mapped[Optional[str]] = mapped_column(sa.String(64))

    qty_requested: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    qty_shipped: Mapped[int] = mapped_column(
        sa.Integer, nullable=False, default=0, server_default="0"
    )
    qty_received: Mapped[int] = mapped_column(
        sa.Integer, nullable=False, default=0, server_default="0"
    )

    from_bin_id: Mapped[Optional[int]] = mapped_column(sa.Integer)
    to_bin_id: Mapped[Optional[int]] = mapped_column(sa.Integer)

    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )

    ibt: Mapped["Ibt"] = relationship("Ibt", back_populates="lines")

    @property
    def is_partially_shipped(self) -> bool:
        return 0 < self.qty_shipped < self.qty_requested

    @property
    def qty_variance(self) -> int:
        """在途差异：实收 - 实发（负数表示在途损耗）。仅在已收货后有意义。"""
        return int(self.qty_received) - int(self.qty_shipped)

    def __repr__(self) -> str:
        return (
            f"<IbtLine id={self.id} ibt={self.ibt_id} item={self.item_id} "
            f"req={self.qty_requested} shipped={self.qty_shipped} recv={self.qty_received}>"
        )
