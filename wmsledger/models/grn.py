# wmsledger/models/grn.py
from __future__ import annotations

from datetime import date, datetime
from typing import List, Optional

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.sql import func

from wmsledger.db.base import Base, utcnow


class Grn(Base):
    """
    收货单头表（Goods Receipt Note）

    状态：DRAFT → OPEN → PARTIAL → RECEIVED / COMPLETE；CANCELLED 仅限未收货单据。
    COMPLETE 需要显式完成动作，不随"收齐"自动发生。
    """

    __tablename__ = "grns"

    id: Mapped[int] = mapped_column(sa.Integer, primary_key=True, autoincrement=True)
    tenant_id: Mapped[str] = mapped_column(sa.String(64), nullable=False, index=True)
    grn_no: Mapped[str] = mapped_column(sa.String(32), nullable=False)
    warehouse_id: Mapped[int] = mapped_column(
        sa.Integer, sa.ForeignKey("warehouses.id", ondelete="RESTRICT"), nullable=False
    )
    supplier_ref: Mapped[Optional[str]] = mapped_column(sa.String(64))
    purchase_order_ref: Mapped[Optional[str]] = mapped_column(sa.String(64))

    status: Mapped[str] = mapped_column(
        sa.String(16), nullable=False, default="DRAFT", server_default="DRAFT"
    )
    version: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=0, server_default="0")
    notes: Mapped[Optional[str]] = mapped_column(sa.Text)

    created_by: Mapped[Optional[str]] = mapped_column(sa.String(64))
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
    received_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    completed_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))

    lines: Mapped[List["GrnLine"]] = relationship(
        "GrnLine",
        back_populates="grn",
        cascade="all, delete-orphan",
        order_by="GrnLine.id",
        lazy="selectin",
    )

    __table_args__ = (sa.UniqueConstraint("tenant_id", "grn_no", name="uq_grns_tenant_no"),)

    def __repr__(self) -> str:
        return f"<Grn id={self.id} no={self.grn_no} status={self.status} v={self.version}>"


class GrnLine(Base):
    """
    收货单行：qty_expected（应收，可为 0 表示计划外）与 qty_received（累计实收）。
    """

    __tablename__ = "grn_lines"

    id: Mapped[int] = mapped_column(sa.Integer, primary_key=True, autoincrement=True)
    tenant_id: Mapped[str] = mapped_column(sa.String(64), nullable=False)
    grn_id: Mapped[int] = mapped_column(
        sa.Integer, sa.ForeignKey("grns.id", ondelete="CASCADE"), nullable=False, index=True
    )
    item_id: Mapped[int] = mapped_column(sa.Integer, nullable=False)

    qty_expected: Mapped[int] = mapped_column(
        sa.Integer, nullable=False, default=0, server_default="0"
    )
    qty_received: Mapped[int] = mapped_column(
        sa.Integer, nullable=False, default=0, server_default="0"
    )

    batch_no: Mapped[Optional[str]] = mapped_column(sa.String(64))
    expiry_date: Mapped[Optional[date]] = mapped_column(sa.Date)
    batch_id: Mapped[Optional[int]] = mapped_column(sa.Integer)
    receiving_bin_id: Mapped[Optional[int]] = mapped_column(sa.Integer)

    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )

    grn: Mapped["Grn"] = relationship("Grn", back_populates="lines")

    @property
    def is_short(self) -> bool:
        return self.qty_received < self.qty_expected

    def __repr__(self) -> str:
        return (
            f"<GrnLine id={self.id} grn={self.grn_id} item={self.item_id} "
            f"expected={self.qty_expected} received={self.qty_received}>"
        )
