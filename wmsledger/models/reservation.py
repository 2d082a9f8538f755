# wmsledger/models/reservation.py
from __future__ import annotations

from datetime import datetime
from typing import List, Optional

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.sql import func

from wmsledger.db.base import Base, utcnow


class Reservation(Base):
    """
    预占头表：代表订单履约方对某商品的一次软占用。

    预占不是库存变动：只改 stock_snapshots.qty_reserved，不写台账。
    具体占到哪些 库位/批次 记录在 reservation_allocations，release 按原路退回。
    """

    __tablename__ = "reservations"

    id: Mapped[int] = mapped_column(sa.Integer, primary_key=True, autoincrement=True)
    tenant_id: Mapped[str] = mapped_column(sa.String(64), nullable=False, index=True)
    item_id: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    warehouse_id: Mapped[Optional[int]] = mapped_column(sa.Integer, nullable=True)
    qty: Mapped[int] = mapped_column(sa.Integer, nullable=False)

    status: Mapped[str] = mapped_column(
        sa.String(16), nullable=False, default="OPEN", server_default="OPEN"
    )
    # 调用方业务号（订单号等），仅用于追溯
    ref: Mapped[Optional[str]] = mapped_column(sa.String(128), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
    closed_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))

    allocations: Mapped[List["ReservationAllocation"]] = relationship(
        "ReservationAllocation",
        back_populates="reservation",
        cascade="all, delete-orphan",
        order_by="ReservationAllocation.id",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return (
            f"<Reservation id={self.id} item={self.item_id} qty={self.qty} status={self.status}>"
        )


class ReservationAllocation(Base):
    __tablename__ = "reservation_allocations"

    id: Mapped[int] = mapped_column(sa.Integer, primary_key=True, autoincrement=True)
    reservation_id: Mapped[int] = mapped_column(
        sa.Integer,
        sa.ForeignKey("reservations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    snapshot_id: Mapped[int] = mapped_column(
        sa.Integer, sa.ForeignKey("stock_snapshots.id", ondelete="RESTRICT"), nullable=False
    )
    bin_id: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    batch_no: Mapped[str] = mapped_column(sa.String(64), nullable=False, default="")
    qty: Mapped[int] = mapped_column(sa.Integer, nullable=False)

    reservation: Mapped["Reservation"] = relationship("Reservation", back_populates="allocations")

    def __repr__(self) -> str:
        return (
            f"<ReservationAllocation res={self.reservation_id} snapshot={self.snapshot_id} "
            f"qty={self.qty}>"
        )
