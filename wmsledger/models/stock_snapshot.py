# wmsledger/models/stock_snapshot.py
from __future__ import annotations

from datetime import date, datetime
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from wmsledger.db.base import Base, utcnow


class StockSnapshot(Base):
    """
    库存余额快照：维度 (tenant_id, bin_id, item_id, batch_no)

    - 与 stock_ledger 在同一事务内更新；等于该维度全部台账 qty_change 之和
    - qty_available = qty_on_hand - qty_reserved，不落库，随时可重算
    - 非批次商品 batch_no 存空串（保证唯一约束在所有后端都生效）
    - 清零不删除，保留批次 / 效期历史
    - version：乐观锁计数，每次写入 +1
    """

    __tablename__ = "stock_snapshots"

    id: Mapped[int] = mapped_column(sa.Integer, primary_key=True, autoincrement=True)

    tenant_id: Mapped[str] = mapped_column(sa.String(64), nullable=False)
    bin_id: Mapped[int] = mapped_column(
        sa.Integer, sa.ForeignKey("bins.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    item_id: Mapped[int] = mapped_column(sa.Integer, nullable=False, index=True)
    batch_no: Mapped[str] = mapped_column(
        sa.String(64), nullable=False, default="", server_default=""
    )
    batch_id: Mapped[Optional[int]] = mapped_column(
        sa.Integer, sa.ForeignKey("batches.id", ondelete="SET NULL"), nullable=True
    )
    expiry_date: Mapped[Optional[date]] = mapped_column(sa.Date, nullable=True)

    qty_on_hand: Mapped[int] = mapped_column(
        sa.Integer, nullable=False, default=0, server_default="0"
    )
    qty_reserved: Mapped[int] = mapped_column(
        sa.Integer, nullable=False, default=0, server_default="0"
    )

    version: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=0, server_default="0")

    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )

    __table_args__ = (
        sa.UniqueConstraint(
            "tenant_id", "bin_id", "item_id", "batch_no", name="uq_stock_snapshots_key"
        ),
        sa.CheckConstraint("qty_on_hand >= 0", name="on_hand_non_negative"),
        sa.CheckConstraint(
            "qty_reserved >= 0 AND qty_reserved <= qty_on_hand", name="reserved_within_on_hand"
        ),
        sa.Index("ix_stock_snapshots_tenant_item", "tenant_id", "item_id"),
        sa.Index("ix_stock_snapshots_expiry", "expiry_date"),
    )

    @property
    def qty_available(self) -> int:
        return int(self.qty_on_hand or 0) - int(self.qty_reserved or 0)

    def __repr__(self) -> str:
        return (
            f"<StockSnapshot bin={self.bin_id} item={self.item_id} batch={self.batch_no!r} "
            f"on_hand={self.qty_on_hand} reserved={self.qty_reserved} v={self.version}>"
        )
