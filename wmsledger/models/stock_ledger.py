# wmsledger/models/stock_ledger.py
from __future__ import annotations

from datetime import date, datetime
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from wmsledger.db.base import Base, utcnow


class StockLedger(Base):
    """
    台账（只增不改、不删）

    - qty_change 带符号；qty_after 为写入后的快照余额，供对账
    - 幂等唯一： (tenant_id, reason, bin_id, item_id, batch_no, ref, ref_line)
      ref 为调用方提供的操作句柄；ref 为空的写入不做幂等
    - ref_type / ref_id 指向发起该变动的工作流单据
    """

    __tablename__ = "stock_ledger"

    id: Mapped[int] = mapped_column(sa.Integer, primary_key=True, autoincrement=True)

    tenant_id: Mapped[str] = mapped_column(sa.String(64), nullable=False)
    bin_id: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    item_id: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    batch_no: Mapped[str] = mapped_column(
        sa.String(64), nullable=False, default="", server_default=""
    )

    reason: Mapped[str] = mapped_column(sa.String(16), nullable=False)
    qty_change: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    qty_after: Mapped[int] = mapped_column(sa.Integer, nullable=False)

    ref: Mapped[Optional[str]] = mapped_column(sa.String(128), nullable=True)
    ref_line: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=1, server_default="1")
    ref_type: Mapped[Optional[str]] = mapped_column(sa.String(32), nullable=True)
    ref_id: Mapped[Optional[int]] = mapped_column(sa.Integer, nullable=True)

    expiry_date: Mapped[Optional[date]] = mapped_column(sa.Date, nullable=True)
    created_by: Mapped[Optional[str]] = mapped_column(sa.String(64), nullable=True)
    note: Mapped[Optional[str]] = mapped_column(sa.String(255), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )

    __table_args__ = (
        sa.UniqueConstraint(
            "tenant_id",
            "reason",
            "bin_id",
            "item_id",
            "batch_no",
            "ref",
            "ref_line",
            name="uq_stock_ledger_idem",
        ),
        sa.Index("ix_stock_ledger_key", "tenant_id", "bin_id", "item_id", "batch_no"),
        sa.Index("ix_stock_ledger_item", "tenant_id", "item_id"),
        sa.Index("ix_stock_ledger_ref", "ref_type", "ref_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<Ledger {self.reason} bin={self.bin_id} item={self.item_id} "
            f"batch={self.batch_no!r} change={self.qty_change} after={self.qty_after} "
            f"ref={self.ref}:{self.ref_line}>"
        )
