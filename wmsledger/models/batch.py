# wmsledger/models/batch.py
from __future__ import annotations

from datetime import date, datetime
from typing import Optional

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
    true,
)
from sqlalchemy.orm import Mapped, mapped_column

from wmsledger.db.base import Base, utcnow


class Batch(Base):
    """
    批次主档

    业务唯一维度：
        (tenant_id, item_id, batch_no)

    同一批次可以散落在多个库位：stock_snapshots 里多行引用同一个 batch。
    expiry_date 是 FEFO 与效期预警的依据；首次收货建档后不再被覆盖。
    """

    __tablename__ = "batches"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    item_id: Mapped[int] = mapped_column(Integer, nullable=False)
    batch_no: Mapped[str] = mapped_column(String(64), nullable=False)

    expiry_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    manufactured_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)

    # 首次建档来源（收货单）
    grn_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True, server_default=true()
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now()
    )

    __table_args__ = (
        UniqueConstraint("tenant_id", "item_id", "batch_no", name="uq_batches_tenant_item_no"),
        Index("ix_batches_expiry_date", "expiry_date"),
    )

    def __repr__(self) -> str:
        return (
            f"<Batch id={self.id} tenant={self.tenant_id} item={self.item_id} "
            f"no={self.batch_no} exp={self.expiry_date}>"
        )
