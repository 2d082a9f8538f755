# wmsledger/models/warehouse.py
from __future__ import annotations

from datetime import datetime

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from wmsledger.db.base import Base, utcnow


class Warehouse(Base):
    """
    仓库（主数据镜像）

    租户 / 站点管理属于外部协作方；这里只保留库存内核需要的最小字段，
    用于 库位 → 仓库 的解析（仓维度查询、调拨校验、盘点范围）。
    """

    __tablename__ = "warehouses"

    id: Mapped[int] = mapped_column(sa.Integer, primary_key=True, autoincrement=True)
    tenant_id: Mapped[str] = mapped_column(sa.String(64), nullable=False, index=True)
    code: Mapped[str] = mapped_column(sa.String(32), nullable=False)
    name: Mapped[str] = mapped_column(sa.String(128), nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )

    __table_args__ = (sa.UniqueConstraint("tenant_id", "code", name="uq_warehouses_tenant_code"),)

    def __repr__(self) -> str:
        return f"<Warehouse id={self.id} tenant={self.tenant_id} code={self.code}>"


class Bin(Base):
    """库位：属于某个仓库，bin_type 决定是否可预占（见 NON_RESERVABLE_BIN_TYPES）。"""

    __tablename__ = "bins"

    id: Mapped[int] = mapped_column(sa.Integer, primary_key=True, autoincrement=True)
    tenant_id: Mapped[str] = mapped_column(sa.String(64), nullable=False, index=True)
    warehouse_id: Mapped[int] = mapped_column(
        sa.Integer,
        sa.ForeignKey("warehouses.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    code: Mapped[str] = mapped_column(sa.String(32), nullable=False)
    bin_type: Mapped[str] = mapped_column(
        sa.String(16), nullable=False, default="STORAGE", server_default="STORAGE"
    )

    __table_args__ = (
        sa.UniqueConstraint("tenant_id", "warehouse_id", "code", name="uq_bins_tenant_wh_code"),
    )

    def __repr__(self) -> str:
        return f"<Bin id={self.id} wh={self.warehouse_id} code={self.code} type={self.bin_type}>"
