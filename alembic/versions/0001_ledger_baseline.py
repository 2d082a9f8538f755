"""ledger baseline: master data mirror + stock core + workflows

Revision ID: 0001_ledger_baseline
Revises:
Create Date: 2026-10-19 10:00:00.000000

"""
from __future__ import annotations

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "0001_ledger_baseline"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _ts(name: str, nullable: bool = False) -> sa.Column:
    if nullable:
        return sa.Column(name, sa.DateTime(timezone=True), nullable=True)
    return sa.Column(name, sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False)


def upgrade() -> None:
    # ---------- 主数据镜像 ----------
    op.create_table(
        "warehouses",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("tenant_id", sa.String(length=64), nullable=False),
        sa.Column("code", sa.String(length=32), nullable=False),
        sa.Column("name", sa.String(length=128), nullable=False),
        _ts("created_at"),
        sa.PrimaryKeyConstraint("id", name="pk_warehouses"),
        sa.UniqueConstraint("tenant_id", "code", name="uq_warehouses_tenant_code"),
    )
    op.create_index("ix_warehouses_tenant_id", "warehouses", ["tenant_id"])

    op.create_table(
        "bins",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("tenant_id", sa.String(length=64), nullable=False),
        sa.Column("warehouse_id", sa.Integer(), nullable=False),
        sa.Column("code", sa.String(length=32), nullable=False),
        sa.Column("bin_type", sa.String(length=16), server_default="STORAGE", nullable=False),
        sa.ForeignKeyConstraint(
            ["warehouse_id"], ["warehouses.id"], name="fk_bins_warehouse_id_warehouses", ondelete="RESTRICT"
        ),
        sa.PrimaryKeyConstraint("id", name="pk_bins"),
        sa.UniqueConstraint("tenant_id", "warehouse_id", "code", name="uq_bins_tenant_wh_code"),
    )
    op.create_index("ix_bins_tenant_id", "bins", ["tenant_id"])
    op.create_index("ix_bins_warehouse_id", "bins", ["warehouse_id"])

    # ---------- 批次 ----------
    op.create_table(
        "batches",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("tenant_id", sa.String(length=64), nullable=False),
        sa.Column("item_id", sa.Integer(), nullable=False),
        sa.Column("batch_no", sa.String(length=64), nullable=False),
        sa.Column("expiry_date", sa.Date(), nullable=True),
        sa.Column("manufactured_date", sa.Date(), nullable=True),
        sa.Column("grn_id", sa.Integer(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), server_default=sa.true(), nullable=False),
        _ts("created_at"),
        sa.PrimaryKeyConstraint("id", name="pk_batches"),
        sa.UniqueConstraint("tenant_id", "item_id", "batch_no", name="uq_batches_tenant_item_no"),
    )
    op.create_index("ix_batches_expiry_date", "batches", ["expiry_date"])

    # ---------- 快照 / 台账 ----------
    op.create_table(
        "stock_snapshots",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("tenant_id", sa.String(length=64), nullable=False),
        sa.Column("bin_id", sa.Integer(), nullable=False),
        sa.Column("item_id", sa.Integer(), nullable=False),
        sa.Column("batch_no", sa.String(length=64), server_default="", nullable=False),
        sa.Column("batch_id", sa.Integer(), nullable=True),
        sa.Column("expiry_date", sa.Date(), nullable=True),
        sa.Column("qty_on_hand", sa.Integer(), server_default="0", nullable=False),
        sa.Column("qty_reserved", sa.Integer(), server_default="0", nullable=False),
        sa.Column("version", sa.Integer(), server_default="0", nullable=False),
        _ts("created_at"),
        _ts("updated_at"),
        sa.CheckConstraint("qty_on_hand >= 0", name="ck_stock_snapshots_on_hand_non_negative"),
        sa.CheckConstraint(
            "qty_reserved >= 0 AND qty_reserved <= qty_on_hand",
            name="ck_stock_snapshots_reserved_within_on_hand",
        ),
        sa.ForeignKeyConstraint(
            ["bin_id"], ["bins.id"], name="fk_stock_snapshots_bin_id_bins", ondelete="RESTRICT"
        ),
        sa.ForeignKeyConstraint(
            ["batch_id"], ["batches.id"], name="fk_stock_snapshots_batch_id_batches", ondelete="SET NULL"
        ),
        sa.PrimaryKeyConstraint("id", name="pk_stock_snapshots"),
        sa.UniqueConstraint("tenant_id", "bin_id", "item_id", "batch_no", name="uq_stock_snapshots_key"),
    )
    op.create_index("ix_stock_snapshots_bin_id", "stock_snapshots", ["bin_id"])
    op.create_index("ix_stock_snapshots_item_id", "stock_snapshots", ["item_id"])
    op.create_index("ix_stock_snapshots_tenant_item", "stock_snapshots", ["tenant_id", "item_id"])
    op.create_index("ix_stock_snapshots_expiry", "stock_snapshots", ["expiry_date"])

    op.create_table(
        "stock_ledger",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("tenant_id", sa.String(length=64), nullable=False),
        sa.Column("bin_id", sa.Integer(), nullable=False),
        sa.Column("item_id", sa.Integer(), nullable=False),
        sa.Column("batch_no", sa.String(length=64), server_default="", nullable=False),
        sa.Column("reason", sa.String(length=16), nullable=False),
        sa.Column("qty_change", sa.Integer(), nullable=False),
        sa.Column("qty_after", sa.Integer(), nullable=False),
        sa.Column("ref", sa.String(length=128), nullable=True),
        sa.Column("ref_line", sa.Integer(), server_default="1", nullable=False),
        sa.Column("ref_type", sa.String(length=32), nullable=True),
        sa.Column("ref_id", sa.Integer(), nullable=True),
        sa.Column("expiry_date", sa.Date(), nullable=True),
        sa.Column("created_by", sa.String(length=64), nullable=True),
        sa.Column("note", sa.String(length=255), nullable=True),
        _ts("created_at"),
        sa.PrimaryKeyConstraint("id", name="pk_stock_ledger"),
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
    )
    op.create_index("ix_stock_ledger_key", "stock_ledger", ["tenant_id", "bin_id", "item_id", "batch_no"])
    op.create_index("ix_stock_ledger_item", "stock_ledger", ["tenant_id", "item_id"])
    op.create_index("ix_stock_ledger_ref", "stock_ledger", ["ref_type", "ref_id"])

    # ---------- 预占 ----------
    op.create_table(
        "reservations",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("tenant_id", sa.String(length=64), nullable=False),
        sa.Column("item_id", sa.Integer(), nullable=False),
        sa.Column("warehouse_id", sa.Integer(), nullable=True),
        sa.Column("qty", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(length=16), server_default="OPEN", nullable=False),
        sa.Column("ref", sa.String(length=128), nullable=True),
        _ts("created_at"),
        _ts("closed_at", nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_reservations"),
    )
    op.create_index("ix_reservations_tenant_id", "reservations", ["tenant_id"])

    op.create_table(
        "reservation_allocations",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("reservation_id", sa.Integer(), nullable=False),
        sa.Column("snapshot_id", sa.Integer(), nullable=False),
        sa.Column("bin_id", sa.Integer(), nullable=False),
        sa.Column("batch_no", sa.String(length=64), nullable=False),
        sa.Column("qty", sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(
            ["reservation_id"],
            ["reservations.id"],
            name="fk_reservation_allocations_reservation_id_reservations",
            ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ["snapshot_id"],
            ["stock_snapshots.id"],
            name="fk_reservation_allocations_snapshot_id_stock_snapshots",
            ondelete="RESTRICT",
        ),
        sa.PrimaryKeyConstraint("id", name="pk_reservation_allocations"),
    )
    op.create_index(
        "ix_reservation_allocations_reservation_id", "reservation_allocations", ["reservation_id"]
    )

    # ---------- 收货 / 上架 ----------
    op.create_table(
        "grns",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("tenant_id", sa.String(length=64), nullable=False),
        sa.Column("grn_no", sa.String(length=32), nullable=False),
        sa.Column("warehouse_id", sa.Integer(), nullable=False),
        sa.Column("supplier_ref", sa.String(length=64), nullable=True),
        sa.Column("purchase_order_ref", sa.String(length=64), nullable=True),
        sa.Column("status", sa.String(length=16), server_default="DRAFT", nullable=False),
        sa.Column("version", sa.Integer(), server_default="0", nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_by", sa.String(length=64), nullable=True),
        _ts("created_at"),
        _ts("updated_at"),
        _ts("received_at", nullable=True),
        _ts("completed_at", nullable=True),
        sa.ForeignKeyConstraint(
            ["warehouse_id"], ["warehouses.id"], name="fk_grns_warehouse_id_warehouses", ondelete="RESTRICT"
        ),
        sa.PrimaryKeyConstraint("id", name="pk_grns"),
        sa.UniqueConstraint("tenant_id", "grn_no", name="uq_grns_tenant_no"),
    )
    op.create_index("ix_grns_tenant_id", "grns", ["tenant_id"])

    op.create_table(
        "grn_lines",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("tenant_id", sa.String(length=64), nullable=False),
        sa.Column("grn_id", sa.Integer(), nullable=False),
        sa.Column("item_id", sa.Integer(), nullable=False),
        sa.Column("qty_expected", sa.Integer(), server_default="0", nullable=False),
        sa.Column("qty_received", sa.Integer(), server_default="0", nullable=False),
        sa.Column("batch_no", sa.String(length=64), nullable=True),
        sa.Column("expiry_date", sa.Date(), nullable=True),
        sa.Column("batch_id", sa.Integer(), nullable=True),
        sa.Column("receiving_bin_id", sa.Integer(), nullable=True),
        _ts("created_at"),
        sa.ForeignKeyConstraint(["grn_id"], ["grns.id"], name="fk_grn_lines_grn_id_grns", ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id", name="pk_grn_lines"),
    )
    op.create_index("ix_grn_lines_grn_id", "grn_lines", ["grn_id"])

    op.create_table(
        "putaway_tasks",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("tenant_id", sa.String(length=64), nullable=False),
        sa.Column("grn_id", sa.Integer(), nullable=False),
        sa.Column("grn_line_id", sa.Integer(), nullable=False),
        sa.Column("item_id", sa.Integer(), nullable=False),
        sa.Column("batch_no", sa.String(length=64), nullable=True),
        sa.Column("qty", sa.Integer(), nullable=False),
        sa.Column("from_bin_id", sa.Integer(), nullable=False),
        sa.Column("to_bin_id", sa.Integer(), nullable=True),
        sa.Column("status", sa.String(length=16), server_default="PENDING", nullable=False),
        sa.Column("version", sa.Integer(), server_default="0", nullable=False),
        sa.Column("assigned_to", sa.String(length=64), nullable=True),
        sa.Column("ledger_id", sa.Integer(), nullable=True),
        _ts("created_at"),
        _ts("updated_at"),
        _ts("completed_at", nullable=True),
        sa.ForeignKeyConstraint(
            ["grn_id"], ["grns.id"], name="fk_putaway_tasks_grn_id_grns", ondelete="RESTRICT"
        ),
        sa.ForeignKeyConstraint(
            ["grn_line_id"], ["grn_lines.id"], name="fk_putaway_tasks_grn_line_id_grn_lines", ondelete="RESTRICT"
        ),
        sa.PrimaryKeyConstraint("id", name="pk_putaway_tasks"),
    )
    op.create_index("ix_putaway_tasks_tenant_id", "putaway_tasks", ["tenant_id"])
    op.create_index("ix_putaway_tasks_grn_id", "putaway_tasks", ["grn_id"])

    # ---------- 仓间调拨 ----------
    op.create_table(
        "ibts",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("tenant_id", sa.String(length=64), nullable=False),
        sa.Column("ibt_no", sa.String(length=32), nullable=False),
        sa.Column("from_warehouse_id", sa.Integer(), nullable=False),
        sa.Column("to_warehouse_id", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(length=20), server_default="DRAFT", nullable=False),
        sa.Column("version", sa.Integer(), server_default="0", nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_by", sa.String(length=64), nullable=True),
        sa.Column("approved_by", sa.String(length=64), nullable=True),
        _ts("approved_at", nullable=True),
        _ts("shipped_at", nullable=True),
        _ts("received_at", nullable=True),
        _ts("created_at"),
        _ts("updated_at"),
        sa.ForeignKeyConstraint(
            ["from_warehouse_id"], ["warehouses.id"], name="fk_ibts_from_warehouse_id_warehouses", ondelete="RESTRICT"
        ),
        sa.ForeignKeyConstraint(
            ["to_warehouse_id"], ["warehouses.id"], name="fk_ibts_to_warehouse_id_warehouses", ondelete="RESTRICT"
        ),
        sa.PrimaryKeyConstraint("id", name="pk_ibts"),
        sa.UniqueConstraint("tenant_id", "ibt_no", name="uq_ibts_tenant_no"),
    )
    op.create_index("ix_ibts_tenant_id", "ibts", ["tenant_id"])

    op.create_table(
        "ibt_lines",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("tenant_id", sa.String(length=64), nullable=False),
        sa.Column("ibt_id", sa.Integer(), nullable=False),
        sa.Column("item_id", sa.Integer(), nullable=False),
        sa.Column("batch_no", sa.String(length=64), nullable=True),
        sa.Column("qty_requested", sa.Integer(), nullable=False),
        sa.Column("qty_shipped", sa.Integer(), server_default="0", nullable=False),
        sa.Column("qty_received", sa.Integer(), server_default="0", nullable=False),
        sa.Column("from_bin_id", sa.Integer(), nullable=True),
        sa.Column("to_bin_id", sa.Integer(), nullable=True),
        _ts("created_at"),
        sa.ForeignKeyConstraint(["ibt_id"], ["ibts.id"], name="fk_ibt_lines_ibt_id_ibts", ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id", name="pk_ibt_lines"),
    )
    op.create_index("ix_ibt_lines_ibt_id", "ibt_lines", ["ibt_id"])

    # ---------- 盘点 / 调整 ----------
    op.create_table(
        "cycle_counts",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("tenant_id", sa.String(length=64), nullable=False),
        sa.Column("count_no", sa.String(length=32), nullable=False),
        sa.Column("warehouse_id", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(length=20), server_default="OPEN", nullable=False),
        sa.Column("version", sa.Integer(), server_default="0", nullable=False),
        sa.Column("created_by", sa.String(length=64), nullable=True),
        sa.Column("approved_by", sa.String(length=64), nullable=True),
        _ts("started_at", nullable=True),
        _ts("submitted_at", nullable=True),
        _ts("closed_at", nullable=True),
        _ts("created_at"),
        _ts("updated_at"),
        sa.ForeignKeyConstraint(
            ["warehouse_id"], ["warehouses.id"], name="fk_cycle_counts_warehouse_id_warehouses", ondelete="RESTRICT"
        ),
        sa.PrimaryKeyConstraint("id", name="pk_cycle_counts"),
        sa.UniqueConstraint("tenant_id", "count_no", name="uq_cycle_counts_tenant_no"),
    )
    op.create_index("ix_cycle_counts_tenant_id", "cycle_counts", ["tenant_id"])

    op.create_table(
        "cycle_count_lines",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("tenant_id", sa.String(length=64), nullable=False),
        sa.Column("cycle_count_id", sa.Integer(), nullable=False),
        sa.Column("bin_id", sa.Integer(), nullable=False),
        sa.Column("item_id", sa.Integer(), nullable=False),
        sa.Column("batch_no", sa.String(length=64), nullable=False),
        sa.Column("expected_qty", sa.Integer(), nullable=False),
        sa.Column("counted_qty", sa.Integer(), nullable=True),
        sa.Column("variance_qty", sa.Integer(), nullable=True),
        sa.Column("counted_by", sa.String(length=64), nullable=True),
        _ts("counted_at", nullable=True),
        sa.ForeignKeyConstraint(
            ["cycle_count_id"],
            ["cycle_counts.id"],
            name="fk_cycle_count_lines_cycle_count_id_cycle_counts",
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("id", name="pk_cycle_count_lines"),
    )
    op.create_index("ix_cycle_count_lines_cycle_count_id", "cycle_count_lines", ["cycle_count_id"])

    op.create_table(
        "adjustments",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("tenant_id", sa.String(length=64), nullable=False),
        sa.Column("adjustment_no", sa.String(length=32), nullable=False),
        sa.Column("warehouse_id", sa.Integer(), nullable=False),
        sa.Column("reason", sa.String(length=64), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("cycle_count_id", sa.Integer(), nullable=True),
        sa.Column("status", sa.String(length=16), server_default="DRAFT", nullable=False),
        sa.Column("version", sa.Integer(), server_default="0", nullable=False),
        sa.Column("created_by", sa.String(length=64), nullable=True),
        sa.Column("approved_by", sa.String(length=64), nullable=True),
        _ts("approved_at", nullable=True),
        sa.Column("rejected_reason", sa.String(length=255), nullable=True),
        _ts("posted_at", nullable=True),
        _ts("created_at"),
        _ts("updated_at"),
        sa.ForeignKeyConstraint(
            ["warehouse_id"], ["warehouses.id"], name="fk_adjustments_warehouse_id_warehouses", ondelete="RESTRICT"
        ),
        sa.ForeignKeyConstraint(
            ["cycle_count_id"],
            ["cycle_counts.id"],
            name="fk_adjustments_cycle_count_id_cycle_counts",
            ondelete="SET NULL",
        ),
        sa.PrimaryKeyConstraint("id", name="pk_adjustments"),
        sa.UniqueConstraint("tenant_id", "adjustment_no", name="uq_adjustments_tenant_no"),
    )
    op.create_index("ix_adjustments_tenant_id", "adjustments", ["tenant_id"])

    op.create_table(
        "adjustment_lines",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("tenant_id", sa.String(length=64), nullable=False),
        sa.Column("adjustment_id", sa.Integer(), nullable=False),
        sa.Column("bin_id", sa.Integer(), nullable=False),
        sa.Column("item_id", sa.Integer(), nullable=False),
        sa.Column("batch_no", sa.String(length=64), nullable=False),
        sa.Column("qty_delta", sa.Integer(), nullable=False),
        sa.Column("reason", sa.String(length=255), nullable=False),
        sa.Column("qty_before", sa.Integer(), nullable=True),
        sa.Column("qty_after", sa.Integer(), nullable=True),
        sa.Column("ledger_id", sa.Integer(), nullable=True),
        _ts("created_at"),
        sa.ForeignKeyConstraint(
            ["adjustment_id"],
            ["adjustments.id"],
            name="fk_adjustment_lines_adjustment_id_adjustments",
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("id", name="pk_adjustment_lines"),
    )
    op.create_index("ix_adjustment_lines_adjustment_id", "adjustment_lines", ["adjustment_id"])


def downgrade() -> None:
    for table in (
        "adjustment_lines",
        "adjustments",
        "cycle_count_lines",
        "cycle_counts",
        "ibt_lines",
        "ibts",
        "putaway_tasks",
        "grn_lines",
        "grns",
        "reservation_allocations",
        "reservations",
        "stock_ledger",
        "stock_snapshots",
        "batches",
        "bins",
        "warehouses",
    ):
        op.drop_table(table)
