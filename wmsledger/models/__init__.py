"""
统一导出 ORM 模型。
"""

from importlib import import_module


def _export(module_name: str, class_name: str) -> None:
    module = import_module(module_name)
    globals()[class_name] = getattr(module, class_name)


MODEL_SPECS = [
    # -------- 主数据（外部协作方维护，这里只保留仓 / 库位最小镜像）--------
    ("wmsledger.models.warehouse", "Warehouse"),
    ("wmsledger.models.warehouse", "Bin"),
    # -------- 库存 / 批次 / 台账 --------
    ("wmsledger.models.batch", "Batch"),
    ("wmsledger.models.stock_snapshot", "StockSnapshot"),
    ("wmsledger.models.stock_ledger", "StockLedger"),
    # -------- 预占 --------
    ("wmsledger.models.reservation", "Reservation"),
    ("wmsledger.models.reservation", "ReservationAllocation"),
    # -------- 收货 / 上架 --------
    ("wmsledger.models.grn", "Grn"),
    ("wmsledger.models.grn", "GrnLine"),
    ("wmsledger.models.putaway_task", "PutawayTask"),
    # -------- 仓间调拨 --------
    ("wmsledger.models.ibt", "Ibt"),
    ("wmsledger.models.ibt", "IbtLine"),
    # -------- 盘点 / 调整 --------
    ("wmsledger.models.cycle_count", "CycleCount"),
    ("wmsledger.models.cycle_count", "CycleCountLine"),
    ("wmsledger.models.adjustment", "Adjustment"),
    ("wmsledger.models.adjustment", "AdjustmentLine"),
]

for _module, _name in MODEL_SPECS:
    _export(_module, _name)

__all__ = [name for _, name in MODEL_SPECS]
