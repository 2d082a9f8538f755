"""wms-ledger：多租户库存台账内核。"""

__version__ = "0.1.0"
