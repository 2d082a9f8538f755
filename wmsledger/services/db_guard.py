# wmsledger/services/db_guard.py
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional

from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError

from wmsledger.obs.metrics import stock_rejections_total
from wmsledger.services.errors import ConcurrentModification

log = logging.getLogger("wmsledger.db")

# PostgreSQL: serialization_failure / deadlock_detected / lock_not_available
_RETRYABLE_PGCODES = {"40001", "40P01", "55P03"}


def _pgcode(exc: DBAPIError) -> Optional[str]:
    orig = getattr(exc, "orig", None)
    return getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)


def is_serialization_conflict(exc: BaseException) -> bool:
    """
    判定数据库异常是否属于"并发写冲突"：
      - 唯一约束撞车（并发首次建快照 / 并发重放同一 ref / 撞单据号）
      - SQLite 写锁冲突（database is locked）
      - PostgreSQL 串行化失败 / 死锁
    """
    if isinstance(exc, IntegrityError):
        return True
    if isinstance(exc, OperationalError) and "locked" in str(exc).lower():
        return True
    if isinstance(exc, DBAPIError) and _pgcode(exc) in _RETRYABLE_PGCODES:
        return True
    return False


@asynccontextmanager
async def conflict_guard(action: str, **context: Any) -> AsyncIterator[None]:
    """
    把并发写冲突统一转成 ConcurrentModification；其他数据库异常原样上抛。
    调用方拿到后整单回滚、自行决定是否重试。
    """
    try:
        yield
    except DBAPIError as e:
        if not is_serialization_conflict(e):
            raise
        stock_rejections_total.labels(ConcurrentModification.error_code).inc()
        log.warning("concurrent write conflict during %s: %s %s", action, type(e).__name__, context)
        raise ConcurrentModification(
            f"并发冲突，请重试：{action}",
            context={**context, "db_error": type(e).__name__},
        ) from e
