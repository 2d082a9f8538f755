# wmsledger/services/batch_service.py
from __future__ import annotations

import logging
from datetime import date
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from wmsledger.models.batch import Batch
from wmsledger.services.db_guard import conflict_guard
from wmsledger.services.errors import ValidationFailed

log = logging.getLogger("wmsledger.batch")


class BatchService:
    """
    批次主档服务（AsyncSession，不控事务）

    提供：
      - ensure_batch(...)：按 (tenant_id, item_id, batch_no) 查找或建档
      - get_batch(...) / list_batches(...)

    说明：
      - 本服务**不写台账**，也不碰快照数量。
      - 效期一旦建档不再被覆盖；缺失时允许由后续收货补齐。
    """

    async def get_batch(
        self, session: AsyncSession, *, tenant_id: str, item_id: int, batch_no: str
    ) -> Optional[Batch]:
        stmt = select(Batch).where(
            Batch.tenant_id == tenant_id,
            Batch.item_id == int(item_id),
            Batch.batch_no == batch_no,
        )
        return (await session.execute(stmt)).scalar_one_or_none()

    async def ensure_batch(
        self,
        session: AsyncSession,
        *,
        tenant_id: str,
        item_id: int,
        batch_no: str,
        expiry_date: Optional[date] = None,
        manufactured_date: Optional[date] = None,
        grn_id: Optional[int] = None,
    ) -> Batch:
        batch_no = (batch_no or "").strip()
        if not batch_no:
            raise ValidationFailed("批次号不能为空", context={"item_id": item_id})
        if expiry_date and manufactured_date and expiry_date < manufactured_date:
            raise ValidationFailed(
                f"expiry_date({expiry_date}) < manufactured_date({manufactured_date})",
                context={"item_id": item_id, "batch_no": batch_no},
            )

        row = await self.get_batch(session, tenant_id=tenant_id, item_id=item_id, batch_no=batch_no)
        if row is not None:
            # 不覆盖已有日期，仅补齐缺失
            if row.expiry_date is None and expiry_date is not None:
                row.expiry_date = expiry_date
            elif expiry_date is not None and row.expiry_date != expiry_date:
                log.warning(
                    "batch expiry mismatch ignored tenant=%s item=%s batch=%s kept=%s got=%s",
                    tenant_id,
                    item_id,
                    batch_no,
                    row.expiry_date,
                    expiry_date,
                )
            if row.manufactured_date is None and manufactured_date is not None:
                row.manufactured_date = manufactured_date
            return row

        row = Batch(
            tenant_id=tenant_id,
            item_id=int(item_id),
            batch_no=batch_no,
            expiry_date=expiry_date,
            manufactured_date=manufactured_date,
            grn_id=grn_id,
        )
        session.add(row)
        async with conflict_guard("ensure_batch", item_id=item_id, batch_no=batch_no):
            await session.flush()
        log.info("batch created tenant=%s item=%s batch=%s exp=%s", tenant_id, item_id, batch_no, expiry_date)
        return row

    async def list_batches(
        self, session: AsyncSession, *, tenant_id: str, item_id: int, active_only: bool = True
    ) -> List[Batch]:
        stmt = select(Batch).where(Batch.tenant_id == tenant_id, Batch.item_id == int(item_id))
        if active_only:
            stmt = stmt.where(Batch.is_active.is_(True))
        # FEFO：无效期排最后
        stmt = stmt.order_by(Batch.expiry_date.is_(None), Batch.expiry_date, Batch.id)
        return list((await session.execute(stmt)).scalars().all())
