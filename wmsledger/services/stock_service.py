# wmsledger/services/stock_service.py
from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from typing import List, Optional, Tuple, Union

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from wmsledger.models.enums import (
    AVAILABILITY_CHECKED_REASONS,
    NON_RESERVABLE_BIN_TYPES,
    ON_HAND_CHECKED_REASONS,
    LedgerReason,
)
from wmsledger.models.stock_ledger import StockLedger
from wmsledger.models.stock_snapshot import StockSnapshot
from wmsledger.models.warehouse import Bin
from wmsledger.obs.metrics import stock_rejections_total
from wmsledger.services.batch_service import BatchService
from wmsledger.services.db_guard import conflict_guard
from wmsledger.services.errors import (
    ConcurrentModification,
    InsufficientStock,
    InventoryError,
    ValidationFailed,
    shortage_detail,
)
from wmsledger.services.ledger_writer import find_replay, write_ledger
from wmsledger.services.master_data import get_bin

UTC = timezone.utc
log = logging.getLogger("wmsledger.stock")

# 只允许正向的 reason
INBOUND_ONLY_REASONS = frozenset({LedgerReason.RECEIVE, LedgerReason.IBT_IN})


def norm_batch(batch_no: Optional[str]) -> str:
    """非批次库存在库里存空串。"""
    return (batch_no or "").strip()


def batch_or_none(batch_no: Optional[str]) -> Optional[str]:
    return batch_no or None


def _reject(exc: InventoryError) -> InventoryError:
    stock_rejections_total.labels(exc.error_code).inc()
    log.warning("movement rejected: %s %s", exc.error_code, exc.context)
    return exc


class StockService:
    """
    库存内核写路径（单一入口 apply_movement）

    不变式：
    ------------------------------------------
    • 快照 (tenant_id, bin_id, item_id, batch_no) 与台账在同一事务内更新
    • 快照 qty_on_hand == 该维度全部台账 qty_change 之和 == 最后一条台账 qty_after
    • 0 <= qty_reserved <= qty_on_hand
    • 同一维度的并发写：PostgreSQL 由 FOR UPDATE 串行化；
      其余后端由 version 乐观校验兜底，失败即 ConcurrentModification
    • 不做内部重试
    ------------------------------------------

    使用方式（必须由外层控制事务）：

        async with session.begin():
            await stock.apply_movement(session, ...)
    """

    def __init__(self, batches: Optional[BatchService] = None) -> None:
        self.batches = batches or BatchService()

    # ---------------------------------------------------------------
    # 读
    # ---------------------------------------------------------------
    async def get_snapshot(
        self,
        session: AsyncSession,
        *,
        tenant_id: str,
        bin_id: int,
        item_id: int,
        batch_no: Optional[str] = None,
        for_update: bool = False,
    ) -> Optional[StockSnapshot]:
        stmt = select(StockSnapshot).where(
            StockSnapshot.tenant_id == tenant_id,
            StockSnapshot.bin_id == int(bin_id),
            StockSnapshot.item_id == int(item_id),
            StockSnapshot.batch_no == norm_batch(batch_no),
        )
        if for_update:
            stmt = stmt.with_for_update()
        stmt = stmt.execution_options(populate_existing=True)
        return (await session.execute(stmt)).scalar_one_or_none()

    async def list_stock_for_item(
        self,
        session: AsyncSession,
        *,
        tenant_id: str,
        item_id: int,
        warehouse_id: Optional[int] = None,
        include_empty: bool = False,
    ) -> List[StockSnapshot]:
        """FEFO 顺序：效期升序（无效期最后）→ 库位 id → 快照 id。"""
        stmt = select(StockSnapshot).where(
            StockSnapshot.tenant_id == tenant_id, StockSnapshot.item_id == int(item_id)
        )
        if warehouse_id is not None:
            stmt = stmt.join(Bin, Bin.id == StockSnapshot.bin_id).where(
                Bin.warehouse_id == int(warehouse_id)
            )
        if not include_empty:
            stmt = stmt.where(StockSnapshot.qty_on_hand > 0)
        stmt = stmt.order_by(
            StockSnapshot.expiry_date.is_(None),
            StockSnapshot.expiry_date,
            StockSnapshot.bin_id,
            StockSnapshot.id,
        ).execution_options(populate_existing=True)
        return list((await session.execute(stmt)).scalars().all())

    async def list_stock_in_bin(
        self,
        session: AsyncSession,
        *,
        tenant_id: str,
        bin_id: int,
        include_empty: bool = False,
    ) -> List[StockSnapshot]:
        stmt = select(StockSnapshot).where(
            StockSnapshot.tenant_id == tenant_id, StockSnapshot.bin_id == int(bin_id)
        )
        if not include_empty:
            stmt = stmt.where(StockSnapshot.qty_on_hand > 0)
        stmt = stmt.order_by(StockSnapshot.item_id, StockSnapshot.batch_no).execution_options(
            populate_existing=True
        )
        return list((await session.execute(stmt)).scalars().all())

    async def query_available(
        self,
        session: AsyncSession,
        *,
        tenant_id: str,
        item_id: int,
        warehouse_id: Optional[int] = None,
        reservable_only: bool = False,
        as_of: Optional[date] = None,
    ) -> int:
        """
        可用量合计 = Σ(qty_on_hand - qty_reserved)。

        reservable_only=True 时与预占口径一致：排除隔离 / 报废库位与已过期批次。
        """
        stmt = (
            select(func.coalesce(func.sum(StockSnapshot.qty_on_hand - StockSnapshot.qty_reserved), 0))
            .select_from(StockSnapshot)
            .join(Bin, Bin.id == StockSnapshot.bin_id)
            .where(StockSnapshot.tenant_id == tenant_id, StockSnapshot.item_id == int(item_id))
        )
        if warehouse_id is not None:
            stmt = stmt.where(Bin.warehouse_id == int(warehouse_id))
        if reservable_only:
            today = as_of or date.today()
            stmt = stmt.where(Bin.bin_type.not_in([str(t) for t in NON_RESERVABLE_BIN_TYPES])).where(
                (StockSnapshot.expiry_date.is_(None)) | (StockSnapshot.expiry_date >= today)
            )
        return int((await session.execute(stmt)).scalar_one() or 0)

    async def ledger_history(
        self,
        session: AsyncSession,
        *,
        tenant_id: str,
        item_id: int,
        bin_id: Optional[int] = None,
        batch_no: Optional[str] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[StockLedger]:
        stmt = select(StockLedger).where(
            StockLedger.tenant_id == tenant_id, StockLedger.item_id == int(item_id)
        )
        if bin_id is not None:
            stmt = stmt.where(StockLedger.bin_id == int(bin_id))
        if batch_no is not None:
            stmt = stmt.where(StockLedger.batch_no == norm_batch(batch_no))
        stmt = stmt.order_by(StockLedger.id.desc()).limit(int(limit)).offset(int(offset))
        return list((await session.execute(stmt)).scalars().all())

    # ---------------------------------------------------------------
    # 写：唯一入口
    # ---------------------------------------------------------------
    async def apply_movement(  # noqa: C901
        self,
        session: AsyncSession,
        *,
        tenant_id: str,
        bin_id: int,
        item_id: int,
        reason: Union[str, LedgerReason],
        delta: int,
        batch_no: Optional[str] = None,
        expiry_date: Optional[date] = None,
        ref: Optional[str] = None,
        ref_line: int = 1,
        ref_type: Optional[str] = None,
        ref_id: Optional[int] = None,
        release_reserved: int = 0,
        created_by: Optional[str] = None,
        note: Optional[str] = None,
    ) -> StockLedger:
        """
        单维度库存变动：读-改-写快照 + 追加台账，同一事务。

        - delta > 0：总是成功（必要时建快照 / 批次档）
        - delta < 0：
            PICK / SHIP / IBT_OUT / TRANSFER / RETURN 按可用量校验；
            ADJUST / SCRAP 按在库量校验（可扣到 0，且不得低于已预占量）
        - release_reserved：同一次写入里消耗的预占量（预占提交用），只能用于扣减
        - ref 幂等：同 (tenant, reason, 维度, ref, ref_line) 重放直接返回原台账
        """
        try:
            reason_val = LedgerReason(str(reason))
        except ValueError:
            raise _reject(
                ValidationFailed(f"未知 reason：{reason}", context={"reason": str(reason)})
            ) from None

        delta = int(delta)
        release_reserved = int(release_reserved or 0)
        bno = norm_batch(batch_no)
        ctx = {
            "tenant_id": tenant_id,
            "bin_id": int(bin_id),
            "item_id": int(item_id),
            "batch_no": batch_or_none(bno),
            "reason": str(reason_val),
            "delta": delta,
        }

        # ---------- 基础校验 ----------
        if delta == 0:
            raise _reject(ValidationFailed("delta 不能为 0", context=ctx))
        if delta > 0 and release_reserved:
            raise _reject(ValidationFailed("release_reserved 只能用于扣减", context=ctx))
        if release_reserved < 0 or release_reserved > -min(delta, 0):
            raise _reject(
                ValidationFailed(
                    f"release_reserved({release_reserved}) 超出扣减量", context=ctx
                )
            )
        if delta < 0 and reason_val in INBOUND_ONLY_REASONS:
            raise _reject(ValidationFailed(f"{reason_val} 只能为正数", context=ctx))

        # ---------- 幂等 ----------
        replay = await find_replay(
            session,
            tenant_id=tenant_id,
            reason=str(reason_val),
            bin_id=int(bin_id),
            item_id=int(item_id),
            batch_no=bno,
            ref=ref,
            ref_line=ref_line,
        )
        if replay is not None:
            if int(replay.qty_change) != delta:
                raise _reject(
                    ValidationFailed(
                        f"ref={ref}:{ref_line} 已用于 qty_change={replay.qty_change} 的变动",
                        context={**ctx, "ref": ref, "ref_line": ref_line},
                    )
                )
            log.info("movement replay ignored ref=%s:%s ledger_id=%s", ref, ref_line, replay.id)
            return replay

        # ---------- 加锁读取快照 ----------
        snap = await self.get_snapshot(
            session,
            tenant_id=tenant_id,
            bin_id=bin_id,
            item_id=item_id,
            batch_no=bno,
            for_update=True,
        )
        if snap is None:
            if delta < 0:
                raise _reject(
                    InsufficientStock(
                        "库存不足：该库位 / 批次无库存",
                        context=ctx,
                        details=[
                            shortage_detail(
                                item_id=item_id,
                                bin_id=bin_id,
                                batch_no=batch_or_none(bno),
                                required_qty=-delta,
                                available_qty=0,
                                path="apply_movement",
                            )
                        ],
                    )
                )
            snap = await self._create_snapshot(
                session,
                tenant_id=tenant_id,
                bin_id=bin_id,
                item_id=item_id,
                batch_no=bno,
                expiry_date=expiry_date,
            )

        before = int(snap.qty_on_hand)
        reserved = int(snap.qty_reserved)
        new_on_hand = before + delta
        new_reserved = reserved - release_reserved

        # ---------- 数量校验 ----------
        if release_reserved > reserved:
            raise _reject(
                ValidationFailed(
                    f"释放预占量({release_reserved}) 超过已预占量({reserved})",
                    context={**ctx, "qty_reserved": reserved},
                )
            )
        if delta < 0:
            # 已预占部分不可被扣走（ADJUST / SCRAP 也一样，需先释放预占）
            limit_qty = before - reserved + release_reserved
            if reason_val in ON_HAND_CHECKED_REASONS and reserved and -delta <= before:
                label = f"在库量（其中 {reserved} 已预占，需先释放）"
            else:
                label = "可用量"
            if -delta > limit_qty:
                raise _reject(
                    InsufficientStock(
                        f"库存不足：{label} {limit_qty} < {-delta}",
                        context={**ctx, "qty_on_hand": before, "qty_reserved": reserved},
                        details=[
                            shortage_detail(
                                item_id=item_id,
                                bin_id=bin_id,
                                batch_no=batch_or_none(bno),
                                required_qty=-delta,
                                available_qty=max(0, limit_qty),
                                path="apply_movement",
                            )
                        ],
                    )
                )

        # ---------- 乐观写快照 ----------
        values = {
            "qty_on_hand": new_on_hand,
            "qty_reserved": new_reserved,
            "version": int(snap.version) + 1,
            "updated_at": datetime.now(UTC),
        }
        if snap.expiry_date is None and expiry_date is not None:
            values["expiry_date"] = expiry_date

        async with conflict_guard("apply_movement", **ctx):
            res = await session.execute(
                update(StockSnapshot)
                .where(StockSnapshot.id == snap.id, StockSnapshot.version == snap.version)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if res.rowcount != 1:
                raise _reject(
                    ConcurrentModification(
                        "快照版本已变化，请重试", context={**ctx, "version": snap.version}
                    )
                )

            # ---------- 写台账 ----------
            entry = await write_ledger(
                session,
                tenant_id=tenant_id,
                bin_id=int(bin_id),
                item_id=int(item_id),
                batch_no=bno,
                reason=str(reason_val),
                qty_change=delta,
                qty_after=new_on_hand,
                ref=ref,
                ref_line=ref_line,
                ref_type=ref_type,
                ref_id=ref_id,
                expiry_date=values.get("expiry_date", snap.expiry_date),
                created_by=created_by,
                note=note,
            )
        return entry

    async def _create_snapshot(
        self,
        session: AsyncSession,
        *,
        tenant_id: str,
        bin_id: int,
        item_id: int,
        batch_no: str,
        expiry_date: Optional[date],
    ) -> StockSnapshot:
        await get_bin(session, tenant_id, bin_id)

        batch_id = None
        if batch_no:
            batch = await self.batches.ensure_batch(
                session,
                tenant_id=tenant_id,
                item_id=item_id,
                batch_no=batch_no,
                expiry_date=expiry_date,
            )
            batch_id = batch.id
            expiry_date = batch.expiry_date or expiry_date

        snap = StockSnapshot(
            tenant_id=tenant_id,
            bin_id=int(bin_id),
            item_id=int(item_id),
            batch_no=batch_no,
            batch_id=batch_id,
            expiry_date=expiry_date,
            qty_on_hand=0,
            qty_reserved=0,
            version=0,
        )
        session.add(snap)
        async with conflict_guard(
            "create_snapshot", bin_id=bin_id, item_id=item_id, batch_no=batch_or_none(batch_no)
        ):
            await session.flush()
        return snap

    # ---------------------------------------------------------------
    # 库位间移动（上架 / 移库）
    # ---------------------------------------------------------------
    async def transfer_between_bins(
        self,
        session: AsyncSession,
        *,
        tenant_id: str,
        from_bin_id: int,
        to_bin_id: int,
        item_id: int,
        qty: int,
        batch_no: Optional[str] = None,
        ref: Optional[str] = None,
        ref_type: Optional[str] = None,
        ref_id: Optional[int] = None,
        created_by: Optional[str] = None,
        note: Optional[str] = None,
    ) -> Tuple[StockLedger, StockLedger]:
        """
        TRANSFER 成对台账：源库位 -qty，目的库位 +qty；效期随批次带到目的库位。
        两个维度按库位 id 升序加锁。
        """
        qty = int(qty)
        if qty <= 0:
            raise _reject(ValidationFailed("移动数量必须为正", context={"qty": qty}))
        if int(from_bin_id) == int(to_bin_id):
            raise _reject(
                ValidationFailed("源库位与目的库位相同", context={"bin_id": from_bin_id})
            )
        await get_bin(session, tenant_id, to_bin_id)

        src = await self.get_snapshot(
            session, tenant_id=tenant_id, bin_id=from_bin_id, item_id=item_id, batch_no=batch_no
        )
        expiry = src.expiry_date if src is not None else None

        common = dict(
            tenant_id=tenant_id,
            item_id=item_id,
            batch_no=batch_no,
            reason=LedgerReason.TRANSFER,
            ref=ref,
            ref_type=ref_type,
            ref_id=ref_id,
            created_by=created_by,
            note=note,
        )
        steps = [(int(from_bin_id), -qty, None), (int(to_bin_id), qty, expiry)]
        entries = {}
        for bin_id, d, exp in sorted(steps, key=lambda s: s[0]):
            entries[d] = await self.apply_movement(
                session, bin_id=bin_id, delta=d, expiry_date=exp, **common
            )
        return entries[-qty], entries[qty]
