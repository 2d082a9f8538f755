# wmsledger/services/reservation_service.py
from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from typing import List, Optional, Union

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

from wmsledger.core.config import get_settings
from wmsledger.models.enums import (
    AVAILABILITY_CHECKED_REASONS,
    NON_RESERVABLE_BIN_TYPES,
    LedgerReason,
    ReservationStatus,
)
from wmsledger.models.reservation import Reservation, ReservationAllocation
from wmsledger.models.stock_ledger import StockLedger
from wmsledger.models.stock_snapshot import StockSnapshot
from wmsledger.models.warehouse import Bin
from wmsledger.obs.metrics import stock_rejections_total
from wmsledger.services.db_guard import conflict_guard
from wmsledger.services.errors import (
    ConcurrentModification,
    InsufficientAvailable,
    InvalidTransition,
    NotFound,
    ValidationFailed,
    shortage_detail,
)
from wmsledger.services.expiry_classifier import is_expired
from wmsledger.services.fefo_allocator import plan_fefo
from wmsledger.services.stock_service import StockService, batch_or_none

UTC = timezone.utc
log = logging.getLogger("wmsledger.reservation")

# 预占提交可用的出库 reason
COMMIT_REASONS = AVAILABILITY_CHECKED_REASONS - {LedgerReason.TRANSFER}


class ReservationManager:
    """
    预占（软占用）

    - reserve：按 FEFO 逐快照原子 +qty_reserved，不写台账、不动在库
    - release：按分配明细原路退回
    - commit：把每条分配变成一次出库（同时扣在库与预占），写台账

    每个快照单独做条件更新：
        UPDATE stock_snapshots
           SET qty_reserved = qty_reserved + :take, version = version + 1
         WHERE id = :sid AND qty_on_hand - qty_reserved >= :take
    不对多个快照整体加锁；按 效期 → 库位 id 的固定顺序逐个推进。
    """

    def __init__(self, stock: Optional[StockService] = None) -> None:
        self.stock = stock or StockService()

    async def get(self, session: AsyncSession, *, tenant_id: str, reservation_id: int) -> Reservation:
        res = (
            await session.execute(
                select(Reservation)
                .where(Reservation.id == int(reservation_id), Reservation.tenant_id == tenant_id)
                .execution_options(populate_existing=True)
            )
        ).scalar_one_or_none()
        if res is None:
            raise NotFound(
                f"预占不存在：reservation_id={reservation_id}",
                context={"reservation_id": reservation_id},
            )
        return res

    async def list_reservations(
        self,
        session: AsyncSession,
        *,
        tenant_id: str,
        item_id: Optional[int] = None,
        status: Optional[str] = None,
        limit: int = 100,
    ) -> List[Reservation]:
        stmt = select(Reservation).where(Reservation.tenant_id == tenant_id)
        if item_id is not None:
            stmt = stmt.where(Reservation.item_id == int(item_id))
        if status:
            stmt = stmt.where(Reservation.status == str(status))
        stmt = stmt.order_by(Reservation.id.desc()).limit(int(limit))
        return list((await session.execute(stmt)).scalars().all())

    async def _candidates(
        self,
        session: AsyncSession,
        *,
        tenant_id: str,
        item_id: int,
        warehouse_id: Optional[int],
        as_of: date,
        allow_expired: bool,
    ) -> List[StockSnapshot]:
        stmt = (
            select(StockSnapshot)
            .join(Bin, Bin.id == StockSnapshot.bin_id)
            .where(
                StockSnapshot.tenant_id == tenant_id,
                StockSnapshot.item_id == int(item_id),
                StockSnapshot.qty_on_hand > StockSnapshot.qty_reserved,
                Bin.bin_type.not_in([str(t) for t in NON_RESERVABLE_BIN_TYPES]),
            )
        )
        if warehouse_id is not None:
            stmt = stmt.where(Bin.warehouse_id == int(warehouse_id))
        stmt = stmt.order_by(
            StockSnapshot.expiry_date.is_(None),
            StockSnapshot.expiry_date,
            StockSnapshot.bin_id,
            StockSnapshot.id,
        ).execution_options(populate_existing=True)
        rows = (await session.execute(stmt)).scalars().all()
        if allow_expired:
            return list(rows)
        return [s for s in rows if not is_expired(s.expiry_date, as_of)]

    async def reserve(
        self,
        session: AsyncSession,
        *,
        tenant_id: str,
        item_id: int,
        qty: int,
        warehouse_id: Optional[int] = None,
        ref: Optional[str] = None,
        as_of: Optional[date] = None,
        allow_expired: Optional[bool] = None,
    ) -> Reservation:
        qty = int(qty)
        if qty <= 0:
            raise ValidationFailed("预占数量必须为正", context={"qty": qty})
        if allow_expired is None:
            allow_expired = get_settings().ALLOW_EXPIRED_RESERVE

        candidates = await self._candidates(
            session,
            tenant_id=tenant_id,
            item_id=item_id,
            warehouse_id=warehouse_id,
            as_of=as_of or date.today(),
            allow_expired=allow_expired,
        )
        total = sum(s.qty_available for s in candidates)
        if total < qty:
            stock_rejections_total.labels(InsufficientAvailable.error_code).inc()
            log.warning("reserve rejected tenant=%s item=%s qty=%s available=%s", tenant_id, item_id, qty, total)
            raise InsufficientAvailable(
                f"可用量不足：{total} < {qty}",
                context={"item_id": int(item_id), "qty": qty, "available": total, "warehouse_id": warehouse_id},
                details=[
                    shortage_detail(
                        item_id=item_id,
                        bin_id=None,
                        batch_no=None,
                        required_qty=qty,
                        available_qty=total,
                        path="reserve",
                    )
                ],
            )

        reservation = Reservation(
            tenant_id=tenant_id,
            item_id=int(item_id),
            warehouse_id=warehouse_id,
            qty=qty,
            status=ReservationStatus.OPEN,
            ref=ref,
        )

        for snap, take in plan_fefo(candidates, qty):
            async with conflict_guard("reserve", snapshot_id=snap.id, item_id=int(item_id), take=take):
                res = await session.execute(
                    update(StockSnapshot)
                    .where(
                        StockSnapshot.id == snap.id,
                        StockSnapshot.qty_on_hand - StockSnapshot.qty_reserved >= take,
                    )
                    .values(
                        qty_reserved=StockSnapshot.qty_reserved + take,
                        version=StockSnapshot.version + 1,
                        updated_at=datetime.now(UTC),
                    )
                    .execution_options(synchronize_session=False)
                )
            if res.rowcount != 1:
                raise ConcurrentModification(
                    "预占期间库存被并发修改，请重试",
                    context={"snapshot_id": snap.id, "item_id": int(item_id), "take": take},
                )
            reservation.allocations.append(
                ReservationAllocation(
                    snapshot_id=snap.id,
                    bin_id=snap.bin_id,
                    batch_no=snap.batch_no,
                    qty=take,
                )
            )
        session.add(reservation)
        async with conflict_guard("reserve", item_id=int(item_id), qty=qty):
            await session.flush()
        log.info(
            "reserved id=%s tenant=%s item=%s qty=%s allocations=%s",
            reservation.id,
            tenant_id,
            item_id,
            qty,
            [(a.bin_id, batch_or_none(a.batch_no), a.qty) for a in reservation.allocations],
        )
        return reservation

    async def _close(
        self, session: AsyncSession, reservation: Reservation, to_status: ReservationStatus
    ) -> None:
        if reservation.status != ReservationStatus.OPEN:
            raise InvalidTransition(
                f"预占当前状态 {reservation.status}，不允许 {to_status}",
                context={"reservation_id": reservation.id, "status": reservation.status},
            )
        now = datetime.now(UTC)
        async with conflict_guard("close_reservation", reservation_id=reservation.id):
            res = await session.execute(
                update(Reservation)
                .where(Reservation.id == reservation.id, Reservation.status == ReservationStatus.OPEN)
                .values(status=to_status, closed_at=now)
                .execution_options(synchronize_session=False)
            )
        if res.rowcount != 1:
            raise ConcurrentModification(
                "预占已被并发关闭", context={"reservation_id": reservation.id}
            )
        set_committed_value(reservation, "status", str(to_status))
        set_committed_value(reservation, "closed_at", now)

    async def release(
        self, session: AsyncSession, *, tenant_id: str, reservation_id: int
    ) -> Reservation:
        reservation = await self.get(session, tenant_id=tenant_id, reservation_id=reservation_id)
        await self._close(session, reservation, ReservationStatus.RELEASED)

        for a in reservation.allocations:
            async with conflict_guard("release", reservation_id=reservation.id, snapshot_id=a.snapshot_id):
                res = await session.execute(
                    update(StockSnapshot)
                    .where(StockSnapshot.id == a.snapshot_id, StockSnapshot.qty_reserved >= a.qty)
                    .values(
                        qty_reserved=StockSnapshot.qty_reserved - a.qty,
                        version=StockSnapshot.version + 1,
                        updated_at=datetime.now(UTC),
                    )
                    .execution_options(synchronize_session=False)
                )
            if res.rowcount != 1:
                raise ConcurrentModification(
                    "释放预占时快照预占量不足",
                    context={"reservation_id": reservation.id, "snapshot_id": a.snapshot_id, "qty": a.qty},
                )

        log.info("released reservation id=%s tenant=%s", reservation.id, tenant_id)
        return reservation

    async def commit(
        self,
        session: AsyncSession,
        *,
        tenant_id: str,
        reservation_id: int,
        reason: Union[str, LedgerReason] = LedgerReason.PICK,
        created_by: Optional[str] = None,
    ) -> List[StockLedger]:
        """
        预占转出库：每条分配写一条 reason 台账（-qty），同时释放等量预占。
        """
        if str(reason) not in {str(r) for r in COMMIT_REASONS}:
            raise ValidationFailed(
                f"预占提交不支持 reason={reason}",
                context={"reason": str(reason), "allowed": sorted(str(r) for r in COMMIT_REASONS)},
            )
        reservation = await self.get(session, tenant_id=tenant_id, reservation_id=reservation_id)
        await self._close(session, reservation, ReservationStatus.COMMITTED)

        entries: List[StockLedger] = []
        for idx, a in enumerate(reservation.allocations, start=1):
            entries.append(
                await self.stock.apply_movement(
                    session,
                    tenant_id=tenant_id,
                    bin_id=a.bin_id,
                    item_id=reservation.item_id,
                    batch_no=a.batch_no,
                    reason=reason,
                    delta=-int(a.qty),
                    release_reserved=int(a.qty),
                    ref=f"RES-{reservation.id}",
                    ref_line=idx,
                    ref_type="reservation",
                    ref_id=reservation.id,
                    created_by=created_by,
                )
            )
        log.info("committed reservation id=%s tenant=%s lines=%s", reservation.id, tenant_id, len(entries))
        return entries
