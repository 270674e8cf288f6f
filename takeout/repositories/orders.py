"""
Order Repository

Thin persistence layer over the ``orders`` and ``order_details`` tables.
All status changes go through :meth:`OrderRepository.transition`, a
conditional UPDATE that only touches the row while it is still in the
expected source state. Callers own the transaction boundary (commit /
rollback); the repository only flushes.
"""

import logging
from datetime import datetime
from typing import Any, Iterable, Optional, Sequence, cast

from sqlalchemy import func, select, update
from sqlalchemy.engine import CursorResult
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from takeout.models import Order, OrderDetail, OrderStatus, PayStatus

logger = logging.getLogger(__name__)


class OrderRepository:
    """Order persistence bound to one session."""

    def __init__(self, session: AsyncSession):
        self.session = session

    # =========================================================================
    # WRITES
    # =========================================================================

    async def insert(self, order: Order) -> int:
        """Add an order and flush so the generated id is available."""
        self.session.add(order)
        await self.session.flush()
        return order.id

    async def insert_details(self, details: Iterable[OrderDetail]) -> None:
        self.session.add_all(list(details))
        await self.session.flush()

    async def transition(
        self,
        order_id: int,
        expected: OrderStatus,
        target: OrderStatus,
        expected_pay_status: Optional[PayStatus] = None,
        **values: Any,
    ) -> bool:
        """
        Move an order from ``expected`` to ``target`` if it is still there.

        With ``expected_pay_status`` the row must also still carry that
        payment status.

        Returns:
            True if the row was updated, False if another actor changed
            the status first (or the order does not exist).
        """
        conditions = [Order.id == order_id, Order.status == expected]
        if expected_pay_status is not None:
            conditions.append(Order.pay_status == expected_pay_status)
        stmt = (
            update(Order)
            .where(*conditions)
            .values(status=target, **values)
        )
        result = cast(CursorResult[Any], await self.session.execute(stmt))
        changed = result.rowcount > 0
        if not changed:
            logger.debug(
                f"Order #{order_id}: {expected.value} -> {target.value} skipped, "
                f"status already changed"
            )
        return changed

    async def update(self, order_id: int, **values: Any) -> None:
        """Unconditional partial update (non-status columns)."""
        await self.session.execute(
            update(Order).where(Order.id == order_id).values(**values)
        )

    # =========================================================================
    # READS
    # =========================================================================

    async def get_by_id(
        self,
        order_id: int,
        user_id: Optional[int] = None,
        with_details: bool = False,
    ) -> Optional[Order]:
        stmt = select(Order).where(Order.id == order_id)
        if user_id is not None:
            stmt = stmt.where(Order.user_id == user_id)
        if with_details:
            stmt = stmt.options(selectinload(Order.details))
        result = await self.session.execute(
            stmt.execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_by_number(
        self,
        number: str,
        user_id: Optional[int] = None,
    ) -> Optional[Order]:
        stmt = select(Order).where(Order.number == number)
        if user_id is not None:
            stmt = stmt.where(Order.user_id == user_id)
        result = await self.session.execute(
            stmt.execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def list_by_status_older_than(
        self,
        status: OrderStatus,
        cutoff: datetime,
    ) -> Sequence[Order]:
        """Orders in ``status`` submitted strictly before ``cutoff``."""
        result = await self.session.execute(
            select(Order)
            .where(Order.status == status, Order.order_time < cutoff)
            .order_by(Order.order_time)
        )
        return result.scalars().all()

    async def list_page(
        self,
        page: int = 1,
        page_size: int = 10,
        user_id: Optional[int] = None,
        status: Optional[OrderStatus] = None,
        number: Optional[str] = None,
        phone: Optional[str] = None,
        begin: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> tuple[int, Sequence[Order]]:
        """Paginated order search, newest first, details loaded."""
        conditions = []
        if user_id is not None:
            conditions.append(Order.user_id == user_id)
        if status is not None:
            conditions.append(Order.status == status)
        if number:
            conditions.append(Order.number.contains(number))
        if phone:
            conditions.append(Order.phone.contains(phone))
        if begin is not None:
            conditions.append(Order.order_time >= begin)
        if end is not None:
            conditions.append(Order.order_time <= end)

        total_result = await self.session.execute(
            select(func.count(Order.id)).where(*conditions)
        )
        total = total_result.scalar() or 0

        result = await self.session.execute(
            select(Order)
            .where(*conditions)
            .options(selectinload(Order.details))
            .order_by(Order.order_time.desc(), Order.id.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        return total, result.scalars().all()

    # =========================================================================
    # AGGREGATES
    # =========================================================================

    async def count_by_filter(
        self,
        begin: Optional[datetime] = None,
        end: Optional[datetime] = None,
        status: Optional[OrderStatus] = None,
    ) -> int:
        stmt = select(func.count(Order.id))
        if begin is not None:
            stmt = stmt.where(Order.order_time >= begin)
        if end is not None:
            stmt = stmt.where(Order.order_time <= end)
        if status is not None:
            stmt = stmt.where(Order.status == status)
        result = await self.session.execute(stmt)
        return result.scalar() or 0

    async def sum_amount_by_filter(
        self,
        begin: Optional[datetime] = None,
        end: Optional[datetime] = None,
        status: Optional[OrderStatus] = None,
    ) -> float:
        stmt = select(func.sum(Order.amount))
        if begin is not None:
            stmt = stmt.where(Order.order_time >= begin)
        if end is not None:
            stmt = stmt.where(Order.order_time <= end)
        if status is not None:
            stmt = stmt.where(Order.status == status)
        result = await self.session.execute(stmt)
        return round(result.scalar() or 0.0, 2)

    async def count_by_status(self, status: OrderStatus) -> int:
        return await self.count_by_filter(status=status)

    async def sales_top(
        self,
        begin: datetime,
        end: datetime,
        limit: int = 10,
    ) -> list[tuple[str, int]]:
        """Best-selling items of completed orders in range, by quantity sold."""
        number = func.sum(OrderDetail.quantity).label("number")
        result = await self.session.execute(
            select(OrderDetail.name, number)
            .join(Order, OrderDetail.order_id == Order.id)
            .where(
                Order.status == OrderStatus.COMPLETED,
                Order.order_time >= begin,
                Order.order_time <= end,
            )
            .group_by(OrderDetail.name)
            .order_by(number.desc(), OrderDetail.name)
            .limit(limit)
        )
        return [(row.name, int(row.number)) for row in result]
