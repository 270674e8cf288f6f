"""
Report Service

Per-day turnover, order and user statistics over a date range, plus the
best-selling items, built on the repositories' count/sum aggregates. Only
completed orders count as turnover, as valid orders and as sales.
"""

from datetime import date, datetime, time, timedelta

from sqlalchemy.ext.asyncio import AsyncSession

from takeout.exceptions import ValidationFailure
from takeout.models import OrderStatus
from takeout.repositories import OrderRepository, UserRepository
from takeout.schemas import (
    OrderReportResponse,
    SalesTop10Response,
    TurnoverReportResponse,
    UserReportResponse,
)

MAX_REPORT_DAYS = 366
TOP_SALES_LIMIT = 10


def date_range(begin: date, end: date) -> list[date]:
    """Every day from ``begin`` to ``end`` inclusive."""
    if end < begin:
        raise ValidationFailure("Report end date is before begin date")
    days = (end - begin).days + 1
    if days > MAX_REPORT_DAYS:
        raise ValidationFailure(f"Report range is limited to {MAX_REPORT_DAYS} days")
    return [begin + timedelta(days=offset) for offset in range(days)]


def day_bounds(day: date) -> tuple[datetime, datetime]:
    return datetime.combine(day, time.min), datetime.combine(day, time.max)


class ReportService:
    def __init__(self, session: AsyncSession):
        self.orders = OrderRepository(session)
        self.users = UserRepository(session)

    async def turnover(self, begin: date, end: date) -> TurnoverReportResponse:
        days = date_range(begin, end)
        turnover = []
        for day in days:
            start, stop = day_bounds(day)
            turnover.append(
                await self.orders.sum_amount_by_filter(start, stop, OrderStatus.COMPLETED)
            )
        return TurnoverReportResponse(date_list=days, turnover_list=turnover)

    async def user_statistics(self, begin: date, end: date) -> UserReportResponse:
        days = date_range(begin, end)
        new_users = []
        total_users = []
        for day in days:
            start, stop = day_bounds(day)
            new_users.append(await self.users.count_created(start, stop))
            total_users.append(await self.users.count_created(end=stop))
        return UserReportResponse(
            date_list=days,
            new_user_list=new_users,
            total_user_list=total_users,
        )

    async def order_statistics(self, begin: date, end: date) -> OrderReportResponse:
        days = date_range(begin, end)
        order_counts = []
        valid_counts = []
        for day in days:
            start, stop = day_bounds(day)
            order_counts.append(await self.orders.count_by_filter(start, stop))
            valid_counts.append(
                await self.orders.count_by_filter(start, stop, OrderStatus.COMPLETED)
            )

        total = sum(order_counts)
        valid = sum(valid_counts)
        return OrderReportResponse(
            date_list=days,
            order_count_list=order_counts,
            valid_order_count_list=valid_counts,
            total_order_count=total,
            valid_order_count=valid,
            order_completion_rate=round(valid / total, 4) if total else 0.0,
        )

    async def sales_top10(self, begin: date, end: date) -> SalesTop10Response:
        days = date_range(begin, end)
        start, _ = day_bounds(days[0])
        _, stop = day_bounds(days[-1])
        ranking = await self.orders.sales_top(start, stop, limit=TOP_SALES_LIMIT)
        return SalesTop10Response(
            name_list=[name for name, _ in ranking],
            number_list=[number for _, number in ranking],
        )
