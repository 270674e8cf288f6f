"""
User Repository

Read-only aggregates over the ``users`` table for the user reports.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from takeout.models import User


class UserRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def count_created(
        self,
        begin: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> int:
        """Users registered in ``[begin, end]``; open bounds are unlimited."""
        stmt = select(func.count(User.id))
        if begin is not None:
            stmt = stmt.where(User.created_at >= begin)
        if end is not None:
            stmt = stmt.where(User.created_at <= end)
        result = await self.session.execute(stmt)
        return result.scalar() or 0
