"""
Cart Store

Shopping cart persistence. Adding an item is a single
``INSERT ... ON CONFLICT (user_id, item_key) DO UPDATE`` so two rapid adds
of the same (user, item, flavor) can never produce two rows.
"""

import logging
from typing import Any, Optional, Sequence, cast

from sqlalchemy import delete, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.engine import CursorResult
from sqlalchemy.ext.asyncio import AsyncSession

from takeout.models import ShoppingCart

logger = logging.getLogger(__name__)

_UPSERT_DIALECTS = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}


class CartRepository:
    """Cart line persistence bound to one session."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def list_by_user(self, user_id: int) -> Sequence[ShoppingCart]:
        result = await self.session.execute(
            select(ShoppingCart)
            .where(ShoppingCart.user_id == user_id)
            .order_by(ShoppingCart.id)
            .execution_options(populate_existing=True)
        )
        return result.scalars().all()

    async def get_line(self, user_id: int, item_key: str) -> Optional[ShoppingCart]:
        result = await self.session.execute(
            select(ShoppingCart)
            .where(ShoppingCart.user_id == user_id, ShoppingCart.item_key == item_key)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def upsert_line(self, line: ShoppingCart) -> ShoppingCart:
        """
        Insert ``line`` with quantity 1, or add one to the existing line
        for the same (user, item_key).
        """
        dialect = self.session.get_bind().dialect.name
        insert = _UPSERT_DIALECTS.get(dialect)
        if insert is None:
            raise NotImplementedError(f"Cart upsert not supported on {dialect}")

        stmt = insert(ShoppingCart).values(
            user_id=line.user_id,
            item_key=line.item_key,
            dish_id=line.dish_id,
            setmeal_id=line.setmeal_id,
            dish_flavor=line.dish_flavor,
            quantity=1,
            name=line.name,
            unit_price=line.unit_price,
            image=line.image,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[ShoppingCart.user_id, ShoppingCart.item_key],
            set_={"quantity": ShoppingCart.quantity + 1},
        )
        await self.session.execute(stmt)

        return await self.get_line(line.user_id, line.item_key)

    async def decrement_or_remove(self, user_id: int, item_key: str) -> Optional[int]:
        """
        Remove one unit from a cart line.

        Returns:
            Remaining quantity (0 when the line was deleted), or None if the
            line does not exist.
        """
        line = await self.get_line(user_id, item_key)
        if line is None:
            return None

        if line.quantity > 1:
            remaining = line.quantity - 1
            result = cast(CursorResult[Any], await self.session.execute(
                update(ShoppingCart)
                .where(ShoppingCart.id == line.id, ShoppingCart.quantity > 1)
                .values(quantity=ShoppingCart.quantity - 1)
            ))
            if result.rowcount > 0:
                return remaining

        result = cast(CursorResult[Any], await self.session.execute(
            delete(ShoppingCart).where(
                ShoppingCart.id == line.id, ShoppingCart.quantity <= 1
            )
        ))
        if result.rowcount > 0:
            return 0

        # A concurrent add raised the quantity after our read
        current = await self.get_line(user_id, item_key)
        return current.quantity if current is not None else 0

    async def clear(self, user_id: int) -> int:
        result = cast(CursorResult[Any], await self.session.execute(
            delete(ShoppingCart).where(ShoppingCart.user_id == user_id)
        ))
        return result.rowcount
