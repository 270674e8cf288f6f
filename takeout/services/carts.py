"""
Shopping Cart Service

Adds and removes cart lines for an explicit user. Display fields (name,
price, image) are copied from the catalog when a line is first added.
"""

import logging
from typing import Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from takeout.exceptions import InvalidCartItem, ItemNotFound
from takeout.models import Dish, Setmeal, ShoppingCart
from takeout.repositories import CartRepository

logger = logging.getLogger(__name__)


def _validate_item(dish_id: Optional[int], setmeal_id: Optional[int]) -> None:
    if (dish_id is None) == (setmeal_id is None):
        raise InvalidCartItem("Specify exactly one of dish_id or setmeal_id")


class CartService:
    def __init__(self, session: AsyncSession, carts: Optional[CartRepository] = None):
        self.session = session
        self.carts = carts or CartRepository(session)

    async def _catalog_snapshot(
        self,
        dish_id: Optional[int],
        setmeal_id: Optional[int],
    ) -> tuple[str, float, Optional[str]]:
        if dish_id is not None:
            model, item_id, kind = Dish, dish_id, "dish"
        else:
            model, item_id, kind = Setmeal, setmeal_id, "set meal"

        result = await self.session.execute(
            select(model.name, model.price, model.image).where(
                model.id == item_id, model.status.is_(True)
            )
        )
        row = result.first()
        if row is None:
            raise ItemNotFound(kind, item_id)
        return row.name, row.price, row.image

    async def add(
        self,
        user_id: int,
        dish_id: Optional[int] = None,
        setmeal_id: Optional[int] = None,
        dish_flavor: Optional[str] = None,
    ) -> ShoppingCart:
        """Add one unit of an item; repeated adds increment the same line."""
        _validate_item(dish_id, setmeal_id)
        if setmeal_id is not None:
            dish_flavor = None

        name, price, image = await self._catalog_snapshot(dish_id, setmeal_id)
        candidate = ShoppingCart(
            user_id=user_id,
            item_key=ShoppingCart.make_item_key(dish_id, setmeal_id, dish_flavor),
            dish_id=dish_id,
            setmeal_id=setmeal_id,
            dish_flavor=dish_flavor,
            name=name,
            unit_price=price,
            image=image,
        )

        try:
            line = await self.carts.upsert_line(candidate)
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise

        logger.info(f"User {user_id}: {line.item_key} x{line.quantity} in cart")
        return line

    async def subtract(
        self,
        user_id: int,
        dish_id: Optional[int] = None,
        setmeal_id: Optional[int] = None,
        dish_flavor: Optional[str] = None,
    ) -> int:
        """
        Remove one unit of an item.

        Returns:
            Remaining quantity of the line (0 if removed or never present)
        """
        _validate_item(dish_id, setmeal_id)
        item_key = ShoppingCart.make_item_key(dish_id, setmeal_id, dish_flavor)

        try:
            remaining = await self.carts.decrement_or_remove(user_id, item_key)
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise

        if remaining is None:
            logger.debug(f"User {user_id}: {item_key} not in cart, nothing to remove")
            return 0
        return remaining

    async def list(self, user_id: int) -> Sequence[ShoppingCart]:
        return await self.carts.list_by_user(user_id)

    async def clear(self, user_id: int) -> int:
        try:
            removed = await self.carts.clear(user_id)
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise
        logger.info(f"User {user_id}: cart cleared ({removed} lines)")
        return removed
