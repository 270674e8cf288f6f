from types import SimpleNamespace

import pytest

from takeout.exceptions import InvalidCartItem, ItemNotFound
from takeout.models import ShoppingCart
from takeout.repositories import CartRepository
from takeout.services import CartService


@pytest.fixture
def carts(session):
    return CartService(session)


class TestAdd:
    async def test_first_add_copies_catalog_snapshot(self, carts, seed):
        line = await carts.add(seed.alice.id, dish_id=seed.noodles.id, dish_flavor="spicy")

        assert line.quantity == 1
        assert line.name == "Beef Noodles"
        assert line.unit_price == 12.5
        assert line.image == "noodles.png"
        assert line.dish_flavor == "spicy"

    async def test_repeated_add_increments_single_line(self, carts, seed):
        await carts.add(seed.alice.id, dish_id=seed.noodles.id, dish_flavor="spicy")
        line = await carts.add(seed.alice.id, dish_id=seed.noodles.id, dish_flavor="spicy")

        assert line.quantity == 2
        lines = await carts.list(seed.alice.id)
        assert len(lines) == 1

    async def test_flavor_distinguishes_lines(self, carts, seed):
        await carts.add(seed.alice.id, dish_id=seed.noodles.id, dish_flavor="spicy")
        await carts.add(seed.alice.id, dish_id=seed.noodles.id, dish_flavor="mild")
        await carts.add(seed.alice.id, dish_id=seed.noodles.id)

        lines = await carts.list(seed.alice.id)
        assert sorted(line.dish_flavor or "" for line in lines) == ["", "mild", "spicy"]

    async def test_setmeal_ignores_flavor(self, carts, seed):
        await carts.add(seed.alice.id, setmeal_id=seed.family_set.id, dish_flavor="x")
        line = await carts.add(seed.alice.id, setmeal_id=seed.family_set.id)

        assert line.quantity == 2
        assert line.dish_flavor is None
        assert line.unit_price == 38.0

    async def test_carts_are_per_user(self, carts, seed):
        await carts.add(seed.alice.id, dish_id=seed.noodles.id)
        await carts.add(seed.bob.id, dish_id=seed.noodles.id)

        assert len(await carts.list(seed.alice.id)) == 1
        assert len(await carts.list(seed.bob.id)) == 1

    @pytest.mark.parametrize("dish_id, setmeal_id", [(None, None), (1, 1)])
    async def test_requires_exactly_one_item(self, carts, seed, dish_id, setmeal_id):
        with pytest.raises(InvalidCartItem):
            await carts.add(seed.alice.id, dish_id=dish_id, setmeal_id=setmeal_id)

    async def test_unknown_dish(self, carts, seed):
        with pytest.raises(ItemNotFound):
            await carts.add(seed.alice.id, dish_id=999)

    async def test_dish_off_sale(self, carts, seed):
        with pytest.raises(ItemNotFound):
            await carts.add(seed.alice.id, dish_id=seed.retired.id)

        assert await carts.list(seed.alice.id) == []


class TestSubtract:
    async def test_decrements_quantity(self, carts, seed):
        await carts.add(seed.alice.id, dish_id=seed.noodles.id)
        await carts.add(seed.alice.id, dish_id=seed.noodles.id)

        remaining = await carts.subtract(seed.alice.id, dish_id=seed.noodles.id)

        assert remaining == 1
        lines = await carts.list(seed.alice.id)
        assert [line.quantity for line in lines] == [1]

    async def test_last_unit_removes_line(self, carts, seed):
        await carts.add(seed.alice.id, dish_id=seed.noodles.id, dish_flavor="mild")

        remaining = await carts.subtract(
            seed.alice.id, dish_id=seed.noodles.id, dish_flavor="mild"
        )

        assert remaining == 0
        assert await carts.list(seed.alice.id) == []

    async def test_missing_line_is_noop(self, carts, seed):
        assert await carts.subtract(seed.alice.id, dish_id=seed.noodles.id) == 0


class TestClear:
    async def test_clear_only_touches_own_cart(self, carts, seed):
        await carts.add(seed.alice.id, dish_id=seed.noodles.id)
        await carts.add(seed.alice.id, setmeal_id=seed.family_set.id)
        await carts.add(seed.bob.id, dish_id=seed.dumplings.id)

        assert await carts.clear(seed.alice.id) == 2
        assert await carts.list(seed.alice.id) == []
        assert len(await carts.list(seed.bob.id)) == 1


class TestCartRepository:
    async def test_decrement_unknown_line_returns_none(self, session, seed):
        repo = CartRepository(session)
        assert await repo.decrement_or_remove(seed.alice.id, "dish:1:") is None

    async def test_stale_last_unit_read_reports_current_quantity(self, session, carts, seed):
        await carts.add(seed.alice.id, dish_id=seed.noodles.id)
        await carts.add(seed.alice.id, dish_id=seed.noodles.id)
        repo = CartRepository(session)
        key = ShoppingCart.make_item_key(seed.noodles.id, None, None)
        line = await repo.get_line(seed.alice.id, key)
        real_get_line = repo.get_line
        reads = []

        async def stale_get_line(user_id, item_key):
            # First read sees the line before the second add landed
            reads.append(item_key)
            if len(reads) == 1:
                return SimpleNamespace(id=line.id, quantity=1)
            return await real_get_line(user_id, item_key)

        repo.get_line = stale_get_line

        assert await repo.decrement_or_remove(seed.alice.id, key) == 2
        assert (await real_get_line(seed.alice.id, key)).quantity == 2
