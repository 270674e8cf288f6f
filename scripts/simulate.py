"""
Checkout Simulation Script

Fires concurrent customer checkouts at a running development server:
add to cart, submit, request payment, settle through the simulation
callback, then replay the callback to check that confirmation is
idempotent.

Run from project root:
    python scripts/simulate.py --seed        # create demo users, addresses and dishes
    python scripts/simulate.py --orders 30
"""

import asyncio
import sys
import os
import random
import time
import argparse
from datetime import datetime
from typing import Any

import httpx
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
# Windows event loop fix
if sys.platform == "win32":
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())

# Configuration
API_BASE_URL = "http://localhost:8080"
TOTAL_ORDERS = 20
DEMO_USERS = 10

FIRST_NAMES = ["John", "Jane", "Mike", "Sarah", "Tom", "Emma", "David", "Lisa", "Chris", "Amy"]
STREETS = ["Main St", "Broadway", "5th Avenue", "Park Ave", "Madison Ave"]
MENU_ITEMS = [
    {"name": "Kung Pao Chicken", "price": 12.5},
    {"name": "Mapo Tofu", "price": 9.0},
    {"name": "Fried Rice", "price": 7.5},
    {"name": "Hot and Sour Soup", "price": 5.0},
    {"name": "Spring Rolls", "price": 4.5},
]
FLAVORS = [None, "mild", "extra spicy", "no onion"]


# =============================================================================
# DEMO DATA
# =============================================================================

async def seed_demo_data() -> None:
    """Insert demo users (ids 1..DEMO_USERS), one address each, and the menu."""
    from sqlalchemy import select

    from takeout.database import async_session_maker, engine, init_db
    from takeout.models import AddressBook, Dish, User

    await init_db()
    async with async_session_maker() as session:
        existing = await session.execute(select(Dish.id).limit(1))
        if existing.first() is not None:
            print("Demo data already present")
            await engine.dispose()
            return

        session.add_all(Dish(name=item["name"], price=item["price"]) for item in MENU_ITEMS)
        for i in range(DEMO_USERS):
            user = User(openid=f"demo-openid-{i + 1}", name=random.choice(FIRST_NAMES))
            session.add(user)
            await session.flush()
            session.add(AddressBook(
                user_id=user.id,
                consignee=user.name,
                phone=f"555-{random.randint(100, 999)}-{random.randint(1000, 9999)}",
                city_name="New York",
                detail=f"{random.randint(1, 999)} {random.choice(STREETS)}",
                is_default=True,
            ))
        await session.commit()
    await engine.dispose()
    print(f"Seeded {DEMO_USERS} users and {len(MENU_ITEMS)} dishes")


# =============================================================================
# CHECKOUT FLOW
# =============================================================================

async def run_checkout(
    client: httpx.AsyncClient,
    order_num: int,
    user_id: int,
) -> dict[str, Any]:
    """One customer: cart -> submit -> payment -> callback (twice)."""
    headers = {"X-User-Id": str(user_id)}
    start_time = time.time()

    try:
        for _ in range(random.randint(1, 4)):
            response = await client.post(
                f"{API_BASE_URL}/user/shoppingCart/add",
                json={
                    "dish_id": random.randint(1, len(MENU_ITEMS)),
                    "dish_flavor": random.choice(FLAVORS),
                },
                headers=headers,
            )
            response.raise_for_status()

        response = await client.post(
            f"{API_BASE_URL}/user/order/submit",
            json={"address_book_id": user_id, "tableware_number": 1},
            headers=headers,
        )
        response.raise_for_status()
        submitted = response.json()

        response = await client.put(
            f"{API_BASE_URL}/user/order/payment",
            json={"order_number": submitted["order_number"]},
            headers=headers,
        )
        response.raise_for_status()

        callbacks = []
        for _ in range(2):
            response = await client.post(
                f"{API_BASE_URL}/webhook/simulation/paid/{submitted['order_number']}"
            )
            response.raise_for_status()
            callbacks.append(response.json()["transitioned"])

        return {
            "order_num": order_num,
            "success": callbacks == [True, False],
            "order_id": submitted["id"],
            "total": submitted["order_amount"],
            "time": round(time.time() - start_time, 3),
            "error": None if callbacks == [True, False] else f"callbacks={callbacks}",
        }
    except httpx.HTTPStatusError as e:
        return {
            "order_num": order_num,
            "success": False,
            "error": e.response.text[:100],
            "time": round(time.time() - start_time, 3),
        }
    except httpx.HTTPError as e:
        return {
            "order_num": order_num,
            "success": False,
            "error": str(e)[:100],
            "time": round(time.time() - start_time, 3),
        }


async def run_simulation(num_orders: int = TOTAL_ORDERS) -> dict[str, Any]:
    print("=" * 70)
    print("CHECKOUT SIMULATION")
    print("=" * 70)
    print(f"Total Orders: {num_orders}")
    print(f"Target: {API_BASE_URL}")
    print(f"Started: {datetime.now().strftime('%H:%M:%S')}")
    print("=" * 70)

    start_time = time.time()
    async with httpx.AsyncClient(timeout=30.0) as client:
        response = await client.get(f"{API_BASE_URL}/health")
        print(f"Health: {response.json().get('status')}")

        # One checkout per user at a time; carts are per user
        results = []
        for offset in range(0, num_orders, DEMO_USERS):
            batch = range(offset, min(offset + DEMO_USERS, num_orders))
            results.extend(await asyncio.gather(
                *(run_checkout(client, i + 1, i % DEMO_USERS + 1) for i in batch)
            ))

        response = await client.get(f"{API_BASE_URL}/admin/order/statistics")
        statistics = response.json()

    total_time = round(time.time() - start_time, 2)
    successful = [r for r in results if r["success"]]
    failed = [r for r in results if not r["success"]]

    print("\n" + "=" * 70)
    print("SIMULATION RESULTS")
    print("=" * 70)
    print(f"Successful Checkouts: {len(successful)}/{num_orders}")
    print(f"Failed Checkouts: {len(failed)}/{num_orders}")
    print(f"Total Time: {total_time}s")
    print(f"Awaiting merchant confirmation: {statistics.get('to_be_confirmed')}")

    if successful:
        avg_time = round(sum(r["time"] for r in successful) / len(successful), 3)
        total_revenue = sum(r["total"] for r in successful)
        print(f"Average Checkout: {avg_time}s")
        print(f"Total Amount: ${total_revenue:.2f}")

    if failed:
        print("\nFailed Checkout Details (showing first 5):")
        for f in failed[:5]:
            print(f"   Checkout #{f['order_num']}: {f['error']}")

    print("=" * 70)
    return {
        "total": num_orders,
        "successful": len(successful),
        "failed": len(failed),
        "total_time": total_time,
        "results": results,
    }


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Checkout Simulation Script")
    parser.add_argument("--seed", action="store_true", help="Create demo data and exit")
    parser.add_argument("--orders", type=int, default=TOTAL_ORDERS, help="Number of checkouts")
    args = parser.parse_args()

    if args.seed:
        asyncio.run(seed_demo_data())
    else:
        asyncio.run(run_simulation(num_orders=args.orders))
