"""
Repositories

Session-bound persistence for orders and shopping carts, plus user
aggregates for reporting.
"""

from takeout.repositories.carts import CartRepository
from takeout.repositories.orders import OrderRepository
from takeout.repositories.users import UserRepository

__all__ = ["CartRepository", "OrderRepository", "UserRepository"]
