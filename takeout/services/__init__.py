"""
                        Services Module

Business logic of the ordering backend.

Services:
    - orders: order lifecycle (submit, payment, merchant transitions)
    - carts: shopping cart
    - reports: turnover and order statistics
    - payment: payment gateway (mock / Stripe)
    - notifications: observer registry and WebSocket fan-out
"""

from takeout.services.carts import CartService
from takeout.services.orders import OrderService
from takeout.services.reports import ReportService

__all__ = ["CartService", "OrderService", "ReportService"]
