"""
SQLAlchemy Database Models

Order lifecycle tables (orders, order_details, shopping_cart) plus the
read-side collaborators the ordering core consults: users, address book,
dishes and set meals.
"""

import enum
from typing import Optional

from sqlalchemy import (
    Column,
    Integer,
    String,
    Float,
    DateTime,
    Enum,
    Boolean,
    ForeignKey,
    UniqueConstraint,
    Index,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from takeout.database import Base


class OrderStatus(str, enum.Enum):
    """Order status workflow."""
    PENDING_PAYMENT = "pending_payment"
    TO_BE_CONFIRMED = "to_be_confirmed"
    CONFIRMED = "confirmed"
    DELIVERY_IN_PROGRESS = "delivery_in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class PayStatus(str, enum.Enum):
    UNPAID = "unpaid"
    PAID = "paid"
    REFUNDED = "refunded"


class User(Base):
    """Customer account. ``openid`` is the payer identity sent to the gateway."""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    openid = Column(String(64), nullable=False, unique=True)
    name = Column(String(64), nullable=True)
    phone = Column(String(20), nullable=True)
    created_at = Column(DateTime, server_default=func.now())


class AddressBook(Base):
    __tablename__ = "address_book"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    consignee = Column(String(50), nullable=False)
    phone = Column(String(20), nullable=False)
    province_name = Column(String(32), nullable=True)
    city_name = Column(String(32), nullable=True)
    district_name = Column(String(32), nullable=True)
    detail = Column(String(200), nullable=False)
    label = Column(String(100), nullable=True)
    is_default = Column(Boolean, default=False)

    @property
    def full_address(self) -> str:
        parts = [self.province_name, self.city_name, self.district_name, self.detail]
        return " ".join(p for p in parts if p)


class Dish(Base):
    """Catalog dish (managed elsewhere, read here for cart snapshots)."""
    __tablename__ = "dish"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    name = Column(String(64), nullable=False, unique=True)
    price = Column(Float, nullable=False)
    image = Column(String(255), nullable=True)
    status = Column(Boolean, default=True)  # on sale


class Setmeal(Base):
    """Catalog set meal (managed elsewhere, read here for cart snapshots)."""
    __tablename__ = "setmeal"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    name = Column(String(64), nullable=False, unique=True)
    price = Column(Float, nullable=False)
    image = Column(String(255), nullable=True)
    status = Column(Boolean, default=True)  # on sale


class ShoppingCart(Base):
    """
    One cart line per (user, item, flavor).

    ``item_key`` folds the dish/set-meal identity and flavor into a single
    non-null column so the unique constraint also holds when one of the
    nullable id columns is empty.
    """
    __tablename__ = "shopping_cart"
    __table_args__ = (
        UniqueConstraint("user_id", "item_key", name="uq_cart_user_item"),
    )

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    item_key = Column(String(160), nullable=False)
    dish_id = Column(Integer, nullable=True)
    setmeal_id = Column(Integer, nullable=True)
    dish_flavor = Column(String(50), nullable=True)
    quantity = Column(Integer, nullable=False, default=1)

    # Display snapshot captured at add time
    name = Column(String(64), nullable=False)
    unit_price = Column(Float, nullable=False)
    image = Column(String(255), nullable=True)

    created_at = Column(DateTime, server_default=func.now())

    @staticmethod
    def make_item_key(
        dish_id: Optional[int],
        setmeal_id: Optional[int],
        dish_flavor: Optional[str] = None,
    ) -> str:
        if dish_id is not None:
            return f"dish:{dish_id}:{dish_flavor or ''}"
        return f"setmeal:{setmeal_id}"

    def __repr__(self):
        return f"<CartLine {self.user_id}/{self.item_key} x{self.quantity}>"


class Order(Base):
    """
    Main Order table.

    Consignee, phone and address are a snapshot of the address book entry
    taken at submission and are never refreshed from it.
    """
    __tablename__ = "orders"
    __table_args__ = (
        Index("ix_orders_status_order_time", "status", "order_time"),
    )

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    number = Column(String(50), nullable=False, unique=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    address_book_id = Column(Integer, nullable=False)

    # =========================================================================
    # STATUS
    # =========================================================================
    status = Column(
        Enum(OrderStatus),
        default=OrderStatus.PENDING_PAYMENT,
        nullable=False,
    )
    pay_status = Column(
        Enum(PayStatus),
        default=PayStatus.UNPAID,
        nullable=False,
    )
    pay_method = Column(String(20), nullable=False, default="card")

    # =========================================================================
    # PRICING
    # =========================================================================
    amount = Column(Float, nullable=False)
    pack_amount = Column(Float, nullable=False, default=0.0)
    delivery_fee = Column(Float, nullable=False, default=0.0)
    tableware_number = Column(Integer, nullable=True)
    remark = Column(String(100), nullable=True)

    # =========================================================================
    # ADDRESS SNAPSHOT
    # =========================================================================
    consignee = Column(String(50), nullable=False)
    phone = Column(String(20), nullable=False)
    address = Column(String(255), nullable=False)

    # =========================================================================
    # TIMESTAMPS
    # =========================================================================
    order_time = Column(DateTime, nullable=False)
    checkout_time = Column(DateTime, nullable=True)
    cancel_time = Column(DateTime, nullable=True)
    cancel_reason = Column(String(255), nullable=True)
    estimated_delivery_time = Column(DateTime, nullable=True)
    delivery_time = Column(DateTime, nullable=True)

    details = relationship(
        "OrderDetail",
        back_populates="order",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="OrderDetail.id",
    )

    def __repr__(self):
        return f"<Order #{self.id} {self.number} - {self.status.value}>"


class OrderDetail(Base):
    """Line item copied from a cart line at submission."""
    __tablename__ = "order_details"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    order_id = Column(
        Integer,
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name = Column(String(64), nullable=False)
    image = Column(String(255), nullable=True)
    dish_id = Column(Integer, nullable=True)
    setmeal_id = Column(Integer, nullable=True)
    dish_flavor = Column(String(50), nullable=True)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Float, nullable=False)

    order = relationship("Order", back_populates="details")
