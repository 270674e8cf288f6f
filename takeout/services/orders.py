"""
Order Lifecycle Service

Converts a user's cart into an order and drives the order state machine:

    pending_payment ──► to_be_confirmed ──► confirmed ──► delivery_in_progress ──► completed
          │                    │                │                  │
          └────────────────────┴────────────────┴──────────────────┴──► cancelled

Every status change is a conditional update on the expected source state,
so payment callbacks, merchant actions and the timeout sweeps can race
without clobbering each other. Notifications are broadcast only after the
transition is committed and can never fail it.
"""

import logging
import uuid
from datetime import datetime
from typing import Callable, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from takeout.core.config import Settings, get_settings
from takeout.exceptions import (
    AddressNotFound,
    AlreadyPaid,
    EmptyCart,
    InvalidOrderState,
    OrderNotFound,
    PaymentGatewayError,
)
from takeout.models import (
    AddressBook,
    Order,
    OrderDetail,
    OrderStatus,
    PayStatus,
    User,
)
from takeout.repositories import CartRepository, OrderRepository
from takeout.schemas import (
    OrderSubmitRequest,
    OrderSubmitResponse,
    PaymentIntentResponse,
)
from takeout.services.notifications import NotificationHub, OrderEvent
from takeout.services.payment import BasePaymentService

logger = logging.getLogger(__name__)


ALLOWED_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING_PAYMENT: frozenset(
        {OrderStatus.TO_BE_CONFIRMED, OrderStatus.CANCELLED}
    ),
    OrderStatus.TO_BE_CONFIRMED: frozenset(
        {OrderStatus.CONFIRMED, OrderStatus.CANCELLED}
    ),
    OrderStatus.CONFIRMED: frozenset(
        {OrderStatus.DELIVERY_IN_PROGRESS, OrderStatus.CANCELLED}
    ),
    OrderStatus.DELIVERY_IN_PROGRESS: frozenset(
        {OrderStatus.COMPLETED, OrderStatus.CANCELLED}
    ),
}

# Customers may only cancel before the merchant accepted the order
USER_CANCELLABLE = frozenset({OrderStatus.PENDING_PAYMENT, OrderStatus.TO_BE_CONFIRMED})


def can_transition(current: OrderStatus, target: OrderStatus) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


def new_order_number(now: datetime) -> str:
    """Display-facing order number: submission timestamp plus random suffix."""
    return f"{now:%Y%m%d%H%M%S}{uuid.uuid4().hex[:8].upper()}"


class OrderService:
    """
    Order lifecycle manager.

    Dependencies are passed in explicitly; the FastAPI layer builds one
    instance per request around the request's session.
    """

    def __init__(
        self,
        session: AsyncSession,
        payment: BasePaymentService,
        hub: NotificationHub,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.session = session
        self.payment = payment
        self.hub = hub
        self.settings = settings or get_settings()
        self.clock = clock
        self.orders = OrderRepository(session)
        self.carts = CartRepository(session)

    # =========================================================================
    # HELPERS
    # =========================================================================

    async def _notify(self, event: OrderEvent) -> None:
        try:
            await self.hub.broadcast(event)
        except Exception:
            logger.exception(f"Broadcast for order #{event.order_id} failed")

    async def _require_order(
        self,
        order_id: int,
        user_id: Optional[int] = None,
        with_details: bool = False,
    ) -> Order:
        order = await self.orders.get_by_id(order_id, user_id, with_details=with_details)
        if order is None:
            raise OrderNotFound(f"#{order_id}")
        return order

    async def _commit_transition(
        self,
        order: Order,
        target: OrderStatus,
        **values,
    ) -> Order:
        """Apply a checked transition and commit it, or raise InvalidOrderState."""
        if not can_transition(order.status, target):
            raise InvalidOrderState(order.id, order.status, target)

        order_id, source = order.id, order.status
        try:
            changed = await self.orders.transition(order_id, source, target, **values)
            if not changed:
                await self.session.rollback()
                current = await self._require_order(order_id)
                raise InvalidOrderState(order_id, current.status, target)
            await self.session.commit()
        except InvalidOrderState:
            raise
        except Exception:
            await self.session.rollback()
            raise

        logger.info(f"Order #{order_id}: {source.value} -> {target.value}")
        return await self._require_order(order_id, with_details=True)

    # =========================================================================
    # CUSTOMER OPERATIONS
    # =========================================================================

    async def submit(self, user_id: int, request: OrderSubmitRequest) -> OrderSubmitResponse:
        """
        Turn the user's cart into an order.

        The order insert, the detail batch insert and the cart clear are
        committed together; any failure rolls all of them back.

        Raises:
            AddressNotFound: address does not exist for this user
            EmptyCart: the user's cart has no lines
        """
        result = await self.session.execute(
            select(AddressBook).where(
                AddressBook.id == request.address_book_id,
                AddressBook.user_id == user_id,
            )
        )
        address = result.scalar_one_or_none()
        if address is None:
            raise AddressNotFound(request.address_book_id)

        lines = await self.carts.list_by_user(user_id)
        if not lines:
            raise EmptyCart()

        now = self.clock()
        subtotal = sum(line.unit_price * line.quantity for line in lines)
        delivery_fee = self.settings.delivery_fee
        amount = round(subtotal + request.pack_amount + delivery_fee, 2)

        order = Order(
            number=new_order_number(now),
            user_id=user_id,
            address_book_id=address.id,
            status=OrderStatus.PENDING_PAYMENT,
            pay_status=PayStatus.UNPAID,
            pay_method=request.pay_method,
            amount=amount,
            pack_amount=request.pack_amount,
            delivery_fee=delivery_fee,
            tableware_number=request.tableware_number,
            remark=request.remark,
            consignee=address.consignee,
            phone=address.phone,
            address=address.full_address,
            order_time=now,
            estimated_delivery_time=request.estimated_delivery_time,
        )

        try:
            order_id = await self.orders.insert(order)
            await self.orders.insert_details(
                OrderDetail(
                    order_id=order_id,
                    name=line.name,
                    image=line.image,
                    dish_id=line.dish_id,
                    setmeal_id=line.setmeal_id,
                    dish_flavor=line.dish_flavor,
                    quantity=line.quantity,
                    unit_price=line.unit_price,
                )
                for line in lines
            )
            await self.carts.clear(user_id)
            confirmation = OrderSubmitResponse(
                id=order_id,
                order_number=order.number,
                order_amount=order.amount,
                order_time=order.order_time,
            )
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            logger.exception(f"User {user_id}: order submission rolled back")
            raise

        logger.info(
            f"User {user_id}: order #{confirmation.id} ({confirmation.order_number}) "
            f"submitted with {len(lines)} lines, amount {confirmation.order_amount:.2f}"
        )
        return confirmation

    async def initiate_payment(self, user_id: int, order_number: str) -> PaymentIntentResponse:
        """
        Request a prepay transaction for an order. Does not modify the order.

        Raises:
            OrderNotFound: the number does not belong to this user
            AlreadyPaid: the order (or the gateway) reports it settled
            InvalidOrderState: the order is no longer awaiting payment
            PaymentGatewayError: any other gateway failure
        """
        order = await self.orders.get_by_number(order_number, user_id)
        if order is None:
            raise OrderNotFound(order_number)
        if order.pay_status == PayStatus.PAID:
            raise AlreadyPaid(order_number)
        if order.status != OrderStatus.PENDING_PAYMENT:
            raise InvalidOrderState(order.id, order.status, OrderStatus.TO_BE_CONFIRMED)

        user = await self.session.get(User, user_id)
        payer_identity = user.openid if user is not None else str(user_id)

        prepay = await self.payment.create_prepay(
            order_number=order.number,
            amount=order.amount,
            description=f"{self.settings.shop_name} order {order.number}",
            payer_identity=payer_identity,
        )

        if prepay.already_paid:
            logger.info(f"Order {order_number}: gateway reports already paid")
            raise AlreadyPaid(order_number)
        if not prepay.success:
            raise PaymentGatewayError(
                prepay.error_message or "Prepay request failed",
                error_code=prepay.code,
            )

        return PaymentIntentResponse(
            order_number=order.number,
            provider=self.payment.provider_name,
            package_payload=prepay.package_payload or "",
            prepay_id=prepay.prepay_id,
            metadata=prepay.metadata,
        )

    async def confirm_payment(self, order_number: str) -> bool:
        """
        Record a successful payment reported by the provider callback.

        Idempotent: only an order still in ``pending_payment`` is moved, so a
        duplicate callback neither re-stamps checkout time nor notifies twice.

        Returns:
            True if this call performed the transition

        Raises:
            OrderNotFound: no order has this number
        """
        order = await self.orders.get_by_number(order_number)
        if order is None:
            raise OrderNotFound(order_number)

        order_id = order.id
        try:
            changed = await self.orders.transition(
                order_id,
                OrderStatus.PENDING_PAYMENT,
                OrderStatus.TO_BE_CONFIRMED,
                pay_status=PayStatus.PAID,
                checkout_time=self.clock(),
            )
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise

        if not changed:
            current = await self._require_order(order_id)
            if current.status == OrderStatus.CANCELLED:
                logger.warning(
                    f"Order {order_number}: payment confirmed after cancellation "
                    f"({current.cancel_reason}), manual refund needed"
                )
            else:
                logger.info(f"Order {order_number}: duplicate payment callback ignored")
            return False

        logger.info(f"Order {order_number}: paid, awaiting merchant confirmation")
        await self._notify(OrderEvent.new_order(order_id, order_number))
        return True

    async def remind(self, user_id: int, order_id: int) -> None:
        """
        Nudge the merchant about an order. No state change.

        Raises:
            OrderNotFound: the order does not exist for this user
        """
        order = await self._require_order(order_id, user_id)
        logger.info(f"User {user_id}: reminder for order #{order_id}")
        await self._notify(OrderEvent.reminder(order.id, order.number))

    # =========================================================================
    # MERCHANT OPERATIONS
    # =========================================================================

    async def confirm(self, order_id: int) -> Order:
        order = await self._require_order(order_id)
        return await self._commit_transition(order, OrderStatus.CONFIRMED)

    async def deliver(self, order_id: int) -> Order:
        order = await self._require_order(order_id)
        return await self._commit_transition(order, OrderStatus.DELIVERY_IN_PROGRESS)

    async def complete(self, order_id: int) -> Order:
        order = await self._require_order(order_id)
        return await self._commit_transition(
            order, OrderStatus.COMPLETED, delivery_time=self.clock()
        )

    async def cancel(
        self,
        order_id: int,
        reason: str,
        user_id: Optional[int] = None,
    ) -> Order:
        """
        Cancel an order, refunding it when it was paid.

        With ``user_id`` the call is a customer cancellation: the order must
        belong to that user and not yet be accepted by the merchant.
        """
        order = await self._require_order(order_id, user_id)
        if user_id is not None and order.status not in USER_CANCELLABLE:
            raise InvalidOrderState(order.id, order.status, OrderStatus.CANCELLED)
        if not can_transition(order.status, OrderStatus.CANCELLED):
            raise InvalidOrderState(order.id, order.status, OrderStatus.CANCELLED)

        values = {"cancel_reason": reason, "cancel_time": self.clock()}
        if order.pay_status == PayStatus.PAID:
            return await self._cancel_with_refund(order, reason, **values)
        return await self._commit_transition(order, OrderStatus.CANCELLED, **values)

    async def _cancel_with_refund(self, order: Order, reason: str, **values) -> Order:
        """
        Claim a paid order as cancelled and refunded, then call the gateway.

        The claim is flushed but not committed, so its row lock is held for
        the duration of the refund call. Competing transitions (merchant
        actions, the delivery sweep) see the order as already cancelled or
        wait for the lock. A failed refund rolls the claim back and leaves
        the order untouched.
        """
        order_id, number, amount, source = order.id, order.number, order.amount, order.status
        try:
            claimed = await self.orders.transition(
                order_id,
                source,
                OrderStatus.CANCELLED,
                expected_pay_status=PayStatus.PAID,
                pay_status=PayStatus.REFUNDED,
                **values,
            )
            if not claimed:
                await self.session.rollback()
                current = await self._require_order(order_id)
                raise InvalidOrderState(order_id, current.status, OrderStatus.CANCELLED)
            await self.session.flush()

            refund = await self.payment.refund_payment(number, amount=amount, reason=reason)
            if not refund.success:
                raise PaymentGatewayError(
                    refund.error_message or "Refund failed", error_code="refund_failed"
                )
        except InvalidOrderState:
            raise
        except Exception:
            await self.session.rollback()
            raise

        try:
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            logger.critical(
                f"Order {number}: refunded ({refund.refund_id}) but cancellation "
                f"was not saved, manual reconciliation needed"
            )
            raise

        logger.info(
            f"Order #{order_id}: {source.value} -> {OrderStatus.CANCELLED.value}, "
            f"refunded ({refund.refund_id})"
        )
        return await self._require_order(order_id, with_details=True)

    # =========================================================================
    # QUERIES
    # =========================================================================

    async def get_order(self, order_id: int, user_id: Optional[int] = None) -> Order:
        return await self._require_order(order_id, user_id, with_details=True)

    async def list_orders(
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
        return await self.orders.list_page(
            page=page,
            page_size=page_size,
            user_id=user_id,
            status=status,
            number=number,
            phone=phone,
            begin=begin,
            end=end,
        )

    async def status_counts(self) -> dict[str, int]:
        return {
            "to_be_confirmed": await self.orders.count_by_status(OrderStatus.TO_BE_CONFIRMED),
            "confirmed": await self.orders.count_by_status(OrderStatus.CONFIRMED),
            "delivery_in_progress": await self.orders.count_by_status(
                OrderStatus.DELIVERY_IN_PROGRESS
            ),
        }
