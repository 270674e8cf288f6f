"""
Order Timeout Sweeps

Pure "sweep once" functions. Each takes an OrderRepository and an explicit
``now`` so it can be run by the Celery beat schedule or called directly.

A sweep reads the stale orders, then moves each one with its own conditional
update and commit. A row that another actor already moved is skipped, and a
row that fails is rolled back and logged without stopping the sweep.
"""

import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from typing import Any

from takeout.models import OrderStatus
from takeout.repositories import OrderRepository

logger = logging.getLogger(__name__)

PAYMENT_TIMEOUT_REASON = "Payment timeout, cancelled automatically"
DELIVERY_TIMEOUT_REASON = "Delivery timeout, cancelled automatically"

DEFAULT_PAYMENT_GRACE = timedelta(minutes=15)
DEFAULT_DELIVERY_GRACE = timedelta(minutes=60)


@dataclass
class SweepResult:
    """Outcome of one sweep pass."""
    rule: str
    cutoff: datetime
    scanned: int = 0
    transitioned: int = 0
    skipped: int = 0
    failed: int = 0

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["cutoff"] = self.cutoff.isoformat()
        return data


async def _sweep(
    orders: OrderRepository,
    rule: str,
    source: OrderStatus,
    target: OrderStatus,
    now: datetime,
    grace: timedelta,
    **values: Any,
) -> SweepResult:
    cutoff = now - grace
    result = SweepResult(rule=rule, cutoff=cutoff)

    stale = await orders.list_by_status_older_than(source, cutoff)
    candidates = [(order.id, order.number) for order in stale]
    result.scanned = len(candidates)

    if not candidates:
        logger.debug(f"{rule}: nothing older than {cutoff:%Y-%m-%d %H:%M:%S}")
        return result

    logger.info(f"{rule}: {len(candidates)} {source.value} orders older than {cutoff}")

    for order_id, number in candidates:
        try:
            changed = await orders.transition(order_id, source, target, **values)
            await orders.session.commit()
        except Exception:
            await orders.session.rollback()
            result.failed += 1
            logger.exception(f"{rule}: order {number} could not be updated")
            continue

        if changed:
            result.transitioned += 1
            logger.info(f"{rule}: order {number} {source.value} -> {target.value}")
        else:
            result.skipped += 1

    logger.info(
        f"{rule}: done (transitioned={result.transitioned}, "
        f"skipped={result.skipped}, failed={result.failed})"
    )
    return result


async def cancel_unpaid_orders(
    orders: OrderRepository,
    now: datetime,
    grace: timedelta = DEFAULT_PAYMENT_GRACE,
) -> SweepResult:
    """Cancel orders still awaiting payment after the grace period."""
    return await _sweep(
        orders,
        rule="payment-timeout",
        source=OrderStatus.PENDING_PAYMENT,
        target=OrderStatus.CANCELLED,
        now=now,
        grace=grace,
        cancel_reason=PAYMENT_TIMEOUT_REASON,
        cancel_time=now,
    )


async def cancel_stuck_deliveries(
    orders: OrderRepository,
    now: datetime,
    grace: timedelta = DEFAULT_DELIVERY_GRACE,
) -> SweepResult:
    """
    Force-close orders left in delivery after the grace period.

    These orders end up ``cancelled`` rather than ``completed``. That mirrors
    the historical behaviour of this job; whether delivered orders should
    instead be completed is an open product question.
    """
    return await _sweep(
        orders,
        rule="stuck-delivery",
        source=OrderStatus.DELIVERY_IN_PROGRESS,
        target=OrderStatus.CANCELLED,
        now=now,
        grace=grace,
        cancel_reason=DELIVERY_TIMEOUT_REASON,
        cancel_time=now,
    )
