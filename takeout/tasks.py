"""
Celery Tasks
Scheduled order-timeout sweeps and a worker health probe.

Each sweep task runs the async sweep in a fresh event loop and disposes the
engine afterwards, so pooled connections never outlive the loop that
opened them.
"""

import asyncio
import logging
import time
from datetime import datetime, timedelta
from typing import Awaitable, Callable

from takeout.celery_worker import celery_app
from takeout.core.config import get_settings
from takeout.database import async_session_maker, engine
from takeout.repositories import OrderRepository
from takeout.sweeper import SweepResult, cancel_stuck_deliveries, cancel_unpaid_orders

logger = logging.getLogger(__name__)

Sweep = Callable[[OrderRepository, datetime, timedelta], Awaitable[SweepResult]]


async def run_sweep(sweep: Sweep, grace: timedelta, now: datetime) -> SweepResult:
    """Open a session and run one sweep pass."""
    try:
        async with async_session_maker() as session:
            return await sweep(OrderRepository(session), now, grace)
    finally:
        await engine.dispose()


def _execute(task_id: str, sweep: Sweep, grace: timedelta) -> dict:
    start_time = time.time()
    result = asyncio.run(run_sweep(sweep, grace, datetime.now()))

    summary = result.to_dict()
    summary['task_id'] = task_id
    summary['processing_time_seconds'] = round(time.time() - start_time, 3)

    logger.info(
        f"Task {task_id}: {result.rule} transitioned {result.transitioned}/"
        f"{result.scanned} in {summary['processing_time_seconds']}s"
    )
    return summary


@celery_app.task(bind=True, ignore_result=False)
def sweep_payment_timeouts(self) -> dict:
    """Cancel orders that stayed unpaid past the payment timeout."""
    return _execute(self.request.id, cancel_unpaid_orders, get_settings().payment_timeout)


@celery_app.task(bind=True, ignore_result=False)
def sweep_stuck_deliveries(self) -> dict:
    """Close orders that stayed in delivery past the delivery timeout."""
    return _execute(self.request.id, cancel_stuck_deliveries, get_settings().delivery_timeout)


@celery_app.task
def health_check() -> dict:
    """
    Simple health check task to verify Celery is working.
    """
    return {
        'status': 'healthy',
        'worker': 'celery',
        'timestamp': datetime.now().isoformat()
    }
