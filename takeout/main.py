"""
FastAPI Application Entry Point

Takeout ordering backend: customer cart and order endpoints, merchant order
management, payment provider callbacks and the merchant notification socket.

Endpoints:
    - /user/shoppingCart/*: cart add / sub / list / clean
    - /user/order/*: submit, payment, reminder, history, cancel
    - /admin/order/*: search, statistics, confirm / delivery / complete / cancel
    - /admin/report/*: turnover and order statistics
    - POST /webhook/payment: payment provider callback
    - WS /ws/{client_id}: merchant dashboard notifications
    - GET /health: System health check

The authenticated user id arrives in the X-User-Id header, set by the
authentication gateway in front of this service.
"""

import logging
from datetime import date, datetime
from typing import Any, List, Optional
from contextlib import asynccontextmanager

from fastapi import (
    Depends,
    FastAPI,
    Header,
    HTTPException,
    Query,
    Request,
    WebSocket,
    WebSocketDisconnect,
)
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession
import redis

from takeout.core.config import get_settings, setup_logging
from takeout.database import get_db, init_db, engine
from takeout.exceptions import OrderNotFound, TakeoutError
from takeout.models import OrderStatus
from takeout.schemas import (
    CartItemRequest,
    CartLineResponse,
    ErrorResponse,
    HealthResponse,
    OrderCancelRequest,
    OrderConfirmRequest,
    OrderPageResponse,
    OrderPaymentRequest,
    OrderReportResponse,
    OrderResponse,
    OrderStatisticsResponse,
    OrderSubmitRequest,
    OrderSubmitResponse,
    PaymentIntentResponse,
    SalesTop10Response,
    TurnoverReportResponse,
    UserCancelRequest,
    UserReportResponse,
)
from takeout.services import CartService, OrderService, ReportService
from takeout.services.notifications import NotificationHub, get_notification_hub
from takeout.services.notifications.websocket import WebSocketObserver
from takeout.services.payment import (
    BasePaymentService,
    MockPaymentService,
    get_payment_service,
)

# Initialize configuration and logging
settings = get_settings()
setup_logging()
logger = logging.getLogger(__name__)


# =============================================================================
# APPLICATION LIFECYCLE
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manage application startup and shutdown events.
    """
    logger.info("=" * 60)
    logger.info(f"Starting {settings.app_name}")
    logger.info(f"   Version: {settings.app_version}")
    logger.info(f"   Environment: {settings.env_mode.value}")
    logger.info("=" * 60)

    await init_db()
    logger.info("Database initialized")

    payment_service = get_payment_service()
    logger.info(f"Payment Service: {payment_service.provider_name}")

    if settings.use_real_services:
        missing = settings.validate_production_config()
        if missing:
            logger.warning(f"Missing production config: {missing}")

    yield

    logger.info("Shutting down...")
    await get_notification_hub().close_all()
    await engine.dispose()
    logger.info("Cleanup complete")


# =============================================================================
# APPLICATION INSTANCE
# =============================================================================

app = FastAPI(
    title=settings.app_name,
    description=(
        "Food-ordering backend: cart, order lifecycle, payment callbacks, "
        "merchant notifications and scheduled order-timeout handling."
    ),
    version=settings.app_version,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# =============================================================================
# DEPENDENCIES
# =============================================================================

def get_current_user_id(
    x_user_id: Optional[int] = Header(None, alias="X-User-Id"),
) -> int:
    """Authenticated user id, threaded explicitly into every service call."""
    if x_user_id is None or x_user_id < 1:
        raise HTTPException(status_code=401, detail="Missing or invalid X-User-Id header")
    return x_user_id


def get_order_service(
    db: AsyncSession = Depends(get_db),
    payment: BasePaymentService = Depends(get_payment_service),
    hub: NotificationHub = Depends(get_notification_hub),
) -> OrderService:
    return OrderService(db, payment, hub)


def get_cart_service(db: AsyncSession = Depends(get_db)) -> CartService:
    return CartService(db)


def get_report_service(db: AsyncSession = Depends(get_db)) -> ReportService:
    return ReportService(db)


# =============================================================================
# HEALTH
# =============================================================================

@app.get(
    "/health",
    response_model=HealthResponse,
    tags=["Health"],
    summary="System Health Check",
)
async def health_check(
    db: AsyncSession = Depends(get_db),
    payment: BasePaymentService = Depends(get_payment_service),
    hub: NotificationHub = Depends(get_notification_hub),
) -> HealthResponse:
    """Verify all system components are operational."""

    db_status = "healthy"
    try:
        await db.execute(select(func.now()))
    except Exception as e:
        db_status = f"unhealthy: {str(e)}"
        logger.error(f"Database health check failed: {e}")

    redis_status = "healthy"
    try:
        r = redis.Redis.from_url(settings.redis_url, socket_timeout=2)
        r.ping()
        r.close()
    except Exception as e:
        redis_status = f"unhealthy: {str(e)}"
        logger.error(f"Redis health check failed: {e}")

    payment_status = "healthy" if await payment.health_check() else "unhealthy"

    overall = "operational" if all(
        s == "healthy" for s in [db_status, redis_status, payment_status]
    ) else "degraded"

    return HealthResponse(
        status=overall,
        database=db_status,
        redis=redis_status,
        payment_service=payment_status,
        observers=len(hub),
        timestamp=datetime.now(),
    )


# =============================================================================
# SHOPPING CART
# =============================================================================

@app.post(
    "/user/shoppingCart/add",
    response_model=CartLineResponse,
    tags=["Shopping Cart"],
)
async def add_to_cart(
    item: CartItemRequest,
    user_id: int = Depends(get_current_user_id),
    carts: CartService = Depends(get_cart_service),
) -> CartLineResponse:
    line = await carts.add(user_id, item.dish_id, item.setmeal_id, item.dish_flavor)
    return CartLineResponse.model_validate(line)


@app.post("/user/shoppingCart/sub", tags=["Shopping Cart"])
async def subtract_from_cart(
    item: CartItemRequest,
    user_id: int = Depends(get_current_user_id),
    carts: CartService = Depends(get_cart_service),
) -> dict[str, int]:
    remaining = await carts.subtract(user_id, item.dish_id, item.setmeal_id, item.dish_flavor)
    return {"quantity": remaining}


@app.get(
    "/user/shoppingCart/list",
    response_model=List[CartLineResponse],
    tags=["Shopping Cart"],
)
async def list_cart(
    user_id: int = Depends(get_current_user_id),
    carts: CartService = Depends(get_cart_service),
) -> List[CartLineResponse]:
    return [CartLineResponse.model_validate(line) for line in await carts.list(user_id)]


@app.delete("/user/shoppingCart/clean", tags=["Shopping Cart"])
async def clean_cart(
    user_id: int = Depends(get_current_user_id),
    carts: CartService = Depends(get_cart_service),
) -> dict[str, int]:
    return {"removed": await carts.clear(user_id)}


# =============================================================================
# CUSTOMER ORDERS
# =============================================================================

@app.post(
    "/user/order/submit",
    response_model=OrderSubmitResponse,
    responses={400: {"model": ErrorResponse}},
    tags=["Orders"],
    summary="Submit the cart as an order",
)
async def submit_order(
    request: OrderSubmitRequest,
    user_id: int = Depends(get_current_user_id),
    orders: OrderService = Depends(get_order_service),
) -> OrderSubmitResponse:
    return await orders.submit(user_id, request)


@app.put(
    "/user/order/payment",
    response_model=PaymentIntentResponse,
    responses={409: {"model": ErrorResponse}, 502: {"model": ErrorResponse}},
    tags=["Orders"],
)
async def order_payment(
    request: OrderPaymentRequest,
    user_id: int = Depends(get_current_user_id),
    orders: OrderService = Depends(get_order_service),
) -> PaymentIntentResponse:
    return await orders.initiate_payment(user_id, request.order_number)


@app.get("/user/order/reminder/{order_id}", tags=["Orders"])
async def order_reminder(
    order_id: int,
    user_id: int = Depends(get_current_user_id),
    orders: OrderService = Depends(get_order_service),
) -> dict[str, bool]:
    await orders.remind(user_id, order_id)
    return {"success": True}


@app.get(
    "/user/order/orderDetail/{order_id}",
    response_model=OrderResponse,
    tags=["Orders"],
)
async def user_order_detail(
    order_id: int,
    user_id: int = Depends(get_current_user_id),
    orders: OrderService = Depends(get_order_service),
) -> OrderResponse:
    return OrderResponse.model_validate(await orders.get_order(order_id, user_id))


@app.get(
    "/user/order/historyOrders",
    response_model=OrderPageResponse,
    tags=["Orders"],
)
async def history_orders(
    page: int = Query(1, ge=1),
    page_size: int = Query(10, ge=1, le=100),
    status: Optional[OrderStatus] = Query(None),
    user_id: int = Depends(get_current_user_id),
    orders: OrderService = Depends(get_order_service),
) -> OrderPageResponse:
    total, records = await orders.list_orders(
        page=page, page_size=page_size, user_id=user_id, status=status
    )
    return OrderPageResponse(
        total=total,
        records=[OrderResponse.model_validate(o) for o in records],
    )


@app.put(
    "/user/order/cancel/{order_id}",
    response_model=OrderResponse,
    tags=["Orders"],
)
async def user_cancel_order(
    order_id: int,
    request: Optional[UserCancelRequest] = None,
    user_id: int = Depends(get_current_user_id),
    orders: OrderService = Depends(get_order_service),
) -> OrderResponse:
    reason = (request or UserCancelRequest()).cancel_reason
    order = await orders.cancel(order_id, reason, user_id=user_id)
    return OrderResponse.model_validate(order)


# =============================================================================
# PAYMENT CALLBACKS
# =============================================================================

@app.post("/webhook/payment", tags=["Payment Webhook"])
async def payment_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(None, alias="stripe-signature"),
    payment: BasePaymentService = Depends(get_payment_service),
    orders: OrderService = Depends(get_order_service),
) -> dict[str, Any]:
    """
    Payment provider callback.

    Unknown order numbers are logged and acknowledged so the provider
    does not keep re-delivering the event.
    """
    body = await request.body()
    event = await payment.verify_webhook(body, stripe_signature)
    if event is None:
        raise HTTPException(status_code=400, detail="Invalid webhook payload")

    order_number = payment.paid_order_number(event)
    if order_number is None:
        logger.debug(f"Payment webhook ignored: {event.get('type', 'unknown')}")
        return {"received": True, "handled": False}

    try:
        transitioned = await orders.confirm_payment(order_number)
    except OrderNotFound:
        logger.warning(f"Payment callback for unknown order {order_number}")
        return {"received": True, "handled": False}

    return {"received": True, "handled": True, "transitioned": transitioned}


@app.post("/webhook/simulation/paid/{order_number}", tags=["Simulation"])
async def simulate_payment(
    order_number: str,
    payment: BasePaymentService = Depends(get_payment_service),
    orders: OrderService = Depends(get_order_service),
) -> dict[str, Any]:
    """
    Development only: settle an order on the mock gateway and run the
    same confirmation path as the real callback.
    """
    if not settings.is_development or not isinstance(payment, MockPaymentService):
        raise HTTPException(
            status_code=403,
            detail="Simulation endpoint only available in development mode"
        )

    event = payment.settle(order_number)
    transitioned = await orders.confirm_payment(payment.paid_order_number(event))
    return {"received": True, "handled": True, "transitioned": transitioned}


# =============================================================================
# MERCHANT ORDERS
# =============================================================================

@app.get(
    "/admin/order/conditionSearch",
    response_model=OrderPageResponse,
    tags=["Admin Orders"],
)
async def search_orders(
    page: int = Query(1, ge=1),
    page_size: int = Query(10, ge=1, le=100),
    status: Optional[OrderStatus] = Query(None),
    number: Optional[str] = Query(None),
    phone: Optional[str] = Query(None),
    begin_time: Optional[datetime] = Query(None),
    end_time: Optional[datetime] = Query(None),
    orders: OrderService = Depends(get_order_service),
) -> OrderPageResponse:
    total, records = await orders.list_orders(
        page=page,
        page_size=page_size,
        status=status,
        number=number,
        phone=phone,
        begin=begin_time,
        end=end_time,
    )
    return OrderPageResponse(
        total=total,
        records=[OrderResponse.model_validate(o) for o in records],
    )


@app.get(
    "/admin/order/statistics",
    response_model=OrderStatisticsResponse,
    tags=["Admin Orders"],
)
async def order_statistics(
    orders: OrderService = Depends(get_order_service),
) -> OrderStatisticsResponse:
    return OrderStatisticsResponse(**await orders.status_counts())


@app.get(
    "/admin/order/details/{order_id}",
    response_model=OrderResponse,
    tags=["Admin Orders"],
)
async def admin_order_detail(
    order_id: int,
    orders: OrderService = Depends(get_order_service),
) -> OrderResponse:
    return OrderResponse.model_validate(await orders.get_order(order_id))


@app.put("/admin/order/confirm", response_model=OrderResponse, tags=["Admin Orders"])
async def confirm_order(
    request: OrderConfirmRequest,
    orders: OrderService = Depends(get_order_service),
) -> OrderResponse:
    return OrderResponse.model_validate(await orders.confirm(request.id))


@app.put("/admin/order/delivery/{order_id}", response_model=OrderResponse, tags=["Admin Orders"])
async def deliver_order(
    order_id: int,
    orders: OrderService = Depends(get_order_service),
) -> OrderResponse:
    return OrderResponse.model_validate(await orders.deliver(order_id))


@app.put("/admin/order/complete/{order_id}", response_model=OrderResponse, tags=["Admin Orders"])
async def complete_order(
    order_id: int,
    orders: OrderService = Depends(get_order_service),
) -> OrderResponse:
    return OrderResponse.model_validate(await orders.complete(order_id))


@app.put("/admin/order/cancel", response_model=OrderResponse, tags=["Admin Orders"])
async def admin_cancel_order(
    request: OrderCancelRequest,
    orders: OrderService = Depends(get_order_service),
) -> OrderResponse:
    return OrderResponse.model_validate(await orders.cancel(request.id, request.cancel_reason))


# =============================================================================
# REPORTS
# =============================================================================

@app.get(
    "/admin/report/turnoverStatistics",
    response_model=TurnoverReportResponse,
    tags=["Reports"],
)
async def turnover_statistics(
    begin: date = Query(...),
    end: date = Query(...),
    reports: ReportService = Depends(get_report_service),
) -> TurnoverReportResponse:
    return await reports.turnover(begin, end)


@app.get(
    "/admin/report/userStatistics",
    response_model=UserReportResponse,
    tags=["Reports"],
)
async def user_statistics(
    begin: date = Query(...),
    end: date = Query(...),
    reports: ReportService = Depends(get_report_service),
) -> UserReportResponse:
    return await reports.user_statistics(begin, end)


@app.get(
    "/admin/report/ordersStatistics",
    response_model=OrderReportResponse,
    tags=["Reports"],
)
async def orders_statistics(
    begin: date = Query(...),
    end: date = Query(...),
    reports: ReportService = Depends(get_report_service),
) -> OrderReportResponse:
    return await reports.order_statistics(begin, end)


@app.get(
    "/admin/report/top10",
    response_model=SalesTop10Response,
    tags=["Reports"],
)
async def sales_top10(
    begin: date = Query(...),
    end: date = Query(...),
    reports: ReportService = Depends(get_report_service),
) -> SalesTop10Response:
    """Ten best-selling dishes and set meals of completed orders."""
    return await reports.sales_top10(begin, end)


# =============================================================================
# MERCHANT NOTIFICATIONS
# =============================================================================

@app.websocket("/ws/{client_id}")
async def notification_socket(
    websocket: WebSocket,
    client_id: str,
    hub: NotificationHub = Depends(get_notification_hub),
) -> None:
    """Merchant dashboards connect here to receive new-order and reminder events."""
    await websocket.accept()
    observer = WebSocketObserver(client_id, websocket)
    hub.register(observer)
    try:
        while True:
            # Incoming frames are ignored; reading detects disconnects
            await websocket.receive_text()
    except WebSocketDisconnect:
        logger.info(f"Observer {client_id} disconnected")
    finally:
        hub.unregister(client_id, observer)


# =============================================================================
# ERROR HANDLERS
# =============================================================================

@app.exception_handler(TakeoutError)
async def business_exception_handler(request: Request, exc: TakeoutError) -> JSONResponse:
    """Expected business errors: validation, state conflicts, gateway failures."""
    logger.info(f"{type(exc).__name__} on {request.url.path}: {exc.message}")

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "success": False,
            "error": type(exc).__name__,
            "detail": exc.message,
        },
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all exception handler."""
    logger.exception(f"Unhandled exception: {exc}")

    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "error": "Internal Server Error",
            "detail": str(exc) if settings.debug else "An unexpected error occurred",
        },
    )
