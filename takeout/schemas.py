"""
Pydantic Schemas for Request/Response Validation

Covers the shopping cart, order submission and payment, merchant order
management and the statistics reports.
"""

from datetime import date, datetime
from typing import Any, List, Optional

from pydantic import BaseModel, Field

from takeout.models import OrderStatus, PayStatus


# =============================================================================
# CART
# =============================================================================

class CartItemRequest(BaseModel):
    """Identifies a cart line: exactly one of dish_id / setmeal_id."""
    dish_id: Optional[int] = Field(None, ge=1, examples=[12])
    setmeal_id: Optional[int] = Field(None, ge=1)
    dish_flavor: Optional[str] = Field(None, max_length=50, examples=["extra spicy"])


class CartLineResponse(BaseModel):
    id: int
    dish_id: Optional[int]
    setmeal_id: Optional[int]
    dish_flavor: Optional[str]
    quantity: int
    name: str
    unit_price: float
    image: Optional[str]
    created_at: Optional[datetime]

    class Config:
        from_attributes = True


# =============================================================================
# ORDER REQUESTS
# =============================================================================

class OrderSubmitRequest(BaseModel):
    """Request schema for submitting the current cart as an order."""
    address_book_id: int = Field(..., ge=1, examples=[3])
    pay_method: str = Field(default="card", max_length=20, examples=["card", "wallet"])
    remark: Optional[str] = Field(None, max_length=100)
    pack_amount: float = Field(default=0.0, ge=0)
    tableware_number: Optional[int] = Field(None, ge=0, le=20)
    estimated_delivery_time: Optional[datetime] = None


class OrderPaymentRequest(BaseModel):
    order_number: str = Field(..., min_length=1, max_length=50)


class UserCancelRequest(BaseModel):
    cancel_reason: str = Field(default="Cancelled by customer", min_length=1, max_length=255)


class OrderConfirmRequest(BaseModel):
    id: int = Field(..., ge=1)


class OrderCancelRequest(BaseModel):
    id: int = Field(..., ge=1)
    cancel_reason: str = Field(..., min_length=1, max_length=255)


# =============================================================================
# ORDER RESPONSES
# =============================================================================

class OrderSubmitResponse(BaseModel):
    """Confirmation returned after a successful submission."""
    id: int
    order_number: str
    order_amount: float
    order_time: datetime


class PaymentIntentResponse(BaseModel):
    """Opaque payload handed to the client payment SDK."""
    order_number: str
    provider: str
    package_payload: str
    prepay_id: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class OrderDetailResponse(BaseModel):
    id: int
    name: str
    image: Optional[str]
    dish_id: Optional[int]
    setmeal_id: Optional[int]
    dish_flavor: Optional[str]
    quantity: int
    unit_price: float

    class Config:
        from_attributes = True


class OrderResponse(BaseModel):
    id: int
    number: str
    user_id: int
    status: OrderStatus
    pay_status: PayStatus
    pay_method: str
    amount: float
    pack_amount: float
    delivery_fee: float
    tableware_number: Optional[int]
    remark: Optional[str]
    consignee: str
    phone: str
    address: str
    order_time: datetime
    checkout_time: Optional[datetime]
    cancel_time: Optional[datetime]
    cancel_reason: Optional[str]
    estimated_delivery_time: Optional[datetime]
    delivery_time: Optional[datetime]
    details: List[OrderDetailResponse] = []

    class Config:
        from_attributes = True


class OrderPageResponse(BaseModel):
    total: int
    records: List[OrderResponse]


class OrderStatisticsResponse(BaseModel):
    """Counts of orders waiting for merchant action."""
    to_be_confirmed: int
    confirmed: int
    delivery_in_progress: int


# =============================================================================
# REPORTS
# =============================================================================

class TurnoverReportResponse(BaseModel):
    date_list: List[date]
    turnover_list: List[float]


class OrderReportResponse(BaseModel):
    date_list: List[date]
    order_count_list: List[int]
    valid_order_count_list: List[int]
    total_order_count: int
    valid_order_count: int
    order_completion_rate: float


class UserReportResponse(BaseModel):
    """New registrations per day and the running user total at each day's end."""
    date_list: List[date]
    new_user_list: List[int]
    total_user_list: List[int]


class SalesTop10Response(BaseModel):
    name_list: List[str]
    number_list: List[int]


# =============================================================================
# GENERIC
# =============================================================================

class ErrorResponse(BaseModel):
    """Standard error response."""
    success: bool = False
    error: str
    detail: Optional[str] = None


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    database: str
    redis: str
    payment_service: str
    observers: int
    timestamp: datetime
