"""
Business exceptions.

Three families, mapped to HTTP responses by the handlers in ``takeout.main``:
    - ValidationFailure: the request itself is unusable, nothing was written
    - BusinessConflict: the request is valid but clashes with current order state
    - PaymentGatewayError: the payment provider could not serve the request
"""


class TakeoutError(Exception):
    """Base class for all expected business errors."""

    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


# =============================================================================
# VALIDATION
# =============================================================================

class ValidationFailure(TakeoutError):
    status_code = 400


class AddressNotFound(ValidationFailure):
    def __init__(self, address_book_id: int):
        super().__init__(f"Address #{address_book_id} not found")
        self.address_book_id = address_book_id


class EmptyCart(ValidationFailure):
    def __init__(self):
        super().__init__("Shopping cart is empty")


class ItemNotFound(ValidationFailure):
    def __init__(self, kind: str, item_id: int):
        super().__init__(f"{kind.capitalize()} #{item_id} not found or not on sale")
        self.kind = kind
        self.item_id = item_id


class InvalidCartItem(ValidationFailure):
    """A cart request must name exactly one of dish or set meal."""


# =============================================================================
# BUSINESS STATE
# =============================================================================

class BusinessConflict(TakeoutError):
    status_code = 409


class OrderNotFound(BusinessConflict):
    status_code = 404

    def __init__(self, reference):
        super().__init__(f"Order {reference} not found")
        self.reference = reference


class AlreadyPaid(BusinessConflict):
    def __init__(self, order_number: str):
        super().__init__(f"Order {order_number} has already been paid")
        self.order_number = order_number


class InvalidOrderState(BusinessConflict):
    def __init__(self, order_id: int, current, target):
        current_value = getattr(current, "value", current)
        target_value = getattr(target, "value", target)
        super().__init__(
            f"Order #{order_id} cannot move from {current_value} to {target_value}"
        )
        self.order_id = order_id
        self.current = current
        self.target = target


# =============================================================================
# EXTERNAL SERVICES
# =============================================================================

class PaymentGatewayError(TakeoutError):
    status_code = 502

    def __init__(self, message: str, error_code: str = "gateway_error"):
        super().__init__(message)
        self.error_code = error_code
