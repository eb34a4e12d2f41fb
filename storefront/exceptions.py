from fastapi import Request, HTTPException, status
from fastapi.responses import JSONResponse
from typing import Any, Callable, Dict, Optional


class APIException(Exception):
    """ Base class for business-rule violations raised by the storefront core.

    Every subclass carries a machine readable ``reason`` next to the human
    readable message so callers can branch on one and display the other.
    """

    reason = "error"
    default_message = "The request could not be processed."

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {"reason": self.reason, "detail": self.message}


class ProductUnavailableError(APIException):
    """ Exception is raised when an inactive product is added to or kept in a cart. """
    reason = "product_unavailable"
    default_message = "Product is not available"


class InvalidQuantityError(APIException):
    """ Exception is raised when a line item quantity falls outside the allowed range. """
    reason = "invalid_quantity"
    default_message = "Quantity must be between 1 and 999"


class InsufficientInventoryError(APIException):
    """ Exception is raised when a quantity exceeds the stock of a tracked, non-backorderable product. """
    reason = "insufficient_inventory"

    def __init__(self, product_name: str, available: int, max_addable: int):
        self.product_name = product_name
        self.available = available
        self.max_addable = max_addable
        super().__init__(
            f"Quantity for {product_name} exceeds available inventory "
            f"({available} available, you can add {max_addable} more)"
        )

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update(available=self.available, max_addable=self.max_addable)
        return data


class CartNotActiveError(APIException):
    """ Exception is raised when a converted or abandoned cart is modified. """
    reason = "cart_not_active"
    default_message = "This cart can no longer be modified"


class EmptyCartError(APIException):
    """ Exception is raised when checkout is started from a cart without items. """
    reason = "empty_cart"
    default_message = "Your cart is empty. Please add items before checkout."


class InvalidStateError(APIException):
    """ Exception is raised when a checkout step is attempted out of order. """
    reason = "invalid_state"

    def __init__(self, current: str, expected: str, message: Optional[str] = None):
        self.current = current
        self.expected = expected
        super().__init__(message or f"Checkout is in '{current}' but '{expected}' is required")

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update(current=self.current, expected=self.expected)
        return data


class CouponUnavailableError(APIException):
    """ Exception is raised when the coupon on a checkout is no longer usable at completion. """
    reason = "coupon_unavailable"
    default_message = "This coupon can no longer be applied to your order"

    def __init__(self, coupon_reason: str, message: Optional[str] = None):
        self.coupon_reason = coupon_reason
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update(coupon_reason=self.coupon_reason)
        return data


class CheckoutFailedError(APIException):
    """ Exception is raised when order creation fails and the checkout was rolled back. """
    reason = "checkout_failed"
    default_message = "We couldn't complete your order. Please try again."


class NotFoundException(HTTPException):
    def __init__(self, detail: str = "Resource not found"):
        super().__init__(status_code=status.HTTP_404_NOT_FOUND, detail=detail)


class BadRequestException(HTTPException):
    def __init__(self, detail: str = "Bad request"):
        super().__init__(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)


class ConflictException(HTTPException):
    def __init__(self, detail: str = "Resource already exists"):
        super().__init__(status_code=status.HTTP_409_CONFLICT, detail=detail)


def create_exception_handler(status_code: int, detail: Any = None) -> Callable[[Request, Exception], JSONResponse]:
    async def exception_handler(request: Request, exception: APIException):
        content = exception.to_dict()
        if detail is not None:
            content["detail"] = detail
        return JSONResponse(
            content=content,
            status_code=status_code
        )

    return exception_handler
