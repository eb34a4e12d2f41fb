from .address import Address
from .cart import (
    CartItemCreate,
    CartItemResponse,
    CartItemUpdate,
    CartSummary,
    CouponApply,
    OwnerContext,
)
from .checkout import (
    CheckoutStepResponse,
    CheckoutStepResult,
    CheckoutSummary,
    PaymentInfoSubmit,
    ShippingInfoSubmit,
)
from .coupon import CouponCreate, CouponResult
from .order import OrderItemResponse, OrderResponse


__all__ = [
    # address
    "Address",

    # cart schemas
    "CartItemCreate",
    "CartItemResponse",
    "CartItemUpdate",
    "CartSummary",
    "CouponApply",
    "OwnerContext",

    # checkout schemas
    "CheckoutStepResponse",
    "CheckoutStepResult",
    "CheckoutSummary",
    "PaymentInfoSubmit",
    "ShippingInfoSubmit",

    # coupon schemas
    "CouponCreate",
    "CouponResult",

    # order schemas
    "OrderItemResponse",
    "OrderResponse",
]
