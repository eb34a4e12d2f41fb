from pydantic import BaseModel, ConfigDict, Field
from typing import Any, Dict, List, Optional
from datetime import datetime
from decimal import Decimal

from ..enums import CheckoutStatus


class ShippingInfoSubmit(BaseModel):
    """Schema for the shipping step; the address is validated by the service so errors come back per field"""
    address: Dict[str, Any] = Field(default_factory=dict)
    shipping_method_id: Optional[int] = None


class PaymentInfoSubmit(BaseModel):
    payment_method: str = ""


class CheckoutSummary(BaseModel):
    """Schema for checkout responses"""
    model_config = ConfigDict(use_enum_values=True)

    id: int
    cart_id: int
    status: CheckoutStatus
    step_name: str
    progress_percentage: int
    next_step: CheckoutStatus
    shipping_address: Optional[Dict[str, Any]] = None
    billing_address: Optional[Dict[str, Any]] = None
    formatted_shipping_address: str = ""
    shipping_method_id: Optional[int] = None
    payment_method: Optional[str] = None
    coupon_code: Optional[str] = None
    subtotal: Decimal
    tax_amount: Decimal
    shipping_amount: Decimal
    discount_amount: Decimal
    total_amount: Decimal
    formatted_subtotal: str
    formatted_tax_amount: str
    formatted_shipping_amount: str
    formatted_discount_amount: str
    formatted_total_amount: str
    expires_at: datetime
    completed_at: Optional[datetime] = None
    order_id: Optional[int] = None


class CheckoutStepResult(BaseModel):
    """Outcome of a checkout step; on failure the checkout keeps its status and ``errors`` lists field messages"""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    success: bool
    checkout: Any
    errors: Dict[str, List[str]] = Field(default_factory=dict)


class CheckoutStepResponse(BaseModel):
    """Schema for checkout step responses"""
    success: bool
    errors: Dict[str, List[str]] = Field(default_factory=dict)
    checkout: CheckoutSummary
