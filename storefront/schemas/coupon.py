from pydantic import BaseModel, Field, field_validator
from typing import Optional
from datetime import datetime
from decimal import Decimal

from ..enums import CouponFailureReason, DiscountType


def normalize_code(raw: Optional[str]) -> str:
    """Coupon codes are compared upper-cased with surrounding whitespace removed."""
    return (raw or "").strip().upper()


class CouponCreate(BaseModel):
    """Schema for creating coupons"""
    code: str = Field(min_length=1)
    discount_type: DiscountType
    discount_value: Decimal = Field(gt=0, description="Percentage or fixed amount")
    min_order_amount: Optional[Decimal] = Field(None, ge=0, description="Minimum order amount required")
    max_discount_amount: Optional[Decimal] = Field(None, gt=0, description="Maximum discount for percentage types")
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None
    is_active: bool = True
    usage_limit: Optional[int] = Field(None, gt=0, description="Maximum number of times coupon can be used")
    description: Optional[str] = None

    @field_validator("code")
    @classmethod
    def normalize(cls, v: str) -> str:
        code = normalize_code(v)
        if not code:
            raise ValueError("Coupon code cannot be blank")
        return code


class CouponResult(BaseModel):
    """Outcome of applying or removing a coupon; failures carry a reason code"""
    success: bool
    message: str
    reason: Optional[CouponFailureReason] = None
    code: Optional[str] = None
    discount_amount: Decimal = Decimal("0.00")
