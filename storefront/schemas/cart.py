from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, List, Dict, Any
from datetime import datetime
from decimal import Decimal

from ..enums import CartStatus


class OwnerContext(BaseModel):
    """Who a cart belongs to: a signed-in user, a guest session, or both while logging in"""
    user_id: Optional[int] = None
    session_id: Optional[str] = None

    @property
    def is_guest(self) -> bool:
        return self.user_id is None


class CartItemCreate(BaseModel):
    """Schema for adding a product to the cart"""
    product_id: int
    quantity: int = 1
    options: Optional[Dict[str, Any]] = None


class CartItemUpdate(BaseModel):
    """Schema for changing a line quantity; zero or less removes the line"""
    quantity: int


class CouponApply(BaseModel):
    code: str = ""


class CartItemResponse(BaseModel):
    """Schema for cart item responses"""
    id: int
    product_id: int
    product_name: str
    quantity: int
    unit_price: Decimal
    total_price: Decimal
    formatted_unit_price: str
    formatted_total_price: str
    options: Optional[Dict[str, Any]] = None
    available: bool = True
    price_changed: bool = False


class CartSummary(BaseModel):
    """Schema for cart responses"""
    model_config = ConfigDict(use_enum_values=True)

    id: int
    user_id: Optional[int] = None
    session_id: Optional[str] = None
    status: CartStatus
    currency: str
    coupon_code: Optional[str] = None
    item_count: int
    unique_item_count: int
    subtotal: Decimal
    tax_amount: Decimal
    shipping_amount: Decimal
    discount_amount: Decimal
    total: Decimal
    formatted_subtotal: str
    formatted_tax_amount: str
    formatted_shipping_amount: str
    formatted_discount_amount: str
    formatted_total: str
    expires_at: Optional[datetime] = None
    items: List[CartItemResponse] = Field(default_factory=list)
