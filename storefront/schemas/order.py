from pydantic import BaseModel, ConfigDict
from typing import Optional, List, Dict, Any
from datetime import datetime
from decimal import Decimal

from ..enums import OrderStatus, PaymentStatus


class OrderItemResponse(BaseModel):
    """Schema for order item responses"""
    model_config = ConfigDict(from_attributes=True)

    id: int
    product_id: Optional[int] = None
    product_name: str
    product_sku: Optional[str] = None
    quantity: int
    unit_price: Decimal
    total_price: Decimal


class OrderResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True, use_enum_values=True)

    id: int
    order_number: str
    user_id: Optional[int] = None
    status: OrderStatus
    payment_method: Optional[str] = None
    payment_status: PaymentStatus
    currency: str
    shipping_address: Optional[Dict[str, Any]] = None
    billing_address: Optional[Dict[str, Any]] = None
    coupon_code: Optional[str] = None
    subtotal: Decimal
    tax_amount: Decimal
    shipping_amount: Decimal
    discount_amount: Decimal
    total: Decimal
    placed_at: Optional[datetime] = None
    items: List[OrderItemResponse] = []
