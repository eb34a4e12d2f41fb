from datetime import datetime
from typing import Optional

from sqlalchemy import Column, Integer, String, Numeric, DateTime, Boolean, Enum
from sqlalchemy.orm import relationship

from ..db.base import Base
from ..enums import DiscountType
from ..models.base import TimeStampMixin
from ..utils.dates import utcnow
from ..utils.money import format_currency, to_decimal


class Coupon(Base, TimeStampMixin):
    __tablename__ = "coupons"

    id = Column(Integer, primary_key=True, index=True)
    code = Column(String, nullable=False, unique=True, index=True)  # stored upper-cased and trimmed
    discount_type = Column(Enum(DiscountType), nullable=False)
    discount_value = Column(Numeric(10, 2), nullable=False)  # Either percentage or fixed amount
    min_order_amount = Column(Numeric(10, 2), nullable=True)
    max_discount_amount = Column(Numeric(10, 2), nullable=True)  # percentage coupons only
    valid_from = Column(DateTime, nullable=True)
    valid_until = Column(DateTime, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    usage_limit = Column(Integer, nullable=True)
    used_count = Column(Integer, nullable=False, default=0)
    description = Column(String, nullable=True)

    # Relationships
    carts = relationship("Cart", back_populates="coupon")

    def is_percentage(self) -> bool:
        return self.discount_type == DiscountType.PERCENTAGE

    def is_fixed(self) -> bool:
        return self.discount_type == DiscountType.FIXED

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.valid_until is None:
            return False
        return self.valid_until < (now or utcnow())

    def is_not_started(self, now: Optional[datetime] = None) -> bool:
        if self.valid_from is None:
            return False
        return self.valid_from > (now or utcnow())

    def is_usage_exceeded(self) -> bool:
        if self.usage_limit is None:
            return False
        return (self.used_count or 0) >= self.usage_limit

    def is_below_minimum(self, subtotal) -> bool:
        if not self.min_order_amount:
            return False
        return to_decimal(subtotal) < self.min_order_amount

    def display_discount(self, currency: str = "USD") -> str:
        if self.is_percentage():
            return f"{int(self.discount_value)}% off"
        return f"{format_currency(self.discount_value, currency)} off"


    def __repr__(self):
        return f"<Coupon(id={self.id}, code={self.code}, discount_type={self.discount_type}, discount_value={self.discount_value})>"
