from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import Column, Integer, ForeignKey, String, Numeric, DateTime, Enum, Text
from sqlalchemy.orm import relationship

from ..db.base import Base
from ..enums import CartStatus
from ..models.base import TimeStampMixin
from ..utils.dates import utcnow


class Cart(Base, TimeStampMixin):
    __tablename__ = "carts"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, nullable=True, index=True)
    session_id = Column(String, nullable=True, index=True)  # guest carts
    status = Column(Enum(CartStatus), nullable=False, default=CartStatus.ACTIVE, index=True)
    currency = Column(String(3), nullable=False, default="USD")

    # Totals, recomputed by CartService after every mutation
    subtotal = Column(Numeric(10, 2), nullable=False, default=Decimal("0.00"))
    tax_amount = Column(Numeric(10, 2), nullable=False, default=Decimal("0.00"))
    shipping_amount = Column(Numeric(10, 2), nullable=False, default=Decimal("0.00"))
    discount_amount = Column(Numeric(10, 2), nullable=False, default=Decimal("0.00"))
    total = Column(Numeric(10, 2), nullable=False, default=Decimal("0.00"))

    coupon_id = Column(Integer, ForeignKey("coupons.id", ondelete="SET NULL"), nullable=True)
    coupon_code = Column(String, nullable=True)
    notes = Column(Text, nullable=True)
    expires_at = Column(DateTime, nullable=True, index=True)

    # Relationships
    items = relationship("CartItem", back_populates="cart", cascade="all, delete-orphan", passive_deletes=True)
    coupon = relationship("Coupon", back_populates="carts")

    def is_guest(self) -> bool:
        return self.user_id is None

    def is_active(self) -> bool:
        return self.status == CartStatus.ACTIVE

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return self.expires_at is not None and self.expires_at < (now or utcnow())


    def __repr__(self):
        return f'<Cart(id={self.id}, user_id={self.user_id}, session_id={self.session_id}, status={self.status}, total={self.total})>'
