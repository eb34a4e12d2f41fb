from decimal import Decimal

from sqlalchemy import Column, Integer, String, Text, Numeric, ForeignKey, DateTime, Enum, JSON
from sqlalchemy.orm import relationship

from ..db.base import Base
from ..enums import OrderStatus, PaymentStatus
from ..models.base import TimeStampMixin


class Order(Base, TimeStampMixin):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    order_number = Column(String, nullable=False, unique=True, index=True)
    user_id = Column(Integer, nullable=True, index=True)
    session_id = Column(String, nullable=True)
    cart_id = Column(Integer, ForeignKey("carts.id"), nullable=True)
    status = Column(Enum(OrderStatus), nullable=False, default=OrderStatus.PENDING)
    payment_method = Column(String, nullable=True)
    payment_status = Column(Enum(PaymentStatus), nullable=False, default=PaymentStatus.PENDING)
    currency = Column(String(3), nullable=False, default="USD")
    shipping_address = Column(JSON, nullable=True)
    billing_address = Column(JSON, nullable=True)
    shipping_method_id = Column(Integer, ForeignKey("shipping_methods.id"), nullable=True)
    coupon_code = Column(String, nullable=True)
    subtotal = Column(Numeric(10, 2), nullable=False)
    tax_amount = Column(Numeric(10, 2), nullable=False)
    shipping_amount = Column(Numeric(10, 2), nullable=False)
    discount_amount = Column(Numeric(10, 2), nullable=False, default=Decimal("0.00"))
    total = Column(Numeric(10, 2), nullable=False)
    notes = Column(Text, nullable=True)
    placed_at = Column(DateTime, nullable=True)

    # Relationships
    items = relationship("OrderItem", back_populates="order", cascade="all, delete-orphan")


    def __repr__(self):
        return f'<Order(id={self.id}, order_number={self.order_number}, status={self.status}, total={self.total})>'
