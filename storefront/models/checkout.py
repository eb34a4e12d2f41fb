from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import Column, Integer, ForeignKey, String, Numeric, DateTime, Enum, Text, JSON
from sqlalchemy.orm import relationship

from ..db.base import Base
from ..enums import CheckoutStatus
from ..models.base import TimeStampMixin
from ..schemas.address import Address
from ..utils.dates import utcnow


STEP_ORDER = [
    CheckoutStatus.STARTED,
    CheckoutStatus.SHIPPING_INFO,
    CheckoutStatus.PAYMENT_INFO,
    CheckoutStatus.REVIEW,
    CheckoutStatus.COMPLETED,
]

ACTIVE_STATUSES = STEP_ORDER[:-1]

TERMINAL_STATUSES = (CheckoutStatus.COMPLETED, CheckoutStatus.CANCELLED)

STEP_NAMES = {
    CheckoutStatus.STARTED: "Cart Review",
    CheckoutStatus.SHIPPING_INFO: "Shipping Information",
    CheckoutStatus.PAYMENT_INFO: "Payment Information",
    CheckoutStatus.REVIEW: "Order Review",
    CheckoutStatus.COMPLETED: "Order Complete",
}

PROGRESS = {
    CheckoutStatus.STARTED: 25,
    CheckoutStatus.SHIPPING_INFO: 50,
    CheckoutStatus.PAYMENT_INFO: 75,
    CheckoutStatus.REVIEW: 100,
    CheckoutStatus.COMPLETED: 100,
}


class Checkout(Base, TimeStampMixin):
    __tablename__ = "checkouts"

    id = Column(Integer, primary_key=True, index=True)
    cart_id = Column(Integer, ForeignKey("carts.id"), nullable=False, index=True)
    user_id = Column(Integer, nullable=True, index=True)
    session_id = Column(String, nullable=True, index=True)
    status = Column(Enum(CheckoutStatus), nullable=False, default=CheckoutStatus.STARTED, index=True)

    shipping_address = Column(JSON, nullable=True)
    billing_address = Column(JSON, nullable=True)
    shipping_method_id = Column(Integer, ForeignKey("shipping_methods.id"), nullable=True)
    payment_method = Column(String, nullable=True)

    # Coupon snapshot copied from the cart
    coupon_id = Column(Integer, ForeignKey("coupons.id", ondelete="SET NULL"), nullable=True)
    coupon_code = Column(String, nullable=True)

    subtotal = Column(Numeric(10, 2), nullable=False, default=Decimal("0.00"))
    tax_amount = Column(Numeric(10, 2), nullable=False, default=Decimal("0.00"))
    shipping_amount = Column(Numeric(10, 2), nullable=False, default=Decimal("0.00"))
    discount_amount = Column(Numeric(10, 2), nullable=False, default=Decimal("0.00"))
    total_amount = Column(Numeric(10, 2), nullable=False, default=Decimal("0.00"))

    notes = Column(Text, nullable=True)
    expires_at = Column(DateTime, nullable=False, index=True)
    completed_at = Column(DateTime, nullable=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=True)

    # Relationships
    cart = relationship("Cart")
    shipping_method = relationship("ShippingMethod")
    order = relationship("Order")

    @property
    def shipping_address_data(self) -> Optional[Address]:
        return Address.from_storage(self.shipping_address)

    @shipping_address_data.setter
    def shipping_address_data(self, address: Optional[Address]):
        self.shipping_address = address.to_storage() if address else None

    @property
    def billing_address_data(self) -> Optional[Address]:
        return Address.from_storage(self.billing_address)

    @billing_address_data.setter
    def billing_address_data(self, address: Optional[Address]):
        self.billing_address = address.to_storage() if address else None

    def has_shipping_address(self) -> bool:
        return self.shipping_address_data is not None

    def has_billing_address(self) -> bool:
        return self.billing_address_data is not None

    def same_as_shipping(self) -> bool:
        return self.shipping_address_data == self.billing_address_data

    def formatted_shipping_address(self) -> str:
        address = self.shipping_address_data
        return address.formatted() if address else ""

    def formatted_billing_address(self) -> str:
        address = self.billing_address_data
        return address.formatted() if address else ""

    def is_guest(self) -> bool:
        return self.user_id is None

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return self.expires_at is not None and self.expires_at < (now or utcnow())

    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def has_reached(self, status: CheckoutStatus) -> bool:
        """True when the checkout is at ``status`` or a later step."""
        if self.status not in STEP_ORDER:
            return False
        return STEP_ORDER.index(self.status) >= STEP_ORDER.index(status)

    def can_proceed_to_payment(self) -> bool:
        return (
            self.has_reached(CheckoutStatus.SHIPPING_INFO)
            and self.has_shipping_address()
            and self.shipping_method_id is not None
        )

    def can_proceed_to_review(self) -> bool:
        return (
            self.can_proceed_to_payment()
            and self.has_reached(CheckoutStatus.PAYMENT_INFO)
            and self.has_billing_address()
            and bool(self.payment_method)
        )

    @property
    def next_step(self) -> CheckoutStatus:
        if self.status in ACTIVE_STATUSES:
            return STEP_ORDER[STEP_ORDER.index(self.status) + 1]
        return self.status

    @property
    def previous_step(self) -> CheckoutStatus:
        if self.status in STEP_ORDER[2:]:
            return STEP_ORDER[STEP_ORDER.index(self.status) - 1]
        return CheckoutStatus.STARTED

    @property
    def step_name(self) -> str:
        return STEP_NAMES.get(self.status, "Unknown")

    @property
    def progress_percentage(self) -> int:
        return PROGRESS.get(self.status, 0)


    def __repr__(self):
        return f'<Checkout(id={self.id}, cart_id={self.cart_id}, status={self.status})>'
