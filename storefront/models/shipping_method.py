from decimal import Decimal

from sqlalchemy import Column, Integer, String, Boolean, Numeric

from ..db.base import Base
from ..models.base import TimeStampMixin
from ..utils.money import round_money, to_decimal


class ShippingMethod(Base, TimeStampMixin):
    __tablename__ = "shipping_methods"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False)
    description = Column(String(500), nullable=False, default="")
    carrier = Column(String(50), nullable=False)
    base_cost = Column(Numeric(10, 2), nullable=False, default=Decimal("0.00"))
    cost_per_kg = Column(Numeric(10, 2), nullable=True)
    free_shipping_threshold = Column(Numeric(10, 2), nullable=True)
    min_delivery_days = Column(Integer, nullable=False, default=1)
    max_delivery_days = Column(Integer, nullable=False, default=1)
    is_active = Column(Boolean, default=True, nullable=False)
    sort_order = Column(Integer, default=0, nullable=False)

    def is_free_shipping_eligible(self, cart_total) -> bool:
        return self.free_shipping_threshold is not None and to_decimal(cart_total) >= self.free_shipping_threshold

    def calculate_cost(self, weight_kg=0, cart_total=0) -> Decimal:
        """Committed shipping cost for a cart of the given weight and subtotal."""
        if self.is_free_shipping_eligible(cart_total):
            return Decimal("0.00")

        weight_kg = to_decimal(weight_kg)
        cost = to_decimal(self.base_cost)
        if self.cost_per_kg is not None and weight_kg > 0:
            cost += self.cost_per_kg * weight_kg
        return round_money(cost)

    def delivery_estimate(self) -> str:
        if self.min_delivery_days == self.max_delivery_days:
            unit = "day" if self.min_delivery_days == 1 else "days"
            return f"{self.min_delivery_days} business {unit}"
        return f"{self.min_delivery_days}-{self.max_delivery_days} business days"

    def display_name_with_time(self) -> str:
        return f"{self.name} ({self.delivery_estimate()})"


    def __repr__(self):
        return f"<ShippingMethod(id={self.id}, name={self.name}, carrier={self.carrier})>"
