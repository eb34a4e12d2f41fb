from decimal import Decimal

from sqlalchemy import Column, Integer, ForeignKey, DateTime, Numeric, String, JSON, UniqueConstraint
from sqlalchemy.orm import relationship

from ..db.base import Base
from ..models.base import TimeStampMixin
from ..utils.dates import utcnow
from ..utils.money import round_money

MAX_QUANTITY = 999


class CartItem(Base, TimeStampMixin):
    __tablename__ = "cart_items"
    __table_args__ = (
        UniqueConstraint("cart_id", "product_id", name="uq_cart_items_cart_product"),
    )

    id = Column(Integer, primary_key=True, index=True)
    cart_id = Column(Integer, ForeignKey("carts.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False)
    quantity = Column(Integer, default=1, nullable=False)
    unit_price = Column(Numeric(10, 2), nullable=False)  # price snapshot taken when first added
    product_name = Column(String, nullable=False)
    product_options = Column(JSON, nullable=True)
    added_at = Column(DateTime, default=utcnow)

    # Relationships
    cart = relationship("Cart", back_populates="items")
    product = relationship("Product", back_populates="cart_items")

    # The methods below read self.product; load it with selectinload before calling them.

    @property
    def total_price(self) -> Decimal:
        return round_money(self.unit_price * self.quantity)

    def is_available(self) -> bool:
        return self.product is not None and bool(self.product.is_active) and self.product.is_in_stock()

    def max_quantity_addable(self, max_quantity: int = MAX_QUANTITY) -> int:
        if self.product.enforces_inventory():
            return max(self.product.inventory_quantity - self.quantity, 0)
        return max_quantity - self.quantity

    def price_changed(self) -> bool:
        return self.unit_price != self.product.price

    def refresh_price(self) -> bool:
        """Take the current product price; returns True when it differed"""
        if not self.price_changed():
            return False
        self.unit_price = self.product.price
        return True

    def formatted_options(self) -> str:
        if not self.product_options:
            return ""
        return ", ".join(f"{name}: {value}" for name, value in self.product_options.items())


    def __repr__(self):
        return f'<CartItem(cart_id={self.cart_id}, product_id={self.product_id}, quantity={self.quantity})>'
