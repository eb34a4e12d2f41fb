from decimal import Decimal

from sqlalchemy import Column, Integer, String, Text, Boolean, Numeric
from sqlalchemy.orm import relationship

from ..db.base import Base
from ..models.base import TimeStampMixin


class Product(Base, TimeStampMixin):
    """Catalog product as seen by the pricing core. The catalog itself is managed elsewhere."""
    __tablename__ = "products"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    sku = Column(String, nullable=False, unique=True)
    description = Column(Text, nullable=True)
    price = Column(Numeric(10, 2), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    track_inventory = Column(Boolean, default=True, nullable=False)
    inventory_quantity = Column(Integer, default=0, nullable=False)
    allow_backorders = Column(Boolean, default=False, nullable=False)
    taxable = Column(Boolean, default=True, nullable=False)
    requires_shipping = Column(Boolean, default=True, nullable=False)
    weight = Column(Numeric(10, 3), nullable=True)  # kg

    # Relationships
    cart_items = relationship("CartItem", back_populates="product")

    def is_in_stock(self) -> bool:
        return not self.track_inventory or self.inventory_quantity > 0 or self.allow_backorders

    def enforces_inventory(self) -> bool:
        return bool(self.track_inventory and not self.allow_backorders)

    @property
    def weight_kg(self) -> Decimal:
        return self.weight if self.weight is not None else Decimal("0")


    def __repr__(self):
        return f"<Product(id={self.id}, sku={self.sku}, price={self.price}, is_active={self.is_active})>"
