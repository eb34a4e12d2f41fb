from .product import Product
from .shipping_method import ShippingMethod
from .coupon import Coupon
from .cart import Cart
from .cart_item import CartItem
from .checkout import Checkout
from .order import Order
from .order_item import OrderItem


__all__ = [
    "Product",
    "ShippingMethod",
    "Coupon",
    "Cart",
    "CartItem",
    "Checkout",
    "Order",
    "OrderItem",
]
