"""Model helpers that need no database."""

from datetime import timedelta
from decimal import Decimal

import pytest
from pydantic import ValidationError

from storefront.enums import CheckoutStatus, DiscountType
from storefront.models import CartItem, Checkout, Coupon, Product, ShippingMethod
from storefront.schemas.address import Address, field_errors
from storefront.utils.dates import utcnow
from storefront.utils.money import format_currency, round_money


def make_item(quantity=2, unit_price="30.00", **product_fields) -> CartItem:
    fields = dict(name="Lamp", sku="LAMP", price=Decimal(unit_price), is_active=True,
                  track_inventory=False, inventory_quantity=0, allow_backorders=False)
    fields.update(product_fields)
    product = Product(**fields)
    return CartItem(product=product, product_id=1, quantity=quantity,
                    unit_price=Decimal(unit_price), product_name="Lamp")


class TestMoney:

    def test_round_half_up(self) -> None:
        assert round_money(Decimal("2.675")) == Decimal("2.68")
        assert round_money(Decimal("0.005")) == Decimal("0.01")

    def test_format_currency(self) -> None:
        assert format_currency(Decimal("1234.5")) == "$1,234.50"
        assert format_currency(Decimal("0")) == "$0.00"
        assert format_currency(Decimal("10"), "EUR") == "€10.00"


class TestCartItem:

    def test_total_price(self) -> None:
        assert make_item(quantity=3, unit_price="19.99").total_price == Decimal("59.97")

    def test_max_quantity_addable_untracked(self) -> None:
        assert make_item(quantity=10).max_quantity_addable() == 989

    def test_max_quantity_addable_tracked(self) -> None:
        item = make_item(quantity=3, track_inventory=True, inventory_quantity=5)
        assert item.max_quantity_addable() == 2

    def test_out_of_stock_is_unavailable(self) -> None:
        item = make_item(track_inventory=True, inventory_quantity=0)
        assert not item.is_available()

    def test_refresh_price(self) -> None:
        item = make_item(unit_price="30.00")
        item.product.price = Decimal("27.50")

        assert item.price_changed()
        assert item.refresh_price()
        assert item.unit_price == Decimal("27.50")
        assert not item.refresh_price()

    def test_formatted_options(self) -> None:
        item = make_item()
        item.product_options = {"size": "L", "color": "blue"}
        assert item.formatted_options() == "size: L, color: blue"


class TestCoupon:

    def test_display_discount(self) -> None:
        assert Coupon(discount_type=DiscountType.PERCENTAGE, discount_value=Decimal("15")).display_discount() == "15% off"
        assert Coupon(discount_type=DiscountType.FIXED, discount_value=Decimal("5")).display_discount() == "$5.00 off"

    def test_no_minimum(self) -> None:
        assert not Coupon(min_order_amount=None).is_below_minimum(Decimal("0.01"))


class TestShippingMethod:

    def test_cost_by_weight(self) -> None:
        method = ShippingMethod(base_cost=Decimal("5.00"), cost_per_kg=Decimal("1.25"))
        assert method.calculate_cost(Decimal("2.5"), Decimal("40.00")) == Decimal("8.13")

    def test_free_above_threshold(self) -> None:
        method = ShippingMethod(base_cost=Decimal("5.00"), free_shipping_threshold=Decimal("75.00"))
        assert method.calculate_cost(Decimal("1"), Decimal("75.00")) == Decimal("0.00")
        assert method.calculate_cost(Decimal("1"), Decimal("74.99")) == Decimal("5.00")

    def test_delivery_estimate(self) -> None:
        assert ShippingMethod(min_delivery_days=1, max_delivery_days=1).delivery_estimate() == "1 business day"
        assert ShippingMethod(name="Ground", min_delivery_days=3, max_delivery_days=5).display_name_with_time() == (
            "Ground (3-5 business days)"
        )


class TestAddress:

    def test_normalizes_input(self, address_data) -> None:
        address = Address.model_validate({**address_data, "city": "  Springfield ", "company": ""})
        assert address.city == "Springfield"
        assert address.country == "US"
        assert address.company is None

    def test_storage_round_trip(self, address_data) -> None:
        address = Address.model_validate(address_data)
        assert Address.from_storage(address.to_storage()) == address

    def test_unreadable_storage_is_none(self) -> None:
        assert Address.from_storage({"city": "Nowhere"}) is None
        assert Address.from_storage(None) is None

    def test_invalid_phone(self, address_data) -> None:
        with pytest.raises(ValidationError) as exc_info:
            Address.model_validate({**address_data, "phone": "abc"})
        assert "address.phone" in field_errors(exc_info.value, prefix="address")

    def test_formatted(self, address_data) -> None:
        address = Address.model_validate(address_data)
        assert address.formatted() == "Jane Doe\n123 Main St\nSpringfield, IL 62704\nUS"


class TestCheckoutSteps:

    def test_progress_follows_status(self) -> None:
        checkout = Checkout(status=CheckoutStatus.STARTED)
        assert checkout.progress_percentage == 25
        assert checkout.next_step == CheckoutStatus.SHIPPING_INFO
        assert checkout.previous_step == CheckoutStatus.STARTED

        checkout.status = CheckoutStatus.PAYMENT_INFO
        assert checkout.progress_percentage == 75
        assert checkout.step_name == "Payment Information"
        assert checkout.previous_step == CheckoutStatus.SHIPPING_INFO

    def test_has_reached(self) -> None:
        checkout = Checkout(status=CheckoutStatus.REVIEW)
        assert checkout.has_reached(CheckoutStatus.PAYMENT_INFO)
        assert not Checkout(status=CheckoutStatus.CANCELLED).has_reached(CheckoutStatus.STARTED)

    def test_address_helpers(self, address_data) -> None:
        checkout = Checkout(status=CheckoutStatus.PAYMENT_INFO, shipping_method_id=1)
        checkout.shipping_address_data = Address.model_validate(address_data)

        assert checkout.has_shipping_address()
        assert checkout.can_proceed_to_payment()
        assert not checkout.same_as_shipping()

        checkout.billing_address_data = checkout.shipping_address_data
        assert checkout.same_as_shipping()

    def test_expiry(self) -> None:
        assert Checkout(expires_at=utcnow() - timedelta(seconds=1)).is_expired()
        assert not Checkout(expires_at=utcnow() + timedelta(hours=1)).is_expired()
