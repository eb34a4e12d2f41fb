"""Coupon validation and discount calculation."""

from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import select

from storefront.enums import CouponFailureReason, DiscountType
from storefront.exceptions import ConflictException
from storefront.models import Coupon
from storefront.schemas.coupon import CouponCreate
from storefront.services.coupon_service import CouponService
from storefront.utils.dates import utcnow


class TestFailureReason:
    """Reasons are checked in a fixed order."""

    async def test_valid_coupon_has_no_reason(self, coupon_service, make_coupon) -> None:
        coupon = await make_coupon()
        assert coupon_service.failure_reason(coupon, Decimal("10.00")) is None

    async def test_inactive(self, coupon_service, make_coupon) -> None:
        coupon = await make_coupon(is_active=False)
        assert coupon_service.failure_reason(coupon, Decimal("10.00")) == CouponFailureReason.INACTIVE

    async def test_expired(self, coupon_service, make_coupon) -> None:
        coupon = await make_coupon(valid_until=utcnow() - timedelta(minutes=1))
        assert coupon_service.failure_reason(coupon, Decimal("10.00")) == CouponFailureReason.EXPIRED

    async def test_not_started(self, coupon_service, make_coupon) -> None:
        coupon = await make_coupon(valid_from=utcnow() + timedelta(days=1))
        assert coupon_service.failure_reason(coupon, Decimal("10.00")) == CouponFailureReason.NOT_STARTED

    async def test_usage_exceeded(self, coupon_service, make_coupon) -> None:
        coupon = await make_coupon(usage_limit=3, used_count=3)
        assert coupon_service.failure_reason(coupon, Decimal("10.00")) == CouponFailureReason.USAGE_EXCEEDED

    async def test_below_minimum_boundary(self, coupon_service, make_coupon) -> None:
        coupon = await make_coupon(min_order_amount=Decimal("50.00"))
        assert coupon_service.failure_reason(coupon, Decimal("49.99")) == CouponFailureReason.BELOW_MINIMUM
        assert coupon_service.failure_reason(coupon, Decimal("50.00")) is None

    async def test_inactive_wins_over_expired(self, coupon_service, make_coupon) -> None:
        coupon = await make_coupon(is_active=False, valid_until=utcnow() - timedelta(days=1))
        assert coupon_service.failure_reason(coupon, Decimal("10.00")) == CouponFailureReason.INACTIVE

    async def test_below_minimum_message_shows_amount(self, coupon_service, make_coupon) -> None:
        coupon = await make_coupon(min_order_amount=Decimal("50.00"))
        message = coupon_service.failure_message(CouponFailureReason.BELOW_MINIMUM, coupon)
        assert message == "Order must be at least $50.00 to use this coupon"


class TestCalculateDiscount:

    async def test_percentage(self, coupon_service, make_coupon) -> None:
        coupon = await make_coupon(discount_value=Decimal("15.00"))
        assert coupon_service.calculate_discount(coupon, Decimal("80.00")) == Decimal("12.00")

    async def test_percentage_rounds_half_up(self, coupon_service, make_coupon) -> None:
        coupon = await make_coupon(discount_value=Decimal("10.00"))
        # 10% of 0.25 is 0.025
        assert coupon_service.calculate_discount(coupon, Decimal("0.25")) == Decimal("0.03")

    async def test_percentage_capped(self, coupon_service, make_coupon) -> None:
        coupon = await make_coupon(discount_value=Decimal("50.00"), max_discount_amount=Decimal("25.00"))
        assert coupon_service.calculate_discount(coupon, Decimal("200.00")) == Decimal("25.00")

    async def test_fixed_never_exceeds_subtotal(self, coupon_service, make_coupon) -> None:
        coupon = await make_coupon(discount_type=DiscountType.FIXED, discount_value=Decimal("20.00"))
        assert coupon_service.calculate_discount(coupon, Decimal("50.00")) == Decimal("20.00")
        assert coupon_service.calculate_discount(coupon, Decimal("12.34")) == Decimal("12.34")


class TestLegacyDiscount:

    @pytest.mark.parametrize(
        "code, subtotal, expected",
        [
            ("SAVE10", Decimal("200.00"), Decimal("20.00")),
            ("SAVE10", Decimal("600.00"), Decimal("50.00")),
            ("save20", Decimal("100.00"), Decimal("20.00")),
            ("SAVE20", Decimal("1000.00"), Decimal("100.00")),
            ("BOGUS", Decimal("100.00"), Decimal("0.00")),
        ],
    )
    def test_legacy_codes(self, coupon_service, code, subtotal, expected) -> None:
        assert coupon_service.legacy_discount(code, subtotal, Decimal("5.00")) == expected

    def test_free_shipping_equals_shipping(self, coupon_service) -> None:
        assert coupon_service.legacy_discount("FREESHIP", Decimal("20.00"), Decimal("10.00")) == Decimal("10.00")

    def test_disabled(self, settings) -> None:
        service = CouponService(settings.model_copy(update={"LEGACY_COUPONS_ENABLED": False}))
        assert service.legacy_discount("SAVE10", Decimal("200.00"), Decimal("0.00")) == Decimal("0.00")


class TestCouponStorage:

    async def test_lookup_ignores_case_and_whitespace(self, coupon_service, make_coupon, db) -> None:
        coupon = await make_coupon(code="WELCOME5")
        found = await coupon_service.get_by_code("  welcome5 ", db)
        assert found is not None
        assert found.id == coupon.id

    async def test_create_normalizes_code(self, coupon_service, db) -> None:
        coupon = await coupon_service.create_coupon(
            CouponCreate(code=" spring ", discount_type=DiscountType.FIXED, discount_value=Decimal("5.00")),
            db,
        )
        assert coupon.code == "SPRING"
        assert coupon.display_discount() == "$5.00 off"

    async def test_create_duplicate_rejected(self, coupon_service, make_coupon, db) -> None:
        await make_coupon(code="DUP")
        with pytest.raises(ConflictException):
            await coupon_service.create_coupon(
                CouponCreate(code="dup", discount_type=DiscountType.PERCENTAGE, discount_value=Decimal("5")),
                db,
            )

    async def test_increment_usage(self, coupon_service, make_coupon, db) -> None:
        coupon = await make_coupon(used_count=2)
        await coupon_service.increment_usage(coupon.id, db)
        await coupon_service.increment_usage(coupon.id, db)
        await db.commit()

        used = (await db.execute(select(Coupon.used_count).where(Coupon.id == coupon.id))).scalar_one()
        assert used == 4

    async def test_increment_stops_at_limit(self, coupon_service, make_coupon, db) -> None:
        coupon = await make_coupon(usage_limit=1)

        assert await coupon_service.increment_usage(coupon.id, db) is True
        assert await coupon_service.increment_usage(coupon.id, db) is False
        await db.commit()

        used = (await db.execute(select(Coupon.used_count).where(Coupon.id == coupon.id))).scalar_one()
        assert used == 1
