from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import func, or_, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from ..core.config import Config, Settings
from ..enums import CouponFailureReason, DiscountType
from ..exceptions import ConflictException
from ..models import Cart, Coupon
from ..schemas.coupon import CouponCreate, normalize_code
from ..utils.dates import to_naive_utc, utcnow
from ..utils.logging import get_logger
from ..utils.money import ZERO, format_currency, round_money, to_decimal

logger = get_logger(__name__)


# Codes that predate the coupons table: (rate, cap). FREESHIP is handled separately.
LEGACY_COUPONS = {
    "SAVE10": (Decimal("0.10"), Decimal("50.00")),
    "SAVE20": (Decimal("0.20"), Decimal("100.00")),
}
LEGACY_FREE_SHIPPING = "FREESHIP"


class CouponService:
    def __init__(self, settings: Settings = Config):
        self.settings = settings

    async def get_by_code(self, code: str, db: AsyncSession) -> Optional[Coupon]:
        """Look a coupon up by code, ignoring case and surrounding whitespace"""
        normalized = normalize_code(code)
        if not normalized:
            return None

        query = select(Coupon).where(func.upper(Coupon.code) == normalized)
        result = await db.execute(query)
        return result.scalars().first()

    async def create_coupon(self, coupon_data: CouponCreate, db: AsyncSession) -> Coupon:
        """Create a coupon; the code is stored normalized"""
        if await self.get_by_code(coupon_data.code, db):
            raise ConflictException(f"Coupon {coupon_data.code} already exists")

        coupon = Coupon(
            code=coupon_data.code,
            discount_type=coupon_data.discount_type,
            discount_value=coupon_data.discount_value,
            min_order_amount=coupon_data.min_order_amount,
            max_discount_amount=coupon_data.max_discount_amount,
            valid_from=to_naive_utc(coupon_data.valid_from),
            valid_until=to_naive_utc(coupon_data.valid_until),
            is_active=coupon_data.is_active,
            usage_limit=coupon_data.usage_limit,
            used_count=0,
            description=coupon_data.description,
        )
        db.add(coupon)
        await db.commit()
        await db.refresh(coupon)

        logger.info(f"Created coupon {coupon.code} ({coupon.display_discount()})")
        return coupon

    def failure_reason(
        self,
        coupon: Coupon,
        subtotal,
        now: Optional[datetime] = None,
    ) -> Optional[CouponFailureReason]:
        """Return why a coupon cannot be used against ``subtotal``, or None when it can."""
        now = now or utcnow()

        if not coupon.is_active:
            return CouponFailureReason.INACTIVE
        if coupon.is_expired(now):
            return CouponFailureReason.EXPIRED
        if coupon.is_not_started(now):
            return CouponFailureReason.NOT_STARTED
        if coupon.is_usage_exceeded():
            return CouponFailureReason.USAGE_EXCEEDED
        if coupon.is_below_minimum(subtotal):
            return CouponFailureReason.BELOW_MINIMUM
        return None

    def is_valid_for_cart(self, coupon: Coupon, cart: Cart, now: Optional[datetime] = None) -> bool:
        return self.failure_reason(coupon, cart.subtotal, now) is None

    def failure_message(self, reason: CouponFailureReason, coupon: Optional[Coupon] = None, currency: str = "USD") -> str:
        if reason == CouponFailureReason.BLANK:
            return "Coupon code cannot be blank"
        if reason == CouponFailureReason.NOT_FOUND:
            return "Invalid coupon code"
        if reason == CouponFailureReason.EXPIRED:
            return "This coupon has expired"
        if reason == CouponFailureReason.NOT_STARTED:
            return "This coupon is not yet valid"
        if reason == CouponFailureReason.USAGE_EXCEEDED:
            return "This coupon has reached its usage limit"
        if reason == CouponFailureReason.BELOW_MINIMUM and coupon is not None:
            minimum = format_currency(coupon.min_order_amount, currency)
            return f"Order must be at least {minimum} to use this coupon"
        return "This coupon cannot be applied to your cart"

    def calculate_discount(self, coupon: Coupon, subtotal) -> Decimal:
        """Discount granted by ``coupon`` on ``subtotal``, rounded half-up to cents."""
        subtotal = to_decimal(subtotal)

        if coupon.discount_type == DiscountType.PERCENTAGE:
            discount = round_money(subtotal * coupon.discount_value / 100)
            if coupon.max_discount_amount is not None:
                discount = min(discount, coupon.max_discount_amount)
            return round_money(discount)

        if coupon.discount_type == DiscountType.FIXED:
            return round_money(min(coupon.discount_value, subtotal))

        return ZERO

    def legacy_discount(self, code: Optional[str], subtotal, shipping_amount) -> Decimal:
        """Discount for carts that carry a bare coupon code with no coupon record behind it."""
        code = normalize_code(code)
        if not code or not self.settings.LEGACY_COUPONS_ENABLED:
            return ZERO

        if code == LEGACY_FREE_SHIPPING:
            return round_money(shipping_amount)

        if code in LEGACY_COUPONS:
            rate, cap = LEGACY_COUPONS[code]
            return min(round_money(to_decimal(subtotal) * rate), cap)

        return ZERO

    async def increment_usage(self, coupon_id: int, db: AsyncSession) -> bool:
        """Count one redemption with a single conditional UPDATE.

        Returns False when the coupon is already at its usage limit, in which
        case nothing was written.
        """
        result = await db.execute(
            update(Coupon)
            .where(
                Coupon.id == coupon_id,
                or_(Coupon.usage_limit.is_(None), Coupon.used_count < Coupon.usage_limit),
            )
            .values(used_count=Coupon.used_count + 1)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1
