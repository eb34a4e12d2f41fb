"""Pytest configuration and shared fixtures."""

import itertools
from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from storefront import models  # noqa: F401
from storefront.core.config import Settings
from storefront.db.base import Base
from storefront.enums import DiscountType
from storefront.models import Coupon, Product, ShippingMethod
from storefront.schemas.cart import OwnerContext
from storefront.services.cart_service import CartService
from storefront.services.checkout_service import CheckoutService
from storefront.services.cleanup_service import CleanupService
from storefront.services.coupon_service import CouponService
from storefront.utils.dates import utcnow

_sequence = itertools.count(1)


@pytest.fixture
async def engine():
    """In-memory database shared by every connection of one test."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def settings() -> Settings:
    return Settings(
        TAX_RATE=Decimal("0.08"),
        FREE_SHIPPING_THRESHOLD=Decimal("100.00"),
        REDUCED_SHIPPING_THRESHOLD=Decimal("50.00"),
        REDUCED_SHIPPING_COST=Decimal("5.00"),
        STANDARD_SHIPPING_COST=Decimal("10.00"),
        LEGACY_COUPONS_ENABLED=True,
    )


@pytest.fixture
def coupon_service(settings) -> CouponService:
    return CouponService(settings)


@pytest.fixture
def cart_service(settings, coupon_service) -> CartService:
    return CartService(settings, coupon_service)


@pytest.fixture
def checkout_service(settings, cart_service) -> CheckoutService:
    return CheckoutService(settings, cart_service)


@pytest.fixture
def cleanup_service(settings) -> CleanupService:
    return CleanupService(settings)


@pytest.fixture
def guest() -> OwnerContext:
    return OwnerContext(session_id="guest-session-1")


@pytest.fixture
def user() -> OwnerContext:
    return OwnerContext(user_id=42)


@pytest.fixture
def make_product(db):
    """Factory for catalog products; untracked inventory and $30.00 unless overridden."""
    async def factory(**overrides) -> Product:
        number = next(_sequence)
        data = dict(
            name=f"Product {number}",
            sku=f"SKU-{number:05d}",
            price=Decimal("30.00"),
            is_active=True,
            track_inventory=False,
            inventory_quantity=0,
            allow_backorders=False,
            taxable=True,
            requires_shipping=True,
            weight=Decimal("1.000"),
        )
        data.update(overrides)
        product = Product(**data)
        db.add(product)
        await db.commit()
        return product

    return factory


@pytest.fixture
def make_shipping_method(db):
    async def factory(**overrides) -> ShippingMethod:
        data = dict(
            name="Standard",
            description="Ground delivery",
            carrier="UPS",
            base_cost=Decimal("7.50"),
            cost_per_kg=None,
            free_shipping_threshold=None,
            min_delivery_days=3,
            max_delivery_days=5,
            is_active=True,
        )
        data.update(overrides)
        method = ShippingMethod(**data)
        db.add(method)
        await db.commit()
        return method

    return factory


@pytest.fixture
def make_coupon(db):
    """Factory for coupons; a 10% coupon valid since yesterday unless overridden."""
    async def factory(**overrides) -> Coupon:
        number = next(_sequence)
        data = dict(
            code=f"COUPON{number}",
            discount_type=DiscountType.PERCENTAGE,
            discount_value=Decimal("10.00"),
            min_order_amount=None,
            max_discount_amount=None,
            valid_from=utcnow() - timedelta(days=1),
            valid_until=utcnow() + timedelta(days=30),
            is_active=True,
            usage_limit=None,
            used_count=0,
        )
        data.update(overrides)
        coupon = Coupon(**data)
        db.add(coupon)
        await db.commit()
        return coupon

    return factory


@pytest.fixture
def address_data() -> dict:
    return {
        "first_name": "Jane",
        "last_name": "Doe",
        "address_line_1": "123 Main St",
        "city": "Springfield",
        "state_province": "IL",
        "postal_code": "62704",
        "country": "us",
        "phone": "+1 555 123 4567",
    }
