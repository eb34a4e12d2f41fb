from decimal import Decimal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Settings class to retrieve environment variables.

    Pricing policy (tax rate, shipping tiers) and lifetimes of carts and
    checkout sessions live here so they can be tuned per deployment.
    """

    DATABASE_URL: str = "sqlite+aiosqlite:///./storefront.db"
    LOG_LEVEL: str = "INFO"

    DEFAULT_CURRENCY: str = "USD"

    # Pricing policy
    TAX_RATE: Decimal = Decimal("0.08")
    FREE_SHIPPING_THRESHOLD: Decimal = Decimal("100.00")
    REDUCED_SHIPPING_THRESHOLD: Decimal = Decimal("50.00")
    REDUCED_SHIPPING_COST: Decimal = Decimal("5.00")
    STANDARD_SHIPPING_COST: Decimal = Decimal("10.00")
    LEGACY_COUPONS_ENABLED: bool = True

    # Cart items
    MAX_ITEM_QUANTITY: int = 999

    # Lifetimes
    GUEST_CART_TTL_DAYS: int = 7
    USER_CART_TTL_DAYS: int = 30
    CHECKOUT_TTL_HOURS: int = 2
    EMPTY_GUEST_CART_TTL_HOURS: int = 1

    model_config = SettingsConfigDict(
        env_file='.env',
        extra='ignore',
    )


Config = Settings()
