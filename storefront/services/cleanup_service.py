from datetime import datetime, timedelta
from typing import Dict, Optional

from sqlalchemy import delete, exists, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.config import Config, Settings
from ..enums import CartStatus, CheckoutStatus
from ..models import Cart, CartItem, Checkout, Order
from ..models.checkout import ACTIVE_STATUSES
from ..utils.dates import utcnow
from ..utils.logging import get_logger

logger = get_logger(__name__)


class CleanupService:
    """Periodic housekeeping for carts and checkouts that were left behind."""

    def __init__(self, settings: Settings = Config):
        self.settings = settings

    async def abandon_stale_carts(self, db: AsyncSession, now: Optional[datetime] = None) -> Dict[str, int]:
        """
        Sweep guest and expired carts.

        - Empty guest carts older than ``EMPTY_GUEST_CART_TTL_HOURS`` are deleted.
        - Active guest carts with items older than ``GUEST_CART_TTL_DAYS`` are abandoned.
        - Any active cart past its ``expires_at`` is abandoned.

        Converted and already abandoned carts are never touched.

        Returns:
            dict: how many carts were deleted, abandoned as old, and abandoned as expired.
        """
        now = now or utcnow()
        logger.info("Starting cart cleanup")

        has_items = exists().where(CartItem.cart_id == Cart.id)
        has_checkouts = exists().where(Checkout.cart_id == Cart.id)
        has_orders = exists().where(Order.cart_id == Cart.id)

        try:
            deleted = await db.execute(
                delete(Cart)
                .where(
                    Cart.user_id.is_(None),
                    Cart.status == CartStatus.ACTIVE,
                    Cart.created_at < now - timedelta(hours=self.settings.EMPTY_GUEST_CART_TTL_HOURS),
                    ~has_items,
                    ~has_checkouts,
                    ~has_orders,
                )
                .execution_options(synchronize_session=False)
            )

            old_guest = await db.execute(
                update(Cart)
                .where(
                    Cart.user_id.is_(None),
                    Cart.status == CartStatus.ACTIVE,
                    Cart.created_at < now - timedelta(days=self.settings.GUEST_CART_TTL_DAYS),
                    has_items,
                )
                .values(status=CartStatus.ABANDONED, updated_at=now)
                .execution_options(synchronize_session=False)
            )

            expired = await db.execute(
                update(Cart)
                .where(
                    Cart.status == CartStatus.ACTIVE,
                    Cart.expires_at.is_not(None),
                    Cart.expires_at < now,
                )
                .values(status=CartStatus.ABANDONED, updated_at=now)
                .execution_options(synchronize_session=False)
            )

            await db.commit()
        except Exception as e:
            logger.error(f"Cart cleanup failed: {e}", exc_info=True)
            await db.rollback()
            raise

        counts = {
            "deleted_empty_guest_carts": deleted.rowcount,
            "abandoned_old_guest_carts": old_guest.rowcount,
            "abandoned_expired_carts": expired.rowcount,
        }
        logger.info(
            f"Cart cleanup: deleted {counts['deleted_empty_guest_carts']} empty guest carts, "
            f"abandoned {counts['abandoned_old_guest_carts']} old guest carts with items, "
            f"abandoned {counts['abandoned_expired_carts']} expired carts"
        )
        return counts

    async def expire_checkouts(self, db: AsyncSession, now: Optional[datetime] = None) -> int:
        """Cancel open checkouts whose session ran out"""
        now = now or utcnow()

        try:
            result = await db.execute(
                update(Checkout)
                .where(Checkout.status.in_(ACTIVE_STATUSES), Checkout.expires_at < now)
                .values(status=CheckoutStatus.CANCELLED, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            await db.commit()
        except Exception as e:
            logger.error(f"Checkout expiry failed: {e}", exc_info=True)
            await db.rollback()
            raise

        logger.info(f"Cancelled {result.rowcount} expired checkouts")
        return result.rowcount
