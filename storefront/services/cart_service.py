from datetime import timedelta
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import delete, exists, inspect, or_, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from sqlalchemy.orm import selectinload

from ..core.config import Config, Settings
from ..enums import CartStatus, CheckoutStatus, CouponFailureReason
from ..exceptions import (
    BadRequestException,
    CartNotActiveError,
    InsufficientInventoryError,
    InvalidQuantityError,
    NotFoundException,
    ProductUnavailableError,
)
from ..models import Cart, CartItem, Checkout, Coupon, Order, Product
from ..models.checkout import ACTIVE_STATUSES
from ..schemas.cart import CartItemResponse, CartSummary, OwnerContext
from ..schemas.coupon import CouponResult, normalize_code
from ..services.coupon_service import CouponService
from ..utils.dates import utcnow
from ..utils.logging import get_logger
from ..utils.money import ZERO, format_currency, round_money

logger = get_logger(__name__)


class CartService:
    """
    Cart aggregate: line items plus the totals derived from them.

    Every public mutation validates first, then changes items, recomputes the
    totals and commits in one transaction. A failure after validation rolls
    the whole change back.
    """

    def __init__(self, settings: Settings = Config, coupon_service: Optional[CouponService] = None):
        self.settings = settings
        self.coupon_service = coupon_service or CouponService(settings)

    # -- lookup ---------------------------------------------------------------

    async def resolve_cart(self, owner: OwnerContext, db: AsyncSession) -> Cart:
        """Return the active cart for ``owner``, creating it on first access.

        A signed-in user keeps one active cart; a guest cart still attached to
        the same session is merged into it. Guests get a new cart once theirs
        has expired.
        """
        if owner.user_id is None and not owner.session_id:
            raise BadRequestException("A user id or a session id is required to resolve a cart")

        if owner.user_id is not None:
            cart = await self._find_active_cart(db, user_id=owner.user_id)
            if cart is None:
                cart = await self._create_cart(owner, self.settings.USER_CART_TTL_DAYS, db)

            if owner.session_id:
                guest_cart = await self._find_active_cart(db, session_id=owner.session_id)
                if guest_cart is not None and guest_cart.id != cart.id:
                    await self.merge_with(cart, guest_cart, db)
            return cart

        cart = await self._find_active_cart(db, session_id=owner.session_id)
        if cart is None or cart.is_expired():
            cart = await self._create_cart(owner, self.settings.GUEST_CART_TTL_DAYS, db)
        return cart

    async def get_cart(self, cart_id: int, db: AsyncSession) -> Cart:
        cart = await db.get(Cart, cart_id)
        if not cart:
            raise NotFoundException(f"Cart with ID {cart_id} not found")
        return cart

    async def get_items(self, cart: Cart, db: AsyncSession) -> List[CartItem]:
        """Cart lines with their products loaded, oldest first"""
        query = (
            select(CartItem)
            .options(selectinload(CartItem.product))
            .where(CartItem.cart_id == cart.id)
            .order_by(CartItem.id)
            .execution_options(populate_existing=True)
        )
        result = await db.execute(query)
        return list(result.scalars().all())

    async def _find_active_cart(
        self,
        db: AsyncSession,
        user_id: Optional[int] = None,
        session_id: Optional[str] = None,
    ) -> Optional[Cart]:
        query = select(Cart).where(Cart.status == CartStatus.ACTIVE)
        if user_id is not None:
            query = query.where(Cart.user_id == user_id)
        else:
            query = query.where(Cart.session_id == session_id, Cart.user_id.is_(None))

        result = await db.execute(query.order_by(Cart.created_at.desc(), Cart.id.desc()))
        return result.scalars().first()

    async def _create_cart(self, owner: OwnerContext, ttl_days: int, db: AsyncSession) -> Cart:
        cart = Cart(
            user_id=owner.user_id,
            session_id=owner.session_id,
            status=CartStatus.ACTIVE,
            currency=self.settings.DEFAULT_CURRENCY,
            subtotal=ZERO,
            tax_amount=ZERO,
            shipping_amount=ZERO,
            discount_amount=ZERO,
            total=ZERO,
            expires_at=utcnow() + timedelta(days=ttl_days),
        )
        db.add(cart)
        await db.commit()
        await db.refresh(cart)

        owner_label = f"user {owner.user_id}" if owner.user_id is not None else f"guest session {owner.session_id}"
        logger.info(f"Created cart {cart.id} for {owner_label}")
        return cart

    async def _get_item(self, cart: Cart, item_id: int, db: AsyncSession) -> CartItem:
        query = (
            select(CartItem)
            .options(selectinload(CartItem.product))
            .where(CartItem.id == item_id, CartItem.cart_id == cart.id)
            .execution_options(populate_existing=True)
        )
        result = await db.execute(query)
        item = result.scalars().first()

        if not item:
            raise NotFoundException(f"Cart item with ID {item_id} not found")
        return item

    async def _get_product(self, product_id: int, db: AsyncSession) -> Product:
        product = await db.get(Product, product_id)
        if not product:
            raise NotFoundException(f"Product with ID {product_id} not found")
        return product

    # -- validation -----------------------------------------------------------

    def _ensure_active(self, cart: Cart) -> None:
        if not cart.is_active():
            raise CartNotActiveError()

    def clamp_quantity(self, quantity: int) -> int:
        return max(1, min(int(quantity), self.settings.MAX_ITEM_QUANTITY))

    def validate_line(self, product: Product, quantity: int, current_quantity: int = 0) -> None:
        """Check a prospective line quantity against the product.

        ``current_quantity`` is what the cart already holds, used to report
        how many more units could still be added.
        """
        if not product.is_active:
            raise ProductUnavailableError(f"{product.name} is not available")

        if quantity <= 0 or quantity > self.settings.MAX_ITEM_QUANTITY:
            raise InvalidQuantityError(f"Quantity must be between 1 and {self.settings.MAX_ITEM_QUANTITY}")

        if product.enforces_inventory() and quantity > product.inventory_quantity:
            raise InsufficientInventoryError(
                product_name=product.name,
                available=product.inventory_quantity,
                max_addable=max(product.inventory_quantity - current_quantity, 0),
            )

    # -- mutations ------------------------------------------------------------

    async def add_item(
        self,
        cart: Cart,
        product_id: int,
        quantity: int,
        db: AsyncSession,
        options: Optional[dict] = None,
        _retry: bool = True,
    ) -> CartItem:
        """Add ``quantity`` units of a product, incrementing the existing line if there is one"""
        self._ensure_active(cart)
        product = await self._get_product(product_id, db)
        quantity = self.clamp_quantity(quantity)

        query = select(CartItem).where(CartItem.cart_id == cart.id, CartItem.product_id == product_id)
        result = await db.execute(query)
        existing_item = result.scalars().first()

        if existing_item:
            new_quantity = existing_item.quantity + quantity
            self.validate_line(product, new_quantity, current_quantity=existing_item.quantity)
        else:
            self.validate_line(product, quantity)

        try:
            if existing_item:
                logger.info(
                    f"Product {product_id} already in cart {cart.id}, increasing quantity "
                    f"from {existing_item.quantity} to {new_quantity}"
                )
                existing_item.quantity = new_quantity
                if options:
                    existing_item.product_options = options
                item_id = existing_item.id
            else:
                logger.info(f"Adding product {product_id} x{quantity} to cart {cart.id}")
                new_item = CartItem(
                    cart_id=cart.id,
                    product_id=product.id,
                    quantity=quantity,
                    unit_price=product.price,
                    product_name=product.name,
                    product_options=options,
                    added_at=utcnow(),
                )
                db.add(new_item)
                await db.flush()
                item_id = new_item.id

            items = await self.recalculate(cart, db)
            await db.commit()

        except IntegrityError:
            # a concurrent request inserted the same product first; add onto its line instead
            await self._rollback(db, cart)
            if not _retry:
                raise
            logger.warning(f"Concurrent insert of product {product_id} into cart {cart.id}, retrying as increment")
            return await self.add_item(cart, product_id, quantity, db, options=options, _retry=False)

        except Exception:
            logger.error(f"Failed to add product {product_id} to cart {cart.id}", exc_info=True)
            await self._rollback(db, cart)
            raise

        return next(item for item in items if item.id == item_id)

    async def update_item_quantity(
        self,
        cart: Cart,
        item_id: int,
        quantity: int,
        db: AsyncSession,
    ) -> Optional[CartItem]:
        """Set a line's quantity. Zero or less removes the line and returns None."""
        self._ensure_active(cart)
        item = await self._get_item(cart, item_id, db)

        if quantity <= 0:
            await self.remove_item(cart, item_id, db)
            return None

        self.validate_line(item.product, quantity, current_quantity=item.quantity)

        try:
            logger.info(f"Updating cart item {item_id} in cart {cart.id} from {item.quantity} to {quantity}")
            item.quantity = quantity
            items = await self.recalculate(cart, db)
            await db.commit()
        except Exception:
            logger.error(f"Failed to update cart item {item_id} in cart {cart.id}", exc_info=True)
            await self._rollback(db, cart, item)
            raise

        return next(line for line in items if line.id == item_id)

    async def remove_item(self, cart: Cart, item_id: int, db: AsyncSession) -> bool:
        """Remove a line from the cart"""
        self._ensure_active(cart)
        item = await self._get_item(cart, item_id, db)

        try:
            await db.delete(item)
            await db.flush()
            await self.recalculate(cart, db)
            await db.commit()
        except Exception:
            logger.error(f"Failed to remove cart item {item_id} from cart {cart.id}", exc_info=True)
            await self._rollback(db, cart)
            raise

        logger.info(f"Removed cart item {item_id} from cart {cart.id}")
        return True

    async def clear(self, cart: Cart, db: AsyncSession) -> Cart:
        """Remove all lines from the cart"""
        self._ensure_active(cart)

        try:
            await db.execute(delete(CartItem).where(CartItem.cart_id == cart.id))
            await self.recalculate(cart, db)
            await db.commit()
        except Exception:
            logger.error(f"Failed to clear cart {cart.id}", exc_info=True)
            await self._rollback(db, cart)
            raise

        logger.info(f"Cleared cart {cart.id}")
        return cart

    async def merge_with(self, cart: Cart, other_cart: Cart, db: AsyncSession) -> Cart:
        """Fold ``other_cart`` into ``cart`` and delete it.

        Quantities of products present in both carts are summed without an
        inventory check; stock is enforced again when the user edits the line
        or checks out. Open checkouts of ``other_cart`` are cancelled. When
        checkouts or orders still reference it, the emptied cart is kept as
        abandoned instead of deleted.
        """
        if other_cart is None or other_cart.id == cart.id:
            return cart

        self._ensure_active(cart)
        own_items = {item.product_id: item for item in await self.get_items(cart, db)}
        other_items = await self.get_items(other_cart, db)

        try:
            for item in other_items:
                existing_item = own_items.get(item.product_id)
                if existing_item:
                    existing_item.quantity += item.quantity
                    await db.delete(item)
                else:
                    item.cart_id = cart.id
            await db.flush()

            await db.execute(
                update(Checkout)
                .where(Checkout.cart_id == other_cart.id, Checkout.status.in_(ACTIVE_STATUSES))
                .values(status=CheckoutStatus.CANCELLED)
                .execution_options(synchronize_session="fetch")
            )

            referenced = await db.execute(
                select(
                    or_(
                        exists().where(Checkout.cart_id == other_cart.id),
                        exists().where(Order.cart_id == other_cart.id),
                    )
                )
            )
            if referenced.scalar():
                other_cart.status = CartStatus.ABANDONED
                other_cart.coupon_id = None
                other_cart.coupon_code = None
                await self.recalculate(other_cart, db)
            else:
                await db.execute(delete(Cart).where(Cart.id == other_cart.id))
            await self.recalculate(cart, db)
            await db.commit()
        except Exception:
            logger.error(f"Failed to merge cart {other_cart.id} into cart {cart.id}", exc_info=True)
            await self._rollback(db, cart, other_cart)
            raise

        logger.info(f"Merged cart {other_cart.id} ({len(other_items)} lines) into cart {cart.id}")
        return cart

    async def refresh_prices(self, cart: Cart, db: AsyncSession) -> int:
        """Re-snapshot unit prices from the current product prices; returns the number of lines changed"""
        self._ensure_active(cart)
        changed = 0

        try:
            for item in await self.get_items(cart, db):
                if item.product is not None and item.refresh_price():
                    changed += 1
            await self.recalculate(cart, db)
            await db.commit()
        except Exception:
            logger.error(f"Failed to refresh prices of cart {cart.id}", exc_info=True)
            await self._rollback(db, cart)
            raise

        if changed:
            logger.info(f"Updated {changed} stale prices in cart {cart.id}")
        return changed

    async def reserve_inventory(self, items: List[CartItem], db: AsyncSession) -> None:
        """Re-check every line and take tracked stock for it. The caller owns the transaction.

        Each decrement is a conditional UPDATE, so two orders racing for the
        last units cannot both take them.
        """
        for item in items:
            product = item.product
            if product is None:
                raise ProductUnavailableError(f"{item.product_name} is no longer available")
            self.validate_line(product, item.quantity, current_quantity=item.quantity)

            if not product.track_inventory:
                continue

            query = update(Product).where(Product.id == product.id)
            if not product.allow_backorders:
                query = query.where(Product.inventory_quantity >= item.quantity)
            result = await db.execute(
                query
                .values(inventory_quantity=Product.inventory_quantity - item.quantity)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                logger.warning(f"Stock for product {product.id} ran out while placing cart {item.cart_id}")
                raise InsufficientInventoryError(product_name=product.name, available=0, max_addable=0)

    def mark_converted(self, cart: Cart) -> None:
        """Flag the cart as turned into an order. The caller owns the transaction."""
        cart.status = CartStatus.CONVERTED

    # -- coupons --------------------------------------------------------------

    async def apply_coupon(self, cart: Cart, code: Optional[str], db: AsyncSession) -> CouponResult:
        """Attach a coupon to the cart"""
        self._ensure_active(cart)

        if not normalize_code(code):
            return self._coupon_failure(CouponFailureReason.BLANK)

        coupon = await self.coupon_service.get_by_code(code, db)
        if not coupon:
            logger.warning(f"Unknown coupon code {normalize_code(code)} for cart {cart.id}")
            return self._coupon_failure(CouponFailureReason.NOT_FOUND, code=normalize_code(code))

        reason = self.coupon_service.failure_reason(coupon, cart.subtotal)
        if reason is not None:
            logger.warning(f"Coupon {coupon.code} rejected for cart {cart.id}: {reason.value}")
            return self._coupon_failure(reason, coupon=coupon, code=coupon.code, currency=cart.currency)

        try:
            cart.coupon_id = coupon.id
            cart.coupon_code = coupon.code
            await self.recalculate(cart, db)
            await db.commit()
        except Exception:
            logger.error(f"Failed to apply coupon {coupon.code} to cart {cart.id}", exc_info=True)
            await self._rollback(db, cart)
            raise

        savings = format_currency(cart.discount_amount, cart.currency)
        logger.info(f"Applied coupon {coupon.code} to cart {cart.id}, discount {cart.discount_amount}")
        return CouponResult(
            success=True,
            message=f"Coupon applied successfully! You saved {savings}",
            code=coupon.code,
            discount_amount=cart.discount_amount,
        )

    async def remove_coupon(self, cart: Cart, db: AsyncSession) -> CouponResult:
        """Detach any coupon from the cart"""
        try:
            cart.coupon_id = None
            cart.coupon_code = None
            await self.recalculate(cart, db)
            await db.commit()
        except Exception:
            logger.error(f"Failed to remove coupon from cart {cart.id}", exc_info=True)
            await self._rollback(db, cart)
            raise

        return CouponResult(success=True, message="Coupon removed")

    def _coupon_failure(
        self,
        reason: CouponFailureReason,
        coupon: Optional[Coupon] = None,
        code: Optional[str] = None,
        currency: str = "USD",
    ) -> CouponResult:
        return CouponResult(
            success=False,
            message=self.coupon_service.failure_message(reason, coupon, currency),
            reason=reason,
            code=code,
        )

    # -- totals ---------------------------------------------------------------

    def estimate_shipping(self, subtotal: Decimal, has_physical_products: bool) -> Decimal:
        """Provisional shipping shown before a shipping method is chosen.

        Checkout replaces it with the chosen method's own cost.
        """
        if not has_physical_products:
            return ZERO
        if subtotal >= self.settings.FREE_SHIPPING_THRESHOLD:
            return ZERO
        if subtotal >= self.settings.REDUCED_SHIPPING_THRESHOLD:
            return round_money(self.settings.REDUCED_SHIPPING_COST)
        return round_money(self.settings.STANDARD_SHIPPING_COST)

    async def recalculate_totals(self, cart: Cart, db: AsyncSession) -> Cart:
        """Recompute and persist the cart totals"""
        try:
            await self.recalculate(cart, db)
            await db.commit()
        except Exception:
            await self._rollback(db, cart)
            raise
        return cart

    async def recalculate(self, cart: Cart, db: AsyncSession) -> List[CartItem]:
        """Recompute the cart totals and flush them. The caller owns the transaction."""
        items = await self.get_items(cart, db)

        subtotal = sum((item.unit_price * item.quantity for item in items), ZERO)
        taxable = sum(
            (item.unit_price * item.quantity for item in items if item.product is not None and item.product.taxable),
            ZERO,
        )
        has_physical_products = any(item.product is not None and item.product.requires_shipping for item in items)

        subtotal = round_money(subtotal)
        tax_amount = round_money(taxable * self.settings.TAX_RATE)
        shipping_amount = self.estimate_shipping(subtotal, has_physical_products)
        discount_amount = await self._discount_for(cart, subtotal, shipping_amount, db)

        cart.subtotal = subtotal
        cart.tax_amount = tax_amount
        cart.shipping_amount = shipping_amount
        cart.discount_amount = discount_amount
        cart.total = max(subtotal + tax_amount + shipping_amount - discount_amount, ZERO)
        await db.flush()

        return items

    async def _discount_for(self, cart: Cart, subtotal: Decimal, shipping_amount: Decimal, db: AsyncSession) -> Decimal:
        if cart.coupon_id is not None:
            coupon = await db.get(Coupon, cart.coupon_id)
            if coupon is not None:
                return self.coupon_service.calculate_discount(coupon, subtotal)

        if cart.coupon_code:
            return self.coupon_service.legacy_discount(cart.coupon_code, subtotal, shipping_amount)

        return ZERO

    async def _rollback(self, db: AsyncSession, *instances) -> None:
        await db.rollback()
        for instance in instances:
            if inspect(instance).persistent:
                await db.refresh(instance)

    # -- read model -----------------------------------------------------------

    def total_weight(self, items: List[CartItem]) -> Decimal:
        return sum(
            (item.product.weight_kg * item.quantity for item in items if item.product is not None),
            Decimal("0"),
        )

    def has_physical_products(self, items: List[CartItem]) -> bool:
        return any(item.product is not None and item.product.requires_shipping for item in items)

    def item_count(self, items: List[CartItem]) -> int:
        return sum(item.quantity for item in items)

    async def is_empty(self, cart: Cart, db: AsyncSession) -> bool:
        result = await db.execute(select(CartItem.id).where(CartItem.cart_id == cart.id).limit(1))
        return result.first() is None

    async def summarize(self, cart: Cart, db: AsyncSession) -> CartSummary:
        """Cart totals and lines in display form"""
        items = await self.get_items(cart, db)
        currency = cart.currency

        return CartSummary(
            id=cart.id,
            user_id=cart.user_id,
            session_id=cart.session_id,
            status=cart.status,
            currency=currency,
            coupon_code=cart.coupon_code,
            item_count=self.item_count(items),
            unique_item_count=len(items),
            subtotal=cart.subtotal,
            tax_amount=cart.tax_amount,
            shipping_amount=cart.shipping_amount,
            discount_amount=cart.discount_amount,
            total=cart.total,
            formatted_subtotal=format_currency(cart.subtotal, currency),
            formatted_tax_amount=format_currency(cart.tax_amount, currency),
            formatted_shipping_amount=format_currency(cart.shipping_amount, currency),
            formatted_discount_amount=format_currency(cart.discount_amount, currency),
            formatted_total=format_currency(cart.total, currency),
            expires_at=cart.expires_at,
            items=[
                CartItemResponse(
                    id=item.id,
                    product_id=item.product_id,
                    product_name=item.product_name,
                    quantity=item.quantity,
                    unit_price=item.unit_price,
                    total_price=item.total_price,
                    formatted_unit_price=format_currency(item.unit_price, currency),
                    formatted_total_price=format_currency(item.total_price, currency),
                    options=item.product_options,
                    available=item.is_available(),
                    price_changed=item.product is not None and item.price_changed(),
                )
                for item in items
            ],
        )
