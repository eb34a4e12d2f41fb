import secrets
from datetime import timedelta
from typing import Any, Dict, List, Optional, Union

from pydantic import ValidationError
from sqlalchemy import inspect
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from sqlalchemy.orm import selectinload

from ..core.config import Config, Settings
from ..enums import CartStatus, CheckoutStatus, CouponFailureReason, OrderStatus, PaymentStatus
from ..exceptions import (
    APIException,
    CheckoutFailedError,
    CouponUnavailableError,
    EmptyCartError,
    InvalidStateError,
    NotFoundException,
)
from ..models import Cart, CartItem, Checkout, Coupon, Order, OrderItem, ShippingMethod
from ..models.checkout import ACTIVE_STATUSES
from ..schemas.address import Address, field_errors
from ..schemas.cart import OwnerContext
from ..schemas.checkout import CheckoutStepResult, CheckoutSummary
from ..schemas.coupon import CouponResult
from ..services.cart_service import CartService
from ..utils.dates import utcnow
from ..utils.logging import get_logger
from ..utils.money import ZERO, format_currency

logger = get_logger(__name__)


class CheckoutService:
    """
    Multi-step checkout bound to one cart.

    started -> shipping_info -> payment_info -> review -> completed, with
    cancelled reachable from every step before completion. Each forward move
    is gated on the data the next step needs; ``complete_checkout`` turns the
    cart into an order in a single transaction.
    """

    def __init__(self, settings: Settings = Config, cart_service: Optional[CartService] = None):
        self.settings = settings
        self.cart_service = cart_service or CartService(settings)

    # -- lookup ---------------------------------------------------------------

    async def find_active_checkout(
        self,
        owner: OwnerContext,
        db: AsyncSession,
        cart: Optional[Cart] = None,
    ) -> Optional[Checkout]:
        """Newest unexpired checkout in a non-terminal step for this owner"""
        query = select(Checkout).where(
            Checkout.status.in_(ACTIVE_STATUSES),
            Checkout.expires_at > utcnow(),
        )
        if owner.user_id is not None:
            query = query.where(Checkout.user_id == owner.user_id)
        elif owner.session_id:
            query = query.where(Checkout.session_id == owner.session_id, Checkout.user_id.is_(None))
        else:
            return None

        if cart is not None:
            query = query.where(Checkout.cart_id == cart.id)

        result = await db.execute(query.order_by(Checkout.created_at.desc(), Checkout.id.desc()))
        return result.scalars().first()

    async def get_checkout(self, checkout_id: int, db: AsyncSession) -> Checkout:
        checkout = await db.get(Checkout, checkout_id)
        if not checkout:
            raise NotFoundException(f"Checkout with ID {checkout_id} not found")
        return checkout

    async def get_order(self, order_id: int, db: AsyncSession) -> Order:
        query = (
            select(Order)
            .options(selectinload(Order.items))
            .where(Order.id == order_id)
            .execution_options(populate_existing=True)
        )
        result = await db.execute(query)
        order = result.scalars().first()
        if not order:
            raise NotFoundException(f"Order with ID {order_id} not found")
        return order

    # -- steps ----------------------------------------------------------------

    async def start_checkout(self, cart: Cart, owner: OwnerContext, db: AsyncSession) -> Checkout:
        """Resume the owner's open checkout for ``cart`` or start a new one"""
        items = await self.cart_service.get_items(cart, db)
        if not items:
            raise EmptyCartError()
        if not cart.is_active():
            raise InvalidStateError(cart.status.value, CartStatus.ACTIVE.value, "This cart has already been checked out")

        checkout = await self.find_active_checkout(owner, db, cart=cart)
        if checkout is not None:
            logger.info(f"Resuming checkout {checkout.id} for cart {cart.id}")
            return checkout

        checkout = Checkout(
            cart_id=cart.id,
            user_id=owner.user_id,
            session_id=owner.session_id,
            status=CheckoutStatus.STARTED,
            expires_at=utcnow() + timedelta(hours=self.settings.CHECKOUT_TTL_HOURS),
        )

        try:
            db.add(checkout)
            await self._calculate_totals(checkout, cart, db, items)
            await db.commit()
        except Exception:
            logger.error(f"Failed to start checkout for cart {cart.id}", exc_info=True)
            await db.rollback()
            raise

        logger.info(f"Started checkout {checkout.id} for cart {cart.id}")
        return checkout

    async def begin_shipping(self, checkout: Checkout, db: AsyncSession) -> Checkout:
        """Move a freshly started checkout onto the shipping step"""
        self._ensure_open(checkout)
        if checkout.status == CheckoutStatus.STARTED:
            checkout.status = CheckoutStatus.SHIPPING_INFO
            await db.commit()
        return checkout

    async def submit_shipping_info(
        self,
        checkout: Checkout,
        address: Union[Address, Dict[str, Any], None],
        shipping_method_id: Optional[int],
        db: AsyncSession,
    ) -> CheckoutStepResult:
        """Store the shipping address and method, then advance to payment.

        Invalid input leaves the checkout where it was and reports the
        offending fields.
        """
        self._ensure_open(checkout)
        if not checkout.has_reached(CheckoutStatus.SHIPPING_INFO):
            raise InvalidStateError(
                checkout.status.value,
                CheckoutStatus.SHIPPING_INFO.value,
                "Please continue to shipping first.",
            )
        errors: Dict[str, List[str]] = {}

        parsed_address = None
        if isinstance(address, Address):
            parsed_address = address
        elif not address:
            errors["address"] = ["is required"]
        else:
            try:
                parsed_address = Address.model_validate(address)
            except ValidationError as exc:
                errors.update(field_errors(exc, prefix="address"))

        shipping_method = await db.get(ShippingMethod, shipping_method_id) if shipping_method_id is not None else None
        if shipping_method is None:
            errors["shipping_method_id"] = ["is required" if shipping_method_id is None else "is not a valid shipping method"]
        elif not shipping_method.is_active:
            errors["shipping_method_id"] = ["is not available"]

        if errors:
            logger.warning(f"Shipping info rejected for checkout {checkout.id}: {sorted(errors)}")
            return CheckoutStepResult(success=False, checkout=checkout, errors=errors)

        try:
            checkout.shipping_address_data = parsed_address
            checkout.shipping_method_id = shipping_method.id
            checkout.status = CheckoutStatus.PAYMENT_INFO
            await self._refresh_totals(checkout, db)
            await db.commit()
        except Exception:
            logger.error(f"Failed to save shipping info for checkout {checkout.id}", exc_info=True)
            await self._rollback(db, checkout)
            raise

        logger.info(f"Checkout {checkout.id} shipping via {shipping_method.name}, moved to payment")
        return CheckoutStepResult(success=True, checkout=checkout)

    async def submit_payment_info(self, checkout: Checkout, payment_method: Optional[str], db: AsyncSession) -> CheckoutStepResult:
        """Record the payment method and move to review.

        Billing uses the shipping address; there is no separate billing form.
        """
        self._ensure_open(checkout)
        if not checkout.can_proceed_to_payment() or not checkout.has_reached(CheckoutStatus.PAYMENT_INFO):
            raise InvalidStateError(
                checkout.status.value,
                CheckoutStatus.PAYMENT_INFO.value,
                "Please complete shipping information first.",
            )

        payment_method = (payment_method or "").strip()
        if not payment_method:
            return CheckoutStepResult(success=False, checkout=checkout, errors={"payment_method": ["is required"]})

        try:
            checkout.payment_method = payment_method
            checkout.billing_address_data = checkout.shipping_address_data
            checkout.status = CheckoutStatus.REVIEW
            await self._refresh_totals(checkout, db)
            await db.commit()
        except Exception:
            logger.error(f"Failed to save payment info for checkout {checkout.id}", exc_info=True)
            await self._rollback(db, checkout)
            raise

        logger.info(f"Checkout {checkout.id} paying by {payment_method}, moved to review")
        return CheckoutStepResult(success=True, checkout=checkout)

    async def complete_checkout(self, checkout: Checkout, db: AsyncSession) -> Order:
        """Turn the reviewed checkout into a pending order.

        The order, its lines, the coupon redemption, the cart conversion and
        the checkout completion are committed together or not at all. Calling
        it again on a completed checkout returns the same order.
        """
        if checkout.status == CheckoutStatus.COMPLETED and checkout.order_id is not None:
            return await self.get_order(checkout.order_id, db)

        if checkout.status != CheckoutStatus.REVIEW:
            raise InvalidStateError(checkout.status.value, CheckoutStatus.REVIEW.value, "Please review your order first.")
        if not checkout.can_proceed_to_review():
            raise InvalidStateError(checkout.status.value, CheckoutStatus.REVIEW.value, "Please complete all previous steps.")
        self._ensure_not_expired(checkout)

        cart = await self.cart_service.get_cart(checkout.cart_id, db)
        if not cart.is_active():
            raise InvalidStateError(cart.status.value, CartStatus.ACTIVE.value, "This cart has already been checked out")

        try:
            items = await self.cart_service.recalculate(cart, db)
            if not items:
                raise EmptyCartError()
            await self._calculate_totals(checkout, cart, db, items)
            await self._check_coupon(checkout, cart, db)
            await self.cart_service.reserve_inventory(items, db)

            order = Order(
                order_number=await self._generate_order_number(db),
                user_id=checkout.user_id,
                session_id=checkout.session_id,
                cart_id=cart.id,
                status=OrderStatus.PENDING,
                payment_method=checkout.payment_method,
                payment_status=PaymentStatus.PENDING,
                currency=cart.currency,
                shipping_address=checkout.shipping_address,
                billing_address=checkout.billing_address,
                shipping_method_id=checkout.shipping_method_id,
                coupon_code=checkout.coupon_code,
                subtotal=checkout.subtotal,
                tax_amount=checkout.tax_amount,
                shipping_amount=checkout.shipping_amount,
                discount_amount=checkout.discount_amount,
                total=checkout.total_amount,
                notes=checkout.notes,
                placed_at=utcnow(),
            )
            db.add(order)
            await db.flush()  # Get the order ID without committing

            for item in items:
                db.add(self._order_line(order, item))

            if checkout.coupon_id is not None:
                redeemed = await self.cart_service.coupon_service.increment_usage(checkout.coupon_id, db)
                if not redeemed:
                    raise self._coupon_unavailable(CouponFailureReason.USAGE_EXCEEDED, checkout.coupon_code)

            self.cart_service.mark_converted(cart)
            checkout.status = CheckoutStatus.COMPLETED
            checkout.completed_at = utcnow()
            checkout.order_id = order.id

            await db.commit()

        except APIException:
            await self._rollback(db, checkout, cart)
            raise
        except Exception as e:
            logger.error(f"Order creation failed for checkout {checkout.id}: {e}", exc_info=True)
            await self._rollback(db, checkout, cart)
            raise CheckoutFailedError() from e

        logger.info(f"Checkout {checkout.id} completed as order {order.order_number} ({order.total})")
        return await self.get_order(order.id, db)

    async def cancel(self, checkout: Checkout, db: AsyncSession) -> Checkout:
        """Abandon the checkout; the cart stays as it is"""
        if checkout.status == CheckoutStatus.CANCELLED:
            return checkout
        if checkout.status == CheckoutStatus.COMPLETED:
            raise InvalidStateError(checkout.status.value, "an open checkout", "A completed checkout cannot be cancelled")

        checkout.status = CheckoutStatus.CANCELLED
        await db.commit()

        logger.info(f"Cancelled checkout {checkout.id}")
        return checkout

    # -- coupons --------------------------------------------------------------

    async def apply_coupon(self, checkout: Checkout, code: Optional[str], db: AsyncSession) -> CouponResult:
        """Apply a coupon to the checkout's cart and refresh the checkout totals"""
        self._ensure_open(checkout)
        cart = await self.cart_service.get_cart(checkout.cart_id, db)

        result = await self.cart_service.apply_coupon(cart, code, db)
        if result.success:
            await self._refresh_totals(checkout, db)
            await db.commit()
        return result

    async def remove_coupon(self, checkout: Checkout, db: AsyncSession) -> CouponResult:
        self._ensure_open(checkout)
        cart = await self.cart_service.get_cart(checkout.cart_id, db)

        result = await self.cart_service.remove_coupon(cart, db)
        await self._refresh_totals(checkout, db)
        await db.commit()
        return result

    # -- totals ---------------------------------------------------------------

    async def _refresh_totals(self, checkout: Checkout, db: AsyncSession) -> None:
        cart = await self.cart_service.get_cart(checkout.cart_id, db)
        await self._calculate_totals(checkout, cart, db)

    async def _calculate_totals(
        self,
        checkout: Checkout,
        cart: Cart,
        db: AsyncSession,
        items: Optional[List[CartItem]] = None,
    ) -> None:
        """Copy the cart totals, replacing the cart's shipping estimate with the chosen method's cost."""
        if items is None:
            items = await self.cart_service.get_items(cart, db)

        checkout.subtotal = cart.subtotal
        checkout.tax_amount = cart.tax_amount
        checkout.discount_amount = cart.discount_amount
        checkout.coupon_id = cart.coupon_id
        checkout.coupon_code = cart.coupon_code

        shipping_method = None
        if checkout.shipping_method_id is not None:
            shipping_method = await db.get(ShippingMethod, checkout.shipping_method_id)

        if shipping_method is not None:
            weight = self.cart_service.total_weight(items)
            checkout.shipping_amount = shipping_method.calculate_cost(weight, cart.subtotal)
        else:
            checkout.shipping_amount = ZERO

        checkout.total_amount = max(
            checkout.subtotal + checkout.tax_amount + checkout.shipping_amount - checkout.discount_amount,
            ZERO,
        )

    # -- helpers --------------------------------------------------------------

    def _ensure_open(self, checkout: Checkout) -> None:
        if checkout.is_terminal():
            raise InvalidStateError(checkout.status.value, "an open checkout", "This checkout is already closed")
        self._ensure_not_expired(checkout)

    def _ensure_not_expired(self, checkout: Checkout) -> None:
        if checkout.is_expired():
            raise InvalidStateError(
                checkout.status.value,
                "an open checkout",
                "This checkout session has expired. Please start a new checkout.",
            )

    async def _check_coupon(self, checkout: Checkout, cart: Cart, db: AsyncSession) -> None:
        """The attached coupon must still be usable when the order is placed"""
        if checkout.coupon_id is None:
            return

        coupon = await db.get(Coupon, checkout.coupon_id, populate_existing=True)
        if coupon is None:
            raise self._coupon_unavailable(CouponFailureReason.NOT_FOUND, checkout.coupon_code)

        reason = self.cart_service.coupon_service.failure_reason(coupon, cart.subtotal)
        if reason is not None:
            raise self._coupon_unavailable(reason, coupon.code, coupon, cart.currency)

    def _coupon_unavailable(
        self,
        reason: CouponFailureReason,
        code: Optional[str],
        coupon: Optional[Coupon] = None,
        currency: str = "USD",
    ) -> CouponUnavailableError:
        logger.warning(f"Coupon {code} no longer usable at completion: {reason.value}")
        message = self.cart_service.coupon_service.failure_message(reason, coupon, currency)
        return CouponUnavailableError(reason.value, f"{message}. Please remove it to continue.")

    def _order_line(self, order: Order, item: CartItem) -> OrderItem:
        product = item.product
        return OrderItem(
            order_id=order.id,
            product_id=item.product_id,
            product_name=item.product_name,
            product_sku=product.sku if product is not None else None,
            quantity=item.quantity,
            unit_price=item.unit_price,
            total_price=item.total_price,
            taxable=product.taxable if product is not None else True,
        )

    async def _generate_order_number(self, db: AsyncSession) -> str:
        """ORD-YYYYMMDD-XXXX, retried until unused"""
        date_part = utcnow().strftime("%Y%m%d")
        while True:
            candidate = f"ORD-{date_part}-{secrets.token_hex(2).upper()}"
            result = await db.execute(select(Order.id).where(Order.order_number == candidate))
            if result.first() is None:
                return candidate

    async def _rollback(self, db: AsyncSession, *instances) -> None:
        await db.rollback()
        for instance in instances:
            if inspect(instance).persistent:
                await db.refresh(instance)

    def summarize(self, checkout: Checkout, currency: str = "USD") -> CheckoutSummary:
        return CheckoutSummary(
            id=checkout.id,
            cart_id=checkout.cart_id,
            status=checkout.status,
            step_name=checkout.step_name,
            progress_percentage=checkout.progress_percentage,
            next_step=checkout.next_step,
            shipping_address=checkout.shipping_address,
            billing_address=checkout.billing_address,
            formatted_shipping_address=checkout.formatted_shipping_address(),
            shipping_method_id=checkout.shipping_method_id,
            payment_method=checkout.payment_method,
            coupon_code=checkout.coupon_code,
            subtotal=checkout.subtotal,
            tax_amount=checkout.tax_amount,
            shipping_amount=checkout.shipping_amount,
            discount_amount=checkout.discount_amount,
            total_amount=checkout.total_amount,
            formatted_subtotal=format_currency(checkout.subtotal, currency),
            formatted_tax_amount=format_currency(checkout.tax_amount, currency),
            formatted_shipping_amount=format_currency(checkout.shipping_amount, currency),
            formatted_discount_amount=format_currency(checkout.discount_amount, currency),
            formatted_total_amount=format_currency(checkout.total_amount, currency),
            expires_at=checkout.expires_at,
            completed_at=checkout.completed_at,
            order_id=checkout.order_id,
        )
