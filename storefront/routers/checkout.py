from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.dependencies import get_current_cart, get_db, get_owner_context
from ..exceptions import NotFoundException
from ..models import Cart, Checkout
from ..schemas.cart import CouponApply, OwnerContext
from ..schemas.checkout import (
    CheckoutStepResponse,
    CheckoutStepResult,
    CheckoutSummary,
    PaymentInfoSubmit,
    ShippingInfoSubmit,
)
from ..schemas.coupon import CouponResult
from ..schemas.order import OrderResponse
from ..services.checkout_service import CheckoutService

router = APIRouter()
checkout_service = CheckoutService()


async def get_owned_checkout(
    checkout_id: int,
    owner: OwnerContext = Depends(get_owner_context),
    db: AsyncSession = Depends(get_db)
) -> Checkout:
    """Load a checkout, hiding ones that belong to somebody else"""
    checkout = await checkout_service.get_checkout(checkout_id, db)

    if owner.user_id is not None:
        owned = checkout.user_id == owner.user_id
    else:
        owned = checkout.user_id is None and checkout.session_id == owner.session_id

    if not owned:
        raise NotFoundException(f"Checkout with ID {checkout_id} not found")
    return checkout


def _step_response(result: CheckoutStepResult):
    body = CheckoutStepResponse(
        success=result.success,
        errors=result.errors,
        checkout=checkout_service.summarize(result.checkout),
    )
    if result.success:
        return body
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=body.model_dump(mode="json"),
    )


@router.post("/", response_model=CheckoutSummary, status_code=status.HTTP_201_CREATED)
async def start_checkout(
    cart: Cart = Depends(get_current_cart),
    owner: OwnerContext = Depends(get_owner_context),
    db: AsyncSession = Depends(get_db)
):
    """
    **Start Checkout**

    Opens a checkout for the current cart, or resumes the one already open.
    The cart must contain at least one item.
    """
    checkout = await checkout_service.start_checkout(cart, owner, db)
    return checkout_service.summarize(checkout, cart.currency)


@router.get("/current", response_model=CheckoutSummary)
async def get_current_checkout(
    owner: OwnerContext = Depends(get_owner_context),
    db: AsyncSession = Depends(get_db)
):
    """Get the open checkout of the current shopper"""
    checkout = await checkout_service.find_active_checkout(owner, db)
    if checkout is None:
        raise NotFoundException("No checkout in progress")
    return checkout_service.summarize(checkout)


@router.get("/{checkout_id}", response_model=CheckoutSummary)
async def get_checkout(checkout: Checkout = Depends(get_owned_checkout)):
    return checkout_service.summarize(checkout)


@router.post("/{checkout_id}/shipping/begin", response_model=CheckoutSummary)
async def begin_shipping(
    checkout: Checkout = Depends(get_owned_checkout),
    db: AsyncSession = Depends(get_db)
):
    checkout = await checkout_service.begin_shipping(checkout, db)
    return checkout_service.summarize(checkout)


@router.post("/{checkout_id}/shipping", response_model=CheckoutStepResponse)
async def submit_shipping_info(
    shipping_info: ShippingInfoSubmit,
    checkout: Checkout = Depends(get_owned_checkout),
    db: AsyncSession = Depends(get_db)
):
    """
    **Submit Shipping Information**

    Stores the shipping address and shipping method and moves the checkout
    to the payment step. The checkout must already be on the shipping step
    (see ``/shipping/begin``). Invalid fields are returned under ``errors``
    with a 422 status and the checkout stays on its current step.
    """
    result = await checkout_service.submit_shipping_info(
        checkout, shipping_info.address, shipping_info.shipping_method_id, db
    )
    return _step_response(result)


@router.post("/{checkout_id}/payment", response_model=CheckoutStepResponse)
async def submit_payment_info(
    payment_info: PaymentInfoSubmit,
    checkout: Checkout = Depends(get_owned_checkout),
    db: AsyncSession = Depends(get_db)
):
    """Record the payment method and move to review"""
    result = await checkout_service.submit_payment_info(checkout, payment_info.payment_method, db)
    return _step_response(result)


@router.post("/{checkout_id}/complete", response_model=OrderResponse, status_code=status.HTTP_201_CREATED)
async def complete_checkout(
    checkout: Checkout = Depends(get_owned_checkout),
    db: AsyncSession = Depends(get_db)
):
    """
    **Place Order**

    Converts the reviewed checkout into a pending order. Repeating the call
    returns the order that was already placed.
    """
    return await checkout_service.complete_checkout(checkout, db)


@router.post("/{checkout_id}/cancel", response_model=CheckoutSummary)
async def cancel_checkout(
    checkout: Checkout = Depends(get_owned_checkout),
    db: AsyncSession = Depends(get_db)
):
    checkout = await checkout_service.cancel(checkout, db)
    return checkout_service.summarize(checkout)


@router.post("/{checkout_id}/coupon", response_model=CouponResult)
async def apply_coupon(
    coupon: CouponApply,
    checkout: Checkout = Depends(get_owned_checkout),
    db: AsyncSession = Depends(get_db)
):
    return await checkout_service.apply_coupon(checkout, coupon.code, db)


@router.delete("/{checkout_id}/coupon", response_model=CouponResult)
async def remove_coupon(
    checkout: Checkout = Depends(get_owned_checkout),
    db: AsyncSession = Depends(get_db)
):
    return await checkout_service.remove_coupon(checkout, db)


@router.get("/{checkout_id}/order", response_model=OrderResponse)
async def get_order(
    checkout: Checkout = Depends(get_owned_checkout),
    db: AsyncSession = Depends(get_db)
):
    """Get the order placed from this checkout"""
    if checkout.order_id is None:
        raise NotFoundException("This checkout has not been completed")
    return await checkout_service.get_order(checkout.order_id, db)
