from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.dependencies import get_current_cart, get_db
from ..models import Cart
from ..schemas.cart import CartItemCreate, CartItemUpdate, CartSummary, CouponApply
from ..schemas.coupon import CouponResult
from ..services.cart_service import CartService

router = APIRouter()
cart_service = CartService()


@router.get("/", response_model=CartSummary)
async def get_cart(
    cart: Cart = Depends(get_current_cart),
    db: AsyncSession = Depends(get_db)
):
    """Get the current cart with its lines and totals"""
    return await cart_service.summarize(cart, db)


@router.post("/items", response_model=CartSummary)
async def add_item(
    item: CartItemCreate,
    cart: Cart = Depends(get_current_cart),
    db: AsyncSession = Depends(get_db)
):
    """Add a product to the cart"""
    await cart_service.add_item(cart, item.product_id, item.quantity, db, options=item.options)
    return await cart_service.summarize(cart, db)


@router.patch("/items/{item_id}", response_model=CartSummary)
async def update_item(
    item_id: int,
    update: CartItemUpdate,
    cart: Cart = Depends(get_current_cart),
    db: AsyncSession = Depends(get_db)
):
    """Change a line quantity; zero removes the line"""
    await cart_service.update_item_quantity(cart, item_id, update.quantity, db)
    return await cart_service.summarize(cart, db)


@router.delete("/items/{item_id}", response_model=CartSummary)
async def remove_item(
    item_id: int,
    cart: Cart = Depends(get_current_cart),
    db: AsyncSession = Depends(get_db)
):
    """Remove an item from the cart"""
    await cart_service.remove_item(cart, item_id, db)
    return await cart_service.summarize(cart, db)


@router.delete("/", response_model=CartSummary)
async def clear_cart(
    cart: Cart = Depends(get_current_cart),
    db: AsyncSession = Depends(get_db)
):
    """Remove every item from the cart"""
    await cart_service.clear(cart, db)
    return await cart_service.summarize(cart, db)


@router.post("/coupon", response_model=CouponResult)
async def apply_coupon(
    coupon: CouponApply,
    cart: Cart = Depends(get_current_cart),
    db: AsyncSession = Depends(get_db)
):
    """Apply a coupon code; a rejected code is reported in the result rather than as an error"""
    return await cart_service.apply_coupon(cart, coupon.code, db)


@router.delete("/coupon", response_model=CouponResult)
async def remove_coupon(
    cart: Cart = Depends(get_current_cart),
    db: AsyncSession = Depends(get_db)
):
    return await cart_service.remove_coupon(cart, db)
