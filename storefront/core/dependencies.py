from fastapi import Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession
from typing import AsyncGenerator, Optional

from ..db.database import AsyncSessionLocal
from ..exceptions import BadRequestException
from ..models import Cart
from ..schemas.cart import OwnerContext
from ..services.cart_service import CartService


cart_service = CartService()


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Asynchronous dependency that provides a database session for FastAPI routes.

    Yields:
        AsyncSession: An instance of the asynchronous database session.

    Usage:
        Use as a dependency in FastAPI endpoints to access the database session.
        The session is automatically closed after the request is processed.
    """

    async with AsyncSessionLocal() as db:
        yield db
        await db.close()


async def get_owner_context(
    x_user_id: Optional[int] = Header(default=None),
    x_session_id: Optional[str] = Header(default=None),
) -> OwnerContext:
    """
    Identify who is shopping from the request headers.

    ``X-User-Id`` is set by the upstream auth layer for signed-in customers;
    ``X-Session-Id`` carries the guest session. At least one is required.
    """
    session_id = x_session_id.strip() if x_session_id else None
    if x_user_id is None and not session_id:
        raise BadRequestException("Either X-User-Id or X-Session-Id header is required")

    return OwnerContext(user_id=x_user_id, session_id=session_id)


async def get_current_cart(
    owner: OwnerContext = Depends(get_owner_context),
    db: AsyncSession = Depends(get_db),
) -> Cart:
    return await cart_service.resolve_cart(owner, db)
