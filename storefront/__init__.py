from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from storefront.db.database import init_db
from storefront.exceptions import (
    create_exception_handler,
    CartNotActiveError,
    CheckoutFailedError,
    CouponUnavailableError,
    EmptyCartError,
    InsufficientInventoryError,
    InvalidQuantityError,
    InvalidStateError,
    ProductUnavailableError,
)
from storefront.routers.cart import router as cart_router
from storefront.routers.checkout import router as checkout_router
from storefront.utils.logging import configure_logging
from dotenv import load_dotenv

load_dotenv()
configure_logging()

api_version = "v1"
swagger_docs_url = f"/api/{api_version}/docs"
redoc_docs_url = f"/api/{api_version}/redoc"
openapi_url = f"/api/{api_version}/openapi.json"


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_db()
    yield


app = FastAPI(
    docs_url=swagger_docs_url,
    redoc_url=redoc_docs_url,
    openapi_url=openapi_url,
    title="Storefront API",
    description="Shopping cart, coupon and checkout API for the storefront.",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=['http://localhost', 'http://localhost:3000'],
    allow_credentials=True,
    allow_methods=['GET', 'POST', 'PUT', 'PATCH', 'DELETE'],
    allow_headers=["*"],
)

# Register endpoints
app.include_router(cart_router, prefix=f'/api/{api_version}/cart', tags=["Cart"])
app.include_router(checkout_router, prefix=f'/api/{api_version}/checkout', tags=["Checkout"])


@app.get("/health")
async def health_check():
    return {"status": "healthy"}

# Register custom exceptions

# Cart exception handlers
app.add_exception_handler(ProductUnavailableError, create_exception_handler(422))
app.add_exception_handler(InvalidQuantityError, create_exception_handler(422))
app.add_exception_handler(InsufficientInventoryError, create_exception_handler(409))
app.add_exception_handler(CartNotActiveError, create_exception_handler(409))

# Checkout exception handlers
app.add_exception_handler(EmptyCartError, create_exception_handler(400))
app.add_exception_handler(InvalidStateError, create_exception_handler(409))
app.add_exception_handler(CouponUnavailableError, create_exception_handler(409))
app.add_exception_handler(CheckoutFailedError, create_exception_handler(500))
