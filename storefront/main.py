"""
FastAPI application exposing storefront sessions: cart, auth, orders and
checkout for the browser, backed by the bookstore backend and Redis.
"""
import time
import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import Depends, FastAPI, Header, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from storefront.api_client import ApiClient
from storefront.backend_api import CategoriesAPI, ContactAPI, ProductsAPI
from storefront.config import Config
from storefront.exceptions import (
    ApiError,
    AuthenticationError,
    CartItemNotFoundError,
    CheckoutInProgressError,
    PaymentNotFoundError,
    StorageError,
    ValidationError,
)
from storefront.middleware import SESSION_HEADER, RequestLoggingMiddleware
from storefront.models import (
    AddToCartRequest,
    CancelOrderRequest,
    CheckoutResult,
    ContactSubmission,
    ForgotPasswordRequest,
    GuestPasswordRequest,
    LoginRequest,
    PaymentFailureReport,
    PaymentVerification,
    RegisterRequest,
    ResetPasswordRequest,
    ShippingForm,
    UpdateCartItemRequest,
)
from storefront.payment_gateway import PaymentBridge, PendingPayment
from storefront.session import SessionRegistry, StorefrontSession
from storefront.storage import get_redis_client

logger = logging.getLogger(__name__)

_registry: Optional[SessionRegistry] = None


def get_registry() -> SessionRegistry:
    """Get or create the session registry (singleton)"""
    global _registry
    if _registry is None:
        _registry = SessionRegistry(get_redis_client(), ApiClient(), PaymentBridge())
    return _registry


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    if _registry is not None:
        await _registry.client.close()
        _registry.redis_client.close()


app = FastAPI(
    title="Storefront Session API",
    description="Cart, auth and checkout orchestration for the bookstore storefront",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(RequestLoggingMiddleware)


async def get_session(
    session_id: str = Header(..., alias=SESSION_HEADER, description="Browser session identifier"),
    registry: SessionRegistry = Depends(get_registry),
) -> StorefrontSession:
    if not session_id or not session_id.strip():
        raise HTTPException(status_code=400, detail="Session ID is required")
    return await registry.get(session_id.strip())


def _cart_payload(session: StorefrontSession) -> Dict[str, Any]:
    return {
        "cart": session.cart.cart.to_wire(),
        "is_guest": session.cart.is_guest,
    }


def _result_payload(result: CheckoutResult) -> Dict[str, Any]:
    return result.model_dump(mode="json")


@app.get("/health")
async def health_check(registry: SessionRegistry = Depends(get_registry)):
    """Always 200 while the process is up; reports Redis reachability"""
    ping_start = time.time()
    redis_ok = registry.redis_client.ping()
    return {
        "status": "healthy",
        "service": "storefront",
        "redis": {
            "status": "healthy" if redis_ok else "unhealthy",
            "latency_ms": round((time.time() - ping_start) * 1000, 2),
        },
        "sessions": len(registry),
        "timestamp": time.time(),
    }


# Catalog endpoints
@app.get("/products")
async def list_products(
    category: Optional[str] = None,
    search: Optional[str] = None,
    sort: Optional[str] = None,
    page: Optional[int] = None,
    limit: Optional[int] = None,
    registry: SessionRegistry = Depends(get_registry),
):
    products = await ProductsAPI(registry.client).list(
        category=category, search=search, sort=sort, page=page, limit=limit
    )
    return {"products": [product.to_wire() for product in products]}


@app.get("/products/search")
async def search_products(q: str, limit: int = 5, registry: SessionRegistry = Depends(get_registry)):
    return {"results": await ProductsAPI(registry.client).search(q, limit)}


@app.get("/products/slug/{slug}")
async def get_product_by_slug(slug: str, registry: SessionRegistry = Depends(get_registry)):
    product = await ProductsAPI(registry.client).get_by_slug(slug)
    return {"product": product.to_wire()}


@app.get("/categories")
async def list_categories(registry: SessionRegistry = Depends(get_registry)):
    categories = await CategoriesAPI(registry.client).active()
    return {"categories": [category.to_wire() for category in categories]}


@app.post("/contact")
async def submit_contact(submission: ContactSubmission, registry: SessionRegistry = Depends(get_registry)):
    response = await ContactAPI(registry.client).submit(submission)
    return {"success": True, "message": response.get("message", "Message sent")}


# Cart endpoints
@app.get("/cart")
async def get_cart(session: StorefrontSession = Depends(get_session)):
    return _cart_payload(session)


@app.get("/cart/summary")
async def get_cart_summary(session: StorefrontSession = Depends(get_session)):
    return session.cart.summary().model_dump(mode="json")


@app.post("/cart/items")
async def add_cart_item(request: AddToCartRequest, session: StorefrontSession = Depends(get_session)):
    product = await session.api.products.get_by_id(request.product_id)
    await session.cart.add_to_cart(product, request.quantity, request.color)
    return _cart_payload(session)


@app.put("/cart/items/{item_id}")
async def update_cart_item(
    item_id: str,
    request: UpdateCartItemRequest,
    session: StorefrontSession = Depends(get_session),
):
    await session.cart.update_cart_item(item_id, request.quantity)
    return _cart_payload(session)


@app.delete("/cart/items/{item_id}")
async def remove_cart_item(item_id: str, session: StorefrontSession = Depends(get_session)):
    await session.cart.remove_from_cart(item_id)
    return _cart_payload(session)


@app.delete("/cart")
async def clear_cart(session: StorefrontSession = Depends(get_session)):
    await session.cart.clear_cart()
    return _cart_payload(session)


# Auth endpoints
@app.post("/auth/login")
async def login(request: LoginRequest, session: StorefrontSession = Depends(get_session)):
    user = await session.auth.login(request.email, request.password)
    return {"success": True, "user": user.to_wire(), **_cart_payload(session)}


@app.post("/auth/register")
async def register(request: RegisterRequest, session: StorefrontSession = Depends(get_session)):
    response = await session.auth.register(request.name, request.email, request.password)
    return {"success": True, "message": response.get("message", "Registration successful")}


@app.post("/auth/logout")
async def logout(session: StorefrontSession = Depends(get_session)):
    await session.auth.logout()
    return {"success": True, **_cart_payload(session)}


@app.get("/auth/profile")
async def profile(session: StorefrontSession = Depends(get_session)):
    return await session.auth.profile()


@app.post("/auth/forgot-password")
async def forgot_password(request: ForgotPasswordRequest, session: StorefrontSession = Depends(get_session)):
    return await session.auth.forgot_password(request.email)


@app.post("/auth/reset-password")
async def reset_password(request: ResetPasswordRequest, session: StorefrontSession = Depends(get_session)):
    return await session.auth.reset_password(request.token, request.new_password)


@app.post("/auth/set-guest-password")
async def set_guest_password(request: GuestPasswordRequest, session: StorefrontSession = Depends(get_session)):
    return await session.auth.set_guest_password(request.email, request.password, request.order_id)


# Order endpoints
def _require_token(session: StorefrontSession) -> str:
    if not session.auth.token:
        raise AuthenticationError("Authentication token is missing. Please log in again.")
    return session.auth.token


@app.get("/orders")
async def list_orders(session: StorefrontSession = Depends(get_session)):
    orders = await session.api.orders.list_mine(_require_token(session))
    return {"orders": [order.to_wire() for order in orders]}


@app.get("/orders/{order_id}")
async def get_order(order_id: str, session: StorefrontSession = Depends(get_session)):
    order = await session.api.orders.get(order_id, _require_token(session))
    return {"order": order.to_wire()}


@app.put("/orders/{order_id}/cancel")
async def cancel_order(
    order_id: str,
    request: CancelOrderRequest,
    session: StorefrontSession = Depends(get_session),
):
    order = await session.api.orders.cancel(order_id, _require_token(session), request.reason)
    return {"order": order.to_wire()}


# Checkout endpoints
@app.post("/checkout/cod")
async def checkout_cash_on_delivery(form: ShippingForm, session: StorefrontSession = Depends(get_session)):
    result = await session.checkout.pay_cash_on_delivery(form)
    return _result_payload(result)


@app.post("/checkout/razorpay")
async def checkout_razorpay(
    form: ShippingForm,
    session: StorefrontSession = Depends(get_session),
    registry: SessionRegistry = Depends(get_registry),
):
    """
    Start an online payment. Answers with the widget options once the order
    and gateway order exist, or with the final result when the attempt ended
    before the widget was needed.
    """
    started = await registry.bridge.start(session.session_id, session.checkout.pay_online(form))
    if isinstance(started, PendingPayment):
        return {
            "status": "awaiting_payment",
            "options": started.options.model_dump(mode="json"),
        }
    return _result_payload(started)


@app.post("/checkout/razorpay/{gateway_order_id}/success")
async def razorpay_success(
    gateway_order_id: str,
    proof: PaymentVerification,
    session: StorefrontSession = Depends(get_session),
    registry: SessionRegistry = Depends(get_registry),
):
    if proof.razorpay_order_id != gateway_order_id:
        raise ValidationError("Gateway order id does not match the payment", ["razorpay_order_id"])
    result = await registry.bridge.settle_success(session.session_id, proof)
    return _result_payload(result)


@app.post("/checkout/razorpay/{gateway_order_id}/failed")
async def razorpay_failed(
    gateway_order_id: str,
    report: PaymentFailureReport,
    session: StorefrontSession = Depends(get_session),
    registry: SessionRegistry = Depends(get_registry),
):
    result = await registry.bridge.settle_failure(session.session_id, gateway_order_id, report.description)
    return _result_payload(result)


@app.post("/checkout/razorpay/{gateway_order_id}/dismiss")
async def razorpay_dismiss(
    gateway_order_id: str,
    session: StorefrontSession = Depends(get_session),
    registry: SessionRegistry = Depends(get_registry),
):
    result = await registry.bridge.settle_dismiss(session.session_id, gateway_order_id)
    return _result_payload(result)


# Error handlers
@app.exception_handler(ValidationError)
async def validation_error_handler(request, exc):
    return JSONResponse(
        status_code=400,
        content={"error": "Validation error", "message": str(exc), "fields": exc.fields}
    )


@app.exception_handler(AuthenticationError)
async def authentication_error_handler(request, exc):
    return JSONResponse(
        status_code=401,
        content={"error": "Authentication required", "message": str(exc)}
    )


@app.exception_handler(CartItemNotFoundError)
@app.exception_handler(PaymentNotFoundError)
async def not_found_handler(request, exc):
    return JSONResponse(
        status_code=404,
        content={"error": "Not found", "message": str(exc)}
    )


@app.exception_handler(CheckoutInProgressError)
async def checkout_in_progress_handler(request, exc):
    return JSONResponse(
        status_code=409,
        content={"error": "Checkout in progress", "message": str(exc)}
    )


@app.exception_handler(ApiError)
async def backend_error_handler(request, exc):
    # Client errors from the backend pass through, everything else is a bad gateway
    status_code = exc.status if 400 <= exc.status < 500 else 502
    return JSONResponse(
        status_code=status_code,
        content={"error": "Backend error", "message": exc.message}
    )


@app.exception_handler(StorageError)
async def storage_error_handler(request, exc):
    return JSONResponse(
        status_code=503,
        content={"error": "Service unavailable", "message": "Session storage unavailable"}
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request, exc):
    logger.error(
        f"Unhandled exception: {type(exc).__name__}: {exc}",
        exc_info=True
    )
    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal server error",
            "message": str(exc),
            "type": type(exc).__name__
        }
    )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=Config.APP_PORT)
