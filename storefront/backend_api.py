"""
Endpoint groups of the bookstore backend: catalog, cart, orders, auth,
payments and contact. Each group normalizes the backend's response shapes
into storefront models.
"""
import logging
from typing import Any, Callable, Dict, List, Optional

from pydantic import ValidationError as PydanticValidationError

from storefront.api_client import ApiClient, expect_success
from storefront.exceptions import ApiError
from storefront.models import (
    Cart,
    Category,
    ContactSubmission,
    GatewayOrder,
    Order,
    OrderReceipt,
    OrderRequest,
    PaymentVerification,
    Product,
    VerificationResult,
)

logger = logging.getLogger(__name__)

TokenProvider = Callable[[], Optional[str]]

GATEWAY_ORDER_INVALID_MESSAGE = "Invalid Razorpay order response - missing required fields"


def _payload(body: Any, *keys: str) -> Any:
    """First present value among the backend's alternative envelope keys"""
    if not isinstance(body, dict):
        return None
    for key in keys:
        value = body.get(key)
        if value is not None:
            return value
    return None


class ProductsAPI:
    def __init__(self, client: ApiClient):
        self.client = client

    async def list(self, **filters: Any) -> List[Product]:
        """Products, optionally filtered by category, page, limit, sort or search"""
        body = await self.client.get("/products", params=filters)
        return [Product.model_validate(p) for p in _payload(body, "data", "products") or []]

    async def get_by_id(self, product_id: str) -> Product:
        body = await self.client.get(f"/products/{product_id}")
        return Product.model_validate(_payload(body, "data", "product"))

    async def get_by_slug(self, slug: str) -> Product:
        """
        Product by slug. Older backends fail the slug route; in that case the
        product is looked up in the full listing instead.
        """
        try:
            body = await self.client.get(f"/products/slug/{slug}")
        except ApiError as e:
            if e.status not in (404, 500):
                raise
            logger.warning(f"Slug endpoint failed ({e.status}), falling back to listing for {slug}")
            for product in await self.list():
                if product.slug == slug:
                    return product
            raise
        return Product.model_validate(_payload(body, "data", "product"))

    async def search(self, query: str, limit: int = 5) -> List[Dict[str, Any]]:
        body = await self.client.get("/products/search", params={"q": query, "limit": limit})
        return _payload(body, "data") or []

    async def featured(self, **filters: Any) -> List[Product]:
        body = await self.client.get("/products/featured", params=filters)
        return [Product.model_validate(p) for p in _payload(body, "data", "products") or []]


class CategoriesAPI:
    def __init__(self, client: ApiClient):
        self.client = client

    async def list(self, include_inactive: Optional[bool] = None) -> List[Category]:
        body = await self.client.get("/categories", params={"includeInactive": include_inactive})
        return [Category.model_validate(c) for c in _payload(body, "data") or []]

    async def active(self) -> List[Category]:
        body = await self.client.get("/categories/active")
        return [Category.model_validate(c) for c in _payload(body, "data") or []]

    async def tree(self) -> List[Dict[str, Any]]:
        body = await self.client.get("/categories/tree")
        return _payload(body, "data") or []

    async def get(self, category_id: str) -> Category:
        body = await self.client.get(f"/categories/{category_id}")
        return Category.model_validate(_payload(body, "data"))

    async def products(self, category_id: str, **params: Any) -> List[Product]:
        body = await self.client.get(f"/categories/{category_id}/products", params=params)
        data = _payload(body, "data") or {}
        return [Product.model_validate(p) for p in data.get("products", [])]


class CartAPI:
    """Server-side cart of the authenticated user"""

    def __init__(self, client: ApiClient, token_provider: TokenProvider):
        self.client = client
        self.token_provider = token_provider

    def _cart(self, body: Any) -> Cart:
        if isinstance(body, dict) and isinstance(body.get("data"), dict) and "items" in body["data"]:
            body = body["data"]
        try:
            return Cart.model_validate(body)
        except PydanticValidationError:
            raise ApiError(200, "Invalid cart response", body)

    async def get(self) -> Cart:
        return self._cart(await self.client.get("/cart", token=self.token_provider()))

    async def add(self, product_id: str, quantity: int, color: Optional[str] = None) -> Cart:
        payload: Dict[str, Any] = {"productId": product_id, "quantity": quantity}
        if color:
            payload["color"] = color
        body = await self.client.post("/cart", json=payload, token=self.token_provider())
        return self._cart(body)

    async def update_item(self, item_id: str, quantity: int) -> Any:
        return await self.client.put(
            f"/cart/items/{item_id}", json={"quantity": quantity}, token=self.token_provider()
        )

    async def remove_item(self, item_id: str) -> Any:
        return await self.client.delete(f"/cart/items/{item_id}", token=self.token_provider())

    async def clear(self) -> Any:
        return await self.client.delete("/cart", token=self.token_provider())


class OrdersAPI:
    def __init__(self, client: ApiClient):
        self.client = client

    def _receipt(self, body: Any, default_message: str) -> OrderReceipt:
        body = expect_success(body, default_message)
        order_id = None
        final_amount = None
        for envelope in (body.get("order"), body.get("data"), body):
            if not isinstance(envelope, dict):
                continue
            order_id = order_id or envelope.get("orderId")
            if final_amount is None:
                final_amount = envelope.get("finalAmount")
        if not order_id:
            raise ApiError(200, "Invalid order response: missing orderId", body)
        if final_amount is None:
            raise ApiError(200, "Invalid order response: missing finalAmount", body)
        try:
            return OrderReceipt(order_id=order_id, final_amount=final_amount)
        except PydanticValidationError:
            raise ApiError(200, "Invalid order response: malformed orderId or finalAmount", body)

    async def create_for_user(self, order: OrderRequest, token: str) -> OrderReceipt:
        body = await self.client.post("/orders", json=order.to_wire(), token=token)
        return self._receipt(body, "Failed to create order")

    async def create_for_guest(self, order: OrderRequest) -> OrderReceipt:
        body = await self.client.post("/payments/guest-order", json=order.to_wire())
        return self._receipt(body, "Failed to create guest order")

    async def get(self, order_id: str, token: str) -> Order:
        body = await self.client.get(f"/orders/{order_id}", token=token)
        return Order.model_validate(_payload(body, "order", "data"))

    async def list_mine(self, token: str) -> List[Order]:
        body = await self.client.get("/orders/my-orders", token=token)
        return [Order.model_validate(o) for o in _payload(body, "orders", "data") or []]

    async def cancel(self, order_id: str, token: str, reason: Optional[str] = None) -> Order:
        payload = {"cancellationReason": reason} if reason else {}
        body = await self.client.put(f"/orders/{order_id}/cancel", json=payload, token=token)
        return Order.model_validate(_payload(body, "order", "data"))


class PaymentsAPI:
    def __init__(self, client: ApiClient):
        self.client = client

    async def create_gateway_order(self, order_id: str) -> GatewayOrder:
        """Mint the gateway-side order; completeness is checked by the caller"""
        body = await self.client.post("/payments/create-order", json={"orderId": order_id})
        body = expect_success(body, "Failed to create Razorpay order")
        try:
            return GatewayOrder.model_validate(_payload(body, "order", "data") or {})
        except PydanticValidationError:
            raise ApiError(200, GATEWAY_ORDER_INVALID_MESSAGE, body)

    async def verify(self, verification: PaymentVerification) -> VerificationResult:
        body = await self.client.post("/payments/verify", json=verification.model_dump())
        try:
            return VerificationResult.model_validate(body or {})
        except PydanticValidationError:
            raise ApiError(200, "Invalid payment verification response", body)

    async def mark_failed(self, gateway_order_id: str) -> bool:
        body = await self.client.post(
            "/payments/failed", json={"razorpay_order_id": gateway_order_id}
        )
        return isinstance(body, dict) and body.get("success") is True


class AuthAPI:
    def __init__(self, client: ApiClient):
        self.client = client

    async def login(self, email: str, password: str) -> Dict[str, Any]:
        return await self.client.post("/auth/login", json={"email": email, "password": password})

    async def register(self, name: str, email: str, password: str) -> Dict[str, Any]:
        return await self.client.post(
            "/auth/register", json={"name": name, "email": email, "password": password}
        )

    async def profile(self, token: str) -> Dict[str, Any]:
        return await self.client.get("/auth/profile", token=token)

    async def forgot_password(self, email: str) -> Dict[str, Any]:
        return await self.client.post("/auth/forgot-password", json={"email": email})

    async def reset_password(self, token: str, new_password: str) -> Dict[str, Any]:
        return await self.client.post(
            "/auth/reset-password", json={"token": token, "newPassword": new_password}
        )

    async def set_guest_password(self, email: str, password: str, order_id: str) -> Dict[str, Any]:
        return await self.client.post(
            "/auth/set-guest-password",
            json={"email": email, "password": password, "orderId": order_id},
        )


class ContactAPI:
    def __init__(self, client: ApiClient):
        self.client = client

    async def submit(self, submission: ContactSubmission) -> Dict[str, Any]:
        body = await self.client.post("/contacts", json=submission.to_wire())
        return expect_success(body, "Failed to submit contact form")


class BackendAPI:
    """All endpoint groups over one shared transport"""

    def __init__(self, client: ApiClient, token_provider: TokenProvider):
        self.client = client
        self.products = ProductsAPI(client)
        self.categories = CategoriesAPI(client)
        self.cart = CartAPI(client, token_provider)
        self.orders = OrdersAPI(client)
        self.payments = PaymentsAPI(client)
        self.auth = AuthAPI(client)
        self.contact = ContactAPI(client)
