"""Shared fakes and fixtures for storefront tests."""
from __future__ import annotations

import asyncio
import copy
import inspect
import json
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Callable

import pytest

from storefront.api_client import ApiClient
from storefront.exceptions import ApiError
from storefront.models import (
    PaymentOutcome,
    PaymentVerification,
    Product,
    ShippingForm,
    WidgetOptions,
)
from storefront.payment_gateway import PaymentWidget
from storefront.session import StorefrontSession, build_session, start_session
from storefront.storage import CURRENT_USER_KEY, TOKEN_KEY, RedisClient, SessionStorage


@dataclass
class FakeRedis:
    data: dict[str, str] = field(default_factory=dict)
    expiry: dict[str, int | None] = field(default_factory=dict)

    def ping(self) -> bool:
        return True

    def get(self, key: str):
        return self.data.get(key)

    def set(self, key: str, value: str, ex: int | None = None) -> bool:
        self.data[key] = value
        self.expiry[key] = ex
        return True

    def delete(self, *keys: str) -> int:
        removed = 0
        for key in keys:
            if key in self.data:
                removed += 1
            self.data.pop(key, None)
            self.expiry.pop(key, None)
        return removed


class FakeTransport(ApiClient):
    """ApiClient answering from a route table instead of the network"""

    def __init__(self):
        super().__init__(base_url="http://backend.test/api")
        self.routes: dict[tuple[str, str], Any] = {}
        self.calls: list[dict[str, Any]] = []

    def route(self, method: str, path: str, response: Any) -> None:
        """`response` is a body, an ApiError to raise, or a callable(call) -> body"""
        self.routes[(method, path)] = response

    def calls_to(self, method: str, path: str) -> list[dict[str, Any]]:
        return [c for c in self.calls if c["method"] == method and c["path"] == path]

    async def request(self, method, path, *, params=None, json=None, token=None):
        call = {"method": method, "path": path, "params": params, "json": json, "token": token}
        self.calls.append(call)
        if (method, path) not in self.routes:
            raise ApiError(404, f"Route not found: {method} {path}")
        response = self.routes[(method, path)]
        if isinstance(response, ApiError):
            raise response
        if callable(response):
            result = response(call)
            return await result if inspect.isawaitable(result) else result
        return copy.deepcopy(response)

    async def close(self) -> None:
        return None


@pytest.fixture()
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture()
def redis_client(fake_redis: FakeRedis) -> RedisClient:
    return RedisClient(client=fake_redis)


@pytest.fixture()
def storage(redis_client: RedisClient) -> SessionStorage:
    return SessionStorage(redis_client, "sess-1")


@pytest.fixture()
def transport() -> FakeTransport:
    return FakeTransport()


def product_data(product_id: str, price: int | str, stock: int = 10, **extra: Any) -> dict[str, Any]:
    data = {
        "_id": product_id,
        "name": f"Book {product_id}",
        "slug": f"book-{product_id}",
        "price": price,
        "stock": stock,
        "images": [{"image": f"/uploads/{product_id}.jpg", "_id": f"img-{product_id}"}],
    }
    data.update(extra)
    return data


@pytest.fixture()
def make_product() -> Callable[..., Product]:
    def _make(product_id: str, price: int | str = 100, **extra: Any) -> Product:
        return Product.model_validate(product_data(product_id, price, **extra))

    return _make


def user_data(user_id: str = "u-1") -> dict[str, Any]:
    return {"_id": user_id, "email": "reader@example.com", "name": "Reader", "role": "user"}


def server_cart(items: list[dict[str, Any]] | None = None, owner: str = "u-1") -> dict[str, Any]:
    items = items or []
    return {
        "_id": "cart-1",
        "user": owner,
        "items": items,
        "totalItems": sum(i["quantity"] for i in items),
        "totalPrice": sum(Decimal(str(i["product"]["price"])) * i["quantity"] for i in items),
        "createdAt": "2024-05-01T10:00:00.000Z",
        "updatedAt": "2024-05-01T10:00:00.000Z",
    }


def server_item(item_id: str, product_id: str, price: int, quantity: int) -> dict[str, Any]:
    return {
        "_id": item_id,
        "product": product_data(product_id, price),
        "quantity": quantity,
        "price": price,
    }


class FakeWidget(PaymentWidget):
    """Payment widget that answers with a preset outcome"""

    def __init__(self, outcome: PaymentOutcome | None = None, loads: bool = True):
        self.outcome = outcome or PaymentOutcome.cancelled()
        self.loads = loads
        self.opened: list[WidgetOptions] = []
        self.release: asyncio.Event | None = None

    async def load(self) -> bool:
        return self.loads

    async def collect(self, options: WidgetOptions) -> PaymentOutcome:
        self.opened.append(options)
        if self.release is not None:
            await self.release.wait()
        return self.outcome


def paid(gateway_order_id: str = "order_rzp_1") -> PaymentOutcome:
    return PaymentOutcome.succeeded(PaymentVerification(
        razorpay_order_id=gateway_order_id,
        razorpay_payment_id="pay_1",
        razorpay_signature="sig_1",
    ))


def shipping_form(**overrides: str) -> ShippingForm:
    data = {
        "first_name": "Asha",
        "last_name": "Rao",
        "email": "asha@example.com",
        "phone": "9876543210",
        "address": "12 MG Road",
        "city": "Bengaluru",
        "state": "Karnataka",
        "pincode": "560001",
    }
    data.update(overrides)
    return ShippingForm(**data)


def seed_login(storage: SessionStorage, token: str | None = "tok-1", user_id: str = "u-1") -> None:
    storage.set_item(CURRENT_USER_KEY, json.dumps(user_data(user_id)))
    if token:
        storage.set_item(TOKEN_KEY, token)


@pytest.fixture()
def widget() -> FakeWidget:
    return FakeWidget()


@pytest.fixture()
def make_session(storage: SessionStorage, transport: FakeTransport, widget: FakeWidget):
    async def _make(start: bool = True) -> StorefrontSession:
        session = build_session("sess-1", storage, transport, widget)
        if start:
            await start_session(session)
        return session

    return _make
