"""
Cart state for one storefront session.

Guests keep their cart in the session's durable storage; authenticated users
have their cart on the backend. Both sit behind the CartBackend interface and
the manager picks one from the auth state in a single place.
"""
import logging
import time
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Optional

from pydantic import ValidationError as PydanticValidationError

from storefront.auth_state import AuthState
from storefront.backend_api import CartAPI
from storefront.config import Config
from storefront.exceptions import ApiError, CartItemNotFoundError
from storefront.models import Cart, CartItem, CartSummary, Product, utc_now_iso
from storefront.storage import GUEST_CART_KEY, SessionStorage

logger = logging.getLogger(__name__)


def empty_cart() -> Cart:
    return Cart()


class CartBackend(ABC):
    """Where the authoritative cart lives"""

    @abstractmethod
    async def load(self) -> Cart:
        ...

    @abstractmethod
    async def add(self, cart: Cart, product: Product, quantity: int, color_name: Optional[str]) -> Cart:
        ...

    @abstractmethod
    async def update(self, cart: Cart, item_id: str, quantity: int) -> Cart:
        ...

    @abstractmethod
    async def remove(self, cart: Cart, item_id: str) -> Cart:
        ...

    @abstractmethod
    async def clear(self, cart: Cart) -> Cart:
        ...


class LocalCartBackend(CartBackend):
    """Guest cart persisted as JSON in session storage"""

    def __init__(self, storage: SessionStorage):
        self.storage = storage

    def _save(self, cart: Cart) -> Cart:
        cart.recompute_totals()
        cart.updated_at = utc_now_iso()
        self.storage.set_item(
            GUEST_CART_KEY,
            cart.model_dump_json(by_alias=True),
            ttl=Config.GUEST_CART_TTL_SECONDS,
        )
        return cart

    async def load(self) -> Cart:
        saved = self.storage.get_item(GUEST_CART_KEY)
        if not saved:
            return empty_cart()
        try:
            return Cart.model_validate_json(saved)
        except PydanticValidationError as e:
            logger.warning(f"Discarding unreadable guest cart: {e}")
            return empty_cart()

    async def add(self, cart: Cart, product: Product, quantity: int, color_name: Optional[str]) -> Cart:
        updated = cart.model_copy(deep=True)
        for item in updated.items:
            if item.matches(product.id, color_name):
                item.quantity += quantity
                item.updated_at = utc_now_iso()
                break
        else:
            updated.items.append(CartItem(
                id=f"guest-{product.id}-{color_name or 'nocolor'}-{int(time.time() * 1000)}",
                product=product,
                quantity=quantity,
                price=product.price,
                selected_color_name=color_name,
            ))
        return self._save(updated)

    async def update(self, cart: Cart, item_id: str, quantity: int) -> Cart:
        if cart.find_item(item_id) is None:
            raise CartItemNotFoundError(item_id)
        if quantity <= 0:
            return await self.remove(cart, item_id)

        updated = cart.model_copy(deep=True)
        item = updated.find_item(item_id)
        item.quantity = quantity
        item.updated_at = utc_now_iso()
        return self._save(updated)

    async def remove(self, cart: Cart, item_id: str) -> Cart:
        updated = cart.model_copy(deep=True)
        updated.items = [item for item in updated.items if item.id != item_id]
        return self._save(updated)

    async def clear(self, cart: Cart) -> Cart:
        return self._save(empty_cart())


class RemoteCartBackend(CartBackend):
    """User cart owned by the backend; responses replace the cache verbatim"""

    def __init__(self, cart_api: CartAPI):
        self.cart_api = cart_api

    async def load(self) -> Cart:
        return await self.cart_api.get()

    async def add(self, cart: Cart, product: Product, quantity: int, color_name: Optional[str]) -> Cart:
        return await self.cart_api.add(product.id, quantity, color_name)

    async def update(self, cart: Cart, item_id: str, quantity: int) -> Cart:
        if quantity <= 0:
            return await self.remove(cart, item_id)
        await self.cart_api.update_item(item_id, quantity)
        return await self.cart_api.get()

    async def remove(self, cart: Cart, item_id: str) -> Cart:
        await self.cart_api.remove_item(item_id)
        return await self.cart_api.get()

    async def clear(self, cart: Cart) -> Cart:
        await self.cart_api.clear()
        return empty_cart()


class CartManager:
    """
    Single source of truth for what is in the cart right now.

    Every mutation works on a copy and only replaces `cart` once the backend
    has accepted it, so a failed operation leaves the cart untouched.
    """

    def __init__(self, auth: AuthState, local: LocalCartBackend, remote: RemoteCartBackend):
        self.auth = auth
        self.local = local
        self.remote = remote
        self.cart: Cart = empty_cart()
        self.loading = False
        self.adding_product_id: Optional[str] = None
        auth.subscribe(self.sync_with_auth)

    @property
    def is_guest(self) -> bool:
        # A user without a valid token still counts as signed in
        return self.auth.user is None

    @property
    def backend(self) -> CartBackend:
        return self.local if self.is_guest else self.remote

    async def sync_with_auth(self, auth: Optional[AuthState] = None) -> None:
        """Reload after a sign-in change; an unreachable user cart leaves an empty cache"""
        try:
            await self.refresh_cart()
        except ApiError as e:
            logger.warning(f"Could not load cart after sign-in change: {e}")
            self.cart = empty_cart()

    async def refresh_cart(self) -> None:
        """Reload from whichever source is authoritative; no-op until auth is ready"""
        if not self.auth.ready:
            return
        self.cart = await self.backend.load()

    async def add_to_cart(self, product: Product, quantity: int, color_name: Optional[str] = None) -> Cart:
        self.adding_product_id = product.id
        self.loading = True
        try:
            self.cart = await self.backend.add(self.cart, product, quantity, color_name)
        finally:
            self.loading = False
            self.adding_product_id = None
        logger.info(
            "Added to cart",
            extra={"guest": self.is_guest, "quantity": quantity, "total_items": self.cart.total_items},
        )
        return self.cart

    async def update_cart_item(self, item_id: str, quantity: int) -> Cart:
        self.loading = True
        try:
            self.cart = await self.backend.update(self.cart, item_id, quantity)
        finally:
            self.loading = False
        return self.cart

    async def remove_from_cart(self, item_id: str) -> Cart:
        self.loading = True
        try:
            self.cart = await self.backend.remove(self.cart, item_id)
        finally:
            self.loading = False
        return self.cart

    async def clear_cart(self) -> Cart:
        self.loading = True
        try:
            self.cart = await self.backend.clear(self.cart)
        finally:
            self.loading = False
        return self.cart

    def summary(self, tax_rate: Optional[Decimal] = None) -> CartSummary:
        return CartSummary.for_cart(self.cart, Config.TAX_RATE if tax_rate is None else tax_rate)
