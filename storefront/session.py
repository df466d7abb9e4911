"""
Wiring of one browser session: storage, auth, cart and checkout, each
handed the collaborators it depends on.
"""
import asyncio
from collections import OrderedDict
from dataclasses import dataclass
from typing import Optional

from storefront.api_client import ApiClient
from storefront.auth_state import AuthState
from storefront.backend_api import AuthAPI, BackendAPI
from storefront.cart_state import CartManager, LocalCartBackend, RemoteCartBackend
from storefront.checkout import CheckoutOrchestrator
from storefront.config import Config
from storefront.payment_gateway import PaymentBridge, PaymentWidget
from storefront.storage import RedisClient, SessionStorage


@dataclass
class StorefrontSession:
    session_id: str
    storage: SessionStorage
    api: BackendAPI
    auth: AuthState
    cart: CartManager
    checkout: CheckoutOrchestrator


def build_session(
    session_id: str,
    storage: SessionStorage,
    client: ApiClient,
    widget: PaymentWidget,
) -> StorefrontSession:
    """Assemble a session; `start_session` then hydrates auth and loads the cart"""
    auth = AuthState(storage, AuthAPI(client))
    api = BackendAPI(client, token_provider=lambda: auth.token)
    cart = CartManager(auth, LocalCartBackend(storage), RemoteCartBackend(api.cart))
    checkout = CheckoutOrchestrator(auth, cart, api.orders, api.payments, widget)
    return StorefrontSession(
        session_id=session_id,
        storage=storage,
        api=api,
        auth=auth,
        cart=cart,
        checkout=checkout,
    )


async def start_session(session: StorefrontSession) -> StorefrontSession:
    session.auth.hydrate()
    await session.cart.sync_with_auth()
    return session


class SessionRegistry:
    """
    Keeps recently used sessions in memory so that consecutive requests of a
    browser share one checkout latch and cart cache.
    """

    def __init__(
        self,
        redis_client: RedisClient,
        client: ApiClient,
        bridge: PaymentBridge,
        max_sessions: Optional[int] = None,
    ):
        self.redis_client = redis_client
        self.client = client
        self.bridge = bridge
        self.max_sessions = max_sessions or Config.SESSION_CACHE_SIZE
        self._sessions: "OrderedDict[str, StorefrontSession]" = OrderedDict()
        self._building = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._sessions)

    async def get(self, session_id: str) -> StorefrontSession:
        session = self._sessions.get(session_id)
        if session is not None:
            self._sessions.move_to_end(session_id)
            return session

        async with self._building:
            session = self._sessions.get(session_id)
            if session is None:
                session = build_session(
                    session_id,
                    SessionStorage(self.redis_client, session_id),
                    self.client,
                    self.bridge.widget_for(session_id),
                )
                await start_session(session)
                self._sessions[session_id] = session
                self._evict()
        return session

    def _evict(self) -> None:
        idle = [sid for sid, s in self._sessions.items() if not s.checkout.in_flight]
        while len(self._sessions) > self.max_sessions and idle:
            self._sessions.pop(idle.pop(0))
