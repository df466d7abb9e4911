"""
Auth state for one storefront session: the current user and bearer token,
persisted to the session's durable storage.
"""
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

from pydantic import ValidationError as PydanticValidationError

from storefront.backend_api import AuthAPI
from storefront.exceptions import AuthenticationError, ValidationError
from storefront.models import User
from storefront.storage import (
    CURRENT_USER_KEY,
    IS_LOGGED_IN_KEY,
    LEGACY_TOKEN_KEY,
    TOKEN_KEY,
    SessionStorage,
)

logger = logging.getLogger(__name__)

AuthListener = Callable[["AuthState"], Awaitable[None]]

MIN_PASSWORD_LENGTH = 6


class AuthState:
    """Current session user; `ready` stays False until hydrated from storage"""

    def __init__(self, storage: SessionStorage, auth_api: AuthAPI):
        self.storage = storage
        self.auth_api = auth_api
        self.user: Optional[User] = None
        self.token: Optional[str] = None
        self.ready = False
        self._listeners: List[AuthListener] = []

    @property
    def is_authenticated(self) -> bool:
        return self.user is not None

    def subscribe(self, listener: AuthListener) -> None:
        self._listeners.append(listener)

    async def _notify(self) -> None:
        for listener in self._listeners:
            await listener(self)

    def hydrate(self) -> None:
        """Load the persisted session, then mark the state ready"""
        stored_user = self.storage.get_item(CURRENT_USER_KEY)
        if stored_user:
            try:
                self.user = User.model_validate_json(stored_user)
            except PydanticValidationError as e:
                logger.warning(f"Discarding unreadable stored user: {e}")
                self.storage.remove_item(CURRENT_USER_KEY)
        self.token = self.storage.get_item(TOKEN_KEY)
        self.ready = True

    @staticmethod
    def _extract_session(response: Any) -> Dict[str, Any]:
        """Accepts `{user, token}` at top level or nested under `data`"""
        if not isinstance(response, dict):
            raise AuthenticationError("Invalid response from server")
        if not response.get("success"):
            raise AuthenticationError(response.get("message") or "Login failed")

        data = response.get("data") if isinstance(response.get("data"), dict) else {}
        user_data = response.get("user") or data or None
        token = response.get("token") or data.get("token")
        if not user_data or not token:
            raise AuthenticationError("Invalid response from server")
        return {"user": User.model_validate(user_data), "token": token}

    async def login(self, email: str, password: str) -> User:
        """
        Log in and persist the session.

        Any failure leaves no partial session behind: the state is fully
        logged out before the error is re-raised.
        """
        self.ready = False
        try:
            response = await self.auth_api.login(email, password)
            session = self._extract_session(response)
        except Exception:
            self.ready = True
            await self.logout()
            raise

        self.user = session["user"]
        self.token = session["token"]
        self.storage.set_item(CURRENT_USER_KEY, self.user.model_dump_json(by_alias=True))
        self.storage.set_item(TOKEN_KEY, self.token)
        self.storage.set_item(IS_LOGGED_IN_KEY, "true")
        self.ready = True
        logger.info("Session logged in", extra={"role": self.user.role})
        await self._notify()
        return self.user

    async def register(self, name: str, email: str, password: str) -> Dict[str, Any]:
        """Create an account; the caller sends the customer to log in afterwards"""
        response = await self.auth_api.register(name, email, password)
        if not isinstance(response, dict) or not response.get("success"):
            message = response.get("message") if isinstance(response, dict) else None
            raise AuthenticationError(message or "Registration failed")
        return response

    async def logout(self) -> None:
        self.user = None
        self.token = None
        self.storage.remove_item(CURRENT_USER_KEY, TOKEN_KEY, IS_LOGGED_IN_KEY, LEGACY_TOKEN_KEY)
        await self._notify()

    async def profile(self) -> Dict[str, Any]:
        if not self.token:
            raise AuthenticationError("Authentication token is missing. Please log in again.")
        return await self.auth_api.profile(self.token)

    async def forgot_password(self, email: str) -> Dict[str, Any]:
        return await self.auth_api.forgot_password(email)

    async def reset_password(self, reset_token: str, new_password: str) -> Dict[str, Any]:
        return await self.auth_api.reset_password(reset_token, new_password)

    async def set_guest_password(self, email: str, password: str, order_id: str) -> Dict[str, Any]:
        """Turn a guest checkout into an account"""
        if len(password) < MIN_PASSWORD_LENGTH:
            raise ValidationError(
                f"Password must be at least {MIN_PASSWORD_LENGTH} characters", ["password"]
            )
        response = await self.auth_api.set_guest_password(email, password, order_id)
        if not isinstance(response, dict) or not response.get("success"):
            message = response.get("message") if isinstance(response, dict) else None
            raise AuthenticationError(message or "Failed to create account")
        return response
