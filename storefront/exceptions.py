"""
Custom exceptions for the storefront session service.
"""
from typing import Any, List, Optional

AUTH_FAILURE_MARKERS = ("token", "auth", "unauthorized")


class StorefrontError(Exception):
    """Base exception for storefront operations"""
    pass


class ValidationError(StorefrontError):
    """Raised when input validation fails"""
    def __init__(self, message: str, fields: Optional[List[str]] = None):
        self.message = message
        self.fields = fields or []
        super().__init__(message)


class AuthenticationError(StorefrontError):
    """Raised when the session cannot be authenticated"""
    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ApiError(StorefrontError):
    """Raised when the backend answers with an error"""
    def __init__(self, status: int, message: str, details: Any = None):
        self.status = status
        self.message = message
        self.details = details
        super().__init__(message)


class PaymentNotFoundError(StorefrontError):
    """Raised when a payment outcome arrives for an unknown gateway order"""
    def __init__(self, gateway_order_id: str):
        self.gateway_order_id = gateway_order_id
        super().__init__(f"No pending payment for gateway order: {gateway_order_id}")


class CartItemNotFoundError(StorefrontError):
    """Raised when an item is not found in the cart"""
    def __init__(self, item_id: str):
        self.item_id = item_id
        super().__init__(f"Item not found in cart: {item_id}")


class CheckoutInProgressError(StorefrontError):
    """Raised when a checkout attempt is already running for the session"""
    def __init__(self):
        super().__init__("A checkout attempt is already in progress")


class StorageError(StorefrontError):
    """Raised when durable storage is unavailable"""
    pass


def is_auth_failure(exc: BaseException) -> bool:
    """Whether an error means the session must re-authenticate"""
    if isinstance(exc, AuthenticationError):
        return True
    if isinstance(exc, ApiError) and exc.status in (401, 403):
        return True
    message = str(exc).lower()
    return any(marker in message for marker in AUTH_FAILURE_MARKERS)
